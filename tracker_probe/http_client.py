import struct
from ipaddress import IPv4Address, IPv6Address
from typing import Any
from urllib.parse import urlencode, urlparse

import bencodepy
from httpx import AsyncClient, HTTPError, TimeoutException

from tracker_probe.exceptions import (
    DecodeError,
    FramingError,
    InvalidTrackerAddressError,
    TrackerConnectionError,
    TrackerRejectedError,
    TrackerTimeoutError,
)
from tracker_probe.log_conf import logging
from tracker_probe.schemas import (
    AnnounceRequest,
    AnnounceResponse,
    AnnounceResult,
    ErrorResponse,
    Event,
    Peer,
    WarningResponse,
    normalize_ip,
)

logger = logging.getLogger(__name__)

ONE_PEER_LEN = 6
ONE_PEER6_LEN = 18


def build_announce_query(request: AnnounceRequest, compact: bool) -> str:
    """
    Параметры announce в порядке info_hash, peer_id, port, uploaded, downloaded, left, compact, event, ip, numwant.

    info_hash и peer_id передаются сырыми байтами и экранируются стандартным urlencode.
    """
    params: list[tuple[str, Any]] = [
        ("info_hash", request.info_hash),
        ("peer_id", request.peer.id),
        ("port", request.peer.port),
        ("uploaded", request.uploaded),
        ("downloaded", request.downloaded),
        ("left", request.left),
    ]
    if compact:
        params.append(("compact", 1))
    if request.event != Event.NONE:
        params.append(("event", request.event.value))
    ip = request.peer.ip
    if ip is not None and int(ip) != 0:
        params.append(("ip", str(ip)))
    if request.numwant != 0:
        params.append(("numwant", request.numwant))
    return urlencode(params)


def build_announce_url(announce_url: str, request: AnnounceRequest, compact: bool) -> str:
    """ Параметры уже заданные в announce url (например passkey) сохраняются """
    base = announce_url.partition("#")[0]
    separator = "&" if urlparse(base).query else "?"
    if base.endswith(("?", "&")):
        separator = ""
    return base + separator + build_announce_query(request, compact)


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _int_field(decoded: dict, key: bytes) -> int:
    value = decoded.get(key, 0)
    if not isinstance(value, int) or isinstance(value, bool):
        raise DecodeError(f"Поле '{key.decode()}' должно быть целым числом, получено {value!r}")
    return value


def parse_compact_peers(peers: bytes) -> list[Peer]:
    """ 6 байт на пира: 4 байта IPv4 и 2 байта порта big-endian """
    if len(peers) % ONE_PEER_LEN != 0:
        raise FramingError(f"Длина peers={len(peers)} не кратна {ONE_PEER_LEN}")
    result = []
    for offset in range(0, len(peers), ONE_PEER_LEN):
        ip = IPv4Address(peers[offset:offset + 4])
        (port,) = struct.unpack(">H", peers[offset + 4:offset + ONE_PEER_LEN])
        result.append(Peer(ip=ip, port=port))
    return result


def parse_compact_peers6(peers6: bytes) -> list[Peer]:
    """ 18 байт на пира: 16 байт IPv6 и 2 байта порта big-endian """
    if len(peers6) % ONE_PEER6_LEN != 0:
        raise FramingError(f"Длина peers6={len(peers6)} не кратна {ONE_PEER6_LEN}")
    result = []
    for offset in range(0, len(peers6), ONE_PEER6_LEN):
        ip = normalize_ip(IPv6Address(peers6[offset:offset + 16]))
        (port,) = struct.unpack(">H", peers6[offset + 16:offset + ONE_PEER6_LEN])
        result.append(Peer(ip=ip, port=port))
    return result


def parse_dict_peers(peers: list) -> list[Peer]:
    result = []
    for entry in peers:
        if not isinstance(entry, dict):
            raise DecodeError(f"Запись о пире должна быть словарем, получено {entry!r}")
        peer_id = entry.get(b"peer id", b"")
        ip = entry.get(b"ip")
        port = entry.get(b"port")
        if not isinstance(peer_id, bytes) or not isinstance(ip, bytes) or not isinstance(port, int):
            raise DecodeError(f"Некорректная запись о пире {entry!r}")
        if not 0 <= port <= 0xFFFF:
            raise DecodeError(f"Некорректный порт пира {port}")
        try:
            result.append(Peer.from_text_ip(peer_id, ip.decode("ascii"), port))
        except ValueError as exception:
            raise DecodeError(f"Некорректный IP пира {ip!r}") from exception
    return result


def parse_announce_content(content: bytes, compact: bool) -> AnnounceResult:
    try:
        decoded = bencodepy.decode(content)
    except Exception as exception:
        raise DecodeError(f"Ответ трекера не является корректным bencode: {content[:64]!r}") from exception
    if not isinstance(decoded, dict):
        raise DecodeError(f"Ответ трекера должен быть словарем, получено {type(decoded).__name__}")

    failure_reason = decoded.get(b"failure reason")
    if failure_reason:
        return ErrorResponse(_text(failure_reason))
    warning_message = decoded.get(b"warning message")
    if warning_message:
        return WarningResponse(_text(warning_message))

    peers: list[Peer] = []
    raw_peers = decoded.get(b"peers")
    if compact:
        if raw_peers is not None:
            if not isinstance(raw_peers, bytes):
                raise DecodeError(f"В компактном ответе peers должен быть строкой байт, получено {type(raw_peers).__name__}")
            peers.extend(parse_compact_peers(raw_peers))
        raw_peers6 = decoded.get(b"peers6")  # для IPv6
        if raw_peers6 is not None:
            if not isinstance(raw_peers6, bytes):
                raise DecodeError(f"peers6 должен быть строкой байт, получено {type(raw_peers6).__name__}")
            peers.extend(parse_compact_peers6(raw_peers6))
    elif raw_peers is not None:
        if not isinstance(raw_peers, list):
            raise DecodeError(f"В некомпактном ответе peers должен быть списком, получено {type(raw_peers).__name__}")
        peers.extend(parse_dict_peers(raw_peers))

    return AnnounceResponse(
        interval=_int_field(decoded, b"interval"),
        min_interval=_int_field(decoded, b"min interval"),
        complete=_int_field(decoded, b"complete"),
        incomplete=_int_field(decoded, b"incomplete"),
        peers=tuple(peers),
    )


class HTTPAnnouncer:

    def __init__(self, client: AsyncClient, announce_url: str, compact: bool | None = None):
        parsed = urlparse(announce_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise InvalidTrackerAddressError(f"Передан неправильный url у трекера. URL - {announce_url}")
        self.client = client
        self.announce_url = announce_url
        self.compact = compact

    def override_compact(self, compact: bool | None) -> None:
        """ Принудительный формат ответа для всех запросов; None - брать из запроса """
        self.compact = compact

    def _is_compact(self, request: AnnounceRequest) -> bool:
        return request.compact if self.compact is None else self.compact

    async def announce(self, request: AnnounceRequest) -> AnnounceResult:
        compact = self._is_compact(request)
        url = build_announce_url(self.announce_url, request, compact)
        logger.debug(f"Announce {self.announce_url}: {request}")

        try:
            response = await self.client.get(url)
        except TimeoutException as exception:
            raise TrackerTimeoutError(f"Трекер {self.announce_url} не ответил вовремя: "
                                      f"{exception.__class__.__name__}") from exception
        except HTTPError as exception:
            raise TrackerConnectionError(f"Ошибка во время запроса к трекеру {self.announce_url}: "
                                         f"{exception.__class__.__name__}: {exception}") from exception

        content: bytes = response.content
        logger.debug(f"Ответ трекера status={response.status_code}: {content[:200]!r}")
        try:
            result = parse_announce_content(content, compact)
        except DecodeError:
            if not response.is_success:
                raise TrackerRejectedError(response.status_code) from None
            raise

        if not response.is_success and isinstance(result, AnnounceResponse):
            logger.warning(f"Трекер {self.announce_url} вернул статус={response.status_code} с обычным ответом")
        return result
