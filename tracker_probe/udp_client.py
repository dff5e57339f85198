import asyncio
import random
import re
import struct
from asyncio import DatagramTransport
from asyncio.exceptions import TimeoutError
from ipaddress import IPv4Address

from tracker_probe.config import settings
from tracker_probe.exceptions import (
    EncodeError,
    FramingError,
    InvalidTrackerAddressError,
    ProtocolViolationError,
    TrackerConnectionError,
    TrackerTimeoutError,
    TransactionMismatchError,
)
from tracker_probe.log_conf import logging
from tracker_probe.schemas import (
    INFO_HASH_LENGTH,
    PEER_ID_LENGTH,
    AnnounceRequest,
    AnnounceResponse,
    AnnounceResult,
    ErrorResponse,
    Event,
    Peer,
)
from tracker_probe.udp_protocol import TrackerDatagramProtocol

logger = logging.getLogger(__name__)

PROTOCOL_ID = 0x41727101980
CONNECT_ACTION = 0
ANNOUNCE_ACTION = 1
ERROR_ACTION = 3

CONNECT_PACKET_LENGTH = 16
ANNOUNCE_HEADER_LENGTH = 20
PEER_RECORD_LENGTH = 6

MAX_TRANSACTION_ID = 0xFFFFFFFF

EVENT_CODES = {
    Event.NONE: 0,
    Event.COMPLETED: 1,
    Event.STARTED: 2,
    Event.STOPPED: 3,
    Event.INVALID: 4,
}


class TransactionCounter:
    """
    Монотонный счетчик transaction_id, переполняется через 2**32.

    Несколько клиентов могут делить один счетчик, если передать его в конструктор явно.
    """

    def __init__(self, start: int | None = None):
        self.value = random.getrandbits(32) if start is None else start & MAX_TRANSACTION_ID

    def next_id(self) -> int:
        self.value = (self.value + 1) & MAX_TRANSACTION_ID
        return self.value


def build_connect_packet(transaction_id: int) -> bytes:
    """
    https://www.bittorrent.org/beps/bep_0015.html#:~:text=size%20of%20packets.-,Connect,-Before%20announcing%20or
    """

    # >: big-endian, Q: 8 байт без знака, L: 4 байта без знака
    return struct.pack(">QLL", PROTOCOL_ID, CONNECT_ACTION, transaction_id)


def parse_connect_packet(data: bytes, transaction_id: int) -> int:
    if len(data) >= 8:
        action, received_id = struct.unpack(">LL", data[:8])
        if action == ERROR_ACTION:
            if received_id != transaction_id:
                raise TransactionMismatchError(transaction_id, received_id, "connect")
            message = data[8:].decode("utf-8", errors="replace")
            raise ProtocolViolationError(f"connect: трекер ответил ошибкой: {message}")
    if len(data) != CONNECT_PACKET_LENGTH:
        raise FramingError(f"connect: ожидалось {CONNECT_PACKET_LENGTH} байт, получено {len(data)}")

    action, received_id, connection_id = struct.unpack(">LLQ", data)
    if action != CONNECT_ACTION:
        raise ProtocolViolationError(f"connect: action={action}, ожидалось {CONNECT_ACTION}")
    if received_id != transaction_id:
        raise TransactionMismatchError(transaction_id, received_id, "connect")
    return connection_id


def _ip_override(peer: Peer) -> int:
    if isinstance(peer.ip, IPv4Address):
        return int(peer.ip)
    if peer.ip is not None:
        logger.debug(f"IPv6 адрес {peer.ip} нельзя передать в UDP announce, трекер определит адрес сам")
    return 0


def build_announce_packet(request: AnnounceRequest, connection_id: int, transaction_id: int) -> bytes:
    """https://www.bittorrent.org/beps/bep_0015.html#:~:text=Announce,-Before%20announcing"""

    if len(request.info_hash) != INFO_HASH_LENGTH:
        raise EncodeError(f"info_hash должен быть {INFO_HASH_LENGTH} байт, получено {len(request.info_hash)}")
    if len(request.peer.id) != PEER_ID_LENGTH:
        raise EncodeError(f"peer_id должен быть {PEER_ID_LENGTH} байт, получено {len(request.peer.id)}")

    key = 0
    try:
        # q: 8 байт со знаком, отрицательные значения уходят в дополнительном коде
        return struct.pack(
            ">QLL20s20sqqqLLLlH",
            connection_id, ANNOUNCE_ACTION, transaction_id, request.info_hash, request.peer.id,
            request.downloaded, request.left, request.uploaded, EVENT_CODES[request.event],
            _ip_override(request.peer), key, request.numwant, request.peer.port)
    except struct.error as exception:
        raise EncodeError(f"Не удалось упаковать announce: {exception}") from exception


def parse_announce_packet(data: bytes, transaction_id: int) -> AnnounceResult:
    if len(data) < 8:
        raise FramingError(f"announce: ответ короче 8 байт ({len(data)})")

    action, received_id = struct.unpack(">LL", data[:8])
    if received_id != transaction_id:
        raise TransactionMismatchError(transaction_id, received_id, "announce")
    if action == ERROR_ACTION:
        return ErrorResponse(data[8:].decode("utf-8", errors="replace"))
    if action != ANNOUNCE_ACTION:
        raise ProtocolViolationError(f"announce: action={action}, ожидалось {ANNOUNCE_ACTION}")
    if len(data) < ANNOUNCE_HEADER_LENGTH:
        raise FramingError(f"announce: ответ короче {ANNOUNCE_HEADER_LENGTH} байт ({len(data)})")
    if (len(data) - ANNOUNCE_HEADER_LENGTH) % PEER_RECORD_LENGTH != 0:
        raise FramingError(f"announce: неожиданная длина ответа {len(data)}")

    interval, leechers, seeders = struct.unpack(">LLL", data[8:ANNOUNCE_HEADER_LENGTH])
    peers = []
    for offset in range(ANNOUNCE_HEADER_LENGTH, len(data), PEER_RECORD_LENGTH):
        ip = IPv4Address(data[offset:offset + 4])
        (port,) = struct.unpack(">H", data[offset + 4:offset + PEER_RECORD_LENGTH])
        peers.append(Peer(ip=ip, port=port))

    return AnnounceResponse(interval=interval, complete=seeders, incomplete=leechers, peers=tuple(peers))


def parse_udp_address(address: str) -> tuple[str, int]:
    pattern = re.compile(r'^(?:udp://)?(\[[^\]]+\]|[^:/]+):(\d+)(?:/.*)?$')
    match = pattern.match(address)
    if match is None:
        raise InvalidTrackerAddressError(f"Передан неправильный адрес UDP трекера - {address}")
    host, port = match.group(1).strip("[]"), int(match.group(2))
    if not 0 < port <= 0xFFFF:
        raise InvalidTrackerAddressError(f"Неправильный порт UDP трекера - {address}")
    return host, port


class UDPAnnouncer:
    """
    Клиент UDP трекера (BEP 15).

    По умолчанию перед каждым announce выполняется connect и берется свежий connection_id.
    С auto_connect=False используется connection_id, заданный вручную или полученный через connect().
    Повторов нет: таймаут сразу поднимается как TrackerTimeoutError.
    """

    def __init__(
            self,
            host: str,
            port: int,
            timeout: float | None = None,
            counter: TransactionCounter | None = None,
            auto_connect: bool = True
    ):
        self.host = host
        self.port = port
        self.timeout = timeout if timeout is not None else settings.udp_timeout_sec
        self.counter = counter if counter is not None else TransactionCounter()
        self.auto_connect = auto_connect
        self.connection_id: int | None = None
        self.transport: DatagramTransport | None = None
        self.protocol: TrackerDatagramProtocol | None = None

    @classmethod
    def from_address(cls, address: str, **kwargs) -> "UDPAnnouncer":
        host, port = parse_udp_address(address)
        return cls(host, port, **kwargs)

    def __repr__(self):
        return f"UDPAnnouncer({self.host}:{self.port})"

    async def open(self) -> None:
        if self.transport is not None:
            return
        loop = asyncio.get_running_loop()
        try:
            self.transport, self.protocol = await loop.create_datagram_endpoint(
                TrackerDatagramProtocol,
                remote_addr=(self.host, self.port)
            )
        except OSError as exception:
            raise TrackerConnectionError(f"Не удалось открыть сокет к {self.host}:{self.port}: {exception}") from exception

    async def close(self) -> None:
        if self.transport is not None:
            self.transport.close()
        self.transport = None
        self.protocol = None

    async def __aenter__(self) -> "UDPAnnouncer":
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _exchange(self, packet: bytes, stage: str) -> bytes:
        if self.transport is None:
            await self.open()
        dropped = self.protocol.drain()
        if dropped:
            logger.warning(f"{stage}: отброшено {dropped} опоздавших ответов трекера {self.host}:{self.port}")

        self.transport.sendto(packet)
        try:
            return await asyncio.wait_for(self.protocol.receive(), timeout=self.timeout)
        except TimeoutError:
            raise TrackerTimeoutError(f"{stage}: трекер {self.host}:{self.port} не ответил "
                                      f"за {self.timeout} секунд") from None

    async def connect(self) -> int:
        """ Ручной connect: возвращает connection_id и запоминает его для следующих announce """
        transaction_id = self.counter.next_id()
        data = await self._exchange(build_connect_packet(transaction_id), "connect")
        self.connection_id = parse_connect_packet(data, transaction_id)
        logger.debug(f"Подтверждено подключение transaction_id={transaction_id}. "
                     f"Получен connection_id={self.connection_id}")
        return self.connection_id

    async def announce(self, request: AnnounceRequest) -> AnnounceResult:
        logger.debug(f"Announce {self.host}:{self.port}: {request}")
        if self.auto_connect or self.connection_id is None:
            await self.connect()

        transaction_id = self.counter.next_id()
        packet = build_announce_packet(request, self.connection_id, transaction_id)
        data = await self._exchange(packet, "announce")
        result = parse_announce_packet(data, transaction_id)
        logger.debug(f"Получен ответ на announce: {result}")
        return result
