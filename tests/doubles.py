"""Двойники трекера для тестов: эталонный рой в памяти и его HTTP / UDP обертки."""

import asyncio
import struct
from ipaddress import IPv4Address, ip_address
from urllib.parse import parse_qsl

import bencodepy
import httpx

from tracker_probe.schemas import (
    AnnounceRequest,
    AnnounceResponse,
    ErrorResponse,
    Event,
    Peer,
    WarningResponse,
)

SOURCE_IP = IPv4Address("127.0.0.1")
CONNECTION_ID = 0xC0FFEE
UDP_EVENTS = {0: Event.NONE, 1: Event.COMPLETED, 2: Event.STARTED, 3: Event.STOPPED}


class ReferenceTracker:
    """
    Модель роя в памяти.

    exclude_self - не возвращать запрашивающего, honour_ip - принимать объявленный IP,
    optimize_seeders - не отдавать сидам других сидов, strict - отвергать некорректные запросы.
    """

    def __init__(self, exclude_self=True, honour_ip=True, optimize_seeders=False, strict=True, source_ip=SOURCE_IP):
        self.exclude_self = exclude_self
        self.honour_ip = honour_ip
        self.optimize_seeders = optimize_seeders
        self.strict = strict
        self.source_ip = source_ip
        self.swarms: dict[bytes, dict[bytes, tuple[Peer, int]]] = {}
        self.requests: list[AnnounceRequest] = []

    def validate(self, request: AnnounceRequest) -> str | None:
        if len(request.info_hash) != 20:
            return "invalid infohash"
        if len(request.peer.id) != 20:
            return "invalid peer id"
        if min(request.uploaded, request.downloaded, request.left) < 0:
            return "invalid numeric field"
        if request.event == Event.INVALID:
            return "invalid event"
        return None

    async def announce(self, request: AnnounceRequest):
        self.requests.append(request)
        if self.strict:
            reason = self.validate(request)
            if reason is not None:
                return ErrorResponse(reason)

        swarm = self.swarms.setdefault(request.info_hash, {})
        if request.event == Event.STOPPED:
            swarm.pop(request.peer.id, None)
        else:
            declared = request.peer.ip if request.peer.ip is not None and int(request.peer.ip) != 0 else None
            ip = declared if self.honour_ip and declared is not None else self.source_ip
            swarm[request.peer.id] = (Peer(id=request.peer.id, ip=ip, port=request.peer.port), request.left)

        peers = []
        for peer_id, (peer, left) in swarm.items():
            if self.exclude_self and peer_id == request.peer.id:
                continue
            if self.optimize_seeders and request.left == 0 and left == 0 and peer_id != request.peer.id:
                continue
            peers.append(peer)
        complete = sum(1 for _, left in swarm.values() if left == 0)
        return AnnounceResponse(
            interval=1800,
            min_interval=900,
            complete=complete,
            incomplete=len(swarm) - complete,
            peers=tuple(peers[:request.numwant]),
        )


class CannedTracker:
    """ Отдает заранее заданные ответы по очереди; исключения поднимает """

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[AnnounceRequest] = []

    async def announce(self, request: AnnounceRequest):
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def query_params(request: httpx.Request) -> dict[str, bytes]:
    pairs = parse_qsl(request.url.query.decode("ascii"), keep_blank_values=True, encoding="latin-1")
    return {key: value.encode("latin-1") for key, value in pairs}


def request_from_query(params: dict[str, bytes]) -> AnnounceRequest:
    ip = ip_address(params["ip"].decode()) if "ip" in params else None
    return AnnounceRequest(
        info_hash=params["info_hash"],
        peer=Peer(id=params["peer_id"], ip=ip, port=int(params["port"])),
        uploaded=int(params["uploaded"]),
        downloaded=int(params["downloaded"]),
        left=int(params["left"]),
        event=Event(params["event"].decode()) if "event" in params else Event.NONE,
        numwant=int(params.get("numwant", b"50")),
        compact=params.get("compact") == b"1",
    )


def bencode_response(result, compact: bool) -> bytes:
    if isinstance(result, ErrorResponse):
        return bencodepy.encode({b"failure reason": result.message.encode()})
    if isinstance(result, WarningResponse):
        return bencodepy.encode({b"warning message": result.message.encode()})
    body = {
        b"interval": result.interval,
        b"min interval": result.min_interval,
        b"complete": result.complete,
        b"incomplete": result.incomplete,
    }
    if compact:
        body[b"peers"] = b"".join(peer.ip.packed + struct.pack(">H", peer.port) for peer in result.peers)
    else:
        body[b"peers"] = [
            {b"peer id": peer.id, b"ip": str(peer.ip).encode(), b"port": peer.port}
            for peer in result.peers
        ]
    return bencodepy.encode(body)


def http_transport(tracker, compact_only=False) -> httpx.MockTransport:
    """ HTTP-обертка над трекером в памяти; compact_only - всегда отвечать компактно """

    async def handler(request: httpx.Request) -> httpx.Response:
        announce = request_from_query(query_params(request))
        result = await tracker.announce(announce)
        return httpx.Response(200, content=bencode_response(result, announce.compact or compact_only))

    return httpx.MockTransport(handler)


class FakeUDPTracker(asyncio.DatagramProtocol):
    """
    UDP трекер на loopback.

    handler(data) -> bytes | None; по умолчанию запросы обслуживает ReferenceTracker.
    """

    def __init__(self, tracker=None):
        self.tracker = tracker
        self.handler = None
        self.transport = None
        self.received: list[bytes] = []

    def connection_made(self, transport):
        self.transport = transport

    def datagram_received(self, data, addr):
        self.received.append(data)
        asyncio.get_running_loop().create_task(self.reply(data, addr))

    async def reply(self, data, addr):
        handler = self.handler or self.serve
        response = await handler(data)
        if response is not None:
            self.transport.sendto(response, addr)

    async def serve(self, data: bytes) -> bytes | None:
        if len(data) == 16:
            _, action, transaction_id = struct.unpack(">QLL", data)
            return struct.pack(">LLQ", 0, transaction_id, CONNECTION_ID)

        (_, _, transaction_id, info_hash, peer_id, downloaded, left, uploaded,
         event, ip, _, numwant, port) = struct.unpack(">QLL20s20sqqqLLLlH", data)
        request = AnnounceRequest(
            info_hash=info_hash,
            peer=Peer(id=peer_id, ip=IPv4Address(ip), port=port),
            uploaded=uploaded,
            downloaded=downloaded,
            left=left,
            event=UDP_EVENTS.get(event, Event.INVALID),
            numwant=numwant,
        )
        result = await self.tracker.announce(request)
        if isinstance(result, ErrorResponse):
            return struct.pack(">LL", 3, transaction_id) + result.message.encode()
        peers = b"".join(peer.ip.packed + struct.pack(">H", peer.port) for peer in result.peers)
        return struct.pack(">LLLLL", 1, transaction_id, result.interval, result.incomplete, result.complete) + peers
