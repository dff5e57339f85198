import asyncio
from asyncio import DatagramTransport

from tracker_probe.exceptions import TrackerConnectionError
from tracker_probe.log_conf import logging

logger = logging.getLogger(__name__)


class TrackerDatagramProtocol(asyncio.DatagramProtocol):
    """ Складывает пришедшие датаграммы (или ошибки сокета) в очередь по порядку """

    def __init__(self):
        self.transport: DatagramTransport | None = None
        self.queue: asyncio.Queue[bytes | Exception] = asyncio.Queue()

    def connection_made(self, transport: DatagramTransport):
        self.transport = transport

    def datagram_received(self, data: bytes, addr: tuple[str, int]):
        logger.debug(f"Пришло сообщение на сокет addr:{addr} - data:{data[:20]!r}")
        self.queue.put_nowait(data)

    def error_received(self, exc: Exception):
        logger.warning(f"Ошибка сокета: {exc.__class__.__name__}: {exc}")
        self.queue.put_nowait(exc)

    def drain(self) -> int:
        """ Выбрасывает опоздавшие ответы на прошлые запросы """
        dropped = 0
        while not self.queue.empty():
            self.queue.get_nowait()
            dropped += 1
        return dropped

    async def receive(self) -> bytes:
        item = await self.queue.get()
        if isinstance(item, Exception):
            raise TrackerConnectionError(f"Ошибка сокета: {item.__class__.__name__}: {item}") from item
        return item
