"""Общие фикстуры тестов."""

import asyncio
import random

import pytest
import pytest_asyncio

from doubles import FakeUDPTracker, ReferenceTracker


@pytest.fixture
def rng():
    return random.Random(1337)


@pytest.fixture
def reference_tracker():
    return ReferenceTracker()


@pytest_asyncio.fixture
async def udp_tracker(reference_tracker):
    loop = asyncio.get_running_loop()
    transport, protocol = await loop.create_datagram_endpoint(
        lambda: FakeUDPTracker(reference_tracker),
        local_addr=("127.0.0.1", 0),
    )
    host, port = transport.get_extra_info("sockname")[:2]
    protocol.address = f"{host}:{port}"
    yield protocol
    transport.close()
