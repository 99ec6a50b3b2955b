import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock

from learn_rabbitmq.infra.events.rabbitmq import Channel, Connection


class FakeIncoming:
    """Stand-in for aio_pika.IncomingMessage."""

    def __init__(self, body, routing_key="rk", delivery_tag=1, redelivered=False):
        self.body = body.encode() if isinstance(body, str) else body
        self.routing_key = routing_key
        self.delivery_tag = delivery_tag
        self.redelivered = redelivered
        self.ack = AsyncMock()
        self.nack = AsyncMock()


class FakeQueueIterator:
    """
    Stand-in for aio_pika.QueueIterator: yields queued messages then stops,
    or with `wait=True` blocks like a live queue until close().
    """

    def __init__(self, items=(), wait=False):
        self._items = list(items)
        self._wait = wait
        self._closing = asyncio.Event()
        self.consumed = False
        self.closed = False

    async def consume(self):
        self.consumed = True

    async def close(self):
        self.closed = True
        self._closing.set()

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._items and self._wait and not self.closed:
            await self._closing.wait()
        if self.closed or not self._items:
            raise StopAsyncIteration
        return self._items.pop(0)


def make_queue(name, iterator=None):
    queue = MagicMock()
    queue.name = name
    queue.bind = AsyncMock()
    queue.iterator = MagicMock(return_value=iterator or FakeQueueIterator())
    return queue


@pytest.fixture
def incoming():
    return FakeIncoming


@pytest.fixture
def queue_iterator():
    return FakeQueueIterator


@pytest.fixture
def queue_factory():
    return make_queue


@pytest.fixture
def raw_channel():
    ch = MagicMock()
    ch.is_closed = False
    ch.close = AsyncMock()
    ch.set_qos = AsyncMock()
    ch.declare_exchange = AsyncMock()
    ch.declare_queue = AsyncMock(side_effect=lambda name, **kw: make_queue(name or "amq.gen-1"))
    ch.get_queue = AsyncMock(side_effect=lambda name, **kw: make_queue(name))
    ch.get_exchange = AsyncMock(return_value=MagicMock(publish=AsyncMock()))
    ch.default_exchange = MagicMock(publish=AsyncMock())
    return ch


@pytest.fixture
def channel(raw_channel):
    return Channel(raw_channel)


@pytest.fixture
def raw_connection(raw_channel):
    conn = MagicMock()
    conn.is_closed = False
    conn.close = AsyncMock()
    conn.channel = AsyncMock(return_value=raw_channel)
    return conn


@pytest.fixture
def connector(raw_connection):
    """Async connect(url) replacement returning a Connection over mocks."""
    return AsyncMock(side_effect=lambda url: Connection(raw_connection))
