import logging
import pytest

from learn_rabbitmq.infra.events.handlers import (
    broadcast_handler,
    pattern_handler,
    queue_handler,
    routed_handler,
)
from learn_rabbitmq.schemas.message_schemas import Message

pytestmark = pytest.mark.asyncio

MSG = Message(id=300, content="New user registered")


async def test_queue_handler(caplog):
    with caplog.at_level(logging.INFO):
        await queue_handler()(MSG, "hello_queue")
        await queue_handler("worker_1")(MSG, "task_queue")
    assert "✓ Received message" in caplog.text
    assert "[worker_1] Received message" in caplog.text


async def test_broadcast_handler(caplog):
    with caplog.at_level(logging.INFO):
        await broadcast_handler("subscriber_1")(MSG, "")
    assert "[subscriber_1] Received broadcast" in caplog.text


async def test_routed_handler_shows_routing_key(caplog):
    with caplog.at_level(logging.INFO):
        await routed_handler("error_logger")(MSG, "error")
    assert "[error_logger] Received [error]" in caplog.text


async def test_pattern_handler_reports_matching_pattern(caplog):
    handler = pattern_handler("order_service", ["order.payment.*", "order.#"])
    with caplog.at_level(logging.INFO):
        await handler(MSG, "order.created")
    assert "Matched order.#!" in caplog.text


async def test_pattern_handler_warns_on_foreign_key(caplog):
    handler = pattern_handler("user_service", ["user.*"])
    await handler(MSG, "order.created")
    assert "matches none of" in caplog.text
