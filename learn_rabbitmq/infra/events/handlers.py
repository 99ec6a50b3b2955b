# learn_rabbitmq/infra/events/handlers.py

import logging
from typing import Awaitable, Callable, Iterable, Optional

from learn_rabbitmq.infra.events.routing import topic_matches
from learn_rabbitmq.schemas.message_schemas import Message

logger = logging.getLogger(__name__)

Handler = Callable[[Message, str], Awaitable[None]]


# ----- QUEUE (default exchange / work queue) -----
def queue_handler(name: Optional[str] = None) -> Handler:
    """Log each message received straight from a queue."""

    async def handle(message: Message, routing_key: str) -> None:
        if name:
            logger.info("✓ [%s] Received message: %s", name, message)
        else:
            logger.info("✓ Received message: %s", message)

    return handle


# ----- FANOUT -----
def broadcast_handler(subscriber_name: str) -> Handler:
    async def handle(message: Message, routing_key: str) -> None:
        logger.info("✓ [%s] Received broadcast: %s", subscriber_name, message)

    return handle


# ----- DIRECT -----
def routed_handler(subscriber_name: str) -> Handler:
    async def handle(message: Message, routing_key: str) -> None:
        logger.info("✓ [%s] Received [%s]: %s", subscriber_name, routing_key, message)

    return handle


# ----- TOPIC -----
def pattern_handler(subscriber_name: str, binding_keys: Iterable[str]) -> Handler:
    """
    Log topic deliveries with the binding pattern that let them through.
    A key matching none of our patterns means someone else bound our queue.
    """
    patterns = list(binding_keys)

    async def handle(message: Message, routing_key: str) -> None:
        matched = [p for p in patterns if topic_matches(p, routing_key)]
        if not matched:
            logger.warning(
                "[%s] routing_key='%s' matches none of %s", subscriber_name, routing_key, patterns
            )
            return
        logger.info(
            "✓ [%s] Matched %s! routing_key='%s': %s", subscriber_name, matched[0], routing_key, message
        )

    return handle
