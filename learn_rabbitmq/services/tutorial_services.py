# learn_rabbitmq/services/tutorial_services.py
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from learn_rabbitmq.core.config import Settings
from learn_rabbitmq.infra.events import handlers
from learn_rabbitmq.infra.events.consumer import ConsumerLoop, Handler
from learn_rabbitmq.infra.events.contracts import Connector, MessageConsumer, MessagePublisher
from learn_rabbitmq.infra.events.rabbitmq import Channel, connect
from learn_rabbitmq.schemas.message_schemas import Message
from learn_rabbitmq.schemas.topology_schemas import ConsumeOptions, ExchangeKind, PublishOptions

logger = logging.getLogger(__name__)


class TutorialService:
    """
    The tutorial routines: one producer and one consumer per pattern.
    - Queue: default exchange, routing key = queue name (one consumer gets each message).
    - Work queue: durable queue, persistent messages, fair dispatch.
    - Publish/subscribe: fanout exchange, one exclusive queue per subscriber.
    - Routing: direct exchange (exact key) and topic exchange (`*` / `#`).

    Every routine opens its own connection and closes it when done.
    Consumers run until their channel closes or stop() is called.
    """

    def __init__(self, settings: Settings, connector: Connector = connect) -> None:
        self.settings = settings
        self.connector = connector
        self.consumers: List[MessageConsumer] = []
        self.stopping = asyncio.Event()

    # ==========================================================
    # === Queue (default exchange) =============================
    # ==========================================================

    async def simple_producer(self) -> Message:
        queue_name = self.settings.RABBITMQ_QUEUE
        message = Message(id=1, content="Hello from RabbitMQ!")

        async with await self.connector(self.settings.RABBITMQ_URL) as conn:
            channel = await conn.channel()
            await channel.declarator().declare_queue(queue_name)
            await channel.publisher().publish("", queue_name, message)

        logger.info("ℹ️  Sent through the DEFAULT EXCHANGE straight to queue '%s'", queue_name)
        return message

    async def simple_consumer(self, consumer_tag: str = "my_consumer") -> int:
        queue_name = self.settings.RABBITMQ_QUEUE

        async with await self.connector(self.settings.RABBITMQ_URL) as conn:
            channel = await conn.channel()
            await channel.declarator().declare_queue(queue_name)
            logger.info("Waiting for messages. Press Ctrl+C to exit.")
            return await self._consume(channel, queue_name, consumer_tag, handlers.queue_handler())

    # ==========================================================
    # === Work queue ===========================================
    # ==========================================================

    async def work_queue_producer(self, tasks: Optional[int] = None) -> List[Message]:
        queue_name = self.settings.RABBITMQ_WORK_QUEUE
        count = self.settings.WORK_TASKS if tasks is None else tasks
        sent: List[Message] = []

        async with await self.connector(self.settings.RABBITMQ_URL) as conn:
            channel = await conn.channel()
            await channel.declarator().declare_queue(queue_name, durable=True)
            publisher: MessagePublisher = channel.publisher()
            for i in range(1, count + 1):
                message = Message(id=i, content=f"Task {i}")
                await publisher.publish("", queue_name, message, PublishOptions(persistent=True))
                sent.append(message)

        return sent

    async def work_queue_worker(self, worker_name: str = "worker_1") -> int:
        queue_name = self.settings.RABBITMQ_WORK_QUEUE

        async with await self.connector(self.settings.RABBITMQ_URL) as conn:
            channel = await conn.channel()
            await channel.declarator().declare_queue(queue_name, durable=True)
            logger.info("[%s] Waiting for tasks on '%s'...", worker_name, queue_name)
            return await self._consume(channel, queue_name, worker_name, handlers.queue_handler(worker_name))

    # ==========================================================
    # === Publish / subscribe (fanout) =========================
    # ==========================================================

    async def publish_subscribe_publisher(self) -> Message:
        exchange_name = self.settings.RABBITMQ_EXCHANGE
        message = Message(id=100, content="Broadcast message to all subscribers!")

        async with await self.connector(self.settings.RABBITMQ_URL) as conn:
            channel = await conn.channel()
            await channel.declarator().declare_exchange(exchange_name, ExchangeKind.FANOUT)
            await channel.publisher().publish(exchange_name, "", message)

        logger.info("ℹ️  Publisher → [%s:FANOUT] → all bound queues → consumers", exchange_name)
        return message

    async def publish_subscribe_subscriber(self, subscriber_name: str) -> int:
        exchange_name = self.settings.RABBITMQ_EXCHANGE

        async with await self.connector(self.settings.RABBITMQ_URL) as conn:
            channel = await conn.channel()
            topology = channel.declarator()
            await topology.declare_exchange(exchange_name, ExchangeKind.FANOUT)
            queue = await topology.declare_queue("", exclusive=True, auto_delete=True)
            await topology.bind_queue(queue.name, exchange_name, "")

            logger.info("✓ [%s] Waiting for broadcast messages...", subscriber_name)
            return await self._consume(
                channel, queue.name, subscriber_name, handlers.broadcast_handler(subscriber_name)
            )

    # ==========================================================
    # === Routing (direct) =====================================
    # ==========================================================

    async def direct_exchange_publisher(self, routing_key: str, content: str) -> Message:
        return await self._publish_to(
            self.settings.RABBITMQ_DIRECT_EXCHANGE, ExchangeKind.DIRECT, routing_key, Message(id=200, content=content)
        )

    async def direct_exchange_subscriber(self, routing_keys: Iterable[str], subscriber_name: str) -> int:
        return await self._subscribe_to(
            self.settings.RABBITMQ_DIRECT_EXCHANGE,
            ExchangeKind.DIRECT,
            list(routing_keys),
            subscriber_name,
            handlers.routed_handler(subscriber_name),
        )

    # ==========================================================
    # === Routing (topic) ======================================
    # ==========================================================

    async def topic_exchange_publisher(self, routing_key: str, content: str) -> Message:
        return await self._publish_to(
            self.settings.RABBITMQ_TOPIC_EXCHANGE, ExchangeKind.TOPIC, routing_key, Message(id=300, content=content)
        )

    async def topic_exchange_subscriber(self, binding_keys: Iterable[str] | str, subscriber_name: str) -> int:
        """`*` matches exactly one word, `#` matches zero or more words."""
        keys = [binding_keys] if isinstance(binding_keys, str) else list(binding_keys)
        return await self._subscribe_to(
            self.settings.RABBITMQ_TOPIC_EXCHANGE,
            ExchangeKind.TOPIC,
            keys,
            subscriber_name,
            handlers.pattern_handler(subscriber_name, keys),
        )

    # ==========================================================
    # === Selection / shutdown =================================
    # ==========================================================

    def examples(self) -> Dict[str, Callable[[], Awaitable[object]]]:
        s = self.settings
        return {
            "simple_producer": self.simple_producer,
            "simple_consumer": self.simple_consumer,
            "work_queue_producer": self.work_queue_producer,
            "work_queue_worker": lambda: self.work_queue_worker(s.EXAMPLE_SUBSCRIBER),
            "pubsub_publisher": self.publish_subscribe_publisher,
            "pubsub_subscriber": lambda: self.publish_subscribe_subscriber(s.EXAMPLE_SUBSCRIBER),
            "direct_publisher": lambda: self.direct_exchange_publisher(s.EXAMPLE_ROUTING_KEY, s.EXAMPLE_CONTENT),
            "direct_subscriber": lambda: self.direct_exchange_subscriber(s.EXAMPLE_BINDING_KEYS, s.EXAMPLE_SUBSCRIBER),
            "topic_publisher": lambda: self.topic_exchange_publisher(s.EXAMPLE_ROUTING_KEY, s.EXAMPLE_CONTENT),
            "topic_subscriber": lambda: self.topic_exchange_subscriber(s.EXAMPLE_BINDING_KEYS, s.EXAMPLE_SUBSCRIBER),
        }

    async def run(self, name: str) -> object:
        examples = self.examples()
        if name not in examples:
            raise ValueError(f"unknown example {name!r}; choose one of {sorted(examples)}")
        return await examples[name]()

    async def stop(self) -> None:
        """Stop running consumers; routines still setting up will not subscribe."""
        self.stopping.set()
        for loop in list(self.consumers):
            await loop.stop()

    # ---------- internals ----------
    async def _publish_to(self, exchange_name: str, kind: ExchangeKind, routing_key: str, message: Message) -> Message:
        logger.info("Publishing with routing_key: '%s'", routing_key)
        async with await self.connector(self.settings.RABBITMQ_URL) as conn:
            channel = await conn.channel()
            await channel.declarator().declare_exchange(exchange_name, kind)
            await channel.publisher().publish(exchange_name, routing_key, message)
        return message

    async def _subscribe_to(
        self,
        exchange_name: str,
        kind: ExchangeKind,
        binding_keys: List[str],
        subscriber_name: str,
        handler: Handler,
    ) -> int:
        logger.info("Subscribing to %s with keys %s", exchange_name, binding_keys)
        async with await self.connector(self.settings.RABBITMQ_URL) as conn:
            channel = await conn.channel()
            topology = channel.declarator()
            await topology.declare_exchange(exchange_name, kind)
            queue = await topology.declare_queue("", exclusive=True, auto_delete=True)
            for key in binding_keys:
                await topology.bind_queue(queue.name, exchange_name, key)

            logger.info("✓ [%s] Waiting for messages with keys %s...", subscriber_name, binding_keys)
            return await self._consume(channel, queue.name, subscriber_name, handler)

    async def _consume(self, channel: Channel, queue_name: str, consumer_tag: str, handler: Handler) -> int:
        if self.stopping.is_set():
            logger.info("Stop requested, not subscribing %s to %s", consumer_tag, queue_name)
            return 0
        options = ConsumeOptions(
            prefetch_count=self.settings.RABBITMQ_PREFETCH,
            nack_undecodable=self.settings.RABBITMQ_NACK_UNDECODABLE,
        )
        loop = ConsumerLoop(channel, queue_name, consumer_tag, options)
        self.consumers.append(loop)
        try:
            return await loop.run(handler)
        finally:
            self.consumers.remove(loop)
