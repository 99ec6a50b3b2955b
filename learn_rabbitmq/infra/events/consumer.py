from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from aio_pika.abc import AbstractIncomingMessage, AbstractQueueIterator
from aio_pika.exceptions import (
    AMQPError,
    ChannelInvalidStateError,
    ChannelNotFoundEntity,
    DuplicateConsumerTag,
)

from learn_rabbitmq.core.exceptions import (
    ChannelError,
    DecodeError,
    DeliveryAlreadySettled,
    SubscriptionError,
)
from learn_rabbitmq.core.metrics import DELIVERIES
from learn_rabbitmq.schemas.message_schemas import Message, decode
from learn_rabbitmq.schemas.topology_schemas import ConsumeOptions

if TYPE_CHECKING:
    from learn_rabbitmq.infra.events.rabbitmq import Channel

logger = logging.getLogger(__name__)

Handler = Callable[[Message, str], Awaitable[None]]


class ConsumerState(str, Enum):
    IDLE = "idle"
    SUBSCRIBED = "subscribed"
    DELIVERING = "delivering"
    CLOSED = "closed"


@dataclass
class Delivery:
    """One inbound message; must be settled once with ack() or nack()."""

    routing_key: str
    delivery_tag: int
    body: bytes
    redelivered: bool = False
    auto_acked: bool = False
    raw: Optional[AbstractIncomingMessage] = field(default=None, repr=False)
    settled: bool = False

    @classmethod
    def from_incoming(cls, message: AbstractIncomingMessage, auto_acked: bool = False) -> "Delivery":
        return cls(
            routing_key=message.routing_key or "",
            delivery_tag=message.delivery_tag or 0,
            body=message.body,
            redelivered=bool(message.redelivered),
            auto_acked=auto_acked,
            raw=message,
            settled=auto_acked,
        )

    def decode(self) -> Message:
        return decode(self.body)

    async def ack(self) -> None:
        if self.auto_acked:
            return
        self._settle()
        try:
            await self.raw.ack()
        except (AMQPError, ChannelInvalidStateError) as exc:
            raise ChannelError(f"ack of delivery {self.delivery_tag} failed: {exc!r}") from exc

    async def nack(self, requeue: bool = False) -> None:
        if self.auto_acked:
            return
        self._settle()
        try:
            await self.raw.nack(requeue=requeue)
        except (AMQPError, ChannelInvalidStateError) as exc:
            raise ChannelError(f"nack of delivery {self.delivery_tag} failed: {exc!r}") from exc

    def _settle(self) -> None:
        if self.settled:
            raise DeliveryAlreadySettled(f"delivery {self.delivery_tag} already settled")
        self.settled = True


class DeliveryStream:
    """
    Lazy, pull-based sequence of deliveries for one consumer tag.

        async with await channel.consume("task_queue", "worker_1") as stream:
            async for delivery in stream:
                ...

    Iteration waits without bound for the next delivery and ends when the
    stream is cancelled or its channel/connection closes. A closed stream
    cannot be reopened; call consume() again on a live channel.
    """

    def __init__(
        self,
        channel: "Channel",
        queue_name: str,
        consumer_tag: str,
        options: ConsumeOptions,
    ) -> None:
        self.channel = channel
        self.queue_name = queue_name
        self.consumer_tag = consumer_tag
        self.options = options
        self.state = ConsumerState.IDLE
        self._iterator: Optional[AbstractQueueIterator] = None

    @property
    def is_closed(self) -> bool:
        return self.state is ConsumerState.CLOSED

    async def open(self) -> None:
        if self.state is not ConsumerState.IDLE:
            raise SubscriptionError(f"consumer {self.consumer_tag!r} cannot be restarted")
        self.channel.ensure_open()
        if not self.consumer_tag:
            raise SubscriptionError("consumer tag must not be empty")
        if self.consumer_tag in self.channel.consumer_tags:
            raise SubscriptionError(f"consumer tag {self.consumer_tag!r} already active on this channel")

        async with self.channel.request(f"consume {self.queue_name}") as ch:
            try:
                queue = self.channel.queues.get(self.queue_name)
                if queue is None:
                    queue = await ch.get_queue(self.queue_name, ensure=True)
                if self.options.prefetch_count is not None:
                    await ch.set_qos(prefetch_count=self.options.prefetch_count)
                iterator = queue.iterator(consumer_tag=self.consumer_tag, no_ack=self.options.no_ack)
                await iterator.consume()
            except ChannelNotFoundEntity as exc:
                raise SubscriptionError(f"queue {self.queue_name!r} does not exist") from exc
            except DuplicateConsumerTag as exc:
                raise SubscriptionError(f"consumer tag {self.consumer_tag!r} already in use") from exc

        self._iterator = iterator
        self.channel.consumer_tags.add(self.consumer_tag)
        self.channel.streams.append(self)
        self.state = ConsumerState.SUBSCRIBED
        logger.info(
            "Subscribed to %s as %s", self.queue_name, self.consumer_tag,
            extra={"queue": self.queue_name, "consumer_tag": self.consumer_tag},
        )

    def __aiter__(self) -> "DeliveryStream":
        return self

    async def __anext__(self) -> Delivery:
        if self.state is ConsumerState.IDLE:
            raise SubscriptionError("consume() was not called")
        if self.state is ConsumerState.CLOSED or self.channel.is_closed:
            self.mark_closed()
            raise StopAsyncIteration

        self.state = ConsumerState.SUBSCRIBED
        try:
            message = await self._iterator.__anext__()
        except StopAsyncIteration:
            self.mark_closed()
            raise
        if self.state is ConsumerState.CLOSED:
            # closed while waiting; the broker redelivers it elsewhere
            raise StopAsyncIteration

        self.state = ConsumerState.DELIVERING
        return Delivery.from_incoming(message, auto_acked=self.options.no_ack)

    def mark_closed(self) -> None:
        if self.state is ConsumerState.CLOSED:
            return
        self.state = ConsumerState.CLOSED
        self.channel.consumer_tags.discard(self.consumer_tag)
        if self in self.channel.streams:
            self.channel.streams.remove(self)

    async def cancel(self) -> None:
        """Stop the subscription; pending iteration ends."""
        if self.state is ConsumerState.CLOSED:
            return
        iterator = self._iterator
        self.mark_closed()
        if iterator is None or self.channel.channel.is_closed:
            return
        try:
            await iterator.close()
            logger.info("Consumer %s cancelled", self.consumer_tag)
        except (AMQPError, ChannelInvalidStateError):
            logger.warning("Consumer %s: cancel on a dead channel", self.consumer_tag)

    async def __aenter__(self) -> "DeliveryStream":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.cancel()


class ConsumerLoop:
    """
    Subscribe to a queue and process deliveries one at a time, in dispatch
    order: decode, await the handler, ack.
    - Undecodable body: logged, nacked without requeue (or left unacked
      when `nack_undecodable` is off), loop continues.
    - Handler error: logged, nacked (`requeue_on_error`), loop continues.
    """

    def __init__(
        self,
        channel: "Channel",
        queue_name: str,
        consumer_tag: str,
        options: Optional[ConsumeOptions] = None,
    ) -> None:
        self.channel = channel
        self.queue_name = queue_name
        self.consumer_tag = consumer_tag
        self.options = options or ConsumeOptions()
        self.stream: Optional[DeliveryStream] = None
        self.processed = 0
        self.stopped = False

    @property
    def state(self) -> ConsumerState:
        if self.stream is None:
            return ConsumerState.CLOSED if self.stopped else ConsumerState.IDLE
        return self.stream.state

    async def run(self, handler: Handler) -> int:
        """Consume until the stream closes; returns the number of acked deliveries."""
        if self.stream is not None:
            raise SubscriptionError(f"consumer {self.consumer_tag!r} cannot be restarted")
        if self.stopped:
            logger.info("Consumer %s stopped before subscribing", self.consumer_tag)
            return self.processed

        self.stream = await self.channel.consume(self.queue_name, self.consumer_tag, self.options)
        if self.stopped:
            # stop() landed while the subscription was being opened
            await self.stream.cancel()
        async with self.stream:
            async for delivery in self.stream:
                await self._process(delivery, handler)
        logger.info("Consumer %s closed after %d message(s)", self.consumer_tag, self.processed)
        return self.processed

    async def stop(self) -> None:
        """Cancel the subscription; before run() it keeps run() from subscribing."""
        self.stopped = True
        if self.stream is not None:
            await self.stream.cancel()

    async def _process(self, delivery: Delivery, handler: Handler) -> None:
        extra = {
            "queue": self.queue_name,
            "consumer_tag": self.consumer_tag,
            "routing_key": delivery.routing_key,
            "delivery_tag": delivery.delivery_tag,
        }
        try:
            message = delivery.decode()
        except DecodeError as exc:
            logger.warning("✗ [%s] Failed to parse message: %s", self.consumer_tag, exc, extra=extra)
            DELIVERIES.labels(self.queue_name, "undecodable").inc()
            if self.options.nack_undecodable:
                await delivery.nack(requeue=False)
            self._settled()
            return

        try:
            await handler(message, delivery.routing_key)
        except Exception:
            logger.exception("Handler error on %s", self.queue_name, extra=extra)
            DELIVERIES.labels(self.queue_name, "failed").inc()
            await delivery.nack(requeue=self.options.requeue_on_error)
            self._settled()
            return

        await delivery.ack()
        DELIVERIES.labels(self.queue_name, "acked").inc()
        self.processed += 1
        self._settled()

    def _settled(self) -> None:
        if self.stream is not None and self.stream.state is ConsumerState.DELIVERING:
            self.stream.state = ConsumerState.SUBSCRIBED
