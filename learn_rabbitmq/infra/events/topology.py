from __future__ import annotations

import logging
from typing import TYPE_CHECKING, List

import aio_pika
from aio_pika.abc import AbstractQueue

from learn_rabbitmq.core.exceptions import ChannelError
from learn_rabbitmq.infra.events.routing import route
from learn_rabbitmq.schemas.topology_schemas import Binding, ExchangeKind, QueueSpec

if TYPE_CHECKING:
    from learn_rabbitmq.infra.events.rabbitmq import Channel

logger = logging.getLogger(__name__)

_AIO_KINDS = {
    ExchangeKind.DIRECT: aio_pika.ExchangeType.DIRECT,
    ExchangeKind.FANOUT: aio_pika.ExchangeType.FANOUT,
    ExchangeKind.TOPIC: aio_pika.ExchangeType.TOPIC,
}


class TopologyDeclarator:
    """
    Idempotent declaration of queues, exchanges and bindings on one Channel.
    Every call waits for the broker's declare-ok / bind-ok.
    """

    def __init__(self, channel: "Channel") -> None:
        self.channel = channel

    # ---------- queues ----------
    async def declare_queue(
        self,
        name: str = "",
        durable: bool = False,
        exclusive: bool = False,
        auto_delete: bool = False,
    ) -> QueueSpec:
        """
        Declare a queue. With an empty `name` the broker generates a unique
        one; use the returned spec's name for every later bind/consume.
        """
        async with self.channel.request(f"declare queue {name!r}") as ch:
            queue: AbstractQueue = await ch.declare_queue(
                name,
                durable=durable,
                exclusive=exclusive,
                auto_delete=auto_delete,
            )
        self.channel.queues[queue.name] = queue
        logger.info(
            "✓ Queue %s ready", queue.name,
            extra={"durable": durable, "exclusive": exclusive, "auto_delete": auto_delete},
        )
        return QueueSpec(name=queue.name, durable=durable, exclusive=exclusive, auto_delete=auto_delete)

    # ---------- exchanges ----------
    async def declare_exchange(self, name: str, kind: ExchangeKind | str) -> None:
        kind = ExchangeKind(kind)
        if not name:
            raise ChannelError("the default exchange cannot be declared")

        known = self.channel.exchanges.get(name)
        if known is not None and known is not kind:
            raise ChannelError(
                f"exchange {name!r} already declared as {known.value}, not {kind.value}"
            )

        async with self.channel.request(f"declare exchange {name!r}") as ch:
            await ch.declare_exchange(name, _AIO_KINDS[kind])
        self.channel.exchanges[name] = kind
        logger.info("✓ Exchange '%s' (type: %s) ready", name, kind.value.upper())

    # ---------- bindings ----------
    async def bind_queue(self, queue_name: str, exchange_name: str, pattern: str = "") -> Binding:
        kind = self.channel.exchanges.get(exchange_name)
        if kind is ExchangeKind.FANOUT:
            pattern = ""
        binding = Binding(queue_name=queue_name, exchange_name=exchange_name, routing_pattern=pattern)
        if binding in self.channel.bindings:
            logger.debug("binding %s already in place", binding)
            return binding

        async with self.channel.request(f"bind {queue_name!r} to {exchange_name!r}") as ch:
            queue = self.channel.queues.get(queue_name)
            if queue is None:
                queue = await ch.get_queue(queue_name, ensure=True)
                self.channel.queues[queue_name] = queue
            await queue.bind(exchange_name, routing_key=pattern)
        self.channel.bindings.append(binding)
        logger.info("✓ Queue '%s' bound to '%s' with key '%s'", queue_name, exchange_name, pattern)
        return binding

    # ---------- helpers ----------
    def bindings_for(self, exchange_name: str) -> List[Binding]:
        return [b for b in self.channel.bindings if b.exchange_name == exchange_name]

    def expected_queues(self, exchange_name: str, routing_key: str) -> List[str]:
        """Queues bound through this channel that the broker will route `routing_key` to."""
        kind = self.channel.exchanges.get(exchange_name)
        if kind is None:
            return []
        return route(kind, self.bindings_for(exchange_name), routing_key)
