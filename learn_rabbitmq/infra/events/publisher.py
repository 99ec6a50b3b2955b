from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

import aio_pika
from aio_pika.abc import AbstractExchange
from aio_pika.exceptions import ChannelNotFoundEntity, DeliveryError

from learn_rabbitmq.core.exceptions import ChannelError, PublishError, RoutingError
from learn_rabbitmq.core.metrics import MESSAGES_PUBLISHED, exchange_label
from learn_rabbitmq.schemas.message_schemas import Message, encode
from learn_rabbitmq.schemas.topology_schemas import PublishOptions

if TYPE_CHECKING:
    from learn_rabbitmq.infra.events.rabbitmq import Channel

logger = logging.getLogger(__name__)

DEFAULT_EXCHANGE = ""
MAX_ROUTING_KEY_BYTES = 255


class Publisher:
    """
    Serialize a Message and hand it to the broker.
    - `exchange_name == ""` is the default exchange: the routing key must be
      an existing queue name, an unroutable publish raises RoutingError.
    - Unknown named exchange raises RoutingError, nothing is enqueued.
    Returns once the broker confirmed receipt (publisher confirms), which is
    not a durable-storage guarantee even with `persistent=True`.
    """

    def __init__(self, channel: "Channel") -> None:
        self.channel = channel

    async def publish(
        self,
        exchange_name: str,
        routing_key: str,
        message: Message,
        options: Optional[PublishOptions] = None,
    ) -> None:
        options = options or PublishOptions()
        if len(routing_key.encode("utf-8")) > MAX_ROUTING_KEY_BYTES:
            raise PublishError(f"routing key longer than {MAX_ROUTING_KEY_BYTES} bytes")

        body = encode(message)
        amqp_message = aio_pika.Message(
            body=body,
            content_type=options.content_type,
            delivery_mode=(
                aio_pika.DeliveryMode.PERSISTENT if options.persistent else aio_pika.DeliveryMode.NOT_PERSISTENT
            ),
        )
        is_default = exchange_name == DEFAULT_EXCHANGE

        try:
            async with self.channel.request(f"publish to {exchange_label(exchange_name)}") as ch:
                try:
                    exchange = await self._exchange(ch, exchange_name)
                    # mandatory on the default exchange: a missing queue comes back as a return
                    await exchange.publish(amqp_message, routing_key=routing_key, mandatory=is_default)
                except ChannelNotFoundEntity as exc:
                    raise RoutingError(f"exchange {exchange_name!r} does not exist") from exc
                except DeliveryError as exc:
                    raise RoutingError(f"no queue named {routing_key!r} for the default exchange") from exc
        except ChannelError as exc:
            raise PublishError(str(exc)) from exc

        MESSAGES_PUBLISHED.labels(exchange_label(exchange_name)).inc()
        logger.info(
            "✓ Sent message: %s", message,
            extra={"exchange": exchange_label(exchange_name), "routing_key": routing_key, "bytes": len(body)},
        )
        if not is_default:
            self._log_preview(exchange_name, routing_key)

    async def _exchange(self, ch, exchange_name: str) -> AbstractExchange:
        if exchange_name == DEFAULT_EXCHANGE:
            return ch.default_exchange
        # passive check unless this channel declared it
        return await ch.get_exchange(exchange_name, ensure=exchange_name not in self.channel.exchanges)

    def _log_preview(self, exchange_name: str, routing_key: str) -> None:
        topology = self.channel.declarator()
        if topology.bindings_for(exchange_name):
            logger.debug(
                "routing preview: %s -> %s", routing_key, topology.expected_queues(exchange_name, routing_key),
                extra={"exchange": exchange_name},
            )
