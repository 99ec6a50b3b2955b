from __future__ import annotations
from typing import Awaitable, Callable, Optional, Protocol

from learn_rabbitmq.schemas.message_schemas import Message
from learn_rabbitmq.schemas.topology_schemas import PublishOptions


class MessagePublisher(Protocol):
    async def publish(
        self,
        exchange_name: str,
        routing_key: str,
        message: Message,
        options: Optional[PublishOptions] = None,
    ) -> None:
        """
        Minimal contract for anything that publishes messages.
        """
        ...


class MessageConsumer(Protocol):
    async def run(self, handler: Callable[[Message, str], Awaitable[None]]) -> int:
        """
        Minimal contract for a consumer loop: process deliveries until closed.
        """
        ...

    async def stop(self) -> None:
        ...


class Connector(Protocol):
    async def __call__(self, url: str):
        """Open a broker Connection from a URL."""
        ...
