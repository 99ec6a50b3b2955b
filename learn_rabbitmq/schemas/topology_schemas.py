from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ExchangeKind(str, Enum):
    DIRECT = "direct"
    FANOUT = "fanout"
    TOPIC = "topic"


class QueueSpec(BaseModel):
    name: str = Field("", description="Empty means the broker picks a unique name")
    durable: bool = False
    exclusive: bool = False
    auto_delete: bool = False


class Binding(BaseModel):
    model_config = {"frozen": True}

    queue_name: str
    exchange_name: str
    routing_pattern: str = ""


class PublishOptions(BaseModel):
    persistent: bool = False
    content_type: str = "application/json"


class ConsumeOptions(BaseModel):
    """
    Options for one subscription.
    - prefetch_count: unacked deliveries the broker may push (None keeps channel QoS).
    - nack_undecodable: nack (no requeue) bodies that fail to decode,
      instead of leaving them unacknowledged.
    - requeue_on_error: requeue a delivery whose handler raised.
    """

    prefetch_count: Optional[int] = Field(None, ge=0)
    no_ack: bool = False
    nack_undecodable: bool = True
    requeue_on_error: bool = False
