"""
Typed failures surfaced by the client.

Broker-protocol failures are translated into these at the seam where the
aio-pika call is made (``raise ... from exc``) so callers never have to
know about aiormq exception classes.
"""


class BrokerError(Exception):
    """Base class for every error raised by learn_rabbitmq."""
    pass


class BrokerConnectionError(BrokerError):
    """Unreachable broker, bad URL, auth or protocol negotiation failure.

    Fatal to the whole session; never retried automatically.
    """
    pass


class ChannelError(BrokerError):
    """Broker-side channel exception or use of a closed channel.

    Fatal to that channel only.
    """
    pass


class PublishError(BrokerError):
    """The broker did not accept a publish."""
    pass


class RoutingError(PublishError):
    """Unknown exchange, or the default exchange names no existing queue."""
    pass


class DecodeError(BrokerError):
    """Delivery body is not a valid message."""
    pass


class SubscriptionError(BrokerError):
    """Consumer could not be created (duplicate tag, missing queue, reuse)."""
    pass


class DeliveryAlreadySettled(BrokerError):
    """A delivery was acked or nacked twice."""
    pass
