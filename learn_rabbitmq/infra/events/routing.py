# learn_rabbitmq/infra/events/routing.py
"""
Routing rules of the three exchange kinds, as applied by the broker.

The broker does the real routing. These functions mirror its rules so the
client can preview which of the bindings it declared will receive a
publish, and so the rules themselves can be tested without a broker.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Iterable, List, Tuple

from learn_rabbitmq.schemas.topology_schemas import Binding, ExchangeKind


def direct_matches(pattern: str, routing_key: str) -> bool:
    return pattern == routing_key


@lru_cache(maxsize=1024)
def _words(value: str) -> Tuple[str, ...]:
    return tuple(value.split("."))


def topic_matches(pattern: str, routing_key: str) -> bool:
    """
    Anchored match of a dot-separated routing key against a topic pattern.
    `*` matches exactly one word, `#` matches zero or more words.
    """
    return _match(_words(pattern), _words(routing_key))


@lru_cache(maxsize=4096)
def _match(pattern: Tuple[str, ...], key: Tuple[str, ...]) -> bool:
    if not pattern:
        return not key

    head, rest = pattern[0], pattern[1:]
    if head == "#":
        # `#` swallows 0..len(key) words
        return any(_match(rest, key[i:]) for i in range(len(key) + 1))
    if not key:
        return False
    if head == "*" or head == key[0]:
        return _match(rest, key[1:])
    return False


def binding_matches(kind: ExchangeKind, pattern: str, routing_key: str) -> bool:
    if kind is ExchangeKind.FANOUT:
        return True
    if kind is ExchangeKind.DIRECT:
        return direct_matches(pattern, routing_key)
    return topic_matches(pattern, routing_key)


def route(kind: ExchangeKind, bindings: Iterable[Binding], routing_key: str) -> List[str]:
    """
    Queue names that receive a message published with `routing_key`.
    Each queue appears once even if several of its bindings match,
    in order of its first binding.
    """
    queues: List[str] = []
    for b in bindings:
        if b.queue_name in queues:
            continue
        if binding_matches(kind, b.routing_pattern, routing_key):
            queues.append(b.queue_name)
    return queues
