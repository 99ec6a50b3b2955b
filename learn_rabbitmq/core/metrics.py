from __future__ import annotations

import logging

from prometheus_client import Counter, start_http_server

logger = logging.getLogger(__name__)

# --- Prometheus ---
MESSAGES_PUBLISHED = Counter(
    "amqp_messages_published_total", "Messages accepted by the broker", ["exchange"]
)
DELIVERIES = Counter(
    "amqp_deliveries_total", "Deliveries settled by consumer loops", ["queue", "outcome"]
)


def exchange_label(exchange_name: str) -> str:
    return exchange_name or "(default)"


def start_metrics_server(port: int) -> bool:
    """Expose /metrics on `port`; 0 disables it."""
    if port <= 0:
        return False
    start_http_server(port)
    logger.info("metrics exposed on :%s/metrics", port)
    return True
