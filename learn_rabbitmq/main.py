from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import Set

from learn_rabbitmq.core.config import Settings
from learn_rabbitmq.core.exceptions import BrokerError
from learn_rabbitmq.core.log import setup_logging
from learn_rabbitmq.core.metrics import start_metrics_server
from learn_rabbitmq.services.tutorial_services import TutorialService

logger = logging.getLogger(__name__)


def _install_signal_handlers(service: TutorialService) -> None:
    """
    SIGINT/SIGTERM stop the running consumers. With nothing subscribed yet
    (connect or topology setup in flight) the routine itself is cancelled.
    """
    loop = asyncio.get_running_loop()
    main_task = asyncio.current_task()
    stopping: Set[asyncio.Task] = set()

    def _stop_done(task: asyncio.Task) -> None:
        stopping.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Failed to stop consumers", exc_info=task.exception())

    def _on_signal() -> None:
        logger.info("Stop requested")
        if not service.consumers and main_task is not None:
            main_task.cancel()
        task = loop.create_task(service.stop())
        stopping.add(task)
        task.add_done_callback(_stop_done)

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _on_signal)
        except (NotImplementedError, RuntimeError):
            # Windows / non-main thread: Ctrl+C still cancels asyncio.run
            pass


async def run(service: TutorialService) -> object:
    settings = service.settings
    _install_signal_handlers(service)

    logger.info("🐰 RabbitMQ Learning Examples")
    logger.info("Current RabbitMQ Config: %s", settings.describe())

    result = await service.run(settings.EXAMPLE)
    logger.info("✓ Done!")
    return result


def main() -> int:
    settings = Settings()
    setup_logging(settings)

    service = TutorialService(settings)
    if settings.EXAMPLE not in service.examples():
        logger.error("unknown EXAMPLE %r; choose one of %s", settings.EXAMPLE, sorted(service.examples()))
        return 2

    start_metrics_server(settings.METRICS_PORT)
    try:
        asyncio.run(run(service))
    except BrokerError as e:
        logger.error("[%s] %s", type(e).__name__, e)
        return 1
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("interrupted")
    return 0


if __name__ == "__main__":
    sys.exit(main())
