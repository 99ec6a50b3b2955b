from __future__ import annotations

import logging
import sys, json
from uvicorn.logging import ColourizedFormatter
from learn_rabbitmq.core.config import Settings

_RESERVED = (
    "message", "args", "levelname", "levelno", "name", "pathname", "filename",
    "module", "lineno", "funcName", "msg", "exc_info", "exc_text", "stack_info",
    "created", "msecs", "relativeCreated", "thread", "threadName",
    "processName", "process", "taskName",
)


class _JsonLogFormatter(logging.Formatter):
    def __init__(self, service: str, datefmt: str | None = None) -> None:
        super().__init__(datefmt=datefmt)
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname.upper(),
            "logger": record.name,
            "msg": record.getMessage(),
            "service": self.service,
        }

        # Merge extras (queue, exchange, routing_key, delivery_tag, etc.)
        for k, v in record.__dict__.items():
            if k not in log_obj and k not in _RESERVED:
                log_obj[k] = v

        if record.exc_info:
            log_obj["exc"] = self.formatException(record.exc_info)

        return json.dumps(log_obj, ensure_ascii=False, default=str)


def setup_logging(settings: Settings) -> None:
    """Configure le logging pour le process (stdout, json ou texte)."""
    log_level = settings.LOG_LEVEL.upper()
    log_format = settings.LOG_FORMAT.lower()

    handler = logging.StreamHandler(sys.stdout)

    if log_format == "json":
        formatter = _JsonLogFormatter(settings.APP_NAME, "%Y-%m-%dT%H:%M:%S%z")
    else:
        formatter = ColourizedFormatter("%(levelprefix)s %(name)s - %(message)s", use_colors=True)

    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.addHandler(handler)

    # Moins de bruit
    logging.getLogger("aio_pika").setLevel(logging.WARNING)
    logging.getLogger("aiormq").setLevel(logging.WARNING)
