"""Structured logging configuration."""

import logging
import sys

from pythonjsonlogger import jsonlogger

from hcm_gateway.infra.error_handler import redact

LOGGER_NAME = "hcm_gateway"


class RedactingFilter(logging.Filter):
    """Scrub tokens and secrets from log messages and string extras."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.args:
            record.msg = record.getMessage()
            record.args = None
        record.msg = redact(str(record.msg), max_length=4000)

        for key, value in list(record.__dict__.items()):
            if key in ("msg", "args", "exc_info", "exc_text", "stack_info"):
                continue
            if isinstance(value, str) and key not in _STANDARD_ATTRS:
                setattr(record, key, redact(value, max_length=4000))
        return True


_STANDARD_ATTRS = set(vars(logging.makeLogRecord({})).keys())


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Setup structured JSON logging for the gateway."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Remove existing handlers
    logger.handlers = []
    logger.propagate = False

    formatter = jsonlogger.JsonFormatter(
        "%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(RedactingFilter())
    logger.addHandler(console_handler)

    # httpx logs full URLs at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn").setLevel(logging.INFO)

    return logger
