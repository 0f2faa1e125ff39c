"""Centralized logging setup."""

import logging
import sys
from contextvars import ContextVar


request_id_var: ContextVar[str] = ContextVar("request_id", default="")

LOG_FORMAT = "[%(asctime)s.%(msecs)03d] [%(levelname)-5s] [%(name)-20s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

NOISY_LOGGERS = ("urllib3", "httpx", "httpcore", "stripe")


def get_request_id() -> str:
    return request_id_var.get("")


def _has_stdout_handler(logger: logging.Logger) -> bool:
    return any(
        isinstance(handler, logging.StreamHandler)
        and getattr(handler, "stream", None) is sys.stdout
        for handler in logger.handlers
    )


def configure_logging(*, environment: str, log_level: str) -> int:
    level = getattr(logging, (log_level or "INFO").upper(), logging.INFO)

    logger = logging.getLogger()
    logger.setLevel(level)

    if not _has_stdout_handler(logger):
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uv_logger = logging.getLogger(name)
        uv_logger.handlers.clear()
        uv_logger.propagate = True
        uv_logger.setLevel(level)

    # RequestLoggingMiddleware already logs every request
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    if environment == "development":
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    return level
