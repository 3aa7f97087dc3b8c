"""Root logging setup for the API process.

Every record carries the id of the request it was emitted under (``-`` outside
a request), so the webhook, contribution and notification lines for one call
can be grepped together.
"""
from contextvars import ContextVar
import logging
from pathlib import Path

from giftregistry.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(request_id)s] %(message)s"

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")

# Chatty at INFO; kept at WARNING unless LOG_LEVEL is DEBUG.
_NOISY_LOGGERS = ("aiosqlite", "sqlalchemy.engine", "httpx", "passlib")


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = request_id_var.get()
        return True


def _has_file_handler(root: logging.Logger, log_path: Path) -> bool:
    target = str(log_path.resolve())
    return any(
        isinstance(handler, logging.FileHandler) and handler.baseFilename == target
        for handler in root.handlers
    )


def configure_logging() -> logging.Logger:
    level = getattr(logging, (settings.log_level or "INFO").upper(), logging.INFO)
    root = logging.getLogger()

    new_handlers: list[logging.Handler] = []
    if not root.handlers:
        new_handlers.append(logging.StreamHandler())
    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        if not _has_file_handler(root, log_path):
            new_handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    formatter = logging.Formatter(LOG_FORMAT)
    for handler in new_handlers:
        handler.setFormatter(formatter)
        handler.addFilter(RequestIdFilter())
        root.addHandler(handler)
    root.setLevel(level)

    if level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    app_logger = logging.getLogger("giftregistry")
    app_logger.setLevel(level)
    return app_logger
