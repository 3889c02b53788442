"""Structured logging configuration.

Every event is logged as an event name plus ``extra={...}`` context, e.g.
``logger.info("saga_start", extra={"practitioner_id": ...})``.  The
``ContextFormatter`` renders that context as ``key=value`` pairs after the
message so a single line is enough to drive manual remediation.  Fields that
could carry credentials are masked.
"""

import logging
import sys

from app.core.config import settings

# Attributes every LogRecord has; anything else came from ``extra``
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "taskName"}

SECRET_FIELDS = frozenset(
    {"password", "raw_token", "token", "client_secret", "api_key", "dek", "authorization"}
)
MASK = "***"


class ContextFormatter(logging.Formatter):
    """Append ``extra`` context to the formatted line, masking secrets."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        }
        # "event" repeats the message
        context.pop("event", None)
        if not context:
            return line
        pairs = " ".join(
            f"{key}={MASK if key.lower() in SECRET_FIELDS else value}"
            for key, value in sorted(context.items())
        )
        return f"{line} | {pairs}"


def setup_logging() -> None:
    """Install one stdout handler with the context formatter on the root logger.

    Safe to call more than once; the level comes from ``settings.LOG_LEVEL``.
    """
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(
        ContextFormatter(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        )
    )

    root = logging.getLogger()
    root.setLevel(log_level)
    root.handlers.clear()
    root.addHandler(handler)

    # httpx logs full request URLs at INFO, which include lookup emails
    for noisy in ("httpx", "httpcore", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
