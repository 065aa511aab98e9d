"""
Logging helpers and identifier generation shared by the connection manager and
its transports.

Key Components:
    - MessageLogger: Logger adapter that injects per-client context
    - ClientFormatter: Log formatter that renders that context as key=value pairs
    - generate_client_identifier(): Random client identifier for a namespace
"""
import logging
import uuid
from typing import Any

logger = logging.getLogger(__name__)

CONTEXT_FIELDS = ("client_id", "broker", "topic", "state")


class ClientFormatter(logging.Formatter):
    """
    Log formatter that appends client context to the formatted message.

    Any of ``CONTEXT_FIELDS`` present on the record (injected through
    ``extra=...`` or a ``MessageLogger``) is appended as ``key=value``.

    Example:
        >>> handler.setFormatter(ClientFormatter("%(levelname)-8s %(message)s"))
        >>> logger.info("Connected", extra={"client_id": "web_X1_1a2b3c4d"})
        # Output: "INFO     Connected client_id=web_X1_1a2b3c4d"
    """

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        context = [
            f"{key}={getattr(record, key)}"
            for key in CONTEXT_FIELDS
            if getattr(record, key, None) is not None
        ]
        if context:
            return f"{message} {' '.join(context)}"
        return message


class MessageLogger(logging.LoggerAdapter):
    """
    Logger adapter that attaches base context (e.g. ``client_id``) to every record.

    Attributes:
        logger: The underlying Logger instance
        extra: Base context dictionary attached to all log records
        merge_extra: If True, merge call-time extras with base extras; if False, replace
    """

    def __init__(
        self,
        logger: logging.Logger,
        extra: dict[str, Any] | None = None,
        merge_extra: bool = False,
    ):
        super().__init__(logger, extra or {})
        self.logger = logger
        self.extra = extra or {}
        self.merge_extra = merge_extra

    def process(self, msg, kwargs):
        if self.merge_extra and "extra" in kwargs:
            kwargs["extra"] = {**self.extra, **kwargs["extra"]}
        else:
            kwargs["extra"] = dict(self.extra)
        return msg, kwargs


def generate_client_identifier(namespace: str = "") -> str:
    """
    Generate a client identifier of the form ``web_{namespace}_{8 hex chars}``.

    The suffix carries 32 random bits, enough to keep concurrent browser/demo
    clients sharing one namespace from kicking each other off the broker.

    Example:
        >>> generate_client_identifier("X1")
        'web_X1_5f0c9a2e'
    """
    return f"web_{namespace}_{uuid.uuid4().hex[:8]}"
