"""
Structured logging for vm-manager.

Every record is one JSON object on stderr. Keyword arguments given to the
logging methods (``image_name``, ``host_port``, ``command``, ...) become
top-level keys of that object, so stdout stays free for plans and commands.
"""

import json
import logging
import sys
from typing import Any, Dict
from datetime import datetime, timezone

# Attributes every LogRecord carries; anything else arrived through ``extra``
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "taskName"}


class StructuredLogger:
    """
    A logger that outputs logs in a structured JSON format.

    Args:
        name: Name of the underlying ``logging`` logger
        level: Initial log level
    """

    def __init__(self, name: str, level: int = logging.INFO):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)
        self.logger.propagate = False

        # Re-creating a logger of the same name must not stack handlers
        self.logger.handlers.clear()

        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(self.JsonFormatter())
        self.logger.addHandler(handler)

    class JsonFormatter(logging.Formatter):
        """Renders a record and its structured fields as a JSON line."""

        def format(self, record: logging.LogRecord) -> str:
            log_entry: Dict[str, Any] = {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "message": record.getMessage(),
            }

            if record.exc_info:
                log_entry["exception"] = self.formatException(record.exc_info)

            log_entry.update(
                (key, value)
                for key, value in record.__dict__.items()
                if key not in _RECORD_ATTRS
            )

            # Paths and option tuples are written with str()
            return json.dumps(log_entry, default=str)

    def set_level(self, level: int) -> None:
        self.logger.setLevel(level)

    def debug(self, message: str, **fields: Any) -> None:
        self.logger.debug(message, extra=fields)

    def info(self, message: str, **fields: Any) -> None:
        self.logger.info(message, extra=fields)

    def warning(self, message: str, **fields: Any) -> None:
        self.logger.warning(message, extra=fields)

    def error(self, message: str, exc_info: bool = False, **fields: Any) -> None:
        self.logger.error(message, exc_info=exc_info, extra=fields)


logger = StructuredLogger("vm_manager")
