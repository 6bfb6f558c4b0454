"""
Event-style logging: a short event name followed by key=value fields.

Wraps the standard library ``logging`` module so every component logs an
event name plus keyword fields instead of free-form sentences. Two output
formats are supported: human-readable key=value pairs (default) and one
JSON object per line for log aggregators.

The ``StructuredFormatter`` reads the ``structured_kv`` extra attached by
``Logger`` and appends it as key=value pairs. Installed on the root handler
by the CLI, it also formats plain ``logging.getLogger(__name__)`` calls
from the query and utils layers.

Examples:
    ```python
    from relayshadow.core.logger import Logger

    logger = Logger("dvm")
    logger.info("job_received", event_id="ab12", request_type="recommend")
    # Output: info dvm job_received event_id=ab12 request_type=recommend
    ```
"""

import datetime
import json
import logging
from typing import Any, ClassVar


_NEEDS_QUOTING = frozenset(" =\"'")


def _truncate(value: str, max_value_length: int | None) -> str:
    if max_value_length and len(value) > max_value_length:
        return value[:max_value_length] + f"...<truncated {len(value) - max_value_length} chars>"
    return value


def format_kv_pairs(
    kwargs: dict[str, Any],
    max_value_length: int | None = 1000,
    prefix: str = " ",
) -> str:
    """Render ``kwargs`` as `` k=v k2=v2`` for appending to a log line.

    Values longer than ``max_value_length`` are cut (``None`` keeps them
    whole). A value that is empty or holds a space, ``=`` or a quote is
    double-quoted with backslash escaping, so ``reason="blocked: spam"``
    stays one field. An empty mapping renders as ``""``.
    """
    if not kwargs:
        return ""

    parts = []
    for key, value in kwargs.items():
        text = _truncate(str(value), max_value_length)
        if text and _NEEDS_QUOTING.isdisjoint(text):
            parts.append(f"{key}={text}")
            continue
        quoted = text.replace("\\", "\\\\").replace('"', '\\"')
        parts.append(f'{key}="{quoted}"')
    return prefix + " ".join(parts)


class StructuredFormatter(logging.Formatter):
    """Formats log records as ``level name message key=value ...``."""

    def format(self, record: logging.LogRecord) -> str:
        base = f"{record.levelname.lower()} {record.name} {record.getMessage()}"
        extra: dict[str, Any] = getattr(record, "structured_kv", {})
        if extra:
            base += format_kv_pairs(extra)
        if record.exc_info:
            base += "\n" + self.formatException(record.exc_info)
        return base


class Logger:
    """Thin wrapper over ``logging.Logger`` taking fields as keyword arguments.

    Examples:
        ```python
        logger = Logger("session")
        logger.warning("publish_rejected", url="wss://relay.example.com", reason="spam")
        ```
    """

    _DEFAULT_MAX_VALUE_LENGTH: ClassVar[int] = 1000

    def __init__(
        self,
        name: str,
        *,
        json_output: bool = False,
        max_value_length: int | None = None,
    ) -> None:
        """``json_output`` switches to one JSON object per record; values
        longer than ``max_value_length`` (1000 unless given) are cut.
        """
        if max_value_length is None:
            max_value_length = self._DEFAULT_MAX_VALUE_LENGTH
        self._logger = logging.getLogger(name)
        self._json_output = json_output
        self._max_value_length = max_value_length

    @property
    def name(self) -> str:
        return self._logger.name

    def _format_json(self, msg: str, level: str, kwargs: dict[str, Any]) -> str:
        record = {
            "timestamp": datetime.datetime.now(datetime.UTC).isoformat(),
            "level": level,
            "service": self._logger.name,
            "message": msg,
            **kwargs,
        }
        return json.dumps(record, default=str)

    def _make_extra(self, kwargs: dict[str, Any]) -> dict[str, Any]:
        if not kwargs:
            return {}
        limit = self._max_value_length
        fields: dict[str, Any] = {}
        for key, value in kwargs.items():
            text = str(value)
            fields[key] = _truncate(text, limit) if limit and len(text) > limit else value
        return {"structured_kv": fields}

    def _log(self, level: int, msg: str, kwargs: dict[str, Any], *, exc_info: bool = False) -> None:
        if not self._logger.isEnabledFor(level):
            return
        if self._json_output:
            name = "error" if exc_info else logging.getLevelName(level).lower()
            self._logger.log(level, self._format_json(msg, name, kwargs), exc_info=exc_info)
        else:
            self._logger.log(level, msg, extra=self._make_extra(kwargs), exc_info=exc_info)

    def debug(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, kwargs)

    def info(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, kwargs)

    def warning(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, msg, kwargs)

    def error(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, kwargs)

    def critical(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.CRITICAL, msg, kwargs)

    def exception(self, msg: str, **kwargs: Any) -> None:
        """``error`` plus the traceback of the exception being handled."""
        self._log(logging.ERROR, msg, kwargs, exc_info=True)
