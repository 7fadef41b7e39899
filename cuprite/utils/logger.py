# cuprite/utils/logger.py
"""
JSON logging for cuprite.

Every record is written to stdout as one JSON object tagged with the
session id of the target being driven (see `log_sinks`). Structured
fields, whether bound to an adapter or passed through ``extra=``, are
grouped under ``extra_data`` so they never clash with `LogRecord`
attributes.
"""
import logging
import os
import sys
from typing import Any, MutableMapping, Optional

from pythonjsonlogger import jsonlogger

from cuprite.utils.log_sinks import SessionIdFilter

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(session_id)s %(message)s"

_handler: Optional[logging.Handler] = None


class StructuredLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter carrying bound fields into every record.

    Call-site ``extra`` fields are merged over the bound ones.
    """

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        fields = dict(self.extra or {})
        fields.update(kwargs.get("extra") or {})
        if fields:
            kwargs["extra"] = {"extra_data": fields}
        return msg, kwargs

    def bind(self, **fields: Any) -> "StructuredLoggerAdapter":
        """Returns a sibling adapter with ``fields`` added to its bound set."""
        return StructuredLoggerAdapter(self.logger, {**(self.extra or {}), **fields})


def _resolve_level() -> int:
    # Imported lazily, config logs through the stdlib logger at import time.
    from cuprite.utils.config import get_config

    logging_cfg = get_config().get("logging") or {}
    name = logging_cfg.get("level") or os.getenv("CUPRITE_LOG_LEVEL") or "info"
    level = getattr(logging, str(name).upper(), None)
    return level if isinstance(level, int) else logging.INFO


def _install_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(jsonlogger.JsonFormatter(LOG_FORMAT))
    handler.addFilter(SessionIdFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(_resolve_level())
    root.debug(f"JSON logging to stdout at {logging.getLevelName(root.level)}")
    return handler


def setup_logger(name: str, **fields: Any) -> StructuredLoggerAdapter:
    """Returns a structured logger for ``name``.

    The root logger gets its JSON stdout handler on the first call only.

    :param name: The name of the logger, typically `__name__`.
    :type name: str
    :param fields: Structured fields bound to every record.
    :return: A `StructuredLoggerAdapter` for ``name``.
    :rtype: StructuredLoggerAdapter
    """
    global _handler

    if _handler is None:
        _handler = _install_handler()
    return StructuredLoggerAdapter(logging.getLogger(name), fields)
