# cuprite/utils/log_sinks.py
"""
Custom logging components for cuprite.

The session id of the target currently being driven is kept in a context
variable so that log records emitted anywhere below the session facade can
be tagged with it without threading it through every call.
"""
import contextvars
import logging
from typing import Optional

# Holds the flattened target session id of the window being driven.
session_id_context: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "session_id", default=None
)


class SessionIdFilter(logging.Filter):
    """
    A logging filter that injects the current session_id from the contextvar
    into the log record.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        """Adds the session_id to the log record.

        :param record: The log record being processed.
        :type record: logging.LogRecord
        :return: Always returns True to allow the record to be processed.
        :rtype: bool
        """
        record.session_id = session_id_context.get()
        return True
