"""Logging setup shared by the gateway and the challenge core.

All loggers live under the ``csswaf`` namespace. Records carry a ``trace_id``
attribute (the session id where one is known) so the lines for one client
can be correlated across the challenge page, the checkpoint fetches and the
verdict.
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

LOGGER_NAME = "csswaf"
LOG_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] [trace=%(trace_id)s] %(message)s"

logger = logging.getLogger(LOGGER_NAME)


# Ensure every log record gets a trace_id attribute so the formatter can
# print one even when a LoggerAdapter does not supply it.
class TraceFilter(logging.Filter):
    def filter(self, record):
        if not hasattr(record, "trace_id"):
            record.trace_id = "-"
        return True


_file_handler: Optional[RotatingFileHandler] = None
_console_handler: Optional[logging.StreamHandler] = None


def setup_logging(log_dir: str, log_file: str, level: int = logging.INFO) -> str:
    """Point the rotating file handler at ``log_dir/log_file``.

    The console handler is installed once. The file handler is replaced when
    a different path is requested, so the most recently built app owns the
    log file.

    Returns:
        Path of the log file.
    """
    global _file_handler, _console_handler

    log_path = os.path.join(log_dir, log_file)
    logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT)

    if _console_handler is None:
        _console_handler = logging.StreamHandler()
        _console_handler.setFormatter(formatter)
        _console_handler.addFilter(TraceFilter())
        logger.addHandler(_console_handler)

    if _file_handler is not None:
        if _file_handler.baseFilename == os.path.abspath(log_path):
            return log_path
        logger.removeHandler(_file_handler)
        _file_handler.close()

    os.makedirs(log_dir, exist_ok=True)
    # Rotating file handler to avoid uncontrolled log growth
    _file_handler = RotatingFileHandler(log_path, maxBytes=5 * 1024 * 1024, backupCount=5, encoding="utf-8")
    _file_handler.setFormatter(formatter)
    _file_handler.addFilter(TraceFilter())
    logger.addHandler(_file_handler)

    logger.info("Logging configured: file=%s", log_path)
    return log_path


def get_trace_logger(trace_id: Optional[str], name: Optional[str] = None):
    """Return a LoggerAdapter that attaches a trace_id to each LogRecord.

    Use this where the session id is known so subsequent messages for the
    same client can be correlated.
    """
    base = logging.getLogger(f"{LOGGER_NAME}.{name}") if name else logger
    return logging.LoggerAdapter(base, {"trace_id": trace_id if trace_id else "-"})
