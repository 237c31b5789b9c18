"""
Logging configuration for uipilot.

Two destinations:

  - Console: DEBUG if --verbose, WARNING+ otherwise. Config ``console_format``:
    - "simple" - (default) bare messages for DEBUG/INFO, [LEVEL] prefix for WARNING+
    - "full"   - same structured format as the file handler
    - "clean"  - no console output at all (file logging still active)
  - File: always DEBUG, one file per server session, attached by
    ``attach_log_file()``. Format:
    "timestamp | level | name | session_id | tag | message"

Log files are stored in <data_dir>/logs/.
"""

import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Optional

from config import get_data_dir


LOGGER_NAME = "uipilot"

# Log directory
LOG_DIR = get_data_dir() / "logs"

_FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(session_id)s | %(log_tag)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


# Module-level state (shared across re-inits)
_session_filter: Optional["_SessionFilter"] = None
_current_log_file: Optional[Path] = None


class _SessionFilter(logging.Filter):
    """Injects session_id into every log record."""

    def __init__(self) -> None:
        super().__init__()
        self.session_id = ""

    def filter(self, record: logging.LogRecord) -> bool:
        record.session_id = self.session_id or "-"
        if not hasattr(record, "log_tag"):
            record.log_tag = ""
        return True


class _ConsoleFormatter(logging.Formatter):
    """Console formatter: shows [LEVEL] prefix only for WARNING and above."""

    def format(self, record: logging.LogRecord) -> str:
        if record.levelno >= logging.WARNING:
            return f"  [{record.levelname}] {record.getMessage()}"
        return f"  {record.getMessage()}"


def attach_log_file(session_id: str) -> Path:
    """Attach a per-session file handler and return the log path.

    Creates or appends to server_{session_id}.log.
    """
    global _current_log_file
    LOG_DIR.mkdir(parents=True, exist_ok=True)

    log_file = LOG_DIR / f"server_{session_id}.log"
    _current_log_file = log_file

    logger = logging.getLogger(LOGGER_NAME)
    # Replace any earlier file handler
    logger.handlers = [h for h in logger.handlers if not isinstance(h, logging.FileHandler)]

    file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_DATE_FORMAT))
    logger.addHandler(file_handler)

    set_session_id(session_id)
    logger.info("=" * 60)
    logger.info(f"Session started at {datetime.now().isoformat()}")
    logger.info(f"Log file: {log_file}")
    return log_file


def setup_logging(verbose: bool = False) -> logging.Logger:
    """Configure console logging for the ``uipilot`` logger.

    File handlers are attached later by ``attach_log_file()``.

    Args:
        verbose: If True, show DEBUG level on console; otherwise WARNING+.
    """
    global _session_filter

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)  # Capture everything, filter at handler level
    logger.handlers.clear()

    if _session_filter is None:
        _session_filter = _SessionFilter()
    logger.addFilter(_session_filter)

    import config as _config
    console_format = _config.get("console_format", "simple")

    if console_format != "clean":
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
        if console_format == "full":
            console_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_DATE_FORMAT))
        else:
            console_handler.setFormatter(_ConsoleFormatter())
        logger.addHandler(console_handler)

    return logger


def get_logger() -> logging.Logger:
    """Return the uipilot logger, configuring defaults on first use."""
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        return setup_logging(verbose=False)
    return logger


def set_session_id(session_id: str) -> None:
    """Set the session ID included in all subsequent log lines."""
    global _session_filter
    if _session_filter is None:
        _session_filter = _SessionFilter()
    _session_filter.session_id = session_id


def log_error(
    message: str,
    exc: Optional[BaseException] = None,
    context: Optional[dict] = None,
) -> None:
    """Log an error with context and stack trace through the EventBus.

    Args:
        message: Error description
        exc: Optional exception to include stack trace from
        context: Optional dict of additional context (tool name, args, etc.)
    """
    from .event_bus import get_event_bus, ERROR_LOG

    lines = [message]
    if context:
        lines.append("Context:")
        for key, value in context.items():
            lines.append(f"  {key}: {value}")
    if exc:
        lines.append(f"Exception type: {type(exc).__name__}")
        lines.append(f"Exception message: {exc}")
        lines.append("Stack trace:")
        lines.append("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))

    get_event_bus().emit(ERROR_LOG, level="error", msg="\n".join(lines),
                         data={"short": message, "context": context or {}})


def log_tool_call(tool_name: str, tool_args: dict) -> None:
    """Log a tool call for debugging."""
    from .event_bus import get_event_bus, TOOL_CALL_LOG

    get_event_bus().emit(TOOL_CALL_LOG, level="debug",
                         msg=f"Tool call: {tool_name}({tool_args})",
                         data={"tool_name": tool_name, "tool_args": tool_args})


def log_tool_result(tool_name: str, result: dict, success: bool) -> None:
    """Log a tool result."""
    from .event_bus import get_event_bus, TOOL_RESULT_LOG

    if success:
        get_event_bus().emit(TOOL_RESULT_LOG, level="debug",
                             msg=f"Tool result: {tool_name} -> success",
                             data={"tool_name": tool_name, "status": "success"})
    else:
        error_msg = result.get("error") or result.get("message", "Unknown error")
        get_event_bus().emit(TOOL_RESULT_LOG, level="warning",
                             msg=f"Tool result: {tool_name} -> error: {error_msg}",
                             data={"tool_name": tool_name, "status": "error", "error": error_msg})
