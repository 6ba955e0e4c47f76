import sys
import time
import logging
from pathlib import Path
from typing import Optional

from opencode_supervisor import settings
from opencode_supervisor.log.handler import JsonLinesHandler, level_name

COLORS = {
    "DEBUG": "\033[0;36m",
    "INFO": "\033[0;34m",
    "WARN": "\033[1;33m",
    "ERROR": "\033[0;31m",
    "FATAL": "\033[0;35m",
}
RESET = "\033[0m"

LEVELS_BY_NAME = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "FATAL": logging.CRITICAL,
    "CRITICAL": logging.CRITICAL,
}

log = logging.getLogger(__name__)


class OperationFilter(logging.Filter):
    """Ensures every record carries an `operation` tag for the formatters."""

    def filter(self, record):
        if not hasattr(record, "operation"):
            record.operation = "-"
        return True


class OperationAdapter(logging.LoggerAdapter):
    """A LoggerAdapter that tags every record with a fixed operation name."""

    def process(self, msg, kwargs):
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("operation", self.extra["operation"])
        kwargs["extra"] = extra
        return msg, kwargs


def get_logger(name: str, operation: str) -> OperationAdapter:
    """
    Returns a logger whose records are tagged with the given operation.

    :param name: The logger name, usually __name__.
    :param operation: The operation tag shown in console and JSON output.
    """
    return OperationAdapter(logging.getLogger(name), {"operation": operation})


class MainFormatter(logging.Formatter):
    """
    Formats records as `[TIMESTAMP] [LEVEL] [FILENAME] [LINE] [OPERATION] message`,
    optionally colorizing the header by level.
    """
    converter = time.gmtime

    def __init__(self, use_color: bool = False):
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%SZ")
        self.use_color = use_color

    def format(self, record):
        level = level_name(record.levelno)
        timestamp = self.formatTime(record, self.datefmt)
        operation = getattr(record, "operation", "-")
        header = f"[{timestamp}] [{level}] [{record.filename}] [{record.lineno}] [{operation}]"
        if self.use_color:
            header = f"{COLORS.get(level, '')}{header}{RESET}"
        message = f"{header} {record.getMessage()}"
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return message


def parse_level(name: Optional[str], default: int = logging.INFO) -> int:
    """Parses LOG_LEVEL style names (DEBUG, INFO, WARN, ERROR, FATAL)."""
    if not name:
        return default
    return LEVELS_BY_NAME.get(name.strip().upper(), default)


def setup_logging(console_level: Optional[int] = None,
                  json_log_path: Optional[Path] = None,
                  enable_json: bool = settings.ENABLE_JSON_LOGGING,
                  enable_console: bool = settings.ENABLE_CONSOLE_LOGGING,
                  session_name: str = settings.PROCESS_TITLE) -> None:
    """
    Configures the root logger for the supervisor.
    This sets up handlers for the console and, optionally, a JSON lines
    file, clearing any previously configured handlers to prevent duplication.

    :param console_level: The logging level for console output. Defaults to LOG_LEVEL.
    :param json_log_path: The JSON log file. Defaults to LOG_DIR/LOG_FILE.
    :param enable_json: Whether to write the JSON log file.
    :param enable_console: Whether to log to the console.
    :param session_name: The name written into the session_start record.
    """
    if console_level is None:
        console_level = parse_level(settings.LOG_LEVEL)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Clear any existing handlers to prevent re-adding them on re-runs
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        if isinstance(handler, JsonLinesHandler):
            handler.close()

    # --- Console Handler ---
    if enable_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(console_level)
        console_handler.addFilter(OperationFilter())
        console_handler.setFormatter(MainFormatter(use_color=sys.stdout.isatty()))
        root_logger.addHandler(console_handler)

    # --- JSON Lines Handler ---
    if enable_json:
        path = json_log_path or (settings.LOG_DIR / settings.LOG_FILE)
        try:
            json_handler = JsonLinesHandler(path)
            json_handler.setLevel(console_level)
            json_handler.addFilter(OperationFilter())
            root_logger.addHandler(json_handler)
        except OSError as e:
            print(f"[WARNING] Failed to create log file: {path} ({e})", file=sys.stderr)
            print("[WARNING] JSON logging will be disabled", file=sys.stderr)

    log.info(f"Logging session started for {session_name}", extra={"operation": "session_start"})


def shutdown_logging(session_name: str = settings.PROCESS_TITLE) -> None:
    """Writes the session_end record and closes all root handlers."""
    log.info(f"Logging session ended for {session_name}", extra={"operation": "session_end"})
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        handler.flush()
        handler.close()
        root_logger.removeHandler(handler)
