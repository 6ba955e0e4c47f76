import sys
import json
import logging
import threading
from pathlib import Path
from datetime import datetime, timezone
from typing import Any, Dict, List

from opencode_supervisor import settings

LEVEL_NAMES = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
    logging.CRITICAL: "FATAL",
}


def level_name(levelno: int) -> str:
    """Maps a logging level to the names used in console and JSON output."""
    return LEVEL_NAMES.get(levelno, logging.getLevelName(levelno))


def iso_timestamp(created: float) -> str:
    """Formats a record timestamp as ISO 8601 UTC with milliseconds."""
    dt = datetime.fromtimestamp(created, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


class JsonLinesHandler(logging.Handler):
    """
    A custom logging handler that appends structured JSON records to a file
    in batches using a background thread.
    """
    def __init__(self, path: Path, flush_interval: float = settings.LOG_BUFFER_FLUSH_INTERVAL,
                 buffer_size: int = settings.LOG_BUFFER_SIZE):
        """
        Initializes the handler and opens the log file for appending.

        :param path: The path of the JSON lines file.
        :param flush_interval: Seconds between background flushes.
        :param buffer_size: Flush immediately when this many records are buffered.
        :raises OSError: If the log file cannot be opened.
        """
        super().__init__()
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.stream = self.path.open("a", encoding="utf-8")
        self.flush_interval = flush_interval
        self.buffer_size = buffer_size
        self.log_buffer: List[Dict[str, Any]] = []
        self.buffer_lock = threading.Lock()
        self.disabled = False
        self.stop_event = threading.Event()
        self.flush_thread = threading.Thread(target=self._periodic_flush, daemon=True)
        self.flush_thread.name = "JsonLogFlushThread"
        self.flush_thread.start()

    def _periodic_flush(self) -> None:
        """Periodically flushes the log buffer. This runs in a background thread."""
        while not self.stop_event.wait(self.flush_interval):
            self.flush()

    def build_entry(self, record: logging.LogRecord) -> Dict[str, Any]:
        """Converts a record into the JSON log schema."""
        return {
            "timestamp": iso_timestamp(record.created),
            "level": level_name(record.levelno),
            "operation": getattr(record, "operation", "-"),
            "filename": record.filename,
            "line_number": getattr(record, "line_number", 0),
            "script_line": record.lineno,
            "message": record.getMessage(),
        }

    def emit(self, record: logging.LogRecord) -> None:
        """
        Adds a record to the internal buffer.
        If the buffer reaches the batch size, it triggers a flush.

        :param record: The log record to be processed.
        """
        if self.disabled:
            return
        try:
            entry = self.build_entry(record)
        except Exception:
            self.handleError(record)
            return
        with self.buffer_lock:
            self.log_buffer.append(entry)
            if len(self.log_buffer) >= self.buffer_size:
                self._flush_locked()

    def _flush_locked(self) -> None:
        """
        Writes the buffered entries to the file. Assumes the buffer lock is held.
        A failed write disables the handler; console logging is unaffected.
        """
        if not self.log_buffer or self.disabled:
            self.log_buffer.clear()
            return

        entries_to_write = list(self.log_buffer)
        self.log_buffer.clear()
        try:
            for entry in entries_to_write:
                self.stream.write(json.dumps(entry, ensure_ascii=False) + "\n")
            self.stream.flush()
        except (OSError, ValueError) as e:
            self.disabled = True
            print(f"[WARNING] Failed to write to log file {self.path}: {e}", file=sys.stderr)
            print("[WARNING] JSON logging will be disabled", file=sys.stderr)

    def flush(self) -> None:
        """Public method to trigger a manual flush of the log buffer."""
        with self.buffer_lock:
            self._flush_locked()

    def close(self) -> None:
        """
        Shuts down the handler, stopping the flush thread and writing any
        buffered records before the file is closed.
        """
        self.stop_event.set()
        if self.flush_thread.is_alive() and self.flush_thread is not threading.current_thread():
            self.flush_thread.join(timeout=self.flush_interval + 2)
        self.flush()
        with self.buffer_lock:
            if not self.stream.closed:
                self.stream.close()
        super().close()
