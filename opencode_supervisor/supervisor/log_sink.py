from pathlib import Path
from typing import BinaryIO, Optional, Tuple

from opencode_supervisor import settings
from opencode_supervisor.log import get_logger

log = get_logger(__name__, "log_setup")


class LogSink:
    """
    The directory and per-stream files that captured child output is written to.

    Each file handle has a single writer (one duplication thread per stream),
    so no locking is needed. When `available` is False no files are open and
    output is forwarded to the console only.
    """

    def __init__(self, directory: Path, available: bool = False,
                 stdout_file: Optional[BinaryIO] = None, stderr_file: Optional[BinaryIO] = None):
        self.directory = Path(directory)
        self.available = available
        self.stdout_file = stdout_file
        self.stderr_file = stderr_file

    @property
    def stdout_path(self) -> Path:
        return self.directory / settings.STDOUT_LOG_NAME

    @property
    def stderr_path(self) -> Path:
        return self.directory / settings.STDERR_LOG_NAME

    def close(self) -> None:
        """Closes both capture files. Safe to call more than once."""
        for handle in (self.stdout_file, self.stderr_file):
            if handle is not None and not handle.closed:
                try:
                    handle.close()
                except OSError as e:
                    log.warning(f"Failed to close capture file {getattr(handle, 'name', '?')}: {e}")


def _remove_stale_logs(directory: Path) -> None:
    """Removes capture files left over from a previous run."""
    for stale in directory.glob(settings.STALE_LOG_PATTERN):
        try:
            if stale.is_file():
                stale.unlink()
        except OSError as e:
            log.warning(f"Could not remove stale log file {stale}: {e}")


def prepare(path: Path) -> Tuple[LogSink, bool]:
    """
    Prepares the capture directory and opens fresh stdout/stderr log files.
    Never raises: any failure yields an unavailable sink and console-only output.

    :param path: The directory to write stdout.log and stderr.log into.
    :return: The sink and whether file capture is available.
    """
    directory = Path(path)
    sink = LogSink(directory)
    log.info("Setting up OpenCode log capture...")

    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        log.warning(f"Failed to create log directory: {directory} ({e})")
        log.warning("Log capture will be limited to stdout/stderr")
        return sink, False

    if not directory.is_dir():
        log.warning(f"Log directory is not a directory: {directory}")
        log.warning("Log capture will be limited to stdout/stderr")
        return sink, False

    _remove_stale_logs(directory)

    # Opening the files is the writability check.
    try:
        sink.stdout_file = sink.stdout_path.open("wb")
        sink.stderr_file = sink.stderr_path.open("wb")
    except OSError as e:
        sink.close()
        sink.stdout_file = sink.stderr_file = None
        log.warning(f"Log directory is not writable: {directory} ({e})")
        log.warning("Log capture will be limited to stdout/stderr")
        return sink, False

    sink.available = True
    log.info(f"Log capture ready - logs will be written to: {directory}")
    return sink, True
