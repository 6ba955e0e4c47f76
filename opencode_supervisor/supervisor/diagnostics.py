import sys
from pathlib import Path
from typing import Optional, TextIO

from opencode_supervisor import settings
from opencode_supervisor.log import get_logger
from opencode_supervisor.supervisor.models import FailureReport, FailureType

log = get_logger(__name__, "startup_failure")
capture_log = get_logger(__name__, "log_capture")


def _read_text(path: Path) -> Optional[str]:
    """Reads a log file, returning None when it is missing, empty or unreadable."""
    try:
        if not path.is_file() or path.stat().st_size == 0:
            return None
        return path.read_bytes().decode("utf-8", errors="replace")
    except OSError as e:
        capture_log.warning(f"Could not read log file {path}: {e}")
        return None


def find_latest_log(directory: Path, pattern: str = settings.NATIVE_LOG_PATTERN) -> Optional[Path]:
    """
    Finds the most recently modified log file below a directory.

    :param directory: The directory to search recursively.
    :param pattern: Glob pattern for log files.
    :return: The newest matching file, or None.
    """
    latest: Optional[Path] = None
    latest_mtime = float("-inf")
    try:
        candidates = list(directory.rglob(pattern))
    except OSError as e:
        capture_log.warning(f"Could not list native log directory {directory}: {e}")
        return None

    for candidate in candidates:
        try:
            if not candidate.is_file():
                continue
            mtime = candidate.stat().st_mtime
        except OSError:
            continue  # removed while scanning
        if mtime > latest_mtime:
            latest, latest_mtime = candidate, mtime
    return latest


class DiagnosticsCollector:
    """
    Gathers whatever logs can explain a failed startup: the newest native
    OpenCode log file and the supervisor's own captured stdout/stderr.
    Missing logs are reported, never raised.
    """

    def __init__(self, native_log_dir: Path, capture_dir: Optional[Path], stream: Optional[TextIO] = None):
        """
        :param native_log_dir: Where OpenCode writes its own log files. Read only.
        :param capture_dir: The LogSink directory, or None when capture was unavailable.
        :param stream: Where log contents are printed, defaults to sys.stderr.
        """
        self.native_log_dir = Path(native_log_dir)
        self.capture_dir = Path(capture_dir) if capture_dir is not None else None
        self.stream = stream

    def _collect_native(self, report: FailureReport) -> None:
        capture_log.info("Checking for OpenCode native log files...")
        if not self.native_log_dir.is_dir():
            capture_log.warning(f"OpenCode native log directory not found: {self.native_log_dir}")
            return

        latest = find_latest_log(self.native_log_dir)
        if latest is None:
            capture_log.warning("No log files found in OpenCode native log directory")
            return

        capture_log.info(f"Found OpenCode log file: {latest}")
        report.native_log_path = latest
        report.native_log = _read_text(latest)

    def _collect_captured(self, report: FailureReport) -> None:
        if self.capture_dir is None or not self.capture_dir.is_dir():
            log.warning("Container log directory not available for error capture")
            return
        report.stdout_log = _read_text(self.capture_dir / settings.STDOUT_LOG_NAME)
        report.stderr_log = _read_text(self.capture_dir / settings.STDERR_LOG_NAME)

    def collect(self, failure_type: FailureType) -> FailureReport:
        """
        Builds a FailureReport from the available logs.

        :param failure_type: The startup failure being diagnosed.
        :return: The report; `guidance` is filled when no log content was found.
        """
        report = FailureReport(failure_type=failure_type)
        try:
            self._collect_native(report)
            self._collect_captured(report)
        except Exception as e:
            log.error(f"Diagnostics collection failed: {e}", exc_info=True)

        if not report.has_content:
            report.guidance = [
                line.format(native_log_dir=self.native_log_dir) for line in settings.DEBUG_GUIDANCE
            ]
        return report

    def _dump(self, title: str, content: str) -> None:
        stream = self.stream if self.stream is not None else sys.stderr
        log.error(f"=== {title} ===")
        stream.write(content if content.endswith("\n") else content + "\n")
        stream.flush()
        log.error(f"=== End {title} ===")

    def present(self, report: FailureReport) -> None:
        """Prints the report for the operator."""
        log.error(f"OpenCode startup failed: {report.failure_type.value}")

        if report.native_log:
            self._dump(f"OpenCode Native Log File: {report.native_log_path.name}", report.native_log)

        if self.capture_dir is not None:
            log.error("Capturing container-level OpenCode logs...")
            if report.stdout_log:
                self._dump("Container STDOUT Logs", report.stdout_log)
            else:
                log.warning("No container stdout logs captured")
            if report.stderr_log:
                self._dump("Container STDERR Logs", report.stderr_log)
            else:
                log.warning("No container stderr logs captured")

        for line in report.guidance:
            log.error(line)

    def collect_and_present(self, failure_type: FailureType) -> FailureReport:
        report = self.collect(failure_type)
        try:
            self.present(report)
        except (OSError, ValueError) as e:
            log.warning(f"Could not print diagnostics: {e}")
        return report
