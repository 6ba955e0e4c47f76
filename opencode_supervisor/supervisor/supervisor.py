import time
import signal
import threading
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO

from opencode_supervisor import settings
from opencode_supervisor.config import MonitorConfig, load_config
from opencode_supervisor.errors import ShutdownRequested, SupervisorBusyError
from opencode_supervisor.log import get_logger
from opencode_supervisor.supervisor import log_sink, process_utils, shutdown
from opencode_supervisor.supervisor.diagnostics import DiagnosticsCollector
from opencode_supervisor.supervisor.log_sink import LogSink
from opencode_supervisor.supervisor.models import (
    FailureReport, FailureType, ManagedProcess, RunResult, StartupStatus,
)
from opencode_supervisor.supervisor.startup import StartupMonitor
from opencode_supervisor.supervisor.tee import StreamDuplicator

log = get_logger(__name__, "opencode_start")
cleanup_log = get_logger(__name__, "cleanup")
signal_log = get_logger(__name__, "signal")

EXIT_FAILURE = 1
EXIT_ENDED_DURING_MONITORING = 2
WAIT_SLICE = 0.5  # seconds between wake-ups of the blocking wait
HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class Supervisor:
    """
    Runs one OpenCode process at a time and owns everything about it.

    A run prepares the log sink, spawns the child with its output teed to
    console and files, classifies its startup, waits for it to finish and
    cleans up on every path. SIGINT/SIGTERM received during a run stop the
    child gracefully, then forcefully after the configured grace period.
    """

    def __init__(self, config: Optional[MonitorConfig] = None, stdout=None, stderr=None,
                 diagnostics_stream: Optional[TextIO] = None, install_signal_handlers: bool = True) -> None:
        """
        :param config: Monitor settings, read from the environment if omitted.
        :param stdout: Console destination for the child's stdout (default sys.stdout).
        :param stderr: Console destination for the child's stderr (default sys.stderr).
        :param diagnostics_stream: Text stream that failure logs are printed to (default sys.stderr).
        :param install_signal_handlers: Whether run() handles SIGINT/SIGTERM itself.
        """
        self.config = config if config is not None else load_config()
        self.stdout = stdout
        self.stderr = stderr
        self.diagnostics_stream = diagnostics_stream
        self.install_signal_handlers = install_signal_handlers
        self.monitor = StartupMonitor(self.config)

        self.shutdown_signal_received = threading.Event()
        self._run_lock = threading.Lock()
        self._shutting_down = False
        self._process: Optional[ManagedProcess] = None
        self._sink: Optional[LogSink] = None
        self._duplicator: Optional[StreamDuplicator] = None
        self._waiter: Optional[threading.Thread] = None
        self._status: Optional[StartupStatus] = None

    @property
    def process(self) -> Optional[ManagedProcess]:
        """The active ManagedProcess, None between runs."""
        return self._process

    @property
    def log_capture_available(self) -> bool:
        return self._sink is not None and self._sink.available

    #* --- Signal Handling ---
    def _handle_signal(self, signum: int, frame: Any) -> None:
        if self._shutting_down:
            signal_log.warning(f"Received {signal.Signals(signum).name} while already shutting down")
            return
        self.shutdown_signal_received.set()
        raise ShutdownRequested(signum)

    def _install_signal_handlers(self) -> Dict[int, Any]:
        if not self.install_signal_handlers:
            return {}
        if threading.current_thread() is not threading.main_thread():
            signal_log.warning("Not running in the main thread, signal handlers not installed")
            return {}
        return {sig: signal.signal(sig, self._handle_signal) for sig in HANDLED_SIGNALS}

    def _restore_signal_handlers(self, previous: Dict[int, Any]) -> None:
        for sig, handler in previous.items():
            signal.signal(sig, handler if handler is not None else signal.SIG_DFL)

    #* --- Run ---
    def run(self, command: Optional[Sequence[str]] = None, env: Optional[Mapping[str, str]] = None,
            cwd: Optional[Path] = None) -> RunResult:
        """
        Supervises one execution of `command` from spawn to cleanup.

        :param command: The executable and arguments, defaults to `opencode --print-logs`.
        :param env: The child's environment, defaults to the supervisor's.
        :param cwd: The child's working directory.
        :return: The RunResult; `exit_code` is what the supervisor should exit with.
        :raises SupervisorBusyError: If a run is already in progress.
        """
        if not self._run_lock.acquire(blocking=False):
            raise SupervisorBusyError("A supervised process is already running.")

        self._shutting_down = False
        self._status = None
        self.shutdown_signal_received.clear()
        previous_handlers: Dict[int, Any] = {}
        try:
            try:
                previous_handlers = self._install_signal_handlers()
                return self._supervise(list(command or settings.DEFAULT_COMMAND), env, cwd)
            except ShutdownRequested as e:
                self._shutting_down = True
                return self._handle_shutdown(e.signum)
            except Exception as e:
                self._shutting_down = True
                log.critical(f"Supervisor failed unexpectedly: {e}", exc_info=True)
                return self._handle_startup_failure(StartupStatus.UNKNOWN)
        finally:
            self._shutting_down = True
            try:
                self._cleanup()
            finally:
                self._restore_signal_handlers(previous_handlers)
                self._run_lock.release()

    def _supervise(self, command: Sequence[str], env: Optional[Mapping[str, str]],
                   cwd: Optional[Path]) -> RunResult:
        log.info("Starting OpenCode with monitoring enabled...")
        self._sink, _ = log_sink.prepare(self.config.log_dir)

        try:
            self._process = process_utils.launch_process(command, env=env, cwd=cwd)
        except OSError as e:
            log.error(f"Failed to start OpenCode ({command[0]}): [errno {e.errno}] {e.strerror or e}")
            return self._handle_startup_failure(StartupStatus.EARLY_EXIT)

        process = self._process
        self._duplicator = StreamDuplicator(process.popen.stdout, process.popen.stderr, self._sink,
                                            console_stdout=self.stdout, console_stderr=self.stderr)
        self._duplicator.start()
        self._waiter = process_utils.start_waiter(process)

        try:
            self._status = self.monitor.watch(process)
        except Exception as e:
            log.error(f"Startup monitoring failed: {e}", exc_info=True)
            self._status = StartupStatus.UNKNOWN

        if not isinstance(self._status, StartupStatus):
            log.error(f"Unknown monitoring result: {self._status}")
            self._status = StartupStatus.UNKNOWN

        if self._status is StartupStatus.RUNNING:
            log.info("OpenCode startup completed successfully")
        elif self._status is StartupStatus.TIMEOUT:
            log.warning("OpenCode startup monitoring timed out (process may still be starting)")
        elif self._status is StartupStatus.ENDED_DURING_MONITORING:
            log.warning("OpenCode process ended during startup monitoring")

        if self._status.is_failure:
            return self._handle_startup_failure(self._status)

        log.info("Waiting for OpenCode process to complete...")
        while not process.wait_for_exit(WAIT_SLICE):
            pass
        self._drain()

        log.info(f"OpenCode process completed with exit code: {process.returncode}")
        return self._result(process.returncode)

    def _result(self, exit_code: int, report: Optional[FailureReport] = None,
                signum: Optional[int] = None) -> RunResult:
        return RunResult(
            exit_code=exit_code,
            pid=self._process.pid if self._process is not None else None,
            startup_status=self._status,
            final_state=self._process.state if self._process is not None else None,
            failure_report=report,
            signal_received=signum,
            log_capture_available=self.log_capture_available,
        )

    #* --- Failure & Shutdown Paths ---
    def _handle_startup_failure(self, status: StartupStatus) -> RunResult:
        """
        Collects diagnostics for a failed startup, then makes sure the
        process is gone.
        """
        self._status = status
        failure = FailureType.from_status(status)
        process = self._process
        log.error(f"OpenCode startup failed: {failure.value}")

        if process is not None and process.is_alive():
            time.sleep(self.config.failure_settle_delay)
        else:
            self._drain()

        capture_dir = self._sink.directory if self.log_capture_available else None
        collector = DiagnosticsCollector(self.config.native_log_dir, capture_dir, stream=self.diagnostics_stream)
        report = collector.collect_and_present(failure)

        if process is not None and process.is_alive():
            shutdown.graceful_shutdown_sequence(process, self.config.failure_grace_period)

        exit_code = EXIT_ENDED_DURING_MONITORING if failure is FailureType.ENDED_DURING_MONITORING else EXIT_FAILURE
        return self._result(exit_code, report)

    def _handle_shutdown(self, signum: int) -> RunResult:
        name = signal.Signals(signum).name
        signal_log.warning(f"Received {name}, shutting down OpenCode...")
        process = self._process
        if process is not None and process.is_alive():
            shutdown.graceful_shutdown_sequence(process, self.config.shutdown_grace_period)
        self._drain()
        return self._result(128 + signum, signum=signum)

    def _drain(self) -> None:
        """Waits until both duplicators have copied everything the child wrote."""
        if self._duplicator is None:
            return
        if not self._duplicator.join(self.config.drain_timeout):
            cleanup_log.warning(
                f"Output capture did not finish within {self.config.drain_timeout}s "
                "(a descendant may still hold the output pipes)"
            )
        for stream in self._duplicator.file_failures:
            cleanup_log.warning(f"Captured {stream} log file is incomplete for this run")

    def _cleanup(self) -> None:
        """Releases the process, threads, pipes and files of the current run."""
        cleanup_log.info("Performing OpenCode monitoring cleanup...")
        process = self._process
        try:
            if process is not None and process.is_alive():
                shutdown.graceful_shutdown_sequence(process, self.config.shutdown_grace_period)
            if self._duplicator is not None and not self._duplicator.drained:
                self._drain()
            if process is not None:
                if self._waiter is not None:
                    self._waiter.join(self.config.drain_timeout)
                if self._duplicator is None or self._duplicator.drained:
                    process_utils.close_pipes(process)
                else:
                    cleanup_log.warning(f"Leaving output pipes of PID {process.pid} to the capture threads")
        finally:
            if self._sink is not None:
                self._sink.close()
            self._process = None
            self._duplicator = None
            self._waiter = None
            self._sink = None
            cleanup_log.info("OpenCode monitoring cleanup completed")
