import time
from typing import Callable

from opencode_supervisor.config import MonitorConfig
from opencode_supervisor.log import get_logger
from opencode_supervisor.supervisor.models import ManagedProcess, ProcessState, StartupStatus

log = get_logger(__name__, "startup_monitor")


class StartupMonitor:
    """
    Watches a freshly spawned process for a bounded window and classifies
    its startup.

    Outcomes:
    - exited before the early-exit threshold: EARLY_EXIT
    - exited at or after the threshold: ENDED_DURING_MONITORING
    - alive at the threshold: RUNNING
    - startup timeout reached first: TIMEOUT (non-fatal, process left running)
    """

    def __init__(self, config: MonitorConfig, clock: Callable[[], float] = time.monotonic):
        self.config = config
        self.clock = clock

    def classify_exit(self, elapsed: float) -> StartupStatus:
        """
        Classifies a process that exited `elapsed` seconds after spawn.
        The threshold itself counts as a normal end, not an early exit.
        """
        if elapsed < self.config.early_exit_threshold:
            return StartupStatus.EARLY_EXIT
        return StartupStatus.ENDED_DURING_MONITORING

    def watch(self, process: ManagedProcess) -> StartupStatus:
        """
        Blocks until a startup decision is reached.

        Between checks the monitor sleeps on the process exit event, so an
        exit is noticed immediately and never later than one poll interval.

        :param process: The process to watch; its state is updated on RUNNING.
        :return: The startup classification.
        """
        threshold = self.config.early_exit_threshold
        timeout = self.config.startup_timeout
        log.info(f"Monitoring OpenCode startup (PID: {process.pid}, timeout: {timeout}s)")

        while True:
            if not process.is_alive():
                return self._report_exit(process)

            elapsed = self.clock() - process.started_at
            if elapsed >= threshold:
                process.set_state(ProcessState.RUNNING)
                log.info("OpenCode startup monitoring completed successfully")
                return StartupStatus.RUNNING
            if elapsed >= timeout:
                log.warning(f"OpenCode startup monitoring timed out after {timeout}s")
                return StartupStatus.TIMEOUT

            next_deadline = min(threshold, timeout) - elapsed
            process.wait_for_exit(max(0.0, min(self.config.poll_interval, next_deadline)))

    def _report_exit(self, process: ManagedProcess) -> StartupStatus:
        elapsed = process.elapsed()
        status = self.classify_exit(elapsed)
        if status is StartupStatus.EARLY_EXIT:
            log.error(f"OpenCode exited early after {elapsed:.1f}s (PID: {process.pid})")
        else:
            log.warning(f"OpenCode process ended after {elapsed:.1f}s")
        return status
