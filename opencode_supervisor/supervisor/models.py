import time
import enum
import threading
import subprocess
from pathlib import Path
from dataclasses import dataclass, field
from typing import List, Optional, Sequence


class ProcessState(str, enum.Enum):
    STARTING = "STARTING"
    RUNNING = "RUNNING"
    EXITED = "EXITED"
    TERMINATING = "TERMINATING"
    KILLED = "KILLED"


class StartupStatus(str, enum.Enum):
    """Outcome of the startup monitoring window."""
    RUNNING = "RUNNING"
    EARLY_EXIT = "EARLY_EXIT"
    ENDED_DURING_MONITORING = "ENDED_DURING_MONITORING"
    TIMEOUT = "TIMEOUT"
    UNKNOWN = "UNKNOWN"

    @property
    def is_failure(self) -> bool:
        return self in (StartupStatus.EARLY_EXIT,
                        StartupStatus.ENDED_DURING_MONITORING,
                        StartupStatus.UNKNOWN)


class FailureType(str, enum.Enum):
    EARLY_EXIT = "EARLY_EXIT"
    ENDED_DURING_MONITORING = "ENDED_DURING_MONITORING"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_status(cls, status: StartupStatus) -> "FailureType":
        """Maps a failing startup status to its failure classification."""
        try:
            return cls(status.value)
        except ValueError:
            return cls.UNKNOWN


class ManagedProcess:
    """
    The single child process owned by a supervisor run.

    The exit of the child is observed by a dedicated waiter thread which calls
    `mark_exited`; every other reader consults the recorded exit instead of
    polling the OS, so the Popen handle is only ever reaped in one place.
    """

    def __init__(self, popen: subprocess.Popen, command: Sequence[str],
                 started_at: Optional[float] = None, clock=time.monotonic):
        self.popen = popen
        self.pid: int = popen.pid
        self.command = list(command)
        self.clock = clock
        self.started_at: float = clock() if started_at is None else started_at
        self.exited_at: Optional[float] = None
        self.returncode: Optional[int] = None
        self._state = ProcessState.STARTING
        self._lock = threading.Lock()
        self._exited = threading.Event()

    @property
    def state(self) -> ProcessState:
        with self._lock:
            return self._state

    def set_state(self, state: ProcessState) -> None:
        with self._lock:
            # An exit is final; nothing moves the process out of it.
            if self._state in (ProcessState.EXITED, ProcessState.KILLED) and \
                    state not in (ProcessState.EXITED, ProcessState.KILLED):
                return
            self._state = state

    def mark_exited(self, returncode: int, exited_at: Optional[float] = None) -> None:
        """Records the child's exit. Called by the waiter thread only."""
        with self._lock:
            self.returncode = returncode
            self.exited_at = self.clock() if exited_at is None else exited_at
            self._state = ProcessState.EXITED
        self._exited.set()

    def is_alive(self) -> bool:
        return not self._exited.is_set()

    def wait_for_exit(self, timeout: Optional[float] = None) -> bool:
        """
        Blocks until the child has exited or the timeout elapses.

        :return: True if the child has exited.
        """
        return self._exited.wait(timeout)

    def elapsed(self, now: Optional[float] = None) -> float:
        """Seconds since spawn, or until exit if the child has exited."""
        if now is None:
            now = self.exited_at if self.exited_at is not None else self.clock()
        return now - self.started_at


@dataclass
class FailureReport:
    """Diagnostics gathered after an abnormal startup. Never persisted."""
    failure_type: FailureType
    native_log_path: Optional[Path] = None
    native_log: Optional[str] = None
    stdout_log: Optional[str] = None
    stderr_log: Optional[str] = None
    guidance: List[str] = field(default_factory=list)

    @property
    def has_content(self) -> bool:
        return any((self.native_log, self.stdout_log, self.stderr_log))


@dataclass
class RunResult:
    exit_code: int
    pid: Optional[int] = None
    startup_status: Optional[StartupStatus] = None
    final_state: Optional[ProcessState] = None
    failure_report: Optional[FailureReport] = None
    signal_received: Optional[int] = None
    log_capture_available: bool = False
