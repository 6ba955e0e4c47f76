import time
import signal
import psutil
from typing import List

from opencode_supervisor.log import get_logger
from opencode_supervisor.supervisor.models import ManagedProcess, ProcessState

log = get_logger(__name__, "cleanup")

KILL_CONFIRM_TIMEOUT = 5
KILLED_RETURNCODE = 128 + getattr(signal, "SIGKILL", 9)


def identify_descendants(process: ManagedProcess) -> List[psutil.Process]:
    """
    Lists every descendant of the managed process.

    :param process: The ManagedProcess whose children should be stopped too.
    :return: A list of psutil.Process objects, empty if the child is gone.
    """
    try:
        return psutil.Process(process.pid).children(recursive=True)
    except psutil.NoSuchProcess:
        return []
    except psutil.Error as e:
        log.warning(f"Could not list children of PID {process.pid}: {e}")
        return []


def _signal_root(process: ManagedProcess, force: bool) -> None:
    # Popen skips the signal once the child has been reaped, so a recycled
    # PID is never signalled.
    try:
        if force:
            process.popen.kill()
        else:
            process.popen.terminate()
    except ProcessLookupError:
        pass


def _terminate_processes(processes: List[psutil.Process]) -> None:
    """Sends SIGTERM to the given processes."""
    for proc in processes:
        try:
            log.debug(f"Sending SIGTERM to {proc.name()} (PID {proc.pid})")
            proc.terminate()
        except psutil.NoSuchProcess:
            continue


def _forceful_kill(processes: List[psutil.Process]) -> None:
    """Forcefully kills processes that didn't terminate gracefully."""
    for proc in processes:
        try:
            log.warning(f"Killing stubborn process {proc.name()} (PID {proc.pid}).")
            proc.kill()
        except psutil.NoSuchProcess:
            continue


def graceful_shutdown_sequence(process: ManagedProcess, grace_period: float) -> bool:
    """
    Terminates the managed process and its descendants: SIGTERM first, then
    SIGKILL for anything still alive after the grace period.

    :param process: The process to stop.
    :param grace_period: Seconds to wait between SIGTERM and SIGKILL.
    :return: True if the managed process had to be force-killed.
    """
    if not process.is_alive():
        return False

    deadline = time.monotonic() + grace_period
    descendants = identify_descendants(process)
    log.info(f"Terminating OpenCode process (PID: {process.pid})")
    process.set_state(ProcessState.TERMINATING)
    _signal_root(process, force=False)
    _terminate_processes(descendants)

    # The waiter thread reaps the root; psutil only polls the descendants,
    # which get whatever is left of the grace period.
    exited = process.wait_for_exit(grace_period)
    try:
        _, alive = psutil.wait_procs(descendants, timeout=max(0.0, deadline - time.monotonic()))
    except psutil.Error:
        alive = []

    if exited and not alive:
        log.info(f"OpenCode process (PID: {process.pid}) terminated gracefully")
        return False

    kill_sent = False
    if not process.is_alive():
        log.info(f"OpenCode process (PID: {process.pid}) exited before SIGKILL")
    else:
        log.warning(f"Force killing OpenCode process (PID: {process.pid})")
        _signal_root(process, force=True)
        kill_sent = True
    _forceful_kill(alive)

    if not process.wait_for_exit(KILL_CONFIRM_TIMEOUT):
        log.error(f"OpenCode process (PID: {process.pid}) did not exit after SIGKILL")
        return kill_sent
    if kill_sent and process.returncode == KILLED_RETURNCODE:
        process.set_state(ProcessState.KILLED)
        return True
    return False
