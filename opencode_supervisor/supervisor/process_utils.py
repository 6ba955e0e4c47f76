import sys
import threading
import subprocess
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence

from opencode_supervisor.log import get_logger
from opencode_supervisor.supervisor.models import ManagedProcess

log = get_logger(__name__, "opencode_start")


#* --- Exit Codes ---
def normalize_returncode(returncode: int) -> int:
    """Maps Popen's negative 'killed by signal N' codes to the shell's 128 + N."""
    if returncode < 0:
        return 128 + (-returncode)
    return returncode


#* --- Process Creation ---
def _get_popen_kwargs() -> Dict[str, Any]:
    """Returns platform-specific flags for subprocess.Popen."""
    if sys.platform == "win32":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    # Own session: terminal signals reach the supervisor, which forwards them.
    return {"start_new_session": True}

def launch_process(command: Sequence[str], env: Optional[Mapping[str, str]] = None,
                   cwd: Optional[Path] = None) -> ManagedProcess:
    """
    Starts the managed command with piped stdout/stderr.

    :param command: The executable and its arguments.
    :param env: The child's environment, defaults to the supervisor's.
    :param cwd: The child's working directory.
    :return: The ManagedProcess wrapping the new child.
    :raises OSError: If the command cannot be started.
    """
    if not command:
        raise ValueError("No command given to supervise.")
    log.info(f"Starting OpenCode with log capture: {' '.join(command)}")
    popen = subprocess.Popen(
        list(command),
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        env=dict(env) if env is not None else None,
        cwd=str(cwd) if cwd is not None else None,
        **_get_popen_kwargs(),
    )
    process = ManagedProcess(popen, command)
    log.info(f"OpenCode started with PID: {process.pid}")
    return process


#* --- Exit Observation ---
def _wait_for_exit(process: ManagedProcess) -> None:
    """Target for the waiter thread: the only place the child is reaped."""
    try:
        returncode = process.popen.wait()
    except Exception as e:
        log.error(f"Waiting for PID {process.pid} failed: {e}", exc_info=True)
        returncode = 1
    process.mark_exited(normalize_returncode(returncode))
    log.debug(f"PID {process.pid} exited with code {process.returncode}")

def start_waiter(process: ManagedProcess) -> threading.Thread:
    """Starts the background thread that blocks on the child's completion."""
    waiter = threading.Thread(target=_wait_for_exit, args=(process,), daemon=True,
                              name=f"waiter-{process.pid}")
    waiter.start()
    return waiter

def close_pipes(process: ManagedProcess) -> None:
    """Closes any child pipes the duplicators did not already close."""
    for pipe in (process.popen.stdin, process.popen.stdout, process.popen.stderr):
        if pipe is not None and not pipe.closed:
            try:
                pipe.close()
            except OSError as e:
                log.debug(f"Closing pipe of PID {process.pid} failed: {e}")

