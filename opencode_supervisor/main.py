import sys
import setproctitle
from typing import List, Optional

from opencode_supervisor import settings, __version__
from opencode_supervisor.config import load_config
from opencode_supervisor.log import get_logger, setup_logging, shutdown_logging
from opencode_supervisor.supervisor import Supervisor

log = get_logger("opencode_supervisor", "general")


def parse_command(argv: List[str]) -> List[str]:
    """
    Returns the command to supervise from the CLI arguments.
    A leading `--` is dropped; no arguments means the default OpenCode command.
    """
    if argv and argv[0] == "--":
        argv = argv[1:]
    return list(argv) if argv else list(settings.DEFAULT_COMMAND)


def display_startup_info(command: List[str], supervisor: Supervisor) -> None:
    """Logs what is about to be supervised and where its logs go."""
    config = supervisor.config
    log.info(f"OpenCode supervisor {__version__} startup information:")
    log.info(f"  - Command: {' '.join(command)}")
    log.info(f"  - Captured logs: {config.log_dir}")
    log.info(f"  - Native logs: {config.native_log_dir}")
    log.info(f"  - Startup timeout: {config.startup_timeout}s, early-exit threshold: {config.early_exit_threshold}s")


def main(argv: Optional[List[str]] = None) -> int:
    """The main entry point. Returns the exit code of the supervised run."""
    setproctitle.setproctitle(settings.PROCESS_TITLE)
    setup_logging()

    command = parse_command(sys.argv[1:] if argv is None else argv)
    try:
        supervisor = Supervisor(load_config())
        display_startup_info(command, supervisor)
        result = supervisor.run(command)
        if result.exit_code == 0:
            log.info("OpenCode supervisor finished successfully")
        else:
            log.error(f"OpenCode supervisor finished with exit code {result.exit_code}")
        return result.exit_code
    except Exception as e:
        log.critical(f"Supervisor crashed: {e}", exc_info=True)
        return 1
    finally:
        shutdown_logging()


if __name__ == "__main__":
    sys.exit(main())
