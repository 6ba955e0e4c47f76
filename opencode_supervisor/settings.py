"""
This module contains the default configuration for the OpenCode supervisor.
It defines environment variable names, default durations and the log paths
used by the supervisor and read by `opencode_supervisor.config`.
"""

import os
import pathlib
from dotenv import load_dotenv

# Load environment variables from a .env file, container env always wins
load_dotenv(override=False)

#* --- Core Paths ---
HOME_DIR = pathlib.Path.home()
DEFAULT_LOG_DIR = pathlib.Path("/var/log/opencode")
DEFAULT_NATIVE_LOG_DIR = HOME_DIR / ".local" / "share" / "opencode" / "log"

#* --- Managed Command ---
DEFAULT_COMMAND = ["opencode", "--print-logs"]
PROCESS_TITLE = "opencode-supervisor"

#* --- Environment Variable Names ---
ENV_STARTUP_TIMEOUT = "OPENCODE_STARTUP_TIMEOUT"
ENV_EARLY_EXIT_THRESHOLD = "OPENCODE_EARLY_EXIT_THRESHOLD"
ENV_POLL_INTERVAL = "OPENCODE_POLL_INTERVAL"
ENV_LOG_DIR = "OPENCODE_LOG_DIR"
ENV_NATIVE_LOG_DIR = "OPENCODE_NATIVE_LOG_DIR"
ENV_SHUTDOWN_GRACE = "OPENCODE_GRACEFUL_SHUTDOWN_TIMEOUT"
ENV_FAILURE_GRACE = "OPENCODE_FAILURE_KILL_GRACE"
ENV_FAILURE_SETTLE = "OPENCODE_FAILURE_LOG_SETTLE"
ENV_DRAIN_TIMEOUT = "OPENCODE_DRAIN_TIMEOUT"

#* --- Monitor/Supervisor Settings (seconds) ---
STARTUP_TIMEOUT = 60
EARLY_EXIT_THRESHOLD = 10
POLL_INTERVAL = 2
GRACEFUL_SHUTDOWN_TIMEOUT = 10  # before force-killing on SIGINT/SIGTERM
FAILURE_KILL_GRACE = 5          # before force-killing after a startup failure
FAILURE_LOG_SETTLE = 2          # let the child flush its last output
DRAIN_TIMEOUT = 5               # max wait for the tee threads after exit

#* --- Captured Stream Files ---
STDOUT_LOG_NAME = "stdout.log"
STDERR_LOG_NAME = "stderr.log"
STALE_LOG_PATTERN = "*.log"
NATIVE_LOG_PATTERN = "*.log"

#* --- Supervisor Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_DIR = pathlib.Path(os.getenv("LOG_DIR", "logs"))
LOG_FILE = os.getenv("LOG_FILE", "opencode-supervisor.jsonl")
ENABLE_JSON_LOGGING = os.getenv("ENABLE_JSON_LOGGING", "True").lower() in ('true', '1', 't')
ENABLE_CONSOLE_LOGGING = os.getenv("ENABLE_CONSOLE_LOGGING", "True").lower() in ('true', '1', 't')
LOG_BUFFER_SIZE = 100
LOG_BUFFER_FLUSH_INTERVAL = 1

#* --- Operator Guidance ---
DEBUG_GUIDANCE = [
    "No OpenCode logs could be captured automatically",
    "Try running with debug mode: docker run -it <container-name> --debug",
    "Then manually run: opencode --print-logs",
    "Or check OpenCode logs at: {native_log_dir}",
]
