import os
from pathlib import Path
from dataclasses import dataclass
from typing import Mapping, Optional

import opencode_supervisor.settings as default_settings
from opencode_supervisor.errors import ConfigError
from opencode_supervisor.log import get_logger

log = get_logger(__name__, "config")


@dataclass(frozen=True)
class MonitorConfig:
    """
    Immutable settings for a single supervisor.

    All durations are in seconds. The early-exit threshold is expected to be
    smaller than the startup timeout; a larger threshold is accepted but the
    startup monitor can then only time out for a child that keeps running.
    """
    startup_timeout: float = default_settings.STARTUP_TIMEOUT
    early_exit_threshold: float = default_settings.EARLY_EXIT_THRESHOLD
    poll_interval: float = default_settings.POLL_INTERVAL
    log_dir: Path = default_settings.DEFAULT_LOG_DIR
    native_log_dir: Path = default_settings.DEFAULT_NATIVE_LOG_DIR
    shutdown_grace_period: float = default_settings.GRACEFUL_SHUTDOWN_TIMEOUT
    failure_grace_period: float = default_settings.FAILURE_KILL_GRACE
    failure_settle_delay: float = default_settings.FAILURE_LOG_SETTLE
    drain_timeout: float = default_settings.DRAIN_TIMEOUT

    def __post_init__(self) -> None:
        for name in ("startup_timeout", "early_exit_threshold", "poll_interval",
                     "shutdown_grace_period", "drain_timeout"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
                raise ConfigError(f"{name} must be a positive number of seconds, got {value!r}")
        for name in ("failure_grace_period", "failure_settle_delay"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or isinstance(value, bool) or value < 0:
                raise ConfigError(f"{name} must not be negative, got {value!r}")

        # Accept str paths from callers
        object.__setattr__(self, "log_dir", Path(self.log_dir))
        object.__setattr__(self, "native_log_dir", Path(self.native_log_dir))

        if self.early_exit_threshold >= self.startup_timeout:
            log.warning(
                f"Early-exit threshold ({self.early_exit_threshold}s) is not below the startup "
                f"timeout ({self.startup_timeout}s). Startup monitoring will time out before "
                "a running process can be confirmed."
            )


def _read_duration(environ: Mapping[str, str], key: str, default: float, allow_zero: bool = False) -> float:
    """
    Reads a duration from the environment.
    Malformed or out-of-range values fall back to the default with a warning.
    """
    raw = environ.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        log.warning(f"Ignoring invalid value for {key}: {raw!r}. Using default {default}s.")
        return default
    if value < 0 or (value == 0 and not allow_zero):
        log.warning(f"Ignoring out-of-range value for {key}: {raw!r}. Using default {default}s.")
        return default
    return value


def load_config(environ: Optional[Mapping[str, str]] = None) -> MonitorConfig:
    """
    Builds a MonitorConfig from environment variables, applying defaults for
    anything unset or invalid.

    :param environ: The mapping to read from. Defaults to os.environ.
    :return: The resulting immutable configuration.
    """
    env = os.environ if environ is None else environ
    s = default_settings

    log_dir = env.get(s.ENV_LOG_DIR) or str(s.DEFAULT_LOG_DIR)
    native_log_dir = env.get(s.ENV_NATIVE_LOG_DIR) or str(s.DEFAULT_NATIVE_LOG_DIR)

    return MonitorConfig(
        startup_timeout=_read_duration(env, s.ENV_STARTUP_TIMEOUT, s.STARTUP_TIMEOUT),
        early_exit_threshold=_read_duration(env, s.ENV_EARLY_EXIT_THRESHOLD, s.EARLY_EXIT_THRESHOLD),
        poll_interval=_read_duration(env, s.ENV_POLL_INTERVAL, s.POLL_INTERVAL),
        log_dir=Path(log_dir).expanduser(),
        native_log_dir=Path(native_log_dir).expanduser(),
        shutdown_grace_period=_read_duration(env, s.ENV_SHUTDOWN_GRACE, s.GRACEFUL_SHUTDOWN_TIMEOUT),
        failure_grace_period=_read_duration(env, s.ENV_FAILURE_GRACE, s.FAILURE_KILL_GRACE, allow_zero=True),
        failure_settle_delay=_read_duration(env, s.ENV_FAILURE_SETTLE, s.FAILURE_LOG_SETTLE, allow_zero=True),
        drain_timeout=_read_duration(env, s.ENV_DRAIN_TIMEOUT, s.DRAIN_TIMEOUT),
    )
