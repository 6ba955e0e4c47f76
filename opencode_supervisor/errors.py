class SupervisorError(Exception):
    """Base class for all supervisor errors."""


class ConfigError(SupervisorError, ValueError):
    """Raised when a MonitorConfig is built with invalid values."""


class SupervisorBusyError(SupervisorError):
    """Raised when run() is called while another run is still active."""


class ShutdownRequested(BaseException):
    """
    Raised from the signal handler into the main thread so that a blocked
    monitor or wait returns control to the lifecycle controller.

    Derives from BaseException, like KeyboardInterrupt, so that no
    `except Exception` on the main thread can swallow it.
    """

    def __init__(self, signum: int):
        super().__init__(f"Shutdown requested by signal {signum}")
        self.signum = signum
