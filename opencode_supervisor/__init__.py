"""
OpenCode Supervisor.
Launches the OpenCode assistant inside its container, watches its startup,
tees its output into log files and shuts it down cleanly on signals.
"""

__version__ = "0.3.0"
