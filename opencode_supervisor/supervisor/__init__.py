"""
The Supervisor package.
Launches, monitors and diagnoses the OpenCode process.

This package contains the central Supervisor class and its helper modules,
which together handle log capture, startup monitoring, failure diagnostics
and graceful-then-forced shutdown of the managed process.
"""
from .models import FailureReport, FailureType, ManagedProcess, ProcessState, RunResult, StartupStatus
from .supervisor import Supervisor

__all__ = [
    'Supervisor', 'RunResult', 'ManagedProcess', 'ProcessState',
    'StartupStatus', 'FailureType', 'FailureReport',
]
