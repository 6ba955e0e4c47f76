from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import List

import pytest

from opencode_supervisor.config import MonitorConfig


@pytest.fixture(autouse=True)
def _isolate_supervisor_env(monkeypatch: pytest.MonkeyPatch) -> None:
    # A developer shell or CI image may export the container settings; tests
    # must only ever see the values they set themselves.
    for key in list(os.environ):
        if key.startswith("OPENCODE_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def restore_root_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


def python_child(code: str) -> List[str]:
    return [sys.executable, "-c", code]


def fast_config(tmp_path: Path, **overrides) -> MonitorConfig:
    """Sub-second timings so the lifecycle scenarios run quickly."""
    values = dict(
        startup_timeout=5.0,
        early_exit_threshold=1.0,
        poll_interval=0.05,
        log_dir=tmp_path / "captured",
        native_log_dir=tmp_path / "native",
        shutdown_grace_period=1.0,
        failure_grace_period=0.5,
        failure_settle_delay=0.0,
        drain_timeout=5.0,
    )
    values.update(overrides)
    return MonitorConfig(**values)
