from __future__ import annotations

from pathlib import Path

import pytest

from opencode_supervisor import settings
from opencode_supervisor.config import MonitorConfig, load_config
from opencode_supervisor.errors import ConfigError


@pytest.mark.basic
def test_load_config_defaults_match_container_defaults() -> None:
    config = load_config({})
    assert config.startup_timeout == 60
    assert config.early_exit_threshold == 10
    assert config.poll_interval == 2
    assert config.shutdown_grace_period == 10
    assert config.log_dir == Path("/var/log/opencode")
    assert config.native_log_dir == settings.DEFAULT_NATIVE_LOG_DIR


@pytest.mark.basic
def test_load_config_reads_environment(tmp_path: Path) -> None:
    config = load_config(
        {
            "OPENCODE_STARTUP_TIMEOUT": "30",
            "OPENCODE_EARLY_EXIT_THRESHOLD": "2.5",
            "OPENCODE_LOG_DIR": str(tmp_path / "logs"),
            "OPENCODE_NATIVE_LOG_DIR": str(tmp_path / "native"),
            "OPENCODE_FAILURE_LOG_SETTLE": "0",
        }
    )
    assert config.startup_timeout == 30.0
    assert config.early_exit_threshold == 2.5
    assert config.log_dir == tmp_path / "logs"
    assert config.native_log_dir == tmp_path / "native"
    assert config.failure_settle_delay == 0.0


@pytest.mark.basic
def test_load_config_uses_process_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENCODE_POLL_INTERVAL", "0.25")
    assert load_config().poll_interval == 0.25


@pytest.mark.basic
@pytest.mark.parametrize("raw", ["soon", "-5", "0", "   "])
def test_invalid_environment_values_fall_back_to_defaults(raw: str) -> None:
    config = load_config({"OPENCODE_STARTUP_TIMEOUT": raw})
    assert config.startup_timeout == settings.STARTUP_TIMEOUT


@pytest.mark.basic
def test_direct_construction_rejects_non_positive_durations() -> None:
    with pytest.raises(ConfigError):
        MonitorConfig(startup_timeout=0)
    with pytest.raises(ValueError):
        MonitorConfig(poll_interval=-1)
    with pytest.raises(ConfigError):
        MonitorConfig(failure_settle_delay=-0.1)


@pytest.mark.basic
def test_threshold_above_timeout_is_accepted_with_warning(caplog: pytest.LogCaptureFixture) -> None:
    config = MonitorConfig(startup_timeout=5, early_exit_threshold=10)
    assert config.early_exit_threshold == 10
    assert "not below the startup timeout" in caplog.text


@pytest.mark.basic
def test_config_is_immutable() -> None:
    config = MonitorConfig()
    with pytest.raises(Exception):
        config.startup_timeout = 1  # type: ignore[misc]
