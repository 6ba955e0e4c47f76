from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

from conftest import python_child
from opencode_supervisor import main as main_module
from opencode_supervisor import settings
from opencode_supervisor.main import parse_command


@pytest.mark.basic
@pytest.mark.parametrize(
    "argv, expected",
    [
        ([], settings.DEFAULT_COMMAND),
        (["--"], settings.DEFAULT_COMMAND),
        (["opencode", "serve"], ["opencode", "serve"]),
        (["--", "opencode", "--port", "4096"], ["opencode", "--port", "4096"]),
    ],
)
def test_parse_command(argv, expected) -> None:
    assert parse_command(argv) == expected


@pytest.mark.basic
def test_parse_command_returns_a_copy_of_the_default() -> None:
    command = parse_command([])
    command.append("--extra")
    assert "--extra" not in settings.DEFAULT_COMMAND


@pytest.fixture
def fast_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, restore_root_logging) -> Path:
    monkeypatch.setattr(settings, "LOG_DIR", tmp_path / "supervisor-logs")
    monkeypatch.setattr(main_module.setproctitle, "setproctitle", lambda title: None)
    monkeypatch.setenv("OPENCODE_LOG_DIR", str(tmp_path / "captured"))
    monkeypatch.setenv("OPENCODE_NATIVE_LOG_DIR", str(tmp_path / "native"))
    monkeypatch.setenv("OPENCODE_EARLY_EXIT_THRESHOLD", "0.2")
    monkeypatch.setenv("OPENCODE_STARTUP_TIMEOUT", "5")
    monkeypatch.setenv("OPENCODE_POLL_INTERVAL", "0.05")
    monkeypatch.setenv("OPENCODE_FAILURE_LOG_SETTLE", "0")
    return tmp_path


@pytest.mark.integration
def test_main_returns_child_exit_code(fast_env: Path) -> None:
    code = main_module.main(["--", *python_child("import sys, time; time.sleep(0.5); sys.exit(5)")])
    assert code == 5
    assert (fast_env / "captured" / "stdout.log").exists()


@pytest.mark.integration
def test_main_reports_early_exit_and_writes_json_log(fast_env: Path) -> None:
    code = main_module.main(python_child("import sys; print('fatal', file=sys.stderr); sys.exit(1)"))
    assert code == 1

    lines = (fast_env / "supervisor-logs" / settings.LOG_FILE).read_text().splitlines()
    entries = [json.loads(line) for line in lines]
    operations = {entry["operation"] for entry in entries}
    assert {"session_start", "opencode_start", "startup_failure", "session_end"} <= operations
    assert any(entry["level"] == "ERROR" for entry in entries)


@pytest.mark.integration
def test_main_survives_unexpected_errors(fast_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def explode(self, command=None, env=None, cwd=None):
        raise RuntimeError("kaboom")

    monkeypatch.setattr(main_module.Supervisor, "run", explode)
    assert main_module.main([sys.executable, "-c", "pass"]) == 1
