from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from opencode_supervisor.log import get_logger, setup_logging, shutdown_logging
from opencode_supervisor.log.handler import JsonLinesHandler, iso_timestamp
from opencode_supervisor.log.setup import MainFormatter, OperationFilter, parse_level


def _record(level: int = logging.WARNING, operation: str = "startup_monitor") -> logging.LogRecord:
    record = logging.LogRecord("opencode_supervisor.test", level, "/app/startup.py", 42, "hello %s", ("world",), None)
    record.operation = operation
    return record


@pytest.mark.basic
def test_json_handler_writes_structured_records(tmp_path: Path) -> None:
    path = tmp_path / "logs" / "supervisor.jsonl"
    handler = JsonLinesHandler(path, flush_interval=60)
    handler.handle(_record())
    handler.handle(_record(logging.CRITICAL, "cleanup"))
    handler.close()

    lines = [json.loads(line) for line in path.read_text().splitlines()]
    assert [entry["level"] for entry in lines] == ["WARN", "FATAL"]
    first = lines[0]
    assert first["operation"] == "startup_monitor"
    assert first["filename"] == "startup.py"
    assert first["script_line"] == 42
    assert first["line_number"] == 0
    assert first["message"] == "hello world"
    assert first["timestamp"].endswith("Z") and "T" in first["timestamp"]


@pytest.mark.basic
def test_json_handler_flushes_when_buffer_is_full(tmp_path: Path) -> None:
    path = tmp_path / "a.jsonl"
    handler = JsonLinesHandler(path, flush_interval=60, buffer_size=2)
    try:
        handler.handle(_record())
        assert path.read_text() == ""
        handler.handle(_record())
        assert len(path.read_text().splitlines()) == 2
    finally:
        handler.close()


@pytest.mark.basic
def test_json_handler_disables_itself_after_write_failure(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    handler = JsonLinesHandler(tmp_path / "b.jsonl", flush_interval=60)
    handler.stream.close()
    handler.handle(_record())
    handler.flush()
    assert handler.disabled
    assert "JSON logging will be disabled" in capsys.readouterr().err
    handler.close()


@pytest.mark.basic
def test_iso_timestamp_has_milliseconds() -> None:
    assert iso_timestamp(0.5) == "1970-01-01T00:00:00.500Z"


@pytest.mark.basic
def test_console_format_carries_operation_tag() -> None:
    text = MainFormatter().format(_record())
    assert "[WARN] [startup.py] [42] [startup_monitor] hello world" in text


@pytest.mark.basic
def test_untagged_records_get_placeholder_operation() -> None:
    record = logging.LogRecord("x", logging.INFO, "/a.py", 1, "msg", (), None)
    assert OperationFilter().filter(record)
    assert record.operation == "-"


@pytest.mark.basic
def test_parse_level_accepts_shell_level_names() -> None:
    assert parse_level("WARN") == logging.WARNING
    assert parse_level("fatal") == logging.CRITICAL
    assert parse_level("bogus") == logging.INFO
    assert parse_level(None, logging.DEBUG) == logging.DEBUG


@pytest.mark.basic
def test_setup_logging_writes_session_markers(tmp_path: Path, restore_root_logging: logging.Logger) -> None:
    path = tmp_path / "session.jsonl"
    setup_logging(logging.DEBUG, json_log_path=path, enable_json=True, enable_console=False, session_name="unit")
    get_logger("opencode_supervisor.tests", "log_setup").info("between markers")
    shutdown_logging("unit")

    entries = [json.loads(line) for line in path.read_text().splitlines()]
    assert [e["operation"] for e in entries] == ["session_start", "log_setup", "session_end"]
    assert entries[0]["message"] == "Logging session started for unit"
    assert entries[-1]["message"] == "Logging session ended for unit"


@pytest.mark.basic
def test_setup_logging_survives_unwritable_json_path(tmp_path: Path, restore_root_logging: logging.Logger,
                                                     capsys: pytest.CaptureFixture[str]) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("")
    setup_logging(logging.INFO, json_log_path=blocker / "x.jsonl", enable_json=True, enable_console=True)
    assert "JSON logging will be disabled" in capsys.readouterr().err
    assert not any(isinstance(h, JsonLinesHandler) for h in logging.getLogger().handlers)
