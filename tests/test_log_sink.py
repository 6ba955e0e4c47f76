from __future__ import annotations

from pathlib import Path

import pytest

from opencode_supervisor.supervisor import log_sink


@pytest.mark.basic
def test_prepare_creates_directory_and_fresh_capture_files(tmp_path: Path) -> None:
    target = tmp_path / "nested" / "opencode"
    sink, available = log_sink.prepare(target)
    try:
        assert available is True
        assert sink.available is True
        assert target.is_dir()
        assert sink.stdout_path == target / "stdout.log"
        assert sink.stderr_path == target / "stderr.log"
        assert sink.stdout_path.exists() and sink.stderr_path.exists()
    finally:
        sink.close()


@pytest.mark.basic
def test_prepare_clears_logs_from_previous_run(tmp_path: Path) -> None:
    (tmp_path / "stdout.log").write_text("old stdout")
    (tmp_path / "stderr.log").write_text("old stderr")
    (tmp_path / "other.log").write_text("stale")
    (tmp_path / "keep.txt").write_text("not a log")

    sink, available = log_sink.prepare(tmp_path)
    sink.close()

    assert available is True
    assert (tmp_path / "stdout.log").read_bytes() == b""
    assert (tmp_path / "stderr.log").read_bytes() == b""
    assert not (tmp_path / "other.log").exists()
    assert (tmp_path / "keep.txt").read_text() == "not a log"


@pytest.mark.basic
def test_prepare_degrades_when_directory_cannot_be_created(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("regular file")

    sink, available = log_sink.prepare(blocker / "logs")

    assert available is False
    assert sink.available is False
    assert sink.stdout_file is None and sink.stderr_file is None
    assert "Log capture will be limited to stdout/stderr" in caplog.text
    sink.close()


@pytest.mark.basic
def test_prepare_degrades_when_path_is_a_file(tmp_path: Path) -> None:
    blocker = tmp_path / "file.log"
    blocker.write_text("x")
    sink, available = log_sink.prepare(blocker)
    assert available is False
    assert blocker.read_text() == "x"


@pytest.mark.basic
def test_close_is_idempotent(tmp_path: Path) -> None:
    sink, _ = log_sink.prepare(tmp_path)
    sink.stdout_file.write(b"data")
    sink.close()
    assert sink.stdout_file.closed and sink.stderr_file.closed
    sink.close()
    assert sink.stdout_path.read_bytes() == b"data"
