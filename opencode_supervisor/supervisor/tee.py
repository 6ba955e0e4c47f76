import io
import sys
import time
import codecs
import threading
from typing import BinaryIO, List, Optional, TextIO

from opencode_supervisor.log import get_logger
from opencode_supervisor.supervisor.log_sink import LogSink

log = get_logger(__name__, "log_capture")

CHUNK_SIZE = 64 * 1024


class _TextConsole:
    """Forwards raw chunks to a text-only stream such as io.StringIO."""

    def __init__(self, stream: TextIO):
        self.stream = stream
        self.decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def write(self, chunk: bytes) -> None:
        self.stream.write(self.decoder.decode(chunk))

    def flush(self) -> None:
        self.stream.flush()


def _console_buffer(stream):
    """Returns a binary destination for a console stream such as sys.stdout."""
    if stream is None:
        return None
    buffer = getattr(stream, "buffer", None)
    if buffer is not None:
        return buffer
    if isinstance(stream, io.TextIOBase):
        return _TextConsole(stream)
    return stream


class _Pump:
    """
    Copies one child pipe to the console and, optionally, a capture file
    until the pipe reaches EOF. Runs in its own thread.
    """

    def __init__(self, name: str, pipe: BinaryIO, console: Optional[BinaryIO], log_file: Optional[BinaryIO]):
        self.name = name
        self.pipe = pipe
        self.console = console
        self.log_file = log_file
        self.bytes_copied = 0
        self.file_failed = False
        self.thread = threading.Thread(target=self._run, daemon=True, name=f"tee-{name}")

    def _read(self) -> bytes:
        read1 = getattr(self.pipe, "read1", None)
        return read1(CHUNK_SIZE) if read1 else self.pipe.read(CHUNK_SIZE)

    def _write_console(self, chunk: bytes) -> None:
        if self.console is None:
            return
        try:
            self.console.write(chunk)
            self.console.flush()
        except (OSError, ValueError, TypeError) as e:
            log.warning(f"Console {self.name} is no longer writable, forwarding stopped: {e}")
            self.console = None

    def _write_file(self, chunk: bytes) -> None:
        if self.log_file is None:
            return
        try:
            self.log_file.write(chunk)
            self.log_file.flush()
        except (OSError, ValueError) as e:
            log.warning(f"Writing captured {self.name} to file failed, file capture abandoned for this run: {e}")
            self.file_failed = True
            self.log_file = None

    def _run(self) -> None:
        try:
            for chunk in iter(self._read, b""):
                self.bytes_copied += len(chunk)
                self._write_console(chunk)
                self._write_file(chunk)
        except (OSError, ValueError) as e:
            log.warning(f"Reading child {self.name} stopped: {e}")
        finally:
            self.pipe.close()


class StreamDuplicator:
    """
    Tees a child process's stdout and stderr into the supervisor's own
    stdout/stderr and the matching LogSink files, one thread per stream.
    """

    def __init__(self, stdout_pipe: Optional[BinaryIO], stderr_pipe: Optional[BinaryIO],
                 sink: Optional[LogSink] = None, console_stdout=None, console_stderr=None):
        """
        :param stdout_pipe: The child's stdout pipe (binary).
        :param stderr_pipe: The child's stderr pipe (binary).
        :param sink: Where to write the captured copies; console-only if None or unavailable.
        :param console_stdout: Destination for stdout, defaults to sys.stdout. Binary
            streams, text streams with a `.buffer` and text-only streams are accepted.
        :param console_stderr: Destination for stderr, defaults to sys.stderr.
        """
        file_capture = sink is not None and sink.available
        out_console = _console_buffer(console_stdout if console_stdout is not None else sys.stdout)
        err_console = _console_buffer(console_stderr if console_stderr is not None else sys.stderr)

        self.pumps: List[_Pump] = []
        if stdout_pipe is not None:
            self.pumps.append(_Pump("stdout", stdout_pipe, out_console,
                                    sink.stdout_file if file_capture else None))
        if stderr_pipe is not None:
            self.pumps.append(_Pump("stderr", stderr_pipe, err_console,
                                    sink.stderr_file if file_capture else None))

    def start(self) -> None:
        for pump in self.pumps:
            pump.thread.start()

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Waits for both streams to be fully drained.

        :param timeout: Maximum seconds to wait in total, None to wait forever.
        :return: True if every stream reached EOF.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        for pump in self.pumps:
            if pump.thread.ident is None:  # never started
                continue
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            pump.thread.join(remaining)
        return self.drained

    @property
    def drained(self) -> bool:
        return all(not p.thread.is_alive() for p in self.pumps)

    @property
    def file_failures(self) -> List[str]:
        return [p.name for p in self.pumps if p.file_failed]
