"""
Length-prefixed JSON framing (`<byte-length>:<json>`) and the three byte
streams it runs over: stdin/stdout, a TCP connection and a child process.

`read_message` / `write_message` are the only codec; every transport is a
`MessageIO` around a pair of binary file objects.
"""
import json
import logging
import socket
import subprocess
import sys
import threading
from typing import Any, BinaryIO, List, Optional

from .constants import (
    BOT_STDERR_INHERIT,
    CONNECT_TIMEOUT_SECONDS,
    MAX_LENGTH_PREFIX_BYTES,
    MAX_LENGTH_PREFIX_DIGITS,
)
from .models import ProtocolError, PunterError

LOGGER = logging.getLogger(__name__)


class FramingError(PunterError):
    """Raised when the byte stream does not carry a well-formed frame."""


def read_frame(reader: BinaryIO) -> str:
    """Read one framed message and return its payload as text."""
    prefix = bytearray()
    while True:
        byte = reader.read(1)
        if not byte:
            if not prefix:
                raise FramingError("stream closed before a message started")
            raise FramingError(f"stream closed inside length prefix {bytes(prefix)!r}")
        if byte == b":":
            break
        prefix += byte
        if len(prefix) > MAX_LENGTH_PREFIX_BYTES or len(prefix.strip()) > MAX_LENGTH_PREFIX_DIGITS:
            raise FramingError(f"length prefix too long: {bytes(prefix[:32])!r}")

    text = prefix.decode("ascii", errors="replace").strip()
    if not text.isdigit():
        raise FramingError(f"invalid length prefix: {text!r}")
    length = int(text)

    chunks: List[bytes] = []
    remaining = length
    while remaining > 0:
        chunk = reader.read(remaining)
        if not chunk:
            raise FramingError(f"stream closed after {length - remaining} of {length} bytes")
        chunks.append(chunk)
        remaining -= len(chunk)

    try:
        payload = b"".join(chunks).decode("utf-8")
    except UnicodeDecodeError as exc:
        raise FramingError(f"payload is not valid UTF-8: {exc}") from exc
    LOGGER.debug("<= %s", payload)
    return payload


def write_frame(writer: BinaryIO, payload: str) -> None:
    data = payload.encode("utf-8")
    LOGGER.debug("=> %s", payload)
    try:
        writer.write(str(len(data)).encode("ascii") + b":" + data)
        writer.flush()
    except (OSError, ValueError) as exc:
        raise FramingError(f"failed to write message: {exc}") from exc


def read_message(reader: BinaryIO) -> Any:
    """Read one frame and decode its JSON body."""
    payload = read_frame(reader)
    try:
        return json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ProtocolError(f"message is not valid JSON: {exc}") from exc


def write_message(writer: BinaryIO, message: Any) -> None:
    write_frame(writer, json.dumps(message, separators=(",", ":")))


class MessageIO:
    """A framed JSON channel over a reader/writer pair."""

    def __init__(self, reader: BinaryIO, writer: BinaryIO) -> None:
        self.reader = reader
        self.writer = writer

    def read(self) -> Any:
        return read_message(self.reader)

    def write(self, message: Any) -> None:
        write_message(self.writer, message)

    def close(self) -> None:
        for stream in (self.writer, self.reader):
            try:
                stream.close()
            except OSError:
                pass

    def __enter__(self) -> "MessageIO":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @classmethod
    def stdio(cls) -> "MessageIO":
        return cls(sys.stdin.buffer, sys.stdout.buffer)


class TcpIO(MessageIO):
    """Framed channel over a TCP connection to a game server."""

    def __init__(self, host: str, port: int, timeout: Optional[float] = CONNECT_TIMEOUT_SECONDS) -> None:
        LOGGER.debug("connecting to %s:%s", host, port)
        try:
            self.sock = socket.create_connection((host, port), timeout=timeout)
        except OSError as exc:
            raise FramingError(f"cannot connect to {host}:{port}: {exc}") from exc
        # Turns can take arbitrarily long on the server side.
        self.sock.settimeout(None)
        stream = self.sock.makefile("rwb")
        super().__init__(stream, stream)
        LOGGER.debug("connected")

    def close(self) -> None:
        super().close()
        self.sock.close()


class ChildIO(MessageIO):
    """Framed channel over the stdin/stdout pipes of a spawned program.

    The child's stderr is read on a background thread for as long as the
    process runs, so a chatty child never blocks on a full pipe while we
    wait for its reply. What it wrote is logged once it exits.
    """

    def __init__(self, command: List[str]) -> None:
        self.command = list(command)
        self._stderr_chunks: List[bytes] = []
        self._stderr_thread: Optional[threading.Thread] = None
        try:
            self.process = subprocess.Popen(
                self.command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=None if BOT_STDERR_INHERIT else subprocess.PIPE,
            )
        except OSError as exc:
            raise FramingError(f"failed to start {self.command!r}: {exc}") from exc
        if self.process.stderr is not None:
            self._stderr_thread = threading.Thread(target=self._drain_stderr, name="child-stderr", daemon=True)
            self._stderr_thread.start()
        super().__init__(self.process.stdout, self.process.stdin)

    def _drain_stderr(self) -> None:
        stream = self.process.stderr
        try:
            for chunk in iter(lambda: stream.read1(65536), b""):
                self._stderr_chunks.append(chunk)
        except (OSError, ValueError):
            # pipe closed under us by kill()
            pass

    def _collect_stderr(self, timeout: Optional[float]) -> bytes:
        if self._stderr_thread is None:
            return b""
        self._stderr_thread.join(timeout)
        if self._stderr_thread.is_alive():
            # a grandchild still holds the pipe open
            LOGGER.warning("stderr of %s still open after exit", self.command)
        self._stderr_thread = None
        return b"".join(self._stderr_chunks)

    def finish(self) -> int:
        """Close our end of the pipes, wait for exit and return the exit code.

        Blocks until the child closes stdout; callers bound this with their
        own deadline that kills the process. Anything the child wrote to
        stderr is logged, not treated as failure.
        """
        try:
            self.process.stdin.close()
        except OSError:
            pass
        try:
            trailing = self.process.stdout.read()
        except (OSError, ValueError) as exc:
            raise FramingError(f"lost pipes to {self.command!r}: {exc}") from exc
        if trailing:
            LOGGER.debug("ignoring %d trailing bytes from %s", len(trailing), self.command)
        code = self.process.wait()
        stderr = self._collect_stderr(5)
        if stderr:
            LOGGER.info("stderr of %s: %s", self.command, stderr.decode("utf-8", errors="replace"))
        return code

    def kill(self) -> None:
        if self.process.poll() is None:
            self.process.kill()
        try:
            self.process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            LOGGER.warning("%s did not die after kill", self.command)
        self._collect_stderr(5)
        for stream in (self.process.stdin, self.process.stdout, self.process.stderr):
            if stream is None:
                continue
            try:
                stream.close()
            except OSError:
                pass

    def close(self) -> None:
        self.kill()
