"""Shared test fixtures, including an in-process fake clamd."""

from __future__ import annotations

import os
import shutil
import socket
import socketserver
import struct
import tempfile
import threading
import time
from typing import Iterator

import pytest

EICAR = b"X5O!P%@AP[4\\PZX54(P^)7CC)7}$EICAR-STANDARD-ANTIVIRUS-TEST-FILE!$H+H*"


class FakeClamdHandler(socketserver.BaseRequestHandler):
    """Speaks just enough of the clamd ``z`` command protocol for the clients."""

    def handle(self) -> None:
        command = self._read_command()
        self.server.commands.append(command)  # type: ignore[attr-defined]
        delay = self.server.delay  # type: ignore[attr-defined]
        if command == b"zPING":
            if self.server.reset_peer:  # type: ignore[attr-defined]
                self._reset()
                return
            reply = self.server.ping_reply  # type: ignore[attr-defined]
        elif command == b"zVERSION":
            reply = self.server.version_reply  # type: ignore[attr-defined]
        elif command == b"zINSTREAM":
            if self.server.early_reply is not None:  # type: ignore[attr-defined]
                self._hang_up_after_first_chunk()
                return
            try:
                self.server.payloads.append(self._read_stream())  # type: ignore[attr-defined]
            except ConnectionError:
                return
            reply = self.server.scan_reply  # type: ignore[attr-defined]
            delay += self.server.scan_delay  # type: ignore[attr-defined]
        else:
            reply = b"UNKNOWN COMMAND\0"

        if delay:
            time.sleep(delay)
        if reply:
            self.request.sendall(reply)

    def _reset(self) -> None:
        """Abort the connection with a TCP RST instead of a FIN."""
        self.request.setsockopt(socket.SOL_SOCKET, socket.SO_LINGER, struct.pack("ii", 1, 0))
        self.request.close()

    def _hang_up_after_first_chunk(self) -> None:
        # like clamd past StreamMaxLength: answer, then close with input unread
        (size,) = struct.unpack("!I", self._recv_exact(4))
        self._recv_exact(size)
        if self.server.early_reply:  # type: ignore[attr-defined]
            self.request.sendall(self.server.early_reply)  # type: ignore[attr-defined]

    def _read_command(self) -> bytes:
        buf = b""
        while not buf.endswith(b"\0"):
            byte = self.request.recv(1)
            if not byte:
                break
            buf += byte
        return buf.rstrip(b"\0")

    def _recv_exact(self, size: int) -> bytes:
        buf = b""
        while len(buf) < size:
            chunk = self.request.recv(size - len(buf))
            if not chunk:
                raise ConnectionError("client hung up mid-stream")
            buf += chunk
        return buf

    def _read_stream(self) -> bytes:
        payload = b""
        while True:
            (size,) = struct.unpack("!I", self._recv_exact(4))
            if size == 0:
                return payload
            payload += self._recv_exact(size)


class _FakeClamdMixin:
    daemon_threads = True
    block_on_close = False

    def reset(self) -> None:
        self.commands: list[bytes] = []
        self.payloads: list[bytes] = []
        self.ping_reply = b"PONG\0"
        self.version_reply = b"ClamAV 1.3.0/27428/Wed Oct 16 08:24:01 2024\0"
        self.scan_reply = b"stream: OK\0"
        self.delay = 0.0
        self.scan_delay = 0.0
        self.reset_peer = False
        self.early_reply: bytes | None = None


class FakeClamdTCPServer(_FakeClamdMixin, socketserver.ThreadingTCPServer):
    allow_reuse_address = True

    @property
    def clamd_sock(self) -> str:
        host, port = self.server_address[:2]
        return f"{host}:{port}"


class FakeClamdUnixServer(_FakeClamdMixin, socketserver.ThreadingUnixStreamServer):
    @property
    def clamd_sock(self) -> str:
        return str(self.server_address)


def _serve(server: socketserver.BaseServer) -> Iterator[socketserver.BaseServer]:
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield server
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=5)


@pytest.fixture()
def fake_clamd() -> Iterator[FakeClamdTCPServer]:
    server = FakeClamdTCPServer(("127.0.0.1", 0), FakeClamdHandler)
    server.reset()
    yield from _serve(server)  # type: ignore[misc]


@pytest.fixture()
def fake_clamd_unix() -> Iterator[FakeClamdUnixServer]:
    # short directory; AF_UNIX paths are limited to ~108 bytes
    directory = tempfile.mkdtemp(prefix="clamd")
    server = FakeClamdUnixServer(os.path.join(directory, "clamd.sock"), FakeClamdHandler)
    server.reset()
    try:
        yield from _serve(server)  # type: ignore[misc]
    finally:
        shutil.rmtree(directory, ignore_errors=True)


@pytest.fixture()
def closed_port() -> int:
    """A localhost port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture()
def sample_bytes() -> bytes:
    return b"From: alice@example.com\r\nSubject: hello\r\n\r\nHello, ClamAV!\r\n"


@pytest.fixture()
def eicar_bytes() -> bytes:
    """EICAR anti-malware test string (safe; every AV recognises it)."""
    return EICAR


@pytest.fixture()
def oversized_bytes() -> bytes:
    """Large enough that the socket buffers cannot absorb it after a hang-up."""
    return b"x" * (32 * 1024 * 1024)
