"""clamd wire protocol: command framing, INSTREAM chunks, and reply parsing.

Commands are sent in the NUL-delimited ``z`` form (``zPING\\0``) so every
reply is terminated by a single NUL byte. Shared by the sync and async
socket clients; nothing here performs I/O.
"""

from __future__ import annotations

import io
import struct
from typing import BinaryIO, Iterator, Union

from clamav_filter.exceptions import (
    ClamAVDaemonError,
    ClamAVProtocolError,
    ClamAVServiceUnavailableError,
)
from clamav_filter.models import CLEAN, ERROR, INFECTED, ScanResult, VersionInfo

PING = b"zPING\0"
VERSION = b"zVERSION\0"
INSTREAM = b"zINSTREAM\0"
PONG = "PONG"

DEFAULT_CHUNK_SIZE = 64 * 1024
MAX_RESPONSE = 16 * 1024
TERMINATORS = (b"\0", b"\n")

_LENGTH = struct.Struct("!I")
END_OF_STREAM = _LENGTH.pack(0)


def iter_chunks(data: Union[bytes, BinaryIO], chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
    """Yield length-prefixed INSTREAM frames followed by the zero-length terminator."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    stream: BinaryIO = io.BytesIO(data) if isinstance(data, (bytes, bytearray, memoryview)) else data
    while True:
        piece = stream.read(chunk_size)
        if not piece:
            break
        yield _LENGTH.pack(len(piece)) + piece
    yield END_OF_STREAM


def split_reply(buffer: bytes) -> bytes | None:
    """Return the first complete reply line in *buffer*, or *None* if not yet terminated."""
    ends = [idx for idx in (buffer.find(t) for t in TERMINATORS) if idx != -1]
    if not ends:
        if len(buffer) > MAX_RESPONSE:
            raise ClamAVProtocolError(f"response exceeds {MAX_RESPONSE} bytes without terminator")
        return None
    return buffer[: min(ends)]


def finish_reply(buffer: bytes) -> str:
    """Decode a reply once the peer closed the connection.

    A non-empty buffer without a terminator is a truncated reply.
    """
    line = split_reply(buffer)
    if line is None:
        if buffer:
            raise ClamAVProtocolError(
                "truncated response from clamd", raw=buffer.decode("utf-8", "replace")
            )
        raise ClamAVProtocolError("empty response from clamd")
    return decode_line(line)


def decode_line(line: bytes) -> str:
    return line.decode("utf-8", "replace").strip("\r\n\0 ")


def check_pong(line: str) -> None:
    if line != PONG:
        raise ClamAVServiceUnavailableError("daemon not responding", raw=line)


def parse_version(line: str) -> VersionInfo:
    """Parse ``ClamAV 1.3.0/27428/Wed Oct 16 08:24:01 2024``."""
    if not line.startswith("ClamAV "):
        raise ClamAVProtocolError(f"unexpected VERSION response: {line!r}", raw=line)
    parts = line[len("ClamAV "):].split("/", 2)
    parts += [""] * (3 - len(parts))
    return VersionInfo(version=parts[0], database=parts[1], database_date=parts[2])


def classify(status: str, details: str, raw: str = "") -> ScanResult:
    """Map a status token and its details onto a :class:`ScanResult`.

    Raises:
        ClamAVDaemonError: The daemon reported ``ERROR``.
        ClamAVProtocolError: The status is unknown or ``FOUND`` lacks a name.
    """
    if status == CLEAN:
        if details:
            raise ClamAVProtocolError(f"unexpected details in OK response: {details!r}", raw=raw)
        return ScanResult.clean(raw=raw)
    if status == INFECTED:
        if not details:
            raise ClamAVProtocolError("FOUND response without signature name", raw=raw)
        return ScanResult.infected(details, raw=raw)
    if status == ERROR:
        raise ClamAVDaemonError(details or "clamd returned error", raw=raw)
    raise ClamAVProtocolError(f"unrecognized status {status!r}", raw=raw)


def parse_scan_response(line: str) -> ScanResult:
    """Classify a decoded INSTREAM reply line.

    Recognised forms::

        stream: OK
        stream: Eicar-Signature FOUND
        stream: Can't allocate memory ERROR
        INSTREAM size limit exceeded. ERROR
    """
    if not line:
        raise ClamAVProtocolError("empty response from clamd")

    head, _, status = line.rpartition(" ")
    if status == ERROR:
        _, sep, details = head.partition(": ")
        return classify(ERROR, (details if sep else head).strip(), raw=line)

    name, sep, body = line.partition(": ")
    if not sep or not name or " " in name:
        raise ClamAVProtocolError(f"malformed response: {line!r}", raw=line)
    details, _, status = body.rpartition(" ")
    return classify(status, details.strip(), raw=line)
