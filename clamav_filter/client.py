"""Synchronous clamd client over a TCP or unix stream socket."""

from __future__ import annotations

import logging
import socket
import time
from dataclasses import replace
from typing import BinaryIO, Union

from clamav_filter import protocol
from clamav_filter.config import DEFAULT_CLAMD_SOCK, DEFAULT_TIMEOUT, TCP, UNIX, Endpoint, check_limits
from clamav_filter.exceptions import (
    ClamAVConfigurationError,
    ClamAVConnectionError,
    ClamAVError,
    ClamAVServiceUnavailableError,
    ClamAVTimeoutError,
)
from clamav_filter.models import HealthCheckResult, ScanResult, VersionInfo

logger = logging.getLogger(__name__)


class ClamdClient:
    """Blocking client for a running ``clamd``.

    Every command uses its own connection, so one instance may be shared
    between threads.

    Args:
        endpoint: Daemon location, either an :class:`Endpoint` or a
            ``clamd_sock`` string such as ``"3310"`` or
            ``"/run/clamav/clamd.ctl"``.
        timeout: Connect and read deadline in seconds. *None* blocks.
        chunk_size: INSTREAM chunk size in bytes.

    Example::

        client = ClamdClient("3310")
        result = client.scan(message_bytes)
        if result.is_infected:
            print(result.signature)
    """

    def __init__(
        self,
        endpoint: Union[Endpoint, str, int] = DEFAULT_CLAMD_SOCK,
        timeout: float | None = DEFAULT_TIMEOUT,
        chunk_size: int = protocol.DEFAULT_CHUNK_SIZE,
    ) -> None:
        self._endpoint = endpoint if isinstance(endpoint, Endpoint) else Endpoint.parse(endpoint)
        if self._endpoint.transport not in (TCP, UNIX):
            raise ClamAVConfigurationError(f"ClamdClient cannot talk to {self._endpoint}")
        check_limits(timeout, chunk_size)
        self._timeout = timeout
        self._chunk_size = chunk_size

    @property
    def endpoint(self) -> Endpoint:
        return self._endpoint

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def scan(self, data: Union[bytes, BinaryIO]) -> ScanResult:
        """Ping the daemon, stream *data* to it, and classify the reply.

        Never raises :class:`ClamAVError`; every failure comes back as a
        ``status="ERROR"`` result with :attr:`ScanResult.error_kind` set.

        Args:
            data: Raw message bytes or a readable binary stream.

        Returns:
            A :class:`ScanResult` with the scan outcome.
        """
        start = time.monotonic()
        try:
            self._ping()
            result = self.instream(data)
        except ClamAVError as exc:
            elapsed = time.monotonic() - start
            logger.warning("clamd scan via %s failed (%s): %s", self._endpoint, exc.kind, exc)
            return ScanResult.from_error(exc, scan_time=elapsed)

        elapsed = time.monotonic() - start
        if result.is_infected:
            logger.info("clamd found %s", result.signature)
        return replace(result, scan_time=elapsed)

    def ping(self) -> bool:
        """Return ``True`` if the daemon answers ``PONG``. Never raises."""
        return self.health_check().healthy

    def health_check(self) -> HealthCheckResult:
        """Probe the daemon with ``PING``.

        Returns:
            A :class:`HealthCheckResult`; failures are reported in
            ``message`` rather than raised.
        """
        try:
            self._ping()
        except ClamAVError as exc:
            return HealthCheckResult(healthy=False, message=str(exc))
        return HealthCheckResult(healthy=True, message=protocol.PONG)

    def version(self) -> VersionInfo:
        """Retrieve engine and signature database versions.

        Raises:
            ClamAVConnectionError: If the daemon is unreachable.
            ClamAVProtocolError: If the reply is not a version string.
        """
        return protocol.parse_version(self._command(protocol.VERSION))

    def instream(self, data: Union[bytes, BinaryIO]) -> ScanResult:
        """Run a single ``INSTREAM`` scan without the liveness probe.

        Raises:
            ClamAVConnectionError: If the daemon is unreachable.
            ClamAVTimeoutError: If no reply arrives before the deadline.
            ClamAVDaemonError: If the daemon answers ``ERROR``.
            ClamAVProtocolError: If the reply cannot be classified.
        """
        with self._connect() as sock:
            send_error: OSError | None = None
            try:
                sock.sendall(protocol.INSTREAM)
                for frame in protocol.iter_chunks(data, self._chunk_size):
                    sock.sendall(frame)
            except socket.timeout as exc:
                raise ClamAVTimeoutError(f"timed out sending to clamd at {self._endpoint}") from exc
            except OSError as exc:
                # clamd hangs up early on size-limit errors but leaves the reply behind
                logger.debug("clamd closed the stream early: %s", exc)
                send_error = exc
            try:
                line = self._read_reply(sock)
            except ClamAVError:
                if send_error is not None:
                    raise ClamAVConnectionError(
                        f"connection to clamd at {self._endpoint} lost: {send_error}"
                    ) from send_error
                raise
        logger.debug("clamd replied %r", line)
        return protocol.parse_scan_response(line)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _ping(self) -> None:
        with self._connect() as sock:
            # once connected, any failed exchange means the daemon is not answering
            try:
                line = self._exchange(sock, protocol.PING)
            except ClamAVError as exc:
                logger.debug("PING to clamd at %s failed: %s", self._endpoint, exc)
                raise ClamAVServiceUnavailableError("daemon not responding", raw=exc.raw) from exc
        protocol.check_pong(line)

    def _command(self, command: bytes) -> str:
        with self._connect() as sock:
            return self._exchange(sock, command)

    def _exchange(self, sock: socket.socket, command: bytes) -> str:
        try:
            sock.sendall(command)
        except socket.timeout as exc:
            raise ClamAVTimeoutError(f"timed out sending to clamd at {self._endpoint}") from exc
        except OSError as exc:
            raise ClamAVConnectionError(f"connection to clamd at {self._endpoint} lost: {exc}") from exc
        return self._read_reply(sock)

    def _connect(self) -> socket.socket:
        logger.debug("connecting to clamd at %s", self._endpoint)
        try:
            if self._endpoint.transport == UNIX:
                sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
                try:
                    sock.settimeout(self._timeout)
                    sock.connect(self._endpoint.path)
                except BaseException:
                    sock.close()
                    raise
            else:
                sock = socket.create_connection(
                    (self._endpoint.host, self._endpoint.port), timeout=self._timeout
                )
        except OSError as exc:
            raise ClamAVConnectionError(f"cannot connect to clamd at {self._endpoint}: {exc}") from exc
        return sock

    def _read_reply(self, sock: socket.socket) -> str:
        buffer = b""
        while True:
            try:
                chunk = sock.recv(4096)
            except socket.timeout as exc:
                raise ClamAVTimeoutError(f"timed out waiting for clamd at {self._endpoint}") from exc
            except OSError as exc:
                raise ClamAVConnectionError(f"connection to clamd at {self._endpoint} lost: {exc}") from exc
            if not chunk:
                return protocol.finish_reply(buffer)
            buffer += chunk
            line = protocol.split_reply(buffer)
            if line is not None:
                return protocol.decode_line(line)
