"""Asynchronous clamd client built on :mod:`asyncio` streams."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace
from typing import Awaitable, BinaryIO, TypeVar, Union

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

_T = TypeVar("_T")


class AsyncClamdClient:
    """Asynchronous client for a running ``clamd``.

    Args:
        endpoint: Daemon location, either an :class:`Endpoint` or a
            ``clamd_sock`` string.
        timeout: Deadline in seconds applied to connecting and to each
            read. *None* waits forever.
        chunk_size: INSTREAM chunk size in bytes.

    Example::

        client = AsyncClamdClient("clamav:3310")
        result = await client.scan(message_bytes)
    """

    def __init__(
        self,
        endpoint: Union[Endpoint, str, int] = DEFAULT_CLAMD_SOCK,
        timeout: float | None = DEFAULT_TIMEOUT,
        chunk_size: int = protocol.DEFAULT_CHUNK_SIZE,
    ) -> None:
        self._endpoint = endpoint if isinstance(endpoint, Endpoint) else Endpoint.parse(endpoint)
        if self._endpoint.transport not in (TCP, UNIX):
            raise ClamAVConfigurationError(f"AsyncClamdClient cannot talk to {self._endpoint}")
        check_limits(timeout, chunk_size)
        self._timeout = timeout
        self._chunk_size = chunk_size

    @property
    def endpoint(self) -> Endpoint:
        return self._endpoint

    async def scan(self, data: Union[bytes, BinaryIO]) -> ScanResult:
        """Ping the daemon, stream *data*, and classify the reply.

        Never raises :class:`ClamAVError`; see :meth:`ClamdClient.scan`.
        """
        start = time.monotonic()
        try:
            await self._ping()
            result = await self.instream(data)
        except ClamAVError as exc:
            elapsed = time.monotonic() - start
            logger.warning("clamd scan via %s failed (%s): %s", self._endpoint, exc.kind, exc)
            return ScanResult.from_error(exc, scan_time=elapsed)

        if result.is_infected:
            logger.info("clamd found %s", result.signature)
        return replace(result, scan_time=time.monotonic() - start)

    async def ping(self) -> bool:
        return (await self.health_check()).healthy

    async def health_check(self) -> HealthCheckResult:
        try:
            await self._ping()
        except ClamAVError as exc:
            return HealthCheckResult(healthy=False, message=str(exc))
        return HealthCheckResult(healthy=True, message=protocol.PONG)

    async def version(self) -> VersionInfo:
        return protocol.parse_version(await self._command(protocol.VERSION))

    async def instream(self, data: Union[bytes, BinaryIO]) -> ScanResult:
        """Run a single ``INSTREAM`` scan, raising on every failure."""
        reader, writer = await self._connect()
        # clamd may answer and hang up before the stream ends; a reset would
        # make the reader drop that reply unless it is already being read
        reply = asyncio.ensure_future(self._read_line(reader))
        try:
            failure: Exception | None = None
            try:
                writer.write(protocol.INSTREAM)
                for frame in protocol.iter_chunks(data, self._chunk_size):
                    if reply.done():
                        failure = ClamAVConnectionError("clamd stopped reading the stream")
                        break
                    writer.write(frame)
                    await self._wait(writer.drain(), "sending to")
            except OSError as exc:
                logger.debug("clamd closed the stream early: %s", exc)
                failure = exc
            try:
                line = await self._wait(reply, "waiting for")
            except ClamAVError:
                if failure is not None:
                    raise ClamAVConnectionError(
                        f"connection to clamd at {self._endpoint} lost: {failure}"
                    ) from failure
                raise
        finally:
            reply.cancel()
            await asyncio.gather(reply, return_exceptions=True)
            await _close(writer)
        logger.debug("clamd replied %r", line)
        return protocol.parse_scan_response(line)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _ping(self) -> None:
        reader, writer = await self._connect()
        try:
            # once connected, any failed exchange means the daemon is not answering
            try:
                line = await self._exchange(reader, writer, protocol.PING)
            except ClamAVError as exc:
                logger.debug("PING to clamd at %s failed: %s", self._endpoint, exc)
                raise ClamAVServiceUnavailableError("daemon not responding", raw=exc.raw) from exc
        finally:
            await _close(writer)
        protocol.check_pong(line)

    async def _command(self, command: bytes) -> str:
        reader, writer = await self._connect()
        try:
            return await self._exchange(reader, writer, command)
        finally:
            await _close(writer)

    async def _exchange(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter, command: bytes) -> str:
        try:
            writer.write(command)
            await self._wait(writer.drain(), "sending to")
        except OSError as exc:
            raise ClamAVConnectionError(f"connection to clamd at {self._endpoint} lost: {exc}") from exc
        return await self._wait(self._read_line(reader), "waiting for")

    async def _connect(self) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        logger.debug("connecting to clamd at %s", self._endpoint)
        if self._endpoint.transport == UNIX:
            opening = asyncio.open_unix_connection(self._endpoint.path)
        else:
            opening = asyncio.open_connection(self._endpoint.host, self._endpoint.port)
        try:
            return await asyncio.wait_for(opening, self._timeout)
        except (OSError, asyncio.TimeoutError) as exc:
            reason = str(exc) or "timed out"
            raise ClamAVConnectionError(f"cannot connect to clamd at {self._endpoint}: {reason}") from exc

    async def _read_line(self, reader: asyncio.StreamReader) -> str:
        buffer = b""
        while True:
            try:
                chunk = await reader.read(4096)
            except OSError as exc:
                raise ClamAVConnectionError(f"connection to clamd at {self._endpoint} lost: {exc}") from exc
            if not chunk:
                return protocol.finish_reply(buffer)
            buffer += chunk
            line = protocol.split_reply(buffer)
            if line is not None:
                return protocol.decode_line(line)

    async def _wait(self, awaitable: Awaitable[_T], action: str) -> _T:
        try:
            return await asyncio.wait_for(awaitable, self._timeout)
        except asyncio.TimeoutError as exc:
            raise ClamAVTimeoutError(f"timed out {action} clamd at {self._endpoint}") from exc


async def _close(writer: asyncio.StreamWriter) -> None:
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
