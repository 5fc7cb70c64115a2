"""Synchronous client for a ClamAV REST gateway (requires ``requests``)."""

from __future__ import annotations

import logging
import os
import time
from dataclasses import replace
from typing import BinaryIO, Union

import requests

from clamav_filter import protocol
from clamav_filter.config import DEFAULT_TIMEOUT, HTTP, Endpoint, check_limits
from clamav_filter.exceptions import (
    ClamAVConfigurationError,
    ClamAVConnectionError,
    ClamAVDaemonError,
    ClamAVError,
    ClamAVProtocolError,
    ClamAVServiceUnavailableError,
    ClamAVTimeoutError,
)
from clamav_filter.models import HealthCheckResult, ScanResult

logger = logging.getLogger(__name__)


class ClamAVRestClient:
    """Scan messages through an HTTP gateway that fronts ``clamd``.

    The gateway answers ``GET /api/health-check`` with ``{"message": "ok"}``
    and ``POST /api/stream-scan`` with ``{"status", "message", "time"}``
    where ``status`` is ``OK``, ``FOUND`` or ``ERROR``.

    Args:
        endpoint: Gateway root URL or an http :class:`Endpoint`.
        timeout: Request timeout in seconds.
        session: Optional pre-configured :class:`requests.Session` for
            connection pooling or authentication headers.

    Example::

        client = ClamAVRestClient("http://localhost:6000")
        result = client.scan(message_bytes)
    """

    def __init__(
        self,
        endpoint: Union[Endpoint, str] = "http://localhost:6000",
        timeout: float | None = DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        self._endpoint = endpoint if isinstance(endpoint, Endpoint) else Endpoint.parse(endpoint)
        if self._endpoint.transport != HTTP:
            raise ClamAVConfigurationError(f"ClamAVRestClient needs an http(s) URL, got {self._endpoint}")
        check_limits(timeout)
        self._base_url = str(self._endpoint)
        self._timeout = timeout
        self._session = session or requests.Session()

    @property
    def endpoint(self) -> Endpoint:
        return self._endpoint

    def scan(self, data: Union[bytes, BinaryIO]) -> ScanResult:
        """Check gateway health, then scan *data*. Never raises :class:`ClamAVError`."""
        start = time.monotonic()
        try:
            self._require_healthy()
            result = self.scan_stream(data)
        except ClamAVError as exc:
            elapsed = time.monotonic() - start
            logger.warning("gateway scan via %s failed (%s): %s", self._base_url, exc.kind, exc)
            return ScanResult.from_error(exc, scan_time=elapsed)

        if result.is_infected:
            logger.info("clamd gateway found %s", result.signature)
        return replace(result, scan_time=time.monotonic() - start)

    def ping(self) -> bool:
        return self.health_check().healthy

    def health_check(self) -> HealthCheckResult:
        """Query ``/api/health-check``; failures are reported, not raised."""
        try:
            self._require_healthy()
        except ClamAVError as exc:
            return HealthCheckResult(healthy=False, message=str(exc))
        return HealthCheckResult(healthy=True, message="ok")

    def scan_stream(self, data: Union[bytes, BinaryIO]) -> ScanResult:
        """Post *data* to ``/api/stream-scan``, raising on every failure.

        Raises:
            ClamAVConnectionError: If the gateway is unreachable.
            ClamAVTimeoutError: On client timeout or HTTP 504.
            ClamAVServiceUnavailableError: On HTTP 502.
            ClamAVDaemonError: On HTTP 400/413 or an ``ERROR`` status.
            ClamAVProtocolError: On a body that cannot be classified.
        """
        if isinstance(data, bytes):
            content_length = len(data)
        else:
            try:
                pos = data.tell()
                data.seek(0, os.SEEK_END)
                content_length = data.tell() - pos
                data.seek(pos)
            except OSError:
                # pipes and sockets cannot seek; buffer them to learn the length
                data = data.read()
                content_length = len(data)

        headers = {
            "Content-Type": "application/octet-stream",
            "Content-Length": str(content_length),
        }
        body = self._request("POST", "/api/stream-scan", data=data, headers=headers)
        status = body.get("status")
        if not isinstance(status, str):
            raise ClamAVProtocolError(f"gateway response without status: {body!r}", raw=str(body))
        return protocol.classify(status, str(body.get("message") or "").strip(), raw=str(body))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_healthy(self) -> None:
        body = self._request("GET", "/api/health-check")
        if body.get("message") != "ok":
            raise ClamAVServiceUnavailableError("daemon not responding", raw=str(body))

    def _request(self, method: str, path: str, **kwargs: object) -> dict:
        try:
            resp = self._session.request(
                method,
                f"{self._base_url}{path}",
                timeout=self._timeout,
                **kwargs,  # type: ignore[arg-type]
            )
        except requests.ConnectTimeout as exc:
            raise ClamAVConnectionError(f"cannot connect to gateway at {self._base_url}: {exc}") from exc
        except requests.Timeout as exc:
            raise ClamAVTimeoutError(str(exc)) from exc
        except requests.ConnectionError as exc:
            raise ClamAVConnectionError(f"cannot connect to gateway at {self._base_url}: {exc}") from exc
        except requests.RequestException as exc:
            raise ClamAVConnectionError(f"request to gateway at {self._base_url} failed: {exc}") from exc

        self._raise_for_status(resp)
        try:
            body = resp.json()
        except ValueError as exc:
            raise ClamAVProtocolError("gateway returned a non-JSON body", raw=resp.text) from exc
        if not isinstance(body, dict):
            raise ClamAVProtocolError("gateway returned a non-object body", raw=resp.text)
        return body

    @staticmethod
    def _raise_for_status(resp: requests.Response) -> None:
        if resp.status_code == 200:
            return
        try:
            body = resp.json()
        except ValueError:
            body = {}
        msg = body.get("message", resp.text) if isinstance(body, dict) else resp.text
        if resp.status_code in (400, 413):
            raise ClamAVDaemonError(msg, raw=resp.text)
        if resp.status_code == 502:
            raise ClamAVServiceUnavailableError(msg, raw=resp.text)
        if resp.status_code == 504:
            raise ClamAVTimeoutError(msg, raw=resp.text)
        raise ClamAVProtocolError(f"unexpected HTTP {resp.status_code}: {msg}", raw=resp.text)
