"""ClamAV filter: scan mail through clamd and classify the detection."""

from clamav_filter.client import ClamdClient
from clamav_filter.config import ClamAVSettings, Endpoint
from clamav_filter.exceptions import (
    ClamAVConfigurationError,
    ClamAVConnectionError,
    ClamAVDaemonError,
    ClamAVError,
    ClamAVProtocolError,
    ClamAVServiceUnavailableError,
    ClamAVTimeoutError,
)
from clamav_filter.filter import Verdict, VirusCheck
from clamav_filter.models import HealthCheckResult, ScanResult, VersionInfo
from clamav_filter.policy import SignaturePolicy

__all__ = [
    "ClamdClient",
    "AsyncClamdClient",
    "ClamAVRestClient",
    "ClamAVSettings",
    "Endpoint",
    "SignaturePolicy",
    "VirusCheck",
    "Verdict",
    "ScanResult",
    "HealthCheckResult",
    "VersionInfo",
    "ClamAVError",
    "ClamAVConnectionError",
    "ClamAVTimeoutError",
    "ClamAVServiceUnavailableError",
    "ClamAVProtocolError",
    "ClamAVDaemonError",
    "ClamAVConfigurationError",
]


def __getattr__(name: str) -> object:
    """Lazy-import the async and gateway clients so ``requests`` stays optional."""
    if name == "AsyncClamdClient":
        from clamav_filter.async_client import AsyncClamdClient

        return AsyncClamdClient
    if name == "ClamAVRestClient":
        from clamav_filter.rest_client import ClamAVRestClient

        return ClamAVRestClient
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
