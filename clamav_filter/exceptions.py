"""Exception hierarchy for the ClamAV filter."""

from __future__ import annotations


class ClamAVError(Exception):
    """Base exception for all ClamAV filter errors.

    Each subclass carries a short ``kind`` tag that is copied into
    :attr:`ScanResult.error_kind <clamav_filter.models.ScanResult.error_kind>`
    when the error is reported as data instead of raised.
    """

    kind = "error"

    def __init__(self, message: str = "", raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw


class ClamAVConnectionError(ClamAVError):
    """Raised when the daemon cannot be reached."""

    kind = "connection"


class ClamAVTimeoutError(ClamAVError):
    """Raised when the daemon does not answer within the read deadline."""

    kind = "timeout"


class ClamAVServiceUnavailableError(ClamAVError):
    """Raised when the daemon accepts connections but fails the liveness probe.

    Corresponds to a missing ``PONG`` on the socket or HTTP 502 from a gateway.
    """

    kind = "unavailable"


class ClamAVProtocolError(ClamAVError):
    """Raised for empty, truncated, or unrecognised daemon responses."""

    kind = "protocol"


class ClamAVDaemonError(ClamAVError):
    """Raised when the daemon itself reports an ``ERROR`` status.

    Typical messages are ``INSTREAM size limit exceeded`` or a failed
    database load.
    """

    kind = "daemon"


class ClamAVConfigurationError(ClamAVError):
    """Raised at startup when scanning cannot be set up.

    Covers an unparseable ``clamd_sock`` value and a transport whose client
    library is not installed.
    """

    kind = "configuration"
