"""Data models for ClamAV scan responses."""

from __future__ import annotations

from dataclasses import dataclass, field

from clamav_filter.exceptions import ClamAVError

CLEAN = "OK"
INFECTED = "FOUND"
ERROR = "ERROR"


@dataclass(frozen=True, slots=True)
class ScanResult:
    """Outcome of a single scan request.

    Attributes:
        status: Scan outcome, ``"OK"``, ``"FOUND"``, or ``"ERROR"``.
        message: Signature name for ``FOUND``, error description for
            ``ERROR``, empty for ``OK``.
        error_kind: :attr:`ClamAVError.kind` of the failure, empty unless
            ``status`` is ``"ERROR"``.
        raw: The daemon's response line, when one was received.
        scan_time: Wall-clock duration in seconds. Not part of equality.
    """

    status: str
    message: str = ""
    error_kind: str = ""
    raw: str = ""
    scan_time: float = field(default=0.0, compare=False)

    @classmethod
    def clean(cls, raw: str = "", scan_time: float = 0.0) -> ScanResult:
        return cls(status=CLEAN, raw=raw, scan_time=scan_time)

    @classmethod
    def infected(cls, signature: str, raw: str = "", scan_time: float = 0.0) -> ScanResult:
        return cls(status=INFECTED, message=signature, raw=raw, scan_time=scan_time)

    @classmethod
    def from_error(cls, exc: ClamAVError, scan_time: float = 0.0) -> ScanResult:
        """Turn a raised :class:`ClamAVError` into an ``ERROR`` result."""
        return cls(
            status=ERROR,
            message=str(exc) or exc.kind,
            error_kind=exc.kind,
            raw=exc.raw,
            scan_time=scan_time,
        )

    @property
    def is_clean(self) -> bool:
        return self.status == CLEAN

    @property
    def is_infected(self) -> bool:
        return self.status == INFECTED

    @property
    def is_error(self) -> bool:
        return self.status == ERROR

    @property
    def signature(self) -> str | None:
        """Detected signature name, or *None* unless infected."""
        return self.message if self.is_infected else None

    def header_value(self) -> str:
        """Render the result for an ``X-Spam-Virus`` style header."""
        if self.is_clean:
            return "No"
        if self.is_infected:
            return f"Yes ({self.message})"
        return f"Error ({self.message})"


@dataclass(frozen=True, slots=True)
class HealthCheckResult:
    """Liveness of the scanning daemon.

    Attributes:
        healthy: ``True`` when the daemon answered the probe.
        message: The probe reply (``"PONG"``) or a failure description.
    """

    healthy: bool
    message: str


@dataclass(frozen=True, slots=True)
class VersionInfo:
    """Engine and signature database version reported by ``VERSION``.

    Attributes:
        version: Engine version string (e.g. ``"1.3.0"``).
        database: Signature database version (e.g. ``"27428"``), empty if
            the daemon did not report one.
        database_date: Build date of the signature database, free-form.
    """

    version: str
    database: str = ""
    database_date: str = ""
