"""Official / unofficial signature filtering.

Signatures distributed outside the ClamAV project (Sanesecurity and similar
feeds) are conventionally named with an ``.UNOFFICIAL`` suffix. The suffix
is a naming habit, not a protocol field, so it stays configurable.
"""

from __future__ import annotations

import enum

from clamav_filter.exceptions import ClamAVConfigurationError
from clamav_filter.models import ScanResult

DEFAULT_UNOFFICIAL_SUFFIX = ".UNOFFICIAL"


class SignaturePolicy(enum.Enum):
    """Which detections count as a hit."""

    ALL = "ALL"
    OFFICIAL = "OFFICIAL"
    UNOFFICIAL = "UNOFFICIAL"

    @classmethod
    def parse(cls, value: str | None) -> SignaturePolicy:
        """Case-insensitive lookup; an empty value means :attr:`ALL`."""
        if not value:
            return cls.ALL
        try:
            return cls(value.strip().upper())
        except ValueError as exc:
            raise ClamAVConfigurationError(f"unknown signature policy {value!r}") from exc

    def matches(self, result: ScanResult, suffix: str = DEFAULT_UNOFFICIAL_SUFFIX) -> bool:
        """Return ``True`` if *result* is a detection this policy accepts."""
        signature = result.signature
        if signature is None:
            return False
        if self is SignaturePolicy.ALL:
            return True
        unofficial = is_unofficial(signature, suffix)
        return unofficial if self is SignaturePolicy.UNOFFICIAL else not unofficial


def is_unofficial(signature: str, suffix: str = DEFAULT_UNOFFICIAL_SUFFIX) -> bool:
    return bool(suffix) and signature.endswith(suffix)
