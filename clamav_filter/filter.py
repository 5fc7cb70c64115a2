"""Host-facing anti-virus check for a mail filtering engine.

The engine owns rule registration and scoring. It builds one
:class:`VirusCheck` at startup and calls :meth:`VirusCheck.check` with each
message's full text; the returned :class:`Verdict` carries everything needed
to record a hit and tag the message.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import BinaryIO, Protocol, Union

from clamav_filter.client import ClamdClient
from clamav_filter.config import HAS_REQUESTS, HTTP, ClamAVSettings
from clamav_filter.exceptions import ClamAVConfigurationError
from clamav_filter.models import ScanResult
from clamav_filter.policy import DEFAULT_UNOFFICIAL_SUFFIX, SignaturePolicy

logger = logging.getLogger(__name__)

VIRUS_HEADER = "X-Spam-Virus"
DISABLED_HEADER = "Error (scanning disabled)"


class Scanner(Protocol):
    def scan(self, data: Union[bytes, BinaryIO]) -> ScanResult: ...


@dataclass(frozen=True, slots=True)
class Verdict:
    """What the engine needs from one check.

    Attributes:
        hit: ``True`` when a detection passed the signature policy.
        signature: Detected signature name, even when filtered out.
        header: ``"No"``, ``"Yes (<sig>)"``, or ``"Error (<reason>)"``.
        result: The underlying scan result, *None* if scanning is disabled.
    """

    hit: bool
    signature: str | None
    header: str
    result: ScanResult | None = None

    def headers(self) -> dict[str, str]:
        """Headers to add to the message; only hits are tagged."""
        return {VIRUS_HEADER: self.header} if self.hit else {}


def make_scanner(settings: ClamAVSettings) -> Scanner:
    """Build the client matching ``settings.clamd_sock``.

    Raises:
        ClamAVConfigurationError: If the endpoint cannot be parsed or its
            transport library is not installed.
    """
    endpoint = settings.endpoint()
    if endpoint.transport == HTTP:
        if not HAS_REQUESTS:
            raise ClamAVConfigurationError(
                "HTTP gateway support requires requests (pip install clamav-filter[http])"
            )
        from clamav_filter.rest_client import ClamAVRestClient

        return ClamAVRestClient(endpoint, timeout=settings.timeout)

    return ClamdClient(endpoint, timeout=settings.timeout, chunk_size=settings.chunk_size)


class VirusCheck:
    """Scan messages and turn results into engine verdicts.

    Args:
        scanner: Any object with a ``scan(data) -> ScanResult`` method, or
            *None* for a disabled check.
        policy: Default signature policy for :meth:`check`.
        unofficial_suffix: Suffix marking unofficial signatures.
    """

    def __init__(
        self,
        scanner: Scanner | None,
        policy: SignaturePolicy = SignaturePolicy.ALL,
        unofficial_suffix: str = DEFAULT_UNOFFICIAL_SUFFIX,
    ) -> None:
        self._scanner = scanner
        self._policy = policy
        self._unofficial_suffix = unofficial_suffix

    @classmethod
    def from_settings(cls, settings: ClamAVSettings | None = None) -> VirusCheck:
        """Resolve *settings* once; a configuration error disables scanning."""
        settings = settings or ClamAVSettings()
        try:
            scanner: Scanner | None = make_scanner(settings)
        except ClamAVConfigurationError as exc:
            logger.warning("virus scanning disabled: %s", exc)
            scanner = None
        return cls(scanner, policy=settings.policy, unofficial_suffix=settings.unofficial_suffix)

    @property
    def enabled(self) -> bool:
        return self._scanner is not None

    @property
    def scanner(self) -> Scanner | None:
        return self._scanner

    @property
    def policy(self) -> SignaturePolicy:
        return self._policy

    def check(self, message: Union[bytes, BinaryIO], policy: SignaturePolicy | str | None = None) -> Verdict:
        """Scan *message* and decide whether it counts as a hit.

        Args:
            message: Full message text.
            policy: Overrides the instance policy for this call, as a
                :class:`SignaturePolicy` or its name (``"OFFICIAL"``).

        Returns:
            A :class:`Verdict`. Scan errors never hit.
        """
        if self._scanner is None:
            return Verdict(hit=False, signature=None, header=DISABLED_HEADER)

        if isinstance(policy, str):
            policy = SignaturePolicy.parse(policy) if policy else None
        policy = policy or self._policy

        result = self._scanner.scan(message)
        hit = policy.matches(result, self._unofficial_suffix)
        if hit:
            logger.info("virus %s found", result.signature)
        elif result.is_infected:
            logger.debug("ignoring %s under %s policy", result.signature, policy.value)
        return Verdict(hit=hit, signature=result.signature, header=result.header_value(), result=result)
