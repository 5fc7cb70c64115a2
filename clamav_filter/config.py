"""Endpoint and settings resolution for the ``clamd_sock`` option.

``clamd_sock`` accepts the same shapes the mail filter always has:

* a bare port number (``"3310"``) for TCP on localhost,
* ``host:port`` or ``[v6addr]:port`` for a remote daemon,
* a path (``/run/clamav/clamd.ctl`` or a relative ``clamd.sock``) for a
  unix socket; any value without a ``:`` that is not a port number is a path,
* an ``http://`` or ``https://`` URL for a ClamAV REST gateway.
"""

from __future__ import annotations

import importlib.util
import os
from dataclasses import dataclass
from typing import Mapping, Union

from clamav_filter.exceptions import ClamAVConfigurationError
from clamav_filter.policy import DEFAULT_UNOFFICIAL_SUFFIX, SignaturePolicy
from clamav_filter.protocol import DEFAULT_CHUNK_SIZE

DEFAULT_CLAMD_SOCK = "3310"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_TIMEOUT = 30.0

TCP = "tcp"
UNIX = "unix"
HTTP = "http"

# Resolved once; the REST gateway transport needs ``requests`` (``pip install clamav-filter[http]``).
HAS_REQUESTS = importlib.util.find_spec("requests") is not None


@dataclass(frozen=True, slots=True)
class Endpoint:
    """Where the scanning daemon listens.

    Exactly one of ``port``, ``path`` or ``url`` identifies the transport.
    """

    host: str = DEFAULT_HOST
    port: int | None = 3310
    path: str | None = None
    url: str | None = None

    @property
    def transport(self) -> str:
        if self.url is not None:
            return HTTP
        if self.path is not None:
            return UNIX
        return TCP

    @classmethod
    def parse(cls, value: Union[str, int]) -> Endpoint:
        """Build an :class:`Endpoint` from a ``clamd_sock`` value.

        Raises:
            ClamAVConfigurationError: If *value* matches none of the
                accepted shapes or names an invalid port.
        """
        text = str(value).strip()
        if not text:
            raise ClamAVConfigurationError("clamd_sock is empty")
        if text.startswith(("http://", "https://")):
            return cls(port=None, url=text.rstrip("/"))
        if text.isdigit():
            return cls(port=_port(text))
        if text.startswith("/") or ":" not in text:
            return cls(port=None, path=text)

        host, sep, port = text.rpartition(":")
        if not sep or not host:
            raise ClamAVConfigurationError(f"cannot parse clamd_sock {text!r}")
        if host.startswith("[") and host.endswith("]"):
            host = host[1:-1]
        elif ":" in host:
            raise ClamAVConfigurationError(f"IPv6 address must be bracketed in {text!r}")
        return cls(host=host, port=_port(port))

    def __str__(self) -> str:
        if self.url is not None:
            return self.url
        if self.path is not None:
            return self.path
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{host}:{self.port}"


def _port(text: str) -> int:
    if not text.isdigit() or not 0 < int(text) < 65536:
        raise ClamAVConfigurationError(f"invalid clamd port {text!r}")
    return int(text)


def check_limits(timeout: float | None, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
    """Reject deadlines and chunk sizes the socket layer cannot use.

    Raises:
        ClamAVConfigurationError: If *timeout* is not *None* or positive, or
            *chunk_size* is not a positive integer.
    """
    if timeout is not None and not timeout > 0:
        raise ClamAVConfigurationError(f"invalid timeout {timeout!r}, expected a positive number or None")
    if isinstance(chunk_size, bool) or not isinstance(chunk_size, int) or chunk_size <= 0:
        raise ClamAVConfigurationError(f"invalid chunk size {chunk_size!r}, expected a positive integer")


@dataclass(frozen=True, slots=True)
class ClamAVSettings:
    """Options consumed by :meth:`VirusCheck.from_settings`.

    Attributes:
        clamd_sock: Daemon location, see the module docstring.
        timeout: Connect/read deadline in seconds, *None* to block.
        chunk_size: INSTREAM chunk size in bytes.
        unofficial_suffix: Signature-name suffix marking third-party
            signatures.
        policy: Which signatures count as a hit.
    """

    clamd_sock: str = DEFAULT_CLAMD_SOCK
    timeout: float | None = DEFAULT_TIMEOUT
    chunk_size: int = DEFAULT_CHUNK_SIZE
    unofficial_suffix: str = DEFAULT_UNOFFICIAL_SUFFIX
    policy: SignaturePolicy = SignaturePolicy.ALL

    def endpoint(self) -> Endpoint:
        return Endpoint.parse(self.clamd_sock)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ClamAVSettings:
        """Read settings from ``CLAMD_*`` / ``CLAMAV_*`` environment variables.

        Unset variables keep their defaults.
        """
        env = os.environ if environ is None else environ
        timeout: float | None = DEFAULT_TIMEOUT
        raw_timeout = env.get("CLAMD_TIMEOUT", "")
        try:
            if raw_timeout.lower() == "none":
                timeout = None
            elif raw_timeout:
                timeout = float(raw_timeout)
            chunk_size = int(env.get("CLAMD_CHUNK_SIZE", DEFAULT_CHUNK_SIZE))
        except ValueError as exc:
            raise ClamAVConfigurationError(str(exc)) from exc
        check_limits(timeout, chunk_size)

        return cls(
            clamd_sock=env.get("CLAMD_SOCK", DEFAULT_CLAMD_SOCK),
            timeout=timeout,
            chunk_size=chunk_size,
            unofficial_suffix=env.get("CLAMAV_UNOFFICIAL_SUFFIX", DEFAULT_UNOFFICIAL_SUFFIX),
            policy=SignaturePolicy.parse(env.get("CLAMAV_SIGNATURE_POLICY", "")),
        )
