"""Tests for the mail filter check (VirusCheck)."""

from __future__ import annotations

import logging

import pytest

from clamav_filter import filter as filter_module
from clamav_filter.client import ClamdClient
from clamav_filter.config import ClamAVSettings
from clamav_filter.exceptions import ClamAVConnectionError
from clamav_filter.filter import DISABLED_HEADER, VIRUS_HEADER, Verdict, VirusCheck, make_scanner
from clamav_filter.models import ScanResult
from clamav_filter.policy import SignaturePolicy
from clamav_filter.rest_client import ClamAVRestClient


class StubScanner:
    """Returns a fixed result and records what it was asked to scan."""

    def __init__(self, result: ScanResult) -> None:
        self.result = result
        self.scanned: list[bytes] = []

    def scan(self, data: bytes) -> ScanResult:
        self.scanned.append(data)
        return self.result


class TestCheck:
    def test_clean(self, sample_bytes: bytes):
        check = VirusCheck(StubScanner(ScanResult.clean()))
        verdict = check.check(sample_bytes)
        assert verdict == Verdict(hit=False, signature=None, header="No", result=ScanResult.clean())
        assert verdict.headers() == {}

    def test_hit(self, eicar_bytes: bytes):
        scanner = StubScanner(ScanResult.infected("Eicar-Test-Signature"))
        verdict = VirusCheck(scanner).check(eicar_bytes)
        assert verdict.hit is True
        assert verdict.signature == "Eicar-Test-Signature"
        assert verdict.headers() == {VIRUS_HEADER: "Yes (Eicar-Test-Signature)"}
        assert scanner.scanned == [eicar_bytes]

    def test_error_never_hits(self, sample_bytes: bytes):
        error = ScanResult.from_error(ClamAVConnectionError("cannot connect to clamd at 127.0.0.1:3310"))
        verdict = VirusCheck(StubScanner(error)).check(sample_bytes)
        assert verdict.hit is False
        assert verdict.header == "Error (cannot connect to clamd at 127.0.0.1:3310)"
        assert verdict.headers() == {}

    def test_official_policy_ignores_unofficial(self, sample_bytes: bytes):
        check = VirusCheck(StubScanner(ScanResult.infected("Sig.UNOFFICIAL")), policy=SignaturePolicy.OFFICIAL)
        verdict = check.check(sample_bytes)
        assert verdict.hit is False
        assert verdict.signature == "Sig.UNOFFICIAL"
        assert verdict.header == "Yes (Sig.UNOFFICIAL)"

    def test_policy_override_by_name(self, sample_bytes: bytes):
        check = VirusCheck(StubScanner(ScanResult.infected("Sig.UNOFFICIAL")), policy=SignaturePolicy.OFFICIAL)
        assert check.check(sample_bytes, policy="UNOFFICIAL").hit is True
        assert check.check(sample_bytes, policy=SignaturePolicy.ALL).hit is True

    def test_custom_suffix(self, sample_bytes: bytes):
        check = VirusCheck(
            StubScanner(ScanResult.infected("Sig.THIRDPARTY")),
            policy=SignaturePolicy.UNOFFICIAL,
            unofficial_suffix=".THIRDPARTY",
        )
        assert check.check(sample_bytes).hit is True

    def test_disabled(self, sample_bytes: bytes):
        check = VirusCheck(None)
        assert check.enabled is False
        verdict = check.check(sample_bytes)
        assert verdict.hit is False
        assert verdict.header == DISABLED_HEADER
        assert verdict.result is None


class TestFromSettings:
    def test_builds_clamd_client(self):
        check = VirusCheck.from_settings(ClamAVSettings(clamd_sock="/run/clamav/clamd.ctl"))
        assert check.enabled is True
        assert isinstance(check.scanner, ClamdClient)
        assert check.scanner.endpoint.path == "/run/clamav/clamd.ctl"

    def test_defaults(self):
        check = VirusCheck.from_settings()
        assert isinstance(check.scanner, ClamdClient)
        assert check.scanner.endpoint.port == 3310

    def test_builds_rest_client(self):
        scanner = make_scanner(ClamAVSettings(clamd_sock="http://localhost:6000"))
        assert isinstance(scanner, ClamAVRestClient)

    def test_bad_sock_disables(self, caplog: pytest.LogCaptureFixture):
        with caplog.at_level(logging.WARNING, logger="clamav_filter.filter"):
            check = VirusCheck.from_settings(ClamAVSettings(clamd_sock="nowhere:port"))
        assert check.enabled is False
        assert "virus scanning disabled" in caplog.text

    @pytest.mark.parametrize("settings", [ClamAVSettings(chunk_size=0), ClamAVSettings(timeout=-1)])
    def test_bad_limits_disable(self, settings: ClamAVSettings):
        check = VirusCheck.from_settings(settings)
        assert check.enabled is False
        assert check.check(b"hello").header == "Error (scanning disabled)"

    def test_bad_gateway_timeout_disables(self):
        check = VirusCheck.from_settings(ClamAVSettings(clamd_sock="http://localhost:6000", timeout=0))
        assert check.enabled is False

    def test_missing_requests_disables(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setattr(filter_module, "HAS_REQUESTS", False)
        check = VirusCheck.from_settings(ClamAVSettings(clamd_sock="http://localhost:6000"))
        assert check.enabled is False

    def test_policy_carried(self):
        settings = ClamAVSettings(policy=SignaturePolicy.UNOFFICIAL)
        check = VirusCheck.from_settings(settings)
        assert check.policy is SignaturePolicy.UNOFFICIAL


class TestEndToEnd:
    def test_against_fake_daemon(self, fake_clamd, eicar_bytes: bytes):
        fake_clamd.scan_reply = b"stream: Eicar-Test-Signature FOUND\0"
        check = VirusCheck.from_settings(ClamAVSettings(clamd_sock=fake_clamd.clamd_sock, timeout=5))
        verdict = check.check(eicar_bytes)
        assert verdict.hit is True
        assert verdict.headers() == {VIRUS_HEADER: "Yes (Eicar-Test-Signature)"}

    def test_daemon_down(self, closed_port: int, sample_bytes: bytes):
        check = VirusCheck.from_settings(ClamAVSettings(clamd_sock=str(closed_port), timeout=2))
        verdict = check.check(sample_bytes)
        assert verdict.hit is False
        assert verdict.result is not None
        assert verdict.result.error_kind == "connection"
