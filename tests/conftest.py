"""Shared fixtures for the scimrest test suite."""

import datetime
import json
import logging

import httpx
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from scimrest.config.settings import get_settings
from scimrest.endpoints.store import InMemoryEndpointRegistry
from scimrest.logging.audit import get_audit_logger


class FakeClock:
    """Manually advanced wall clock (unix seconds)."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    """Records requested delays instead of sleeping."""

    def __init__(self, clock: FakeClock | None = None):
        self.delays: list[float] = []
        self._clock = clock

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self._clock is not None:
            self._clock.advance(seconds)


class Backend:
    """Scripted httpx.MockTransport handler.

    Token endpoints (URLs containing "/token") answer with a fresh token
    per exchange unless overridden; everything else pops from ``responses``
    or falls back to a 200 carrying ``default_json``.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.responses: list = []
        self.default_json = {"ok": True}
        self.token_exchanges = 0
        self.token_response = None
        self.expires_in = 3600

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if "/token" in request.url.path and self.token_response is None:
            self.token_exchanges += 1
            return httpx.Response(
                200,
                json={"access_token": f"token-{self.token_exchanges}", "expires_in": self.expires_in},
            )
        if "/token" in request.url.path:
            self.token_exchanges += 1
            return self.token_response
        if self.responses:
            item = self.responses.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        return httpx.Response(200, json=self.default_json)

    @property
    def api_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if "/token" not in r.url.path]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def backend() -> Backend:
    return Backend()


@pytest.fixture
def endpoints_document() -> dict:
    """Endpoint configuration covering the common auth types."""
    return {
        "endpoints": {
            "plain": {
                "base_urls": ["https://api-1.example.com/v1", "https://api-2.example.com/v1"],
            },
            "basic": {
                "base_urls": ["https://basic.example.com"],
                "auth": {"type": "basic", "options": {"username": "svc", "password": "s3cret"}},
            },
            "graph": {
                "base_urls": [
                    "https://graph-1.example.com/beta",
                    "https://graph-2.example.com/beta",
                    "https://graph-3.example.com/beta",
                ],
                "auth": {
                    "type": "oauth",
                    "options": {
                        "token_url": "https://login.example.com/tenant/oauth2/token",
                        "client_id": "client-id",
                        "client_secret": "client-secret",
                    },
                },
            },
            "legacy": {
                "base_urls": ["https://legacy.example.com/api"],
                "auth": {
                    "type": "token",
                    "options": {
                        "token_url": "https://legacy.example.com/api/token",
                        "username": "svc",
                        "password": "pw",
                    },
                },
                "headers": {"X-Tenant": "acme"},
            },
            "delegated": {
                "base_urls": ["https://delegated.example.com"],
                "auth": {"type": "passthrough"},
            },
        }
    }


@pytest.fixture
def registry(endpoints_document) -> InMemoryEndpointRegistry:
    return InMemoryEndpointRegistry(endpoints_document["endpoints"])


@pytest.fixture
def endpoints_json_file(tmp_path, endpoints_document):
    """Write the endpoint document to a temp file and return its path."""
    path = tmp_path / "endpoints.json"
    path.write_text(json.dumps(endpoints_document), encoding="utf-8")
    return str(path)


@pytest.fixture(scope="session")
def rsa_material():
    """Private key PEM and self-signed certificate PEM for signing tests."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "scimrest-test")])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
        .sign(key, hashes.SHA256())
    )
    key_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode("ascii")
    cert_pem = cert.public_bytes(serialization.Encoding.PEM).decode("ascii")
    return {"key": key_pem, "cert": cert_pem, "public_key": key.public_key(), "certificate": cert}


@pytest.fixture
def key_files(tmp_path, rsa_material):
    """Key and certificate written to disk, as auth options reference them."""
    key_path = tmp_path / "key.pem"
    cert_path = tmp_path / "cert.pem"
    key_path.write_text(rsa_material["key"], encoding="utf-8")
    cert_path.write_text(rsa_material["cert"], encoding="utf-8")
    return {"key": str(key_path), "cert": str(cert_path)}


@pytest.fixture
def override_settings(monkeypatch):
    """Factory fixture: set env vars and clear settings cache.

    Usage:
        override_settings(IDLE_TIMEOUT=30, GATEWAY_API_KEYS="key1,key2")
    """
    def _override(**kwargs):
        for key, value in kwargs.items():
            monkeypatch.setenv(key.upper(), str(value))
        # Clear lru_cache so Settings re-reads env
        get_settings.cache_clear()

    yield _override

    # Always clear cache on teardown so other tests get fresh settings
    get_settings.cache_clear()


class RecordingHandler(logging.Handler):

    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)

    def at(self, level: int) -> list[logging.LogRecord]:
        return [r for r in self.records if r.levelno == level]


@pytest.fixture
def audit_records():
    """Capture everything sent to the audit logger, regardless of propagation."""
    logger = get_audit_logger()
    handler = RecordingHandler()
    previous_level = logger.level
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    yield handler
    logger.removeHandler(handler)
    logger.setLevel(previous_level)
