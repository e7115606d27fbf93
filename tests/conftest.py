"""Shared fixtures: generated PKI material and a call-recording stub engine."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509.oid import NameOID

from est_client.client import ESTClient
from est_client.engine.base import EngineSettings
from est_client.exceptions import BufferSizeError

if TYPE_CHECKING:
    from est_client.engine.base import EngineRequest


class StubEngine:
    """Engine double that records calls and replays scripted results.

    Each call consumes the next scripted result, the last one repeats.
    A result is bytes to return or an exception to raise. Byte results
    longer than the request's max length raise BufferSizeError, like a
    real engine writing into a fixed buffer.
    """

    def __init__(self, settings: EngineSettings | None = None) -> None:
        self.settings = settings if settings is not None else EngineSettings()
        self.calls: list[tuple[str, tuple[object, ...]]] = []
        self._results: list[bytes | Exception] = [b""]
        self.fips_enabled_calls = 0

    def respond_with(self, *results: bytes | Exception) -> None:
        self._results = list(results)

    @property
    def call_count(self) -> int:
        return len(self.calls)

    @property
    def last_call(self) -> tuple[str, tuple[object, ...]]:
        return self.calls[-1]

    def _respond(self, name: str, max_length: int, *args: object) -> bytes:
        self.calls.append((name, args))
        result = self._results.pop(0) if len(self._results) > 1 else self._results[0]
        if isinstance(result, Exception):
            raise result
        if len(result) > max_length:
            raise BufferSizeError.exceeded(length=len(result), max_length=max_length)
        return result

    def http_enroll(self, request: EngineRequest, http: object) -> bytes:
        return self._respond("http_enroll", request.max_length, request, http)

    def srp_enroll(self, request: EngineRequest, srp: object, http: object) -> bytes:
        return self._respond("srp_enroll", request.max_length, request, srp, http)

    def tls_enroll(self, request: EngineRequest, auth_cert: bytes, auth_key: bytes, http: object) -> bytes:
        return self._respond("tls_enroll", request.max_length, request, auth_cert, auth_key, http)

    def http_reenroll(self, request: EngineRequest, http: object) -> bytes:
        return self._respond("http_reenroll", request.max_length, request, http)

    def srp_reenroll(self, request: EngineRequest, srp: object, http: object) -> bytes:
        return self._respond("srp_reenroll", request.max_length, request, srp, http)

    def tls_reenroll(self, request: EngineRequest, auth_cert: bytes, auth_key: bytes, http: object) -> bytes:
        return self._respond("tls_reenroll", request.max_length, request, auth_cert, auth_key, http)

    def get_cacerts(self, trust_anchors: object, endpoint: object, srp: object, max_length: int) -> bytes:
        return self._respond("get_cacerts", max_length, trust_anchors, endpoint, srp)

    def enable_fips(self) -> None:
        self.fips_enabled_calls += 1
        self.settings.mark_fips_enabled()

    def set_log_level(self, level: object) -> None:
        self.settings.log_level = level


def _name(common_name: str) -> x509.Name:
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


@pytest.fixture(scope="session")
def ca_key() -> rsa.RSAPrivateKey:
    """CA private key for testing."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def ca_certificate(ca_key: rsa.RSAPrivateKey) -> x509.Certificate:
    """Self-signed root certificate used as trust anchor."""
    now = datetime.now(UTC)
    return (
        x509.CertificateBuilder()
        .subject_name(_name("Test Root CA"))
        .issuer_name(_name("Test Root CA"))
        .public_key(ca_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + timedelta(days=365))
        .add_extension(x509.BasicConstraints(ca=True, path_length=0), critical=True)
        .sign(ca_key, hashes.SHA256())
    )


@pytest.fixture(scope="session")
def second_ca_certificate() -> x509.Certificate:
    """Another self-signed CA, for multi-anchor bundles."""
    key = ec.generate_private_key(ec.SECP256R1())
    now = datetime.now(UTC)
    return (
        x509.CertificateBuilder()
        .subject_name(_name("Test Intermediate CA"))
        .issuer_name(_name("Test Intermediate CA"))
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + timedelta(days=365))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )


@pytest.fixture(scope="session")
def client_key() -> ec.EllipticCurvePrivateKey:
    """Requester key pair."""
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture(scope="session")
def client_csr(client_key: ec.EllipticCurvePrivateKey) -> x509.CertificateSigningRequest:
    """CSR signed by the requester key."""
    return (
        x509.CertificateSigningRequestBuilder()
        .subject_name(_name("device-01.example.com"))
        .add_extension(x509.SubjectAlternativeName([x509.DNSName("device-01.example.com")]), critical=False)
        .sign(client_key, hashes.SHA256())
    )


@pytest.fixture(scope="session")
def issued_certificate(
    ca_key: rsa.RSAPrivateKey,
    ca_certificate: x509.Certificate,
    client_csr: x509.CertificateSigningRequest,
) -> x509.Certificate:
    """Certificate the stub server 'issues' for the client CSR."""
    now = datetime.now(UTC)
    return (
        x509.CertificateBuilder()
        .subject_name(client_csr.subject)
        .issuer_name(ca_certificate.subject)
        .public_key(client_csr.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + timedelta(days=90))
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(x509.SubjectAlternativeName([x509.DNSName("device-01.example.com")]), critical=False)
        .sign(ca_key, hashes.SHA256())
    )


@pytest.fixture(scope="session")
def issued_pem(issued_certificate: x509.Certificate) -> bytes:
    """Engine response for a successful enrollment."""
    return issued_certificate.public_bytes(Encoding.PEM)


@pytest.fixture
def stub_engine() -> StubEngine:
    """Fresh stub engine with private settings."""
    return StubEngine()


@pytest.fixture
def est_client(stub_engine: StubEngine, ca_certificate: x509.Certificate) -> ESTClient:
    """Client configured for est.example.com:8443 with HTTP credentials."""
    client = ESTClient(stub_engine)
    client.set_server_name("est.example.com")
    client.set_server_port(8443)
    client.set_trust_anchor([ca_certificate])
    client.set_http_credentials("alice", "secret")
    return client
