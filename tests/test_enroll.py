"""Contract tests for the enrollment orchestrator.

Uses the stub engine to verify mode dispatch, pre-call validation,
result interpretation and the error taxonomy.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding

from est_client.config import AuthMode
from est_client.credentials import CredentialStore, HttpCredential, SrpCredential
from est_client.crypto.cert import TrustAnchorBundle, private_key_to_der
from est_client.crypto.csr import PKCS10Request
from est_client.enroll import EnrollmentOrchestrator, EnrollState, select_auth_mode
from est_client.exceptions import (
    BufferSizeError,
    CertificateParseError,
    ConfigurationError,
    EncodingError,
    EngineError,
    EnrollError,
    EnrollRetryAfterError,
    ReenrollError,
)

if TYPE_CHECKING:
    from conftest import StubEngine


# --- Fixtures ---


@pytest.fixture
def store(ca_certificate: x509.Certificate) -> CredentialStore:
    """Store with endpoint and trust anchor but no credentials."""
    store = CredentialStore()
    store.set_server_name("est.example.com")
    store.set_server_port(8443)
    store.set_trust_anchor([ca_certificate])
    return store


@pytest.fixture
def orchestrator(store: CredentialStore, stub_engine: StubEngine) -> EnrollmentOrchestrator:
    """Orchestrator over the store and stub engine."""
    return EnrollmentOrchestrator(store, stub_engine)


@pytest.fixture
def request_pkcs10(
    client_csr: x509.CertificateSigningRequest,
    client_key: ec.EllipticCurvePrivateKey,
) -> PKCS10Request:
    """CSR with its signing key."""
    return PKCS10Request(csr=client_csr, key=client_key)


# --- Auth mode selection ---


class TestAuthModeSelection:
    """Credential checks before any engine call."""

    @pytest.mark.parametrize(
        ("mode", "setter"),
        [
            (AuthMode.HTTP_ONLY, "set_http_credentials"),
            (AuthMode.SRP, "set_srp_credentials"),
            (AuthMode.TLS, "set_tls_authentication_credentials"),
        ],
    )
    def test_missing_credentials_fail_before_engine_call(
        self,
        orchestrator: EnrollmentOrchestrator,
        stub_engine: StubEngine,
        request_pkcs10: PKCS10Request,
        mode: AuthMode,
        setter: str,
    ) -> None:
        """Each mode without its credentials raises ConfigurationError, engine untouched."""
        with pytest.raises(ConfigurationError, match=setter):
            orchestrator.simple_enroll(request_pkcs10, mode)

        assert stub_engine.call_count == 0
        assert orchestrator.state is EnrollState.FAULTED

    def test_srp_mode_with_only_http_credentials(
        self,
        store: CredentialStore,
        orchestrator: EnrollmentOrchestrator,
        stub_engine: StubEngine,
        issued_certificate: x509.Certificate,
        client_key: ec.EllipticCurvePrivateKey,
    ) -> None:
        """HTTP credentials do not satisfy SRP mode for renewal either."""
        store.set_http_credentials("alice", "secret")

        with pytest.raises(ConfigurationError):
            orchestrator.simple_reenroll(issued_certificate, client_key, AuthMode.SRP)

        assert stub_engine.call_count == 0

    @pytest.mark.parametrize("mode", ["bogus", None, 3])
    def test_unknown_mode_rejected_for_enroll_and_reenroll(
        self,
        store: CredentialStore,
        orchestrator: EnrollmentOrchestrator,
        stub_engine: StubEngine,
        request_pkcs10: PKCS10Request,
        issued_certificate: x509.Certificate,
        client_key: ec.EllipticCurvePrivateKey,
        mode: object,
    ) -> None:
        """Unrecognized modes are configuration errors for both actions."""
        store.set_http_credentials("alice", "secret")

        with pytest.raises(ConfigurationError, match="Invalid auth mode"):
            orchestrator.simple_enroll(request_pkcs10, mode)
        with pytest.raises(ConfigurationError, match="Invalid auth mode"):
            orchestrator.simple_reenroll(issued_certificate, client_key, mode)

        assert stub_engine.call_count == 0

    def test_missing_endpoint(self, request_pkcs10: PKCS10Request, stub_engine: StubEngine) -> None:
        """No server name configured fails before the engine."""
        store = CredentialStore()
        store.set_http_credentials("alice", "secret")

        with pytest.raises(ConfigurationError, match="server name"):
            EnrollmentOrchestrator(store, stub_engine).simple_enroll(request_pkcs10, AuthMode.HTTP_ONLY)

        assert stub_engine.call_count == 0

    def test_missing_port(self, request_pkcs10: PKCS10Request, stub_engine: StubEngine) -> None:
        """No server port configured fails before the engine."""
        store = CredentialStore()
        store.set_server_name("est.example.com")
        store.set_http_credentials("alice", "secret")

        with pytest.raises(ConfigurationError, match="server port"):
            EnrollmentOrchestrator(store, stub_engine).simple_enroll(request_pkcs10, AuthMode.HTTP_ONLY)

    @pytest.mark.parametrize("mode", list(AuthMode))
    def test_valid_combinations_select_mode(
        self,
        store: CredentialStore,
        issued_certificate: x509.Certificate,
        client_key: ec.EllipticCurvePrivateKey,
        mode: AuthMode,
    ) -> None:
        """With every credential set, each mode is selected."""
        store.set_http_credentials("alice", "secret")
        store.set_srp_credentials("srpuser", "srppass")
        store.set_tls_authentication_credentials(issued_certificate, client_key)

        assert select_auth_mode(store, mode) is mode
        assert select_auth_mode(store, mode.value) is mode


# --- Dispatch and encoding ---


class TestDispatch:
    """Engine operation selection and request construction."""

    def test_http_mode_calls_http_enroll(
        self,
        store: CredentialStore,
        orchestrator: EnrollmentOrchestrator,
        stub_engine: StubEngine,
        request_pkcs10: PKCS10Request,
        client_csr: x509.CertificateSigningRequest,
        client_key: ec.EllipticCurvePrivateKey,
        ca_certificate: x509.Certificate,
    ) -> None:
        """HTTP mode sends the CSR DER, key DER and anchors to http_enroll."""
        store.set_http_credentials("alice", "secret")

        orchestrator.simple_enroll(request_pkcs10, AuthMode.HTTP_ONLY)

        name, (request, http) = stub_engine.last_call
        assert name == "http_enroll"
        assert http == HttpCredential("alice", "secret")
        assert request.payload == client_csr.public_bytes(Encoding.DER)
        assert request.private_key == private_key_to_der(client_key)
        assert request.trust_anchors == TrustAnchorBundle.from_anchors([ca_certificate])
        assert request.endpoint == store.endpoint
        assert request.disable_pop is False
        assert request.max_length == stub_engine.settings.max_cert_length

    def test_srp_mode_passes_optional_http(
        self,
        store: CredentialStore,
        orchestrator: EnrollmentOrchestrator,
        stub_engine: StubEngine,
        request_pkcs10: PKCS10Request,
    ) -> None:
        """SRP mode passes SRP credentials and HTTP credentials when present."""
        store.set_srp_credentials("srpuser", "srppass")

        orchestrator.simple_enroll(request_pkcs10, AuthMode.SRP)
        name, (_, srp, http) = stub_engine.last_call
        assert name == "srp_enroll"
        assert srp == SrpCredential("srpuser", "srppass")
        assert http is None

        store.set_http_credentials("alice", "secret")
        orchestrator.simple_enroll(request_pkcs10, AuthMode.SRP)
        assert stub_engine.last_call[1][2] == HttpCredential("alice", "secret")

    def test_tls_mode_passes_auth_material(
        self,
        store: CredentialStore,
        orchestrator: EnrollmentOrchestrator,
        stub_engine: StubEngine,
        request_pkcs10: PKCS10Request,
        issued_certificate: x509.Certificate,
        client_key: ec.EllipticCurvePrivateKey,
    ) -> None:
        """TLS mode passes the client certificate and key as DER."""
        store.set_tls_authentication_credentials(issued_certificate, client_key)

        orchestrator.simple_enroll(request_pkcs10, AuthMode.TLS)

        name, (_, auth_cert, auth_key, http) = stub_engine.last_call
        assert name == "tls_enroll"
        assert auth_cert == issued_certificate.public_bytes(Encoding.DER)
        assert auth_key == private_key_to_der(client_key)
        assert http is None

    @pytest.mark.parametrize(
        ("mode", "expected"),
        [(AuthMode.HTTP_ONLY, "http_reenroll"), (AuthMode.SRP, "srp_reenroll"), (AuthMode.TLS, "tls_reenroll")],
    )
    def test_reenroll_dispatch_uses_old_certificate(
        self,
        store: CredentialStore,
        orchestrator: EnrollmentOrchestrator,
        stub_engine: StubEngine,
        issued_certificate: x509.Certificate,
        client_key: ec.EllipticCurvePrivateKey,
        mode: AuthMode,
        expected: str,
    ) -> None:
        """Renewal picks the matching engine call and sends the old certificate DER."""
        store.set_http_credentials("alice", "secret")
        store.set_srp_credentials("srpuser", "srppass")
        store.set_tls_authentication_credentials(issued_certificate, client_key)

        orchestrator.simple_reenroll(issued_certificate, client_key, mode)

        name, args = stub_engine.last_call
        assert name == expected
        assert args[0].payload == issued_certificate.public_bytes(Encoding.DER)

    @pytest.mark.parametrize("disable_pop", [True, False])
    def test_pop_flag_passed_through(
        self,
        store: CredentialStore,
        orchestrator: EnrollmentOrchestrator,
        stub_engine: StubEngine,
        request_pkcs10: PKCS10Request,
        disable_pop: bool,
    ) -> None:
        """The PoP flag reaches the engine unchanged."""
        store.set_http_credentials("alice", "secret")

        orchestrator.simple_enroll(request_pkcs10, AuthMode.HTTP_ONLY, disable_pop=disable_pop)

        assert stub_engine.last_call[1][0].disable_pop is disable_pop

    def test_mismatched_key_is_encoding_error(
        self,
        store: CredentialStore,
        orchestrator: EnrollmentOrchestrator,
        stub_engine: StubEngine,
        client_csr: x509.CertificateSigningRequest,
    ) -> None:
        """A CSR paired with the wrong key fails before the engine."""
        store.set_http_credentials("alice", "secret")
        wrong = PKCS10Request(csr=client_csr, key=ec.generate_private_key(ec.SECP256R1()))

        with pytest.raises(EncodingError, match="does not match"):
            orchestrator.simple_enroll(wrong, AuthMode.HTTP_ONLY)

        assert stub_engine.call_count == 0

    def test_store_not_mutated(
        self,
        store: CredentialStore,
        orchestrator: EnrollmentOrchestrator,
        stub_engine: StubEngine,
        request_pkcs10: PKCS10Request,
    ) -> None:
        """Store state is the same after a failed call."""
        store.set_http_credentials("alice", "secret")
        before = (store.endpoint, store.trust_anchors, store.http_credential)
        stub_engine.respond_with(EnrollError.failed(reason="TLS handshake failed"))

        with pytest.raises(EnrollError):
            orchestrator.simple_enroll(request_pkcs10, AuthMode.HTTP_ONLY)

        assert (store.endpoint, store.trust_anchors, store.http_credential) == before


# --- Result interpretation ---


class TestOutcomes:
    """Issued, deferred and faulted outcomes."""

    @pytest.fixture(autouse=True)
    def _http_credentials(self, store: CredentialStore) -> None:
        store.set_http_credentials("alice", "secret")

    def test_issued(
        self,
        orchestrator: EnrollmentOrchestrator,
        stub_engine: StubEngine,
        request_pkcs10: PKCS10Request,
        issued_pem: bytes,
        issued_certificate: x509.Certificate,
    ) -> None:
        """A PEM response becomes a certificate object."""
        stub_engine.respond_with(issued_pem)

        cert = orchestrator.simple_enroll(request_pkcs10, AuthMode.HTTP_ONLY)

        assert cert is not None
        assert cert.public_bytes(Encoding.DER) == issued_certificate.public_bytes(Encoding.DER)
        assert orchestrator.state is EnrollState.ISSUED

    @pytest.mark.parametrize("padding", [b"\x00", b"\x00\x00", b"\x00" * 16])
    def test_nul_padding_is_no_certificate(
        self,
        orchestrator: EnrollmentOrchestrator,
        stub_engine: StubEngine,
        request_pkcs10: PKCS10Request,
        padding: bytes,
    ) -> None:
        """A buffer holding only NUL padding counts as no certificate."""
        stub_engine.respond_with(padding)

        assert orchestrator.simple_enroll(request_pkcs10, AuthMode.HTTP_ONLY) is None
        assert orchestrator.state is EnrollState.ISSUED

    @pytest.mark.parametrize("old_cert", [None, b"not a certificate"])
    def test_reenroll_rejects_non_certificate(
        self,
        orchestrator: EnrollmentOrchestrator,
        stub_engine: StubEngine,
        client_key: ec.EllipticCurvePrivateKey,
        old_cert: object,
    ) -> None:
        """Renewing something that is not a certificate is an encoding error."""
        with pytest.raises(EncodingError, match="Certificate encoding failed"):
            orchestrator.simple_reenroll(old_cert, client_key, AuthMode.HTTP_ONLY)

        assert orchestrator.state is EnrollState.FAULTED
        assert stub_engine.call_count == 0

    def test_zero_bytes_is_no_certificate(
        self,
        orchestrator: EnrollmentOrchestrator,
        stub_engine: StubEngine,
        request_pkcs10: PKCS10Request,
        issued_certificate: x509.Certificate,
        client_key: ec.EllipticCurvePrivateKey,
    ) -> None:
        """An empty response returns None, not an error."""
        stub_engine.respond_with(b"")

        assert orchestrator.simple_enroll(request_pkcs10, AuthMode.HTTP_ONLY) is None
        assert orchestrator.simple_reenroll(issued_certificate, client_key, AuthMode.HTTP_ONLY) is None

    def test_deferred(
        self,
        orchestrator: EnrollmentOrchestrator,
        stub_engine: StubEngine,
        request_pkcs10: PKCS10Request,
    ) -> None:
        """A deferral raises exactly EnrollRetryAfterError."""
        stub_engine.respond_with(EnrollRetryAfterError.deferred(operation="simpleenroll", retry_after=3600))

        with pytest.raises(EnrollRetryAfterError) as exc_info:
            orchestrator.simple_enroll(request_pkcs10, AuthMode.HTTP_ONLY)

        assert exc_info.value.retry_after == 3600
        assert not isinstance(exc_info.value, EngineError)
        assert orchestrator.state is EnrollState.DEFERRED

    def test_malformed_response(
        self,
        orchestrator: EnrollmentOrchestrator,
        stub_engine: StubEngine,
        request_pkcs10: PKCS10Request,
    ) -> None:
        """Non-certificate data raises CertificateParseError."""
        stub_engine.respond_with(b"-----BEGIN CERTIFICATE-----\nAAAA\n-----END CERTIFICATE-----\n")

        with pytest.raises(CertificateParseError):
            orchestrator.simple_enroll(request_pkcs10, AuthMode.HTTP_ONLY)

        assert orchestrator.state is EnrollState.FAULTED

    def test_buffer_size_from_engine(
        self,
        orchestrator: EnrollmentOrchestrator,
        stub_engine: StubEngine,
        request_pkcs10: PKCS10Request,
        issued_pem: bytes,
    ) -> None:
        """A response larger than the maximum length raises BufferSizeError."""
        stub_engine.settings.max_cert_length = 64
        stub_engine.respond_with(issued_pem)

        with pytest.raises(BufferSizeError) as exc_info:
            orchestrator.simple_enroll(request_pkcs10, AuthMode.HTTP_ONLY)

        assert exc_info.value.details["max_length"] == 64

    def test_engine_error_propagates(
        self,
        orchestrator: EnrollmentOrchestrator,
        stub_engine: StubEngine,
        request_pkcs10: PKCS10Request,
    ) -> None:
        """Engine errors reach the caller unchanged."""
        error = EnrollError.failed(reason="connection refused")
        stub_engine.respond_with(error)

        with pytest.raises(EnrollError) as exc_info:
            orchestrator.simple_enroll(request_pkcs10, AuthMode.HTTP_ONLY)

        assert exc_info.value is error

    def test_unexpected_exception_wrapped(
        self,
        orchestrator: EnrollmentOrchestrator,
        stub_engine: StubEngine,
        issued_certificate: x509.Certificate,
        client_key: ec.EllipticCurvePrivateKey,
    ) -> None:
        """Foreign exceptions from the engine become the action's EngineError."""
        stub_engine.respond_with(OSError("socket closed"))

        with pytest.raises(ReenrollError, match="socket closed"):
            orchestrator.simple_reenroll(issued_certificate, client_key, AuthMode.HTTP_ONLY)
