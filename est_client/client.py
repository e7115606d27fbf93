"""Client-side EST session.

Holds the server endpoint, trust anchors and credentials for one session
and exposes the RFC 7030 operations: /cacerts, /simpleenroll and
/simplereenroll. Engine settings (maximum certificate length, log level,
FIPS mode) belong to the engine and are shared by every session using it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from cryptography import x509

from est_client import __version__
from est_client.audit.logger import (
    clear_correlation_id,
    log_engine_settings_changed,
    log_error,
    set_correlation_id,
)
from est_client.cacerts import CACertsRetriever
from est_client.config import AuthMode, NativeLogLevel
from est_client.credentials import CredentialStore
from est_client.crypto.cert import load_certificates_pem, load_private_key_pem
from est_client.crypto.csr import PKCS10Request, parse_csr
from est_client.engine.base import EngineSettings
from est_client.engine.http import RequestsEngine
from est_client.enroll import EnrollmentOrchestrator, EnrollState
from est_client.exceptions import EngineError, InvalidArgumentError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

    from est_client.config import ClientConfig
    from est_client.credentials import ServerEndpoint
    from est_client.engine.base import ESTEngine


class ESTClient:
    """Performs client-side EST operations as defined in RFC 7030."""

    def __init__(self, engine: ESTEngine | None = None) -> None:
        """Create a session.

        Args:
            engine: Protocol engine, a RequestsEngine with default
                settings if omitted.
        """
        self._engine = engine if engine is not None else RequestsEngine()
        self._store = CredentialStore()
        self._enroller = EnrollmentOrchestrator(self._store, self._engine)
        self._cacerts = CACertsRetriever(self._store, self._engine)

    @classmethod
    def from_config(cls, config: ClientConfig, engine: ESTEngine | None = None) -> ESTClient:
        """Create a session from loaded configuration.

        Reads trust anchors and TLS credentials from the configured files.

        Raises:
            ConfigurationError: If a file cannot be loaded or a value is invalid.
            EngineError: If FIPS mode is requested and cannot be enabled.
        """
        if engine is None:
            settings = EngineSettings(
                max_cert_length=config.engine.max_cert_length,
                log_level=config.engine.log_level,
            )
            engine = RequestsEngine(settings=settings, timeout=config.engine.timeout)

        client = cls(engine)
        if config.engine.fips:
            client.enable_fips()

        if config.server.host:
            client.set_server_name(config.server.host)
        client.set_server_port(config.server.port)

        if config.trust.anchors_file is not None:
            client.set_trust_anchor(load_certificates_pem(config.trust.anchors_file))

        auth = config.auth
        if auth is not None:
            if auth.http is not None:
                client.set_http_credentials(auth.http.username, auth.http.password)
            if auth.srp is not None:
                client.set_srp_credentials(auth.srp.username, auth.srp.password)
            if auth.tls is not None:
                cert = load_certificates_pem(auth.tls.cert_file)[0]
                key = load_private_key_pem(auth.tls.key_file)
                client.set_tls_authentication_credentials(cert, key)

        return client

    @staticmethod
    def get_version() -> str:
        """Return the client version string."""
        return f"est-client {__version__}"

    # --- Session configuration ---

    @property
    def endpoint(self) -> ServerEndpoint:
        return self._store.endpoint

    @property
    def credentials(self) -> CredentialStore:
        return self._store

    @property
    def engine(self) -> ESTEngine:
        return self._engine

    @property
    def enroll_state(self) -> EnrollState:
        """State reached by the most recent enroll or reenroll call."""
        return self._enroller.state

    def set_server_name(self, server: str) -> None:
        self._store.set_server_name(server)

    def set_server_port(self, port: int) -> None:
        self._store.set_server_port(port)

    def set_trust_anchor(self, certs: Iterable[x509.Certificate] | None) -> None:
        self._store.set_trust_anchor(certs)

    def set_http_credentials(self, user: str | None, password: str | None) -> None:
        self._store.set_http_credentials(user, password)

    def set_srp_credentials(self, user: str | None, password: str | None) -> None:
        self._store.set_srp_credentials(user, password)

    def set_tls_authentication_credentials(
        self,
        cert: x509.Certificate | None,
        key: PrivateKeyTypes | None,
    ) -> None:
        self._store.set_tls_authentication_credentials(cert, key)

    # --- Engine settings ---

    def enable_fips(self) -> None:
        """Put the engine's crypto module in FIPS mode.

        Affects every session sharing the engine. SRP is not allowed in FIPS mode.

        Raises:
            EngineError: If the crypto module cannot operate in FIPS mode.
        """
        try:
            self._engine.enable_fips()
        except EngineError as e:
            log_error(error=e, context="enable_fips")
            raise
        log_engine_settings_changed(setting="fips", value=True)

    def set_native_log_level(self, level: NativeLogLevel | str) -> None:
        """Set engine log verbosity: errors, warnings or full.

        Raises:
            InvalidArgumentError: If the level is not recognized.
        """
        try:
            level = NativeLogLevel(level)
        except ValueError:
            raise InvalidArgumentError.missing_value(field="log_level", reason=f"Invalid log level: {level!r}") from None
        self._engine.set_log_level(level)
        log_engine_settings_changed(setting="log_level", value=level.value)

    def get_native_max_cert_length(self) -> int:
        """Maximum certificate response length in bytes."""
        return self._engine.settings.max_cert_length

    def set_native_max_cert_length(self, value: int) -> None:
        """Change the maximum certificate response length.

        Applies to every session sharing the engine.

        Raises:
            InvalidArgumentError: If the value is not a positive integer.
        """
        self._engine.settings.max_cert_length = value
        log_engine_settings_changed(setting="max_cert_length", value=value)

    # --- EST operations ---

    def fetch_latest_ca_certs(self) -> list[x509.Certificate]:
        """Retrieve the latest CA certificates (/cacerts).

        Callers should persist the returned certificates.

        Returns:
            CA certificates, empty if the server returned none.
        """
        set_correlation_id()
        try:
            return self._cacerts.fetch()
        finally:
            clear_correlation_id()

    def send_simple_enroll_request(
        self,
        csr: x509.CertificateSigningRequest | bytes | str,
        mode: AuthMode | str,
        key: PrivateKeyTypes,
        disable_pop: bool = False,
    ) -> x509.Certificate | None:
        """Enroll a new certificate (/simpleenroll).

        Args:
            csr: PKCS#10 request, as an object or PEM/DER/base64 data.
            mode: Authentication mode.
            key: Key pair that signed the request.
            disable_pop: Disable Proof-of-Possession linking (RFC 7030 3.5).

        Returns:
            The issued certificate, or None if the server returned none.

        Raises:
            EnrollRetryAfterError: The server deferred issuance. Persist the
                CSR and key pair and retry later.
            BufferSizeError: Raise the maximum certificate length and retry.
        """
        if not isinstance(csr, x509.CertificateSigningRequest):
            csr = parse_csr(csr)
        request = PKCS10Request(csr=csr, key=key)

        set_correlation_id()
        try:
            return self._enroller.simple_enroll(request, mode, disable_pop=disable_pop)
        finally:
            clear_correlation_id()

    def send_simple_reenroll_request(
        self,
        old_cert: x509.Certificate,
        mode: AuthMode | str,
        key: PrivateKeyTypes,
        disable_pop: bool = False,
    ) -> x509.Certificate | None:
        """Renew an existing certificate (/simplereenroll).

        Args:
            old_cert: Certificate to renew.
            mode: Authentication mode.
            key: Key pair used to sign the renewal request.
            disable_pop: Disable Proof-of-Possession linking.

        Returns:
            The renewed certificate, or None if the server returned none.
        """
        set_correlation_id()
        try:
            return self._enroller.simple_reenroll(old_cert, key, mode, disable_pop=disable_pop)
        finally:
            clear_correlation_id()
