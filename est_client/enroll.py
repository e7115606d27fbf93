"""Enrollment and re-enrollment orchestration (RFC 7030 sections 4.2.1, 4.2.2).

Each call walks the same states:

    IDLE -> AUTH_MODE_SELECTED -> ENCODING_PREPARED -> AWAITING_RESPONSE
         -> ISSUED | DEFERRED | FAULTED

Credential checks happen before any engine call. The engine operation is
picked from one mode table shared by /simpleenroll and /simplereenroll.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from cryptography import x509

from est_client.audit.logger import (
    log_certificate_received,
    log_configuration_rejected,
    log_enroll_deferred,
    log_enroll_requested,
    log_error,
    log_no_certificate,
)
from est_client.config import AuthMode
from est_client.crypto.cert import (
    TrustAnchorBundle,
    certificate_to_der,
    parse_single_certificate,
    private_key_to_der,
)
from est_client.crypto.csr import csr_matches_key
from est_client.engine.base import EngineRequest
from est_client.exceptions import (
    BufferSizeError,
    ConfigurationError,
    EncodingError,
    EngineError,
    EnrollError,
    EnrollRetryAfterError,
    ESTClientError,
    ReenrollError,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

    from est_client.credentials import CredentialStore
    from est_client.crypto.csr import PKCS10Request
    from est_client.engine.base import ESTEngine


class EnrollState(str, Enum):
    """Progress of the most recent enroll or reenroll call."""

    IDLE = "idle"
    AUTH_MODE_SELECTED = "auth_mode_selected"
    ENCODING_PREPARED = "encoding_prepared"
    AWAITING_RESPONSE = "awaiting_response"
    ISSUED = "issued"
    DEFERRED = "deferred"
    FAULTED = "faulted"


@dataclass(frozen=True)
class EngineAction:
    """Engine method names for one EST action, keyed by auth mode."""

    operation: str
    error_cls: type[EngineError]
    calls: dict[AuthMode, str]


ENROLL = EngineAction(
    operation="simpleenroll",
    error_cls=EnrollError,
    calls={AuthMode.HTTP_ONLY: "http_enroll", AuthMode.SRP: "srp_enroll", AuthMode.TLS: "tls_enroll"},
)

REENROLL = EngineAction(
    operation="simplereenroll",
    error_cls=ReenrollError,
    calls={AuthMode.HTTP_ONLY: "http_reenroll", AuthMode.SRP: "srp_reenroll", AuthMode.TLS: "tls_reenroll"},
)

# Setter named in the error when a mode's credentials are missing
_CREDENTIAL_SETTERS = {
    AuthMode.HTTP_ONLY: "set_http_credentials",
    AuthMode.SRP: "set_srp_credentials",
    AuthMode.TLS: "set_tls_authentication_credentials",
}


def select_auth_mode(store: CredentialStore, mode: AuthMode | str) -> AuthMode:
    """Validate ``mode`` against the configured endpoint and credentials.

    Args:
        store: Session configuration.
        mode: Requested authentication mode, enum member or value.

    Returns:
        The mode as an AuthMode member.

    Raises:
        ConfigurationError: If the mode is unknown or its credentials,
            the server name or the server port are missing.
    """
    try:
        selected = AuthMode(mode)
    except (ValueError, TypeError):
        raise ConfigurationError.invalid_auth_mode(mode=mode) from None

    endpoint = store.endpoint
    if not endpoint.host:
        raise ConfigurationError.missing_endpoint(field="name")
    if endpoint.port is None:
        raise ConfigurationError.missing_endpoint(field="port")

    present = {
        AuthMode.HTTP_ONLY: store.http_credential is not None,
        AuthMode.SRP: store.srp_credential is not None,
        AuthMode.TLS: store.tls_credential is not None,
    }
    if not present[selected]:
        raise ConfigurationError.missing_credentials(mode=selected.value, setter=_CREDENTIAL_SETTERS[selected])
    return selected


class EnrollmentOrchestrator:
    """Drives /simpleenroll and /simplereenroll for one client session."""

    def __init__(self, store: CredentialStore, engine: ESTEngine) -> None:
        """Initialize with the session's store and a protocol engine.

        Args:
            store: Credential store read during each call.
            engine: Protocol engine, possibly shared with other sessions.
        """
        self._store = store
        self._engine = engine
        self.state = EnrollState.IDLE

    def simple_enroll(
        self,
        request: PKCS10Request,
        mode: AuthMode | str,
        *,
        disable_pop: bool = False,
    ) -> x509.Certificate | None:
        """Enroll a new certificate from a PKCS#10 request.

        Args:
            request: CSR plus the key pair that signed it.
            mode: Authentication mode to use.
            disable_pop: Skip linking the CSR to the TLS session (RFC 7030 3.5).

        Returns:
            The issued certificate, or None if the server returned none.

        Raises:
            ConfigurationError: Mode, endpoint or credentials are unusable.
            EncodingError: The CSR or key cannot be encoded, or do not match.
            CertificateParseError: The response is not a valid certificate.
            BufferSizeError: The response exceeded the maximum length.
            EnrollRetryAfterError: The server deferred issuance.
            EnrollError: The engine reported a failure.
        """
        self.state = EnrollState.IDLE
        selected = self._select(ENROLL, mode)

        try:
            if not csr_matches_key(request.csr, request.key):
                raise EncodingError.csr(reason="CSR public key does not match the signing key")
        except EncodingError:
            self.state = EnrollState.FAULTED
            raise
        except Exception as e:
            self.state = EnrollState.FAULTED
            raise EncodingError.private_key(reason=str(e)) from e

        return self._run(ENROLL, selected, request.to_der, request.key, disable_pop, request.subject)

    def simple_reenroll(
        self,
        old_cert: x509.Certificate,
        key: PrivateKeyTypes,
        mode: AuthMode | str,
        *,
        disable_pop: bool = False,
    ) -> x509.Certificate | None:
        """Renew an existing certificate.

        Args:
            old_cert: Certificate being renewed.
            key: Key pair used to sign the renewal request.
            mode: Authentication mode to use.
            disable_pop: Skip linking the request to the TLS session.

        Returns:
            The renewed certificate, or None if the server returned none.

        Raises:
            ConfigurationError: Mode, endpoint or credentials are unusable.
            EncodingError: The certificate or key cannot be encoded.
            CertificateParseError: The response is not a valid certificate.
            BufferSizeError: The response exceeded the maximum length.
            EnrollRetryAfterError: The server deferred issuance.
            ReenrollError: The engine reported a failure.
        """
        self.state = EnrollState.IDLE
        selected = self._select(REENROLL, mode)
        if not isinstance(old_cert, x509.Certificate):
            self.state = EnrollState.FAULTED
            raise EncodingError.certificate(reason=f"expected an X.509 certificate, got {type(old_cert).__name__}")
        return self._run(
            REENROLL,
            selected,
            lambda: certificate_to_der(old_cert),
            key,
            disable_pop,
            old_cert.subject.rfc4514_string(),
        )

    def _select(self, action: EngineAction, mode: AuthMode | str) -> AuthMode:
        try:
            selected = select_auth_mode(self._store, mode)
        except ConfigurationError as e:
            self.state = EnrollState.FAULTED
            log_configuration_rejected(operation=action.operation, reason=e.message)
            raise
        self.state = EnrollState.AUTH_MODE_SELECTED
        return selected

    def _run(
        self,
        action: EngineAction,
        mode: AuthMode,
        encode_payload: Callable[[], bytes],
        key: PrivateKeyTypes,
        disable_pop: bool,
        subject: str,
    ) -> x509.Certificate | None:
        store = self._store
        max_length = self._engine.settings.max_cert_length

        try:
            engine_request = EngineRequest(
                trust_anchors=TrustAnchorBundle.from_anchors(store.trust_anchors),
                private_key=private_key_to_der(key),
                endpoint=store.endpoint,
                disable_pop=bool(disable_pop),
                payload=encode_payload(),
                max_length=max_length,
            )
            mode_args = self._mode_arguments(mode)
        except ESTClientError:
            self.state = EnrollState.FAULTED
            raise
        self.state = EnrollState.ENCODING_PREPARED

        log_enroll_requested(
            operation=action.operation,
            auth_mode=mode.value,
            server=str(store.endpoint),
            subject=subject,
            disable_pop=engine_request.disable_pop,
        )

        self.state = EnrollState.AWAITING_RESPONSE
        call = getattr(self._engine, action.calls[mode])
        try:
            data = call(engine_request, *mode_args)
        except EnrollRetryAfterError as e:
            self.state = EnrollState.DEFERRED
            log_enroll_deferred(operation=action.operation, retry_after=e.retry_after)
            raise
        except ESTClientError as e:
            self.state = EnrollState.FAULTED
            log_error(error=e, context=action.operation)
            raise
        except Exception as e:
            self.state = EnrollState.FAULTED
            log_error(error=e, context=action.operation)
            raise action.error_cls.failed(reason=str(e)) from e

        try:
            cert = self._interpret(action, data, max_length)
        except ESTClientError as e:
            self.state = EnrollState.FAULTED
            log_error(error=e, context=action.operation)
            raise

        self.state = EnrollState.ISSUED
        return cert

    def _mode_arguments(self, mode: AuthMode) -> tuple[Any, ...]:
        """Credentials passed after the request for each engine call."""
        store = self._store
        http = store.http_credential
        if mode is AuthMode.HTTP_ONLY:
            return (http,)
        if mode is AuthMode.SRP:
            return (store.srp_credential, http)
        tls = store.tls_credential
        if tls is None:
            raise ConfigurationError.missing_credentials(mode=mode.value, setter=_CREDENTIAL_SETTERS[mode])
        return (certificate_to_der(tls.certificate), private_key_to_der(tls.key), http)

    def _interpret(self, action: EngineAction, data: bytes | None, max_length: int) -> x509.Certificate | None:
        data = (data or b"").rstrip(b"\x00")
        if not data:
            log_no_certificate(operation=action.operation, server=str(self._store.endpoint))
            return None
        if len(data) > max_length:
            raise BufferSizeError.exceeded(length=len(data), max_length=max_length)

        cert = parse_single_certificate(data)
        log_certificate_received(
            operation=action.operation,
            subject=cert.subject.rfc4514_string(),
            serial_number=cert.serial_number,
            not_before=cert.not_valid_before_utc,
            not_after=cert.not_valid_after_utc,
        )
        return cert
