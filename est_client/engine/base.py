"""Protocol engine boundary.

The engine performs the wire protocol (HTTP, TLS, SRP) for one EST
operation per call. It returns the raw response bytes, an empty buffer
meaning no certificate was returned, or raises an ESTClientError subclass.
All mode dispatch and result interpretation happen above this layer.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from loguru import logger

from est_client.audit.logger import get_correlation_id
from est_client.config import DEFAULT_MAX_CERT_LENGTH, NativeLogLevel
from est_client.exceptions import InvalidArgumentError

if TYPE_CHECKING:
    from est_client.credentials import HttpCredential, ServerEndpoint, SrpCredential
    from est_client.crypto.cert import TrustAnchorBundle

_ENGINE_LEVELS = {
    NativeLogLevel.ERRORS: {"ERROR"},
    NativeLogLevel.WARNINGS: {"ERROR", "WARNING"},
    NativeLogLevel.FULL: {"ERROR", "WARNING", "INFO", "DEBUG"},
}


class EngineSettings:
    """Settings shared by every session that uses the same engine.

    Changes are visible to all sessions immediately. FIPS mode is one-shot.
    """

    def __init__(
        self,
        max_cert_length: int = DEFAULT_MAX_CERT_LENGTH,
        log_level: NativeLogLevel = NativeLogLevel.ERRORS,
    ) -> None:
        self._lock = threading.Lock()
        self._max_cert_length = _validate_length(max_cert_length)
        self._log_level = NativeLogLevel(log_level)
        self._fips_enabled = False

    @property
    def max_cert_length(self) -> int:
        with self._lock:
            return self._max_cert_length

    @max_cert_length.setter
    def max_cert_length(self, value: int) -> None:
        value = _validate_length(value)
        with self._lock:
            self._max_cert_length = value

    @property
    def log_level(self) -> NativeLogLevel:
        with self._lock:
            return self._log_level

    @log_level.setter
    def log_level(self, value: NativeLogLevel) -> None:
        value = NativeLogLevel(value)
        with self._lock:
            self._log_level = value

    @property
    def fips_enabled(self) -> bool:
        with self._lock:
            return self._fips_enabled

    def mark_fips_enabled(self) -> None:
        with self._lock:
            self._fips_enabled = True


def _validate_length(value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidArgumentError.missing_value(
            field="max_cert_length",
            reason=f"Maximum certificate length must be a positive integer, got {value!r}",
        )
    return value


def engine_log(settings: EngineSettings, level: str, message: str, *args: object) -> None:
    """Emit an engine record if the configured verbosity allows it.

    ``settings.log_level`` decides which engine records are emitted. The
    audit sinks still apply their own ``AuditConfig.log_level``, so DEBUG
    records under ``NativeLogLevel.FULL`` only reach a sink configured at
    DEBUG.
    """
    if level not in _ENGINE_LEVELS[settings.log_level]:
        return
    correlation_id = get_correlation_id() or "-"
    logger.bind(audit=True, correlation_id=correlation_id, event="engine").log(level, message, *args)


@dataclass(frozen=True)
class EngineRequest:
    """Inputs shared by every enroll and reenroll engine call.

    Attributes:
        trust_anchors: PEM bundle used to verify the server.
        private_key: Requester key as PKCS#8 DER.
        endpoint: EST server host and port.
        disable_pop: Skip linking the CSR to the TLS session.
        payload: CSR DER for enroll, old certificate DER for reenroll.
        max_length: Largest response the caller will accept.
    """

    trust_anchors: TrustAnchorBundle
    private_key: bytes = field(repr=False)
    endpoint: ServerEndpoint
    disable_pop: bool
    payload: bytes = field(repr=False)
    max_length: int


class ESTEngine(Protocol):
    """One operation per EST action and authentication mode."""

    settings: EngineSettings

    def http_enroll(self, request: EngineRequest, http: HttpCredential) -> bytes:
        """/simpleenroll with HTTP authentication only."""
        ...

    def srp_enroll(
        self,
        request: EngineRequest,
        srp: SrpCredential,
        http: HttpCredential | None,
    ) -> bytes:
        """/simpleenroll with TLS-SRP and optional HTTP authentication."""
        ...

    def tls_enroll(
        self,
        request: EngineRequest,
        auth_cert: bytes,
        auth_key: bytes,
        http: HttpCredential | None,
    ) -> bytes:
        """/simpleenroll with a TLS client certificate and optional HTTP authentication."""
        ...

    def http_reenroll(self, request: EngineRequest, http: HttpCredential) -> bytes:
        """/simplereenroll with HTTP authentication only."""
        ...

    def srp_reenroll(
        self,
        request: EngineRequest,
        srp: SrpCredential,
        http: HttpCredential | None,
    ) -> bytes:
        """/simplereenroll with TLS-SRP and optional HTTP authentication."""
        ...

    def tls_reenroll(
        self,
        request: EngineRequest,
        auth_cert: bytes,
        auth_key: bytes,
        http: HttpCredential | None,
    ) -> bytes:
        """/simplereenroll with a TLS client certificate and optional HTTP authentication."""
        ...

    def get_cacerts(
        self,
        trust_anchors: TrustAnchorBundle,
        endpoint: ServerEndpoint,
        srp: SrpCredential | None,
        max_length: int,
    ) -> bytes:
        """/cacerts, returning concatenated PEM certificates."""
        ...

    def enable_fips(self) -> None:
        """Switch the crypto module to FIPS mode, raising EngineError on failure."""
        ...

    def set_log_level(self, level: NativeLogLevel) -> None:
        """Set engine log verbosity."""
        ...
