"""EST protocol engine over HTTPS using requests.

Implements the wire side of RFC 7030 /cacerts, /simpleenroll and
/simplereenroll: base64 PKCS#10 requests, base64 PKCS#7 certs-only
responses, HTTP 202 deferral with Retry-After, server verification against
the configured trust anchors and optional TLS client authentication.

Python's ssl module has no TLS-SRP, so SRP calls fail. The tls-unique
channel binding exists on ssl sockets for TLS 1.2 and earlier, but requests
does not expose the connection before the body is sent, so CSRs go out
without Proof-of-Possession linking.
"""

from __future__ import annotations

import base64
import binascii
import tempfile
from http import HTTPStatus
from pathlib import Path
from typing import TYPE_CHECKING

import requests
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ed448, ed25519
from cryptography.hazmat.primitives.serialization import pkcs7
from cryptography.x509.oid import ExtensionOID

from est_client.config import NativeLogLevel
from est_client.engine.base import EngineRequest, EngineSettings, engine_log
from est_client.exceptions import (
    BufferSizeError,
    CACertsError,
    EngineError,
    EnrollError,
    EnrollRetryAfterError,
    ReenrollError,
)

if TYPE_CHECKING:
    from est_client.credentials import HttpCredential, ServerEndpoint, SrpCredential
    from est_client.crypto.cert import TrustAnchorBundle

# RFC 7030 content types
CONTENT_TYPE_PKCS7 = "application/pkcs7-mime"
CONTENT_TYPE_PKCS10 = "application/pkcs10"

EST_PATH_PREFIX = "/.well-known/est"
DEFAULT_TIMEOUT = 30.0

_FIPS_FLAG = Path("/proc/sys/crypto/fips_enabled")


class RequestsEngine:
    """EST engine that speaks HTTPS through requests."""

    def __init__(
        self,
        settings: EngineSettings | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        path_segment: str | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            settings: Shared engine settings, a private instance if omitted.
            timeout: Per request timeout in seconds.
            path_segment: Optional CA label inserted after /.well-known/est.
        """
        self.settings = settings if settings is not None else EngineSettings()
        self.timeout = timeout
        self.path_segment = path_segment

    # --- Engine protocol ---

    def http_enroll(self, request: EngineRequest, http: HttpCredential) -> bytes:
        return self._enroll("simpleenroll", EnrollError, request, request.payload, http=http)

    def srp_enroll(self, request: EngineRequest, srp: SrpCredential, http: HttpCredential | None) -> bytes:
        raise self._srp_unsupported(EnrollError)

    def tls_enroll(
        self,
        request: EngineRequest,
        auth_cert: bytes,
        auth_key: bytes,
        http: HttpCredential | None,
    ) -> bytes:
        return self._enroll(
            "simpleenroll",
            EnrollError,
            request,
            request.payload,
            http=http,
            client_auth=(auth_cert, auth_key),
        )

    def http_reenroll(self, request: EngineRequest, http: HttpCredential) -> bytes:
        csr_der = _renewal_csr(request.payload, request.private_key)
        return self._enroll("simplereenroll", ReenrollError, request, csr_der, http=http)

    def srp_reenroll(self, request: EngineRequest, srp: SrpCredential, http: HttpCredential | None) -> bytes:
        raise self._srp_unsupported(ReenrollError)

    def tls_reenroll(
        self,
        request: EngineRequest,
        auth_cert: bytes,
        auth_key: bytes,
        http: HttpCredential | None,
    ) -> bytes:
        csr_der = _renewal_csr(request.payload, request.private_key)
        return self._enroll(
            "simplereenroll",
            ReenrollError,
            request,
            csr_der,
            http=http,
            client_auth=(auth_cert, auth_key),
        )

    def get_cacerts(
        self,
        trust_anchors: TrustAnchorBundle,
        endpoint: ServerEndpoint,
        srp: SrpCredential | None,
        max_length: int,
    ) -> bytes:
        if srp is not None:
            raise self._srp_unsupported(CACertsError)

        url = self._url(endpoint, "cacerts")
        engine_log(self.settings, "INFO", "GET {}", url)

        with tempfile.TemporaryDirectory(prefix="est-client-") as workdir:
            verify = _write_trust_anchors(Path(workdir), trust_anchors)
            if verify is False:
                engine_log(self.settings, "WARNING", "No trust anchors configured, server identity is not verified")
            try:
                response = requests.get(
                    url,
                    headers={"Accept": CONTENT_TYPE_PKCS7},
                    verify=verify,
                    timeout=self.timeout,
                )
            except requests.exceptions.RequestException as e:
                engine_log(self.settings, "ERROR", "GET {} failed: {}", url, e)
                raise CACertsError.failed(reason=str(e)) from e

        return self._interpret(response, "cacerts", CACertsError, max_length)

    def enable_fips(self) -> None:
        try:
            enabled = _FIPS_FLAG.read_text().strip() == "1"
        except OSError as e:
            raise EngineError.fips_failed(reason=str(e)) from e
        if not enabled:
            raise EngineError.fips_failed(reason="host crypto policy is not in FIPS mode")
        self.settings.mark_fips_enabled()

    def set_log_level(self, level: NativeLogLevel) -> None:
        self.settings.log_level = level

    # --- Internals ---

    def _url(self, endpoint: ServerEndpoint, operation: str) -> str:
        host = endpoint.host or ""
        if ":" in host and not host.startswith("["):
            host = f"[{host}]"
        prefix = EST_PATH_PREFIX
        if self.path_segment:
            prefix = f"{prefix}/{self.path_segment}"
        return f"https://{host}:{endpoint.port}{prefix}/{operation}"

    def _srp_unsupported(self, error_cls: type[EngineError]) -> EngineError:
        reason = "TLS-SRP is not available in the Python TLS stack"
        if self.settings.fips_enabled:
            reason = "SRP is not allowed in FIPS mode"
        engine_log(self.settings, "ERROR", "{}", reason)
        return error_cls.failed(reason=reason)

    def _enroll(
        self,
        operation: str,
        error_cls: type[EngineError],
        request: EngineRequest,
        csr_der: bytes,
        *,
        http: HttpCredential | None,
        client_auth: tuple[bytes, bytes] | None = None,
    ) -> bytes:
        url = self._url(request.endpoint, operation)
        if not request.disable_pop:
            engine_log(
                self.settings,
                "WARNING",
                "Proof-of-Possession linking is unavailable, sending CSR without tls-unique binding",
            )

        headers = {
            "Content-Type": CONTENT_TYPE_PKCS10,
            "Content-Transfer-Encoding": "base64",
            "Accept": CONTENT_TYPE_PKCS7,
        }
        auth = (http.username, http.password) if http is not None else None
        engine_log(self.settings, "INFO", "POST {} ({} byte CSR)", url, len(csr_der))

        with tempfile.TemporaryDirectory(prefix="est-client-") as workdir:
            workdir_path = Path(workdir)
            verify = _write_trust_anchors(workdir_path, request.trust_anchors)
            cert = _write_client_auth(workdir_path, *client_auth) if client_auth else None
            try:
                response = requests.post(
                    url,
                    data=base64.b64encode(csr_der),
                    headers=headers,
                    auth=auth,
                    cert=cert,
                    verify=verify,
                    timeout=self.timeout,
                )
            except requests.exceptions.RequestException as e:
                engine_log(self.settings, "ERROR", "POST {} failed: {}", url, e)
                raise error_cls.failed(reason=str(e)) from e

        return self._interpret(response, operation, error_cls, request.max_length)

    def _interpret(
        self,
        response: requests.Response,
        operation: str,
        error_cls: type[EngineError],
        max_length: int,
    ) -> bytes:
        status = response.status_code
        if status == HTTPStatus.ACCEPTED:
            raise EnrollRetryAfterError.deferred(
                operation=operation,
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
            )
        if status == HTTPStatus.NO_CONTENT or (status == HTTPStatus.OK and not response.content.strip()):
            return b""
        if status != HTTPStatus.OK:
            engine_log(self.settings, "ERROR", "/{} returned HTTP {}", operation, status)
            reason = response.text.strip()[:200] or f"HTTP {status}"
            raise error_cls.failed(reason=reason, status=status)

        content_type = response.headers.get("Content-Type", "")
        if CONTENT_TYPE_PKCS7 not in content_type:
            raise error_cls.failed(reason=f"unexpected content type: {content_type}", status=status)

        try:
            certs = pkcs7.load_der_pkcs7_certificates(base64.b64decode(b"".join(response.content.split())))
        except (ValueError, binascii.Error) as e:
            raise error_cls.failed(reason=f"malformed PKCS#7 response: {e}", status=status) from e

        pem = b"".join(cert.public_bytes(serialization.Encoding.PEM) for cert in certs)
        if len(pem) > max_length:
            raise BufferSizeError.exceeded(length=len(pem), max_length=max_length)
        engine_log(self.settings, "DEBUG", "/{} returned {} certificate(s)", operation, len(certs))
        return pem


def _parse_retry_after(value: str | None) -> int | None:
    if value is None or not value.strip().isdigit():
        return None
    return int(value.strip())


def _write_trust_anchors(workdir: Path, bundle: TrustAnchorBundle) -> str | bool:
    """Write the anchors for requests, False when there are none."""
    if bundle.count == 0:
        return False
    path = workdir / "trust-anchors.pem"
    path.write_bytes(bundle.pem)
    return str(path)


def _write_client_auth(workdir: Path, cert_der: bytes, key_der: bytes) -> tuple[str, str]:
    cert_path = workdir / "client.crt"
    key_path = workdir / "client.key"
    cert = x509.load_der_x509_certificate(cert_der)
    key = serialization.load_der_private_key(key_der, password=None)
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    key_path.touch(mode=0o600)
    key_path.write_bytes(
        key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ),
    )
    return str(cert_path), str(key_path)


def _renewal_csr(old_cert_der: bytes, key_der: bytes) -> bytes:
    """Build the /simplereenroll CSR from the certificate being renewed.

    Subject and subjectAltName are copied from the old certificate, as
    RFC 7030 section 4.2.2 requires.
    """
    old_cert = x509.load_der_x509_certificate(old_cert_der)
    key = serialization.load_der_private_key(key_der, password=None)

    builder = x509.CertificateSigningRequestBuilder().subject_name(old_cert.subject)
    try:
        san = old_cert.extensions.get_extension_for_oid(ExtensionOID.SUBJECT_ALTERNATIVE_NAME)
        builder = builder.add_extension(san.value, critical=san.critical)
    except x509.ExtensionNotFound:
        pass

    algorithm = None if isinstance(key, (ed25519.Ed25519PrivateKey, ed448.Ed448PrivateKey)) else hashes.SHA256()
    csr = builder.sign(key, algorithm)
    return csr.public_bytes(serialization.Encoding.DER)
