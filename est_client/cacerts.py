"""CA certificate retrieval (RFC 7030 section 4.1, /cacerts)."""

from __future__ import annotations

from typing import TYPE_CHECKING

from est_client.audit.logger import (
    log_cacerts_received,
    log_configuration_rejected,
    log_error,
    log_no_certificate,
)
from est_client.crypto.cert import TrustAnchorBundle, parse_pem_stream
from est_client.exceptions import BufferSizeError, CACertsError, ConfigurationError, ESTClientError

if TYPE_CHECKING:
    from cryptography import x509

    from est_client.credentials import CredentialStore
    from est_client.engine.base import ESTEngine


class CACertsRetriever:
    """Fetches the current CA certificates from the EST server."""

    def __init__(self, store: CredentialStore, engine: ESTEngine) -> None:
        self._store = store
        self._engine = engine

    def fetch(self) -> list[x509.Certificate]:
        """Retrieve the CA certificates.

        SRP credentials are passed to the engine when configured.

        Returns:
            Certificates in response order, empty if the server sent none.

        Raises:
            ConfigurationError: Server name or port is not configured.
            BufferSizeError: The response exceeded the maximum length.
            CertificateParseError: The response holds a malformed certificate.
            CACertsError: The engine reported a failure.
        """
        endpoint = self._store.endpoint
        if not endpoint.is_complete:
            error = ConfigurationError.missing_endpoint(field="name" if not endpoint.host else "port")
            log_configuration_rejected(operation="cacerts", reason=error.message)
            raise error

        max_length = self._engine.settings.max_cert_length
        bundle = TrustAnchorBundle.from_anchors(self._store.trust_anchors)

        try:
            data = self._engine.get_cacerts(bundle, endpoint, self._store.srp_credential, max_length)
        except ESTClientError as e:
            log_error(error=e, context="cacerts")
            raise
        except Exception as e:
            log_error(error=e, context="cacerts")
            raise CACertsError.failed(reason=str(e)) from e

        if not data:
            log_no_certificate(operation="cacerts", server=str(endpoint))
            return []
        if len(data) > max_length:
            raise BufferSizeError.exceeded(length=len(data), max_length=max_length)

        certs = list(parse_pem_stream(data, len(data)))
        log_cacerts_received(server=str(endpoint), count=len(certs))
        return certs
