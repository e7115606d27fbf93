"""Client session configuration: server endpoint, trust anchors and credentials.

Values are validated when assigned. Operations read the store and never
mutate it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed448, ed25519, rsa

from est_client.exceptions import InvalidArgumentError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

MIN_PORT = 1
MAX_PORT = 65535

_PRIVATE_KEY_TYPES = (
    rsa.RSAPrivateKey,
    ec.EllipticCurvePrivateKey,
    dsa.DSAPrivateKey,
    ed25519.Ed25519PrivateKey,
    ed448.Ed448PrivateKey,
)


@dataclass(frozen=True)
class ServerEndpoint:
    """EST server host name or IP address and TCP port."""

    host: str | None = None
    port: int | None = None

    @property
    def is_complete(self) -> bool:
        return bool(self.host) and self.port is not None

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class HttpCredential:
    """User name and password for HTTP basic or digest authentication."""

    username: str
    password: str

    def __repr__(self) -> str:
        return f"HttpCredential(username={self.username!r}, password='***')"


@dataclass(frozen=True)
class SrpCredential:
    """User name and password for TLS-SRP authentication."""

    username: str
    password: str

    def __repr__(self) -> str:
        return f"SrpCredential(username={self.username!r}, password='***')"


@dataclass(frozen=True)
class TlsCredential:
    """Client certificate and private key for TLS authentication."""

    certificate: x509.Certificate
    key: PrivateKeyTypes


class CredentialStore:
    """Mutable configuration state owned by one client session."""

    def __init__(self) -> None:
        self._endpoint = ServerEndpoint()
        self._trust_anchors: tuple[x509.Certificate, ...] = ()
        self._http: HttpCredential | None = None
        self._srp: SrpCredential | None = None
        self._tls: TlsCredential | None = None

    @property
    def endpoint(self) -> ServerEndpoint:
        return self._endpoint

    @property
    def trust_anchors(self) -> tuple[x509.Certificate, ...]:
        return self._trust_anchors

    @property
    def http_credential(self) -> HttpCredential | None:
        return self._http

    @property
    def srp_credential(self) -> SrpCredential | None:
        return self._srp

    @property
    def tls_credential(self) -> TlsCredential | None:
        return self._tls

    def set_server_name(self, server: str) -> None:
        """Set the EST server host name or IP address.

        Raises:
            InvalidArgumentError: If the name is not a string or is empty.
        """
        if not isinstance(server, str) or not server.strip():
            raise InvalidArgumentError.missing_value(field="server_name", reason="Server name may not be empty")
        self._endpoint = ServerEndpoint(host=server.strip(), port=self._endpoint.port)

    def set_server_port(self, port: int) -> None:
        """Set the EST server TCP port.

        Raises:
            InvalidArgumentError: If the port is outside 1..65535.
        """
        if isinstance(port, bool) or not isinstance(port, int) or not MIN_PORT <= port <= MAX_PORT:
            raise InvalidArgumentError.invalid_port(port=port)
        self._endpoint = ServerEndpoint(host=self._endpoint.host, port=port)

    def set_trust_anchor(self, certs: Iterable[x509.Certificate] | None) -> None:
        """Set the certificates used to verify the EST server.

        ``None`` or an empty iterable clears the anchors.

        Raises:
            InvalidArgumentError: If an element is not a certificate.
        """
        anchors = tuple(certs or ())
        for cert in anchors:
            if not isinstance(cert, x509.Certificate):
                raise InvalidArgumentError.missing_value(
                    field="trust_anchor",
                    reason=f"Trust anchor must be an X.509 certificate, got {type(cert).__name__}",
                )
        self._trust_anchors = anchors

    def set_http_credentials(self, user: str | None, password: str | None) -> None:
        """Set the user name and password for HTTP authentication.

        Raises:
            InvalidArgumentError: If either value is missing.
        """
        if user is None or password is None:
            raise InvalidArgumentError.missing_value(
                field="http_credentials",
                reason="User name and password may not be null",
            )
        self._http = HttpCredential(username=user, password=password)

    def set_srp_credentials(self, user: str | None, password: str | None) -> None:
        """Set the user name and password for SRP authentication.

        Raises:
            InvalidArgumentError: If either value is missing.
        """
        if user is None or password is None:
            raise InvalidArgumentError.missing_value(
                field="srp_credentials",
                reason="User name and password may not be null",
            )
        self._srp = SrpCredential(username=user, password=password)

    def set_tls_authentication_credentials(
        self,
        cert: x509.Certificate | None,
        key: PrivateKeyTypes | None,
    ) -> None:
        """Set the certificate and private key for TLS client authentication.

        Raises:
            InvalidArgumentError: If the certificate or key is missing, or the
                key has no private component.
        """
        if cert is None or key is None:
            raise InvalidArgumentError.missing_value(
                field="tls_credentials",
                reason="Certificate and key may not be null",
            )
        if not isinstance(key, _PRIVATE_KEY_TYPES):
            raise InvalidArgumentError.missing_value(
                field="tls_credentials",
                reason="Key pair contains null private key",
            )
        self._tls = TlsCredential(certificate=cert, key=key)
