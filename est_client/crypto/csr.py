"""CSR (Certificate Signing Request) handling.

Handles PKCS#10 CSR parsing and encoding, and pairs a CSR with the
private key that signed it for submission to /simpleenroll.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from est_client.exceptions import EncodingError

if TYPE_CHECKING:
    from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes


@dataclass(frozen=True)
class PKCS10Request:
    """A signing request together with the key pair that signed it."""

    csr: x509.CertificateSigningRequest
    key: PrivateKeyTypes

    @classmethod
    def from_bytes(cls, csr_data: bytes | str, key: PrivateKeyTypes) -> PKCS10Request:
        """Build a request from PEM, DER or base64 CSR data."""
        return cls(csr=parse_csr(csr_data), key=key)

    @property
    def subject(self) -> str:
        """Subject DN in RFC 4514 form."""
        return self.csr.subject.rfc4514_string()

    def to_der(self) -> bytes:
        """DER encoding of the CSR, the /simpleenroll payload."""
        return encode_csr_der(self.csr)


def parse_csr(csr_data: bytes | str) -> x509.CertificateSigningRequest:
    """Parse a PKCS#10 CSR from PEM or DER format.

    Args:
        csr_data: CSR data as bytes (DER or PEM) or base64 string.

    Returns:
        Parsed CSR.

    Raises:
        EncodingError: If CSR cannot be parsed.
    """
    # Handle string input (base64 encoded or PEM)
    if isinstance(csr_data, str):
        try:
            csr_data = csr_data.strip()
            csr_data = (
                csr_data.encode("utf-8")
                if csr_data.startswith("-----BEGIN")
                else base64.b64decode(csr_data, validate=True)
            )
        except (ValueError, binascii.Error) as e:
            raise EncodingError.csr(reason=str(e)) from e

    try:
        if csr_data.startswith(b"-----BEGIN"):
            return x509.load_pem_x509_csr(csr_data)
        return x509.load_der_x509_csr(csr_data)
    except ValueError as e:
        raise EncodingError.csr(reason=str(e)) from e


def csr_matches_key(csr: x509.CertificateSigningRequest, key: PrivateKeyTypes) -> bool:
    """Check that the CSR carries the public half of ``key``."""
    csr_public = csr.public_key().public_bytes(Encoding.DER, PublicFormat.SubjectPublicKeyInfo)
    key_public = key.public_key().public_bytes(Encoding.DER, PublicFormat.SubjectPublicKeyInfo)
    return csr_public == key_public


def encode_csr_der(csr: x509.CertificateSigningRequest) -> bytes:
    """Encode CSR to DER format.

    Raises:
        EncodingError: If the CSR cannot be serialized.
    """
    try:
        return csr.public_bytes(Encoding.DER)
    except Exception as e:
        raise EncodingError.csr(reason=str(e)) from e


def encode_csr_pem(csr: x509.CertificateSigningRequest) -> bytes:
    """Encode CSR to PEM format."""
    return csr.public_bytes(Encoding.PEM)
