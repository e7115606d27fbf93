"""Certificate encoding and parsing.

Converts certificates between cryptography objects, PEM text and DER,
builds the trust anchor bundle handed to the protocol engine, and parses
the concatenated PEM responses the engine returns.
"""

from __future__ import annotations

import base64
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from est_client.exceptions import CertificateParseError, ConfigurationError, EncodingError

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator
    from pathlib import Path

    from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

PEM_BEGIN = "-----BEGIN CERTIFICATE-----"
PEM_END = "-----END CERTIFICATE-----"

# Terminator reservation appended to a non-empty bundle
BUNDLE_TERMINATOR = b"\x00\x00"
# Minimum-length buffer returned for an empty anchor set
EMPTY_BUNDLE = b"\x00"

_PEM_LINE_WIDTH = 64


@dataclass(frozen=True)
class TrustAnchorBundle:
    """PEM trust anchor bundle with an explicit length.

    Attributes:
        data: NUL terminated buffer, never empty.
        count: Number of certificates in the bundle.
    """

    data: bytes
    count: int

    @property
    def pem(self) -> bytes:
        """PEM text without the terminator reservation."""
        return self.data.rstrip(b"\x00")

    def __len__(self) -> int:
        return len(self.data)

    @classmethod
    def from_anchors(cls, anchors: Iterable[x509.Certificate] | None) -> TrustAnchorBundle:
        """Build a bundle from certificates in order."""
        certs = tuple(anchors or ())
        return cls(data=trust_anchors_to_pem_bundle(certs), count=len(certs))


def certificate_to_der(cert: x509.Certificate) -> bytes:
    """Encode certificate to DER format.

    Args:
        cert: Certificate to encode.

    Returns:
        DER-encoded bytes.

    Raises:
        EncodingError: If the certificate cannot be serialized.
    """
    try:
        return cert.public_bytes(serialization.Encoding.DER)
    except Exception as e:
        raise EncodingError.certificate(reason=str(e)) from e


def certificate_to_pem(cert: x509.Certificate) -> str:
    """Encode certificate to PEM text using the platform line separator.

    Args:
        cert: Certificate to encode.

    Returns:
        PEM string with BEGIN/END CERTIFICATE framing.

    Raises:
        EncodingError: If the certificate cannot be serialized.
    """
    encoded = base64.b64encode(certificate_to_der(cert)).decode("ascii")
    lines = [PEM_BEGIN]
    lines.extend(encoded[i : i + _PEM_LINE_WIDTH] for i in range(0, len(encoded), _PEM_LINE_WIDTH))
    lines.append(PEM_END)
    return "".join(line + os.linesep for line in lines)


def trust_anchors_to_pem_bundle(anchors: Iterable[x509.Certificate] | None) -> bytes:
    """Concatenate trust anchors into a single NUL terminated PEM buffer.

    An empty anchor set yields a one byte placeholder, never an empty buffer.

    Args:
        anchors: Trusted certificates in the order they were configured.

    Returns:
        UTF-8 PEM bundle followed by two NUL bytes.

    Raises:
        EncodingError: If any anchor cannot be serialized.
    """
    certs = tuple(anchors or ())
    if not certs:
        return EMPTY_BUNDLE

    pem = "".join(certificate_to_pem(cert) for cert in certs)
    return pem.encode("utf-8") + BUNDLE_TERMINATOR


def parse_pem_stream(data: bytes, length: int | None = None) -> Iterator[x509.Certificate]:
    """Lazily parse concatenated PEM certificates.

    Parsing stops once the declared response length is consumed. NUL
    padding and text between blocks are ignored.

    Args:
        data: Response buffer from the engine.
        length: Number of meaningful bytes in ``data``, defaults to all of it.

    Yields:
        One certificate per PEM block, in response order.

    Raises:
        CertificateParseError: If a block is malformed or no block is found.
    """
    view = bytes(data[: len(data) if length is None else length]).rstrip(b"\x00")
    begin = PEM_BEGIN.encode("ascii")
    end = PEM_END.encode("ascii")

    position = 0
    index = 0
    while True:
        start = view.find(begin, position)
        if start < 0:
            break
        stop = view.find(end, start)
        if stop < 0:
            raise CertificateParseError.malformed_block(index=index, reason="missing END CERTIFICATE marker")
        stop += len(end)

        try:
            cert = x509.load_pem_x509_certificate(view[start:stop])
        except ValueError as e:
            raise CertificateParseError.malformed_block(index=index, reason=str(e)) from e

        yield cert
        index += 1
        position = stop

    if index == 0 and view.strip():
        raise CertificateParseError.no_certificate(length=len(view))


def parse_single_certificate(data: bytes, length: int | None = None) -> x509.Certificate:
    """Parse the certificate returned by an enroll or reenroll request.

    Raises:
        CertificateParseError: If the response holds no valid certificate.
    """
    for cert in parse_pem_stream(data, length):
        return cert
    raise CertificateParseError.no_certificate(length=len(data))


def private_key_to_der(key: PrivateKeyTypes) -> bytes:
    """Encode a private key as unencrypted PKCS#8 DER.

    Raises:
        EncodingError: If the key cannot be serialized.
    """
    try:
        return key.private_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    except Exception as e:
        raise EncodingError.private_key(reason=str(e)) from e


def load_certificates_pem(path: Path) -> list[x509.Certificate]:
    """Load certificates from a PEM file.

    Args:
        path: Path to PEM file containing one or more certificates.

    Returns:
        List of certificates.

    Raises:
        ConfigurationError: If the file cannot be read or holds no certificate.
    """
    try:
        data = path.read_bytes()
    except OSError as e:
        raise ConfigurationError.invalid_config(field=str(path), reason=str(e)) from e

    try:
        certificates = list(parse_pem_stream(data))
    except CertificateParseError as e:
        raise ConfigurationError.invalid_config(field=str(path), reason=e.message) from e

    if not certificates:
        raise ConfigurationError.invalid_config(field=str(path), reason="no certificates found")
    return certificates


def load_private_key_pem(path: Path, password: bytes | None = None) -> PrivateKeyTypes:
    """Load a PEM private key from file.

    Raises:
        ConfigurationError: If the file cannot be read or parsed.
    """
    try:
        return serialization.load_pem_private_key(path.read_bytes(), password=password)
    except (OSError, ValueError, TypeError) as e:
        raise ConfigurationError.invalid_config(field=str(path), reason=str(e)) from e
