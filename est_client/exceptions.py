"""Custom exception hierarchy for the EST client.

All exceptions inherit from ESTClientError for consistent handling.
Configuration problems are detected locally before any network call;
engine errors wrap transport, TLS and server-side failures.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping


class ESTClientError(Exception):
    """Base exception for all EST client errors.

    Attributes:
        message: Human-readable error description.
        details: Additional context for audit logging.
    """

    def __init__(
        self,
        message: str,
        *,
        details: Mapping[str, str | int | bool | None] | None = None,
    ) -> None:
        """Initialize exception.

        Args:
            message: Human-readable error description.
            details: Additional context for audit logging.
        """
        super().__init__(message)
        self.message = message
        self.details = dict(details) if details else {}

    def to_audit_dict(self) -> dict[str, str | int | bool | None]:
        """Return dictionary suitable for audit logging.

        Returns:
            Dictionary with exception type, message, and details.
        """
        return {
            "exception_type": self.__class__.__name__,
            "message": self.message,
            **self.details,
        }


class ConfigurationError(ESTClientError):
    """Required endpoint, credential or auth mode combination is missing or invalid.

    Always raised before any engine call and recoverable by reconfiguring
    the client.
    """

    @classmethod
    def missing_credentials(cls, *, mode: str, setter: str) -> ConfigurationError:
        """Create exception for an auth mode whose credentials were never set.

        Args:
            mode: The requested authentication mode.
            setter: The client method that supplies the credentials.

        Returns:
            ConfigurationError instance.
        """
        return cls(
            f"Credentials for auth mode '{mode}' are not configured, invoke {setter}() to resolve",
            details={"auth_mode": mode, "setter": setter},
        )

    @classmethod
    def missing_endpoint(cls, *, field: str) -> ConfigurationError:
        """Create exception for an unset server name or port.

        Args:
            field: The missing endpoint field.

        Returns:
            ConfigurationError instance.
        """
        return cls(f"EST server {field} is not configured", details={"field": field})

    @classmethod
    def invalid_auth_mode(cls, *, mode: object) -> ConfigurationError:
        """Create exception for an unrecognized auth mode.

        Args:
            mode: The value passed as auth mode.

        Returns:
            ConfigurationError instance.
        """
        return cls(f"Invalid auth mode: {mode!r}", details={"auth_mode": str(mode)})

    @classmethod
    def invalid_config(cls, *, field: str, reason: str) -> ConfigurationError:
        """Create exception for invalid configuration.

        Args:
            field: The configuration field with the error.
            reason: Why the configuration is invalid.

        Returns:
            ConfigurationError instance.
        """
        return cls(f"Invalid configuration for '{field}': {reason}", details={"field": field, "reason": reason})


class InvalidArgumentError(ConfigurationError, ValueError):
    """A credential store setter was given an invalid value.

    Raised at assignment time, the previously stored value is kept.
    """

    @classmethod
    def invalid_port(cls, *, port: int) -> InvalidArgumentError:
        """Create exception for a TCP port outside 1..65535."""
        return cls("Invalid TCP port number", details={"field": "port", "port": port})

    @classmethod
    def missing_value(cls, *, field: str, reason: str) -> InvalidArgumentError:
        """Create exception for a required value that was not supplied."""
        return cls(reason, details={"field": field})


class EncodingError(ESTClientError):
    """A certificate, CSR or key could not be converted to its binary or text form."""

    @classmethod
    def certificate(cls, *, reason: str) -> EncodingError:
        """Create exception for a certificate that cannot be DER encoded.

        Args:
            reason: Why encoding failed.

        Returns:
            EncodingError instance.
        """
        return cls(f"Certificate encoding failed: {reason}", details={"object": "certificate", "reason": reason})

    @classmethod
    def private_key(cls, *, reason: str) -> EncodingError:
        """Create exception for a private key that cannot be DER encoded.

        Args:
            reason: Why encoding failed.

        Returns:
            EncodingError instance.
        """
        return cls(f"Private key encoding failed: {reason}", details={"object": "private_key", "reason": reason})

    @classmethod
    def csr(cls, *, reason: str) -> EncodingError:
        """Create exception for a CSR that cannot be parsed or encoded.

        Args:
            reason: Why encoding failed.

        Returns:
            EncodingError instance.
        """
        return cls(f"CSR encoding failed: {reason}", details={"object": "csr", "reason": reason})


class CertificateParseError(ESTClientError):
    """Server response could not be parsed as certificate data."""

    @classmethod
    def malformed_block(cls, *, index: int, reason: str) -> CertificateParseError:
        """Create exception for a PEM block that failed to load.

        Args:
            index: Zero-based position of the block in the response.
            reason: Why parsing failed.

        Returns:
            CertificateParseError instance.
        """
        return cls(
            f"Failed to parse certificate #{index} in server response: {reason}",
            details={"block_index": index, "reason": reason},
        )

    @classmethod
    def no_certificate(cls, *, length: int) -> CertificateParseError:
        """Create exception for a non-empty response without any PEM certificate."""
        return cls("Server response contains no PEM certificate", details={"response_length": length})


class BufferSizeError(ESTClientError):
    """Response exceeded the configured maximum certificate length.

    Raise the maximum with ``set_native_max_cert_length()`` and retry
    the same call.
    """

    @classmethod
    def exceeded(cls, *, length: int, max_length: int) -> BufferSizeError:
        """Create exception for a response larger than the buffer.

        Args:
            length: Actual response length in bytes, when known.
            max_length: Configured maximum in bytes.

        Returns:
            BufferSizeError instance.
        """
        return cls(
            f"Certificate response of {length} bytes exceeds maximum of {max_length} bytes",
            details={"length": length, "max_length": max_length},
        )


class EnrollRetryAfterError(ESTClientError):
    """The EST server deferred issuance pending manual approval.

    Not an application error: persist the CSR and key pair and send the
    identical request again later.

    Attributes:
        retry_after: Seconds the server asked the client to wait, if given.
    """

    def __init__(
        self,
        message: str,
        *,
        retry_after: int | None = None,
        details: Mapping[str, str | int | bool | None] | None = None,
    ) -> None:
        """Initialize exception with the server supplied retry delay."""
        merged = {"retry_after": retry_after, **(details or {})}
        super().__init__(message, details=merged)
        self.retry_after = retry_after

    @classmethod
    def deferred(cls, *, operation: str, retry_after: int | None = None) -> EnrollRetryAfterError:
        """Create exception for a 202 style deferred response.

        Args:
            operation: EST operation that was deferred.
            retry_after: Seconds to wait before retrying, if known.

        Returns:
            EnrollRetryAfterError instance.
        """
        return cls(
            f"EST server deferred /{operation}, retry the request later",
            retry_after=retry_after,
            details={"operation": operation},
        )


class EngineError(ESTClientError):
    """The protocol engine reported a transport, TLS or server-side failure.

    Terminal for the current call, never retried automatically.
    """

    operation = "engine"

    @classmethod
    def failed(cls, *, reason: str, status: int | None = None) -> EngineError:
        """Create exception for a failed engine operation.

        Args:
            reason: Description of the failure.
            status: HTTP status returned by the server, if any.

        Returns:
            Instance of the concrete subclass.
        """
        details: dict[str, str | int | bool | None] = {"operation": cls.operation, "reason": reason}
        if status is not None:
            details["http_status"] = status
        return cls(f"EST /{cls.operation} failed: {reason}", details=details)

    @classmethod
    def fips_failed(cls, *, reason: str) -> EngineError:
        """Create exception for a crypto module that refused FIPS mode."""
        return cls(
            f"FIPS mode failed, crypto module is not operating in FIPS mode: {reason}",
            details={"operation": "enable_fips", "reason": reason},
        )


class EnrollError(EngineError):
    """The engine failed a /simpleenroll request."""

    operation = "simpleenroll"


class ReenrollError(EngineError):
    """The engine failed a /simplereenroll request."""

    operation = "simplereenroll"


class CACertsError(EngineError):
    """The engine failed a /cacerts request."""

    operation = "cacerts"
