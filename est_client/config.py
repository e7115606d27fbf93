"""Configuration management for the EST client.

Loads configuration from YAML file and validates with Pydantic models.
"""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Annotated

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

# libest default for the certificate response buffer
DEFAULT_MAX_CERT_LENGTH = 8192


class AuthMode(str, Enum):
    """EST authentication mode.

    HTTP credentials are optional alongside SRP and TLS.
    """

    HTTP_ONLY = "http"
    SRP = "srp"
    TLS = "tls"


class NativeLogLevel(str, Enum):
    """Verbosity of protocol engine logging."""

    ERRORS = "errors"
    WARNINGS = "warnings"
    FULL = "full"


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class ServerConfig(BaseModel):
    """EST server endpoint."""

    model_config = ConfigDict(frozen=True)

    host: str | None = None
    port: Annotated[int, Field(ge=1, le=65535)] = 443


class TrustConfig(BaseModel):
    """Trust anchors used to verify the EST server."""

    model_config = ConfigDict(frozen=True)

    anchors_file: Path | None = None


class PasswordCredentialConfig(BaseModel):
    """User name and password pair."""

    model_config = ConfigDict(frozen=True)

    username: str
    password: str = Field(repr=False)


class TLSCredentialConfig(BaseModel):
    """Client certificate and key files for TLS authentication."""

    model_config = ConfigDict(frozen=True)

    cert_file: Path
    key_file: Path


class AuthConfig(BaseModel):
    """Authentication configuration."""

    model_config = ConfigDict(frozen=True)

    mode: AuthMode = AuthMode.HTTP_ONLY
    http: PasswordCredentialConfig | None = None
    srp: PasswordCredentialConfig | None = None
    tls: TLSCredentialConfig | None = None

    @model_validator(mode="after")
    def validate_mode_credentials(self) -> AuthConfig:
        """Require the credential section matching the selected mode."""
        required = {
            AuthMode.HTTP_ONLY: ("http", self.http),
            AuthMode.SRP: ("srp", self.srp),
            AuthMode.TLS: ("tls", self.tls),
        }
        section, value = required[self.mode]
        if value is None:
            msg = f"auth mode '{self.mode.value}' requires the '{section}' section"
            raise ValueError(msg)
        return self


class EngineConfig(BaseModel):
    """Protocol engine settings shared by every session using the engine."""

    model_config = ConfigDict(frozen=True)

    max_cert_length: Annotated[int, Field(ge=1)] = DEFAULT_MAX_CERT_LENGTH
    log_level: NativeLogLevel = NativeLogLevel.ERRORS
    fips: bool = False
    timeout: Annotated[float, Field(gt=0)] = 30.0


class AuditConfig(BaseModel):
    """Audit logging configuration."""

    model_config = ConfigDict(frozen=True)

    log_file: Path | None = Path("./logs/est-client.log")
    log_level: LogLevel = LogLevel.INFO


class ClientConfig(BaseModel):
    """Root configuration model for the EST client."""

    model_config = ConfigDict(frozen=True)

    server: ServerConfig = ServerConfig()
    trust: TrustConfig = TrustConfig()
    auth: AuthConfig | None = None
    engine: EngineConfig = EngineConfig()
    audit: AuditConfig = AuditConfig()


def load_config(config_path: Path | str) -> ClientConfig:
    """Load configuration from YAML file.

    Args:
        config_path: Path to configuration YAML file.

    Returns:
        Validated ClientConfig instance.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        yaml.YAMLError: If YAML parsing fails.
        pydantic.ValidationError: If configuration validation fails.
    """
    path = Path(config_path)
    with path.open("r") as f:
        data = yaml.safe_load(f)

    return ClientConfig.model_validate(data or {})


def load_config_from_env(
    env_var: str = "EST_CLIENT_CONFIG",
    default_paths: list[Path] | None = None,
) -> ClientConfig:
    """Load configuration from environment variable or default paths.

    Args:
        env_var: Environment variable name containing config path.
        default_paths: List of default paths to try if env var not set.

    Returns:
        Validated ClientConfig instance, defaults if no file is found.
    """
    config_path = os.environ.get(env_var)
    if config_path:
        return load_config(config_path)

    if default_paths is None:
        default_paths = [
            Path("est-client.yaml"),
            Path("est-client.yml"),
            Path.home() / ".config" / "est-client" / "config.yaml",
        ]

    for path in default_paths:
        if path.exists():
            return load_config(path)

    return ClientConfig()
