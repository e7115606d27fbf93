"""Audit logging for EST client operations.

Provides structured logging with correlation IDs for tracing each
enrollment, renewal and CA certificate retrieval. Passwords and private
keys are never logged.
"""

from __future__ import annotations

import sys
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from loguru import logger

from est_client.exceptions import ESTClientError

if TYPE_CHECKING:
    from est_client.config import AuditConfig


# Context variable for operation correlation ID
_correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")


def get_correlation_id() -> str:
    """Get the current correlation ID for operation tracing."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Set correlation ID for current operation context."""
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())
    _correlation_id.set(correlation_id)
    return correlation_id


def clear_correlation_id() -> None:
    """Clear the correlation ID after the operation completes."""
    _correlation_id.set("")


_AUDIT_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} [{level}] "
    "[{extra[correlation_id]}] <{extra[event]}> {message} | {extra}"
)


def configure_audit_logger(config: AuditConfig) -> None:
    """Configure the audit logger based on settings."""
    logger.remove()

    logger.add(
        sys.stderr,
        level=config.log_level.value,
        format=_AUDIT_FORMAT,
        filter=lambda r: r["extra"].get("audit", False),
    )

    if config.log_file is None:
        return

    log_path = Path(config.log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logger.add(
        str(log_path),
        level=config.log_level.value,
        format=_AUDIT_FORMAT,
        rotation="10 MB",
        retention="90 days",
        compression="gz",
        filter=lambda r: r["extra"].get("audit", False),
    )


def _get_audit_logger() -> Any:
    """Get logger bound with audit context."""
    return logger.bind(
        audit=True,
        correlation_id=get_correlation_id() or "-",
        event="",
    )


def log_enroll_requested(
    *,
    operation: str,
    auth_mode: str,
    server: str,
    subject: str,
    disable_pop: bool,
) -> None:
    """Log an enroll or reenroll request about to be sent."""
    audit = _get_audit_logger().bind(
        event="enroll_requested",
        operation=operation,
        auth_mode=auth_mode,
        server=server,
        subject=subject,
        disable_pop=disable_pop,
    )
    audit.info("/{} requested for {} via {}", operation, subject, auth_mode)


def log_certificate_received(
    *,
    operation: str,
    subject: str,
    serial_number: int,
    not_before: datetime,
    not_after: datetime,
) -> None:
    """Log a certificate issued by the EST server."""
    nb = not_before.isoformat() if not_before.tzinfo else not_before.replace(tzinfo=UTC).isoformat()
    na = not_after.isoformat() if not_after.tzinfo else not_after.replace(tzinfo=UTC).isoformat()

    audit = _get_audit_logger().bind(
        event="cert_received",
        operation=operation,
        cert_subject=subject,
        serial_number=serial_number,
        not_before=nb,
        not_after=na,
    )
    audit.info("Certificate received: {}", subject)


def log_no_certificate(*, operation: str, server: str) -> None:
    """Log an operation that completed without returning certificates."""
    audit = _get_audit_logger().bind(event="no_certificate", operation=operation, server=server)
    audit.warning("/{} returned no certificate", operation)


def log_enroll_deferred(*, operation: str, retry_after: int | None) -> None:
    """Log a request the server deferred for manual approval."""
    audit = _get_audit_logger().bind(
        event="enroll_deferred",
        operation=operation,
        retry_after=retry_after,
    )
    audit.warning("/{} deferred by server, retry after {}s", operation, retry_after)


def log_cacerts_received(*, server: str, count: int) -> None:
    """Log CA certificates retrieved from the EST server."""
    audit = _get_audit_logger().bind(event="cacerts_received", server=server, count=count)
    audit.info("Received {} CA certificate(s) from {}", count, server)


def log_configuration_rejected(*, operation: str, reason: str) -> None:
    """Log an operation refused before contacting the server."""
    audit = _get_audit_logger().bind(event="config_rejected", operation=operation, reason=reason)
    audit.warning("/{} rejected: {}", operation, reason)


def log_engine_settings_changed(*, setting: str, value: str | int | bool) -> None:
    """Log a change to process-wide engine settings."""
    audit = _get_audit_logger().bind(event="engine_settings", setting=setting, value=value)
    audit.info("Engine setting {} changed to {}", setting, value)


def log_error(*, error: Exception, context: str) -> None:
    """Log an error with full context.

    Library errors contribute their audit details, other exceptions only
    their type and message.
    """
    if isinstance(error, ESTClientError):
        fields = error.to_audit_dict()
    else:
        fields = {"exception_type": type(error).__name__, "message": str(error)}
    audit = _get_audit_logger().bind(event="error", context=context, **fields)
    audit.error("Error during {}: {}", context, error)
