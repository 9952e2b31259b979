"""Audit logging for security-relevant operations.

Logs authentication events and every credential/institution mutation.
This is the operational security trail; the persisted verification log
lives in the verification engine.
"""

import logging
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from fastapi import Request

log = logging.getLogger("audit")


@dataclass
class AuditEvent:
    """Structured audit event."""

    action: str  # e.g., "auth.login", "credential.revoke"
    principal: str = "anonymous"  # identity id or "anonymous"
    resource: str | None = None  # e.g., "credential:<id>"
    status: str = "success"  # "success", "denied", "error"
    details: dict[str, Any] | None = None
    request_id: str | None = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class AuditLogger:
    """Audit logger for security operations.

    Logs events as structured JSON via Python's logging module and keeps an
    in-memory ring buffer for recent event retrieval.
    """

    MAX_BUFFER_SIZE = 1000

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self._buffer: deque[dict] = deque(maxlen=self.MAX_BUFFER_SIZE)

    def log(self, event: AuditEvent) -> None:
        """Write an audit event to the log and the ring buffer."""
        if not self.enabled:
            return

        self._buffer.append(asdict(event))

        extra = {
            "type": "audit",
            "principal": event.principal,
            "action": event.action,
            "status": event.status,
        }
        if event.resource:
            extra["resource"] = event.resource
        if event.request_id:
            extra["request_id"] = event.request_id
        if event.details:
            extra["details"] = event.details

        if event.status in ("denied", "error"):
            log.warning(f"audit: {event.action} {event.status}", extra=extra)
        else:
            log.info(f"audit: {event.action} {event.status}", extra=extra)

    def get_recent_events(
        self,
        limit: int = 100,
        action_filter: str | None = None,
        status_filter: str | None = None,
    ) -> list[dict]:
        """Get recent audit events from buffer.

        Args:
            limit: Max events to return
            action_filter: Filter by action prefix (e.g., "auth.")
            status_filter: Filter by status (e.g., "denied")

        Returns:
            List of audit event dicts, newest first
        """
        events = list(self._buffer)
        events.reverse()

        if action_filter:
            events = [e for e in events if e["action"].startswith(action_filter)]
        if status_filter:
            events = [e for e in events if e["status"] == status_filter]

        return events[:limit]

    def log_auth_success(
        self,
        principal_id: str,
        method: str,
        request: Request | None = None,
    ) -> None:
        """Log a successful login."""
        self.log(
            AuditEvent(
                action="auth.login",
                principal=principal_id,
                status="success",
                details={"method": method},
                request_id=_get_request_id(request),
            )
        )

    def log_auth_failure(
        self,
        reason: str,
        method: str,
        request: Request | None = None,
    ) -> None:
        """Log a failed login attempt."""
        self.log(
            AuditEvent(
                action="auth.login",
                principal="anonymous",
                status="denied",
                details={"reason": reason, "method": method},
                request_id=_get_request_id(request),
            )
        )

    def log_access(
        self,
        action: str,
        principal_id: str,
        resource: str | None = None,
        status: str = "success",
        details: dict[str, Any] | None = None,
        request: Request | None = None,
    ) -> None:
        """Log a resource mutation or access decision.

        Args:
            action: Action name (e.g., "credential.issue", "institution.approve")
            principal_id: The acting identity id
            resource: Resource identifier ("credential:<id>")
            status: "success", "denied", or "error"
            details: Additional context
            request: Optional request for correlation ID
        """
        self.log(
            AuditEvent(
                action=action,
                principal=principal_id,
                resource=resource,
                status=status,
                details=details,
                request_id=_get_request_id(request),
            )
        )


def _get_request_id(request: Request | None) -> str | None:
    """Extract request ID from request headers if available."""
    if request is None:
        return None

    for header in ("X-Request-ID", "X-Correlation-ID", "Request-Id"):
        if header in request.headers:
            return request.headers[header]

    return None


_audit_logger: AuditLogger | None = None


def get_audit_logger() -> AuditLogger:
    """Get the global audit logger instance."""
    global _audit_logger

    if _audit_logger is None:
        from accredchain import config

        _audit_logger = AuditLogger(enabled=config.AUDIT_ENABLED)

    return _audit_logger


def reset_audit_logger() -> None:
    """Reset the global logger (for testing)."""
    global _audit_logger
    _audit_logger = None
