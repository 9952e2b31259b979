"""Audit logging module for AccredChain."""

from accredchain.audit.logger import AuditEvent, AuditLogger, get_audit_logger

__all__ = [
    "AuditLogger",
    "AuditEvent",
    "get_audit_logger",
]
