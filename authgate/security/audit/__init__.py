"""Audit trail and security monitoring."""

from authgate.security.audit.logger import (
    AuditCategory,
    AuditEvent,
    AuditExporter,
    AuditLevel,
    AuditLogger,
    ConsoleExporter,
    FileExporter,
)
from authgate.security.audit.monitor import SecurityMonitor

__all__ = [
    "AuditCategory",
    "AuditEvent",
    "AuditExporter",
    "AuditLevel",
    "AuditLogger",
    "ConsoleExporter",
    "FileExporter",
    "SecurityMonitor",
]
