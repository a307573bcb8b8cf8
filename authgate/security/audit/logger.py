"""
authgate Audit Logger

In-process audit trail for admission decisions. Events are kept in a
bounded buffer for querying and forwarded to exporters (structured
console logging by default, JSON lines files optionally).
"""

from __future__ import annotations

import json
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import structlog

from authgate.security.types import Clock

logger = structlog.get_logger(__name__)


class AuditLevel(str, Enum):
    """Audit event severity."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditCategory(str, Enum):
    ACCESS = "access"
    ERROR = "error"
    SECURITY = "security"
    ACTION = "action"


@dataclass
class AuditEvent:
    """A single audit record."""

    category: AuditCategory
    level: AuditLevel
    user_id: str
    action: str
    resource: str = ""
    result: str = ""
    message: str = ""
    ip_address: str = ""
    user_agent: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "category": self.category.value,
            "level": self.level.value,
            "user_id": self.user_id,
            "action": self.action,
            "resource": self.resource,
            "result": self.result,
            "message": self.message,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "details": self.details,
        }


class AuditExporter:
    """Base class for audit exporters."""

    async def export(self, event: AuditEvent) -> bool:
        """Export an audit event. Returns True on success."""
        raise NotImplementedError


class ConsoleExporter(AuditExporter):
    """Export audit events through structured logging."""

    async def export(self, event: AuditEvent) -> bool:
        level_map = {
            AuditLevel.INFO: logger.info,
            AuditLevel.WARNING: logger.warning,
            AuditLevel.ERROR: logger.error,
            AuditLevel.CRITICAL: logger.critical,
        }

        log_fn = level_map.get(event.level, logger.info)
        log_fn(
            f"AUDIT: {event.category.value}.{event.action}",
            audit_id=event.id,
            user_id=event.user_id,
            resource=event.resource,
            result=event.result,
            ip=event.ip_address or None,
            message=event.message or None,
        )
        return True


class FileExporter(AuditExporter):
    """Append audit events to a JSON lines file."""

    def __init__(self, file_path: str):
        self.file_path = file_path

    async def export(self, event: AuditEvent) -> bool:
        try:
            with open(self.file_path, "a") as f:
                f.write(json.dumps(event.to_dict(), default=str) + "\n")
            return True
        except OSError as e:
            logger.error("Failed to export audit event to file", error=str(e))
            return False


class AuditLogger:
    """
    Audit sink used by the authentication pipeline.

    Features:
    - Access, error, security and action records
    - Bounded in-memory history with simple queries
    - Pluggable exporters and real-time handlers
    """

    def __init__(
        self,
        max_events: int = 10_000,
        exporters: Optional[List[AuditExporter]] = None,
        clock: Optional[Clock] = None,
    ):
        self._events: deque = deque(maxlen=max_events)
        self._exporters: List[AuditExporter] = (
            [ConsoleExporter()] if exporters is None else list(exporters)
        )
        self._handlers: List[Callable[[AuditEvent], None]] = []
        self._clock = clock or datetime.now

    # =========================================================================
    # Sink Interface
    # =========================================================================

    async def log_access(
        self,
        user_id: str,
        resource: str,
        action: str,
        result: str,
        ip_address: str = "",
        user_agent: str = "",
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditEvent:
        """Record an access decision."""
        level = AuditLevel.INFO if result.upper() == "SUCCESS" else AuditLevel.WARNING
        return await self._record(AuditEvent(
            category=AuditCategory.ACCESS,
            level=level,
            user_id=user_id,
            action=action,
            resource=resource,
            result=result,
            ip_address=ip_address,
            user_agent=user_agent,
            details=details or {},
            timestamp=self._clock(),
        ))

    async def log_error(
        self,
        user_id: str,
        action: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditEvent:
        return await self._record(AuditEvent(
            category=AuditCategory.ERROR,
            level=AuditLevel.ERROR,
            user_id=user_id,
            action=action,
            result="FAILURE",
            message=message,
            details=details or {},
            timestamp=self._clock(),
        ))

    async def log_security_event(
        self,
        event_type: str,
        user_id: str,
        details: Optional[Dict[str, Any]] = None,
        level: str = "warning",
    ) -> AuditEvent:
        return await self._record(AuditEvent(
            category=AuditCategory.SECURITY,
            level=AuditLevel(level),
            user_id=user_id,
            action=event_type,
            details=details or {},
            timestamp=self._clock(),
        ))

    async def log_action(
        self,
        user_id: str,
        action: str,
        resource: str = "",
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditEvent:
        return await self._record(AuditEvent(
            category=AuditCategory.ACTION,
            level=AuditLevel.INFO,
            user_id=user_id,
            action=action,
            resource=resource,
            details=details or {},
            timestamp=self._clock(),
        ))

    # =========================================================================
    # Recording and Queries
    # =========================================================================

    async def _record(self, event: AuditEvent) -> AuditEvent:
        self._events.append(event)

        for exporter in self._exporters:
            try:
                await exporter.export(event)
            except Exception as e:
                logger.error("Audit exporter error", exporter=type(exporter).__name__, error=str(e))

        for handler in self._handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error("Audit handler error", error=str(e))

        return event

    def add_exporter(self, exporter: AuditExporter) -> None:
        self._exporters.append(exporter)

    def add_handler(self, handler: Callable[[AuditEvent], None]) -> None:
        """Add a real-time event handler."""
        self._handlers.append(handler)

    def get_events(
        self,
        user_id: Optional[str] = None,
        action: Optional[str] = None,
        category: Optional[AuditCategory] = None,
        min_level: Optional[AuditLevel] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        """Most recent matching events, oldest first."""
        order = list(AuditLevel)
        events = list(self._events)

        if user_id is not None:
            events = [e for e in events if e.user_id == user_id]
        if action is not None:
            events = [e for e in events if e.action == action]
        if category is not None:
            events = [e for e in events if e.category == category]
        if min_level is not None:
            floor = order.index(min_level)
            events = [e for e in events if order.index(e.level) >= floor]

        return events[-limit:]

    def __len__(self) -> int:
        return len(self._events)
