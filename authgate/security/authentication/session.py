"""
authgate Session Management

Session issuance and lifecycle with a per-user concurrency cap, sliding
expiry on activity, a bounded activity trail and periodic sweeping of
expired or invalidated sessions.
"""

from __future__ import annotations

import asyncio
import inspect
import secrets
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

import structlog

from authgate.core.logging import short_id
from authgate.security.exceptions import SessionNotFoundError
from authgate.security.locks import ReadWriteLock
from authgate.security.types import (
    Clock,
    DeviceInfo,
    EnhancedSession,
    RiskLevel,
    SessionActivity,
    SessionStatus,
)

logger = structlog.get_logger(__name__)


@dataclass
class SessionSecurityEvent:
    """A security event related to a session."""

    event_type: str  # session_created, session_evicted, session_invalidated, session_expired
    session_id: str
    user_id: str
    timestamp: datetime = field(default_factory=datetime.now)
    details: Dict[str, Any] = field(default_factory=dict)
    severity: str = "info"  # info, warning, critical


SessionEventHandler = Callable[[SessionSecurityEvent], Union[None, Awaitable[None]]]


class SessionManager:
    """
    Manages user sessions.

    Features:
    - Cryptographically random session identifiers
    - Per-user concurrent session cap (oldest sessions are evicted)
    - Sliding expiration on activity
    - Activity trail per session
    - Session event notifications
    """

    def __init__(
        self,
        session_timeout_minutes: int = 30,
        max_concurrent_sessions: int = 5,
        activity_log_size: int = 10,
        sweep_interval: float = 600.0,
        clock: Optional[Clock] = None,
    ):
        self.session_timeout = timedelta(minutes=session_timeout_minutes)
        self.max_concurrent_sessions = max_concurrent_sessions
        self.activity_log_size = activity_log_size
        self.sweep_interval = sweep_interval
        self._clock = clock or datetime.now

        self._sessions: Dict[str, EnhancedSession] = {}  # session_id -> session
        self._user_sessions: Dict[str, List[str]] = {}  # user_id -> ids, oldest first
        self._lock = ReadWriteLock()

        self._event_handlers: List[SessionEventHandler] = []
        self._security_events: deque = deque(maxlen=1000)

        self._cleanup_task: Optional[asyncio.Task] = None
        self._shutdown_event = asyncio.Event()
        self._initialized = False

    async def initialize(self) -> None:
        """Initialize session manager."""
        if self._initialized:
            return

        logger.info("Initializing Session Manager")
        self._shutdown_event.clear()
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        self._initialized = True

    async def shutdown(self) -> None:
        """Shutdown session manager."""
        self._shutdown_event.set()

        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

        self._initialized = False

    # =========================================================================
    # Session Lifecycle
    # =========================================================================

    async def create_session(
        self,
        user_id: str,
        ip_address: str = "",
        user_agent: str = "",
        device: Optional[DeviceInfo] = None,
        risk_level: RiskLevel = RiskLevel.LOW,
    ) -> EnhancedSession:
        """
        Create a new session.

        If the user is then over the concurrency cap, their oldest sessions
        are invalidated. The new session is never the one evicted.
        """
        now = self._clock()
        session = EnhancedSession(
            session_id=self._generate_session_id(),
            user_id=user_id,
            created_at=now,
            expires_at=now + self.session_timeout,
            ip_address=ip_address,
            user_agent=user_agent,
            device_fingerprint=device.fingerprint if device else "",
            risk_level=risk_level,
            last_activity_at=now,
            created_from_ip=ip_address,
            activity_log=deque(maxlen=self.activity_log_size),
        )
        session.activity_log.append(
            SessionActivity(timestamp=now, action="session_created", ip_address=ip_address)
        )

        async with self._lock.write():
            self._sessions[session.session_id] = session
            self._user_sessions.setdefault(user_id, []).append(session.session_id)
            evicted = self._enforce_session_limit(user_id, now)

        await self._emit_event(SessionSecurityEvent(
            event_type="session_created",
            session_id=session.session_id,
            user_id=user_id,
            timestamp=now,
            details={
                "ip_address": ip_address,
                "device_fingerprint": session.device_fingerprint,
                "risk_level": risk_level.value,
            },
        ))
        for old in evicted:
            await self._emit_event(SessionSecurityEvent(
                event_type="session_evicted",
                session_id=old.session_id,
                user_id=user_id,
                timestamp=now,
                severity="warning",
                details={"reason": old.invalidation_reason},
            ))

        logger.info(
            "Session created",
            session_id=short_id(session.session_id),
            user_id=user_id,
            expires_at=session.expires_at.isoformat(),
            evicted=len(evicted),
        )

        return session

    async def validate_session(
        self,
        session_id: str,
    ) -> Tuple[Optional[EnhancedSession], SessionStatus]:
        """Look up a session and report whether it is usable."""
        now = self._clock()
        async with self._lock.read():
            session = self._sessions.get(session_id)

        if session is None:
            return None, SessionStatus.NOT_FOUND
        if not session.active:
            return None, SessionStatus.INACTIVE
        if session.is_expired(now):
            return None, SessionStatus.EXPIRED
        return session, SessionStatus.ACTIVE

    async def update_activity(
        self,
        session_id: str,
        ip_address: str = "",
        action: str = "activity_update",
        resource: str = "",
    ) -> bool:
        """
        Record activity and slide the expiry forward.

        Returns False for sessions that are no longer valid; raises
        SessionNotFoundError for unknown identifiers.
        """
        now = self._clock()
        async with self._lock.write():
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            if not session.is_valid(now):
                return False

            session.last_activity_at = now
            session.expires_at = now + self.session_timeout
            if ip_address:
                session.ip_address = ip_address
            session.activity_log.append(SessionActivity(
                timestamp=now,
                action=action,
                resource=resource,
                ip_address=ip_address,
            ))
        return True

    async def invalidate_session(self, session_id: str, reason: str = "logout") -> bool:
        """Invalidate a session. Returns False if it was unknown or already inactive."""
        now = self._clock()
        async with self._lock.write():
            session = self._sessions.get(session_id)
            if session is None or not session.active:
                return False
            self._deactivate(session, reason, now)

        await self._emit_event(SessionSecurityEvent(
            event_type="session_invalidated",
            session_id=session_id,
            user_id=session.user_id,
            timestamp=now,
            details={"reason": reason},
        ))

        logger.info(
            "Session invalidated",
            session_id=short_id(session_id),
            user_id=session.user_id,
            reason=reason,
        )
        return True

    async def invalidate_all_sessions_for_user(
        self,
        user_id: str,
        reason: str = "invalidate_all",
    ) -> int:
        """Invalidate every active session of a user."""
        now = self._clock()
        async with self._lock.write():
            targets = [
                self._sessions[sid]
                for sid in self._user_sessions.get(user_id, [])
                if sid in self._sessions and self._sessions[sid].active
            ]
            for session in targets:
                self._deactivate(session, reason, now)

        for session in targets:
            await self._emit_event(SessionSecurityEvent(
                event_type="session_invalidated",
                session_id=session.session_id,
                user_id=user_id,
                timestamp=now,
                details={"reason": reason},
            ))

        if targets:
            logger.info("User sessions invalidated", user_id=user_id, count=len(targets))
        return len(targets)

    # =========================================================================
    # Session Queries
    # =========================================================================

    async def get_active_session_count(self, user_id: str) -> int:
        """Sessions of the user that are active and unexpired."""
        now = self._clock()
        async with self._lock.read():
            return sum(
                1 for sid in self._user_sessions.get(user_id, [])
                if sid in self._sessions and self._sessions[sid].is_valid(now)
            )

    async def get_user_sessions(self, user_id: str) -> List[EnhancedSession]:
        """Active, unexpired sessions of a user, oldest first."""
        now = self._clock()
        async with self._lock.read():
            return [
                self._sessions[sid]
                for sid in self._user_sessions.get(user_id, [])
                if sid in self._sessions and self._sessions[sid].is_valid(now)
            ]

    async def get_session_info(self, session_id: str) -> Optional[EnhancedSession]:
        """A session in any state, if still retained."""
        async with self._lock.read():
            return self._sessions.get(session_id)

    # =========================================================================
    # Internal Helpers
    # =========================================================================

    def _generate_session_id(self) -> str:
        """Generate a cryptographically secure session ID."""
        return "sess_" + secrets.token_hex(32)

    def _deactivate(self, session: EnhancedSession, reason: str, now: datetime) -> None:
        session.active = False
        session.invalidated_at = now
        session.invalidation_reason = reason
        ids = self._user_sessions.get(session.user_id)
        if ids and session.session_id in ids:
            ids.remove(session.session_id)
            if not ids:
                del self._user_sessions[session.user_id]

    def _enforce_session_limit(self, user_id: str, now: datetime) -> List[EnhancedSession]:
        """Invalidate the oldest sessions over the cap. Caller holds the write lock."""
        ids = self._user_sessions.get(user_id, [])

        # Expired sessions no longer count toward the cap
        valid = [
            self._sessions[sid] for sid in ids
            if sid in self._sessions and self._sessions[sid].is_valid(now)
        ]

        excess = len(valid) - self.max_concurrent_sessions
        evicted = valid[:excess] if excess > 0 else []
        for session in evicted:
            self._deactivate(session, "concurrent_session_limit", now)
        return evicted

    async def _emit_event(self, event: SessionSecurityEvent) -> None:
        """Emit a security event."""
        self._security_events.append(event)

        for handler in self._event_handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("Session event handler error", error=str(e))

    def add_event_handler(self, handler: SessionEventHandler) -> None:
        """Add a security event handler."""
        self._event_handlers.append(handler)

    async def get_recent_events(
        self,
        user_id: Optional[str] = None,
        event_type: Optional[str] = None,
        limit: int = 100,
    ) -> List[SessionSecurityEvent]:
        """Get recent security events."""
        events = list(self._security_events)

        if user_id:
            events = [e for e in events if e.user_id == user_id]
        if event_type:
            events = [e for e in events if e.event_type == event_type]

        return events[-limit:]

    async def sweep_expired_sessions(self) -> int:
        """Remove expired and invalidated sessions from memory."""
        now = self._clock()
        async with self._lock.write():
            doomed = [
                s for s in self._sessions.values()
                if not s.active or s.is_expired(now)
            ]
            for session in doomed:
                del self._sessions[session.session_id]
                ids = self._user_sessions.get(session.user_id)
                if ids and session.session_id in ids:
                    ids.remove(session.session_id)
                    if not ids:
                        del self._user_sessions[session.user_id]

        for session in doomed:
            if session.active:
                await self._emit_event(SessionSecurityEvent(
                    event_type="session_expired",
                    session_id=session.session_id,
                    user_id=session.user_id,
                    timestamp=now,
                ))

        if doomed:
            logger.debug("Swept sessions", count=len(doomed))
        return len(doomed)

    async def _cleanup_loop(self) -> None:
        """Periodically sweep expired sessions."""
        while not self._shutdown_event.is_set():
            try:
                await asyncio.sleep(self.sweep_interval)
                await self.sweep_expired_sessions()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Session sweep error", error=str(e))

    def get_stats(self) -> Dict[str, Any]:
        """Get session manager statistics."""
        now = self._clock()
        return {
            "total_sessions": len(self._sessions),
            "active_sessions": sum(1 for s in self._sessions.values() if s.is_valid(now)),
            "users_with_sessions": len(self._user_sessions),
        }
