"""
Brute-force Protection

Counts failed authentication attempts per user and per source address
within a sliding window and blocks either once its threshold is reached.
Source addresses get three times the user threshold since many users can
share one address.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import structlog

from authgate.security.locks import ReadWriteLock
from authgate.security.types import AttemptsRecord, Clock

logger = structlog.get_logger(__name__)


IP_THRESHOLD_MULTIPLIER = 3


class BruteForceGuard:
    """
    Failed-attempt throttling for users and source addresses.

    A record's window restarts when its first attempt falls outside the
    window. Reaching the threshold blocks the key for the lockout
    duration. Idle, unblocked records are purged by a background loop.
    """

    def __init__(
        self,
        threshold: int = 5,
        window_minutes: int = 15,
        lockout_minutes: int = 30,
        lockout_enabled: bool = True,
        cleanup_interval: float = 3600.0,
        clock: Optional[Clock] = None,
    ):
        self.threshold = threshold
        self.ip_threshold = threshold * IP_THRESHOLD_MULTIPLIER
        self.window = timedelta(minutes=window_minutes)
        self.lockout = timedelta(minutes=lockout_minutes)
        self.lockout_enabled = lockout_enabled
        self.cleanup_interval = cleanup_interval
        self._clock = clock or datetime.now

        self._user_attempts: Dict[str, AttemptsRecord] = {}
        self._ip_attempts: Dict[str, AttemptsRecord] = {}
        self._lock = ReadWriteLock()

        self._cleanup_task: Optional[asyncio.Task] = None
        self._shutdown_event = asyncio.Event()
        self._initialized = False

    async def initialize(self) -> None:
        """Start the cleanup loop."""
        if self._initialized:
            return

        logger.info("Initializing Brute-force Guard", threshold=self.threshold)
        self._shutdown_event.clear()
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        self._initialized = True

    async def shutdown(self) -> None:
        """Stop the cleanup loop."""
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
    # Checks and Recording
    # =========================================================================

    async def is_blocked(self, user_id: str, ip_address: str) -> bool:
        """True if either the user or the source address is blocked."""
        now = self._clock()
        async with self._lock.read():
            user_record = self._user_attempts.get(user_id)
            if user_record is not None and user_record.is_blocked(now):
                return True
            ip_record = self._ip_attempts.get(ip_address)
            return ip_record is not None and ip_record.is_blocked(now)

    async def record_failed_attempt(self, user_id: str, ip_address: str) -> bool:
        """
        Count a failure against both the user and the source address.

        Returns True if this attempt put either key into a block.
        """
        now = self._clock()
        async with self._lock.write():
            user_blocked = self._record(self._user_attempts, user_id, self.threshold, now)
            ip_blocked = self._record(self._ip_attempts, ip_address, self.ip_threshold, now)

        if user_blocked:
            logger.warning(
                "User blocked after repeated failures",
                user_id=user_id,
                lockout_minutes=self.lockout.total_seconds() / 60,
            )
        if ip_blocked:
            logger.warning(
                "Source address blocked after repeated failures",
                ip=ip_address,
                lockout_minutes=self.lockout.total_seconds() / 60,
            )
        return user_blocked or ip_blocked

    def _record(
        self,
        records: Dict[str, AttemptsRecord],
        key: str,
        threshold: int,
        now: datetime,
    ) -> bool:
        record = records.get(key)
        if record is None:
            record = AttemptsRecord(count=0, first_attempt=now, last_attempt=now)
            records[key] = record

        if record.first_attempt < now - self.window:
            record.count = 0
            record.first_attempt = now

        record.count += 1
        record.last_attempt = now

        if self.lockout_enabled and record.count >= threshold:
            newly_blocked = not record.is_blocked(now)
            record.blocked_until = now + self.lockout
            return newly_blocked
        return False

    async def reset_attempts(self, user_id: str, ip_address: str) -> None:
        """Clear counters and blocks after a successful login."""
        async with self._lock.write():
            for record in (
                self._user_attempts.get(user_id),
                self._ip_attempts.get(ip_address),
            ):
                if record is not None:
                    record.count = 0
                    record.blocked_until = None

    async def unblock_user(self, user_id: str) -> bool:
        async with self._lock.write():
            record = self._user_attempts.get(user_id)
            if record is None:
                return False
            record.count = 0
            record.blocked_until = None

        logger.info("User unblocked", user_id=user_id)
        return True

    async def unblock_ip(self, ip_address: str) -> bool:
        async with self._lock.write():
            record = self._ip_attempts.get(ip_address)
            if record is None:
                return False
            record.count = 0
            record.blocked_until = None

        logger.info("Source address unblocked", ip=ip_address)
        return True

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_attempt_stats(self, user_id: str, ip_address: str) -> Dict[str, Any]:
        now = self._clock()
        async with self._lock.read():
            user_record = self._user_attempts.get(user_id)
            ip_record = self._ip_attempts.get(ip_address)
            return {
                "user_attempts": user_record.count if user_record else 0,
                "ip_attempts": ip_record.count if ip_record else 0,
                "user_blocked": bool(user_record and user_record.is_blocked(now)),
                "ip_blocked": bool(ip_record and ip_record.is_blocked(now)),
            }

    async def get_blocked_users(self) -> Dict[str, datetime]:
        now = self._clock()
        async with self._lock.read():
            return {
                user_id: record.blocked_until
                for user_id, record in self._user_attempts.items()
                if record.is_blocked(now)
            }

    async def get_blocked_ips(self) -> Dict[str, datetime]:
        now = self._clock()
        async with self._lock.read():
            return {
                ip: record.blocked_until
                for ip, record in self._ip_attempts.items()
                if record.is_blocked(now)
            }

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def cleanup_expired_records(self) -> int:
        """Drop unblocked records idle for more than twice the window."""
        now = self._clock()
        retention = self.window * 2
        removed = 0

        async with self._lock.write():
            for records in (self._user_attempts, self._ip_attempts):
                stale = [
                    key for key, record in records.items()
                    if record.last_attempt + retention < now and not record.is_blocked(now)
                ]
                for key in stale:
                    del records[key]
                removed += len(stale)

        if removed:
            logger.debug("Cleaned up attempt records", count=removed)
        return removed

    async def _cleanup_loop(self) -> None:
        """Periodically purge idle records."""
        while not self._shutdown_event.is_set():
            try:
                await asyncio.sleep(self.cleanup_interval)
                await self.cleanup_expired_records()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Attempt record cleanup error", error=str(e))

    def get_stats(self) -> Dict[str, int]:
        return {
            "tracked_users": len(self._user_attempts),
            "tracked_ips": len(self._ip_attempts),
        }
