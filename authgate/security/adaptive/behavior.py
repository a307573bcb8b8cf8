"""
Behavior Tracking

Per-user login habit profiles: hours, weekdays, locations and device
classes seen on successful logins, plus a short history of login times
for velocity checks.
"""

from __future__ import annotations

from collections import deque
from datetime import datetime, timedelta
from typing import Dict, Optional

import structlog

from authgate.security.locks import ReadWriteLock
from authgate.security.types import DeviceType, GeoLocation, UserBehaviorPattern

logger = structlog.get_logger(__name__)


class BehaviorTracker:
    """Store of UserBehaviorPattern records, created on first login."""

    def __init__(
        self,
        history_size: int = 100,
        max_locations: int = 10,
    ):
        self.history_size = history_size
        self.max_locations = max_locations

        self._patterns: Dict[str, UserBehaviorPattern] = {}
        self._lock = ReadWriteLock()

    async def get_pattern(self, user_id: str) -> Optional[UserBehaviorPattern]:
        """Snapshot of a user's pattern, or None if never seen."""
        async with self._lock.read():
            pattern = self._patterns.get(user_id)
            return pattern.copy() if pattern else None

    async def record_login(
        self,
        user_id: str,
        login_time: datetime,
        location: Optional[GeoLocation] = None,
        device_type: Optional[DeviceType] = None,
    ) -> UserBehaviorPattern:
        """Fold a successful login into the user's pattern."""
        async with self._lock.write():
            pattern = self._patterns.get(user_id)
            if pattern is None:
                pattern = UserBehaviorPattern(
                    user_id=user_id,
                    recent_logins=deque(maxlen=self.history_size),
                )
                self._patterns[user_id] = pattern

            pattern.login_hours.add(login_time.hour)
            pattern.login_weekdays.add(login_time.weekday())

            if device_type is not None:
                pattern.device_types.add(device_type)

            if location is not None:
                self._add_location(pattern, location)

            pattern.recent_logins.append(login_time)
            pattern.total_logins += 1
            if pattern.first_login is None or login_time < pattern.first_login:
                pattern.first_login = login_time
            pattern.last_login = login_time

            span_days = (login_time - pattern.first_login).total_seconds() / 86400
            pattern.login_frequency = pattern.total_logins / max(span_days, 1.0)

            return pattern.copy()

    async def record_session_end(self, user_id: str, duration: timedelta) -> None:
        """Update the running average session length."""
        async with self._lock.write():
            pattern = self._patterns.get(user_id)
            if pattern is None:
                return

            n = pattern.completed_sessions
            pattern.average_session_length = (
                pattern.average_session_length * n + duration
            ) / (n + 1)
            pattern.completed_sessions = n + 1

    async def forget_user(self, user_id: str) -> bool:
        async with self._lock.write():
            return self._patterns.pop(user_id, None) is not None

    def _add_location(self, pattern: UserBehaviorPattern, location: GeoLocation) -> None:
        key = location.key()
        pattern.common_locations = [
            loc for loc in pattern.common_locations if loc.key() != key
        ]
        pattern.common_locations.append(location)
        if len(pattern.common_locations) > self.max_locations:
            pattern.common_locations = pattern.common_locations[-self.max_locations:]

    @staticmethod
    def is_high_velocity(
        pattern: UserBehaviorPattern,
        at: datetime,
        threshold: int,
    ) -> bool:
        """True when the trailing hour already holds `threshold` logins."""
        window_start = at - timedelta(hours=1)
        recent = sum(1 for t in pattern.recent_logins if window_start <= t <= at)
        return recent >= threshold

    @staticmethod
    def is_usual_location(pattern: UserBehaviorPattern, location: GeoLocation) -> bool:
        return any(location.same_area(loc) for loc in pattern.common_locations)
