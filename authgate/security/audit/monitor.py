"""
Security Monitor

Tracks the process-wide threat level. Escalations only ever raise the
level; degrade_threat_level() steps it back down once things are quiet.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import structlog

from authgate.security.types import Clock, ThreatLevel

logger = structlog.get_logger(__name__)


_LEVELS = list(ThreatLevel)


class SecurityMonitor:
    """In-process receiver of security escalations."""

    def __init__(
        self,
        error_rate_threshold: float = 15.0,  # percent
        clock: Optional[Clock] = None,
    ):
        self.error_rate_threshold = error_rate_threshold
        self._clock = clock or datetime.now

        self._threat_level = ThreatLevel.NONE
        self._last_escalation: Optional[datetime] = None
        self._counters: Counter = Counter()
        self._alert_handlers: List[Callable[[ThreatLevel, str], None]] = []

    @property
    def threat_level(self) -> ThreatLevel:
        return self._threat_level

    def record_error_spike(self, error_rate: float) -> None:
        """Escalate to HIGH when the error rate (percent) exceeds the threshold."""
        if error_rate > self.error_rate_threshold:
            self._counters["error_rate_spikes"] += 1
            self.escalate_threat_level(ThreatLevel.HIGH, f"error rate {error_rate:.1f}%")

    def escalate_threat_level(self, level: ThreatLevel, reason: str) -> None:
        self._counters[f"escalation:{reason}"] += 1
        if level.severity <= self._threat_level.severity:
            return

        previous = self._threat_level
        self._threat_level = level
        self._last_escalation = self._clock()

        log_fn = logger.critical if level == ThreatLevel.CRITICAL else logger.warning
        log_fn(
            "Threat level escalated",
            previous=previous.value,
            level=level.value,
            reason=reason,
        )

        for handler in self._alert_handlers:
            try:
                handler(level, reason)
            except Exception as e:
                logger.error("Alert handler error", error=str(e))

    def degrade_threat_level(self) -> ThreatLevel:
        """Lower the threat level by one step."""
        index = _LEVELS.index(self._threat_level)
        if index > 0:
            self._threat_level = _LEVELS[index - 1]
            logger.info("Threat level degraded", level=self._threat_level.value)
        return self._threat_level

    def add_alert_handler(self, handler: Callable[[ThreatLevel, str], None]) -> None:
        self._alert_handlers.append(handler)

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "threat_level": self._threat_level.value,
            "last_escalation": (
                self._last_escalation.isoformat() if self._last_escalation else None
            ),
            "counters": dict(self._counters),
        }
