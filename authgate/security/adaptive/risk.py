"""
Risk Assessment

Composite login risk from five independent sub-scores, each clamped to
[0, 1] and combined with configurable weights:

    device      new device, device class, unresolved OS/browser, device risk
    behavior    deviation from the user's usual hours, days and velocity
    geographic  unfamiliar area, VPN/proxy ranges, blocked countries
    temporal    night-time and weekend logins
    threat      IP reputation and automation user agents

The weighted sum is clamped again and mapped to a RiskLevel by threshold.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, List, Optional

import structlog

from authgate.core.config import RiskConfig
from authgate.security.adaptive.behavior import BehaviorTracker
from authgate.security.intel.geo import GeoLocationService
from authgate.security.intel.threat import ThreatIntelligence
from authgate.security.types import (
    AuthenticationRequest,
    DeviceInfo,
    DeviceType,
    RiskLevel,
    ThreatLevel,
)

logger = structlog.get_logger(__name__)


DEVICE_CLASS_RISK: Dict[DeviceType, float] = {
    DeviceType.SERVER: 0.6,
    DeviceType.UNKNOWN: 0.3,
    DeviceType.DESKTOP: 0.2,
    DeviceType.TABLET: 0.15,
    DeviceType.MOBILE: 0.1,
}

THREAT_LEVEL_RISK: Dict[ThreatLevel, float] = {
    ThreatLevel.CRITICAL: 1.0,
    ThreatLevel.HIGH: 0.8,
    ThreatLevel.MEDIUM: 0.5,
    ThreatLevel.LOW: 0.2,
    ThreatLevel.NONE: 0.0,
}


def clamp(value: float) -> float:
    return max(0.0, min(value, 1.0))


@dataclass
class RiskEvaluation:
    """Score breakdown of one assessment."""
    score: float
    level: RiskLevel
    sub_scores: Dict[str, float] = field(default_factory=dict)
    factors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "score": round(self.score, 4),
            "level": self.level.value,
            "sub_scores": {k: round(v, 4) for k, v in self.sub_scores.items()},
            "factors": list(self.factors),
        }


class RiskAssessment:
    """Scores login attempts against device, behavior, location, time and threat data."""

    def __init__(
        self,
        config: Optional[RiskConfig] = None,
        behavior: Optional[BehaviorTracker] = None,
        geo: Optional[GeoLocationService] = None,
        threat_intel: Optional[ThreatIntelligence] = None,
        enabled: bool = True,
    ):
        self.config = config or RiskConfig()
        self.behavior = behavior or BehaviorTracker(
            history_size=self.config.login_history_size,
            max_locations=self.config.max_common_locations,
        )
        self.geo = geo or GeoLocationService()
        self.threat_intel = threat_intel or ThreatIntelligence(
            suspicious_user_agents=self.config.suspicious_user_agents,
            blocked_countries=self.config.blocked_countries,
            vpn_ranges=self.config.vpn_ranges,
            vpn_detection=self.config.vpn_detection,
        )
        self.enabled = enabled

    async def assess_risk(
        self,
        request: AuthenticationRequest,
        device: DeviceInfo,
        is_new_device: bool,
    ) -> RiskLevel:
        evaluation = await self.evaluate(request, device, is_new_device)
        return evaluation.level

    async def evaluate(
        self,
        request: AuthenticationRequest,
        device: DeviceInfo,
        is_new_device: bool,
    ) -> RiskEvaluation:
        """Full assessment with per-category scores."""
        if not self.enabled:
            return RiskEvaluation(score=0.0, level=RiskLevel.LOW)

        factors: List[str] = []
        sub_scores = {
            "device": self._evaluate_device(device, is_new_device, factors),
            "behavior": await self._evaluate_behavior(request, factors),
            "geographic": await self._evaluate_geographic(request, factors),
            "temporal": self._evaluate_temporal(request, factors),
            "threat": await self._evaluate_threat(request, factors),
        }

        weights = self.config.weights
        total = clamp(
            sub_scores["device"] * weights.device
            + sub_scores["behavior"] * weights.behavior
            + sub_scores["geographic"] * weights.geographic
            + sub_scores["temporal"] * weights.temporal
            + sub_scores["threat"] * weights.threat
        )
        level = self._score_to_level(total)

        logger.debug(
            "Risk assessed",
            user_id=request.user_id,
            score=round(total, 4),
            level=level.value,
            factors=factors,
        )

        return RiskEvaluation(score=total, level=level, sub_scores=sub_scores, factors=factors)

    # =========================================================================
    # Sub-scores
    # =========================================================================

    def _evaluate_device(
        self,
        device: DeviceInfo,
        is_new_device: bool,
        factors: List[str],
    ) -> float:
        score = 0.0

        if is_new_device:
            score += 0.4
            factors.append("new_device")

        score += DEVICE_CLASS_RISK.get(device.device_type, 0.3)

        if device.os == "Unknown":
            score += 0.2
            factors.append("unknown_os")
        if device.browser == "Unknown":
            score += 0.2
            factors.append("unknown_browser")

        score += device.risk_score * 0.5

        return clamp(score)

    async def _evaluate_behavior(
        self,
        request: AuthenticationRequest,
        factors: List[str],
    ) -> float:
        pattern = await self.behavior.get_pattern(request.user_id)
        if pattern is None:
            factors.append("no_behavior_history")
            return 0.3

        score = 0.0
        at = request.timestamp

        if at.hour not in pattern.login_hours:
            score += 0.2
            factors.append("unusual_hour")

        if at.weekday() not in pattern.login_weekdays:
            score += 0.15
            factors.append("unusual_weekday")

        if BehaviorTracker.is_high_velocity(
            pattern, at, self.config.velocity_threshold_per_hour
        ):
            score += 0.4
            factors.append("high_login_velocity")

        if pattern.last_login is not None:
            since_last = at - pattern.last_login
            if timedelta(0) <= since_last < timedelta(minutes=self.config.rapid_reauth_minutes):
                score += 0.3
                factors.append("rapid_reauthentication")

        return clamp(score)

    async def _evaluate_geographic(
        self,
        request: AuthenticationRequest,
        factors: List[str],
    ) -> float:
        score = 0.0
        location = await self.geo.get_location(request.ip_address)

        pattern = await self.behavior.get_pattern(request.user_id)
        if pattern is not None and pattern.common_locations:
            if not BehaviorTracker.is_usual_location(pattern, location):
                score += 0.5
                factors.append("unusual_location")

        if self.threat_intel.is_vpn_or_proxy(request.ip_address):
            score += 0.3
            factors.append("vpn_or_proxy")

        if self.threat_intel.is_blocked_country(location.country):
            score += 0.7
            factors.append("blocked_country")

        return clamp(score)

    def _evaluate_temporal(
        self,
        request: AuthenticationRequest,
        factors: List[str],
    ) -> float:
        score = 0.0
        at = request.timestamp

        if self.config.night_start_hour <= at.hour <= self.config.night_end_hour:
            score += 0.2
            factors.append("night_time")

        if at.weekday() >= 5:
            score += 0.1
            factors.append("weekend")

        return clamp(score)

    async def _evaluate_threat(
        self,
        request: AuthenticationRequest,
        factors: List[str],
    ) -> float:
        reputation = await self.threat_intel.get_ip_reputation(request.ip_address)
        score = THREAT_LEVEL_RISK[reputation]
        if reputation != ThreatLevel.NONE:
            factors.append(f"ip_reputation_{reputation.value}")

        if self.threat_intel.is_suspicious_user_agent(request.user_agent):
            score += 0.3
            factors.append("suspicious_user_agent")

        return clamp(score)

    def _score_to_level(self, score: float) -> RiskLevel:
        thresholds = self.config.thresholds
        if score >= thresholds.critical:
            return RiskLevel.CRITICAL
        if score >= thresholds.high:
            return RiskLevel.HIGH
        if score >= thresholds.medium:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW
