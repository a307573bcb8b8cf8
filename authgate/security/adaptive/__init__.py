"""Adaptive signals: devices, behavior and composite risk."""

from authgate.security.adaptive.behavior import BehaviorTracker
from authgate.security.adaptive.device import (
    DeviceTracker,
    UserAgentParser,
    generate_fingerprint,
)
from authgate.security.adaptive.risk import RiskAssessment, RiskEvaluation

__all__ = [
    "BehaviorTracker",
    "DeviceTracker",
    "RiskAssessment",
    "RiskEvaluation",
    "UserAgentParser",
    "generate_fingerprint",
]
