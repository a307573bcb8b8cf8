"""
authgate Security

Adaptive authentication and zero-trust admission control:
- Brute-force throttling per user and source address
- Device fingerprinting with approval workflow
- Composite risk scoring
- Session issuance with concurrency caps
- Connection screening (network policy, TLS, certificates, sessions)
"""

from authgate.security.adaptive import (
    BehaviorTracker,
    DeviceTracker,
    RiskAssessment,
    RiskEvaluation,
)
from authgate.security.audit import AuditLogger, SecurityMonitor
from authgate.security.authentication import (
    AuthenticationOrchestrator,
    PasswordPolicy,
    SessionManager,
)
from authgate.security.exceptions import (
    AuthGateError,
    CertificateParseError,
    DeviceNotFoundError,
    InvalidNetworkPolicyError,
    SessionNotFoundError,
)
from authgate.security.intel import GeoLocationService, ThreatIntelligence
from authgate.security.manager import SecurityManager
from authgate.security.network import NetworkPolicy
from authgate.security.protection import BruteForceGuard
from authgate.security.types import (
    AttemptsRecord,
    AuthenticationRequest,
    AuthFailureReason,
    DeviceInfo,
    DeviceType,
    EnhancedAuthResult,
    EnhancedSession,
    GeoLocation,
    Permission,
    RiskLevel,
    Session,
    SessionActivity,
    SessionStatus,
    ThreatLevel,
    UserBehaviorPattern,
)
from authgate.security.zero_trust import (
    ConnectionInfo,
    ConnectionVerdict,
    PeerCertificate,
    ZeroTrustGate,
)

__all__ = [
    "AttemptsRecord",
    "AuditLogger",
    "AuthFailureReason",
    "AuthGateError",
    "AuthenticationOrchestrator",
    "AuthenticationRequest",
    "BehaviorTracker",
    "BruteForceGuard",
    "CertificateParseError",
    "ConnectionInfo",
    "ConnectionVerdict",
    "DeviceInfo",
    "DeviceNotFoundError",
    "DeviceTracker",
    "DeviceType",
    "EnhancedAuthResult",
    "EnhancedSession",
    "GeoLocation",
    "GeoLocationService",
    "InvalidNetworkPolicyError",
    "NetworkPolicy",
    "PasswordPolicy",
    "PeerCertificate",
    "Permission",
    "RiskAssessment",
    "RiskEvaluation",
    "RiskLevel",
    "SecurityManager",
    "SecurityMonitor",
    "Session",
    "SessionActivity",
    "SessionManager",
    "SessionNotFoundError",
    "SessionStatus",
    "ThreatIntelligence",
    "ThreatLevel",
    "UserBehaviorPattern",
    "ZeroTrustGate",
]
