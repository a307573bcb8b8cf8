"""
authgate Security Types

Shared data structures for the admission pipeline:
- Authentication requests and results
- Brute-force attempt records
- Device, location and behavior profiles
- Sessions and their activity trail
- Collaborator interfaces (audit, monitoring, permissions, second factor)
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import (
    Any,
    Callable,
    Deque,
    Dict,
    List,
    Optional,
    Protocol,
    Set,
    runtime_checkable,
)


Clock = Callable[[], datetime]


# =============================================================================
# Levels
# =============================================================================


_RISK_ORDER = {"low": 0, "medium": 1, "high": 2, "critical": 3}
_THREAT_ORDER = {"none": 0, "low": 1, "medium": 2, "high": 3, "critical": 4}


class RiskLevel(str, Enum):
    """Risk level classifications."""
    LOW = "low"              # Normal access
    MEDIUM = "medium"        # Additional verification recommended
    HIGH = "high"            # Second factor required
    CRITICAL = "critical"    # Block or manual review

    @property
    def severity(self) -> int:
        return _RISK_ORDER[self.value]

    def at_least(self, other: "RiskLevel") -> bool:
        return self.severity >= other.severity


class ThreatLevel(str, Enum):
    """Reputation of a source address or overall system threat posture."""
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def severity(self) -> int:
        return _THREAT_ORDER[self.value]


class DeviceType(str, Enum):
    """Coarse device classes derived from the user agent."""
    DESKTOP = "desktop"
    MOBILE = "mobile"
    TABLET = "tablet"
    SERVER = "server"
    UNKNOWN = "unknown"


# =============================================================================
# Requests and Results
# =============================================================================


@dataclass(frozen=True)
class AuthenticationRequest:
    """A single login attempt. Never mutated by the pipeline."""

    user_id: str
    password: str = ""
    new_password: str = ""
    mfa_token: str = ""
    session_id: str = ""
    ip_address: str = ""
    user_agent: str = ""
    timestamp: datetime = field(default_factory=datetime.now)


class AuthFailureReason(str, Enum):
    """Why an authentication attempt was denied."""
    ACCOUNT_TEMPORARILY_LOCKED = "account_temporarily_locked"
    NEW_DEVICE_APPROVAL_REQUIRED = "new_device_approval_required"
    MFA_REQUIRED = "mfa_required"
    PASSWORD_POLICY_VIOLATION = "password_policy_violation"
    SESSION_INVALID_OR_EXPIRED = "session_invalid_or_expired"
    CONCURRENT_SESSION_LIMIT_EXCEEDED = "concurrent_session_limit_exceeded"
    NETWORK_POLICY_DENIED = "network_policy_denied"
    CERTIFICATE_VALIDATION_FAILED = "certificate_validation_failed"
    AUTHENTICATION_TIMEOUT = "authentication_timeout"
    GENERIC_AUTHENTICATION_FAILURE = "generic_authentication_failure"


@dataclass
class Permission:
    """A resource/action grant returned by a permission store."""
    resource: str
    action: str
    conditions: Dict[str, Any] = field(default_factory=dict)


@dataclass
class EnhancedAuthResult:
    """Outcome of the authentication pipeline."""

    user_id: str
    authenticated: bool = False
    requires_mfa: bool = False
    requires_approval: bool = False
    risk_level: RiskLevel = RiskLevel.LOW
    risk_score: float = 0.0
    session: Optional["EnhancedSession"] = None
    reason: str = ""
    recommendations: List[str] = field(default_factory=list)
    device_fingerprint: str = ""
    failure: Optional[AuthFailureReason] = None
    retryable: bool = False
    permissions: List[Permission] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "authenticated": self.authenticated,
            "requires_mfa": self.requires_mfa,
            "requires_approval": self.requires_approval,
            "risk_level": self.risk_level.value,
            "risk_score": round(self.risk_score, 4),
            "session_id": self.session.session_id if self.session else None,
            "reason": self.reason,
            "recommendations": list(self.recommendations),
            "device_fingerprint": self.device_fingerprint,
            "failure": self.failure.value if self.failure else None,
            "retryable": self.retryable,
        }


# =============================================================================
# Brute-force Records
# =============================================================================


@dataclass
class AttemptsRecord:
    """Failed-attempt counter for one user or one source address."""

    count: int
    first_attempt: datetime
    last_attempt: datetime
    blocked_until: Optional[datetime] = None

    def is_blocked(self, now: datetime) -> bool:
        return self.blocked_until is not None and now < self.blocked_until


# =============================================================================
# Devices, Locations and Behavior
# =============================================================================


@dataclass
class GeoLocation:
    """Resolved location of an IP address."""

    country: str = "Unknown"
    region: str = "Unknown"
    city: str = "Unknown"
    latitude: float = 0.0
    longitude: float = 0.0
    isp: str = "Unknown"
    timezone: str = "UTC"

    def same_area(self, other: "GeoLocation") -> bool:
        """Country and region match."""
        return self.country == other.country and self.region == other.region

    def key(self) -> tuple:
        return (self.country, self.region, self.city)


@dataclass
class DeviceInfo:
    """A fingerprinted client device."""

    fingerprint: str
    user_agent: str
    ip_address: str
    first_seen: datetime
    last_seen: datetime
    location: Optional[GeoLocation] = None
    trusted: bool = False
    approved: bool = False
    device_type: DeviceType = DeviceType.UNKNOWN
    os: str = "Unknown"
    browser: str = "Unknown"
    attributes: Dict[str, str] = field(default_factory=dict)
    risk_score: float = 0.0


@dataclass
class UserBehaviorPattern:
    """Observed login habits of a user."""

    user_id: str
    login_hours: Set[int] = field(default_factory=set)
    login_weekdays: Set[int] = field(default_factory=set)  # Monday == 0
    common_locations: List[GeoLocation] = field(default_factory=list)
    device_types: Set[DeviceType] = field(default_factory=set)
    average_session_length: timedelta = field(default_factory=timedelta)
    login_frequency: float = 0.0  # logins per day
    last_login: Optional[datetime] = None
    first_login: Optional[datetime] = None
    total_logins: int = 0
    completed_sessions: int = 0
    recent_logins: Deque[datetime] = field(default_factory=lambda: deque(maxlen=100))

    def copy(self) -> "UserBehaviorPattern":
        return replace(
            self,
            login_hours=set(self.login_hours),
            login_weekdays=set(self.login_weekdays),
            common_locations=list(self.common_locations),
            device_types=set(self.device_types),
            recent_logins=deque(self.recent_logins, maxlen=self.recent_logins.maxlen),
        )


# =============================================================================
# Sessions
# =============================================================================


class SessionStatus(str, Enum):
    """Result of validating a session identifier."""
    ACTIVE = "active"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    INACTIVE = "inactive"


@dataclass
class SessionActivity:
    """One entry of a session's activity trail."""

    timestamp: datetime
    action: str
    resource: str = ""
    ip_address: str = ""
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Session:
    """An authenticated session."""

    session_id: str
    user_id: str
    created_at: datetime
    expires_at: datetime
    ip_address: str = ""
    user_agent: str = ""
    active: bool = True

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def is_valid(self, now: datetime) -> bool:
        return self.active and not self.is_expired(now)


@dataclass
class EnhancedSession(Session):
    """Session with device binding, risk and an activity trail."""

    device_fingerprint: str = ""
    risk_level: RiskLevel = RiskLevel.LOW
    last_activity_at: Optional[datetime] = None
    created_from_ip: str = ""
    activity_log: Deque[SessionActivity] = field(
        default_factory=lambda: deque(maxlen=10)
    )
    invalidated_at: Optional[datetime] = None
    invalidation_reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "last_activity_at": (
                self.last_activity_at.isoformat() if self.last_activity_at else None
            ),
            "ip_address": self.ip_address,
            "created_from_ip": self.created_from_ip,
            "user_agent": self.user_agent,
            "device_fingerprint": self.device_fingerprint,
            "risk_level": self.risk_level.value,
            "active": self.active,
            "invalidation_reason": self.invalidation_reason,
            "activity_count": len(self.activity_log),
        }


# =============================================================================
# Collaborator Interfaces
# =============================================================================


@runtime_checkable
class AuditSink(Protocol):
    """Destination for audit records."""

    async def log_access(
        self,
        user_id: str,
        resource: str,
        action: str,
        result: str,
        ip_address: str = "",
        user_agent: str = "",
        details: Optional[Dict[str, Any]] = None,
    ) -> None: ...

    async def log_error(
        self,
        user_id: str,
        action: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None: ...

    async def log_security_event(
        self,
        event_type: str,
        user_id: str,
        details: Optional[Dict[str, Any]] = None,
        level: str = "warning",
    ) -> None: ...


@runtime_checkable
class SecurityMonitorSink(Protocol):
    """Receiver of security escalations."""

    def record_error_spike(self, error_rate: float) -> None: ...

    def escalate_threat_level(self, level: ThreatLevel, reason: str) -> None: ...


@runtime_checkable
class PermissionStore(Protocol):
    """Lookup of a user's grants."""

    async def get_user_permissions(self, user_id: str) -> List[Permission]: ...


@runtime_checkable
class SecondFactorProvider(Protocol):
    """Verifies one-time second-factor tokens."""

    async def get_secret(self, user_id: str) -> Optional[str]: ...

    def validate_token(self, secret: str, token: str) -> bool: ...
