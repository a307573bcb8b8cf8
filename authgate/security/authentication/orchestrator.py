"""
authgate Authentication Orchestrator

Runs every login attempt through a fixed, short-circuiting pipeline:

1. brute-force block check (user and source address)
2. device lookup or creation
3. new-device approval gate
4. composite risk assessment and second-factor requirement
5. password complexity for password changes
6. validation of an existing session, if one is presented
7. concurrent session cap
8. session issuance, device registration, counter reset, audit

Credential verification itself happens upstream: callers report bad
passwords through record_failed_attempt(). Admission outcomes are
returned as EnhancedAuthResult values, never raised.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union

import structlog

from authgate.core.config import AuthPolicyConfig, RiskConfig
from authgate.core.logging import short_id
from authgate.security.adaptive.behavior import BehaviorTracker
from authgate.security.adaptive.device import DeviceTracker
from authgate.security.adaptive.risk import RiskAssessment, RiskEvaluation
from authgate.security.audit.logger import AuditLogger
from authgate.security.authentication.password import PasswordPolicy
from authgate.security.authentication.session import SessionManager
from authgate.security.exceptions import SessionNotFoundError
from authgate.security.protection.brute_force import BruteForceGuard
from authgate.security.types import (
    AuditSink,
    AuthenticationRequest,
    AuthFailureReason,
    Clock,
    DeviceInfo,
    EnhancedAuthResult,
    EnhancedSession,
    PermissionStore,
    RiskLevel,
    SecondFactorProvider,
    SecurityMonitorSink,
    SessionStatus,
    ThreatLevel,
)

logger = structlog.get_logger(__name__)


AUTH_RESOURCE = "enhanced_authentication"

REASON_LOCKED = "Account temporarily locked due to suspicious activity"
REASON_NEW_DEVICE = "New device detected - requires approval"
REASON_MFA = "Multi-factor authentication required due to high risk"
REASON_PASSWORD = "Password does not meet complexity requirements: {}"
REASON_SESSION = "Invalid or expired session"
REASON_SESSION_LIMIT = "Maximum concurrent sessions exceeded"
REASON_TIMEOUT = "Authentication timed out"
REASON_INTERNAL = "Authentication failed due to an internal error"
REASON_SUCCESS = "Authentication successful"

HIGH_RISK_ACTIONS = frozenset({
    "delete_bucket",
    "modify_security_settings",
    "create_user",
    "delete_user",
})


@dataclass
class _Admission:
    """State carried from the checks into the commit step."""
    result: EnhancedAuthResult
    device: DeviceInfo
    is_new_device: bool


class AuthenticationOrchestrator:
    """
    Adaptive authentication pipeline.

    Owns no state of its own beyond counters; every registry lives in the
    component it belongs to, each with its own lock.
    """

    def __init__(
        self,
        config: Optional[AuthPolicyConfig] = None,
        *,
        brute_force: Optional[BruteForceGuard] = None,
        devices: Optional[DeviceTracker] = None,
        risk: Optional[RiskAssessment] = None,
        sessions: Optional[SessionManager] = None,
        audit: Optional[AuditSink] = None,
        monitor: Optional[SecurityMonitorSink] = None,
        permissions: Optional[PermissionStore] = None,
        second_factor: Optional[SecondFactorProvider] = None,
        clock: Optional[Clock] = None,
    ):
        self.config = config or AuthPolicyConfig()
        self._clock = clock or datetime.now

        self.brute_force = brute_force or BruteForceGuard(
            threshold=self.config.brute_force_threshold,
            window_minutes=self.config.brute_force_window_minutes,
            lockout_minutes=self.config.lockout_duration_minutes,
            lockout_enabled=self.config.enable_account_lockout,
            clock=self._clock,
        )
        self.risk = risk or RiskAssessment(
            RiskConfig(), enabled=self.config.enable_risk_assessment
        )
        self.devices = devices or DeviceTracker(geo=self.risk.geo, clock=self._clock)
        self.sessions = sessions or SessionManager(
            session_timeout_minutes=self.config.session_timeout_minutes,
            max_concurrent_sessions=self.config.max_concurrent_sessions,
            activity_log_size=self.config.session_activity_log_size,
            clock=self._clock,
        )
        self.audit = audit if audit is not None else AuditLogger(clock=self._clock)
        self.monitor = monitor
        self.permissions = permissions
        self.second_factor = second_factor
        self.password_policy = PasswordPolicy(
            min_length=self.config.password_min_length,
            special_chars=self.config.password_special_characters,
        )

        self._stats = {
            "attempts": 0,
            "authenticated": 0,
            "denied": 0,
            "errors": 0,
            "timeouts": 0,
        }

    @property
    def behavior(self) -> BehaviorTracker:
        return self.risk.behavior

    # =========================================================================
    # Pipeline
    # =========================================================================

    async def authenticate_user(
        self,
        request: AuthenticationRequest,
        timeout: Optional[float] = None,
    ) -> EnhancedAuthResult:
        """
        Evaluate a login attempt.

        With a timeout, the checks (steps 1-7) are abandoned when it
        expires and a retryable result is returned. Session issuance is
        never interrupted once it has started.
        """
        self._stats["attempts"] += 1

        try:
            if timeout is None:
                outcome = await self._evaluate(request)
            else:
                outcome = await asyncio.wait_for(self._evaluate(request), timeout)
        except asyncio.TimeoutError:
            self._stats["timeouts"] += 1
            logger.warning("Authentication timed out", user_id=request.user_id, timeout=timeout)
            result = EnhancedAuthResult(user_id=request.user_id)
            return await self._deny(
                request, result, AuthFailureReason.AUTHENTICATION_TIMEOUT,
                REASON_TIMEOUT, retryable=True,
            )
        except Exception as e:
            return await self._internal_failure(request, "evaluate", e)

        if isinstance(outcome, EnhancedAuthResult):
            self._stats["denied"] += 1
            return outcome

        try:
            return await asyncio.shield(self._commit(request, outcome))
        except Exception as e:
            return await self._internal_failure(request, "commit", e)

    async def _evaluate(
        self,
        request: AuthenticationRequest,
    ) -> Union[EnhancedAuthResult, _Admission]:
        result = EnhancedAuthResult(user_id=request.user_id)

        # Step 1: brute-force protection
        if await self.brute_force.is_blocked(request.user_id, request.ip_address):
            await self.audit.log_security_event(
                "brute_force_blocked",
                request.user_id,
                details={"ip_address": request.ip_address},
                level="warning",
            )
            if self.monitor is not None:
                self.monitor.escalate_threat_level(ThreatLevel.MEDIUM, "brute_force_blocked")
            return await self._deny(
                request, result, AuthFailureReason.ACCOUNT_TEMPORARILY_LOCKED, REASON_LOCKED
            )

        # Step 2: device tracking
        device = await self.devices.get_or_create_device(request.user_agent, request.ip_address)
        is_new_device = not await self.devices.is_known_device(
            request.user_id, device.fingerprint
        )
        result.device_fingerprint = device.fingerprint

        # Step 3: new-device approval
        if (
            is_new_device
            and self.config.require_device_registration
            and self.config.require_approval_for_new_device
        ):
            result.requires_approval = True
            await self.audit.log_security_event(
                "new_device_detected",
                request.user_id,
                details={
                    "fingerprint": device.fingerprint,
                    "device_type": device.device_type.value,
                    "ip_address": request.ip_address,
                },
                level="info",
            )
            return await self._deny(
                request, result, AuthFailureReason.NEW_DEVICE_APPROVAL_REQUIRED, REASON_NEW_DEVICE
            )

        # Step 4: risk assessment
        if self.config.enable_risk_assessment:
            evaluation = await self.risk.evaluate(request, device, is_new_device)
            result.risk_level = evaluation.level
            result.risk_score = evaluation.score

            if evaluation.level.at_least(RiskLevel.HIGH) and self.config.require_mfa_for_high_risk:
                denied = await self._apply_second_factor(request, result, evaluation)
                if denied is not None:
                    return denied

        # Step 5: password complexity
        if request.new_password and self.config.password_complexity_enabled:
            ok, message = self.password_policy.validate(request.new_password)
            if not ok:
                await self.audit.log_security_event(
                    "password_policy_violation",
                    request.user_id,
                    details={"ip_address": request.ip_address, "violation": message},
                    level="warning",
                )
                if self.monitor is not None:
                    self.monitor.escalate_threat_level(
                        ThreatLevel.LOW, "password_policy_violation"
                    )
                return await self._deny(
                    request, result, AuthFailureReason.PASSWORD_POLICY_VIOLATION,
                    REASON_PASSWORD.format(message),
                )

        # Step 6: existing session
        if request.session_id:
            session = await self._resume_session(request)
            if session is None:
                return await self._deny(
                    request, result, AuthFailureReason.SESSION_INVALID_OR_EXPIRED, REASON_SESSION
                )
            result.session = session

        # Step 7: concurrent session cap
        if not self.config.evict_oldest_session:
            active = await self.sessions.get_active_session_count(request.user_id)
            if active >= self.config.max_concurrent_sessions:
                result.recommendations.append("Close existing sessions to continue")
                return await self._deny(
                    request, result, AuthFailureReason.CONCURRENT_SESSION_LIMIT_EXCEEDED,
                    REASON_SESSION_LIMIT,
                )

        return _Admission(result=result, device=device, is_new_device=is_new_device)

    async def _commit(
        self,
        request: AuthenticationRequest,
        admission: _Admission,
    ) -> EnhancedAuthResult:
        """Step 8: issue the session and record the successful login."""
        result = admission.result
        device = admission.device

        session = await self.sessions.create_session(
            request.user_id,
            ip_address=request.ip_address,
            user_agent=request.user_agent,
            device=device,
            risk_level=result.risk_level,
        )

        if admission.is_new_device:
            await self.devices.register_device(request.user_id, device)

        await self.brute_force.reset_attempts(request.user_id, request.ip_address)
        await self.behavior.record_login(
            request.user_id,
            request.timestamp,
            location=device.location,
            device_type=device.device_type,
        )

        if self.permissions is not None:
            result.permissions = list(
                await self.permissions.get_user_permissions(request.user_id)
            )

        await self.audit.log_access(
            request.user_id,
            AUTH_RESOURCE,
            "login",
            "SUCCESS",
            ip_address=request.ip_address,
            user_agent=request.user_agent,
            details={
                "session_id": short_id(session.session_id),
                "risk_level": result.risk_level.value,
                "new_device": admission.is_new_device,
            },
        )

        result.authenticated = True
        result.session = session
        result.reason = REASON_SUCCESS
        self._stats["authenticated"] += 1

        logger.info(
            "User authenticated",
            user_id=request.user_id,
            session_id=short_id(session.session_id),
            risk_level=result.risk_level.value,
            requires_mfa=result.requires_mfa,
        )
        return result

    # =========================================================================
    # Step Helpers
    # =========================================================================

    async def _apply_second_factor(
        self,
        request: AuthenticationRequest,
        result: EnhancedAuthResult,
        evaluation: RiskEvaluation,
    ) -> Optional[EnhancedAuthResult]:
        """Returns a denial when a second factor is enforced and missing or wrong."""
        if self.config.mfa_enforcement == "recommend":
            result.requires_mfa = True
            result.recommendations.append(REASON_MFA)
            return None

        if await self._verify_second_factor(request):
            result.recommendations.append("Second factor verified")
            return None

        result.requires_mfa = True
        if request.mfa_token:
            await self.record_failed_attempt(request.user_id, request.ip_address)
        await self.audit.log_security_event(
            "mfa_required",
            request.user_id,
            details={
                "risk_score": round(evaluation.score, 4),
                "factors": evaluation.factors,
                "token_presented": bool(request.mfa_token),
            },
            level="warning",
        )
        return await self._deny(request, result, AuthFailureReason.MFA_REQUIRED, REASON_MFA)

    async def _verify_second_factor(self, request: AuthenticationRequest) -> bool:
        if self.second_factor is None or not request.mfa_token:
            return False
        secret = await self.second_factor.get_secret(request.user_id)
        if not secret:
            return False
        return bool(self.second_factor.validate_token(secret, request.mfa_token))

    async def _resume_session(self, request: AuthenticationRequest) -> Optional[EnhancedSession]:
        session, status = await self.sessions.validate_session(request.session_id)
        problem = None
        if status != SessionStatus.ACTIVE:
            problem = f"session is {status.value}"
        elif session.user_id != request.user_id:
            problem = "session belongs to another user"
        else:
            try:
                await self.sessions.update_activity(
                    request.session_id, request.ip_address, action="reauthentication"
                )
            except SessionNotFoundError:
                problem = "session removed during validation"

        if problem is None:
            return session

        await self.audit.log_error(
            request.user_id,
            "session_validation",
            problem,
            details={
                "session_id": short_id(request.session_id),
                "ip_address": request.ip_address,
            },
        )
        return None

    async def _deny(
        self,
        request: AuthenticationRequest,
        result: EnhancedAuthResult,
        failure: AuthFailureReason,
        reason: str,
        retryable: bool = False,
    ) -> EnhancedAuthResult:
        result.authenticated = False
        result.session = None
        result.failure = failure
        result.reason = reason
        result.retryable = retryable

        await self.audit.log_access(
            request.user_id,
            AUTH_RESOURCE,
            "login",
            "FAILURE",
            ip_address=request.ip_address,
            user_agent=request.user_agent,
            details={"failure": failure.value, "reason": reason},
        )
        logger.info(
            "Authentication denied",
            user_id=request.user_id,
            failure=failure.value,
            risk_level=result.risk_level.value,
        )
        return result

    async def _internal_failure(
        self,
        request: AuthenticationRequest,
        stage: str,
        error: Exception,
    ) -> EnhancedAuthResult:
        self._stats["errors"] += 1
        logger.exception("Authentication pipeline error", user_id=request.user_id, stage=stage)

        await self.audit.log_error(
            request.user_id,
            "enhanced_authentication",
            f"{type(error).__name__}: {error}",
            details={"stage": stage, "ip_address": request.ip_address},
        )
        if self.monitor is not None:
            self.monitor.record_error_spike(self.error_rate)

        return EnhancedAuthResult(
            user_id=request.user_id,
            failure=AuthFailureReason.GENERIC_AUTHENTICATION_FAILURE,
            reason=REASON_INTERNAL,
            retryable=True,
        )

    # =========================================================================
    # Related Operations
    # =========================================================================

    async def record_failed_attempt(self, user_id: str, ip_address: str) -> bool:
        """Report a failed credential check. Returns True if it caused a block."""
        blocked = await self.brute_force.record_failed_attempt(user_id, ip_address)

        if blocked:
            await self.audit.log_security_event(
                "brute_force_lockout",
                user_id,
                details={"ip_address": ip_address},
                level="warning",
            )
            if self.monitor is not None:
                self.monitor.escalate_threat_level(ThreatLevel.MEDIUM, "brute_force_lockout")
        return blocked

    async def invalidate_session(self, session_id: str, reason: str = "logout") -> bool:
        session = await self.sessions.get_session_info(session_id)
        if not await self.sessions.invalidate_session(session_id, reason):
            return False

        await self.behavior.record_session_end(
            session.user_id, self._clock() - session.created_at
        )
        await self.audit.log_security_event(
            "session_invalidated",
            session.user_id,
            details={"session_id": short_id(session_id), "reason": reason},
            level="info",
        )
        return True

    async def get_user_sessions(self, user_id: str) -> List[EnhancedSession]:
        return await self.sessions.get_user_sessions(user_id)

    async def validate_security_requirements(self, user_id: str, action: str) -> Tuple[bool, str]:
        """Check that a user may perform an action; flags high-risk actions."""
        if await self.sessions.get_active_session_count(user_id) == 0:
            return False, f"no active session found for user {user_id}"

        if action in HIGH_RISK_ACTIONS:
            await self.audit.log_security_event(
                "high_risk_action",
                user_id,
                details={"action": action},
                level="warning",
            )
        return True, ""

    @property
    def error_rate(self) -> float:
        """Percentage of attempts that ended in an internal error."""
        attempts = self._stats["attempts"]
        return 100.0 * self._stats["errors"] / attempts if attempts else 0.0

    def get_stats(self) -> Dict[str, Any]:
        return {**self._stats, "error_rate": round(self.error_rate, 2)}
