"""Authentication pipeline and security manager tests."""

import asyncio

import pytest

from authgate.core.config import (
    AuthGateConfig,
    AuthPolicyConfig,
    LoggingConfig,
    LogLevel,
    RiskConfig,
    RiskThresholds,
    ZeroTrustConfig,
)
from authgate.security.audit.logger import AuditCategory
from authgate.security.authentication.orchestrator import (
    AUTH_RESOURCE,
    REASON_MFA,
    REASON_SESSION_LIMIT,
)
from authgate.security.manager import SecurityManager
from authgate.security.types import (
    AuthFailureReason,
    Permission,
    RiskLevel,
    ThreatLevel,
)
from authgate.security.zero_trust.gate import ConnectionInfo


# Thresholds low enough that a first login from a new desktop is HIGH risk
SENSITIVE_RISK = RiskConfig(
    thresholds=RiskThresholds(critical=0.9, high=0.3, medium=0.2, low=0.1),
)


class FakeSecondFactor:
    """Accepts a single fixed token."""

    def __init__(self, token="123456"):
        self.token = token

    async def get_secret(self, user_id):
        return "s3cret" if user_id == "alice" else None

    def validate_token(self, secret, token):
        return secret == "s3cret" and token == self.token


class FakePermissionStore:
    async def get_user_permissions(self, user_id):
        return [Permission(resource="buckets", action="read")]


class RecordingAudit:
    """Implements only the AuditSink protocol methods."""

    def __init__(self):
        self.events = []

    async def log_access(self, user_id, resource, action, result,
                         ip_address="", user_agent="", details=None):
        self.events.append(("access", action, user_id))

    async def log_error(self, user_id, action, message, details=None):
        self.events.append(("error", action, user_id))

    async def log_security_event(self, event_type, user_id, details=None, level="warning"):
        self.events.append(("security", event_type, user_id))


def policy(**overrides):
    overrides.setdefault("require_approval_for_new_device", False)
    return AuthPolicyConfig(**overrides)


@pytest.fixture
def build_manager(audit, monitor, clock):
    def _build(config=None, **kwargs):
        kwargs.setdefault("audit", audit)
        kwargs.setdefault("monitor", monitor)
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("configure_logging", False)
        return SecurityManager(config or AuthGateConfig(auth=policy()), **kwargs)

    return _build


@pytest.fixture
def manager(build_manager):
    return build_manager()


class TestBruteForceStep:
    """Step 1: blocked users and addresses."""

    @pytest.mark.asyncio
    async def test_lockout_and_release(self, manager, make_request, clock, audit, monitor):
        for _ in range(5):
            await manager.record_failed_attempt("alice", "10.0.0.5")
            clock.advance(minutes=2)

        result = await manager.authenticate_user(make_request())

        assert not result.authenticated
        assert result.failure == AuthFailureReason.ACCOUNT_TEMPORARILY_LOCKED
        assert result.session is None
        assert monitor.threat_level == ThreatLevel.MEDIUM
        assert audit.get_events(action="brute_force_lockout")
        assert audit.get_events(action="brute_force_blocked")

        clock.advance(minutes=31)
        result = await manager.authenticate_user(make_request())

        assert result.authenticated

    @pytest.mark.asyncio
    async def test_block_checked_before_device_lookup(self, build_manager, make_request):
        manager = build_manager(AuthGateConfig())
        for _ in range(5):
            await manager.record_failed_attempt("alice", "10.0.0.5")

        result = await manager.authenticate_user(make_request())

        assert result.failure == AuthFailureReason.ACCOUNT_TEMPORARILY_LOCKED
        assert not result.requires_approval
        assert manager.devices.get_stats()["devices"] == 0

    @pytest.mark.asyncio
    async def test_success_resets_counters(self, manager, make_request):
        for _ in range(3):
            await manager.record_failed_attempt("alice", "10.0.0.5")

        await manager.authenticate_user(make_request())

        stats = await manager.brute_force.get_attempt_stats("alice", "10.0.0.5")
        assert stats["user_attempts"] == 0


class TestDeviceApprovalStep:
    """Steps 2-3: new devices."""

    @pytest.mark.asyncio
    async def test_new_device_requires_approval(self, build_manager, make_request, audit):
        manager = build_manager(AuthGateConfig())

        result = await manager.authenticate_user(make_request())

        assert result.requires_approval
        assert not result.authenticated
        assert result.failure == AuthFailureReason.NEW_DEVICE_APPROVAL_REQUIRED
        assert result.device_fingerprint
        assert await manager.get_user_sessions("alice") == []
        assert audit.get_events(action="new_device_detected")[0].details["device_type"] == "desktop"

    @pytest.mark.asyncio
    async def test_approved_device_can_log_in(self, build_manager, make_request):
        manager = build_manager(AuthGateConfig())
        first = await manager.authenticate_user(make_request())

        await manager.devices.approve_device("alice", first.device_fingerprint)
        result = await manager.authenticate_user(make_request())

        assert result.authenticated
        assert not result.requires_approval

    @pytest.mark.asyncio
    async def test_device_registered_on_first_success(self, manager, make_request):
        result = await manager.authenticate_user(make_request())

        assert await manager.devices.is_known_device("alice", result.device_fingerprint)
        assert not await manager.devices.is_known_device("bob", result.device_fingerprint)


class TestRiskStep:
    """Step 4: risk scoring and second factor."""

    @pytest.mark.asyncio
    async def test_high_risk_recommends_mfa(self, build_manager, make_request):
        manager = build_manager(AuthGateConfig(auth=policy(), risk=SENSITIVE_RISK))

        result = await manager.authenticate_user(make_request())

        assert result.authenticated
        assert result.requires_mfa
        assert result.risk_level == RiskLevel.HIGH
        assert REASON_MFA in result.recommendations
        assert result.session.risk_level == RiskLevel.HIGH

    @pytest.mark.asyncio
    async def test_enforced_mfa_without_token(self, build_manager, make_request, audit):
        config = AuthGateConfig(auth=policy(mfa_enforcement="enforce"), risk=SENSITIVE_RISK)
        manager = build_manager(config, second_factor=FakeSecondFactor())

        result = await manager.authenticate_user(make_request())

        assert not result.authenticated
        assert result.requires_mfa
        assert result.failure == AuthFailureReason.MFA_REQUIRED
        assert await manager.get_user_sessions("alice") == []
        assert audit.get_events(action="mfa_required")[0].details["token_presented"] is False

    @pytest.mark.asyncio
    async def test_enforced_mfa_with_valid_token(self, build_manager, make_request):
        config = AuthGateConfig(auth=policy(mfa_enforcement="enforce"), risk=SENSITIVE_RISK)
        manager = build_manager(config, second_factor=FakeSecondFactor())

        result = await manager.authenticate_user(make_request(mfa_token="123456"))

        assert result.authenticated
        assert not result.requires_mfa
        assert "Second factor verified" in result.recommendations

    @pytest.mark.asyncio
    async def test_enforced_mfa_with_wrong_token_counts_as_failure(self, build_manager, make_request):
        config = AuthGateConfig(auth=policy(mfa_enforcement="enforce"), risk=SENSITIVE_RISK)
        manager = build_manager(config, second_factor=FakeSecondFactor())

        result = await manager.authenticate_user(make_request(mfa_token="000000"))

        assert result.failure == AuthFailureReason.MFA_REQUIRED
        stats = await manager.brute_force.get_attempt_stats("alice", "10.0.0.5")
        assert stats["user_attempts"] == 1

    @pytest.mark.asyncio
    async def test_mfa_not_required_when_disabled(self, build_manager, make_request):
        config = AuthGateConfig(
            auth=policy(require_mfa_for_high_risk=False), risk=SENSITIVE_RISK,
        )
        manager = build_manager(config)

        result = await manager.authenticate_user(make_request())

        assert result.authenticated
        assert result.risk_level == RiskLevel.HIGH
        assert not result.requires_mfa

    @pytest.mark.asyncio
    async def test_risk_assessment_disabled(self, build_manager, make_request):
        config = AuthGateConfig(
            auth=policy(enable_risk_assessment=False), risk=SENSITIVE_RISK,
        )
        manager = build_manager(config)

        result = await manager.authenticate_user(make_request())

        assert result.authenticated
        assert result.risk_level == RiskLevel.LOW
        assert result.risk_score == 0.0


class TestPasswordStep:
    """Step 5: password changes."""

    @pytest.mark.asyncio
    async def test_short_password_rejected(self, manager, make_request):
        result = await manager.authenticate_user(make_request(new_password="Sh0rt!"))

        assert result.failure == AuthFailureReason.PASSWORD_POLICY_VIOLATION
        assert "at least 12 characters" in result.reason

    @pytest.mark.asyncio
    async def test_missing_character_classes_listed(self, manager, make_request):
        result = await manager.authenticate_user(make_request(new_password="alllowercaseletters"))

        assert result.failure == AuthFailureReason.PASSWORD_POLICY_VIOLATION
        assert "uppercase letter, number, special character" in result.reason

    @pytest.mark.asyncio
    async def test_strong_password_accepted(self, manager, make_request):
        result = await manager.authenticate_user(make_request(new_password="Corr3ct-Horse-Battery"))
        assert result.authenticated

    @pytest.mark.asyncio
    async def test_complexity_disabled(self, build_manager, make_request):
        manager = build_manager(AuthGateConfig(auth=policy(password_complexity_enabled=False)))

        result = await manager.authenticate_user(make_request(new_password="weak"))

        assert result.authenticated

    @pytest.mark.asyncio
    async def test_password_checked_before_session(self, manager, make_request):
        result = await manager.authenticate_user(
            make_request(new_password="weak", session_id="sess_missing")
        )
        assert result.failure == AuthFailureReason.PASSWORD_POLICY_VIOLATION

    @pytest.mark.asyncio
    async def test_violation_is_a_security_event(self, manager, make_request, audit, monitor):
        await manager.authenticate_user(make_request(new_password="weak"))

        events = audit.get_events(action="password_policy_violation")
        assert len(events) == 1
        assert events[0].category == AuditCategory.SECURITY
        assert events[0].details["ip_address"] == "10.0.0.5"
        assert monitor.threat_level == ThreatLevel.LOW


class TestSessionSteps:
    """Steps 6-8: presented sessions, the cap and issuance."""

    @pytest.mark.asyncio
    async def test_unknown_session_rejected(self, manager, make_request, audit):
        result = await manager.authenticate_user(make_request(session_id="sess_missing"))

        assert result.failure == AuthFailureReason.SESSION_INVALID_OR_EXPIRED
        errors = audit.get_events(category=AuditCategory.ERROR)
        assert errors[0].action == "session_validation"
        assert "not_found" in errors[0].message

    @pytest.mark.asyncio
    async def test_foreign_session_rejected(self, manager, make_request):
        bob = await manager.authenticate_user(make_request(user_id="bob"))

        result = await manager.authenticate_user(make_request(session_id=bob.session.session_id))

        assert result.failure == AuthFailureReason.SESSION_INVALID_OR_EXPIRED

    @pytest.mark.asyncio
    async def test_valid_session_is_touched(self, manager, make_request, clock):
        first = await manager.authenticate_user(make_request())
        clock.advance(minutes=10)

        result = await manager.authenticate_user(
            make_request(session_id=first.session.session_id, ip_address="10.0.0.6")
        )

        assert result.authenticated
        assert first.session.activity_log[-1].action == "reauthentication"
        assert first.session.expires_at == clock() + manager.sessions.session_timeout

    @pytest.mark.asyncio
    async def test_session_cap_rejects_by_default(self, manager, make_request, clock):
        for _ in range(5):
            assert (await manager.authenticate_user(make_request())).authenticated
            clock.advance(seconds=30)

        result = await manager.authenticate_user(make_request())

        assert not result.authenticated
        assert result.failure == AuthFailureReason.CONCURRENT_SESSION_LIMIT_EXCEEDED
        assert result.reason == REASON_SESSION_LIMIT
        assert "Close existing sessions to continue" in result.recommendations
        assert len(await manager.get_user_sessions("alice")) == 5

    @pytest.mark.asyncio
    async def test_session_cap_evicts_when_configured(self, build_manager, make_request, clock, audit):
        manager = build_manager(AuthGateConfig(auth=policy(evict_oldest_session=True)))
        issued = []
        for _ in range(5):
            issued.append((await manager.authenticate_user(make_request())).session)
            clock.advance(seconds=30)

        result = await manager.authenticate_user(make_request())

        assert result.authenticated
        active = await manager.get_user_sessions("alice")
        assert len(active) == 5
        assert issued[0].session_id not in {s.session_id for s in active}
        assert result.session.session_id in {s.session_id for s in active}
        assert audit.get_events(action="session_evicted")

    @pytest.mark.asyncio
    async def test_success_result(self, build_manager, make_request, audit):
        manager = build_manager(permissions=FakePermissionStore())

        result = await manager.authenticate_user(make_request())

        assert result.authenticated
        assert result.failure is None
        assert result.session.user_id == "alice"
        assert result.session.device_fingerprint == result.device_fingerprint
        assert result.permissions == [Permission(resource="buckets", action="read")]
        assert result.to_dict()["session_id"] == result.session.session_id

        access = audit.get_events(category=AuditCategory.ACCESS)
        assert [(e.resource, e.result) for e in access] == [(AUTH_RESOURCE, "SUCCESS")]

        pattern = await manager.behavior.get_pattern("alice")
        assert pattern.total_logins == 1


class TestFailureHandling:
    """Timeouts and unexpected errors."""

    @pytest.mark.asyncio
    async def test_timeout_is_retryable(self, build_manager, make_request):
        async def slow_resolver(ip_address):
            await asyncio.sleep(5)

        manager = build_manager(geo_resolver=slow_resolver)

        result = await manager.authenticate_user(make_request(), timeout=0.05)

        assert not result.authenticated
        assert result.failure == AuthFailureReason.AUTHENTICATION_TIMEOUT
        assert result.retryable
        assert await manager.get_user_sessions("alice") == []
        assert manager.orchestrator.get_stats()["timeouts"] == 1

    @pytest.mark.asyncio
    async def test_internal_error_is_generic(self, manager, make_request, audit, monitor, monkeypatch):
        async def broken(user_agent, ip_address):
            raise RuntimeError("device store unavailable")

        monkeypatch.setattr(manager.devices, "get_or_create_device", broken)

        result = await manager.authenticate_user(make_request())

        assert not result.authenticated
        assert result.failure == AuthFailureReason.GENERIC_AUTHENTICATION_FAILURE
        assert "device store" not in result.reason
        assert "RuntimeError" in audit.get_events(category=AuditCategory.ERROR)[0].message
        assert monitor.threat_level == ThreatLevel.HIGH
        assert manager.orchestrator.error_rate == 100.0


class TestRelatedOperations:
    """Logout, action checks and the manager facade."""

    @pytest.mark.asyncio
    async def test_invalidate_session(self, manager, make_request, clock, audit):
        result = await manager.authenticate_user(make_request())
        clock.advance(minutes=12)

        assert await manager.invalidate_session(result.session.session_id)
        assert await manager.invalidate_session(result.session.session_id) is False

        pattern = await manager.behavior.get_pattern("alice")
        assert pattern.completed_sessions == 1
        assert pattern.average_session_length.total_seconds() == 12 * 60
        assert audit.get_events(action="session_invalidated")

    @pytest.mark.asyncio
    async def test_invalidate_session_with_protocol_only_audit(self, build_manager, make_request):
        audit = RecordingAudit()
        manager = build_manager(audit=audit)
        result = await manager.authenticate_user(make_request())

        assert await manager.invalidate_session(result.session.session_id, reason="logout")
        assert ("security", "session_invalidated", "alice") in audit.events

    @pytest.mark.asyncio
    async def test_validate_security_requirements(self, manager, make_request, audit):
        ok, message = await manager.validate_security_requirements("alice", "read_object")
        assert not ok
        assert "no active session" in message

        await manager.authenticate_user(make_request())

        assert await manager.validate_security_requirements("alice", "delete_user") == (True, "")
        assert audit.get_events(action="high_risk_action")[0].details == {"action": "delete_user"}

    @pytest.mark.asyncio
    async def test_gate_and_pipeline_share_sessions(self, build_manager, make_request):
        config = AuthGateConfig(
            auth=policy(),
            zero_trust=ZeroTrustConfig(require_mutual_tls=False),
        )
        manager = build_manager(config)
        assert manager.gate.session_manager is manager.orchestrator.sessions

        result = await manager.authenticate_user(make_request())
        connection = ConnectionInfo(
            peer_address="10.0.0.5:50123",
            session_id=result.session.session_id,
        )

        assert (await manager.validate_connection(connection, "alice")).allowed

        await manager.invalidate_session(result.session.session_id)
        verdict = await manager.validate_connection(connection, "alice")
        assert verdict.failure == AuthFailureReason.SESSION_INVALID_OR_EXPIRED

    @pytest.mark.asyncio
    async def test_lifecycle(self, build_manager):
        async with build_manager() as manager:
            assert manager.brute_force._cleanup_task is not None
            assert manager.sessions._cleanup_task is not None

        assert manager.brute_force._cleanup_task is None
        assert manager.sessions._cleanup_task is None

    @pytest.mark.asyncio
    async def test_initialize_configures_logging(self, build_manager, monkeypatch):
        calls = []
        monkeypatch.setattr(
            "authgate.security.manager.setup_logging",
            lambda level, renderer: calls.append((level, renderer)),
        )
        config = AuthGateConfig(
            auth=policy(),
            logging=LoggingConfig(level=LogLevel.DEBUG, renderer="console"),
        )

        async with build_manager(config, configure_logging=True):
            pass

        assert calls == [("DEBUG", "console")]

    @pytest.mark.asyncio
    async def test_stats(self, manager, make_request):
        await manager.authenticate_user(make_request())

        stats = manager.get_stats()

        assert stats["orchestrator"]["authenticated"] == 1
        assert stats["sessions"]["active_sessions"] == 1
        assert stats["devices"]["devices"] == 1
        assert stats["monitor"]["threat_level"] == "none"
