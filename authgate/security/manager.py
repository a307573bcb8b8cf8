"""
authgate Security Manager

Composition root: builds every component from one AuthGateConfig, shares
single instances between the login pipeline and the connection gate, and
owns the background maintenance lifecycle.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import structlog

from authgate.core.config import AuthGateConfig
from authgate.core.logging import setup_logging
from authgate.security.adaptive.behavior import BehaviorTracker
from authgate.security.adaptive.device import DeviceTracker
from authgate.security.adaptive.risk import RiskAssessment
from authgate.security.audit.logger import AuditLogger
from authgate.security.audit.monitor import SecurityMonitor
from authgate.security.authentication.orchestrator import AuthenticationOrchestrator
from authgate.security.authentication.session import SessionManager, SessionSecurityEvent
from authgate.security.intel.geo import GeoLocationService, GeoResolver
from authgate.security.intel.threat import ThreatIntelligence
from authgate.security.protection.brute_force import BruteForceGuard
from authgate.security.types import (
    AuditSink,
    AuthenticationRequest,
    Clock,
    EnhancedAuthResult,
    EnhancedSession,
    PermissionStore,
    SecondFactorProvider,
    SecurityMonitorSink,
)
from authgate.security.zero_trust.gate import ConnectionInfo, ConnectionVerdict, ZeroTrustGate

logger = structlog.get_logger(__name__)


class SecurityManager:
    """
    Owns one instance of every security component.

    Usage:
        async with SecurityManager(config) as security:
            result = await security.authenticate_user(request)
    """

    def __init__(
        self,
        config: Optional[AuthGateConfig] = None,
        audit: Optional[AuditSink] = None,
        monitor: Optional[SecurityMonitorSink] = None,
        permissions: Optional[PermissionStore] = None,
        second_factor: Optional[SecondFactorProvider] = None,
        geo_resolver: Optional[GeoResolver] = None,
        clock: Optional[Clock] = None,
        configure_logging: bool = True,
    ):
        self.config = config or AuthGateConfig()
        self._configure_logging = configure_logging
        self._clock = clock or datetime.now

        auth = self.config.auth
        risk = self.config.risk
        maintenance = self.config.maintenance

        self.audit = audit if audit is not None else AuditLogger(clock=self._clock)
        self.monitor = monitor if monitor is not None else SecurityMonitor(clock=self._clock)

        self.geo = GeoLocationService(
            resolver=geo_resolver,
            cache_ttl=maintenance.geo_cache_ttl,
            max_entries=maintenance.geo_cache_max_entries,
            clock=self._clock,
        )
        self.threat_intel = ThreatIntelligence(
            suspicious_user_agents=risk.suspicious_user_agents,
            blocked_countries=risk.blocked_countries,
            vpn_ranges=risk.vpn_ranges,
            vpn_detection=risk.vpn_detection,
        )
        self.behavior = BehaviorTracker(
            history_size=risk.login_history_size,
            max_locations=risk.max_common_locations,
        )
        self.risk = RiskAssessment(
            risk,
            behavior=self.behavior,
            geo=self.geo,
            threat_intel=self.threat_intel,
            enabled=auth.enable_risk_assessment,
        )
        self.devices = DeviceTracker(
            geo=self.geo,
            high_risk_location_markers=risk.high_risk_location_markers,
            high_risk_location_penalty=risk.high_risk_location_penalty,
            clock=self._clock,
        )
        self.brute_force = BruteForceGuard(
            threshold=auth.brute_force_threshold,
            window_minutes=auth.brute_force_window_minutes,
            lockout_minutes=auth.lockout_duration_minutes,
            lockout_enabled=auth.enable_account_lockout,
            cleanup_interval=maintenance.brute_force_cleanup_interval,
            clock=self._clock,
        )
        self.sessions = SessionManager(
            session_timeout_minutes=auth.session_timeout_minutes,
            max_concurrent_sessions=auth.max_concurrent_sessions,
            activity_log_size=auth.session_activity_log_size,
            sweep_interval=maintenance.session_sweep_interval,
            clock=self._clock,
        )
        self.sessions.add_event_handler(self._on_session_event)

        self.orchestrator = AuthenticationOrchestrator(
            auth,
            brute_force=self.brute_force,
            devices=self.devices,
            risk=self.risk,
            sessions=self.sessions,
            audit=self.audit,
            monitor=self.monitor,
            permissions=permissions,
            second_factor=second_factor,
            clock=self._clock,
        )
        self.gate = ZeroTrustGate(
            self.config.zero_trust,
            session_manager=self.sessions,
            audit=self.audit,
            monitor=self.monitor,
        )

        self._initialized = False

    async def initialize(self) -> None:
        """Start background maintenance."""
        if self._initialized:
            return

        if self._configure_logging:
            setup_logging(self.config.logging.level.value, self.config.logging.renderer)

        logger.info(
            "Initializing Security Manager",
            instance_id=self.config.instance_id,
            environment=self.config.environment,
        )
        await self.brute_force.initialize()
        await self.sessions.initialize()
        self._initialized = True

    async def shutdown(self) -> None:
        """Stop background maintenance."""
        await self.sessions.shutdown()
        await self.brute_force.shutdown()
        self._initialized = False
        logger.info("Security Manager shut down")

    async def __aenter__(self) -> "SecurityManager":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()

    # =========================================================================
    # Facade
    # =========================================================================

    async def authenticate_user(
        self,
        request: AuthenticationRequest,
        timeout: Optional[float] = None,
    ) -> EnhancedAuthResult:
        return await self.orchestrator.authenticate_user(request, timeout=timeout)

    async def record_failed_attempt(self, user_id: str, ip_address: str) -> bool:
        return await self.orchestrator.record_failed_attempt(user_id, ip_address)

    async def invalidate_session(self, session_id: str, reason: str = "logout") -> bool:
        return await self.orchestrator.invalidate_session(session_id, reason)

    async def get_user_sessions(self, user_id: str) -> List[EnhancedSession]:
        return await self.orchestrator.get_user_sessions(user_id)

    async def validate_security_requirements(self, user_id: str, action: str) -> Tuple[bool, str]:
        return await self.orchestrator.validate_security_requirements(user_id, action)

    async def validate_connection(
        self,
        connection: ConnectionInfo,
        user_id: str = "",
    ) -> ConnectionVerdict:
        return await self.gate.validate_connection(connection, user_id)

    async def _on_session_event(self, event: SessionSecurityEvent) -> None:
        if event.event_type == "session_evicted":
            await self.audit.log_security_event(
                "session_evicted",
                event.user_id,
                details={"session_id": event.session_id[:12], **event.details},
                level="info",
            )

    def get_stats(self) -> Dict[str, Any]:
        return {
            "orchestrator": self.orchestrator.get_stats(),
            "sessions": self.sessions.get_stats(),
            "brute_force": self.brute_force.get_stats(),
            "devices": self.devices.get_stats(),
            "geo": self.geo.get_stats(),
            "monitor": self.monitor.get_metrics() if isinstance(self.monitor, SecurityMonitor) else None,
        }
