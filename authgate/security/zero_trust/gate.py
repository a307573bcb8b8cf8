"""
Zero-Trust Connection Gate

Screens every incoming connection regardless of where it comes from:

1. source address against the network policy
2. TLS version against the configured minimum
3. peer certificate presence, validity window, fingerprint allow-list
   and required organizational units
4. the session attached to the connection (or, for a named user without
   one, that the user holds at least one active session)

The first failing check denies the connection. Nothing is retried.
"""

from __future__ import annotations

import ssl
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Optional

import structlog
from cryptography import x509
from cryptography.hazmat.primitives import hashes

from authgate.core.config import ZeroTrustConfig
from authgate.core.logging import short_id
from authgate.security.authentication.session import SessionManager
from authgate.security.exceptions import CertificateParseError
from authgate.security.network.policy import NetworkPolicy, parse_ip
from authgate.security.types import (
    AuditSink,
    AuthFailureReason,
    SecurityMonitorSink,
    SessionStatus,
    ThreatLevel,
)

logger = structlog.get_logger(__name__)


_TLS_VERSIONS = {
    "1.0": (1, 0),
    "1": (1, 0),
    "1.1": (1, 1),
    "1.2": (1, 2),
    "1.3": (1, 3),
}


def parse_tls_version(value: Optional[str]) -> Optional[tuple]:
    """Map "TLS 1.2", "TLSv1.2" or "1.2" to a comparable tuple."""
    if not value:
        return None
    normalized = value.upper().replace("TLS", "").replace("V", "").replace(" ", "")
    return _TLS_VERSIONS.get(normalized)


@dataclass
class PeerCertificate:
    """Identity fields of a client certificate."""

    fingerprint_sha256: str
    subject_cn: Optional[str] = None
    organizational_units: List[str] = field(default_factory=list)
    subject_dn: str = ""
    serial_number: str = ""
    not_before: Optional[datetime] = None
    not_after: Optional[datetime] = None

    @classmethod
    def from_x509(cls, cert: x509.Certificate) -> "PeerCertificate":
        subject = cert.subject
        cn = subject.get_attributes_for_oid(x509.oid.NameOID.COMMON_NAME)
        ous = subject.get_attributes_for_oid(x509.oid.NameOID.ORGANIZATIONAL_UNIT_NAME)
        return cls(
            fingerprint_sha256=cert.fingerprint(hashes.SHA256()).hex(),
            subject_cn=str(cn[0].value) if cn else None,
            organizational_units=[str(attr.value) for attr in ous],
            subject_dn=subject.rfc4514_string(),
            serial_number=format(cert.serial_number, "x"),
            not_before=cert.not_valid_before_utc,
            not_after=cert.not_valid_after_utc,
        )

    @classmethod
    def from_der(cls, der: bytes) -> "PeerCertificate":
        try:
            return cls.from_x509(x509.load_der_x509_certificate(der))
        except ValueError as e:
            raise CertificateParseError(f"Invalid DER certificate: {e}") from e

    @classmethod
    def from_pem(cls, pem: bytes) -> "PeerCertificate":
        try:
            return cls.from_x509(x509.load_pem_x509_certificate(pem))
        except ValueError as e:
            raise CertificateParseError(f"Invalid PEM certificate: {e}") from e

    def is_valid_at(self, now: datetime) -> bool:
        if self.not_before and now < self.not_before:
            return False
        if self.not_after and now > self.not_after:
            return False
        return True


@dataclass
class ConnectionInfo:
    """What the gate needs to know about a connection."""

    peer_address: str
    tls_version: Optional[str] = None  # None for plaintext connections
    peer_certificate: Optional[PeerCertificate] = None
    session_id: str = ""

    @property
    def is_tls(self) -> bool:
        return self.tls_version is not None

    @property
    def ip_address(self) -> Optional[str]:
        """The peer host with any port or brackets removed, if it is an IP."""
        raw = (self.peer_address or "").strip()
        address = parse_ip(raw)
        if address is None and raw:
            host = raw
            if host.startswith("["):
                host = host[1:].split("]", 1)[0]
            elif host.count(":") == 1:
                host = host.rsplit(":", 1)[0]
            address = parse_ip(host)
        return str(address) if address is not None else None

    @classmethod
    def from_transport(cls, transport: Any, session_id: str = "") -> "ConnectionInfo":
        """Build from an asyncio transport (plain or TLS)."""
        peername = transport.get_extra_info("peername")
        peer = peername[0] if isinstance(peername, tuple) else str(peername or "")

        ssl_object: Optional[ssl.SSLObject] = transport.get_extra_info("ssl_object")
        tls_version = None
        certificate = None
        if ssl_object is not None:
            tls_version = ssl_object.version()
            der = ssl_object.getpeercert(binary_form=True)
            if der:
                certificate = PeerCertificate.from_der(der)

        return cls(
            peer_address=peer,
            tls_version=tls_version,
            peer_certificate=certificate,
            session_id=session_id,
        )


@dataclass
class ConnectionVerdict:
    """Outcome of screening one connection."""

    allowed: bool
    reason: str = ""
    failure: Optional[AuthFailureReason] = None
    ip_address: Optional[str] = None
    user_id: str = ""

    def __bool__(self) -> bool:
        return self.allowed


class ZeroTrustGate:
    """Per-connection zero-trust checks."""

    def __init__(
        self,
        config: Optional[ZeroTrustConfig] = None,
        session_manager: Optional[SessionManager] = None,
        audit: Optional[AuditSink] = None,
        monitor: Optional[SecurityMonitorSink] = None,
    ):
        self.config = config or ZeroTrustConfig()
        self.session_manager = session_manager or SessionManager()
        self.audit = audit
        self.monitor = monitor

        self.network_policy = NetworkPolicy(
            self.config.allowed_networks,
            self.config.denied_networks,
        )
        self.minimum_tls = parse_tls_version(self.config.minimum_tls_version) or (1, 2)
        self._allowed_fingerprints = {
            fp.replace(":", "").lower() for fp in self.config.allowed_certificates
        }

    async def validate_connection(
        self,
        connection: ConnectionInfo,
        user_id: str = "",
    ) -> ConnectionVerdict:
        """Run every check in order; the first failure denies the connection."""
        if not self.config.enabled:
            return ConnectionVerdict(allowed=True, user_id=user_id)

        ip_address = connection.ip_address
        if ip_address is None:
            return await self._deny(
                connection, user_id, AuthFailureReason.NETWORK_POLICY_DENIED,
                f"invalid peer address: {connection.peer_address!r}",
            )

        if self.config.network_policy_enabled and not self.network_policy.is_allowed(ip_address):
            return await self._deny(
                connection, user_id, AuthFailureReason.NETWORK_POLICY_DENIED,
                f"connection from {ip_address} denied by network policy",
                ip_address=ip_address,
                threat=ThreatLevel.MEDIUM,
            )

        if connection.is_tls:
            problem = self._check_tls(connection)
            if problem:
                return await self._deny(
                    connection, user_id, AuthFailureReason.CERTIFICATE_VALIDATION_FAILED,
                    f"TLS validation failed: {problem}",
                    ip_address=ip_address,
                    threat=ThreatLevel.HIGH,
                )
        elif self.config.require_mutual_tls:
            return await self._deny(
                connection, user_id, AuthFailureReason.CERTIFICATE_VALIDATION_FAILED,
                "TLS connection required but not provided",
                ip_address=ip_address,
            )

        problem = await self._check_session(connection, user_id)
        if problem:
            return await self._deny(
                connection, user_id, AuthFailureReason.SESSION_INVALID_OR_EXPIRED,
                f"session validation failed: {problem}",
                ip_address=ip_address,
            )

        return ConnectionVerdict(allowed=True, ip_address=ip_address, user_id=user_id)

    def _check_tls(self, connection: ConnectionInfo) -> Optional[str]:
        version = parse_tls_version(connection.tls_version)
        if version is None or version < self.minimum_tls:
            return (
                f"TLS version {connection.tls_version} below minimum "
                f"{self.config.minimum_tls_version}"
            )

        cert = connection.peer_certificate
        if cert is None:
            if self.config.verify_peer_certificates or self.config.require_mutual_tls:
                return "peer certificate required but not provided"
            return None

        if self.config.verify_peer_certificates and not cert.is_valid_at(
            datetime.now(timezone.utc)
        ):
            return "peer certificate outside its validity period"

        if self._allowed_fingerprints and cert.fingerprint_sha256.lower() not in self._allowed_fingerprints:
            return "certificate fingerprint not in allowed list"

        required = self.config.required_organizational_units
        if required and not set(required).intersection(cert.organizational_units):
            return "certificate does not contain required organizational unit"

        return None

    async def _check_session(self, connection: ConnectionInfo, user_id: str) -> Optional[str]:
        if connection.session_id:
            session, status = await self.session_manager.validate_session(connection.session_id)
            if status != SessionStatus.ACTIVE:
                return f"session {short_id(connection.session_id)} is {status.value}"
            if user_id and session.user_id != user_id:
                return "session does not belong to user"
            return None

        if user_id and self.config.require_session:
            if await self.session_manager.get_active_session_count(user_id) == 0:
                return f"no active session found for user {user_id}"
        return None

    async def _deny(
        self,
        connection: ConnectionInfo,
        user_id: str,
        failure: AuthFailureReason,
        reason: str,
        ip_address: Optional[str] = None,
        threat: Optional[ThreatLevel] = None,
    ) -> ConnectionVerdict:
        logger.warning(
            "Connection denied",
            peer=connection.peer_address,
            user_id=user_id or None,
            failure=failure.value,
            reason=reason,
        )

        if self.audit is not None:
            await self.audit.log_security_event(
                "connection_denied",
                user_id,
                details={
                    "peer": connection.peer_address,
                    "failure": failure.value,
                    "reason": reason,
                },
                level="warning",
            )
        if self.monitor is not None and threat is not None:
            self.monitor.escalate_threat_level(threat, failure.value)

        return ConnectionVerdict(
            allowed=False,
            reason=reason,
            failure=failure,
            ip_address=ip_address,
            user_id=user_id,
        )

    def create_ssl_context(
        self,
        certfile: str,
        keyfile: Optional[str] = None,
        cafile: Optional[str] = None,
    ) -> ssl.SSLContext:
        """Server-side TLS context matching this gate's requirements."""
        context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH, cafile=cafile)
        context.load_cert_chain(certfile, keyfile)
        context.minimum_version = {
            (1, 0): ssl.TLSVersion.TLSv1,
            (1, 1): ssl.TLSVersion.TLSv1_1,
            (1, 2): ssl.TLSVersion.TLSv1_2,
            (1, 3): ssl.TLSVersion.TLSv1_3,
        }[self.minimum_tls]
        if self.config.require_mutual_tls:
            context.verify_mode = ssl.CERT_REQUIRED
        return context
