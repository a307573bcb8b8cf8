"""Zero-trust connection gate tests."""

from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from authgate.core.config import ZeroTrustConfig
from authgate.security.authentication.session import SessionManager
from authgate.security.exceptions import CertificateParseError
from authgate.security.types import AuthFailureReason, ThreatLevel
from authgate.security.zero_trust.gate import (
    ConnectionInfo,
    PeerCertificate,
    ZeroTrustGate,
    parse_tls_version,
)


def make_certificate(common_name="client-01", ou="engineering", valid_from=-1, valid_days=30):
    """Self-signed client certificate; offsets are days relative to now."""
    key = ec.generate_private_key(ec.SECP256R1())
    attributes = [x509.NameAttribute(NameOID.COMMON_NAME, common_name)]
    if ou:
        attributes.append(x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, ou))
    name = x509.Name(attributes)
    now = datetime.now(timezone.utc)

    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now + timedelta(days=valid_from))
        .not_valid_after(now + timedelta(days=valid_from + valid_days))
        .sign(key, hashes.SHA256())
    )
    return PeerCertificate.from_pem(cert.public_bytes(serialization.Encoding.PEM))


@pytest.fixture
def sessions(clock):
    return SessionManager(clock=clock)


@pytest.fixture
def make_gate(sessions, audit, monitor):
    def _make(**overrides):
        return ZeroTrustGate(
            ZeroTrustConfig(**overrides),
            session_manager=sessions,
            audit=audit,
            monitor=monitor,
        )

    return _make


@pytest.fixture
def certificate():
    return make_certificate()


def tls_connection(certificate, session_id="", peer="10.0.0.5", version="TLSv1.3"):
    return ConnectionInfo(
        peer_address=peer,
        tls_version=version,
        peer_certificate=certificate,
        session_id=session_id,
    )


class TestPeerCertificate:
    """Certificate parsing helpers."""

    def test_fields_extracted(self, certificate):
        assert certificate.subject_cn == "client-01"
        assert certificate.organizational_units == ["engineering"]
        assert len(certificate.fingerprint_sha256) == 64
        assert certificate.is_valid_at(datetime.now(timezone.utc))

    def test_garbage_rejected(self):
        with pytest.raises(CertificateParseError):
            PeerCertificate.from_pem(b"-----BEGIN CERTIFICATE-----\nnope\n-----END CERTIFICATE-----\n")
        with pytest.raises(CertificateParseError):
            PeerCertificate.from_der(b"\x00\x01")

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("TLS 1.2", (1, 2)),
            ("TLSv1.3", (1, 3)),
            ("1.1", (1, 1)),
            ("SSLv3", None),
            (None, None),
        ],
    )
    def test_parse_tls_version(self, value, expected):
        assert parse_tls_version(value) == expected


class TestConnectionInfo:
    """Address normalization."""

    @pytest.mark.parametrize(
        "peer,expected",
        [
            ("10.0.0.5", "10.0.0.5"),
            ("10.0.0.5:8443", "10.0.0.5"),
            ("[2001:db8::1]:443", "2001:db8::1"),
            ("2001:db8::1", "2001:db8::1"),
            ("example.com:443", None),
            ("", None),
        ],
    )
    def test_ip_address(self, peer, expected):
        assert ConnectionInfo(peer_address=peer).ip_address == expected

    def test_from_plain_transport(self):
        class Transport:
            def get_extra_info(self, name):
                return {"peername": ("10.0.0.9", 51514)}.get(name)

        info = ConnectionInfo.from_transport(Transport(), session_id="sess_x")

        assert info.peer_address == "10.0.0.9"
        assert not info.is_tls
        assert info.peer_certificate is None
        assert info.session_id == "sess_x"


class TestNetworkChecks:
    """Source address policy."""

    @pytest.mark.asyncio
    async def test_denied_range(self, make_gate, certificate, audit, monitor):
        gate = make_gate(denied_networks=["10.66.0.0/16"])

        verdict = await gate.validate_connection(tls_connection(certificate, peer="10.66.1.1"))

        assert not verdict
        assert verdict.failure == AuthFailureReason.NETWORK_POLICY_DENIED
        assert monitor.threat_level == ThreatLevel.MEDIUM
        assert [e.action for e in audit.get_events()] == ["connection_denied"]

    @pytest.mark.asyncio
    async def test_outside_allowed_ranges(self, make_gate, certificate):
        verdict = await make_gate().validate_connection(
            tls_connection(certificate, peer="203.0.113.10")
        )
        assert verdict.failure == AuthFailureReason.NETWORK_POLICY_DENIED

    @pytest.mark.asyncio
    async def test_unparsable_peer(self, make_gate, monitor):
        verdict = await make_gate().validate_connection(ConnectionInfo(peer_address="somewhere"))

        assert verdict.failure == AuthFailureReason.NETWORK_POLICY_DENIED
        assert monitor.threat_level == ThreatLevel.NONE

    @pytest.mark.asyncio
    async def test_policy_disabled(self, make_gate, certificate):
        gate = make_gate(network_policy_enabled=False, require_session=False)

        verdict = await gate.validate_connection(tls_connection(certificate, peer="203.0.113.10"))

        assert verdict.allowed
        assert verdict.ip_address == "203.0.113.10"


class TestTLSChecks:
    """Transport security and client certificates."""

    @pytest.mark.asyncio
    async def test_plaintext_rejected_when_mutual_tls_required(self, make_gate):
        verdict = await make_gate().validate_connection(ConnectionInfo(peer_address="10.0.0.5"))

        assert verdict.failure == AuthFailureReason.CERTIFICATE_VALIDATION_FAILED
        assert "TLS connection required" in verdict.reason

    @pytest.mark.asyncio
    async def test_plaintext_allowed_without_mutual_tls(self, make_gate):
        gate = make_gate(require_mutual_tls=False, require_session=False)

        verdict = await gate.validate_connection(ConnectionInfo(peer_address="10.0.0.5"))

        assert verdict.allowed

    @pytest.mark.asyncio
    async def test_old_tls_version(self, make_gate, certificate, monitor):
        verdict = await make_gate().validate_connection(
            tls_connection(certificate, version="TLSv1.1")
        )

        assert verdict.failure == AuthFailureReason.CERTIFICATE_VALIDATION_FAILED
        assert monitor.threat_level == ThreatLevel.HIGH

    @pytest.mark.asyncio
    async def test_missing_certificate(self, make_gate):
        verdict = await make_gate().validate_connection(tls_connection(None))

        assert verdict.failure == AuthFailureReason.CERTIFICATE_VALIDATION_FAILED
        assert "certificate required" in verdict.reason

    @pytest.mark.asyncio
    async def test_expired_certificate(self, make_gate):
        expired = make_certificate(valid_from=-60, valid_days=30)

        verdict = await make_gate().validate_connection(tls_connection(expired))

        assert verdict.failure == AuthFailureReason.CERTIFICATE_VALIDATION_FAILED
        assert "validity" in verdict.reason

    @pytest.mark.asyncio
    async def test_fingerprint_allow_list(self, make_gate, certificate):
        fp = certificate.fingerprint_sha256
        colon_form = ":".join(fp[i:i + 2] for i in range(0, len(fp), 2)).upper()
        gate = make_gate(allowed_certificates=[colon_form], require_session=False)

        assert (await gate.validate_connection(tls_connection(certificate))).allowed

        other = await gate.validate_connection(tls_connection(make_certificate()))
        assert other.failure == AuthFailureReason.CERTIFICATE_VALIDATION_FAILED
        assert "fingerprint" in other.reason

    @pytest.mark.asyncio
    async def test_required_organizational_unit(self, make_gate, certificate):
        gate = make_gate(required_organizational_units=["engineering", "ops"], require_session=False)

        assert (await gate.validate_connection(tls_connection(certificate))).allowed

        marketing = make_certificate(ou="marketing")
        verdict = await gate.validate_connection(tls_connection(marketing))
        assert verdict.failure == AuthFailureReason.CERTIFICATE_VALIDATION_FAILED
        assert "organizational unit" in verdict.reason


class TestSessionChecks:
    """Session binding of connections."""

    @pytest.mark.asyncio
    async def test_owned_session_allowed(self, make_gate, sessions, certificate):
        session = await sessions.create_session("alice", "10.0.0.5")

        verdict = await make_gate().validate_connection(
            tls_connection(certificate, session.session_id), user_id="alice"
        )

        assert verdict.allowed
        assert verdict.user_id == "alice"

    @pytest.mark.asyncio
    async def test_foreign_session_denied(self, make_gate, sessions, certificate):
        session = await sessions.create_session("bob", "10.0.0.5")

        verdict = await make_gate().validate_connection(
            tls_connection(certificate, session.session_id), user_id="alice"
        )

        assert verdict.failure == AuthFailureReason.SESSION_INVALID_OR_EXPIRED
        assert "does not belong" in verdict.reason

    @pytest.mark.asyncio
    async def test_expired_session_denied(self, make_gate, sessions, certificate, clock):
        session = await sessions.create_session("alice", "10.0.0.5")
        clock.advance(minutes=31)

        verdict = await make_gate().validate_connection(
            tls_connection(certificate, session.session_id), user_id="alice"
        )

        assert verdict.failure == AuthFailureReason.SESSION_INVALID_OR_EXPIRED
        assert "expired" in verdict.reason

    @pytest.mark.asyncio
    async def test_user_without_active_session(self, make_gate, certificate):
        verdict = await make_gate().validate_connection(
            tls_connection(certificate), user_id="alice"
        )

        assert verdict.failure == AuthFailureReason.SESSION_INVALID_OR_EXPIRED

    @pytest.mark.asyncio
    async def test_user_with_any_active_session(self, make_gate, sessions, certificate):
        await sessions.create_session("alice", "10.0.0.5")

        verdict = await make_gate().validate_connection(
            tls_connection(certificate), user_id="alice"
        )

        assert verdict.allowed


class TestGateSwitch:
    @pytest.mark.asyncio
    async def test_disabled_gate_allows_everything(self, make_gate, audit):
        verdict = await make_gate(enabled=False).validate_connection(
            ConnectionInfo(peer_address="garbage")
        )

        assert verdict.allowed
        assert len(audit) == 0
