"""Zero-trust connection screening."""

from authgate.security.zero_trust.gate import (
    ConnectionInfo,
    ConnectionVerdict,
    PeerCertificate,
    ZeroTrustGate,
    parse_tls_version,
)

__all__ = [
    "ConnectionInfo",
    "ConnectionVerdict",
    "PeerCertificate",
    "ZeroTrustGate",
    "parse_tls_version",
]
