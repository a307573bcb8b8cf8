"""
authgate - adaptive authentication and zero-trust admission control.
"""

__version__ = "0.1.0"

from authgate.core.config import AuthGateConfig, get_config, set_config
from authgate.core.logging import setup_logging
from authgate.security import (
    AuthenticationRequest,
    AuthFailureReason,
    ConnectionInfo,
    EnhancedAuthResult,
    RiskLevel,
    SecurityManager,
)

__all__ = [
    "AuthFailureReason",
    "AuthGateConfig",
    "AuthenticationRequest",
    "ConnectionInfo",
    "EnhancedAuthResult",
    "RiskLevel",
    "SecurityManager",
    "get_config",
    "set_config",
    "setup_logging",
]
