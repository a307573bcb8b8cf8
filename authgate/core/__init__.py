"""Core configuration and logging for authgate."""

from authgate.core.config import (
    AuthGateConfig,
    AuthPolicyConfig,
    LoggingConfig,
    MaintenanceConfig,
    RiskConfig,
    RiskThresholds,
    RiskWeights,
    ZeroTrustConfig,
    get_config,
    reset_config,
    set_config,
)
from authgate.core.logging import setup_logging

__all__ = [
    "AuthGateConfig",
    "AuthPolicyConfig",
    "LoggingConfig",
    "MaintenanceConfig",
    "RiskConfig",
    "RiskThresholds",
    "RiskWeights",
    "ZeroTrustConfig",
    "get_config",
    "reset_config",
    "set_config",
    "setup_logging",
]
