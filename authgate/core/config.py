"""
authgate Configuration Management

Centralized configuration for the admission pipeline with:
- Environment-based configuration (AUTHGATE_ prefix, "__" for nesting)
- Type-safe settings with Pydantic
- JSON file loading and saving
"""

from __future__ import annotations

import ipaddress
import json
from enum import Enum
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings


class LogLevel(str, Enum):
    """Logging levels for authgate."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


def _validate_cidrs(values: List[str]) -> List[str]:
    for value in values:
        ipaddress.ip_network(value, strict=False)
    return values


class AuthPolicyConfig(BaseModel):
    """Policy switches and limits for the authentication pipeline."""
    session_timeout_minutes: int = Field(default=30, ge=1)
    max_concurrent_sessions: int = Field(default=5, ge=1)
    brute_force_threshold: int = Field(default=5, ge=1)
    brute_force_window_minutes: int = Field(default=15, ge=1)
    lockout_duration_minutes: int = Field(default=30, ge=1)
    require_device_registration: bool = True
    enable_risk_assessment: bool = True
    require_mfa_for_high_risk: bool = True
    require_approval_for_new_device: bool = True
    password_complexity_enabled: bool = True
    password_min_length: int = Field(default=12, ge=1)
    password_special_characters: str = "!@#$%^&*()_+-=[]{}|;:,.<>?"
    enable_account_lockout: bool = True

    # Reject at the cap (False) or let creation evict the oldest session (True)
    evict_oldest_session: bool = False
    mfa_enforcement: Literal["recommend", "enforce"] = "recommend"
    session_activity_log_size: int = Field(default=10, ge=1)


class RiskWeights(BaseModel):
    """Weights of the five risk sub-scores."""
    device: float = Field(default=0.30, ge=0.0)
    behavior: float = Field(default=0.25, ge=0.0)
    geographic: float = Field(default=0.20, ge=0.0)
    temporal: float = Field(default=0.15, ge=0.0)
    threat: float = Field(default=0.10, ge=0.0)


class RiskThresholds(BaseModel):
    """Lower bounds of each risk level."""
    critical: float = 0.8
    high: float = 0.6
    medium: float = 0.4
    low: float = 0.2

    @model_validator(mode="after")
    def check_order(self) -> "RiskThresholds":
        if not (1.0 >= self.critical > self.high > self.medium > self.low >= 0.0):
            raise ValueError("risk thresholds must be strictly descending within [0, 1]")
        return self


class RiskConfig(BaseModel):
    """Configuration for composite risk scoring."""
    weights: RiskWeights = Field(default_factory=RiskWeights)
    thresholds: RiskThresholds = Field(default_factory=RiskThresholds)

    # Device initial risk
    high_risk_location_markers: List[str] = Field(
        default_factory=lambda: ["tor", "proxy", "vpn"]
    )
    high_risk_location_penalty: float = 0.3

    # Threat intelligence
    blocked_countries: List[str] = Field(default_factory=list)
    suspicious_user_agents: List[str] = Field(
        default_factory=lambda: [
            "curl", "wget", "python-requests", "bot", "crawler", "scanner",
        ]
    )
    vpn_detection: bool = True
    vpn_ranges: List[str] = Field(
        default_factory=lambda: ["10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16"]
    )

    # Behavior
    velocity_threshold_per_hour: int = Field(default=10, ge=1)
    rapid_reauth_minutes: int = Field(default=5, ge=0)
    login_history_size: int = Field(default=100, ge=1)
    max_common_locations: int = Field(default=10, ge=1)

    # Temporal
    night_start_hour: int = Field(default=2, ge=0, le=23)
    night_end_hour: int = Field(default=5, ge=0, le=23)

    @field_validator("vpn_ranges")
    @classmethod
    def check_ranges(cls, v: List[str]) -> List[str]:
        return _validate_cidrs(v)


class ZeroTrustConfig(BaseModel):
    """Configuration for connection-level zero-trust checks."""
    enabled: bool = True
    require_mutual_tls: bool = True
    verify_peer_certificates: bool = True
    allowed_certificates: List[str] = Field(default_factory=list)
    required_organizational_units: List[str] = Field(default_factory=list)
    network_policy_enabled: bool = True
    allowed_networks: List[str] = Field(
        default_factory=lambda: ["10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16"]
    )
    denied_networks: List[str] = Field(default_factory=list)
    minimum_tls_version: str = "TLS 1.2"
    require_session: bool = True

    @field_validator("allowed_networks", "denied_networks")
    @classmethod
    def check_networks(cls, v: List[str]) -> List[str]:
        return _validate_cidrs(v)

    @field_validator("allowed_certificates")
    @classmethod
    def normalize_fingerprints(cls, v: List[str]) -> List[str]:
        return [fp.replace(":", "").lower() for fp in v]


class MaintenanceConfig(BaseModel):
    """Background maintenance intervals and cache bounds."""
    brute_force_cleanup_interval: float = Field(default=3600.0, gt=0)  # seconds
    session_sweep_interval: float = Field(default=600.0, gt=0)  # seconds
    geo_cache_ttl: float = Field(default=3600.0, gt=0)  # seconds
    geo_cache_max_entries: int = Field(default=10_000, ge=1)


class LoggingConfig(BaseModel):
    """Logging output configuration."""
    level: LogLevel = LogLevel.INFO
    renderer: Literal["json", "console"] = "json"


class AuthGateConfig(BaseSettings):
    """
    Main authgate Configuration

    Loads configuration from environment variables and/or config files.
    Environment variables are prefixed with AUTHGATE_
    (e.g., AUTHGATE_AUTH__MAX_CONCURRENT_SESSIONS=3)
    """

    instance_id: str = Field(default="authgate-primary")
    environment: Literal["development", "staging", "production"] = "development"

    auth: AuthPolicyConfig = Field(default_factory=AuthPolicyConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    zero_trust: ZeroTrustConfig = Field(default_factory=ZeroTrustConfig)
    maintenance: MaintenanceConfig = Field(default_factory=MaintenanceConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {
        "env_prefix": "AUTHGATE_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
    }

    @classmethod
    def from_file(cls, config_path: Path) -> "AuthGateConfig":
        """Load configuration from a JSON file."""
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            config_data = json.load(f)

        return cls(**config_data)

    def to_file(self, config_path: Path) -> None:
        """Save configuration to a JSON file."""
        config_path = Path(config_path)
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2, default=str)


# Global configuration instance (lazy loaded)
_config: Optional[AuthGateConfig] = None


def get_config() -> AuthGateConfig:
    """Get the global authgate configuration instance."""
    global _config
    if _config is None:
        _config = AuthGateConfig()
    return _config


def set_config(config: AuthGateConfig) -> None:
    """Set the global authgate configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration (mainly for tests)."""
    global _config
    _config = None

