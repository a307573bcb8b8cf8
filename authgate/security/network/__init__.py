"""Network-level admission policy."""

from authgate.security.network.policy import NetworkPolicy, parse_ip, parse_networks

__all__ = ["NetworkPolicy", "parse_ip", "parse_networks"]
