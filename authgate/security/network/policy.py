"""
Network Policy

CIDR allow/deny evaluation for source addresses. Deny ranges always win;
an empty allow list admits every address that is not denied.
"""

from __future__ import annotations

import ipaddress
from typing import Iterable, List, Optional, Union

import structlog

from authgate.security.exceptions import InvalidNetworkPolicyError

logger = structlog.get_logger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


def parse_ip(value: Union[str, IPAddress, None]) -> Optional[IPAddress]:
    """Parse an address, returning None when it is not a valid IP."""
    if value is None:
        return None
    if isinstance(value, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return value
    try:
        return ipaddress.ip_address(str(value).strip())
    except ValueError:
        return None


def parse_networks(cidrs: Iterable[str]) -> List[IPNetwork]:
    """Parse CIDR strings, raising InvalidNetworkPolicyError on the first bad one."""
    networks: List[IPNetwork] = []
    for cidr in cidrs:
        try:
            networks.append(ipaddress.ip_network(str(cidr).strip(), strict=False))
        except ValueError as e:
            raise InvalidNetworkPolicyError(f"Invalid CIDR {cidr!r}: {e}") from e
    return networks


def in_networks(ip: IPAddress, networks: Iterable[IPNetwork]) -> bool:
    return any(ip.version == net.version and ip in net for net in networks)


class NetworkPolicy:
    """Ordered CIDR allow and deny lists."""

    def __init__(
        self,
        allowed_cidrs: Optional[Iterable[str]] = None,
        denied_cidrs: Optional[Iterable[str]] = None,
    ):
        self.allowed_networks = parse_networks(allowed_cidrs or [])
        self.denied_networks = parse_networks(denied_cidrs or [])

    def is_allowed(self, ip: Union[str, IPAddress]) -> bool:
        """Check whether a source address passes the policy."""
        address = parse_ip(ip)
        if address is None:
            logger.debug("Rejecting unparsable address", ip=str(ip))
            return False

        if in_networks(address, self.denied_networks):
            return False

        if not self.allowed_networks:
            return True

        return in_networks(address, self.allowed_networks)

    def __repr__(self) -> str:
        return (
            f"NetworkPolicy(allowed={[str(n) for n in self.allowed_networks]}, "
            f"denied={[str(n) for n in self.denied_networks]})"
        )
