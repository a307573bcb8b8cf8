"""
Threat Intelligence

Reputation store for source addresses plus the static signature lists used
by risk scoring: suspicious user agents, blocked countries and VPN/proxy
ranges. Entries may be single addresses or CIDR ranges and can be added or
removed at runtime.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional, Union

import structlog

from authgate.security.locks import ReadWriteLock
from authgate.security.network.policy import (
    IPNetwork,
    in_networks,
    parse_ip,
    parse_networks,
)
from authgate.security.types import ThreatLevel

logger = structlog.get_logger(__name__)


DEFAULT_SUSPICIOUS_USER_AGENTS = [
    "curl", "wget", "python-requests", "bot", "crawler", "scanner",
]

DEFAULT_VPN_RANGES = ["10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16"]


class ThreatIntelligence:
    """IP reputation and signature lookups."""

    def __init__(
        self,
        suspicious_user_agents: Optional[Iterable[str]] = None,
        blocked_countries: Optional[Iterable[str]] = None,
        vpn_ranges: Optional[Iterable[str]] = None,
        vpn_detection: bool = True,
    ):
        self.suspicious_user_agents: List[str] = [
            s.lower() for s in (
                DEFAULT_SUSPICIOUS_USER_AGENTS
                if suspicious_user_agents is None
                else suspicious_user_agents
            )
        ]
        self.blocked_countries = {c.lower() for c in (blocked_countries or [])}
        self.vpn_detection = vpn_detection
        self.vpn_networks = parse_networks(
            DEFAULT_VPN_RANGES if vpn_ranges is None else vpn_ranges
        )

        self._ip_reputation: Dict[str, ThreatLevel] = {}
        self._network_reputation: Dict[IPNetwork, ThreatLevel] = {}
        self._lock = ReadWriteLock()

    # =========================================================================
    # Reputation
    # =========================================================================

    async def add_threat_intelligence(
        self,
        ip_or_cidr: str,
        level: Union[ThreatLevel, str],
    ) -> None:
        """Record the reputation of an address or range."""
        level = ThreatLevel(level)
        async with self._lock.write():
            self._store(ip_or_cidr, level)

        logger.info("Threat intelligence updated", target=ip_or_cidr, level=level.value)

    async def remove_threat_intelligence(self, ip_or_cidr: str) -> bool:
        async with self._lock.write():
            if "/" not in ip_or_cidr:
                address = parse_ip(ip_or_cidr)
                key = str(address) if address else ip_or_cidr
                return self._ip_reputation.pop(key, None) is not None
            network = parse_networks([ip_or_cidr])[0]
            return self._network_reputation.pop(network, None) is not None

    async def load_feed(self, feed: Mapping[str, Union[ThreatLevel, str]]) -> int:
        """Bulk import address/range reputations. Returns the entry count."""
        entries = {target: ThreatLevel(level) for target, level in feed.items()}
        async with self._lock.write():
            for target, level in entries.items():
                self._store(target, level)

        logger.info("Threat feed loaded", entries=len(entries))
        return len(entries)

    async def get_ip_reputation(self, ip_address: str) -> ThreatLevel:
        """Exact address first, otherwise the most severe matching range."""
        address = parse_ip(ip_address)
        async with self._lock.read():
            level = self._ip_reputation.get(str(address) if address else ip_address)
            if level is not None:
                return level
            if address is None:
                return ThreatLevel.NONE

            worst = ThreatLevel.NONE
            for network, network_level in self._network_reputation.items():
                if address.version == network.version and address in network:
                    if network_level.severity > worst.severity:
                        worst = network_level
            return worst

    def _store(self, target: str, level: ThreatLevel) -> None:
        if "/" in target:
            self._network_reputation[parse_networks([target])[0]] = level
        else:
            address = parse_ip(target)
            self._ip_reputation[str(address) if address else target] = level

    # =========================================================================
    # Signatures
    # =========================================================================

    def is_suspicious_user_agent(self, user_agent: str) -> bool:
        ua = (user_agent or "").lower()
        return any(signature in ua for signature in self.suspicious_user_agents)

    def is_blocked_country(self, country: str) -> bool:
        return (country or "").lower() in self.blocked_countries

    def is_vpn_or_proxy(self, ip_address: str) -> bool:
        if not self.vpn_detection:
            return False
        address = parse_ip(ip_address)
        if address is None:
            return False
        return in_networks(address, self.vpn_networks)
