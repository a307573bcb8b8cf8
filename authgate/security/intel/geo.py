"""
Geolocation Service

Resolves IP addresses to coarse locations. Results are cached per address
with a TTL and a capacity bound. Static per-range overrides and a pluggable
async resolver (e.g. a GeoIP database or HTTP lookup) take precedence over
the built-in heuristic, which only distinguishes private from public space.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional, Tuple

import structlog

from authgate.security.locks import ReadWriteLock
from authgate.security.network.policy import IPNetwork, in_networks, parse_ip, parse_networks
from authgate.security.types import Clock, GeoLocation

logger = structlog.get_logger(__name__)

GeoResolver = Callable[[str], Awaitable[Optional[GeoLocation]]]


LOCAL_LOCATION = GeoLocation(
    country="Local",
    region="Private Network",
    city="Local",
    isp="Private Network",
    timezone="UTC",
)

EXTERNAL_LOCATION = GeoLocation(
    country="External",
    region="Internet",
    city="Remote",
    isp="Unknown",
    timezone="UTC",
)

# RFC 1918 and unique-local ranges. Documentation and shared address
# space resolve as external.
PRIVATE_NETWORKS = parse_networks(
    ["10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16", "fc00::/7"]
)


class GeoLocationService:
    """Cached IP to location resolution."""

    def __init__(
        self,
        resolver: Optional[GeoResolver] = None,
        cache_ttl: float = 3600.0,
        max_entries: int = 10_000,
        clock: Optional[Clock] = None,
    ):
        self._resolver = resolver
        self._ttl = timedelta(seconds=cache_ttl)
        self._max_entries = max_entries
        self._clock = clock or datetime.now

        self._cache: "OrderedDict[str, Tuple[GeoLocation, datetime]]" = OrderedDict()
        self._overrides: List[Tuple[IPNetwork, GeoLocation]] = []
        self._lock = ReadWriteLock()

        self._stats = {"lookups": 0, "cache_hits": 0, "resolver_errors": 0}

    def register_location(self, cidr: str, location: GeoLocation) -> None:
        """Pin every address in a range to a fixed location."""
        network = parse_networks([cidr])[0]
        self._overrides.append((network, location))
        # Cached results may predate the override
        self._cache.clear()

    async def get_location(self, ip_address: str) -> GeoLocation:
        """Resolve an address, consulting the cache first."""
        self._stats["lookups"] += 1
        now = self._clock()

        async with self._lock.read():
            cached = self._cache.get(ip_address)
        if cached is not None and now - cached[1] < self._ttl:
            self._stats["cache_hits"] += 1
            return cached[0]

        # Resolution may be a network call; keep it outside the lock
        location = await self._resolve(ip_address)

        async with self._lock.write():
            self._cache[ip_address] = (location, now)
            self._cache.move_to_end(ip_address)
            while len(self._cache) > self._max_entries:
                self._cache.popitem(last=False)

        return location

    async def clear_cache(self) -> None:
        async with self._lock.write():
            self._cache.clear()

    async def _resolve(self, ip_address: str) -> GeoLocation:
        address = parse_ip(ip_address)
        if address is None:
            return GeoLocation()

        for network, location in self._overrides:
            if address.version == network.version and address in network:
                return location

        if self._resolver is not None:
            try:
                resolved = await self._resolver(ip_address)
                if resolved is not None:
                    return resolved
            except Exception as e:
                self._stats["resolver_errors"] += 1
                logger.warning("Geo resolver failed", ip=ip_address, error=str(e))

        if address.is_loopback or in_networks(address, PRIVATE_NETWORKS):
            return replace(LOCAL_LOCATION)
        return replace(EXTERNAL_LOCATION)

    def get_stats(self) -> dict:
        return {**self._stats, "cached": len(self._cache)}
