"""
Device Tracking

Fingerprints client devices from their user agent and source network,
classifies them, assigns an initial risk score and tracks which devices
each user has registered or approved.

The fingerprint is the first 16 hex characters of SHA-256 over
"<user agent>|<network>", where the network is the /24 (IPv4) or /64
(IPv6) containing the source address. Small address changes inside one
network keep the same fingerprint.
"""

from __future__ import annotations

import hashlib
import ipaddress
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

import structlog

from authgate.security.exceptions import DeviceNotFoundError
from authgate.security.intel.geo import GeoLocationService
from authgate.security.locks import ReadWriteLock
from authgate.security.network.policy import parse_ip
from authgate.security.types import Clock, DeviceInfo, DeviceType

logger = structlog.get_logger(__name__)


UNKNOWN = "Unknown"


class UserAgentParser:
    """
    Heuristic user agent classifier.

    Substring matching over the lowercased user agent. Automation tools are
    checked first so that "bot" or "curl" never falls through to desktop.
    """

    SERVER_PATTERNS = [
        "curl", "wget", "bot", "crawler", "spider", "python-requests",
        "go-http-client", "java/", "okhttp", "httpclient", "scanner",
    ]
    TABLET_PATTERNS = ["tablet", "ipad", "kindle", "silk/"]
    MOBILE_PATTERNS = ["mobile", "android", "iphone", "ipod", "windows phone"]

    OS_PATTERNS: List[Tuple[Tuple[str, ...], str]] = [
        (("windows",), "Windows"),
        (("android",), "Android"),
        (("iphone", "ipad", "ipod", "ios"), "iOS"),
        (("mac os", "macos", "macintosh"), "macOS"),
        (("cros",), "ChromeOS"),
        (("linux", "x11"), "Linux"),
    ]

    BROWSER_PATTERNS: List[Tuple[str, str]] = [
        ("edg", "Edge"),
        ("opr/", "Opera"),
        ("opera", "Opera"),
        ("firefox", "Firefox"),
        ("fxios", "Firefox"),
        ("chrome", "Chrome"),
        ("crios", "Chrome"),
        ("safari", "Safari"),
        ("curl", "curl"),
        ("wget", "wget"),
    ]

    def parse(self, user_agent: str) -> Tuple[DeviceType, str, str]:
        """Return (device type, OS, browser)."""
        ua = (user_agent or "").lower().strip()
        if not ua:
            return DeviceType.UNKNOWN, UNKNOWN, UNKNOWN
        return self.device_type(ua), self.os(ua), self.browser(ua)

    def device_type(self, ua: str) -> DeviceType:
        if any(p in ua for p in self.SERVER_PATTERNS):
            return DeviceType.SERVER
        if any(p in ua for p in self.TABLET_PATTERNS):
            return DeviceType.TABLET
        # Android tablets omit "mobile"
        if "android" in ua and "mobile" not in ua:
            return DeviceType.TABLET
        if any(p in ua for p in self.MOBILE_PATTERNS):
            return DeviceType.MOBILE
        return DeviceType.DESKTOP

    def os(self, ua: str) -> str:
        for patterns, name in self.OS_PATTERNS:
            if any(p in ua for p in patterns):
                return name
        return UNKNOWN

    def browser(self, ua: str) -> str:
        for pattern, name in self.BROWSER_PATTERNS:
            if pattern in ua:
                return name
        return UNKNOWN


def network_base(ip_address: str) -> str:
    """The /24 or /64 network address, or the raw string if unparsable."""
    address = parse_ip(ip_address)
    if address is None:
        return ip_address
    prefix = 24 if address.version == 4 else 64
    return str(ipaddress.ip_network(f"{address}/{prefix}", strict=False).network_address)


def generate_fingerprint(user_agent: str, ip_address: str) -> str:
    combined = f"{user_agent}|{network_base(ip_address)}"
    return hashlib.sha256(combined.encode()).hexdigest()[:16]


class DeviceTracker:
    """
    Registry of observed devices and per-user known-device indexes.

    Features:
    - Stable fingerprints per user agent and network
    - Device classification and initial risk scoring
    - Registration, approval and revocation per user
    - Suspicious device listing and age-based cleanup
    """

    def __init__(
        self,
        geo: Optional[GeoLocationService] = None,
        high_risk_location_markers: Optional[List[str]] = None,
        high_risk_location_penalty: float = 0.3,
        clock: Optional[Clock] = None,
    ):
        self.geo = geo or GeoLocationService()
        self.high_risk_location_markers = [
            m.lower() for m in (
                ["tor", "proxy", "vpn"]
                if high_risk_location_markers is None
                else high_risk_location_markers
            )
        ]
        self.high_risk_location_penalty = high_risk_location_penalty
        self._clock = clock or datetime.now
        self._parser = UserAgentParser()

        self._devices: Dict[str, DeviceInfo] = {}  # fingerprint -> DeviceInfo
        self._user_devices: Dict[str, Dict[str, DeviceInfo]] = {}  # user -> {fp: device}
        self._lock = ReadWriteLock()

    # =========================================================================
    # Observation
    # =========================================================================

    async def get_or_create_device(self, user_agent: str, ip_address: str) -> DeviceInfo:
        """Return the device for this UA/network, creating it on first sight."""
        fingerprint = generate_fingerprint(user_agent, ip_address)

        async with self._lock.write():
            device = self._devices.get(fingerprint)
            if device is not None:
                device.last_seen = self._clock()
                device.ip_address = ip_address
                return device

        # Geo lookup may be slow; resolve before taking the lock again
        location = await self.geo.get_location(ip_address)
        device_type, os_name, browser = self._parser.parse(user_agent)
        now = self._clock()

        candidate = DeviceInfo(
            fingerprint=fingerprint,
            user_agent=user_agent,
            ip_address=ip_address,
            first_seen=now,
            last_seen=now,
            location=location,
            device_type=device_type,
            os=os_name,
            browser=browser,
            attributes={"raw_user_agent": user_agent},
        )
        candidate.risk_score = self.calculate_risk_score(candidate)

        async with self._lock.write():
            # Another task may have created it meanwhile
            existing = self._devices.get(fingerprint)
            if existing is not None:
                existing.last_seen = now
                existing.ip_address = ip_address
                return existing
            self._devices[fingerprint] = candidate

        logger.info(
            "New device observed",
            fingerprint=fingerprint,
            device_type=device_type.value,
            os=os_name,
            browser=browser,
            risk_score=round(candidate.risk_score, 3),
        )
        return candidate

    def calculate_risk_score(self, device: DeviceInfo) -> float:
        """Initial risk of a freshly observed device, in [0, 1]."""
        score = 0.3

        if device.device_type == DeviceType.SERVER:
            score += 0.4
        if device.os == UNKNOWN:
            score += 0.2
        if device.browser == UNKNOWN:
            score += 0.2

        if device.location is not None:
            country = device.location.country.lower()
            if any(marker in country for marker in self.high_risk_location_markers):
                score += self.high_risk_location_penalty

        return min(score, 1.0)

    # =========================================================================
    # Per-user Registry
    # =========================================================================

    async def is_known_device(self, user_id: str, fingerprint: str) -> bool:
        async with self._lock.read():
            return fingerprint in self._user_devices.get(user_id, {})

    async def register_device(self, user_id: str, device: DeviceInfo) -> None:
        """Mark a device approved and add it to the user's known devices."""
        async with self._lock.write():
            stored = self._devices.setdefault(device.fingerprint, device)
            stored.approved = True
            self._user_devices.setdefault(user_id, {})[stored.fingerprint] = stored

        logger.info("Device registered", user_id=user_id, fingerprint=device.fingerprint)

    async def approve_device(self, user_id: str, fingerprint: str) -> DeviceInfo:
        """Approve and trust a previously observed device."""
        async with self._lock.write():
            device = self._devices.get(fingerprint)
            if device is None:
                raise DeviceNotFoundError(fingerprint)
            device.approved = True
            device.trusted = True
            self._user_devices.setdefault(user_id, {})[fingerprint] = device

        logger.info("Device approved", user_id=user_id, fingerprint=fingerprint)
        return device

    async def revoke_device(self, user_id: str, fingerprint: str) -> DeviceInfo:
        """Withdraw approval and trust; the next login from it is a new device."""
        async with self._lock.write():
            known = self._user_devices.get(user_id, {})
            device = known.get(fingerprint)
            if device is None:
                raise DeviceNotFoundError(fingerprint)
            device.approved = False
            device.trusted = False
            del known[fingerprint]
            if not known:
                del self._user_devices[user_id]

        logger.warning("Device revoked", user_id=user_id, fingerprint=fingerprint)
        return device

    async def get_device(self, fingerprint: str) -> Optional[DeviceInfo]:
        async with self._lock.read():
            return self._devices.get(fingerprint)

    async def get_user_devices(self, user_id: str) -> List[DeviceInfo]:
        async with self._lock.read():
            return list(self._user_devices.get(user_id, {}).values())

    async def update_device_risk_score(self, fingerprint: str, score: float) -> None:
        async with self._lock.write():
            device = self._devices.get(fingerprint)
            if device is None:
                raise DeviceNotFoundError(fingerprint)
            device.risk_score = max(0.0, min(score, 1.0))

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def get_suspicious_devices(self, threshold: float) -> List[DeviceInfo]:
        """Untrusted devices whose risk score reaches the threshold."""
        async with self._lock.read():
            return [
                d for d in self._devices.values()
                if d.risk_score >= threshold and not d.trusted
            ]

    async def cleanup_old_devices(self, max_age: timedelta) -> int:
        """Forget untrusted devices not seen within max_age."""
        cutoff = self._clock() - max_age

        async with self._lock.write():
            stale = [
                fp for fp, d in self._devices.items()
                if d.last_seen < cutoff and not d.trusted
            ]
            for fp in stale:
                del self._devices[fp]
            if stale:
                stale_set = set(stale)
                for devices in self._user_devices.values():
                    for fp in stale_set.intersection(devices):
                        del devices[fp]

        if stale:
            logger.info("Cleaned up stale devices", count=len(stale))
        return len(stale)

    def get_stats(self) -> Dict[str, int]:
        return {
            "devices": len(self._devices),
            "trusted": sum(1 for d in self._devices.values() if d.trusted),
            "users": len(self._user_devices),
        }
