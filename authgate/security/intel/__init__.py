"""Location and threat intelligence lookups."""

from authgate.security.intel.geo import GeoLocationService, GeoResolver
from authgate.security.intel.threat import ThreatIntelligence

__all__ = ["GeoLocationService", "GeoResolver", "ThreatIntelligence"]
