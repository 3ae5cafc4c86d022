"""
Geo component - IP to geography enrichment.

Resolves an incoming request's network origin into country/region/city,
timezone, ISP and connection type, backed by an IP-keyed TTL cache.

Invariants:
- I1: Origin hints are authoritative and always written back to the cache
- I2: Unresolvable addresses yield country_code "XX" with all else null
- I3: Never raises to the caller; cache failures degrade to unknown
"""

from __future__ import annotations

from clickguard.rules.models import GeoRules

from ._impl import GeoConfig, GeoEnrichmentService
from .models import ResolveGeoInput, ResolveGeoOutput
from .ports import GeoCachePort


def build_geo_config(rules: GeoRules | None) -> GeoConfig:
    """Build geo config from the rules section."""
    if rules is None:
        return GeoConfig()
    return GeoConfig(
        cache_ttl_seconds=rules.cache_ttl_seconds,
        cloud_providers=tuple(p.lower() for p in rules.cloud_providers),
        mobile_carriers=tuple(c.lower() for c in rules.mobile_carriers),
        vpn_providers=tuple(p.lower() for p in rules.vpn_providers),
        proxy_providers=tuple(p.lower() for p in rules.proxy_providers),
    )


def run_resolve(
    inp: ResolveGeoInput,
    *,
    cache: GeoCachePort | None = None,
    rules: GeoRules | None = None,
) -> ResolveGeoOutput:
    """
    Resolve an IP address into a geo record.

    Args:
        inp: Input containing the IP address and optional origin hints.
        cache: Optional TTL cache port.
        rules: Optional geo rules section.

    Returns:
        ResolveGeoOutput with the record and where it came from.
    """
    service = GeoEnrichmentService(cache=cache, config=build_geo_config(rules))
    record, source = service.resolve(inp.ip_address, inp.hints)
    return ResolveGeoOutput(record=record, source=source, errors=[], success=True)
