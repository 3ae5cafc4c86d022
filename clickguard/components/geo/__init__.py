"""
Geo component - IP to geography enrichment.
"""

from ._impl import (
    COUNTRY_NAMES,
    DEFAULT_CONFIG,
    GeoConfig,
    GeoEnrichmentService,
    InMemoryGeoCache,
    build_record_from_hints,
    classify_connection_type,
    create_geo_service,
    detect_vpn_proxy,
    estimate_accuracy_radius,
)
from .component import build_geo_config, run_resolve
from .models import (
    UNKNOWN_GEO,
    GeoRecord,
    OriginHints,
    ResolveGeoInput,
    ResolveGeoOutput,
)
from .ports import GeoCachePort, TimePort

__all__ = [
    # Entry points
    "build_geo_config",
    "run_resolve",
    # Models
    "GeoRecord",
    "OriginHints",
    "ResolveGeoInput",
    "ResolveGeoOutput",
    "UNKNOWN_GEO",
    # Ports
    "GeoCachePort",
    "TimePort",
    # Implementation
    "COUNTRY_NAMES",
    "DEFAULT_CONFIG",
    "GeoConfig",
    "GeoEnrichmentService",
    "InMemoryGeoCache",
    "build_record_from_hints",
    "classify_connection_type",
    "create_geo_service",
    "detect_vpn_proxy",
    "estimate_accuracy_radius",
]
