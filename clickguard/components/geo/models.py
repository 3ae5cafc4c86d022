"""
Geo component input/output models.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any, Literal

from clickguard.core.request import OriginHints

ConnectionType = Literal["datacenter", "mobile", "broadband"]
GeoSource = Literal["hints", "cache", "unknown"]

__all__ = [
    "ConnectionType",
    "GeoRecord",
    "GeoSource",
    "OriginHints",
    "ResolveGeoInput",
    "ResolveGeoOutput",
    "UNKNOWN_GEO",
]


@dataclass(frozen=True)
class GeoRecord:
    """Resolved geography for one IP address."""

    country_code: str = "XX"
    country_name: str | None = None
    region_code: str | None = None
    region_name: str | None = None
    city: str | None = None
    postal_code: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    timezone: str | None = None
    isp: str | None = None
    as_number: int | None = None
    continent_code: str | None = None
    continent_name: str | None = None
    metro_code: str | None = None
    is_eu: bool | None = None
    connection_type: ConnectionType | None = None
    accuracy_radius: int | None = None

    @property
    def is_unknown(self) -> bool:
        return self.country_code == "XX"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GeoRecord:
        """Build from a cached dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


UNKNOWN_GEO = GeoRecord()


@dataclass(frozen=True)
class ResolveGeoInput:
    """Input for resolving an IP address."""

    ip_address: str | None
    hints: OriginHints | None = None


@dataclass(frozen=True)
class ResolveGeoOutput:
    """Output of geo resolution."""

    record: GeoRecord
    source: GeoSource
    errors: list[str]
    success: bool
