"""
Geo enrichment implementation.

Resolution order:
1. Origin hints (authoritative, written back to the cache)
2. IP-keyed cache
3. Unknown record (country_code "XX")
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from .models import UNKNOWN_GEO, ConnectionType, GeoRecord, GeoSource, OriginHints
from .ports import GeoCachePort, TimePort

logger = logging.getLogger(__name__)

# --- Static lookups ---

COUNTRY_NAMES: dict[str, str] = {
    "US": "United States",
    "CA": "Canada",
    "MX": "Mexico",
    "BR": "Brazil",
    "AR": "Argentina",
    "CL": "Chile",
    "CO": "Colombia",
    "PE": "Peru",
    "VE": "Venezuela",
    "GB": "United Kingdom",
    "IE": "Ireland",
    "FR": "France",
    "DE": "Germany",
    "IT": "Italy",
    "ES": "Spain",
    "PT": "Portugal",
    "NL": "Netherlands",
    "BE": "Belgium",
    "CH": "Switzerland",
    "AT": "Austria",
    "SE": "Sweden",
    "NO": "Norway",
    "DK": "Denmark",
    "FI": "Finland",
    "IS": "Iceland",
    "PL": "Poland",
    "CZ": "Czech Republic",
    "SK": "Slovakia",
    "HU": "Hungary",
    "RO": "Romania",
    "BG": "Bulgaria",
    "GR": "Greece",
    "HR": "Croatia",
    "RS": "Serbia",
    "SI": "Slovenia",
    "UA": "Ukraine",
    "BY": "Belarus",
    "RU": "Russia",
    "LT": "Lithuania",
    "LV": "Latvia",
    "EE": "Estonia",
    "TR": "Turkey",
    "IL": "Israel",
    "SA": "Saudi Arabia",
    "AE": "United Arab Emirates",
    "QA": "Qatar",
    "KW": "Kuwait",
    "EG": "Egypt",
    "MA": "Morocco",
    "NG": "Nigeria",
    "KE": "Kenya",
    "GH": "Ghana",
    "ZA": "South Africa",
    "ET": "Ethiopia",
    "CN": "China",
    "JP": "Japan",
    "KR": "South Korea",
    "TW": "Taiwan",
    "HK": "Hong Kong",
    "SG": "Singapore",
    "MY": "Malaysia",
    "TH": "Thailand",
    "VN": "Vietnam",
    "PH": "Philippines",
    "ID": "Indonesia",
    "IN": "India",
    "PK": "Pakistan",
    "BD": "Bangladesh",
    "LK": "Sri Lanka",
    "NP": "Nepal",
    "AU": "Australia",
    "NZ": "New Zealand",
}

CONTINENT_NAMES: dict[str, str] = {
    "AF": "Africa",
    "AN": "Antarctica",
    "AS": "Asia",
    "EU": "Europe",
    "NA": "North America",
    "OC": "Oceania",
    "SA": "South America",
}


# --- Configuration ---


@dataclass(frozen=True)
class GeoConfig:
    """Geo enrichment configuration."""

    cache_ttl_seconds: int = 3600
    cloud_providers: tuple[str, ...] = (
        "amazon",
        "google",
        "microsoft",
        "digitalocean",
        "linode",
        "vultr",
        "ovh",
        "alibaba",
    )
    mobile_carriers: tuple[str, ...] = (
        "verizon",
        "at&t",
        "sprint",
        "t-mobile",
        "vodafone",
        "orange",
        "telefonica",
        "china mobile",
        "airtel",
    )
    vpn_providers: tuple[str, ...] = (
        "nordvpn",
        "expressvpn",
        "surfshark",
        "cyberghost",
        "private internet access",
        "protonvpn",
        "mullvad",
        "windscribe",
    )
    proxy_providers: tuple[str, ...] = ("proxy", "anonymizer", "hide my ass", "hidemyass")


DEFAULT_CONFIG = GeoConfig()


# --- Pure helpers ---


def classify_connection_type(
    isp: str | None,
    config: GeoConfig = DEFAULT_CONFIG,
) -> ConnectionType | None:
    """Coarse connection type from the ISP name."""
    if not isp:
        return None
    name = isp.lower()
    if any(provider in name for provider in config.cloud_providers):
        return "datacenter"
    if any(carrier in name for carrier in config.mobile_carriers):
        return "mobile"
    return "broadband"


def estimate_accuracy_radius(
    country: str | None,
    region: str | None,
    city: str | None,
) -> int | None:
    """Accuracy radius in km based on the most precise level known."""
    if city:
        return 25
    if region:
        return 100
    if country:
        return 500
    return None


def detect_vpn_proxy(
    isp: str | None,
    config: GeoConfig = DEFAULT_CONFIG,
) -> tuple[bool, bool]:
    """Return (is_vpn, is_proxy) from the ISP / AS organization name."""
    if not isp:
        return False, False
    name = isp.lower()
    is_vpn = any(p in name for p in config.vpn_providers) or "vpn" in name
    is_proxy = any(p in name for p in config.proxy_providers)
    return is_vpn, is_proxy


def build_record_from_hints(
    hints: OriginHints,
    config: GeoConfig = DEFAULT_CONFIG,
) -> GeoRecord:
    """Build a geo record from edge-supplied hints."""
    country = (hints.country or "XX").upper()
    continent = hints.continent.upper() if hints.continent else None
    return GeoRecord(
        country_code=country,
        country_name=COUNTRY_NAMES.get(country),
        region_code=hints.region_code,
        region_name=hints.region,
        city=hints.city,
        postal_code=hints.postal_code,
        latitude=hints.latitude,
        longitude=hints.longitude,
        timezone=hints.timezone,
        isp=hints.as_organization,
        as_number=hints.asn,
        continent_code=continent,
        continent_name=CONTINENT_NAMES.get(continent) if continent else None,
        metro_code=hints.metro_code,
        is_eu=hints.is_eu_country,
        connection_type=classify_connection_type(hints.as_organization, config),
        accuracy_radius=estimate_accuracy_radius(
            hints.country, hints.region or hints.region_code, hints.city
        ),
    )


def cache_key(ip_address: str) -> str:
    return f"geo:{ip_address}"


# --- In-Memory Cache ---


class InMemoryGeoCache:
    """In-memory TTL cache for testing/dev."""

    def __init__(self, time_port: TimePort | None = None) -> None:
        self._entries: dict[str, tuple[dict[str, Any], datetime]] = {}
        self._lock = threading.Lock()
        self._time_port = time_port

    def _now(self) -> datetime:
        if self._time_port:
            return self._time_port.now_utc()
        return datetime.now(UTC)

    def get(self, key: str) -> dict[str, Any] | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= self._now():
                del self._entries[key]
                return None
            return dict(value)

    def set(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None:
        with self._lock:
            expires_at = self._now() + timedelta(seconds=ttl_seconds)
            self._entries[key] = (dict(value), expires_at)

    def purge_expired(self, now: datetime) -> int:
        with self._lock:
            expired = [k for k, (_, exp) in self._entries.items() if exp <= now]
            for key in expired:
                del self._entries[key]
            return len(expired)


# --- Service ---


class GeoEnrichmentService:
    """
    Resolves an IP address into a geo record.

    Never raises: cache problems degrade to the unknown record.
    """

    def __init__(
        self,
        cache: GeoCachePort | None = None,
        config: GeoConfig | None = None,
    ) -> None:
        self._cache = cache
        self._config = config or DEFAULT_CONFIG

    @property
    def config(self) -> GeoConfig:
        return self._config

    def resolve(
        self,
        ip_address: str | None,
        hints: OriginHints | None = None,
    ) -> tuple[GeoRecord, GeoSource]:
        """Resolve geo. Returns (record, source)."""
        if hints is not None and hints.has_geo():
            record = build_record_from_hints(hints, self._config)
            self._write_back(ip_address, record)
            return record, "hints"

        if ip_address and self._cache is not None:
            try:
                cached = self._cache.get(cache_key(ip_address))
            except Exception as e:
                logger.warning("Geo cache read failed for %s: %s", ip_address, e)
                cached = None
            if cached:
                return GeoRecord.from_dict(cached), "cache"

        return UNKNOWN_GEO, "unknown"

    def _write_back(self, ip_address: str | None, record: GeoRecord) -> None:
        if not ip_address or self._cache is None:
            return
        try:
            self._cache.set(
                cache_key(ip_address),
                record.to_dict(),
                self._config.cache_ttl_seconds,
            )
        except Exception as e:
            logger.warning("Geo cache write failed for %s: %s", ip_address, e)

    def detect_vpn_proxy(self, isp: str | None) -> tuple[bool, bool]:
        return detect_vpn_proxy(isp, self._config)


def create_geo_service(
    cache: GeoCachePort | None = None,
    config: GeoConfig | None = None,
) -> GeoEnrichmentService:
    """Factory for the geo enrichment service."""
    return GeoEnrichmentService(cache=cache, config=config)
