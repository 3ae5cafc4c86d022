"""
Request context handed to the core alongside each raw event.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class OriginHints:
    """
    Network/geo hints supplied by the edge network in front of the service.

    All fields are optional; `threat_score` and `verified_bot` are consumed
    by fraud and bot scoring rather than geo resolution.
    """

    country: str | None = None
    region: str | None = None
    region_code: str | None = None
    city: str | None = None
    postal_code: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    timezone: str | None = None
    as_organization: str | None = None
    asn: int | None = None
    continent: str | None = None
    metro_code: str | None = None
    is_eu_country: bool | None = None
    threat_score: int | None = None
    verified_bot: bool = False
    # Edge marked the client as a Tor exit node
    tor_exit: bool = False

    def has_geo(self) -> bool:
        """True if any geographic or network field is present."""
        return any(
            v is not None
            for v in (
                self.country,
                self.region,
                self.city,
                self.latitude,
                self.longitude,
                self.as_organization,
                self.asn,
            )
        )


@dataclass(frozen=True)
class RequestContext:
    """What the edge and transport layer know about the request."""

    hints: OriginHints = field(default_factory=OriginHints)
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def threat_score(self) -> int:
        return self.hints.threat_score or 0

    @property
    def verified_bot(self) -> bool:
        return self.hints.verified_bot

    @property
    def tor_exit(self) -> bool:
        return self.hints.tor_exit

    @property
    def asn(self) -> int | None:
        return self.hints.asn
