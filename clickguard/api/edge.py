"""
Request context from edge-network headers.

Visitor location headers follow Cloudflare's managed transform names; the
network and bot-verification values are expected under `x-edge-*` headers
set by the edge worker in front of the service.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from clickguard.core.request import OriginHints, RequestContext

logger = logging.getLogger(__name__)

TRUE_VALUES = frozenset({"1", "true", "yes"})

# Cloudflare country pseudo-codes
UNKNOWN_COUNTRY = "XX"
TOR_COUNTRY = "T1"


def _text(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name, "").strip()
    if not value or (
        name == "cf-ipcountry" and value.upper() in (UNKNOWN_COUNTRY, TOR_COUNTRY)
    ):
        return None
    return value


def _int(headers: Mapping[str, str], name: str) -> int | None:
    raw = _text(headers, name)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s header: %r", name, raw)
        return None


def _float(headers: Mapping[str, str], name: str) -> float | None:
    raw = _text(headers, name)
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s header: %r", name, raw)
        return None


def hints_from_headers(headers: Mapping[str, str]) -> OriginHints:
    """Build origin hints from lower-cased request headers."""
    return OriginHints(
        country=_text(headers, "cf-ipcountry"),
        region=_text(headers, "cf-region"),
        region_code=_text(headers, "cf-region-code"),
        city=_text(headers, "cf-ipcity"),
        postal_code=_text(headers, "cf-postal-code"),
        latitude=_float(headers, "cf-iplatitude"),
        longitude=_float(headers, "cf-iplongitude"),
        timezone=_text(headers, "cf-timezone"),
        continent=_text(headers, "cf-ipcontinent"),
        metro_code=_text(headers, "cf-metro-code"),
        as_organization=_text(headers, "x-edge-as-organization"),
        asn=_int(headers, "x-edge-asn"),
        threat_score=_int(headers, "x-edge-threat-score"),
        verified_bot=headers.get("x-edge-verified-bot", "").strip().lower() in TRUE_VALUES,
        tor_exit=headers.get("cf-ipcountry", "").strip().upper() == TOR_COUNTRY,
    )


def context_from_headers(headers: Mapping[str, str]) -> RequestContext:
    lowered = {k.lower(): v for k, v in headers.items()}
    return RequestContext(hints=hints_from_headers(lowered), headers=lowered)
