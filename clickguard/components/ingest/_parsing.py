"""
Payload parsing helpers for ingestion.

- User agent -> device type, browser, OS
- Referrer URL -> domain, traffic type, search engine and keyword
- UTM parameters from the payload or the clicked URL
- Client IP from edge/proxy headers
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qs, urlparse

from clickguard.core.entities import DeviceType, ReferrerType

# --- Domain tables ---

SEARCH_ENGINES: tuple[tuple[str, str], ...] = (
    ("google.", "google"),
    ("bing.", "bing"),
    ("search.yahoo.", "yahoo"),
    ("duckduckgo.", "duckduckgo"),
    ("baidu.", "baidu"),
    ("yandex.", "yandex"),
    ("ecosia.", "ecosia"),
)

SOCIAL_DOMAINS: tuple[str, ...] = (
    "facebook.",
    "fb.",
    "twitter.",
    "x.com",
    "t.co",
    "linkedin.",
    "lnkd.in",
    "instagram.",
    "pinterest.",
    "reddit.",
    "youtube.",
    "youtu.be",
    "tiktok.",
)

EMAIL_DOMAINS: tuple[str, ...] = (
    "mail.",
    "outlook.",
    "gmail.",
    "protonmail.",
    "webmail.",
)

SEARCH_QUERY_KEYS: tuple[str, ...] = ("q", "query", "p", "text", "wd")

UTM_KEYS: tuple[str, ...] = ("source", "medium", "campaign", "term", "content")


# --- User agent ---


@dataclass(frozen=True)
class DeviceInfo:
    device_type: DeviceType = "desktop"
    browser_name: str | None = None
    os_name: str | None = None


def parse_user_agent(user_agent: str | None) -> DeviceInfo:
    """Heuristic device/browser/OS classification."""
    if not user_agent:
        return DeviceInfo()

    ua = user_agent.lower()

    if "ipad" in ua or "tablet" in ua or ("android" in ua and "mobile" not in ua):
        device: DeviceType = "tablet"
    elif "mobi" in ua or "iphone" in ua or "ipod" in ua:
        device = "mobile"
    else:
        device = "desktop"

    if "edg/" in ua:
        browser = "Edge"
    elif "opr/" in ua or "opera" in ua:
        browser = "Opera"
    elif "firefox/" in ua or "fxios/" in ua:
        browser = "Firefox"
    elif "chrome/" in ua or "crios/" in ua or "chromium/" in ua:
        browser = "Chrome"
    elif "safari/" in ua:
        browser = "Safari"
    else:
        browser = None

    if "iphone" in ua or "ipad" in ua or "ipod" in ua:
        os_name = "iOS"
    elif "android" in ua:
        os_name = "Android"
    elif "windows" in ua:
        os_name = "Windows"
    elif "cros" in ua:
        os_name = "Chrome OS"
    elif "mac os x" in ua or "macintosh" in ua:
        os_name = "macOS"
    elif "linux" in ua:
        os_name = "Linux"
    else:
        os_name = None

    return DeviceInfo(device_type=device, browser_name=browser, os_name=os_name)


# --- Referrer ---


@dataclass(frozen=True)
class ReferrerInfo:
    url: str | None = None
    domain: str | None = None
    referrer_type: ReferrerType = "direct"
    search_engine: str | None = None
    search_keyword: str | None = None


def parse_domain(url: str | None) -> str | None:
    """Lowercased hostname without a leading www."""
    if not url:
        return None
    try:
        host = urlparse(url).hostname
    except ValueError:
        return None
    if not host:
        return None
    host = host.lower()
    return host[4:] if host.startswith("www.") else host


def domain_matches(domain: str, pattern: str) -> bool:
    """
    Label-aware match.

    "google." matches google.com and news.google.co.uk; "t.co" matches
    t.co only, not microsoft.com.
    """
    if pattern.endswith("."):
        return domain.startswith(pattern) or f".{pattern}" in domain
    return domain == pattern or domain.endswith(f".{pattern}")


def parse_referrer(url: str | None, utm_medium: str | None = None) -> ReferrerInfo:
    """Classify a referrer URL into a traffic type."""
    medium = (utm_medium or "").lower()
    if not url:
        return ReferrerInfo(referrer_type="email" if medium == "email" else "direct")

    domain = parse_domain(url)
    if not domain:
        return ReferrerInfo(url=url, referrer_type="direct")

    if medium == "email" or any(domain_matches(domain, p) for p in EMAIL_DOMAINS):
        return ReferrerInfo(url=url, domain=domain, referrer_type="email")

    for pattern, engine in SEARCH_ENGINES:
        if domain_matches(domain, pattern):
            return ReferrerInfo(
                url=url,
                domain=domain,
                referrer_type="search",
                search_engine=engine,
                search_keyword=extract_search_keyword(url),
            )

    if any(domain_matches(domain, p) for p in SOCIAL_DOMAINS):
        return ReferrerInfo(url=url, domain=domain, referrer_type="social")

    return ReferrerInfo(url=url, domain=domain, referrer_type="referral")


def extract_search_keyword(url: str) -> str | None:
    try:
        query = parse_qs(urlparse(url).query)
    except ValueError:
        return None
    for key in SEARCH_QUERY_KEYS:
        values = query.get(key)
        if values and values[0].strip():
            return values[0].strip().lower()
    return None


# --- UTM ---


def extract_utm_params(payload: dict[str, Any], clicked_url: str | None) -> dict[str, str | None]:
    """
    UTM fields from the payload, falling back to the clicked URL query.

    Values are trimmed and lowercased.
    """
    from_url: dict[str, list[str]] = {}
    if clicked_url:
        try:
            from_url = parse_qs(urlparse(clicked_url).query)
        except ValueError:
            from_url = {}

    result: dict[str, str | None] = {}
    for key in UTM_KEYS:
        value = payload.get(f"utm_{key}")
        if not value and from_url.get(f"utm_{key}"):
            value = from_url[f"utm_{key}"][0]
        if isinstance(value, str) and value.strip():
            result[f"utm_{key}"] = value.strip().lower()
        else:
            result[f"utm_{key}"] = None
    return result


# --- Client IP ---


def extract_client_ip(headers: dict[str, str], fallback: str | None = None) -> str | None:
    """Client IP from CF-Connecting-IP, then the first X-Forwarded-For hop."""
    lowered = {k.lower(): v for k, v in headers.items()}
    direct = lowered.get("cf-connecting-ip", "").strip()
    if direct:
        return direct
    forwarded = lowered.get("x-forwarded-for", "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return fallback
