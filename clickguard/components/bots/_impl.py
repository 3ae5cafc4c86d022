"""
Bot detector implementation.

Five independent boolean checks; any positive check marks the event as a
bot. Confidence is the weighted sum of positive checks as a percentage.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from clickguard.core.entities import Event
from clickguard.core.request import RequestContext
from clickguard.core.timewindows import ensure_utc

from .models import BotChecks, BotVerdict
from .ports import SessionHistoryPort

logger = logging.getLogger(__name__)


# --- Configuration ---


@dataclass(frozen=True)
class BotWeightTable:
    """Confidence weight per check."""

    user_agent: float = 0.3
    origin_verified: float = 0.3
    behavior: float = 0.2
    honeypot: float = 0.1
    fingerprint: float = 0.1


@dataclass(frozen=True)
class BotConfig:
    """Bot detection configuration."""

    weights: BotWeightTable = field(default_factory=BotWeightTable)
    honeypot_field: str = "honeypot"
    interval_sample_size: int = 10

    user_agent_patterns: tuple[str, ...] = (
        "bot",
        "crawler",
        "spider",
        "scraper",
        "facebookexternalhit",
        "whatsapp",
        "telegram",
        "slackbot",
        "discord",
        "curl",
        "wget",
        "python",
        "java",
        "perl",
        "ruby",
        "go-http-client",
        "axios",
        "node-fetch",
    )

    crawler_patterns: tuple[str, ...] = (
        "googlebot",
        "bingbot",
        "yandexbot",
        "baiduspider",
        "duckduckbot",
        "slurp",
        "facebookexternalhit",
        "linkedinbot",
        "whatsapp",
        "telegram",
    )

    headless_markers: tuple[str, ...] = ("HeadlessChrome",)


DEFAULT_CONFIG = BotConfig()


# --- Checks ---


def matches_bot_signature(user_agent: str | None, config: BotConfig = DEFAULT_CONFIG) -> bool:
    """Signature match; a missing user agent counts as a match."""
    if not user_agent:
        return True
    ua_lower = user_agent.lower()
    return any(pattern in ua_lower for pattern in config.user_agent_patterns)


def is_known_crawler(user_agent: str | None, config: BotConfig = DEFAULT_CONFIG) -> bool:
    """Positive match against the crawler allowlist only."""
    if not user_agent:
        return False
    ua_lower = user_agent.lower()
    return any(pattern in ua_lower for pattern in config.crawler_patterns)


def has_uniform_intervals(timestamps: list[datetime]) -> bool:
    """
    True if at least three timestamps are separated by identical gaps.

    Gaps are compared at millisecond precision.
    """
    if len(timestamps) < 3:
        return False
    ordered = sorted(ensure_utc(ts) for ts in timestamps)
    gaps = {
        round((b - a).total_seconds() * 1000)
        for a, b in zip(ordered, ordered[1:], strict=False)
    }
    return len(gaps) == 1


def has_behavior_anomaly(event: Event, session_timestamps: list[datetime]) -> bool:
    # Zero dwell with clicks
    if event.time_on_page == 0 and (event.clicks_count or 0) > 0:
        return True
    # Full scroll faster than a human can read
    if (
        event.scroll_depth is not None
        and event.scroll_depth >= 100
        and event.time_on_page is not None
        and event.time_on_page < 2
    ):
        return True
    return has_uniform_intervals(session_timestamps)


def has_honeypot_value(event: Event, config: BotConfig = DEFAULT_CONFIG) -> bool:
    value = event.custom_params.get(config.honeypot_field)
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    return bool(value)


def has_fingerprint_anomaly(event: Event, config: BotConfig = DEFAULT_CONFIG) -> bool:
    if not event.screen_width or not event.screen_height:
        return True
    ua = event.user_agent or ""
    return any(marker in ua for marker in config.headless_markers)


def confidence_from_checks(checks: BotChecks, weights: BotWeightTable) -> int:
    """Weighted sum of positive checks as a 0-100 percentage."""
    total = 0.0
    for name in ("user_agent", "origin_verified", "behavior", "honeypot", "fingerprint"):
        if getattr(checks, name):
            total += getattr(weights, name)
    return max(0, min(100, round(total * 100)))


# --- Service ---


class BotDetector:
    """Heuristic bot classifier."""

    def __init__(
        self,
        history: SessionHistoryPort | None = None,
        config: BotConfig | None = None,
    ) -> None:
        self._history = history
        self._config = config or DEFAULT_CONFIG

    def _session_timestamps(self, event: Event) -> list[datetime]:
        """Timestamps of the session's most recent events, current included."""
        size = self._config.interval_sample_size
        prior: list[datetime] = []
        if self._history is not None:
            try:
                prior = [
                    e.timestamp
                    for e in self._history.list_session_events(
                        event.session_id, limit=size
                    )
                    if e.id != event.id
                ]
            except Exception as e:
                logger.warning(
                    "Session history unavailable for bot check on %s: %s",
                    event.session_id,
                    e,
                )
                return []
        return (prior + [event.timestamp])[-size:]

    def detect(self, event: Event, context: RequestContext | None = None) -> BotVerdict:
        context = context or RequestContext()
        checks = BotChecks(
            user_agent=matches_bot_signature(event.user_agent, self._config),
            origin_verified=context.verified_bot,
            behavior=has_behavior_anomaly(event, self._session_timestamps(event)),
            honeypot=has_honeypot_value(event, self._config),
            fingerprint=has_fingerprint_anomaly(event, self._config),
        )
        return BotVerdict(
            is_bot=checks.any(),
            is_crawler=is_known_crawler(event.user_agent, self._config),
            confidence=confidence_from_checks(checks, self._config.weights),
            checks=checks,
        )


def create_bot_detector(
    history: SessionHistoryPort | None = None,
    config: BotConfig | None = None,
) -> BotDetector:
    """Factory for the bot detector."""
    return BotDetector(history=history, config=config)
