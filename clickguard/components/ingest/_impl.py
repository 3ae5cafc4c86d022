"""
Ingestion pipeline implementation.

validate -> parse -> geo -> rate limits -> fraud -> bots -> enriched Event

Every enrichment and scoring stage degrades on its own; only payload
validation can reject an event.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from clickguard.components.bots import BotDetector
from clickguard.components.fraud import FraudScorer
from clickguard.components.fraud.ports import EventHistoryPort
from clickguard.components.geo import GeoEnrichmentService
from clickguard.components.ratelimit import RateLimitDecision, RateLimitService
from clickguard.core.entities import Event, SessionRecord
from clickguard.core.request import RequestContext
from clickguard.core.timewindows import ensure_utc

from ._parsing import (
    UTM_KEYS,
    extract_client_ip,
    extract_utm_params,
    parse_referrer,
    parse_user_agent,
)
from .models import IngestError, IngestOutput
from .ports import EventWriterPort, SessionRepoPort, TimePort

logger = logging.getLogger(__name__)


# --- Configuration ---


@dataclass(frozen=True)
class IngestionConfig:
    """Payload validation limits."""

    allowed_event_types: frozenset[str] = frozenset({"pageview", "click", "conversion", "custom"})
    max_id_length: int = 128
    max_url_length: int = 2048
    max_user_agent_length: int = 1024
    max_custom_params: int = 50


DEFAULT_CONFIG = IngestionConfig()

INT_FIELDS = ("screen_width", "screen_height", "viewport_width", "viewport_height", "clicks_count")
FLOAT_FIELDS = (
    "time_on_page",
    "scroll_depth",
    "page_load_time",
    "dom_interactive_time",
    "response_time",
    "conversion_value",
)
URL_FIELDS = ("referrer", "clicked_url")
TEXT_FIELDS = ("user_agent", "ip_address") + tuple(f"utm_{key}" for key in UTM_KEYS)


# --- Validation ---


def validate_identifier(
    payload: dict[str, Any],
    field_name: str,
    config: IngestionConfig = DEFAULT_CONFIG,
) -> IngestError | None:
    value = payload.get(field_name)
    if not isinstance(value, str) or not value.strip():
        return IngestError(
            code="required",
            message=f"{field_name} is required",
            field_name=field_name,
        )
    if len(value) > config.max_id_length:
        return IngestError(
            code="too_long",
            message=f"{field_name} exceeds {config.max_id_length} characters",
            field_name=field_name,
        )
    return None


def validate_event_type(
    value: Any,
    config: IngestionConfig = DEFAULT_CONFIG,
) -> IngestError | None:
    if value is None:
        return None
    if not isinstance(value, str) or value not in config.allowed_event_types:
        return IngestError(
            code="invalid_event_type",
            message=f"Event type '{value}' is not allowed",
            field_name="event_type",
        )
    return None


def validate_urls(
    payload: dict[str, Any],
    config: IngestionConfig = DEFAULT_CONFIG,
) -> list[IngestError]:
    errors = []
    for name in URL_FIELDS:
        value = payload.get(name)
        if value is None:
            continue
        if not isinstance(value, str) or len(value) > config.max_url_length:
            errors.append(
                IngestError(
                    code="invalid_url",
                    message=f"{name} must be a string of at most {config.max_url_length} characters",
                    field_name=name,
                )
            )
    return errors


def validate_text_fields(payload: dict[str, Any]) -> list[IngestError]:
    """Optional free-text fields must be strings when present."""
    return [
        IngestError("invalid_type", f"{name} must be a string", name)
        for name in TEXT_FIELDS
        if payload.get(name) is not None and not isinstance(payload[name], str)
    ]


def coerce_numbers(payload: dict[str, Any]) -> tuple[dict[str, Any], list[IngestError]]:
    """Coerce numeric fields; empty strings become None."""
    values: dict[str, Any] = {}
    errors: list[IngestError] = []
    for name in INT_FIELDS + FLOAT_FIELDS:
        raw = payload.get(name)
        if raw is None or raw == "":
            values[name] = None
            continue
        if isinstance(raw, bool):
            errors.append(IngestError("invalid_number", f"{name} must be numeric", name))
            continue
        try:
            values[name] = int(raw) if name in INT_FIELDS else float(raw)
        except (TypeError, ValueError):
            errors.append(IngestError("invalid_number", f"{name} must be numeric", name))
    return values, errors


def validate_custom_params(
    payload: dict[str, Any],
    config: IngestionConfig = DEFAULT_CONFIG,
) -> IngestError | None:
    params = payload.get("custom_params")
    if params is None:
        return None
    if not isinstance(params, dict):
        return IngestError("invalid_custom_params", "custom_params must be an object", "custom_params")
    if len(params) > config.max_custom_params:
        return IngestError(
            "too_many_custom_params",
            f"custom_params allows at most {config.max_custom_params} keys",
            "custom_params",
        )
    return None


def validate_payload(
    payload: dict[str, Any],
    config: IngestionConfig = DEFAULT_CONFIG,
) -> tuple[dict[str, Any], list[IngestError]]:
    """Validate a raw payload. Returns (coerced numbers, errors)."""
    errors: list[IngestError] = []
    for name in ("project_id", "session_id"):
        err = validate_identifier(payload, name, config)
        if err:
            errors.append(err)

    err = validate_event_type(payload.get("event_type"), config)
    if err:
        errors.append(err)

    errors.extend(validate_urls(payload, config))
    errors.extend(validate_text_fields(payload))

    numbers, number_errors = coerce_numbers(payload)
    errors.extend(number_errors)

    err = validate_custom_params(payload, config)
    if err:
        errors.append(err)

    return numbers, errors


# --- Pipeline ---


class IngestionPipeline:
    """Enriches and scores raw events."""

    def __init__(
        self,
        geo: GeoEnrichmentService,
        rate_limiter: RateLimitService,
        fraud: FraudScorer,
        bots: BotDetector,
        time_port: TimePort | None = None,
        config: IngestionConfig | None = None,
    ) -> None:
        self._geo = geo
        self._rate_limiter = rate_limiter
        self._fraud = fraud
        self._bots = bots
        self._time = time_port
        self._config = config or DEFAULT_CONFIG

    def _now(self) -> datetime:
        if self._time:
            return ensure_utc(self._time.now_utc())
        return datetime.now(UTC)

    def ingest(
        self,
        payload: dict[str, Any],
        context: RequestContext | None = None,
        remote_addr: str | None = None,
    ) -> IngestOutput:
        context = context or RequestContext()
        numbers, errors = validate_payload(payload, self._config)
        if errors:
            return IngestOutput(event=None, errors=errors, success=False)

        ip = extract_client_ip(context.headers, payload.get("ip_address") or remote_addr)
        user_agent = payload.get("user_agent") or context.headers.get("user-agent")
        if user_agent and len(user_agent) > self._config.max_user_agent_length:
            user_agent = user_agent[: self._config.max_user_agent_length]

        device = parse_user_agent(user_agent)
        clicked_url = payload.get("clicked_url")
        utm = extract_utm_params(payload, clicked_url)
        referrer = parse_referrer(payload.get("referrer"), utm["utm_medium"])
        geo, geo_source = self._geo.resolve(ip, context.hints)

        project_id = payload["project_id"].strip()
        session_id = payload["session_id"].strip()
        decisions = self._check_rate_limits(ip, session_id, project_id)

        event = Event(
            project_id=project_id,
            session_id=session_id,
            ip_address=ip,
            timestamp=self._now(),
            event_type=payload.get("event_type") or "pageview",
            user_agent=user_agent,
            device_type=device.device_type,
            browser_name=device.browser_name,
            os_name=device.os_name,
            referrer_url=referrer.url,
            referrer_domain=referrer.domain,
            referrer_type=referrer.referrer_type,
            search_engine=referrer.search_engine,
            search_keyword=referrer.search_keyword,
            clicked_url=clicked_url,
            country_code=geo.country_code,
            country_name=geo.country_name,
            region_code=geo.region_code,
            city=geo.city,
            timezone=geo.timezone,
            isp=geo.isp,
            as_number=geo.as_number,
            custom_params=dict(payload.get("custom_params") or {}),
            rate_limited=any(d.exceeded for d in decisions),
            **utm,
            **numbers,
        )

        assessment = self._fraud.score(event, context)
        verdict = self._bots.detect(event, context)

        scored = event.model_copy(
            update={
                "fraud_score": assessment.score,
                "threat_level": assessment.threat_level,
                "is_bot": verdict.is_bot,
                "is_crawler": verdict.is_crawler,
                "bot_confidence": verdict.confidence,
            }
        )

        return IngestOutput(
            event=scored,
            fraud=assessment,
            bot=verdict,
            geo_source=geo_source,
            rate_limits=decisions,
            errors=[],
            success=True,
        )

    def _check_rate_limits(
        self,
        ip: str | None,
        session_id: str,
        project_id: str,
    ) -> list[RateLimitDecision]:
        checks = [("session", session_id), ("project", project_id)]
        if ip:
            checks.insert(0, ("ip", ip))
        return [self._rate_limiter.check_and_record(ident, scope) for scope, ident in checks]


# --- Persistence ---


def touch_session(
    existing: SessionRecord | None,
    event: Event,
    is_returning: bool = False,
) -> SessionRecord:
    """Fold one event into its session summary."""
    ts = ensure_utc(event.timestamp)
    page_view = 1 if event.event_type == "pageview" else 0
    if existing is None:
        return SessionRecord(
            session_id=event.session_id,
            project_id=event.project_id,
            ip_address=event.ip_address,
            start_time=ts,
            end_time=ts,
            page_views=page_view,
            events_count=1,
            entry_referrer_type=event.referrer_type,
            is_returning=is_returning,
        )
    return existing.model_copy(
        update={
            "start_time": min(ensure_utc(existing.start_time), ts),
            "end_time": max(ensure_utc(existing.end_time), ts),
            "page_views": existing.page_views + page_view,
            "events_count": existing.events_count + 1,
        }
    )


def record_event(
    event: Event,
    *,
    events: EventWriterPort,
    sessions: SessionRepoPort | None = None,
) -> bool:
    """
    Persist an event and update its session.

    Returns False if the event could not be stored; never raises.
    """
    try:
        events.insert(event)
    except Exception:
        logger.exception(
            "Failed to persist event %s (project=%s session=%s)",
            event.id,
            event.project_id,
            event.session_id,
        )
        return False

    if sessions is None:
        return True

    try:
        existing = sessions.get(event.session_id)
        returning = False
        if existing is None and event.ip_address:
            returning = sessions.has_prior_session(
                event.project_id, event.ip_address, ensure_utc(event.timestamp)
            )
        sessions.upsert(touch_session(existing, event, returning))
    except Exception:
        logger.exception("Failed to update session %s", event.session_id)
    return True


def create_ingestion_pipeline(
    geo: GeoEnrichmentService | None = None,
    rate_limiter: RateLimitService | None = None,
    fraud: FraudScorer | None = None,
    bots: BotDetector | None = None,
    time_port: TimePort | None = None,
    config: IngestionConfig | None = None,
    history: EventHistoryPort | None = None,
) -> IngestionPipeline:
    """
    Factory wiring default in-memory collaborators where none are given.

    Fraud and bot scoring share one event history so velocity and
    session behaviour rules see the same traffic.
    """
    from clickguard.adapters.memory_db import InMemoryEventRepo
    from clickguard.components.bots import create_bot_detector
    from clickguard.components.fraud import create_fraud_scorer
    from clickguard.components.geo import create_geo_service
    from clickguard.components.ratelimit import create_rate_limit_service

    if history is None:
        history = InMemoryEventRepo()

    return IngestionPipeline(
        geo=geo or create_geo_service(),
        rate_limiter=rate_limiter or create_rate_limit_service(time_port=time_port),
        fraud=fraud or create_fraud_scorer(history=history),
        bots=bots or create_bot_detector(history=history),
        time_port=time_port,
        config=config,
    )
