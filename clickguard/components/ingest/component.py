"""
Ingest component - raw payload to enriched, scored event.

Validates a tracking payload, classifies the client, resolves geo, applies
rate limits, scores fraud and detects bots.

Invariants:
- I1: An event is rejected only for payload validation errors
- I2: A rate-limited request still yields a scored event (flagged rate_limited)
- I3: Fraud and bot scoring see the event before it is persisted
- I4: Persistence failures never surface to the tracking client
"""

from __future__ import annotations

from clickguard.components.bots import BotDetector, build_bot_config
from clickguard.components.bots.ports import SessionHistoryPort
from clickguard.components.fraud import FraudScorer, build_fraud_config
from clickguard.components.fraud.ports import EventHistoryPort, ReputationRepoPort
from clickguard.components.geo import GeoEnrichmentService, build_geo_config
from clickguard.components.geo.ports import GeoCachePort
from clickguard.components.ratelimit import RateLimitService, build_rate_limit_config
from clickguard.components.ratelimit.ports import RateLimitRepoPort
from clickguard.rules.models import Rules

from ._impl import IngestionPipeline, record_event
from .models import IngestEventInput, IngestOutput
from .ports import EventWriterPort, SessionRepoPort, TimePort


def build_ingestion_pipeline(
    rules: Rules,
    *,
    geo_cache: GeoCachePort | None = None,
    rate_limit_repo: RateLimitRepoPort,
    reputations: ReputationRepoPort | None = None,
    history: EventHistoryPort | None = None,
    bot_history: SessionHistoryPort | None = None,
    time_port: TimePort | None = None,
) -> IngestionPipeline:
    """Wire every scoring stage from one validated rules document."""
    return IngestionPipeline(
        geo=GeoEnrichmentService(cache=geo_cache, config=build_geo_config(rules.geo)),
        rate_limiter=RateLimitService(
            repo=rate_limit_repo,
            time_port=time_port,
            config=build_rate_limit_config(rules.rate_limits),
        ),
        fraud=FraudScorer(
            reputations=reputations,
            history=history,
            config=build_fraud_config(rules.fraud),
        ),
        bots=BotDetector(
            history=bot_history if bot_history is not None else history,
            config=build_bot_config(rules.bots),
        ),
        time_port=time_port,
    )


def run_ingest(
    inp: IngestEventInput,
    *,
    pipeline: IngestionPipeline,
    events: EventWriterPort | None = None,
    sessions: SessionRepoPort | None = None,
) -> IngestOutput:
    """
    Ingest one tracking payload.

    Args:
        inp: Raw payload, request context and remote address.
        pipeline: Configured ingestion pipeline.
        events: Optional event store; when given the event is persisted.
        sessions: Optional session store updated alongside the event.

    Returns:
        IngestOutput with the scored event or validation errors.
    """
    out = pipeline.ingest(inp.payload, inp.context, inp.remote_addr)
    if out.success and out.event is not None and events is not None:
        record_event(out.event, events=events, sessions=sessions)
    return out
