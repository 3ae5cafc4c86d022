"""
Event ingestion route.

Public endpoint the tracking snippet posts to. The event is enriched and
scored before being stored; storage failures do not fail the request.
"""

from __future__ import annotations

import dataclasses
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Request

from clickguard.api.deps import (
    get_event_repo,
    get_ingestion_pipeline,
    get_session_repo,
)
from clickguard.api.edge import context_from_headers
from clickguard.components.ingest import (
    EventWriterPort,
    IngestionPipeline,
    IngestOutput,
    SessionRepoPort,
    record_event,
)

router = APIRouter()


def serialize_ingest(out: IngestOutput) -> dict[str, Any]:
    return {
        "ok": True,
        "event": out.event.model_dump(mode="json") if out.event else None,
        "fraud": dataclasses.asdict(out.fraud) if out.fraud else None,
        "bot": dataclasses.asdict(out.bot) if out.bot else None,
        "geo_source": out.geo_source,
        "rate_limited": out.rate_limited,
    }


@router.post(
    "",
    responses={
        400: {"description": "Invalid payload"},
        429: {"description": "Rate limit exceeded"},
    },
)
def ingest_event(
    request: Request,
    payload: dict[str, Any] = Body(...),
    pipeline: IngestionPipeline = Depends(get_ingestion_pipeline),
    events: EventWriterPort = Depends(get_event_repo),
    sessions: SessionRepoPort = Depends(get_session_repo),
) -> dict[str, Any]:
    """
    Ingest one tracking event.

    400 when the payload fails validation; 429 when the client IP is over
    its limit. Session and project limits only flag the stored event.
    """
    out = pipeline.ingest(
        payload,
        context_from_headers(request.headers),
        request.client.host if request.client else None,
    )

    if not out.success:
        raise HTTPException(
            status_code=400,
            detail={
                "ok": False,
                "errors": [
                    {"code": e.code, "message": e.message, "field": e.field_name}
                    for e in out.errors
                ],
            },
        )

    if "ip" in out.exceeded_scopes():
        raise HTTPException(status_code=429, detail="Rate limit exceeded")

    if out.event is not None:
        record_event(out.event, events=events, sessions=sessions)
    return serialize_ingest(out)
