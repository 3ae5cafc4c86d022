"""
Aggregated analytics query routes.

Read-only views over committed buckets; raw events are never scanned here.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from clickguard.api.deps import get_aggregation_pipeline
from clickguard.components.aggregation import AggregationPipeline
from clickguard.core.timewindows import Granularity, ensure_utc

router = APIRouter()


def _granularity(value: str) -> Granularity:
    try:
        return Granularity(value)
    except ValueError:
        raise HTTPException(
            status_code=400, detail=f"Unknown granularity: {value}"
        ) from None


def _range(start: datetime, end: datetime) -> tuple[datetime, datetime]:
    start, end = ensure_utc(start), ensure_utc(end)
    if end <= start:
        raise HTTPException(status_code=400, detail="end must be after start")
    return start, end


@router.get("/{project_id}/buckets")
def list_buckets(
    project_id: str,
    start: datetime,
    end: datetime,
    granularity: str = Query("daily"),
    pipeline: AggregationPipeline = Depends(get_aggregation_pipeline),
) -> dict[str, Any]:
    """Bucket rows, oldest first, including top-N lists."""
    g = _granularity(granularity)
    start, end = _range(start, end)
    buckets = pipeline.query_buckets(project_id, g, start, end)
    return {
        "project_id": project_id,
        "granularity": g.value,
        "buckets": [b.model_dump(mode="json") for b in buckets],
    }


@router.get("/{project_id}/totals")
def get_totals(
    project_id: str,
    start: datetime,
    end: datetime,
    granularity: str = Query("daily"),
    pipeline: AggregationPipeline = Depends(get_aggregation_pipeline),
) -> dict[str, Any]:
    """Counters summed over the buckets in range."""
    g = _granularity(granularity)
    start, end = _range(start, end)
    totals = pipeline.get_totals(project_id, g, start, end)
    return {"project_id": project_id, "granularity": g.value, **totals}


@router.get("/{project_id}/series")
def get_series(
    project_id: str,
    start: datetime,
    end: datetime,
    granularity: str = Query("hourly"),
    metric: str = Query("total_events"),
    pipeline: AggregationPipeline = Depends(get_aggregation_pipeline),
) -> dict[str, Any]:
    """One numeric bucket field as chart points."""
    g = _granularity(granularity)
    start, end = _range(start, end)
    try:
        points = pipeline.get_time_series(project_id, g, start, end, metric)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return {
        "project_id": project_id,
        "granularity": g.value,
        "metric": metric,
        "points": [{"timestamp": p["timestamp"].isoformat(), "value": p["value"]} for p in points],
    }
