"""
Manual aggregation trigger.

Runs one granularity synchronously, for backfills and operator re-runs.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from clickguard.api.deps import get_aggregation_pipeline
from clickguard.components.aggregation import (
    AggregationPipeline,
    TriggerAggregationInput,
    run_trigger,
)

logger = logging.getLogger(__name__)

router = APIRouter()


class TriggerRequest(BaseModel):
    """Aggregation trigger request."""

    type: str = Field(..., description="hourly, daily, weekly or monthly")
    date: str | None = Field(None, description="ISO date inside the target bucket")


@router.post("/trigger", response_model=dict[str, Any])
def trigger_aggregation(
    body: TriggerRequest,
    pipeline: AggregationPipeline = Depends(get_aggregation_pipeline),
) -> Any:
    """
    Aggregate the bucket containing `date`, or the last complete bucket.

    400 for an unknown type or unparseable date; 500 when the store could
    not be read or any project failed to commit (the response still lists
    what did commit).
    """
    out = run_trigger(TriggerAggregationInput(type=body.type, date=body.date), pipeline=pipeline)
    if out.success:
        return out.to_dict()

    codes = {e.code for e in out.errors}
    status_code = 400 if codes & {"unknown_type", "invalid_date"} else 500
    logger.warning("Aggregation trigger for %s failed: %s", body.type, out.error)
    return JSONResponse(status_code=status_code, content=out.to_dict())
