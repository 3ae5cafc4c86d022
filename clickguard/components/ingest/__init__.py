"""
Ingest component - raw payload to enriched, scored event.
"""

from ._impl import (
    DEFAULT_CONFIG,
    IngestionConfig,
    IngestionPipeline,
    create_ingestion_pipeline,
    record_event,
    touch_session,
    validate_payload,
)
from ._parsing import (
    extract_client_ip,
    extract_utm_params,
    parse_referrer,
    parse_user_agent,
)
from .component import build_ingestion_pipeline, run_ingest
from .models import IngestError, IngestEventInput, IngestOutput
from .ports import EventWriterPort, SessionRepoPort, TimePort

__all__ = [
    # Entry points
    "build_ingestion_pipeline",
    "run_ingest",
    # Models
    "IngestError",
    "IngestEventInput",
    "IngestOutput",
    # Ports
    "EventWriterPort",
    "SessionRepoPort",
    "TimePort",
    # Parsing
    "extract_client_ip",
    "extract_utm_params",
    "parse_referrer",
    "parse_user_agent",
    # Implementation
    "DEFAULT_CONFIG",
    "IngestionConfig",
    "IngestionPipeline",
    "create_ingestion_pipeline",
    "record_event",
    "touch_session",
    "validate_payload",
]
