import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI

from clickguard.adapters.sqlite.migrator import SQLiteMigrator
from clickguard.api.deps import get_rules, get_settings
from clickguard.app_shell.config import validate_ops_rules

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    settings = get_settings()

    # Load rules, validate and migrate on startup (fail-fast)
    try:
        rules = get_rules()
        validate_ops_rules(rules, settings.data_dir)
        SQLiteMigrator(settings.db_path, settings.migrations_dir).run_migrations()
        logger.info("Rules loaded from %s", settings.rules_path)
    except Exception:
        logger.critical("Startup failed", exc_info=True)
        raise

    yield


app = FastAPI(
    title="clickguard",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# --- Routers ---
from clickguard.api.routes import admin_aggregation, analytics, events  # noqa: E402

app.include_router(events.router, prefix="/api/events", tags=["Ingestion"])
app.include_router(analytics.router, prefix="/api/analytics", tags=["Analytics"])
app.include_router(
    admin_aggregation.router, prefix="/api/admin/aggregation", tags=["Admin Aggregation"]
)


@app.get("/health")
def health_check() -> dict[str, Any]:
    """Health check endpoint."""
    return {"status": "ok", "service": "clickguard"}
