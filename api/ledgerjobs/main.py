import logging

from fastapi import FastAPI

from ledgerjobs.core.config import settings
from ledgerjobs.routers import exports, health, inbox, recurring

logging.basicConfig(
    level=getattr(logging, settings.api_log_level.upper()),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)

app = FastAPI(
    title="ledgerjobs API",
    version="0.1.0",
    docs_url="/docs" if settings.environment == "development" else None,
    redoc_url=None,
)


# ─── Routers ──────────────────────────────────
app.include_router(health.router)
app.include_router(recurring.router, prefix="/api/v1")
app.include_router(exports.router, prefix="/api/v1")
app.include_router(inbox.router, prefix="/api/v1")
