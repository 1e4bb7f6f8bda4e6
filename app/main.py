"""FastAPI application wiring for Catalog Concierge.

This module bootstraps the HTTP API used by channel gateways and operators:

- Configures logging, CORS (optional for the operator console), Prometheus
  metrics and rate limiting.
- Resolves the tenant for every request through ``TenantContextMiddleware``.
- Mounts the inbound message webhook, the operator conversation API and the
  catalog search/sync API.
- Starts the catalog sync and conversation auto-release jobs for the lifetime
  of the process when ``ENABLE_BACKGROUND_JOBS`` is on and a database is
  configured.
"""

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .__version__ import __build_date__, __commit_sha__, __version__
from .app_logging import init_logging
from .core.rate_limit import limiter
from .core.scheduler import PeriodicRunner
from .core.tenant_middleware import TenantContextMiddleware
from .routers import catalog, conversations, webhooks
from .runtime import start_background_jobs

load_dotenv()

logger = logging.getLogger(__name__)

runner = PeriodicRunner()


@asynccontextmanager
async def lifespan(_: FastAPI):
    start_background_jobs(runner)
    try:
        yield
    finally:
        runner.stop_all()


app = FastAPI(title="Catalog Concierge", version=__version__, lifespan=lifespan)
init_logging(app)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(TenantContextMiddleware)
# Optional CORS for the operator console
operator_ui_origins = os.getenv("OPERATOR_UI_ORIGINS")
if operator_ui_origins:
    origins = [o.strip() for o in operator_ui_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
app.include_router(webhooks.router)
app.include_router(conversations.router)
app.include_router(catalog.router)

# Expose Prometheus metrics
Instrumentator().instrument(app).expose(
    app, include_in_schema=False, endpoint="/api/metrics"
)


@app.get("/api/health")
async def health():
    """Liveness/readiness probe with a minimal JSON body."""
    return {"status": "ok"}


@app.get("/api/version")
async def version():
    """Return version information for the application."""
    return {
        "version": __version__,
        "build_date": __build_date__,
        "commit_sha": __commit_sha__,
    }


@app.get("/api/jobs")
async def jobs():
    """List background jobs currently scheduled in this process."""
    return {"jobs": runner.list()}
