"""FastAPI application wiring for quoteflow.

The app serves the inbound email webhook, the conversation and quote APIs,
Prometheus metrics and health endpoints. Logging is initialised at import time; the
database session factory (and the schema, unless ``DB_AUTO_CREATE`` is off)
is created when the app starts and disposed of when it stops.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .__version__ import __build_date__, __commit_sha__, __version__
from .app_logging import init_logging
from .core.rate_limit import limiter
from .models.session import get_default_sessionmaker, reset_session_cache
from .routers import conversations, quotes, webhooks

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    engine = get_default_sessionmaker().kw["bind"]
    logger.info("quoteflow %s started against %s", __version__, engine.url.render_as_string())
    yield
    reset_session_cache()


app = FastAPI(title="quoteflow", version=__version__, lifespan=lifespan)
init_logging(app)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

for module in (webhooks, conversations, quotes):
    app.include_router(module.router)

Instrumentator().instrument(app).expose(
    app, include_in_schema=False, endpoint="/api/metrics"
)


@app.get("/api/health")
async def health():
    """Liveness check."""
    return {"status": "ok"}


@app.get("/api/version")
async def version():
    return {
        "version": __version__,
        "build_date": __build_date__,
        "commit_sha": __commit_sha__,
    }
