import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Ensure all SQLAlchemy models are imported so relationships resolve
import linesight.models  # noqa: F401

from linesight.config import configure_logging, get_settings
from linesight.errors import NotFoundError, StoreReadError

from linesight.api import (
    ctqs,         # /ctqs/{id}/summary
    debug,        # /debug/data-quality
    episodes,     # /episodes
    fixtures,     # /fixtures
    lots,         # /lots, /lots/heatmap
    metrics,      # /metrics (line-overview, stations, trends, rework-flow)
    similarity,   # /similarity
    units,        # /units/{serial}
)

# Ops/system endpoints (/health, /version)
from linesight.api.system import router as system_router

configure_logging()
logger = logging.getLogger(__name__)

settings = get_settings()

app = FastAPI(title="LineSight Quality Analytics")

# --- CORS for local frontend dev ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Engine errors -> HTTP ---
@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(StoreReadError)
async def store_read_handler(request: Request, exc: StoreReadError):
    logger.error("Store read failed on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=503, content={"detail": "Quality data store unavailable"})


# Routers
app.include_router(system_router)  # /health, /version

# Line health
app.include_router(metrics.router)

# Investigations
app.include_router(similarity.router)
app.include_router(episodes.router)

# Traceability
app.include_router(units.router)
app.include_router(lots.router)
app.include_router(fixtures.router)
app.include_router(ctqs.router)

# Ingestion health
app.include_router(debug.router)
