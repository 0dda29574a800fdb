# This file bootstraps the FastAPI app, wires up the logging and
# metrics middlewares, sets up CORS for the tracking snippet, and
# includes the tracking, funnel and heatmap routers.

import logging

from fastapi import APIRouter, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from app.core.config import settings
from app.core.db import Base, engine
from app.core.errors import TrackingAPIError
from app.core.logging import APILoggingMiddleware
from app.core.metrics import MetricsMiddleware
from app.core.request_context import RequestContextMiddleware
from app.core.versioning import API_PREFIX

# Model modules register their tables on Base.metadata.
from app import models  # noqa: F401

from app.api.funnels import router as funnels_router
from app.api.heatmap import router as heatmap_router
from app.api.track import router as track_router


logger = logging.getLogger(__name__)

# Create tables on import unless an external migration step owns the schema.
if settings.AUTO_CREATE_TABLES:
    Base.metadata.create_all(bind=engine)

app = FastAPI(title="Funnel Tracker")


def _error_response(status_code: int, payload: dict, code: str) -> JSONResponse:
    response = JSONResponse(status_code=status_code, content=payload)
    response.headers["X-Error-Code"] = code
    return response


@app.exception_handler(TrackingAPIError)
def handle_tracking_error(_request: Request, exc: TrackingAPIError):
    return _error_response(exc.status_code, exc.to_payload(), exc.code)


@app.exception_handler(Exception)
def handle_unexpected_error(request: Request, exc: Exception):
    logger.exception(
        "request.unhandled_error",
        extra={
            "request_id": getattr(request.state, "request_id", None),
            "path": request.url.path,
        },
    )
    return _error_response(
        500,
        {"error": "Internal server error", "details": str(exc)},
        "internal_error",
    )


# Observability layers: structured request logs and Prometheus metrics.
app.add_middleware(APILoggingMiddleware)
app.add_middleware(MetricsMiddleware)

# Every router is served at the root and under /api.
api_root = APIRouter(prefix="")
api_legacy = APIRouter(prefix=API_PREFIX)

routers = [
    track_router,
    funnels_router,
    heatmap_router,
]

for r in routers:
    api_root.include_router(r)
    api_legacy.include_router(r)

app.include_router(api_root)
app.include_router(api_legacy)

# Attach request context (request_id, user_agent) before the logging layer runs.
app.add_middleware(RequestContextMiddleware)


# /metrics endpoint (Prometheus scraping)
@app.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/ping")
def ping():
    return {"message": "pong"}


# The tracking snippet runs on third-party sites, so /track must be
# reachable cross-origin without credentials.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOW_ORIGINS,
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-Id", "X-Error-Code"],
    max_age=86400,
)
