"""FastAPI application main module."""

import logging
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from flowscope.api.v1.documents import router as documents_router
from flowscope.api.v1.flows import router as flows_router
from flowscope.api.v1.graphql import router as graphql_router
from flowscope.api.v1.kafka import router as kafka_router
from flowscope.config import get_settings
from flowscope.observability.metrics import http_requests_total
from flowscope.services.session_registry import SessionRegistry

settings = get_settings()

# Initialize Sentry SDK before FastAPI app
if settings.sentry_dsn:
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        send_default_pii=False,
        enable_logs=True,
        traces_sample_rate=1.0,
    )
    logging.basicConfig(level=logging.INFO)
    logger = logging.getLogger(__name__)
    logger.info("Sentry SDK initialized successfully")
else:
    logging.basicConfig(level=logging.INFO)
    logger = logging.getLogger(__name__)
    logger.warning("Sentry DSN not configured, skipping Sentry initialization")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    yield

    # Shutdown
    stopped = app.state.session_registry.dispose_all()
    if stopped:
        logger.info(f"Stopped {stopped} stream session(s) on shutdown")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    debug=settings.debug,
    lifespan=lifespan,
)

app.state.session_registry = SessionRegistry(
    max_queue_size=settings.stream_queue_max_size,
    max_history_size=settings.stream_history_max_size,
)

if settings.debug:
    # Local dev servers on any port
    origin_regex = r"https?://(?:localhost|127\.0\.0\.1|0\.0\.0\.0):\d+"
    logger.info(f"CORS Debug Mode: Allowing {len(settings.cors_origins)} origins: {settings.cors_origins}")
else:
    origin_regex = None

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_origin_regex=origin_regex,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    max_age=settings.cors_max_age,
)

# Mount Prometheus metrics endpoint
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# Include API routers
app.include_router(documents_router)
app.include_router(flows_router)
app.include_router(graphql_router)
app.include_router(kafka_router)


@app.get("/health")
async def healthcheck():
    """Health check endpoint."""
    http_requests_total.labels(method="GET", endpoint="/health", status=200).inc()
    return JSONResponse(
        content={
            "status": "healthy",
            "service": settings.app_name,
            "version": settings.app_version,
            "activeSessions": len(app.state.session_registry),
        }
    )


@app.get("/")
async def root():
    """Root endpoint."""
    return JSONResponse(
        content={
            "message": settings.app_name,
            "version": settings.app_version,
        }
    )
