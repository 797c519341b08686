"""
Escrow Risk & Release Decision Engine: FastAPI Application Entry Point

POST /v1/transactions/{id}/risk-policy  → score + policy
POST /v1/transactions/{id}/release      → release decision
GET  /v1/health                         → health check
GET  /docs                              → OpenAPI / Swagger UI
"""
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from escrow_risk.api.admin_endpoint import router as admin_router
from escrow_risk.api.processor_endpoint import router as processor_router
from escrow_risk.api.risk_endpoint import router as risk_router
from escrow_risk.core.config import get_settings
from escrow_risk.core.errors import (
    DisputeNotAllowed,
    InvalidEnum,
    InvalidTransition,
    NotFound,
    RiskEngineError,
)
from escrow_risk.services.event_publisher import close_producer

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.ConsoleRenderer() if get_settings().app_env == "development"
        else structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(get_settings().log_level),
)
logger = structlog.get_logger()

ERROR_STATUS = [
    (NotFound, 404),
    (InvalidTransition, 409),
    (DisputeNotAllowed, 409),
    (InvalidEnum, 422),
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info("escrow_risk_engine_starting", env=settings.app_env, kafka_enabled=settings.kafka_enabled)
    yield
    await close_producer()
    logger.info("escrow_risk_engine_shutting_down")


app = FastAPI(
    title="Escrow Risk Engine",
    description="Risk scoring, release decisions, dispute triage and enforcement for escrow transactions",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS (marketplace backend + admin console) ──
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # tighten in production
    allow_methods=["POST", "GET"],
    allow_headers=["*"],
)

# ── Prometheus metrics ──
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# ── Routes ──
app.include_router(risk_router)
app.include_router(admin_router)
app.include_router(processor_router)


@app.exception_handler(RiskEngineError)
async def engine_error_handler(request: Request, exc: RiskEngineError) -> JSONResponse:
    status = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
    if status >= 500:
        logger.error("engine_error", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=status, content={"detail": str(exc)})


@app.get("/", include_in_schema=False)
async def root():
    return {
        "service": "escrow-risk-engine",
        "version": "1.0.0",
        "docs": "/docs",
        "release": "POST /v1/transactions/{id}/release",
    }
