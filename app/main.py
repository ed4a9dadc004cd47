"""
Main FastAPI application for the content platform API.
Serves VIP payments (OxaPay), chat, notifications, post feed, admin, health and metrics.
"""
import logging
import time
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.logging import configure_logging
from app.api.routes import admin, chat, health, notifications, payments, posts
from app.services.errors import DomainError
from app.utils.metrics import http_request_duration_seconds, router as metrics_router

configure_logging()
logger = logging.getLogger("app.http")

app = FastAPI(
    title="Content Platform API",
    description="VIP payments, chat and feed API",
    version="1.0.0",
)

# CORS
origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
if not origins:
    origins = ["http://localhost:3000", "http://127.0.0.1:3000"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_logging(request: Request, call_next):
    request_id = request.headers.get(settings.request_id_header) or uuid4().hex
    start = time.perf_counter()
    response = await call_next(request)
    latency = time.perf_counter() - start
    response.headers[settings.request_id_header] = request_id
    http_request_duration_seconds.labels(
        method=request.method, status_code=str(response.status_code)
    ).observe(latency)
    logger.info(
        "http_request",
        extra={
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "latency_ms": int(latency * 1000),
        },
    )
    return response


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("domain_error", extra={"path": request.url.path, "status_code": exc.status_code, "error": exc.message})
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# Routers
app.include_router(health.router, tags=["health"])
app.include_router(payments.router)
app.include_router(chat.router)
app.include_router(notifications.router)
app.include_router(posts.router)
app.include_router(admin.router)
app.include_router(metrics_router)
