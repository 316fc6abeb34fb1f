"""Gatekeeper FastAPI application"""

import logging
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from gatekeeper.api.errors import register_exception_handlers
from gatekeeper.api.v1 import access, auth, events, permissions
from gatekeeper.config import settings
from gatekeeper.core.database import init_db, session_scope
from gatekeeper.core.metrics import (
    EVENT_SUBSCRIBERS,
    MAINTENANCE_WORKER_UP,
    REQUEST_COUNT,
    REQUEST_LATENCY,
)
from gatekeeper.services.maintenance_worker import maintenance_worker
from gatekeeper.services.notifier import event_hub
from gatekeeper.services.user_service import user_service

SLOW_REQUEST_SECONDS = 1.0

Path(settings.get_log_file()).parent.mkdir(parents=True, exist_ok=True)
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.FileHandler(settings.get_log_file()),
        logging.StreamHandler(),
    ],
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    debug=settings.DEBUG,
    docs_url="/api/docs" if settings.DEBUG else None,
    redoc_url="/api/redoc" if settings.DEBUG else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
)

register_exception_handlers(app)


@app.middleware("http")
async def request_context(request: Request, call_next):
    """Tag each request with an id, harden response headers and record timing"""
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    request.state.request_id = request_id

    started = time.perf_counter()
    response = await call_next(request)
    elapsed = time.perf_counter() - started

    response.headers.update({
        "X-Request-ID": request_id,
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Referrer-Policy": "no-referrer",
        "Cache-Control": "no-store",
    })

    # Route template, not the raw path
    route = request.scope.get("route")
    template = getattr(route, "path", "unmatched")
    REQUEST_COUNT.labels(request.method, template, str(response.status_code)).inc()
    REQUEST_LATENCY.labels(request.method, template).observe(elapsed)

    if elapsed > SLOW_REQUEST_SECONDS:
        logger.warning("Slow request %s %s: %.2fs (request_id=%s)", request.method, template, elapsed, request_id)
    return response


def _bootstrap_super_admin() -> None:
    with session_scope() as db:
        try:
            created = user_service.ensure_super_admin(
                db,
                email=settings.ADMIN_EMAIL,
                username=settings.ADMIN_USERNAME,
                password=settings.ADMIN_PASSWORD,
            )
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Could not bootstrap the super admin account")
            return
    if created:
        logger.info("Bootstrap super admin %s created", created.email)


@app.on_event("startup")
async def on_startup():
    settings.validate_security_settings()
    logger.info("Starting %s v%s (%s)", settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT)

    init_db()
    _bootstrap_super_admin()

    if settings.RUN_MAINTENANCE_JOBS:
        maintenance_worker.start()
    MAINTENANCE_WORKER_UP.set(1 if maintenance_worker.is_running() else 0)


@app.on_event("shutdown")
async def on_shutdown():
    if maintenance_worker.is_running():
        maintenance_worker.stop()
    MAINTENANCE_WORKER_UP.set(0)
    logger.info("%s stopped", settings.APP_NAME)


def _refresh_gauges() -> dict:
    worker = maintenance_worker.status()
    MAINTENANCE_WORKER_UP.set(1 if worker["running"] else 0)
    EVENT_SUBSCRIBERS.set(event_hub.total_subscribers())
    return worker


@app.get("/health")
def health_check():
    """Liveness plus database and background job readiness"""
    database = {"ok": True, "error": None}
    with session_scope() as db:
        try:
            db.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            database = {"ok": False, "error": str(exc)}

    return {
        "status": "healthy" if database["ok"] else "degraded",
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "readiness": {
            "database": database,
            "maintenance_worker": _refresh_gauges(),
            "event_subscribers": event_hub.total_subscribers(),
        },
    }


@app.get("/metrics")
def metrics():
    _refresh_gauges()
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/")
def root():
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/api/docs" if settings.DEBUG else None,
    }


app.include_router(auth.router, prefix="/api/v1/auth", tags=["Authentication"])
app.include_router(access.router, prefix="/api/v1/access", tags=["Access"])
app.include_router(permissions.router, prefix="/api/v1", tags=["Permissions"])
app.include_router(events.router, prefix="/api/v1/events", tags=["Events"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "gatekeeper.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1 if settings.DEBUG else settings.WORKERS,
    )
