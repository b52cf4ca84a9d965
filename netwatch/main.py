"""
FastAPI application for the device liveness monitor.

Start with::

    python device_status_service.py
    # or
    uvicorn netwatch.main:app --host 0.0.0.0 --port 5000
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from netwatch.api import routes, websocket
from netwatch.core.config import Settings, settings as default_settings
from netwatch.crud.device import DeviceRegistry
from netwatch.db.database import create_db_engine, create_session_factory, init_db
from netwatch.monitor.broadcast import BroadcastHub
from netwatch.monitor.prober import LivenessProber
from netwatch.monitor.service import DeviceMonitor
from netwatch.redis.heartbeat import RedisHeartbeatStore

logger = logging.getLogger(__name__)


def build_monitor(settings: Settings, registry: DeviceRegistry, prober=None) -> DeviceMonitor:
    """Wire the prober, hub and heartbeat store around a registry."""
    prober = prober or LivenessProber(
        timeout=settings.PROBE_TIMEOUT, max_concurrency=settings.PROBE_CONCURRENCY
    )
    hub = BroadcastHub(registry.find_all, send_timeout=settings.BROADCAST_SEND_TIMEOUT)
    heartbeats = None
    if settings.HEARTBEAT_ENABLED:
        heartbeats = RedisHeartbeatStore(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            db=settings.REDIS_DB,
            password=settings.REDIS_PASSWORD,
        )
    return DeviceMonitor(
        registry,
        prober,
        hub,
        heartbeats=heartbeats,
        interval=settings.PING_INTERVAL,
        heartbeat_ttl=settings.HEARTBEAT_TTL,
        storage_retries=settings.STORAGE_RETRY_ATTEMPTS,
        storage_retry_delay=settings.STORAGE_RETRY_DELAY,
    )


def create_app(
    settings: Optional[Settings] = None,
    prober=None,
    start_monitor: bool = True,
) -> FastAPI:
    """
    Build the API application.

    The registry, hub and monitor are created once in the lifespan handler
    and shared through ``app.state``.
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = create_db_engine(settings.DATABASE_URL)
        init_db(engine)
        registry = DeviceRegistry(create_session_factory(engine))
        monitor = build_monitor(settings, registry, prober=prober)
        app.state.registry = registry
        app.state.monitor = monitor
        app.state.hub = monitor.hub
        if start_monitor:
            monitor.start()
        try:
            yield
        finally:
            await monitor.stop()
            engine.dispose()

    app = FastAPI(
        title="netwatch",
        description="Device liveness monitor with live WebSocket updates",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"]
    )

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        missing = any(error.get("type") in ("missing", "string_too_short") for error in errors)
        message = "All fields are required" if missing else errors[0].get("msg", "Invalid request")
        return JSONResponse(status_code=400, content={"error": message})

    app.include_router(routes.router)
    app.include_router(websocket.router)
    return app


app = create_app()
