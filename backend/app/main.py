"""FastAPI entry point for Historian Reports."""
from __future__ import annotations

import logging

import socketio
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from domain.errors import ReportingError
from interfaces import data_router, opcua_router, reports_router, users_router
from interfaces import deps
from infrastructure.socketio_manager import configure_cors, register_event_handlers, sio

logger = logging.getLogger(__name__)

register_event_handlers(deps.event_bus)
configure_cors(deps.settings.cors_origins)

app = FastAPI(title="Historian Reports")

app.include_router(users_router)
app.include_router(opcua_router)
app.include_router(reports_router)
app.include_router(data_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=deps.settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Socket.IO wraps FastAPI into one ASGI app
socket_app = socketio.ASGIApp(sio, other_asgi_app=app)


@app.exception_handler(ReportingError)
async def _reporting_error_handler(request: Request, exc: ReportingError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.get("/health", tags=["health"])
def health_check() -> dict:
    """Expose a minimal health endpoint to help dev tooling."""
    return {
        "status": "ok",
        "configVersion": deps.settings.version,
        "storage": deps.settings.database_backend,
        "historian": deps.settings.historian_backend,
    }


# Startup / shutdown ----------------------------------------------------------
@app.on_event("startup")
async def _startup() -> None:  # pragma: no cover - runtime wiring
    await deps.event_bus.start()
    if (deps.settings.users or {}).get("seed_on_startup", True):
        deps.user_service.seed_initial_users()
    deps.opcua_config_service.initialize_active_connection()
    logger.info("Historian Reports started")


@app.on_event("shutdown")
async def _shutdown() -> None:  # pragma: no cover - runtime wiring
    await deps.event_bus.stop()
    deps.historian.disconnect()
    logger.info("Historian Reports stopped")
