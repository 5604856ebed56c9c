"""
Emergency Corridor Orchestration Engine
Main FastAPI Application Entry Point

Initializes FastAPI, Socket.IO, the archive database and the corridor
registry.

Run:
    uvicorn corridor_engine.main:sio_app --app-dir backend --port 8000
"""

import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import socketio
from dotenv import load_dotenv

from corridor_engine import __version__

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

# Create Socket.IO server
sio = socketio.AsyncServer(
    async_mode='asgi',
    cors_allowed_origins='*',
    logger=False,
    engineio_logger=False,
    ping_interval=25,
    ping_timeout=60
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events - startup and shutdown"""
    from corridor_engine.config import configure_logging, init_config
    from corridor_engine.database import init_db
    from corridor_engine.orchestration import init_registry

    # Startup
    config = init_config()
    configure_logging(config.get('system.logLevel', 'INFO'))
    logger.info("[STARTUP] Emergency Corridor Orchestration Engine %s", __version__)

    if config.get('archive.enabled', True):
        init_db()

    registry = init_registry(config, socketio=sio)
    await registry.start()
    logger.info("[OK] Corridor registry started")

    yield

    # Shutdown
    logger.info("[SHUTDOWN] Draining live corridors...")
    await registry.shutdown()
    logger.info("[SHUTDOWN] Complete")


# Create FastAPI application
app = FastAPI(
    title="Emergency Corridor Orchestration Engine API",
    description="Validated telemetry, predicted paths and civilian alert targeting for emergency vehicles",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================
# Include API Routers
# ============================================

from corridor_engine.api import corridor_router, telemetry_router, system_router  # noqa: E402

# Corridor routes: /api/corridors, /api/corridors/{id}
app.include_router(corridor_router)

# Telemetry routes: /api/telemetry, /api/civilians, /api/traffic/delta
app.include_router(telemetry_router)

# System routes: /api/system/health, /api/system/statistics
app.include_router(system_router)


@app.get("/", tags=["root"])
async def root():
    """Root endpoint - API information"""
    return {
        "name": "Emergency Corridor Orchestration Engine",
        "version": __version__,
        "status": "operational",
        "documentation": "/docs",
        "timestamp": time.time(),
        "endpoints": {
            "corridors": "/api/corridors",
            "telemetry": "/api/telemetry",
            "civilians": "/api/civilians",
            "traffic": "/api/traffic/delta",
            "system": "/api/system/*"
        }
    }


# ============================================
# Socket.IO events
# ============================================

@sio.event
async def connect(sid, environ):
    logger.debug("[WS] Client connected: %s", sid)


@sio.event
async def subscribe(sid, data):
    """
    Join alert rooms

    data: {"civilianVehicleId": "CIV-1"} or {"corridorId": "COR-..."}
    """
    data = data or {}
    rooms = []
    if data.get('civilianVehicleId'):
        rooms.append(f"civilian:{data['civilianVehicleId']}")
    if data.get('corridorId'):
        rooms.append(f"corridor:{data['corridorId']}")
    for room in rooms:
        await sio.enter_room(sid, room)
    return {'subscribed': rooms}


@sio.event
async def disconnect(sid):
    logger.debug("[WS] Client disconnected: %s", sid)


# ============================================
# Create Socket.IO ASGI app
# ============================================
#
# Server -> Client Events:
#   - corridor:alert              : ALERT/UPDATE/CLEARANCE for a civilian vehicle
#   - corridor:state_changed      : Corridor lifecycle transition
#   - corridor:spoofing           : Spoofing suspected, corridor frozen
#   - corridor:paused_escalated   : Paused corridor completed by timeout
#   - corridor:activation_failed  : Activation rejected
#   - alert                       : Operator-level alert banner

sio_app = socketio.ASGIApp(sio, app)


# ============================================
# Entry Point
# ============================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "corridor_engine.main:sio_app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        log_level="info"
    )
