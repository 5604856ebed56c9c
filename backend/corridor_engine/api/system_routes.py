"""
System Routes - Health and statistics

Endpoints:
- GET /api/system/health - Liveness and corridor count
- GET /api/system/statistics - Registry, validator and predictor statistics
"""

import time

from fastapi import APIRouter, Depends

from corridor_engine import __version__
from corridor_engine.orchestration import CorridorRegistry, get_registry

router = APIRouter(prefix="/api/system", tags=["system"])


@router.get("/health")
async def health(registry: CorridorRegistry = Depends(get_registry)):
    return {
        'status': 'ok',
        'version': __version__,
        'activeCorridors': registry.active_count,
        'monitorRunning': registry.running,
        'timestamp': time.time(),
    }


@router.get("/statistics")
async def statistics(registry: CorridorRegistry = Depends(get_registry)):
    return registry.get_statistics()
