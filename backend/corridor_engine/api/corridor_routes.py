"""
Corridor Routes - Corridor lifecycle endpoints

Endpoints:
- POST /api/corridors - Activate a corridor for an emergency vehicle
- GET /api/corridors - List live corridors (filters: state, urgency, prefix, bbox)
- GET /api/corridors/{corridor_id} - Get one corridor
- DELETE /api/corridors/{corridor_id} - Deactivate (complete) a corridor
- POST /api/corridors/{corridor_id}/reauthenticate - Release a FROZEN corridor
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from corridor_engine.errors import CorridorError
from corridor_engine.models import CorridorFilter, CorridorState, GPSCoordinate, MapBounds, Urgency
from corridor_engine.orchestration import CorridorRegistry, get_registry

from .errors import http_error

router = APIRouter(prefix="/api/corridors", tags=["corridors"])


# ============================================
# Request Models
# ============================================

class ActivateRequest(BaseModel):
    """Request to activate a corridor"""
    vehicleId: str = Field(..., description="Emergency vehicle id, e.g. AMB-1")
    destination: GPSCoordinate
    urgency: Urgency = Urgency.HIGH
    origin: Optional[GPSCoordinate] = Field(
        default=None,
        description="Start position (defaults to the vehicle's last validated position)"
    )


# ============================================
# Endpoints
# ============================================

@router.post("", status_code=201)
async def activate_corridor(
    request: ActivateRequest,
    registry: CorridorRegistry = Depends(get_registry)
):
    """
    Activate a corridor

    Authenticates the vehicle, calculates the initial path and starts
    alert targeting. Fails with 403 (not authenticated), 409 (already
    active) or 422 (no route).

    Example:
    ```
    curl -X POST http://localhost:8000/api/corridors \\
      -H "Content-Type: application/json" \\
      -d '{"vehicleId":"AMB-1","destination":{"latitude":23.22,"longitude":72.64},"urgency":"CRITICAL"}'
    ```
    """
    try:
        view = await registry.activate(request.vehicleId, request.destination, request.urgency, request.origin)
    except CorridorError as e:
        raise http_error(e)
    return view.to_dict()


@router.get("")
async def list_corridors(
    state: Optional[List[CorridorState]] = Query(None),
    urgency: Optional[Urgency] = None,
    vehiclePrefix: Optional[str] = None,
    north: Optional[float] = None,
    south: Optional[float] = None,
    east: Optional[float] = None,
    west: Optional[float] = None,
    registry: CorridorRegistry = Depends(get_registry)
):
    """List live corridors"""
    bounds = None
    if None not in (north, south, east, west):
        bounds = MapBounds(north=north, south=south, east=east, west=west)

    filters = CorridorFilter(
        states=set(state) if state else None,
        urgency=urgency,
        vehicle_prefix=vehiclePrefix,
        bounds=bounds,
    )
    corridors = registry.list_active(filters)
    return {
        'count': len(corridors),
        'corridors': [c.to_dict() for c in corridors],
    }


@router.get("/{corridor_id}")
async def get_corridor(corridor_id: str, registry: CorridorRegistry = Depends(get_registry)):
    """Get a live corridor"""
    try:
        return registry.get(corridor_id).to_dict()
    except CorridorError as e:
        raise http_error(e)


@router.delete("/{corridor_id}")
async def deactivate_corridor(
    corridor_id: str,
    reason: str = Query("deactivated", max_length=100),
    registry: CorridorRegistry = Depends(get_registry)
):
    """Complete a corridor and archive its mission summary"""
    try:
        summary = await registry.deactivate(corridor_id, reason=reason)
    except CorridorError as e:
        raise http_error(e)
    return {
        'status': 'COMPLETED',
        'corridorId': corridor_id,
        'durationSeconds': round(summary.duration_seconds, 1),
        'alertCounts': summary.alert_counts,
        'pathVersions': len(summary.path_history),
    }


@router.post("/{corridor_id}/reauthenticate")
async def reauthenticate_corridor(corridor_id: str, registry: CorridorRegistry = Depends(get_registry)):
    """Re-verify credentials of a FROZEN corridor's vehicle and resume it"""
    try:
        return (await registry.reauthenticate(corridor_id)).to_dict()
    except CorridorError as e:
        raise http_error(e)
