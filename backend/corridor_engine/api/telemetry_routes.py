"""
Telemetry Routes - Position feeds

Endpoints:
- POST /api/telemetry - Emergency vehicle position report
- POST /api/civilians - Civilian vehicle positions (targeting candidates)
- POST /api/traffic/delta - Blocked/reopened segments and pushed costs
"""

from typing import Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from corridor_engine.models import (
    CandidateVehicle,
    CellularFix,
    CongestionLevel,
    PositionSample,
    SegmentCost,
    TrafficDelta,
    ValidationResult,
)
from corridor_engine.orchestration import CorridorRegistry, get_registry

router = APIRouter(prefix="/api", tags=["telemetry"])


# ============================================
# Request Models
# ============================================

class TelemetryRequest(BaseModel):
    """Position report with optional cellular fix"""
    sample: PositionSample
    cellFix: Optional[CellularFix] = None


class CivilianUpdateRequest(BaseModel):
    vehicles: List[CandidateVehicle] = Field(default_factory=list)


class SegmentCostInput(BaseModel):
    averageSpeedKmh: float = Field(..., gt=0)
    congestionLevel: CongestionLevel = CongestionLevel.LOW


class TrafficDeltaRequest(BaseModel):
    blockedSegments: List[str] = Field(default_factory=list)
    reopenedSegments: List[str] = Field(default_factory=list)
    segmentCosts: Dict[str, SegmentCostInput] = Field(default_factory=dict)


def _result_to_dict(result: ValidationResult) -> dict:
    return {
        'vehicleId': result.vehicle_id,
        'decision': result.decision.value,
        'confidence': result.confidence,
        'flags': [
            {'type': f.type.value, 'severity': f.severity.value, 'detail': f.detail}
            for f in result.flags
        ],
        'reason': result.reason,
        'smoothedPosition': {
            'latitude': result.validated.latitude,
            'longitude': result.validated.longitude,
        } if result.validated else None,
        'spoofingEventId': result.spoofing_event.event_id if result.spoofing_event else None,
    }


# ============================================
# Endpoints
# ============================================

@router.post("/telemetry")
async def post_telemetry(request: TelemetryRequest, registry: CorridorRegistry = Depends(get_registry)):
    """
    Submit an emergency vehicle position report

    Always answers 200: rejected samples are a validation outcome, not an
    HTTP error.
    """
    result = await registry.on_telemetry(request.sample.vehicle_id, request.sample, request.cellFix)
    return _result_to_dict(result)


@router.post("/civilians")
async def post_civilians(request: CivilianUpdateRequest, registry: CorridorRegistry = Depends(get_registry)):
    """Update civilian vehicle positions"""
    accepted = registry.update_civilians(request.vehicles)
    return {'received': len(request.vehicles), 'accepted': accepted}


@router.post("/traffic/delta")
async def post_traffic_delta(request: TrafficDeltaRequest, registry: CorridorRegistry = Depends(get_registry)):
    """Apply a traffic change; corridors whose path it touches are recalculated"""
    delta = TrafficDelta(
        blocked_segments=frozenset(request.blockedSegments),
        reopened_segments=frozenset(request.reopenedSegments),
        segment_costs={
            segment_id: SegmentCost(
                segment_id=segment_id,
                average_speed_kmh=cost.averageSpeedKmh,
                congestion_level=cost.congestionLevel,
            )
            for segment_id, cost in request.segmentCosts.items()
        },
    )
    recalculated = await registry.apply_traffic_delta(delta)
    return {'recalculated': recalculated, 'count': len(recalculated)}
