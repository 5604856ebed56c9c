"""
Corridor Models

Lifecycle states, authentication facts, and the read-only views of a
corridor handed out by the registry.
"""

from enum import Enum
from typing import Dict, List, Optional, Set
import time

from pydantic import BaseModel, ConfigDict, Field

from .coordinates import GPSCoordinate, MapBounds
from .path import PredictedPath, Urgency


class CorridorState(str, Enum):
    """Corridor lifecycle states"""
    REQUESTED = "REQUESTED"
    AUTHENTICATED = "AUTHENTICATED"
    ROUTE_CALCULATED = "ROUTE_CALCULATED"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    FROZEN = "FROZEN"
    COMPLETED = "COMPLETED"

    @property
    def terminal(self) -> bool:
        return self == CorridorState.COMPLETED


class AuthenticationResult(BaseModel):
    """Answer from the credential registry"""
    model_config = ConfigDict(frozen=True)

    vehicle_id: str
    success: bool
    reason: str = ""


class StateTransition(BaseModel):
    """One recorded lifecycle transition"""
    model_config = ConfigDict(frozen=True)

    from_state: CorridorState
    to_state: CorridorState
    timestamp: float = Field(default_factory=time.time)
    reason: str = ""


class CorridorView(BaseModel):
    """Snapshot of a corridor for callers outside its processing context"""
    model_config = ConfigDict(frozen=True)

    corridor_id: str
    vehicle_id: str
    destination: GPSCoordinate
    urgency: Urgency
    state: CorridorState
    current_path: Optional[PredictedPath] = None
    path_versions: int = 0
    last_position: Optional[GPSCoordinate] = None
    last_movement_timestamp: Optional[float] = None
    created_at: float
    target_count: int = 0

    def to_dict(self) -> dict:
        """Convert to dictionary for API response"""
        path = self.current_path
        return {
            'corridorId': self.corridor_id,
            'vehicleId': self.vehicle_id,
            'destination': self.destination.model_dump(),
            'urgency': self.urgency.value,
            'state': self.state.value,
            'pathVersions': self.path_versions,
            'currentPath': {
                **path.summary(),
                'segmentIds': list(path.segment_ids),
                'cumulativeSeconds': list(path.cumulative_seconds),
                'estimatedArrivalTimestamp': path.estimated_arrival_timestamp,
                'trafficCostSeconds': round(path.traffic_cost_seconds, 1),
                'directionChanges': path.direction_changes,
                'alternatives': [
                    {
                        'estimatedDurationSeconds': round(a.estimated_duration_seconds, 1),
                        'directionChanges': a.direction_changes,
                        'segmentIds': list(a.segment_ids),
                    }
                    for a in path.alternatives
                ],
            } if path else None,
            'lastPosition': self.last_position.model_dump() if self.last_position else None,
            'lastMovementTimestamp': self.last_movement_timestamp,
            'createdAt': self.created_at,
            'targetCount': self.target_count,
        }


class CorridorFilter(BaseModel):
    """Filters for listing live corridors"""
    states: Optional[Set[CorridorState]] = None
    urgency: Optional[Urgency] = None
    vehicle_prefix: Optional[str] = None
    bounds: Optional[MapBounds] = None


class MissionSummary(BaseModel):
    """Archived record of a completed corridor"""
    corridor_id: str
    vehicle_id: str
    destination: GPSCoordinate
    urgency: Urgency
    created_at: float
    completed_at: float
    duration_seconds: float
    completion_reason: str
    path_history: List[dict] = Field(default_factory=list)
    transitions: List[StateTransition] = Field(default_factory=list)
    alert_counts: Dict[str, int] = Field(default_factory=dict)
