"""
Route & Traffic Models

Road segments, traffic costs and the immutable PredictedPath produced by
the route predictor. Distances are meters, durations seconds.
"""

from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple
from uuid import uuid4
import time

from pydantic import BaseModel, ConfigDict, Field


class Urgency(str, Enum):
    """Mission urgency - scales the speed an emergency vehicle can hold"""
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    STANDARD = "STANDARD"


class Waypoint(BaseModel):
    """Point on a predicted path"""
    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float

    def as_tuple(self) -> Tuple[float, float]:
        return (self.latitude, self.longitude)


class RoadSegment(BaseModel):
    """Directed road segment between two junctions"""
    model_config = ConfigDict(frozen=True)

    segment_id: str
    start_latitude: float
    start_longitude: float
    end_latitude: float
    end_longitude: float
    length_meters: float = Field(ge=0)
    speed_limit_kmh: float = Field(default=50.0, gt=0)


class CongestionLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    JAM = "JAM"


class CostSource(str, Enum):
    """Where a segment cost came from"""
    LIVE = "LIVE"               # answered by the provider within the deadline
    CACHED = "CACHED"           # last live answer, possibly stale
    HISTORICAL = "HISTORICAL"   # derived from the speed limit


class SegmentCost(BaseModel):
    """Traffic cost of one segment"""
    model_config = ConfigDict(frozen=True)

    segment_id: str
    congestion_level: CongestionLevel = CongestionLevel.LOW
    average_speed_kmh: float = Field(gt=0)
    source: CostSource = CostSource.LIVE
    fetched_at: float = Field(default_factory=time.time)

    @property
    def degraded(self) -> bool:
        return self.source != CostSource.LIVE


class TrafficDelta(BaseModel):
    """Change in road conditions pushed by the traffic feed or an operator"""
    blocked_segments: FrozenSet[str] = frozenset()
    reopened_segments: FrozenSet[str] = frozenset()
    segment_costs: Dict[str, SegmentCost] = Field(default_factory=dict)

    @property
    def touched_segments(self) -> FrozenSet[str]:
        return frozenset(self.blocked_segments) | frozenset(self.reopened_segments) | frozenset(self.segment_costs)

    @property
    def empty(self) -> bool:
        return not self.touched_segments


class AlternativeRoute(BaseModel):
    """Runner-up route kept alongside a predicted path"""
    model_config = ConfigDict(frozen=True)

    waypoints: Tuple[Waypoint, ...]
    segment_ids: Tuple[Optional[str], ...]
    estimated_duration_seconds: float
    direction_changes: int = 0


class PredictedPath(BaseModel):
    """
    Immutable, versioned estimate of the route ahead

    Superseded (never edited) on recalculation: each new version links to
    the one it replaces through ``previous_path_id``.

    ``cumulative_seconds[i]`` is the predicted time to reach ``waypoints[i]``
    from the first waypoint. ``confidence`` is 0 for dead-reckoning only and
    1 when every segment was costed from live data.
    """
    model_config = ConfigDict(frozen=True)

    path_id: str = Field(default_factory=lambda: f"PATH-{uuid4().hex[:10].upper()}")
    corridor_id: Optional[str] = None
    version: int = 1
    previous_path_id: Optional[str] = None

    waypoints: Tuple[Waypoint, ...]
    segment_ids: Tuple[Optional[str], ...] = ()
    cumulative_seconds: Tuple[float, ...] = ()

    distance_meters: float = 0.0
    estimated_duration_seconds: float
    estimated_arrival_timestamp: float
    traffic_cost_seconds: float = 0.0
    direction_changes: int = 0

    confidence: float = Field(ge=0, le=1)
    partial: bool = False
    degraded_reason: Optional[str] = None
    alternatives: Tuple[AlternativeRoute, ...] = ()

    generated_at: float = Field(default_factory=time.time)

    def waypoint_tuples(self) -> list:
        return [w.as_tuple() for w in self.waypoints]

    def summary(self) -> dict:
        """Compact form used in mission archives"""
        return {
            'pathId': self.path_id,
            'version': self.version,
            'previousPathId': self.previous_path_id,
            'generatedAt': self.generated_at,
            'confidence': self.confidence,
            'partial': self.partial,
            'degradedReason': self.degraded_reason,
            'distanceMeters': round(self.distance_meters, 1),
            'estimatedDurationSeconds': round(self.estimated_duration_seconds, 1),
            'waypoints': [[w.latitude, w.longitude] for w in self.waypoints],
        }
