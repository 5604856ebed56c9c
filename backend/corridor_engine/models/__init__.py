"""
Pydantic Models Package

All data models for the Corridor Orchestration Engine.
Import from here for convenience.
"""

# Coordinate models
from .coordinates import (
    GPSCoordinate,
    MapBounds,
)

# Telemetry models
from .telemetry import (
    PositionSample,
    CellularFix,
    AnomalyType,
    Severity,
    AnomalyFlag,
    ValidationDecision,
    ValidatedPosition,
    SpoofingEvent,
    ValidationResult,
)

# Route & traffic models
from .path import (
    Urgency,
    Waypoint,
    RoadSegment,
    CongestionLevel,
    CostSource,
    SegmentCost,
    TrafficDelta,
    AlternativeRoute,
    PredictedPath,
)

# Targeting models
from .targeting import (
    GuidanceDirection,
    CandidateVehicle,
    GuidanceRecord,
    TargetSet,
    AlertKind,
    AlertMessage,
)

# Corridor models
from .corridor import (
    CorridorState,
    AuthenticationResult,
    StateTransition,
    CorridorView,
    CorridorFilter,
    MissionSummary,
)

__all__ = [
    # Coordinates
    "GPSCoordinate",
    "MapBounds",

    # Telemetry
    "PositionSample",
    "CellularFix",
    "AnomalyType",
    "Severity",
    "AnomalyFlag",
    "ValidationDecision",
    "ValidatedPosition",
    "SpoofingEvent",
    "ValidationResult",

    # Route & traffic
    "Urgency",
    "Waypoint",
    "RoadSegment",
    "CongestionLevel",
    "CostSource",
    "SegmentCost",
    "TrafficDelta",
    "AlternativeRoute",
    "PredictedPath",

    # Targeting
    "GuidanceDirection",
    "CandidateVehicle",
    "GuidanceRecord",
    "TargetSet",
    "AlertKind",
    "AlertMessage",

    # Corridor
    "CorridorState",
    "AuthenticationResult",
    "StateTransition",
    "CorridorView",
    "CorridorFilter",
    "MissionSummary",
]
