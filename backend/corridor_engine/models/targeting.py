"""
Alert Targeting Models

Civilian vehicles, per-vehicle guidance, target sets and the alert
messages produced by diffing consecutive target sets.
"""

from enum import Enum
from typing import Dict, Optional
import time

from pydantic import BaseModel, ConfigDict, Field


class GuidanceDirection(str, Enum):
    LEFT = "LEFT"
    RIGHT = "RIGHT"
    PULL_OVER = "PULL_OVER"


class CandidateVehicle(BaseModel):
    """Civilian vehicle position report"""
    model_config = ConfigDict(frozen=True)

    vehicle_id: str
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    heading: Optional[float] = None       # degrees, None when unknown
    speed: float = 0.0                    # m/s
    timestamp: float = Field(default_factory=time.time)


class GuidanceRecord(BaseModel):
    """What to tell one civilian vehicle"""
    model_config = ConfigDict(frozen=True)

    direction: GuidanceDirection
    eta_seconds: float


class TargetSet(BaseModel):
    """
    Civilian vehicles inside a corridor's buffer region

    Recomputed wholesale on each path update. Entries are keyed by civilian
    vehicle id and stored in sorted order.
    """
    model_config = ConfigDict(frozen=True)

    corridor_id: str
    path_id: Optional[str] = None
    computed_at: float = Field(default_factory=time.time)
    entries: Dict[str, GuidanceRecord] = Field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.entries)


class AlertKind(str, Enum):
    ALERT = "ALERT"               # newly inside the buffer
    UPDATE = "UPDATE"             # still inside, guidance or ETA changed
    CLEARANCE = "CLEARANCE"       # passed, safe to resume normal driving


class AlertMessage(BaseModel):
    """One diff entry handed to the alert dispatcher"""
    model_config = ConfigDict(frozen=True)

    corridor_id: str
    civilian_vehicle_id: str
    kind: AlertKind
    guidance: GuidanceDirection
    eta_seconds: float

    def to_dict(self) -> dict:
        return {
            'corridorId': self.corridor_id,
            'civilianVehicleId': self.civilian_vehicle_id,
            'kind': self.kind.value,
            'guidance': self.guidance.value,
            'etaSeconds': self.eta_seconds,
        }
