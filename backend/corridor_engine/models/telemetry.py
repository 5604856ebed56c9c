"""
Telemetry Models

Raw position reports from emergency vehicles and the validator's verdicts.
Speeds are meters per second, headings degrees clockwise from north,
timestamps epoch seconds.
"""

from enum import Enum
from typing import Optional, Tuple
from uuid import uuid4
import time

from pydantic import BaseModel, ConfigDict, Field


class PositionSample(BaseModel):
    """
    Raw position report from an emergency vehicle

    Immutable once created.
    """
    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "vehicle_id": "AMB-1",
                "latitude": 23.2156,
                "longitude": 72.6369,
                "accuracy_meters": 4.0,
                "speed": 13.9,
                "heading": 90.0,
                "timestamp": 1768040000.0,
                "signal_quality": 0.98
            }
        },
    )

    vehicle_id: str
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    accuracy_meters: float = Field(default=5.0, ge=0)
    speed: float = Field(default=0.0, ge=0)           # m/s as reported by the unit
    heading: Optional[float] = None                   # degrees 0-360
    timestamp: float
    signal_quality: float = Field(default=1.0, ge=0, le=1)


class CellularFix(BaseModel):
    """Secondary position estimate from cellular/tower triangulation"""
    model_config = ConfigDict(frozen=True)

    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    accuracy_meters: float = Field(default=300.0, ge=0)
    timestamp: Optional[float] = None


class AnomalyType(str, Enum):
    """Kinds of telemetry anomaly"""
    IMPOSSIBLE_SPEED = "ImpossibleSpeed"
    IMPOSSIBLE_ACCELERATION = "ImpossibleAcceleration"
    SIGNAL_ANOMALY = "SignalAnomaly"
    LOCATION_JUMP = "LocationJump"
    CELL_MISMATCH = "CellMismatch"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class AnomalyFlag(BaseModel):
    """A single anomaly raised against a sample"""
    model_config = ConfigDict(frozen=True)

    type: AnomalyType
    severity: Severity
    detail: str = ""


class ValidationDecision(str, Enum):
    """Validator classification of a sample"""
    ACCEPT = "ACCEPT"
    REVIEW = "REVIEW"
    REJECT = "REJECT"


class ValidatedPosition(BaseModel):
    """
    A position sample that passed authenticity scoring

    Produced exclusively by the TelemetryValidator. Carries the raw sample,
    the smoothed coordinates, and the confidence/flags it was accepted with.
    """
    model_config = ConfigDict(frozen=True)

    sample: PositionSample
    smoothed_latitude: float
    smoothed_longitude: float
    confidence: float = Field(ge=0, le=1)
    flags: Tuple[AnomalyFlag, ...] = ()

    @property
    def vehicle_id(self) -> str:
        return self.sample.vehicle_id

    @property
    def timestamp(self) -> float:
        return self.sample.timestamp

    @property
    def latitude(self) -> float:
        return self.smoothed_latitude

    @property
    def longitude(self) -> float:
        return self.smoothed_longitude

    @property
    def heading(self) -> Optional[float]:
        return self.sample.heading

    @property
    def speed(self) -> float:
        return self.sample.speed


class SpoofingEvent(BaseModel):
    """Raised after a run of consecutive REJECTs for one vehicle"""
    model_config = ConfigDict(frozen=True)

    event_id: str = Field(default_factory=lambda: f"SPF-{uuid4().hex[:8].upper()}")
    vehicle_id: str
    detected_at: float = Field(default_factory=time.time)
    sample_timestamps: Tuple[float, ...] = ()
    flags: Tuple[AnomalyFlag, ...] = ()
    reason: str = ""


class ValidationResult(BaseModel):
    """Outcome of validating one sample"""
    model_config = ConfigDict(frozen=True)

    vehicle_id: str
    decision: ValidationDecision
    confidence: float = Field(ge=0, le=1)
    flags: Tuple[AnomalyFlag, ...] = ()
    reason: Optional[str] = None
    validated: Optional[ValidatedPosition] = None
    spoofing_event: Optional[SpoofingEvent] = None

    @property
    def accepted(self) -> bool:
        return self.decision == ValidationDecision.ACCEPT

    @property
    def flag_types(self) -> set:
        return {f.type for f in self.flags}
