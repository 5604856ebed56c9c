"""
Telemetry Package

Authenticity scoring and smoothing of emergency vehicle position reports.
"""

from .validator import (
    OUT_OF_ORDER,
    VEHICLE_MISMATCH,
    TelemetryValidator,
    VehicleTrack,
)

__all__ = [
    "OUT_OF_ORDER",
    "VEHICLE_MISMATCH",
    "TelemetryValidator",
    "VehicleTrack",
]
