"""
Telemetry Validator - Authenticity Scoring

Scores raw emergency-vehicle position reports, smooths the accepted ones and
detects spoofing runs.

Confidence is a weighted combination of:
- physical plausibility (pass/fail against speed, acceleration, jump limits)
- signal quality reported by the unit, discounted by its accuracy radius
- agreement with a secondary cellular fix, when one is supplied

Samples at or above the accept threshold become ValidatedPositions. REVIEW
samples advance the ordering watermark and the kinematic reference only;
they never move the smoothed position and are not forwarded downstream.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Tuple

from corridor_engine.geo import haversine_meters, destination_point
from corridor_engine.models import (
    AnomalyFlag,
    AnomalyType,
    CellularFix,
    PositionSample,
    Severity,
    SpoofingEvent,
    ValidatedPosition,
    ValidationDecision,
    ValidationResult,
)

logger = logging.getLogger(__name__)

OUT_OF_ORDER = "OUT_OF_ORDER"
VEHICLE_MISMATCH = "VEHICLE_MISMATCH"


@dataclass
class VehicleTrack:
    """
    Recent validation history for one vehicle

    ``last_sample`` is the kinematic reference: the most recent sample that
    was not rejected. ``watermark`` is its timestamp and survives a reset.
    ``smoothed`` only moves on ACCEPT.
    """
    vehicle_id: str
    last_sample: Optional[PositionSample] = None
    watermark: Optional[float] = None
    last_speed_mps: Optional[float] = None
    smoothed: Optional[Tuple[float, float]] = None
    smoothed_at: Optional[float] = None
    smoothed_variance: float = 0.0
    reject_run: Deque[Tuple[float, Tuple[AnomalyFlag, ...]]] = field(default_factory=deque)
    recent: Deque[ValidationResult] = field(default_factory=lambda: deque(maxlen=20))
    accepted: int = 0
    reviewed: int = 0
    rejected: int = 0
    last_seen: float = field(default_factory=time.time)

    @property
    def last_timestamp(self) -> Optional[float]:
        return self.watermark


class TelemetryValidator:
    """
    Validate emergency vehicle telemetry

    Usage:
        validator = TelemetryValidator(config.get_validator_config())
        result = validator.validate("AMB-1", sample)
        if result.accepted:
            corridor.handle_position(result.validated)
        if result.spoofing_event:
            corridor.freeze(result.spoofing_event)
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        config = config or {}

        # Physical limits
        self.max_speed_kmh = float(config.get('maxSpeedKmh', 150.0))
        self.max_acceleration = float(config.get('maxAccelerationMps2', 5.0))
        self.location_jump_meters = float(config.get('locationJumpMeters', 500.0))

        # Signal quality
        self.min_signal_quality = float(config.get('minSignalQuality', 0.5))
        self.good_accuracy_meters = float(config.get('goodAccuracyMeters', 20.0))
        self.max_accuracy_meters = float(config.get('maxAccuracyMeters', 100.0))

        # Confidence weighting and thresholds
        weights = config.get('weights', {}) or {}
        self.weight_plausibility = float(weights.get('plausibility', 0.5))
        self.weight_signal = float(weights.get('signal', 0.3))
        self.weight_cellular = float(weights.get('cellular', 0.2))
        self.accept_threshold = float(config.get('acceptThreshold', 0.95))
        self.review_floor = float(config.get('reviewFloor', 0.90))

        # Spoofing run detection
        self.spoofing_run_length = int(config.get('spoofingRunLength', 3))
        self.spoofing_window_seconds = float(config.get('spoofingWindowSeconds', 10.0))

        # Smoothing
        self.process_noise_mps = float(config.get('processNoiseMps', 2.0))

        self.tracks: Dict[str, VehicleTrack] = {}

        # Statistics
        self.total_validated = 0
        self.total_spoofing_events = 0

    # ============================================
    # Public interface
    # ============================================

    def track_for(self, vehicle_id: str) -> VehicleTrack:
        """Get (or create) the history kept for a vehicle"""
        track = self.tracks.get(vehicle_id)
        if track is None:
            track = VehicleTrack(vehicle_id=vehicle_id)
            self.tracks[vehicle_id] = track
        return track

    def validate(
        self,
        vehicle_id: str,
        sample: PositionSample,
        history: Optional[VehicleTrack] = None,
        cell_fix: Optional[CellularFix] = None
    ) -> ValidationResult:
        """
        Classify a position sample

        Args:
            vehicle_id: Vehicle the sample was received for
            sample: Raw position report
            history: Recent history (defaults to the validator's own track)
            cell_fix: Optional secondary positioning signal

        Returns:
            ValidationResult with decision, confidence and flags. ``validated``
            is set on ACCEPT only; ``spoofing_event`` is set when this sample
            completes a run of consecutive REJECTs.
        """
        track = history if history is not None else self.track_for(vehicle_id)
        track.last_seen = time.time()
        self.total_validated += 1

        if sample.vehicle_id != vehicle_id:
            logger.warning("[VALIDATOR] Sample for %s routed to %s", sample.vehicle_id, vehicle_id)
            return ValidationResult(
                vehicle_id=vehicle_id,
                decision=ValidationDecision.REJECT,
                confidence=0.0,
                reason=VEHICLE_MISMATCH,
            )

        # Ordering: never reorder, never let a stale sample touch state
        if track.last_timestamp is not None and sample.timestamp <= track.last_timestamp:
            logger.warning(
                "[VALIDATOR] %s out-of-order sample %.3f <= %.3f dropped",
                vehicle_id, sample.timestamp, track.last_timestamp
            )
            return ValidationResult(
                vehicle_id=vehicle_id,
                decision=ValidationDecision.REJECT,
                confidence=0.0,
                reason=OUT_OF_ORDER,
            )

        flags: List[AnomalyFlag] = []
        plausible, derived_speed = self._check_kinematics(track, sample, flags)
        signal_score = self._score_signal(sample, flags)
        cell_score = self._score_cellular(sample, cell_fix, flags)

        confidence = self._combine(plausible, signal_score, cell_score)
        decision = self._classify(confidence)

        result_flags = tuple(flags)
        validated = None
        spoofing_event = None

        if decision == ValidationDecision.ACCEPT:
            self._advance_reference(track, sample, derived_speed)
            self._update_smoothing(track, sample)
            track.reject_run.clear()
            track.accepted += 1
            validated = ValidatedPosition(
                sample=sample,
                smoothed_latitude=track.smoothed[0],
                smoothed_longitude=track.smoothed[1],
                confidence=confidence,
                flags=result_flags,
            )

        elif decision == ValidationDecision.REVIEW:
            self._advance_reference(track, sample, derived_speed)
            track.reject_run.clear()
            track.reviewed += 1
            logger.info(
                "[VALIDATOR] %s sample under REVIEW (confidence %.3f, flags=%s)",
                vehicle_id, confidence, [f.type.value for f in flags]
            )

        else:
            track.rejected += 1
            spoofing_event = self._register_reject(track, sample, result_flags)
            logger.warning(
                "[VALIDATOR] %s sample REJECTED (confidence %.3f, flags=%s)",
                vehicle_id, confidence, [f.type.value for f in flags]
            )

        result = ValidationResult(
            vehicle_id=vehicle_id,
            decision=decision,
            confidence=confidence,
            flags=result_flags,
            validated=validated,
            spoofing_event=spoofing_event,
        )
        track.recent.append(result)
        return result

    def last_position(self, vehicle_id: str) -> Optional[Tuple[float, float, float]]:
        """Latest smoothed (lat, lon, timestamp) for a vehicle, if any"""
        track = self.tracks.get(vehicle_id)
        if not track or track.smoothed is None:
            return None
        return (track.smoothed[0], track.smoothed[1], track.smoothed_at)

    def reset(self, vehicle_id: str):
        """
        Clear the spoofing run and kinematic reference

        Used after a successful re-authentication so that the position the
        vehicle held before being frozen is not used to judge the next one.
        The smoothed position and the ordering watermark are kept.
        """
        track = self.tracks.get(vehicle_id)
        if not track:
            return
        track.reject_run.clear()
        track.last_sample = None
        track.last_speed_mps = None

    def forget(self, vehicle_id: str):
        self.tracks.pop(vehicle_id, None)

    def prune(self, older_than: float) -> int:
        """Drop tracks not seen since ``older_than``; returns the count removed"""
        stale = [vid for vid, t in self.tracks.items() if t.last_seen < older_than]
        for vid in stale:
            del self.tracks[vid]
        return len(stale)

    def get_statistics(self) -> Dict[str, Any]:
        return {
            'trackedVehicles': len(self.tracks),
            'totalValidated': self.total_validated,
            'spoofingEvents': self.total_spoofing_events,
            'accepted': sum(t.accepted for t in self.tracks.values()),
            'reviewed': sum(t.reviewed for t in self.tracks.values()),
            'rejected': sum(t.rejected for t in self.tracks.values()),
        }

    # ============================================
    # Scoring
    # ============================================

    def _check_kinematics(
        self,
        track: VehicleTrack,
        sample: PositionSample,
        flags: List[AnomalyFlag]
    ) -> Tuple[bool, Optional[float]]:
        """
        Compare against the last accepted sample

        Speed and acceleration limits apply to the derived speed ``d / dt``.
        The accuracy radii only widen the displacement the reported speed
        may explain before a location jump is flagged.
        """
        last = track.last_sample
        if last is None:
            return True, None

        dt = sample.timestamp - last.timestamp
        distance = haversine_meters(last.latitude, last.longitude, sample.latitude, sample.longitude)
        uncertainty = last.accuracy_meters + sample.accuracy_meters
        derived = distance / dt

        plausible = True
        max_speed_mps = self.max_speed_kmh / 3.6

        if derived > max_speed_mps:
            plausible = False
            ratio = derived / max_speed_mps
            flags.append(AnomalyFlag(
                type=AnomalyType.IMPOSSIBLE_SPEED,
                severity=Severity.CRITICAL if ratio > 2 else Severity.HIGH,
                detail=f"{derived * 3.6:.0f} km/h over {dt:.1f}s (max {self.max_speed_kmh:.0f} km/h)",
            ))

        previous_speed = track.last_speed_mps if track.last_speed_mps is not None else last.speed
        acceleration = abs(derived - previous_speed) / dt
        if acceleration > self.max_acceleration:
            plausible = False
            flags.append(AnomalyFlag(
                type=AnomalyType.IMPOSSIBLE_ACCELERATION,
                severity=Severity.HIGH,
                detail=f"{acceleration:.1f} m/s^2 (max {self.max_acceleration:.1f})",
            ))

        expected = max(sample.speed, last.speed) * dt
        excess = distance - expected - uncertainty
        if excess > self.location_jump_meters:
            plausible = False
            flags.append(AnomalyFlag(
                type=AnomalyType.LOCATION_JUMP,
                severity=Severity.HIGH,
                detail=f"{distance:.0f} m displacement, {excess:.0f} m unexplained by reported speed",
            ))

        return plausible, derived

    def _score_signal(self, sample: PositionSample, flags: List[AnomalyFlag]) -> float:
        """Signal quality discounted by the accuracy radius"""
        if sample.accuracy_meters <= self.good_accuracy_meters:
            accuracy_factor = 1.0
        else:
            accuracy_factor = self.good_accuracy_meters / sample.accuracy_meters

        if sample.signal_quality < self.min_signal_quality or sample.accuracy_meters > self.max_accuracy_meters:
            flags.append(AnomalyFlag(
                type=AnomalyType.SIGNAL_ANOMALY,
                severity=Severity.MEDIUM,
                detail=f"quality {sample.signal_quality:.2f}, accuracy {sample.accuracy_meters:.0f} m",
            ))

        return sample.signal_quality * accuracy_factor

    def _score_cellular(
        self,
        sample: PositionSample,
        cell_fix: Optional[CellularFix],
        flags: List[AnomalyFlag]
    ) -> Optional[float]:
        """Agreement with the cellular fix, None when there is no fix"""
        if cell_fix is None:
            return None

        distance = haversine_meters(sample.latitude, sample.longitude, cell_fix.latitude, cell_fix.longitude)
        tolerance = max(cell_fix.accuracy_meters + sample.accuracy_meters, 1.0)

        if distance <= tolerance:
            return 1.0

        flags.append(AnomalyFlag(
            type=AnomalyType.CELL_MISMATCH,
            severity=Severity.HIGH if distance > 2 * tolerance else Severity.MEDIUM,
            detail=f"{distance:.0f} m from cellular fix (tolerance {tolerance:.0f} m)",
        ))
        return max(0.0, 1.0 - (distance - tolerance) / tolerance)

    def _combine(self, plausible: bool, signal_score: float, cell_score: Optional[float]) -> float:
        total = self.weight_plausibility * (1.0 if plausible else 0.0) + self.weight_signal * signal_score
        weight = self.weight_plausibility + self.weight_signal
        if cell_score is not None:
            total += self.weight_cellular * cell_score
            weight += self.weight_cellular
        confidence = total / weight if weight > 0 else 0.0
        return round(min(1.0, max(0.0, confidence)), 4)

    def _classify(self, confidence: float) -> ValidationDecision:
        if confidence >= self.accept_threshold:
            return ValidationDecision.ACCEPT
        if confidence >= self.review_floor:
            return ValidationDecision.REVIEW
        return ValidationDecision.REJECT

    # ============================================
    # State updates
    # ============================================

    def _advance_reference(self, track: VehicleTrack, sample: PositionSample, derived_speed: Optional[float]):
        track.last_sample = sample
        track.watermark = sample.timestamp
        track.last_speed_mps = derived_speed if derived_speed is not None else sample.speed

    def _update_smoothing(self, track: VehicleTrack, sample: PositionSample):
        """Accuracy-weighted blend of dead-reckoned prediction and measurement"""
        meas_var = max(sample.accuracy_meters, 1.0) ** 2

        if track.smoothed is None or track.smoothed_at is None:
            track.smoothed = (sample.latitude, sample.longitude)
            track.smoothed_variance = meas_var
            track.smoothed_at = sample.timestamp
            return

        dt = max(0.0, sample.timestamp - track.smoothed_at)
        pred_lat, pred_lon = track.smoothed
        if sample.heading is not None and sample.speed > 0:
            pred_lat, pred_lon = destination_point(pred_lat, pred_lon, sample.heading, sample.speed * dt)

        pred_var = track.smoothed_variance + (self.process_noise_mps * dt) ** 2
        gain = pred_var / (pred_var + meas_var)

        track.smoothed = (
            pred_lat + gain * (sample.latitude - pred_lat),
            pred_lon + gain * (sample.longitude - pred_lon),
        )
        track.smoothed_variance = (1.0 - gain) * pred_var
        track.smoothed_at = sample.timestamp

    def _register_reject(
        self,
        track: VehicleTrack,
        sample: PositionSample,
        flags: Tuple[AnomalyFlag, ...]
    ) -> Optional[SpoofingEvent]:
        """Extend the consecutive-REJECT run; emit a spoofing event when it completes"""
        track.reject_run.append((sample.timestamp, flags))

        while track.reject_run and sample.timestamp - track.reject_run[0][0] > self.spoofing_window_seconds:
            track.reject_run.popleft()

        if len(track.reject_run) < self.spoofing_run_length:
            return None

        event = SpoofingEvent(
            vehicle_id=track.vehicle_id,
            sample_timestamps=tuple(ts for ts, _ in track.reject_run),
            flags=tuple(flag for _, run_flags in track.reject_run for flag in run_flags),
            reason=(
                f"{len(track.reject_run)} consecutive rejected samples within "
                f"{self.spoofing_window_seconds:.0f}s"
            ),
        )
        track.reject_run.clear()
        self.total_spoofing_events += 1

        logger.error("[VALIDATOR] Spoofing suspected for %s: %s", track.vehicle_id, event.reason)
        return event
