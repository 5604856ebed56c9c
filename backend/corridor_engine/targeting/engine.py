"""
Alert Targeting Engine

Computes which civilian vehicles sit inside a corridor's buffer region and
what each should be told.

Buffer region:
- within ``lateralBufferMeters`` of the path
- only the next ``lookAheadMeters`` of path from the emergency vehicle's
  position, never the full route to destination
- flat ends at both extremities of that window, rounded joins between legs

Output is a pure function of (path, candidates, position): candidates are
processed in id order and no randomness is involved.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Optional, Tuple

import numpy as np

from corridor_engine.geo import PathGeometry, bearing_difference
from corridor_engine.models import (
    CandidateVehicle,
    GuidanceDirection,
    GuidanceRecord,
    PredictedPath,
    TargetSet,
)

logger = logging.getLogger(__name__)

MIN_LOOK_AHEAD_M = 1000.0
MAX_LOOK_AHEAD_M = 1500.0


class TargetingEngine(ABC):
    """Capability interface for alert targeting"""

    @abstractmethod
    def compute_targets(
        self,
        path: PredictedPath,
        candidates: Iterable[CandidateVehicle],
        from_position: Optional[Tuple[float, float]] = None,
        corridor_id: Optional[str] = None,
        computed_at: Optional[float] = None
    ) -> TargetSet:
        """Target set for a path and a candidate population"""


class BufferTargetingEngine(TargetingEngine):
    """
    Lateral-buffer targeting with look-ahead window

    Guidance from the relative bearing ``rel`` between the civilian's
    heading and the local path tangent:
    - |rel| <= pullOverDegrees: travelling with the corridor -> PULL_OVER
    - |rel| >= opposingDegrees: oncoming -> keep to the driving side
    - otherwise crossing -> continue away from the corridor, RIGHT when
      heading clockwise of the tangent, LEFT otherwise
    - unknown heading -> PULL_OVER

    ETA is the predicted time for the emergency vehicle to go from its
    current along-path position to the civilian's projection on the path.

    Usage:
        engine = BufferTargetingEngine(config.get_targeting_config())
        targets = engine.compute_targets(path, candidates, from_position=(lat, lon))
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        config = config or {}
        self.lateral_buffer_m = float(config.get('lateralBufferMeters', 500.0))
        look_ahead = float(config.get('lookAheadMeters', 1200.0))
        self.look_ahead_m = min(max(look_ahead, MIN_LOOK_AHEAD_M), MAX_LOOK_AHEAD_M)
        self.pull_over_degrees = float(config.get('pullOverDegrees', 45.0))
        self.opposing_degrees = float(config.get('opposingDegrees', 135.0))
        driving_side = str(config.get('drivingSide', 'right')).upper()
        self.keep_direction = GuidanceDirection.LEFT if driving_side == 'LEFT' else GuidanceDirection.RIGHT

        # Statistics
        self.total_computations = 0
        self.avg_computation_ms = 0.0
        # compute_targets runs on worker threads
        self._stats_lock = threading.Lock()

    def compute_targets(
        self,
        path: PredictedPath,
        candidates: Iterable[CandidateVehicle],
        from_position: Optional[Tuple[float, float]] = None,
        corridor_id: Optional[str] = None,
        computed_at: Optional[float] = None
    ) -> TargetSet:
        """
        Compute the target set for a path

        Args:
            path: Current predicted path
            candidates: Civilian vehicle positions
            from_position: Emergency vehicle position (lat, lon); defaults to path start
            corridor_id: Defaults to the path's corridor id
            computed_at: Timestamp recorded on the set (default now)

        Returns:
            TargetSet keyed by civilian vehicle id, in sorted order
        """
        start = time.time()
        corridor_id = corridor_id or path.corridor_id or ""
        computed_at = computed_at if computed_at is not None else start

        geometry = PathGeometry(path.waypoint_tuples(), path.cumulative_seconds or None)
        start_along = geometry.locate(*from_position).along if from_position else 0.0
        pieces = geometry.window(start_along, start_along + self.look_ahead_m)

        ordered = sorted(candidates, key=lambda c: c.vehicle_id)
        entries: Dict[str, GuidanceRecord] = {}

        if pieces and ordered:
            lats = np.array([c.latitude for c in ordered], dtype=float)
            lons = np.array([c.longitude for c in ordered], dtype=float)
            xy = geometry.project(lats, lons)

            best_dist, best_along, best_leg = self._nearest_in_window(pieces, xy)
            start_time = geometry.time_at(start_along)

            for idx in np.flatnonzero(np.isfinite(best_dist)):
                vehicle = ordered[int(idx)]
                along = float(best_along[idx])
                tangent = geometry.leg_bearing(int(best_leg[idx]))
                eta = max(0.0, round(geometry.time_at(along) - start_time, 1))
                entries[vehicle.vehicle_id] = GuidanceRecord(
                    direction=self.guidance_for(tangent, vehicle.heading),
                    eta_seconds=eta,
                )

        elapsed_ms = (time.time() - start) * 1000
        self._update_stats(elapsed_ms)
        logger.debug(
            "[TARGETING] %s: %d/%d candidates in buffer (%.1fms)",
            corridor_id, len(entries), len(ordered), elapsed_ms
        )

        return TargetSet(
            corridor_id=corridor_id,
            path_id=path.path_id,
            computed_at=computed_at,
            entries=entries,
        )

    def guidance_for(self, tangent: float, heading: Optional[float]) -> GuidanceDirection:
        if heading is None:
            return GuidanceDirection.PULL_OVER
        rel = bearing_difference(heading, tangent)
        if abs(rel) <= self.pull_over_degrees:
            return GuidanceDirection.PULL_OVER
        if abs(rel) >= self.opposing_degrees:
            return self.keep_direction
        return GuidanceDirection.RIGHT if rel > 0 else GuidanceDirection.LEFT

    def _nearest_in_window(self, pieces, xy: np.ndarray):
        """
        Nearest in-buffer position on the clipped path for every point

        Returns:
            (distance, along, leg_index) arrays; distance is inf outside the buffer
        """
        starts = np.array([p[0] for p in pieces])                # (P, 2)
        vecs = np.array([p[1] - p[0] for p in pieces])           # (P, 2)
        lens = np.hypot(vecs[:, 0], vecs[:, 1])                  # (P,)
        along0 = np.array([p[2] for p in pieces])                # (P,)
        legs = np.array([p[3] for p in pieces])                  # (P,)

        rel = xy[None, :, :] - starts[:, None, :]                # (P, N, 2)
        len2 = np.maximum(lens ** 2, 1e-9)
        t = (rel[..., 0] * vecs[:, None, 0] + rel[..., 1] * vecs[:, None, 1]) / len2[:, None]
        perp = rel - t[..., None] * vecs[:, None, :]
        dist = np.hypot(perp[..., 0], perp[..., 1])

        inside = (t >= 0.0) & (t <= 1.0) & (dist <= self.lateral_buffer_m)
        dist = np.where(inside, dist, np.inf)
        along = along0[:, None] + np.clip(t, 0.0, 1.0) * lens[:, None]
        leg = np.broadcast_to(legs[:, None], dist.shape)

        # rounded joins between consecutive pieces fill the outside of turns
        if len(pieces) > 1:
            joints = starts[1:]                                   # (P-1, 2)
            jd = np.hypot(xy[None, :, 0] - joints[:, None, 0], xy[None, :, 1] - joints[:, None, 1])
            jd = np.where(jd <= self.lateral_buffer_m, jd, np.inf)
            j_along = np.broadcast_to(along0[1:, None], jd.shape)
            j_leg = np.broadcast_to(legs[1:, None], jd.shape)
            dist = np.concatenate([dist, jd])
            along = np.concatenate([along, j_along])
            leg = np.concatenate([leg, j_leg])

        best = np.argmin(dist, axis=0)
        cols = np.arange(xy.shape[0])
        return dist[best, cols], along[best, cols], leg[best, cols]

    def _update_stats(self, elapsed_ms: float):
        with self._stats_lock:
            self.total_computations += 1
            n = self.total_computations
            self.avg_computation_ms = (self.avg_computation_ms * (n - 1) + elapsed_ms) / n

    def get_statistics(self) -> Dict[str, Any]:
        return {
            'totalComputations': self.total_computations,
            'avgComputationMs': round(self.avg_computation_ms, 2),
            'lateralBufferMeters': self.lateral_buffer_m,
            'lookAheadMeters': self.look_ahead_m,
        }
