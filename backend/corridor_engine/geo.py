"""
Geodesy Utilities

Great-circle helpers plus ``PathGeometry``, a local planar projection of a
polyline used to locate vehicles along a predicted path.

All distances are meters, bearings are degrees clockwise from north.
"""

import math
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, List

import numpy as np

EARTH_RADIUS_M: float = 6_371_000.0


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters between two WGS-84 coordinates."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlam = math.radians(lon2 - lon1)
    a = (
        math.sin(dphi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(dlam / 2) ** 2
    )
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def initial_bearing(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Initial bearing (0-360) from point 1 towards point 2."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dlam = math.radians(lon2 - lon1)
    y = math.sin(dlam) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(dlam)
    return (math.degrees(math.atan2(y, x)) + 360.0) % 360.0


def destination_point(lat: float, lon: float, bearing: float, distance: float) -> Tuple[float, float]:
    """Point reached travelling ``distance`` meters on ``bearing`` from (lat, lon)."""
    delta = distance / EARTH_RADIUS_M
    theta = math.radians(bearing)
    phi1 = math.radians(lat)
    lam1 = math.radians(lon)

    phi2 = math.asin(
        math.sin(phi1) * math.cos(delta)
        + math.cos(phi1) * math.sin(delta) * math.cos(theta)
    )
    lam2 = lam1 + math.atan2(
        math.sin(theta) * math.sin(delta) * math.cos(phi1),
        math.cos(delta) - math.sin(phi1) * math.sin(phi2),
    )
    return math.degrees(phi2), (math.degrees(lam2) + 540.0) % 360.0 - 180.0


def bearing_difference(target: float, reference: float) -> float:
    """Signed smallest angle from ``reference`` to ``target`` in (-180, 180]."""
    diff = (target - reference) % 360.0
    if diff > 180.0:
        diff -= 360.0
    return diff


@dataclass(frozen=True)
class PathLocation:
    """Where a point sits relative to a polyline"""
    along: float            # meters from the first waypoint, measured on the path
    lateral: float          # signed offset, positive = right of travel direction
    distance: float         # distance to the closest point on the path
    leg_index: int          # index of the closest leg


class PathGeometry:
    """
    Planar view of a lat/lon polyline

    Uses an equirectangular projection around the first waypoint, which is
    accurate to well under a meter over the few kilometers a corridor spans.

    Usage:
        geometry = PathGeometry(waypoints, cumulative_seconds)
        loc = geometry.locate(lat, lon)
        eta = geometry.time_at(loc.along)
    """

    def __init__(
        self,
        waypoints: Sequence[Tuple[float, float]],
        cumulative_seconds: Optional[Sequence[float]] = None
    ):
        if not waypoints:
            raise ValueError("PathGeometry requires at least one waypoint")

        self.waypoints: List[Tuple[float, float]] = [(float(a), float(b)) for a, b in waypoints]
        self.ref_lat, self.ref_lon = self.waypoints[0]
        self._cos_ref = math.cos(math.radians(self.ref_lat))

        lats = np.array([w[0] for w in self.waypoints], dtype=float)
        lons = np.array([w[1] for w in self.waypoints], dtype=float)
        self.xy = self.project(lats, lons)

        self.leg_start = self.xy[:-1]
        self.leg_vec = self.xy[1:] - self.xy[:-1]
        self.leg_len = np.hypot(self.leg_vec[:, 0], self.leg_vec[:, 1])
        self.cum_along = np.concatenate([[0.0], np.cumsum(self.leg_len)])

        if cumulative_seconds is not None and len(cumulative_seconds) == len(self.waypoints):
            self.cum_seconds = np.asarray(cumulative_seconds, dtype=float)
        else:
            self.cum_seconds = None

    @property
    def length(self) -> float:
        return float(self.cum_along[-1])

    @property
    def leg_count(self) -> int:
        return len(self.leg_len)

    def project(self, lats, lons) -> np.ndarray:
        """Project lat/lon arrays to local (x east, y north) meters"""
        lats = np.asarray(lats, dtype=float)
        lons = np.asarray(lons, dtype=float)
        x = np.radians(lons - self.ref_lon) * EARTH_RADIUS_M * self._cos_ref
        y = np.radians(lats - self.ref_lat) * EARTH_RADIUS_M
        return np.stack([x, y], axis=-1)

    def locate(self, lat: float, lon: float) -> PathLocation:
        """Locate a single point relative to the path"""
        p = self.project([lat], [lon])[0]

        if self.leg_count == 0:
            d = float(np.hypot(*(p - self.xy[0])))
            return PathLocation(along=0.0, lateral=d, distance=d, leg_index=0)

        rel = p - self.leg_start
        len2 = np.maximum(self.leg_len ** 2, 1e-9)
        t = np.clip((rel[:, 0] * self.leg_vec[:, 0] + rel[:, 1] * self.leg_vec[:, 1]) / len2, 0.0, 1.0)
        closest = self.leg_start + self.leg_vec * t[:, None]
        dist = np.hypot(p[0] - closest[:, 0], p[1] - closest[:, 1])

        i = int(np.argmin(dist))
        cross = self.leg_vec[i, 0] * rel[i, 1] - self.leg_vec[i, 1] * rel[i, 0]
        side = -1.0 if cross > 0 else 1.0

        return PathLocation(
            along=float(self.cum_along[i] + t[i] * self.leg_len[i]),
            lateral=float(side * dist[i]),
            distance=float(dist[i]),
            leg_index=i,
        )

    def leg_at(self, along: float) -> int:
        """Index of the leg containing an along-track distance"""
        if self.leg_count == 0:
            return 0
        idx = int(np.searchsorted(self.cum_along, along, side='right')) - 1
        return max(0, min(idx, self.leg_count - 1))

    def leg_bearing(self, leg_index: int) -> float:
        """Bearing of a leg (travel direction)"""
        if self.leg_count == 0:
            return 0.0
        (lat1, lon1), (lat2, lon2) = self.waypoints[leg_index], self.waypoints[leg_index + 1]
        return initial_bearing(lat1, lon1, lat2, lon2)

    def time_at(self, along: float) -> float:
        """Seconds from path start to reach an along-track distance"""
        if self.cum_seconds is None:
            return 0.0
        return float(np.interp(along, self.cum_along, self.cum_seconds))

    def window(self, start_along: float, end_along: float) -> List[Tuple[np.ndarray, np.ndarray, float, int]]:
        """
        Clip the path to [start_along, end_along]

        Returns:
            List of (start_xy, end_xy, along_at_start, leg_index) pieces in travel order
        """
        pieces = []
        end_along = min(end_along, self.length)
        for i in range(self.leg_count):
            a0, a1 = self.cum_along[i], self.cum_along[i + 1]
            if a1 <= start_along or a0 >= end_along or self.leg_len[i] <= 0:
                continue
            lo = max(a0, start_along)
            hi = min(a1, end_along)
            f0 = (lo - a0) / self.leg_len[i]
            f1 = (hi - a0) / self.leg_len[i]
            pieces.append((
                self.leg_start[i] + self.leg_vec[i] * f0,
                self.leg_start[i] + self.leg_vec[i] * f1,
                float(lo),
                i,
            ))
        return pieces
