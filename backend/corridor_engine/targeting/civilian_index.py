"""
Civilian Vehicle Index

In-memory grid-bucketed index of civilian vehicle positions, used as the
candidate source for alert targeting. Entries older than ``maxAgeSeconds``
are dropped by ``expire``.
"""

import logging
import math
import time
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from corridor_engine.geo import EARTH_RADIUS_M
from corridor_engine.models import CandidateVehicle, MapBounds, PredictedPath

logger = logging.getLogger(__name__)

Cell = Tuple[int, int]


class CivilianVehicleIndex:
    """
    Spatial index of civilian vehicles

    Usage:
        index = CivilianVehicleIndex(cell_degrees=0.01)
        index.upsert(vehicles)
        candidates = index.near_path(path, margin_meters=500)
    """

    def __init__(self, cell_degrees: float = 0.01, max_age_seconds: float = 120.0):
        self.cell_degrees = cell_degrees
        self.max_age_seconds = max_age_seconds
        self._vehicles: Dict[str, CandidateVehicle] = {}
        self._cells: Dict[Cell, Set[str]] = {}
        self._vehicle_cell: Dict[str, Cell] = {}

    def __len__(self) -> int:
        return len(self._vehicles)

    def _cell(self, lat: float, lon: float) -> Cell:
        return (math.floor(lat / self.cell_degrees), math.floor(lon / self.cell_degrees))

    def upsert(self, vehicles: Iterable[CandidateVehicle]) -> int:
        """Insert or move vehicles; older reports than the stored one are ignored"""
        count = 0
        for vehicle in vehicles:
            current = self._vehicles.get(vehicle.vehicle_id)
            if current is not None and current.timestamp > vehicle.timestamp:
                continue
            self.remove(vehicle.vehicle_id)
            cell = self._cell(vehicle.latitude, vehicle.longitude)
            self._vehicles[vehicle.vehicle_id] = vehicle
            self._cells.setdefault(cell, set()).add(vehicle.vehicle_id)
            self._vehicle_cell[vehicle.vehicle_id] = cell
            count += 1
        return count

    def remove(self, vehicle_id: str):
        cell = self._vehicle_cell.pop(vehicle_id, None)
        self._vehicles.pop(vehicle_id, None)
        if cell is not None:
            bucket = self._cells.get(cell)
            if bucket is not None:
                bucket.discard(vehicle_id)
                if not bucket:
                    del self._cells[cell]

    def get(self, vehicle_id: str) -> Optional[CandidateVehicle]:
        return self._vehicles.get(vehicle_id)

    def query_bounds(self, bounds: MapBounds) -> List[CandidateVehicle]:
        """Vehicles inside a bounding box, sorted by id"""
        south, west = self._cell(bounds.south, bounds.west)
        north, east = self._cell(bounds.north, bounds.east)

        found = []
        for row in range(south, north + 1):
            for col in range(west, east + 1):
                for vehicle_id in self._cells.get((row, col), ()):
                    vehicle = self._vehicles[vehicle_id]
                    if bounds.contains(vehicle.latitude, vehicle.longitude):
                        found.append(vehicle)
        return sorted(found, key=lambda v: v.vehicle_id)

    def near_path(self, path: PredictedPath, margin_meters: float = 500.0) -> List[CandidateVehicle]:
        """Vehicles inside the path's bounding box grown by a margin"""
        if not path.waypoints:
            return []
        lats = [w.latitude for w in path.waypoints]
        lons = [w.longitude for w in path.waypoints]

        margin_lat = math.degrees(margin_meters / EARTH_RADIUS_M)
        cos_lat = max(math.cos(math.radians(sum(lats) / len(lats))), 1e-6)
        margin_lon = margin_lat / cos_lat

        bounds = MapBounds(
            north=max(lats) + margin_lat,
            south=min(lats) - margin_lat,
            east=max(lons) + margin_lon,
            west=min(lons) - margin_lon,
        )
        return self.query_bounds(bounds)

    def expire(self, now: Optional[float] = None) -> int:
        """Drop stale entries; returns the number removed"""
        cutoff = (now if now is not None else time.time()) - self.max_age_seconds
        stale = [vid for vid, v in self._vehicles.items() if v.timestamp < cutoff]
        for vehicle_id in stale:
            self.remove(vehicle_id)
        if stale:
            logger.debug("[TARGETING] Expired %d civilian vehicles", len(stale))
        return len(stale)

    def get_statistics(self) -> Dict[str, Any]:
        return {
            'vehicles': len(self._vehicles),
            'cells': len(self._cells),
        }
