"""
Route Predictor

Produces and incrementally updates the PredictedPath of a corridor.

Routes are chosen by minimum estimated arrival time under live traffic,
with ties (within a tolerance) broken in favour of the route with fewer
direction changes. Traffic lookups share one deadline per call; segments
that miss it are costed from cached or historical data and the path's
confidence is lowered accordingly.
"""

import asyncio
import itertools
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple, Union

import networkx as nx

from corridor_engine.errors import NoRouteFound, CorridorNotFound
from corridor_engine.geo import haversine_meters, initial_bearing, bearing_difference
from corridor_engine.models import (
    AlternativeRoute,
    CostSource,
    GPSCoordinate,
    PredictedPath,
    RoadSegment,
    SegmentCost,
    TrafficDelta,
    Urgency,
    Waypoint,
)
from .road_network import RoadNetwork
from .traffic import TrafficCostService

logger = logging.getLogger(__name__)

Point = Union[Tuple[float, float], GPSCoordinate]

DEFAULT_URGENCY_FACTORS = {
    Urgency.CRITICAL: 1.4,
    Urgency.HIGH: 1.25,
    Urgency.STANDARD: 1.0,
}


def _as_point(point: Point) -> Tuple[float, float]:
    if isinstance(point, GPSCoordinate):
        return point.as_tuple()
    if hasattr(point, 'latitude') and hasattr(point, 'longitude'):
        return (point.latitude, point.longitude)
    return (float(point[0]), float(point[1]))


@dataclass
class RecalculationPolicy:
    """
    When a corridor should ask for a new path

    Checked by the corridor state machine on every accepted position.
    """
    cost_delta_ratio: float = 0.2
    cadence_seconds: float = 30.0
    off_route_meters: float = 150.0

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "RecalculationPolicy":
        return cls(
            cost_delta_ratio=float(config.get('recalcCostDeltaRatio', 0.2)),
            cadence_seconds=float(config.get('recalcCadenceSeconds', 30.0)),
            off_route_meters=float(config.get('offRouteMeters', 150.0)),
        )

    def reason_to_recalculate(
        self,
        path: PredictedPath,
        now: float,
        current_traffic_cost: Optional[float] = None,
        off_route_distance: float = 0.0,
        blocked_ahead: bool = False
    ) -> Optional[str]:
        """
        Returns:
            A short reason string, or None when the path is still good
        """
        if blocked_ahead:
            return "blocked_ahead"
        if off_route_distance > self.off_route_meters:
            return "off_route"
        if current_traffic_cost is not None and path.traffic_cost_seconds > 0:
            delta = abs(current_traffic_cost - path.traffic_cost_seconds) / path.traffic_cost_seconds
            if delta > self.cost_delta_ratio:
                return "traffic_cost_delta"
        if now - path.generated_at >= self.cadence_seconds:
            return "cadence"
        return None


@dataclass
class RouteContext:
    """What the predictor remembers about one corridor's mission"""
    destination: Tuple[float, float]
    urgency: Urgency
    path: Optional[PredictedPath] = None


@dataclass
class _Candidate:
    nodes: List[str]
    segments: List[RoadSegment]
    uses_blocked: bool = False
    waypoints: List[Tuple[float, float]] = field(default_factory=list)
    segment_ids: List[Optional[str]] = field(default_factory=list)
    cumulative: List[float] = field(default_factory=list)
    traffic_seconds: float = 0.0
    direction_changes: int = 0
    costs: List[SegmentCost] = field(default_factory=list)

    @property
    def duration(self) -> float:
        return self.cumulative[-1] if self.cumulative else 0.0


class RoutePredictor(ABC):
    """Capability interface for route prediction"""

    @abstractmethod
    async def predict(
        self,
        origin: Point,
        destination: Point,
        urgency: Urgency,
        corridor_id: Optional[str] = None
    ) -> PredictedPath:
        """Initial path for a mission"""

    @abstractmethod
    async def recalculate(
        self,
        corridor_id: str,
        current_position: Point,
        traffic_delta: Optional[TrafficDelta] = None
    ) -> PredictedPath:
        """New version of a corridor's path from its current position"""

    def current_traffic_cost(self, path: PredictedPath) -> Optional[float]:
        return None

    def blocked_ahead(self, path: PredictedPath, from_leg: int = 0) -> bool:
        return False

    def apply_traffic_delta(self, delta: TrafficDelta):
        pass

    def forget(self, corridor_id: str):
        pass

    def get_statistics(self) -> Dict[str, Any]:
        return {}

    async def close(self):
        pass


class HeuristicRoutePredictor(RoutePredictor):
    """
    k-shortest-paths route predictor over a RoadNetwork

    Features:
    - Candidate routes from networkx shortest_simple_paths on speed-limit times
    - Live re-scoring of candidates under a single traffic deadline
    - Urgency-scaled effective speed, capped
    - Fixed delay per junction crossed
    - Tie-break on fewer direction changes
    - Blocked segments avoided; a blocked route is returned (low confidence)
      only when nothing else reaches the destination

    Usage:
        predictor = HeuristicRoutePredictor(network, traffic_service, config.get_predictor_config())
        path = await predictor.predict(origin, destination, Urgency.CRITICAL, corridor_id="COR-1")
        newer = await predictor.recalculate("COR-1", current_position)
    """

    def __init__(
        self,
        network: RoadNetwork,
        traffic: Optional[TrafficCostService] = None,
        config: Optional[Dict[str, Any]] = None
    ):
        config = config or {}
        self.network = network
        self.traffic = traffic or TrafficCostService()

        self.deadline_seconds = float(config.get('deadlineSeconds', 2.0))
        self.candidate_routes = int(config.get('candidateRoutes', 3))
        self.max_alternatives = int(config.get('maxAlternatives', 2))
        self.junction_delay_seconds = float(config.get('junctionDelaySeconds', 2.0))
        self.direction_change_degrees = float(config.get('directionChangeDegrees', 30.0))
        self.tie_tolerance_seconds = float(config.get('tieToleranceSeconds', 1.0))
        self.access_speed_kmh = float(config.get('accessSpeedKmh', 30.0))
        self.max_speed_kmh = float(config.get('maxSpeedKmh', 130.0))
        self.degraded_penalty = float(config.get('degradedConfidencePenalty', 0.5))
        self.blocked_confidence = float(config.get('blockedRouteConfidence', 0.2))

        factors = config.get('urgencyFactors', {}) or {}
        self.urgency_factors = {
            urgency: float(factors.get(urgency.value, default))
            for urgency, default in DEFAULT_URGENCY_FACTORS.items()
        }

        self._contexts: Dict[str, RouteContext] = {}

        # Statistics
        self.total_predictions = 0
        self.degraded_predictions = 0
        self.avg_prediction_ms = 0.0

    # ============================================
    # Public interface
    # ============================================

    async def predict(
        self,
        origin: Point,
        destination: Point,
        urgency: Urgency,
        corridor_id: Optional[str] = None
    ) -> PredictedPath:
        """
        Calculate the initial path for a mission

        Args:
            origin: Current position (lat, lon)
            destination: Mission destination (lat, lon)
            urgency: Mission urgency
            corridor_id: Corridor the path belongs to; remembered for recalculation

        Returns:
            PredictedPath, version 1

        Raises:
            NoRouteFound: No route exists between origin and destination
        """
        destination = _as_point(destination)
        path = await self._compute(_as_point(origin), destination, urgency, corridor_id, previous=None)

        if corridor_id:
            self._contexts[corridor_id] = RouteContext(destination=destination, urgency=urgency, path=path)
        return path

    async def recalculate(
        self,
        corridor_id: str,
        current_position: Point,
        traffic_delta: Optional[TrafficDelta] = None
    ) -> PredictedPath:
        """
        Recalculate a corridor's path from its current position

        Returns:
            New PredictedPath superseding the previous version

        Raises:
            CorridorNotFound: predict() was never called for this corridor
            NoRouteFound: No route exists any more
        """
        context = self._contexts.get(corridor_id)
        if context is None:
            raise CorridorNotFound(f"No route context for corridor {corridor_id}")

        if traffic_delta is not None and not traffic_delta.empty:
            self.traffic.apply_delta(traffic_delta)

        path = await self._compute(
            _as_point(current_position), context.destination, context.urgency, corridor_id,
            previous=context.path,
        )
        context.path = path
        return path

    def current_traffic_cost(self, path: PredictedPath) -> Optional[float]:
        """Traffic seconds of a path's road segments using the costs known now"""
        if not path.segment_ids:
            return None

        urgency = Urgency.STANDARD
        if path.corridor_id and path.corridor_id in self._contexts:
            urgency = self._contexts[path.corridor_id].urgency

        total = 0.0
        for (u, v) in self._edges_of(path):
            segment = self.network.segment(u, v)
            total += self._segment_seconds(segment, self.traffic.peek(segment), urgency)
        return total

    def blocked_ahead(self, path: PredictedPath, from_leg: int = 0) -> bool:
        return any(self.traffic.is_blocked(sid) for sid in path.segment_ids[from_leg:])

    def apply_traffic_delta(self, delta: TrafficDelta):
        self.traffic.apply_delta(delta)

    def forget(self, corridor_id: str):
        self._contexts.pop(corridor_id, None)

    def get_statistics(self) -> Dict[str, Any]:
        return {
            'totalPredictions': self.total_predictions,
            'degradedPredictions': self.degraded_predictions,
            'avgPredictionMs': round(self.avg_prediction_ms, 2),
            'trackedCorridors': len(self._contexts),
            'traffic': self.traffic.get_statistics(),
        }

    async def close(self):
        await self.traffic.close()

    # ============================================
    # Route computation
    # ============================================

    async def _compute(
        self,
        origin: Tuple[float, float],
        destination: Tuple[float, float],
        urgency: Urgency,
        corridor_id: Optional[str],
        previous: Optional[PredictedPath]
    ) -> PredictedPath:
        loop = asyncio.get_running_loop()
        started = loop.time()
        wall_start = time.time()

        origin_node, _ = self.network.nearest_node(*origin)
        dest_node, _ = self.network.nearest_node(*destination)

        blocked_edges = set(self.network.edges_for_segments(self.traffic.blocked))
        candidates = await asyncio.to_thread(self._candidate_routes, origin_node, dest_node, blocked_edges)

        all_segments = [s for c in candidates for s in c.segments]
        remaining = self.deadline_seconds - (loop.time() - started)
        costs = await self.traffic.costs(all_segments, timeout=max(0.0, remaining))

        for candidate in candidates:
            self._score(candidate, origin, destination, costs, urgency)

        best = self._select(candidates)
        alternatives = [c for c in candidates if c is not best][:self.max_alternatives]

        degraded = [c for c in best.costs if c.source != CostSource.LIVE]
        fraction = len(degraded) / len(best.costs) if best.costs else 0.0
        confidence = 1.0 - self.degraded_penalty * fraction

        reasons = []
        if degraded:
            cached = sum(1 for c in degraded if c.source == CostSource.CACHED)
            historical = len(degraded) - cached
            reasons.append(
                f"{len(degraded)}/{len(best.costs)} segments from fallback data "
                f"({cached} cached, {historical} historical)"
            )
        if best.uses_blocked:
            confidence = min(confidence, self.blocked_confidence)
            reasons.append("no route avoids blocked segments")

        confidence = round(max(0.0, min(1.0, confidence)), 4)
        generated_at = time.time()

        path = PredictedPath(
            corridor_id=corridor_id,
            version=(previous.version + 1) if previous else 1,
            previous_path_id=previous.path_id if previous else None,
            waypoints=tuple(Waypoint(latitude=lat, longitude=lon) for lat, lon in best.waypoints),
            segment_ids=tuple(best.segment_ids),
            cumulative_seconds=tuple(round(t, 3) for t in best.cumulative),
            distance_meters=self._polyline_length(best.waypoints),
            estimated_duration_seconds=best.duration,
            estimated_arrival_timestamp=generated_at + best.duration,
            traffic_cost_seconds=best.traffic_seconds,
            direction_changes=best.direction_changes,
            confidence=confidence,
            partial=bool(reasons),
            degraded_reason="; ".join(reasons) or None,
            alternatives=tuple(
                AlternativeRoute(
                    waypoints=tuple(Waypoint(latitude=lat, longitude=lon) for lat, lon in c.waypoints),
                    segment_ids=tuple(c.segment_ids),
                    estimated_duration_seconds=c.duration,
                    direction_changes=c.direction_changes,
                )
                for c in alternatives
            ),
            generated_at=generated_at,
        )

        self._update_stats((time.time() - wall_start) * 1000, path.partial)
        if path.partial:
            logger.warning(
                "[ROUTE] %s path v%d degraded (confidence %.2f): %s",
                corridor_id or "-", path.version, path.confidence, path.degraded_reason
            )
        else:
            logger.info(
                "[ROUTE] %s path v%d: %.0f m, ETA %.0fs, %d direction changes",
                corridor_id or "-", path.version, path.distance_meters,
                path.estimated_duration_seconds, path.direction_changes
            )
        return path

    def _candidate_routes(self, origin_node: str, dest_node: str, blocked_edges: Set[Tuple[str, str]]) -> List[_Candidate]:
        """Up to k simple paths on speed-limit travel times, avoiding blocked edges when possible"""
        if origin_node == dest_node:
            return [_Candidate(nodes=[origin_node], segments=[])]

        graph = self.network.graph
        if blocked_edges:
            view = nx.restricted_view(graph, [], list(blocked_edges))
            routes = self._k_shortest(view, origin_node, dest_node)
            if routes:
                return [_Candidate(nodes=r, segments=self.network.path_segments(r)) for r in routes]
            logger.warning("[ROUTE] Every route %s -> %s crosses a blocked segment", origin_node, dest_node)

        routes = self._k_shortest(graph, origin_node, dest_node)
        if not routes:
            raise NoRouteFound(f"No route from {origin_node} to {dest_node}")

        return [
            _Candidate(
                nodes=r,
                segments=self.network.path_segments(r),
                uses_blocked=any((u, v) in blocked_edges for u, v in zip(r, r[1:])),
            )
            for r in routes
        ]

    def _k_shortest(self, graph, source: str, target: str) -> List[List[str]]:
        try:
            return list(itertools.islice(
                nx.shortest_simple_paths(graph, source, target, weight='travel_time'),
                self.candidate_routes,
            ))
        except (nx.NetworkXNoPath, nx.NodeNotFound):
            return []

    def _score(
        self,
        candidate: _Candidate,
        origin: Tuple[float, float],
        destination: Tuple[float, float],
        costs: Dict[str, SegmentCost],
        urgency: Urgency
    ):
        """Fill waypoints, per-waypoint timings and direction changes"""
        access_speed = self.access_speed_kmh / 3.6
        node_points = [self.network.position(n) for n in candidate.nodes]

        waypoints: List[Tuple[float, float]] = []
        segment_ids: List[Optional[str]] = []
        cumulative: List[float] = []
        elapsed = 0.0

        # access leg
        waypoints.append(origin)
        cumulative.append(0.0)
        access = haversine_meters(origin[0], origin[1], node_points[0][0], node_points[0][1])
        if access > 1.0:
            elapsed += access / access_speed
            waypoints.append(node_points[0])
            segment_ids.append(None)
            cumulative.append(elapsed)

        traffic_seconds = 0.0
        used_costs = []
        for i, segment in enumerate(candidate.segments):
            cost = costs.get(segment.segment_id) or self.traffic.peek(segment)
            used_costs.append(cost)
            travel = self._segment_seconds(segment, cost, urgency)
            traffic_seconds += travel
            elapsed += travel + (self.junction_delay_seconds if i > 0 else 0.0)
            waypoints.append(node_points[i + 1])
            segment_ids.append(segment.segment_id)
            cumulative.append(elapsed)

        # egress leg
        last = waypoints[-1]
        egress = haversine_meters(last[0], last[1], destination[0], destination[1])
        if egress > 1.0:
            elapsed += egress / access_speed
            waypoints.append(destination)
            segment_ids.append(None)
            cumulative.append(elapsed)

        candidate.waypoints = waypoints
        candidate.segment_ids = segment_ids
        candidate.cumulative = cumulative
        candidate.traffic_seconds = traffic_seconds
        candidate.costs = used_costs
        candidate.direction_changes = self._direction_changes(node_points)

    def _segment_seconds(self, segment: RoadSegment, cost: SegmentCost, urgency: Urgency) -> float:
        speed_kmh = min(cost.average_speed_kmh * self.urgency_factors[urgency], self.max_speed_kmh)
        return segment.length_meters / (speed_kmh / 3.6)

    def _direction_changes(self, points: Sequence[Tuple[float, float]]) -> int:
        bearings = [
            initial_bearing(a[0], a[1], b[0], b[1])
            for a, b in zip(points, points[1:])
            if haversine_meters(a[0], a[1], b[0], b[1]) > 0.5
        ]
        return sum(
            1 for b1, b2 in zip(bearings, bearings[1:])
            if abs(bearing_difference(b2, b1)) > self.direction_change_degrees
        )

    def _select(self, candidates: List[_Candidate]) -> _Candidate:
        """Fastest route; within the tie tolerance, fewest direction changes"""
        fastest = min(c.duration for c in candidates)
        tied = [c for c in candidates if c.duration - fastest <= self.tie_tolerance_seconds]
        return min(tied, key=lambda c: (c.direction_changes, c.duration))

    def _edges_of(self, path: PredictedPath) -> List[Tuple[str, str]]:
        """Directed edges of a path's road legs"""
        edges = []
        points = path.waypoint_tuples()
        for i, segment_id in enumerate(path.segment_ids):
            if segment_id is None:
                continue
            u, _ = self.network.nearest_node(*points[i])
            v, _ = self.network.nearest_node(*points[i + 1])
            if self.network.graph.has_edge(u, v):
                edges.append((u, v))
        return edges

    @staticmethod
    def _polyline_length(points: Sequence[Tuple[float, float]]) -> float:
        return sum(haversine_meters(a[0], a[1], b[0], b[1]) for a, b in zip(points, points[1:]))

    def _update_stats(self, elapsed_ms: float, degraded: bool):
        self.total_predictions += 1
        if degraded:
            self.degraded_predictions += 1
        n = self.total_predictions
        self.avg_prediction_ms = (self.avg_prediction_ms * (n - 1) + elapsed_ms) / n
