"""
Corridor State Machine

Owns one corridor's lifecycle:

    REQUESTED -> AUTHENTICATED -> ROUTE_CALCULATED -> ACTIVE
    ACTIVE <-> PAUSED        (stationary timeout / movement)
    ACTIVE|PAUSED -> FROZEN  (spoofing event)
    FROZEN -> ACTIVE         (re-authentication only)
    any -> COMPLETED         (terminal)

All work for one corridor runs under the machine's lock, so telemetry
updates, recalculations and transitions are strictly sequential. The
recalculation/targeting step runs as a separate task that deactivation or
freezing can cancel; a cancelled step publishes nothing.
"""

import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

from corridor_engine.errors import InvalidTransition, NoRouteFound, VehicleNotAuthenticated
from corridor_engine.geo import PathGeometry, haversine_meters
from corridor_engine.models import (
    AlertMessage,
    AuthenticationResult,
    CandidateVehicle,
    CorridorState,
    CorridorView,
    GPSCoordinate,
    MissionSummary,
    PredictedPath,
    SpoofingEvent,
    StateTransition,
    TargetSet,
    TrafficDelta,
    Urgency,
    ValidatedPosition,
)
from corridor_engine.routing import RecalculationPolicy, RoutePredictor
from corridor_engine.targeting import TargetingEngine, clearances_for, diff_target_sets

logger = logging.getLogger(__name__)

CandidateSource = Callable[[PredictedPath], Sequence[CandidateVehicle]]
Publisher = Callable[[List[AlertMessage]], Awaitable[None]]

VALID_TRANSITIONS = {
    CorridorState.REQUESTED: {CorridorState.AUTHENTICATED, CorridorState.COMPLETED},
    CorridorState.AUTHENTICATED: {CorridorState.ROUTE_CALCULATED, CorridorState.COMPLETED},
    CorridorState.ROUTE_CALCULATED: {CorridorState.ACTIVE, CorridorState.COMPLETED},
    CorridorState.ACTIVE: {CorridorState.PAUSED, CorridorState.FROZEN, CorridorState.COMPLETED},
    CorridorState.PAUSED: {CorridorState.ACTIVE, CorridorState.FROZEN, CorridorState.COMPLETED},
    CorridorState.FROZEN: {CorridorState.ACTIVE, CorridorState.COMPLETED},
    CorridorState.COMPLETED: set(),
}


def new_corridor_id() -> str:
    return f"COR-{uuid4().hex[:12].upper()}"


@dataclass
class Corridor:
    """
    Live state of one emergency vehicle's mission

    ``path_history`` is append-only; ``current_path`` is always its last
    element.
    """
    vehicle_id: str
    destination: GPSCoordinate
    urgency: Urgency
    corridor_id: str = field(default_factory=new_corridor_id)
    state: CorridorState = CorridorState.REQUESTED
    created_at: float = field(default_factory=time.time)

    path_history: List[PredictedPath] = field(default_factory=list)
    last_position: Optional[ValidatedPosition] = None
    movement_anchor: Optional[Tuple[float, float]] = None
    last_movement_timestamp: Optional[float] = None
    paused_at: Optional[float] = None

    targets: Optional[TargetSet] = None
    targets_from: Optional[Tuple[float, float]] = None

    transitions: List[StateTransition] = field(default_factory=list)
    alert_counts: Counter = field(default_factory=Counter)
    spoofing_events: List[SpoofingEvent] = field(default_factory=list)
    completed_at: Optional[float] = None
    completion_reason: Optional[str] = None

    @property
    def current_path(self) -> Optional[PredictedPath]:
        return self.path_history[-1] if self.path_history else None

    def view(self) -> CorridorView:
        position = None
        if self.last_position is not None:
            position = GPSCoordinate(latitude=self.last_position.latitude, longitude=self.last_position.longitude)
        return CorridorView(
            corridor_id=self.corridor_id,
            vehicle_id=self.vehicle_id,
            destination=self.destination,
            urgency=self.urgency,
            state=self.state,
            current_path=self.current_path,
            path_versions=len(self.path_history),
            last_position=position,
            last_movement_timestamp=self.last_movement_timestamp,
            created_at=self.created_at,
            target_count=len(self.targets) if self.targets else 0,
        )

    def summary(self) -> MissionSummary:
        completed_at = self.completed_at or time.time()
        return MissionSummary(
            corridor_id=self.corridor_id,
            vehicle_id=self.vehicle_id,
            destination=self.destination,
            urgency=self.urgency,
            created_at=self.created_at,
            completed_at=completed_at,
            duration_seconds=max(0.0, completed_at - self.created_at),
            completion_reason=self.completion_reason or "",
            path_history=[p.summary() for p in self.path_history],
            transitions=list(self.transitions),
            alert_counts=dict(self.alert_counts),
        )


class CorridorStateMachine:
    """
    Lifecycle driver for one corridor

    Usage:
        machine = CorridorStateMachine(corridor, predictor, targeting, candidates, publish, notifier)
        await machine.authenticate(auth_result)
        await machine.calculate_initial_route(origin)
        await machine.handle_position(validated_position)
        summary = await machine.complete("arrived")
    """

    def __init__(
        self,
        corridor: Corridor,
        predictor: RoutePredictor,
        targeting: TargetingEngine,
        candidate_source: CandidateSource,
        publish: Publisher,
        notifier=None,
        config: Optional[Dict[str, Any]] = None
    ):
        config = config or {}
        self.corridor = corridor
        self.predictor = predictor
        self.targeting = targeting
        self.candidate_source = candidate_source
        self.publish = publish
        self.notifier = notifier

        self.stationary_timeout = float(config.get('stationaryTimeoutSeconds', 600.0))
        self.movement_epsilon = float(config.get('movementEpsilonMeters', 25.0))
        self.paused_escalation = float(config.get('pausedEscalationSeconds', 1800.0))
        self.retarget_distance = float(config.get('retargetDistanceMeters', 100.0))
        self.recalc_timeout = float(config.get('recalcTimeoutSeconds', 3.0))
        self.targeting_deadline = float(config.get('targetingDeadlineSeconds', 1.0))
        self.eta_tolerance = float(config.get('etaToleranceSeconds', 5.0))
        self.policy = RecalculationPolicy.from_config(config)

        # Exclusive processing context for this corridor
        self.lock = asyncio.Lock()
        self._inflight: Optional[asyncio.Task] = None
        self._cancel_requested = False
        self._geometry: Optional[PathGeometry] = None

        self.recalculations = 0
        self.cancelled_runs = 0

    @property
    def state(self) -> CorridorState:
        return self.corridor.state

    @property
    def corridor_id(self) -> str:
        return self.corridor.corridor_id

    # ============================================
    # Transitions
    # ============================================

    def can_transition(self, to_state: CorridorState) -> bool:
        return to_state in VALID_TRANSITIONS[self.corridor.state]

    async def _transition(self, to_state: CorridorState, reason: str, timestamp: Optional[float] = None):
        from_state = self.corridor.state
        if not self.can_transition(to_state):
            raise InvalidTransition(
                f"{self.corridor_id}: {from_state.value} -> {to_state.value} not allowed"
            )

        self.corridor.state = to_state
        self.corridor.transitions.append(StateTransition(
            from_state=from_state,
            to_state=to_state,
            timestamp=timestamp if timestamp is not None else time.time(),
            reason=reason,
        ))

        log = logger.error if to_state == CorridorState.FROZEN else logger.info
        log("[CORRIDOR] %s (%s): %s -> %s (%s)",
            self.corridor_id, self.corridor.vehicle_id, from_state.value, to_state.value, reason)

        if self.notifier:
            await self.notifier.emit_state_changed(
                self.corridor_id, self.corridor.vehicle_id, from_state.value, to_state.value, reason
            )

    async def authenticate(self, result: AuthenticationResult):
        """REQUESTED -> AUTHENTICATED on a successful credential check"""
        async with self.lock:
            if not result.success:
                raise VehicleNotAuthenticated(
                    f"{self.corridor.vehicle_id}: {result.reason or 'authentication failed'}"
                )
            await self._transition(CorridorState.AUTHENTICATED, "credentials verified")

    async def calculate_initial_route(self, origin: Tuple[float, float]) -> PredictedPath:
        """
        AUTHENTICATED -> ROUTE_CALCULATED -> ACTIVE

        Raises:
            NoRouteFound: the predictor could not produce any path
        """
        async with self.lock:
            if self.corridor.state != CorridorState.AUTHENTICATED:
                raise InvalidTransition(f"{self.corridor_id}: route requested in {self.corridor.state.value}")

            path = await self.predictor.predict(
                origin,
                self.corridor.destination.as_tuple(),
                self.corridor.urgency,
                corridor_id=self.corridor_id,
            )
            self._adopt_path(path)
            await self._transition(CorridorState.ROUTE_CALCULATED, f"path {path.path_id}")
            await self._transition(CorridorState.ACTIVE, "path available")

            self.corridor.movement_anchor = origin
            self.corridor.last_movement_timestamp = time.time()
            return path

    # ============================================
    # Telemetry
    # ============================================

    async def handle_position(self, position: ValidatedPosition) -> bool:
        """
        Process an accepted position

        Returns:
            True when the position was applied to the corridor
        """
        async with self.lock:
            corridor = self.corridor
            if corridor.state not in (CorridorState.ACTIVE, CorridorState.PAUSED):
                return False
            if corridor.last_position is not None and position.timestamp <= corridor.last_position.timestamp:
                return False

            point = (position.latitude, position.longitude)
            moved = (
                corridor.movement_anchor is None
                or haversine_meters(*corridor.movement_anchor, *point) > self.movement_epsilon
            )
            corridor.last_position = position
            if moved:
                corridor.movement_anchor = point
                corridor.last_movement_timestamp = time.time()

            if corridor.state == CorridorState.PAUSED:
                if not moved:
                    return True
                corridor.paused_at = None
                await self._transition(CorridorState.ACTIVE, "movement resumed")

            reason = self._recalculation_reason(point)
            if reason or self._should_retarget(point):
                await self._run_refresh(reason, point)
            return True

    def _recalculation_reason(self, point: Tuple[float, float]) -> Optional[str]:
        path = self.corridor.current_path
        if path is None or self._geometry is None:
            return "no_path"

        location = self._geometry.locate(*point)
        return self.policy.reason_to_recalculate(
            path,
            now=time.time(),
            current_traffic_cost=self.predictor.current_traffic_cost(path),
            off_route_distance=location.distance,
            blocked_ahead=self.predictor.blocked_ahead(path, from_leg=location.leg_index),
        )

    def _should_retarget(self, point: Tuple[float, float]) -> bool:
        anchor = self.corridor.targets_from
        return anchor is None or haversine_meters(*anchor, *point) >= self.retarget_distance

    async def apply_traffic_delta(self, delta: TrafficDelta) -> bool:
        """Force a recalculation when the delta touches this corridor's path"""
        async with self.lock:
            path = self.corridor.current_path
            if self.corridor.state != CorridorState.ACTIVE or path is None:
                return False
            if not (set(s for s in path.segment_ids if s) & set(delta.touched_segments)):
                return False
            point = self._current_point()
            await self._run_refresh("traffic_delta", point, delta)
            return True

    async def refresh_targets(self):
        """Recompute and publish targets from the current position"""
        async with self.lock:
            if self.corridor.state != CorridorState.ACTIVE:
                return
            await self._run_refresh(None, self._current_point())

    def _current_point(self) -> Tuple[float, float]:
        if self.corridor.last_position is not None:
            return (self.corridor.last_position.latitude, self.corridor.last_position.longitude)
        if self.corridor.movement_anchor is not None:
            return self.corridor.movement_anchor
        return self.corridor.current_path.waypoints[0].as_tuple()

    # ============================================
    # Recalculation & targeting
    # ============================================

    async def _run_refresh(
        self,
        reason: Optional[str],
        point: Tuple[float, float],
        delta: Optional[TrafficDelta] = None
    ):
        """Run one cancellable refresh step and publish its result (lock held)"""
        self._cancel_requested = False
        self._inflight = asyncio.create_task(self._refresh(reason, point, delta))
        try:
            new_path, targets = await self._inflight
        except asyncio.CancelledError:
            if not self._cancel_requested:
                raise
            self.cancelled_runs += 1
            logger.info("[CORRIDOR] %s in-flight refresh cancelled", self.corridor_id)
            return
        finally:
            self._inflight = None

        if new_path is not None:
            self._adopt_path(new_path)
            self.recalculations += 1
        if targets is not None:
            await self._publish_targets(targets, point)

    async def _refresh(
        self,
        reason: Optional[str],
        point: Tuple[float, float],
        delta: Optional[TrafficDelta]
    ) -> Tuple[Optional[PredictedPath], Optional[TargetSet]]:
        new_path = None
        if reason:
            try:
                new_path = await asyncio.wait_for(
                    self.predictor.recalculate(self.corridor_id, point, delta),
                    timeout=self.recalc_timeout,
                )
                logger.info("[CORRIDOR] %s recalculated (%s): v%d", self.corridor_id, reason, new_path.version)
            except asyncio.TimeoutError:
                logger.warning("[CORRIDOR] %s recalculation (%s) timed out; keeping current path",
                               self.corridor_id, reason)
            except NoRouteFound as e:
                logger.warning("[CORRIDOR] %s recalculation (%s) found no route: %s",
                               self.corridor_id, reason, e.reason)

        path = new_path or self.corridor.current_path
        if path is None:
            return new_path, None
        return new_path, await self._compute_targets(path, point)

    async def _compute_targets(self, path: PredictedPath, point: Tuple[float, float]) -> Optional[TargetSet]:
        candidates = list(self.candidate_source(path))
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.targeting.compute_targets, path, candidates, point, self.corridor_id),
                timeout=self.targeting_deadline,
            )
        except asyncio.TimeoutError:
            logger.warning("[TARGETING] %s targeting exceeded %.1fs; previous target set kept",
                           self.corridor_id, self.targeting_deadline)
            return None

    async def _publish_targets(self, targets: TargetSet, point: Tuple[float, float]):
        messages = diff_target_sets(self.corridor.targets, targets, self.eta_tolerance)
        self.corridor.targets = targets
        self.corridor.targets_from = point
        await self._dispatch(messages)

    async def _dispatch(self, messages: List[AlertMessage]):
        if not messages:
            return
        for message in messages:
            self.corridor.alert_counts[message.kind.value] += 1
        await self.publish(messages)

    def _adopt_path(self, path: PredictedPath):
        self.corridor.path_history.append(path)
        self._geometry = PathGeometry(path.waypoint_tuples(), path.cumulative_seconds or None)

    # ============================================
    # Cancellation, freezing, timeouts, completion
    # ============================================

    def cancel_inflight(self) -> bool:
        """Cancel a running refresh step; returns True if one was running"""
        task = self._inflight
        if task is None or task.done():
            return False
        self._cancel_requested = True
        task.cancel()
        return True

    async def handle_spoofing(self, event: SpoofingEvent):
        """Force FROZEN: stop accepting telemetry and stop publishing targets"""
        self.corridor.spoofing_events.append(event)
        self.cancel_inflight()
        async with self.lock:
            if self.corridor.state in (CorridorState.ACTIVE, CorridorState.PAUSED):
                await self._transition(CorridorState.FROZEN, f"spoofing suspected ({event.event_id})")

    async def reauthenticate(self, result: AuthenticationResult):
        """
        FROZEN -> ACTIVE after verification

        Raises:
            InvalidTransition: corridor is not FROZEN
            VehicleNotAuthenticated: verification failed (corridor stays FROZEN)
        """
        async with self.lock:
            if self.corridor.state != CorridorState.FROZEN:
                raise InvalidTransition(f"{self.corridor_id} is {self.corridor.state.value}, not FROZEN")
            if not result.success:
                raise VehicleNotAuthenticated(
                    f"{self.corridor.vehicle_id}: {result.reason or 're-authentication failed'}"
                )

            await self._transition(CorridorState.ACTIVE, "re-authenticated")
            self.corridor.last_movement_timestamp = time.time()
            self.corridor.paused_at = None
            await self._run_refresh("reauthenticated", self._current_point())

    async def check_timeouts(self, now: Optional[float] = None) -> Optional[str]:
        """
        Apply stationary and paused timeouts

        Returns:
            "paused" when the corridor was paused, "escalate" when a paused
            corridor is past its secondary timeout and must be completed
        """
        now = now if now is not None else time.time()
        async with self.lock:
            corridor = self.corridor
            if corridor.state == CorridorState.ACTIVE and corridor.last_movement_timestamp is not None:
                if now - corridor.last_movement_timestamp >= self.stationary_timeout:
                    corridor.paused_at = now
                    await self._transition(
                        CorridorState.PAUSED,
                        f"stationary for {now - corridor.last_movement_timestamp:.0f}s",
                        now,
                    )
                    return "paused"
            elif corridor.state == CorridorState.PAUSED and corridor.paused_at is not None:
                if now - corridor.paused_at >= self.paused_escalation:
                    return "escalate"
        return None

    async def complete(self, reason: str) -> MissionSummary:
        """
        Any -> COMPLETED

        Cancels in-flight work, clears every targeted civilian and returns
        the mission summary.
        """
        self.cancel_inflight()
        async with self.lock:
            if self.corridor.state.terminal:
                raise InvalidTransition(f"{self.corridor_id} already COMPLETED")

            clearances = clearances_for(self.corridor.targets)
            self.corridor.completed_at = time.time()
            self.corridor.completion_reason = reason
            await self._transition(CorridorState.COMPLETED, reason, self.corridor.completed_at)

            self.corridor.targets = None
            await self._dispatch(clearances)
            self.predictor.forget(self.corridor_id)
            return self.corridor.summary()
