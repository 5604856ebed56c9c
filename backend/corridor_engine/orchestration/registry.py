"""
Orchestration Registry

Owns the collection of live corridors.

Responsibilities:
- at most one non-COMPLETED corridor per vehicle
- routing telemetry through the validator to the right state machine
- fanning target-set diffs out to the alert dispatcher
- archiving mission summaries on completion
- periodic stationary/paused timeout checks

The vehicle -> corridor index is the only structure shared between
corridors. It is guarded per vehicle id, so unrelated vehicles never
contend and one corridor's recalculation never blocks another.
"""

import asyncio
import logging
import os
import time
from collections import Counter
from typing import Any, Dict, List, Optional, Sequence

from corridor_engine.config import ConfigManager, get_config
from corridor_engine.corridor import Corridor, CorridorStateMachine
from corridor_engine.errors import (
    AlreadyActive,
    AuthenticationUnavailable,
    CorridorError,
    CorridorNotFound,
    NoRouteFound,
    VehicleNotAuthenticated,
)
from corridor_engine.integrations import (
    AlertDispatcher,
    ArchivalSink,
    Authenticator,
    CorridorNotificationService,
    InMemoryArchivalSink,
    RecordingAlertDispatcher,
    SocketIOAlertDispatcher,
    SqlArchivalSink,
    StaticAuthenticator,
)
from corridor_engine.models import (
    AlertMessage,
    AuthenticationResult,
    CandidateVehicle,
    CellularFix,
    CorridorFilter,
    CorridorState,
    CorridorView,
    GPSCoordinate,
    MissionSummary,
    PositionSample,
    TrafficDelta,
    Urgency,
    ValidationDecision,
    ValidationResult,
)
from corridor_engine.retry import retry_async
from corridor_engine.routing import (
    HeuristicRoutePredictor,
    HttpTrafficProvider,
    RoadNetwork,
    RoutePredictor,
    StaticTrafficProvider,
    TrafficCostService,
)
from corridor_engine.targeting import BufferTargetingEngine, CivilianVehicleIndex, TargetingEngine
from corridor_engine.telemetry import TelemetryValidator

from .locks import KeyedLocks

logger = logging.getLogger(__name__)

CORRIDOR_FROZEN = "CORRIDOR_FROZEN"


class CorridorRegistry:
    """
    Single authority over live corridors

    Usage:
        registry = CorridorRegistry(predictor, targeting, authenticator=auth, dispatcher=dispatcher)
        await registry.start()

        view = await registry.activate("AMB-1", GPSCoordinate(...), Urgency.CRITICAL)
        await registry.on_telemetry("AMB-1", sample)
        summary = await registry.deactivate(view.corridor_id)

        await registry.shutdown()
    """

    def __init__(
        self,
        predictor: RoutePredictor,
        targeting: TargetingEngine,
        validator: Optional[TelemetryValidator] = None,
        authenticator: Optional[Authenticator] = None,
        dispatcher: Optional[AlertDispatcher] = None,
        archive: Optional[ArchivalSink] = None,
        notifier: Optional[CorridorNotificationService] = None,
        civilians: Optional[CivilianVehicleIndex] = None,
        config: Optional[Dict[str, Any]] = None,
        corridor_config: Optional[Dict[str, Any]] = None
    ):
        config = config or {}
        self.predictor = predictor
        self.targeting = targeting
        self.validator = validator or TelemetryValidator()
        self.authenticator = authenticator or StaticAuthenticator(
            allowed_prefixes=config.get('authorizedPrefixes', ['AMB-', 'FIRE-', 'POL-'])
        )
        self.dispatcher = dispatcher or RecordingAlertDispatcher()
        self.archive = archive or InMemoryArchivalSink()
        self.notifier = notifier or CorridorNotificationService()
        self.civilians = civilians or CivilianVehicleIndex()
        self.corridor_config = corridor_config or {}

        self.activation_window = float(config.get('activationWindowSeconds', 5.0))
        self.auth_timeout = float(config.get('authTimeoutSeconds', 2.0))
        self.auth_retry_delays = [float(d) for d in config.get('authRetryDelays', [0.2, 0.5])]
        self.monitor_interval = float(config.get('monitorIntervalSeconds', 5.0))
        self.track_ttl = float(config.get('trackTtlSeconds', 3600.0))
        self.candidate_margin = float(config.get('candidateMarginMeters', 500.0))

        self._by_vehicle: Dict[str, str] = {}
        self._machines: Dict[str, CorridorStateMachine] = {}
        self._vehicle_locks = KeyedLocks()

        self.running = False
        self._monitor_task: Optional[asyncio.Task] = None

        # Statistics
        self.activations = 0
        self.activation_failures: Counter = Counter()
        self.completions: Counter = Counter()
        self.telemetry: Counter = Counter()
        self.alerts_sent: Counter = Counter()
        self.spoofing_events = 0
        self.dispatch_errors = 0
        self.archive_errors = 0

    # ============================================
    # Lifecycle operations
    # ============================================

    async def activate(
        self,
        vehicle_id: str,
        destination: GPSCoordinate,
        urgency: Urgency = Urgency.HIGH,
        origin: Optional[GPSCoordinate] = None
    ) -> CorridorView:
        """
        Create and activate a corridor

        Args:
            vehicle_id: Emergency vehicle id
            destination: Mission destination
            urgency: Mission urgency
            origin: Start position; defaults to the vehicle's last validated position

        Returns:
            View of the corridor in ACTIVE state

        Raises:
            AlreadyActive: vehicle already has a live corridor
            VehicleNotAuthenticated: credentials rejected or registry unreachable
            NoRouteFound: no path within the activation window
        """
        async with self._vehicle_locks.hold(vehicle_id):
            if vehicle_id in self._by_vehicle:
                raise AlreadyActive(f"{vehicle_id} already has corridor {self._by_vehicle[vehicle_id]}")

            try:
                machine = await self._bring_up(vehicle_id, destination, urgency, origin)
            except CorridorError as e:
                self.activation_failures[e.code.value] += 1
                logger.warning("[REGISTRY] Activation failed for %s: %s %s", vehicle_id, e.code.value, e.reason)
                await self.notifier.emit_activation_failed(vehicle_id, e.code.value, e.reason)
                raise

            corridor_id = machine.corridor_id
            self._machines[corridor_id] = machine
            self._by_vehicle[vehicle_id] = corridor_id
            self.activations += 1
            logger.info("[REGISTRY] Corridor %s active for %s (%s)", corridor_id, vehicle_id, urgency.value)

            await machine.refresh_targets()
            return machine.corridor.view()

    async def _bring_up(
        self,
        vehicle_id: str,
        destination: GPSCoordinate,
        urgency: Urgency,
        origin: Optional[GPSCoordinate]
    ) -> CorridorStateMachine:
        # no Corridor exists until the credential check succeeds
        result = await self._authenticate(vehicle_id)
        if not result.success:
            raise VehicleNotAuthenticated(f"{vehicle_id}: {result.reason or 'authentication failed'}")

        start = self._resolve_origin(vehicle_id, origin)

        corridor = Corridor(vehicle_id=vehicle_id, destination=destination, urgency=urgency)
        machine = self._build_machine(corridor)
        await machine.authenticate(result)

        try:
            await asyncio.wait_for(machine.calculate_initial_route(start), timeout=self.activation_window)
        except asyncio.TimeoutError:
            self.predictor.forget(corridor.corridor_id)
            raise NoRouteFound(f"{vehicle_id}: no path within {self.activation_window:.1f}s activation window")
        except NoRouteFound:
            self.predictor.forget(corridor.corridor_id)
            raise
        return machine

    def _resolve_origin(self, vehicle_id: str, origin: Optional[GPSCoordinate]):
        if origin is not None:
            return origin.as_tuple()
        last = self.validator.last_position(vehicle_id)
        if last is None:
            raise NoRouteFound(f"{vehicle_id}: no origin given and no validated position known")
        return (last[0], last[1])

    async def _authenticate(self, vehicle_id: str) -> AuthenticationResult:
        try:
            return await asyncio.wait_for(
                retry_async(
                    self.authenticator.authenticate,
                    vehicle_id,
                    delays=self.auth_retry_delays,
                    retry_on=(AuthenticationUnavailable, OSError),
                    label=f"auth:{vehicle_id}",
                ),
                timeout=self.auth_timeout,
            )
        except (AuthenticationUnavailable, OSError, asyncio.TimeoutError) as e:
            raise VehicleNotAuthenticated(f"{vehicle_id}: credential registry unavailable ({str(e) or 'timeout'})")

    def _build_machine(self, corridor: Corridor) -> CorridorStateMachine:
        return CorridorStateMachine(
            corridor=corridor,
            predictor=self.predictor,
            targeting=self.targeting,
            candidate_source=lambda path: self.civilians.near_path(path, self.candidate_margin),
            publish=self._publish,
            notifier=self.notifier,
            config=self.corridor_config,
        )

    async def deactivate(self, corridor_id: str, reason: str = "deactivated") -> MissionSummary:
        """
        Complete a corridor

        In-flight recalculation is cancelled first; the corridor reaches
        COMPLETED once it unwinds. Remaining targets receive CLEARANCE and
        the mission summary is archived.

        Raises:
            CorridorNotFound: unknown or already completed corridor
        """
        machine = self._machines.get(corridor_id)
        if machine is None:
            raise CorridorNotFound(f"Corridor {corridor_id} not found")

        vehicle_id = machine.corridor.vehicle_id
        machine.cancel_inflight()

        async with self._vehicle_locks.hold(vehicle_id):
            if self._machines.get(corridor_id) is not machine:
                raise CorridorNotFound(f"Corridor {corridor_id} not found")

            summary = await machine.complete(reason)
            del self._machines[corridor_id]
            if self._by_vehicle.get(vehicle_id) == corridor_id:
                del self._by_vehicle[vehicle_id]
            self.completions[reason] += 1

        await self._archive(summary)
        return summary

    async def reauthenticate(self, corridor_id: str) -> CorridorView:
        """
        Release a FROZEN corridor after a fresh credential check

        Raises:
            CorridorNotFound, InvalidTransition, VehicleNotAuthenticated
        """
        machine = self._get_machine(corridor_id)
        vehicle_id = machine.corridor.vehicle_id

        async with self._vehicle_locks.hold(vehicle_id):
            result = await self._authenticate(vehicle_id)
            await machine.reauthenticate(result)
            self.validator.reset(vehicle_id)
            return machine.corridor.view()

    # ============================================
    # Telemetry
    # ============================================

    async def on_telemetry(
        self,
        vehicle_id: str,
        sample: PositionSample,
        cell_fix: Optional[CellularFix] = None
    ) -> ValidationResult:
        """
        Validate a position report and feed it to the vehicle's corridor

        Samples for a vehicle are processed one at a time, in arrival order.
        """
        async with self._vehicle_locks.hold(vehicle_id):
            corridor_id = self._by_vehicle.get(vehicle_id)
            machine = self._machines.get(corridor_id) if corridor_id else None

            if machine is not None and machine.state == CorridorState.FROZEN:
                self.telemetry['ignored_frozen'] += 1
                return ValidationResult(
                    vehicle_id=vehicle_id,
                    decision=ValidationDecision.REJECT,
                    confidence=0.0,
                    reason=CORRIDOR_FROZEN,
                )

            result = self.validator.validate(vehicle_id, sample, cell_fix=cell_fix)
            self.telemetry[result.decision.value] += 1

            if result.spoofing_event is not None:
                self.spoofing_events += 1
                if machine is not None:
                    await machine.handle_spoofing(result.spoofing_event)
                await self.notifier.report_spoofing(corridor_id, result.spoofing_event)

            elif result.accepted and machine is not None:
                await machine.handle_position(result.validated)

            return result

    # ============================================
    # Queries
    # ============================================

    def get(self, corridor_id: str) -> CorridorView:
        return self._get_machine(corridor_id).corridor.view()

    def get_by_vehicle(self, vehicle_id: str) -> Optional[CorridorView]:
        corridor_id = self._by_vehicle.get(vehicle_id)
        return self.get(corridor_id) if corridor_id else None

    def _get_machine(self, corridor_id: str) -> CorridorStateMachine:
        machine = self._machines.get(corridor_id)
        if machine is None:
            raise CorridorNotFound(f"Corridor {corridor_id} not found")
        return machine

    def list_active(self, filters: Optional[CorridorFilter] = None) -> List[CorridorView]:
        """Live (non-COMPLETED) corridors matching the filters, oldest first"""
        views = []
        for machine in self._machines.values():
            view = machine.corridor.view()
            if filters is None or self._matches(view, filters):
                views.append(view)
        return sorted(views, key=lambda v: (v.created_at, v.corridor_id))

    @staticmethod
    def _matches(view: CorridorView, filters: CorridorFilter) -> bool:
        if filters.states and view.state not in filters.states:
            return False
        if filters.urgency and view.urgency != filters.urgency:
            return False
        if filters.vehicle_prefix and not view.vehicle_id.startswith(filters.vehicle_prefix):
            return False
        if filters.bounds:
            if view.last_position is not None:
                lat, lon = view.last_position.as_tuple()
            elif view.current_path is not None and view.current_path.waypoints:
                lat, lon = view.current_path.waypoints[0].as_tuple()
            else:
                return False
            if not filters.bounds.contains(lat, lon):
                return False
        return True

    @property
    def active_count(self) -> int:
        return len(self._machines)

    # ============================================
    # Shared inputs
    # ============================================

    def update_civilians(self, vehicles: Sequence[CandidateVehicle]) -> int:
        """Feed civilian vehicle positions used as targeting candidates"""
        return self.civilians.upsert(vehicles)

    async def apply_traffic_delta(self, delta: TrafficDelta) -> List[str]:
        """
        Apply a traffic change and recalculate every corridor whose path it touches

        Returns:
            Ids of the corridors that were recalculated
        """
        self.predictor.apply_traffic_delta(delta)
        machines = list(self._machines.values())
        results = await asyncio.gather(
            *(m.apply_traffic_delta(delta) for m in machines),
            return_exceptions=True,
        )

        affected = []
        for machine, outcome in zip(machines, results):
            if isinstance(outcome, BaseException):
                logger.warning("[REGISTRY] Traffic delta failed for %s: %s", machine.corridor_id, outcome)
            elif outcome:
                affected.append(machine.corridor_id)
        return affected

    # ============================================
    # Collaborators
    # ============================================

    async def _publish(self, messages: List[AlertMessage]):
        for message in messages:
            self.alerts_sent[message.kind.value] += 1
        try:
            await self.dispatcher.dispatch(messages)
        except Exception as e:
            self.dispatch_errors += 1
            logger.warning("[REGISTRY] Alert dispatch failed (%d messages): %s", len(messages), e)

    async def _archive(self, summary: MissionSummary):
        try:
            await self.archive.archive(summary)
        except Exception as e:
            self.archive_errors += 1
            logger.error("[ARCHIVE] Failed to archive %s: %s", summary.corridor_id, e)

    # ============================================
    # Monitoring
    # ============================================

    async def start(self):
        """Start timeout monitoring"""
        if self.running:
            logger.info("[REGISTRY] Monitor already running")
            return
        self.running = True
        self._monitor_task = asyncio.create_task(self._monitoring_loop())
        logger.info("[REGISTRY] Monitor started (interval %.1fs)", self.monitor_interval)

    async def _monitoring_loop(self):
        while self.running:
            try:
                await self.run_timeouts()
                self.civilians.expire()
                self.validator.prune(time.time() - self.track_ttl)
                await asyncio.sleep(self.monitor_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("[REGISTRY] Monitor error: %s", e)
                await asyncio.sleep(1)

    async def run_timeouts(self, now: Optional[float] = None) -> Dict[str, str]:
        """
        Evaluate stationary/paused timeouts for every corridor

        Corridors busy processing telemetry are skipped and checked on the
        next round.

        Returns:
            corridor_id -> action taken ("paused" or "completed")
        """
        actions = {}
        for corridor_id, machine in list(self._machines.items()):
            if machine.lock.locked():
                continue

            action = await machine.check_timeouts(now)
            if action == "paused":
                actions[corridor_id] = action
            elif action == "escalate":
                paused_for = (now or time.time()) - (machine.corridor.paused_at or 0.0)
                await self.notifier.emit_paused_escalated(corridor_id, machine.corridor.vehicle_id, paused_for)
                try:
                    await self.deactivate(corridor_id, reason="paused_timeout")
                    actions[corridor_id] = "completed"
                except CorridorNotFound:
                    pass
        return actions

    async def shutdown(self):
        """Stop monitoring and drain every live corridor to COMPLETED"""
        self.running = False
        if self._monitor_task:
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass
            self._monitor_task = None

        corridor_ids = list(self._machines)
        results = await asyncio.gather(
            *(self.deactivate(cid, reason="shutdown") for cid in corridor_ids),
            return_exceptions=True,
        )
        for corridor_id, outcome in zip(corridor_ids, results):
            if isinstance(outcome, BaseException) and not isinstance(outcome, CorridorNotFound):
                logger.error("[REGISTRY] Failed to drain %s: %s", corridor_id, outcome)

        await self.predictor.close()
        logger.info("[REGISTRY] Shutdown complete (%d corridors drained)", len(corridor_ids))

    def get_statistics(self) -> Dict[str, Any]:
        states = Counter(m.state.value for m in self._machines.values())
        return {
            'activeCorridors': len(self._machines),
            'corridorsByState': dict(states),
            'activations': self.activations,
            'activationFailures': dict(self.activation_failures),
            'completions': dict(self.completions),
            'telemetry': dict(self.telemetry),
            'spoofingEvents': self.spoofing_events,
            'alertsSent': dict(self.alerts_sent),
            'dispatchErrors': self.dispatch_errors,
            'archiveErrors': self.archive_errors,
            'civilianVehicles': len(self.civilians),
            'validator': self.validator.get_statistics(),
            'predictor': self.predictor.get_statistics(),
            'monitorRunning': self.running,
        }


def build_registry(config: Optional[ConfigManager] = None, socketio=None) -> CorridorRegistry:
    """
    Assemble a registry from configuration

    Uses the HTTP traffic provider when TRAFFIC_API_KEY is set and the SQL
    archive when ``archive.enabled`` is true.
    """
    config = config or get_config()

    network = RoadNetwork.from_config(config.get_predictor_config())
    traffic_config = config.get_traffic_config()
    if os.getenv("TRAFFIC_API_KEY"):
        provider = HttpTrafficProvider(request_timeout=float(traffic_config.get('deadlineSeconds', 2.0)))
    else:
        provider = StaticTrafficProvider(default_factor=float(traffic_config.get('staticSpeedFactor', 0.8)))

    predictor = HeuristicRoutePredictor(
        network,
        TrafficCostService(provider, traffic_config),
        config.get_predictor_config(),
    )
    targeting_config = config.get_targeting_config()
    registry_config = config.get_registry_config()

    archive: ArchivalSink = SqlArchivalSink() if config.get('archive.enabled', True) else InMemoryArchivalSink()
    dispatcher: AlertDispatcher = SocketIOAlertDispatcher(socketio) if socketio else RecordingAlertDispatcher()

    registry_config.setdefault('candidateMarginMeters', float(targeting_config.get('lateralBufferMeters', 500.0)))

    return CorridorRegistry(
        predictor=predictor,
        targeting=BufferTargetingEngine(targeting_config),
        validator=TelemetryValidator(config.get_validator_config()),
        authenticator=StaticAuthenticator(
            allowed_ids=registry_config.get('authorizedVehicles', []),
            allowed_prefixes=registry_config.get('authorizedPrefixes', ['AMB-', 'FIRE-', 'POL-']),
        ),
        dispatcher=dispatcher,
        archive=archive,
        notifier=CorridorNotificationService(socketio),
        civilians=CivilianVehicleIndex(
            cell_degrees=float(targeting_config.get('indexCellDegrees', 0.01)),
            max_age_seconds=float(targeting_config.get('civilianMaxAgeSeconds', 120.0)),
        ),
        config=registry_config,
        corridor_config=config.get_corridor_config(),
    )


# Global registry instance
_registry: Optional[CorridorRegistry] = None


def get_registry() -> CorridorRegistry:
    """Get the global registry, building it from configuration on first use"""
    global _registry
    if _registry is None:
        _registry = build_registry()
    return _registry


def init_registry(config: Optional[ConfigManager] = None, socketio=None) -> CorridorRegistry:
    """Initialize the global registry"""
    global _registry
    _registry = build_registry(config, socketio)
    return _registry


def set_registry(registry: Optional[CorridorRegistry]):
    """Replace the global registry (tests, embedding)"""
    global _registry
    _registry = registry
