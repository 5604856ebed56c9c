"""
Orchestration Registry Tests

Tests for activation, deactivation, telemetry routing, spoofing handling,
traffic deltas, timeouts and shutdown across live corridors.
"""

import asyncio
import time

import pytest

from corridor_engine.errors import (
    AlreadyActive,
    CorridorNotFound,
    NoRouteFound,
    VehicleNotAuthenticated,
)
from corridor_engine.geo import destination_point
from corridor_engine.models import (
    AlertKind,
    CandidateVehicle,
    CorridorFilter,
    CorridorState,
    GPSCoordinate,
    PositionSample,
    TrafficDelta,
    Urgency,
    ValidationDecision,
)
from corridor_engine.orchestration import CORRIDOR_FROZEN


ORIGIN = (23.2156, 72.6369)


def offset(north=0.0, east=0.0):
    lat, lon = destination_point(ORIGIN[0], ORIGIN[1], 0.0, north)
    return destination_point(lat, lon, 90.0, east)


def coordinate(north=0.0, east=0.0):
    lat, lon = offset(north, east)
    return GPSCoordinate(latitude=lat, longitude=lon)


def sample(vehicle_id, north=0.0, east=0.0, timestamp=None, **kwargs):
    lat, lon = offset(north, east)
    kwargs.setdefault('accuracy_meters', 5.0)
    kwargs.setdefault('signal_quality', 1.0)
    return PositionSample(
        vehicle_id=vehicle_id,
        latitude=lat,
        longitude=lon,
        timestamp=timestamp if timestamp is not None else time.time(),
        **kwargs,
    )


# J-4 on the test grid, 1200 m east of ORIGIN
DESTINATION = coordinate(east=1200)


async def activate(registry, vehicle_id="AMB-1", urgency=Urgency.HIGH, origin=None):
    return await registry.activate(vehicle_id, DESTINATION, urgency, origin or coordinate())


# ============================================
# Activation Tests
# ============================================

class TestActivation:
    """Test corridor activation"""

    @pytest.mark.asyncio
    async def test_activate(self, registry):
        """Test an authenticated vehicle gets an ACTIVE corridor with a path"""
        view = await activate(registry)

        assert view.state == CorridorState.ACTIVE
        assert view.vehicle_id == "AMB-1"
        assert view.current_path.version == 1
        assert view.current_path.segment_ids == ("R-0", "R-1", "R-2", "R-3")
        assert registry.get(view.corridor_id).corridor_id == view.corridor_id
        assert registry.get_by_vehicle("AMB-1").corridor_id == view.corridor_id

    @pytest.mark.asyncio
    async def test_already_active(self, registry):
        """Test a second activation for the same vehicle is rejected"""
        first = await activate(registry)

        with pytest.raises(AlreadyActive):
            await activate(registry)

        assert registry.active_count == 1
        assert registry.get_by_vehicle("AMB-1").corridor_id == first.corridor_id

    @pytest.mark.asyncio
    async def test_concurrent_activation(self, registry):
        """Test exactly one of two simultaneous activations succeeds"""
        results = await asyncio.gather(
            activate(registry), activate(registry), return_exceptions=True
        )

        failures = [r for r in results if isinstance(r, BaseException)]
        assert len(failures) == 1
        assert isinstance(failures[0], AlreadyActive)
        assert registry.active_count == 1

    @pytest.mark.asyncio
    async def test_unknown_vehicle(self, registry, notifier):
        """Test an unlisted vehicle gets no corridor"""
        with pytest.raises(VehicleNotAuthenticated):
            await activate(registry, vehicle_id="CAR-9")

        assert registry.active_count == 0
        assert registry.get_by_vehicle("CAR-9") is None
        assert notifier.events('corridor:activation_failed')[0]['code'] == "VEHICLE_NOT_AUTHENTICATED"

    @pytest.mark.asyncio
    async def test_registry_unavailable(self, registry, authenticator):
        """Test an unreachable credential registry is reported as not authenticated"""
        authenticator.available = False

        with pytest.raises(VehicleNotAuthenticated) as exc_info:
            await activate(registry)

        assert "unavailable" in exc_info.value.reason
        assert registry.get_statistics()['activationFailures'] == {"VEHICLE_NOT_AUTHENTICATED": 1}

    @pytest.mark.asyncio
    async def test_origin_from_last_position(self, registry):
        """Test activation without origin starts from the last validated position"""
        await registry.on_telemetry("AMB-3", sample("AMB-3", north=300))

        view = await registry.activate("AMB-3", DESTINATION, Urgency.CRITICAL)

        assert view.current_path.waypoints[0].latitude == pytest.approx(offset(north=300)[0], abs=1e-5)

    @pytest.mark.asyncio
    async def test_no_origin(self, registry):
        """Test activation without any known position fails with NoRouteFound"""
        with pytest.raises(NoRouteFound):
            await registry.activate("AMB-4", DESTINATION)

        assert registry.active_count == 0


# ============================================
# Deactivation Tests
# ============================================

class TestDeactivation:
    """Test corridor completion and archival"""

    @pytest.mark.asyncio
    async def test_deactivate_archives_summary(self, registry, archive):
        """Test deactivation completes the corridor and archives its summary"""
        view = await activate(registry)

        summary = await registry.deactivate(view.corridor_id)

        assert summary.completion_reason == "deactivated"
        assert archive.get(view.corridor_id) == summary
        assert registry.active_count == 0
        with pytest.raises(CorridorNotFound):
            registry.get(view.corridor_id)

        # the vehicle may start a new mission
        again = await activate(registry)
        assert again.corridor_id != view.corridor_id

    @pytest.mark.asyncio
    async def test_deactivate_unknown(self, registry):
        """Test deactivating an unknown corridor raises CorridorNotFound"""
        with pytest.raises(CorridorNotFound):
            await registry.deactivate("COR-UNKNOWN")

    @pytest.mark.asyncio
    async def test_civilians_alerted_and_cleared(self, registry, dispatcher):
        """Test civilians near the path get ALERT on activation and CLEARANCE on completion"""
        lat, lon = offset(north=40, east=600)
        registry.update_civilians([
            CandidateVehicle(vehicle_id="CIV-1", latitude=lat, longitude=lon, heading=90.0),
        ])

        view = await activate(registry)
        assert [(m.kind, m.civilian_vehicle_id) for m in dispatcher.for_corridor(view.corridor_id)] == [
            (AlertKind.ALERT, "CIV-1"),
        ]

        await registry.deactivate(view.corridor_id)

        kinds = [m.kind for m in dispatcher.for_corridor(view.corridor_id)]
        assert kinds == [AlertKind.ALERT, AlertKind.CLEARANCE]
        assert registry.get_statistics()['alertsSent'] == {"ALERT": 1, "CLEARANCE": 1}


# ============================================
# Telemetry Tests
# ============================================

class TestTelemetry:
    """Test telemetry routing through the validator"""

    @pytest.mark.asyncio
    async def test_accepted_position_reaches_corridor(self, registry):
        """Test an accepted sample updates the corridor's last position"""
        view = await activate(registry)

        result = await registry.on_telemetry("AMB-1", sample("AMB-1", east=50))

        assert result.decision == ValidationDecision.ACCEPT
        assert registry.get(view.corridor_id).last_position is not None

    @pytest.mark.asyncio
    async def test_spoofing_freezes_corridor(self, registry, notifier):
        """Test repeated rejects freeze the corridor until re-authentication"""
        view = await activate(registry, vehicle_id="AMB-2")
        t0 = time.time()

        for i in range(3):
            result = await registry.on_telemetry(
                "AMB-2", sample("AMB-2", east=10 * i, timestamp=t0 + i, signal_quality=0.2)
            )
            assert result.decision == ValidationDecision.REJECT

        assert result.spoofing_event is not None
        assert registry.get(view.corridor_id).state == CorridorState.FROZEN
        spoofing = notifier.events('corridor:spoofing')
        assert len(spoofing) == 1
        assert spoofing[0]['vehicleId'] == "AMB-2"
        assert spoofing[0]['corridorId'] == view.corridor_id

        ignored = await registry.on_telemetry("AMB-2", sample("AMB-2", timestamp=t0 + 3))
        assert ignored.reason == CORRIDOR_FROZEN

        resumed = await registry.reauthenticate(view.corridor_id)
        assert resumed.state == CorridorState.ACTIVE

        accepted = await registry.on_telemetry("AMB-2", sample("AMB-2", east=20, timestamp=t0 + 4))
        assert accepted.decision == ValidationDecision.ACCEPT

    @pytest.mark.asyncio
    async def test_reauthenticate_revoked(self, registry, authenticator):
        """Test a frozen corridor stays FROZEN when credentials were revoked"""
        view = await activate(registry, vehicle_id="AMB-2")
        t0 = time.time()
        for i in range(3):
            await registry.on_telemetry("AMB-2", sample("AMB-2", timestamp=t0 + i, signal_quality=0.2))
        authenticator.revoke("AMB-2")

        with pytest.raises(VehicleNotAuthenticated):
            await registry.reauthenticate(view.corridor_id)

        assert registry.get(view.corridor_id).state == CorridorState.FROZEN

    @pytest.mark.asyncio
    async def test_telemetry_without_corridor(self, registry):
        """Test telemetry for a vehicle without a corridor is validated only"""
        result = await registry.on_telemetry("FIRE-7", sample("FIRE-7"))

        assert result.decision == ValidationDecision.ACCEPT
        assert registry.active_count == 0
        assert registry.get_statistics()['telemetry'] == {"ACCEPT": 1}


# ============================================
# Traffic & Timeout Tests
# ============================================

class TestTrafficAndTimeouts:
    """Test shared traffic changes and periodic timeout checks"""

    @pytest.mark.asyncio
    async def test_traffic_delta_recalculates(self, registry):
        """Test a blocked segment recalculates only the corridors using it"""
        amb = await activate(registry)
        fire = await registry.activate(
            "FIRE-1", coordinate(north=1200, east=1200), Urgency.CRITICAL, coordinate(north=1200)
        )

        affected = await registry.apply_traffic_delta(TrafficDelta(blocked_segments=frozenset({"R-1"})))

        assert affected == [amb.corridor_id]
        current = registry.get(amb.corridor_id).current_path
        assert current.version == 2
        assert "R-1" not in current.segment_ids
        assert registry.get(fire.corridor_id).path_versions == 1

    @pytest.mark.asyncio
    async def test_paused_then_completed(self, registry, archive, notifier):
        """Test a stationary corridor pauses and is completed after the paused timeout"""
        view = await activate(registry)
        t0 = registry.get(view.corridor_id).last_movement_timestamp

        assert await registry.run_timeouts(now=t0 + 60) == {}
        assert await registry.run_timeouts(now=t0 + 600) == {view.corridor_id: "paused"}
        assert registry.get(view.corridor_id).state == CorridorState.PAUSED

        assert await registry.run_timeouts(now=t0 + 2400) == {view.corridor_id: "completed"}
        assert archive.get(view.corridor_id).completion_reason == "paused_timeout"
        assert len(notifier.events('corridor:paused_escalated')) == 1
        assert registry.active_count == 0

    @pytest.mark.asyncio
    async def test_lagging_vehicle_clock_does_not_pause(self, registry):
        """Test a moving vehicle whose clock runs behind the server is not paused"""
        view = await activate(registry)
        skewed = time.time() - 700

        for i in range(1, 4):
            result = await registry.on_telemetry(
                "AMB-1", sample("AMB-1", east=100 * i, timestamp=skewed + 10 * i, speed=10.0)
            )
            assert result.decision == ValidationDecision.ACCEPT

        assert await registry.run_timeouts() == {}
        assert registry.get(view.corridor_id).state == CorridorState.ACTIVE


# ============================================
# Query & Lifecycle Tests
# ============================================

class TestQueries:
    """Test listing, statistics and shutdown"""

    @pytest.mark.asyncio
    async def test_list_active_filters(self, registry):
        """Test listing by urgency and vehicle prefix"""
        amb = await activate(registry)
        fire = await registry.activate("FIRE-1", DESTINATION, Urgency.CRITICAL, coordinate(north=300))

        assert [v.corridor_id for v in registry.list_active()] == [amb.corridor_id, fire.corridor_id]
        assert [v.vehicle_id for v in registry.list_active(CorridorFilter(urgency=Urgency.CRITICAL))] == ["FIRE-1"]
        assert [v.vehicle_id for v in registry.list_active(CorridorFilter(vehicle_prefix="AMB-"))] == ["AMB-1"]
        assert registry.list_active(CorridorFilter(states={CorridorState.FROZEN})) == []

    @pytest.mark.asyncio
    async def test_statistics(self, registry):
        """Test registry statistics shape"""
        await activate(registry)

        stats = registry.get_statistics()

        assert stats['activeCorridors'] == 1
        assert stats['corridorsByState'] == {"ACTIVE": 1}
        assert stats['activations'] == 1
        assert stats['monitorRunning'] is False
        assert 'validator' in stats and 'predictor' in stats

    @pytest.mark.asyncio
    async def test_shutdown_drains(self, registry, archive):
        """Test shutdown completes and archives every live corridor"""
        await registry.start()
        amb = await activate(registry)
        fire = await registry.activate("FIRE-1", DESTINATION, Urgency.CRITICAL, coordinate(north=300))

        await registry.shutdown()

        assert registry.active_count == 0
        assert registry.running is False
        assert archive.get(amb.corridor_id).completion_reason == "shutdown"
        assert archive.get(fire.corridor_id).completion_reason == "shutdown"
