"""
Alert Targeting Tests

Tests for buffer-region targeting, target set diffing and the civilian
vehicle index.
"""

import asyncio
import random

import pytest

from corridor_engine.geo import destination_point, haversine_meters
from corridor_engine.models import (
    AlertKind,
    CandidateVehicle,
    GuidanceDirection,
    GuidanceRecord,
    MapBounds,
    PredictedPath,
    TargetSet,
    Waypoint,
)
from corridor_engine.targeting import (
    BufferTargetingEngine,
    CivilianVehicleIndex,
    clearances_for,
    diff_target_sets,
)


ORIGIN = (23.2156, 72.6369)


def offset(north=0.0, east=0.0, base=ORIGIN):
    lat, lon = destination_point(base[0], base[1], 0.0 if north >= 0 else 180.0, abs(north))
    return destination_point(lat, lon, 90.0 if east >= 0 else 270.0, abs(east))


def make_path(points, speed_mps=10.0, corridor_id="COR-1"):
    """Path through points with cumulative timings at a constant speed"""
    distances = [0.0]
    for a, b in zip(points, points[1:]):
        distances.append(distances[-1] + haversine_meters(a[0], a[1], b[0], b[1]))
    return PredictedPath(
        corridor_id=corridor_id,
        waypoints=tuple(Waypoint(latitude=lat, longitude=lon) for lat, lon in points),
        segment_ids=tuple(f"R-{i}" for i in range(len(points) - 1)),
        cumulative_seconds=tuple(d / speed_mps for d in distances),
        distance_meters=distances[-1],
        estimated_duration_seconds=distances[-1] / speed_mps,
        estimated_arrival_timestamp=distances[-1] / speed_mps,
        confidence=1.0,
    )


def straight_path():
    """3 km due east of ORIGIN, 10 m/s"""
    return make_path([offset(east=d) for d in (0, 1000, 2000, 3000)])


def civilian(vehicle_id, north, east, heading=None, timestamp=1000.0, base=ORIGIN):
    lat, lon = offset(north, east, base)
    return CandidateVehicle(vehicle_id=vehicle_id, latitude=lat, longitude=lon, heading=heading, timestamp=timestamp)


CIVILIANS = [
    civilian("C-1", 100, 200, heading=90.0),     # same direction, ahead
    civilian("C-2", 0, 2000, heading=90.0),      # beyond the look-ahead
    civilian("C-3", 600, 500, heading=90.0),     # outside the lateral buffer
    civilian("C-4", 0, -200, heading=90.0),      # behind the vehicle
    civilian("C-5", -50, 400, heading=270.0),    # oncoming
    civilian("C-6", 50, 600, heading=0.0),       # crossing, heading left of travel
    civilian("C-7", -50, 700, heading=180.0),    # crossing, heading right of travel
    civilian("C-8", 10, 800),                    # heading unknown
]


# ============================================
# Buffer Targeting Tests
# ============================================

class TestBufferTargeting:
    """Test buffer region membership and guidance"""

    def test_buffer_membership(self):
        """Test only vehicles inside the forward buffer are targeted"""
        engine = BufferTargetingEngine()
        path = straight_path()

        targets = engine.compute_targets(path, CIVILIANS, from_position=ORIGIN)

        assert list(targets.entries) == ["C-1", "C-5", "C-6", "C-7", "C-8"]
        assert targets.corridor_id == "COR-1"
        assert targets.path_id == path.path_id

    def test_guidance(self):
        """Test guidance from relative heading"""
        engine = BufferTargetingEngine()

        entries = engine.compute_targets(straight_path(), CIVILIANS, from_position=ORIGIN).entries

        assert entries["C-1"].direction == GuidanceDirection.PULL_OVER
        assert entries["C-5"].direction == GuidanceDirection.RIGHT
        assert entries["C-6"].direction == GuidanceDirection.LEFT
        assert entries["C-7"].direction == GuidanceDirection.RIGHT
        assert entries["C-8"].direction == GuidanceDirection.PULL_OVER

    def test_left_hand_traffic(self):
        """Test oncoming vehicles keep to the configured driving side"""
        engine = BufferTargetingEngine({'drivingSide': 'left'})

        entries = engine.compute_targets(straight_path(), CIVILIANS, from_position=ORIGIN).entries

        assert entries["C-5"].direction == GuidanceDirection.LEFT

    def test_eta(self):
        """Test ETA is the predicted time to reach the vehicle's projection"""
        engine = BufferTargetingEngine()

        entries = engine.compute_targets(straight_path(), CIVILIANS, from_position=ORIGIN).entries

        assert entries["C-1"].eta_seconds == pytest.approx(20.0, abs=0.5)
        assert entries["C-8"].eta_seconds == pytest.approx(80.0, abs=0.5)

    def test_window_follows_vehicle(self):
        """Test the look-ahead window starts at the emergency vehicle's position"""
        engine = BufferTargetingEngine()

        entries = engine.compute_targets(straight_path(), CIVILIANS, from_position=offset(east=1000)).entries

        assert "C-1" not in entries
        assert "C-2" in entries
        assert entries["C-2"].eta_seconds == pytest.approx(100.0, abs=0.5)

    def test_rounded_join_at_turn(self):
        """Test the outside of a turn is covered up to the buffer radius"""
        corner = offset(east=1000)
        path = make_path([ORIGIN, corner, offset(north=1000, base=corner)])
        engine = BufferTargetingEngine()

        near = civilian("C-near", -200, 200, base=corner)
        far = civilian("C-far", -400, 400, base=corner)
        entries = engine.compute_targets(path, [near, far], from_position=ORIGIN).entries

        assert "C-near" in entries
        assert "C-far" not in entries

    def test_deterministic(self):
        """Test candidate order does not affect the result"""
        engine = BufferTargetingEngine()
        path = straight_path()

        forward = engine.compute_targets(path, CIVILIANS, from_position=ORIGIN, computed_at=1.0)
        backward = engine.compute_targets(path, list(reversed(CIVILIANS)), from_position=ORIGIN, computed_at=1.0)

        assert forward == backward
        assert list(forward.entries) == sorted(forward.entries)

    def test_no_candidates(self):
        """Test an empty population yields an empty target set"""
        engine = BufferTargetingEngine()

        targets = engine.compute_targets(straight_path(), [], corridor_id="COR-9", computed_at=5.0)

        assert len(targets) == 0
        assert targets.corridor_id == "COR-9"
        assert targets.computed_at == 5.0

    def test_look_ahead_clamped(self):
        """Test the look-ahead distance stays within 1-1.5 km"""
        assert BufferTargetingEngine({'lookAheadMeters': 5000}).look_ahead_m == 1500
        assert BufferTargetingEngine({'lookAheadMeters': 100}).look_ahead_m == 1000
        assert BufferTargetingEngine().look_ahead_m == 1200

    def test_statistics(self):
        """Test computation statistics"""
        engine = BufferTargetingEngine()
        engine.compute_targets(straight_path(), CIVILIANS)

        stats = engine.get_statistics()

        assert stats['totalComputations'] == 1
        assert stats['lateralBufferMeters'] == 500

    @pytest.mark.asyncio
    async def test_statistics_from_worker_threads(self):
        """Test concurrent computations on worker threads are all counted"""
        engine = BufferTargetingEngine()
        path = straight_path()

        await asyncio.gather(*(
            asyncio.to_thread(engine.compute_targets, path, CIVILIANS) for _ in range(32)
        ))

        stats = engine.get_statistics()
        assert stats['totalComputations'] == 32
        assert stats['avgComputationMs'] >= 0.0


# ============================================
# Target Set Diff Tests
# ============================================

def target_set(entries, corridor_id="COR-1"):
    return TargetSet(
        corridor_id=corridor_id,
        entries={k: GuidanceRecord(direction=d, eta_seconds=e) for k, (d, e) in entries.items()},
    )


class TestTargetSetDiff:
    """Test ALERT / UPDATE / CLEARANCE generation"""

    def test_first_set_alerts_everyone(self):
        """Test a first target set produces only ALERTs"""
        new = target_set({"A": (GuidanceDirection.RIGHT, 10.0), "B": (GuidanceDirection.PULL_OVER, 20.0)})

        messages = diff_target_sets(None, new)

        assert [(m.kind, m.civilian_vehicle_id) for m in messages] == [
            (AlertKind.ALERT, "A"),
            (AlertKind.ALERT, "B"),
        ]

    def test_mixed_diff(self):
        """Test new, changed, unchanged and dropped vehicles"""
        old = target_set({
            "A": (GuidanceDirection.RIGHT, 30.0),
            "B": (GuidanceDirection.RIGHT, 40.0),
            "C": (GuidanceDirection.LEFT, 50.0),
        })
        new = target_set({
            "B": (GuidanceDirection.RIGHT, 38.0),      # within tolerance
            "C": (GuidanceDirection.LEFT, 35.0),       # ETA moved 15 s
            "D": (GuidanceDirection.PULL_OVER, 60.0),
        })

        messages = diff_target_sets(old, new, eta_tolerance_seconds=5.0)

        assert [(m.kind, m.civilian_vehicle_id) for m in messages] == [
            (AlertKind.ALERT, "D"),
            (AlertKind.UPDATE, "C"),
            (AlertKind.CLEARANCE, "A"),
        ]
        clearance = messages[-1]
        assert clearance.guidance == GuidanceDirection.RIGHT
        assert clearance.eta_seconds == 0.0

    def test_guidance_change_updates(self):
        """Test a guidance change is an UPDATE regardless of ETA"""
        old = target_set({"A": (GuidanceDirection.RIGHT, 30.0)})
        new = target_set({"A": (GuidanceDirection.PULL_OVER, 30.0)})

        messages = diff_target_sets(old, new)

        assert len(messages) == 1
        assert messages[0].kind == AlertKind.UPDATE
        assert messages[0].guidance == GuidanceDirection.PULL_OVER

    def test_identical_sets_silent(self):
        """Test no messages for an unchanged target set"""
        entries = {"A": (GuidanceDirection.RIGHT, 30.0)}

        assert diff_target_sets(target_set(entries), target_set(entries)) == []

    def test_diff_set_algebra(self):
        """Test clearances = old - new and alerts = new - old over random sets"""
        rng = random.Random(7)
        keys = [f"V-{i}" for i in range(12)]
        directions = list(GuidanceDirection)

        for _ in range(50):
            old_keys = set(rng.sample(keys, rng.randint(0, 8)))
            new_keys = set(rng.sample(keys, rng.randint(0, 8)))
            old_entries = {k: (rng.choice(directions), float(rng.randint(0, 120))) for k in old_keys}
            new_entries = {
                k: old_entries[k] if k in old_entries and rng.random() < 0.5
                else (rng.choice(directions), float(rng.randint(0, 120)))
                for k in new_keys
            }

            messages = diff_target_sets(target_set(old_entries), target_set(new_entries))
            by_kind = {kind: {m.civilian_vehicle_id for m in messages if m.kind == kind} for kind in AlertKind}

            assert by_kind[AlertKind.CLEARANCE] == old_keys - new_keys
            assert by_kind[AlertKind.ALERT] == new_keys - old_keys
            unchanged = {k for k in old_keys & new_keys if old_entries[k] == new_entries[k]}
            assert not (by_kind[AlertKind.UPDATE] & unchanged)

    def test_clearances_for(self):
        """Test completion clears every remaining vehicle"""
        remaining = target_set({"A": (GuidanceDirection.RIGHT, 30.0), "B": (GuidanceDirection.LEFT, 5.0)})

        messages = clearances_for(remaining)

        assert [m.civilian_vehicle_id for m in messages] == ["A", "B"]
        assert all(m.kind == AlertKind.CLEARANCE for m in messages)
        assert clearances_for(None) == []


# ============================================
# Civilian Vehicle Index Tests
# ============================================

class TestCivilianVehicleIndex:
    """Test the civilian vehicle spatial index"""

    def test_upsert_and_move(self):
        """Test vehicles move between cells"""
        index = CivilianVehicleIndex()
        index.upsert([civilian("C-1", 0, 0, timestamp=1000.0)])
        index.upsert([civilian("C-1", 0, 5000, timestamp=1010.0)])

        assert len(index) == 1
        assert index.get("C-1").longitude == pytest.approx(offset(east=5000)[1])
        assert index.get_statistics()['cells'] == 1

    def test_older_report_ignored(self):
        """Test an older report never replaces a newer one"""
        index = CivilianVehicleIndex()
        index.upsert([civilian("C-1", 0, 0, timestamp=1010.0)])

        accepted = index.upsert([civilian("C-1", 0, 5000, timestamp=1000.0)])

        assert accepted == 0
        assert index.get("C-1").longitude == pytest.approx(ORIGIN[1])

    def test_query_bounds(self):
        """Test bounding box queries"""
        index = CivilianVehicleIndex()
        index.upsert([civilian("C-1", 0, 0), civilian("C-2", 0, 5000)])
        bounds = MapBounds(north=ORIGIN[0] + 0.01, south=ORIGIN[0] - 0.01, east=ORIGIN[1] + 0.01, west=ORIGIN[1] - 0.01)

        found = index.query_bounds(bounds)

        assert [v.vehicle_id for v in found] == ["C-1"]

    def test_near_path(self):
        """Test candidates near a path's bounding box"""
        index = CivilianVehicleIndex()
        index.upsert([civilian("C-1", 300, 1500), civilian("C-2", 3000, 1500)])

        found = index.near_path(straight_path(), margin_meters=500)

        assert [v.vehicle_id for v in found] == ["C-1"]

    def test_expire(self):
        """Test stale vehicles are dropped"""
        index = CivilianVehicleIndex(max_age_seconds=60)
        index.upsert([civilian("C-1", 0, 0, timestamp=1000.0), civilian("C-2", 0, 0, timestamp=1100.0)])

        removed = index.expire(now=1120.0)

        assert removed == 1
        assert index.get("C-1") is None
        assert index.get("C-2") is not None
