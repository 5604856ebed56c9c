"""
Mission Archive Tests

Tests for the SQL mission archive and the in-memory sink.
"""

import time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from corridor_engine.database import Base, MissionArchiveRecord, init_db
from corridor_engine.integrations import InMemoryArchivalSink, SqlArchivalSink
from corridor_engine.models import (
    CorridorState,
    GPSCoordinate,
    MissionSummary,
    StateTransition,
    Urgency,
)


# Single shared in-memory connection so worker-thread writes are visible
test_engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(name="sink")
def sink_fixture():
    """Create tables and provide a SQL archive bound to the test database"""
    init_db(bind=test_engine)
    try:
        yield SqlArchivalSink(TestingSessionLocal)
    finally:
        Base.metadata.drop_all(bind=test_engine)


def make_summary(corridor_id="COR-TEST0001", reason="arrived"):
    now = time.time()
    return MissionSummary(
        corridor_id=corridor_id,
        vehicle_id="AMB-1",
        destination=GPSCoordinate(latitude=23.2156, longitude=72.6490),
        urgency=Urgency.CRITICAL,
        created_at=now - 420.0,
        completed_at=now,
        duration_seconds=420.0,
        completion_reason=reason,
        path_history=[{'pathId': 'PATH-1', 'version': 1}, {'pathId': 'PATH-2', 'version': 2}],
        transitions=[
            StateTransition(from_state=CorridorState.ACTIVE, to_state=CorridorState.COMPLETED, reason=reason),
        ],
        alert_counts={'ALERT': 4, 'UPDATE': 2, 'CLEARANCE': 4},
    )


# ============================================
# SQL Archive Tests
# ============================================

class TestSqlArchive:
    """Test the mission_archives table"""

    @pytest.mark.asyncio
    async def test_archive_and_get(self, sink):
        """Test archiving a summary and reading it back"""
        summary = make_summary()

        await sink.archive(summary)
        record = sink.get("COR-TEST0001")

        assert record['vehicleId'] == "AMB-1"
        assert record['urgency'] == "CRITICAL"
        assert record['completionReason'] == "arrived"
        assert record['pathVersions'] == 2
        assert record['alertsSent'] == 10
        assert record['durationSeconds'] == pytest.approx(420.0)
        assert record['payload']['transitions'][0]['to_state'] == "COMPLETED"

    @pytest.mark.asyncio
    async def test_archive_is_idempotent(self, sink):
        """Test archiving the same corridor twice keeps one row"""
        await sink.archive(make_summary(reason="arrived"))
        await sink.archive(make_summary(reason="shutdown"))

        db = TestingSessionLocal()
        try:
            rows = db.query(MissionArchiveRecord).all()
        finally:
            db.close()

        assert len(rows) == 1
        assert rows[0].completion_reason == "shutdown"

    def test_get_missing(self, sink):
        """Test an unknown corridor has no record"""
        assert sink.get("COR-MISSING") is None


# ============================================
# In-memory Archive Tests
# ============================================

class TestInMemoryArchive:
    """Test the in-memory sink"""

    @pytest.mark.asyncio
    async def test_archive_and_get(self):
        sink = InMemoryArchivalSink()
        summary = make_summary()

        await sink.archive(summary)

        assert sink.get(summary.corridor_id) is summary
        assert sink.get("COR-MISSING") is None
