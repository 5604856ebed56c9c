"""
Mission Archival

Durable storage of MissionSummary records emitted when a corridor
completes.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from sqlalchemy.orm import sessionmaker

from corridor_engine.database import SessionLocal, MissionArchiveRecord
from corridor_engine.models import MissionSummary

logger = logging.getLogger(__name__)


class ArchivalSink(ABC):
    """Archive interface"""

    @abstractmethod
    async def archive(self, summary: MissionSummary):
        """Persist a mission summary"""


class InMemoryArchivalSink(ArchivalSink):

    def __init__(self):
        self.summaries: List[MissionSummary] = []

    async def archive(self, summary: MissionSummary):
        self.summaries.append(summary)

    def get(self, corridor_id: str) -> Optional[MissionSummary]:
        return next((s for s in self.summaries if s.corridor_id == corridor_id), None)


class SqlArchivalSink(ArchivalSink):
    """
    SQLAlchemy-backed archive (``mission_archives`` table)

    Writes run in a worker thread so the event loop is never blocked on
    the database.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory or SessionLocal

    async def archive(self, summary: MissionSummary):
        await asyncio.to_thread(self._write, summary)
        logger.info("[ARCHIVE] Mission %s archived", summary.corridor_id)

    def _write(self, summary: MissionSummary):
        db = self.session_factory()
        try:
            db.merge(MissionArchiveRecord(
                corridor_id=summary.corridor_id,
                vehicle_id=summary.vehicle_id,
                urgency=summary.urgency.value,
                created_at=summary.created_at,
                completed_at=summary.completed_at,
                duration_seconds=summary.duration_seconds,
                completion_reason=summary.completion_reason,
                path_versions=len(summary.path_history),
                alerts_sent=sum(summary.alert_counts.values()),
                payload=summary.model_dump(mode='json'),
            ))
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def get(self, corridor_id: str) -> Optional[Dict]:
        db = self.session_factory()
        try:
            record = db.get(MissionArchiveRecord, corridor_id)
            return record.to_dict() if record else None
        finally:
            db.close()
