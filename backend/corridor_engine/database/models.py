"""
SQLAlchemy ORM Models

Durable record of completed corridors.
"""

from sqlalchemy import Column, Float, Integer, String, JSON, DateTime, Index
from sqlalchemy.sql import func

from .database import Base


class MissionArchiveRecord(Base):
    """
    Mission summary of a completed corridor

    Scalar columns for querying; the full summary (path history,
    transitions, alert counts) is kept in ``payload``.
    """
    __tablename__ = "mission_archives"

    corridor_id = Column(String, primary_key=True)
    vehicle_id = Column(String, nullable=False, index=True)
    urgency = Column(String, nullable=False)

    created_at = Column(Float, nullable=False)
    completed_at = Column(Float, nullable=False, index=True)
    duration_seconds = Column(Float, nullable=False)
    completion_reason = Column(String, nullable=False)

    path_versions = Column(Integer, default=0)
    alerts_sent = Column(Integer, default=0)
    payload = Column(JSON, nullable=False)

    archived_at = Column(DateTime, server_default=func.now())

    __table_args__ = (
        Index('idx_archive_vehicle_completed', 'vehicle_id', 'completed_at'),
    )

    def to_dict(self) -> dict:
        return {
            'corridorId': self.corridor_id,
            'vehicleId': self.vehicle_id,
            'urgency': self.urgency,
            'createdAt': self.created_at,
            'completedAt': self.completed_at,
            'durationSeconds': self.duration_seconds,
            'completionReason': self.completion_reason,
            'pathVersions': self.path_versions,
            'alertsSent': self.alerts_sent,
            'payload': self.payload,
        }
