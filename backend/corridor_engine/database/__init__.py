"""Mission archive database"""

from .database import Base, SessionLocal, engine, init_db, create_db_engine
from .models import MissionArchiveRecord

__all__ = [
    "Base",
    "SessionLocal",
    "engine",
    "init_db",
    "create_db_engine",
    "MissionArchiveRecord",
]
