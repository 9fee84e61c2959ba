# delayqueue Models Package
from .database import Base, engine, SessionLocal, create_db_engine, make_session_factory, init_db
from .task import DelayTask, TaskSubmission, utcnow, to_epoch_millis, to_naive_utc

__all__ = [
    "Base",
    "engine",
    "SessionLocal",
    "create_db_engine",
    "make_session_factory",
    "init_db",
    "DelayTask",
    "TaskSubmission",
    "utcnow",
    "to_epoch_millis",
    "to_naive_utc",
]
