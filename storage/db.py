# herdsync/storage/db.py
from sqlmodel import SQLModel, create_engine, Session

from core.settings import QUEUE_DB_PATH

# Ensure SQLModel metadata is populated
import models.pending_op  # noqa: F401


_engine = None


def get_engine():
    global _engine
    if _engine is None:
        QUEUE_DB_PATH.parent.mkdir(parents=True, exist_ok=True)
        _engine = create_engine(f"sqlite:///{QUEUE_DB_PATH.as_posix()}", echo=False)
    return _engine


def init_db(engine=None):
    SQLModel.metadata.create_all(engine or get_engine())


def get_session() -> Session:
    return Session(get_engine())
