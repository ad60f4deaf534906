# taskmaster/storage/db.py
from pathlib import Path
from typing import Optional

from sqlmodel import SQLModel, create_engine, Session

from core.settings import DB_PATH

# Ensure SQLModel metadata is populated
import models.record  # noqa: F401


_engine = None


def get_engine(db_path: Optional[Path] = None):
    """Return (and lazily create) the engine for ``db_path`` or the default database."""

    global _engine
    if db_path is not None:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return create_engine(f"sqlite:///{db_path.as_posix()}", echo=False)
    if _engine is None:
        DB_PATH.parent.mkdir(parents=True, exist_ok=True)
        _engine = create_engine(f"sqlite:///{DB_PATH.as_posix()}", echo=False)
    return _engine


def init_db(engine=None):
    actual_engine = engine or get_engine()
    SQLModel.metadata.create_all(actual_engine)
    return actual_engine


def get_session(engine=None) -> Session:
    return Session(engine or get_engine())
