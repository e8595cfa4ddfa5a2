"""
Database setup for the route planner backend.
SQLite through SQLAlchemy; holds the durable key-value table.
"""
from pathlib import Path
from typing import Optional, Tuple

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from settings import settings

Base = declarative_base()


def create_session_factory(db_path: Path) -> Tuple[Engine, sessionmaker]:
    """Engine and session factory for a SQLite file, creating its directory."""
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    # check_same_thread=False allows usage across FastAPI threads
    sqlite_engine = create_engine(
        f"sqlite:///{db_path}", connect_args={"check_same_thread": False}
    )
    return sqlite_engine, sessionmaker(bind=sqlite_engine, autoflush=False, autocommit=False)


DB_PATH = Path(settings.STORE_DB_PATH)
engine, SessionLocal = create_session_factory(DB_PATH)


def init_db(bind: Optional[Engine] = None) -> None:
    """Create tables if they don't exist."""
    from repositories import models  # noqa: F401  Ensures models are registered

    Base.metadata.create_all(bind=bind or engine)
