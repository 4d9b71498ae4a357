from __future__ import annotations

import json
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine, inspect as sa_inspect, text
from sqlalchemy.orm import Session, sessionmaker

from bizops.models import Base
from bizops.stages import DEFAULT_PROGRESSIONS

_lock = threading.Lock()
_engine = None
_SessionLocal = None

DATA_DIR = Path(__file__).parent / "data"


def default_db_path() -> Path:
    """Database file from ``BIZOPS_DB_PATH``, else ``data/bizops.db`` next to the package."""
    env = os.environ.get("BIZOPS_DB_PATH")
    return Path(env) if env else DATA_DIR / "bizops.db"


def init_db(db_path: str | Path | None = None) -> None:
    global _engine, _SessionLocal
    with _lock:
        if _engine is not None:
            _engine.dispose()
        db_path = Path(db_path) if db_path is not None else default_db_path()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        url = f"sqlite:///{db_path}"
        _engine = create_engine(url, connect_args={"check_same_thread": False})
        Base.metadata.create_all(_engine)
        _SessionLocal = sessionmaker(bind=_engine, autoflush=False, expire_on_commit=False)
        _migrate_existing_db(_engine)


def _migrate_existing_db(engine) -> None:
    """Add columns that may be missing in older databases, then seed defaults."""
    inspector = sa_inspect(engine)
    if inspector.has_table("pipeline_items"):
        columns = {col["name"] for col in inspector.get_columns("pipeline_items")}
        if "notes" not in columns:
            with engine.begin() as conn:
                conn.execute(text("ALTER TABLE pipeline_items ADD COLUMN notes TEXT DEFAULT ''"))
    seed_stage_rules(engine)


def get_session() -> Session:
    with _lock:
        if _SessionLocal is None:
            raise RuntimeError("init_db() has not been called")
        factory = _SessionLocal
    return factory()  # type: ignore[misc]


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Context manager providing a transactional session scope.

    Usage (MCP server, scripts, etc.)::

        with session_scope() as session:
            ...
    """
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def seed_stage_rules(engine) -> None:
    """Seed the default stage rule tables if the table is empty."""
    with engine.connect() as conn:
        count = conn.execute(text("SELECT COUNT(*) FROM stage_rules")).scalar()
        if count > 0:
            return
    with engine.begin() as conn:
        for name, progression in DEFAULT_PROGRESSIONS.items():
            for position, rule in enumerate(progression.rules):
                conn.execute(text(
                    "INSERT INTO stage_rules (pipeline, position, keywords_json, implied_stage_index) "
                    "VALUES (:pipeline, :position, :keywords, :idx)"
                ), {
                    "pipeline": name, "position": position,
                    "keywords": json.dumps(list(rule.keywords)), "idx": rule.implied_stage_index,
                })
