from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .config import DB_URL

# ---------- Engine / Session ----------

def make_engine(url: str = DB_URL) -> Engine:
    # echo=False to keep tests quiet
    kwargs = {}
    if url.startswith("sqlite"):
        # FastAPI runs sync endpoints in a threadpool
        kwargs["connect_args"] = {"check_same_thread": False}
    eng = create_engine(url, echo=False, **kwargs)
    if url.startswith("sqlite"):
        @event.listens_for(eng, "connect")
        def _set_sqlite_pragmas(dbapi_conn, _record):
            cur = dbapi_conn.cursor()
            cur.execute("PRAGMA journal_mode=WAL")
            cur.execute("PRAGMA synchronous=NORMAL")
            cur.close()
    return eng


engine: Engine = make_engine()

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
)

# ---------- Init helpers ----------

def init_db(bind: Engine | None = None) -> None:
    """
    Create ORM tables (no-ops on existing ones).
    """
    # Import models here to avoid circular imports
    from .models import Base

    Base.metadata.create_all(bind=bind or engine)

# convenience context manager used in app code and scripts
@contextmanager
def db_session(factory: sessionmaker = SessionLocal) -> Iterator[Session]:
    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
