from collections.abc import Generator, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from parley.config import settings
from parley.core.errors import InternalError

_is_sqlite = settings.DATABASE_URL.startswith("sqlite")

_engine_kwargs: dict = (
    {"connect_args": {"check_same_thread": False}}
    if _is_sqlite
    else {"pool_pre_ping": True, "pool_size": 10, "max_overflow": 20}
)

engine = create_engine(settings.DATABASE_URL, **_engine_kwargs)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """Commit the enclosed work as one unit, rolling back on any exception."""
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


def utcnow() -> datetime:
    """Application-side timestamp.

    Watermarks are compared against message timestamps, so both must come from
    the same clock with sub-second precision (SQLite's CURRENT_TIMESTAMP only
    has whole seconds).
    """
    return datetime.now(timezone.utc)


def upsert(db: Session, model):
    """Return a dialect-specific INSERT for *model* supporting ON CONFLICT.

    PostgreSQL and SQLite expose the same ``on_conflict_do_update`` /
    ``on_conflict_do_nothing`` API, so callers stay dialect-agnostic.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise InternalError(f"Upserts are not supported on {dialect!r}")
