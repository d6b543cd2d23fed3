"""Engine and session helpers for the envelope store database.

The engine is built lazily from ``STUDYTRACK_DATABASE_URL``. Tests and the
backfill script can bind an explicit URL with :func:`configure_engine`.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Generator, Optional

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from ..config import get_settings
from .monitoring import instrument_engine, release_engine


@dataclass
class _Binding:
    engine: Engine
    factory: sessionmaker[Session]


_binding: Optional[_Binding] = None


def _engine_kwargs(database_url: str, *, echo: bool, pool_size: int, max_overflow: int) -> dict[str, object]:
    kwargs: dict[str, object] = {"echo": echo, "future": True, "pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        # SQLite connections are shared with the TestClient worker thread.
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs["pool_size"] = pool_size
        kwargs["max_overflow"] = max_overflow
    return kwargs


def configure_engine(database_url: str, *, echo: bool = False, pool_size: int = 5, max_overflow: int = 5) -> Engine:
    """Replace the process-wide engine with one bound to ``database_url``."""
    global _binding
    dispose_engine()
    engine = create_engine(
        database_url,
        **_engine_kwargs(database_url, echo=echo, pool_size=pool_size, max_overflow=max_overflow),
    )
    instrument_engine(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)
    _binding = _Binding(engine=engine, factory=factory)
    return engine


def get_engine() -> Engine:
    if _binding is not None:
        return _binding.engine
    settings = get_settings()
    if not settings.database_url:
        raise RuntimeError("STUDYTRACK_DATABASE_URL must be configured before using the database.")
    return configure_engine(
        settings.database_url,
        echo=settings.database_echo,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )


def get_session_factory() -> sessionmaker[Session]:
    get_engine()
    assert _binding is not None
    return _binding.factory


def create_schema() -> None:
    """Create tables straight from the ORM metadata (development and tests)."""
    from .base import Base
    from . import models  # noqa: F401  registers the tables

    Base.metadata.create_all(get_engine())


@contextmanager
def session_scope(*, commit: bool = True) -> Generator[Session, None, None]:
    session = get_session_factory()()
    try:
        yield session
        if commit:
            session.commit()
    except Exception:  # noqa: BLE001
        session.rollback()
        raise
    finally:
        session.close()


def get_session_dependency() -> Generator[Session, None, None]:
    with session_scope() as session:
        yield session


def dispose_engine() -> None:
    global _binding
    if _binding is not None:
        _binding.engine.dispose()
        release_engine(_binding.engine)
    _binding = None


__all__ = [
    "configure_engine",
    "create_schema",
    "dispose_engine",
    "get_engine",
    "get_session_dependency",
    "get_session_factory",
    "session_scope",
]
