from collections.abc import Iterator
from contextlib import contextmanager
from functools import lru_cache
from pathlib import Path
from threading import RLock

from sqlalchemy import String, TypeDecorator, create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .core.config import settings

Base = declarative_base()


class BigUint(TypeDecorator):
    """Unsigned integer of arbitrary width persisted as decimal text.

    Token balances carry 18 decimals and overflow a signed 64-bit column, and
    SQLite's NUMERIC affinity would silently round them.
    """

    impl = String(80)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = int(value)
        if value < 0:
            raise ValueError("BigUint columns cannot store negative values")
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return int(value)


def _ensure_sqlite_path(url: str) -> None:
    if not url.startswith("sqlite"):
        return
    database = make_url(url).database
    if not database or database == ":memory:":
        return
    path = Path(database)
    path.parent.mkdir(parents=True, exist_ok=True)


def _create_engine(url: str):
    connect_args: dict[str, object] = {}
    engine_kwargs: dict[str, object] = {
        "echo": settings.debug,
        "future": True,
        "pool_pre_ping": True,
    }

    parsed = make_url(url)
    backend = parsed.get_backend_name()
    driver = parsed.get_driver_name()

    if backend == "sqlite":
        connect_args["check_same_thread"] = False
        _ensure_sqlite_path(url)
    else:
        # Recycle long-lived connections so pooler idle timeouts do not kill
        # them between settlement runs.
        engine_kwargs["pool_recycle"] = 300

        if backend.startswith("postgresql"):
            connect_args.setdefault("keepalives", 1)
            connect_args.setdefault("keepalives_idle", 120)
            connect_args.setdefault("keepalives_interval", 30)
            connect_args.setdefault("keepalives_count", 5)
            if driver == "psycopg":
                connect_args.setdefault("prepare_threshold", None)

    if connect_args:
        engine_kwargs["connect_args"] = connect_args

    return create_engine(url, **engine_kwargs)


def _create_session_factory(engine) -> sessionmaker[Session]:
    # Autoflush lets a ledger read ciphertexts and balances it created earlier
    # in the same transaction through Session.get.
    return sessionmaker(bind=engine, autoflush=True, autocommit=False, future=True)


class LedgerStore:
    """Single-writer transactional boundary around every state change.

    Each ``transaction()`` is applied all-or-nothing and writers never
    interleave, which is what lets the ledgers skip explicit locking.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory
        self._write_lock = RLock()

    @classmethod
    def from_url(cls, url: str, *, create_schema: bool = True) -> "LedgerStore":
        engine = _create_engine(url)
        if create_schema:
            init_db(engine)
        return cls(_create_session_factory(engine))

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        with self._write_lock:
            session = self._session_factory()
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    @contextmanager
    def read(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
        finally:
            session.rollback()
            session.close()


@lru_cache
def get_store() -> LedgerStore:
    return LedgerStore.from_url(settings.resolved_database_url)


def init_db(engine) -> None:
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
