from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from app.core.config import settings

class Base(DeclarativeBase): pass

def now_utc() -> datetime:
    # Naive UTC, matching the DateTime() columns.
    return datetime.now(timezone.utc).replace(tzinfo=None)

class Database:
    """Process-scoped handle on the engine and its session factory.

    Opened once at startup and disposed at shutdown; request handlers get
    sessions from it through ``app.api.deps.get_db``.
    """

    def __init__(self, dsn: str | None = None, **engine_kwargs):
        self.dsn = dsn or settings.POSTGRES_DSN
        self.engine_kwargs = engine_kwargs
        self.engine: Engine | None = None
        self.SessionLocal: sessionmaker | None = None

    def open(self) -> "Database":
        if self.engine is not None:
            return self
        url = make_url(self.dsn)
        kwargs = dict(self.engine_kwargs)
        if url.get_backend_name() == "postgresql":
            kwargs.setdefault("pool_pre_ping", True)
            kwargs.setdefault("pool_timeout", settings.DB_CONNECT_TIMEOUT_SECONDS)
            kwargs.setdefault("connect_args", {
                "connect_timeout": settings.DB_CONNECT_TIMEOUT_SECONDS,
                "options": f"-c statement_timeout={settings.DB_STATEMENT_TIMEOUT_MS}",
            })
        self.engine = create_engine(url, **kwargs)
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, autocommit=False, expire_on_commit=False)
        return self

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
        self.engine = None
        self.SessionLocal = None

    def create_all(self) -> None:
        import app.db.models  # noqa: F401
        Base.metadata.create_all(self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        if self.SessionLocal is None:
            raise RuntimeError("Database is not open")
        db = self.SessionLocal()
        try:
            yield db
        finally:
            db.close()
