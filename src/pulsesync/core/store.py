"""
Local store: SQLAlchemy engine and session factory.

Each reconciliation pass opens its own session through :meth:`LocalStore.write_session`
and commits (or rolls back) exactly once. SQLite allows a single writer, so
for SQLite URLs write sessions are serialized behind one lock; fetching from
the remote APIs happens outside that lock and stays concurrent.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager, nullcontext
from typing import Any, Dict, Iterator, Optional, Type

from sqlalchemy import create_engine, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base


class LocalStore:
    def __init__(
        self,
        url: str = "sqlite:///pulse.db",
        *,
        echo: bool = False,
        engine: Optional[Engine] = None,
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        self.url = url
        self.log = logger or logging.getLogger("pulse.store")
        self.engine = engine or self._create_engine(url, echo)
        self.is_sqlite = self.engine.dialect.name == "sqlite"
        self._write_lock = threading.Lock() if self.is_sqlite else None
        self._factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    @staticmethod
    def _create_engine(url: str, echo: bool) -> Engine:
        if not url.startswith("sqlite"):
            return create_engine(url, echo=echo)
        kwargs: Dict[str, Any] = {"connect_args": {"check_same_thread": False, "timeout": 30}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # one shared connection, otherwise each thread sees its own empty database
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=echo, **kwargs)

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)
        self.log.debug("Local schema ready (%s)", self.engine.url.render_as_string(hide_password=True))

    def session(self) -> Session:
        return self._factory()

    @contextmanager
    def write_session(self) -> Iterator[Session]:
        """Session for one reconciliation pass; the caller commits."""
        with self._write_lock or nullcontext():
            session = self._factory()
            try:
                yield session
            finally:
                session.close()

    @contextmanager
    def read_session(self) -> Iterator[Session]:
        session = self._factory()
        try:
            yield session
        finally:
            session.close()

    def count(self, model: Type[Any]) -> int:
        with self.read_session() as session:
            return int(session.scalar(select(func.count()).select_from(model)) or 0)

    def dispose(self) -> None:
        self.engine.dispose()
