"""Gateway over the persistent duty-cycle log collection."""
from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional

from sqlalchemy import create_engine, delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from motorrelay.errors import StoreOperationFailed, StoreUnavailable
from motorrelay.models import Base, DateRangeQuery, DutyCycleLogEntry, MotorLog, utc_now
from motorrelay.models.log_entry import to_naive_utc

logger = logging.getLogger(__name__)

MAX_RESULTS = 100


def _engine_options(url: str) -> Dict[str, Any]:
    if not url.startswith("sqlite"):
        return {"pool_pre_ping": True}
    options: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    if url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in url:
        options["poolclass"] = StaticPool
    return options


class LogStore:
    """Create, range-query and range-delete duty-cycle log entries.

    The store is unavailable until :meth:`connect` succeeds. While unavailable,
    writes and deletes raise :class:`StoreUnavailable` and queries return an
    empty list.
    """

    def __init__(
        self,
        url: Optional[str],
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.url = url
        self._clock = clock or utc_now
        self._engine: Optional[Engine] = None
        self._sessions: Optional[sessionmaker] = None
        # SQLite connections are shared across worker threads.
        self._lock: Optional[threading.Lock] = (
            threading.Lock() if url and url.startswith("sqlite") else None
        )

    @property
    def available(self) -> bool:
        return self._sessions is not None

    def connect(self) -> bool:
        if self.available:
            return True
        if not self.url:
            logger.warning("No database URL configured; duty-cycle logs will not be saved")
            return False
        if self.url.lower().startswith("mongodb"):
            logger.warning(
                "Database URL uses the mongodb scheme, which this relay cannot open; "
                "set RELAY_DATABASE_URL to an SQLAlchemy URL. Duty-cycle logs will not be saved"
            )
            return False
        try:
            engine = create_engine(self.url, **_engine_options(self.url))
            Base.metadata.create_all(engine)
        except (SQLAlchemyError, ImportError) as exc:
            logger.error("Log store connection failed: %s", exc)
            return False
        self._engine = engine
        self._sessions = sessionmaker(bind=engine, expire_on_commit=False)
        logger.info("Connected to log store %s", engine.url.render_as_string(hide_password=True))
        return True

    def close(self) -> None:
        engine = self._engine
        self._sessions = None
        self._engine = None
        if engine is not None:
            engine.dispose()

    def create(self, entry: DutyCycleLogEntry) -> DutyCycleLogEntry:
        """Persist ``entry`` stamped with the ingestion time."""
        with self._session("create") as session:
            row = MotorLog.from_entry(entry)
            row.server_time = to_naive_utc(self._clock())
            session.add(row)
            session.commit()
            return row.to_entry()

    def find(self, query: DateRangeQuery, limit: int = MAX_RESULTS) -> List[DutyCycleLogEntry]:
        """Return matching entries, most recent first, never more than ``MAX_RESULTS``."""
        if not self.available:
            logger.warning("Log query answered empty: store not connected")
            return []
        limit = max(0, min(limit, MAX_RESULTS))
        stmt = (
            select(MotorLog)
            .where(*self._criteria(query))
            .order_by(MotorLog.server_time.desc(), MotorLog.id.desc())
            .limit(limit)
        )
        with self._session("find") as session:
            return [row.to_entry() for row in session.scalars(stmt)]

    def delete_many(self, query: DateRangeQuery) -> int:
        stmt = delete(MotorLog).where(*self._criteria(query))
        with self._session("delete_many") as session:
            result = session.execute(stmt)
            session.commit()
            return int(result.rowcount or 0)

    async def create_async(self, entry: DutyCycleLogEntry) -> DutyCycleLogEntry:
        return await asyncio.to_thread(self.create, entry)

    async def find_async(self, query: DateRangeQuery, limit: int = MAX_RESULTS) -> List[DutyCycleLogEntry]:
        return await asyncio.to_thread(self.find, query, limit)

    async def delete_many_async(self, query: DateRangeQuery) -> int:
        return await asyncio.to_thread(self.delete_many, query)

    @staticmethod
    def _criteria(query: DateRangeQuery) -> list:
        lower, upper = query.bounds()
        criteria = []
        if lower is not None:
            criteria.append(MotorLog.server_time >= lower)
        if upper is not None:
            criteria.append(MotorLog.server_time < upper)
        return criteria

    @contextlib.contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        sessions = self._sessions
        if sessions is None:
            raise StoreUnavailable(f"{operation}: log store not connected")
        lock = self._lock or contextlib.nullcontext()
        with lock:
            session = sessions()
            try:
                yield session
            except SQLAlchemyError as exc:
                session.rollback()
                raise StoreOperationFailed(operation, exc) from exc
            finally:
                session.close()


__all__ = ["LogStore", "MAX_RESULTS"]
