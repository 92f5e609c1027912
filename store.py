from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from alembic.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import select, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import Settings
from database import Base, make_engine, make_sessionmaker, session_scope
from errors import StorageFailure
from models import BucketSlot, Granularity, LedgerSnapshot
from periods import LABEL_SETS

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "alembic"


class LedgerStore:
    """Owns the database handle and the lock every ledger access goes through.

    ``write()`` and ``read()`` hold the lock for the whole session, so a
    read-modify-write of the ledger or a bucket slot is never interleaved
    with another writer in this process. Other processes sharing the same
    database only get the database's own transactional guarantees.
    """

    def __init__(
        self, engine: Engine, *, timeout_secs: float = 15.0, locale: str = "en"
    ) -> None:
        self.engine = engine
        self.timeout_secs = timeout_secs
        self.locale = locale
        self._sessions = make_sessionmaker(engine)
        self._lock = threading.RLock()
        self._closed = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "LedgerStore":
        engine = make_engine(
            settings.database_url, timeout_secs=settings.request_timeout_secs
        )
        return cls(
            engine, timeout_secs=settings.request_timeout_secs, locale=settings.locale
        )

    @contextmanager
    def guarded(self, timeout: Optional[float] = None) -> Iterator[None]:
        wait = self.timeout_secs if timeout is None else timeout
        if not self._lock.acquire(timeout=wait):
            raise StorageFailure(f"Timed out after {wait}s waiting for the ledger lock")
        try:
            if self._closed:
                raise StorageFailure("Ledger store is closed")
            yield
        finally:
            self._lock.release()

    @contextmanager
    def write(self, timeout: Optional[float] = None) -> Iterator[Session]:
        with self.guarded(timeout):
            try:
                with session_scope(self._sessions) as session:
                    yield session
            except SQLAlchemyError as exc:
                logger.error(f"store_write_failed: error={exc}")
                raise StorageFailure(str(exc)) from exc

    @contextmanager
    def read(self, timeout: Optional[float] = None) -> Iterator[Session]:
        with self.guarded(timeout):
            session: Session = self._sessions()
            try:
                yield session
            except SQLAlchemyError as exc:
                logger.error(f"store_read_failed: error={exc}")
                raise StorageFailure(str(exc)) from exc
            finally:
                session.close()

    def ensure_schema(self) -> None:
        """Create missing tables, stamp the migration head and seed slots.

        A database bootstrapped here is stamped with the current Alembic
        head, so ``alembic upgrade head`` later only applies newer revisions.
        """
        try:
            Base.metadata.create_all(self.engine)
            with self.engine.begin() as conn:
                stamp_head(conn)
        except SQLAlchemyError as exc:
            raise StorageFailure(str(exc)) from exc
        with self.write() as session:
            seed(session, self.locale)

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            logger.warning(f"store_ping_failed: error={exc}")
            return False
        return not self._closed

    def close(self, grace_secs: float = 5.0) -> None:
        started = time.monotonic()
        acquired = self._lock.acquire(timeout=grace_secs)
        if not acquired:
            logger.warning(
                f"store_close: in-flight write still running after {grace_secs}s, closing anyway"
            )
        try:
            self._closed = True
            self.engine.dispose()
            logger.info(f"store_close: waited={time.monotonic() - started:.2f}s")
        finally:
            if acquired:
                self._lock.release()


def stamp_head(conn: Connection) -> None:
    """Record the Alembic head on a database that has no version yet."""
    context = MigrationContext.configure(conn)
    if context.get_current_revision() is not None:
        return
    if not MIGRATIONS_DIR.is_dir():
        logger.warning(f"schema_stamp_skipped: no migrations at {MIGRATIONS_DIR}")
        return
    script = ScriptDirectory(str(MIGRATIONS_DIR))
    context.stamp(script, "head")
    logger.info(f"schema_stamped: revision={script.get_current_head()}")


def seed(session: Session, locale: str = "en") -> None:
    """Create the ledger row and every missing bucket slot, labelled for ``locale``."""
    if session.scalar(select(LedgerSnapshot.id).limit(1)) is None:
        session.add(LedgerSnapshot(savings=0, income=0, expenses=0))

    month_labels, day_labels = LABEL_SETS[locale]
    existing = {
        (row.granularity, row.slot): row for row in session.scalars(select(BucketSlot))
    }
    for granularity, labels in (
        (Granularity.month, month_labels),
        (Granularity.weekday, day_labels),
    ):
        for slot, label in enumerate(labels):
            row = existing.get((granularity, slot))
            if row is None:
                session.add(
                    BucketSlot(
                        granularity=granularity,
                        slot=slot,
                        label=label,
                        credit=0,
                        debit=0,
                    )
                )
            elif row.label != label:
                row.label = label
    session.flush()
