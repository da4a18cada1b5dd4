import sqlite3
import time
from contextlib import contextmanager
from typing import Callable, Optional, TypeVar

import structlog

from contact_store import Clock, ContactStore
from exceptions import InternalConsistencyViolation, StoreUnavailable, TransactionConflict
from settings import get_settings

logger = structlog.get_logger()

T = TypeVar("T")

SCHEMA = '''
    CREATE TABLE IF NOT EXISTS Contact (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        phoneNumber TEXT,
        email TEXT,
        linkedId INTEGER,
        linkPrecedence TEXT NOT NULL CHECK(linkPrecedence IN ('secondary', 'primary')),
        createdAt DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updatedAt DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (linkedId) REFERENCES Contact (id),
        CHECK (email IS NOT NULL OR phoneNumber IS NOT NULL),
        CHECK (
            (linkPrecedence = 'primary' AND linkedId IS NULL)
            OR (linkPrecedence = 'secondary' AND linkedId IS NOT NULL)
        )
    )
'''

INDEXES = (
    "CREATE INDEX IF NOT EXISTS ix_contact_email ON Contact (email)",
    "CREATE INDEX IF NOT EXISTS ix_contact_phone ON Contact (phoneNumber)",
    "CREATE INDEX IF NOT EXISTS ix_contact_linked ON Contact (linkedId)",
    "CREATE INDEX IF NOT EXISTS ix_contact_created ON Contact (createdAt, id)",
)


def _resolve_path(database_path: Optional[str]) -> str:
    return database_path or get_settings().database_path


def get_db_connection(database_path: Optional[str] = None) -> sqlite3.Connection:
    """Open a connection with transactions under manual control."""
    conn = sqlite3.connect(
        _resolve_path(database_path),
        timeout=get_settings().database_busy_timeout_seconds,
        isolation_level=None,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db(database_path: Optional[str] = None) -> None:
    path = _resolve_path(database_path)
    with translate_store_errors():
        conn = get_db_connection(path)
        try:
            conn.execute(SCHEMA)
            for statement in INDEXES:
                conn.execute(statement)
        finally:
            conn.close()
    logger.info("Contact schema ready", database_path=path)


def _is_lock_error(exc: sqlite3.OperationalError) -> bool:
    message = str(exc).lower()
    return "locked" in message or "busy" in message


@contextmanager
def translate_store_errors():
    """Re-raise sqlite3 errors as the service's typed failures."""
    try:
        yield
    except sqlite3.IntegrityError as exc:
        raise InternalConsistencyViolation(
            "Contact row rejected by schema constraints", {"error": str(exc)}
        ) from exc
    except sqlite3.OperationalError as exc:
        if _is_lock_error(exc):
            raise TransactionConflict(str(exc)) from exc
        raise StoreUnavailable(str(exc)) from exc
    except sqlite3.Error as exc:
        raise StoreUnavailable(str(exc)) from exc


class ContactUnitOfWork:
    """One write transaction against the Contact table.

    ``BEGIN IMMEDIATE`` takes the database write lock before anything is
    read, so two submissions never interleave their read-then-write steps.
    Nothing is kept unless ``commit()`` is called; the connection is closed
    on every exit path.
    """

    def __init__(self, database_path: Optional[str] = None, clock: Optional[Clock] = None):
        self.database_path = _resolve_path(database_path)
        self.clock = clock
        self._committed = False

    def __enter__(self) -> "ContactUnitOfWork":
        self.conn = get_db_connection(self.database_path)
        try:
            self.conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error:
            self.conn.close()
            raise
        self._committed = False
        self.contacts = ContactStore(self.conn, clock=self.clock)
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> bool:
        try:
            if not self._committed and self.conn.in_transaction:
                self.rollback()
        finally:
            self.conn.close()
        return False

    def commit(self) -> None:
        self.conn.commit()
        self._committed = True

    def rollback(self) -> None:
        self.conn.rollback()


def run_in_transaction(
    work: Callable[[ContactUnitOfWork], T],
    database_path: Optional[str] = None,
    clock: Optional[Clock] = None,
) -> T:
    """Run ``work`` in its own unit of work and commit the result.

    Lock conflicts are retried with exponential backoff; any other failure,
    and a conflict that outlives the retry budget, propagates typed.
    """
    settings = get_settings()
    attempts = settings.transaction_retry_attempts

    for attempt in range(1, attempts + 1):
        try:
            with translate_store_errors():
                with ContactUnitOfWork(database_path, clock=clock) as uow:
                    result = work(uow)
                    uow.commit()
                    return result
        except TransactionConflict as exc:
            if attempt >= attempts:
                logger.error("Transaction retries exhausted", attempts=attempts, error=str(exc))
                raise
            delay = settings.transaction_retry_backoff_seconds * (2 ** (attempt - 1))
            logger.warning(
                "Transaction conflict, retrying",
                attempt=attempt,
                delay_seconds=delay,
                error=str(exc),
            )
            time.sleep(delay)

    raise TransactionConflict("no transaction attempt was made")
