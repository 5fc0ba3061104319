"""
Per-Application Serialization

Every state-mutating operation on an application runs inside that
application's critical section:

1. an in-process mutex keyed by application_id (threads in this worker)
2. SELECT ... FOR UPDATE on the application row (other workers, PostgreSQL)

Different applications never share a mutex, and no operation holds two
scopes at once, so there is no lock ordering to get wrong.
"""
import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List

from sqlalchemy.orm import Session

from ...models.db_models import ApplicationDB
from .errors import NotFoundError

logger = logging.getLogger(__name__)


class ApplicationLocks:
    """
    Registry of per-application mutexes.

    An entry exists only while some thread holds or waits on it, so the
    registry does not grow with the number of applications ever touched.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._entries: Dict[str, List] = {}  # application_id -> [lock, users]

    @contextmanager
    def hold(self, application_id: str) -> Iterator[None]:
        with self._guard:
            entry = self._entries.get(application_id)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._entries[application_id] = entry
            entry[1] += 1

        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._entries[application_id]

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


def _fresh_transaction(db: Session) -> None:
    if db.new or db.dirty or db.deleted:
        raise RuntimeError("Application scope entered with uncommitted changes in the session")
    # End any open read transaction so the locked read sees committed state
    db.rollback()


def load_application(db: Session, application_id: str, for_update: bool = False) -> ApplicationDB:
    query = db.query(ApplicationDB).filter(ApplicationDB.id == application_id)
    if for_update:
        query = query.with_for_update().populate_existing()
    application = query.one_or_none()
    if application is None:
        raise NotFoundError(f"Application {application_id} not found", {"application_id": application_id})
    return application


@contextmanager
def application_scope(db: Session, locks: ApplicationLocks, application_id: str) -> Iterator[ApplicationDB]:
    """
    Critical section for one application.

    Yields the locked application row. Commits when the block exits normally,
    rolls back on any exception. A block may commit early (lazy expiry) and
    then raise; the rollback afterwards is a no-op.
    """
    with locks.hold(application_id):
        _fresh_transaction(db)
        try:
            application = load_application(db, application_id, for_update=True)
            yield application
            db.commit()
        except Exception:
            db.rollback()
            raise


@contextmanager
def snapshot_read(db: Session, locks: ApplicationLocks, application_id: str) -> Iterator[ApplicationDB]:
    """
    Multi-query read of one application that never straddles a commit.

    Waits out any in-flight writer on the same application, and on
    PostgreSQL pins a REPEATABLE READ snapshot for the whole read.
    """
    with locks.hold(application_id):
        _fresh_transaction(db)
        try:
            if db.get_bind().dialect.name == "postgresql":
                db.connection(execution_options={"isolation_level": "REPEATABLE READ"})
            yield load_application(db, application_id)
        finally:
            db.rollback()
