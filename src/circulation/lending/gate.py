"""Availability gate for books.

Each book is a two-state machine, Available -> OnLoan -> Available. The
state lives only in the ``books.available`` column; every transition is a
compare-and-swap against that column inside the caller's session, so it
commits or rolls back together with the loan write.
"""

import logging
import threading
import weakref
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy.orm import Session

from ..config import get_config
from ..db.sqlite import Database, get_db
from .errors import BookNotFound, BookUnavailable, Contention
from .schemas import BookState

logger = logging.getLogger(__name__)


class AvailabilityGate:
    """Guards the Available/OnLoan state of every book."""

    def __init__(self, db: Optional[Database] = None, lock_timeout: Optional[float] = None):
        """Initialize the gate.

        Args:
            db: Database instance
            lock_timeout: Seconds to wait for a busy book before raising
                          Contention. Defaults to the configured value.
        """
        self.db = db or get_db()
        self.lock_timeout = (
            lock_timeout if lock_timeout is not None else get_config().lock_timeout
        )
        # Locks live only while some caller holds or waits on them
        self._locks: "weakref.WeakValueDictionary[str, threading.Lock]" = (
            weakref.WeakValueDictionary()
        )
        self._registry_lock = threading.Lock()

    def _lock_for(self, book_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(book_id)
            if lock is None:
                lock = self._locks[book_id] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, book_id: str) -> Generator[None, None, None]:
        """Hold the per-book mutex for the duration of a mutation.

        Raises:
            Contention: If the book stays busy past the lock timeout
        """
        lock = self._lock_for(book_id)
        if not lock.acquire(timeout=self.lock_timeout):
            logger.warning("Timed out after %.1fs waiting for book %s", self.lock_timeout, book_id)
            raise Contention(f"Book {book_id} is busy, try again")
        try:
            yield
        finally:
            lock.release()

    def try_acquire(self, session: Session, book_id: str) -> None:
        """Move a book from Available to OnLoan.

        Raises:
            BookNotFound: If the book does not exist
            BookUnavailable: If the book is already on loan
        """
        if self.db.set_availability(book_id, False, session=session):
            logger.debug("Book %s acquired", book_id)
            return

        if self.db.get_book(book_id, session=session) is None:
            raise BookNotFound(book_id)
        raise BookUnavailable(book_id)

    def release(self, session: Session, book_id: str) -> None:
        """Move a book from OnLoan back to Available.

        Releasing a book that is already available leaves it unchanged.

        Raises:
            BookNotFound: If the book does not exist
        """
        if self.db.set_availability(book_id, True, session=session):
            logger.debug("Book %s released", book_id)
            return

        if self.db.get_book(book_id, session=session) is None:
            raise BookNotFound(book_id)
        logger.warning("Book %s was already available; release ignored", book_id)

    def state(self, book_id: str) -> BookState:
        """Get the current state of a book.

        Raises:
            BookNotFound: If the book does not exist
        """
        book = self.db.get_book(book_id)
        if book is None:
            raise BookNotFound(book_id)
        return BookState.AVAILABLE if book.available else BookState.ON_LOAN
