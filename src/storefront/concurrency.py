"""Process-local keyed locks and bounded conflict retries.

Stock records and orders are serialized per key: callers hold the lock for
one key (or a sorted set of keys) across read, check and commit. Writers on
different keys never contend.

The locks only cover one process. Across workers the command handlers load
records with ``get_for_update``, which takes a row lock on SQL providers, and
revision checks then reject work planned against stale state. Those
rejections surface as ``ConcurrencyConflictError`` and are retried against
fresh state.
"""

import threading
from contextlib import contextmanager

import structlog
from protean.exceptions import ExpectedVersionError

from storefront.exceptions import ConcurrencyConflictError
from storefront.settings import setting

logger = structlog.get_logger(__name__)


class KeyedLocks:
    def __init__(self) -> None:
        self._locks: dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def lock_for(self, key: str) -> threading.RLock:
        with self._guard:
            if key not in self._locks:
                self._locks[key] = threading.RLock()
            return self._locks[key]

    @contextmanager
    def holding(self, *keys: str):
        """Acquire the locks for ``keys`` in sorted order and release them on exit."""
        acquired = []
        try:
            for key in sorted(set(keys)):
                lock = self.lock_for(key)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    def clear(self) -> None:
        with self._guard:
            self._locks.clear()


stock_locks = KeyedLocks()
order_locks = KeyedLocks()


def retry_on_conflict(operation, attempts: int | None = None):
    """Run ``operation`` until it stops raising ``ConcurrencyConflictError``.

    Stale-version rejections from the repository count as conflicts too.

    ``operation`` must re-read the state it depends on each time it is
    called. The last conflict is re-raised once ``attempts`` runs out.
    """
    if attempts is None:
        attempts = setting("max_conflict_retries")

    for attempt in range(1, attempts + 1):
        try:
            try:
                return operation()
            except ExpectedVersionError as exc:
                raise ConcurrencyConflictError.from_version_error(exc) from exc
        except ConcurrencyConflictError as exc:
            if attempt == attempts:
                raise
            logger.info(
                "Concurrency conflict, retrying",
                aggregate=exc.aggregate,
                identifier=str(exc.identifier),
                attempt=attempt,
            )
