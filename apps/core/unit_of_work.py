"""
Explicit unit of work over a single database transaction.

Billing operations touch several rows (sale, product stock, customer due, ledger
history) that must move together. ``UnitOfWork`` exposes ``begin``/``commit``/
``abort`` on top of ``django.db.transaction.atomic`` and translates store-level
failures into domain errors:

- serialization failures, deadlocks and lock timeouts become ``WriteConflict``
  (retryable by the caller)
- connection failures become ``StoreUnavailable``

Integrity errors are left untouched so callers can resolve idempotent replays.
"""

import logging

from django.db import (
    DEFAULT_DB_ALIAS,
    DatabaseError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    transaction,
)

from apps.core.exceptions import StoreUnavailable, WriteConflict

logger = logging.getLogger(__name__)

# SQLSTATE codes for serialization failure and deadlock
RETRYABLE_SQLSTATES = {"40001", "40P01", "55P03"}

RETRYABLE_MARKERS = (
    "could not serialize access",
    "deadlock detected",
    "database is locked",
    "database table is locked",
    "lock timeout",
    "could not obtain lock",
)


def translate_store_error(exc):
    """
    Map a database error onto the domain taxonomy.

    Returns ``None`` when the error is not a store availability or concurrency
    problem and should propagate unchanged.
    """
    if isinstance(exc, IntegrityError):
        return None

    sqlstate = getattr(exc.__cause__, "pgcode", None)
    message = str(exc).lower()
    if sqlstate in RETRYABLE_SQLSTATES or any(marker in message for marker in RETRYABLE_MARKERS):
        logger.warning(f"Write conflict detected: {exc}")
        return WriteConflict()

    if isinstance(exc, (OperationalError, InterfaceError)):
        logger.error(f"Transactional store unavailable: {exc}", exc_info=exc)
        return StoreUnavailable()

    return None


class UnitOfWork:
    """
    One atomic unit of work.

    Usable explicitly::

        uow = UnitOfWork().begin()
        try:
            ...
        except Exception as exc:
            uow.abort(exc)
            raise
        uow.commit()

    or as a context manager, which commits on normal exit and aborts on error.
    """

    def __init__(self, using=None):
        self.using = using or DEFAULT_DB_ALIAS
        self._atomic = None

    @property
    def active(self):
        return self._atomic is not None

    def begin(self):
        if self._atomic is not None:
            raise RuntimeError("Unit of work already started")
        atomic = transaction.atomic(using=self.using)
        try:
            atomic.__enter__()
        except DatabaseError as exc:
            translated = translate_store_error(exc)
            if translated is not None:
                raise translated from exc
            raise
        self._atomic = atomic
        return self

    def commit(self):
        if self._atomic is None:
            raise RuntimeError("Unit of work not started")
        atomic, self._atomic = self._atomic, None
        try:
            atomic.__exit__(None, None, None)
        except DatabaseError as exc:
            translated = translate_store_error(exc)
            if translated is not None:
                raise translated from exc
            raise

    def abort(self, exc=None):
        """Roll back everything written since ``begin``. Safe to call twice."""
        if self._atomic is None:
            return
        atomic, self._atomic = self._atomic, None
        if exc is None:
            exc = RuntimeError("Unit of work aborted")
        atomic.__exit__(type(exc), exc, exc.__traceback__)

    def __enter__(self):
        return self.begin()

    def __exit__(self, exc_type, exc, tb):
        if exc is None:
            self.commit()
            return False

        self.abort(exc)
        if isinstance(exc, DatabaseError):
            translated = translate_store_error(exc)
            if translated is not None:
                raise translated from exc
        return False
