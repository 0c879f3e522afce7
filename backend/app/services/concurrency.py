# Overview: Service-layer operations for concurrency; transaction retry, row locks and per-order serialization.

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import DomainError
from ..extensions import db

logger = logging.getLogger(__name__)


class LedgerConflict(DomainError):
    """Concurrent update conflict that persisted through every retry."""
    code = "LEDGER_CONFLICT"
    http_status = 409


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_immediate() takes the
    database write lock there instead.
    """
    return query.with_for_update()


def begin_immediate() -> None:
    """Take the SQLite write lock up front so check-then-write sequences are serialized."""
    if db.engine.dialect.name != "sqlite":
        return
    conn = db.session.connection()
    if not conn.connection.dbapi_connection.in_transaction:
        conn.execute(text("BEGIN IMMEDIATE"))


def _default_attempts() -> int:
    try:
        return int(current_app.config.get("LEDGER_RETRY_ATTEMPTS", 3))
    except RuntimeError:
        return 3


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.05):
    """
    Execute a DB unit of work with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic version_id conflicts). When the last attempt still conflicts,
    LedgerConflict is raised. Any other exception rolls the session back and
    propagates unchanged, so no partial state survives a failed unit of work.
    """
    attempts = attempts or _default_attempts()
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            logger.warning("Concurrent update conflict (attempt %s/%s): %s", attempt + 1, attempts, exc)
            if attempt >= attempts - 1:
                raise LedgerConflict(
                    "Concurrent update conflict, please retry",
                    details={"attempts": attempts},
                ) from exc
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise


class KeyedLocks:
    """
    One re-entrant lock per key, created on demand.

    Serializes work for the same key inside this process; cross-process
    serialization still relies on the row lock and version_id checks.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[object, threading.RLock] = {}

    def get(self, key) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key):
        lock = self.get(key)
        with lock:
            yield


_order_locks = KeyedLocks()


def order_guard(order_id: int):
    """Context manager: no two transitions for the same order run concurrently."""
    return _order_locks.hold(("order", order_id))
