# Overview: Service-layer helpers for row locking and transient lock retries.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError

from ..extensions import db

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on transient lock failures.

    Only OperationalError (deadlocks, "database is locked") is retried.
    Ledger VersionConflict is NOT retried here: re-applying a stock delta
    must be the caller's decision, otherwise one operator action could be
    applied twice. Never wrap a ledger mutation in this helper.
    """
    for attempt in range(attempts):
        try:
            return func()
        except OperationalError:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            logger.warning("Transient database lock, retrying (attempt %s/%s)", attempt + 1, attempts)
            time.sleep(backoff_base * (2 ** attempt))
