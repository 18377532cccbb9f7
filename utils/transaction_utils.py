"""
Transaction Utilities
=====================

Transaction helpers for the ledger writes of the escrow engine.

Isolation levels are only issued on MySQL; other backends (SQLite in tests,
PostgreSQL) keep their defaults. Row locks (``select_for_update``) remain the
primary guard, the isolation level narrows what a locked read can observe.

Usage Examples:
    # Context manager
    with atomic_with_isolation("READ COMMITTED"):
        escrow = Escrow.objects.select_for_update().get(pk=escrow_id)
        ...

    # Whole-transaction retry on deadlock
    @retry_on_deadlock(max_retries=3)
    def settle(payment_id):
        with atomic_with_isolation():
            ...
"""

import logging
import time
from contextlib import contextmanager
from functools import wraps

from django.db import OperationalError, connections, transaction

logger = logging.getLogger(__name__)

ISOLATION_LEVELS = {
    "READ_UNCOMMITTED": "READ UNCOMMITTED",
    "READ_COMMITTED": "READ COMMITTED",
    "REPEATABLE_READ": "REPEATABLE READ",
    "SERIALIZABLE": "SERIALIZABLE",
}

# Ledger writes lock their rows explicitly, so committed reads are enough
LEDGER_ISOLATION = ISOLATION_LEVELS["READ_COMMITTED"]

MYSQL_DEADLOCK_CODES = (1213, 1205)


class TransactionError(Exception):
    """Custom exception for transaction-related errors"""


class DeadlockError(TransactionError):
    """Raised when a deadlock persists after every retry"""


def set_isolation_level(level=LEDGER_ISOLATION, using="default"):
    """
    Set the isolation level for the next transaction on a MySQL connection.

    MySQL only honours the statement before the transaction starts, so this
    is a no-op inside an open atomic block and on other database vendors.
    """
    if level not in ISOLATION_LEVELS.values():
        raise ValueError(f"Invalid isolation level: {level}. Must be one of {list(ISOLATION_LEVELS.values())}")

    connection = connections[using]
    if connection.vendor != "mysql" or connection.in_atomic_block:
        return False

    with connection.cursor() as cursor:
        cursor.execute(f"SET TRANSACTION ISOLATION LEVEL {level}")
    logger.debug(f"Set transaction isolation level to {level}")
    return True


@contextmanager
def atomic_with_isolation(isolation_level=LEDGER_ISOLATION, using="default", savepoint=True):
    """
    Context manager for atomic transactions with custom isolation level.

    Args:
        isolation_level (str): MySQL isolation level
        using (str): Database alias
        savepoint (bool): Whether to use savepoints for nested transactions
    """
    set_isolation_level(isolation_level, using=using)
    with transaction.atomic(using=using, savepoint=savepoint):
        yield


def is_deadlock(error):
    code = error.args[0] if error.args else None
    return code in MYSQL_DEADLOCK_CODES or "Deadlock found" in str(error) or "database is locked" in str(error)


def retry_on_deadlock(max_retries=3, delay=0.1, backoff=2.0):
    """
    Decorator to retry a whole transaction on deadlock with exponential backoff.

    Only wrap functions that open (not join) their transaction, otherwise the
    retry would run inside the aborted outer block.
    """

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            current_delay = delay
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except OperationalError as e:
                    if not is_deadlock(e):
                        raise
                    if attempt >= max_retries:
                        raise DeadlockError(f"Deadlock persisted after {max_retries} retries in {func.__name__}: {e}") from e
                    logger.warning(
                        f"Deadlock in {func.__name__}, retrying in {current_delay}s (attempt {attempt + 1}/{max_retries})"
                    )
                    time.sleep(current_delay)
                    current_delay *= backoff

        return wrapper

    return decorator


def financial_transaction(func):
    """
    Convenience decorator for ledger operations: runs ``func`` in its own
    transaction at the ledger isolation level, retried on deadlock, with
    timing logged.
    """

    @wraps(func)
    def transactional(*args, **kwargs):
        with atomic_with_isolation():
            return func(*args, **kwargs)

    retrying = retry_on_deadlock()(transactional)

    @wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.time()
        try:
            return retrying(*args, **kwargs)
        finally:
            logger.debug(f"Transaction {func.__name__} finished in {time.time() - start_time:.3f}s")

    return wrapper
