"""
Post-commit, best-effort side effects.

Notifications and cache invalidation are not part of any transaction's
success contract: they run after the surrounding transaction commits, and a
failure is logged and swallowed.
"""

import logging
from typing import Callable

from django.db import transaction

logger = logging.getLogger(__name__)


def run_best_effort(func: Callable, *args, description: str = "side effect", **kwargs) -> None:
    try:
        func(*args, **kwargs)
    except Exception as e:
        logger.error(f"Best-effort {description} failed: {e}", exc_info=True)


def run_after_commit(func: Callable, *args, description: str = "side effect", **kwargs) -> None:
    """Schedule ``func`` for after the current transaction commits (immediately in autocommit)."""
    transaction.on_commit(lambda: run_best_effort(func, *args, description=description, **kwargs))
