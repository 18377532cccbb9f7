"""
Escrow Celery Tasks

- release_due_escrows_task: periodic scheduler pass (beat entry
  "release-due-escrows") releasing escrows whose holding period elapsed
- release_escrow_task: release a single due escrow (manual retry tooling)
"""

import logging

from celery import shared_task
from django.db import DatabaseError

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=3, queue="payment_tasks")
def release_due_escrows_task(self, batch_size=100):
    """
    Run one Escrow Scheduler pass.

    Transfer failures are recorded on the escrow itself and are never
    retried here; only a database outage retries the whole pass.

    Returns:
        dict: processed / released / failed / skipped / errors counts
    """
    from infrastructure.container import container

    try:
        summary = container.escrow_service().release_due_escrows(batch_size=batch_size)
        return {"success": True, **summary.to_dict()}
    except DatabaseError as e:
        logger.error(f"Escrow scheduler pass failed: {e}")
        try:
            raise self.retry(countdown=60 * (2**self.request.retries))
        except self.MaxRetriesExceededError:
            return {"success": False, "error": f"Max retries exceeded: {str(e)}"}


@shared_task(bind=True, max_retries=0, queue="payment_tasks")
def release_escrow_task(self, escrow_id):
    """Release one escrow whose release date has passed."""
    from infrastructure.container import container

    result = container.escrow_service().release_escrow(escrow_id)
    if not result.ok:
        logger.warning(f"Escrow {escrow_id} not released: {result.error_detail}")
        return {"success": False, "escrow_id": str(escrow_id), "error": result.error, "detail": result.error_detail}

    outcome = result.value
    return {
        "success": outcome.status == "released",
        "escrow_id": outcome.escrow_id,
        "status": outcome.status,
        "reason": outcome.reason,
    }
