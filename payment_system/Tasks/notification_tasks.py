"""
Notification delivery tasks.

Queued by ``infrastructure.notifications.QueuedNotifier`` after the
originating transaction commits. Delivery failures are retried a few times
and then dropped; they never affect ledger state.
"""

import logging

from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=3, queue="notification_tasks")
def deliver_in_app_notification(self, user_id, title, body, notification_type, payload=None):
    """Publish an in-app notification on the event bus."""
    from infrastructure.container import container

    container.event_bus().publish(
        "notification.created",
        {
            "user_id": str(user_id),
            "title": title,
            "body": body,
            "type": notification_type,
            "payload": payload or {},
        },
    )
    return {"success": True, "user_id": str(user_id)}


@shared_task(bind=True, max_retries=3, queue="notification_tasks")
def deliver_email_notification(self, to, subject, template, data=None):
    """Render ``template`` and send it through the configured email service."""
    from infrastructure.container import container
    from infrastructure.email import EmailException, EmailMessage, render_email

    if not to:
        logger.info(f"Skipping email '{template}': no recipient")
        return {"success": False, "error": "No recipient"}

    try:
        rendered_subject, body = render_email(template, data or {})
    except KeyError:
        logger.error(f"Unknown email template: {template}")
        return {"success": False, "error": f"Unknown template {template}"}

    message = EmailMessage(subject=subject or rendered_subject, body=body, to=[to], tags=[template])
    try:
        sent = container.email().send(message)
    except EmailException as e:
        logger.warning(f"Email '{template}' failed, retrying: {e}")
        try:
            raise self.retry(countdown=30 * (2**self.request.retries))
        except self.MaxRetriesExceededError:
            return {"success": False, "error": str(e)}
    return {"success": bool(sent)}
