"""
Transactional email templates.

Each template is a (subject, body) pair of ``str.format`` strings. Missing
keys render as empty strings so a partial payload never blocks delivery.
"""

from collections import defaultdict
from typing import Dict, Tuple

EMAIL_TEMPLATES: Dict[str, Tuple[str, str]] = {
    "payment_success": (
        "Payment received for order #{order_id}",
        "Hi {buyer_name},\n\nWe received your payment of {amount} {currency} for order #{order_id}.\n"
        "The funds are held in escrow until you confirm receipt or the holding period ends.\n",
    ),
    "payment_failed": (
        "Payment failed for order #{order_id}",
        "Hi {buyer_name},\n\nYour payment for order #{order_id} did not go through. "
        "You can retry checkout from your orders page.\n",
    ),
    "new_order": (
        "New paid order #{order_id}",
        "You have a new paid order #{order_id} worth {amount} {currency}. Please prepare it for shipping.\n",
    ),
    "funds_released": (
        "Funds released for order #{order_id}",
        "{amount} {currency} for order #{order_id} has been transferred to your payout account.\n",
    ),
    "escrow_release_failed": (
        "Payout for order #{order_id} needs attention",
        "We could not release {amount} {currency} for order #{order_id}: {reason}\n",
    ),
    "dispute_opened": (
        "Dispute opened for order #{order_id}",
        "A {dispute_type} dispute was opened for order #{order_id}. Funds stay in escrow until it is resolved.\n",
    ),
    "dispute_resolved": (
        "Dispute resolved for order #{order_id}",
        "The dispute for order #{order_id} was resolved.\n\nResolution: {resolution}\n",
    ),
    "order_cancelled": (
        "Order #{order_id} cancelled",
        "Order #{order_id} was cancelled. Reason: {reason}\n",
    ),
}


def render_email(template: str, data: dict) -> Tuple[str, str]:
    """Render ``template`` with ``data``; raises KeyError for unknown templates."""
    subject, body = EMAIL_TEMPLATES[template]
    values = defaultdict(str, data or {})
    return subject.format_map(values), body.format_map(values)
