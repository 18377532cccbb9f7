from .domain.models.dispute import Dispute
from .domain.models.escrow import Escrow
from .domain.models.payment import Payment
from .domain.models.payout_account import PayoutAccount


__all__ = [
    "Payment",
    "Escrow",
    "Dispute",
    "PayoutAccount",
]
