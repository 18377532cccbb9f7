from .dispute import Dispute
from .escrow import Escrow
from .payment import Payment
from .payout_account import PayoutAccount


__all__ = [
    "Payment",
    "Escrow",
    "Dispute",
    "PayoutAccount",
]
