from .items import Item
from .offers import Offer
from .transactions import Transaction
from .notifications import Notification

__all__ = [
    'Item',
    'Offer',
    'Transaction',
    'Notification',
]
