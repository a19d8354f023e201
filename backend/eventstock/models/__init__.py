from .inventory import Category, Item
from .events import Event, EventReservation
from .checkout import CheckoutTask, CheckoutLine
from .audit import AuditLogEntry

__all__ = [
    'Category', 'Item',
    'Event', 'EventReservation',
    'CheckoutTask', 'CheckoutLine',
    'AuditLogEntry',
]
