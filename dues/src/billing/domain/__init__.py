"""Domain entities for billing module."""

from .member import Customer, Member, Price
from .payment import (
    Confirmation,
    ConfirmationKind,
    InvoiceRecord,
    PaymentRecord,
    PaymentStatus,
    SetupIntentRecord,
    normalize_payment_status,
)
from .subscription import SubscriptionRecord, SubscriptionStatus, parse_datetime

__all__ = [
    'Customer',
    'Member',
    'Price',
    'Confirmation',
    'ConfirmationKind',
    'InvoiceRecord',
    'PaymentRecord',
    'PaymentStatus',
    'SetupIntentRecord',
    'normalize_payment_status',
    'SubscriptionRecord',
    'SubscriptionStatus',
    'parse_datetime',
]
