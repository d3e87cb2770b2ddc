"""Shared billing configuration and exceptions."""

from .config import (
    ALIGNED_METADATA_KEY,
    BILLING_INTERVAL,
    CURRENCY,
    TERMINAL_SUBSCRIPTION_STATUSES,
    TIERS,
    Tier,
    get_tier,
    next_january_first,
    price_lookup_key,
)
from .exceptions import (
    BillingError,
    CustomerNotFoundError,
    MemberNotFoundError,
    MembershipAlreadyCurrentError,
    PaymentError,
    SubscriptionError,
    TierNotFoundError,
    WebhookError,
)

__all__ = [
    'ALIGNED_METADATA_KEY',
    'BILLING_INTERVAL',
    'CURRENCY',
    'TERMINAL_SUBSCRIPTION_STATUSES',
    'TIERS',
    'Tier',
    'get_tier',
    'next_january_first',
    'price_lookup_key',
    'BillingError',
    'CustomerNotFoundError',
    'MemberNotFoundError',
    'MembershipAlreadyCurrentError',
    'PaymentError',
    'SubscriptionError',
    'TierNotFoundError',
    'WebhookError',
]
