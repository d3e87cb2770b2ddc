"""
Membership subscriptions: command handlers, per-member locks and the
service facade used by the API.
"""

from .handlers import (
    CustomerHandler,
    EnrolmentHandler,
    EnrolmentResult,
    LifecycleHandler,
    MemberBillingState,
    load_member_state,
)
from .locks import SubscriptionLocks, member_key, subscription_key, subscription_locks
from .service import MembershipService, membership_service

__all__ = [
    'CustomerHandler',
    'EnrolmentHandler',
    'EnrolmentResult',
    'LifecycleHandler',
    'MemberBillingState',
    'load_member_state',
    'SubscriptionLocks',
    'member_key',
    'subscription_key',
    'subscription_locks',
    'MembershipService',
    'membership_service',
]
