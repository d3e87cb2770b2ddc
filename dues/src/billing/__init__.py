"""
Billing Module

Membership dues billing for the association, backed by Stripe.

Submodules:
- shared: Tier configuration, constants, exceptions
- domain: Core entities (Member, SubscriptionRecord, PaymentRecord)
- membership: Pure membership status derivation
- external: Stripe client, gateway and webhooks
- members: Member directory and customer links
- subscriptions: Command handlers and the membership service
- maintenance: Duplicate cleanup, renewal alignment, trial cleanup
- endpoints: API routes

Usage:
    from dues.src.billing import TIERS, get_tier, membership_service

    status = await membership_service.get_status(member_id)

    from dues.src.billing.maintenance import renewal_alignment_migrator

    summary = await renewal_alignment_migrator.run(dry_run=True)
"""

from .shared import (
    TIERS,
    Tier,
    get_tier,
    BillingError,
    MembershipAlreadyCurrentError,
    PaymentError,
    SubscriptionError,
)
from .membership import MembershipWindow, derive_membership_window
from .subscriptions import MembershipService, membership_service

__all__ = [
    'TIERS',
    'Tier',
    'get_tier',
    'BillingError',
    'MembershipAlreadyCurrentError',
    'PaymentError',
    'SubscriptionError',
    'MembershipWindow',
    'derive_membership_window',
    'MembershipService',
    'membership_service',
]
