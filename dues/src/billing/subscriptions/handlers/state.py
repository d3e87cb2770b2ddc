"""
Member Billing State

Loads everything Stripe holds about a member (customers, subscriptions,
payments) and derives the membership window from it. Every command reads
this snapshot while holding the member's lock.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterator, List, Optional

import stripe

from dues.src.billing.domain import Customer, Member, PaymentRecord, SubscriptionRecord
from dues.src.billing.external.stripe import StripeGateway
from dues.src.billing.membership import (
    MembershipWindow,
    derive_membership_window,
    first_successful_payment,
    latest_successful_payment,
    select_canonical_subscription,
)
from dues.src.billing.shared.exceptions import BillingError, PaymentError
from .customer import CustomerHandler

logger = logging.getLogger(__name__)


@dataclass
class MemberBillingState:
    member: Member
    window: MembershipWindow
    customers: List[Customer] = field(default_factory=list)
    subscriptions: List[SubscriptionRecord] = field(default_factory=list)
    payments: List[PaymentRecord] = field(default_factory=list)
    subscription: Optional[SubscriptionRecord] = None

    @property
    def customer(self) -> Optional[Customer]:
        return self.customers[0] if self.customers else None

    @property
    def customer_ids(self) -> List[str]:
        return [c.id for c in self.customers]

    @property
    def live_subscriptions(self) -> List[SubscriptionRecord]:
        return [s for s in self.subscriptions if s.is_live()]

    def to_dict(self) -> dict:
        latest = latest_successful_payment(self.payments)
        first = first_successful_payment(self.payments)
        return {
            'member_id': self.member.id,
            'customer_id': self.customer.id if self.customer else None,
            'membership': self.window.to_dict(),
            'subscription': self.subscription.to_dict() if self.subscription else None,
            'latest_successful_payment': latest.to_dict() if latest else None,
            'first_successful_payment': first.to_dict() if first else None,
            'payments': [p.to_dict() for p in self.payments],
        }


async def load_member_state(
    member: Member,
    gateway: StripeGateway,
    customers: CustomerHandler,
    now: datetime,
) -> MemberBillingState:
    resolved = await customers.resolve_customers(member)

    subscriptions: List[SubscriptionRecord] = []
    payments: List[PaymentRecord] = []
    for customer in resolved:
        subscriptions.extend(await gateway.list_subscriptions(customer.id))
        payments.extend(await gateway.list_payments(customer.id))

    canonical = select_canonical_subscription(subscriptions)
    window = derive_membership_window(payments, canonical, member.subscribed_until, now)
    return MemberBillingState(
        member=member,
        window=window,
        customers=resolved,
        subscriptions=subscriptions,
        payments=payments,
        subscription=canonical,
    )


@contextmanager
def gateway_errors(
    action: str,
    error_cls: type = PaymentError,
    code: str = 'GATEWAY_ERROR',
) -> Iterator[None]:
    """Re-raise Stripe SDK errors as billing errors carrying the Stripe code."""
    try:
        yield
    except BillingError:
        raise
    except stripe.StripeError as e:
        logger.error(f"[GATEWAY] {action} failed: {e}")
        raise error_cls(
            f"{action} failed: {e.user_message or str(e)}",
            code=code,
            details={'stripe_code': e.code},
        ) from e
