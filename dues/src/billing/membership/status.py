"""
Membership Status

Pure derivation of a member's membership state from their gateway payment
history and canonical subscription. No I/O: every command re-derives the
window before acting, and the API serves it as-is.

Usage:
    from dues.src.billing.membership import derive_membership_window

    window = derive_membership_window(payments, subscription, override, now)
    if window.is_valid and window.is_recurring:
        ...
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

from dues.src.billing.domain import (
    PaymentRecord,
    PaymentStatus,
    SubscriptionRecord,
    SubscriptionStatus,
)
from dues.src.billing.shared.config import OVERRIDE_MAX_YEARS_AHEAD, OVERRIDE_MIN_YEAR

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


# =============================================================================
# HELPERS
# =============================================================================
def add_one_year(value: datetime) -> datetime:
    """Same calendar day one year later; February 29th becomes February 28th."""
    try:
        return value.replace(year=value.year + 1)
    except ValueError:
        return value.replace(year=value.year + 1, day=28)


def latest_payment(payments: Iterable[PaymentRecord]) -> Optional[PaymentRecord]:
    return max(payments, key=lambda p: p.created_at or _EPOCH, default=None)


def latest_successful_payment(payments: Iterable[PaymentRecord]) -> Optional[PaymentRecord]:
    return latest_payment(p for p in payments if p.succeeded)


def first_successful_payment(payments: Iterable[PaymentRecord]) -> Optional[PaymentRecord]:
    return min((p for p in payments if p.succeeded), key=lambda p: p.created_at or _EPOCH, default=None)


def has_succeeded_payment(payments: Iterable[PaymentRecord]) -> bool:
    return any(p.succeeded for p in payments)


def _override_in_range(override: Optional[datetime], now: datetime) -> bool:
    if override is None:
        return False
    return OVERRIDE_MIN_YEAR <= override.year <= now.year + OVERRIDE_MAX_YEARS_AHEAD


# =============================================================================
# PREDICATES
# =============================================================================
def effective_status(
    subscription: Optional[SubscriptionRecord],
    payments: Sequence[PaymentRecord],
) -> SubscriptionStatus:
    """
    Status as the member should see it.

    A trialing subscription whose customer already paid is reported as
    active: the trial only exists to push the first renewal to the aligned
    date.
    """
    if subscription is None:
        return SubscriptionStatus.NONE
    if subscription.status == SubscriptionStatus.TRIALING and has_succeeded_payment(payments):
        return SubscriptionStatus.ACTIVE
    return subscription.status


def is_in_trial(subscription: Optional[SubscriptionRecord], payments: Sequence[PaymentRecord]) -> bool:
    return (
        subscription is not None
        and subscription.status == SubscriptionStatus.TRIALING
        and not has_succeeded_payment(payments)
    )


def membership_end_date(
    payments: Sequence[PaymentRecord],
    subscription: Optional[SubscriptionRecord],
    override: Optional[datetime],
    now: datetime,
) -> Optional[datetime]:
    """
    Date until which the membership is paid.

    First match wins:
    1. the legacy override, when its year is plausible;
    2. one calendar year after the latest successful payment;
    3. the subscription's current period end while it is active or trialing.
    """
    if _override_in_range(override, now):
        return override

    paid = latest_successful_payment(payments)
    if paid is not None and paid.created_at is not None:
        return add_one_year(paid.created_at)

    status = effective_status(subscription, payments)
    if status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING):
        return subscription.current_period_end
    return None


def has_failed_payment(payments: Sequence[PaymentRecord]) -> bool:
    latest = latest_payment(payments)
    return latest is not None and latest.status == PaymentStatus.FAILED


def has_recurring_payment(subscription: Optional[SubscriptionRecord], payments: Sequence[PaymentRecord]) -> bool:
    status = effective_status(subscription, payments)
    return (
        status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)
        and not subscription.cancel_at_period_end
    )


def has_one_time_payment(subscription: Optional[SubscriptionRecord], payments: Sequence[PaymentRecord]) -> bool:
    latest = latest_payment(payments)
    if latest is None or not latest.succeeded:
        return False
    return (
        subscription is None
        or subscription.status == SubscriptionStatus.CANCELED
        or subscription.cancel_at_period_end
    )


def select_canonical_subscription(subscriptions: Sequence[SubscriptionRecord]) -> Optional[SubscriptionRecord]:
    """
    Pick the subscription that represents the member.

    Among live subscriptions, one with a payment method wins, then the most
    recent period start. Without a live one, the most recently created
    subscription is returned so cancellations stay visible.
    """
    live = [s for s in subscriptions if s.is_live()]
    if live:
        return max(
            live,
            key=lambda s: (s.has_payment_method(), s.current_period_start or _EPOCH),
        )
    return max(subscriptions, key=lambda s: s.created_at or _EPOCH, default=None)


# =============================================================================
# MEMBERSHIP WINDOW
# =============================================================================
@dataclass(frozen=True)
class MembershipWindow:
    """Every membership predicate, derived once for a single instant."""
    valid_until: Optional[datetime]
    effective_status: SubscriptionStatus
    is_recurring: bool
    is_in_trial: bool
    cancel_at_period_end: bool
    has_failed_payment: bool
    has_one_time_payment: bool
    evaluated_at: datetime
    subscription_id: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.valid_until is not None and self.valid_until > self.evaluated_at

    @property
    def has_expired_payment(self) -> bool:
        return self.valid_until is not None and self.valid_until <= self.evaluated_at

    @property
    def has_recurring_payment(self) -> bool:
        return self.is_recurring

    def to_dict(self) -> dict:
        return {
            'valid_until': self.valid_until.isoformat() if self.valid_until else None,
            'is_valid': self.is_valid,
            'has_expired_payment': self.has_expired_payment,
            'effective_status': self.effective_status.value,
            'is_recurring': self.is_recurring,
            'is_in_trial': self.is_in_trial,
            'cancel_at_period_end': self.cancel_at_period_end,
            'has_failed_payment': self.has_failed_payment,
            'has_one_time_payment': self.has_one_time_payment,
            'subscription_id': self.subscription_id,
        }


def derive_membership_window(
    payments: Sequence[PaymentRecord],
    subscription: Optional[SubscriptionRecord],
    override: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> MembershipWindow:
    now = now or datetime.now(timezone.utc)
    payments = list(payments)
    return MembershipWindow(
        valid_until=membership_end_date(payments, subscription, override, now),
        effective_status=effective_status(subscription, payments),
        is_recurring=has_recurring_payment(subscription, payments),
        is_in_trial=is_in_trial(subscription, payments),
        cancel_at_period_end=bool(subscription and subscription.cancel_at_period_end),
        has_failed_payment=has_failed_payment(payments),
        has_one_time_payment=has_one_time_payment(subscription, payments),
        evaluated_at=now,
        subscription_id=subscription.id if subscription else None,
    )


def has_prior_subscription(subscriptions: List[SubscriptionRecord]) -> bool:
    """Any subscription that ever got past ``incomplete``."""
    return any(
        s.status not in (SubscriptionStatus.INCOMPLETE, SubscriptionStatus.INCOMPLETE_EXPIRED)
        for s in subscriptions
    )
