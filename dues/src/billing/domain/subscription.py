"""
Subscription Domain Entity

A member's subscription as held at the payment gateway. Records are never
deleted, only transitioned to ``canceled``.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict
from enum import Enum


class SubscriptionStatus(Enum):
    """Possible subscription statuses."""
    ACTIVE = "active"
    CANCELED = "canceled"
    PAST_DUE = "past_due"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    TRIALING = "trialing"
    UNPAID = "unpaid"
    PAUSED = "paused"
    # Synthetic: the member holds no subscription at all
    NONE = "none"


def parse_datetime(value) -> Optional[datetime]:
    """Parse unix timestamps, ISO strings and naive datetimes into aware UTC datetimes."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except (ValueError, AttributeError):
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class SubscriptionRecord:
    """
    A gateway subscription.

    Attributes:
        id: Gateway subscription ID (sub_xxx)
        customer_id: Gateway customer ID (cus_xxx)
        status: Current gateway status
        current_period_start: Start of current billing period
        current_period_end: End of current billing period
        created_at: When the subscription was created
        trial_end: End of the trial, if any
        cancel_at_period_end: Whether the subscription stops at period end
        canceled_at: When cancellation was requested
        tier_id: Membership tier the subscription bills
        customer_email: Customer email, when the customer was expanded
        default_payment_method: Payment method charged on renewal
        metadata: Gateway metadata
    """
    id: str
    customer_id: str
    status: SubscriptionStatus
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    created_at: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None
    tier_id: Optional[str] = None
    customer_email: Optional[str] = None
    default_payment_method: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    def is_live(self) -> bool:
        """Trialing, active or past_due: the subscription still carries a membership."""
        return self.status in (
            SubscriptionStatus.TRIALING,
            SubscriptionStatus.ACTIVE,
            SubscriptionStatus.PAST_DUE,
        )

    def is_active(self) -> bool:
        return self.status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)

    def is_trialing(self) -> bool:
        return self.status == SubscriptionStatus.TRIALING

    def is_canceled(self) -> bool:
        return self.status == SubscriptionStatus.CANCELED

    def has_payment_method(self) -> bool:
        return bool(self.default_payment_method)

    @classmethod
    def from_dict(cls, data: dict) -> 'SubscriptionRecord':
        def parse_status(value) -> SubscriptionStatus:
            if isinstance(value, SubscriptionStatus):
                return value
            try:
                return SubscriptionStatus(value)
            except ValueError:
                return SubscriptionStatus.INCOMPLETE

        metadata = dict(data.get('metadata') or {})
        return cls(
            id=data.get('id', ''),
            customer_id=data.get('customer_id', ''),
            status=parse_status(data.get('status', 'incomplete')),
            current_period_start=parse_datetime(data.get('current_period_start')),
            current_period_end=parse_datetime(data.get('current_period_end')),
            created_at=parse_datetime(data.get('created_at')),
            trial_end=parse_datetime(data.get('trial_end')),
            cancel_at_period_end=bool(data.get('cancel_at_period_end', False)),
            canceled_at=parse_datetime(data.get('canceled_at')),
            tier_id=data.get('tier_id') or metadata.get('tier'),
            customer_email=data.get('customer_email'),
            default_payment_method=data.get('default_payment_method'),
            metadata=metadata,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'id': self.id,
            'customer_id': self.customer_id,
            'status': self.status.value,
            'current_period_start': _isoformat(self.current_period_start),
            'current_period_end': _isoformat(self.current_period_end),
            'created_at': _isoformat(self.created_at),
            'trial_end': _isoformat(self.trial_end),
            'cancel_at_period_end': self.cancel_at_period_end,
            'canceled_at': _isoformat(self.canceled_at),
            'tier_id': self.tier_id,
            'customer_email': self.customer_email,
            'has_payment_method': self.has_payment_method(),
            'metadata': self.metadata,
        }
