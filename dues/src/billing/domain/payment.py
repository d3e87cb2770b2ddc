"""
Payment Domain Entities

Immutable payment records read from the gateway, plus the confirmation
handle returned to the client after a mutating command.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from .subscription import parse_datetime


class PaymentStatus(Enum):
    """Normalized payment outcome."""
    SUCCEEDED = "succeeded"
    PENDING = "pending"
    FAILED = "failed"


# Gateway intent/charge statuses still on their way to an outcome
_PENDING_STATUSES = {
    'pending',
    'processing',
    'requires_action',
    'requires_confirmation',
    'requires_capture',
}


def normalize_payment_status(raw_status: str, has_error: bool = False) -> PaymentStatus:
    """
    Map a raw gateway status onto succeeded/pending/failed.

    ``requires_payment_method`` without a recorded error is an intent the
    member never completed, not a declined card.
    """
    if raw_status == 'succeeded':
        return PaymentStatus.SUCCEEDED
    if raw_status in _PENDING_STATUSES:
        return PaymentStatus.PENDING
    if raw_status == 'requires_payment_method' and not has_error:
        return PaymentStatus.PENDING
    return PaymentStatus.FAILED


@dataclass(frozen=True)
class PaymentRecord:
    """A single charge or payment intent."""
    id: str
    amount: int
    currency: str
    status: PaymentStatus
    created_at: datetime
    raw_status: str = ''
    description: Optional[str] = None
    customer_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    failure_code: Optional[str] = None
    failure_message: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == PaymentStatus.SUCCEEDED

    @classmethod
    def from_dict(cls, data: dict) -> 'PaymentRecord':
        raw_status = data.get('raw_status') or data.get('status', '')
        status = data.get('status')
        if not isinstance(status, PaymentStatus):
            try:
                status = PaymentStatus(status)
            except ValueError:
                status = normalize_payment_status(raw_status, bool(data.get('failure_code')))
        return cls(
            id=data['id'],
            amount=int(data.get('amount', 0)),
            currency=data.get('currency', 'eur'),
            status=status,
            created_at=parse_datetime(data.get('created_at')),
            raw_status=raw_status,
            description=data.get('description'),
            customer_id=data.get('customer_id'),
            payment_intent_id=data.get('payment_intent_id'),
            failure_code=data.get('failure_code'),
            failure_message=data.get('failure_message'),
            metadata=dict(data.get('metadata') or {}),
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'amount': self.amount,
            'currency': self.currency,
            'status': self.status.value,
            'raw_status': self.raw_status,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'description': self.description,
            'failure_code': self.failure_code,
            'failure_message': self.failure_message,
        }


class ConfirmationKind(Enum):
    """What the client must confirm to finish a command."""
    SETUP = "setup"
    PAYMENT = "payment"
    NONE = "none"


@dataclass(frozen=True)
class Confirmation:
    """Client-side confirmation handle (setup or payment intent secret)."""
    kind: ConfirmationKind
    client_secret: Optional[str] = None
    intent_id: Optional[str] = None

    @classmethod
    def none(cls) -> 'Confirmation':
        return cls(kind=ConfirmationKind.NONE)

    def to_dict(self) -> dict:
        return {
            'type': self.kind.value,
            'client_secret': self.client_secret,
            'intent_id': self.intent_id,
        }


@dataclass(frozen=True)
class SetupIntentRecord:
    id: str
    status: str
    customer_id: Optional[str] = None
    payment_method: Optional[str] = None
    client_secret: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class InvoiceRecord:
    id: str
    status: str
    amount_due: int = 0
    subscription_id: Optional[str] = None
    created_at: Optional[datetime] = None
