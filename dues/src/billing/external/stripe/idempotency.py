"""
Stripe Idempotency Key Generation

Deterministic idempotency keys for mutating Stripe calls, so a retried
command (network retry, double click) never creates a second customer,
subscription or payment intent.
"""

import hashlib
from datetime import datetime, timezone
from typing import Optional
import logging

from dues.core.conf import settings

logger = logging.getLogger(__name__)


class StripeIdempotencyManager:
    """
    Generates deterministic idempotency keys for Stripe operations.

    Keys are identical for the same operation, subject and parameters within
    one time bucket, and differ across buckets so a later deliberate retry
    is not answered from Stripe's idempotency cache.

    Usage:
        key = stripe_idempotency_manager.generate_enrolment_key(member_id, tier, recurring=True)
        await gateway.create_subscription(..., idempotency_key=key)
    """

    def generate_key(
        self,
        operation: str,
        subject_id: str,
        *args,
        time_bucket_minutes: Optional[int] = None,
        now: Optional[datetime] = None,
        **kwargs
    ) -> str:
        """
        Generate an idempotency key.

        Args:
            operation: Operation type (e.g., 'enrol', 'cancel')
            subject_id: Member, customer or subscription identifier
            *args: Additional positional arguments to include in key
            time_bucket_minutes: Time window for key reuse
            **kwargs: Additional keyword arguments to include in key

        Returns:
            40-character hex idempotency key
        """
        bucket_minutes = time_bucket_minutes or settings.BILLING_IDEMPOTENCY_BUCKET_MINUTES
        now = now or datetime.now(timezone.utc)
        timestamp_bucket = int(now.timestamp() // (bucket_minutes * 60))

        components = [
            operation,
            subject_id,
            *[str(arg) for arg in args],
            *[f"{k}={v}" for k, v in sorted(kwargs.items())],
            str(timestamp_bucket),
        ]

        idempotency_base = "_".join(components)
        return hashlib.sha256(idempotency_base.encode()).hexdigest()[:40]

    def generate_customer_key(self, member_id: str, email: str) -> str:
        return self.generate_key('create_customer', member_id, email.lower())

    def generate_enrolment_key(self, member_id: str, tier_name: str, recurring: bool) -> str:
        """Generate idempotency key for a subscription or one-time payment creation."""
        return self.generate_key(
            'enrol',
            member_id,
            tier_name,
            mode='recurring' if recurring else 'one_time'
        )

    def generate_conversion_key(self, member_id: str, valid_until: datetime) -> str:
        return self.generate_key('convert_to_recurring', member_id, int(valid_until.timestamp()))


stripe_idempotency_manager = StripeIdempotencyManager()
