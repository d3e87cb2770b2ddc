"""
Duplicate Subscription Resolver

Finds members holding more than one live subscription and cancels all but
one. Live means trialing or active; members are identified by the
lower-cased customer email across every Stripe customer.

The kept subscription is the one with a payment method, then the one with
the most recent period start. The others are canceled immediately.

Usage:
    from dues.src.billing.maintenance import duplicate_resolver

    preview = await duplicate_resolver.resolve(dry_run=True)
    summary = await duplicate_resolver.resolve()
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List

from dues.src.billing.domain import SubscriptionRecord
from dues.src.billing.external.stripe import StripeGateway, stripe_gateway
from dues.src.billing.subscriptions.locks import SubscriptionLocks, subscription_key, subscription_locks

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class DuplicateReport:
    """Outcome for one member's group of live subscriptions."""
    email: str
    kept: SubscriptionRecord
    duplicates: List[SubscriptionRecord]
    canceled: List[str] = field(default_factory=list)
    errors: List[Dict] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            'email': self.email,
            'kept': self.kept.id,
            'canceled': list(self.canceled),
            'to_cancel': [s.id for s in self.duplicates],
            'errors': list(self.errors),
        }


def choose_subscription_to_keep(subscriptions: List[SubscriptionRecord]) -> SubscriptionRecord:
    return max(subscriptions, key=lambda s: (s.has_payment_method(), s.current_period_start or _EPOCH))


def group_live_subscriptions(subscriptions: List[SubscriptionRecord]) -> Dict[str, List[SubscriptionRecord]]:
    """Trialing/active subscriptions keyed by lower-cased customer email."""
    groups: Dict[str, List[SubscriptionRecord]] = {}
    for subscription in subscriptions:
        if not subscription.is_active():
            continue
        if subscription.customer_email:
            key = subscription.customer_email.strip().lower()
        else:
            # No email to match on: a customer's own subscriptions still group together
            key = f"customer:{subscription.customer_id}"
        groups.setdefault(key, []).append(subscription)
    return groups


class DuplicateResolver:
    def __init__(self, gateway: StripeGateway = stripe_gateway, locks: SubscriptionLocks = subscription_locks):
        self.gateway = gateway
        self.locks = locks

    async def find_duplicates(self) -> List[DuplicateReport]:
        subscriptions = await self.gateway.list_all_subscriptions(status='all')
        reports = []
        for email, group in sorted(group_live_subscriptions(subscriptions).items()):
            if len(group) < 2:
                continue
            kept = choose_subscription_to_keep(group)
            reports.append(DuplicateReport(
                email=email,
                kept=kept,
                duplicates=[s for s in group if s.id != kept.id],
            ))
        return reports

    async def resolve(self, dry_run: bool = False) -> Dict:
        """
        Cancel duplicate subscriptions.

        Per-subscription failures are recorded in the report and the run
        continues.

        Returns:
            Dict with per-member reports and summary counts
        """
        reports = await self.find_duplicates()
        logger.info(f"[DUPLICATES] {len(reports)} members with duplicate subscriptions (dry_run={dry_run})")

        for report in reports:
            for subscription in report.duplicates:
                if dry_run:
                    continue
                try:
                    async with self.locks.hold(subscription_key(subscription.id)):
                        await self.gateway.cancel_subscription(subscription.id)
                    report.canceled.append(subscription.id)
                    logger.info(f"[DUPLICATES] Canceled {subscription.id} for {report.email} (kept {report.kept.id})")
                except Exception as e:
                    logger.error(f"[DUPLICATES] Failed to cancel {subscription.id} for {report.email}: {e}")
                    report.errors.append({'subscription_id': subscription.id, 'error': str(e)})

        summary = {
            'dry_run': dry_run,
            'members_with_duplicates': len(reports),
            'duplicates_found': sum(len(r.duplicates) for r in reports),
            'canceled': sum(len(r.canceled) for r in reports),
            'failed': sum(len(r.errors) for r in reports),
            'reports': [r.to_dict() for r in reports],
            'errors': [dict(e, email=r.email) for r in reports for e in r.errors],
        }
        logger.info(
            f"[DUPLICATES] Complete: {summary['duplicates_found']} duplicates, "
            f"{summary['canceled']} canceled, {summary['failed']} failed"
        )
        return summary


duplicate_resolver = DuplicateResolver()
