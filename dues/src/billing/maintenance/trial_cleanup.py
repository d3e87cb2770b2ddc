"""
Trial Cleanup

Cancels trialing subscriptions whose customer has not paid in the last
year: sign-ups that saved a card (or never did) and were never charged.
With ``cancel_all`` paid trials are canceled too; their membership stays
valid through the one-year payment rule.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from dues.src.billing.domain import PaymentRecord, SubscriptionRecord
from dues.src.billing.external.stripe import StripeGateway, stripe_gateway
from dues.src.billing.subscriptions.locks import SubscriptionLocks, subscription_key, subscription_locks
from dues.src.billing.subscriptions.service import utcnow
from .batching import run_in_batches

logger = logging.getLogger(__name__)

PAYMENT_LOOKBACK = timedelta(days=365)


class TrialCleanupService:
    def __init__(
        self,
        gateway: StripeGateway = stripe_gateway,
        locks: SubscriptionLocks = subscription_locks,
        clock: Callable[[], datetime] = utcnow,
        batch_size: Optional[int] = None,
        concurrency: Optional[int] = None,
        delay_seconds: Optional[float] = None,
    ):
        self.gateway = gateway
        self.locks = locks
        self.clock = clock
        self.batch_size = batch_size
        self.concurrency = concurrency
        self.delay_seconds = delay_seconds

    async def run(self, apply: bool = False, cancel_all: bool = False) -> Dict:
        """
        Preview (default) or cancel stale trials.

        Returns:
            Dict with checked/candidates/canceled/failed counts and per-subscription entries
        """
        now = self.clock()
        cutoff = now - PAYMENT_LOOKBACK
        subscriptions = await self.gateway.list_all_subscriptions(status='trialing')
        payments_by_customer: Dict[str, List[PaymentRecord]] = {}

        results = {
            'dry_run': not apply,
            'cancel_all': cancel_all,
            'checked': len(subscriptions),
            'candidates': 0,
            'canceled': 0,
            'failed': 0,
            'entries': [],
            'errors': [],
        }
        logger.info(f"[TRIAL CLEANUP] Checking {len(subscriptions)} trialing subscriptions (apply={apply})")

        async def process(subscription: SubscriptionRecord) -> None:
            try:
                if subscription.customer_id not in payments_by_customer:
                    payments_by_customer[subscription.customer_id] = await self.gateway.list_payments(subscription.customer_id)
                payments = payments_by_customer[subscription.customer_id]
                paid_recently = any(p.succeeded and p.created_at and p.created_at >= cutoff for p in payments)

                entry = {
                    'subscription_id': subscription.id,
                    'customer_id': subscription.customer_id,
                    'email': subscription.customer_email,
                    'paid_recently': paid_recently,
                    'action': 'keep',
                }
                results['entries'].append(entry)
                if paid_recently and not cancel_all:
                    return

                results['candidates'] += 1
                entry['action'] = 'cancel'
                if not apply:
                    return

                async with self.locks.hold(subscription_key(subscription.id)):
                    await self.gateway.cancel_subscription(subscription.id)
                entry['action'] = 'canceled'
                results['canceled'] += 1
                logger.info(f"[TRIAL CLEANUP] Canceled {subscription.id} ({subscription.customer_email})")
            except Exception as e:
                logger.error(f"[TRIAL CLEANUP] Failed on {subscription.id}: {e}")
                results['failed'] += 1
                results['errors'].append({'subscription_id': subscription.id, 'error': str(e)})

        await run_in_batches(
            subscriptions,
            process,
            batch_size=self.batch_size,
            concurrency=self.concurrency,
            delay_seconds=self.delay_seconds,
            label='TRIAL CLEANUP',
        )

        logger.info(
            f"[TRIAL CLEANUP] Complete: {results['candidates']} candidates, "
            f"{results['canceled']} canceled, {results['failed']} failed"
        )
        return results


trial_cleanup_service = TrialCleanupService()
