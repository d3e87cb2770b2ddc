"""
Renewal Alignment Migrator

Moves every member's next renewal to January 1st. Each eligible
subscription gets ``trial_end`` set to the next January 1st (association
timezone) without proration, and is stamped so a rerun leaves it alone.

Subscription outcomes within a run:
    unseen -> skipped_terminal | skipped_aligned | updated | update_failed

Dry runs make no mutating call but report the same counts a live run
would (assuming no gateway failures).

Usage:
    from dues.src.billing.maintenance import renewal_alignment_migrator

    preview = await renewal_alignment_migrator.run(dry_run=True)
    summary = await renewal_alignment_migrator.run(dry_run=False)
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set

from dues.src.billing.domain import Member, SubscriptionRecord
from dues.src.billing.external.stripe import StripeGateway, stripe_gateway
from dues.src.billing.members import CustomerLinkStore, MemberDirectory, customer_link_store, member_directory
from dues.src.billing.shared.config import (
    ALIGNED_METADATA_KEY,
    MIGRATION_DATE_METADATA_KEY,
    ORIGINAL_TRIAL_END_METADATA_KEY,
    TERMINAL_SUBSCRIPTION_STATUSES,
    next_january_first,
)
from dues.src.billing.subscriptions.handlers import CustomerHandler
from dues.src.billing.subscriptions.locks import SubscriptionLocks, subscription_key, subscription_locks
from dues.src.billing.subscriptions.service import utcnow
from .batching import run_in_batches

logger = logging.getLogger(__name__)

SKIPPED_TERMINAL = 'skipped_terminal'
SKIPPED_ALIGNED = 'skipped_aligned'
UPDATED = 'updated'
UPDATE_FAILED = 'update_failed'


@dataclass
class MigrationSummary:
    dry_run: bool
    target_date: datetime
    members_total: int = 0
    members_skipped: int = 0
    processed: int = 0
    updated: int = 0
    skipped_terminal: int = 0
    skipped_aligned: int = 0
    errored: int = 0
    outcomes: List[Dict] = field(default_factory=list)
    errors: List[Dict] = field(default_factory=list)

    @property
    def skipped(self) -> int:
        return self.skipped_terminal + self.skipped_aligned

    def record(self, subscription: SubscriptionRecord, member: Member, outcome: str, applied: bool = False) -> None:
        self.processed += 1
        if outcome == UPDATED:
            self.updated += 1
        elif outcome == SKIPPED_TERMINAL:
            self.skipped_terminal += 1
        elif outcome == SKIPPED_ALIGNED:
            self.skipped_aligned += 1
        else:
            self.errored += 1
        self.outcomes.append({
            'subscription_id': subscription.id,
            'member_id': member.id,
            'email': member.email,
            'status': subscription.status.value,
            'outcome': outcome,
            'applied': applied,
        })

    def to_dict(self) -> Dict:
        return {
            'dry_run': self.dry_run,
            'target_date': self.target_date.isoformat(),
            'members_total': self.members_total,
            'members_skipped': self.members_skipped,
            'processed': self.processed,
            'updated': self.updated,
            'skipped': self.skipped,
            'skipped_terminal': self.skipped_terminal,
            'skipped_aligned': self.skipped_aligned,
            'errored': self.errored,
            'outcomes': list(self.outcomes),
            'errors': list(self.errors),
        }


class RenewalAlignmentMigrator:
    def __init__(
        self,
        gateway: StripeGateway = stripe_gateway,
        directory: MemberDirectory = member_directory,
        links: CustomerLinkStore = customer_link_store,
        locks: SubscriptionLocks = subscription_locks,
        clock: Callable[[], datetime] = utcnow,
        batch_size: Optional[int] = None,
        concurrency: Optional[int] = None,
        delay_seconds: Optional[float] = None,
    ):
        self.gateway = gateway
        self.directory = directory
        self.customers = CustomerHandler(gateway, links)
        self.locks = locks
        self.clock = clock
        self.batch_size = batch_size
        self.concurrency = concurrency
        self.delay_seconds = delay_seconds

    async def run(self, dry_run: bool = True) -> Dict:
        """
        Align every member's subscriptions to January 1st.

        Member and subscription failures are collected in the summary; the
        run always completes.
        """
        now = self.clock()
        summary = MigrationSummary(dry_run=dry_run, target_date=next_january_first(now))
        visited: Set[str] = set()

        members = await self.directory.list_members()
        summary.members_total = len(members)
        logger.info(
            f"[MIGRATION] Aligning renewals to {summary.target_date.date()} for {len(members)} members "
            f"(dry_run={dry_run})"
        )

        async def process_member(member: Member) -> None:
            try:
                customers = await self.customers.resolve_customers(member)
            except Exception as e:
                logger.error(f"[MIGRATION] Customer lookup failed for {member.email}: {e}")
                summary.errored += 1
                summary.errors.append({'member_id': member.id, 'email': member.email, 'error': str(e)})
                return

            if not customers:
                summary.members_skipped += 1
                return

            for customer in customers:
                try:
                    subscriptions = await self.gateway.list_subscriptions(customer.id)
                except Exception as e:
                    logger.error(f"[MIGRATION] Listing subscriptions failed for {customer.id}: {e}")
                    summary.errored += 1
                    summary.errors.append({
                        'member_id': member.id,
                        'email': member.email,
                        'customer_id': customer.id,
                        'error': str(e),
                    })
                    continue

                for subscription in subscriptions:
                    # Shared customers would otherwise surface the same subscription twice
                    if subscription.id in visited:
                        continue
                    visited.add(subscription.id)
                    await self._process_subscription(subscription, member, summary, now, dry_run)

        await run_in_batches(
            members,
            process_member,
            batch_size=self.batch_size,
            concurrency=self.concurrency,
            delay_seconds=self.delay_seconds,
            label='MIGRATION',
        )

        logger.info(
            f"[MIGRATION] Complete: processed={summary.processed} updated={summary.updated} "
            f"skipped={summary.skipped} errored={summary.errored} members_skipped={summary.members_skipped}"
        )
        return summary.to_dict()

    async def _process_subscription(
        self,
        subscription: SubscriptionRecord,
        member: Member,
        summary: MigrationSummary,
        now: datetime,
        dry_run: bool,
    ) -> None:
        if subscription.status.value in TERMINAL_SUBSCRIPTION_STATUSES:
            summary.record(subscription, member, SKIPPED_TERMINAL)
            return

        if subscription.metadata.get(ALIGNED_METADATA_KEY) == 'true':
            summary.record(subscription, member, SKIPPED_ALIGNED)
            return

        if dry_run:
            logger.info(f"[MIGRATION] [DRY RUN] Would align {subscription.id} ({member.email})")
            summary.record(subscription, member, UPDATED, applied=False)
            return

        try:
            async with self.locks.hold(subscription_key(subscription.id)):
                await self.gateway.update_subscription(
                    subscription.id,
                    trial_end=summary.target_date,
                    proration_behavior='none',
                    metadata={
                        ALIGNED_METADATA_KEY: 'true',
                        MIGRATION_DATE_METADATA_KEY: now.isoformat(),
                        ORIGINAL_TRIAL_END_METADATA_KEY: (
                            subscription.trial_end.isoformat() if subscription.trial_end else 'none'
                        ),
                    },
                )
        except Exception as e:
            logger.error(f"[MIGRATION] Failed to align {subscription.id} ({member.email}): {e}")
            summary.record(subscription, member, UPDATE_FAILED)
            summary.errors.append({
                'member_id': member.id,
                'email': member.email,
                'subscription_id': subscription.id,
                'error': str(e),
            })
            return

        logger.info(f"[MIGRATION] Aligned {subscription.id} ({member.email})")
        summary.record(subscription, member, UPDATED, applied=True)


renewal_alignment_migrator = RenewalAlignmentMigrator()
