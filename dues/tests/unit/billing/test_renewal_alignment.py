"""Tests for aligning renewals to January 1st.

Tests cover:
- Eligible subscriptions get trial_end on the next January 1st
- Terminal and already aligned subscriptions are skipped
- Dry runs report the same counts without mutating
- Reruns are no-ops
- Failures are collected without aborting
"""

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest
import stripe

from dues.src.billing.maintenance import RenewalAlignmentMigrator
from dues.src.billing.subscriptions.locks import SubscriptionLocks
from dues.tests.fakes import InMemoryDirectory, InMemoryLinks, make_member, make_subscription, utc

JAN_1_2026 = datetime(2026, 1, 1, tzinfo=ZoneInfo('Europe/Paris'))

COUNTS = ('members_total', 'members_skipped', 'processed', 'updated', 'skipped_terminal', 'skipped_aligned', 'errored')


@pytest.fixture
def members():
    return [
        make_member('1', 'active@example.org'),
        make_member('2', 'canceled@example.org'),
        make_member('3', 'aligned@example.org'),
        make_member('4', 'nobody@example.org'),
        make_member('5', 'trial@example.org'),
    ]


@pytest.fixture
def populated(gateway):
    gateway.add_customer('cus_1', 'active@example.org')
    gateway.add_customer('cus_2', 'canceled@example.org')
    gateway.add_customer('cus_3', 'aligned@example.org')
    gateway.add_customer('cus_5', 'trial@example.org')
    gateway.add_subscription(make_subscription('sub_1', 'cus_1'))
    gateway.add_subscription(make_subscription('sub_2', 'cus_2', status='canceled'))
    gateway.add_subscription(make_subscription('sub_3', 'cus_3', metadata={'aligned_to_jan1': 'true'}))
    gateway.add_subscription(make_subscription('sub_5', 'cus_5', status='trialing', trial_end=utc(2025, 9, 1)))
    return gateway


@pytest.fixture
def migrator(populated, members, clock):
    return RenewalAlignmentMigrator(
        gateway=populated,
        directory=InMemoryDirectory(members),
        links=InMemoryLinks(),
        locks=SubscriptionLocks(),
        clock=clock,
        batch_size=2,
        concurrency=2,
        delay_seconds=0,
    )


class TestRenewalAlignment:
    @pytest.mark.asyncio
    async def test_live_run_aligns_eligible_subscriptions(self, migrator, populated):
        summary = await migrator.run(dry_run=False)

        assert summary['members_total'] == 5
        assert summary['members_skipped'] == 1
        assert summary['processed'] == 4
        assert summary['updated'] == 2
        assert summary['skipped_terminal'] == 1
        assert summary['skipped_aligned'] == 1
        assert summary['errored'] == 0

        updates = {call[1]: call[2] for call in populated.calls_to('update_subscription')}
        assert set(updates) == {'sub_1', 'sub_5'}
        assert updates['sub_1']['trial_end'] == JAN_1_2026
        assert updates['sub_1']['proration_behavior'] == 'none'
        assert updates['sub_1']['metadata']['aligned_to_jan1'] == 'true'
        assert updates['sub_1']['metadata']['original_trial_end'] == 'none'
        assert updates['sub_5']['metadata']['original_trial_end'] == utc(2025, 9, 1).isoformat()

    @pytest.mark.asyncio
    async def test_dry_run_matches_live_counts_without_mutation(self, migrator, populated):
        preview = await migrator.run(dry_run=True)

        assert populated.mutations == []
        assert preview['dry_run'] is True

        summary = await migrator.run(dry_run=False)
        assert {k: preview[k] for k in COUNTS} == {k: summary[k] for k in COUNTS}

    @pytest.mark.asyncio
    async def test_rerun_is_a_no_op(self, migrator, populated):
        await migrator.run(dry_run=False)
        mutations_after_first_run = len(populated.mutations)

        summary = await migrator.run(dry_run=False)

        assert summary['updated'] == 0
        assert summary['skipped_aligned'] == 3
        assert len(populated.mutations) == mutations_after_first_run

    @pytest.mark.asyncio
    async def test_failures_are_collected(self, migrator, populated):
        populated.fail_on[('update_subscription', 'sub_1')] = stripe.APIError('boom')

        summary = await migrator.run(dry_run=False)

        assert summary['errored'] == 1
        assert summary['updated'] == 1
        assert summary['errors'] == [{
            'member_id': '1',
            'email': 'active@example.org',
            'subscription_id': 'sub_1',
            'error': 'boom',
        }]

    @pytest.mark.asyncio
    async def test_customer_lookup_failure_skips_only_that_member(self, migrator, populated):
        populated.fail_on[('find_customers_by_email', 'active@example.org')] = stripe.APIConnectionError('down')

        summary = await migrator.run(dry_run=False)

        assert summary['updated'] == 1
        assert summary['errored'] == 1
        assert summary['processed'] == 3
        assert summary['errors'][0]['member_id'] == '1'

    @pytest.mark.asyncio
    async def test_subscription_listing_failure_is_counted(self, migrator, populated):
        populated.fail_on[('list_subscriptions', 'cus_5')] = stripe.APIConnectionError('down')

        summary = await migrator.run(dry_run=False)

        assert summary['errored'] == 1
        assert summary['errors'][0]['customer_id'] == 'cus_5'
        assert summary['updated'] == 1

    @pytest.mark.asyncio
    async def test_shared_customer_is_processed_once(self, populated, clock):
        members = [make_member('1', 'active@example.org'), make_member('9', 'other@example.org')]
        migrator = RenewalAlignmentMigrator(
            gateway=populated,
            directory=InMemoryDirectory(members),
            links=InMemoryLinks({'9': 'cus_1'}),
            locks=SubscriptionLocks(),
            clock=clock,
            delay_seconds=0,
        )

        summary = await migrator.run(dry_run=False)

        assert summary['processed'] == 1
        assert len(populated.calls_to('update_subscription')) == 1
