"""Tests for membership status derivation.

Tests cover:
- Trial masking once a payment succeeded
- One-year validity from the latest successful payment
- Legacy override range
- Recurring vs one-time membership
- Canonical subscription selection
- Predicate pairs never overlap across statuses and histories
"""

import itertools

import pytest

from dues.src.billing.domain import PaymentStatus, SubscriptionStatus, normalize_payment_status
from dues.src.billing.membership import (
    add_one_year,
    derive_membership_window,
    effective_status,
    has_failed_payment,
    membership_end_date,
    select_canonical_subscription,
)
from dues.tests.fakes import make_payment, make_subscription, utc

NOW = utc(2025, 6, 15, 12, 0)


class TestTrialMasking:
    def test_trialing_with_paid_history_reads_as_active(self):
        subscription = make_subscription(status='trialing')
        window = derive_membership_window([make_payment()], subscription, now=NOW)

        assert window.effective_status == SubscriptionStatus.ACTIVE
        assert window.is_in_trial is False

    def test_trialing_without_payment_stays_in_trial(self):
        subscription = make_subscription(status='trialing')
        window = derive_membership_window([], subscription, now=NOW)

        assert window.effective_status == SubscriptionStatus.TRIALING
        assert window.is_in_trial is True

    def test_failed_payment_does_not_mask_trial(self):
        subscription = make_subscription(status='trialing')
        payments = [make_payment(status='failed')]

        assert effective_status(subscription, payments) == SubscriptionStatus.TRIALING

    def test_no_subscription(self):
        assert effective_status(None, []) == SubscriptionStatus.NONE


class TestMembershipEndDate:
    def test_one_calendar_year_after_latest_payment(self):
        payments = [make_payment('pi_old', utc(2023, 5, 1)), make_payment('pi_new', utc(2024, 3, 15, 9, 30))]

        assert membership_end_date(payments, None, None, NOW) == utc(2025, 3, 15, 9, 30)

    def test_leap_day_payment_ends_on_february_28(self):
        assert add_one_year(utc(2024, 2, 29)) == utc(2025, 2, 28)

    def test_failed_payments_are_ignored(self):
        payments = [make_payment('pi_ok', utc(2025, 1, 10)), make_payment('pi_ko', utc(2025, 5, 1), status='failed')]

        assert membership_end_date(payments, None, None, NOW) == utc(2026, 1, 10)

    def test_override_wins_when_plausible(self):
        payments = [make_payment(created_at=utc(2025, 1, 10))]

        assert membership_end_date(payments, None, utc(2030, 12, 31), NOW) == utc(2030, 12, 31)

    def test_override_out_of_range_is_ignored(self):
        payments = [make_payment(created_at=utc(2025, 1, 10))]

        assert membership_end_date(payments, None, utc(1900, 1, 1), NOW) == utc(2026, 1, 10)
        assert membership_end_date(payments, None, utc(2099, 1, 1), NOW) == utc(2026, 1, 10)

    def test_falls_back_to_period_end_of_active_subscription(self):
        subscription = make_subscription(current_period_end=utc(2026, 1, 1))

        assert membership_end_date([], subscription, None, NOW) == utc(2026, 1, 1)

    def test_canceled_subscription_without_payment_has_no_end_date(self):
        subscription = make_subscription(status='canceled')

        assert membership_end_date([], subscription, None, NOW) is None


class TestMembershipWindow:
    def test_valid_and_expired_are_exclusive(self):
        valid = derive_membership_window([make_payment(created_at=utc(2025, 1, 1))], None, now=NOW)
        expired = derive_membership_window([make_payment(created_at=utc(2024, 1, 1))], None, now=NOW)

        assert valid.is_valid and not valid.has_expired_payment
        assert expired.has_expired_payment and not expired.is_valid

    def test_no_history_is_neither_valid_nor_expired(self):
        window = derive_membership_window([], None, now=NOW)

        assert window.valid_until is None
        assert not window.is_valid
        assert not window.has_expired_payment

    def test_renewing_subscription_is_recurring(self):
        window = derive_membership_window([make_payment()], make_subscription(), now=NOW)

        assert window.is_recurring is True
        assert window.has_one_time_payment is False

    def test_scheduled_cancellation_is_one_time(self):
        subscription = make_subscription(cancel_at_period_end=True)
        window = derive_membership_window([make_payment()], subscription, now=NOW)

        assert window.is_recurring is False
        assert window.has_one_time_payment is True
        assert window.cancel_at_period_end is True

    def test_payment_without_subscription_is_one_time(self):
        window = derive_membership_window([make_payment()], None, now=NOW)

        assert window.has_one_time_payment is True
        assert window.is_recurring is False

    def test_to_dict_exposes_predicates(self):
        window = derive_membership_window([make_payment()], make_subscription(), now=NOW)
        data = window.to_dict()

        assert data['is_valid'] is True
        assert data['effective_status'] == 'active'
        assert data['subscription_id'] == 'sub_1'


class TestFailedPayment:
    def test_latest_failed(self):
        payments = [make_payment('pi_1', utc(2025, 1, 1)), make_payment('pi_2', utc(2025, 2, 1), status='failed')]
        assert has_failed_payment(payments) is True

    def test_failure_followed_by_success(self):
        payments = [make_payment('pi_1', utc(2025, 1, 1), status='failed'), make_payment('pi_2', utc(2025, 2, 1))]
        assert has_failed_payment(payments) is False

    def test_abandoned_intent_is_pending_not_failed(self):
        assert normalize_payment_status('requires_payment_method') == PaymentStatus.PENDING
        assert normalize_payment_status('requires_payment_method', has_error=True) == PaymentStatus.FAILED
        assert normalize_payment_status('canceled') == PaymentStatus.FAILED


class TestCanonicalSubscription:
    def test_subscription_with_payment_method_wins(self):
        with_card = make_subscription('sub_card', current_period_start=utc(2024, 1, 1), default_payment_method='pm_1')
        newer = make_subscription('sub_new', current_period_start=utc(2025, 1, 1))

        assert select_canonical_subscription([newer, with_card]).id == 'sub_card'

    def test_most_recent_period_start_breaks_ties(self):
        older = make_subscription('sub_old', current_period_start=utc(2024, 1, 1))
        newer = make_subscription('sub_new', current_period_start=utc(2025, 1, 1))

        assert select_canonical_subscription([older, newer]).id == 'sub_new'

    def test_live_beats_canceled(self):
        canceled = make_subscription('sub_canceled', status='canceled', current_period_start=utc(2025, 5, 1))
        past_due = make_subscription('sub_past_due', status='past_due', current_period_start=utc(2024, 1, 1))

        assert select_canonical_subscription([canceled, past_due]).id == 'sub_past_due'

    def test_latest_created_without_live_subscription(self):
        first = make_subscription('sub_a', status='canceled', created_at=utc(2023, 1, 1))
        second = make_subscription('sub_b', status='incomplete_expired', created_at=utc(2024, 1, 1))

        assert select_canonical_subscription([first, second]).id == 'sub_b'

    def test_empty(self):
        assert select_canonical_subscription([]) is None


SUBSCRIPTION_STATUSES = [None] + [s.value for s in SubscriptionStatus if s != SubscriptionStatus.NONE]

PAYMENT_HISTORIES = {
    'none': [],
    'paid': [make_payment(created_at=utc(2025, 3, 1))],
    'paid_long_ago': [make_payment(created_at=utc(2024, 3, 1))],
    'failed': [make_payment(status='failed', created_at=utc(2025, 3, 1))],
    'pending': [make_payment(status='pending', created_at=utc(2025, 3, 1))],
    'paid_then_failed': [
        make_payment('pi_2', status='failed', created_at=utc(2025, 4, 1)),
        make_payment(created_at=utc(2025, 3, 1)),
    ],
}

# Before, exactly at and after both the period end and the paid-through date
INSTANTS = [utc(2025, 6, 15), utc(2026, 1, 1), utc(2026, 3, 1), utc(2026, 6, 1)]


@pytest.mark.parametrize(
    'status, history, cancel_at_period_end, now',
    list(itertools.product(SUBSCRIPTION_STATUSES, PAYMENT_HISTORIES, [False, True], INSTANTS)),
)
def test_predicate_pairs_never_overlap(status, history, cancel_at_period_end, now):
    subscription = None
    if status is not None:
        subscription = make_subscription(status=status, cancel_at_period_end=cancel_at_period_end)
    window = derive_membership_window(PAYMENT_HISTORIES[history], subscription, now=now)

    assert not (window.is_valid and window.has_expired_payment)
    assert not (window.is_recurring and window.has_one_time_payment)
    assert (window.is_valid or window.has_expired_payment) == (window.valid_until is not None)
