"""Membership status derivation."""

from .status import (
    MembershipWindow,
    add_one_year,
    derive_membership_window,
    effective_status,
    first_successful_payment,
    has_failed_payment,
    has_one_time_payment,
    has_prior_subscription,
    has_recurring_payment,
    is_in_trial,
    latest_successful_payment,
    membership_end_date,
    select_canonical_subscription,
)

__all__ = [
    'MembershipWindow',
    'add_one_year',
    'derive_membership_window',
    'effective_status',
    'first_successful_payment',
    'has_failed_payment',
    'has_one_time_payment',
    'has_prior_subscription',
    'has_recurring_payment',
    'is_in_trial',
    'latest_successful_payment',
    'membership_end_date',
    'select_canonical_subscription',
]
