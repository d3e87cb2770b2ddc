"""
Billing Configuration

Membership tiers, price lookup keys and date constants for the dues core.

Usage:
    from dues.src.billing.shared.config import TIERS, get_tier

    tier = get_tier('practicing')
    print(tier.amount_cents)  # 12000
    print(price_lookup_key(tier))  # 'srh_practicing_yearly'
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional
from zoneinfo import ZoneInfo

from dues.core.conf import settings


# =============================================================================
# MEMBERSHIP CONSTANTS
# =============================================================================
BILLING_INTERVAL: str = 'year'
CURRENCY: str = settings.BILLING_CURRENCY

# Legacy "subscribed until" overrides outside this window are ignored
OVERRIDE_MIN_YEAR: int = 1990
OVERRIDE_MAX_YEARS_AHEAD: int = 50

# Statuses the renewal migrator never touches
TERMINAL_SUBSCRIPTION_STATUSES = frozenset({'canceled', 'incomplete', 'incomplete_expired'})

# Statuses for which an unpaid invoice may be retried
RETRYABLE_SUBSCRIPTION_STATUSES = frozenset({'past_due', 'incomplete', 'unpaid'})

# Metadata stamped on subscriptions aligned to January 1st
ALIGNED_METADATA_KEY: str = 'aligned_to_jan1'
MIGRATION_DATE_METADATA_KEY: str = 'migration_date'
ORIGINAL_TRIAL_END_METADATA_KEY: str = 'original_trial_end'


# =============================================================================
# TIER DEFINITION
# =============================================================================
@dataclass(frozen=True)
class Tier:
    """A membership tier with its yearly dues."""
    name: str
    display_name: str
    amount_cents: int
    description: str = ''

    @property
    def is_free(self) -> bool:
        return self.amount_cents == 0

    def to_dict(self) -> Dict:
        return {
            'name': self.name,
            'display_name': self.display_name,
            'amount_cents': self.amount_cents,
            'currency': CURRENCY,
            'interval': BILLING_INTERVAL,
        }


TIERS: Dict[str, Tier] = {
    'practicing': Tier(
        name='practicing',
        display_name='Practicing member',
        amount_cents=12000,
        description='Practicing hospital practitioner',
    ),
    'retired': Tier(
        name='retired',
        display_name='Retired member',
        amount_cents=6000,
    ),
    'assistant': Tier(
        name='assistant',
        display_name='Assistant member',
        amount_cents=3000,
        description='Assistants and fellows',
    ),
    'first_time': Tier(
        name='first_time',
        display_name='First-time member',
        amount_cents=0,
        description='Free first year for new practitioners',
    ),
}


# =============================================================================
# HELPERS
# =============================================================================
def get_tier(name: str) -> Optional[Tier]:
    """Get a tier by its identifier, or None."""
    if not name:
        return None
    return TIERS.get(name.strip().lower())


def price_lookup_key(tier: Tier) -> str:
    """Stable lookup key for the tier's yearly price, e.g. ``srh_retired_yearly``."""
    return f"{settings.BILLING_PRICE_LOOKUP_PREFIX}_{tier.name}_{BILLING_INTERVAL}ly"


def product_name(tier: Tier) -> str:
    return f"{settings.BILLING_PRODUCT_NAME_PREFIX} - {tier.display_name}"


def association_tz() -> ZoneInfo:
    return ZoneInfo(settings.BILLING_TIMEZONE)


def next_january_first(now: datetime) -> datetime:
    """
    Midnight on the next January 1st in the association's timezone.

    ``now`` must be timezone-aware. On January 1st itself the result is the
    following year's, so a renewal never lands in the past.
    """
    local = now.astimezone(association_tz())
    return datetime(local.year + 1, 1, 1, tzinfo=association_tz())
