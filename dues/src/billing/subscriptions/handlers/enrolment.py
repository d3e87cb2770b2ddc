"""
Enrolment Handler

Starts a membership (recurring subscription or one-time payment) and
converts a one-time membership into an auto-renewing one.

Renewals are aligned to January 1st: a member's first subscription trials
until the next January 1st, and a converted one-time membership trials
until the date it is already paid up to.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from dues.src.billing.domain import Confirmation, ConfirmationKind, Customer, Member, Price
from dues.src.billing.external.stripe import StripeGateway, stripe_idempotency_manager
from dues.src.billing.membership import has_prior_subscription
from dues.src.billing.membership.status import has_succeeded_payment
from dues.src.billing.shared.config import (
    BILLING_INTERVAL,
    CURRENCY,
    Tier,
    get_tier,
    next_january_first,
    price_lookup_key,
    product_name,
)
from dues.src.billing.shared.exceptions import (
    MembershipAlreadyCurrentError,
    SubscriptionError,
    TierNotFoundError,
)
from ..locks import SubscriptionLocks, member_key
from .customer import CustomerHandler
from .state import gateway_errors, load_member_state

logger = logging.getLogger(__name__)

# Stripe rejects trials ending further out than this
MAX_TRIAL_DAYS = 730


@dataclass(frozen=True)
class EnrolmentResult:
    """Outcome of an enrolment or conversion."""
    mode: str
    tier: Tier
    customer_id: str
    confirmation: Confirmation
    subscription_id: Optional[str] = None
    trial_end: Optional[datetime] = None

    @property
    def requires_confirmation(self) -> bool:
        return self.confirmation.kind != ConfirmationKind.NONE

    def to_dict(self) -> Dict:
        return {
            'success': True,
            'mode': self.mode,
            'tier': self.tier.to_dict(),
            'customer_id': self.customer_id,
            'subscription_id': self.subscription_id,
            'trial_end': self.trial_end.isoformat() if self.trial_end else None,
            'requires_confirmation': self.requires_confirmation,
            'confirmation': self.confirmation.to_dict(),
        }


class PriceResolver:
    """
    Resolves the yearly price for a tier through its stable lookup key.

    A price whose amount no longer matches the tier is replaced: a new price
    takes over the lookup key and the old one keeps billing nobody new.
    """

    def __init__(self, gateway: StripeGateway):
        self.gateway = gateway

    async def resolve(self, tier: Tier) -> Price:
        lookup_key = price_lookup_key(tier)
        price = await self.gateway.find_price_by_lookup_key(lookup_key)

        if price and (price.unit_amount, price.currency, price.interval) == (tier.amount_cents, CURRENCY, BILLING_INTERVAL):
            return price

        if price:
            logger.warning(
                f"[PRICE] {lookup_key} is {price.unit_amount} {price.currency}/{price.interval}, "
                f"expected {tier.amount_cents} {CURRENCY}/{BILLING_INTERVAL}; replacing"
            )
        else:
            logger.info(f"[PRICE] Creating price {lookup_key}")

        return await self.gateway.create_price(
            amount=tier.amount_cents,
            currency=CURRENCY,
            lookup_key=lookup_key,
            product_name=product_name(tier),
            transfer_lookup_key=price is not None,
            metadata={'tier': tier.name},
        )


class EnrolmentHandler:
    """
    Handles enrolment and conversion to auto-renewal.

    Both commands re-derive the member's state under the member lock and
    refuse before touching Stripe when the guard fails.
    """

    def __init__(
        self,
        gateway: StripeGateway,
        customers: CustomerHandler,
        locks: SubscriptionLocks,
        clock: Callable[[], datetime],
    ):
        self.gateway = gateway
        self.customers = customers
        self.locks = locks
        self.clock = clock
        self.prices = PriceResolver(gateway)

    @staticmethod
    def _tier_for(member: Member, tier_name: Optional[str]) -> Tier:
        name = tier_name or member.tier_id
        tier = get_tier(name)
        if tier is None:
            raise TierNotFoundError(name or '')
        return tier

    async def _setup_confirmation(
        self,
        confirmation: Confirmation,
        customer: Customer,
        metadata: Dict[str, str],
    ) -> Confirmation:
        """Stripe omits the pending setup intent when nothing needs saving; request one explicitly."""
        if confirmation.kind == ConfirmationKind.SETUP:
            return confirmation
        setup_intent = await self.gateway.create_setup_intent(customer.id, metadata=metadata)
        return Confirmation(
            kind=ConfirmationKind.SETUP,
            client_secret=setup_intent.client_secret,
            intent_id=setup_intent.id,
        )

    async def enrol(self, member: Member, tier_name: Optional[str] = None, recurring: bool = True) -> EnrolmentResult:
        """
        Enrol a member in a tier.

        Raises:
            MembershipAlreadyCurrentError: Membership valid and auto-renewing
            SubscriptionError: A valid membership whose subscription is scheduled to cancel
            TierNotFoundError: Unknown tier
            PaymentError: Stripe rejected a request
        """
        tier = self._tier_for(member, tier_name)

        async with self.locks.hold(member_key(member.id)):
            now = self.clock()
            state = await load_member_state(member, self.gateway, self.customers, now)
            window = state.window

            if window.is_valid and window.has_recurring_payment:
                logger.info(f"[ENROL] Member {member.id} already current until {window.valid_until}")
                raise MembershipAlreadyCurrentError(details={
                    'valid_until': window.valid_until.isoformat(),
                    'subscription_id': window.subscription_id,
                })

            # A second subscription would leave two live ones once paid
            scheduled = [
                s for s in state.live_subscriptions
                if s.cancel_at_period_end and s.status.value in ('active', 'trialing')
            ]
            if recurring and window.is_valid and scheduled:
                raise SubscriptionError(
                    "Subscription is scheduled to cancel; reactivate it instead",
                    code='REACTIVATION_REQUIRED',
                    details={'subscription_id': scheduled[0].id},
                )

            with gateway_errors('Enrolment'):
                customer = await self.customers.get_or_create_customer(member)
                metadata = {'member_id': member.id, 'tier': tier.name, 'email': member.email}
                idempotency_key = stripe_idempotency_manager.generate_enrolment_key(member.id, tier.name, recurring)

                if tier.is_free:
                    logger.info(f"[ENROL] Member {member.id} enrolled in free tier {tier.name}")
                    return EnrolmentResult(
                        mode='free',
                        tier=tier,
                        customer_id=customer.id,
                        confirmation=Confirmation.none(),
                    )

                if not recurring:
                    confirmation = await self.gateway.create_payment_intent(
                        amount=tier.amount_cents,
                        currency=CURRENCY,
                        customer_id=customer.id,
                        metadata=dict(metadata, type='membership_one_time'),
                        description=f"{product_name(tier)} {now.year}",
                        idempotency_key=idempotency_key,
                    )
                    logger.info(f"[ENROL] One-time payment {confirmation.intent_id} created for member {member.id}")
                    return EnrolmentResult(
                        mode='one_time',
                        tier=tier,
                        customer_id=customer.id,
                        confirmation=confirmation,
                    )

                price = await self.prices.resolve(tier)
                first_ever = not has_succeeded_payment(state.payments) and not has_prior_subscription(state.subscriptions)
                trial_end = next_january_first(now) if first_ever else None

                creation = await self.gateway.create_subscription(
                    customer_id=customer.id,
                    price_id=price.id,
                    trial_end=trial_end,
                    metadata=metadata,
                    idempotency_key=idempotency_key,
                )
                confirmation = creation.confirmation
                if first_ever:
                    confirmation = await self._setup_confirmation(
                        confirmation, customer, dict(metadata, subscription_id=creation.subscription.id)
                    )

            logger.info(
                f"[ENROL] Subscription {creation.subscription.id} created for member {member.id} "
                f"(tier={tier.name}, trial_end={trial_end}, confirm={confirmation.kind.value})"
            )
            return EnrolmentResult(
                mode='recurring',
                tier=tier,
                customer_id=customer.id,
                confirmation=confirmation,
                subscription_id=creation.subscription.id,
                trial_end=trial_end,
            )

    async def convert_to_recurring(self, member: Member) -> EnrolmentResult:
        """
        Turn a paid one-time membership into an auto-renewing subscription.

        The subscription trials until the current end date so the first
        charge lands exactly when the paid period runs out.

        Raises:
            SubscriptionError: Not eligible, or a scheduled cancellation should be reactivated instead
        """
        tier = self._tier_for(member, None)

        async with self.locks.hold(member_key(member.id)):
            now = self.clock()
            state = await load_member_state(member, self.gateway, self.customers, now)
            window = state.window

            scheduled = [s for s in state.live_subscriptions if s.cancel_at_period_end]
            if scheduled:
                raise SubscriptionError(
                    "Subscription is scheduled to cancel; reactivate it instead",
                    code='REACTIVATION_REQUIRED',
                    details={'subscription_id': scheduled[0].id},
                )
            if state.live_subscriptions:
                raise SubscriptionError(
                    "Membership already renews automatically",
                    code='ALREADY_RECURRING',
                    details={'subscription_id': state.live_subscriptions[0].id},
                )
            if not (window.is_valid and window.has_one_time_payment):
                raise SubscriptionError(
                    "Only a valid one-time membership can be converted",
                    code='NOT_ELIGIBLE_FOR_CONVERSION',
                    details={'membership': window.to_dict()},
                )

            valid_until = window.valid_until
            if valid_until - now > timedelta(days=MAX_TRIAL_DAYS):
                raise SubscriptionError(
                    "Membership end date is too far ahead to schedule a renewal",
                    code='TRIAL_END_TOO_FAR',
                    details={'valid_until': valid_until.isoformat()},
                )

            with gateway_errors('Conversion', error_cls=SubscriptionError, code='CONVERSION_FAILED'):
                customer = await self.customers.get_or_create_customer(member)
                price = await self.prices.resolve(tier)
                metadata = {
                    'member_id': member.id,
                    'tier': tier.name,
                    'email': member.email,
                    'converted_from_onetime': 'true',
                    'valid_until': valid_until.isoformat(),
                }
                creation = await self.gateway.create_subscription(
                    customer_id=customer.id,
                    price_id=price.id,
                    trial_end=valid_until,
                    metadata=metadata,
                    idempotency_key=stripe_idempotency_manager.generate_conversion_key(member.id, valid_until),
                )
                confirmation = await self._setup_confirmation(
                    creation.confirmation, customer, dict(metadata, subscription_id=creation.subscription.id)
                )

            logger.info(
                f"[CONVERT] Member {member.id} converted to subscription {creation.subscription.id}, "
                f"first renewal {valid_until.isoformat()}"
            )
            return EnrolmentResult(
                mode='recurring',
                tier=tier,
                customer_id=customer.id,
                confirmation=confirmation,
                subscription_id=creation.subscription.id,
                trial_end=valid_until,
            )
