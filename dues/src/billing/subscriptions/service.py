"""
Membership Service

Main orchestrator for all membership operations.
Provides a unified interface for:
- Membership status
- Enrolment (recurring or one-time) and conversion to auto-renewal
- Subscription lifecycle (cancel, reactivate)
- Payment methods, invoice retries and payment verification
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from dues.src.billing.domain import Member
from dues.src.billing.external.stripe import StripeGateway, stripe_gateway
from dues.src.billing.members import CustomerLinkStore, MemberDirectory, customer_link_store, member_directory
from dues.src.billing.shared.exceptions import MemberNotFoundError
from .handlers import CustomerHandler, EnrolmentHandler, EnrolmentResult, LifecycleHandler, load_member_state
from .locks import SubscriptionLocks, subscription_locks

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MembershipService:
    """
    Unified membership management service.

    Acts as the main entry point for all membership operations. Accepts
    member IDs, loads the member from the directory, and delegates to the
    specialized handlers.

    Usage:
        from dues.src.billing.subscriptions import membership_service

        status = await membership_service.get_status(member_id)
        result = await membership_service.enrol(member_id, tier_name='practicing', recurring=True)
        result = await membership_service.cancel(member_id)
    """

    def __init__(
        self,
        gateway: StripeGateway = stripe_gateway,
        directory: MemberDirectory = member_directory,
        links: CustomerLinkStore = customer_link_store,
        locks: SubscriptionLocks = subscription_locks,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.gateway = gateway
        self.directory = directory
        self.clock = clock
        self.customers = CustomerHandler(gateway, links)
        self.enrolment = EnrolmentHandler(gateway, self.customers, locks, clock)
        self.lifecycle = LifecycleHandler(gateway, self.customers, locks, clock)

    async def get_member(self, member_id: str) -> Member:
        member = await self.directory.get_member(member_id)
        if member is None:
            raise MemberNotFoundError(member_id)
        return member

    # =========================================================================
    # Status
    # =========================================================================

    async def get_status(self, member_id: str) -> Dict:
        """Membership window, canonical subscription and payment history."""
        member = await self.get_member(member_id)
        state = await load_member_state(member, self.gateway, self.customers, self.clock())
        return state.to_dict()

    # =========================================================================
    # Enrolment
    # =========================================================================

    async def enrol(self, member_id: str, tier_name: Optional[str] = None, recurring: bool = True) -> EnrolmentResult:
        member = await self.get_member(member_id)
        return await self.enrolment.enrol(member, tier_name=tier_name, recurring=recurring)

    async def convert_to_recurring(self, member_id: str) -> EnrolmentResult:
        member = await self.get_member(member_id)
        return await self.enrolment.convert_to_recurring(member)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def cancel(self, member_id: str, canceled_by: Optional[str] = None) -> Dict:
        member = await self.get_member(member_id)
        return await self.lifecycle.cancel(member, canceled_by=canceled_by)

    async def reactivate(self, member_id: str, reactivated_by: Optional[str] = None) -> Dict:
        member = await self.get_member(member_id)
        return await self.lifecycle.reactivate(member, reactivated_by=reactivated_by)

    # =========================================================================
    # Payments
    # =========================================================================

    async def update_payment_method(self, member_id: str) -> Dict:
        member = await self.get_member(member_id)
        return await self.lifecycle.update_payment_method(member)

    async def confirm_payment_method(self, setup_intent_id: str, member_id: Optional[str] = None) -> Dict:
        member = await self.get_member(member_id) if member_id else None
        return await self.lifecycle.confirm_payment_method(setup_intent_id, member=member)

    async def retry_payment(self, member_id: str, subscription_id: Optional[str] = None) -> Dict:
        member = await self.get_member(member_id)
        return await self.lifecycle.retry_payment(member, subscription_id=subscription_id)

    async def verify_payment(self, member_id: str, payment_intent_id: str) -> Dict:
        member = await self.get_member(member_id)
        return await self.lifecycle.verify_payment(member, payment_intent_id)


membership_service = MembershipService()
