"""
Customer Handler

Resolves the Stripe customer(s) behind a member.
Features:
- Stored customer link is the primary key
- Stale links (deleted customers) are dropped
- Email search fallback for members never linked
- Customer creation with member metadata, then linking
"""

import logging
from typing import List, Optional

from dues.src.billing.domain import Customer, Member
from dues.src.billing.external.stripe import StripeGateway, stripe_idempotency_manager
from dues.src.billing.members import CustomerLinkStore

logger = logging.getLogger(__name__)


class CustomerHandler:
    """
    Handles Stripe customer management.

    Each member maps to one Stripe customer, stored in billing_customers.
    Members without a stored link fall back to every customer sharing
    their email, so legacy subscriptions and payments still count.
    """

    def __init__(self, gateway: StripeGateway, links: CustomerLinkStore):
        self.gateway = gateway
        self.links = links

    async def _linked_customer(self, member: Member) -> Optional[Customer]:
        customer_id = await self.links.get_customer_id(member.id)
        if not customer_id:
            return None

        customer = await self.gateway.retrieve_customer(customer_id)
        if customer is None:
            logger.warning(f"[CUSTOMER] Stale customer {customer_id} for member {member.id}, unlinking")
            await self.links.unlink(member.id)
        return customer

    async def resolve_customers(self, member: Member) -> List[Customer]:
        """The linked customer alone, or every customer sharing the email when unlinked."""
        linked = await self._linked_customer(member)
        if linked:
            return [linked]
        return await self.gateway.find_customers_by_email(member.email)

    async def find_customer(self, member: Member) -> Optional[Customer]:
        """Existing customer for the member, linking an email match. Never creates."""
        linked = await self._linked_customer(member)
        if linked:
            return linked

        customer = await self.gateway.find_customer(member.email)
        if customer:
            logger.info(f"[CUSTOMER] Found customer {customer.id} by email for member {member.id}")
            await self.links.link(member.id, customer.id, member.email)
        return customer

    async def get_or_create_customer(self, member: Member) -> Customer:
        """
        Get existing Stripe customer or create a new one.

        Returns:
            The member's Stripe customer, linked in billing_customers
        """
        customer = await self.find_customer(member)
        if customer:
            return customer

        logger.info(f"[CUSTOMER] Creating Stripe customer for member {member.id}")
        customer = await self.gateway.create_customer(
            email=member.email,
            name=member.full_name,
            metadata={'member_id': member.id},
            idempotency_key=stripe_idempotency_manager.generate_customer_key(member.id, member.email),
        )
        await self.links.link(member.id, customer.id, member.email)
        logger.info(f"[CUSTOMER] Created customer {customer.id} for member {member.id}")
        return customer
