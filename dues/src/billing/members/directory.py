"""
Member Directory and Customer Links

Read access to the association's ``users`` table and the billing-owned
``billing_customers`` link table. Both are expressed as protocols so the
command handlers and batch jobs can run against in-memory stores in tests.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Protocol

from sqlalchemy import select, text

from dues.src.billing.domain import Member, parse_datetime

logger = logging.getLogger(__name__)


class MemberDirectory(Protocol):
    async def get_member(self, member_id: str) -> Optional[Member]: ...

    async def list_members(self) -> List[Member]: ...


class CustomerLinkStore(Protocol):
    async def get_customer_id(self, member_id: str) -> Optional[str]: ...

    async def link(self, member_id: str, customer_id: str, email: Optional[str] = None) -> None: ...

    async def unlink(self, member_id: str) -> None: ...


# =============================================================================
# SQL IMPLEMENTATIONS
# =============================================================================
_MEMBER_COLUMNS = """
    id, email, firstname, lastname, hospital, address,
    subscription, newsletter, subscribed_until
"""


def _row_to_member(row) -> Member:
    subscribed_until = parse_datetime(row.subscribed_until)
    return Member(
        id=str(row.id),
        email=row.email,
        tier_id=row.subscription,
        first_name=row.firstname,
        last_name=row.lastname,
        hospital=row.hospital,
        address=row.address,
        newsletter_opt_in=bool(row.newsletter),
        subscribed_until=subscribed_until,
    )


class SqlMemberDirectory:
    """Members from the ``users`` table (read-only)."""

    async def get_member(self, member_id: str) -> Optional[Member]:
        from dues.database.db import async_db_session

        async with async_db_session() as session:
            result = await session.execute(
                text(f"SELECT {_MEMBER_COLUMNS} FROM users WHERE id = :member_id"),
                {'member_id': member_id}
            )
            row = result.first()
        return _row_to_member(row) if row else None

    async def list_members(self) -> List[Member]:
        from dues.database.db import async_db_session

        async with async_db_session() as session:
            result = await session.execute(
                text(f"SELECT {_MEMBER_COLUMNS} FROM users WHERE email IS NOT NULL ORDER BY id")
            )
            rows = result.fetchall()
        return [_row_to_member(row) for row in rows]


class SqlCustomerLinkStore:
    """Stripe customer links in ``billing_customers``."""

    async def get_customer_id(self, member_id: str) -> Optional[str]:
        from dues.database.db import async_db_session
        from .models import BillingCustomer

        async with async_db_session() as session:
            result = await session.execute(
                select(BillingCustomer.customer_id).where(BillingCustomer.member_id == member_id)
            )
            return result.scalar_one_or_none()

    async def link(self, member_id: str, customer_id: str, email: Optional[str] = None) -> None:
        from dues.database.db import async_db_session
        from .models import BillingCustomer

        async with async_db_session() as session:
            existing = await session.get(BillingCustomer, member_id)
            if existing:
                existing.customer_id = customer_id
                existing.email = email
                existing.updated_at = datetime.now(timezone.utc)
            else:
                session.add(BillingCustomer(member_id=member_id, customer_id=customer_id, email=email))
        logger.info(f"[CUSTOMER LINK] Member {member_id} linked to {customer_id}")

    async def unlink(self, member_id: str) -> None:
        from dues.database.db import async_db_session
        from .models import BillingCustomer

        async with async_db_session() as session:
            existing = await session.get(BillingCustomer, member_id)
            if existing:
                await session.delete(existing)
        logger.info(f"[CUSTOMER LINK] Removed stale link for member {member_id}")


member_directory = SqlMemberDirectory()
customer_link_store = SqlCustomerLinkStore()
