"""
Endpoint Dependencies

Shared dependencies for billing API endpoints.
"""

import logging
from typing import Optional

from fastapi import Header, HTTPException

from dues.src.billing.shared.exceptions import BillingError
from dues.src.billing.subscriptions import MembershipService, membership_service

logger = logging.getLogger(__name__)


async def get_current_member_id(
    member_id: Optional[str] = Header(None, alias="X-Member-Id")
) -> str:
    """
    Member ID set by the authenticating gateway in front of this service.

    This is a dependency that can be overridden in tests.
    """
    if not member_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return member_id


def get_membership_service() -> MembershipService:
    return membership_service


def billing_http_error(e: BillingError) -> HTTPException:
    """Map a billing error onto an HTTP error carrying its ``to_dict`` body."""
    return HTTPException(status_code=e.status_code, detail=e.to_dict())
