"""
Billing Endpoints Module

API routes for billing operations.

Routers:
- membership: Status, enrolment, lifecycle and payment methods
- webhooks: Stripe webhook processing

Usage:
    from dues.src.billing.endpoints import billing_router

    app.include_router(billing_router, prefix="/billing")
"""

from fastapi import APIRouter

from .membership import router as membership_router
from .webhooks import router as webhooks_router
from .dependencies import get_current_member_id, get_membership_service

# Create main billing router
billing_router = APIRouter()

billing_router.include_router(membership_router)
billing_router.include_router(webhooks_router)

__all__ = [
    'billing_router',
    'membership_router',
    'webhooks_router',
    'get_current_member_id',
    'get_membership_service',
]
