"""
Membership Endpoints

API endpoints for a member's own membership: status, enrolment,
cancellation and payment methods.
"""

import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from dues.src.billing.shared.exceptions import BillingError
from dues.src.billing.subscriptions import MembershipService
from .dependencies import billing_http_error, get_current_member_id, get_membership_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/membership", tags=["billing-membership"])


# ============================================================================
# Request Models
# ============================================================================

class EnrolRequest(BaseModel):
    """Request for enrolment."""
    tier: Optional[str] = None  # defaults to the member's tier
    recurring: bool = True


class ConfirmPaymentMethodRequest(BaseModel):
    setup_intent_id: str


class RetryPaymentRequest(BaseModel):
    subscription_id: Optional[str] = None


# ============================================================================
# Endpoints
# ============================================================================

@router.get("/status")
async def get_status(
    member_id: str = Depends(get_current_member_id),
    service: MembershipService = Depends(get_membership_service),
) -> Dict:
    """Membership validity, subscription and payment history."""
    try:
        return await service.get_status(member_id)
    except BillingError as e:
        raise billing_http_error(e)


@router.post("/enrol")
async def enrol(
    request: EnrolRequest,
    member_id: str = Depends(get_current_member_id),
    service: MembershipService = Depends(get_membership_service),
) -> Dict:
    """
    Enrol in a tier.

    Returns the client secret the browser confirms (setup for a trial,
    payment otherwise). Refused with 409 when the membership is already
    valid and renewing.
    """
    try:
        result = await service.enrol(member_id, tier_name=request.tier, recurring=request.recurring)
        return result.to_dict()
    except BillingError as e:
        logger.info(f"[BILLING] Enrolment refused for {member_id}: {e.code}")
        raise billing_http_error(e)


@router.post("/convert")
async def convert_to_recurring(
    member_id: str = Depends(get_current_member_id),
    service: MembershipService = Depends(get_membership_service),
) -> Dict:
    """Turn a paid one-time membership into an auto-renewing one."""
    try:
        result = await service.convert_to_recurring(member_id)
        return result.to_dict()
    except BillingError as e:
        raise billing_http_error(e)


@router.post("/cancel")
async def cancel(
    member_id: str = Depends(get_current_member_id),
    service: MembershipService = Depends(get_membership_service),
) -> Dict:
    """
    Cancel auto-renewal.

    The membership stays valid until the end of the paid period.
    """
    try:
        return await service.cancel(member_id)
    except BillingError as e:
        raise billing_http_error(e)


@router.post("/reactivate")
async def reactivate(
    member_id: str = Depends(get_current_member_id),
    service: MembershipService = Depends(get_membership_service),
) -> Dict:
    try:
        return await service.reactivate(member_id)
    except BillingError as e:
        raise billing_http_error(e)


@router.post("/payment-method")
async def update_payment_method(
    member_id: str = Depends(get_current_member_id),
    service: MembershipService = Depends(get_membership_service),
) -> Dict:
    try:
        return await service.update_payment_method(member_id)
    except BillingError as e:
        raise billing_http_error(e)


@router.post("/payment-method/confirm")
async def confirm_payment_method(
    request: ConfirmPaymentMethodRequest,
    member_id: str = Depends(get_current_member_id),
    service: MembershipService = Depends(get_membership_service),
) -> Dict:
    """Apply a card saved through a succeeded setup intent."""
    try:
        return await service.confirm_payment_method(request.setup_intent_id, member_id=member_id)
    except BillingError as e:
        raise billing_http_error(e)


@router.post("/retry-payment")
async def retry_payment(
    request: RetryPaymentRequest,
    member_id: str = Depends(get_current_member_id),
    service: MembershipService = Depends(get_membership_service),
) -> Dict:
    try:
        return await service.retry_payment(member_id, subscription_id=request.subscription_id)
    except BillingError as e:
        raise billing_http_error(e)


@router.post("/payments/{payment_intent_id}/verify")
async def verify_payment(
    payment_intent_id: str,
    member_id: str = Depends(get_current_member_id),
    service: MembershipService = Depends(get_membership_service),
) -> Dict:
    """Check a payment's outcome at Stripe after the browser reports completion."""
    try:
        return await service.verify_payment(member_id, payment_intent_id)
    except BillingError as e:
        raise billing_http_error(e)
