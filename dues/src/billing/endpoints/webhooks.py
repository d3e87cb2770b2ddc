"""
Webhook Endpoints

Stripe webhook endpoint for processing billing events.
"""

import logging
from fastapi import APIRouter, Request

from dues.src.billing.external.stripe import webhook_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["billing-webhooks"])


@router.post("/webhooks/stripe")
async def stripe_webhook(request: Request):
    """
    Process Stripe webhook events.

    Handles:
    - setup_intent.succeeded
    - payment_intent.succeeded
    - payment_intent.payment_failed
    - invoice.payment_failed
    - customer.subscription.updated
    - customer.subscription.deleted
    """
    return await webhook_service.process_stripe_webhook(request)
