"""
Stripe Webhook Service

Verifies Stripe webhook signatures and routes the events the membership
core reacts to. Payment success is never taken from the browser: it is
read back from Stripe here or by the verify-payment command.
"""

import logging
from collections import OrderedDict
from typing import Any, Dict

import stripe
from fastapi import HTTPException, Request

from dues.core.conf import settings
from dues.src.billing.shared.exceptions import BillingError
from .gateway import stripe_field

logger = logging.getLogger(__name__)

# Remember this many processed event IDs per process
_SEEN_EVENTS_LIMIT = 1000


class WebhookService:
    """
    Central service for processing Stripe webhooks.

    Responsibilities:
    - Verify webhook signatures
    - Skip events already handled by this process (Stripe retries)
    - Route events to the membership handlers

    Usage:
        result = await webhook_service.process_stripe_webhook(request)
    """

    def __init__(self):
        self._seen: 'OrderedDict[str, None]' = OrderedDict()

    async def process_stripe_webhook(self, request: Request) -> Dict[str, Any]:
        payload = await request.body()
        sig_header = request.headers.get('stripe-signature')
        return await self.handle_payload(payload, sig_header)

    def construct_event(self, payload: bytes, sig_header: str) -> Any:
        """
        Verify the signature and build the event.

        Raises:
            HTTPException: If signature invalid or secret not configured
        """
        if not sig_header:
            raise HTTPException(status_code=400, detail="Missing stripe-signature header")

        if not settings.STRIPE_WEBHOOK_SECRET:
            logger.error("[WEBHOOK] STRIPE_WEBHOOK_SECRET not configured")
            raise HTTPException(status_code=500, detail="Webhook secret not configured")

        try:
            return stripe.Webhook.construct_event(
                payload,
                sig_header,
                settings.STRIPE_WEBHOOK_SECRET,
                tolerance=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
            )
        except stripe.SignatureVerificationError as e:
            logger.warning(f"[WEBHOOK] Invalid signature: {e}")
            raise HTTPException(status_code=400, detail="Invalid webhook signature")
        except ValueError as e:
            logger.warning(f"[WEBHOOK] Invalid payload: {e}")
            raise HTTPException(status_code=400, detail="Invalid payload")

    async def handle_payload(self, payload: bytes, sig_header: str) -> Dict[str, Any]:
        event = self.construct_event(payload, sig_header)

        if event.id in self._seen:
            logger.info(f"[WEBHOOK] Skipping event {event.id}: already processed")
            return {'status': 'success', 'message': 'Event already processed'}

        logger.info(f"[WEBHOOK] Processing event type: {event.type} (ID: {event.id})")
        try:
            await self._route_event(event)
        except BillingError as e:
            # Expected business outcome (e.g. setup not succeeded); Stripe must not retry
            logger.warning(f"[WEBHOOK] Event {event.id} not applied: {e.code} {e.message}")
            self._remember(event.id)
            return {'status': 'success', 'event_id': event.id, 'applied': False, 'error': e.code}

        self._remember(event.id)
        return {'status': 'success', 'event_id': event.id, 'applied': True}

    def _remember(self, event_id: str) -> None:
        self._seen[event_id] = None
        while len(self._seen) > _SEEN_EVENTS_LIMIT:
            self._seen.popitem(last=False)

    async def _route_event(self, event) -> None:
        event_type = event.type
        obj = stripe_field(stripe_field(event, 'data'), 'object')
        obj_id = stripe_field(obj, 'id')

        # Import here to avoid circular imports
        from dues.src.billing.subscriptions.service import membership_service

        if event_type == 'setup_intent.succeeded':
            logger.info(f"[WEBHOOK] Setup intent {obj_id} succeeded, applying payment method")
            await membership_service.confirm_payment_method(obj_id)

        elif event_type == 'payment_intent.succeeded':
            logger.info(
                f"[WEBHOOK] Payment {obj_id} succeeded for customer {stripe_field(obj, 'customer')} "
                f"({stripe_field(obj, 'amount')} {stripe_field(obj, 'currency')})"
            )

        elif event_type == 'payment_intent.payment_failed':
            error = stripe_field(obj, 'last_payment_error')
            logger.warning(
                f"[WEBHOOK] Payment {obj_id} failed for customer {stripe_field(obj, 'customer')}: "
                f"{stripe_field(error, 'code')} {stripe_field(error, 'message')}"
            )

        elif event_type == 'invoice.payment_failed':
            logger.warning(f"[WEBHOOK] Invoice {obj_id} payment failed (subscription {stripe_field(obj, 'subscription')})")

        elif event_type in ('customer.subscription.updated', 'customer.subscription.deleted'):
            logger.info(
                f"[WEBHOOK] Subscription {obj_id} is now {stripe_field(obj, 'status')} "
                f"(cancel_at_period_end={stripe_field(obj, 'cancel_at_period_end')})"
            )

        else:
            logger.debug(f"[WEBHOOK] Unhandled event type: {event_type}")


webhook_service = WebhookService()
