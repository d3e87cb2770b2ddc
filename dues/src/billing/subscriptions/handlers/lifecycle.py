"""
Subscription Lifecycle Handler

Cancel, reactivate, payment method changes, invoice retries and
server-side payment verification for an existing membership.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, Optional

import stripe

from dues.src.billing.domain import Confirmation, ConfirmationKind, Member, SubscriptionRecord
from dues.src.billing.external.stripe import StripeGateway
from dues.src.billing.shared.config import RETRYABLE_SUBSCRIPTION_STATUSES
from dues.src.billing.shared.exceptions import PaymentError, SubscriptionError
from ..locks import SubscriptionLocks, member_key, subscription_key
from .customer import CustomerHandler
from .state import MemberBillingState, gateway_errors, load_member_state

logger = logging.getLogger(__name__)


class LifecycleHandler:
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

    async def _state(self, member: Member) -> MemberBillingState:
        return await load_member_state(member, self.gateway, self.customers, self.clock())

    @staticmethod
    def _require_subscription(state: MemberBillingState) -> SubscriptionRecord:
        if state.subscription is None:
            raise SubscriptionError("No subscription found", code='NO_SUBSCRIPTION')
        return state.subscription

    # -------------------------------------------------------------------------
    # Cancel / Reactivate
    # -------------------------------------------------------------------------

    async def cancel(self, member: Member, canceled_by: Optional[str] = None) -> Dict:
        """
        Stop auto-renewal at the end of the paid period.

        Raises:
            SubscriptionError: No live subscription, or Stripe rejected the update
        """
        async with self.locks.hold(member_key(member.id)):
            state = await self._state(member)
            subscription = self._require_subscription(state)
            if not subscription.is_live():
                raise SubscriptionError(
                    "No active subscription to cancel",
                    code='NO_SUBSCRIPTION',
                    details={'subscription_id': subscription.id, 'status': subscription.status.value},
                )

            async with self.locks.hold(subscription_key(subscription.id)):
                if subscription.cancel_at_period_end:
                    logger.info(f"[CANCEL] Subscription {subscription.id} already scheduled to cancel")
                    return {
                        'success': True,
                        'already_scheduled': True,
                        'subscription_id': subscription.id,
                        'cancel_at': subscription.current_period_end.isoformat() if subscription.current_period_end else None,
                    }

                with gateway_errors('Cancellation', error_cls=SubscriptionError, code='CANCEL_FAILED'):
                    updated = await self.gateway.update_subscription(
                        subscription.id,
                        cancel_at_period_end=True,
                        metadata={
                            'canceled_by': canceled_by or member.email,
                            'canceled_at': self.clock().isoformat(),
                        },
                    )

        logger.info(f"[CANCEL] Subscription {subscription.id} for member {member.id} will cancel at period end")
        return {
            'success': True,
            'already_scheduled': False,
            'subscription_id': updated.id,
            'cancel_at': updated.current_period_end.isoformat() if updated.current_period_end else None,
            'message': 'Membership will not renew; it stays valid until the end of the paid period',
        }

    async def reactivate(self, member: Member, reactivated_by: Optional[str] = None) -> Dict:
        """
        Undo a scheduled cancellation.

        A fully canceled subscription cannot come back: the member has to
        enrol again.
        """
        async with self.locks.hold(member_key(member.id)):
            state = await self._state(member)
            subscription = self._require_subscription(state)

            if subscription.is_canceled():
                raise SubscriptionError(
                    "Subscription is canceled; enrol again to renew",
                    code='SUBSCRIPTION_CANCELED',
                    details={'subscription_id': subscription.id},
                )
            if not subscription.is_active():
                raise SubscriptionError(
                    f"Subscription cannot be reactivated from status {subscription.status.value}",
                    code='INVALID_SUBSCRIPTION_STATUS',
                    details={'subscription_id': subscription.id, 'status': subscription.status.value},
                )

            async with self.locks.hold(subscription_key(subscription.id)):
                if not subscription.cancel_at_period_end:
                    return {
                        'success': True,
                        'already_active': True,
                        'subscription_id': subscription.id,
                    }

                with gateway_errors('Reactivation', error_cls=SubscriptionError, code='REACTIVATE_FAILED'):
                    await self.gateway.update_subscription(
                        subscription.id,
                        cancel_at_period_end=False,
                        metadata={
                            'reactivated_by': reactivated_by or member.email,
                            'reactivated_at': self.clock().isoformat(),
                        },
                    )

        logger.info(f"[REACTIVATE] Subscription {subscription.id} for member {member.id} renews again")
        return {
            'success': True,
            'already_active': False,
            'subscription_id': subscription.id,
        }

    # -------------------------------------------------------------------------
    # Payment Methods
    # -------------------------------------------------------------------------

    async def update_payment_method(self, member: Member) -> Dict:
        """Start saving a new card for the live subscription; nothing is charged."""
        async with self.locks.hold(member_key(member.id)):
            state = await self._state(member)
            subscription = self._require_subscription(state)
            if not subscription.is_live():
                raise SubscriptionError(
                    "No active subscription to update",
                    code='NO_SUBSCRIPTION',
                    details={'subscription_id': subscription.id, 'status': subscription.status.value},
                )

            with gateway_errors('Payment method update'):
                setup_intent = await self.gateway.create_setup_intent(
                    subscription.customer_id,
                    metadata={
                        'member_id': member.id,
                        'subscription_id': subscription.id,
                        'purpose': 'update_payment_method',
                    },
                )

        confirmation = Confirmation(
            kind=ConfirmationKind.SETUP,
            client_secret=setup_intent.client_secret,
            intent_id=setup_intent.id,
        )
        return {
            'success': True,
            'subscription_id': subscription.id,
            'confirmation': confirmation.to_dict(),
        }

    async def confirm_payment_method(self, setup_intent_id: str, member: Optional[Member] = None) -> Dict:
        """
        Apply the card saved by a succeeded setup intent.

        The card becomes the customer's invoice default and the default of
        every live subscription of that customer.
        When a member is given, the intent must belong to one of their customers.

        Raises:
            PaymentError: The setup intent has not succeeded
        """
        with gateway_errors('Setup confirmation'):
            setup_intent = await self.gateway.retrieve_setup_intent(setup_intent_id)

        if setup_intent.status != 'succeeded':
            raise PaymentError(
                "Payment method setup has not succeeded",
                code='SETUP_NOT_SUCCEEDED',
                details={'setup_intent_id': setup_intent_id, 'status': setup_intent.status},
            )
        if not setup_intent.customer_id or not setup_intent.payment_method:
            raise PaymentError(
                "Setup intent has no customer or payment method",
                code='SETUP_INCOMPLETE',
                details={'setup_intent_id': setup_intent_id},
            )

        if member is not None:
            state = await self._state(member)
            if setup_intent.customer_id not in state.customer_ids:
                raise PaymentError(
                    "Setup intent not found for this member",
                    code='SETUP_NOT_FOUND',
                    details={'setup_intent_id': setup_intent_id},
                )

        updated = []
        with gateway_errors('Setup confirmation'):
            await self.gateway.set_default_payment_method(setup_intent.customer_id, setup_intent.payment_method)
            for subscription in await self.gateway.list_subscriptions(setup_intent.customer_id):
                if not subscription.is_live():
                    continue
                async with self.locks.hold(subscription_key(subscription.id)):
                    await self.gateway.update_subscription(
                        subscription.id,
                        default_payment_method=setup_intent.payment_method,
                    )
                updated.append(subscription.id)

        logger.info(
            f"[PAYMENT METHOD] {setup_intent.payment_method} set as default for customer "
            f"{setup_intent.customer_id} ({len(updated)} subscriptions)"
        )
        return {
            'success': True,
            'customer_id': setup_intent.customer_id,
            'payment_method': setup_intent.payment_method,
            'updated_subscriptions': updated,
        }

    # -------------------------------------------------------------------------
    # Payments
    # -------------------------------------------------------------------------

    async def retry_payment(self, member: Member, subscription_id: Optional[str] = None) -> Dict:
        """
        Pay the latest unpaid invoice of a past_due/incomplete/unpaid subscription.

        Raises:
            SubscriptionError: No matching subscription, or it is not in a retryable state
            PaymentError: Nothing to pay, or the card was declined
        """
        async with self.locks.hold(member_key(member.id)):
            state = await self._state(member)

            if subscription_id:
                subscription = next((s for s in state.subscriptions if s.id == subscription_id), None)
            else:
                retryable = [s for s in state.subscriptions if s.status.value in RETRYABLE_SUBSCRIPTION_STATUSES]
                subscription = retryable[0] if retryable else state.subscription

            if subscription is None:
                raise SubscriptionError(
                    "No subscription found",
                    code='NO_SUBSCRIPTION',
                    details={'subscription_id': subscription_id},
                )
            if subscription.is_canceled():
                raise SubscriptionError(
                    "Subscription is canceled; enrol again to renew",
                    code='SUBSCRIPTION_CANCELED',
                    details={'subscription_id': subscription.id},
                )
            if subscription.status.value not in RETRYABLE_SUBSCRIPTION_STATUSES:
                raise SubscriptionError(
                    f"Nothing to retry for a {subscription.status.value} subscription",
                    code='INVALID_SUBSCRIPTION_STATUS',
                    details={'subscription_id': subscription.id, 'status': subscription.status.value},
                )

            async with self.locks.hold(subscription_key(subscription.id)):
                with gateway_errors('Invoice lookup'):
                    invoices = await self.gateway.list_invoices(subscription.id)
                if not invoices:
                    raise PaymentError(
                        "No invoice to retry",
                        code='NO_RETRYABLE_INVOICE',
                        details={'subscription_id': subscription.id},
                    )

                invoice = invoices[0]
                if invoice.status == 'paid':
                    raise PaymentError(
                        "Latest invoice is already paid",
                        code='INVOICE_ALREADY_PAID',
                        details={'invoice_id': invoice.id},
                    )
                if invoice.status not in ('open', 'draft'):
                    raise PaymentError(
                        f"Invoice cannot be paid from status {invoice.status}",
                        code='INVOICE_NOT_PAYABLE',
                        details={'invoice_id': invoice.id, 'status': invoice.status},
                    )

                try:
                    paid = await self.gateway.pay_invoice(invoice)
                except stripe.CardError as e:
                    logger.warning(f"[RETRY] Invoice {invoice.id} declined: {e.code}")
                    raise PaymentError(
                        e.user_message or "Card declined",
                        code='PAYMENT_DECLINED',
                        details={'invoice_id': invoice.id, 'decline_code': getattr(e, 'decline_code', None)},
                    ) from e
                except stripe.StripeError as e:
                    logger.error(f"[RETRY] Invoice {invoice.id} payment failed: {e}")
                    raise PaymentError(
                        f"Invoice payment failed: {e.user_message or str(e)}",
                        code='GATEWAY_ERROR',
                        details={'invoice_id': invoice.id, 'stripe_code': e.code},
                    ) from e

        logger.info(f"[RETRY] Invoice {paid.id} for subscription {subscription.id} is {paid.status}")
        return {
            'success': paid.status == 'paid',
            'invoice_id': paid.id,
            'status': paid.status,
            'subscription_id': subscription.id,
        }

    async def verify_payment(self, member: Member, payment_intent_id: str) -> Dict:
        """
        Read a payment back from Stripe after the client reports completion.

        The client's word is never taken: only the intent's status at Stripe
        counts, and it must belong to one of the member's customers.
        """
        state = await self._state(member)

        with gateway_errors('Payment verification'):
            payment = await self.gateway.retrieve_payment_intent(payment_intent_id)

        if payment.customer_id not in state.customer_ids:
            raise PaymentError(
                "Payment not found for this member",
                code='PAYMENT_NOT_FOUND',
                details={'payment_intent_id': payment_intent_id},
            )

        if payment.succeeded:
            logger.info(f"[VERIFY] Payment {payment_intent_id} succeeded for member {member.id}")
        return {
            'success': payment.succeeded,
            'payment': payment.to_dict(),
            'membership': state.window.to_dict(),
        }
