"""
Stripe API Client Wrapper

Thin async wrapper around the Stripe SDK. Every call goes through
``safe_stripe_call``, which applies the connected account and retries
rate-limit and connection errors with jittered exponential backoff.
Everything else propagates to the caller unchanged.
"""

import logging
from typing import Any, Callable, Optional

import stripe
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from dues.core.conf import settings

logger = logging.getLogger(__name__)

# Newer API versions move current_period_* onto subscription items and drop
# invoice.payment_intent; the gateway adapter expects this shape.
stripe.api_version = settings.STRIPE_API_VERSION
stripe.max_network_retries = settings.STRIPE_MAX_NETWORK_RETRIES


def configure_stripe(test_mode: Optional[bool] = None) -> str:
    """
    Select the live or sandbox secret key.

    Returns:
        'test' or 'live'
    """
    if test_mode is not None:
        settings.STRIPE_TEST_MODE = test_mode
    stripe.api_key = settings.stripe_api_key
    mode = 'test' if settings.STRIPE_TEST_MODE else 'live'
    logger.debug(f"[STRIPE CLIENT] Configured in {mode} mode")
    return mode


configure_stripe()

RETRYABLE_ERRORS = (stripe.RateLimitError, stripe.APIConnectionError)


class StripeAPIWrapper:
    """
    Safe wrapper for Stripe API calls.

    All methods are async class methods that can be called directly:
        customer = await StripeAPIWrapper.create_customer(email="member@example.org")
    """

    @classmethod
    def _ensure_stripe_configured(cls):
        """Raise error if Stripe is not configured."""
        if not stripe.api_key:
            key_name = 'STRIPE_TEST_SECRET_KEY' if settings.STRIPE_TEST_MODE else 'STRIPE_SECRET_KEY'
            raise ValueError(f"{key_name} not configured")

    @classmethod
    def _retrying(cls) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(settings.BILLING_RETRY_ATTEMPTS),
            wait=wait_random_exponential(multiplier=1, max=settings.BILLING_RETRY_MAX_WAIT_SECONDS),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    @classmethod
    async def safe_stripe_call(cls, func: Callable, *args, **kwargs) -> Any:
        """
        Execute a Stripe API call with retry on transient failures.

        Args:
            func: Async Stripe API function
            *args: Positional arguments
            **kwargs: Keyword arguments

        Returns:
            Result from Stripe API
        """
        cls._ensure_stripe_configured()
        if settings.STRIPE_ACCOUNT_ID and 'stripe_account' not in kwargs:
            kwargs['stripe_account'] = settings.STRIPE_ACCOUNT_ID

        async for attempt in cls._retrying():
            with attempt:
                return await func(*args, **kwargs)

    # -------------------------------------------------------------------------
    # Customer Operations
    # -------------------------------------------------------------------------

    @classmethod
    async def create_customer(cls, **kwargs) -> 'stripe.Customer':
        """
        Create a new Stripe customer.

        Args:
            email: Customer email
            name: Customer name (optional)
            metadata: Additional metadata (optional)
            idempotency_key: Deduplication key (optional)
        """
        return await cls.safe_stripe_call(stripe.Customer.create_async, **kwargs)

    @classmethod
    async def retrieve_customer(cls, customer_id: str) -> 'stripe.Customer':
        return await cls.safe_stripe_call(stripe.Customer.retrieve_async, customer_id)

    @classmethod
    async def update_customer(cls, customer_id: str, **kwargs) -> 'stripe.Customer':
        return await cls.safe_stripe_call(stripe.Customer.modify_async, customer_id, **kwargs)

    @classmethod
    async def list_customers(cls, **kwargs) -> 'stripe.ListObject':
        return await cls.safe_stripe_call(stripe.Customer.list_async, **kwargs)

    @classmethod
    async def search_customers(cls, query: str, **kwargs) -> 'stripe.SearchResultObject':
        """Search customers with Stripe's query language (eventually consistent)."""
        return await cls.safe_stripe_call(stripe.Customer.search_async, query=query, **kwargs)

    # -------------------------------------------------------------------------
    # Subscription Operations
    # -------------------------------------------------------------------------

    @classmethod
    async def create_subscription(cls, **kwargs) -> 'stripe.Subscription':
        return await cls.safe_stripe_call(stripe.Subscription.create_async, **kwargs)

    @classmethod
    async def retrieve_subscription(cls, subscription_id: str, **kwargs) -> 'stripe.Subscription':
        return await cls.safe_stripe_call(stripe.Subscription.retrieve_async, subscription_id, **kwargs)

    @classmethod
    async def modify_subscription(cls, subscription_id: str, **kwargs) -> 'stripe.Subscription':
        return await cls.safe_stripe_call(
            stripe.Subscription.modify_async,
            subscription_id,
            **kwargs
        )

    @classmethod
    async def cancel_subscription(
        cls,
        subscription_id: str,
        cancel_immediately: bool = True,
        **kwargs
    ) -> 'stripe.Subscription':
        """
        Cancel a subscription.

        Args:
            subscription_id: Stripe subscription ID
            cancel_immediately: If True, cancel now. If False, cancel at period end.
        """
        if cancel_immediately:
            return await cls.safe_stripe_call(
                stripe.Subscription.cancel_async,
                subscription_id,
                **kwargs
            )
        return await cls.safe_stripe_call(
            stripe.Subscription.modify_async,
            subscription_id,
            cancel_at_period_end=True,
            **kwargs
        )

    @classmethod
    async def list_subscriptions(cls, **kwargs) -> 'stripe.ListObject':
        """List subscriptions with optional filters."""
        return await cls.safe_stripe_call(stripe.Subscription.list_async, **kwargs)

    # -------------------------------------------------------------------------
    # Payment Operations
    # -------------------------------------------------------------------------

    @classmethod
    async def create_payment_intent(cls, **kwargs) -> 'stripe.PaymentIntent':
        return await cls.safe_stripe_call(stripe.PaymentIntent.create_async, **kwargs)

    @classmethod
    async def retrieve_payment_intent(cls, payment_intent_id: str, **kwargs) -> 'stripe.PaymentIntent':
        return await cls.safe_stripe_call(stripe.PaymentIntent.retrieve_async, payment_intent_id, **kwargs)

    @classmethod
    async def list_payment_intents(cls, **kwargs) -> 'stripe.ListObject':
        return await cls.safe_stripe_call(stripe.PaymentIntent.list_async, **kwargs)

    @classmethod
    async def list_charges(cls, **kwargs) -> 'stripe.ListObject':
        return await cls.safe_stripe_call(stripe.Charge.list_async, **kwargs)

    # -------------------------------------------------------------------------
    # Setup Intent Operations
    # -------------------------------------------------------------------------

    @classmethod
    async def create_setup_intent(cls, **kwargs) -> 'stripe.SetupIntent':
        return await cls.safe_stripe_call(stripe.SetupIntent.create_async, **kwargs)

    @classmethod
    async def retrieve_setup_intent(cls, setup_intent_id: str, **kwargs) -> 'stripe.SetupIntent':
        return await cls.safe_stripe_call(stripe.SetupIntent.retrieve_async, setup_intent_id, **kwargs)

    # -------------------------------------------------------------------------
    # Invoice Operations
    # -------------------------------------------------------------------------

    @classmethod
    async def list_invoices(cls, **kwargs) -> 'stripe.ListObject':
        """List invoices with optional filters."""
        return await cls.safe_stripe_call(stripe.Invoice.list_async, **kwargs)

    @classmethod
    async def finalize_invoice(cls, invoice_id: str) -> 'stripe.Invoice':
        return await cls.safe_stripe_call(stripe.Invoice.finalize_invoice_async, invoice_id)

    @classmethod
    async def pay_invoice(cls, invoice_id: str, **kwargs) -> 'stripe.Invoice':
        return await cls.safe_stripe_call(stripe.Invoice.pay_async, invoice_id, **kwargs)

    # -------------------------------------------------------------------------
    # Price Operations
    # -------------------------------------------------------------------------

    @classmethod
    async def list_prices(cls, **kwargs) -> 'stripe.ListObject':
        """List prices with optional filters."""
        return await cls.safe_stripe_call(stripe.Price.list_async, **kwargs)

    @classmethod
    async def create_price(cls, **kwargs) -> 'stripe.Price':
        """
        Create a price.

        Args:
            unit_amount: Amount in cents
            currency: ISO currency
            recurring: {'interval': 'year'}
            lookup_key: Stable lookup key
            transfer_lookup_key: Move the lookup key from an existing price
            product_data: {'name': ...}
        """
        return await cls.safe_stripe_call(stripe.Price.create_async, **kwargs)
