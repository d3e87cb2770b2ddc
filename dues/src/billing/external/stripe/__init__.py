"""
Stripe Integration Module

- Async API wrapper with retry on transient failures
- Typed gateway returning billing domain records
- Idempotency key generation
- Webhook verification and routing

Usage:
    from dues.src.billing.external.stripe import stripe_gateway

    customer = await stripe_gateway.find_customer("member@example.org")
    subscriptions = await stripe_gateway.list_subscriptions(customer.id)
"""

from .client import (
    StripeAPIWrapper,
    configure_stripe,
)

from .gateway import (
    StripeGateway,
    SubscriptionCreation,
    stripe_gateway,
)

from .idempotency import (
    StripeIdempotencyManager,
    stripe_idempotency_manager,
)

from .webhooks import (
    WebhookService,
    webhook_service,
)

__all__ = [
    # API Client
    'StripeAPIWrapper',
    'configure_stripe',
    # Gateway
    'StripeGateway',
    'SubscriptionCreation',
    'stripe_gateway',
    # Idempotency
    'StripeIdempotencyManager',
    'stripe_idempotency_manager',
    # Webhook Service
    'WebhookService',
    'webhook_service',
]
