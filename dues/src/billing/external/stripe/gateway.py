"""
Stripe Gateway

Typed adapter over ``StripeAPIWrapper``. Converts Stripe objects into the
billing domain records, hides pagination, and implements the lookups the
command handlers and maintenance jobs need (customer search by email,
payment history, price resolution).

Usage:
    from dues.src.billing.external.stripe import stripe_gateway

    customers = await stripe_gateway.find_customers_by_email("member@example.org")
    payments = await stripe_gateway.list_payments(customers[0].id)
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

import stripe

from dues.src.billing.domain import (
    Confirmation,
    ConfirmationKind,
    Customer,
    InvoiceRecord,
    PaymentRecord,
    Price,
    SetupIntentRecord,
    SubscriptionRecord,
    normalize_payment_status,
    parse_datetime,
)
from dues.src.billing.shared.config import BILLING_INTERVAL
from .client import StripeAPIWrapper

logger = logging.getLogger(__name__)

PAGE_SIZE = 100


# =============================================================================
# STRIPE OBJECT ACCESS
# =============================================================================
def stripe_field(obj: Any, key: str, default: Any = None) -> Any:
    """Read a field from a StripeObject or a plain dict."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    try:
        value = obj[key]
    except (KeyError, TypeError):
        return getattr(obj, key, default)
    return default if value is None else value


def _id_of(value: Any) -> Optional[str]:
    """An ID field may be a plain string or an expanded object."""
    if value is None or isinstance(value, str):
        return value
    return stripe_field(value, 'id')


def _metadata(obj: Any) -> Dict[str, str]:
    metadata = stripe_field(obj, 'metadata')
    if metadata is None:
        return {}
    if hasattr(metadata, 'to_dict'):
        metadata = metadata.to_dict()
    return {str(k): str(v) for k, v in dict(metadata).items()}


def _timestamp(value: Optional[datetime]) -> Optional[int]:
    return int(value.timestamp()) if value is not None else None


# =============================================================================
# CONVERSIONS
# =============================================================================
def to_customer(obj: Any) -> Customer:
    invoice_settings = stripe_field(obj, 'invoice_settings')
    return Customer(
        id=stripe_field(obj, 'id'),
        email=stripe_field(obj, 'email'),
        name=stripe_field(obj, 'name'),
        deleted=bool(stripe_field(obj, 'deleted', False)),
        default_payment_method=_id_of(stripe_field(invoice_settings, 'default_payment_method')),
        created_at=parse_datetime(stripe_field(obj, 'created')),
        metadata=_metadata(obj),
    )


def to_subscription(obj: Any) -> SubscriptionRecord:
    """
    Convert a Stripe subscription.

    Period bounds are read from the subscription and fall back to the
    first item, where newer API versions put them.
    """
    items = stripe_field(stripe_field(obj, 'items'), 'data') or []
    first_item = items[0] if items else None

    period_start = stripe_field(obj, 'current_period_start') or stripe_field(first_item, 'current_period_start')
    period_end = stripe_field(obj, 'current_period_end') or stripe_field(first_item, 'current_period_end')

    customer = stripe_field(obj, 'customer')
    customer_email = None if isinstance(customer, str) else stripe_field(customer, 'email')

    metadata = _metadata(obj)
    price = stripe_field(first_item, 'price')
    payment_method = _id_of(stripe_field(obj, 'default_payment_method')) or _id_of(stripe_field(obj, 'default_source'))

    return SubscriptionRecord.from_dict({
        'id': stripe_field(obj, 'id'),
        'customer_id': _id_of(customer),
        'status': stripe_field(obj, 'status'),
        'current_period_start': period_start,
        'current_period_end': period_end,
        'created_at': stripe_field(obj, 'created'),
        'trial_end': stripe_field(obj, 'trial_end'),
        'cancel_at_period_end': stripe_field(obj, 'cancel_at_period_end', False),
        'canceled_at': stripe_field(obj, 'canceled_at'),
        'tier_id': metadata.get('tier') or stripe_field(stripe_field(price, 'metadata'), 'tier'),
        'customer_email': customer_email,
        'default_payment_method': payment_method,
        'metadata': metadata,
    })


def to_payment_from_intent(obj: Any) -> PaymentRecord:
    raw_status = stripe_field(obj, 'status', '')
    error = stripe_field(obj, 'last_payment_error')
    status = normalize_payment_status(raw_status, has_error=error is not None)
    return PaymentRecord(
        id=stripe_field(obj, 'id'),
        amount=int(stripe_field(obj, 'amount', 0)),
        currency=stripe_field(obj, 'currency', 'eur'),
        status=status,
        raw_status=raw_status,
        created_at=parse_datetime(stripe_field(obj, 'created')),
        description=stripe_field(obj, 'description'),
        customer_id=_id_of(stripe_field(obj, 'customer')),
        payment_intent_id=stripe_field(obj, 'id'),
        failure_code=stripe_field(error, 'code'),
        failure_message=stripe_field(error, 'message'),
        metadata=_metadata(obj),
    )


def to_payment_from_charge(obj: Any) -> PaymentRecord:
    raw_status = stripe_field(obj, 'status', '')
    if raw_status == 'succeeded' and stripe_field(obj, 'refunded', False):
        raw_status = 'refunded'
    status = normalize_payment_status(raw_status, has_error=stripe_field(obj, 'failure_code') is not None)
    return PaymentRecord(
        id=stripe_field(obj, 'id'),
        amount=int(stripe_field(obj, 'amount', 0)),
        currency=stripe_field(obj, 'currency', 'eur'),
        status=status,
        raw_status=raw_status,
        created_at=parse_datetime(stripe_field(obj, 'created')),
        description=stripe_field(obj, 'description'),
        customer_id=_id_of(stripe_field(obj, 'customer')),
        payment_intent_id=_id_of(stripe_field(obj, 'payment_intent')),
        failure_code=stripe_field(obj, 'failure_code'),
        failure_message=stripe_field(obj, 'failure_message'),
        metadata=_metadata(obj),
    )


def to_setup_intent(obj: Any) -> SetupIntentRecord:
    return SetupIntentRecord(
        id=stripe_field(obj, 'id'),
        status=stripe_field(obj, 'status', ''),
        customer_id=_id_of(stripe_field(obj, 'customer')),
        payment_method=_id_of(stripe_field(obj, 'payment_method')),
        client_secret=stripe_field(obj, 'client_secret'),
        metadata=_metadata(obj),
    )


def to_price(obj: Any) -> Price:
    return Price(
        id=stripe_field(obj, 'id'),
        unit_amount=int(stripe_field(obj, 'unit_amount', 0)),
        currency=stripe_field(obj, 'currency', 'eur'),
        interval=stripe_field(stripe_field(obj, 'recurring'), 'interval'),
        lookup_key=stripe_field(obj, 'lookup_key'),
        product_id=_id_of(stripe_field(obj, 'product')),
        active=bool(stripe_field(obj, 'active', True)),
    )


def to_invoice(obj: Any) -> InvoiceRecord:
    return InvoiceRecord(
        id=stripe_field(obj, 'id'),
        status=stripe_field(obj, 'status', ''),
        amount_due=int(stripe_field(obj, 'amount_due', 0)),
        subscription_id=_id_of(stripe_field(obj, 'subscription')),
        created_at=parse_datetime(stripe_field(obj, 'created')),
    )


@dataclass(frozen=True)
class SubscriptionCreation:
    """A freshly created subscription and what the client must confirm."""
    subscription: SubscriptionRecord
    confirmation: Confirmation


# =============================================================================
# GATEWAY
# =============================================================================
class StripeGateway:
    """Domain-level access to Stripe for the membership core."""

    def __init__(self, api=StripeAPIWrapper):
        self.api = api

    async def _list_all(self, list_call: Callable[..., Awaitable[Any]], **params) -> List[Any]:
        """Follow ``has_more``/``starting_after`` until the list is exhausted."""
        items: List[Any] = []
        starting_after = None
        while True:
            page_params = dict(params, limit=PAGE_SIZE)
            if starting_after:
                page_params['starting_after'] = starting_after
            page = await list_call(**page_params)
            data = list(stripe_field(page, 'data') or [])
            items.extend(data)
            if not data or not stripe_field(page, 'has_more', False):
                return items
            starting_after = stripe_field(data[-1], 'id')

    # -------------------------------------------------------------------------
    # Customers
    # -------------------------------------------------------------------------

    async def find_customers_by_email(self, email: str) -> List[Customer]:
        """
        All live customers for an email.

        Tries the exact address, then its lower-cased form, then the search
        API (case-insensitive, covers customers created with odd casing).
        """
        if not email:
            return []

        found: Dict[str, Customer] = {}
        candidates = [email]
        if email.lower() != email:
            candidates.append(email.lower())

        for candidate in candidates:
            for obj in await self._list_all(self.api.list_customers, email=candidate):
                customer = to_customer(obj)
                if not customer.deleted:
                    found.setdefault(customer.id, customer)

        if not found:
            local, _, domain = email.lower().partition('@')
            try:
                result = await self.api.search_customers(query=f'email~"{local}"', limit=PAGE_SIZE)
            except stripe.InvalidRequestError as e:
                # Search is unavailable on some accounts
                logger.warning(f"[GATEWAY] Customer search failed for {email}: {e}")
                result = None
            for obj in stripe_field(result, 'data') or []:
                customer = to_customer(obj)
                if customer.deleted or not customer.email:
                    continue
                c_local, _, c_domain = customer.email.lower().partition('@')
                if c_local == local and c_domain == domain:
                    found.setdefault(customer.id, customer)

        return list(found.values())

    async def find_customer(self, email: str) -> Optional[Customer]:
        """The most recently created customer for an email, or None."""
        customers = await self.find_customers_by_email(email)
        if not customers:
            return None
        return max(customers, key=lambda c: c.created_at.timestamp() if c.created_at else 0)

    async def retrieve_customer(self, customer_id: str) -> Optional[Customer]:
        """Retrieve a customer; None when it was deleted or never existed."""
        try:
            obj = await self.api.retrieve_customer(customer_id)
        except stripe.InvalidRequestError as e:
            if getattr(e, 'code', None) == 'resource_missing':
                return None
            raise
        customer = to_customer(obj)
        return None if customer.deleted else customer

    async def create_customer(
        self,
        email: str,
        name: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
        idempotency_key: Optional[str] = None,
    ) -> Customer:
        params: Dict[str, Any] = {'email': email, 'metadata': metadata or {}}
        if name:
            params['name'] = name
        if idempotency_key:
            params['idempotency_key'] = idempotency_key
        return to_customer(await self.api.create_customer(**params))

    async def set_default_payment_method(self, customer_id: str, payment_method_id: str) -> Customer:
        obj = await self.api.update_customer(
            customer_id,
            invoice_settings={'default_payment_method': payment_method_id},
        )
        return to_customer(obj)

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    async def list_subscriptions(self, customer_id: str, status: str = 'all') -> List[SubscriptionRecord]:
        objs = await self._list_all(self.api.list_subscriptions, customer=customer_id, status=status)
        return [to_subscription(obj) for obj in objs]

    async def list_all_subscriptions(self, status: str = 'all') -> List[SubscriptionRecord]:
        """Every subscription on the account, with the customer expanded for its email."""
        objs = await self._list_all(
            self.api.list_subscriptions,
            status=status,
            expand=['data.customer'],
        )
        return [to_subscription(obj) for obj in objs]

    async def retrieve_subscription(self, subscription_id: str) -> SubscriptionRecord:
        return to_subscription(await self.api.retrieve_subscription(subscription_id))

    async def create_subscription(
        self,
        customer_id: str,
        price_id: str,
        trial_end: Optional[datetime] = None,
        metadata: Optional[Dict[str, str]] = None,
        idempotency_key: Optional[str] = None,
    ) -> SubscriptionCreation:
        """
        Create an incomplete subscription the client finishes confirming.

        With a trial, Stripe attaches a pending setup intent (card saved,
        nothing charged). Without one, the first invoice carries a payment
        intent.
        """
        params: Dict[str, Any] = {
            'customer': customer_id,
            'items': [{'price': price_id}],
            'payment_behavior': 'default_incomplete',
            'payment_settings': {'save_default_payment_method': 'on_subscription'},
            'metadata': metadata or {},
            'expand': ['latest_invoice.payment_intent', 'pending_setup_intent'],
        }
        if trial_end is not None:
            params['trial_end'] = _timestamp(trial_end)
            params['proration_behavior'] = 'none'
        if idempotency_key:
            params['idempotency_key'] = idempotency_key

        obj = await self.api.create_subscription(**params)
        record = to_subscription(obj)

        setup_intent = stripe_field(obj, 'pending_setup_intent')
        payment_intent = stripe_field(stripe_field(obj, 'latest_invoice'), 'payment_intent')
        if setup_intent and not isinstance(setup_intent, str):
            confirmation = Confirmation(
                kind=ConfirmationKind.SETUP,
                client_secret=stripe_field(setup_intent, 'client_secret'),
                intent_id=stripe_field(setup_intent, 'id'),
            )
        elif payment_intent and not isinstance(payment_intent, str):
            confirmation = Confirmation(
                kind=ConfirmationKind.PAYMENT,
                client_secret=stripe_field(payment_intent, 'client_secret'),
                intent_id=stripe_field(payment_intent, 'id'),
            )
        else:
            confirmation = Confirmation.none()
        return SubscriptionCreation(subscription=record, confirmation=confirmation)

    async def update_subscription(
        self,
        subscription_id: str,
        *,
        trial_end: Optional[datetime] = None,
        cancel_at_period_end: Optional[bool] = None,
        metadata: Optional[Dict[str, str]] = None,
        default_payment_method: Optional[str] = None,
        proration_behavior: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> SubscriptionRecord:
        params: Dict[str, Any] = {}
        if trial_end is not None:
            params['trial_end'] = _timestamp(trial_end)
        if cancel_at_period_end is not None:
            params['cancel_at_period_end'] = cancel_at_period_end
        if metadata:
            params['metadata'] = metadata
        if default_payment_method:
            params['default_payment_method'] = default_payment_method
        if proration_behavior:
            params['proration_behavior'] = proration_behavior
        if idempotency_key:
            params['idempotency_key'] = idempotency_key
        return to_subscription(await self.api.modify_subscription(subscription_id, **params))

    async def cancel_subscription(self, subscription_id: str) -> SubscriptionRecord:
        """Cancel immediately."""
        return to_subscription(await self.api.cancel_subscription(subscription_id, cancel_immediately=True))

    # -------------------------------------------------------------------------
    # Payments
    # -------------------------------------------------------------------------

    async def create_payment_intent(
        self,
        amount: int,
        currency: str,
        customer_id: str,
        metadata: Optional[Dict[str, str]] = None,
        description: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Confirmation:
        params: Dict[str, Any] = {
            'amount': amount,
            'currency': currency,
            'customer': customer_id,
            'automatic_payment_methods': {'enabled': True},
            'metadata': metadata or {},
        }
        if description:
            params['description'] = description
        if idempotency_key:
            params['idempotency_key'] = idempotency_key
        obj = await self.api.create_payment_intent(**params)
        return Confirmation(
            kind=ConfirmationKind.PAYMENT,
            client_secret=stripe_field(obj, 'client_secret'),
            intent_id=stripe_field(obj, 'id'),
        )

    async def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentRecord:
        return to_payment_from_intent(await self.api.retrieve_payment_intent(payment_intent_id))

    async def list_payments(self, customer_id: str) -> List[PaymentRecord]:
        """
        Payment history, newest first.

        Charges are authoritative for money that moved. Payment intents
        without any charge (abandoned or awaiting action) are added so
        pending attempts are visible too.
        """
        charges = await self._list_all(self.api.list_charges, customer=customer_id)
        intents = await self._list_all(self.api.list_payment_intents, customer=customer_id)

        payments: Dict[str, PaymentRecord] = {}
        charged_intents = set()
        for obj in charges:
            payment = to_payment_from_charge(obj)
            payments[payment.id] = payment
            if payment.payment_intent_id:
                charged_intents.add(payment.payment_intent_id)

        for obj in intents:
            payment = to_payment_from_intent(obj)
            if payment.id in charged_intents:
                continue
            # A succeeded intent always has a charge; keep it anyway if the charge list lagged
            payments.setdefault(payment.id, payment)

        return sorted(payments.values(), key=lambda p: p.created_at.timestamp() if p.created_at else 0, reverse=True)

    # -------------------------------------------------------------------------
    # Setup Intents
    # -------------------------------------------------------------------------

    async def create_setup_intent(
        self,
        customer_id: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> SetupIntentRecord:
        obj = await self.api.create_setup_intent(
            customer=customer_id,
            usage='off_session',
            automatic_payment_methods={'enabled': True},
            metadata=metadata or {},
        )
        return to_setup_intent(obj)

    async def retrieve_setup_intent(self, setup_intent_id: str) -> SetupIntentRecord:
        return to_setup_intent(await self.api.retrieve_setup_intent(setup_intent_id))

    # -------------------------------------------------------------------------
    # Prices
    # -------------------------------------------------------------------------

    async def find_price_by_lookup_key(self, lookup_key: str) -> Optional[Price]:
        page = await self.api.list_prices(lookup_keys=[lookup_key], active=True, limit=1)
        data = stripe_field(page, 'data') or []
        return to_price(data[0]) if data else None

    async def create_price(
        self,
        amount: int,
        currency: str,
        lookup_key: str,
        product_name: str,
        interval: str = BILLING_INTERVAL,
        transfer_lookup_key: bool = False,
        metadata: Optional[Dict[str, str]] = None,
    ) -> Price:
        obj = await self.api.create_price(
            unit_amount=amount,
            currency=currency,
            recurring={'interval': interval},
            lookup_key=lookup_key,
            transfer_lookup_key=transfer_lookup_key,
            product_data={'name': product_name},
            metadata=metadata or {},
        )
        return to_price(obj)

    # -------------------------------------------------------------------------
    # Invoices
    # -------------------------------------------------------------------------

    async def list_invoices(self, subscription_id: str, limit: int = 10) -> List[InvoiceRecord]:
        """Most recent invoices of a subscription, newest first."""
        page = await self.api.list_invoices(subscription=subscription_id, limit=limit)
        invoices = [to_invoice(obj) for obj in stripe_field(page, 'data') or []]
        return sorted(invoices, key=lambda i: i.created_at.timestamp() if i.created_at else 0, reverse=True)

    async def pay_invoice(self, invoice: InvoiceRecord) -> InvoiceRecord:
        """Finalize a draft if needed, then attempt payment."""
        invoice_id = invoice.id
        if invoice.status == 'draft':
            await self.api.finalize_invoice(invoice_id)
        return to_invoice(await self.api.pay_invoice(invoice_id))


stripe_gateway = StripeGateway()
