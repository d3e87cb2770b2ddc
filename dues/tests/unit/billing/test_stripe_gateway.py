"""Tests for the Stripe gateway adapter.

The Stripe API wrapper is replaced with AsyncMocks returning plain dicts,
the same shape ``stripe_field`` reads from StripeObjects.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
import stripe

from dues.src.billing.domain import ConfirmationKind, InvoiceRecord, PaymentStatus, SubscriptionStatus
from dues.src.billing.external.stripe import StripeGateway
from dues.src.billing.maintenance.duplicates import choose_subscription_to_keep
from dues.tests.fakes import utc

JAN_1_2025 = int(utc(2025, 1, 1).timestamp())
JAN_1_2026 = int(utc(2026, 1, 1).timestamp())


@pytest.fixture
def api():
    return MagicMock()


@pytest.fixture
def gateway(api):
    return StripeGateway(api=api)


def page(*objects, has_more=False):
    return {'object': 'list', 'data': list(objects), 'has_more': has_more}


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_list_follows_pagination(self, gateway, api):
        api.list_subscriptions = AsyncMock(side_effect=[
            page({'id': 'sub_1', 'customer': 'cus_1', 'status': 'active'}, has_more=True),
            page({'id': 'sub_2', 'customer': 'cus_1', 'status': 'canceled'}),
        ])

        subscriptions = await gateway.list_subscriptions('cus_1')

        assert [s.id for s in subscriptions] == ['sub_1', 'sub_2']
        second_call = api.list_subscriptions.await_args_list[1]
        assert second_call.kwargs['starting_after'] == 'sub_1'
        assert second_call.kwargs['customer'] == 'cus_1'

    @pytest.mark.asyncio
    async def test_period_falls_back_to_first_item(self, gateway, api):
        api.retrieve_subscription = AsyncMock(return_value={
            'id': 'sub_1',
            'customer': {'id': 'cus_1', 'email': 'jane@example.org', 'invoice_settings': {'default_payment_method': 'pm_9'}},
            'status': 'trialing',
            'metadata': {'tier': 'retired'},
            'items': {'data': [{'current_period_start': JAN_1_2025, 'current_period_end': JAN_1_2026}]},
        })

        subscription = await gateway.retrieve_subscription('sub_1')

        assert subscription.status == SubscriptionStatus.TRIALING
        assert subscription.current_period_start == utc(2025, 1, 1)
        assert subscription.current_period_end == utc(2026, 1, 1)
        assert subscription.customer_id == 'cus_1'
        assert subscription.customer_email == 'jane@example.org'
        assert subscription.default_payment_method is None
        assert subscription.tier_id == 'retired'

    @pytest.mark.asyncio
    async def test_customer_default_does_not_count_as_subscription_card(self, gateway, api):
        customer = {'id': 'cus_1', 'email': 'jane@example.org', 'invoice_settings': {'default_payment_method': 'pm_cust'}}
        api.list_subscriptions = AsyncMock(return_value=page(
            {'id': 'sub_card', 'customer': customer, 'status': 'active', 'default_payment_method': 'pm_own',
             'current_period_start': int(utc(2023, 1, 1).timestamp())},
            {'id': 'sub_b', 'customer': customer, 'status': 'active',
             'current_period_start': int(utc(2024, 1, 1).timestamp())},
            {'id': 'sub_c', 'customer': customer, 'status': 'trialing',
             'current_period_start': int(utc(2025, 1, 1).timestamp())},
        ))

        subscriptions = await gateway.list_all_subscriptions()

        assert [s.has_payment_method() for s in subscriptions] == [True, False, False]
        assert choose_subscription_to_keep(subscriptions).id == 'sub_card'

    @pytest.mark.asyncio
    async def test_create_with_trial_returns_setup_confirmation(self, gateway, api):
        api.create_subscription = AsyncMock(return_value={
            'id': 'sub_1',
            'customer': 'cus_1',
            'status': 'trialing',
            'pending_setup_intent': {'id': 'seti_1', 'client_secret': 'seti_secret'},
            'latest_invoice': {'id': 'in_1', 'payment_intent': None},
        })

        creation = await gateway.create_subscription('cus_1', 'price_1', trial_end=utc(2026, 1, 1), idempotency_key='key')

        assert creation.confirmation.kind == ConfirmationKind.SETUP
        assert creation.confirmation.client_secret == 'seti_secret'
        params = api.create_subscription.await_args.kwargs
        assert params['trial_end'] == JAN_1_2026
        assert params['proration_behavior'] == 'none'
        assert params['payment_behavior'] == 'default_incomplete'
        assert params['idempotency_key'] == 'key'

    @pytest.mark.asyncio
    async def test_create_without_trial_returns_payment_confirmation(self, gateway, api):
        api.create_subscription = AsyncMock(return_value={
            'id': 'sub_1',
            'customer': 'cus_1',
            'status': 'incomplete',
            'pending_setup_intent': None,
            'latest_invoice': {'id': 'in_1', 'payment_intent': {'id': 'pi_1', 'client_secret': 'pi_secret'}},
        })

        creation = await gateway.create_subscription('cus_1', 'price_1')

        assert creation.confirmation.kind == ConfirmationKind.PAYMENT
        assert creation.confirmation.intent_id == 'pi_1'
        assert 'trial_end' not in api.create_subscription.await_args.kwargs


class TestPayments:
    @pytest.mark.asyncio
    async def test_history_merges_charges_and_uncharged_intents(self, gateway, api):
        api.list_charges = AsyncMock(return_value=page(
            {'id': 'ch_1', 'payment_intent': 'pi_1', 'status': 'succeeded', 'amount': 12000, 'created': JAN_1_2025},
            {'id': 'ch_2', 'payment_intent': 'pi_2', 'status': 'succeeded', 'refunded': True, 'amount': 12000, 'created': JAN_1_2025 - 10},
        ))
        api.list_payment_intents = AsyncMock(return_value=page(
            {'id': 'pi_1', 'status': 'succeeded', 'amount': 12000, 'created': JAN_1_2025},
            {'id': 'pi_3', 'status': 'requires_payment_method', 'amount': 12000, 'created': JAN_1_2026},
        ))

        payments = await gateway.list_payments('cus_1')

        assert [p.id for p in payments] == ['pi_3', 'ch_1', 'ch_2']
        assert payments[0].status == PaymentStatus.PENDING
        assert payments[1].status == PaymentStatus.SUCCEEDED
        assert payments[2].status == PaymentStatus.FAILED
        assert payments[2].raw_status == 'refunded'

    @pytest.mark.asyncio
    async def test_declined_intent_is_failed(self, gateway, api):
        api.retrieve_payment_intent = AsyncMock(return_value={
            'id': 'pi_1',
            'customer': 'cus_1',
            'status': 'requires_payment_method',
            'amount': 12000,
            'created': JAN_1_2025,
            'last_payment_error': {'code': 'card_declined', 'message': 'Your card was declined.'},
        })

        payment = await gateway.retrieve_payment_intent('pi_1')

        assert payment.status == PaymentStatus.FAILED
        assert payment.failure_code == 'card_declined'


class TestCustomers:
    @pytest.mark.asyncio
    async def test_search_fallback_matches_local_part_and_domain(self, gateway, api):
        api.list_customers = AsyncMock(return_value=page())
        api.search_customers = AsyncMock(return_value=page(
            {'id': 'cus_1', 'email': 'JANE@example.org'},
            {'id': 'cus_2', 'email': 'jane@elsewhere.org'},
        ))

        customers = await gateway.find_customers_by_email('Jane@Example.org')

        assert [c.id for c in customers] == ['cus_1']
        assert api.list_customers.await_count == 2

    @pytest.mark.asyncio
    async def test_deleted_customer_is_none(self, gateway, api):
        api.retrieve_customer = AsyncMock(return_value={'id': 'cus_1', 'deleted': True})

        assert await gateway.retrieve_customer('cus_1') is None

    @pytest.mark.asyncio
    async def test_missing_customer_is_none(self, gateway, api):
        api.retrieve_customer = AsyncMock(side_effect=stripe.InvalidRequestError(
            'No such customer', 'id', code='resource_missing'
        ))

        assert await gateway.retrieve_customer('cus_gone') is None


class TestPrices:
    @pytest.mark.asyncio
    async def test_lookup_by_key(self, gateway, api):
        api.list_prices = AsyncMock(return_value=page(
            {'id': 'price_1', 'unit_amount': 12000, 'currency': 'eur', 'recurring': {'interval': 'year'}, 'lookup_key': 'srh_practicing_yearly'},
        ))

        price = await gateway.find_price_by_lookup_key('srh_practicing_yearly')

        assert (price.id, price.unit_amount, price.interval) == ('price_1', 12000, 'year')
        assert api.list_prices.await_args.kwargs['lookup_keys'] == ['srh_practicing_yearly']

    @pytest.mark.asyncio
    async def test_no_price(self, gateway, api):
        api.list_prices = AsyncMock(return_value=page())

        assert await gateway.find_price_by_lookup_key('srh_unknown_yearly') is None


class TestInvoices:
    @pytest.mark.asyncio
    async def test_draft_is_finalized_before_payment(self, gateway, api):
        api.finalize_invoice = AsyncMock(return_value={'id': 'in_1', 'status': 'open'})
        api.pay_invoice = AsyncMock(return_value={'id': 'in_1', 'status': 'paid'})

        paid = await gateway.pay_invoice(InvoiceRecord(id='in_1', status='draft'))

        assert paid.status == 'paid'
        api.finalize_invoice.assert_awaited_once_with('in_1')
