"""Tests for the subscription lifecycle commands.

Tests cover:
- Cancel at period end and its idempotency
- Reactivation rules
- Payment method update and confirmation
- Invoice retry
- Server-side payment verification
"""

import pytest
import stripe

from dues.src.billing.domain import InvoiceRecord, SetupIntentRecord
from dues.src.billing.shared.exceptions import PaymentError, SubscriptionError
from dues.tests.fakes import make_payment, make_subscription, utc


@pytest.fixture
def subscribed(gateway):
    gateway.add_customer('cus_1')
    gateway.add_subscription(make_subscription())
    gateway.add_payment(make_payment(created_at=utc(2025, 1, 1)))
    return gateway


class TestCancel:
    @pytest.mark.asyncio
    async def test_schedules_cancellation_at_period_end(self, service, subscribed):
        result = await service.cancel('1')

        assert result['success'] is True
        assert result['already_scheduled'] is False
        assert result['cancel_at'] == utc(2026, 1, 1).isoformat()
        (_, subscription_id, params), = subscribed.calls_to('update_subscription')
        assert subscription_id == 'sub_1'
        assert params['cancel_at_period_end'] is True
        assert params['metadata']['canceled_by'] == 'jane@example.org'
        assert subscribed.subscriptions['sub_1'].status.value == 'active'

    @pytest.mark.asyncio
    async def test_second_cancel_is_a_no_op(self, service, subscribed):
        await service.cancel('1')
        result = await service.cancel('1')

        assert result['already_scheduled'] is True
        assert len(subscribed.calls_to('update_subscription')) == 1

    @pytest.mark.asyncio
    async def test_membership_stays_valid_after_cancel(self, service, subscribed):
        await service.cancel('1')
        status = await service.get_status('1')

        assert status['membership']['is_valid'] is True
        assert status['membership']['is_recurring'] is False
        assert status['membership']['cancel_at_period_end'] is True

    @pytest.mark.asyncio
    async def test_no_subscription(self, service):
        with pytest.raises(SubscriptionError) as exc:
            await service.cancel('1')
        assert exc.value.code == 'NO_SUBSCRIPTION'

    @pytest.mark.asyncio
    async def test_canceled_subscription_cannot_be_canceled_again(self, service, gateway):
        gateway.add_customer('cus_1')
        gateway.add_subscription(make_subscription(status='canceled'))

        with pytest.raises(SubscriptionError) as exc:
            await service.cancel('1')
        assert exc.value.code == 'NO_SUBSCRIPTION'

    @pytest.mark.asyncio
    async def test_gateway_failure(self, service, subscribed):
        subscribed.fail_on[('update_subscription', 'sub_1')] = stripe.InvalidRequestError('No such subscription', 'id')

        with pytest.raises(SubscriptionError) as exc:
            await service.cancel('1')
        assert exc.value.code == 'CANCEL_FAILED'


class TestReactivate:
    @pytest.mark.asyncio
    async def test_undoes_scheduled_cancellation(self, service, subscribed):
        await service.cancel('1')
        result = await service.reactivate('1')

        assert result == {'success': True, 'already_active': False, 'subscription_id': 'sub_1'}
        assert subscribed.subscriptions['sub_1'].cancel_at_period_end is False

    @pytest.mark.asyncio
    async def test_already_active(self, service, subscribed):
        result = await service.reactivate('1')

        assert result['already_active'] is True
        assert subscribed.calls_to('update_subscription') == []

    @pytest.mark.asyncio
    async def test_canceled_subscription(self, service, gateway):
        gateway.add_customer('cus_1')
        gateway.add_subscription(make_subscription(status='canceled'))

        with pytest.raises(SubscriptionError) as exc:
            await service.reactivate('1')
        assert exc.value.code == 'SUBSCRIPTION_CANCELED'

    @pytest.mark.asyncio
    async def test_past_due_subscription(self, service, gateway):
        gateway.add_customer('cus_1')
        gateway.add_subscription(make_subscription(status='past_due', cancel_at_period_end=True))

        with pytest.raises(SubscriptionError) as exc:
            await service.reactivate('1')
        assert exc.value.code == 'INVALID_SUBSCRIPTION_STATUS'


class TestPaymentMethod:
    @pytest.mark.asyncio
    async def test_update_returns_setup_confirmation(self, service, subscribed):
        result = await service.update_payment_method('1')

        assert result['confirmation']['type'] == 'setup'
        assert result['confirmation']['client_secret'] == 'seti_secret'
        (_, customer_id, params), = subscribed.calls_to('create_setup_intent')
        assert customer_id == 'cus_1'
        assert params['metadata']['subscription_id'] == 'sub_1'
        assert subscribed.calls_to('update_subscription') == []

    @pytest.mark.asyncio
    async def test_confirm_applies_card_to_live_subscriptions(self, service, subscribed):
        subscribed.add_subscription(make_subscription('sub_old', status='canceled'))
        subscribed.setup_intents['seti_1'] = SetupIntentRecord(
            id='seti_1', status='succeeded', customer_id='cus_1', payment_method='pm_new'
        )

        result = await service.confirm_payment_method('seti_1', member_id='1')

        assert result['updated_subscriptions'] == ['sub_1']
        assert subscribed.customers['cus_1'].default_payment_method == 'pm_new'
        assert subscribed.subscriptions['sub_1'].default_payment_method == 'pm_new'
        assert subscribed.subscriptions['sub_old'].default_payment_method is None

    @pytest.mark.asyncio
    async def test_confirm_requires_succeeded_setup(self, service, subscribed):
        subscribed.setup_intents['seti_1'] = SetupIntentRecord(
            id='seti_1', status='requires_payment_method', customer_id='cus_1'
        )

        with pytest.raises(PaymentError) as exc:
            await service.confirm_payment_method('seti_1', member_id='1')
        assert exc.value.code == 'SETUP_NOT_SUCCEEDED'
        assert subscribed.mutations == []

    @pytest.mark.asyncio
    async def test_confirm_rejects_other_members_setup_intent(self, service, subscribed):
        subscribed.add_customer('cus_other', 'someone@example.org')
        subscribed.setup_intents['seti_1'] = SetupIntentRecord(
            id='seti_1', status='succeeded', customer_id='cus_other', payment_method='pm_x'
        )

        with pytest.raises(PaymentError) as exc:
            await service.confirm_payment_method('seti_1', member_id='1')
        assert exc.value.code == 'SETUP_NOT_FOUND'
        assert subscribed.mutations == []


class TestRetryPayment:
    @pytest.fixture
    def past_due(self, gateway):
        gateway.add_customer('cus_1')
        gateway.add_subscription(make_subscription(status='past_due'))
        return gateway

    @pytest.mark.asyncio
    async def test_pays_latest_open_invoice(self, service, past_due):
        past_due.invoices['sub_1'] = [InvoiceRecord(id='in_2', status='open', amount_due=12000, subscription_id='sub_1')]

        result = await service.retry_payment('1')

        assert result == {'success': True, 'invoice_id': 'in_2', 'status': 'paid', 'subscription_id': 'sub_1'}

    @pytest.mark.asyncio
    async def test_latest_invoice_already_paid(self, service, past_due):
        past_due.invoices['sub_1'] = [InvoiceRecord(id='in_2', status='paid', subscription_id='sub_1')]

        with pytest.raises(PaymentError) as exc:
            await service.retry_payment('1')
        assert exc.value.code == 'INVOICE_ALREADY_PAID'

    @pytest.mark.asyncio
    async def test_no_invoice(self, service, past_due):
        with pytest.raises(PaymentError) as exc:
            await service.retry_payment('1')
        assert exc.value.code == 'NO_RETRYABLE_INVOICE'

    @pytest.mark.asyncio
    async def test_declined_card(self, service, past_due):
        past_due.invoices['sub_1'] = [InvoiceRecord(id='in_2', status='open', subscription_id='sub_1')]
        past_due.fail_on[('pay_invoice', 'in_2')] = stripe.CardError('Your card was declined.', None, 'card_declined')

        with pytest.raises(PaymentError) as exc:
            await service.retry_payment('1')
        assert exc.value.code == 'PAYMENT_DECLINED'
        assert exc.value.status_code == 402

    @pytest.mark.asyncio
    async def test_active_subscription_has_nothing_to_retry(self, service, subscribed):
        with pytest.raises(SubscriptionError) as exc:
            await service.retry_payment('1')
        assert exc.value.code == 'INVALID_SUBSCRIPTION_STATUS'

    @pytest.mark.asyncio
    async def test_unknown_subscription_id(self, service, past_due):
        with pytest.raises(SubscriptionError) as exc:
            await service.retry_payment('1', subscription_id='sub_missing')
        assert exc.value.code == 'NO_SUBSCRIPTION'


class TestVerifyPayment:
    @pytest.mark.asyncio
    async def test_succeeded_payment(self, service, subscribed):
        result = await service.verify_payment('1', 'pi_1')

        assert result['success'] is True
        assert result['payment']['status'] == 'succeeded'
        assert result['membership']['is_valid'] is True

    @pytest.mark.asyncio
    async def test_pending_payment_is_not_success(self, service, subscribed):
        subscribed.add_payment(make_payment('pi_2', utc(2025, 6, 14), status='pending'))

        result = await service.verify_payment('1', 'pi_2')

        assert result['success'] is False
        assert result['payment']['status'] == 'pending'

    @pytest.mark.asyncio
    async def test_payment_of_another_customer(self, service, subscribed):
        subscribed.add_payment(make_payment('pi_other', customer_id='cus_other'))

        with pytest.raises(PaymentError) as exc:
            await service.verify_payment('1', 'pi_other')
        assert exc.value.code == 'PAYMENT_NOT_FOUND'
