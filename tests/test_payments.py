from unittest.mock import patch

import pytest
import stripe

from app import create_app
from config import Config
from conftest import ADMIN_KEY, CALLBACK_SECRET
from payments import PaymentGateway, to_cents
from store import MemoryStore

STRIPE_KEY = 'sk_test_' + 'x' * 24


@pytest.fixture
def config():
    return Config(env='testing', secret_key='test-secret', admin_api_key=ADMIN_KEY,
                  admin_email='admin@example.com', callback_secret=CALLBACK_SECRET,
                  stripe_secret_key=STRIPE_KEY, stripe_webhook_secret='whsec_test',
                  site_url='https://shop.example.com/')


@pytest.fixture
def session_create():
    with patch('stripe.checkout.Session.create') as create:
        create.return_value = {'id': 'cs_test_1', 'url': 'https://checkout.stripe.com/c/cs_test_1'}
        yield create


def place_order(client, checkout_body, product_id='multi-1', quantity=1):
    client.post('/cart/add', json={'product_id': product_id, 'quantity': quantity})
    return client.post('/checkout', json=checkout_body)


def event(kind, order, **fields):
    obj = {'id': 'cs_test_1', 'object': 'checkout.session', 'client_reference_id': order['id'],
           'metadata': {'order_id': order['id'], 'order_number': order['order_number']},
           'payment_status': 'paid', 'payment_intent': 'pi_123'}
    obj.update(fields)
    return {'id': 'evt_1', 'type': kind, 'data': {'object': obj}}


def post_event(client, evt):
    with patch('stripe.Webhook.construct_event', return_value=evt) as construct:
        resp = client.post('/webhooks/stripe', data=b'{"raw": true}', headers={'Stripe-Signature': 't=1,v1=abc'})
    construct.assert_called_once_with(b'{"raw": true}', 't=1,v1=abc', 'whsec_test')
    return resp


def test_configured_only_with_a_real_secret_key():
    assert PaymentGateway(Config(stripe_secret_key=STRIPE_KEY)).configured
    assert not PaymentGateway(Config(stripe_secret_key='pk_test_' + 'x' * 24)).configured
    assert not PaymentGateway(Config()).configured
    assert not Config.from_env({'STRIPE_SECRET_KEY': 'your-stripe-secret-key'}).payments_configured
    assert to_cents(359.1) == 35910


def test_checkout_opens_payment_session(client, store, checkout_body, session_create):
    resp = place_order(client, checkout_body)
    assert resp.status_code == 201
    order = resp.get_json()
    assert order['payment_url'] == 'https://checkout.stripe.com/c/cs_test_1'
    assert store.get('orders', order['id'])['payment_session_id'] == 'cs_test_1'

    kwargs = session_create.call_args[1]
    assert kwargs['api_key'] == STRIPE_KEY
    assert kwargs['client_reference_id'] == order['id']
    assert kwargs['customer_email'] == 'maria@example.com'
    line = kwargs['line_items'][0]
    assert line['price_data']['unit_amount'] == 35900
    assert line['price_data']['currency'] == 'mxn'
    assert kwargs['success_url'] == 'https://shop.example.com/checkout/success?session_id={CHECKOUT_SESSION_ID}'


def test_provider_outage_keeps_the_order(client, store, checkout_body, session_create):
    session_create.side_effect = stripe.APIConnectionError('network down')
    resp = place_order(client, checkout_body)
    assert resp.status_code == 201
    order = resp.get_json()
    assert order['status'] == 'pending'
    assert order['payment_error'] == 'Payment provider unavailable'
    assert 'payment_url' not in order


def test_card_minimum(client, store, checkout_body, session_create):
    store.update('products', 'prop-1', {'price': 4.0})
    store.update('shipping_rates', 'rate-local-std', {'price': 0})
    resp = place_order(client, checkout_body, product_id='prop-1')
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'Order total is below the card payment minimum'
    session_create.assert_not_called()


def test_signed_completion_marks_order_paid(client, store, checkout_body, session_create):
    order = place_order(client, checkout_body).get_json()
    resp = post_event(client, event('checkout.session.completed', order))
    assert resp.status_code == 200
    assert resp.get_json() == {'received': True, 'order_number': order['order_number'], 'status': 'paid'}
    saved = store.get('orders', order['id'])
    assert saved['payment_method'] == 'stripe'
    assert saved['transaction_id'] == 'pi_123'

    # stripe redelivers events
    post_event(client, event('checkout.session.completed', order))
    assert store.get('customers', order['customer_id'])['total_orders'] == 1


def test_delayed_payment_waits_for_settlement(client, store, checkout_body, session_create):
    order = place_order(client, checkout_body).get_json()
    post_event(client, event('checkout.session.completed', order, payment_status='unpaid'))
    assert store.get('orders', order['id'])['payment_status'] == 'unpaid'
    post_event(client, event('checkout.session.async_payment_failed', order))
    assert store.get('orders', order['id'])['payment_status'] == 'failed'


def test_expired_session_cancels_and_restocks(client, store, checkout_body, session_create):
    order = place_order(client, checkout_body, quantity=2).get_json()
    assert store.get('products', 'multi-1')['stock_quantity'] == 48
    resp = post_event(client, event('checkout.session.expired', order, payment_status='unpaid'))
    assert resp.get_json()['status'] == 'cancelled'
    assert store.get('products', 'multi-1')['stock_quantity'] == 50


def test_unrelated_events_are_acknowledged(client):
    resp = post_event(client, {'id': 'evt_2', 'type': 'customer.created', 'data': {'object': {'id': 'cus_1'}}})
    assert resp.get_json() == {'received': True}


def test_unsigned_or_forged_events_are_rejected(client):
    resp = client.post('/webhooks/stripe', data=b'{}')
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'Missing Stripe-Signature header'

    forged = stripe.SignatureVerificationError('No signatures found', 't=1,v1=bad')
    with patch('stripe.Webhook.construct_event', side_effect=forged):
        resp = client.post('/webhooks/stripe', data=b'{}', headers={'Stripe-Signature': 't=1,v1=bad'})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'Invalid signature'


def test_stripe_webhook_needs_configuration(http):
    app = create_app(Config(env='testing'), MemoryStore(), http)
    resp = app.test_client().post('/webhooks/stripe', data=b'{}', headers={'Stripe-Signature': 'x'})
    assert resp.status_code == 400
    assert resp.get_json()['error_code'] == 'PAYMENTS_NOT_CONFIGURED'

    app = create_app(Config(env='testing', stripe_secret_key=STRIPE_KEY), MemoryStore(), http)
    resp = app.test_client().post('/webhooks/stripe', data=b'{}', headers={'Stripe-Signature': 'x'})
    assert resp.status_code == 403


def test_success_page_confirms_payment(client, store, checkout_body, session_create):
    order = place_order(client, checkout_body).get_json()
    paid = event('checkout.session.completed', order)['data']['object']
    with patch('stripe.checkout.Session.retrieve', return_value=paid) as retrieve:
        resp = client.get('/checkout/success?session_id=cs_test_1')
    retrieve.assert_called_once_with('cs_test_1', api_key=STRIPE_KEY)
    assert resp.status_code == 200
    assert resp.get_json()['payment_status'] == 'paid'
    assert store.get('orders', order['id'])['status'] == 'paid'
    assert client.get('/checkout/success').status_code == 400
