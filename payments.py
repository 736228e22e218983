"""
Stripe hosted checkout.

Checkout opens a Stripe Checkout Session for the order total and hands the
customer its url. Stripe reports the outcome to /webhooks/stripe; those
events are only trusted after construct_event() has checked the
Stripe-Signature header against STRIPE_WEBHOOK_SECRET.
"""

import logging

import stripe

from errors import Forbidden, ShopError, ValidationError

logger = logging.getLogger(__name__)

MIN_CARD_AMOUNT = 10.0  # stripe refuses smaller MXN charges


class PaymentError(ShopError):
    status_code = 502


def to_cents(amount):
    return int(round(float(amount) * 100))


class PaymentGateway:

    def __init__(self, config):
        self.config = config

    @property
    def configured(self):
        return self.config.payments_configured

    def _require(self):
        if not self.configured:
            raise ValidationError('Card payments are not configured', error_code='PAYMENTS_NOT_CONFIGURED')

    def create_checkout_session(self, order):
        self._require()
        site = self.config.site_url.rstrip('/')
        description = ', '.join(f"{i['quantity']} x {i['name']}" for i in order['items'])
        try:
            checkout_session = stripe.checkout.Session.create(
                api_key=self.config.stripe_secret_key,
                idempotency_key=f"checkout-{order['id']}",
                mode='payment',
                payment_method_types=['card'],
                line_items=[{
                    'price_data': {
                        'currency': (order.get('currency') or self.config.currency).lower(),
                        'product_data': {'name': f"Pedido #{order['order_number']}",
                                         'description': description[:500]},
                        # discounts and shipping are already in the total
                        'unit_amount': to_cents(order['total']),
                    },
                    'quantity': 1,
                }],
                customer_email=order['customer_email'],
                client_reference_id=order['id'],
                metadata={'order_id': order['id'], 'order_number': order['order_number']},
                success_url=f'{site}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}',
                cancel_url=f"{site}/track/{order['order_number']}",
                locale='es',
            )
        except stripe.StripeError as e:
            logger.error('stripe session for order %s failed: %s', order['order_number'], e)
            raise PaymentError('Payment provider unavailable') from e
        logger.info('stripe session %s created for order %s', checkout_session['id'], order['order_number'])
        return checkout_session

    def get_checkout_session(self, session_id):
        self._require()
        if not session_id:
            raise ValidationError('session_id is required')
        try:
            return stripe.checkout.Session.retrieve(session_id, api_key=self.config.stripe_secret_key)
        except stripe.InvalidRequestError as e:
            raise ValidationError('Unknown payment session') from e
        except stripe.StripeError as e:
            logger.error('stripe session %s lookup failed: %s', session_id, e)
            raise PaymentError('Payment provider unavailable') from e

    def construct_event(self, payload, signature):
        """parse a webhook body, refusing anything Stripe did not sign"""
        self._require()
        if not self.config.stripe_webhook_secret:
            raise Forbidden('Payment webhooks are not configured')
        if not signature:
            raise ValidationError('Missing Stripe-Signature header')
        try:
            return stripe.Webhook.construct_event(payload, signature, self.config.stripe_webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning('rejected stripe webhook: %s', e)
            raise ValidationError('Invalid signature') from e
        except ValueError as e:
            raise ValidationError('Invalid payload') from e


def order_reference(checkout_session):
    metadata = checkout_session.get('metadata') or {}
    return metadata.get('order_id') or checkout_session.get('client_reference_id')
