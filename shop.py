"""storefront routes: catalog, cart, checkout, tracking and provider callbacks"""

import hmac
import logging
from datetime import datetime

from flask import Blueprint, jsonify, request, session

import cart as carts
import catalog
import orders
import promotions
import shipping
from carriers import CarrierClient, cart_weight, prepare_packages
from config import current_config, current_http
from errors import Forbidden, Unauthorized, ValidationError
from payments import PaymentGateway, order_reference
from store import current_store
from utils import to_float

logger = logging.getLogger(__name__)

bp = Blueprint('shop', __name__)

VERSION = '1.4.0'


def _session_cart():
    store = current_store()
    cart = carts.get_cart(store, session.get('cart_id'))
    if not cart:
        cart = carts.new_cart(store)
        session['cart_id'] = cart['id']
    return cart


def _session_customer():
    return orders.find_customer(current_store(), session.get('customer_email'))


def _cart_response(cart):
    return jsonify(carts.cart_view(current_store(), current_config(), cart, _session_customer()))


def _check_callback_secret():
    expected = current_config().callback_secret
    if not expected:
        raise Forbidden('Callbacks are not configured')
    provided = request.headers.get('X-Webhook-Secret', '')
    if not hmac.compare_digest(provided, expected):
        raise Unauthorized('Invalid callback secret')


@bp.route('/health')
def health():
    config = current_config()
    return jsonify({
        'status': 'ok',
        'version': VERSION,
        'demo_mode': config.demo_mode,
        'timestamp': datetime.now().isoformat()
    })


@bp.route('/version')
def version():
    return jsonify({'version': VERSION, **current_config().public()})


# ---------- catalog ----------

@bp.route('/products', methods=['GET'])
def list_products():
    result = catalog.list_products(
        current_store(),
        category=request.args.get('category'),
        q=request.args.get('q'),
        sort=request.args.get('sort', 'name'),
        in_stock=request.args.get('in_stock') == 'true',
        min_price=to_float(request.args.get('min_price')),
        max_price=to_float(request.args.get('max_price')),
    )
    return jsonify([catalog.public_product(p) for p in result])


@bp.route('/products/<pid>', methods=['GET'])
def get_product(pid):
    return jsonify(catalog.public_product(catalog.get_product(current_store(), pid)))


@bp.route('/categories', methods=['GET'])
def list_categories():
    return jsonify(catalog.list_categories(current_store()))


@bp.route('/promotions/active', methods=['GET'])
def active_promotions():
    # storefront banners and badges
    result = []
    for p in promotions.get_active_promotions(current_store()):
        result.append({
            'id': p['id'],
            'name': p['name'],
            'type': p['type'],
            'description': p.get('description'),
            'badge_text': p.get('badge_text'),
            'banner_image': p.get('banner_image'),
            'ends_at': p.get('ends_at'),
            'eligible_products': p.get('eligible_products') or [],
            'eligible_categories': p.get('eligible_categories') or [],
        })
    return jsonify(result)


# ---------- cart ----------

@bp.route('/cart', methods=['GET'])
def get_cart():
    return _cart_response(_session_cart())


@bp.route('/cart/add', methods=['POST'])
def add_to_cart():
    data = request.get_json() or {}
    if not data.get('product_id'):
        raise ValidationError('product_id is required')
    cart = carts.add_item(current_store(), _session_cart(), data['product_id'], data.get('quantity', 1))
    return _cart_response(cart)


@bp.route('/cart/update', methods=['POST', 'PUT'])
def update_cart_item():
    data = request.get_json() or {}
    if not data.get('product_id') or 'quantity' not in data:
        raise ValidationError('product_id and quantity are required')
    cart = carts.update_item(current_store(), _session_cart(), data['product_id'], data['quantity'])
    return _cart_response(cart)


@bp.route('/cart/remove', methods=['POST', 'DELETE'])
def remove_from_cart():
    data = request.get_json() or {}
    if not data.get('product_id'):
        raise ValidationError('product_id is required')
    cart = carts.remove_item(current_store(), _session_cart(), data['product_id'])
    return _cart_response(cart)


@bp.route('/cart/clear', methods=['POST'])
def clear_cart():
    cart = carts.clear_cart(current_store(), _session_cart())
    return _cart_response(cart)


@bp.route('/cart/coupon', methods=['POST'])
def apply_coupon():
    data = request.get_json() or {}
    code = (data.get('code') or '').strip()
    if not code:
        raise ValidationError('Coupon code is required')
    store = current_store()
    cart = carts.refresh_cart(store, _session_cart())
    cart = carts.set_coupon(store, cart, code)
    view = carts.cart_view(store, current_config(), cart, _session_customer())
    if view['totals'].get('coupon_error'):
        carts.set_coupon(store, cart, None)
        raise ValidationError(view['totals']['coupon_error'])
    return jsonify(view)


@bp.route('/cart/coupon', methods=['DELETE'])
def remove_coupon():
    return _cart_response(carts.set_coupon(current_store(), _session_cart(), None))


# ---------- shipping ----------

@bp.route('/shipping/rates', methods=['GET'])
def shipping_rates():
    store = current_store()
    cart = carts.refresh_cart(store, _session_cart())
    state = request.args.get('state', '')
    return jsonify({
        'state': state,
        'options': shipping.shipping_options(store, state, carts.subtotal(cart), cart_weight(cart['items'])),
    })


@bp.route('/shipping/quote', methods=['POST'])
def shipping_quote():
    data = request.get_json() or {}
    destination = data.get('destination') or data
    if not destination.get('postal_code') or not destination.get('state'):
        raise ValidationError('postal_code and state are required')
    cart = carts.refresh_cart(current_store(), _session_cart())
    if not cart['items']:
        raise ValidationError('Cart is empty')
    client = CarrierClient(current_config(), current_http())
    return jsonify(client.get_quotes(destination, prepare_packages(cart['items']), data.get('carriers')))


# ---------- checkout ----------

@bp.route('/checkout', methods=['POST'])
def checkout():
    data = request.get_json() or {}
    config = current_config()
    http = current_http()
    order = orders.checkout(current_store(), config, http, CarrierClient(config, http), _session_cart(), data,
                            gateway=PaymentGateway(config))
    session['customer_email'] = order['customer_email']
    return jsonify(order), 201


@bp.route('/checkout/success', methods=['GET'])
def checkout_success():
    # customers land here from the hosted payment page, usually before the webhook
    config = current_config()
    store = current_store()
    checkout_session = PaymentGateway(config).get_checkout_session(request.args.get('session_id'))
    order = orders.find_order(store, order_reference(checkout_session))
    if checkout_session.get('payment_status') == 'paid':
        order = orders.confirm_payment(store, config, current_http(), order['id'], method='stripe',
                                       transaction_id=checkout_session.get('payment_intent') or checkout_session['id'])
    return jsonify(orders.public_order(order))


@bp.route('/track/<order_number>', methods=['GET'])
def track_order(order_number):
    order = orders.get_order_by_number(current_store(), order_number)
    email = (request.args.get('email') or '').strip().lower()
    if email and email != order['customer_email']:
        raise Unauthorized('Email does not match this order')
    return jsonify(orders.public_order(order))


# ---------- provider callbacks ----------

@bp.route('/webhooks/payment', methods=['POST'])
def payment_callback():
    _check_callback_secret()
    data = request.get_json() or {}
    ref = data.get('order_id') or data.get('order_number')
    if not ref:
        raise ValidationError('order_id or order_number is required')
    status = data.get('status')
    store = current_store()
    if status == 'completed':
        order = orders.confirm_payment(store, current_config(), current_http(), ref,
                                       transaction_id=data.get('transaction_id'), method=data.get('method'))
    elif status == 'failed':
        order = orders.payment_failed(store, ref, data.get('reason'))
    else:
        raise ValidationError('status must be completed or failed')
    return jsonify({'received': True, 'order_number': order['order_number'], 'status': order['status']})


@bp.route('/webhooks/stripe', methods=['POST'])
def stripe_callback():
    event = PaymentGateway(current_config()).construct_event(request.get_data(),
                                                             request.headers.get('Stripe-Signature'))
    logger.info('stripe event %s (%s)', event['type'], event.get('id'))
    order = orders.handle_payment_event(current_store(), current_config(), current_http(), event)
    body = {'received': True}
    if order:
        body.update(order_number=order['order_number'], status=order['status'])
    return jsonify(body)


@bp.route('/webhooks/shipping', methods=['POST'])
def shipping_callback():
    _check_callback_secret()
    data = request.get_json() or {}
    order = orders.handle_tracking_callback(current_store(), current_config(), current_http(), data)
    return jsonify({'received': True, 'order_number': order['order_number'],
                    'tracking_status': order.get('tracking_status'), 'status': order['status']})
