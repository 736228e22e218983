"""
Order lifecycle.

checkout() turns the session cart into a ``pending`` order and reserves the
stock. Payment arrives later through the payment callback (or an admin
moving the order to ``paid``); only then are promotion and coupon usages
recorded and the customer's order count bumped. confirm_payment() is safe to
call more than once for the same order.
"""

import logging

import coupons
import inventory
import notifications
import payments
import promotions
import webhooks
from audit import log_action
from carriers import is_final_status, map_status, prepare_packages
from cart import calc_order_totals, clear_cart, refresh_cart
from errors import NotFound, ValidationError
from shipping import resolve_shipping
from utils import gen_short_id, money, now_iso, to_int, validate_email

logger = logging.getLogger(__name__)

ORDER_STATUSES = ['pending', 'paid', 'processing', 'shipped', 'delivered', 'cancelled', 'refunded', 'on_hold']

TRANSITIONS = {
    'pending': {'paid', 'cancelled', 'on_hold'},
    'paid': {'processing', 'shipped', 'cancelled', 'refunded', 'on_hold'},
    'processing': {'shipped', 'cancelled', 'refunded', 'on_hold'},
    'shipped': {'delivered', 'refunded', 'on_hold'},
    'delivered': {'refunded'},
    'on_hold': {'pending', 'paid', 'processing', 'cancelled'},
    'cancelled': set(),
    'refunded': set(),
}

ADDRESS_FIELDS = ['street', 'number', 'district', 'city', 'state', 'postal_code', 'reference']
REQUIRED_ADDRESS_FIELDS = ['street', 'city', 'state', 'postal_code']


# ---------- customers ----------

def find_customer(store, email):
    if not email:
        return None
    return store.find_one('customers', {'email': email.strip().lower()})


def get_or_create_customer(store, email, name=None, phone=None):
    email = email.strip().lower()
    customer = find_customer(store, email)
    if customer:
        changes = {k: v for k, v in (('name', name), ('phone', phone)) if v and v != customer.get(k)}
        return store.update('customers', customer['id'], changes) if changes else customer
    return store.insert('customers', {
        'email': email,
        'name': name,
        'phone': phone,
        'total_orders': 0,
        'total_spent': 0,
    })


# ---------- checkout ----------

def _clean_address(data):
    address = {f: str(data.get(f) or '').strip() for f in ADDRESS_FIELDS}
    missing = [f for f in REQUIRED_ADDRESS_FIELDS if not address[f]]
    if missing:
        raise ValidationError(f"Missing address fields: {', '.join(missing)}")
    return address


def checkout(store, config, http, carrier_client, cart, data, gateway=None):
    if not cart['items']:
        raise ValidationError('Cart is empty')

    contact = data.get('customer') or data
    email = (contact.get('email') or '').strip().lower()
    name = (contact.get('name') or '').strip()
    phone = (contact.get('phone') or '').strip()
    if not validate_email(email):
        raise ValidationError('A valid email is required')
    if not name:
        raise ValidationError('Name is required')
    address = _clean_address(data.get('shipping_address') or {})

    refresh_cart(store, cart)
    if not cart['items']:
        raise ValidationError('Cart is empty')

    # validate stock
    valid, err = inventory.validate_stock(store, cart['items'])
    if not valid:
        raise ValidationError(err)

    # promotion eligibility looks at the existing customer record
    customer = find_customer(store, email)

    # a free shipping coupon zeroes the line later, resolve the price first
    pre_totals = calc_order_totals(store, config, cart, customer)
    destination = {**address, 'name': name, 'email': email, 'phone': phone, 'country': 'MX'}
    shipping = resolve_shipping(store, carrier_client, data.get('shipping'), destination,
                                pre_totals['subtotal'] - pre_totals['total_discount'], cart['items'])
    totals = calc_order_totals(store, config, cart, customer, shipping)
    if totals.get('coupon_error'):
        raise ValidationError(totals['coupon_error'])
    card = gateway is not None and gateway.configured
    if card and totals['total'] < payments.MIN_CARD_AMOUNT:
        raise ValidationError('Order total is below the card payment minimum', minimum=payments.MIN_CARD_AMOUNT)

    customer = customer or get_or_create_customer(store, email, name, phone)

    items = [{
        'product_id': i['product_id'],
        'category_id': i.get('category_id'),
        'name': i['name'],
        'unit_price': i['unit_price'],
        'quantity': i['quantity'],
        'weight': i.get('weight'),
        'line_total': money(i['unit_price'] * i['quantity']),
    } for i in cart['items']]

    order = store.insert('orders', {
        'order_number': gen_short_id(),
        'customer_id': customer['id'],
        'customer_email': email,
        'customer_name': name,
        'customer_phone': phone,
        'items': items,
        'subtotal': totals['subtotal'],
        'promotion_id': totals['promotion']['id'] if totals['promotion'] else None,
        'promotion_name': totals['promotion']['name'] if totals['promotion'] else None,
        'promotion_discount': totals['promotion_discount'],
        'coupon_id': totals['coupon_id'],
        'coupon_code': totals['coupon_code'],
        'coupon_discount': totals['coupon_discount'],
        'total_discount': totals['total_discount'],
        'tax': totals['tax'],
        'shipping': totals['shipping'],
        'shipping_method': shipping['method'],
        'shipping_rate_id': shipping['rate_id'],
        'shipping_name': shipping['name'],
        'carrier': shipping['carrier'],
        'carrier_service': shipping['service_id'],
        'shipping_address': address,
        'total': totals['total'],
        'currency': totals['currency'],
        'status': 'pending',
        'payment_status': 'unpaid',
        'notes': (data.get('notes') or '').strip(),
        'status_history': [{'from': None, 'to': 'pending', 'changed_at': now_iso(), 'changed_by': 'customer'}],
        'tracking_number': None,
        'stock_restored': False,
    })

    inventory.deduct_stock(store, config, http, items, order['id'])
    clear_cart(store, cart)
    if card:
        order = _open_payment(store, gateway, order)

    webhooks.trigger_event(store, config, http, 'order.created', _event_payload(order))
    log_action(store, 'create_order', {'order_id': order['id'], 'order_number': order['order_number'],
                                       'total': order['total']})
    return order


def _open_payment(store, gateway, order):
    """attach a hosted payment page; the order stays pending if the provider is down"""
    try:
        checkout_session = gateway.create_checkout_session(order)
    except payments.PaymentError as e:
        return store.update('orders', order['id'], {'payment_provider': 'stripe', 'payment_error': e.message})
    return store.update('orders', order['id'], {
        'payment_provider': 'stripe',
        'payment_session_id': checkout_session['id'],
        'payment_url': checkout_session['url'],
    })


def _event_payload(order):
    return {
        'order_id': order['id'],
        'order_number': order['order_number'],
        'status': order['status'],
        'customer_email': order['customer_email'],
        'customer_name': order.get('customer_name'),
        'total': order['total'],
        'currency': order.get('currency'),
        'items': [{'product_id': i['product_id'], 'name': i['name'], 'quantity': i['quantity']}
                  for i in order['items']],
    }


# ---------- lookups ----------

def get_order(store, order_id):
    order = store.get('orders', order_id)
    if not order:
        raise NotFound('Order not found')
    return order


def get_order_by_number(store, order_number):
    order = store.find_one('orders', {'order_number': (order_number or '').strip().upper()})
    if not order:
        raise NotFound('Order not found')
    return order


def find_order(store, ref):
    """by id, falling back to order number"""
    order = store.get('orders', ref) if ref else None
    return order or get_order_by_number(store, ref)


def list_orders(store, status=None, customer_email=None, date_from=None, date_to=None, page=1, per_page=50):
    filters = {}
    if status:
        filters['status'] = status
    if customer_email:
        filters['customer_email'] = customer_email.strip().lower()
    result = store.list('orders', filters, sort='-created_at')
    if date_from:
        result = [o for o in result if o['created_at'] >= date_from]
    if date_to:
        result = [o for o in result if o['created_at'] <= date_to]

    page = max(to_int(page, 1), 1)
    per_page = min(max(to_int(per_page, 50), 1), 200)
    total = len(result)
    start = (page - 1) * per_page
    return {'orders': result[start:start + per_page], 'total': total, 'page': page, 'per_page': per_page}


def public_order(order):
    """what the tracking page shows"""
    return {
        'order_number': order['order_number'],
        'status': order['status'],
        'payment_status': order.get('payment_status'),
        'created_at': order['created_at'],
        'items': [{'name': i['name'], 'quantity': i['quantity']} for i in order['items']],
        'total': order['total'],
        'currency': order.get('currency'),
        'carrier': order.get('carrier'),
        'tracking_number': order.get('tracking_number'),
        'tracking_status': order.get('tracking_status'),
        'status_history': [{'status': h['to'], 'at': h['changed_at']} for h in order.get('status_history', [])],
    }


# ---------- payment ----------

def _history(order, new_status, changed_by, note=None):
    history = list(order.get('status_history') or [])
    entry = {'from': order['status'], 'to': new_status, 'changed_at': now_iso(), 'changed_by': changed_by}
    if note:
        entry['note'] = note
    history.append(entry)
    return history


def _record_sale(store, config, http, order):
    """usage counters and customer stats, once per order"""
    if order.get('promotion_id') and order.get('promotion_discount'):
        promotions.record_promotion_usage(store, order['promotion_id'], order['id'],
                                          order.get('customer_id'), order['promotion_discount'])
        promo = store.get('promotions', order['promotion_id'])
        if promo and promo.get('max_uses') and promo.get('current_uses', 0) >= promo['max_uses']:
            webhooks.trigger_event(store, config, http, 'promotion.depleted', {
                'promotion_id': promo['id'], 'name': promo['name'], 'uses': promo['current_uses'],
            })
    if order.get('coupon_id'):
        coupons.record_coupon_usage(store, order['coupon_id'], order['id'],
                                    order.get('customer_id'), order.get('coupon_discount', 0))

    if order.get('customer_id'):
        customer = store.increment('customers', order['customer_id'], 'total_orders', 1)
        if customer:
            store.increment('customers', customer['id'], 'total_spent', order['total'])
            if customer['total_orders'] == 1:
                webhooks.trigger_event(store, config, http, 'customer.first_purchase', {
                    'customer_id': customer['id'],
                    'email': customer['email'],
                    'name': customer.get('name'),
                    'order_id': order['id'],
                    'order_number': order['order_number'],
                    'total': order['total'],
                })


PAYABLE_STATUSES = ('pending', 'on_hold')
UNPAID_STATES = ('unpaid', 'failed', None)


def confirm_payment(store, config, http, ref, transaction_id=None, method=None, changed_by='payment'):
    order = find_order(store, ref)
    if order.get('payment_status') == 'paid':
        logger.info('order %s already paid, ignoring', order['order_number'])
        return order
    if order['status'] not in PAYABLE_STATUSES:
        raise ValidationError(f"Order cannot be paid while {order['status']}")

    changes = {
        'status': 'paid',
        'payment_status': 'paid',
        'payment_method': method,
        'transaction_id': transaction_id,
        'paid_at': now_iso(),
        'status_history': _history(order, 'paid', changed_by),
    }
    # only the caller that flips the order to paid records the sale
    paid = store.update_if('orders', order['id'], {'status': PAYABLE_STATUSES, 'payment_status': UNPAID_STATES},
                           changes)
    if paid is None:
        order = get_order(store, order['id'])
        if order.get('payment_status') == 'paid':
            logger.info('order %s was paid concurrently, ignoring', order['order_number'])
            return order
        raise ValidationError(f"Order cannot be paid while {order['status']}")
    order = paid
    _record_sale(store, config, http, order)

    webhooks.trigger_event(store, config, http, 'order.paid', _event_payload(order))
    notifications.order_confirmation(store, config, order)
    log_action(store, 'pay_order', {'order_id': order['id'], 'transaction_id': transaction_id})
    return order


def payment_failed(store, ref, reason=None):
    order = find_order(store, ref)
    if order['status'] == 'pending':
        order = store.update('orders', order['id'], {'payment_status': 'failed', 'payment_error': reason})
    log_action(store, 'payment_failed', {'order_id': order['id'], 'reason': reason})
    return order


PAID_EVENTS = ('checkout.session.completed', 'checkout.session.async_payment_succeeded')


def handle_payment_event(store, config, http, event):
    """apply a verified Stripe event, returns the order it touched or None"""
    kind = event['type']
    checkout_session = event['data']['object']
    ref = payments.order_reference(checkout_session)
    if not ref:
        logger.warning('stripe event %s has no order reference', kind)
        return None

    if kind in PAID_EVENTS:
        if checkout_session.get('payment_status') != 'paid':
            # delayed methods (oxxo, transfers) settle in a later event
            logger.info('order %s awaiting %s settlement', ref, kind)
            return find_order(store, ref)
        return confirm_payment(store, config, http, ref, method='stripe',
                               transaction_id=checkout_session.get('payment_intent') or checkout_session.get('id'))
    if kind == 'checkout.session.async_payment_failed':
        return payment_failed(store, ref, 'Payment was declined')
    if kind == 'checkout.session.expired':
        order = find_order(store, ref)
        if order['status'] == 'pending' and order.get('payment_status') != 'paid':
            return update_status(store, config, http, order['id'], 'cancelled',
                                 note='Payment session expired', changed_by='payment')
        return order

    logger.info('ignoring stripe event %s', kind)
    return None


# ---------- status ----------

def update_status(store, config, http, order_id, new_status, note=None, changed_by='admin', tracking_number=None,
                  carrier=None):
    if new_status not in ORDER_STATUSES:
        raise ValidationError(f'Invalid status. Must be one of: {ORDER_STATUSES}')
    order = get_order(store, order_id)
    old_status = order['status']
    if new_status == old_status:
        return order
    if new_status not in TRANSITIONS[old_status]:
        raise ValidationError(f'Cannot move order from {old_status} to {new_status}')

    if new_status == 'paid' and order.get('payment_status') != 'paid':
        return confirm_payment(store, config, http, order['id'], method='manual', changed_by=changed_by)

    changes = {'status': new_status, 'status_history': _history(order, new_status, changed_by, note)}
    if new_status == 'shipped':
        changes['shipped_at'] = now_iso()
        if tracking_number:
            changes['tracking_number'] = tracking_number
        if carrier:
            changes['carrier'] = carrier
    elif new_status == 'delivered':
        changes['delivered_at'] = now_iso()
    elif new_status in ('cancelled', 'refunded'):
        changes[f'{new_status}_at'] = now_iso()
        if note:
            changes['cancel_reason' if new_status == 'cancelled' else 'refund_reason'] = note
        claimed = store.update_if('orders', order['id'], {'stock_restored': (False, None)},
                                  {'stock_restored': True})
        if claimed:
            inventory.restore_stock(store, config, http, order['id'])
        if new_status == 'refunded':
            changes['payment_status'] = 'refunded'
            changes['refund_amount'] = order['total']

    order = store.update('orders', order['id'], changes)

    webhooks.trigger_event(store, config, http, f'order.{new_status}', _event_payload(order))
    if new_status == 'shipped':
        notifications.shipping_confirmation(store, config, order)
    elif new_status == 'delivered':
        notifications.order_delivered(store, config, order)

    log_action(store, 'update_order_status', {'order_id': order['id'], 'old': old_status, 'new': new_status},
               actor=changed_by)
    return order


def add_note(store, order_id, text, author='admin'):
    order = get_order(store, order_id)
    text = (text or '').strip()
    if not text:
        raise ValidationError('Note text is required')
    notes = list(order.get('internal_notes') or [])
    notes.append({'text': text, 'author': author, 'created_at': now_iso()})
    return store.update('orders', order['id'], {'internal_notes': notes})


# ---------- shipping ----------

def _destination(order):
    return {**order['shipping_address'], 'name': order.get('customer_name'),
            'email': order['customer_email'], 'phone': order.get('customer_phone'), 'country': 'MX'}


def create_label(store, config, http, carrier_client, order_id, carrier=None, service_id=None):
    order = get_order(store, order_id)
    if order['status'] not in ('paid', 'processing'):
        raise ValidationError('Labels can only be created for paid orders')
    if order.get('tracking_number'):
        raise ValidationError('Order already has a shipping label')

    carrier = carrier or order.get('carrier')
    service_id = service_id or order.get('carrier_service')
    result = carrier_client.create_label(_destination(order), prepare_packages(order['items']),
                                         carrier, service_id, order['order_number'])
    if not result['success']:
        log_action(store, 'label_failed', {'order_id': order['id'], 'error': result['error']})
        raise ValidationError(result['error'], error_code=result.get('error_code'))

    store.update('orders', order['id'], {
        'tracking_number': result['tracking_number'],
        'label_url': result.get('label_url'),
        'carrier': result['carrier'],
        'carrier_service': result['service'],
        'tracking_status': 'label_created',
        'estimated_delivery': result.get('estimated_delivery'),
    })
    log_action(store, 'create_label', {'order_id': order['id'], 'tracking_number': result['tracking_number']})
    return update_status(store, config, http, order['id'], 'shipped', changed_by='carrier')


def _apply_tracking(store, config, http, order, status, events=None, estimated_delivery=None):
    changes = {'tracking_status': status, 'tracking_updated_at': now_iso()}
    if events is not None:
        changes['tracking_events'] = events
    if estimated_delivery:
        changes['estimated_delivery'] = estimated_delivery
    order = store.update('orders', order['id'], changes)
    if status == 'delivered' and order['status'] == 'shipped':
        order = update_status(store, config, http, order['id'], 'delivered', changed_by='carrier')
    return order


def refresh_tracking(store, config, http, carrier_client, order_id):
    order = get_order(store, order_id)
    if not order.get('tracking_number'):
        raise ValidationError('Order has no tracking number')
    result = carrier_client.track(order['tracking_number'], order.get('carrier'))
    if not result['success']:
        logger.warning('tracking refresh for %s failed: %s', order['order_number'], result['error'])
        return {'order': order, 'tracking': result}
    order = _apply_tracking(store, config, http, order, result['status'], result['events'],
                            result.get('estimated_delivery'))
    return {'order': order, 'tracking': result}


def sync_active_shipments(store, config, http, carrier_client):
    synced = errors = 0
    for order in store.list('orders', {'status': 'shipped'}):
        if not order.get('tracking_number') or is_final_status(order.get('tracking_status')):
            continue
        if refresh_tracking(store, config, http, carrier_client, order['id'])['tracking']['success']:
            synced += 1
        else:
            errors += 1
    return {'synced': synced, 'errors': errors}


def handle_tracking_callback(store, config, http, data):
    """carrier push: {tracking_number, status, ...}"""
    tracking_number = (data.get('tracking_number') or data.get('trackingNumber') or '').strip()
    if not tracking_number:
        raise ValidationError('tracking_number is required')
    order = store.find_one('orders', {'tracking_number': tracking_number})
    if not order:
        raise NotFound('No order with that tracking number')
    status = map_status(data.get('status'))
    logger.info('tracking update %s: %s -> %s', order['order_number'], data.get('status'), status)
    return _apply_tracking(store, config, http, order, status,
                           estimated_delivery=data.get('estimated_delivery') or data.get('estimatedDelivery'))


def add_tracking(store, config, http, order_id, tracking_number, carrier=None):
    """manual tracking for labels bought outside the carrier api"""
    tracking_number = (tracking_number or '').strip()
    if not tracking_number:
        raise ValidationError('tracking_number is required')
    order = get_order(store, order_id)
    if order['status'] in ('paid', 'processing'):
        return update_status(store, config, http, order['id'], 'shipped', tracking_number=tracking_number,
                             carrier=carrier, changed_by='api')
    if order['status'] != 'shipped':
        raise ValidationError(f"Cannot add tracking to a {order['status']} order")
    changes = {'tracking_number': tracking_number}
    if carrier:
        changes['carrier'] = carrier
    return store.update('orders', order['id'], changes)
