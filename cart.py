"""
Server-side shopping cart.

The browser session only carries a cart id; the cart itself lives in the
``carts`` collection so it survives restarts on MongoDB. Line prices are
refreshed from the catalog every time the cart is priced.
"""

import logging

from coupons import validate_coupon
from errors import NotFound, ValidationError
from promotions import get_best_promotion
from utils import money, now_iso, to_int

logger = logging.getLogger(__name__)

MAX_QTY_PER_LINE = 100
MAX_ITEMS_PER_ORDER = 50


def unit_price(product):
    return float(product.get('sale_price') or product['price'])


def new_cart(store):
    return store.insert('carts', {'items': [], 'coupon_code': None, 'updated_at': now_iso()})


def get_cart(store, cart_id):
    if not cart_id:
        return None
    return store.get('carts', cart_id)


def _save(store, cart):
    return store.update('carts', cart['id'], {
        'items': cart['items'],
        'coupon_code': cart.get('coupon_code'),
        'updated_at': now_iso(),
    })


def _line(product, quantity):
    return {
        'product_id': product['id'],
        'category_id': product.get('category_id'),
        'name': product['name'],
        'slug': product.get('slug'),
        'unit_price': unit_price(product),
        'weight': product.get('weight'),
        'image_url': product.get('image_url'),
        'quantity': quantity,
        'max_quantity': product.get('stock_quantity', 0),
    }


def total_quantity(cart):
    return sum(item['quantity'] for item in cart['items'])


def _parse_qty(quantity, default=None):
    qty = to_int(quantity, default)
    if qty is None:
        raise ValidationError('Quantity must be a whole number')
    return qty


def add_item(store, cart, product_id, quantity=1):
    qty = _parse_qty(quantity, 1)
    if qty < 1:
        raise ValidationError('Quantity must be at least 1')

    product = store.get('products', product_id)
    if not product or not product.get('is_active', True):
        raise NotFound('Product not found')

    existing = next((i for i in cart['items'] if i['product_id'] == product_id), None)
    new_qty = qty + (existing['quantity'] if existing else 0)
    if new_qty > MAX_QTY_PER_LINE:
        raise ValidationError(f'Maximum {MAX_QTY_PER_LINE} per item')
    if total_quantity(cart) + qty > MAX_ITEMS_PER_ORDER:
        raise ValidationError(f'Cart cannot exceed {MAX_ITEMS_PER_ORDER} items')
    if new_qty > product.get('stock_quantity', 0):
        raise ValidationError(f"Only {product.get('stock_quantity', 0)} units available",
                              available=product.get('stock_quantity', 0))

    if existing:
        existing.update(_line(product, new_qty))
    else:
        cart['items'].append(_line(product, qty))
    return _save(store, cart)


def update_item(store, cart, product_id, quantity):
    qty = _parse_qty(quantity)
    item = next((i for i in cart['items'] if i['product_id'] == product_id), None)
    if not item:
        raise NotFound('Item not in cart')
    if qty <= 0:
        cart['items'].remove(item)
        return _save(store, cart)
    if qty > MAX_QTY_PER_LINE:
        raise ValidationError(f'Maximum {MAX_QTY_PER_LINE} per item')
    if total_quantity(cart) - item['quantity'] + qty > MAX_ITEMS_PER_ORDER:
        raise ValidationError(f'Cart cannot exceed {MAX_ITEMS_PER_ORDER} items')
    product = store.get('products', product_id)
    stock = product.get('stock_quantity', 0) if product else 0
    if qty > stock:
        raise ValidationError(f'Only {stock} units available', available=stock)
    item['quantity'] = qty
    return _save(store, cart)


def remove_item(store, cart, product_id):
    before = len(cart['items'])
    cart['items'] = [i for i in cart['items'] if i['product_id'] != product_id]
    if len(cart['items']) == before:
        raise NotFound('Item not in cart')
    return _save(store, cart)


def clear_cart(store, cart):
    cart['items'] = []
    cart['coupon_code'] = None
    return _save(store, cart)


def set_coupon(store, cart, code):
    cart['coupon_code'] = (code or '').strip().upper() or None
    return _save(store, cart)


def refresh_cart(store, cart):
    """re-read prices and stock, drop products that are gone"""
    items = []
    for item in cart['items']:
        product = store.get('products', item['product_id'])
        if not product or not product.get('is_active', True):
            logger.info('dropping %s from cart %s, no longer sold', item['product_id'], cart['id'])
            continue
        items.append(_line(product, item['quantity']))
    cart['items'] = items
    return cart


def subtotal(cart):
    return money(sum(i['unit_price'] * i['quantity'] for i in cart['items']))


def pricing_cart(cart):
    """the shape the promotion engine takes"""
    return {
        'items': [{
            'product_id': i['product_id'],
            'category_id': i.get('category_id'),
            'unit_price': i['unit_price'],
            'quantity': i['quantity'],
        } for i in cart['items']],
        'subtotal': subtotal(cart),
    }


def calc_order_totals(store, config, cart, customer=None, shipping=None, now=None):
    """subtotal - promotion - coupon + tax + shipping, one promotion at most"""
    sub = subtotal(cart)
    promo = None
    promotion_discount = 0.0
    if cart['items']:
        promo = get_best_promotion(store, pricing_cart(cart), customer, now, config.loyalty_min_orders)
        if promo:
            promotion_discount = min(promo['calculated_discount'], sub)

    after_promotion = sub - promotion_discount
    coupon_discount = 0.0
    coupon = None
    coupon_error = None
    free_shipping = False
    if cart.get('coupon_code') and cart['items']:
        result = validate_coupon(store, cart['coupon_code'], after_promotion,
                                 customer.get('id') if customer else None, now)
        if result['valid']:
            coupon = result['coupon']
            coupon_discount = result['discount']
            free_shipping = result['free_shipping']
        else:
            coupon_error = result['message']

    taxable = max(after_promotion - coupon_discount, 0)
    tax = taxable * config.tax_rate
    shipping_cost = 0.0 if free_shipping else float((shipping or {}).get('cost') or 0)
    total = max(taxable + tax + shipping_cost, 0)

    result = {
        'subtotal': money(sub),
        'promotion': {
            'id': promo['id'],
            'name': promo['name'],
            'type': promo['type'],
            'badge': promo.get('badge_text'),
            'discount': money(promotion_discount),
        } if promo else None,
        'promotion_discount': money(promotion_discount),
        'coupon_code': coupon['code'] if coupon else None,
        'coupon_id': coupon['id'] if coupon else None,
        'coupon_discount': money(coupon_discount),
        'free_shipping': free_shipping,
        'total_discount': money(promotion_discount + coupon_discount),
        'tax': money(tax),
        'shipping': money(shipping_cost),
        'total': money(total),
        'currency': config.currency,
    }
    if coupon_error:
        result['coupon_error'] = coupon_error
    return result


def cart_view(store, config, cart, customer=None):
    refresh_cart(store, cart)
    return {
        'id': cart['id'],
        'items': [{**i, 'line_total': money(i['unit_price'] * i['quantity'])} for i in cart['items']],
        'item_count': len(cart['items']),
        'total_quantity': total_quantity(cart),
        'coupon_code': cart.get('coupon_code'),
        'totals': calc_order_totals(store, config, cart, customer),
    }
