"""
Promotions: flash sales, bundles, BOGO, volume tiers and customer-based discounts.

evaluate() and select_best_promotion() are pure functions over a cart dict:

    {'items': [{'product_id', 'category_id', 'unit_price', 'quantity'}, ...],
     'subtotal': float}

Only one promotion is ever applied to an order (the one with the biggest
discount). The ``stackable`` flag is stored for the admin but ignored here.
Usage counters only move when an order is paid, see record_promotion_usage().
"""

import logging
from datetime import datetime

from errors import NotFound, ValidationError
from utils import js_weekday, money, now_iso, parse_datetime, to_float, to_int, to_list

logger = logging.getLogger(__name__)

PROMOTION_TYPES = {
    'flash_sale': {'name': 'Flash Sale', 'description': 'Venta relámpago con temporizador'},
    'bundle': {'name': 'Bundle/Combo', 'description': 'Paquetes de productos con descuento'},
    'bogo': {'name': 'BOGO', 'description': 'Buy One Get One (2x1, 3x2, etc)'},
    'tiered': {'name': 'Descuento por Volumen', 'description': 'Descuento escalonado por cantidad'},
    'seasonal': {'name': 'Temporada', 'description': 'Promociones de temporada'},
    'first_purchase': {'name': 'Primera Compra', 'description': 'Descuento para nuevos clientes'},
    'loyalty': {'name': 'Lealtad', 'description': 'Recompensas para clientes recurrentes'},
    'cart_value': {'name': 'Valor de Carrito', 'description': 'Descuento por monto de compra'},
}

DISCOUNT_TYPES = ['percentage', 'fixed']

DEFAULT_LOYALTY_MIN_ORDERS = 1
DEFAULT_BUY_QUANTITY = 2
DEFAULT_GET_QUANTITY = 1

# type-specific settings, read from config first and then from the record itself
CONFIG_KEYS = ['bundle_products', 'bundle_price', 'buy_quantity', 'get_quantity',
               'tiers', 'maximum_discount', 'min_orders']


def _setting(promotion, key, default=None):
    config = promotion.get('config')
    if not isinstance(config, dict):
        config = {}
    value = config.get(key)
    if value is None:
        value = promotion.get(key)
    return default if value is None else value


def _price(item):
    price = item.get('unit_price')
    if price is None:
        price = item.get('price')
    return float(price or 0)


def _qty(item):
    return int(item.get('quantity') or 0)


def _items(cart):
    return cart.get('items') or []


def _subtotal(cart):
    if cart.get('subtotal') is not None:
        return float(cart['subtotal'])
    return sum(_price(i) * _qty(i) for i in _items(cart))


def is_item_eligible(item, promotion):
    products = promotion.get('eligible_products') or []
    categories = promotion.get('eligible_categories') or []
    if not products and not categories:
        return True
    if item.get('product_id') in products:
        return True
    if item.get('category_id') is not None and item.get('category_id') in categories:
        return True
    return False


def _eligible(promotion, cart):
    qty = 0
    subtotal = 0.0
    lowest = None
    for item in _items(cart):
        if not is_item_eligible(item, promotion):
            continue
        price = _price(item)
        qty += _qty(item)
        subtotal += price * _qty(item)
        if lowest is None or price < lowest:
            lowest = price
    return qty, subtotal, lowest


# ---------- calculators ----------

def _flash_sale_discount(promotion, cart):
    _, subtotal, _ = _eligible(promotion, cart)
    value = float(promotion.get('discount_value') or 0)
    if promotion.get('discount_type') == 'percentage':
        return subtotal * value / 100
    return min(value, subtotal)


def _bundle_discount(promotion, cart):
    bundle = _setting(promotion, 'bundle_products', [])
    bundle_price = float(_setting(promotion, 'bundle_price', 0))
    if not bundle:
        return 0
    in_cart = {i.get('product_id') for i in _items(cart)}
    if not all(pid in in_cart for pid in bundle):
        return 0
    # one unit of each bundle product, however many are in the cart
    original = sum(_price(i) for i in _items(cart) if i.get('product_id') in bundle)
    return max(0, original - bundle_price)


def _bogo_discount(promotion, cart):
    buy = int(_setting(promotion, 'buy_quantity', DEFAULT_BUY_QUANTITY))
    get = int(_setting(promotion, 'get_quantity', DEFAULT_GET_QUANTITY))
    if buy <= 0 or get < 0:
        raise ValueError(f'bad buy/get quantities {buy}/{get}')
    qty, _, lowest = _eligible(promotion, cart)
    free = (qty // buy) * get
    if free == 0 or lowest is None:
        return 0
    value = promotion.get('discount_value')
    percent = 100.0 if value is None else float(value)
    return free * lowest * percent / 100


def _tiered_discount(promotion, cart):
    tiers = _setting(promotion, 'tiers', [])
    if not tiers:
        return 0
    qty, subtotal, _ = _eligible(promotion, cart)
    for tier in sorted(tiers, key=lambda t: float(t['min_quantity']), reverse=True):
        if qty >= float(tier['min_quantity']):
            percent = tier.get('discount')
            if percent is None:
                percent = tier['discount_percent']
            return subtotal * float(percent) / 100
    return 0


def _cart_value_discount(promotion, cart):
    minimum = float(promotion.get('min_cart_value') or 0)
    subtotal = _subtotal(cart)
    if subtotal < minimum:
        return 0
    value = float(promotion.get('discount_value') or 0)
    if promotion.get('discount_type') == 'percentage':
        return subtotal * value / 100
    return value


def _simple_discount(promotion, cart):
    subtotal = _subtotal(cart)
    value = float(promotion.get('discount_value') or 0)
    if promotion.get('discount_type') == 'percentage':
        discount = subtotal * value / 100
        cap = _setting(promotion, 'maximum_discount')
        if cap:
            discount = min(discount, float(cap))
        return discount
    return min(value, subtotal)


CALCULATORS = {
    'flash_sale': _flash_sale_discount,
    'seasonal': _flash_sale_discount,
    'bundle': _bundle_discount,
    'bogo': _bogo_discount,
    'tiered': _tiered_discount,
    'cart_value': _cart_value_discount,
    'first_purchase': _simple_discount,
    'loyalty': _simple_discount,
}


# ---------- evaluation ----------

def _window_error(promotion, now):
    starts_at = promotion.get('starts_at')
    ends_at = promotion.get('ends_at')
    starts = parse_datetime(starts_at)
    ends = parse_datetime(ends_at)
    if (starts_at and starts is None) or (ends_at and ends is None):
        logger.warning('promotion %s has unreadable dates', promotion.get('id'))
        return 'Invalid promotion dates'
    if starts and now < starts:
        return 'Promotion has not started yet'
    if ends and now > ends:
        return 'Promotion has expired'
    return None


def _is_depleted(promotion):
    max_uses = promotion.get('max_uses')
    return bool(max_uses) and (promotion.get('current_uses') or 0) >= max_uses


def evaluate(promotion, cart, customer=None, now=None, loyalty_min_orders=DEFAULT_LOYALTY_MIN_ORDERS):
    """check one promotion against a cart, returns {applicable, discount, message, badge}"""
    now = now or datetime.now()
    result = {
        'applicable': False,
        'discount': 0.0,
        'message': '',
        'badge': promotion.get('badge_text'),
    }

    error = _window_error(promotion, now)
    if error:
        result['message'] = error
        return result

    days = promotion.get('days_of_week') or []
    if days:
        try:
            allowed = {int(d) for d in days}
        except (TypeError, ValueError):
            logger.warning('promotion %s has bad days_of_week %r', promotion.get('id'), days)
            result['message'] = 'Invalid promotion schedule'
            return result
        if js_weekday(now) not in allowed:
            result['message'] = 'Promotion is not valid today'
            return result

    if _is_depleted(promotion):
        result['message'] = 'Promotion is sold out'
        return result

    kind = promotion.get('type')
    orders_so_far = int((customer or {}).get('total_orders') or 0)
    if kind == 'first_purchase' and customer and orders_so_far > 0:
        result['message'] = 'Only valid on your first purchase'
        return result
    if kind == 'loyalty':
        minimum = to_int(_setting(promotion, 'min_orders', loyalty_min_orders))
        if minimum is None:
            logger.warning('promotion %s has bad min_orders %r', promotion.get('id'),
                           _setting(promotion, 'min_orders'))
            result['message'] = 'Invalid promotion configuration'
            return result
        if not customer or orders_so_far < minimum:
            result['message'] = 'Requires previous purchases'
            return result

    calculator = CALCULATORS.get(kind)
    if calculator is None:
        logger.warning('promotion %s has unknown type %r', promotion.get('id'), kind)
        discount = 0
    else:
        try:
            discount = calculator(promotion, cart)
        except (TypeError, ValueError, KeyError, AttributeError) as e:
            logger.warning('promotion %s is misconfigured: %s', promotion.get('id'), e)
            discount = 0

    result['discount'] = money(max(discount, 0))
    if result['discount'] > 0:
        result['applicable'] = True
        result['message'] = promotion.get('badge_text') or 'Discount applied'
    else:
        result['message'] = 'Does not apply to your cart'
    return result


def select_best_promotion(promotions, cart, customer=None, now=None,
                          loyalty_min_orders=DEFAULT_LOYALTY_MIN_ORDERS):
    """biggest discount wins, then higher priority, then whichever came first"""
    best = None
    best_key = None
    for promo in promotions:
        result = evaluate(promo, cart, customer, now, loyalty_min_orders)
        if not result['applicable']:
            continue
        key = (result['discount'], to_int(promo.get('priority'), 0))
        if best_key is None or key > best_key:
            best_key = key
            best = {**promo, 'calculated_discount': result['discount'], 'message': result['message']}
    return best


# ---------- store-backed lookups ----------

def get_active_promotions(store, now=None):
    now = now or datetime.now()
    active = []
    for promo in store.list('promotions', {'is_active': True}):
        if _window_error(promo, now) or _is_depleted(promo):
            continue
        active.append(promo)
    active.sort(key=lambda p: to_int(p.get('priority'), 0), reverse=True)
    return active


def customer_usage_count(store, promotion_id, customer_id):
    return store.count('promotion_usages', {'promotion_id': promotion_id, 'customer_id': customer_id})


def get_best_promotion(store, cart, customer=None, now=None,
                       loyalty_min_orders=DEFAULT_LOYALTY_MIN_ORDERS):
    candidates = []
    for promo in get_active_promotions(store, now):
        cap = promo.get('max_uses_per_customer')
        if cap and customer and customer.get('id'):
            if customer_usage_count(store, promo['id'], customer['id']) >= cap:
                continue
        candidates.append(promo)
    return select_best_promotion(candidates, cart, customer, now, loyalty_min_orders)


def record_promotion_usage(store, promotion_id, order_id, customer_id, discount):
    usage = store.insert('promotion_usages', {
        'promotion_id': promotion_id,
        'order_id': order_id,
        'customer_id': customer_id,
        'discount_applied': money(discount),
    })
    store.increment('promotions', promotion_id, 'current_uses', 1)
    logger.info('promotion %s used on order %s (%.2f)', promotion_id, order_id, discount)
    return usage


# ---------- admin ----------

def promotion_status(promotion, now=None):
    now = now or datetime.now()
    starts = parse_datetime(promotion.get('starts_at'))
    ends = parse_datetime(promotion.get('ends_at'))
    if starts and starts > now:
        return 'scheduled'
    if ends and ends < now:
        return 'ended'
    return 'running'


def list_promotions(store, active=None, type=None, status=None, now=None):
    filters = {}
    if active is not None:
        filters['is_active'] = active
    if type:
        filters['type'] = type
    promos = store.list('promotions', filters, sort=[('priority', -1), ('created_at', -1)])
    if status:
        promos = [p for p in promos if promotion_status(p, now) == status]
    return promos


def get_promotion(store, promotion_id):
    promo = store.get('promotions', promotion_id)
    if not promo:
        raise NotFound('Promotion not found')
    return promo


def _clean_promotion(data, partial=False):
    out = {}
    if not partial or 'name' in data:
        name = (data.get('name') or '').strip()
        if not name:
            raise ValidationError('Name is required')
        out['name'] = name
    if not partial or 'type' in data:
        if data.get('type') not in PROMOTION_TYPES:
            raise ValidationError(f"Invalid type. Must be one of: {list(PROMOTION_TYPES)}")
        out['type'] = data['type']
    if not partial or 'discount_type' in data:
        discount_type = data.get('discount_type') or 'percentage'
        if discount_type not in DISCOUNT_TYPES:
            raise ValidationError(f'Invalid discount type. Must be one of: {DISCOUNT_TYPES}')
        out['discount_type'] = discount_type

    if not partial or 'discount_value' in data:
        out['discount_value'] = to_float(data.get('discount_value'), 0.0)
        if out['discount_value'] < 0:
            raise ValidationError('Discount value cannot be negative')
    for field in ('min_cart_value',):
        if not partial or field in data:
            out[field] = to_float(data.get(field))
    for field in ('max_uses', 'max_uses_per_customer'):
        if not partial or field in data:
            out[field] = to_int(data.get(field))
    if not partial or 'priority' in data:
        out['priority'] = to_int(data.get('priority'), 0)
    for field in ('eligible_products', 'eligible_categories'):
        if not partial or field in data:
            out[field] = to_list(data.get(field))
    if not partial or 'days_of_week' in data:
        days = [to_int(d) for d in to_list(data.get('days_of_week'))]
        if any(d is None or not 0 <= d <= 6 for d in days):
            raise ValidationError('days_of_week must be numbers from 0 (Sunday) to 6 (Saturday)')
        out['days_of_week'] = days

    for field in ('starts_at', 'ends_at'):
        if field in data or (not partial and field == 'starts_at'):
            value = data.get(field)
            if value in (None, ''):
                out[field] = now_iso() if field == 'starts_at' else None
                continue
            parsed = parse_datetime(value)
            if parsed is None:
                raise ValidationError(f'Invalid date for {field}')
            out[field] = parsed.isoformat()
    starts = parse_datetime(out.get('starts_at') or data.get('starts_at'))
    ends = parse_datetime(out.get('ends_at'))
    if starts and ends and ends < starts:
        raise ValidationError('ends_at must be after starts_at')

    if not partial or 'is_active' in data:
        out['is_active'] = data.get('is_active') is not False
    if not partial or 'stackable' in data:
        out['stackable'] = data.get('stackable') is True
    for field in ('badge_text', 'banner_image', 'landing_url'):
        if not partial or field in data:
            out[field] = data.get(field) or None

    if not partial or 'config' in data or any(k in data for k in CONFIG_KEYS):
        config = data.get('config') or {}
        if not isinstance(config, dict):
            raise ValidationError('config must be an object')
        config = dict(config)
        for key in CONFIG_KEYS:
            if key in data and key not in config:
                config[key] = data[key]
        out['config'] = config
    return out


def create_promotion(store, data):
    promo = _clean_promotion(data)
    promo['current_uses'] = 0
    created = store.insert('promotions', promo)
    logger.info('promotion %s created (%s)', created['id'], created['type'])
    return created


def update_promotion(store, promotion_id, data):
    current = get_promotion(store, promotion_id)
    changes = _clean_promotion(data, partial=True)
    if 'config' in changes:
        changes['config'] = {**(current.get('config') or {}), **changes['config']}
    changes['updated_at'] = now_iso()
    return store.update('promotions', promotion_id, changes)


def toggle_promotion(store, promotion_id):
    promo = get_promotion(store, promotion_id)
    return store.update('promotions', promotion_id, {
        'is_active': not promo.get('is_active'),
        'updated_at': now_iso(),
    })


def delete_promotion(store, promotion_id):
    """hard delete, or just deactivate when orders already used it"""
    get_promotion(store, promotion_id)
    if store.count('promotion_usages', {'promotion_id': promotion_id}):
        store.update('promotions', promotion_id, {'is_active': False, 'updated_at': now_iso()})
        return {'deleted': False, 'deactivated': True}
    store.delete('promotions', promotion_id)
    return {'deleted': True, 'deactivated': False}


def promotion_stats(store, promotion_id):
    get_promotion(store, promotion_id)
    usages = store.list('promotion_usages', {'promotion_id': promotion_id})
    revenue = 0.0
    for usage in usages:
        order = store.get('orders', usage.get('order_id'))
        if order:
            revenue += order.get('total', 0)
    uses = len(usages)
    return {
        'promotion_id': promotion_id,
        'total_uses': uses,
        'total_discount_given': money(sum(u.get('discount_applied', 0) for u in usages)),
        'total_revenue_generated': money(revenue),
        'average_order_value': money(revenue / uses) if uses else 0,
    }
