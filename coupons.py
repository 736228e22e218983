import logging
from datetime import datetime

from errors import NotFound, ValidationError
from utils import money, now_iso, parse_datetime, to_float, to_int

logger = logging.getLogger(__name__)

COUPON_TYPES = ['percentage', 'fixed', 'free_shipping']


def normalize_code(code):
    return (code or '').strip().upper()


def find_coupon(store, code):
    return store.find_one('coupons', {'code': normalize_code(code)})


def calculate_discount(coupon, subtotal):
    """discount in money; free_shipping is 0 here, the shipping line is waived instead"""
    if not coupon:
        return 0
    kind = coupon.get('discount_type')
    value = float(coupon.get('discount_value') or 0)
    if kind == 'percentage':
        discount = subtotal * value / 100
        if coupon.get('maximum_discount'):
            discount = min(discount, float(coupon['maximum_discount']))
        return money(discount)
    if kind == 'fixed':
        return money(min(value, subtotal))
    return 0


def validate_coupon(store, code, subtotal=0, customer_id=None, now=None):
    now = now or datetime.now()
    result = {'valid': False, 'coupon': None, 'discount': 0, 'free_shipping': False, 'message': ''}

    coupon = find_coupon(store, code)
    if not coupon:
        result['message'] = 'Invalid coupon code'
        return result
    if not coupon.get('is_active'):
        result['message'] = 'Coupon is not active'
        return result

    valid_from = parse_datetime(coupon.get('valid_from'))
    valid_until = parse_datetime(coupon.get('valid_until'))
    if valid_from and valid_from > now:
        result['message'] = 'Coupon is not valid yet'
        return result
    if valid_until and valid_until < now:
        result['message'] = 'Coupon has expired'
        return result

    minimum = float(coupon.get('minimum_amount') or 0)
    if subtotal < minimum:
        result['message'] = f'Minimum purchase of ${minimum:,.2f} required'
        return result

    limit = coupon.get('usage_limit')
    if limit and (coupon.get('used_count') or 0) >= limit:
        result['message'] = 'Coupon has reached its usage limit'
        return result

    per_user = coupon.get('usage_per_user')
    if per_user and customer_id:
        used = store.count('coupon_usages', {'coupon_id': coupon['id'], 'customer_id': customer_id})
        if used >= per_user:
            result['message'] = 'You have already used this coupon'
            return result

    result.update({
        'valid': True,
        'coupon': coupon,
        'discount': calculate_discount(coupon, subtotal),
        'free_shipping': coupon.get('discount_type') == 'free_shipping',
        'message': 'Coupon applied',
    })
    return result


def record_coupon_usage(store, coupon_id, order_id, customer_id, discount):
    store.insert('coupon_usages', {
        'coupon_id': coupon_id,
        'order_id': order_id,
        'customer_id': customer_id,
        'discount_applied': money(discount),
    })
    return store.increment('coupons', coupon_id, 'used_count', 1)


# ---------- admin ----------

def list_coupons(store, active=None):
    filters = {'is_active': active} if active is not None else None
    return store.list('coupons', filters, sort='-created_at')


def get_coupon(store, coupon_id):
    coupon = store.get('coupons', coupon_id)
    if not coupon:
        raise NotFound('Coupon not found')
    return coupon


def _clean_coupon(data, partial=False):
    out = {}
    if not partial or 'discount_type' in data:
        if data.get('discount_type') not in COUPON_TYPES:
            raise ValidationError(f'Invalid discount type. Must be one of: {COUPON_TYPES}')
        out['discount_type'] = data['discount_type']
    if not partial or 'discount_value' in data:
        out['discount_value'] = to_float(data.get('discount_value'), 0.0)
        if out['discount_value'] < 0:
            raise ValidationError('Discount value cannot be negative')
    if not partial or 'minimum_amount' in data:
        out['minimum_amount'] = to_float(data.get('minimum_amount'), 0.0)
    if not partial or 'maximum_discount' in data:
        out['maximum_discount'] = to_float(data.get('maximum_discount'))
    if not partial or 'usage_limit' in data:
        out['usage_limit'] = to_int(data.get('usage_limit'))
    if not partial or 'usage_per_user' in data:
        out['usage_per_user'] = to_int(data.get('usage_per_user'), 1)
    if not partial or 'description' in data:
        out['description'] = data.get('description') or ''
    for field in ('valid_from', 'valid_until'):
        if field in data:
            value = data.get(field)
            parsed = parse_datetime(value)
            if value and parsed is None:
                raise ValidationError(f'Invalid date for {field}')
            out[field] = parsed.isoformat() if parsed else None
    if not partial:
        out.setdefault('valid_from', now_iso())
        out.setdefault('valid_until', None)
    if not partial or 'is_active' in data:
        out['is_active'] = data.get('is_active') is not False
    return out


def create_coupon(store, data):
    code = normalize_code(data.get('code'))
    if not code:
        raise ValidationError('Code is required')
    if find_coupon(store, code):
        raise ValidationError('A coupon with that code already exists')
    coupon = _clean_coupon(data)
    coupon['code'] = code
    coupon['used_count'] = 0
    return store.insert('coupons', coupon)


def update_coupon(store, coupon_id, data):
    get_coupon(store, coupon_id)
    changes = _clean_coupon(data, partial=True)
    changes['updated_at'] = now_iso()
    return store.update('coupons', coupon_id, changes)


def delete_coupon(store, coupon_id):
    get_coupon(store, coupon_id)
    return store.delete('coupons', coupon_id)
