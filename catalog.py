import logging

import webhooks
from errors import NotFound, ValidationError
from utils import now_iso, slugify, to_float, to_int

logger = logging.getLogger(__name__)

SORTS = ['name', 'price', '-price', 'newest', 'featured']


def public_product(p):
    item = dict(p)
    if p.get('sale_price'):
        item['original_price'] = p['price']
        item['price'] = p['sale_price']
        item['on_sale'] = True
    item['in_stock'] = p.get('stock_quantity', 0) > 0
    return item


def _price(p):
    return p.get('sale_price') or p['price']


def list_products(store, category=None, q=None, sort='name', in_stock=False, min_price=None, max_price=None,
                  include_inactive=False):
    filters = {} if include_inactive else {'is_active': True}
    if category:
        cat = store.get('categories', category) or store.find_one('categories', {'slug': category})
        if not cat:
            return []
        filters['category_id'] = cat['id']

    search = (q or '').strip().lower()
    result = []
    for p in store.list('products', filters):
        if search and search not in p['name'].lower() and search not in (p.get('description') or '').lower():
            continue
        if in_stock and p.get('stock_quantity', 0) <= 0:
            continue
        if min_price is not None and _price(p) < min_price:
            continue
        if max_price is not None and _price(p) > max_price:
            continue
        result.append(p)

    if sort == 'price':
        result.sort(key=_price)
    elif sort == '-price':
        result.sort(key=_price, reverse=True)
    elif sort == 'newest':
        result.sort(key=lambda x: x.get('created_at', ''), reverse=True)
    elif sort == 'featured':
        result.sort(key=lambda x: (not x.get('is_featured'), x['name']))
    else:
        result.sort(key=lambda x: x.get('name', ''))
    return result


def get_product(store, product_id, include_inactive=False):
    p = store.get('products', product_id) or store.find_one('products', {'slug': product_id})
    if not p or (not include_inactive and not p.get('is_active', True)):
        raise NotFound('Product not found')
    return p


def list_categories(store):
    categories = store.list('categories', {'is_active': True}, sort='sort_order')
    for c in categories:
        c['product_count'] = store.count('products', {'category_id': c['id'], 'is_active': True})
    return categories


def _clean_product(store, data, partial=False):
    out = {}
    if not partial or 'name' in data:
        name = (data.get('name') or '').strip()
        if not name:
            raise ValidationError('Name is required')
        out['name'] = name
        out['slug'] = data.get('slug') or slugify(name)
    if not partial or 'price' in data:
        price = to_float(data.get('price'))
        if price is None or price < 0:
            raise ValidationError('Price must be a positive number')
        out['price'] = price
    if 'sale_price' in data or not partial:
        out['sale_price'] = to_float(data.get('sale_price'))
    if not partial or 'category_id' in data:
        if data.get('category_id') and not store.get('categories', data['category_id']):
            raise ValidationError('Unknown category')
        out['category_id'] = data.get('category_id')
    if not partial:
        out['stock_quantity'] = max(to_int(data.get('stock_quantity'), 0), 0)
    for field in ('description', 'image_url'):
        if not partial or field in data:
            out[field] = data.get(field)
    for field in ('weight', 'low_stock_threshold'):
        if not partial or field in data:
            out[field] = to_float(data.get(field))
    for flag, default in (('is_active', True), ('is_featured', False)):
        if not partial or flag in data:
            out[flag] = bool(data.get(flag, default))
    return out


def create_product(store, config, http, data):
    product = store.insert('products', _clean_product(store, data))
    webhooks.trigger_event(store, config, http, 'product.created', {
        'product_id': product['id'], 'name': product['name'], 'price': product['price'],
    })
    return product


def update_product(store, config, http, product_id, data):
    get_product(store, product_id, include_inactive=True)
    # stock only moves through inventory adjustments
    changes = _clean_product(store, {k: v for k, v in data.items() if k != 'stock_quantity'}, partial=True)
    changes['updated_at'] = now_iso()
    product = store.update('products', product_id, changes)
    webhooks.trigger_event(store, config, http, 'product.updated', {
        'product_id': product['id'], 'changes': sorted(k for k in changes if k != 'updated_at'),
    })
    return product
