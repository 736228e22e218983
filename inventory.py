import logging

import notifications
import webhooks
from errors import NotFound, ValidationError
from utils import money, to_int

logger = logging.getLogger(__name__)

MOVEMENT_TYPES = {
    'purchase': 'Compra',
    'sale': 'Venta',
    'adjustment': 'Ajuste',
    'return': 'Devolución',
    'damage': 'Daño/Merma',
    'transfer': 'Transferencia',
}


def _threshold(config, product):
    return product.get('low_stock_threshold') or config.low_stock_threshold


def stock_alert(config, product, previous, new):
    """which stock event (if any) moving from previous to new crosses"""
    threshold = _threshold(config, product)
    if new <= 0 < previous:
        return 'product.out_of_stock'
    if new <= threshold < previous:
        return 'product.low_stock'
    if previous <= 0 < new:
        return 'product.back_in_stock'
    return None


def adjust_stock(store, config, http, product_id, quantity, type='adjustment', notes='',
                 reference_type='manual', reference_id=None):
    """atomic stock change plus a movement row; fires alerts when thresholds are crossed"""
    if type not in MOVEMENT_TYPES:
        raise ValidationError(f'Invalid movement type. Must be one of: {list(MOVEMENT_TYPES)}')
    quantity = to_int(quantity)
    if not quantity:
        raise ValidationError('Quantity must be a non-zero integer')

    # never below zero, clamped inside the store
    previous, product = store.increment_bounded('products', product_id, 'stock_quantity', quantity)
    if product is None:
        raise NotFound('Product not found')
    new_stock = product['stock_quantity']
    applied = new_stock - previous
    if applied != quantity:
        logger.warning('stock for %s clamped at zero: asked %d, applied %d', product_id, quantity, applied)

    movement = store.insert('inventory_movements', {
        'product_id': product_id,
        'product_name': product.get('name'),
        'movement_type': type,
        'quantity': applied,
        'requested_quantity': quantity,
        'previous_stock': previous,
        'new_stock': new_stock,
        'reference_type': reference_type,
        'reference_id': reference_id,
        'notes': notes,
    })

    if reference_type != 'order':
        webhooks.trigger_event(store, config, http, 'inventory.adjusted', {
            'product_id': product_id,
            'movement_type': type,
            'quantity': applied,
            'previous_stock': previous,
            'new_stock': new_stock,
            'notes': notes,
        })

    event = stock_alert(config, product, previous, new_stock)
    if event:
        logger.info('%s: %s (%d -> %d)', event, product_id, previous, new_stock)
        webhooks.trigger_event(store, config, http, event, {
            'product_id': product_id,
            'product_name': product.get('name'),
            'previous_stock': previous,
            'current_stock': new_stock,
            'threshold': _threshold(config, product),
        })
        if event != 'product.back_in_stock':
            notifications.low_stock_alert(store, config, product)

    return {'product_id': product_id, 'quantity': applied, 'previous_stock': previous, 'new_stock': new_stock,
            'movement_id': movement['id']}


def bulk_adjust(store, config, http, adjustments, type='adjustment', notes='Bulk adjustment'):
    results = []
    for adj in adjustments:
        try:
            result = adjust_stock(store, config, http, adj.get('product_id'), adj.get('quantity'),
                                  type=adj.get('type') or type, notes=adj.get('notes') or notes,
                                  reference_type='bulk')
            results.append({'success': True, **result})
        except (ValidationError, NotFound) as e:
            results.append({'product_id': adj.get('product_id'), 'success': False, 'error': e.message})
    return results


def validate_stock(store, items):
    for item in items:
        product = store.get('products', item['product_id'])
        if not product or not product.get('is_active', True):
            return False, f"{item.get('name') or item['product_id']} is no longer available"
        if product.get('stock_quantity', 0) < item['quantity']:
            return False, f"Insufficient stock for {product['name']} ({product.get('stock_quantity', 0)} available)"
    return True, None


def deduct_stock(store, config, http, items, order_id):
    for item in items:
        adjust_stock(store, config, http, item['product_id'], -item['quantity'], type='sale',
                     reference_type='order', reference_id=order_id)


def restore_stock(store, config, http, order_id):
    """put back what the order's sale movements actually took"""
    taken = {}
    sales = store.list('inventory_movements',
                       {'reference_type': 'order', 'reference_id': order_id, 'movement_type': 'sale'})
    for movement in sales:
        taken[movement['product_id']] = taken.get(movement['product_id'], 0) - movement['quantity']
    for product_id, quantity in taken.items():
        if quantity > 0 and store.get('products', product_id):  # product may be gone
            adjust_stock(store, config, http, product_id, quantity, type='return',
                         reference_type='order', reference_id=order_id)


def list_movements(store, product_id=None, type=None, limit=50, offset=0):
    filters = {}
    if product_id:
        filters['product_id'] = product_id
    if type:
        filters['movement_type'] = type
    total = store.count('inventory_movements', filters)
    data = store.list('inventory_movements', filters, sort='-created_at', limit=limit, offset=offset)
    return {'movements': data, 'total': total}


def stock_alerts(store, config):
    low, out = [], []
    for p in store.list('products', {'is_active': True}, sort='stock_quantity'):
        stock = p.get('stock_quantity', 0)
        row = {'id': p['id'], 'name': p['name'], 'stock_quantity': stock,
               'threshold': _threshold(config, p)}
        if stock <= 0:
            out.append(row)
        elif stock <= row['threshold']:
            low.append(row)
    return {'low_stock': low, 'out_of_stock': out}


def inventory_summary(store, config):
    products = store.list('products', {'is_active': True})
    units = sum(p.get('stock_quantity', 0) for p in products)
    retail = sum(p.get('price', 0) * p.get('stock_quantity', 0) for p in products)
    alerts = stock_alerts(store, config)
    return {
        'total_products': len(products),
        'total_units': units,
        'retail_value': money(retail),
        'low_stock': len(alerts['low_stock']),
        'out_of_stock': len(alerts['out_of_stock']),
    }
