from datetime import datetime

from utils import money

NOT_COUNTED = ['pending', 'cancelled', 'refunded']


def _in_period(orders, date_from=None, date_to=None):
    if date_from:
        orders = [o for o in orders if o['created_at'] >= date_from]
    if date_to:
        orders = [o for o in orders if o['created_at'] <= date_to]
    return orders


def sales_summary(store, date_from=None, date_to=None):
    # unpaid, cancelled and refunded orders are listed by status but not counted as revenue
    orders = _in_period(store.list('orders'), date_from, date_to)
    counted = [o for o in orders if o['status'] not in NOT_COUNTED]

    total_revenue = sum(o['total'] for o in counted)
    total_items = sum(sum(i['quantity'] for i in o['items']) for o in counted)

    by_status = {}
    for o in orders:
        row = by_status.setdefault(o['status'], {'count': 0, 'revenue': 0, 'items': 0})
        row['count'] += 1
        if o['status'] not in NOT_COUNTED:
            row['revenue'] += o['total']
            row['items'] += sum(i['quantity'] for i in o['items'])
    for row in by_status.values():
        row['revenue'] = money(row['revenue'])

    product_sales = {}
    for o in counted:
        for item in o['items']:
            row = product_sales.setdefault(item['product_id'], {'name': item['name'], 'quantity': 0, 'revenue': 0})
            row['quantity'] += item['quantity']
            row['revenue'] += item.get('line_total', item['unit_price'] * item['quantity'])

    top_products = sorted(
        [{'product_id': k, **v, 'revenue': money(v['revenue'])} for k, v in product_sales.items()],
        key=lambda x: x['revenue'],
        reverse=True
    )[:10]

    return {
        'period': {'from': date_from, 'to': date_to},
        'summary': {
            'total_orders': len(counted),
            'total_revenue': money(total_revenue),
            'total_items': total_items,
            'total_discounts': money(sum(o.get('total_discount', 0) for o in counted)),
            'avg_order_value': money(total_revenue / len(counted)) if counted else 0,
        },
        'by_status': by_status,
        'top_products': top_products,
        'generated_at': datetime.now().isoformat(),
    }


def customer_summary(store, limit=None):
    orders = store.list('orders')
    result = []
    for c in store.list('customers'):
        mine = [o for o in orders if o.get('customer_id') == c['id']]
        paid = [o for o in mine if o['status'] not in NOT_COUNTED]
        spent = sum(o['total'] for o in paid)
        result.append({
            'customer_id': c['id'],
            'email': c['email'],
            'name': c.get('name'),
            'total_orders': c.get('total_orders', 0),
            'placed_orders': len(mine),
            'total_spent': money(spent),
            'avg_order_value': money(spent / len(paid)) if paid else 0,
            'first_order': min((o['created_at'] for o in mine), default=None),
            'last_order': max((o['created_at'] for o in mine), default=None),
        })

    result.sort(key=lambda x: x['total_spent'], reverse=True)
    return {
        'customers': result[:limit] if limit else result,
        'total_customers': len(result),
        'repeat_customers': len([r for r in result if r['total_orders'] > 1]),
        'generated_at': datetime.now().isoformat(),
    }


def promotion_report(store):
    result = []
    for promo in store.list('promotions', sort='-priority'):
        usages = store.list('promotion_usages', {'promotion_id': promo['id']})
        result.append({
            'id': promo['id'],
            'name': promo['name'],
            'type': promo['type'],
            'is_active': promo.get('is_active'),
            'current_uses': promo.get('current_uses', 0),
            'max_uses': promo.get('max_uses'),
            'total_discount_given': money(sum(u.get('discount_applied', 0) for u in usages)),
            'ends_at': promo.get('ends_at'),
        })
    return result
