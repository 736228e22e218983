"""
REST API v1 for external integrations (n8n, chat bots, ERPs).

Every route needs an API key with the matching permission, e.g. ``read:orders``.
Responses are wrapped as ``{"success": true, "data": ...}``.
"""

import logging

from flask import Blueprint, g, jsonify, request

import catalog
import coupons
import inventory
import orders
import promotions
import reports
import webhooks
from audit import log_action
from auth import RESOURCES, require_api_key
from config import current_config, current_http
from errors import NotFound, ValidationError
from store import current_store
from utils import to_int

logger = logging.getLogger(__name__)

bp = Blueprint('api_v1', __name__, url_prefix='/api/v1')


def ok(data=None, status=200, **extra):
    body = {'success': True, **extra}
    if data is not None:
        body['data'] = data
    return jsonify(body), status


def _actor():
    return f"api:{g.api_key['key_prefix']}"


@bp.route('/', methods=['GET'])
def index():
    return jsonify({
        'name': f'{current_config().store_name} API',
        'version': 'v1',
        'authentication': 'Authorization: Bearer <api_key> or ?api_key=<api_key>',
        'resources': RESOURCES,
    })


# ---------- products ----------

@bp.route('/products', methods=['GET'])
@require_api_key('read:products')
def list_products():
    result = catalog.list_products(current_store(), category=request.args.get('category'),
                                   q=request.args.get('q'), sort=request.args.get('sort', 'name'),
                                   in_stock=request.args.get('in_stock') == 'true')
    return ok(result, count=len(result))


@bp.route('/products/<pid>', methods=['GET'])
@require_api_key('read:products')
def get_product(pid):
    return ok(catalog.get_product(current_store(), pid, include_inactive=True))


@bp.route('/products', methods=['POST'])
@require_api_key('write:products')
def create_product():
    store = current_store()
    product = catalog.create_product(store, current_config(), current_http(), request.get_json() or {})
    log_action(store, 'create_product', {'product_id': product['id']}, actor=_actor())
    return ok(product, 201)


@bp.route('/products/<pid>', methods=['PATCH', 'PUT'])
@require_api_key('write:products')
def update_product(pid):
    store = current_store()
    product = catalog.update_product(store, current_config(), current_http(), pid, request.get_json() or {})
    log_action(store, 'update_product', {'product_id': pid}, actor=_actor())
    return ok(product)


@bp.route('/products/<pid>/stock', methods=['POST'])
@require_api_key('write:inventory')
def adjust_product_stock(pid):
    store = current_store()
    data = request.get_json() or {}
    result = inventory.adjust_stock(store, current_config(), current_http(), pid, data.get('quantity'),
                                    type=data.get('type') or 'adjustment', notes=data.get('notes') or '',
                                    reference_type='api')
    log_action(store, 'adjust_stock', result, actor=_actor())
    return ok(result)


# ---------- orders ----------

@bp.route('/orders', methods=['GET'])
@require_api_key('read:orders')
def list_orders():
    result = orders.list_orders(current_store(), status=request.args.get('status'),
                                customer_email=request.args.get('email'),
                                date_from=request.args.get('from'), date_to=request.args.get('to'),
                                page=request.args.get('page', 1), per_page=request.args.get('per_page', 50))
    return ok(result['orders'], pagination={'total': result['total'], 'page': result['page'],
                                            'per_page': result['per_page']})


@bp.route('/orders/<ref>', methods=['GET'])
@require_api_key('read:orders')
def get_order(ref):
    return ok(orders.find_order(current_store(), ref))


@bp.route('/orders/<oid>/status', methods=['PATCH', 'POST'])
@require_api_key('write:orders')
def update_order_status(oid):
    data = request.get_json() or {}
    if not data.get('status'):
        raise ValidationError('status is required')
    order = orders.update_status(current_store(), current_config(), current_http(), oid, data['status'],
                                 note=data.get('note'), changed_by=_actor(),
                                 tracking_number=data.get('tracking_number'), carrier=data.get('carrier'))
    return ok(order)


@bp.route('/orders/<oid>/tracking', methods=['POST'])
@require_api_key('write:orders')
def add_tracking(oid):
    data = request.get_json() or {}
    order = orders.add_tracking(current_store(), current_config(), current_http(), oid,
                                data.get('tracking_number'), data.get('carrier'))
    return ok(order)


# ---------- customers ----------

@bp.route('/customers', methods=['GET'])
@require_api_key('read:customers')
def list_customers():
    store = current_store()
    limit = min(to_int(request.args.get('limit'), 50), 200)
    offset = to_int(request.args.get('offset'), 0)
    data = store.list('customers', sort='-created_at', limit=limit, offset=offset)
    return ok(data, pagination={'total': store.count('customers'), 'limit': limit, 'offset': offset})


@bp.route('/customers/<cid>', methods=['GET'])
@require_api_key('read:customers')
def get_customer(cid):
    store = current_store()
    customer = store.get('customers', cid) or orders.find_customer(store, cid)
    if not customer:
        raise NotFound('Customer not found')
    recent = store.list('orders', {'customer_id': customer['id']}, sort='-created_at', limit=10)
    return ok({**customer, 'recent_orders': recent})


# ---------- inventory ----------

@bp.route('/inventory', methods=['GET'])
@require_api_key('read:inventory')
def inventory_summary():
    return ok(inventory.inventory_summary(current_store(), current_config()))


@bp.route('/inventory/movements', methods=['GET'])
@require_api_key('read:inventory')
def inventory_movements():
    result = inventory.list_movements(current_store(), product_id=request.args.get('product_id'),
                                      type=request.args.get('type'),
                                      limit=to_int(request.args.get('limit'), 50),
                                      offset=to_int(request.args.get('offset'), 0))
    return ok(result['movements'], total=result['total'])


@bp.route('/inventory/adjust', methods=['POST'])
@require_api_key('write:inventory')
def bulk_adjust():
    data = request.get_json() or {}
    adjustments = data.get('adjustments')
    if not isinstance(adjustments, list) or not adjustments:
        raise ValidationError('adjustments array required')
    store = current_store()
    results = inventory.bulk_adjust(store, current_config(), current_http(), adjustments)
    log_action(store, 'bulk_adjust_stock', {'count': len(results)}, actor=_actor())
    return ok(results)


@bp.route('/inventory/alerts', methods=['GET'])
@require_api_key('read:inventory')
def inventory_alerts():
    return ok(inventory.stock_alerts(current_store(), current_config()))


# ---------- promotions / coupons ----------

@bp.route('/promotions', methods=['GET'])
@require_api_key('read:promotions')
def list_promotions():
    active = request.args.get('active')
    result = promotions.list_promotions(current_store(),
                                        active=None if active is None else active == 'true',
                                        type=request.args.get('type'), status=request.args.get('status'))
    return ok(result, count=len(result))


@bp.route('/promotions/active', methods=['GET'])
@require_api_key('read:promotions')
def active_promotions():
    return ok(promotions.get_active_promotions(current_store()))


@bp.route('/coupons/validate', methods=['POST'])
@require_api_key('read:coupons')
def validate_coupon():
    data = request.get_json() or {}
    if not data.get('code'):
        raise ValidationError('code is required')
    result = coupons.validate_coupon(current_store(), data['code'], float(data.get('subtotal') or 0),
                                     data.get('customer_id'))
    return ok(result)


# ---------- webhooks ----------

@bp.route('/webhooks', methods=['GET'])
@require_api_key('read:webhooks')
def list_webhooks():
    return ok([webhooks.public_webhook(w) for w in webhooks.list_webhooks(current_store())],
              events=webhooks.WEBHOOK_EVENTS)


@bp.route('/webhooks', methods=['POST'])
@require_api_key('write:webhooks')
def create_webhook():
    store = current_store()
    webhook = webhooks.create_webhook(store, request.get_json() or {})
    log_action(store, 'create_webhook', {'webhook_id': webhook['id']}, actor=_actor())
    return ok(webhook, 201)


@bp.route('/webhooks/<wid>', methods=['DELETE'])
@require_api_key('write:webhooks')
def delete_webhook(wid):
    store = current_store()
    webhooks.delete_webhook(store, wid)
    log_action(store, 'delete_webhook', {'webhook_id': wid}, actor=_actor())
    return ok(message='Webhook deleted')


# ---------- analytics ----------

@bp.route('/analytics/sales', methods=['GET'])
@require_api_key('read:analytics')
def sales_analytics():
    return ok(reports.sales_summary(current_store(), request.args.get('from'), request.args.get('to')))


@bp.route('/analytics/customers', methods=['GET'])
@require_api_key('read:analytics')
def customer_analytics():
    return ok(reports.customer_summary(current_store(), limit=to_int(request.args.get('limit'), 20)))
