"""admin routes, all behind X-Admin-Key"""

import logging

from flask import Blueprint, jsonify, request

import auth
import catalog
import coupons
import inventory
import orders
import promotions
import reports
import shipping
import webhooks
from audit import list_audit, log_action
from auth import require_admin
from carriers import CarrierClient
from config import current_config, current_http
from errors import ValidationError
from notifications import EmailSender, pending_notifications, process_notifications
from store import current_store
from utils import to_int

logger = logging.getLogger(__name__)

bp = Blueprint('admin', __name__, url_prefix='/admin')


def _flag_arg(name):
    value = request.args.get(name)
    if value is None:
        return None
    return value.lower() in ('1', 'true', 'yes')


def _carrier():
    return CarrierClient(current_config(), current_http())


# ---------- promotions ----------

@bp.route('/promotions', methods=['GET'])
@require_admin
def list_promotions():
    store = current_store()
    result = promotions.list_promotions(store, active=_flag_arg('active'), type=request.args.get('type'),
                                        status=request.args.get('status'))
    for p in result:
        p['status'] = promotions.promotion_status(p)
    return jsonify({'promotions': result, 'total': len(result)})


@bp.route('/promotions/types', methods=['GET'])
@require_admin
def promotion_types():
    return jsonify(promotions.PROMOTION_TYPES)


@bp.route('/promotions', methods=['POST'])
@require_admin
def create_promotion():
    store = current_store()
    promo = promotions.create_promotion(store, request.get_json() or {})
    log_action(store, 'create_promotion', {'promotion_id': promo['id'], 'type': promo['type']}, actor='admin')
    return jsonify(promo), 201


@bp.route('/promotions/<pid>', methods=['GET'])
@require_admin
def get_promotion(pid):
    promo = promotions.get_promotion(current_store(), pid)
    promo['status'] = promotions.promotion_status(promo)
    return jsonify(promo)


@bp.route('/promotions/<pid>', methods=['PUT', 'PATCH'])
@require_admin
def update_promotion(pid):
    store = current_store()
    data = request.get_json() or {}
    promo = promotions.update_promotion(store, pid, data)
    log_action(store, 'update_promotion', {'promotion_id': pid, 'fields': sorted(data)}, actor='admin')
    return jsonify(promo)


@bp.route('/promotions/<pid>/toggle', methods=['POST'])
@require_admin
def toggle_promotion(pid):
    store = current_store()
    promo = promotions.toggle_promotion(store, pid)
    log_action(store, 'toggle_promotion', {'promotion_id': pid, 'is_active': promo['is_active']}, actor='admin')
    return jsonify(promo)


@bp.route('/promotions/<pid>', methods=['DELETE'])
@require_admin
def delete_promotion(pid):
    store = current_store()
    result = promotions.delete_promotion(store, pid)
    log_action(store, 'delete_promotion', {'promotion_id': pid, **result}, actor='admin')
    return jsonify(result)


@bp.route('/promotions/<pid>/stats', methods=['GET'])
@require_admin
def promotion_stats(pid):
    return jsonify(promotions.promotion_stats(current_store(), pid))


# ---------- coupons ----------

@bp.route('/coupons', methods=['GET'])
@require_admin
def list_coupons():
    return jsonify(coupons.list_coupons(current_store(), active=_flag_arg('active')))


@bp.route('/coupons', methods=['POST'])
@require_admin
def create_coupon():
    store = current_store()
    coupon = coupons.create_coupon(store, request.get_json() or {})
    log_action(store, 'create_coupon', {'coupon_id': coupon['id'], 'code': coupon['code']}, actor='admin')
    return jsonify(coupon), 201


@bp.route('/coupons/<cid>', methods=['GET'])
@require_admin
def get_coupon(cid):
    return jsonify(coupons.get_coupon(current_store(), cid))


@bp.route('/coupons/<cid>', methods=['PUT', 'PATCH'])
@require_admin
def update_coupon(cid):
    store = current_store()
    coupon = coupons.update_coupon(store, cid, request.get_json() or {})
    log_action(store, 'update_coupon', {'coupon_id': cid}, actor='admin')
    return jsonify(coupon)


@bp.route('/coupons/<cid>', methods=['DELETE'])
@require_admin
def delete_coupon(cid):
    store = current_store()
    coupons.delete_coupon(store, cid)
    log_action(store, 'delete_coupon', {'coupon_id': cid}, actor='admin')
    return jsonify({'deleted': True})


# ---------- orders ----------

@bp.route('/orders', methods=['GET'])
@require_admin
def list_orders():
    return jsonify(orders.list_orders(
        current_store(),
        status=request.args.get('status'),
        customer_email=request.args.get('email'),
        date_from=request.args.get('from'),
        date_to=request.args.get('to'),
        page=request.args.get('page', 1),
        per_page=request.args.get('per_page', 50),
    ))


@bp.route('/orders/<oid>', methods=['GET'])
@require_admin
def get_order(oid):
    return jsonify(orders.get_order(current_store(), oid))


@bp.route('/orders/<oid>/status', methods=['POST'])
@require_admin
def update_order_status(oid):
    data = request.get_json() or {}
    if not data.get('status'):
        raise ValidationError('status is required')
    order = orders.update_status(current_store(), current_config(), current_http(), oid, data['status'],
                                 note=data.get('note'), tracking_number=data.get('tracking_number'),
                                 carrier=data.get('carrier'))
    return jsonify(order)


@bp.route('/orders/<oid>/notes', methods=['POST'])
@require_admin
def add_order_note(oid):
    data = request.get_json() or {}
    return jsonify(orders.add_note(current_store(), oid, data.get('text'), data.get('author') or 'admin'))


@bp.route('/orders/<oid>/label', methods=['POST'])
@require_admin
def create_label(oid):
    data = request.get_json() or {}
    order = orders.create_label(current_store(), current_config(), current_http(), _carrier(), oid,
                                carrier=data.get('carrier'), service_id=data.get('service_id'))
    return jsonify(order)


@bp.route('/orders/<oid>/tracking', methods=['GET', 'POST'])
@require_admin
def refresh_tracking(oid):
    return jsonify(orders.refresh_tracking(current_store(), current_config(), current_http(), _carrier(), oid))


@bp.route('/orders/sync-tracking', methods=['POST'])
@require_admin
def sync_tracking():
    return jsonify(orders.sync_active_shipments(current_store(), current_config(), current_http(), _carrier()))


# ---------- products / inventory ----------

@bp.route('/products', methods=['GET'])
@require_admin
def list_products():
    return jsonify(catalog.list_products(current_store(), category=request.args.get('category'),
                                         q=request.args.get('q'), sort=request.args.get('sort', 'name'),
                                         include_inactive=True))


@bp.route('/products', methods=['POST'])
@require_admin
def create_product():
    store = current_store()
    product = catalog.create_product(store, current_config(), current_http(), request.get_json() or {})
    log_action(store, 'create_product', {'product_id': product['id']}, actor='admin')
    return jsonify(product), 201


@bp.route('/products/<pid>', methods=['PUT', 'PATCH'])
@require_admin
def update_product(pid):
    store = current_store()
    product = catalog.update_product(store, current_config(), current_http(), pid, request.get_json() or {})
    log_action(store, 'update_product', {'product_id': pid}, actor='admin')
    return jsonify(product)


@bp.route('/inventory', methods=['GET'])
@require_admin
def inventory_overview():
    store = current_store()
    config = current_config()
    return jsonify({
        'summary': inventory.inventory_summary(store, config),
        'products': [{'id': p['id'], 'name': p['name'], 'stock_quantity': p.get('stock_quantity', 0),
                      'is_active': p.get('is_active', True)}
                     for p in store.list('products', sort='name')],
    })


@bp.route('/inventory/adjust', methods=['POST'])
@require_admin
def adjust_stock():
    store = current_store()
    data = request.get_json() or {}
    if not data.get('product_id'):
        raise ValidationError('product_id is required')
    result = inventory.adjust_stock(store, current_config(), current_http(), data['product_id'],
                                    data.get('quantity'), type=data.get('type') or 'adjustment',
                                    notes=data.get('notes') or '')
    log_action(store, 'adjust_stock', result, actor='admin')
    return jsonify(result)


@bp.route('/inventory/bulk', methods=['POST'])
@require_admin
def bulk_adjust():
    store = current_store()
    data = request.get_json() or {}
    adjustments = data.get('adjustments')
    if not isinstance(adjustments, list) or not adjustments:
        raise ValidationError('adjustments must be a non-empty list')
    results = inventory.bulk_adjust(store, current_config(), current_http(), adjustments,
                                    type=data.get('type') or 'adjustment')
    log_action(store, 'bulk_adjust_stock', {'count': len(results)}, actor='admin')
    return jsonify({'results': results, 'succeeded': len([r for r in results if r['success']])})


@bp.route('/inventory/movements', methods=['GET'])
@require_admin
def inventory_movements():
    return jsonify(inventory.list_movements(current_store(), product_id=request.args.get('product_id'),
                                            type=request.args.get('type'),
                                            limit=to_int(request.args.get('limit'), 50),
                                            offset=to_int(request.args.get('offset'), 0)))


@bp.route('/inventory/alerts', methods=['GET'])
@require_admin
def inventory_alerts():
    return jsonify(inventory.stock_alerts(current_store(), current_config()))


# ---------- shipping ----------

@bp.route('/shipping/zones', methods=['GET'])
@require_admin
def list_zones():
    return jsonify(shipping.list_zones(current_store()))


@bp.route('/shipping/zones', methods=['POST'])
@require_admin
def create_zone():
    store = current_store()
    zone = shipping.create_zone(store, request.get_json() or {})
    log_action(store, 'create_shipping_zone', {'zone_id': zone['id']}, actor='admin')
    return jsonify(zone), 201


@bp.route('/shipping/zones/<zid>', methods=['PUT', 'PATCH'])
@require_admin
def update_zone(zid):
    return jsonify(shipping.update_zone(current_store(), zid, request.get_json() or {}))


@bp.route('/shipping/zones/<zid>', methods=['DELETE'])
@require_admin
def delete_zone(zid):
    store = current_store()
    shipping.delete_zone(store, zid)
    log_action(store, 'delete_shipping_zone', {'zone_id': zid}, actor='admin')
    return jsonify({'deleted': True})


@bp.route('/shipping/zones/<zid>/rates', methods=['POST'])
@require_admin
def create_rate(zid):
    return jsonify(shipping.create_rate(current_store(), zid, request.get_json() or {})), 201


@bp.route('/shipping/rates/<rid>', methods=['PUT', 'PATCH'])
@require_admin
def update_rate(rid):
    return jsonify(shipping.update_rate(current_store(), rid, request.get_json() or {}))


@bp.route('/shipping/rates/<rid>', methods=['DELETE'])
@require_admin
def delete_rate(rid):
    shipping.delete_rate(current_store(), rid)
    return jsonify({'deleted': True})


# ---------- webhooks ----------

@bp.route('/webhooks/events', methods=['GET'])
@require_admin
def webhook_events():
    return jsonify(webhooks.WEBHOOK_EVENTS)


@bp.route('/webhooks', methods=['GET'])
@require_admin
def list_webhooks():
    return jsonify([webhooks.public_webhook(w) for w in webhooks.list_webhooks(current_store())])


@bp.route('/webhooks', methods=['POST'])
@require_admin
def create_webhook():
    store = current_store()
    webhook = webhooks.create_webhook(store, request.get_json() or {})
    log_action(store, 'create_webhook', {'webhook_id': webhook['id'], 'url': webhook['url']}, actor='admin')
    # secret included this once
    return jsonify(webhook), 201


@bp.route('/webhooks/<wid>', methods=['GET'])
@require_admin
def get_webhook(wid):
    return jsonify(webhooks.public_webhook(webhooks.get_webhook(current_store(), wid)))


@bp.route('/webhooks/<wid>', methods=['PUT', 'PATCH'])
@require_admin
def update_webhook(wid):
    webhook = webhooks.update_webhook(current_store(), wid, request.get_json() or {})
    return jsonify(webhooks.public_webhook(webhook))


@bp.route('/webhooks/<wid>', methods=['DELETE'])
@require_admin
def delete_webhook(wid):
    store = current_store()
    webhooks.delete_webhook(store, wid)
    log_action(store, 'delete_webhook', {'webhook_id': wid}, actor='admin')
    return jsonify({'deleted': True})


@bp.route('/webhooks/<wid>/test', methods=['POST'])
@require_admin
def test_webhook(wid):
    return jsonify(webhooks.test_webhook(current_store(), current_config(), current_http(), wid))


@bp.route('/webhooks/<wid>/logs', methods=['GET'])
@require_admin
def webhook_logs(wid):
    store = current_store()
    webhooks.get_webhook(store, wid)
    return jsonify(webhooks.webhook_logs(store, wid, limit=to_int(request.args.get('limit'), 50)))


@bp.route('/webhooks/retry', methods=['POST'])
@require_admin
def retry_webhooks():
    return jsonify(webhooks.retry_failed_webhooks(current_store(), current_config(), current_http()))


# ---------- api keys ----------

@bp.route('/api-keys', methods=['GET'])
@require_admin
def list_api_keys():
    return jsonify(auth.list_api_keys(current_store()))


@bp.route('/api-keys', methods=['POST'])
@require_admin
def create_api_key():
    store = current_store()
    created = auth.create_api_key(store, request.get_json() or {})
    log_action(store, 'create_api_key', {'key_id': created['id'], 'prefix': created['key_prefix']}, actor='admin')
    return jsonify(created), 201


@bp.route('/api-keys/<kid>/revoke', methods=['POST'])
@require_admin
def revoke_api_key(kid):
    store = current_store()
    record = auth.revoke_api_key(store, kid)
    log_action(store, 'revoke_api_key', {'key_id': kid}, actor='admin')
    return jsonify(record)


@bp.route('/api-keys/<kid>', methods=['DELETE'])
@require_admin
def delete_api_key(kid):
    store = current_store()
    auth.delete_api_key(store, kid)
    log_action(store, 'delete_api_key', {'key_id': kid}, actor='admin')
    return jsonify({'deleted': True})


# ---------- reports ----------

@bp.route('/reports/sales', methods=['GET'])
@require_admin
def sales_report():
    return jsonify(reports.sales_summary(current_store(), request.args.get('from'), request.args.get('to')))


@bp.route('/reports/customers', methods=['GET'])
@require_admin
def customer_report():
    return jsonify(reports.customer_summary(current_store(), limit=to_int(request.args.get('limit'))))


@bp.route('/reports/promotions', methods=['GET'])
@require_admin
def promotion_report():
    return jsonify(reports.promotion_report(current_store()))


@bp.route('/reports/audit', methods=['GET'])
@require_admin
def audit_report():
    return jsonify(list_audit(current_store(), action=request.args.get('action'),
                              limit=to_int(request.args.get('limit'), 100),
                              offset=to_int(request.args.get('offset'), 0)))


# ---------- notifications ----------

@bp.route('/notifications', methods=['GET'])
@require_admin
def list_notifications():
    return jsonify(pending_notifications(current_store()))


@bp.route('/notifications/process', methods=['POST'])
@require_admin
def run_notifications():
    sender = EmailSender(current_config(), current_http())
    return jsonify(process_notifications(current_store(), sender))
