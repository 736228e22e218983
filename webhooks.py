"""
Outbound webhooks for automation tools (n8n, Zapier, Slack relays...).

Each delivery is one signed POST. The body is serialised once and the
HMAC-SHA256 signature is computed over exactly those bytes, so receivers can
verify it against the raw request body:

    X-Modhu-Signature: sha256=<hex hmac of body with the webhook secret>

A hook that fails WEBHOOK_MAX_FAILURES times in a row is disabled; any
success resets the counter. retry_failed_webhooks() pings disabled hooks and
re-enables the ones that answer.
"""

import hashlib
import hmac
import json
import logging
import secrets
import time
import uuid

import requests

from errors import NotFound, ValidationError
from utils import now_iso, to_list

logger = logging.getLogger(__name__)

USER_AGENT = 'ModhuWebhook/1.0'
RETRY_FAILURE_CEILING = 10

WEBHOOK_EVENTS = {
    'order.created': 'New order created',
    'order.paid': 'Order payment received',
    'order.processing': 'Order processing started',
    'order.shipped': 'Order shipped',
    'order.delivered': 'Order delivered',
    'order.cancelled': 'Order cancelled',
    'order.refunded': 'Order refunded',
    'order.on_hold': 'Order put on hold',
    'product.created': 'New product created',
    'product.updated': 'Product updated',
    'product.low_stock': 'Product stock is low',
    'product.out_of_stock': 'Product out of stock',
    'product.back_in_stock': 'Product back in stock',
    'customer.first_purchase': 'Customer made first purchase',
    'inventory.adjusted': 'Inventory manually adjusted',
    'promotion.depleted': 'Promotion uses depleted',
}


def sign(body, secret):
    if isinstance(body, str):
        body = body.encode('utf-8')
    return hmac.new(secret.encode('utf-8'), body, hashlib.sha256).hexdigest()


def _build_request(webhook, event, data):
    timestamp = int(time.time() * 1000)
    body = json.dumps({
        'event': event,
        'timestamp': timestamp,
        'webhook_id': webhook['id'],
        'data': data,
    }, default=str).encode('utf-8')
    # custom headers never override ours
    headers = dict(webhook.get('headers') or {})
    headers.update({
        'Content-Type': 'application/json',
        'User-Agent': USER_AGENT,
        'X-Modhu-Event': event,
        'X-Modhu-Timestamp': str(timestamp),
        'X-Modhu-Delivery': str(uuid.uuid4()),
    })
    if webhook.get('secret'):
        headers['X-Modhu-Signature'] = f"sha256={sign(body, webhook['secret'])}"
    return body, headers


def _deliver(http, config, webhook, event, data):
    body, headers = _build_request(webhook, event, data)
    started = time.monotonic()
    try:
        resp = http.post(webhook['url'], data=body, headers=headers, timeout=config.webhook_timeout)
    except requests.RequestException as e:
        elapsed = int((time.monotonic() - started) * 1000)
        return {'success': False, 'status_code': None, 'error': str(e), 'response_time': elapsed}
    elapsed = int((time.monotonic() - started) * 1000)
    return {'success': resp.ok, 'status_code': resp.status_code, 'error': None, 'response_time': elapsed}


def _record_failure(store, config, webhook):
    updated = store.increment('webhooks', webhook['id'], 'failure_count', 1)
    failures = updated.get('failure_count', 0) if updated else 0
    if failures >= config.webhook_max_failures:
        store.update('webhooks', webhook['id'], {'is_active': False})
        logger.warning('webhook %s disabled after %d failures', webhook.get('name'), failures)


def trigger_event(store, config, http, event, data):
    """deliver event to every active hook subscribed to it; never raises on network errors"""
    hooks = store.list('webhooks', {'is_active': True, 'events': event})
    if not hooks:
        logger.debug('no webhooks registered for %s', event)
        return {'triggered': 0, 'results': []}

    results = []
    for webhook in hooks:
        outcome = _deliver(http, config, webhook, event, data)
        store.insert('webhook_logs', {
            'webhook_id': webhook['id'],
            'event': event,
            'success': outcome['success'],
            'status_code': outcome['status_code'],
            'error': outcome['error'],
            'response_time': outcome['response_time'],
        })
        if outcome['success']:
            store.update('webhooks', webhook['id'], {'failure_count': 0, 'last_triggered_at': now_iso()})
            logger.info('webhook %s <- %s: %s', webhook.get('name'), event, outcome['status_code'])
        else:
            logger.warning('webhook %s <- %s failed: %s', webhook.get('name'), event,
                           outcome['error'] or outcome['status_code'])
            _record_failure(store, config, webhook)
        results.append({'webhook': webhook.get('name'), **outcome})
    return {'triggered': len(hooks), 'results': results}


def test_webhook(store, config, http, webhook_id):
    webhook = get_webhook(store, webhook_id)
    return _deliver(http, config, webhook, 'test.ping', {
        'test': True,
        'message': f'This is a test webhook from {config.store_name}',
        'timestamp': now_iso(),
    })


def retry_failed_webhooks(store, config, http):
    retried = 0
    for webhook in store.list('webhooks', {'is_active': False}):
        failures = webhook.get('failure_count') or 0
        if not 0 < failures < RETRY_FAILURE_CEILING:
            continue
        if test_webhook(store, config, http, webhook['id'])['success']:
            store.update('webhooks', webhook['id'], {'is_active': True, 'failure_count': 0})
            logger.info('webhook %s re-enabled', webhook.get('name'))
            retried += 1
    return {'retried': retried}


# ---------- admin ----------

def list_webhooks(store):
    return store.list('webhooks', sort='-created_at')


def get_webhook(store, webhook_id):
    webhook = store.get('webhooks', webhook_id)
    if not webhook:
        raise NotFound('Webhook not found')
    return webhook


def _clean_events(events):
    events = to_list(events)
    unknown = [e for e in events if e not in WEBHOOK_EVENTS]
    if unknown:
        raise ValidationError(f'Unknown events: {unknown}')
    return events


def create_webhook(store, data):
    name = (data.get('name') or '').strip()
    url = (data.get('url') or '').strip()
    if not name or not url:
        raise ValidationError('Name and url are required')
    if not url.startswith(('http://', 'https://')):
        raise ValidationError('url must be http(s)')
    return store.insert('webhooks', {
        'name': name,
        'url': url,
        'secret': data.get('secret') or secrets.token_hex(32),
        'events': _clean_events(data.get('events')),
        'headers': data.get('headers') or {},
        'is_active': data.get('is_active') is not False,
        'failure_count': 0,
        'last_triggered_at': None,
    })


def update_webhook(store, webhook_id, data):
    get_webhook(store, webhook_id)
    changes = {}
    for field in ('name', 'url', 'headers', 'is_active'):
        if field in data:
            changes[field] = data[field]
    if 'events' in data:
        changes['events'] = _clean_events(data['events'])
    if changes.get('is_active'):
        changes['failure_count'] = 0
    return store.update('webhooks', webhook_id, changes)


def delete_webhook(store, webhook_id):
    get_webhook(store, webhook_id)
    return store.delete('webhooks', webhook_id)


def webhook_logs(store, webhook_id=None, limit=50):
    filters = {'webhook_id': webhook_id} if webhook_id else None
    return store.list('webhook_logs', filters, sort='-created_at', limit=limit)


def public_webhook(webhook):
    # the secret is only shown once, on creation
    return {k: v for k, v in webhook.items() if k != 'secret'}
