"""
Notification outbox.

Anything that wants to send an email queues it here. process_notifications()
drains the queue: through the Resend HTTP API when RESEND_API_KEY is set, or
by just logging the message when it is not. Each message gets 3 attempts.
"""

import logging

import requests

from utils import format_currency, now_iso

logger = logging.getLogger(__name__)

RESEND_URL = 'https://api.resend.com/emails'
MAX_ATTEMPTS = 3


def queue_notification(store, recipient, type, subject, message, data=None):
    return store.insert('notifications', {
        'recipient': recipient,
        'type': type,
        'subject': subject,
        'message': message,
        'data': data,
        'sent': False,
        'attempts': 0,
        'last_error': None,
    })


def pending_notifications(store):
    return store.list('notifications', {'sent': False}, sort='created_at')


class EmailSender:
    """posts mail to Resend, or logs it when no api key is configured"""

    def __init__(self, config, session=None):
        self.config = config
        self.session = session or requests.Session()

    def send(self, to, subject, text):
        if not self.config.email_configured:
            logger.info('email (not sent, no provider) to=%s subject=%s', to, subject)
            return {'id': None, 'logged_only': True}

        resp = self.session.post(
            RESEND_URL,
            json={'from': self.config.email_from, 'to': [to], 'subject': subject, 'text': text},
            headers={'Authorization': f'Bearer {self.config.resend_api_key}'},
            timeout=10,
        )
        resp.raise_for_status()
        body = resp.json()
        logger.info('email sent to=%s subject=%s id=%s', to, subject, body.get('id'))
        return body


def process_notifications(store, sender):
    """send what is pending, returns counts"""
    sent = failed = 0
    for n in pending_notifications(store):
        if n.get('attempts', 0) >= MAX_ATTEMPTS:
            continue
        attempts = n.get('attempts', 0) + 1
        try:
            sender.send(n['recipient'], n['subject'], n['message'])
        except requests.RequestException as e:
            logger.warning('notification %s failed (attempt %d): %s', n['id'], attempts, e)
            store.update('notifications', n['id'], {'attempts': attempts, 'last_error': str(e)})
            failed += 1
            continue
        store.update('notifications', n['id'], {
            'attempts': attempts,
            'sent': True,
            'sent_at': now_iso(),
            'last_error': None,
        })
        sent += 1
    return {'sent': sent, 'failed': failed}


# ---------- messages ----------

def order_confirmation(store, config, order):
    lines = [f"- {i['quantity']} x {i['name']}: {format_currency(i['line_total'], config.currency)}"
             for i in order['items']]
    text = '\n'.join([
        f"Hola {order.get('customer_name') or ''},",
        '',
        f"Recibimos el pago de tu pedido #{order['order_number']}.",
        '',
        *lines,
        '',
        f"Total: {format_currency(order['total'], config.currency)}",
        f"Sigue tu pedido en {config.site_url}/track/{order['order_number']}",
    ])
    return queue_notification(
        store, order['customer_email'], 'order_confirmation',
        f"Pedido #{order['order_number']} confirmado - {config.store_name}",
        text, {'order_id': order['id']})


def shipping_confirmation(store, config, order):
    text = (f"Tu pedido #{order['order_number']} va en camino.\n"
            f"Paquetería: {order.get('carrier') or '-'}\n"
            f"Guía: {order.get('tracking_number') or '-'}")
    return queue_notification(
        store, order['customer_email'], 'order_shipped',
        f"Tu pedido #{order['order_number']} ha sido enviado - {config.store_name}",
        text, {'order_id': order['id']})


def order_delivered(store, config, order):
    return queue_notification(
        store, order['customer_email'], 'order_delivered',
        f"Pedido #{order['order_number']} entregado - {config.store_name}",
        f"Tu pedido #{order['order_number']} fue entregado. Gracias por tu compra.",
        {'order_id': order['id']})


def low_stock_alert(store, config, product):
    if not config.admin_email:
        logger.warning('low stock on %s but ADMIN_EMAIL is not set', product['id'])
        return None
    return queue_notification(
        store, config.admin_email, 'low_stock',
        f"Alerta de stock bajo - {product['name']}",
        f"{product['name']} tiene {product.get('stock_quantity', 0)} unidades",
        {'product_id': product['id'], 'stock': product.get('stock_quantity', 0)})
