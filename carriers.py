"""
Envia.com multi-carrier client: quotes, labels and tracking.

get_quotes() asks every carrier in parallel (one /ship/rate/ call each) and
merges the answers cheapest first. When the API key is missing, or every
carrier fails, the fixed standard/express rates are returned instead with
``is_fallback`` set, so checkout always has something to offer.
"""

import logging
from concurrent.futures import ThreadPoolExecutor

import requests

from utils import now_iso, parse_datetime

logger = logging.getLogger(__name__)

SUPPORTED_CARRIERS = ['estafeta', 'fedex', 'dhl', 'redpack', 'paquetexpress', '99minutos']

CARRIER_NAMES = {
    'estafeta': 'Estafeta',
    'fedex': 'FedEx',
    'dhl': 'DHL Express',
    'redpack': 'Redpack',
    'paquetexpress': 'Paquete Express',
    '99minutos': '99 Minutos',
    'ups': 'UPS',
}

EXPRESS_KEYWORDS = ['express', 'priority', 'overnight', 'next day', 'same day', '24h', '99 min']

DEFAULT_ITEM_WEIGHT = 0.5  # kg, when a product has none
MIN_PACKAGE_WEIGHT = 0.5

MEXICO_STATES = {
    'aguascalientes': 'AG', 'baja california': 'BC', 'baja california sur': 'BS',
    'campeche': 'CM', 'chiapas': 'CS', 'chihuahua': 'CH', 'coahuila': 'CO', 'colima': 'CL',
    'ciudad de mexico': 'DF', 'ciudad de méxico': 'DF', 'cdmx': 'DF', 'df': 'DF',
    'distrito federal': 'DF', 'durango': 'DG', 'guanajuato': 'GT', 'guerrero': 'GR',
    'hidalgo': 'HG', 'jalisco': 'JA', 'estado de mexico': 'EM', 'estado de méxico': 'EM',
    'mexico': 'EM', 'méxico': 'EM', 'michoacan': 'MI', 'michoacán': 'MI', 'morelos': 'MO',
    'nayarit': 'NA', 'nuevo leon': 'NL', 'nuevo león': 'NL', 'oaxaca': 'OA', 'puebla': 'PU',
    'queretaro': 'QT', 'querétaro': 'QT', 'quintana roo': 'QR', 'san luis potosi': 'SL',
    'san luis potosí': 'SL', 'sinaloa': 'SI', 'sonora': 'SO', 'tabasco': 'TB',
    'tamaulipas': 'TM', 'tlaxcala': 'TL', 'veracruz': 'VE', 'yucatan': 'YU', 'yucatán': 'YU',
    'zacatecas': 'ZA',
}

FIXED_RATES = [
    {
        'carrier': 'standard',
        'carrier_name': 'Envío Estándar',
        'service_id': 'standard',
        'service_name': 'Estándar',
        'service_description': 'Entrega en 5-7 días hábiles',
        'price': 99.0,
        'currency': 'MXN',
        'delivery_days': '5-7',
        'is_express': False,
    },
    {
        'carrier': 'express',
        'carrier_name': 'Envío Express',
        'service_id': 'express',
        'service_name': 'Express',
        'service_description': 'Entrega en 2-3 días hábiles',
        'price': 149.0,
        'currency': 'MXN',
        'delivery_days': '2-3',
        'is_express': True,
    },
]

STATUS_MAP = {
    'CREATED': 'label_created',
    'PENDING': 'awaiting_pickup',
    'INFORMATION': 'label_confirmed',
    'PICKED UP': 'picked_up',
    'PICKED_UP': 'picked_up',
    '1 PICKUP ATTEMPT': 'awaiting_pickup',
    'OUT FOR PICKUP': 'awaiting_pickup',
    'SHIPPED': 'in_transit',
    'IN_TRANSIT': 'in_transit',
    'IN TRANSIT': 'in_transit',
    'OUT FOR DELIVERY': 'out_for_delivery',
    'OUT_FOR_DELIVERY': 'out_for_delivery',
    'REDIRECTED': 'in_transit',
    '1 DELIVERY ATTEMPT': 'delivery_attempt_1',
    '2 DELIVERY ATTEMPT': 'delivery_attempt_2',
    '3 DELIVERY ATTEMPT': 'delivery_attempt_3',
    'DELIVERED': 'delivered',
    'PICKUP AT OFFICE': 'delivered',
    'DELIVERED AT ORIGIN': 'returned',
    'DELAYED': 'delayed',
    'ADDRESS ERROR': 'address_error',
    'ADDRESS_ERROR': 'address_error',
    'UNDELIVERABLE': 'undeliverable',
    'LOST': 'lost',
    'DAMAGED': 'damaged',
    'RETURN PROBLEM': 'exception',
    'RETURN_PROBLEM': 'exception',
    'RETURNED': 'returned',
    'REJECTED': 'rejected',
    'CANCELED': 'cancelled',
    'CANCELLED': 'cancelled',
}

STATUS_LABELS = {
    'pending': 'Pendiente',
    'label_created': 'Guía creada',
    'label_confirmed': 'Guía confirmada',
    'awaiting_pickup': 'Esperando recolección',
    'picked_up': 'Recolectado',
    'in_transit': 'En tránsito',
    'out_for_delivery': 'En reparto',
    'delivery_attempt_1': 'Primer intento de entrega',
    'delivery_attempt_2': 'Segundo intento de entrega',
    'delivery_attempt_3': 'Tercer intento de entrega',
    'delayed': 'Retrasado',
    'exception': 'Incidencia',
    'address_error': 'Error de dirección',
    'undeliverable': 'No entregable',
    'lost': 'Extraviado',
    'damaged': 'Dañado',
    'delivered': 'Entregado',
    'returned': 'Devuelto',
    'rejected': 'Rechazado',
    'cancelled': 'Cancelado',
}

STATUS_CATEGORIES = {
    'pending': 'needs_action',
    'label_created': 'awaiting_pickup',
    'label_confirmed': 'awaiting_pickup',
    'awaiting_pickup': 'awaiting_pickup',
    'picked_up': 'in_transit',
    'in_transit': 'in_transit',
    'out_for_delivery': 'in_transit',
    'delivery_attempt_1': 'delivery_issue',
    'delivery_attempt_2': 'delivery_issue',
    'delivery_attempt_3': 'delivery_issue',
    'delayed': 'problem',
    'exception': 'problem',
    'address_error': 'problem',
    'undeliverable': 'problem',
    'lost': 'critical',
    'damaged': 'critical',
    'delivered': 'completed',
    'returned': 'closed',
    'rejected': 'closed',
    'cancelled': 'closed',
}

FINAL_STATUSES = {'delivered', 'returned', 'rejected', 'cancelled', 'lost'}
PROBLEM_STATUSES = {'delayed', 'exception', 'address_error', 'undeliverable', 'lost', 'damaged',
                    'delivery_attempt_1', 'delivery_attempt_2', 'delivery_attempt_3'}


# ---------- status helpers ----------

def map_status(carrier_status):
    if not carrier_status:
        return 'pending'
    return STATUS_MAP.get(str(carrier_status).upper().strip(), 'exception')


def status_label(status):
    return STATUS_LABELS.get((status or '').lower(), status or 'Desconocido')


def status_category(status):
    return STATUS_CATEGORIES.get((status or '').lower(), 'unknown')


def is_final_status(status):
    return (status or '').lower() in FINAL_STATUSES


def is_problem_status(status):
    return (status or '').lower() in PROBLEM_STATUSES


def normalize_state_code(state):
    """state name or code -> 2 letter code the carrier API expects"""
    if not state:
        return ''
    key = state.lower().strip()
    if len(key) == 2 and key.upper() in MEXICO_STATES.values():
        return key.upper()
    if key in MEXICO_STATES:
        return MEXICO_STATES[key]
    logger.warning('unknown state %r, using its first 2 letters', state)
    return state.strip()[:2].upper()


def is_express_service(name):
    name = (name or '').lower()
    return any(k in name for k in EXPRESS_KEYWORDS)


# ---------- packages ----------

def cart_weight(items):
    total = 0.0
    for item in items:
        try:
            weight = float(item.get('weight') or 0)
        except (TypeError, ValueError):
            weight = 0
        total += (weight or DEFAULT_ITEM_WEIGHT) * item['quantity']
    return total


def prepare_packages(items):
    # everything ships in a single box for now
    value = sum(item['unit_price'] * item['quantity'] for item in items)
    return [{
        'content': 'Miel artesanal y productos de colmena',
        'quantity': 1,
        'weight': max(cart_weight(items), MIN_PACKAGE_WEIGHT),
        'declared_value': round(value, 2),
        'length': 30,
        'width': 25,
        'height': 20,
    }]


def fixed_rates():
    return {'quotes': [dict(r) for r in FIXED_RATES], 'errors': None, 'is_fallback': True}


# ---------- client ----------

class CarrierClient:

    def __init__(self, config, session=None):
        self.config = config
        self.session = session or requests.Session()

    @property
    def configured(self):
        return self.config.carrier_configured

    def _post(self, path, payload):
        resp = self.session.post(
            self.config.envia_api_url + path,
            json=payload,
            headers={'Authorization': f'Bearer {self.config.envia_api_key}',
                     'Content-Type': 'application/json'},
            timeout=self.config.carrier_timeout,
        )
        resp.raise_for_status()
        return resp.json()

    def _origin(self):
        o = self.config.origin
        return {
            'name': o['name'], 'company': o['company'], 'email': o['email'], 'phone': o['phone'],
            'street': o['street'], 'number': '', 'district': '', 'city': o['city'],
            'state': normalize_state_code(o['state']), 'country': 'MX', 'postalCode': o['postal_code'],
        }

    @staticmethod
    def _destination(dest):
        return {
            'name': dest.get('name') or 'Cliente',
            'company': '',
            'email': dest.get('email') or '',
            'phone': dest.get('phone') or '',
            'street': dest.get('street') or 'Calle',
            'number': dest.get('number') or '',
            'district': dest.get('district') or '',
            'city': dest.get('city'),
            'state': normalize_state_code(dest.get('state')),
            'country': dest.get('country') or 'MX',
            'postalCode': dest.get('postal_code'),
            'reference': dest.get('reference') or '',
        }

    @staticmethod
    def _packages(packages):
        return [{
            'content': p.get('content') or 'Miel artesanal',
            'amount': p.get('quantity') or 1,
            'type': 'box',
            'weight': p.get('weight') or 1,
            'insurance': p.get('insurance') or 0,
            'declaredValue': p.get('declared_value') or 500,
            'weightUnit': 'KG',
            'lengthUnit': 'CM',
            'dimensions': {'length': p.get('length') or 20, 'width': p.get('width') or 15,
                           'height': p.get('height') or 15},
        } for p in packages]

    def _quote_one(self, carrier, destination, packages):
        body = self._post('/ship/rate/', {
            'origin': self._origin(),
            'destination': self._destination(destination),
            'packages': self._packages(packages),
            'shipment': {'carrier': carrier, 'type': 1},
            'settings': {'currency': 'MXN', 'printFormat': 'PDF', 'printSize': 'STOCK_4X6'},
        })
        quotes = []
        for service in (body or {}).get('data') or []:
            name = service.get('serviceName') or service.get('service')
            quotes.append({
                'carrier': carrier,
                'carrier_name': CARRIER_NAMES.get(carrier.lower(), carrier),
                'service_id': service.get('serviceId') or service.get('service'),
                'service_name': name,
                'service_description': service.get('serviceDescription') or '',
                'price': float(service.get('totalPrice') or service.get('basePrice') or 0),
                'currency': 'MXN',
                'delivery_days': service.get('deliveryDays') or service.get('deliveryEstimate') or '3-5',
                'delivery_date': service.get('deliveryDate'),
                'is_express': is_express_service(name),
            })
        return quotes

    def get_quotes(self, destination, packages, carriers=None):
        if not self.configured:
            logger.info('carrier API not configured, using fixed rates')
            return fixed_rates()

        carriers = carriers or SUPPORTED_CARRIERS
        quotes, errors = [], []
        with ThreadPoolExecutor(max_workers=len(carriers)) as pool:
            futures = {c: pool.submit(self._quote_one, c, destination, packages) for c in carriers}
            for carrier, future in futures.items():
                try:
                    quotes.extend(future.result())
                except requests.RequestException as e:
                    status = getattr(e.response, 'status_code', None)
                    logger.warning('quote from %s failed (%s): %s', carrier, status, e)
                    errors.append({'carrier': carrier, 'error': str(e), 'status': status})
                except (TypeError, ValueError, AttributeError, KeyError) as e:
                    logger.warning('quote from %s unreadable: %s', carrier, e)
                    errors.append({'carrier': carrier, 'error': str(e), 'status': None})

        logger.info('carrier quotes: %d ok, %d errors', len(quotes), len(errors))
        if not quotes:
            return fixed_rates()
        quotes.sort(key=lambda q: q['price'])
        return {'quotes': quotes, 'errors': errors or None, 'is_fallback': False}

    def create_label(self, destination, packages, carrier, service_id, order_number):
        if not self.configured:
            return {'success': False, 'error': 'Carrier API not configured', 'error_code': 'API_NOT_CONFIGURED'}
        if not destination.get('postal_code') or not destination.get('city'):
            return {'success': False, 'error': 'Incomplete destination address', 'error_code': 'INVALID_DESTINATION'}
        if not carrier or not service_id:
            return {'success': False, 'error': 'Carrier or service missing', 'error_code': 'MISSING_CARRIER_SERVICE'}

        origin = self._origin()
        origin['reference'] = f'Pedido: {order_number}'
        try:
            body = self._post('/ship/generate/', {
                'origin': origin,
                'destination': self._destination(destination),
                'packages': self._packages(packages),
                'shipment': {'carrier': carrier, 'service': service_id, 'type': 1},
                'settings': {'currency': 'MXN', 'printFormat': 'PDF', 'printSize': 'STOCK_4X6',
                             'comments': f'Pedido #{order_number}'},
            })
        except requests.RequestException as e:
            status = getattr(e.response, 'status_code', None)
            logger.error('label for %s failed (%s): %s', order_number, status, e)
            return {'success': False, 'error': str(e), 'error_code': 'CARRIER_API_ERROR', 'http_status': status}

        data = (body or {}).get('data') or body or {}
        result = data[0] if isinstance(data, list) and data else data
        tracking = result.get('trackingNumber') or result.get('tracking_number')
        label_url = result.get('label') or result.get('labelUrl')
        if not tracking:
            logger.error('label for %s created without tracking number', order_number)
            return {'success': False, 'error': 'Label created without a tracking number',
                    'error_code': 'NO_TRACKING_NUMBER', 'label_url': label_url}

        logger.info('label created for %s: %s %s', order_number, carrier, tracking)
        return {
            'success': True,
            'tracking_number': tracking,
            'label_url': label_url,
            'label_id': result.get('carrierShipmentId') or result.get('shipmentId'),
            'carrier': carrier,
            'service': service_id,
            'estimated_delivery': result.get('deliveryDate'),
        }

    def track(self, tracking_number, carrier):
        if not self.configured:
            return {'success': False, 'error': 'Carrier API not configured',
                    'tracking_number': tracking_number, 'carrier': carrier}
        if not tracking_number or not carrier:
            return {'success': False, 'error': 'Tracking number or carrier missing',
                    'tracking_number': tracking_number, 'carrier': carrier}
        try:
            body = self._post('/ship/tracking/', {'trackingNumber': tracking_number, 'carrier': carrier})
        except requests.RequestException as e:
            logger.warning('tracking %s failed: %s', tracking_number, e)
            return {'success': False, 'error': str(e), 'tracking_number': tracking_number, 'carrier': carrier}

        data = (body or {}).get('data') or body or {}
        if isinstance(data, list):
            data = data[0] if data else {}
        carrier_status = data.get('status') or 'PENDING'
        status = map_status(carrier_status)

        events = []
        for ev in data.get('events') or data.get('checkpoints') or []:
            ev_status = map_status(ev.get('status'))
            events.append({
                'date': ev.get('date') or ev.get('timestamp'),
                'location': ev.get('location') or ev.get('city'),
                'description': ev.get('description') or ev.get('message'),
                'carrier_status': ev.get('status'),
                'status': ev_status,
                'status_label': status_label(ev_status),
            })
        # newest first
        events.sort(key=lambda e: parse_datetime(e['date']) or parse_datetime('1970-01-01'), reverse=True)

        return {
            'success': True,
            'tracking_number': tracking_number,
            'carrier': carrier,
            'carrier_status': carrier_status,
            'status': status,
            'status_label': status_label(status),
            'status_category': status_category(status),
            'is_final': is_final_status(status),
            'is_problem': is_problem_status(status),
            'events': events,
            'latest_event': events[0] if events else None,
            'estimated_delivery': data.get('estimatedDelivery'),
            'last_sync_at': now_iso(),
        }
