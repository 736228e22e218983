import logging

from carriers import cart_weight, prepare_packages
from errors import NotFound, ValidationError
from utils import money, to_float, to_int, to_list

logger = logging.getLogger(__name__)

MEXICAN_STATES = [
    'Aguascalientes', 'Baja California', 'Baja California Sur', 'Campeche',
    'Chiapas', 'Chihuahua', 'Ciudad de México', 'Coahuila', 'Colima',
    'Durango', 'Estado de México', 'Guanajuato', 'Guerrero', 'Hidalgo',
    'Jalisco', 'Michoacán', 'Morelos', 'Nayarit', 'Nuevo León', 'Oaxaca',
    'Puebla', 'Querétaro', 'Quintana Roo', 'San Luis Potosí', 'Sinaloa',
    'Sonora', 'Tabasco', 'Tamaulipas', 'Tlaxcala', 'Veracruz', 'Yucatán', 'Zacatecas',
]


def calculate_shipping(rate, subtotal, weight=0):
    """0 over the free threshold, None when the parcel is too heavy for this rate"""
    if not rate:
        return 0
    threshold = rate.get('free_shipping_threshold')
    if threshold and subtotal >= threshold:
        return 0
    if rate.get('max_weight') and weight > rate['max_weight']:
        return None
    return float(rate['price'])


# ---------- zones ----------

def list_zones(store):
    zones = store.list('shipping_zones', sort='name')
    for zone in zones:
        zone['rates'] = store.list('shipping_rates', {'zone_id': zone['id']}, sort='price')
    return zones


def get_zone(store, zone_id):
    zone = store.get('shipping_zones', zone_id)
    if not zone:
        raise NotFound('Shipping zone not found')
    return zone


def find_zone(store, state):
    state = (state or '').strip().lower()
    default = None
    for zone in store.list('shipping_zones', {'is_active': True}):
        if state and state in [s.lower() for s in zone.get('states') or []]:
            return zone
        if zone.get('is_default'):
            default = zone
    return default


def rates_for_state(store, state):
    zone = find_zone(store, state)
    if not zone:
        return []
    return store.list('shipping_rates', {'zone_id': zone['id'], 'is_active': True}, sort='price')


def shipping_options(store, state, subtotal, weight):
    options = []
    for rate in rates_for_state(store, state):
        cost = calculate_shipping(rate, subtotal, weight)
        if cost is None:
            continue
        options.append({
            'rate_id': rate['id'],
            'name': rate['name'],
            'cost': money(cost),
            'free': cost == 0,
            'estimated_days_min': rate.get('estimated_days_min'),
            'estimated_days_max': rate.get('estimated_days_max'),
        })
    return options


def create_zone(store, data):
    name = (data.get('name') or '').strip()
    if not name:
        raise ValidationError('Name is required')
    return store.insert('shipping_zones', {
        'name': name,
        'states': to_list(data.get('states')),
        'is_default': data.get('is_default') is True,
        'is_active': data.get('is_active') is not False,
    })


def update_zone(store, zone_id, data):
    get_zone(store, zone_id)
    changes = {}
    if 'name' in data:
        changes['name'] = data['name']
    if 'states' in data:
        changes['states'] = to_list(data['states'])
    for flag in ('is_default', 'is_active'):
        if flag in data:
            changes[flag] = bool(data[flag])
    return store.update('shipping_zones', zone_id, changes)


def delete_zone(store, zone_id):
    get_zone(store, zone_id)
    for rate in store.list('shipping_rates', {'zone_id': zone_id}):
        store.delete('shipping_rates', rate['id'])
    return store.delete('shipping_zones', zone_id)


# ---------- rates ----------

def _clean_rate(data, partial=False):
    out = {}
    if not partial or 'name' in data:
        if not (data.get('name') or '').strip():
            raise ValidationError('Name is required')
        out['name'] = data['name'].strip()
    if not partial or 'price' in data:
        price = to_float(data.get('price'))
        if price is None or price < 0:
            raise ValidationError('Price must be a positive number')
        out['price'] = price
    if not partial or 'free_shipping_threshold' in data:
        out['free_shipping_threshold'] = to_float(data.get('free_shipping_threshold'))
    if not partial or 'max_weight' in data:
        out['max_weight'] = to_float(data.get('max_weight'))
    for field in ('estimated_days_min', 'estimated_days_max'):
        if not partial or field in data:
            out[field] = to_int(data.get(field))
    if not partial or 'is_active' in data:
        out['is_active'] = data.get('is_active') is not False
    return out


def create_rate(store, zone_id, data):
    get_zone(store, zone_id)
    rate = _clean_rate(data)
    rate['zone_id'] = zone_id
    return store.insert('shipping_rates', rate)


def update_rate(store, rate_id, data):
    if not store.get('shipping_rates', rate_id):
        raise NotFound('Shipping rate not found')
    return store.update('shipping_rates', rate_id, _clean_rate(data, partial=True))


def delete_rate(store, rate_id):
    if not store.delete('shipping_rates', rate_id):
        raise NotFound('Shipping rate not found')
    return True


# ---------- checkout ----------

def resolve_shipping(store, carrier_client, selection, destination, subtotal, items):
    """
    turn the customer's choice into a priced shipping line. accepts a zone
    rate ({'rate_id': ...}) or a carrier service ({'carrier', 'service_id'});
    carrier prices are always re-quoted, never taken from the client.
    """
    selection = selection or {}
    weight = cart_weight(items)

    if selection.get('rate_id'):
        rate = store.get('shipping_rates', selection['rate_id'])
        if not rate or not rate.get('is_active'):
            raise ValidationError('Shipping rate not available')
        allowed = [r['id'] for r in rates_for_state(store, destination.get('state'))]
        if rate['id'] not in allowed:
            raise ValidationError('Shipping rate does not cover that state')
        cost = calculate_shipping(rate, subtotal, weight)
        if cost is None:
            raise ValidationError('Order is too heavy for this shipping rate')
        return {'method': 'rate', 'rate_id': rate['id'], 'name': rate['name'], 'cost': money(cost),
                'carrier': None, 'service_id': None}

    if selection.get('carrier'):
        quoted = carrier_client.get_quotes(destination, prepare_packages(items), [selection['carrier']]
                                           if carrier_client.configured else None)
        for quote in quoted['quotes']:
            if quote['carrier'] == selection['carrier'] and quote['service_id'] == selection.get('service_id'):
                return {'method': 'carrier', 'rate_id': None, 'name': quote['service_name'],
                        'cost': money(quote['price']), 'carrier': quote['carrier'],
                        'service_id': quote['service_id']}
        raise ValidationError('Shipping service not available')

    raise ValidationError('Choose a shipping option')
