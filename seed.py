"""
Demo catalog.

Loaded into the MemoryStore when no database is configured, and used as the
fixture data for the test-suite. Dates are relative to the moment demo_data()
is called so the promotions are always live.
"""

from datetime import datetime, timedelta


def _category(cid, name, slug, sort_order):
    return {'id': cid, 'name': name, 'slug': slug, 'is_active': True, 'sort_order': sort_order}


def _product(pid, name, slug, price, category_id, stock, weight, sale_price=None, featured=False):
    return {
        'id': pid,
        'name': name,
        'slug': slug,
        'price': price,
        'sale_price': sale_price,
        'category_id': category_id,
        'stock_quantity': stock,
        'weight': weight,  # kg
        'image_url': f'/assets/img/products/{slug}.png',
        'is_active': True,
        'is_featured': featured,
    }


def demo_data():
    now = datetime.now()
    day = timedelta(days=1)

    categories = [
        _category('cat-solar', 'Colección Solar', 'coleccion-solar', 0),
        _category('cat-multi', 'Miel Multiflora', 'miel-multiflora', 1),
        _category('cat-mono', 'Miel Monofloral', 'miel-monofloral', 2),
        _category('cat-prop', 'Propóleo', 'propoleo', 3),
        _category('cat-polen', 'Polen', 'polen', 4),
        _category('cat-sets', 'Sets y Regalos', 'sets-regalos', 5),
    ]

    products = [
        _product('solar-1', 'Amanecer', 'miel-amanecer', 289.0, 'cat-solar', 25, 0.35, featured=True),
        _product('solar-2', 'Mediodía', 'miel-mediodia', 319.0, 'cat-solar', 30, 0.35, featured=True),
        _product('solar-3', 'Ocaso', 'miel-ocaso', 349.0, 'cat-solar', 20, 0.35, featured=True),
        _product('multi-1', 'Miel Multiflora de Montaña', 'miel-multiflora-montana', 280.0, 'cat-multi', 50, 0.5),
        _product('multi-2', 'Miel Multiflora Familiar', 'miel-multiflora-familiar', 450.0, 'cat-multi', 35, 1.0,
                 sale_price=399.0),
        _product('mono-1', 'Miel de Azahar', 'miel-azahar', 320.0, 'cat-mono', 40, 0.5),
        _product('mono-2', 'Miel de Aguacate', 'miel-aguacate', 340.0, 'cat-mono', 4, 0.5),
        _product('prop-1', 'Extracto de Propóleo', 'extracto-propoleo', 180.0, 'cat-prop', 60, 0.1),
        _product('polen-1', 'Polen de Abeja', 'polen-abeja', 220.0, 'cat-polen', 0, 0.25),
        _product('set-1', 'Set Degustación', 'set-degustacion', 750.0, 'cat-sets', 15, 1.2),
    ]

    promotions = [
        {
            'id': 'promo-flash',
            'name': 'Flash Sale Colección Solar',
            'type': 'flash_sale',
            'discount_type': 'percentage',
            'discount_value': 15,
            'eligible_products': [],
            'eligible_categories': ['cat-solar'],
            'max_uses': 100,
            'max_uses_per_customer': 1,
            'current_uses': 47,
            'starts_at': (now - day).isoformat(),
            'ends_at': (now + 2 * day).isoformat(),
            'days_of_week': [],
            'is_active': True,
            'priority': 10,
            'stackable': False,
            'badge_text': 'Flash Sale',
            'landing_url': '/products?category=cat-solar',
            'config': {},
        },
        {
            'id': 'promo-bundle',
            'name': 'Combo Solar',
            'type': 'bundle',
            'discount_type': 'fixed',
            'discount_value': 0,
            'max_uses': None,
            'current_uses': 23,
            'starts_at': (now - 30 * day).isoformat(),
            'ends_at': None,
            'is_active': True,
            'priority': 5,
            'stackable': False,
            'badge_text': 'Pack Ahorro',
            'config': {'bundle_products': ['solar-1', 'solar-2', 'solar-3'], 'bundle_price': 850},
        },
        {
            'id': 'promo-3x2',
            'name': '3x2 en Miel Multiflora',
            'type': 'bogo',
            'discount_type': 'percentage',
            'discount_value': 100,
            'eligible_categories': ['cat-multi'],
            'max_uses': 50,
            'current_uses': 12,
            'starts_at': (now - day).isoformat(),
            'ends_at': (now + 14 * day).isoformat(),
            'is_active': True,
            'priority': 8,
            'badge_text': '3x2',
            'config': {'buy_quantity': 3, 'get_quantity': 1},
        },
        {
            'id': 'promo-volume',
            'name': 'Descuento por Volumen',
            'type': 'tiered',
            'discount_type': 'percentage',
            'discount_value': 0,
            'eligible_categories': ['cat-mono'],
            'starts_at': (now - 60 * day).isoformat(),
            'ends_at': None,
            'is_active': True,
            'priority': 3,
            'badge_text': 'Más es Menos',
            'config': {'tiers': [
                {'min_quantity': 3, 'discount': 5},
                {'min_quantity': 6, 'discount': 10},
                {'min_quantity': 12, 'discount': 15},
            ]},
        },
        {
            'id': 'promo-welcome',
            'name': 'Bienvenida',
            'type': 'first_purchase',
            'discount_type': 'percentage',
            'discount_value': 10,
            'starts_at': (now - 90 * day).isoformat(),
            'ends_at': None,
            'is_active': False,
            'priority': 1,
            'badge_text': 'Primera compra',
            'config': {'maximum_discount': 150},
        },
    ]

    coupons = [
        {
            'id': 'coup-welcome',
            'code': 'BIENVENIDO10',
            'description': '10% en tu primera compra',
            'discount_type': 'percentage',
            'discount_value': 10,
            'minimum_amount': 0,
            'maximum_discount': 200,
            'usage_limit': None,
            'usage_per_user': 1,
            'used_count': 0,
            'valid_from': (now - 30 * day).isoformat(),
            'valid_until': None,
            'is_active': True,
        },
        {
            'id': 'coup-freeship',
            'code': 'ENVIOGRATIS',
            'description': 'Envío gratis en compras mayores a $500',
            'discount_type': 'free_shipping',
            'discount_value': 0,
            'minimum_amount': 500,
            'usage_limit': 100,
            'usage_per_user': None,
            'used_count': 5,
            'valid_from': None,
            'valid_until': (now + 30 * day).isoformat(),
            'is_active': True,
        },
        {
            'id': 'coup-fifty',
            'code': 'DESCUENTO50',
            'description': '$50 de descuento',
            'discount_type': 'fixed',
            'discount_value': 50,
            'minimum_amount': 300,
            'usage_limit': 10,
            'usage_per_user': None,
            'used_count': 10,
            'valid_from': None,
            'valid_until': None,
            'is_active': True,
        },
    ]

    shipping_zones = [
        {'id': 'zone-local', 'name': 'Veracruz', 'states': ['Veracruz'], 'is_active': True},
        {'id': 'zone-centro', 'name': 'Centro', 'is_active': True,
         'states': ['Ciudad de México', 'Estado de México', 'Puebla', 'Tlaxcala', 'Hidalgo', 'Morelos']},
        {'id': 'zone-nacional', 'name': 'Resto del país', 'states': [], 'is_default': True, 'is_active': True},
    ]

    shipping_rates = [
        {'id': 'rate-local-std', 'zone_id': 'zone-local', 'name': 'Estándar', 'price': 79.0,
         'free_shipping_threshold': 800, 'max_weight': 20, 'estimated_days_min': 1,
         'estimated_days_max': 3, 'is_active': True},
        {'id': 'rate-centro-std', 'zone_id': 'zone-centro', 'name': 'Estándar', 'price': 99.0,
         'free_shipping_threshold': 1000, 'max_weight': 20, 'estimated_days_min': 3,
         'estimated_days_max': 5, 'is_active': True},
        {'id': 'rate-centro-exp', 'zone_id': 'zone-centro', 'name': 'Express', 'price': 149.0,
         'free_shipping_threshold': None, 'max_weight': 10, 'estimated_days_min': 1,
         'estimated_days_max': 2, 'is_active': True},
        {'id': 'rate-nacional-std', 'zone_id': 'zone-nacional', 'name': 'Estándar', 'price': 129.0,
         'free_shipping_threshold': 1200, 'max_weight': 20, 'estimated_days_min': 5,
         'estimated_days_max': 7, 'is_active': True},
    ]

    customers = [
        {'id': 'cust-ana', 'email': 'ana@example.com', 'name': 'Ana López', 'total_orders': 3,
         'total_spent': 1450.0},
        {'id': 'cust-luis', 'email': 'luis@example.com', 'name': 'Luis Pérez', 'total_orders': 0,
         'total_spent': 0.0},
    ]

    return {
        'categories': categories,
        'products': products,
        'promotions': promotions,
        'coupons': coupons,
        'shipping_zones': shipping_zones,
        'shipping_rates': shipping_rates,
        'customers': customers,
    }
