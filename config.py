"""
Application configuration.

Everything that comes from the environment is read once, in Config.from_env(),
and the resulting object is handed to create_app() and from there to whatever
needs it. Nothing else in the codebase should touch os.environ.
"""

import os

from dotenv import load_dotenv
from flask import current_app

from errors import ConfigError

# placeholder values shipped in .env.example, treated as "not set"
PLACEHOLDERS = {'', 'changeme', 'your-resend-api-key', 'your-envia-api-key', 'your-stripe-secret-key',
                'your-stripe-webhook-secret'}


def _flag(value, default=False):
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _clean(value):
    if value is None or value.strip() in PLACEHOLDERS:
        return None
    return value.strip()


class Config:
    def __init__(self, env='development', secret_key='dev-secret-change-me',
                 demo_mode=None, mongo_uri=None, mongo_db='mieldesol',
                 admin_api_key=None, admin_email=None, envia_api_key=None,
                 envia_api_url='https://api.envia.com', origin=None,
                 resend_api_key=None, email_from='Miel de Sol <pedidos@mieldesol.com>',
                 stripe_secret_key=None, stripe_webhook_secret=None, callback_secret=None,
                 store_name='Miel de Sol', site_url='https://mieldesol.com',
                 tax_rate=0.0, currency='MXN', loyalty_min_orders=1,
                 low_stock_threshold=5, webhook_timeout=10, webhook_max_failures=5,
                 carrier_timeout=30, log_level='INFO', port=5001):
        self.env = env
        self.secret_key = secret_key
        self.mongo_uri = mongo_uri
        self.mongo_db = mongo_db
        # no database outside production means demo data, unless told otherwise
        if demo_mode is None:
            demo_mode = mongo_uri is None and env != 'production'
        self.demo_mode = demo_mode
        self.admin_api_key = admin_api_key
        self.admin_email = admin_email
        self.envia_api_key = envia_api_key
        self.envia_api_url = envia_api_url.rstrip('/')
        self.origin = origin or default_origin()
        self.resend_api_key = resend_api_key
        self.email_from = email_from
        self.stripe_secret_key = stripe_secret_key
        self.stripe_webhook_secret = stripe_webhook_secret
        # shared secret for provider callbacks that cannot sign their requests
        self.callback_secret = callback_secret
        self.store_name = store_name
        self.site_url = site_url
        self.tax_rate = float(tax_rate)
        self.currency = currency
        self.loyalty_min_orders = int(loyalty_min_orders)
        self.low_stock_threshold = int(low_stock_threshold)
        self.webhook_timeout = float(webhook_timeout)
        self.webhook_max_failures = int(webhook_max_failures)
        self.carrier_timeout = float(carrier_timeout)
        self.log_level = log_level.upper()
        self.port = int(port)

    @classmethod
    def from_env(cls, environ=None, dotenv=True):
        if environ is None:
            if dotenv:
                load_dotenv()
            environ = os.environ
        get = environ.get

        origin = default_origin()
        for key in origin:
            value = _clean(get('ENVIA_ORIGIN_' + key.upper()))
            if value:
                origin[key] = value

        demo = get('DEMO_MODE')
        return cls(
            env=(get('APP_ENV') or get('FLASK_ENV') or 'development').lower(),
            secret_key=get('SECRET_KEY', 'dev-secret-change-me'),
            demo_mode=_flag(demo) if demo is not None else None,
            mongo_uri=_clean(get('MONGO_URI')),
            mongo_db=get('MONGO_DB', 'mieldesol'),
            admin_api_key=_clean(get('ADMIN_API_KEY')),
            admin_email=_clean(get('ADMIN_EMAIL')),
            envia_api_key=_clean(get('ENVIA_API_KEY')),
            envia_api_url=get('ENVIA_API_URL', 'https://api.envia.com'),
            origin=origin,
            resend_api_key=_clean(get('RESEND_API_KEY')),
            email_from=get('EMAIL_FROM', 'Miel de Sol <pedidos@mieldesol.com>'),
            stripe_secret_key=_clean(get('STRIPE_SECRET_KEY')),
            stripe_webhook_secret=_clean(get('STRIPE_WEBHOOK_SECRET')),
            callback_secret=_clean(get('CALLBACK_SECRET')),
            store_name=get('STORE_NAME', 'Miel de Sol'),
            site_url=get('APP_URL', 'https://mieldesol.com'),
            tax_rate=get('TAX_RATE', '0'),
            currency=get('CURRENCY', 'MXN'),
            loyalty_min_orders=get('LOYALTY_MIN_ORDERS', '1'),
            low_stock_threshold=get('LOW_STOCK_THRESHOLD', '5'),
            webhook_timeout=get('WEBHOOK_TIMEOUT', '10'),
            webhook_max_failures=get('WEBHOOK_MAX_FAILURES', '5'),
            carrier_timeout=get('CARRIER_TIMEOUT', '30'),
            log_level=get('LOG_LEVEL', 'INFO'),
            port=get('PORT', '5001'),
        )

    @property
    def is_production(self):
        return self.env == 'production'

    @property
    def testing(self):
        return self.env == 'testing'

    @property
    def carrier_configured(self):
        return bool(self.envia_api_key)

    @property
    def email_configured(self):
        return bool(self.resend_api_key)

    @property
    def payments_configured(self):
        key = self.stripe_secret_key or ''
        return key.startswith(('sk_', 'rk_')) and len(key) > 20

    def validate(self):
        """refuse to boot production on demo data unless DEMO_MODE is forced"""
        if self.is_production and self.mongo_uri is None and not self.demo_mode:
            raise ConfigError('MONGO_URI must be set in production (or set DEMO_MODE=true)')
        if self.is_production and self.secret_key == 'dev-secret-change-me':
            raise ConfigError('SECRET_KEY must be set in production')
        return self

    def public(self):
        # safe subset for /version and the admin dashboard
        return {
            'env': self.env,
            'demo_mode': self.demo_mode,
            'store_name': self.store_name,
            'currency': self.currency,
            'carrier_configured': self.carrier_configured,
            'email_configured': self.email_configured,
            'payments_configured': self.payments_configured,
        }


def default_origin():
    return {
        'name': 'Miel de Sol',
        'company': 'Miel de Sol',
        'email': 'envios@mieldesol.com',
        'phone': '5551234567',
        'street': 'Calle Principal 123',
        'city': 'Xalapa',
        'state': 'VE',
        'postal_code': '91000',
    }


def current_config():
    return current_app.extensions['shop_config']


def current_http():
    # shared requests.Session for outbound calls (webhooks, carriers, email)
    return current_app.extensions['shop_http']
