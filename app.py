"""
Miel de Sol storefront and back office.

    python app.py            # dev server on PORT (default 5001)
    flask --app app run      # same, through the flask cli

Without MONGO_URI the app runs on the in-memory demo catalog (see seed.py).
Configuration is read from the environment / .env, see config.py.
"""

import logging

import requests
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

import admin
import api_v1
import shop
from audit import log_action
from auth import RateLimiter
from config import Config
from errors import ShopError
from store import open_store

logger = logging.getLogger(__name__)


def configure_logging(config):
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
    )
    # werkzeug access logs are noisy under debug
    if config.log_level != 'DEBUG':
        logging.getLogger('werkzeug').setLevel(logging.WARNING)


def create_app(config=None, store=None, http=None):
    if config is None:
        config = Config.from_env().validate()
    configure_logging(config)

    app = Flask(__name__)
    app.secret_key = config.secret_key
    app.config['TESTING'] = config.testing

    if http is None:
        http = requests.Session()
        http.headers['User-Agent'] = f'{config.store_name} shop'
    app.extensions['shop_config'] = config
    app.extensions['shop_store'] = store if store is not None else open_store(config)
    app.extensions['shop_http'] = http
    app.extensions['shop_rate_limiter'] = RateLimiter()

    app.register_blueprint(shop.bp)
    app.register_blueprint(admin.bp)
    app.register_blueprint(api_v1.bp)

    register_error_handlers(app)
    logger.info('%s started (env=%s, demo_mode=%s)', config.store_name, config.env, config.demo_mode)
    return app


def register_error_handlers(app):

    @app.errorhandler(ShopError)
    def handle_shop_error(e):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({'error': 'Endpoint not found'}), 404

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({'error': e.description}), e.code

    @app.errorhandler(Exception)
    def handle_exception(e):
        # in debug mode, let it bubble up
        if app.debug:
            raise e
        logger.exception('unhandled error')
        log_action(app.extensions['shop_store'], 'unhandled_error',
                   {'error': str(e), 'type': type(e).__name__})
        return jsonify({'error': 'An unexpected error occurred'}), 500


if __name__ == '__main__':
    config = Config.from_env().validate()
    app = create_app(config)
    store = app.extensions['shop_store']
    print("=" * 50)
    print(f"{config.store_name} v{shop.VERSION} ({config.env})")
    print("=" * 50)
    print(f"Loaded {store.count('products')} products")
    print(f"Loaded {store.count('promotions')} promotions")
    if config.demo_mode:
        print("DEMO MODE: in-memory data, nothing is persisted")
    if not config.carrier_configured:
        print("Carrier API not configured, using fixed shipping rates")
    print(f"Starting server on http://localhost:{config.port}")
    print("=" * 50)
    app.run(host='0.0.0.0', port=config.port, debug=config.env == 'development')
