from unittest.mock import MagicMock

import pytest
import requests

from app import create_app
from config import Config
from seed import demo_data
from store import MemoryStore

ADMIN_KEY = 'test-admin-key'
CALLBACK_SECRET = 'test-callback-secret'


def _response(status=200, body=None):
    resp = MagicMock()
    resp.status_code = status
    resp.ok = status < 400
    resp.json.return_value = body if body is not None else {}
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f'{status} error', response=resp)
    return resp


@pytest.fixture
def make_response():
    return _response


@pytest.fixture
def config():
    return Config(env='testing', secret_key='test-secret', admin_api_key=ADMIN_KEY,
                  admin_email='admin@example.com', callback_secret=CALLBACK_SECRET)


@pytest.fixture
def store():
    return MemoryStore(demo_data())


@pytest.fixture
def http():
    session = MagicMock(spec=requests.Session)
    session.post.return_value = _response(200, {'ok': True})
    return session


@pytest.fixture
def app(config, store, http):
    return create_app(config, store, http)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_headers():
    return {'X-Admin-Key': ADMIN_KEY}


@pytest.fixture
def checkout_body():
    return {
        'customer': {'email': 'maria@example.com', 'name': 'María Ruiz', 'phone': '2281234567'},
        'shipping_address': {'street': 'Av. Ávila Camacho', 'number': '12', 'city': 'Xalapa',
                             'state': 'Veracruz', 'postal_code': '91000'},
        'shipping': {'rate_id': 'rate-local-std'},
    }
