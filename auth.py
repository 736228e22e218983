"""
Admin and API key authentication.

Admin routes take the shared ``X-Admin-Key``. External integrations use
per-client API keys (``Authorization: Bearer modhu_...`` or ``?api_key=``).
Only a SHA-256 hash and a short prefix of each key are stored; the full key
is returned once, when it is created.
"""

import hashlib
import hmac
import logging
import secrets
import threading
import time
from datetime import datetime
from functools import wraps

from flask import current_app, g, jsonify, make_response, request

from config import current_config
from errors import Forbidden, NotFound, Unauthorized, ValidationError
from store import current_store
from utils import now_iso, parse_datetime, to_int, to_list

logger = logging.getLogger(__name__)

KEY_PREFIX = 'modhu_'
PREFIX_LENGTH = 10
RATE_LIMIT_WINDOW = 60
DEFAULT_RATE_LIMIT = 100

RESOURCES = ['products', 'orders', 'customers', 'inventory', 'promotions', 'coupons', 'webhooks', 'analytics']
ACTIONS = ['read', 'write']


# ---------- admin ----------

def require_admin(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        expected = current_config().admin_api_key
        provided = request.headers.get('X-Admin-Key', '')
        if not expected:
            raise Forbidden('Admin access is not configured')
        if not provided:
            raise Unauthorized('Admin key required')
        if not hmac.compare_digest(provided, expected):
            logger.warning('bad admin key from %s', request.remote_addr)
            raise Forbidden('Admin access required')
        return f(*args, **kwargs)
    return decorated


# ---------- keys ----------

def generate_api_key():
    return KEY_PREFIX + secrets.token_hex(24)


def hash_key(key):
    return hashlib.sha256(key.encode('utf-8')).hexdigest()


def _clean_permissions(permissions):
    permissions = to_list(permissions)
    if not permissions:
        raise ValidationError('At least one permission is required')
    for perm in permissions:
        if perm == '*':
            continue
        action, _, resource = perm.partition(':')
        if action not in ACTIONS + ['*'] or resource not in RESOURCES + ['*']:
            raise ValidationError(f'Invalid permission: {perm}')
    return permissions


def create_api_key(store, data):
    name = (data.get('name') or '').strip()
    if not name:
        raise ValidationError('Name is required')
    expires_at = None
    if data.get('expires_at'):
        expires = parse_datetime(data['expires_at'])
        if not expires:
            raise ValidationError('Invalid expires_at')
        expires_at = expires.isoformat()

    key = generate_api_key()
    record = store.insert('api_keys', {
        'name': name,
        'key_prefix': key[:PREFIX_LENGTH],
        'key_hash': hash_key(key),
        'permissions': _clean_permissions(data.get('permissions') or ['read:*']),
        'rate_limit': to_int(data.get('rate_limit'), DEFAULT_RATE_LIMIT),
        'is_active': True,
        'expires_at': expires_at,
        'last_used_at': None,
    })
    logger.info('api key %s created (%s)', record['key_prefix'], name)
    return {**public_key(record), 'key': key}


def public_key(record):
    return {k: v for k, v in record.items() if k != 'key_hash'}


def list_api_keys(store):
    return [public_key(k) for k in store.list('api_keys', sort='-created_at')]


def revoke_api_key(store, key_id):
    if not store.get('api_keys', key_id):
        raise NotFound('API key not found')
    return public_key(store.update('api_keys', key_id, {'is_active': False, 'revoked_at': now_iso()}))


def delete_api_key(store, key_id):
    if not store.delete('api_keys', key_id):
        raise NotFound('API key not found')
    return True


def has_permission(granted, required):
    action, _, resource = required.partition(':')
    for perm in granted or []:
        if perm in ('*', required, f'{action}:*', f'*:{resource}'):
            return True
    return False


def authenticate(store, key, now=None):
    """returns the key record, raises when the key is unusable"""
    if not key:
        raise Unauthorized('API key required')
    record = store.find_one('api_keys', {'key_hash': hash_key(key)})
    if not record or not record.get('is_active'):
        raise Unauthorized('Invalid API key')
    expires = parse_datetime(record.get('expires_at'))
    if expires and expires < (now or datetime.now()):
        raise Unauthorized('API key has expired')
    return record


# ---------- rate limiting ----------

class RateLimiter:
    """fixed window counter per key, kept in process memory"""

    def __init__(self, window=RATE_LIMIT_WINDOW, clock=time.time):
        self.window = window
        self.clock = clock
        self._hits = {}
        self._lock = threading.Lock()

    def hit(self, identifier, limit):
        """returns (allowed, remaining, reset_at)"""
        now = self.clock()
        with self._lock:
            start, count = self._hits.get(identifier, (now, 0))
            if now - start >= self.window:
                start, count = now, 0
            reset_at = int(start + self.window)
            if count >= limit:
                return False, 0, reset_at
            count += 1
            self._hits[identifier] = (start, count)
            return True, limit - count, reset_at


def _extract_key():
    header = request.headers.get('Authorization', '')
    if header.startswith('Bearer '):
        return header[len('Bearer '):].strip()
    return request.args.get('api_key', '').strip()


def require_api_key(permission):
    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            store = current_store()
            record = authenticate(store, _extract_key())
            if not has_permission(record.get('permissions'), permission):
                raise Forbidden(f'Missing permission: {permission}', required=permission)

            limit = record.get('rate_limit') or DEFAULT_RATE_LIMIT
            limiter = current_app.extensions['shop_rate_limiter']
            allowed, remaining, reset_at = limiter.hit(record['id'], limit)
            headers = {
                'X-RateLimit-Limit': str(limit),
                'X-RateLimit-Remaining': str(remaining),
                'X-RateLimit-Reset': str(reset_at),
            }
            if not allowed:
                logger.warning('rate limit hit for api key %s', record['key_prefix'])
                resp = jsonify({'error': 'Rate limit exceeded', 'retry_after': max(reset_at - int(limiter.clock()), 0)})
                resp.status_code = 429
                resp.headers.update(headers)
                return resp

            store.update('api_keys', record['id'], {'last_used_at': now_iso()})
            g.api_key = record
            resp = make_response(f(*args, **kwargs))
            resp.headers.update(headers)
            return resp
        return decorated
    return decorator
