import logging

from flask import has_request_context, request

from utils import now_iso

logger = logging.getLogger(__name__)


def log_action(store, action, data=None, actor=None):
    # audit logging for admin changes and the order lifecycle
    entry = {
        'ts': now_iso(),
        'action': action,
        'actor': actor,
        'data': data,
        'ip': request.remote_addr if has_request_context() else None,
    }
    logger.info('audit %s %s', action, data or '')
    return store.insert('audit_log', entry)


def list_audit(store, action=None, limit=100, offset=0):
    filters = {'action': action} if action else None
    total = store.count('audit_log', filters)
    entries = store.list('audit_log', filters, sort='-ts', limit=limit, offset=offset)
    return {'entries': entries, 'total': total, 'limit': limit, 'offset': offset}
