import re
import uuid
from datetime import datetime

DATE_FORMATS = [
    '%Y-%m-%d',
    '%Y-%m-%dT%H:%M',
    '%Y-%m-%dT%H:%M:%S',
    '%Y-%m-%dT%H:%M:%S.%f',
    '%d/%m/%Y',
]


def gen_id(prefix):
    return f"{prefix}_{uuid.uuid4().hex[:8]}"


def gen_short_id():
    # used for order numbers and delivery ids
    return uuid.uuid4().hex[:8].upper()


def now_iso():
    return datetime.now().isoformat()


def parse_datetime(value):
    """accepts datetime objects and the usual ISO / date strings, returns naive local time"""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            dt = None
            for fmt in DATE_FORMATS:
                try:
                    dt = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
            if dt is None:
                return None
    if dt.tzinfo is not None:
        dt = dt.astimezone().replace(tzinfo=None)
    return dt


def js_weekday(dt):
    # 0=Sunday .. 6=Saturday
    return (dt.weekday() + 1) % 7


def money(amount):
    return round(float(amount or 0), 2)


def format_currency(amount, currency='MXN'):
    return f"${amount:,.2f} {currency}"


def to_int(value, default=None):
    if value is None or value == '':
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def to_float(value, default=None):
    if value is None or value == '':
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def to_list(value):
    """accept a list or a comma separated string (admin forms send both)"""
    if value is None or value == '':
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [v.strip() for v in str(value).split(',') if v.strip()]


def slugify(text):
    out = []
    for ch in (text or '').lower():
        if ch.isalnum():
            out.append(ch)
        elif out and out[-1] != '-':
            out.append('-')
    return ''.join(out).strip('-')


def validate_email(email):
    # basic email validation
    pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
    return re.match(pattern, email or '') is not None
