"""Shared utility functions used across route and service modules."""
import ipaddress
import json
import math
import re
from datetime import datetime, timezone

from flask import request

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def utc_now_naive():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def utc_now_iso():
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def isoformat_or_none(value):
    if value is None:
        return None
    return value.replace(microsecond=0).isoformat() + 'Z'


def clean_text(value, max_length=255):
    return str(value or '').strip()[:max_length]


def escape_like(value):
    """Escape SQL LIKE wildcard characters."""
    return value.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')


def is_valid_email(value):
    return bool(EMAIL_RE.match(value or ''))


def normalize_email(value):
    return str(value or '').strip().lower()


def normalized_ip(value):
    candidate = (value or '').split(',', 1)[0].strip()
    if not candidate:
        return ''
    try:
        return str(ipaddress.ip_address(candidate))
    except ValueError:
        return ''


def get_request_ip():
    # request.remote_addr is proxy-aware when ProxyFix is enabled by app config.
    remote_ip = normalized_ip(request.remote_addr)
    return remote_ip or 'unknown'


def parse_int(value, default=0, min_value=None, max_value=None):
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    if min_value is not None and parsed < min_value:
        return min_value
    if max_value is not None and parsed > max_value:
        return max_value
    return parsed


def parse_positive_int(value):
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return None
    if parsed <= 0:
        return None
    return parsed


def safe_json_loads(raw_value, fallback):
    if raw_value is None:
        return fallback
    if isinstance(raw_value, (dict, list)):
        return raw_value
    value = str(raw_value).strip()
    if not value:
        return fallback
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return fallback


def canonical_json(value):
    return json.dumps(value, sort_keys=True, ensure_ascii=False, separators=(',', ':'))


def build_paging(total, page, page_size):
    """Clamp ``page`` into range and describe the resulting window.

    Returns ``(paging, offset)`` where ``paging`` is the camelCase dict the
    list endpoints return and ``offset`` is the first row index of the page.
    """
    total = max(0, int(total))
    page_size = max(1, int(page_size))
    total_pages = max(1, math.ceil(total / page_size))
    page = min(max(1, int(page)), total_pages)
    paging = {
        'total': total,
        'page': page,
        'pageSize': page_size,
        'totalPages': total_pages,
        'hasPrev': page > 1,
        'hasNext': page < total_pages,
    }
    return paging, (page - 1) * page_size


def request_json_object():
    payload = request.get_json(silent=True)
    if isinstance(payload, dict):
        return payload
    return {}
