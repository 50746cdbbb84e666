"""Canonical product records and catalog queries.

Every write path funnels product dicts through :func:`normalize_product`, so
the catalog document only ever holds records with the full canonical field
set. Keys outside that set survive in ``extra_fields``.
"""
import copy
import math
import time
from datetime import datetime

from .auth import can_actor_read_product
from .utils import build_paging, utc_now_iso

GALLERY_TYPES = ('art', 'designs', 'books', 'photography', 'sculpture')
GALLERY_TYPE_ALIASES = {'furniture': 'designs'}
PRODUCT_STATUSES = ('active', 'inactive', 'draft')
PRODUCT_SORT_FIELDS = ('sort_order', 'name', 'gallery_type', 'status', 'created_at')
DEFAULT_CATEGORIES = {'art': 'Artwork', 'sculpture': 'Sculpture'}

TEXT_FIELDS = (
    'artist_name',
    'artist_role',
    'artist_image_url',
    'artist_bio',
    'image_url',
    'model_url',
    'theme',
    'color',
    'size',
    'tag',
    'kicker',
    'material',
    'dimensions',
    'store_name',
    'medium',
    'period',
    'era',
    'rating_count',
)
NUMERIC_FIELDS = ('store_lng', 'store_lat', 'year', 'rating', 'base_price')

# Output order of a normalized product.
PRODUCT_FIELDS = (
    'id',
    'name',
    'gallery_type',
    'category',
    'status',
    'sort_order',
    'artist_name',
    'artist_role',
    'artist_image_url',
    'artist_bio',
    'image_url',
    'media_images',
    'model_url',
    'theme',
    'color',
    'size',
    'tag',
    'kicker',
    'material',
    'dimensions',
    'store_name',
    'store_lng',
    'store_lat',
    'medium',
    'period',
    'era',
    'year',
    'rating',
    'rating_count',
    'base_price',
    'owner_user_id',
    'created_at',
    'updated_at',
    'extra_fields',
)
CANONICAL_KEYS = frozenset(PRODUCT_FIELDS)


def to_number_or_none(value):
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            value = int(text)
        except ValueError:
            try:
                value = float(text)
            except ValueError:
                return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return int(value) if value.is_integer() else value
    return None


def to_owner_id(value):
    number = to_number_or_none(value)
    if isinstance(number, int):
        return number
    return None


def to_sort_order(value):
    number = to_number_or_none(value)
    if number is None:
        return 0
    return int(number)


def to_gallery_type(value):
    candidate = str(value or '').strip().lower()
    candidate = GALLERY_TYPE_ALIASES.get(candidate, candidate)
    if candidate in GALLERY_TYPES:
        return candidate
    return 'art'


def to_product_status(value):
    candidate = str(value or '').strip().lower()
    if candidate in PRODUCT_STATUSES:
        return candidate
    return 'active'


def parse_media_images(value):
    if isinstance(value, (list, tuple)):
        items = value
    elif isinstance(value, str):
        items = value.splitlines()
    else:
        return []
    return [str(item).strip() for item in items if item and str(item).strip()]


def _text(value):
    if not value:
        return ''
    return str(value)


def _placeholder_id(index):
    return f'prod-{int(time.time() * 1000)}-{index}'


def normalize_product(raw, index=0):
    """Return the canonical form of ``raw``. Never raises."""
    source = raw if isinstance(raw, dict) else {}
    now = utc_now_iso()
    gallery_type = to_gallery_type(source.get('gallery_type'))

    product = {
        'id': str(source.get('id') or '').strip() or _placeholder_id(index),
        'name': _text(source.get('name')) or 'Untitled Product',
        'gallery_type': gallery_type,
        'category': _text(source.get('category')) or DEFAULT_CATEGORIES.get(gallery_type, 'All'),
        'status': to_product_status(source.get('status')),
        'sort_order': to_sort_order(source.get('sort_order')),
    }
    for field in TEXT_FIELDS:
        product[field] = _text(source.get(field))
    for field in NUMERIC_FIELDS:
        product[field] = to_number_or_none(source.get(field))
    product['media_images'] = parse_media_images(source.get('media_images'))
    product['owner_user_id'] = to_owner_id(source.get('owner_user_id'))
    product['created_at'] = _text(source.get('created_at')) or now
    product['updated_at'] = _text(source.get('updated_at')) or now

    extra_fields = {
        key: copy.deepcopy(value)
        for key, value in source.items()
        if key not in CANONICAL_KEYS
    }
    nested = source.get('extra_fields')
    if isinstance(nested, dict):
        extra_fields.update(copy.deepcopy(nested))
    product['extra_fields'] = extra_fields

    return {field: product[field] for field in PRODUCT_FIELDS}


def normalize_products(items):
    if not isinstance(items, list):
        return []
    return [normalize_product(item, index) for index, item in enumerate(items)]


def _created_at_timestamp(product):
    raw = str(product.get('created_at') or '').strip()
    if raw.endswith('Z'):
        raw = raw[:-1] + '+00:00'
    try:
        return datetime.fromisoformat(raw).timestamp()
    except ValueError:
        return 0.0


def product_sort_key(sort_by):
    def key(product):
        name = str(product.get('name') or '')
        if sort_by == 'sort_order':
            primary = product.get('sort_order') or 0
        elif sort_by == 'created_at':
            primary = _created_at_timestamp(product)
        else:
            primary = str(product.get(sort_by) or '').lower()
        return (primary, name.lower(), name)
    return key


def sort_products(products, sort_by='sort_order', sort_dir='asc'):
    if sort_by not in PRODUCT_SORT_FIELDS:
        sort_by = 'sort_order'
    return sorted(products, key=product_sort_key(sort_by), reverse=(sort_dir == 'desc'))


def merge_product_changes(current_products, product_changes):
    """Overlay ``product_changes`` onto the catalog, keyed by product id.

    Existing fields are replaced by incoming ones, ``created_at`` survives from
    the existing record and ``owner_user_id`` falls back to the existing owner
    when the change carries none. Re-running with the same input yields the
    same catalog apart from ``updated_at``.
    """
    by_id = {}
    for product in normalize_products(current_products or []):
        by_id[product['id']] = product

    now = utc_now_iso()
    for incoming in normalize_products(product_changes or []):
        key = incoming['id']
        existing = by_id.get(key)
        if existing is not None:
            merged = {**existing, **incoming}
            merged['created_at'] = existing.get('created_at') or now
            merged['updated_at'] = now
            if incoming.get('owner_user_id') is None:
                merged['owner_user_id'] = existing.get('owner_user_id')
            by_id[key] = merged
        else:
            by_id[key] = {
                **incoming,
                'created_at': incoming.get('created_at') or now,
                'updated_at': now,
            }

    return sort_products(list(by_id.values()), 'sort_order', 'asc')


def _first_arg(args, *names, default=None):
    for name in names:
        value = args.get(name)
        if value is not None and value != '':
            return value
    return default


def list_products(products, actor, args, *, default_page_size=24, max_page_size=200):
    """Filter, sort and paginate ``products`` for ``actor``."""
    args = args or {}
    try:
        page = int(_first_arg(args, 'page', default=1))
    except (TypeError, ValueError):
        page = 1
    raw_page_size = _first_arg(args, 'page_size', 'pageSize', default=default_page_size)
    if str(raw_page_size).strip().lower() == 'all':
        page_size = max_page_size
    else:
        try:
            page_size = int(raw_page_size)
        except (TypeError, ValueError):
            page_size = default_page_size
        if page_size <= 0:
            page_size = default_page_size
        page_size = min(page_size, max_page_size)

    search = str(_first_arg(args, 'search', default='')).strip().lower()
    gallery_type = str(_first_arg(args, 'gallery_type', 'galleryType', default='')).strip().lower()
    status = str(_first_arg(args, 'status', default='')).strip().lower()
    sort_by = str(_first_arg(args, 'sort_by', 'sortBy', default='sort_order')).strip().lower()
    if sort_by not in PRODUCT_SORT_FIELDS:
        sort_by = 'sort_order'
    sort_dir = 'desc' if str(_first_arg(args, 'sort_dir', 'sortDir', default='asc')).strip().lower() == 'desc' else 'asc'

    rows = [product for product in products if can_actor_read_product(actor, product)]

    if search:
        def matches(product):
            haystack = (
                product.get('id'),
                product.get('name'),
                product.get('gallery_type'),
                product.get('category'),
                product.get('artist_name'),
                product.get('artist_role'),
            )
            return any(search in str(item or '').lower() for item in haystack)
        rows = [product for product in rows if matches(product)]

    if gallery_type:
        wanted = to_gallery_type(gallery_type)
        if wanted == 'art':
            rows = [product for product in rows if product.get('gallery_type') in ('art', 'sculpture')]
        else:
            rows = [product for product in rows if product.get('gallery_type') == wanted]

    if status in PRODUCT_STATUSES:
        rows = [product for product in rows if product.get('status') == status]

    ordered = sort_products(rows, sort_by, sort_dir)
    paging, offset = build_paging(len(ordered), page, page_size)
    return {
        'items': ordered[offset:offset + paging['pageSize']],
        'paging': paging,
        'sort': {'sortBy': sort_by, 'sortDir': sort_dir},
        'filters': {'search': search, 'galleryType': gallery_type, 'status': status},
    }


def vendor_products(products, vendor):
    return [product for product in products if product.get('owner_user_id') == vendor.id]


def is_public_product(product):
    return bool(product) and product.get('status') == 'active'

