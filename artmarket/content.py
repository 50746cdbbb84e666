"""The singleton site-state document: site sections plus the product catalog.

Reads re-normalize everything they load and fall back to the built-in
defaults for missing or unreadable JSON. Writes always persist sections and
products together in one row update.
"""
import copy
import json

from .errors import ValidationError
from .models import SITE_STATE_ID, SiteState, db
from .products import normalize_product, normalize_products
from .utils import isoformat_or_none, safe_json_loads, utc_now_naive

SECTION_KEYS = ('home', 'about', 'services', 'process', 'gallery', 'contact', 'footer')

DEFAULT_SECTIONS = {
    'home': {
        'welcome': 'Welcome to',
        'tagline': 'The New Marketplace for Exceptional Art',
        'banner_title': 'Original Art For Sale',
        'banner_button': 'Browse Collection',
        'slides': [{'image_url': ''}, {'image_url': ''}, {'image_url': ''}],
    },
    'about': {
        'title': 'About the Gallery',
        'lead': 'A modern marketplace presenting original artworks by selected artists.',
        'sublead': 'We connect artists with audiences and institutions and treat art as lasting cultural value.',
        'cards': [
            {'meta': 'Curated', 'title': 'Selected Artists', 'description': 'Artists with a clear voice and a strong body of work.', 'image_url': ''},
            {'meta': 'Trusted', 'title': 'Project Delivery', 'description': 'From briefing to installation, projects are executed with precision.', 'image_url': ''},
            {'meta': 'Regional', 'title': 'Regional Focus', 'description': 'Building long-term cultural value across regional audiences.', 'image_url': ''},
        ],
    },
    'services': {
        'title': 'Services',
        'subtitle': 'A complete pipeline from creative direction to installation.',
        'items': [
            {'icon': 'Curation', 'title': 'Art Curation', 'description': 'Tailored artwork selection for residences, offices, and hospitality spaces.'},
            {'icon': 'Sourcing', 'title': 'Artwork Sourcing', 'description': 'Original works from trusted regional and international artists.'},
            {'icon': 'Commissions', 'title': 'Commissions', 'description': 'Custom artwork commissions with clear scope and timelines.'},
            {'icon': 'Framing', 'title': 'Framing & Production', 'description': 'Museum-grade framing, printing, and production support.'},
            {'icon': 'Install', 'title': 'Installation', 'description': 'Professional delivery and on-site installation.'},
            {'icon': 'Advisory', 'title': 'Collection Advisory', 'description': 'Acquisition strategy support for growing collections.'},
        ],
    },
    'process': {
        'title': 'Our Process',
        'subtitle': 'Clear steps from discovery to delivery.',
        'steps': [
            {'kicker': 'Step 1', 'title': 'Discovery', 'description': 'Understand goals, audience, and project constraints.', 'illustration': 'Discover'},
            {'kicker': 'Step 2', 'title': 'Concept', 'description': 'Define direction, references, and curation approach.', 'illustration': 'Concept'},
            {'kicker': 'Step 3', 'title': 'Selection', 'description': 'Shortlist works aligned with the approved concept.', 'illustration': 'Select'},
            {'kicker': 'Step 4', 'title': 'Production', 'description': 'Prepare framing, printing, and finishing requirements.', 'illustration': 'Produce'},
            {'kicker': 'Step 5', 'title': 'Installation', 'description': 'Install works safely with final quality checks.', 'illustration': 'Install'},
        ],
    },
    'gallery': {
        'title': 'Gallery',
        'artists_button': 'Artists',
        'tabs': {'art': 'Art', 'designs': 'Designs', 'books': 'Books', 'photography': 'Photography'},
        'art_types': ['Artwork', 'Sculpture'],
        'design_filters': ['All', 'Cabinets', 'Sideboards', 'Decor'],
        'book_filters': {
            'themes': ['Heritage', 'Pilgrimage', 'Architecture', 'Travel', 'Culture'],
            'colors': ['Warm', 'Cool', 'Neutral', 'Bold'],
            'sizes': ['Compact', 'Classic', 'Large'],
        },
    },
    'contact': {
        'title': 'Get in Touch',
        'subtitle': 'Interested in a piece? Let us know.',
        'form_placeholders': {
            'name': 'Your Name',
            'email': 'Your Email',
            'subject': 'Subject',
            'message': 'Message...',
        },
        'button': 'Send Inquiry',
    },
    'footer': {
        'brand': 'Art Market',
        'note': 'A modern art platform for original works by selected artists.',
        'contact_title': 'Contact us',
        'contact': 'hello@example.com',
        'navigation_title': 'Navigation',
        'social_title': 'Follow us',
        'navigation': {'home': 'Home', 'about': 'About', 'services': 'Services', 'gallery': 'Gallery', 'contact': 'Contact'},
        'social': [],
        'copyright': '(c) Art Market. All rights reserved.',
    },
}

DEFAULT_PRODUCTS = [
    {
        'id': 'prod-praying-girl',
        'name': 'Praying Girl (19th Century)',
        'gallery_type': 'art',
        'category': 'Artwork',
        'status': 'active',
        'sort_order': 1,
        'artist_name': 'Roberto Ferruzzi',
        'artist_role': 'Painter',
        'material': 'Oil on canvas',
        'dimensions': '12 x 16',
        'medium': 'Oil',
        'period': '19th Century',
        'year': 1890,
        'rating': 4.8,
        'rating_count': '50+',
        'base_price': 153,
    },
    {
        'id': 'prod-arch-cabinet',
        'name': 'Arch Cabinet',
        'gallery_type': 'designs',
        'category': 'Cabinets',
        'status': 'active',
        'sort_order': 2,
        'material': 'Oak wood',
        'dimensions': '180 x 45 x 95',
        'store_name': 'Main Store',
    },
    {
        'id': 'prod-hajj-arts',
        'name': 'Hajj and the Arts of Pilgrimage',
        'gallery_type': 'books',
        'category': 'Books',
        'status': 'active',
        'sort_order': 3,
        'theme': 'Heritage',
        'color': 'Warm',
        'size': 'Classic',
    },
]


def deep_merge(target, source):
    """Recursively overlay ``source`` onto ``target``; lists are replaced."""
    if isinstance(source, list):
        return copy.deepcopy(source)
    if not isinstance(source, dict):
        return target
    merged = dict(target) if isinstance(target, dict) else {}
    for key, value in source.items():
        if isinstance(value, dict):
            merged[key] = deep_merge(merged.get(key) or {}, value)
        elif isinstance(value, list):
            merged[key] = copy.deepcopy(value)
        else:
            merged[key] = value
    return merged


def default_sections():
    return copy.deepcopy(DEFAULT_SECTIONS)


def default_products():
    return normalize_products(copy.deepcopy(DEFAULT_PRODUCTS))


def normalize_sections(sections):
    defaults = default_sections()
    if not isinstance(sections, dict):
        return defaults
    merged = deep_merge(defaults, sections)
    for key in SECTION_KEYS:
        if not isinstance(merged.get(key), dict):
            merged[key] = defaults[key]
    return merged


def normalize_site_state(state):
    source = state if isinstance(state, dict) else {}
    sections = source.get('sections')
    products = source.get('products')
    return {
        'sections': normalize_sections(sections) if isinstance(sections, dict) else default_sections(),
        'products': normalize_products(products) if isinstance(products, list) else default_products(),
    }


def _write_row(row, state, actor_id):
    row.sections_json = json.dumps(state['sections'], ensure_ascii=False)
    row.products_json = json.dumps(state['products'], ensure_ascii=False)
    row.updated_at = utc_now_naive()
    row.updated_by = actor_id
    row.revision = (row.revision or 0) + 1


def ensure_site_state():
    """Create the site-state row with defaults when it does not exist yet."""
    if db.session.get(SiteState, SITE_STATE_ID) is not None:
        return False
    row = SiteState(id=SITE_STATE_ID, revision=0)
    _write_row(row, normalize_site_state(None), None)
    db.session.add(row)
    db.session.commit()
    return True


def get_site_state():
    row = db.session.get(SiteState, SITE_STATE_ID)
    if row is None:
        ensure_site_state()
        row = db.session.get(SiteState, SITE_STATE_ID)
    return normalize_site_state({
        'sections': safe_json_loads(row.sections_json, None),
        'products': safe_json_loads(row.products_json, None),
    })


def save_site_state(state, actor_id=None, *, commit=True):
    """Persist sections and products as one unit and return what was stored.

    Not guarded against concurrent writers: two overlapping
    read-modify-write cycles resolve as last write wins.
    """
    normalized = normalize_site_state(state)
    seen = set()
    for product in normalized['products']:
        if product['id'] in seen:
            raise ValidationError(f"Duplicate product id: {product['id']}.")
        seen.add(product['id'])
    row = db.session.get(SiteState, SITE_STATE_ID)
    if row is None:
        row = SiteState(id=SITE_STATE_ID, revision=0)
        db.session.add(row)
    _write_row(row, normalized, actor_id)
    if commit:
        db.session.commit()
    return normalized


def save_section(section_key, content, actor_id=None, *, commit=True):
    key = str(section_key or '').strip().lower()
    if key not in SECTION_KEYS:
        raise ValidationError('Unknown section key.')
    if not isinstance(content, dict):
        raise ValidationError('Section content must be an object.')
    state = get_site_state()
    state['sections'][key] = normalize_sections({key: content})[key]
    return save_site_state(state, actor_id, commit=commit)


def get_products():
    return get_site_state()['products']


def find_product(product_id, products=None):
    key = str(product_id or '').strip()
    if not key:
        return None
    for product in (products if products is not None else get_products()):
        if product['id'] == key:
            return product
    return None


def get_site_meta():
    row = db.session.get(SiteState, SITE_STATE_ID)
    if row is None:
        return {'revision': 0, 'updatedAt': None, 'updatedBy': None}
    return {
        'revision': row.revision or 0,
        'updatedAt': isoformat_or_none(row.updated_at),
        'updatedBy': row.updated_by,
    }


def content_template(role_is_admin):
    example = normalize_product({'id': 'existing-product-id-or-empty-for-create', 'name': 'Product name'})
    for field in ('owner_user_id', 'created_at', 'updated_at'):
        example.pop(field)
    if role_is_admin:
        return {
            'schema_version': '1.0',
            'target': 'full_website',
            'sections': default_sections(),
            'products': [example],
            'notes': 'Admins can edit all site content. Vendors can submit product changes for approval.',
        }
    return {
        'schema_version': '1.0',
        'target': 'vendor_products',
        'sections': {},
        'products': [example],
        'notes': 'Vendors can add products and edit only their own products.',
    }
