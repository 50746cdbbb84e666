from flask import Blueprint, current_app, jsonify

from ..auth import current_actor, roles_required
from ..content import content_template, get_site_meta, get_site_state, save_section, save_site_state
from ..models import ROLE_ADMIN, ROLE_VENDOR, db, record_activity
from ..products import vendor_products
from ..utils import request_json_object

content_bp = Blueprint('content', __name__)


@content_bp.route('/api/public/content')
def public_content():
    return jsonify({'sections': get_site_state()['sections']})


@content_bp.route('/api/content/current')
@roles_required(ROLE_ADMIN, ROLE_VENDOR)
def current_content():
    actor = current_actor()
    state = get_site_state()
    if actor.role == ROLE_ADMIN:
        return jsonify({'state': state, 'meta': get_site_meta()})
    return jsonify({'state': {'sections': {}, 'products': vendor_products(state['products'], actor)}})


@content_bp.route('/api/content/current', methods=['PUT'])
@roles_required(ROLE_ADMIN)
def replace_content():
    actor = current_actor()
    body = request_json_object()
    current = get_site_state()
    incoming = {
        'sections': body['sections'] if isinstance(body.get('sections'), dict) else current['sections'],
        'products': body['products'] if isinstance(body.get('products'), list) else current['products'],
    }
    saved = save_site_state(incoming, actor.id, commit=False)
    record_activity(
        'content',
        'update',
        'site_state',
        'current',
        actor=actor,
        details={'products': len(saved['products'])},
    )
    db.session.commit()
    current_app.logger.info('Site content replaced by admin %s.', actor.id)
    return jsonify({'message': 'Website content saved.', 'state': saved})


@content_bp.route('/api/content/sections/<section_key>', methods=['PUT'])
@roles_required(ROLE_ADMIN)
def update_section(section_key):
    actor = current_actor()
    key = str(section_key or '').strip().lower()
    saved = save_section(key, request_json_object().get('content'), actor.id, commit=False)
    record_activity('content', 'update', 'site_section', key, actor=actor)
    db.session.commit()
    return jsonify({'message': 'Section saved.', 'sectionKey': key, 'content': saved['sections'][key]})


@content_bp.route('/api/content/template')
@roles_required(ROLE_ADMIN, ROLE_VENDOR)
def template():
    return jsonify({'template': content_template(current_actor().role == ROLE_ADMIN)})
