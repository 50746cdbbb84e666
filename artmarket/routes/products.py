import re

import bleach
from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import func

from ..auth import actor_role, can_actor_read_product, current_actor, roles_required
from ..content import find_product, get_products, get_site_state, save_site_state
from ..errors import ConflictError, NotFoundError, RateLimited, ValidationError
from ..models import ROLE_ADMIN, ROLE_USER, ProductComment, ProductLike, User, db, record_activity
from ..products import is_public_product, list_products, merge_product_changes, normalize_product
from ..utils import isoformat_or_none, parse_int, request_json_object, utc_now_naive

products_bp = Blueprint('products', __name__)
COMMENT_MAX_LENGTH = 1200
_WHITESPACE_RE = re.compile(r'\s+')


def like_counts(product_ids):
    if not product_ids:
        return {}
    rows = (
        db.session.query(ProductLike.product_id, func.count(ProductLike.id))
        .filter(ProductLike.product_id.in_(product_ids))
        .group_by(ProductLike.product_id)
        .all()
    )
    return {product_id: total for product_id, total in rows}


def liked_product_ids(user):
    if actor_role(user) != ROLE_USER:
        return set()
    rows = db.session.query(ProductLike.product_id).filter_by(user_id=user.id).all()
    return {row[0] for row in rows}


def has_liked(user, product_id):
    if actor_role(user) != ROLE_USER:
        return False
    return ProductLike.query.filter_by(user_id=user.id, product_id=product_id).first() is not None


def sanitize_comment(raw_content):
    text = bleach.clean(str(raw_content or ''), tags=[], attributes={}, strip=True)
    content = _WHITESPACE_RE.sub(' ', text).strip()
    if not content:
        raise ValidationError('Comment cannot be empty.')
    if len(content) > COMMENT_MAX_LENGTH:
        raise ValidationError(f'Comment must be {COMMENT_MAX_LENGTH} characters or fewer.')
    return content


def enforce_comment_rate_limit(user):
    window = int(current_app.config.get('COMMENT_RATE_LIMIT_SECONDS') or 0)
    if window <= 0:
        return
    latest = (
        ProductComment.query.filter_by(user_id=user.id)
        .order_by(ProductComment.id.desc())
        .first()
    )
    if not latest or not latest.created_at:
        return
    elapsed = (utc_now_naive() - latest.created_at).total_seconds()
    if elapsed < window:
        raise RateLimited(
            'Please wait a few seconds before posting another comment.',
            retry_after=max(1, int(window - elapsed)),
        )


def serialize_comment(comment):
    return {
        'id': comment.id,
        'userId': comment.user_id,
        'userName': comment.user.name if comment.user else None,
        'productId': comment.product_id,
        'content': comment.content,
        'createdAt': isoformat_or_none(comment.created_at),
        'updatedAt': isoformat_or_none(comment.updated_at),
    }


def readable_product_or_404(product_id):
    product = find_product(product_id)
    if not product or not can_actor_read_product(current_actor(), product):
        raise NotFoundError('Product not found.')
    return product


def public_product_or_404(product_id):
    product = find_product(product_id)
    if not is_public_product(product):
        raise NotFoundError('Product not found.')
    return product


def _product_payload():
    body = request.get_json(silent=True)
    if isinstance(body, dict) and isinstance(body.get('product'), dict):
        return body['product']
    if isinstance(body, dict) and body:
        return body
    raise ValidationError('Product payload is required.')


# Catalog
@products_bp.route('/api/products')
def product_list():
    actor = current_actor()
    result = list_products(
        get_products(),
        actor,
        request.args,
        default_page_size=int(current_app.config.get('PRODUCT_PAGE_SIZE_DEFAULT') or 24),
        max_page_size=int(current_app.config.get('PRODUCT_PAGE_SIZE_MAX') or 200),
    )
    counts = like_counts([item['id'] for item in result['items']])
    liked = liked_product_ids(actor)
    result['items'] = [
        {**item, 'likesCount': counts.get(item['id'], 0), 'likedByMe': item['id'] in liked}
        for item in result['items']
    ]
    return jsonify(result)


@products_bp.route('/api/products/<product_id>')
def product_detail(product_id):
    product = readable_product_or_404(product_id)
    return jsonify({
        'product': product,
        'social': {
            'likesCount': like_counts([product['id']]).get(product['id'], 0),
            'likedByMe': has_liked(current_actor(), product['id']),
        },
    })


@products_bp.route('/api/products', methods=['POST'])
@roles_required(ROLE_ADMIN)
def product_create():
    actor = current_actor()
    payload = _product_payload()
    state = get_site_state()
    product = normalize_product(payload)
    if find_product(product['id'], state['products']) is not None:
        raise ConflictError('A product with this id already exists.')
    state['products'] = merge_product_changes(state['products'], [product])
    saved = save_site_state(state, actor.id, commit=False)
    record_activity('products', 'create', 'product', product['id'], actor=actor)
    db.session.commit()
    current_app.logger.info('Product %s created by admin %s.', product['id'], actor.id)
    return jsonify({
        'message': 'Product created.',
        'product': find_product(product['id'], saved['products']) or product,
    }), 201


@products_bp.route('/api/products/<product_id>', methods=['PATCH'])
@roles_required(ROLE_ADMIN)
def product_update(product_id):
    actor = current_actor()
    state = get_site_state()
    existing = find_product(product_id, state['products'])
    if existing is None:
        raise NotFoundError('Product not found.')
    payload = _product_payload()
    merged = normalize_product({**existing, **payload, 'id': existing['id']})
    state['products'] = merge_product_changes(state['products'], [merged])
    saved = save_site_state(state, actor.id, commit=False)
    record_activity('products', 'update', 'product', existing['id'], actor=actor)
    db.session.commit()
    return jsonify({
        'message': 'Product updated.',
        'product': find_product(existing['id'], saved['products']) or merged,
    })


@products_bp.route('/api/products/<product_id>', methods=['DELETE'])
@roles_required(ROLE_ADMIN)
def product_delete(product_id):
    actor = current_actor()
    state = get_site_state()
    existing = find_product(product_id, state['products'])
    if existing is None:
        raise NotFoundError('Product not found.')
    state['products'] = [item for item in state['products'] if item['id'] != existing['id']]
    save_site_state(state, actor.id, commit=False)
    record_activity('products', 'delete', 'product', existing['id'], actor=actor)
    db.session.commit()
    current_app.logger.info('Product %s deleted by admin %s.', existing['id'], actor.id)
    return jsonify({'message': 'Product deleted.'})


# Likes
@products_bp.route('/api/products/<product_id>/like')
def like_status(product_id):
    product = readable_product_or_404(product_id)
    return jsonify({
        'liked': has_liked(current_actor(), product['id']),
        'likesCount': like_counts([product['id']]).get(product['id'], 0),
    })


@products_bp.route('/api/products/<product_id>/like', methods=['POST'])
@roles_required(ROLE_USER)
def like_toggle(product_id):
    actor = current_actor()
    product = public_product_or_404(product_id)
    existing = ProductLike.query.filter_by(user_id=actor.id, product_id=product['id']).first()
    if existing:
        db.session.delete(existing)
        liked = False
    else:
        db.session.add(ProductLike(user_id=actor.id, product_id=product['id']))
        liked = True
    db.session.commit()
    return jsonify({
        'liked': liked,
        'likesCount': like_counts([product['id']]).get(product['id'], 0),
    })


# Comments
@products_bp.route('/api/products/<product_id>/comments')
def comment_list(product_id):
    product = readable_product_or_404(product_id)
    limit = parse_int(request.args.get('limit'), default=100, min_value=1, max_value=200)
    comments = (
        ProductComment.query.join(User, ProductComment.user_id == User.id)
        .filter(ProductComment.product_id == product['id'])
        .order_by(ProductComment.created_at.desc(), ProductComment.id.desc())
        .limit(limit)
        .all()
    )
    return jsonify({'comments': [serialize_comment(comment) for comment in comments]})


@products_bp.route('/api/products/<product_id>/comments', methods=['POST'])
@roles_required(ROLE_USER)
def comment_create(product_id):
    actor = current_actor()
    product = public_product_or_404(product_id)
    enforce_comment_rate_limit(actor)
    content = sanitize_comment(request_json_object().get('content'))
    comment = ProductComment(user_id=actor.id, product_id=product['id'], content=content)
    db.session.add(comment)
    db.session.commit()
    return jsonify({'message': 'Comment posted.', 'comment': serialize_comment(comment)}), 201
