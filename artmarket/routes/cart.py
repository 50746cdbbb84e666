import math

from flask import Blueprint, jsonify

from ..auth import current_actor, roles_required
from ..content import find_product, get_products
from ..errors import NotFoundError, ValidationError
from ..models import ROLE_USER, CartItem, ProductComment, ProductLike, db
from ..products import is_public_product
from ..utils import isoformat_or_none, request_json_object

cart_bp = Blueprint('cart', __name__)


def serialize_cart(user, products=None):
    by_id = {product['id']: product for product in (products if products is not None else get_products())}
    rows = (
        CartItem.query.filter_by(user_id=user.id)
        .order_by(CartItem.updated_at.desc(), CartItem.id.desc())
        .all()
    )
    items = [
        {
            'productId': row.product_id,
            'quantity': row.quantity,
            'updatedAt': isoformat_or_none(row.updated_at),
            'product': by_id.get(row.product_id),
        }
        for row in rows
    ]
    return {
        'items': items,
        'totalItems': sum(item['quantity'] or 0 for item in items),
        'uniqueItems': len(items),
    }


def _quantity(value):
    """Coerce a JSON quantity to a finite number or None."""
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def _purchasable_or_404(product_id):
    product = find_product(product_id)
    if not is_public_product(product):
        raise NotFoundError('Product not found.')
    return product


def _set_quantity(user, product_id, quantity):
    item = CartItem.query.filter_by(user_id=user.id, product_id=product_id).first()
    if item is None:
        item = CartItem(user_id=user.id, product_id=product_id, quantity=quantity)
        db.session.add(item)
    else:
        item.quantity = quantity
    db.session.commit()
    return item


@cart_bp.route('/api/cart')
@roles_required(ROLE_USER)
def cart_view():
    return jsonify({'cart': serialize_cart(current_actor())})


@cart_bp.route('/api/cart/items', methods=['POST'])
@roles_required(ROLE_USER)
def cart_add():
    actor = current_actor()
    body = request_json_object()
    product = _purchasable_or_404(str(body.get('productId') or '').strip())
    requested = _quantity(body.get('quantity', 1))
    quantity = int(requested) if requested is not None and requested > 0 else 1
    existing = CartItem.query.filter_by(user_id=actor.id, product_id=product['id']).first()
    _set_quantity(actor, product['id'], (existing.quantity if existing else 0) + quantity)
    return jsonify({'message': 'Cart updated.', 'cart': serialize_cart(actor)}), 201


@cart_bp.route('/api/cart/items/<product_id>', methods=['PATCH'])
@roles_required(ROLE_USER)
def cart_update(product_id):
    actor = current_actor()
    quantity = _quantity(request_json_object().get('quantity'))
    if quantity is None:
        raise ValidationError('Quantity must be a number.')
    key = str(product_id or '').strip()
    if quantity <= 0:
        CartItem.query.filter_by(user_id=actor.id, product_id=key).delete()
        db.session.commit()
        return jsonify({'message': 'Item removed from cart.', 'cart': serialize_cart(actor)})
    product = _purchasable_or_404(key)
    _set_quantity(actor, product['id'], int(quantity))
    return jsonify({'message': 'Cart updated.', 'cart': serialize_cart(actor)})


@cart_bp.route('/api/cart/items/<product_id>', methods=['DELETE'])
@roles_required(ROLE_USER)
def cart_remove(product_id):
    actor = current_actor()
    CartItem.query.filter_by(user_id=actor.id, product_id=str(product_id or '').strip()).delete()
    db.session.commit()
    return jsonify({'message': 'Item removed.', 'cart': serialize_cart(actor)})


@cart_bp.route('/api/cart', methods=['DELETE'])
@roles_required(ROLE_USER)
def cart_clear():
    actor = current_actor()
    CartItem.query.filter_by(user_id=actor.id).delete()
    db.session.commit()
    return jsonify({'message': 'Cart cleared.', 'cart': serialize_cart(actor)})


# User dashboard
@cart_bp.route('/api/user/dashboard')
@roles_required(ROLE_USER)
def user_dashboard():
    actor = current_actor()
    products = get_products()
    by_id = {product['id']: product for product in products}

    likes = (
        ProductLike.query.filter_by(user_id=actor.id)
        .order_by(ProductLike.created_at.desc(), ProductLike.id.desc())
        .all()
    )
    liked_products = [
        {'productId': like.product_id, 'createdAt': isoformat_or_none(like.created_at), 'product': by_id[like.product_id]}
        for like in likes
        if is_public_product(by_id.get(like.product_id))
    ]

    comments = (
        ProductComment.query.filter_by(user_id=actor.id)
        .order_by(ProductComment.created_at.desc(), ProductComment.id.desc())
        .limit(100)
        .all()
    )
    return jsonify({
        'likedProducts': liked_products,
        'comments': [
            {
                'id': comment.id,
                'productId': comment.product_id,
                'content': comment.content,
                'createdAt': isoformat_or_none(comment.created_at),
                'product': by_id.get(comment.product_id),
            }
            for comment in comments
        ],
        'cart': serialize_cart(actor, products),
    })
