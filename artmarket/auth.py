"""Session tokens, the current-actor loader and role gates."""
from functools import wraps

from flask import current_app
from flask_jwt_extended import JWTManager, create_access_token, decode_token
from flask_jwt_extended.exceptions import JWTExtendedException
from flask_login import LoginManager, current_user
from jwt.exceptions import PyJWTError

from .errors import AuthenticationRequired, AuthorizationDenied
from .models import ROLE_ADMIN, ROLE_USER, ROLE_VENDOR, User, db
from .utils import parse_positive_int

login_manager = LoginManager()
jwt_manager = JWTManager()

ROLE_FAILURE_MESSAGES = {
    frozenset({ROLE_ADMIN}): 'Admin access required.',
    frozenset({ROLE_VENDOR}): 'Vendor access required.',
    frozenset({ROLE_USER}): 'User access required.',
    frozenset({ROLE_ADMIN, ROLE_VENDOR}): 'Admin or vendor access required.',
    frozenset({ROLE_ADMIN, ROLE_USER}): 'Admin or user access required.',
}


def issue_session_token(user):
    """Sign a token carrying the account identity and its session version."""
    claims = user.to_session_dict()
    claims.pop('id', None)
    claims['sv'] = int(user.session_version or 0)
    return create_access_token(identity=str(user.id), additional_claims=claims)


def read_request_token(req):
    header = (req.headers.get('Authorization') or '').strip()
    if header[:7].lower() == 'bearer ':
        return header[7:].strip()
    cookie_name = current_app.config.get('SESSION_TOKEN_COOKIE') or 'session_token'
    return (req.cookies.get(cookie_name) or '').strip()


def load_account_from_token(token):
    """Resolve ``token`` to a live account, or None.

    The account is re-read on every call and the token is refused when the
    account is gone, no longer active, or its session version moved on since
    the token was issued.
    """
    if not token:
        return None
    try:
        claims = decode_token(token)
    except (PyJWTError, JWTExtendedException):
        return None

    user_id = parse_positive_int(claims.get('sub'))
    if user_id is None:
        return None
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        return None
    try:
        token_version = int(claims.get('sv'))
    except (TypeError, ValueError):
        return None
    if token_version != int(user.session_version or 0):
        return None
    return user


@login_manager.request_loader
def load_user_from_request(req):
    return load_account_from_token(read_request_token(req))


@login_manager.unauthorized_handler
def handle_unauthorized():
    raise AuthenticationRequired()


def actor_role(actor):
    if actor is None or not getattr(actor, 'is_authenticated', False):
        return None
    return getattr(actor, 'role', None)


def allowed(actor, roles):
    role = actor_role(actor)
    return role is not None and role in roles


def roles_required(*roles, message=None):
    failure_message = message or ROLE_FAILURE_MESSAGES.get(frozenset(roles), 'Access denied.')

    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            if not current_user.is_authenticated:
                raise AuthenticationRequired()
            if not allowed(current_user, roles):
                raise AuthorizationDenied(failure_message)
            return view(*args, **kwargs)
        return wrapped
    return decorator


def can_actor_read_product(actor, product):
    if not product:
        return False
    role = actor_role(actor)
    if role == ROLE_ADMIN:
        return True
    if role == ROLE_VENDOR:
        return product.get('owner_user_id') == actor.id
    return product.get('status') == 'active'


def set_session_cookie(response, token):
    response.set_cookie(
        current_app.config.get('SESSION_TOKEN_COOKIE') or 'session_token',
        token,
        max_age=int(current_app.config.get('SESSION_TOKEN_TTL_SECONDS') or 0) or None,
        httponly=True,
        samesite='Lax',
        secure=bool(current_app.config.get('SESSION_COOKIE_SECURE')),
    )
    return response


def clear_session_cookie(response):
    response.delete_cookie(
        current_app.config.get('SESSION_TOKEN_COOKIE') or 'session_token',
        httponly=True,
        samesite='Lax',
        secure=bool(current_app.config.get('SESSION_COOKIE_SECURE')),
    )
    return response


def current_actor():
    if current_user.is_authenticated:
        return current_user._get_current_object()
    return None

