import secrets

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import or_

from ..auth import current_actor, roles_required
from ..content import get_site_state, save_site_state
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import (
    ACCOUNT_ACTIVE,
    ACCOUNT_DISABLED,
    ROLE_ADMIN,
    ROLE_VENDOR,
    ActivityEvent,
    ProductSubmission,
    User,
    db,
    normalize_account_status,
    normalize_user_role,
    record_activity,
)
from ..submissions import serialize_submission, submission_counts_by_vendor
from ..utils import (
    build_paging,
    clean_text,
    escape_like,
    is_valid_email,
    isoformat_or_none,
    normalize_email,
    parse_int,
    parse_positive_int,
    request_json_object,
    safe_json_loads,
)

admin_bp = Blueprint('admin', __name__, url_prefix='/api/admin')
ACCOUNT_SCOPES = {'users': None, 'vendors': ROLE_VENDOR}
RECENT_SUBMISSIONS_LIMIT = 20


def serialize_account(user, counts=None):
    counts = counts or {}
    return {
        **user.to_session_dict(),
        'createdAt': isoformat_or_none(user.created_at),
        'lastLoginAt': isoformat_or_none(user.last_login_at),
        'pendingSubmissions': counts.get('pending', 0),
        'totalSubmissions': counts.get('total', 0),
    }


def _scope_role(scope):
    if scope not in ACCOUNT_SCOPES:
        raise NotFoundError('Route not found.')
    return ACCOUNT_SCOPES[scope]


def get_account_or_404(scope, account_id):
    role = _scope_role(scope)
    parsed_id = parse_positive_int(account_id)
    user = db.session.get(User, parsed_id) if parsed_id else None
    if user is None or (role and user.role != role):
        raise NotFoundError('Account not found.')
    return user


def _other_active_admins(user):
    return User.query.filter(
        User.role == ROLE_ADMIN,
        User.status == ACCOUNT_ACTIVE,
        User.id != user.id,
    ).count()


def _guard_admin_removal(actor, user, action):
    if user.id == actor.id:
        raise ValidationError(f'You cannot {action} your own account.')
    if user.role == ROLE_ADMIN and user.status == ACCOUNT_ACTIVE and _other_active_admins(user) == 0:
        raise ConflictError(f'Cannot {action} the last active admin account.')


# Accounts
@admin_bp.route('/<any(users, vendors):scope>')
@roles_required(ROLE_ADMIN)
def account_list(scope):
    role = _scope_role(scope)
    query = User.query
    if role:
        query = query.filter(User.role == role)
    else:
        role_filter = normalize_user_role(request.args.get('role'), default=None)
        if role_filter:
            query = query.filter(User.role == role_filter)

    status = normalize_account_status(request.args.get('status'))
    if status:
        query = query.filter(User.status == status)

    search = clean_text(request.args.get('search'), 200).lower()
    if search:
        like = f'%{escape_like(search)}%'
        query = query.filter(or_(
            User.name.ilike(like, escape='\\'),
            User.email.ilike(like, escape='\\'),
            User.slug.ilike(like, escape='\\'),
        ))

    page_size = parse_int(request.args.get('page_size') or request.args.get('pageSize'), default=20, min_value=1, max_value=100)
    paging, offset = build_paging(query.count(), parse_int(request.args.get('page'), default=1), page_size)
    users = query.order_by(User.name.asc(), User.id.asc()).offset(offset).limit(page_size).all()
    counts = submission_counts_by_vendor([user.id for user in users])
    return jsonify({
        'items': [serialize_account(user, counts.get(user.id)) for user in users],
        'paging': paging,
        'sort': {'sortBy': 'name', 'sortDir': 'asc'},
        'filters': {'search': search, 'status': status or '', 'role': role or request.args.get('role', '')},
    })


@admin_bp.route('/<any(users, vendors):scope>/<account_id>')
@roles_required(ROLE_ADMIN)
def account_detail(scope, account_id):
    user = get_account_or_404(scope, account_id)
    recent = (
        ProductSubmission.query.filter_by(vendor_id=user.id)
        .order_by(ProductSubmission.created_at.desc(), ProductSubmission.id.desc())
        .limit(RECENT_SUBMISSIONS_LIMIT)
        .all()
    )
    counts = submission_counts_by_vendor([user.id]).get(user.id)
    return jsonify({
        'account': serialize_account(user, counts),
        'submissions': [serialize_submission(item) for item in recent],
    })


@admin_bp.route('/<any(users, vendors):scope>/<account_id>', methods=['PATCH'])
@roles_required(ROLE_ADMIN)
def account_update(scope, account_id):
    actor = current_actor()
    user = get_account_or_404(scope, account_id)
    body = request_json_object()
    changes = {}

    if 'name' in body:
        name = clean_text(body.get('name'), 200)
        if not name or len(name) > 120:
            raise ValidationError('Name is required and must be 120 characters or fewer.')
        user.name = name
        changes['name'] = name

    if 'email' in body:
        email = normalize_email(body.get('email'))
        if not is_valid_email(email):
            raise ValidationError('Email format is invalid.')
        duplicate = User.query.filter(User.email == email, User.id != user.id).first()
        if duplicate:
            raise ConflictError('An account with this email already exists.')
        user.email = email
        changes['email'] = email

    if 'status' in body:
        status = normalize_account_status(body.get('status'))
        if not status:
            raise ValidationError('Status must be active or disabled.')
        if status == ACCOUNT_DISABLED and user.status != ACCOUNT_DISABLED:
            _guard_admin_removal(actor, user, 'disable')
            user.revoke_sessions()
        user.status = status
        changes['status'] = status

    if not changes:
        raise ValidationError('Nothing to update.')

    record_activity('accounts', 'update', 'user', user.id, actor=actor, details=changes)
    db.session.commit()
    current_app.logger.info('Account %s updated by admin %s: %s.', user.id, actor.id, sorted(changes))
    return jsonify({'message': 'Account updated.', 'account': serialize_account(user)})


@admin_bp.route('/<any(users, vendors):scope>/<account_id>', methods=['DELETE'])
@roles_required(ROLE_ADMIN)
def account_delete(scope, account_id):
    actor = current_actor()
    user = get_account_or_404(scope, account_id)
    _guard_admin_removal(actor, user, 'delete')

    released = 0
    if user.role == ROLE_VENDOR:
        state = get_site_state()
        for product in state['products']:
            if product.get('owner_user_id') == user.id:
                product['owner_user_id'] = None
                released += 1
        if released:
            save_site_state(state, actor.id, commit=False)

    record_activity(
        'accounts',
        'delete',
        'user',
        user.id,
        actor=actor,
        details={'email': user.email, 'role': user.role, 'released_products': released},
    )
    db.session.delete(user)
    db.session.commit()
    current_app.logger.warning('Account %s deleted by admin %s.', account_id, actor.id)
    return jsonify({'message': 'Account deleted.', 'releasedProducts': released})


@admin_bp.route('/<any(users, vendors):scope>/<account_id>/password-reset', methods=['POST'])
@roles_required(ROLE_ADMIN)
def account_password_reset(scope, account_id):
    actor = current_actor()
    user = get_account_or_404(scope, account_id)
    password = str(request_json_object().get('password') or '')
    generated = not password
    if generated:
        password = secrets.token_urlsafe(12)
    min_length = int(current_app.config.get('PASSWORD_MIN_LENGTH') or 8)
    if len(password) < min_length:
        raise ValidationError(f'Password must be at least {min_length} characters.')

    user.set_password(password)
    user.revoke_sessions()
    record_activity('accounts', 'password_reset', 'user', user.id, actor=actor, details={'generated': generated})
    db.session.commit()
    current_app.logger.info('Password reset for account %s by admin %s.', user.id, actor.id)
    payload = {'message': 'Password reset. Existing sessions were signed out.'}
    if generated:
        payload['temporaryPassword'] = password
    return jsonify(payload)


@admin_bp.route('/<any(users, vendors):scope>/<account_id>/revoke-sessions', methods=['POST'])
@roles_required(ROLE_ADMIN)
def account_revoke_sessions(scope, account_id):
    actor = current_actor()
    user = get_account_or_404(scope, account_id)
    user.revoke_sessions()
    record_activity('accounts', 'revoke_sessions', 'user', user.id, actor=actor)
    db.session.commit()
    current_app.logger.info('Sessions revoked for account %s by admin %s.', user.id, actor.id)
    return jsonify({'message': 'All sessions revoked.', 'account': serialize_account(user)})


# Activity
@admin_bp.route('/activity')
@roles_required(ROLE_ADMIN)
def activity_list():
    query = ActivityEvent.query
    domain = clean_text(request.args.get('domain'), 50).lower()
    if domain:
        query = query.filter(ActivityEvent.domain == domain)
    page_size = parse_int(request.args.get('page_size') or request.args.get('pageSize'), default=50, min_value=1, max_value=200)
    paging, offset = build_paging(query.count(), parse_int(request.args.get('page'), default=1), page_size)
    events = (
        query.order_by(ActivityEvent.created_at.desc(), ActivityEvent.id.desc())
        .offset(offset)
        .limit(page_size)
        .all()
    )
    return jsonify({
        'items': [
            {
                'id': event.id,
                'domain': event.domain,
                'action': event.action,
                'entityType': event.entity_type,
                'entityId': event.entity_id,
                'actorUserId': event.actor_user_id,
                'actorName': event.actor_name,
                'actorIp': event.actor_ip,
                'details': safe_json_loads(event.details_json, {}),
                'createdAt': isoformat_or_none(event.created_at),
            }
            for event in events
        ],
        'paging': paging,
        'sort': {'sortBy': 'created_at', 'sortDir': 'desc'},
        'filters': {'domain': domain},
    })
