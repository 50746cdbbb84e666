from datetime import timedelta

from flask import Blueprint, current_app, jsonify
from flask_login import login_required
from werkzeug.security import check_password_hash, generate_password_hash

from ..auth import clear_session_cookie, current_actor, issue_session_token, set_session_cookie
from ..errors import AuthorizationDenied, AuthenticationRequired, ConflictError, RateLimited, ValidationError
from ..models import ROLE_ADMIN, ROLE_USER, ROLE_VENDOR, AuthRateLimitBucket, User, create_account, db, record_activity
from ..utils import get_request_ip, is_valid_email, normalize_email, request_json_object, utc_now_naive

auth_bp = Blueprint('auth', __name__)
SIGNIN_SCOPE = 'auth_signin'
AUTH_DUMMY_HASH = generate_password_hash('artmarket::dummy-auth-check')


def _signin_limit():
    return int(current_app.config.get('AUTH_SIGNIN_LIMIT') or 10)


def _signin_window_seconds():
    return int(current_app.config.get('AUTH_SIGNIN_WINDOW_SECONDS') or 300)


def get_signin_bucket():
    ip = get_request_ip()
    now = utc_now_naive()
    bucket = AuthRateLimitBucket.query.filter_by(scope=SIGNIN_SCOPE, ip=ip).first()
    if not bucket:
        bucket = AuthRateLimitBucket(
            scope=SIGNIN_SCOPE,
            ip=ip,
            count=0,
            reset_at=now + timedelta(seconds=_signin_window_seconds()),
        )
        db.session.add(bucket)
        db.session.commit()
        return bucket
    if bucket.reset_at <= now:
        bucket.count = 0
        bucket.reset_at = now + timedelta(seconds=_signin_window_seconds())
        db.session.commit()
    return bucket


def is_signin_rate_limited():
    bucket = get_signin_bucket()
    if bucket.count < _signin_limit():
        return False, 0
    seconds = max(1, int((bucket.reset_at - utc_now_naive()).total_seconds()))
    return True, seconds


def register_signin_failure():
    bucket = get_signin_bucket()
    bucket.count += 1
    db.session.commit()
    return bucket.count


def clear_signin_failures():
    ip = get_request_ip()
    bucket = AuthRateLimitBucket.query.filter_by(scope=SIGNIN_SCOPE, ip=ip).first()
    if bucket:
        db.session.delete(bucket)
        db.session.commit()


def validate_signup_input(body):
    name = str(body.get('name') or '').strip()
    email = normalize_email(body.get('email'))
    password = str(body.get('password') or '')
    min_length = int(current_app.config.get('PASSWORD_MIN_LENGTH') or 8)
    errors = []
    if not name:
        errors.append('Name is required.')
    if len(name) > 120:
        errors.append('Name must be 120 characters or fewer.')
    if not email:
        errors.append('Email is required.')
    elif not is_valid_email(email):
        errors.append('Email format is invalid.')
    if not password:
        errors.append('Password is required.')
    elif len(password) < min_length:
        errors.append(f'Password must be at least {min_length} characters.')
    return name, email, password, errors


def validate_signin_input(body):
    email = normalize_email(body.get('email'))
    password = str(body.get('password') or '')
    errors = []
    if not email:
        errors.append('Email is required.')
    if not password:
        errors.append('Password is required.')
    return email, password, errors


def landing_path(user):
    if user.role == ROLE_ADMIN:
        return '/admin'
    if user.role == ROLE_USER:
        return '/user/panel'
    return f'/panel/{user.slug}'


def _session_response(user, message, status_code=200):
    token = issue_session_token(user)
    response = jsonify({
        'message': message,
        'user': user.to_session_dict(),
        'token': token,
        'redirect': landing_path(user),
    })
    response.status_code = status_code
    return set_session_cookie(response, token)


def _signup(role, message):
    name, email, password, errors = validate_signup_input(request_json_object())
    if errors:
        raise ValidationError(' '.join(errors))
    if User.query.filter_by(email=email).first() is not None:
        raise ConflictError('An account with this email already exists.')
    user = create_account(name, email, password, role, commit=False)
    db.session.flush()
    record_activity('accounts', 'create', 'user', user.id, actor=user, details={'role': role})
    db.session.commit()
    current_app.logger.info('Account %s signed up with role %s.', user.id, role)
    return _session_response(user, message, 201)


def _signin(accept_role):
    limited, seconds = is_signin_rate_limited()
    if limited:
        raise RateLimited(f'Too many sign-in attempts. Try again in {seconds} seconds.', retry_after=seconds)

    email, password, errors = validate_signin_input(request_json_object())
    if errors:
        raise ValidationError(' '.join(errors))

    user = User.query.filter_by(email=email).first()
    password_ok = False
    if user:
        password_ok = user.check_password(password)
    else:
        # Keep response timing closer for unknown emails.
        check_password_hash(AUTH_DUMMY_HASH, password)
    if not user or not password_ok:
        register_signin_failure()
        current_app.logger.info('Failed sign-in attempt from %s.', get_request_ip())
        raise AuthenticationRequired('Invalid email or password.')

    if accept_role == ROLE_USER and user.role != ROLE_USER:
        raise AuthorizationDenied('This account is not a standard user account.')
    if accept_role != ROLE_USER and user.role == ROLE_USER:
        raise AuthorizationDenied('Use the User login page for this account.')
    if not user.is_active:
        raise AuthorizationDenied('This account is disabled.')

    clear_signin_failures()
    user.last_login_at = utc_now_naive()
    db.session.commit()
    return _session_response(user, 'Signed in successfully.')


# Vendor and staff
@auth_bp.route('/api/auth/signup', methods=['POST'])
@auth_bp.route('/api/auth/vendor/signup', methods=['POST'])
def vendor_signup():
    return _signup(ROLE_VENDOR, 'Vendor account created successfully.')


@auth_bp.route('/api/auth/signin', methods=['POST'])
@auth_bp.route('/api/auth/vendor/signin', methods=['POST'])
def vendor_signin():
    return _signin(ROLE_VENDOR)


# Shoppers
@auth_bp.route('/api/auth/user/signup', methods=['POST'])
def user_signup():
    return _signup(ROLE_USER, 'User account created successfully.')


@auth_bp.route('/api/auth/user/signin', methods=['POST'])
def user_signin():
    return _signin(ROLE_USER)


@auth_bp.route('/api/auth/signout', methods=['POST'])
def signout():
    return clear_session_cookie(jsonify({'message': 'Signed out.'}))


@auth_bp.route('/api/me')
@login_required
def me():
    return jsonify({'user': current_actor().to_session_dict()})
