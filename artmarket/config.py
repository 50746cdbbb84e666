import os
from urllib.parse import urlparse

basedir = os.path.abspath(os.path.dirname(__file__))


def _is_production_runtime():
    flask_env = (os.environ.get('FLASK_ENV') or '').strip().lower()
    app_env = (os.environ.get('APP_ENV') or '').strip().lower()
    return flask_env == 'production' or app_env == 'production'


def _as_bool(value, default=False):
    if value is None:
        return default
    return str(value).strip().lower() in {'1', 'true', 'yes', 'on'}


def _as_int(value, default):
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_float(value, default):
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _database_url():
    raw = (os.environ.get('DATABASE_URL') or '').strip()
    if raw.startswith('postgres://'):
        raw = raw.replace('postgres://', 'postgresql://', 1)
    if raw:
        return raw
    return 'sqlite:///' + os.path.join(basedir, 'artmarket.db')


def _database_engine_options(database_url):
    if database_url.startswith('sqlite'):
        return {}
    options = {
        'pool_pre_ping': True,
        'pool_recycle': 300,
    }
    parsed = urlparse(database_url)
    if parsed.scheme.startswith('postgresql'):
        connect_timeout_seconds = max(1, _as_int(os.environ.get('DB_CONNECT_TIMEOUT_SECONDS'), 5))
        statement_timeout_ms = max(1000, _as_int(os.environ.get('DB_STATEMENT_TIMEOUT_MS'), 8000))
        options['connect_args'] = {
            'connect_timeout': connect_timeout_seconds,
            'options': f'-c statement_timeout={statement_timeout_ms}',
        }
    return options


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or ''
    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY') or ''
    SQLALCHEMY_DATABASE_URI = _database_url()
    SQLALCHEMY_ENGINE_OPTIONS = _database_engine_options(SQLALCHEMY_DATABASE_URI)
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    MAX_CONTENT_LENGTH = 1024 * 1024  # 1MB JSON bodies

    SESSION_TOKEN_TTL_SECONDS = max(60, _as_int(os.environ.get('SESSION_TOKEN_TTL_SECONDS'), 7 * 24 * 3600))
    SESSION_TOKEN_COOKIE = (os.environ.get('SESSION_TOKEN_COOKIE') or 'session_token').strip()
    SESSION_COOKIE_SECURE = _as_bool(os.environ.get('SESSION_COOKIE_SECURE'), _is_production_runtime())
    TRUST_PROXY_HEADERS = _as_bool(os.environ.get('TRUST_PROXY_HEADERS'), False)
    HSTS_ENABLED = _as_bool(os.environ.get('HSTS_ENABLED'), True)
    HSTS_MAX_AGE = _as_int(os.environ.get('HSTS_MAX_AGE'), 31536000)
    HSTS_INCLUDE_SUBDOMAINS = _as_bool(os.environ.get('HSTS_INCLUDE_SUBDOMAINS'), True)
    HSTS_PRELOAD = _as_bool(os.environ.get('HSTS_PRELOAD'), False)

    AUTH_SIGNIN_LIMIT = max(1, _as_int(os.environ.get('AUTH_SIGNIN_LIMIT'), 10))
    AUTH_SIGNIN_WINDOW_SECONDS = max(1, _as_int(os.environ.get('AUTH_SIGNIN_WINDOW_SECONDS'), 300))
    COMMENT_RATE_LIMIT_SECONDS = max(0, _as_int(os.environ.get('COMMENT_RATE_LIMIT_SECONDS'), 5))
    PASSWORD_MIN_LENGTH = max(1, _as_int(os.environ.get('PASSWORD_MIN_LENGTH'), 8))

    PRODUCT_PAGE_SIZE_DEFAULT = max(1, _as_int(os.environ.get('PRODUCT_PAGE_SIZE_DEFAULT'), 24))
    PRODUCT_PAGE_SIZE_MAX = max(1, _as_int(os.environ.get('PRODUCT_PAGE_SIZE_MAX'), 200))
    SUBMISSION_PAGE_SIZE_DEFAULT = max(1, _as_int(os.environ.get('SUBMISSION_PAGE_SIZE_DEFAULT'), 20))
    SUBMISSION_PAGE_SIZE_MAX = max(1, _as_int(os.environ.get('SUBMISSION_PAGE_SIZE_MAX'), 100))
    REVIEW_REASON_MAX = max(1, _as_int(os.environ.get('REVIEW_REASON_MAX'), 2000))

    SEED_ADMIN_NAME = (os.environ.get('SEED_ADMIN_NAME') or 'Admin User').strip()
    SEED_ADMIN_EMAIL = (os.environ.get('SEED_ADMIN_EMAIL') or 'admin@example.com').strip().lower()
    SEED_USER_NAME = (os.environ.get('SEED_USER_NAME') or '').strip()
    SEED_USER_EMAIL = (os.environ.get('SEED_USER_EMAIL') or '').strip().lower()

    SENTRY_DSN = (os.environ.get('SENTRY_DSN') or '').strip()
    SENTRY_ENVIRONMENT = (os.environ.get('SENTRY_ENVIRONMENT') or '').strip()
    SENTRY_TRACES_SAMPLE_RATE = _as_float(os.environ.get('SENTRY_TRACES_SAMPLE_RATE'), 0.0)
    LOG_JSON = _as_bool(os.environ.get('LOG_JSON'), True)
    LOG_LEVEL = (os.environ.get('LOG_LEVEL') or 'INFO').strip().upper()
