import json
import logging
import re
import secrets
from datetime import timedelta

from flask import Flask, g, has_request_context, request
from sqlalchemy import text
from werkzeug.middleware.proxy_fix import ProxyFix

from .auth import jwt_manager, login_manager
from .config import Config
from .errors import register_error_handlers
from .models import ROLE_ADMIN, SITE_STATE_ID, SiteState, User, db

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{8,80}$")
_sentry_initialized = False


class JsonLogFormatter(logging.Formatter):
    def format(self, record):
        payload = {
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'time': self.formatTime(record, self.datefmt),
        }
        if has_request_context():
            payload.update(
                {
                    'request_id': getattr(g, 'request_id', ''),
                    'method': request.method,
                    'path': request.path,
                    'remote_ip': request.remote_addr,
                }
            )
        if record.exc_info:
            payload['exc_info'] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(app):
    app.logger.setLevel(getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO))
    if not app.config.get('LOG_JSON', True):
        return
    formatter = JsonLogFormatter()
    for handler in app.logger.handlers:
        handler.setFormatter(formatter)


def init_sentry(app):
    global _sentry_initialized
    if _sentry_initialized:
        return

    dsn = (app.config.get('SENTRY_DSN') or '').strip()
    if not dsn:
        return

    try:
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

        traces_sample_rate = float(app.config.get('SENTRY_TRACES_SAMPLE_RATE') or 0.0)
        sentry_sdk.init(
            dsn=dsn,
            integrations=[FlaskIntegration(), SqlalchemyIntegration()],
            traces_sample_rate=traces_sample_rate,
            environment=(app.config.get('SENTRY_ENVIRONMENT') or None),
        )
        _sentry_initialized = True
        app.logger.info('Sentry monitoring enabled.')
    except Exception:
        app.logger.exception('Failed to initialize Sentry monitoring.')


def create_app(config_overrides=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)
    configure_logging(app)
    app.json.sort_keys = False

    if not app.config.get('SECRET_KEY'):
        import warnings
        app.config['SECRET_KEY'] = secrets.token_urlsafe(32)
        warnings.warn(
            'SECRET_KEY is not set, using a random key. '
            'Session tokens will not survive restarts. '
            'Set the SECRET_KEY environment variable for production.',
            stacklevel=2,
        )
    if not app.config.get('JWT_SECRET_KEY'):
        app.config['JWT_SECRET_KEY'] = app.config['SECRET_KEY']
    app.config['JWT_ACCESS_TOKEN_EXPIRES'] = timedelta(
        seconds=int(app.config.get('SESSION_TOKEN_TTL_SECONDS') or 7 * 24 * 3600)
    )

    if app.config.get('TRUST_PROXY_HEADERS'):
        # Only trust one proxy hop (the platform edge) when explicitly enabled.
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)

    init_sentry(app)

    db.init_app(app)
    login_manager.init_app(app)
    jwt_manager.init_app(app)
    register_error_handlers(app)

    @app.before_request
    def assign_request_id():
        incoming = (request.headers.get('X-Request-ID') or '').strip()
        if _REQUEST_ID_RE.match(incoming):
            g.request_id = incoming
        else:
            g.request_id = secrets.token_hex(16)

    @app.after_request
    def add_security_headers(response):
        response.headers['X-Request-ID'] = getattr(g, 'request_id', '')
        response.headers.setdefault('X-Content-Type-Options', 'nosniff')
        response.headers.setdefault('X-Frame-Options', 'DENY')
        response.headers.setdefault('Referrer-Policy', 'strict-origin-when-cross-origin')
        response.headers.setdefault('Permissions-Policy', 'geolocation=(), microphone=(), camera=()')
        response.headers.setdefault('Cross-Origin-Resource-Policy', 'same-origin')
        response.headers.setdefault('Cross-Origin-Opener-Policy', 'same-origin')
        if request.is_secure and app.config.get('HSTS_ENABLED', True):
            hsts_max_age = max(0, int(app.config.get('HSTS_MAX_AGE', 31536000)))
            hsts_parts = [f'max-age={hsts_max_age}']
            if app.config.get('HSTS_INCLUDE_SUBDOMAINS', True):
                hsts_parts.append('includeSubDomains')
            if app.config.get('HSTS_PRELOAD', False):
                hsts_parts.append('preload')
            response.headers.setdefault('Strict-Transport-Security', '; '.join(hsts_parts))
        if request.path.startswith('/api/'):
            response.headers['Cache-Control'] = 'no-store'
        return response

    @app.get('/healthz')
    def healthz():
        try:
            db.session.execute(text('SELECT 1'))
            return {'status': 'ok'}, 200
        except Exception:
            db.session.rollback()
            app.logger.exception('Health check DB probe failed.')
            return {'status': 'degraded'}, 503

    @app.get('/readyz')
    def readyz():
        checks = {
            'database': False,
            'site_state_seeded': False,
            'admin_account_seeded': False,
        }
        try:
            db.session.execute(text('SELECT 1'))
            checks['database'] = True
            checks['site_state_seeded'] = db.session.get(SiteState, SITE_STATE_ID) is not None
            checks['admin_account_seeded'] = db.session.query(User.id).filter_by(role=ROLE_ADMIN).first() is not None
            all_ready = all(checks.values())
            return {'status': 'ready' if all_ready else 'warming', 'checks': checks}, (200 if all_ready else 503)
        except Exception:
            db.session.rollback()
            app.logger.exception('Readiness check failed.')
            return {'status': 'degraded', 'checks': checks}, 503

    from .routes.admin import admin_bp
    from .routes.auth import auth_bp
    from .routes.cart import cart_bp
    from .routes.content import content_bp
    from .routes.products import products_bp
    from .routes.submissions import submissions_bp
    app.register_blueprint(auth_bp)
    app.register_blueprint(content_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(cart_bp)
    app.register_blueprint(submissions_bp)
    app.register_blueprint(admin_bp)

    with app.app_context():
        try:
            db.create_all()
        except Exception:
            app.logger.exception('db.create_all() failed, tables may need manual migration.')
        try:
            from .seed import seed_database
            seed_database()
        except Exception:
            db.session.rollback()
            app.logger.exception('seed_database() failed, seeding skipped.')

    return app
