import os
import secrets

from flask import current_app

from .content import ensure_site_state
from .models import ROLE_ADMIN, ROLE_USER, User, create_account, db
from .utils import normalize_email


def _seed_admin():
    email = normalize_email(current_app.config.get('SEED_ADMIN_EMAIL')) or 'admin@example.com'
    name = current_app.config.get('SEED_ADMIN_NAME') or 'Admin User'
    env_password = os.environ.get('SEED_ADMIN_PASSWORD') or os.environ.get('ADMIN_PASSWORD') or ''

    existing = User.query.filter_by(email=email).first()
    if existing:
        # Keep the seeded admin password in sync with the environment on startup.
        if env_password and not existing.check_password(env_password):
            existing.set_password(env_password)
            existing.revoke_sessions()
            db.session.commit()
            current_app.logger.info('Seeded admin password rotated from environment.')
        return existing

    if not env_password:
        env_password = secrets.token_urlsafe(16)
        current_app.logger.warning(
            'SEED_ADMIN_PASSWORD not set. Seeded admin %s with a random password. '
            'Set SEED_ADMIN_PASSWORD and restart to rotate it to a known value.',
            email,
        )
    admin = create_account(name, email, env_password, ROLE_ADMIN)
    current_app.logger.info('Seeded admin account %s.', admin.id)
    return admin


def _seed_user():
    email = normalize_email(current_app.config.get('SEED_USER_EMAIL'))
    password = os.environ.get('SEED_USER_PASSWORD') or ''
    if not email or not password:
        return None
    existing = User.query.filter_by(email=email).first()
    if existing:
        return existing
    user = create_account(current_app.config.get('SEED_USER_NAME') or 'Demo User', email, password, ROLE_USER)
    current_app.logger.info('Seeded user account %s.', user.id)
    return user


def seed_database():
    ensure_site_state()
    _seed_admin()
    _seed_user()
