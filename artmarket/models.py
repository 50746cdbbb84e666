import json
from flask import has_request_context
from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from slugify import slugify
from werkzeug.security import generate_password_hash, check_password_hash

from .utils import clean_text, get_request_ip, normalize_email, utc_now_naive

db = SQLAlchemy()

ROLE_ADMIN = 'admin'
ROLE_VENDOR = 'vendor'
ROLE_USER = 'user'
USER_ROLE_CHOICES = (ROLE_ADMIN, ROLE_VENDOR, ROLE_USER)

ACCOUNT_ACTIVE = 'active'
ACCOUNT_DISABLED = 'disabled'
ACCOUNT_STATUSES = (ACCOUNT_ACTIVE, ACCOUNT_DISABLED)

SUBMISSION_PENDING = 'pending'
SUBMISSION_APPROVED = 'approved'
SUBMISSION_REJECTED = 'rejected'
SUBMISSION_STATUSES = (SUBMISSION_PENDING, SUBMISSION_APPROVED, SUBMISSION_REJECTED)
SUBMISSION_CREATE = 'create'
SUBMISSION_UPDATE = 'update'

SITE_STATE_ID = 1


def normalize_user_role(value, default=ROLE_USER):
    candidate = (value or '').strip().lower()
    if candidate in USER_ROLE_CHOICES:
        return candidate
    return default


def normalize_account_status(value, default=None):
    candidate = str(value or '').strip().lower()
    if candidate in ACCOUNT_STATUSES:
        return candidate
    return default


def normalize_submission_status(value, default=None):
    candidate = str(value or '').strip().lower()
    if candidate in SUBMISSION_STATUSES:
        return candidate
    return default


class User(UserMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(254), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    role = db.Column(db.String(20), nullable=False, default=ROLE_USER, index=True)
    slug = db.Column(db.String(160), unique=True, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=ACCOUNT_ACTIVE, index=True)
    session_version = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=utc_now_naive)
    last_login_at = db.Column(db.DateTime)

    submissions = db.relationship(
        'ProductSubmission',
        foreign_keys='ProductSubmission.vendor_id',
        backref='vendor',
        cascade='all, delete-orphan',
    )
    reviewed_submissions = db.relationship(
        'ProductSubmission',
        foreign_keys='ProductSubmission.reviewed_by',
        backref='reviewer',
    )
    likes = db.relationship('ProductLike', backref='user', cascade='all, delete-orphan')
    comments = db.relationship('ProductComment', backref='user', cascade='all, delete-orphan')
    cart_items = db.relationship('CartItem', backref='user', cascade='all, delete-orphan')

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    @property
    def is_active(self):
        return self.status == ACCOUNT_ACTIVE

    @property
    def is_admin(self):
        return self.role == ROLE_ADMIN

    def revoke_sessions(self):
        """Invalidate every token issued so far for this account."""
        self.session_version = (self.session_version or 0) + 1

    def to_session_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'role': self.role,
            'slug': self.slug,
            'status': self.status,
        }


def unique_slug(name):
    base_slug = slugify(name or '', max_length=120) or 'user'
    slug = base_slug
    suffix = 2
    while db.session.query(User.id).filter_by(slug=slug).first() is not None:
        slug = f'{base_slug}-{suffix}'
        suffix += 1
    return slug


def create_account(name, email, password, role, *, commit=True):
    """Create an account; the caller checks e-mail uniqueness beforehand."""
    user = User(
        name=clean_text(name, 120),
        email=normalize_email(email),
        role=normalize_user_role(role),
        slug=unique_slug(name),
        status=ACCOUNT_ACTIVE,
        session_version=0,
    )
    user.set_password(password)
    db.session.add(user)
    if commit:
        db.session.commit()
    return user


class SiteState(db.Model):
    __tablename__ = 'site_state'

    id = db.Column(db.Integer, primary_key=True, autoincrement=False)
    sections_json = db.Column(db.Text, nullable=False, default='{}')
    products_json = db.Column(db.Text, nullable=False, default='[]')
    revision = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime, default=utc_now_naive)
    updated_by = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='SET NULL'))


class ProductSubmission(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id = db.Column(db.String(160), nullable=False, index=True)
    submission_type = db.Column(db.String(20), nullable=False)  # create, update
    title = db.Column(db.String(150))
    snapshot_json = db.Column(db.Text, nullable=False)
    base_snapshot_json = db.Column(db.Text)
    vendor_note = db.Column(db.Text, nullable=False, default='')
    status = db.Column(db.String(20), nullable=False, default=SUBMISSION_PENDING, index=True)
    rejection_reason = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=utc_now_naive, index=True)
    reviewed_at = db.Column(db.DateTime)
    reviewed_by = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='SET NULL'), index=True)

    __table_args__ = (
        db.Index('ix_product_submission_vendor_status', 'vendor_id', 'status'),
        db.Index('ix_product_submission_status_created', 'status', 'created_at'),
    )


class ProductLike(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id = db.Column(db.String(160), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=utc_now_naive)

    __table_args__ = (
        db.UniqueConstraint('user_id', 'product_id', name='uq_product_like_user_product'),
    )


class ProductComment(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id = db.Column(db.String(160), nullable=False, index=True)
    content = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, default=utc_now_naive, index=True)
    updated_at = db.Column(db.DateTime, default=utc_now_naive, onupdate=utc_now_naive)

    __table_args__ = (
        db.Index('ix_product_comment_product_created', 'product_id', 'created_at'),
    )


class CartItem(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id = db.Column(db.String(160), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, default=utc_now_naive)
    updated_at = db.Column(db.DateTime, default=utc_now_naive, onupdate=utc_now_naive)

    __table_args__ = (
        db.UniqueConstraint('user_id', 'product_id', name='uq_cart_item_user_product'),
    )


class AuthRateLimitBucket(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    scope = db.Column(db.String(80), nullable=False, index=True)
    ip = db.Column(db.String(64), nullable=False, index=True)
    count = db.Column(db.Integer, nullable=False, default=0)
    reset_at = db.Column(db.DateTime, nullable=False)
    updated_at = db.Column(db.DateTime, default=utc_now_naive, onupdate=utc_now_naive)

    __table_args__ = (
        db.UniqueConstraint('scope', 'ip', name='uq_auth_rate_limit_scope_ip'),
        db.Index('ix_auth_rate_limit_scope_reset_at', 'scope', 'reset_at'),
    )


class ActivityEvent(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    domain = db.Column(db.String(50), nullable=False, index=True)  # submissions|products|content|accounts
    action = db.Column(db.String(50), nullable=False, index=True)  # create|approve|reject|update|delete
    entity_type = db.Column(db.String(60), nullable=False, index=True)
    entity_id = db.Column(db.String(160), nullable=False, index=True)
    actor_user_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='SET NULL'), index=True)
    actor_name = db.Column(db.String(120), nullable=False, default='System')
    actor_ip = db.Column(db.String(64))
    details_json = db.Column(db.Text, nullable=False, default='{}')
    created_at = db.Column(db.DateTime, default=utc_now_naive, index=True)

    __table_args__ = (
        db.Index('ix_activity_event_domain_created', 'domain', 'created_at'),
        db.Index('ix_activity_event_entity_created', 'entity_type', 'entity_id', 'created_at'),
    )


def record_activity(domain, action, entity_type, entity_id, *, actor=None, details=None):
    """Queue an activity row in the caller's transaction."""
    safe_details = details if isinstance(details, dict) else {}
    event = ActivityEvent(
        domain=clean_text(domain, 50) or 'system',
        action=clean_text(action, 50) or 'update',
        entity_type=clean_text(entity_type, 60) or 'unknown',
        entity_id=clean_text(entity_id, 160) or '-',
        actor_user_id=getattr(actor, 'id', None),
        actor_name=clean_text(getattr(actor, 'name', ''), 120) or 'System',
        actor_ip=get_request_ip() if has_request_context() else None,
        details_json=json.dumps(safe_details, ensure_ascii=False, default=str),
    )
    db.session.add(event)
    return event
