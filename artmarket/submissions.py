"""Vendor product submissions and their admin review.

A submission is created ``pending`` and moves exactly once, to ``approved``
or ``rejected``. The snapshot and base snapshot are written at creation and
never touched again; approval merges the snapshot into the live catalog in
the same transaction that flips the status.
"""
import json

from flask import current_app
from sqlalchemy import or_, update

from .auth import actor_role
from .content import get_products, get_site_state, save_site_state
from .errors import ApiError, ConflictError, NotFoundError, OwnershipViolation, AuthorizationDenied, ValidationError
from .models import (
    ROLE_ADMIN,
    ROLE_VENDOR,
    SUBMISSION_APPROVED,
    SUBMISSION_CREATE,
    SUBMISSION_PENDING,
    SUBMISSION_REJECTED,
    SUBMISSION_UPDATE,
    ProductSubmission,
    User,
    db,
    normalize_submission_status,
    record_activity,
)
from .products import merge_product_changes, normalize_product
from .utils import (
    build_paging,
    canonical_json,
    clean_text,
    escape_like,
    isoformat_or_none,
    parse_int,
    parse_positive_int,
    safe_json_loads,
    utc_now_naive,
)

NOTE_MAX_LENGTH = 2000
TITLE_MAX_LENGTH = 150
SUBMISSION_SORT_COLUMNS = {
    'created_at': ProductSubmission.created_at,
    'status': ProductSubmission.status,
    'product_id': ProductSubmission.product_id,
}


def extract_product_changes(payload):
    source = payload if isinstance(payload, dict) else {}
    if source.get('sections') not in (None, ''):
        raise AuthorizationDenied('Vendors can edit products only.')
    if isinstance(source.get('product_changes'), list):
        changes = source['product_changes']
    elif isinstance(source.get('products'), list):
        changes = source['products']
    elif source.get('product'):
        changes = [source['product']]
    else:
        changes = []
    if not changes:
        raise ValidationError('Please provide at least one product change.')
    return changes


def prepare_vendor_change(vendor, raw_change, index, catalog):
    """Normalize one proposed product and check it against the live catalog.

    Returns ``(snapshot, base_snapshot)``; ``base_snapshot`` is None when the
    product id is new.
    """
    if not isinstance(raw_change, dict):
        raise ValidationError('Each product change must be an object.')
    snapshot = normalize_product(raw_change, index)
    existing = catalog.get(snapshot['id'])
    if existing is not None and existing.get('owner_user_id') != vendor.id:
        raise OwnershipViolation()
    snapshot['owner_user_id'] = vendor.id
    return snapshot, (normalize_product(existing, index) if existing is not None else None)


def submit(vendor, payload, note='', title=None):
    """Create one pending submission per proposed product.

    Items are checked independently. Returns ``(created, rejected_items)``;
    when no item passes, the first item's error is raised and nothing is
    stored.
    """
    changes = extract_product_changes(payload)
    vendor_note = clean_text(note, NOTE_MAX_LENGTH)
    title_text = clean_text(title, TITLE_MAX_LENGTH) or None
    catalog = {product['id']: product for product in get_products()}

    created = []
    failures = []
    for index, raw_change in enumerate(changes):
        try:
            snapshot, base_snapshot = prepare_vendor_change(vendor, raw_change, index, catalog)
        except ApiError as exc:
            raw_id = raw_change.get('id') if isinstance(raw_change, dict) else None
            failures.append((index, str(raw_id or '').strip() or None, exc))
            continue
        submission = ProductSubmission(
            vendor_id=vendor.id,
            product_id=snapshot['id'],
            submission_type=SUBMISSION_UPDATE if base_snapshot is not None else SUBMISSION_CREATE,
            title=title_text,
            snapshot_json=json.dumps(snapshot, ensure_ascii=False),
            base_snapshot_json=json.dumps(base_snapshot, ensure_ascii=False) if base_snapshot is not None else None,
            vendor_note=vendor_note,
            status=SUBMISSION_PENDING,
        )
        db.session.add(submission)
        created.append(submission)

    if not created:
        current_app.logger.info(
            'Vendor %s submission refused: %s item(s) failed.', vendor.id, len(failures)
        )
        raise failures[0][2]

    db.session.flush()
    for submission in created:
        record_activity(
            'submissions',
            'create',
            'product_submission',
            submission.id,
            actor=vendor,
            details={'product_id': submission.product_id, 'type': submission.submission_type},
        )
    db.session.commit()
    current_app.logger.info(
        'Vendor %s created %s submission(s); %s item(s) refused.', vendor.id, len(created), len(failures)
    )

    rejected_items = [
        {
            'index': index,
            'productId': product_id,
            'error': exc.message,
            'code': exc.code,
        }
        for index, product_id, exc in failures
    ]
    return created, rejected_items


def get_submission_or_404(submission_id):
    parsed_id = parse_positive_int(submission_id)
    submission = db.session.get(ProductSubmission, parsed_id) if parsed_id else None
    if submission is None:
        raise NotFoundError('Submission not found.')
    return submission


def _ensure_pending(submission):
    if submission.status != SUBMISSION_PENDING:
        raise ConflictError('Only pending submissions can be reviewed.')


def _transition(submission, admin, status, reason=None):
    """Flip a pending submission; only one concurrent reviewer can win."""
    result = db.session.execute(
        update(ProductSubmission)
        .where(ProductSubmission.id == submission.id, ProductSubmission.status == SUBMISSION_PENDING)
        .values(
            status=status,
            reviewed_at=utc_now_naive(),
            reviewed_by=admin.id,
            rejection_reason=reason,
        )
        .execution_options(synchronize_session='fetch')
    )
    if result.rowcount != 1:
        db.session.rollback()
        raise ConflictError('Only pending submissions can be reviewed.')


def approve(submission_id, admin):
    """Apply a pending submission to the live catalog and mark it approved.

    The snapshot is merged over whatever is live for its product id. Two
    pending creates for the same new id both apply, and the later approval
    wins, owner included.
    """
    submission = get_submission_or_404(submission_id)
    _ensure_pending(submission)
    state = get_site_state()

    _transition(submission, admin, SUBMISSION_APPROVED)
    snapshot = normalize_product(safe_json_loads(submission.snapshot_json, {}), 0)
    state['products'] = merge_product_changes(state['products'], [snapshot])
    save_site_state(state, admin.id, commit=False)
    record_activity(
        'submissions',
        'approve',
        'product_submission',
        submission.id,
        actor=admin,
        details={'product_id': submission.product_id, 'vendor_id': submission.vendor_id},
    )
    db.session.commit()
    current_app.logger.info(
        'Submission %s approved by admin %s; product %s merged into catalog.',
        submission.id,
        admin.id,
        submission.product_id,
    )
    return submission


def reject(submission_id, admin, reason):
    submission = get_submission_or_404(submission_id)
    _ensure_pending(submission)
    reason_text = str(reason or '').strip()
    if not reason_text:
        raise ValidationError('Rejection reason is required.')
    reason_max = int(current_app.config.get('REVIEW_REASON_MAX') or 2000)
    if len(reason_text) > reason_max:
        raise ValidationError(f'Rejection reason must be {reason_max} characters or fewer.')

    _transition(submission, admin, SUBMISSION_REJECTED, reason_text)
    record_activity(
        'submissions',
        'reject',
        'product_submission',
        submission.id,
        actor=admin,
        details={'product_id': submission.product_id, 'vendor_id': submission.vendor_id},
    )
    db.session.commit()
    current_app.logger.info('Submission %s rejected by admin %s.', submission.id, admin.id)
    return submission


def _key_path(prefix, key):
    key = str(key)
    if any(char in key for char in '.[]"'):
        return f'{prefix}[{json.dumps(key, ensure_ascii=False)}]'
    return f'{prefix}.{key}' if prefix else key


def flatten_snapshot(value, prefix='', out=None):
    """Map every leaf of ``value`` to a dotted/indexed path.

    Keys holding ``.``, ``[``, ``]`` or ``"`` are written as ``["key"]`` so
    that ``{"a.b": 1}`` and ``{"a": {"b": 1}}`` never share a path.
    """
    if out is None:
        out = {}
    if isinstance(value, dict):
        if not value:
            if prefix:
                out[prefix] = {}
            return out
        for key, item in value.items():
            flatten_snapshot(item, _key_path(prefix, key), out)
        return out
    if isinstance(value, list):
        if not value:
            if prefix:
                out[prefix] = []
            return out
        for index, item in enumerate(value):
            flatten_snapshot(item, f'{prefix}[{index}]', out)
        return out
    if prefix:
        out[prefix] = value
    return out


def diff(base, proposed):
    current = flatten_snapshot(base)
    requested = flatten_snapshot(proposed)
    entries = []
    for path in sorted(set(current) | set(requested)):
        current_value = current.get(path)
        requested_value = requested.get(path)
        entries.append({
            'path': path,
            'currentValue': current_value,
            'requestedValue': requested_value,
            'changed': canonical_json(current_value) != canonical_json(requested_value),
        })
    return entries


def serialize_submission(submission, include_diff=False):
    vendor = submission.vendor
    reviewer = submission.reviewer
    snapshot = safe_json_loads(submission.snapshot_json, {})
    base_snapshot = safe_json_loads(submission.base_snapshot_json, None)
    payload = {
        'id': submission.id,
        'vendorId': submission.vendor_id,
        'vendorName': vendor.name if vendor else None,
        'vendorEmail': vendor.email if vendor else None,
        'productId': submission.product_id,
        'submissionType': submission.submission_type,
        'title': submission.title,
        'vendorNote': submission.vendor_note or '',
        'status': submission.status,
        'rejectionReason': submission.rejection_reason,
        'createdAt': isoformat_or_none(submission.created_at),
        'reviewedAt': isoformat_or_none(submission.reviewed_at),
        'reviewedBy': submission.reviewed_by,
        'reviewedByName': reviewer.name if reviewer else None,
        'snapshot': snapshot,
        'baseSnapshot': base_snapshot,
    }
    if include_diff:
        entries = diff(base_snapshot, snapshot)
        payload['diff'] = entries
        payload['changedFields'] = sum(1 for entry in entries if entry['changed'])
    return payload


def serialize_edit(submission):
    """Reshape a submission into the record older edit clients expect."""
    vendor = submission.vendor
    reviewer = submission.reviewer
    return {
        'id': submission.id,
        'userId': submission.vendor_id,
        'userName': vendor.name if vendor else None,
        'userEmail': vendor.email if vendor else None,
        'title': submission.title or f'Product {submission.submission_type}: {submission.product_id}',
        'description': submission.vendor_note or '',
        'payload': {
            'target': 'vendor_products',
            'product_changes': [safe_json_loads(submission.snapshot_json, {})],
        },
        'status': submission.status,
        'createdAt': isoformat_or_none(submission.created_at),
        'approvedAt': isoformat_or_none(submission.reviewed_at),
        'approvedBy': submission.reviewed_by,
        'approvedByName': reviewer.name if reviewer else None,
        'rejectionReason': submission.rejection_reason,
    }


def submissions_query_for(actor, vendor_id=None):
    query = ProductSubmission.query.join(User, ProductSubmission.vendor_id == User.id)
    role = actor_role(actor)
    if role == ROLE_VENDOR:
        return query.filter(ProductSubmission.vendor_id == actor.id)
    if role == ROLE_ADMIN:
        if vendor_id:
            query = query.filter(ProductSubmission.vendor_id == vendor_id)
        return query
    raise AuthorizationDenied('Admin or vendor access required.')


def list_submissions(actor, args, *, default_page_size=20, max_page_size=100):
    args = args or {}
    vendor_id = parse_positive_int(args.get('vendor_id') or args.get('vendorId'))
    if actor_role(actor) != ROLE_ADMIN:
        vendor_id = None
    query = submissions_query_for(actor, vendor_id)

    status = normalize_submission_status(args.get('status'))
    if status:
        query = query.filter(ProductSubmission.status == status)

    search = clean_text(args.get('search'), 200).lower()
    if search:
        like = f'%{escape_like(search)}%'
        query = query.filter(or_(
            User.name.ilike(like, escape='\\'),
            User.email.ilike(like, escape='\\'),
            ProductSubmission.product_id.ilike(like, escape='\\'),
        ))

    sort_by = str(args.get('sort_by') or args.get('sortBy') or 'created_at').strip().lower()
    if sort_by not in SUBMISSION_SORT_COLUMNS:
        sort_by = 'created_at'
    sort_dir = 'asc' if str(args.get('sort_dir') or args.get('sortDir') or 'desc').strip().lower() == 'asc' else 'desc'
    column = SUBMISSION_SORT_COLUMNS[sort_by]
    query = query.order_by(column.asc() if sort_dir == 'asc' else column.desc(), ProductSubmission.id.desc())

    page_size = parse_int(
        args.get('page_size') or args.get('pageSize'),
        default=default_page_size,
        min_value=1,
        max_value=max_page_size,
    )
    paging, offset = build_paging(query.count(), parse_int(args.get('page'), default=1), page_size)
    items = query.offset(offset).limit(page_size).all()
    return {
        'items': [serialize_submission(item) for item in items],
        'paging': paging,
        'sort': {'sortBy': sort_by, 'sortDir': sort_dir},
        'filters': {'status': status or '', 'vendorId': vendor_id, 'search': search},
    }


def submission_counts_by_vendor(vendor_ids):
    if not vendor_ids:
        return {}
    rows = (
        db.session.query(ProductSubmission.vendor_id, ProductSubmission.status, db.func.count(ProductSubmission.id))
        .filter(ProductSubmission.vendor_id.in_(vendor_ids))
        .group_by(ProductSubmission.vendor_id, ProductSubmission.status)
        .all()
    )
    counts = {vendor_id: {'pending': 0, 'total': 0} for vendor_id in vendor_ids}
    for vendor_id, status, total in rows:
        bucket = counts.setdefault(vendor_id, {'pending': 0, 'total': 0})
        bucket['total'] += total
        if status == SUBMISSION_PENDING:
            bucket['pending'] += total
    return counts
