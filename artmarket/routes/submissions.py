from flask import Blueprint, current_app, jsonify, request
from flask_login import login_required

from ..auth import actor_role, current_actor, roles_required
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import (
    ROLE_ADMIN,
    ROLE_USER,
    ROLE_VENDOR,
    SUBMISSION_PENDING,
    ProductSubmission,
    User,
    db,
    normalize_submission_status,
)
from ..submissions import (
    approve,
    get_submission_or_404,
    list_submissions,
    reject,
    serialize_edit,
    serialize_submission,
    submit,
)
from ..utils import parse_positive_int, request_json_object, safe_json_loads

submissions_bp = Blueprint('submissions', __name__)
EDIT_TITLE_MAX = 150
EDIT_DESCRIPTION_MAX = 5000


def _list_args():
    return {
        'default_page_size': int(current_app.config.get('SUBMISSION_PAGE_SIZE_DEFAULT') or 20),
        'max_page_size': int(current_app.config.get('SUBMISSION_PAGE_SIZE_MAX') or 100),
    }


def _visible_submission(submission_id):
    actor = current_actor()
    submission = get_submission_or_404(submission_id)
    if actor_role(actor) != ROLE_ADMIN and submission.vendor_id != actor.id:
        raise NotFoundError('Submission not found.')
    return submission


def _rejection_reason(body):
    return body.get('reason') or body.get('rejectionReason') or body.get('rejection_reason')


# Vendor submissions
@submissions_bp.route('/api/submissions', methods=['POST'])
@roles_required(ROLE_VENDOR)
def submission_create():
    body = request_json_object()
    payload = body['payload'] if isinstance(body.get('payload'), dict) else body
    created, rejected_items = submit(
        current_actor(),
        payload,
        note=body.get('note') or body.get('vendorNote') or body.get('vendor_note') or '',
        title=body.get('title'),
    )
    return jsonify({
        'message': 'Submission received. Status is now Pending.',
        'submissions': [serialize_submission(item, include_diff=True) for item in created],
        'rejectedItems': rejected_items,
    }), 201


@submissions_bp.route('/api/submissions')
@roles_required(ROLE_ADMIN, ROLE_VENDOR)
def submission_list():
    return jsonify(list_submissions(current_actor(), request.args, **_list_args()))


@submissions_bp.route('/api/submissions/<submission_id>')
@roles_required(ROLE_ADMIN, ROLE_VENDOR)
def submission_detail(submission_id):
    return jsonify({'submission': serialize_submission(_visible_submission(submission_id), include_diff=True)})


# Admin review queue
@submissions_bp.route('/api/admin/submissions')
@roles_required(ROLE_ADMIN)
def admin_submission_list():
    return jsonify(list_submissions(current_actor(), request.args, **_list_args()))


@submissions_bp.route('/api/admin/submissions/<submission_id>')
@roles_required(ROLE_ADMIN)
def admin_submission_detail(submission_id):
    submission = get_submission_or_404(submission_id)
    return jsonify({'submission': serialize_submission(submission, include_diff=True)})


@submissions_bp.route('/api/admin/submissions/<submission_id>/approve', methods=['PATCH'])
@roles_required(ROLE_ADMIN)
def admin_submission_approve(submission_id):
    submission = approve(submission_id, current_actor())
    return jsonify({
        'message': 'Submission approved and applied to live content.',
        'submission': serialize_submission(submission, include_diff=True),
    })


@submissions_bp.route('/api/admin/submissions/<submission_id>/reject', methods=['PATCH'])
@roles_required(ROLE_ADMIN)
def admin_submission_reject(submission_id):
    submission = reject(submission_id, current_actor(), _rejection_reason(request_json_object()))
    return jsonify({
        'message': 'Submission rejected.',
        'submission': serialize_submission(submission, include_diff=True),
    })


# Legacy edit endpoints
def validate_edit_input(body):
    title = str(body.get('title') or '').strip()
    description = str(body.get('description') or '').strip()
    raw_payload = body.get('payload')
    errors = []
    if not title:
        errors.append('Title is required.')
    if not description:
        errors.append('Description is required.')
    if len(title) > EDIT_TITLE_MAX:
        errors.append(f'Title must be {EDIT_TITLE_MAX} characters or fewer.')
    if len(description) > EDIT_DESCRIPTION_MAX:
        errors.append(f'Description must be {EDIT_DESCRIPTION_MAX} characters or fewer.')

    payload = {}
    if isinstance(raw_payload, dict):
        payload = raw_payload
    elif raw_payload is not None and str(raw_payload).strip():
        payload = safe_json_loads(raw_payload, None)
        if not isinstance(payload, dict):
            payload = {}
            errors.append('Payload must be valid JSON.')
    return title, description, payload, errors


def _pending_edit(edit_id):
    parsed_id = parse_positive_int(edit_id)
    if parsed_id is None:
        raise ValidationError('Edit id must be a positive integer.')
    submission = db.session.get(ProductSubmission, parsed_id)
    if submission is None:
        raise NotFoundError('Edit not found.')
    if submission.status != SUBMISSION_PENDING:
        raise ConflictError('Only pending edits can be reviewed.')
    return submission


@submissions_bp.route('/api/edits', methods=['POST'])
@roles_required(ROLE_VENDOR)
def edit_create():
    title, description, payload, errors = validate_edit_input(request_json_object())
    if errors:
        raise ValidationError(' '.join(errors))
    created, rejected_items = submit(current_actor(), payload, note=description, title=title)
    return jsonify({
        'message': 'Edit submitted. Status is now Pending.',
        'edit': serialize_edit(created[0]),
        'edits': [serialize_edit(item) for item in created],
        'rejectedItems': rejected_items,
    }), 201


@submissions_bp.route('/api/edits')
@login_required
def edit_list():
    actor = current_actor()
    if actor.role == ROLE_USER:
        return jsonify({'edits': []})
    query = ProductSubmission.query.join(User, ProductSubmission.vendor_id == User.id)
    if actor.role == ROLE_ADMIN:
        status = normalize_submission_status(request.args.get('status'))
        if status:
            query = query.filter(ProductSubmission.status == status)
    else:
        query = query.filter(ProductSubmission.vendor_id == actor.id)
    rows = query.order_by(ProductSubmission.created_at.desc(), ProductSubmission.id.desc()).all()
    return jsonify({'edits': [serialize_edit(row) for row in rows]})


@submissions_bp.route('/api/edits/<edit_id>/approve', methods=['PATCH'])
@roles_required(ROLE_ADMIN)
def edit_approve(edit_id):
    submission = approve(_pending_edit(edit_id).id, current_actor())
    return jsonify({'message': 'Edit approved and applied to live content.', 'edit': serialize_edit(submission)})


@submissions_bp.route('/api/edits/<edit_id>/reject', methods=['PATCH'])
@roles_required(ROLE_ADMIN)
def edit_reject(edit_id):
    submission = reject(_pending_edit(edit_id).id, current_actor(), _rejection_reason(request_json_object()))
    return jsonify({'message': 'Edit rejected.', 'edit': serialize_edit(submission)})
