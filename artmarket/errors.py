"""Error taxonomy shared by the service layer and the JSON API."""
from flask import current_app, jsonify
from werkzeug.exceptions import HTTPException

from .models import db


class ApiError(Exception):
    status_code = 400
    code = 'bad_request'
    default_message = 'Request failed.'

    def __init__(self, message=None, *, details=None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self):
        payload = {'error': self.message, 'code': self.code}
        if self.details:
            payload['details'] = self.details
        return payload


class ValidationError(ApiError):
    status_code = 400
    code = 'validation_error'
    default_message = 'Invalid request.'


class AuthenticationRequired(ApiError):
    status_code = 401
    code = 'authentication_required'
    default_message = 'Authentication required.'


class AuthorizationDenied(ApiError):
    status_code = 403
    code = 'forbidden'
    default_message = 'Access denied.'


class OwnershipViolation(AuthorizationDenied):
    code = 'ownership_violation'
    default_message = 'You can edit only your own products.'


class NotFoundError(ApiError):
    status_code = 404
    code = 'not_found'
    default_message = 'Not found.'


class ConflictError(ApiError):
    status_code = 409
    code = 'conflict'
    default_message = 'Conflict.'


class RateLimited(ApiError):
    status_code = 429
    code = 'rate_limited'
    default_message = 'Too many requests.'

    def __init__(self, message=None, *, retry_after=None, details=None):
        super().__init__(message, details=details)
        self.retry_after = retry_after


def register_error_handlers(app):
    @app.errorhandler(ApiError)
    def handle_api_error(error):
        response = jsonify(error.to_dict())
        response.status_code = error.status_code
        retry_after = getattr(error, 'retry_after', None)
        if retry_after:
            response.headers['Retry-After'] = str(int(retry_after))
        return response

    @app.errorhandler(HTTPException)
    def handle_http_exception(error):
        if error.code == 404:
            message = 'Route not found.'
        else:
            message = error.description or error.name
        response = jsonify({'error': message})
        response.status_code = error.code or 500
        return response

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        db.session.rollback()
        current_app.logger.exception('Unhandled error while serving request.')
        return jsonify({'error': 'Internal server error.'}), 500
