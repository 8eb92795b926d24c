"""Application errors and their JSON rendering."""
from flask import jsonify
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException

from logging_config import get_logger
from models import db

logger = get_logger(__name__)


class AppError(Exception):
    """Base class for errors that map to an HTTP response."""

    status_code = 500

    def __init__(self, message, status_code=None, errors=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.errors = errors or []

    def to_dict(self):
        body = {'success': False, 'message': self.message}
        if self.errors:
            body['errors'] = self.errors
        return body


class ValidationError(AppError):
    """Raised when incoming data fails domain or business validation."""

    status_code = 400

    def __init__(self, message, field=None, errors=None):
        if errors is None and field:
            errors = [{'field': field, 'message': message}]
        super().__init__(message, errors=errors)
        self.field = field


class NotFoundError(AppError):
    """Raised when an entity lookup returns no result."""

    status_code = 404

    def __init__(self, resource='Resource'):
        super().__init__(f'{resource} not found')


class ConflictError(AppError):
    """Raised when a requested time range overlaps an existing booking or schedule."""

    status_code = 409


def pydantic_errors(exc: PydanticValidationError):
    """Flatten pydantic error details into ``[{field, message}]``."""
    out = []
    for err in exc.errors():
        field = '.'.join(str(p) for p in err.get('loc', ())) or None
        out.append({'field': field, 'message': err.get('msg', 'Invalid value')})
    return out


def register_error_handlers(app):
    @app.errorhandler(AppError)
    def handle_app_error(err):
        db.session.rollback()
        if err.status_code >= 500:
            logger.error("app_error", message=err.message)
        else:
            logger.info("request_rejected", status=err.status_code, message=err.message)
        return jsonify(err.to_dict()), err.status_code

    @app.errorhandler(PydanticValidationError)
    def handle_pydantic_error(err):
        errors = pydantic_errors(err)
        logger.info("request_rejected", status=400, errors=errors)
        return jsonify({'success': False, 'message': 'Validation failed', 'errors': errors}), 400

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(err):
        db.session.rollback()
        logger.warning("integrity_error", detail=str(err.orig))
        return jsonify({
            'success': False,
            'message': 'The request conflicts with existing data',
        }), 409

    @app.errorhandler(HTTPException)
    def handle_http_error(err):
        return jsonify({'success': False, 'message': err.description}), err.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(err):
        db.session.rollback()
        logger.exception("unhandled_error")
        return jsonify({'success': False, 'message': 'Something went wrong!'}), 500
