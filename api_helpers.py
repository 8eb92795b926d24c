"""Request parsing and response envelope shared by the API routes."""
from flask import current_app, jsonify, request

from errors import NotFoundError, ValidationError
from models import db
from timeutils import parse_date


def success(data=None, message=None, status=200, **extra):
    body = {'success': True, 'data': data}
    if message:
        body['message'] = message
    body.update(extra)
    return jsonify(body), status


def parse_body(schema):
    """Validate the JSON body against a pydantic model; errors become 400s."""
    payload = request.get_json(silent=True)
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError('Request body must be a JSON object')
    return schema.model_validate(payload)


def get_or_404(model, object_id, resource=None):
    obj = db.session.get(model, object_id)
    if obj is None:
        raise NotFoundError(resource or model.__name__)
    return obj


def arg_int(name, default=None, required=False, minimum=None, maximum=None):
    raw = request.args.get(name)
    if raw is None or raw == '':
        if required:
            raise ValidationError(f'{name} is required', field=name)
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValidationError(f'{name} must be an integer', field=name)
    if minimum is not None and value < minimum:
        raise ValidationError(f'{name} must be at least {minimum}', field=name)
    if maximum is not None and value > maximum:
        raise ValidationError(f'{name} must be at most {maximum}', field=name)
    return value


def arg_date(name, required=False):
    raw = request.args.get(name)
    if not raw:
        if required:
            raise ValidationError(f'{name} is required', field=name)
        return None
    try:
        return parse_date(raw)
    except ValueError as exc:
        raise ValidationError(str(exc), field=name)


def arg_bool(name):
    raw = request.args.get(name)
    if raw is None:
        return None
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


def paginate(query):
    """
    Apply ``page``/``limit`` query args to a SQLAlchemy query.

    Returns:
        tuple: (items, pagination dict)
    """
    cfg = current_app.config
    page = arg_int('page', default=1, minimum=1)
    limit = arg_int('limit', default=cfg['DEFAULT_PAGE_SIZE'], minimum=1, maximum=cfg['MAX_PAGE_SIZE'])
    result = query.paginate(page=page, per_page=limit, error_out=False)
    return result.items, {
        'page': page,
        'limit': limit,
        'total': result.total,
        'pages': result.pages,
    }


ADDRESS_FIELDS = ('street', 'city', 'state', 'zip_code', 'country')


def apply_address(obj, address):
    """Copy the set fields of a nested address model onto flat address columns."""
    if address is None:
        return
    for field in ADDRESS_FIELDS:
        value = getattr(address, field)
        if value is not None:
            setattr(obj, field, value)
