# utilities/responses.py
import math
from datetime import datetime, UTC
from typing import Any, Dict, Optional

from flask import jsonify


def _timestamp() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


def _envelope(success: bool, message: str, data: Any = None, **extra) -> Dict[str, Any]:
    body = {
        "success": success,
        "message": message,
        "data": data,
        "timestamp": _timestamp(),
    }
    body.update({key: value for key, value in extra.items() if value is not None})
    return body


def success(data: Any = None, message: str = "Success", status: int = 200):
    return jsonify(_envelope(True, message, data)), status


def created(data: Any = None, message: str = "Resource created successfully"):
    return success(data, message, 201)


def error(message: str = "An error occurred", status: int = 500, errors: Optional[Dict[str, Any]] = None):
    return jsonify(_envelope(False, message, None, errors=errors)), status


def validation_error(errors: Dict[str, Any], message: str = "Validation failed"):
    return error(message, 422, errors)


def not_found(message: str = "Resource not found"):
    return error(message, 404)


def unauthorized(message: str = "Authentication required"):
    return error(message, 401)


def forbidden(message: str = "Access forbidden"):
    return error(message, 403)


def conflict(message: str = "Resource conflict"):
    return error(message, 409)


def pagination_meta(page: int, limit: int, total: int) -> Dict[str, Any]:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "currentPage": page,
        "totalPages": total_pages,
        "totalItems": total,
        "itemsPerPage": limit,
        "hasNextPage": page < total_pages,
        "hasPrevPage": page > 1,
    }


def paginated(items, page: int, limit: int, total: int, message: str = "Data retrieved successfully"):
    body = _envelope(True, message, items, pagination=pagination_meta(page, limit, total))
    return jsonify(body), 200
