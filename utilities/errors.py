"""Exceptions raised by views and services, rendered as JSON envelopes."""
from typing import Any, Dict, Optional


class ApiError(Exception):
    status_code = 400

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        errors: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.errors = errors


class BadRequestError(ApiError):
    status_code = 400


class UnauthorizedError(ApiError):
    status_code = 401


class ForbiddenError(ApiError):
    status_code = 403


class NotFoundError(ApiError):
    status_code = 404


class ConflictError(ApiError):
    status_code = 409


class ValidationError(ApiError):
    status_code = 422

    def __init__(self, errors: Dict[str, Any], message: str = "Validation failed"):
        super().__init__(message, errors=errors)
