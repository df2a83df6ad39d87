"""
Authorization decorators for API views.

Both decorators answer with JSON envelopes instead of redirects:
401 when nobody is logged in, 403 when the user lacks the permission or role.
"""

from functools import wraps

from flask_login import current_user

from utilities.permission_service import permission_service
from utilities.responses import forbidden, unauthorized


def permission_required(*permission_keys):
    """
    Require at least one of the given permission keys.

    Example:
        @assets_bp.post("")
        @permission_required("assets.create")
        def create_asset():
            ...
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                return unauthorized()

            if not permission_service.user_has_any_permission(current_user.id, permission_keys):
                return forbidden("Insufficient permissions")

            return f(*args, **kwargs)
        return decorated_function
    return decorator


def roles_required(*roles):
    """
    Require the current user's role to be one of `roles`.

    Example:
        @standby_bp.post("/assignments")
        @roles_required("superadmin", "admin", "coordinator")
        def create_assignment():
            ...
    """
    allowed = {role.lower() for role in roles}

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                return unauthorized()

            if (current_user.role or "").lower() not in allowed:
                return forbidden("Access denied. Insufficient role")

            return f(*args, **kwargs)
        return decorated_function
    return decorator
