import secrets
import string
from typing import Any, Dict, Optional

from flask import request
from flask_login import current_user

from middleware.permissions import permission_required, roles_required
from utilities.constants import ADMIN_ROLES, ROLE_EMPLOYEE, ROLE_SUPERADMIN, USER_ROLES
from utilities.database import db, Department, Location, User, log_activity
from utilities.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError, ValidationError
from utilities.permission_service import permission_service
from utilities.responses import created, paginated, success
from utilities.validators import clean_str, get_json_body, is_valid_email, pagination_args, parse_bool, parse_int
from . import users_bp

MIN_PASSWORD_LENGTH = 8
GENERATED_PASSWORD_LENGTH = 12
UPDATABLE_FIELDS = ["first_name", "last_name", "email", "employee_id", "phone", "role",
                    "department_id", "location_id", "is_active", "is_vip"]


def _get_user_or_404(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def _generate_password() -> str:
    alphabet = string.ascii_letters + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(GENERATED_PASSWORD_LENGTH))


def _validate_user_fields(payload: Dict[str, Any], *, creating: bool = False) -> Dict[str, str]:
    errors: Dict[str, str] = {}

    for field, label in (("first_name", "First name"), ("last_name", "Last name")):
        if creating or field in payload:
            if not clean_str(payload.get(field)):
                errors[field] = f"{label} is required"

    if creating or "email" in payload:
        email = clean_str(payload.get("email"))
        if not email:
            errors["email"] = "Email is required"
        elif not is_valid_email(email):
            errors["email"] = "Email must be a valid email address"

    if creating:
        password = payload.get("password")
        if password is not None and not isinstance(password, str):
            errors["password"] = "Password must be a string"
        elif len(password or "") < MIN_PASSWORD_LENGTH:
            errors["password"] = f"Password must be at least {MIN_PASSWORD_LENGTH} characters"

    if "role" in payload or creating:
        role = (clean_str(payload.get("role")) or (ROLE_EMPLOYEE if creating else "")).lower()
        if role not in USER_ROLES:
            errors["role"] = "Role must be one of: " + ", ".join(USER_ROLES)

    for field, model, label in (("department_id", Department, "Department"), ("location_id", Location, "Location")):
        raw = payload.get(field)
        if raw in (None, ""):
            continue
        ref_id = parse_int(raw)
        if ref_id is None or db.session.get(model, ref_id) is None:
            errors[field] = f"{label} not found"

    return errors


def _ensure_unique(payload: Dict[str, Any], user_id: Optional[int] = None):
    email = clean_str(payload.get("email"))
    if email:
        existing = User.query.filter(db.func.lower(User.email) == email.lower(), User.id != (user_id or 0)).first()
        if existing:
            raise ConflictError("Email already exists")

    employee_id = clean_str(payload.get("employee_id"))
    if employee_id:
        existing = User.query.filter(User.employee_id == employee_id, User.id != (user_id or 0)).first()
        if existing:
            raise ConflictError("Employee ID already exists")


@users_bp.get("")
@permission_required("users.read")
def list_users():
    page, limit = pagination_args()
    query = User.query

    role = clean_str(request.args.get("role"))
    if role:
        query = query.filter(User.role == role.lower())
    department_id = parse_int(request.args.get("department_id"))
    if department_id:
        query = query.filter(User.department_id == department_id)
    location_id = parse_int(request.args.get("location_id"))
    if location_id:
        query = query.filter(User.location_id == location_id)
    is_active = parse_bool(request.args.get("is_active"))
    if is_active is not None:
        query = query.filter(User.is_active.is_(is_active))

    search = clean_str(request.args.get("search"))
    if search:
        like = f"%{search}%"
        query = query.filter(db.or_(
            User.first_name.ilike(like),
            User.last_name.ilike(like),
            User.email.ilike(like),
            User.employee_id.ilike(like),
        ))

    total = query.count()
    users = (
        query.order_by(User.first_name.asc(), User.last_name.asc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return paginated([u.to_dict() for u in users], page, limit, total, "Users retrieved successfully")


@users_bp.get("/<int:user_id>")
@permission_required("users.read")
def get_user(user_id: int):
    user = _get_user_or_404(user_id)
    return success(user.to_dict(), "User retrieved successfully")


@users_bp.post("")
@permission_required("users.create")
def create_user():
    payload = get_json_body()
    errors = _validate_user_fields(payload, creating=True)
    if errors:
        raise ValidationError(errors)
    _ensure_unique(payload)

    role = (clean_str(payload.get("role")) or ROLE_EMPLOYEE).lower()
    if role == ROLE_SUPERADMIN and current_user.role != ROLE_SUPERADMIN:
        raise ForbiddenError("Only a superadmin can create superadmin accounts")

    user = User(
        first_name=clean_str(payload.get("first_name")),
        last_name=clean_str(payload.get("last_name")),
        email=clean_str(payload.get("email")).lower(),
        employee_id=clean_str(payload.get("employee_id")),
        phone=clean_str(payload.get("phone")),
        role=role,
        department_id=parse_int(payload.get("department_id")),
        location_id=parse_int(payload.get("location_id")),
        is_active=parse_bool(payload.get("is_active"), True),
        is_vip=parse_bool(payload.get("is_vip"), False),
    )
    user.set_password(payload["password"])
    db.session.add(user)
    db.session.flush()

    log_activity(
        "user_created",
        user=current_user,
        target=user,
        summary=f"Created user {user.email}",
        meta={"role": role},
    )
    db.session.commit()
    return created(user.to_dict(), "User created successfully")


@users_bp.put("/<int:user_id>")
@permission_required("users.update")
def update_user(user_id: int):
    user = _get_user_or_404(user_id)
    payload = get_json_body()

    fields = {key: payload[key] for key in UPDATABLE_FIELDS if key in payload}
    if not fields:
        raise BadRequestError("No valid fields to update")

    errors = _validate_user_fields(fields)
    if errors:
        raise ValidationError(errors)
    _ensure_unique(fields, user.id)

    if "role" in fields:
        new_role = clean_str(fields["role"]).lower()
        if new_role != user.role:
            if not permission_service.user_has_permission(current_user.id, "users.assign_roles"):
                raise ForbiddenError("Insufficient permissions to change user roles")
            if ROLE_SUPERADMIN in (new_role, user.role) and current_user.role != ROLE_SUPERADMIN:
                raise ForbiddenError("Only a superadmin can change superadmin roles")
        fields["role"] = new_role

    changes = {}
    for key, value in fields.items():
        if key in ("department_id", "location_id"):
            value = parse_int(value)
        elif key in ("is_active", "is_vip"):
            value = parse_bool(value, getattr(user, key))
        elif key == "email":
            value = clean_str(value).lower()
        elif key != "role":
            value = clean_str(value)
        if getattr(user, key) != value:
            changes[key] = value
            setattr(user, key, value)

    if "role" in changes:
        permission_service.clear_cache(user.id)

    log_activity(
        "user_updated",
        user=current_user,
        target=user,
        summary=f"Updated user {user.email}",
        meta={"fields": sorted(changes)},
    )
    db.session.commit()
    return success(user.to_dict(), "User updated successfully")


@users_bp.delete("/<int:user_id>")
@permission_required("users.delete")
def delete_user(user_id: int):
    user = _get_user_or_404(user_id)
    if user.id == current_user.id:
        raise BadRequestError("You cannot delete your own account")

    user.is_active = False
    permission_service.clear_cache(user.id)
    log_activity("user_deleted", user=current_user, target=user, summary=f"Deactivated user {user.email}")
    db.session.commit()
    return success(None, "User deleted successfully")


@users_bp.post("/<int:user_id>/reset-password")
@roles_required(*ADMIN_ROLES)
def reset_password(user_id: int):
    user = _get_user_or_404(user_id)
    payload = get_json_body()

    new_password = payload.get("new_password") or payload.get("password")
    generated = not new_password
    if generated:
        new_password = _generate_password()
    elif not isinstance(new_password, str):
        raise ValidationError({"new_password": "Password must be a string"})
    elif len(new_password) < MIN_PASSWORD_LENGTH:
        raise ValidationError({"new_password": f"Password must be at least {MIN_PASSWORD_LENGTH} characters"})

    user.set_password(new_password)
    user.failed_login_attempts = 0
    user.locked_until = None
    log_activity(
        "user_password_reset",
        user=current_user,
        target=user,
        summary=f"Reset password for {user.email}",
        meta={"generated": generated},
    )
    db.session.commit()

    data = {"user_id": user.id, "email": user.email}
    if generated:
        data["temporary_password"] = new_password
    return success(data, "Password reset successfully")


@users_bp.post("/<int:user_id>/unlock")
@roles_required(*ADMIN_ROLES)
def unlock_user(user_id: int):
    user = _get_user_or_404(user_id)
    was_locked = user.is_locked()

    user.failed_login_attempts = 0
    user.locked_until = None
    log_activity(
        "user_unlocked",
        user=current_user,
        target=user,
        summary=f"Unlocked account {user.email}",
        meta={"was_locked": was_locked},
    )
    db.session.commit()
    return success(user.to_dict(), "User account unlocked successfully")
