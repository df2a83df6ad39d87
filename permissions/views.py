from flask import request
from flask_login import current_user

from middleware.permissions import roles_required
from utilities.constants import ADMIN_ROLES, ROLE_SUPERADMIN
from utilities.database import (
    db,
    PermissionAuditLog,
    PermissionCategory,
    RolePermission,
    RoleTemplate,
    User,
    UserCustomPermission,
    log_activity,
)
from utilities.errors import NotFoundError, ValidationError
from utilities.permission_service import permission_service
from utilities.responses import paginated, success
from utilities.validators import clean_str, get_json_body, pagination_args, parse_datetime, parse_int
from . import permissions_bp

AUDIT_PAGE_SIZE = 50


def _get_user_or_404(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def _override_payload():
    payload = get_json_body()
    errors = {}
    key = clean_str(payload.get("permission_key"))
    if not key:
        errors["permission_key"] = "Permission key is required"

    expires_at = None
    if payload.get("expires_at") not in (None, ""):
        try:
            expires_at = parse_datetime(payload.get("expires_at"))
        except ValueError:
            errors["expires_at"] = "Expiry must be a valid date"

    if errors:
        raise ValidationError(errors)
    return key, clean_str(payload.get("reason")), expires_at


@permissions_bp.get("/categories")
@roles_required(*ADMIN_ROLES)
def list_categories():
    categories = (
        PermissionCategory.query.filter_by(is_active=True)
        .order_by(PermissionCategory.display_order, PermissionCategory.id)
        .all()
    )
    data = []
    for category in categories:
        entry = category.to_dict()
        entry["permission_count"] = sum(1 for p in category.permissions if p.is_active)
        data.append(entry)
    return success(data, "Permission categories retrieved successfully")


@permissions_bp.get("/all")
@roles_required(*ADMIN_ROLES)
def list_permissions():
    return success(permission_service.get_all_permissions(), "Permissions retrieved successfully")


@permissions_bp.get("/roles")
@roles_required(ROLE_SUPERADMIN)
def list_roles():
    roles = RoleTemplate.query.filter_by(is_active=True).order_by(RoleTemplate.hierarchy_level.desc()).all()
    data = []
    for role in roles:
        entry = role.to_dict()
        entry["permission_count"] = RolePermission.query.filter_by(role_template_id=role.id).count()
        entry["user_count"] = User.query.filter_by(role=role.role_name, is_active=True).count()
        data.append(entry)
    return success(data, "Roles retrieved successfully")


@permissions_bp.get("/roles/<role_name>")
@roles_required(ROLE_SUPERADMIN)
def get_role(role_name: str):
    role = permission_service.get_role(role_name)
    data = role.to_dict()
    data["permissions"] = permission_service.get_role_permissions(role.role_name)
    return success(data, "Role permissions retrieved successfully")


@permissions_bp.put("/roles/<role_name>")
@roles_required(ROLE_SUPERADMIN)
def update_role(role_name: str):
    payload = get_json_body()
    keys = payload.get("permission_keys", payload.get("permissions"))
    if not isinstance(keys, list) or not all(isinstance(k, str) for k in keys):
        raise ValidationError({"permission_keys": "Permission keys must be a list of strings"})

    result = permission_service.update_role_permissions(role_name, keys, current_user)
    log_activity(
        "role_permissions_updated",
        user=current_user,
        target_type="RoleTemplate",
        summary=f"Updated {role_name} permissions",
        meta={"added": result["added"], "removed": result["removed"]},
    )
    db.session.commit()
    return success(result, "Role permissions updated successfully")


@permissions_bp.get("/users/<int:user_id>")
@roles_required(*ADMIN_ROLES)
def get_user_permissions(user_id: int):
    user = _get_user_or_404(user_id)
    data = {
        "user": {"id": user.id, "full_name": user.full_name, "email": user.email, "role": user.role},
        "role_permissions": permission_service.get_role_permissions(user.role),
        "custom_permissions": permission_service.get_user_custom_permissions(user.id),
        "effective_permissions": permission_service.get_user_effective_permissions(user.id),
    }
    return success(data, "User permissions retrieved successfully")


@permissions_bp.post("/users/<int:user_id>/grant")
@roles_required(ROLE_SUPERADMIN)
def grant_permission(user_id: int):
    key, reason, expires_at = _override_payload()
    override = permission_service.grant_user_permission(user_id, key, current_user, reason, expires_at)
    log_activity(
        "permission_granted",
        user=current_user,
        target_type="User",
        target_id=user_id,
        summary=f"Granted {key}",
        meta={"expires_at": expires_at.isoformat() if expires_at else None},
    )
    db.session.commit()
    return success(override.to_dict(), "Permission granted successfully")


@permissions_bp.post("/users/<int:user_id>/revoke")
@roles_required(ROLE_SUPERADMIN)
def revoke_permission(user_id: int):
    key, reason, expires_at = _override_payload()
    override = permission_service.revoke_user_permission(user_id, key, current_user, reason, expires_at)
    log_activity(
        "permission_revoked",
        user=current_user,
        target_type="User",
        target_id=user_id,
        summary=f"Revoked {key}",
    )
    db.session.commit()
    return success(override.to_dict(), "Permission revoked successfully")


@permissions_bp.delete("/users/<int:user_id>/custom")
@roles_required(ROLE_SUPERADMIN)
def remove_custom_permissions(user_id: int):
    payload = get_json_body()
    removed = permission_service.remove_user_custom_permissions(user_id, current_user, clean_str(payload.get("reason")))
    log_activity(
        "custom_permissions_removed",
        user=current_user,
        target_type="User",
        target_id=user_id,
        summary=f"Removed {removed} custom permission(s)",
    )
    db.session.commit()
    return success({"user_id": user_id, "removed": removed}, "Custom permissions removed successfully")


@permissions_bp.get("/audit")
@roles_required(ROLE_SUPERADMIN)
def audit_log():
    page, limit = pagination_args(AUDIT_PAGE_SIZE)
    query = PermissionAuditLog.query

    action_type = clean_str(request.args.get("action_type"))
    if action_type:
        query = query.filter(PermissionAuditLog.action_type == action_type.upper())
    target_type = clean_str(request.args.get("target_type"))
    if target_type:
        query = query.filter(PermissionAuditLog.target_type == target_type.upper())
    target_id = clean_str(request.args.get("target_id"))
    if target_id:
        query = query.filter(PermissionAuditLog.target_id == target_id)
    performed_by = parse_int(request.args.get("performed_by"))
    if performed_by:
        query = query.filter(PermissionAuditLog.performed_by == performed_by)

    total = query.count()
    entries = (
        query.order_by(PermissionAuditLog.performed_at.desc(), PermissionAuditLog.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return paginated([e.to_dict() for e in entries], page, limit, total, "Permission audit log retrieved successfully")


@permissions_bp.get("/analytics/role-distribution")
@roles_required(ROLE_SUPERADMIN)
def role_distribution():
    custom_users = db.select(UserCustomPermission.user_id).distinct()
    rows = (
        db.session.query(
            User.role,
            db.func.count(User.id),
            db.func.sum(db.case((User.is_active.is_(True), 1), else_=0)),
            db.func.sum(db.case((User.id.in_(custom_users), 1), else_=0)),
        )
        .group_by(User.role)
        .order_by(db.func.count(User.id).desc())
        .all()
    )
    data = [
        {
            "role": role,
            "totalUsers": total,
            "activeUsers": int(active or 0),
            "inactiveUsers": total - int(active or 0),
            "usersWithCustomPermissions": int(custom or 0),
        }
        for role, total, active, custom in rows
    ]
    return success(data, "Role distribution retrieved successfully")


@permissions_bp.post("/cache/clear")
@roles_required(ROLE_SUPERADMIN)
def clear_cache():
    permission_service.clear_cache()
    log_activity("permission_cache_cleared", user=current_user, summary="Cleared permission cache", commit=True)
    return success(None, "Permission cache cleared successfully")
