"""
Role-based permissions with per-user overrides.

Effective permissions = permissions of the user's role template
                        + unexpired per-user grants
                        - unexpired per-user revokes.

Results are cached in-process per user; every write path clears the
affected entries.
"""
import json
import logging
import time
from typing import Any, Dict, Iterable, List, Optional, Set

from flask import current_app, has_request_context, request

from utilities.constants import (
    AUDIT_ACTION_GRANT,
    AUDIT_ACTION_REVOKE,
    AUDIT_ACTION_ROLE_UPDATE,
    AUDIT_TARGET_ROLE,
    AUDIT_TARGET_USER,
    ROLE_SUPERADMIN,
)
from utilities.database import (
    db,
    Permission,
    PermissionAuditLog,
    PermissionCategory,
    RolePermission,
    RoleTemplate,
    User,
    UserCustomPermission,
    utc_now,
    _extract_id,
    _iso,
)
from utilities.errors import BadRequestError, ForbiddenError, NotFoundError

logger = logging.getLogger("itam.permissions")


class PermissionService:
    def __init__(self):
        self._user_cache: Dict[int, Dict[str, Any]] = {}
        self._role_cache: Dict[str, Dict[str, Any]] = {}
        self._catalog_cache: Optional[Dict[str, Any]] = None

    # --- cache helpers ---
    @staticmethod
    def _ttl(key: str, default: int) -> int:
        try:
            return int(current_app.config.get(key, default))
        except RuntimeError:
            return default

    @staticmethod
    def _fresh(entry: Optional[Dict[str, Any]]) -> bool:
        return entry is not None and entry["expires"] > time.monotonic()

    def clear_cache(self, user_id: Optional[int] = None):
        if user_id is None:
            self._user_cache.clear()
            self._role_cache.clear()
            self._catalog_cache = None
        else:
            self._user_cache.pop(user_id, None)

    def clear_role_cache(self, role_name: str):
        self._role_cache.pop(role_name, None)
        # every user of the role may have a stale entry
        self._user_cache.clear()

    # --- reads ---
    def get_all_permissions(self) -> Dict[str, Any]:
        """Active permissions grouped by category, cached for the catalog TTL."""
        if self._fresh(self._catalog_cache):
            return self._catalog_cache["value"]

        categories = (
            PermissionCategory.query.filter_by(is_active=True)
            .order_by(PermissionCategory.display_order, PermissionCategory.id)
            .all()
        )
        grouped = []
        for category in categories:
            perms = sorted(
                (p for p in category.permissions if p.is_active),
                key=lambda p: (p.display_order, p.permission_key),
            )
            grouped.append({**category.to_dict(), "permissions": [p.to_dict() for p in perms]})

        uncategorized = (
            Permission.query.filter(Permission.category_id.is_(None), Permission.is_active.is_(True))
            .order_by(Permission.permission_key)
            .all()
        )
        value = {
            "categories": grouped,
            "uncategorized": [p.to_dict() for p in uncategorized],
            "total": sum(len(c["permissions"]) for c in grouped) + len(uncategorized),
        }
        ttl = self._ttl("PERMISSION_CATALOG_CACHE_SECONDS", 600)
        self._catalog_cache = {"value": value, "expires": time.monotonic() + ttl}
        return value

    def get_role(self, role_name: str) -> RoleTemplate:
        role = RoleTemplate.query.filter_by(role_name=role_name, is_active=True).first()
        if role is None:
            raise NotFoundError(f"Role not found: {role_name}")
        return role

    def get_role_permissions(self, role_name: str) -> List[str]:
        entry = self._role_cache.get(role_name)
        if self._fresh(entry):
            return list(entry["value"])

        rows = (
            db.session.query(Permission.permission_key)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .join(RoleTemplate, RoleTemplate.id == RolePermission.role_template_id)
            .filter(
                RoleTemplate.role_name == role_name,
                RoleTemplate.is_active.is_(True),
                Permission.is_active.is_(True),
            )
            .order_by(Permission.permission_key)
            .all()
        )
        keys = [row[0] for row in rows]
        ttl = self._ttl("PERMISSION_CACHE_SECONDS", 300)
        self._role_cache[role_name] = {"value": keys, "expires": time.monotonic() + ttl}
        return list(keys)

    def get_user_effective_permissions(self, user_id: int) -> List[str]:
        entry = self._user_cache.get(user_id)
        if self._fresh(entry):
            return list(entry["value"])

        user = db.session.get(User, user_id)
        if user is None or not user.is_active:
            logger.warning("Permission lookup for missing or inactive user %s", user_id)
            return []

        effective: Set[str] = set(self.get_role_permissions(user.role))
        now = utc_now()
        overrides = (
            db.session.query(UserCustomPermission, Permission.permission_key)
            .join(Permission, Permission.id == UserCustomPermission.permission_id)
            .filter(
                UserCustomPermission.user_id == user_id,
                Permission.is_active.is_(True),
                db.or_(UserCustomPermission.expires_at.is_(None), UserCustomPermission.expires_at > now),
            )
            .all()
        )
        for override, key in overrides:
            if override.is_granted:
                effective.add(key)
            else:
                effective.discard(key)

        keys = sorted(effective)
        ttl = self._ttl("PERMISSION_CACHE_SECONDS", 300)
        self._user_cache[user_id] = {"value": keys, "expires": time.monotonic() + ttl}
        return list(keys)

    def user_has_permission(self, user_id: int, permission_key: str) -> bool:
        return permission_key in self.get_user_effective_permissions(user_id)

    def user_has_any_permission(self, user_id: int, permission_keys: Iterable[str]) -> bool:
        effective = set(self.get_user_effective_permissions(user_id))
        return any(key in effective for key in permission_keys)

    def user_has_all_permissions(self, user_id: int, permission_keys: Iterable[str]) -> bool:
        effective = set(self.get_user_effective_permissions(user_id))
        return all(key in effective for key in permission_keys)

    def get_user_custom_permissions(self, user_id: int) -> Dict[str, List[Dict[str, Any]]]:
        rows = (
            UserCustomPermission.query.join(Permission, Permission.id == UserCustomPermission.permission_id)
            .filter(UserCustomPermission.user_id == user_id, Permission.is_active.is_(True))
            .order_by(UserCustomPermission.granted_at.desc())
            .all()
        )
        granted, revoked = [], []
        for row in rows:
            (granted if row.is_granted else revoked).append(row.to_dict())
        return {"granted": granted, "revoked": revoked}

    # --- writes (caller commits) ---
    def _get_permission(self, permission_key: str) -> Permission:
        permission = Permission.query.filter_by(permission_key=permission_key, is_active=True).first()
        if permission is None:
            raise NotFoundError(f"Permission not found: {permission_key}")
        return permission

    @staticmethod
    def _get_user(user_id: int) -> User:
        user = db.session.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    def _set_override(
        self,
        user_id: int,
        permission_key: str,
        is_granted: bool,
        performed_by: Any,
        reason: Optional[str],
        expires_at,
    ) -> UserCustomPermission:
        user = self._get_user(user_id)
        permission = self._get_permission(permission_key)

        override = UserCustomPermission.query.filter_by(user_id=user.id, permission_id=permission.id).first()
        old_value = None
        if override is None:
            override = UserCustomPermission(user_id=user.id, permission_id=permission.id)
            db.session.add(override)
        else:
            old_value = json.dumps({"is_granted": override.is_granted, "expires_at": _iso(override.expires_at)})

        override.is_granted = is_granted
        override.granted_by = _extract_id(performed_by)
        override.granted_at = utc_now()
        override.expires_at = expires_at
        override.reason = reason
        user.has_custom_permissions = True

        self.log_permission_change(
            AUDIT_ACTION_GRANT if is_granted else AUDIT_ACTION_REVOKE,
            AUDIT_TARGET_USER,
            user.id,
            permission_id=permission.id,
            performed_by=performed_by,
            old_value=old_value,
            new_value=json.dumps({"is_granted": is_granted, "expires_at": _iso(expires_at)}),
            reason=reason,
        )
        self.clear_cache(user.id)
        return override

    def grant_user_permission(self, user_id, permission_key, granted_by, reason=None, expires_at=None):
        return self._set_override(user_id, permission_key, True, granted_by, reason, expires_at)

    def revoke_user_permission(self, user_id, permission_key, revoked_by, reason=None, expires_at=None):
        return self._set_override(user_id, permission_key, False, revoked_by, reason, expires_at)

    def remove_user_custom_permissions(self, user_id: int, performed_by: Any, reason: Optional[str] = None) -> int:
        user = self._get_user(user_id)
        overrides = UserCustomPermission.query.filter_by(user_id=user.id).all()
        for override in overrides:
            self.log_permission_change(
                AUDIT_ACTION_REVOKE,
                AUDIT_TARGET_USER,
                user.id,
                permission_id=override.permission_id,
                performed_by=performed_by,
                old_value=json.dumps({"is_granted": override.is_granted, "expires_at": _iso(override.expires_at)}),
                new_value=None,
                reason=reason or "Custom permission removed",
            )
            db.session.delete(override)

        user.has_custom_permissions = False
        self.clear_cache(user.id)
        return len(overrides)

    def update_role_permissions(self, role_name: str, permission_keys: List[str], updated_by: Any) -> Dict[str, Any]:
        if role_name == ROLE_SUPERADMIN:
            raise ForbiddenError("Cannot modify superadmin role permissions")

        role = self.get_role(role_name)
        requested = list(dict.fromkeys(permission_keys))
        permissions = Permission.query.filter(
            Permission.permission_key.in_(requested), Permission.is_active.is_(True)
        ).all() if requested else []
        found = {p.permission_key: p for p in permissions}
        unknown = [key for key in requested if key not in found]
        if unknown:
            raise BadRequestError("Unknown permission keys: " + ", ".join(unknown))

        old_keys = sorted(rp.permission.permission_key for rp in role.role_permissions if rp.permission)

        role.role_permissions.clear()
        db.session.flush()
        for key in requested:
            role.role_permissions.append(
                RolePermission(permission=found[key], granted_by=_extract_id(updated_by))
            )
        role.updated_at = utc_now()

        self.log_permission_change(
            AUDIT_ACTION_ROLE_UPDATE,
            AUDIT_TARGET_ROLE,
            role.role_name,
            performed_by=updated_by,
            old_value=json.dumps(old_keys),
            new_value=json.dumps(sorted(requested)),
            reason=f"Updated {role_name} permissions",
        )
        self.clear_role_cache(role_name)
        return {"role": role.role_name, "added": sorted(set(requested) - set(old_keys)),
                "removed": sorted(set(old_keys) - set(requested)), "permissions": sorted(requested)}

    def log_permission_change(
        self,
        action_type: str,
        target_type: str,
        target_id: Any,
        *,
        permission_id: Optional[int] = None,
        performed_by: Any = None,
        old_value: Optional[str] = None,
        new_value: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> PermissionAuditLog:
        entry = PermissionAuditLog(
            action_type=action_type,
            target_type=target_type,
            target_id=str(target_id),
            permission_id=permission_id,
            performed_by=_extract_id(performed_by),
            old_value=old_value,
            new_value=new_value,
            reason=reason,
        )
        if has_request_context():
            entry.ip_address = request.remote_addr
            entry.user_agent = (request.headers.get("User-Agent") or "")[:500] or None
        db.session.add(entry)
        logger.info("%s %s %s by %s", action_type, target_type, target_id, entry.performed_by)
        return entry


permission_service = PermissionService()
