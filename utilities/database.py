# utilities/database.py
from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash
from datetime import datetime, UTC
from typing import Any, Dict, List, Optional, Union

db = SQLAlchemy()


def utc_now() -> datetime:
    """Return a naive UTC datetime without relying on deprecated utcnow()."""
    return datetime.now(UTC).replace(tzinfo=None)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


class Department(db.Model):
    __tablename__ = "departments"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), unique=True, nullable=False)
    description = db.Column(db.String(500), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Location(db.Model):
    __tablename__ = "locations"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    address = db.Column(db.String(500), nullable=False)
    building = db.Column(db.String(100), nullable=True)
    floor = db.Column(db.String(50), nullable=True)
    city_name = db.Column(db.String(100), nullable=True)
    state_name = db.Column(db.String(100), nullable=True)
    pincode = db.Column(db.String(10), nullable=True)
    contact_person = db.Column(db.String(100), nullable=True)
    contact_email = db.Column(db.String(255), nullable=True)
    contact_phone = db.Column(db.String(20), nullable=True)
    parent_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    parent = db.relationship("Location", remote_side=[id], backref="children")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "building": self.building,
            "floor": self.floor,
            "city_name": self.city_name,
            "state_name": self.state_name,
            "pincode": self.pincode,
            "contact_person": self.contact_person,
            "contact_email": self.contact_email,
            "contact_phone": self.contact_phone,
            "parent_location_id": self.parent_location_id,
            "parent_location_name": self.parent.name if self.parent else None,
            "is_active": self.is_active,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class User(db.Model, UserMixin):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    employee_id = db.Column(db.String(50), unique=True, nullable=True)
    phone = db.Column(db.String(20), nullable=True)
    role = db.Column(db.String(30), nullable=False, default="employee", index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=True, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_vip = db.Column(db.Boolean, nullable=False, default=False)
    has_custom_permissions = db.Column(db.Boolean, nullable=False, default=False)

    failed_login_attempts = db.Column(db.Integer, nullable=False, default=0)
    locked_until = db.Column(db.DateTime, nullable=True)
    last_login_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    department = db.relationship("Department", backref="users")
    location = db.relationship("Location", backref="users")

    def set_password(self, raw_password: str):
        self.password_hash = generate_password_hash(raw_password)

    def check_password(self, raw_password: str) -> bool:
        return check_password_hash(self.password_hash, raw_password)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def is_locked(self, now: Optional[datetime] = None) -> bool:
        now = now or utc_now()
        return self.locked_until is not None and self.locked_until > now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "email": self.email,
            "employee_id": self.employee_id,
            "phone": self.phone,
            "role": self.role,
            "department_id": self.department_id,
            "department_name": self.department.name if self.department else None,
            "location_id": self.location_id,
            "location_name": self.location.name if self.location else None,
            "is_active": self.is_active,
            "is_vip": self.is_vip,
            "has_custom_permissions": self.has_custom_permissions,
            "is_locked": self.is_locked(),
            "last_login_at": _iso(self.last_login_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Asset(db.Model):
    __tablename__ = "assets"

    id = db.Column(db.Integer, primary_key=True)
    asset_tag = db.Column(db.String(50), unique=True, nullable=False, index=True)
    serial_number = db.Column(db.String(100), nullable=True)
    name = db.Column(db.String(200), nullable=True)
    asset_type = db.Column(db.String(20), nullable=False, default="asset")  # asset|component
    category = db.Column(db.String(100), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="available", index=True)
    importance = db.Column(db.String(20), nullable=True, default="medium")
    assigned_to = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True, index=True)

    # Component hierarchy; removed components keep parent_asset_id with removal_date set
    parent_asset_id = db.Column(db.Integer, db.ForeignKey("assets.id"), nullable=True, index=True)
    installation_date = db.Column(db.DateTime, nullable=True)
    removal_date = db.Column(db.DateTime, nullable=True)
    installation_notes = db.Column(db.Text, nullable=True)
    installed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    # Standby pool flags
    is_standby_asset = db.Column(db.Boolean, nullable=False, default=False)
    standby_available = db.Column(db.Boolean, nullable=False, default=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    assignee = db.relationship("User", foreign_keys=[assigned_to], backref="assets")
    location = db.relationship("Location")
    installer = db.relationship("User", foreign_keys=[installed_by])
    parent_asset = db.relationship("Asset", remote_side=[id], foreign_keys=[parent_asset_id], backref="child_assets")

    @property
    def is_installed(self) -> bool:
        return self.parent_asset_id is not None and self.removal_date is None

    def installed_components(self) -> List["Asset"]:
        return sorted(
            (c for c in self.child_assets if c.is_active and c.removal_date is None),
            key=lambda c: c.asset_tag,
        )

    def installation_status(self) -> Optional[str]:
        if self.removal_date is not None:
            return "removed"
        if self.installation_date is not None:
            return "installed"
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "asset_tag": self.asset_tag,
            "serial_number": self.serial_number,
            "name": self.name,
            "asset_type": self.asset_type,
            "category": self.category,
            "status": self.status,
            "importance": self.importance,
            "assigned_to": self.assigned_to,
            "assigned_to_name": self.assignee.full_name if self.assignee else None,
            "location_id": self.location_id,
            "location_name": self.location.name if self.location else None,
            "parent_asset_id": self.parent_asset_id,
            "parent_asset_tag": self.parent_asset.asset_tag if self.parent_asset else None,
            "installation_status": self.installation_status(),
            "installation_date": _iso(self.installation_date),
            "removal_date": _iso(self.removal_date),
            "installation_notes": self.installation_notes,
            "installed_by": self.installed_by,
            "installed_by_name": self.installer.full_name if self.installer else None,
            "is_standby_asset": self.is_standby_asset,
            "standby_available": self.standby_available,
            "is_active": self.is_active,
            "notes": self.notes,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class AssetMovement(db.Model):
    """One row per change of custody or status of an asset"""
    __tablename__ = "asset_movements"

    id = db.Column(db.Integer, primary_key=True)
    asset_id = db.Column(db.Integer, db.ForeignKey("assets.id", ondelete="CASCADE"), nullable=False, index=True)
    asset_tag = db.Column(db.String(50), nullable=True)
    assigned_to = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    previous_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)
    previous_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)
    parent_asset_id = db.Column(db.Integer, db.ForeignKey("assets.id", ondelete="SET NULL"), nullable=True)
    parent_asset_tag = db.Column(db.String(50), nullable=True)
    movement_type = db.Column(db.String(30), nullable=False)
    status = db.Column(db.String(20), nullable=True)
    reason = db.Column(db.String(500), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    performed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    movement_date = db.Column(db.DateTime, nullable=False, default=utc_now, index=True)

    asset = db.relationship("Asset", foreign_keys=[asset_id], backref=db.backref("movements", passive_deletes=True))
    assignee = db.relationship("User", foreign_keys=[assigned_to])
    previous_user = db.relationship("User", foreign_keys=[previous_user_id])
    performer = db.relationship("User", foreign_keys=[performed_by])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "asset_id": self.asset_id,
            "asset_tag": self.asset_tag,
            "assigned_to": self.assigned_to,
            "assigned_to_name": self.assignee.full_name if self.assignee else None,
            "previous_user_id": self.previous_user_id,
            "previous_user_name": self.previous_user.full_name if self.previous_user else None,
            "location_id": self.location_id,
            "previous_location_id": self.previous_location_id,
            "parent_asset_id": self.parent_asset_id,
            "parent_asset_tag": self.parent_asset_tag,
            "movement_type": self.movement_type,
            "status": self.status,
            "reason": self.reason,
            "notes": self.notes,
            "performed_by": self.performed_by,
            "performed_by_name": self.performer.full_name if self.performer else None,
            "movement_date": _iso(self.movement_date),
        }


class StandbyAssignment(db.Model):
    """A standby asset on loan to a user, optionally replacing their own asset"""
    __tablename__ = "standby_assignments"
    __table_args__ = (
        db.CheckConstraint("status IN ('active', 'returned', 'permanent')", name="ck_standby_status"),
        db.CheckConstraint(
            "reason_category IN ('repair', 'maintenance', 'lost', 'stolen', 'other')",
            name="ck_standby_reason_category",
        ),
        db.CheckConstraint(
            "actual_return_date IS NULL OR actual_return_date >= assigned_date",
            name="ck_standby_return_date",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    standby_asset_id = db.Column(db.Integer, db.ForeignKey("assets.id"), nullable=False, index=True)
    original_asset_id = db.Column(db.Integer, db.ForeignKey("assets.id"), nullable=True, index=True)

    reason = db.Column(db.String(500), nullable=False)
    reason_category = db.Column(db.String(50), nullable=False)
    assigned_date = db.Column(db.DateTime, nullable=False, default=utc_now, index=True)
    expected_return_date = db.Column(db.DateTime, nullable=True)
    actual_return_date = db.Column(db.DateTime, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="active", index=True)
    notes = db.Column(db.Text, nullable=True)
    return_notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    returned_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    returned_at = db.Column(db.DateTime, nullable=True)
    made_permanent_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    made_permanent_at = db.Column(db.DateTime, nullable=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    user = db.relationship("User", foreign_keys=[user_id])
    standby_asset = db.relationship("Asset", foreign_keys=[standby_asset_id])
    original_asset = db.relationship("Asset", foreign_keys=[original_asset_id])
    creator = db.relationship("User", foreign_keys=[created_by])

    def days_assigned(self, now: Optional[datetime] = None) -> int:
        end = self.actual_return_date or self.made_permanent_at or now or utc_now()
        return max((end - self.assigned_date).days, 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_name": self.user.full_name if self.user else None,
            "user_email": self.user.email if self.user else None,
            "standby_asset_id": self.standby_asset_id,
            "standby_asset_tag": self.standby_asset.asset_tag if self.standby_asset else None,
            "original_asset_id": self.original_asset_id,
            "original_asset_tag": self.original_asset.asset_tag if self.original_asset else None,
            "reason": self.reason,
            "reason_category": self.reason_category,
            "assigned_date": _iso(self.assigned_date),
            "expected_return_date": _iso(self.expected_return_date),
            "actual_return_date": _iso(self.actual_return_date),
            "status": self.status,
            "notes": self.notes,
            "return_notes": self.return_notes,
            "created_by": self.created_by,
            "created_by_name": self.creator.full_name if self.creator else None,
            "returned_by": self.returned_by,
            "returned_at": _iso(self.returned_at),
            "made_permanent_by": self.made_permanent_by,
            "made_permanent_at": _iso(self.made_permanent_at),
            "days_assigned": self.days_assigned(),
        }


# --- Permission system ---
class PermissionCategory(db.Model):
    __tablename__ = "permission_categories"

    id = db.Column(db.Integer, primary_key=True)
    category_key = db.Column(db.String(100), unique=True, nullable=False)
    category_name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.String(500), nullable=True)
    display_order = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    permissions = db.relationship("Permission", back_populates="category")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "category_key": self.category_key,
            "category_name": self.category_name,
            "description": self.description,
            "display_order": self.display_order,
            "is_active": self.is_active,
        }


class Permission(db.Model):
    __tablename__ = "permissions"

    id = db.Column(db.Integer, primary_key=True)
    permission_key = db.Column(db.String(100), unique=True, nullable=False, index=True)
    permission_name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.String(500), nullable=True)
    category_id = db.Column(
        db.Integer, db.ForeignKey("permission_categories.id", ondelete="SET NULL"), nullable=True, index=True
    )
    resource_type = db.Column(db.String(100), nullable=True)
    action_type = db.Column(db.String(50), nullable=True)
    is_system = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    display_order = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    category = db.relationship("PermissionCategory", back_populates="permissions")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "permission_key": self.permission_key,
            "permission_name": self.permission_name,
            "description": self.description,
            "category_id": self.category_id,
            "category_key": self.category.category_key if self.category else None,
            "resource_type": self.resource_type,
            "action_type": self.action_type,
            "is_system": self.is_system,
            "is_active": self.is_active,
            "display_order": self.display_order,
        }


class RoleTemplate(db.Model):
    __tablename__ = "role_templates"

    id = db.Column(db.Integer, primary_key=True)
    role_name = db.Column(db.String(50), unique=True, nullable=False)
    display_name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(500), nullable=True)
    hierarchy_level = db.Column(db.Integer, nullable=False, default=0)
    is_system_role = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    role_permissions = db.relationship(
        "RolePermission", back_populates="role_template", cascade="all, delete-orphan"
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role_name": self.role_name,
            "display_name": self.display_name,
            "description": self.description,
            "hierarchy_level": self.hierarchy_level,
            "is_system_role": self.is_system_role,
            "is_active": self.is_active,
        }


class RolePermission(db.Model):
    __tablename__ = "role_permissions"
    __table_args__ = (db.UniqueConstraint("role_template_id", "permission_id", name="uq_role_permission"),)

    id = db.Column(db.Integer, primary_key=True)
    role_template_id = db.Column(
        db.Integer, db.ForeignKey("role_templates.id", ondelete="CASCADE"), nullable=False, index=True
    )
    permission_id = db.Column(
        db.Integer, db.ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    granted_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    granted_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    role_template = db.relationship("RoleTemplate", back_populates="role_permissions")
    permission = db.relationship("Permission")


class UserCustomPermission(db.Model):
    __tablename__ = "user_custom_permissions"
    __table_args__ = (db.UniqueConstraint("user_id", "permission_id", name="uq_user_custom_permission"),)

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    permission_id = db.Column(
        db.Integer, db.ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    is_granted = db.Column(db.Boolean, nullable=False, default=True)
    granted_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    granted_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    expires_at = db.Column(db.DateTime, nullable=True)
    reason = db.Column(db.String(500), nullable=True)

    permission = db.relationship("Permission")

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or utc_now()
        return self.expires_at is not None and self.expires_at <= now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "permission_id": self.permission_id,
            "permission_key": self.permission.permission_key if self.permission else None,
            "permission_name": self.permission.permission_name if self.permission else None,
            "is_granted": self.is_granted,
            "granted_by": self.granted_by,
            "granted_at": _iso(self.granted_at),
            "expires_at": _iso(self.expires_at),
            "is_expired": self.is_expired(),
            "reason": self.reason,
        }


class PermissionAuditLog(db.Model):
    __tablename__ = "permission_audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    action_type = db.Column(db.String(20), nullable=False, index=True)  # GRANT|REVOKE|ROLE_UPDATE
    target_type = db.Column(db.String(20), nullable=False)  # USER|ROLE
    target_id = db.Column(db.String(100), nullable=False, index=True)
    permission_id = db.Column(db.Integer, db.ForeignKey("permissions.id", ondelete="SET NULL"), nullable=True)
    old_value = db.Column(db.Text, nullable=True)
    new_value = db.Column(db.Text, nullable=True)
    performed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    performed_at = db.Column(db.DateTime, nullable=False, default=utc_now, index=True)
    ip_address = db.Column(db.String(50), nullable=True)
    user_agent = db.Column(db.String(500), nullable=True)
    reason = db.Column(db.String(500), nullable=True)

    permission = db.relationship("Permission")
    performer = db.relationship("User", foreign_keys=[performed_by])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "action_type": self.action_type,
            "target_type": self.target_type,
            "target_id": self.target_id,
            "permission_id": self.permission_id,
            "permission_key": self.permission.permission_key if self.permission else None,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "performed_by": self.performed_by,
            "performed_by_name": self.performer.full_name if self.performer else None,
            "performed_at": _iso(self.performed_at),
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "reason": self.reason,
        }


# --- Tickets ---
class Ticket(db.Model):
    __tablename__ = "tickets"

    id = db.Column(db.Integer, primary_key=True)
    ticket_number = db.Column(db.String(20), unique=True, nullable=False, index=True)  # TKT-2025-0001
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="open", index=True)
    priority = db.Column(db.String(20), nullable=False, default="medium", index=True)
    category = db.Column(db.String(100), nullable=True)
    ticket_channel = db.Column(db.String(20), nullable=False, default="portal")
    ticket_type = db.Column(db.String(30), nullable=False, default="incident")

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    created_by_coordinator_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    assigned_to_engineer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=True, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True, index=True)

    due_date = db.Column(db.DateTime, nullable=True)
    resolved_at = db.Column(db.DateTime, nullable=True)
    closed_at = db.Column(db.DateTime, nullable=True)
    resolution_notes = db.Column(db.Text, nullable=True)
    reopen_count = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, nullable=False, default=utc_now, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    coordinator = db.relationship("User", foreign_keys=[created_by_coordinator_id])
    engineer = db.relationship("User", foreign_keys=[assigned_to_engineer_id])
    department = db.relationship("Department")
    location = db.relationship("Location")
    comments = db.relationship(
        "TicketComment", back_populates="ticket", cascade="all, delete-orphan", order_by="TicketComment.created_at"
    )
    close_requests = db.relationship("TicketCloseRequest", back_populates="ticket", cascade="all, delete-orphan")
    reopen_history = db.relationship("TicketReopenHistory", back_populates="ticket", cascade="all, delete-orphan")
    asset_links = db.relationship("TicketAsset", back_populates="ticket", cascade="all, delete-orphan")
    sla_tracking = db.relationship(
        "TicketSlaTracking", back_populates="ticket", uselist=False, cascade="all, delete-orphan"
    )

    @staticmethod
    def generate_ticket_number(now: Optional[datetime] = None) -> str:
        """Next sequential number for the current year, e.g. TKT-2025-0042"""
        year = (now or utc_now()).year
        prefix = f"TKT-{year}-"
        existing = db.session.query(Ticket.ticket_number).filter(Ticket.ticket_number.like(f"{prefix}%")).all()

        highest = 0
        for (number,) in existing:
            try:
                highest = max(highest, int(number[len(prefix):]))
            except (TypeError, ValueError):
                continue

        return f"{prefix}{highest + 1:04d}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "ticket_number": self.ticket_number,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "category": self.category,
            "ticket_channel": self.ticket_channel,
            "ticket_type": self.ticket_type,
            "created_by_user_id": self.created_by_user_id,
            "created_by_user_name": self.created_by.full_name if self.created_by else None,
            "created_by_coordinator_id": self.created_by_coordinator_id,
            "created_by_coordinator_name": self.coordinator.full_name if self.coordinator else None,
            "assigned_to_engineer_id": self.assigned_to_engineer_id,
            "assigned_to_engineer_name": self.engineer.full_name if self.engineer else None,
            "department_id": self.department_id,
            "department_name": self.department.name if self.department else None,
            "location_id": self.location_id,
            "location_name": self.location.name if self.location else None,
            "due_date": _iso(self.due_date),
            "resolved_at": _iso(self.resolved_at),
            "closed_at": _iso(self.closed_at),
            "resolution_notes": self.resolution_notes,
            "reopen_count": self.reopen_count,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class TicketComment(db.Model):
    __tablename__ = "ticket_comments"

    id = db.Column(db.Integer, primary_key=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    comment_text = db.Column(db.Text, nullable=False)
    is_internal = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    ticket = db.relationship("Ticket", back_populates="comments")
    author = db.relationship("User")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "ticket_id": self.ticket_id,
            "user_id": self.user_id,
            "user_name": self.author.full_name if self.author else None,
            "user_role": self.author.role if self.author else None,
            "comment_text": self.comment_text,
            "is_internal": self.is_internal,
            "created_at": _iso(self.created_at),
        }


class TicketCloseRequest(db.Model):
    """Engineer request to close a ticket, pending coordinator review"""
    __tablename__ = "ticket_close_requests"
    __table_args__ = (
        db.CheckConstraint("request_status IN ('pending', 'approved', 'rejected')", name="ck_close_request_status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    requested_by_engineer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    reviewed_by_coordinator_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    request_notes = db.Column(db.Text, nullable=False)
    request_status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    review_notes = db.Column(db.Text, nullable=True)
    reviewed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    ticket = db.relationship("Ticket", back_populates="close_requests")
    engineer = db.relationship("User", foreign_keys=[requested_by_engineer_id])
    reviewer = db.relationship("User", foreign_keys=[reviewed_by_coordinator_id])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "ticket_id": self.ticket_id,
            "ticket_number": self.ticket.ticket_number if self.ticket else None,
            "ticket_title": self.ticket.title if self.ticket else None,
            "requested_by_engineer_id": self.requested_by_engineer_id,
            "requested_by_engineer_name": self.engineer.full_name if self.engineer else None,
            "reviewed_by_coordinator_id": self.reviewed_by_coordinator_id,
            "reviewed_by_coordinator_name": self.reviewer.full_name if self.reviewer else None,
            "request_notes": self.request_notes,
            "request_status": self.request_status,
            "review_notes": self.review_notes,
            "reviewed_at": _iso(self.reviewed_at),
            "created_at": _iso(self.created_at),
        }


class TicketReopenConfig(db.Model):
    __tablename__ = "ticket_reopen_config"

    id = db.Column(db.Integer, primary_key=True)
    reopen_window_days = db.Column(db.Integer, nullable=False, default=7)
    max_reopen_count = db.Column(db.Integer, nullable=False, default=3)
    require_reopen_reason = db.Column(db.Boolean, nullable=False, default=True)
    updated_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    @staticmethod
    def current() -> "TicketReopenConfig":
        config = TicketReopenConfig.query.order_by(TicketReopenConfig.id).first()
        if config is None:
            config = TicketReopenConfig()
            db.session.add(config)
            db.session.flush()
        return config

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "reopen_window_days": self.reopen_window_days,
            "max_reopen_count": self.max_reopen_count,
            "require_reopen_reason": self.require_reopen_reason,
            "updated_by": self.updated_by,
            "updated_at": _iso(self.updated_at),
        }


class TicketReopenHistory(db.Model):
    __tablename__ = "ticket_reopen_history"

    id = db.Column(db.Integer, primary_key=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    reopened_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reopen_reason = db.Column(db.String(1000), nullable=True)
    previous_status = db.Column(db.String(20), nullable=True)
    previous_closed_at = db.Column(db.DateTime, nullable=True)
    reopen_number = db.Column(db.Integer, nullable=False, default=1)
    reopened_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    ticket = db.relationship("Ticket", back_populates="reopen_history")
    user = db.relationship("User")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "ticket_id": self.ticket_id,
            "reopened_by": self.reopened_by,
            "reopened_by_name": self.user.full_name if self.user else None,
            "reopen_reason": self.reopen_reason,
            "previous_status": self.previous_status,
            "previous_closed_at": _iso(self.previous_closed_at),
            "reopen_number": self.reopen_number,
            "reopened_at": _iso(self.reopened_at),
        }


class TicketAsset(db.Model):
    """An asset linked to a ticket; components of a linked parent are implied"""
    __tablename__ = "ticket_assets"
    __table_args__ = (db.UniqueConstraint("ticket_id", "asset_id", name="uq_ticket_assets_ticket_asset"),)

    id = db.Column(db.Integer, primary_key=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    asset_id = db.Column(db.Integer, db.ForeignKey("assets.id"), nullable=False, index=True)
    added_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    added_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    notes = db.Column(db.String(500), nullable=True)

    ticket = db.relationship("Ticket", back_populates="asset_links")
    asset = db.relationship("Asset")
    adder = db.relationship("User")

    def to_dict(self) -> Dict[str, Any]:
        asset = self.asset
        return {
            "id": self.id,
            "ticket_id": self.ticket_id,
            "asset_id": self.asset_id,
            "asset_tag": asset.asset_tag if asset else None,
            "asset_name": asset.name if asset else None,
            "serial_number": asset.serial_number if asset else None,
            "asset_type": asset.asset_type if asset else None,
            "asset_status": asset.status if asset else None,
            "parent_asset_id": asset.parent_asset_id if asset else None,
            "added_by": self.added_by,
            "added_by_name": self.adder.full_name if self.adder else None,
            "added_at": _iso(self.added_at),
            "notes": self.notes,
            "is_directly_linked": True,
            "is_component_of_linked": False,
        }


# --- SLA configuration and tracking ---
class BusinessHoursSchedule(db.Model):
    __tablename__ = "business_hours_schedules"

    id = db.Column(db.Integer, primary_key=True)
    schedule_name = db.Column(db.String(100), unique=True, nullable=False)
    description = db.Column(db.String(500), nullable=True)
    timezone = db.Column(db.String(50), nullable=False, default="UTC")
    is_24x7 = db.Column(db.Boolean, nullable=False, default=False)
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    details = db.relationship(
        "BusinessHoursDetail", back_populates="schedule", cascade="all, delete-orphan",
        order_by="BusinessHoursDetail.day_of_week",
    )
    breaks = db.relationship("BreakHours", back_populates="schedule", cascade="all, delete-orphan")

    def to_dict(self, include_details: bool = False) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "schedule_name": self.schedule_name,
            "description": self.description,
            "timezone": self.timezone,
            "is_24x7": self.is_24x7,
            "is_default": self.is_default,
            "is_active": self.is_active,
        }
        if include_details:
            data["details"] = [d.to_dict() for d in self.details]
            data["breaks"] = [b.to_dict() for b in self.breaks]
        return data


class BusinessHoursDetail(db.Model):
    __tablename__ = "business_hours_details"
    __table_args__ = (
        db.CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="ck_business_hours_day"),
        db.UniqueConstraint("schedule_id", "day_of_week", name="uq_business_hours_day"),
    )

    id = db.Column(db.Integer, primary_key=True)
    schedule_id = db.Column(
        db.Integer, db.ForeignKey("business_hours_schedules.id", ondelete="CASCADE"), nullable=False, index=True
    )
    day_of_week = db.Column(db.Integer, nullable=False)  # 0 = Sunday
    is_working_day = db.Column(db.Boolean, nullable=False, default=True)
    start_time = db.Column(db.Time, nullable=True)
    end_time = db.Column(db.Time, nullable=True)

    schedule = db.relationship("BusinessHoursSchedule", back_populates="details")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "day_of_week": self.day_of_week,
            "is_working_day": self.is_working_day,
            "start_time": self.start_time.strftime("%H:%M") if self.start_time else None,
            "end_time": self.end_time.strftime("%H:%M") if self.end_time else None,
        }


class BreakHours(db.Model):
    __tablename__ = "break_hours"

    id = db.Column(db.Integer, primary_key=True)
    schedule_id = db.Column(
        db.Integer, db.ForeignKey("business_hours_schedules.id", ondelete="CASCADE"), nullable=False, index=True
    )
    break_name = db.Column(db.String(100), nullable=False, default="Break")
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)
    applies_to_days = db.Column(db.String(20), nullable=True)  # "1,2,3,4,5"; NULL = every day

    schedule = db.relationship("BusinessHoursSchedule", back_populates="breaks")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "break_name": self.break_name,
            "start_time": self.start_time.strftime("%H:%M"),
            "end_time": self.end_time.strftime("%H:%M"),
            "applies_to_days": self.applies_to_days,
        }


class HolidayCalendar(db.Model):
    __tablename__ = "holiday_calendars"

    id = db.Column(db.Integer, primary_key=True)
    calendar_name = db.Column(db.String(100), unique=True, nullable=False)
    description = db.Column(db.String(500), nullable=True)
    year = db.Column(db.Integer, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    dates = db.relationship(
        "HolidayDate", back_populates="calendar", cascade="all, delete-orphan", order_by="HolidayDate.holiday_date"
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "calendar_name": self.calendar_name,
            "description": self.description,
            "year": self.year,
            "is_active": self.is_active,
            "holiday_count": len(self.dates),
        }


class HolidayDate(db.Model):
    __tablename__ = "holiday_dates"

    id = db.Column(db.Integer, primary_key=True)
    calendar_id = db.Column(
        db.Integer, db.ForeignKey("holiday_calendars.id", ondelete="CASCADE"), nullable=False, index=True
    )
    holiday_date = db.Column(db.Date, nullable=False)
    holiday_name = db.Column(db.String(200), nullable=False)
    is_full_day = db.Column(db.Boolean, nullable=False, default=True)
    start_time = db.Column(db.Time, nullable=True)
    end_time = db.Column(db.Time, nullable=True)

    calendar = db.relationship("HolidayCalendar", back_populates="dates")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "calendar_id": self.calendar_id,
            "holiday_date": self.holiday_date.isoformat(),
            "holiday_name": self.holiday_name,
            "is_full_day": self.is_full_day,
            "start_time": self.start_time.strftime("%H:%M") if self.start_time else None,
            "end_time": self.end_time.strftime("%H:%M") if self.end_time else None,
        }


class SlaRule(db.Model):
    __tablename__ = "sla_rules"

    id = db.Column(db.Integer, primary_key=True)
    rule_name = db.Column(db.String(200), unique=True, nullable=False)
    description = db.Column(db.String(500), nullable=True)
    priority_order = db.Column(db.Integer, nullable=False, default=100, index=True)
    applicable_priority = db.Column(db.String(200), nullable=True)  # "high,critical" or "all"
    min_tat_minutes = db.Column(db.Integer, nullable=False, default=30)
    avg_tat_minutes = db.Column(db.Integer, nullable=False, default=240)
    max_tat_minutes = db.Column(db.Integer, nullable=False, default=480)
    business_hours_schedule_id = db.Column(
        db.Integer, db.ForeignKey("business_hours_schedules.id"), nullable=True
    )
    holiday_calendar_id = db.Column(db.Integer, db.ForeignKey("holiday_calendars.id"), nullable=True)
    allow_pause_resume = db.Column(db.Boolean, nullable=False, default=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    schedule = db.relationship("BusinessHoursSchedule")
    holiday_calendar = db.relationship("HolidayCalendar")

    def applies_to(self, priority: Optional[str]) -> bool:
        raw = (self.applicable_priority or "").strip().lower()
        if not raw or raw == "all":
            return True
        return (priority or "").lower() in {p.strip() for p in raw.split(",")}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "rule_name": self.rule_name,
            "description": self.description,
            "priority_order": self.priority_order,
            "applicable_priority": self.applicable_priority,
            "min_tat_minutes": self.min_tat_minutes,
            "avg_tat_minutes": self.avg_tat_minutes,
            "max_tat_minutes": self.max_tat_minutes,
            "business_hours_schedule_id": self.business_hours_schedule_id,
            "business_hours_name": self.schedule.schedule_name if self.schedule else None,
            "holiday_calendar_id": self.holiday_calendar_id,
            "holiday_calendar_name": self.holiday_calendar.calendar_name if self.holiday_calendar else None,
            "allow_pause_resume": self.allow_pause_resume,
            "is_active": self.is_active,
        }


class TicketSlaTracking(db.Model):
    __tablename__ = "ticket_sla_tracking"

    id = db.Column(db.Integer, primary_key=True)
    ticket_id = db.Column(
        db.Integer, db.ForeignKey("tickets.id", ondelete="CASCADE"), unique=True, nullable=False, index=True
    )
    sla_rule_id = db.Column(db.Integer, db.ForeignKey("sla_rules.id"), nullable=False)
    sla_start_time = db.Column(db.DateTime, nullable=False, default=utc_now)
    min_target_time = db.Column(db.DateTime, nullable=True)
    avg_target_time = db.Column(db.DateTime, nullable=True)
    max_target_time = db.Column(db.DateTime, nullable=True)
    business_elapsed_minutes = db.Column(db.Integer, nullable=False, default=0)
    total_paused_minutes = db.Column(db.Integer, nullable=False, default=0)
    is_paused = db.Column(db.Boolean, nullable=False, default=False)
    pause_started_at = db.Column(db.DateTime, nullable=True)
    current_pause_reason = db.Column(db.String(500), nullable=True)
    sla_status = db.Column(db.String(20), nullable=False, default="on_track", index=True)
    final_status = db.Column(db.String(20), nullable=True)
    resolved_at = db.Column(db.DateTime, nullable=True)
    last_calculated_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    ticket = db.relationship("Ticket", back_populates="sla_tracking")
    rule = db.relationship("SlaRule")
    pause_logs = db.relationship(
        "TicketSlaPauseLog", back_populates="tracking", cascade="all, delete-orphan",
        order_by="TicketSlaPauseLog.action_at",
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "ticket_id": self.ticket_id,
            "sla_rule_id": self.sla_rule_id,
            "rule_name": self.rule.rule_name if self.rule else None,
            "min_tat_minutes": self.rule.min_tat_minutes if self.rule else None,
            "avg_tat_minutes": self.rule.avg_tat_minutes if self.rule else None,
            "max_tat_minutes": self.rule.max_tat_minutes if self.rule else None,
            "allow_pause_resume": self.rule.allow_pause_resume if self.rule else None,
            "sla_start_time": _iso(self.sla_start_time),
            "min_target_time": _iso(self.min_target_time),
            "avg_target_time": _iso(self.avg_target_time),
            "max_target_time": _iso(self.max_target_time),
            "business_elapsed_minutes": self.business_elapsed_minutes,
            "total_paused_minutes": self.total_paused_minutes,
            "is_paused": self.is_paused,
            "pause_started_at": _iso(self.pause_started_at),
            "current_pause_reason": self.current_pause_reason,
            "sla_status": self.sla_status,
            "final_status": self.final_status,
            "resolved_at": _iso(self.resolved_at),
            "last_calculated_at": _iso(self.last_calculated_at),
        }


class TicketSlaPauseLog(db.Model):
    __tablename__ = "ticket_sla_pause_log"
    __table_args__ = (db.CheckConstraint("action IN ('paused', 'resumed')", name="ck_sla_pause_action"),)

    id = db.Column(db.Integer, primary_key=True)
    tracking_id = db.Column(
        db.Integer, db.ForeignKey("ticket_sla_tracking.id", ondelete="CASCADE"), nullable=False, index=True
    )
    action = db.Column(db.String(20), nullable=False)
    reason = db.Column(db.String(500), nullable=True)
    action_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    paused_duration_minutes = db.Column(db.Integer, nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    tracking = db.relationship("TicketSlaTracking", back_populates="pause_logs")
    user = db.relationship("User")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tracking_id": self.tracking_id,
            "action": self.action,
            "reason": self.reason,
            "action_at": _iso(self.action_at),
            "paused_duration_minutes": self.paused_duration_minutes,
            "created_by": self.created_by,
            "action_by_name": self.user.full_name if self.user else None,
        }


class ActivityLog(db.Model):
    __tablename__ = "activity_logs"

    id = db.Column(db.Integer, primary_key=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    action = db.Column(db.String(120), nullable=False)
    target_type = db.Column(db.String(120), nullable=True)
    target_id = db.Column(db.Integer, nullable=True)
    summary = db.Column(db.String(255), nullable=True)
    meta = db.Column(db.JSON, nullable=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "user_id": self.user_id,
            "action": self.action,
            "target_type": self.target_type,
            "target_id": self.target_id,
            "summary": self.summary,
            "meta": self.meta,
        }


def log_activity(
    action: str,
    *,
    user: Optional[Union[User, int]] = None,
    target: Optional[Any] = None,
    target_type: Optional[str] = None,
    target_id: Optional[int] = None,
    summary: Optional[str] = None,
    meta: Optional[Dict[str, Any]] = None,
    commit: bool = False,
) -> ActivityLog:
    """Persist a structured audit trail entry."""
    entry = ActivityLog(
        action=action,
        user_id=_extract_id(user),
        target_type=target_type or _extract_target_type(target),
        target_id=target_id or _extract_id(target),
        summary=summary,
        meta=meta or None,
    )
    db.session.add(entry)

    if commit:
        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    return entry


def log_asset_movement(
    asset: Asset,
    movement_type: str,
    *,
    performed_by: Optional[Union[User, int]] = None,
    previous_user_id: Optional[int] = None,
    previous_location_id: Optional[int] = None,
    parent_asset: Optional[Asset] = None,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
) -> AssetMovement:
    """Record the asset's current custody as a movement row (caller commits)."""
    movement = AssetMovement(
        asset_id=asset.id,
        asset_tag=asset.asset_tag,
        assigned_to=asset.assigned_to,
        previous_user_id=previous_user_id,
        location_id=asset.location_id,
        previous_location_id=previous_location_id,
        parent_asset_id=parent_asset.id if parent_asset else None,
        parent_asset_tag=parent_asset.asset_tag if parent_asset else None,
        movement_type=movement_type,
        status=asset.status,
        reason=reason,
        notes=notes,
        performed_by=_extract_id(performed_by),
    )
    db.session.add(movement)
    return movement


def _extract_id(candidate: Optional[Union[User, Asset, ActivityLog, int]]) -> Optional[int]:
    if candidate is None:
        return None
    if isinstance(candidate, int):
        return candidate
    return getattr(candidate, "id", None)

def _extract_target_type(target: Optional[Any]) -> Optional[str]:
    if target is None:
        return None
    return target.__class__.__name__
