from flask import request
from flask_login import current_user

from middleware.permissions import permission_required
from utilities.database import db, Department, User, log_activity
from utilities.errors import BadRequestError, ConflictError, NotFoundError, ValidationError
from utilities.responses import created, success
from utilities.validators import clean_str, get_json_body, parse_bool
from . import departments_bp


def _get_department_or_404(department_id: int) -> Department:
    department = db.session.get(Department, department_id)
    if department is None:
        raise NotFoundError("Department not found")
    return department


def _ensure_unique_name(name: str, department_id: int = 0):
    existing = Department.query.filter(
        db.func.lower(Department.name) == name.lower(),
        Department.id != department_id,
    ).first()
    if existing:
        raise ConflictError("Department name already exists")


def _with_user_count(department: Department) -> dict:
    data = department.to_dict()
    data["user_count"] = User.query.filter_by(department_id=department.id, is_active=True).count()
    return data


@departments_bp.get("")
@permission_required("departments.read")
def list_departments():
    query = Department.query
    is_active = parse_bool(request.args.get("is_active"))
    if is_active is not None:
        query = query.filter(Department.is_active.is_(is_active))
    search = clean_str(request.args.get("search"))
    if search:
        query = query.filter(Department.name.ilike(f"%{search}%"))

    departments = query.order_by(Department.name.asc()).all()
    return success([_with_user_count(d) for d in departments], "Departments retrieved successfully")


@departments_bp.get("/<int:department_id>")
@permission_required("departments.read")
def get_department(department_id: int):
    return success(_with_user_count(_get_department_or_404(department_id)), "Department retrieved successfully")


@departments_bp.post("")
@permission_required("departments.create")
def create_department():
    payload = get_json_body()
    name = clean_str(payload.get("name"))
    if not name:
        raise ValidationError({"name": "Department name is required"})
    _ensure_unique_name(name)

    department = Department(name=name, description=clean_str(payload.get("description")))
    db.session.add(department)
    db.session.flush()
    log_activity("department_created", user=current_user, target=department, summary=f"Created department {name}")
    db.session.commit()
    return created(department.to_dict(), "Department created successfully")


@departments_bp.put("/<int:department_id>")
@permission_required("departments.update")
def update_department(department_id: int):
    department = _get_department_or_404(department_id)
    payload = get_json_body()
    if not any(key in payload for key in ("name", "description", "is_active")):
        raise BadRequestError("No valid fields to update")

    if "name" in payload:
        name = clean_str(payload.get("name"))
        if not name:
            raise ValidationError({"name": "Department name is required"})
        _ensure_unique_name(name, department.id)
        department.name = name
    if "description" in payload:
        department.description = clean_str(payload.get("description"))
    if "is_active" in payload:
        department.is_active = parse_bool(payload.get("is_active"), department.is_active)

    log_activity("department_updated", user=current_user, target=department, summary=f"Updated department {department.name}")
    db.session.commit()
    return success(department.to_dict(), "Department updated successfully")


@departments_bp.delete("/<int:department_id>")
@permission_required("departments.delete")
def delete_department(department_id: int):
    department = _get_department_or_404(department_id)
    active_users = User.query.filter_by(department_id=department.id, is_active=True).count()
    if active_users:
        raise ConflictError(f"Cannot delete department. It has {active_users} active user(s).")

    department.is_active = False
    log_activity("department_deleted", user=current_user, target=department, summary=f"Deactivated department {department.name}")
    db.session.commit()
    return success(None, "Department deleted successfully")
