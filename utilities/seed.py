# utilities/seed.py
"""
Idempotent seed data: permission catalog, role templates, default business
hours, holiday calendar and SLA rules. Every function adds rows only when
they are missing; the caller commits.
"""
import logging
from datetime import date, time
from typing import Dict, List, Optional

from utilities.constants import (
    ROLE_ADMIN,
    ROLE_COORDINATOR,
    ROLE_DEPARTMENT_COORDINATOR,
    ROLE_DEPARTMENT_HEAD,
    ROLE_EMPLOYEE,
    ROLE_ENGINEER,
    ROLE_SUPERADMIN,
)
from utilities.database import (
    db,
    BreakHours,
    BusinessHoursDetail,
    BusinessHoursSchedule,
    HolidayCalendar,
    HolidayDate,
    Permission,
    PermissionCategory,
    RolePermission,
    RoleTemplate,
    SlaRule,
    User,
    utc_now,
)

logger = logging.getLogger("itam.seed")

# (category_key, category_name, description)
PERMISSION_CATEGORIES = [
    ("user_management", "User Management", "Create, view and manage user accounts"),
    ("asset_management", "Asset Management", "Manage the asset inventory and assignments"),
    ("master_data", "Master Data", "Locations, categories, products and other reference data"),
    ("department_management", "Department Management", "Manage departments and their hierarchy"),
    ("ticket_management", "Ticket Management", "Helpdesk tickets and their workflow"),
    ("reports", "Reports & Analytics", "Dashboards, reports and exports"),
    ("system_administration", "System Administration", "System settings, logs and maintenance"),
    ("permission_control", "Permission Control", "Role and user permission management"),
]

# category_key -> [(permission_key, permission_name)]
PERMISSIONS = {
    "user_management": [
        ("users.create", "Create Users"),
        ("users.read", "View Users"),
        ("users.update", "Update Users"),
        ("users.delete", "Delete Users"),
        ("users.assign_roles", "Assign User Roles"),
        ("users.reset_password", "Reset User Passwords"),
    ],
    "asset_management": [
        ("assets.create", "Create Assets"),
        ("assets.read", "View Assets"),
        ("assets.update", "Update Assets"),
        ("assets.delete", "Delete Assets"),
        ("assets.assign", "Assign Assets"),
        ("assets.transfer", "Transfer Assets"),
        ("assets.maintenance", "Manage Asset Maintenance"),
        ("assets.retire", "Retire Assets"),
    ],
    "master_data": [
        ("masters.read", "View Master Data"),
        ("masters.create", "Create Master Data"),
        ("masters.update", "Update Master Data"),
        ("masters.delete", "Delete Master Data"),
        ("masters.write", "Write Master Data"),
        ("masters.oem.manage", "Manage OEMs"),
        ("masters.categories.manage", "Manage Categories"),
        ("masters.subcategories.manage", "Manage Subcategories"),
        ("masters.products.manage", "Manage Products"),
        ("masters.locations.manage", "Manage Locations"),
        ("masters.location-types.manage", "Manage Location Types"),
        ("masters.clients.manage", "Manage Clients"),
        ("masters.product-types.manage", "Manage Product Types"),
        ("masters.product-series.manage", "Manage Product Series"),
    ],
    "department_management": [
        ("departments.create", "Create Departments"),
        ("departments.read", "View Departments"),
        ("departments.update", "Update Departments"),
        ("departments.delete", "Delete Departments"),
        ("departments.manage_hierarchy", "Manage Department Hierarchy"),
    ],
    "ticket_management": [
        ("tickets.create", "Create Tickets"),
        ("tickets.read", "View Tickets"),
        ("tickets.update", "Update Tickets"),
        ("tickets.delete", "Delete Tickets"),
        ("tickets.assign", "Assign Tickets"),
        ("tickets.close", "Close Tickets"),
    ],
    "reports": [
        ("reports.view", "View Reports"),
        ("reports.export", "Export Reports"),
        ("reports.dashboard", "View Dashboard"),
        ("reports.analytics", "View Analytics"),
        ("statistics.read", "View Statistics"),
    ],
    "system_administration": [
        ("system.create", "Create System Settings"),
        ("system.read", "View System Settings"),
        ("system.update", "Update System Settings"),
        ("system.settings", "Manage System Settings"),
        ("system.logs", "View System Logs"),
        ("system.backup", "Manage Backups"),
        ("system.maintenance", "System Maintenance"),
    ],
    "permission_control": [
        ("permission-control.read", "View Permission Control"),
        ("permission-control.create", "Create Permission Control"),
        ("permission-control.update", "Update Permission Control"),
        ("permission-control.delete", "Delete Permission Control"),
    ],
}

# role_name -> (display_name, hierarchy_level, description)
ROLE_TEMPLATES = {
    ROLE_SUPERADMIN: ("Super Administrator", 100, "Full system access"),
    ROLE_ADMIN: ("Administrator", 90, "Administrative access without destructive system operations"),
    ROLE_DEPARTMENT_HEAD: ("Department Head", 70, "Manages a department's users, assets and tickets"),
    ROLE_COORDINATOR: ("Coordinator", 60, "Coordinates assets and tickets across departments"),
    ROLE_DEPARTMENT_COORDINATOR: ("Department Coordinator", 50, "Coordinates assets and tickets within a department"),
    ROLE_ENGINEER: ("Engineer", 30, "Works assigned tickets and asset maintenance"),
    ROLE_EMPLOYEE: ("Employee", 10, "Raises tickets and views own assets"),
}

ADMIN_EXCLUDED = {"users.delete", "system.backup", "permission-control.delete"}

ROLE_PERMISSIONS = {
    ROLE_DEPARTMENT_HEAD: [
        "users.read", "users.update",
        "assets.read", "assets.assign", "assets.transfer",
        "masters.read",
        "departments.read", "departments.update",
        "tickets.create", "tickets.read", "tickets.update", "tickets.assign",
        "reports.view", "reports.dashboard",
    ],
    ROLE_COORDINATOR: [
        "users.read",
        "assets.create", "assets.read", "assets.update", "assets.assign", "assets.maintenance",
        "masters.read",
        "tickets.create", "tickets.read", "tickets.update",
        "reports.view",
    ],
    ROLE_DEPARTMENT_COORDINATOR: [
        "users.read",
        "assets.read", "assets.assign", "assets.maintenance",
        "masters.read",
        "tickets.create", "tickets.read", "tickets.update",
        "reports.view",
    ],
    ROLE_ENGINEER: [
        "tickets.read", "tickets.update",
        "assets.read", "assets.maintenance",
        "masters.read",
        "reports.view",
    ],
    ROLE_EMPLOYEE: [
        "assets.read",
        "masters.read",
        "tickets.create", "tickets.read",
        "reports.view",
    ],
}

STANDARD_SCHEDULE = "Standard Business Hours"
ROUND_THE_CLOCK_SCHEDULE = "24x7 Support"
DEFAULT_CALENDAR = "Company Holidays"

# (rule_name, description, priority_order, applicable_priority, min, avg, max, schedule)
DEFAULT_SLA_RULES = [
    ("Critical Priority SLA", "Critical and emergency tickets, worked round the clock",
     10, "critical,emergency", 15, 60, 120, ROUND_THE_CLOCK_SCHEDULE),
    ("High Priority SLA", "SLA for tickets marked as high priority",
     20, "high", 60, 240, 480, STANDARD_SCHEDULE),
    ("Default SLA", "Catch-all rule when no other rule matches",
     999, "all", 120, 480, 1440, STANDARD_SCHEDULE),
]


def _action_of(permission_key: str) -> str:
    return permission_key.rsplit(".", 1)[-1]


def seed_permissions() -> Dict[str, Permission]:
    categories = {c.category_key: c for c in PermissionCategory.query.all()}
    for order, (key, name, description) in enumerate(PERMISSION_CATEGORIES, start=1):
        if key not in categories:
            category = PermissionCategory(
                category_key=key, category_name=name, description=description, display_order=order
            )
            db.session.add(category)
            categories[key] = category
    db.session.flush()

    permissions = {p.permission_key: p for p in Permission.query.all()}
    for category_key, entries in PERMISSIONS.items():
        for order, (key, name) in enumerate(entries, start=1):
            if key in permissions:
                continue
            permission = Permission(
                permission_key=key,
                permission_name=name,
                description=name,
                category=categories[category_key],
                resource_type=key.split(".", 1)[0],
                action_type=_action_of(key),
                is_system=True,
                display_order=order,
            )
            db.session.add(permission)
            permissions[key] = permission
    db.session.flush()
    return permissions


def seed_roles(permissions: Optional[Dict[str, Permission]] = None) -> Dict[str, RoleTemplate]:
    """Create role templates; role permissions are only filled for roles that have none yet."""
    permissions = permissions or {p.permission_key: p for p in Permission.query.all()}
    all_keys = sorted(permissions)
    role_keys: Dict[str, List[str]] = {
        ROLE_SUPERADMIN: all_keys,
        ROLE_ADMIN: [k for k in all_keys if k not in ADMIN_EXCLUDED],
        **ROLE_PERMISSIONS,
    }

    roles = {r.role_name: r for r in RoleTemplate.query.all()}
    for role_name, (display_name, level, description) in ROLE_TEMPLATES.items():
        role = roles.get(role_name)
        if role is None:
            role = RoleTemplate(
                role_name=role_name,
                display_name=display_name,
                description=description,
                hierarchy_level=level,
                is_system_role=True,
            )
            db.session.add(role)
            roles[role_name] = role

        if not role.role_permissions:
            for key in role_keys.get(role_name, []):
                role.role_permissions.append(RolePermission(permission=permissions[key]))
    db.session.flush()
    return roles


def seed_business_hours() -> Dict[str, BusinessHoursSchedule]:
    schedules = {s.schedule_name: s for s in BusinessHoursSchedule.query.all()}

    if STANDARD_SCHEDULE not in schedules:
        standard = BusinessHoursSchedule(
            schedule_name=STANDARD_SCHEDULE,
            description="09:00 to 17:00, Monday through Friday",
            is_default=True,
        )
        for dow in range(7):
            working = 1 <= dow <= 5
            standard.details.append(BusinessHoursDetail(
                day_of_week=dow,
                is_working_day=working,
                start_time=time(9, 0) if working else None,
                end_time=time(17, 0) if working else None,
            ))
        standard.breaks.append(BreakHours(
            break_name="Lunch Break", start_time=time(13, 0), end_time=time(14, 0), applies_to_days="1,2,3,4,5",
        ))
        db.session.add(standard)
        schedules[STANDARD_SCHEDULE] = standard

    if ROUND_THE_CLOCK_SCHEDULE not in schedules:
        always = BusinessHoursSchedule(
            schedule_name=ROUND_THE_CLOCK_SCHEDULE,
            description="Round-the-clock support, 24 hours a day, 7 days a week",
            is_24x7=True,
        )
        db.session.add(always)
        schedules[ROUND_THE_CLOCK_SCHEDULE] = always

    db.session.flush()
    return schedules


def seed_holiday_calendar(year: Optional[int] = None) -> HolidayCalendar:
    year = year or utc_now().year
    calendar = HolidayCalendar.query.filter_by(calendar_name=DEFAULT_CALENDAR).first()
    if calendar is None:
        calendar = HolidayCalendar(
            calendar_name=DEFAULT_CALENDAR, description="Fixed-date company holidays", year=year
        )
        for month, day, name in ((1, 1, "New Year's Day"), (5, 1, "Labour Day"), (12, 25, "Christmas Day")):
            calendar.dates.append(HolidayDate(holiday_date=date(year, month, day), holiday_name=name))
        db.session.add(calendar)
        db.session.flush()
    return calendar


def seed_sla_rules() -> List[SlaRule]:
    schedules = seed_business_hours()
    calendar = seed_holiday_calendar()
    existing = {r.rule_name for r in SlaRule.query.all()}

    created = []
    for name, description, order, priority, min_tat, avg_tat, max_tat, schedule in DEFAULT_SLA_RULES:
        if name in existing:
            continue
        rule = SlaRule(
            rule_name=name,
            description=description,
            priority_order=order,
            applicable_priority=priority,
            min_tat_minutes=min_tat,
            avg_tat_minutes=avg_tat,
            max_tat_minutes=max_tat,
            schedule=schedules[schedule],
            holiday_calendar=None if schedules[schedule].is_24x7 else calendar,
            allow_pause_resume=True,
        )
        db.session.add(rule)
        created.append(rule)
    db.session.flush()
    return created


def seed_all() -> None:
    permissions = seed_permissions()
    seed_roles(permissions)
    seed_sla_rules()
    logger.info("Seed data ensured: %s permissions, %s roles", len(permissions), len(ROLE_TEMPLATES))


def create_superadmin(email: str, password: str, first_name: str = "System", last_name: str = "Administrator") -> User:
    user = User.query.filter(db.func.lower(User.email) == email.lower()).first()
    if user is None:
        user = User(first_name=first_name, last_name=last_name, email=email.lower(), role=ROLE_SUPERADMIN)
        db.session.add(user)
    user.role = ROLE_SUPERADMIN
    user.is_active = True
    user.set_password(password)
    db.session.flush()
    return user
