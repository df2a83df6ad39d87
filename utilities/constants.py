# utilities/constants.py

# Roles, highest hierarchy first
ROLE_SUPERADMIN = "superadmin"
ROLE_ADMIN = "admin"
ROLE_IT_HEAD = "it_head"
ROLE_DEPARTMENT_HEAD = "department_head"
ROLE_COORDINATOR = "coordinator"
ROLE_DEPARTMENT_COORDINATOR = "department_coordinator"
ROLE_ENGINEER = "engineer"
ROLE_EMPLOYEE = "employee"

USER_ROLES = [
    ROLE_SUPERADMIN,
    ROLE_ADMIN,
    ROLE_IT_HEAD,
    ROLE_DEPARTMENT_HEAD,
    ROLE_COORDINATOR,
    ROLE_DEPARTMENT_COORDINATOR,
    ROLE_ENGINEER,
    ROLE_EMPLOYEE,
]

ADMIN_ROLES = [ROLE_SUPERADMIN, ROLE_ADMIN]
STANDBY_ROLES = [ROLE_SUPERADMIN, ROLE_ADMIN, ROLE_COORDINATOR]
COORDINATOR_ROLES = [ROLE_SUPERADMIN, ROLE_ADMIN, ROLE_IT_HEAD, ROLE_COORDINATOR, ROLE_DEPARTMENT_COORDINATOR]
TICKET_MANAGER_ROLES = COORDINATOR_ROLES + [ROLE_ENGINEER]
# Roles that raise tickets for themselves rather than on behalf of someone
SELF_SERVICE_ROLES = [ROLE_EMPLOYEE, ROLE_DEPARTMENT_HEAD, ROLE_IT_HEAD]

# Tickets
TICKET_STATUSES = [
    "open",
    "assigned",
    "in_progress",
    "pending",
    "pending_closure",
    "awaiting_info",
    "on_hold",
    "resolved",
    "closed",
    "cancelled",
]
SLA_PAUSE_STATUSES = {"pending_closure", "awaiting_info", "on_hold"}
TICKET_FINAL_STATUSES = {"closed", "cancelled"}
TICKET_PRIORITIES = ["low", "medium", "high", "critical", "emergency"]
TICKET_CHANNELS = ["portal", "email", "phone", "walk_in"]
TICKET_TYPES = ["incident", "service_request", "internal"]
TICKET_NUMBER_PREFIX = "TKT"

CLOSE_REQUEST_STATUSES = ["pending", "approved", "rejected"]

# Assets
ASSET_STATUSES = [
    "available",
    "assigned",
    "in_use",
    "maintenance",
    "under_repair",
    "retired",
    "lost",
    "disposed",
]
ASSIGNABLE_ASSET_STATUSES = {"available", "in_use", "assigned"}
ASSET_TYPES = ["asset", "component"]
ASSET_IMPORTANCE = ["low", "medium", "high", "critical"]

MOVEMENT_TYPES = [
    "assigned",
    "unassigned",
    "returned",
    "transferred",
    "status_change",
    "standby_added",
    "standby_removed",
    "component_install",
    "component_remove",
]

# Standby
STANDBY_STATUSES = ["active", "returned", "permanent"]
STANDBY_REASON_CATEGORIES = ["repair", "maintenance", "lost", "stolen", "other"]

# SLA
SLA_STATUSES = ["on_track", "warning", "critical", "breached"]
SLA_FINAL_STATUSES = ["met_early", "met", "met_late", "breached"]

# Permission audit
AUDIT_ACTION_GRANT = "GRANT"
AUDIT_ACTION_REVOKE = "REVOKE"
AUDIT_ACTION_ROLE_UPDATE = "ROLE_UPDATE"
AUDIT_TARGET_USER = "USER"
AUDIT_TARGET_ROLE = "ROLE"
