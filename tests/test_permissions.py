from datetime import timedelta

from utilities.database import db, PermissionAuditLog, User, UserCustomPermission, utc_now
from utilities.permission_service import permission_service


def _me_permissions(client):
    return set(client.get("/auth/me").get_json()["data"]["permissions"])


def test_seeded_role_permissions(app):
    with app.app_context():
        superadmin = set(permission_service.get_role_permissions("superadmin"))
        admin = set(permission_service.get_role_permissions("admin"))
        employee = set(permission_service.get_role_permissions("employee"))

    assert superadmin - admin == {"users.delete", "system.backup", "permission-control.delete"}
    assert employee == {"assets.read", "masters.read", "tickets.create", "tickets.read", "reports.view"}
    with app.app_context():
        assert permission_service.get_role_permissions("it_head") == []


def test_catalog_grouped_by_category(admin_client):
    response = admin_client.get("/api/admin/permissions/all")
    assert response.status_code == 200
    data = response.get_json()["data"]
    keys = {p["permission_key"] for c in data["categories"] for p in c["permissions"]}
    assert "tickets.create" in keys
    assert data["total"] == len(keys) + len(data["uncategorized"])

    response = admin_client.get("/api/admin/permissions/categories")
    assert all(c["permission_count"] > 0 for c in response.get_json()["data"])


def test_catalog_needs_admin_role(coordinator_client):
    response = coordinator_client.get("/api/admin/permissions/all")
    assert response.status_code == 403


def test_role_endpoints_are_superadmin_only(admin_client, superadmin_client):
    assert admin_client.get("/api/admin/permissions/roles").status_code == 403

    response = superadmin_client.get("/api/admin/permissions/roles")
    roles = {r["role_name"]: r for r in response.get_json()["data"]}
    assert "engineer" in roles
    assert roles["superadmin"]["user_count"] == 1

    response = superadmin_client.get("/api/admin/permissions/roles/engineer")
    assert "tickets.update" in response.get_json()["data"]["permissions"]

    response = superadmin_client.get("/api/admin/permissions/roles/ghost")
    assert response.status_code == 404


def test_update_role_permissions(app, superadmin_client, login_as, engineer):
    engineer_client = login_as(engineer)
    assert "users.read" not in _me_permissions(engineer_client)

    response = superadmin_client.put(
        "/api/admin/permissions/roles/engineer",
        json={"permission_keys": ["tickets.read", "tickets.update", "users.read"]},
    )
    assert response.status_code == 200
    data = response.get_json()["data"]
    assert data["added"] == ["users.read"]
    assert "assets.maintenance" in data["removed"]

    assert _me_permissions(engineer_client) == {"tickets.read", "tickets.update", "users.read"}

    with app.app_context():
        entry = PermissionAuditLog.query.filter_by(action_type="ROLE_UPDATE").one()
        assert entry.target_type == "ROLE"
        assert entry.target_id == "engineer"


def test_update_role_rejects_bad_input(superadmin_client):
    response = superadmin_client.put("/api/admin/permissions/roles/superadmin", json={"permission_keys": []})
    assert response.status_code == 403
    assert response.get_json()["message"] == "Cannot modify superadmin role permissions"

    response = superadmin_client.put(
        "/api/admin/permissions/roles/engineer", json={"permission_keys": ["tickets.read", "bogus.key"]}
    )
    assert response.status_code == 400
    assert response.get_json()["message"] == "Unknown permission keys: bogus.key"

    response = superadmin_client.put("/api/admin/permissions/roles/engineer", json={"permission_keys": "tickets.read"})
    assert response.status_code == 422


def test_grant_and_revoke_overrides(app, superadmin_client, login_as, employee):
    employee_client = login_as(employee)
    assert employee_client.get("/api/users").status_code == 403

    response = superadmin_client.post(
        f"/api/admin/permissions/users/{employee.id}/grant",
        json={"permission_key": "users.read", "reason": "Helping with onboarding"},
    )
    assert response.status_code == 200
    assert response.get_json()["data"]["is_granted"] is True
    assert employee_client.get("/api/users").status_code == 200

    response = superadmin_client.post(
        f"/api/admin/permissions/users/{employee.id}/revoke", json={"permission_key": "tickets.create"}
    )
    assert response.status_code == 200
    assert "tickets.create" not in _me_permissions(employee_client)

    response = superadmin_client.get(f"/api/admin/permissions/users/{employee.id}")
    data = response.get_json()["data"]
    assert [p["permission_key"] for p in data["custom_permissions"]["granted"]] == ["users.read"]
    assert [p["permission_key"] for p in data["custom_permissions"]["revoked"]] == ["tickets.create"]
    assert "tickets.create" in data["role_permissions"]
    assert "tickets.create" not in data["effective_permissions"]

    with app.app_context():
        assert db.session.get(User, employee.id).has_custom_permissions is True


def test_expired_override_is_ignored(app, superadmin_client, employee):
    expired = (utc_now() - timedelta(days=1)).isoformat()
    superadmin_client.post(
        f"/api/admin/permissions/users/{employee.id}/grant",
        json={"permission_key": "users.read", "expires_at": expired},
    )
    permission_service.clear_cache()

    with app.app_context():
        assert "users.read" not in permission_service.get_user_effective_permissions(employee.id)


def test_grant_validation(superadmin_client, employee):
    response = superadmin_client.post(f"/api/admin/permissions/users/{employee.id}/grant", json={})
    assert response.status_code == 422
    assert response.get_json()["errors"]["permission_key"] == "Permission key is required"

    response = superadmin_client.post(
        f"/api/admin/permissions/users/{employee.id}/grant", json={"permission_key": "nope.nothing"}
    )
    assert response.status_code == 404

    response = superadmin_client.post("/api/admin/permissions/users/9999/grant", json={"permission_key": "users.read"})
    assert response.status_code == 404
    assert response.get_json()["message"] == "User not found"


def test_remove_custom_permissions(app, superadmin_client, employee):
    superadmin_client.post(f"/api/admin/permissions/users/{employee.id}/grant", json={"permission_key": "users.read"})
    superadmin_client.post(f"/api/admin/permissions/users/{employee.id}/revoke", json={"permission_key": "assets.read"})

    response = superadmin_client.delete(f"/api/admin/permissions/users/{employee.id}/custom", json={})
    assert response.status_code == 200
    assert response.get_json()["data"]["removed"] == 2

    with app.app_context():
        assert UserCustomPermission.query.filter_by(user_id=employee.id).count() == 0
        assert db.session.get(User, employee.id).has_custom_permissions is False
        assert "assets.read" in permission_service.get_user_effective_permissions(employee.id)


def test_audit_log_filters(superadmin_client, employee):
    superadmin_client.post(f"/api/admin/permissions/users/{employee.id}/grant", json={"permission_key": "users.read"})
    superadmin_client.post(f"/api/admin/permissions/users/{employee.id}/revoke", json={"permission_key": "assets.read"})

    response = superadmin_client.get("/api/admin/permissions/audit?action_type=grant")
    body = response.get_json()
    assert body["pagination"]["totalItems"] == 1
    assert body["pagination"]["itemsPerPage"] == 50
    assert body["data"][0]["target_id"] == str(employee.id)

    response = superadmin_client.get(f"/api/admin/permissions/audit?target_type=user&target_id={employee.id}")
    assert response.get_json()["pagination"]["totalItems"] == 2


def test_role_distribution(superadmin_client, make_user, employee):
    make_user("employee", is_active=False)
    superadmin_client.post(f"/api/admin/permissions/users/{employee.id}/grant", json={"permission_key": "users.read"})

    response = superadmin_client.get("/api/admin/permissions/analytics/role-distribution")
    rows = {r["role"]: r for r in response.get_json()["data"]}
    assert rows["employee"] == {
        "role": "employee",
        "totalUsers": 2,
        "activeUsers": 1,
        "inactiveUsers": 1,
        "usersWithCustomPermissions": 1,
    }


def test_clear_cache(superadmin_client, admin_client):
    assert admin_client.post("/api/admin/permissions/cache/clear").status_code == 403
    response = superadmin_client.post("/api/admin/permissions/cache/clear")
    assert response.status_code == 200
    assert response.get_json()["message"] == "Permission cache cleared successfully"
