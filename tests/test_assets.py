from utilities.database import db, ActivityLog, Asset, AssetMovement


def test_create_asset(app, coordinator_client):
    response = coordinator_client.post("/api/assets", json={"asset_tag": "LAP-100", "name": "ThinkPad"})
    assert response.status_code == 201
    data = response.get_json()["data"]
    assert data["status"] == "available"
    assert data["asset_type"] == "asset"

    with app.app_context():
        assert ActivityLog.query.filter_by(action="asset_created", target_id=data["id"]).count() == 1


def test_create_asset_requires_tag(coordinator_client):
    response = coordinator_client.post("/api/assets", json={"name": "No tag"})
    assert response.status_code == 422
    assert response.get_json()["errors"]["asset_tag"] == "Asset tag is required"


def test_duplicate_asset_tag(coordinator_client, make_asset):
    make_asset("LAP-100")
    response = coordinator_client.post("/api/assets", json={"asset_tag": "lap-100"})
    assert response.status_code == 409
    assert response.get_json()["message"] == "Asset tag already exists"


def test_create_assigned_asset_logs_movement(app, coordinator_client, employee):
    response = coordinator_client.post("/api/assets", json={"asset_tag": "LAP-200", "assigned_to": employee.id})
    assert response.status_code == 201
    data = response.get_json()["data"]
    assert data["status"] == "assigned"
    assert data["assigned_to"] == employee.id

    with app.app_context():
        movement = AssetMovement.query.filter_by(asset_id=data["id"]).one()
        assert movement.movement_type == "assigned"


def test_assign_then_transfer_then_unassign(app, coordinator_client, make_user, make_asset):
    first = make_user("employee")
    second = make_user("employee")
    asset = make_asset("LAP-300")

    response = coordinator_client.post(f"/api/assets/{asset.id}/assign", json={"user_id": first.id})
    assert response.status_code == 200
    assert response.get_json()["data"]["movement"]["movement_type"] == "assigned"

    response = coordinator_client.post(f"/api/assets/{asset.id}/assign", json={"user_id": first.id})
    assert response.status_code == 409
    assert response.get_json()["message"] == "Asset is already assigned to this user"

    response = coordinator_client.post(f"/api/assets/{asset.id}/assign", json={"user_id": second.id})
    assert response.status_code == 200
    movement = response.get_json()["data"]["movement"]
    assert movement["movement_type"] == "transferred"
    assert movement["previous_user_id"] == first.id

    response = coordinator_client.post(f"/api/assets/{asset.id}/unassign", json={"reason": "Leaver"})
    assert response.status_code == 200
    assert response.get_json()["data"]["asset"]["status"] == "available"

    response = coordinator_client.post(f"/api/assets/{asset.id}/unassign", json={})
    assert response.status_code == 409
    assert response.get_json()["message"] == "Asset is not currently assigned"

    response = coordinator_client.get(f"/api/assets/{asset.id}/movements")
    assert response.get_json()["pagination"]["totalItems"] == 3


def test_components_cannot_be_assigned(coordinator_client, employee, make_asset):
    component = make_asset("RAM-001", asset_type="component")
    response = coordinator_client.post(f"/api/assets/{component.id}/assign", json={"user_id": employee.id})
    assert response.status_code == 409


def test_assign_to_inactive_user(coordinator_client, make_user, make_asset):
    leaver = make_user("employee", is_active=False)
    asset = make_asset("LAP-400")
    response = coordinator_client.post(f"/api/assets/{asset.id}/assign", json={"user_id": leaver.id})
    assert response.status_code == 404
    assert response.get_json()["message"] == "User not found or inactive"


def test_assign_retired_asset(coordinator_client, employee, make_asset):
    asset = make_asset("LAP-500", status="retired")
    response = coordinator_client.post(f"/api/assets/{asset.id}/assign", json={"user_id": employee.id})
    assert response.status_code == 409
    assert response.get_json()["message"] == "Asset is not available for assignment. Current status: retired"


def test_delete_assigned_asset_is_blocked(admin_client, employee, make_asset):
    asset = make_asset("LAP-600", assigned_to=employee.id, status="assigned")
    response = admin_client.delete(f"/api/assets/{asset.id}")
    assert response.status_code == 409
    assert response.get_json()["message"] == "Cannot delete asset. It is currently assigned to a user."


def test_delete_and_restore_asset(app, admin_client, make_asset):
    asset = make_asset("LAP-700")
    assert admin_client.delete(f"/api/assets/{asset.id}").status_code == 200
    assert admin_client.get(f"/api/assets/{asset.id}").status_code == 404

    response = admin_client.post(f"/api/assets/{asset.id}/restore")
    assert response.status_code == 200
    with app.app_context():
        assert db.session.get(Asset, asset.id).is_active is True


def test_my_assets(login_as, employee, make_asset):
    make_asset("LAP-800", assigned_to=employee.id, status="assigned")
    make_asset("LAP-801")
    response = login_as(employee).get("/api/assets/my-assets")
    assert [a["asset_tag"] for a in response.get_json()["data"]] == ["LAP-800"]


def test_statistics(coordinator_client, employee, make_asset):
    make_asset("LAP-900")
    make_asset("LAP-901", assigned_to=employee.id, status="assigned")
    make_asset("SB-001", is_standby_asset=True)
    response = coordinator_client.get("/api/assets/statistics")
    data = response.get_json()["data"]
    assert data["total"] == 3
    assert data["assigned"] == 1
    assert data["by_status"]["available"] == 2
    assert data["standby"] == {"total": 1, "available": 1}


def test_employee_cannot_create_assets(employee_client):
    response = employee_client.post("/api/assets", json={"asset_tag": "LAP-999"})
    assert response.status_code == 403


def test_list_hides_standby_pool_unless_asked(coordinator_client, make_asset):
    make_asset("LAP-910")
    make_asset("SB-910", is_standby_asset=True)

    response = coordinator_client.get("/api/assets")
    assert [a["asset_tag"] for a in response.get_json()["data"]] == ["LAP-910"]
    assert response.get_json()["pagination"]["totalItems"] == 1

    response = coordinator_client.get("/api/assets?include_standby=true")
    assert sorted(a["asset_tag"] for a in response.get_json()["data"]) == ["LAP-910", "SB-910"]

    response = coordinator_client.get("/api/assets?is_standby=true")
    assert [a["asset_tag"] for a in response.get_json()["data"]] == ["SB-910"]


# --- components ---
def test_install_remove_and_reinstall_component(app, coordinator_client, employee, make_asset):
    desktop = make_asset("DT-100")
    ram = make_asset("RAM-100", assigned_to=employee.id, status="assigned")

    response = coordinator_client.post(
        f"/api/assets/{desktop.id}/components",
        json={"component_asset_id": ram.id, "installation_notes": "Slot A"},
    )
    assert response.status_code == 201
    body = response.get_json()
    assert body["message"] == "Component installed successfully"
    data = body["data"]
    assert data["parent_asset_tag"] == "DT-100"
    assert data["component"]["asset_type"] == "component"
    assert data["component"]["status"] == "in_use"
    assert data["component"]["assigned_to"] is None
    assert data["component"]["installation_status"] == "installed"
    assert data["movement"]["movement_type"] == "component_install"
    assert data["movement"]["parent_asset_tag"] == "DT-100"
    assert data["movement"]["previous_user_id"] == employee.id

    listing = coordinator_client.get(f"/api/assets/{desktop.id}/components").get_json()["data"]
    assert listing["parent_asset"]["asset_tag"] == "DT-100"
    assert [c["asset_tag"] for c in listing["components"]] == ["RAM-100"]

    hierarchy = coordinator_client.get(f"/api/assets/{desktop.id}/hierarchy").get_json()["data"]["hierarchy"]
    assert [(n["asset_tag"], n["level"], n["path"]) for n in hierarchy] == [
        ("DT-100", 0, "DT-100"),
        ("RAM-100", 1, "DT-100 > RAM-100"),
    ]

    response = coordinator_client.delete(f"/api/assets/{desktop.id}/components/{ram.id}", json={"removal_notes": "Faulty"})
    assert response.status_code == 200
    removed = response.get_json()["data"]["component"]
    assert removed["installation_status"] == "removed"
    assert removed["status"] == "available"
    assert removed["installation_notes"] == "Slot A\nRemoved: Faulty"

    assert coordinator_client.get(f"/api/assets/{desktop.id}/components").get_json()["data"]["total"] == 0
    response = coordinator_client.get(f"/api/assets/{desktop.id}/components?include_removed=true")
    assert response.get_json()["data"]["total"] == 1

    response = coordinator_client.delete(f"/api/assets/{desktop.id}/components/{ram.id}", json={})
    assert response.status_code == 404
    assert response.get_json()["message"] == "Component not found or not installed in this asset"

    response = coordinator_client.post(f"/api/assets/{desktop.id}/components/{ram.id}/reinstall", json={})
    assert response.status_code == 200
    assert response.get_json()["data"]["component"]["installation_status"] == "installed"

    response = coordinator_client.post(f"/api/assets/{desktop.id}/components/{ram.id}/reinstall", json={})
    assert response.status_code == 404
    assert response.get_json()["message"] == "Component not found or not previously installed in this asset"

    with app.app_context():
        types = [m.movement_type for m in AssetMovement.query.filter_by(asset_id=ram.id).order_by(AssetMovement.id)]
        assert types == ["component_install", "component_remove", "component_install"]
        actions = {a.action for a in ActivityLog.query.filter_by(target_id=ram.id)}
        assert {"component_installed", "component_removed", "component_reinstalled"} <= actions


def test_install_component_rules(coordinator_client, make_asset):
    desktop = make_asset("DT-200")
    laptop = make_asset("LAP-200")
    ssd = make_asset("SSD-200")
    spare = make_asset("SB-200", is_standby_asset=True)

    response = coordinator_client.post(f"/api/assets/{desktop.id}/components", json={})
    assert response.status_code == 422
    assert response.get_json()["errors"] == {"component_asset_id": "Component asset ID is required"}

    response = coordinator_client.post(f"/api/assets/{desktop.id}/components", json={"component_asset_id": 99999})
    assert response.status_code == 404
    assert response.get_json()["message"] == "Component asset not found or inactive"

    cases = [
        (desktop.id, desktop.id, "An asset cannot be installed into itself"),
        (desktop.id, spare.id, "Standby pool assets cannot be installed as components"),
    ]
    for parent_id, component_id, message in cases:
        response = coordinator_client.post(f"/api/assets/{parent_id}/components", json={"component_asset_id": component_id})
        assert response.status_code == 400
        assert response.get_json()["message"] == message

    assert coordinator_client.post(
        f"/api/assets/{desktop.id}/components", json={"component_asset_id": ssd.id}
    ).status_code == 201

    cases = [
        (laptop.id, ssd.id, "Component is already installed in another asset"),
        (ssd.id, laptop.id, "Cannot install components into another component"),
        (laptop.id, desktop.id, "Assets with installed components cannot be installed into another asset"),
    ]
    for parent_id, component_id, message in cases:
        response = coordinator_client.post(f"/api/assets/{parent_id}/components", json={"component_asset_id": component_id})
        assert response.status_code == 400
        assert response.get_json()["message"] == message


def test_installed_component_guards(admin_client, make_asset):
    desktop = make_asset("DT-300")
    gpu = make_asset("GPU-300")
    admin_client.post(f"/api/assets/{desktop.id}/components", json={"component_asset_id": gpu.id})

    response = admin_client.delete(f"/api/assets/{desktop.id}")
    assert response.status_code == 409
    assert response.get_json()["message"] == "Cannot delete asset. It has installed components."

    response = admin_client.put(f"/api/assets/{gpu.id}", json={"asset_type": "asset"})
    assert response.status_code == 400
    assert response.get_json()["message"] == "Remove the component from its parent asset first"
