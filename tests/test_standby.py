from datetime import timedelta

import pytest
from sqlalchemy.exc import SQLAlchemyError

from utilities.database import db, Asset, AssetMovement, StandbyAssignment, utc_now


def _assign_payload(user_id, standby_id, **overrides):
    payload = {
        "user_id": user_id,
        "standby_asset_id": standby_id,
        "reason": "Laptop screen cracked",
        "reason_category": "repair",
        "expected_return_date": (utc_now() + timedelta(days=7)).date().isoformat(),
    }
    payload.update(overrides)
    return payload


def test_employee_cannot_see_pool(employee_client):
    response = employee_client.get("/api/standby/pool")
    assert response.status_code == 403
    assert response.get_json()["message"] == "Access denied. Insufficient role"


def test_add_and_remove_pool_asset(app, coordinator_client, make_asset):
    asset = make_asset("SB-100")

    response = coordinator_client.post(f"/api/standby/pool/{asset.id}")
    assert response.status_code == 200
    assert response.get_json()["message"] == "Asset added to standby pool successfully"

    response = coordinator_client.post(f"/api/standby/pool/{asset.id}")
    assert response.status_code == 400
    assert response.get_json()["message"] == "Asset is already in standby pool"

    response = coordinator_client.get("/api/standby/pool")
    data = response.get_json()["data"]
    assert data["statistics"]["total"] == 1
    assert data["statistics"]["available"] == 1
    assert data["assets"][0]["current_assignment"] is None

    response = coordinator_client.delete(f"/api/standby/pool/{asset.id}")
    assert response.status_code == 200

    with app.app_context():
        types = [m.movement_type for m in AssetMovement.query.filter_by(asset_id=asset.id).order_by(AssetMovement.id)]
        assert types == ["standby_added", "standby_removed"]


def test_pool_rejects_components_and_assigned_assets(coordinator_client, employee, make_asset):
    component = make_asset("RAM-100", asset_type="component")
    response = coordinator_client.post(f"/api/standby/pool/{component.id}")
    assert response.status_code == 400
    assert response.get_json()["message"] == "Components cannot be added to standby pool"

    assigned = make_asset("LAP-100", assigned_to=employee.id, status="assigned")
    response = coordinator_client.post(f"/api/standby/pool/{assigned.id}")
    assert response.status_code == 400
    assert response.get_json()["message"] == "Cannot add assigned asset to standby pool. Unassign it first."


def test_assignment_validation(coordinator_client):
    response = coordinator_client.post("/api/standby/assignments", json={"reason": "x", "reason_category": "nope"})
    assert response.status_code == 422
    errors = response.get_json()["errors"]
    assert errors["user_id"] == "User ID is required"
    assert errors["reason"] == "Reason must be at least 5 characters"
    assert "reason_category" in errors


def test_full_standby_cycle_with_original_asset(app, coordinator_client, employee, make_asset):
    original = make_asset("LAP-200", assigned_to=employee.id, status="assigned")
    standby = make_asset("SB-200", is_standby_asset=True)

    response = coordinator_client.post(
        "/api/standby/assignments",
        json=_assign_payload(employee.id, standby.id, original_asset_id=original.id),
    )
    assert response.status_code == 201
    data = response.get_json()["data"]
    assert data["standby_asset_tag"] == "SB-200"
    assert data["original_asset_tag"] == "LAP-200"
    assignment_id = data["assignment_id"]

    with app.app_context():
        assert db.session.get(Asset, original.id).status == "maintenance"
        assert db.session.get(Asset, original.id).assigned_to is None
        sb = db.session.get(Asset, standby.id)
        assert sb.assigned_to == employee.id
        assert sb.standby_available is False

    # the pool asset is busy now
    response = coordinator_client.post("/api/standby/assignments", json=_assign_payload(employee.id, standby.id))
    assert response.status_code == 400
    assert response.get_json()["message"] == "Standby asset is not available for assignment"

    response = coordinator_client.put(
        f"/api/standby/assignments/{assignment_id}/return", json={"return_notes": "Repaired"}
    )
    assert response.status_code == 200

    with app.app_context():
        assignment = db.session.get(StandbyAssignment, assignment_id)
        assert assignment.status == "returned"
        assert assignment.actual_return_date is not None
        assert db.session.get(Asset, original.id).assigned_to == employee.id
        sb = db.session.get(Asset, standby.id)
        assert sb.assigned_to is None
        assert sb.standby_available is True

    response = coordinator_client.put(f"/api/standby/assignments/{assignment_id}/return", json={})
    assert response.status_code == 400
    assert response.get_json()["message"] == "Assignment is not active"


def test_make_permanent_leaves_pool(app, coordinator_client, employee, make_asset):
    standby = make_asset("SB-300", is_standby_asset=True)
    response = coordinator_client.post("/api/standby/assignments", json=_assign_payload(employee.id, standby.id))
    assignment_id = response.get_json()["data"]["assignment_id"]

    response = coordinator_client.put(
        f"/api/standby/assignments/{assignment_id}/permanent", json={"notes": "Keeping it"}
    )
    assert response.status_code == 200

    with app.app_context():
        asset = db.session.get(Asset, standby.id)
        assert asset.is_standby_asset is False
        assert asset.assigned_to == employee.id
        assert db.session.get(StandbyAssignment, assignment_id).status == "permanent"


def test_assignment_listing_and_history(coordinator_client, employee, make_asset):
    standby = make_asset("SB-400", is_standby_asset=True)
    coordinator_client.post("/api/standby/assignments", json=_assign_payload(employee.id, standby.id))

    response = coordinator_client.get("/api/standby/assignments?search=SB-400")
    body = response.get_json()
    assert body["pagination"]["totalItems"] == 1
    assert body["pagination"]["itemsPerPage"] == 20

    response = coordinator_client.get(f"/api/standby/users/{employee.id}/history")
    assert len(response.get_json()["data"]) == 1

    response = coordinator_client.get(f"/api/standby/assets/{standby.id}/history")
    assert len(response.get_json()["data"]) == 1


def test_cannot_remove_assigned_pool_asset(coordinator_client, employee, make_asset):
    standby = make_asset("SB-500", is_standby_asset=True)
    coordinator_client.post("/api/standby/assignments", json=_assign_payload(employee.id, standby.id))

    response = coordinator_client.delete(f"/api/standby/pool/{standby.id}")
    assert response.status_code == 400
    assert response.get_json()["message"] == "Cannot remove assigned standby asset. Return it first."


def _fail_commit():
    raise SQLAlchemyError("database is locked")


def _snapshot(app, *asset_ids):
    with app.app_context():
        assets = {}
        for asset_id in asset_ids:
            asset = db.session.get(Asset, asset_id)
            assets[asset_id] = (asset.assigned_to, asset.status, asset.is_standby_asset, asset.standby_available)
        return {
            "assets": assets,
            "assignments": [(a.id, a.status) for a in StandbyAssignment.query.order_by(StandbyAssignment.id)],
            "movements": AssetMovement.query.count(),
        }


def test_assign_rolls_back_every_row_on_commit_failure(app, monkeypatch, coordinator_client, employee, make_asset):
    original = make_asset("LAP-600", assigned_to=employee.id, status="assigned")
    standby = make_asset("SB-600", is_standby_asset=True)
    before = _snapshot(app, original.id, standby.id)

    monkeypatch.setattr(db.session, "commit", _fail_commit)
    response = coordinator_client.post(
        "/api/standby/assignments",
        json=_assign_payload(employee.id, standby.id, original_asset_id=original.id),
    )
    assert response.status_code == 500
    assert response.get_json()["message"] == "Failed to assign standby asset"

    assert _snapshot(app, original.id, standby.id) == before
    assert before["assignments"] == []


@pytest.mark.parametrize(
    "action, message",
    [
        ("return", "Failed to return standby asset"),
        ("permanent", "Failed to make assignment permanent"),
    ],
)
def test_workflow_rolls_back_on_commit_failure(
    app, monkeypatch, coordinator_client, employee, make_asset, action, message
):
    original = make_asset("LAP-700", assigned_to=employee.id, status="assigned")
    standby = make_asset("SB-700", is_standby_asset=True)
    response = coordinator_client.post(
        "/api/standby/assignments",
        json=_assign_payload(employee.id, standby.id, original_asset_id=original.id),
    )
    assignment_id = response.get_json()["data"]["assignment_id"]
    before = _snapshot(app, original.id, standby.id)

    monkeypatch.setattr(db.session, "commit", _fail_commit)
    response = coordinator_client.put(f"/api/standby/assignments/{assignment_id}/{action}", json={})
    assert response.status_code == 500
    assert response.get_json()["message"] == message

    after = _snapshot(app, original.id, standby.id)
    assert after == before
    assert after["assignments"] == [(assignment_id, "active")]
    assert after["assets"][original.id] == (None, "maintenance", False, True)
    assert after["assets"][standby.id] == (employee.id, "assigned", True, False)


def test_original_asset_must_belong_to_user(coordinator_client, employee, make_user, make_asset):
    someone_else = make_user("employee")
    original = make_asset("LAP-800", assigned_to=someone_else.id, status="assigned")
    standby = make_asset("SB-800", is_standby_asset=True)

    response = coordinator_client.post(
        "/api/standby/assignments",
        json=_assign_payload(employee.id, standby.id, original_asset_id=original.id),
    )
    assert response.status_code == 400
    assert response.get_json()["message"] == "Original asset is not assigned to this user"


def test_original_asset_cannot_be_the_standby_asset(app, coordinator_client, employee, make_asset):
    standby = make_asset("SB-850", is_standby_asset=True)

    response = coordinator_client.post(
        "/api/standby/assignments",
        json=_assign_payload(employee.id, standby.id, original_asset_id=standby.id),
    )
    assert response.status_code == 400
    assert response.get_json()["message"] == "Original asset cannot be the standby asset"

    with app.app_context():
        assert StandbyAssignment.query.count() == 0
        assert db.session.get(Asset, standby.id).standby_available is True


def test_expected_return_date_in_the_past(coordinator_client, employee, make_asset):
    standby = make_asset("SB-900", is_standby_asset=True)
    yesterday = (utc_now() - timedelta(days=1)).date().isoformat()

    response = coordinator_client.post(
        "/api/standby/assignments",
        json=_assign_payload(employee.id, standby.id, expected_return_date=yesterday),
    )
    assert response.status_code == 422
    assert response.get_json()["errors"]["expected_return_date"] == "Expected return date cannot be in the past"


def test_assign_unknown_user_or_standby_asset(coordinator_client, employee, make_asset):
    standby = make_asset("SB-910", is_standby_asset=True)

    response = coordinator_client.post("/api/standby/assignments", json=_assign_payload(99999, standby.id))
    assert response.status_code == 404
    assert response.get_json()["message"] == "User not found"

    response = coordinator_client.post("/api/standby/assignments", json=_assign_payload(employee.id, 99999))
    assert response.status_code == 404
    assert response.get_json()["message"] == "Standby asset not found"


def test_assign_asset_outside_pool(coordinator_client, employee, make_asset):
    regular = make_asset("LAP-920")

    response = coordinator_client.post("/api/standby/assignments", json=_assign_payload(employee.id, regular.id))
    assert response.status_code == 400
    assert response.get_json()["message"] == "Asset is not in standby pool"


def test_finished_assignment_cannot_change_again(coordinator_client, employee, make_asset):
    standby = make_asset("SB-930", is_standby_asset=True)
    response = coordinator_client.post("/api/standby/assignments", json=_assign_payload(employee.id, standby.id))
    assignment_id = response.get_json()["data"]["assignment_id"]

    response = coordinator_client.put(f"/api/standby/assignments/{assignment_id}/permanent", json={})
    assert response.status_code == 200

    for action in ("return", "permanent"):
        response = coordinator_client.put(f"/api/standby/assignments/{assignment_id}/{action}", json={})
        assert response.status_code == 400
        assert response.get_json()["message"] == "Assignment is not active"
