from datetime import timedelta

import pytest

from utilities.database import utc_now


@pytest.fixture
def moved_assets(coordinator_client, make_user, make_asset, sample_location):
    first = make_user("employee")
    second = make_user("employee")
    laptop = make_asset("LAP-100", location_id=sample_location.id)
    monitor = make_asset("MON-100")

    coordinator_client.post(f"/api/assets/{laptop.id}/assign", json={"user_id": first.id})
    coordinator_client.post(f"/api/assets/{laptop.id}/assign", json={"user_id": second.id})
    coordinator_client.post(f"/api/assets/{monitor.id}/assign", json={"user_id": first.id})
    coordinator_client.post(f"/api/assets/{monitor.id}/unassign", json={"reason": "Desk swap"})
    return {"first": first, "second": second, "laptop": laptop, "monitor": monitor}


def test_recent_movements(coordinator_client, moved_assets):
    response = coordinator_client.get("/api/asset-movements/recent")
    assert response.status_code == 200
    body = response.get_json()
    assert body["message"] == "Recent movements retrieved successfully"
    assert body["pagination"]["totalItems"] == 4
    assert body["pagination"]["itemsPerPage"] == 50
    assert body["data"][0]["movement_type"] == "unassigned"

    response = coordinator_client.get("/api/asset-movements/recent?asset_tag=lap&movement_type=transferred")
    assert [m["asset_tag"] for m in response.get_json()["data"]] == ["LAP-100"]

    tomorrow = (utc_now() + timedelta(days=1)).date().isoformat()
    response = coordinator_client.get(f"/api/asset-movements/recent?start_date={tomorrow}")
    assert response.get_json()["pagination"]["totalItems"] == 0

    today = utc_now().date().isoformat()
    response = coordinator_client.get(f"/api/asset-movements/recent?end_date={today}")
    assert response.get_json()["pagination"]["totalItems"] == 4

    response = coordinator_client.get("/api/asset-movements/recent?start_date=yesterday")
    assert response.status_code == 422
    assert response.get_json()["errors"] == {"start_date": "Dates must use YYYY-MM-DD format"}


def test_movement_statistics(coordinator_client, employee_client, moved_assets):
    data = coordinator_client.get("/api/asset-movements/statistics").get_json()["data"]
    assert data["total_movements"] == 4
    assert data["unique_assets"] == 2
    assert data["by_type"]["assigned"] == 2
    assert data["by_type"]["transferred"] == 1
    assert data["by_type"]["unassigned"] == 1
    assert data["by_type"]["component_install"] == 0

    response = employee_client.get("/api/asset-movements/statistics")
    assert response.status_code == 403


def test_current_assignment(coordinator_client, moved_assets):
    laptop = moved_assets["laptop"]
    response = coordinator_client.get(f"/api/asset-movements/asset/{laptop.id}/current")
    assert response.status_code == 200
    data = response.get_json()["data"]
    assert data["asset"]["asset_tag"] == "LAP-100"
    assert data["assigned_to"] == moved_assets["second"].id
    assert data["last_movement"]["movement_type"] == "transferred"
    assert data["last_movement"]["previous_user_id"] == moved_assets["first"].id

    response = coordinator_client.get("/api/asset-movements/asset/99999/current")
    assert response.status_code == 404
    assert response.get_json()["message"] == "Asset not found"


def test_user_movement_history(coordinator_client, login_as, moved_assets):
    first = moved_assets["first"]
    second = moved_assets["second"]

    response = coordinator_client.get(f"/api/asset-movements/user/{first.id}")
    assert response.status_code == 200
    # assigned laptop, transferred away, assigned monitor, unassigned monitor
    assert response.get_json()["pagination"]["totalItems"] == 4

    own = login_as(second).get(f"/api/asset-movements/user/{second.id}")
    assert own.status_code == 200
    assert [m["movement_type"] for m in own.get_json()["data"]] == ["transferred"]

    response = login_as(second).get(f"/api/asset-movements/user/{first.id}")
    assert response.status_code == 403
    assert response.get_json()["message"] == "Access denied. You can only view your own movement history."

    response = coordinator_client.get("/api/asset-movements/user/99999")
    assert response.status_code == 404
    assert response.get_json()["message"] == "User not found"


def test_location_movement_history(coordinator_client, sample_location, moved_assets):
    response = coordinator_client.get(f"/api/asset-movements/location/{sample_location.id}")
    assert response.status_code == 200
    data = response.get_json()["data"]
    assert {m["asset_tag"] for m in data} == {"LAP-100"}
    assert len(data) == 2

    response = coordinator_client.get("/api/asset-movements/location/99999")
    assert response.status_code == 404
    assert response.get_json()["message"] == "Location not found"
