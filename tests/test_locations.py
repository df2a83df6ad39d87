from utilities.database import db, Location


def _payload(**overrides):
    payload = {"name": "Warehouse", "address": "12 Dock Road", "city_name": "Leeds", "pincode": "LS1 4AP"}
    payload.update(overrides)
    return payload


def test_create_and_get_location(admin_client):
    response = admin_client.post("/api/locations", json=_payload())
    assert response.status_code == 201
    location_id = response.get_json()["data"]["id"]

    response = admin_client.get(f"/api/locations/{location_id}")
    data = response.get_json()["data"]
    assert data["name"] == "Warehouse"
    assert data["sub_location_count"] == 0
    assert data["user_count"] == 0


def test_create_location_requires_name_and_address(admin_client):
    response = admin_client.post("/api/locations", json={})
    assert response.status_code == 422
    errors = response.get_json()["errors"]
    assert errors == {"name": "Name is required", "address": "Address is required"}


def test_create_location_with_missing_parent(admin_client):
    response = admin_client.post("/api/locations", json=_payload(parent_location_id=999))
    assert response.status_code == 404
    assert response.get_json()["message"] == "Parent location not found or inactive"


def test_employee_cannot_create_location(employee_client):
    response = employee_client.post("/api/locations", json=_payload())
    assert response.status_code == 403


def test_update_location_needs_fields(admin_client, sample_location):
    response = admin_client.put(f"/api/locations/{sample_location.id}", json={})
    assert response.status_code == 400
    assert response.get_json()["message"] == "No fields to update"


def test_delete_location_with_children_is_blocked(app, admin_client, sample_location):
    response = admin_client.post("/api/locations", json=_payload(parent_location_id=sample_location.id))
    assert response.status_code == 201

    response = admin_client.delete(f"/api/locations/{sample_location.id}")
    assert response.status_code == 409
    assert response.get_json()["message"] == "Cannot delete location. It has active sub-locations."


def test_delete_location_with_assets_is_blocked(admin_client, sample_location, make_asset):
    make_asset("LAP-001", location_id=sample_location.id)
    response = admin_client.delete(f"/api/locations/{sample_location.id}")
    assert response.status_code == 409
    assert response.get_json()["message"] == "Cannot delete location. It has active assets."


def test_delete_location_soft_deletes(app, admin_client, sample_location):
    response = admin_client.delete(f"/api/locations/{sample_location.id}")
    assert response.status_code == 200
    with app.app_context():
        assert db.session.get(Location, sample_location.id).is_active is False

    response = admin_client.get("/api/locations/dropdown")
    assert sample_location.id not in [loc["id"] for loc in response.get_json()["data"]]


def test_list_locations_search(admin_client, sample_location):
    admin_client.post("/api/locations", json=_payload(name="Depot"))
    response = admin_client.get("/api/locations?search=Head")
    body = response.get_json()
    assert [loc["name"] for loc in body["data"]] == ["Head Office"]
    assert body["pagination"]["totalItems"] == 1
