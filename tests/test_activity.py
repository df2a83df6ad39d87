def test_activity_requires_system_logs(coordinator_client):
    response = coordinator_client.get("/api/activity")
    assert response.status_code == 403
    assert response.get_json()["message"] == "Insufficient permissions"


def test_activity_filters(admin, admin_client, employee_client, make_asset):
    asset = make_asset("ACT-1")
    admin_client.put(f"/api/assets/{asset.id}", json={"name": "Renamed laptop"})
    employee_client.post("/api/tickets", json={"title": "Keyboard sticky"})

    response = admin_client.get("/api/activity?action=auth_login")
    body = response.get_json()
    assert body["message"] == "Activity log retrieved successfully"
    assert body["pagination"]["totalItems"] == 2

    response = admin_client.get(f"/api/activity?user_id={admin.id}&action=auth_login")
    assert [e["user_id"] for e in response.get_json()["data"]] == [admin.id]

    response = admin_client.get(f"/api/activity?target_type=Asset&target_id={asset.id}")
    entries = response.get_json()["data"]
    assert len(entries) == 1
    assert entries[0]["user_id"] == admin.id

    response = admin_client.get("/api/activity?target_type=Ticket")
    assert response.get_json()["data"][0]["action"] == "ticket_created"


def test_activity_is_newest_first(admin_client, employee_client):
    employee_client.post("/api/tickets", json={"title": "First"})
    employee_client.post("/api/tickets", json={"title": "Second"})

    entries = admin_client.get("/api/activity?action=ticket_created").get_json()["data"]
    assert len(entries) == 2
    assert entries[0]["id"] > entries[1]["id"]
