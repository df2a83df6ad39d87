from datetime import timedelta

import pytest

from utilities.database import db, ActivityLog, Ticket, TicketReopenHistory, TicketSlaTracking, utc_now


@pytest.fixture
def open_ticket(employee_client):
    response = employee_client.post(
        "/api/tickets", json={"title": "Printer jammed", "description": "Tray 2", "priority": "high"}
    )
    assert response.status_code == 201, response.get_json()
    return response.get_json()["data"]


@pytest.fixture
def assigned_ticket(coordinator_client, engineer, open_ticket):
    response = coordinator_client.put(f"/api/tickets/{open_ticket['id']}/assign", json={"engineer_id": engineer.id})
    assert response.status_code == 200
    return response.get_json()["data"]


def test_employee_creates_ticket_with_sla(app, open_ticket, employee):
    assert open_ticket["status"] == "open"
    assert open_ticket["created_by_user_id"] == employee.id
    assert open_ticket["created_by_coordinator_id"] is None
    assert open_ticket["ticket_number"] == f"TKT-{utc_now().year}-0001"

    with app.app_context():
        tracking = TicketSlaTracking.query.filter_by(ticket_id=open_ticket["id"]).one()
        assert tracking.rule.rule_name == "High Priority SLA"
        assert tracking.sla_status == "on_track"
        assert tracking.max_target_time > tracking.min_target_time
        assert ActivityLog.query.filter_by(action="ticket_created").count() == 1


def test_ticket_numbers_are_sequential(employee_client, open_ticket):
    response = employee_client.post("/api/tickets", json={"title": "Second"})
    assert response.get_json()["data"]["ticket_number"].endswith("-0002")


def test_create_validation(employee_client):
    response = employee_client.post("/api/tickets", json={"priority": "urgent", "ticket_channel": "fax"})
    assert response.status_code == 422
    errors = response.get_json()["errors"]
    assert errors["title"] == "Title is required"
    assert errors["priority"].startswith("Priority must be one of")
    assert "ticket_channel" in errors


def test_coordinator_creates_on_behalf_with_engineer(app, coordinator_client, coordinator, employee, engineer):
    response = coordinator_client.post(
        "/api/tickets",
        json={
            "title": "VPN down",
            "priority": "critical",
            "created_by_user_id": employee.id,
            "assigned_to_engineer_id": engineer.id,
        },
    )
    assert response.status_code == 201
    data = response.get_json()["data"]
    assert data["created_by_user_id"] == employee.id
    assert data["created_by_coordinator_id"] == coordinator.id
    assert data["status"] == "in_progress"

    with app.app_context():
        tracking = TicketSlaTracking.query.filter_by(ticket_id=data["id"]).one()
        assert tracking.rule.rule_name == "Critical Priority SLA"


def test_assign_requires_engineer_role(coordinator_client, employee, open_ticket):
    response = coordinator_client.put(f"/api/tickets/{open_ticket['id']}/assign", json={})
    assert response.status_code == 400
    assert response.get_json()["message"] == "Engineer ID is required"

    response = coordinator_client.put(f"/api/tickets/{open_ticket['id']}/assign", json={"engineer_id": employee.id})
    assert response.status_code == 404
    assert response.get_json()["message"] == "Engineer not found or inactive"


def test_visibility_is_scoped_by_role(login_as, make_user, employee_client, engineer_client, assigned_ticket):
    other = login_as(make_user("employee"))
    response = other.get(f"/api/tickets/{assigned_ticket['id']}")
    assert response.status_code == 403
    assert response.get_json()["message"] == "Access denied. You can only view your own tickets."
    assert other.get("/api/tickets").get_json()["pagination"]["totalItems"] == 0

    assert employee_client.get(f"/api/tickets/{assigned_ticket['id']}").status_code == 200

    response = engineer_client.get("/api/tickets")
    assert [t["id"] for t in response.get_json()["data"]] == [assigned_ticket["id"]]

    other_engineer = login_as(make_user("engineer"))
    response = other_engineer.get(f"/api/tickets/{assigned_ticket['id']}")
    assert response.status_code == 403
    assert response.get_json()["message"] == "Access denied. This ticket is not assigned to you."


def test_internal_comments_hidden_from_employee(employee_client, engineer_client, assigned_ticket):
    ticket_id = assigned_ticket["id"]
    response = engineer_client.post(
        f"/api/tickets/{ticket_id}/comments", json={"comment_text": "Replacing the fuser", "is_internal": True}
    )
    assert response.status_code == 201
    engineer_client.post(f"/api/tickets/{ticket_id}/comments", json={"comment_text": "Working on it"})

    response = employee_client.post(
        f"/api/tickets/{ticket_id}/comments", json={"comment_text": "Thanks", "is_internal": True}
    )
    assert response.get_json()["data"]["is_internal"] is False

    texts = [c["comment_text"] for c in employee_client.get(f"/api/tickets/{ticket_id}/comments").get_json()["data"]]
    assert texts == ["Working on it", "Thanks"]

    detail = engineer_client.get(f"/api/tickets/{ticket_id}").get_json()["data"]
    assert len(detail["comments"]) == 3
    assert detail["sla"]["rule_name"] == "High Priority SLA"

    response = employee_client.post(f"/api/tickets/{ticket_id}/comments", json={"comment_text": "  "})
    assert response.status_code == 400


def test_status_update_pauses_and_resumes_sla(app, engineer_client, assigned_ticket):
    ticket_id = assigned_ticket["id"]
    response = engineer_client.put(f"/api/tickets/{ticket_id}", json={"status": "awaiting_info"})
    assert response.status_code == 200

    with app.app_context():
        assert TicketSlaTracking.query.filter_by(ticket_id=ticket_id).one().is_paused is True

    engineer_client.put(f"/api/tickets/{ticket_id}", json={"status": "in_progress"})
    with app.app_context():
        tracking = TicketSlaTracking.query.filter_by(ticket_id=ticket_id).one()
        assert tracking.is_paused is False
        assert [log.action for log in tracking.pause_logs] == ["paused", "resumed"]

    response = engineer_client.put(f"/api/tickets/{ticket_id}", json={"ticket_number": "X"})
    assert response.status_code == 400
    assert response.get_json()["message"] == "No valid fields to update"


def test_close_request_rejected_then_approved(app, coordinator_client, engineer_client, assigned_ticket):
    ticket_id = assigned_ticket["id"]

    response = engineer_client.post(f"/api/tickets/{ticket_id}/request-close", json={})
    assert response.status_code == 400
    assert response.get_json()["message"] == "Request notes are required"

    response = engineer_client.post(f"/api/tickets/{ticket_id}/request-close", json={"request_notes": "Fixed"})
    assert response.status_code == 200
    with app.app_context():
        assert db.session.get(Ticket, ticket_id).status == "pending_closure"
        assert TicketSlaTracking.query.filter_by(ticket_id=ticket_id).one().is_paused is True

    response = engineer_client.post(f"/api/tickets/{ticket_id}/request-close", json={"request_notes": "Again"})
    assert response.status_code == 409

    assert coordinator_client.get("/api/tickets/close-requests-count").get_json()["data"] == {"count": 1}

    response = coordinator_client.post(f"/api/tickets/{ticket_id}/review-close-request", json={"action": "maybe"})
    assert response.status_code == 400

    response = coordinator_client.post(
        f"/api/tickets/{ticket_id}/review-close-request", json={"action": "rejected", "review_notes": "Still jams"}
    )
    assert response.get_json()["message"] == "Close request rejected. Ticket returned to in progress."
    assert response.get_json()["data"]["ticket"]["status"] == "in_progress"
    with app.app_context():
        assert TicketSlaTracking.query.filter_by(ticket_id=ticket_id).one().is_paused is False

    engineer_client.post(f"/api/tickets/{ticket_id}/request-close", json={"request_notes": "Replaced roller"})
    response = coordinator_client.post(f"/api/tickets/{ticket_id}/review-close-request", json={"action": "approved"})
    assert response.get_json()["message"] == "Close request approved. Ticket closed."
    ticket = response.get_json()["data"]["ticket"]
    assert ticket["status"] == "closed"
    assert ticket["resolution_notes"] == "Replaced roller"

    with app.app_context():
        tracking = TicketSlaTracking.query.filter_by(ticket_id=ticket_id).one()
        assert tracking.resolved_at is not None
        assert tracking.final_status == "met_early"

    history = coordinator_client.get(f"/api/tickets/{ticket_id}/close-request-history").get_json()["data"]
    assert sorted(r["request_status"] for r in history) == ["approved", "rejected"]

    response = coordinator_client.post(f"/api/tickets/{ticket_id}/review-close-request", json={"action": "approved"})
    assert response.status_code == 404


def test_only_assigned_engineer_can_request_close(login_as, make_user, assigned_ticket):
    other = login_as(make_user("engineer"))
    response = other.post(f"/api/tickets/{assigned_ticket['id']}/request-close", json={"request_notes": "Done"})
    assert response.status_code == 403
    assert response.get_json()["message"] == "Only the assigned engineer can request closure"


def test_closed_ticket_cannot_be_updated(coordinator_client, open_ticket):
    ticket_id = open_ticket["id"]
    response = coordinator_client.put(f"/api/tickets/{ticket_id}/close", json={})
    assert response.status_code == 400
    assert response.get_json()["message"] == "Resolution notes are required"

    response = coordinator_client.put(f"/api/tickets/{ticket_id}/close", json={"resolution_notes": "Duplicate"})
    assert response.get_json()["data"]["status"] == "closed"

    response = coordinator_client.put(f"/api/tickets/{ticket_id}", json={"title": "New"})
    assert response.status_code == 400
    assert response.get_json()["message"] == "Cannot update a closed or cancelled ticket"


def test_reopen_config_is_validated(superadmin_client, coordinator_client):
    assert coordinator_client.get("/api/tickets/reopen-config").status_code == 403

    config = superadmin_client.get("/api/tickets/reopen-config").get_json()["data"]
    assert config["reopen_window_days"] == 7
    assert config["max_reopen_count"] == 3

    response = superadmin_client.put(
        "/api/tickets/reopen-config", json={"reopen_window_days": 0, "max_reopen_count": 11}
    )
    assert response.status_code == 422
    assert response.get_json()["errors"] == {
        "reopen_window_days": "Reopen window must be between 1 and 365 days",
        "max_reopen_count": "Max reopen count must be between 1 and 10",
    }

    response = superadmin_client.put("/api/tickets/reopen-config", json={"max_reopen_count": 1})
    assert response.get_json()["data"]["max_reopen_count"] == 1


def test_reopen_flow(app, superadmin_client, coordinator_client, assigned_ticket):
    ticket_id = assigned_ticket["id"]
    check = coordinator_client.get(f"/api/tickets/{ticket_id}/can-reopen").get_json()["data"]
    assert check["can_reopen"] is False
    assert check["reason"] == "Only closed tickets can be reopened"

    coordinator_client.put(f"/api/tickets/{ticket_id}/close", json={"resolution_notes": "Done"})
    superadmin_client.put("/api/tickets/reopen-config", json={"max_reopen_count": 1})

    response = coordinator_client.post(f"/api/tickets/{ticket_id}/reopen", json={})
    assert response.status_code == 400
    assert response.get_json()["message"] == "Reopen reason is required"

    response = coordinator_client.post(f"/api/tickets/{ticket_id}/reopen", json={"reopen_reason": "Jammed again"})
    assert response.status_code == 200
    data = response.get_json()["data"]
    assert data["status"] == "in_progress"
    assert data["reopen_count"] == 1
    assert data["closed_at"] is None

    with app.app_context():
        tracking = TicketSlaTracking.query.filter_by(ticket_id=ticket_id).one()
        assert tracking.resolved_at is None
        assert tracking.final_status is None
        assert TicketReopenHistory.query.filter_by(ticket_id=ticket_id).one().previous_status == "closed"

    coordinator_client.put(f"/api/tickets/{ticket_id}/close", json={"resolution_notes": "Done again"})
    check = coordinator_client.get(f"/api/tickets/{ticket_id}/can-reopen").get_json()["data"]
    assert check["reason"] == "Maximum reopen count (1) reached"

    history = coordinator_client.get(f"/api/tickets/{ticket_id}/reopen-history").get_json()["data"]
    assert history[0]["reopen_reason"] == "Jammed again"


def test_reopen_window_expires(app, coordinator_client, open_ticket):
    ticket_id = open_ticket["id"]
    coordinator_client.put(f"/api/tickets/{ticket_id}/close", json={"resolution_notes": "Done"})
    with app.app_context():
        ticket = db.session.get(Ticket, ticket_id)
        ticket.closed_at = utc_now() - timedelta(days=10)
        db.session.commit()

    response = coordinator_client.post(f"/api/tickets/{ticket_id}/reopen", json={"reopen_reason": "Too late"})
    assert response.status_code == 400
    assert response.get_json()["message"] == "Reopen window of 7 days has expired"


def test_stats_and_engineer_workload(coordinator_client, employee_client, engineer, assigned_ticket):
    employee_client.post("/api/tickets", json={"title": "Mouse broken", "priority": "critical"})

    stats = coordinator_client.get("/api/tickets/stats").get_json()["data"]
    assert stats["total"] == 2
    assert stats["by_status"]["in_progress"] == 1
    assert stats["by_status"]["open"] == 1
    assert stats["critical"] == 1
    assert stats["unassigned"] == 1

    engineers = coordinator_client.get("/api/tickets/engineers").get_json()["data"]
    assert engineers == [{
        "id": engineer.id,
        "full_name": engineers[0]["full_name"],
        "email": engineer.email,
        "department_id": None,
        "location_id": None,
        "open_tickets": 1,
    }]

    assert employee_client.get("/api/tickets/stats").status_code == 403


def test_my_tickets(employee_client, engineer_client, assigned_ticket):
    assert employee_client.get("/api/tickets/my-tickets").get_json()["pagination"]["totalItems"] == 1
    assert engineer_client.get("/api/tickets/my-tickets").get_json()["data"][0]["id"] == assigned_ticket["id"]


def test_delete_ticket(app, admin_client, coordinator_client, open_ticket):
    assert coordinator_client.delete(f"/api/tickets/{open_ticket['id']}").status_code == 403

    response = admin_client.delete(f"/api/tickets/{open_ticket['id']}")
    assert response.status_code == 200
    with app.app_context():
        assert db.session.get(Ticket, open_ticket["id"]) is None
        assert TicketSlaTracking.query.count() == 0


# --- linked assets ---
@pytest.fixture
def employee_desktop(employee, make_asset):
    desktop = make_asset("DT-100", assigned_to=employee.id, status="assigned")
    ram = make_asset(
        "RAM-100",
        asset_type="component",
        status="in_use",
        parent_asset_id=desktop.id,
        installation_date=utc_now(),
    )
    return desktop, ram


def test_link_asset_to_ticket(app, employee_client, coordinator_client, make_asset, open_ticket, employee_desktop):
    desktop, ram = employee_desktop
    ticket_id = open_ticket["id"]

    response = employee_client.post(f"/api/tickets/{ticket_id}/assets", json={})
    assert response.status_code == 422
    assert response.get_json()["errors"] == {"asset_id": "Asset ID is required"}

    response = employee_client.post(f"/api/tickets/{ticket_id}/assets", json={"asset_id": desktop.id, "notes": "Fan noise"})
    assert response.status_code == 201
    link = response.get_json()["data"]
    assert link["asset_tag"] == "DT-100"
    assert link["notes"] == "Fan noise"
    assert link["is_directly_linked"] is True

    response = employee_client.post(f"/api/tickets/{ticket_id}/assets", json={"asset_id": desktop.id})
    assert response.status_code == 409
    assert response.get_json()["message"] == "Asset is already linked to this ticket"

    spare = make_asset("LAP-900")
    response = employee_client.post(f"/api/tickets/{ticket_id}/assets", json={"asset_id": spare.id})
    assert response.status_code == 403
    assert response.get_json()["message"] == "You can only link assets assigned to you"

    data = employee_client.get(f"/api/tickets/{ticket_id}/assets").get_json()["data"]
    assert data["count"] == 2
    assert [(a["asset_tag"], a["is_component_of_linked"]) for a in data["assets"]] == [
        ("DT-100", False),
        ("RAM-100", True),
    ]
    detail = employee_client.get(f"/api/tickets/{ticket_id}").get_json()["data"]
    assert [a["asset_tag"] for a in detail["assets"]] == ["DT-100", "RAM-100"]

    check = employee_client.get(f"/api/tickets/{ticket_id}/assets/{desktop.id}/check").get_json()["data"]
    assert check == {"is_linked": True}
    check = employee_client.get(f"/api/tickets/{ticket_id}/assets/{ram.id}/check").get_json()["data"]
    assert check == {"is_linked": False}

    history = coordinator_client.get(f"/api/assets/{desktop.id}/tickets").get_json()["data"]
    assert history["count"] == 1
    assert history["tickets"][0]["id"] == ticket_id
    assert history["tickets"][0]["link_notes"] == "Fan noise"

    response = employee_client.delete(f"/api/tickets/{ticket_id}/assets/{desktop.id}")
    assert response.status_code == 200
    response = employee_client.delete(f"/api/tickets/{ticket_id}/assets/{desktop.id}")
    assert response.status_code == 404
    assert response.get_json()["message"] == "Asset link not found"

    with app.app_context():
        actions = [a.action for a in ActivityLog.query.filter_by(target_type="Ticket").order_by(ActivityLog.id)]
        assert actions[-2:] == ["ticket_asset_linked", "ticket_asset_unlinked"]


def test_create_ticket_with_assets_and_bulk_link(coordinator_client, employee, make_asset):
    laptop = make_asset("LAP-100", assigned_to=employee.id, status="assigned")
    monitor = make_asset("MON-100")

    response = coordinator_client.post(
        "/api/tickets",
        json={"title": "Docking issue", "created_by_user_id": employee.id, "asset_ids": [laptop.id, laptop.id]},
    )
    assert response.status_code == 201
    ticket = response.get_json()["data"]
    assert [a["asset_tag"] for a in ticket["assets"]] == ["LAP-100"]

    response = coordinator_client.post("/api/tickets", json={"title": "Bad ids", "asset_ids": "LAP-100"})
    assert response.status_code == 422
    assert response.get_json()["errors"] == {"asset_ids": "Asset IDs must be a list of asset IDs"}

    url = f"/api/tickets/{ticket['id']}/assets/bulk"
    response = coordinator_client.post(url, json={"asset_ids": []})
    assert response.status_code == 422
    assert response.get_json()["errors"] == {"asset_ids": "Asset IDs array is required"}

    response = coordinator_client.post(url, json={"asset_ids": [monitor.id, 99999]})
    assert response.status_code == 404
    assert response.get_json()["message"] == "Asset not found"

    response = coordinator_client.post(url, json={"asset_ids": [laptop.id, monitor.id]})
    assert response.status_code == 201
    body = response.get_json()
    assert body["message"] == "1 assets linked to ticket"
    assert [a["asset_tag"] for a in body["data"]["assets"]] == ["MON-100"]

    assert coordinator_client.get(f"/api/tickets/{ticket['id']}/assets").get_json()["data"]["count"] == 2


def test_closed_ticket_rejects_asset_links(coordinator_client, open_ticket, employee_desktop):
    desktop, _ = employee_desktop
    coordinator_client.put(f"/api/tickets/{open_ticket['id']}/close", json={"resolution_notes": "Fixed"})

    response = coordinator_client.post(f"/api/tickets/{open_ticket['id']}/assets", json={"asset_id": desktop.id})
    assert response.status_code == 400
    assert response.get_json()["message"] == "Cannot update a closed or cancelled ticket"


def test_my_linkable_assets_are_grouped(employee_client, employee, make_asset, employee_desktop):
    make_asset("LAP-200", assigned_to=employee.id, status="assigned")
    make_asset("LAP-201")

    data = employee_client.get("/api/tickets/my-assets").get_json()["data"]
    assert data["total"] == 3
    grouped = data["grouped"]
    assert [a["asset_tag"] for a in grouped["standalone"]] == ["LAP-200"]
    assert [a["asset_tag"] for a in grouped["parent"]] == ["DT-100"]
    assert [a["asset_tag"] for a in grouped["components"]] == ["RAM-100"]
