import os
from pathlib import Path
from types import SimpleNamespace
from uuid import uuid4

import pytest

from app import create_app
from utilities.database import db, Asset, Department, Location, User
from utilities.permission_service import permission_service
from utilities.seed import seed_all

PASSWORD = "Passw0rd!"


@pytest.fixture
def app(request, tmp_path):
    db_name = f"test_{uuid4().hex}.db"
    os.environ["ENV"] = "testing"

    overrides = {
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_name}",
        "LOG_DIR": str(tmp_path / "logs"),
        "RATELIMIT_ENABLED": False,
    }
    marker = request.node.get_closest_marker("config")
    if marker is not None:
        overrides.update(marker.kwargs)
    application = create_app(overrides)

    with application.app_context():
        db.create_all()
        seed_all()
        db.session.commit()
    permission_service.clear_cache()

    yield application

    with application.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()
    permission_service.clear_cache()

    db_path = Path.home() / "ITAM_data" / db_name
    if db_path.exists():
        db_path.unlink()

    os.environ.pop("ENV", None)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    counter = {"n": 0}

    def _make(role="employee", email=None, password=PASSWORD, **fields):
        counter["n"] += 1
        with app.app_context():
            user = User(
                first_name=fields.pop("first_name", role.replace("_", " ").title()),
                last_name=fields.pop("last_name", f"User{counter['n']}"),
                email=email or f"{role}{counter['n']}@example.com",
                role=role,
                **fields,
            )
            user.set_password(password)
            db.session.add(user)
            db.session.commit()
            return SimpleNamespace(id=user.id, email=user.email, password=password, role=role)

    return _make


@pytest.fixture
def login_as(app):
    def _login(user):
        client = app.test_client()
        response = client.post("/auth/login", json={"email": user.email, "password": user.password})
        assert response.status_code == 200, response.get_json()
        return client

    return _login


@pytest.fixture
def superadmin(make_user):
    return make_user("superadmin")


@pytest.fixture
def admin(make_user):
    return make_user("admin")


@pytest.fixture
def coordinator(make_user):
    return make_user("coordinator")


@pytest.fixture
def engineer(make_user):
    return make_user("engineer")


@pytest.fixture
def employee(make_user):
    return make_user("employee")


@pytest.fixture
def superadmin_client(login_as, superadmin):
    return login_as(superadmin)


@pytest.fixture
def admin_client(login_as, admin):
    return login_as(admin)


@pytest.fixture
def coordinator_client(login_as, coordinator):
    return login_as(coordinator)


@pytest.fixture
def engineer_client(login_as, engineer):
    return login_as(engineer)


@pytest.fixture
def employee_client(login_as, employee):
    return login_as(employee)


@pytest.fixture
def sample_location(app):
    with app.app_context():
        location = Location(name="Head Office", address="1 Main Street", building="A", floor="2")
        db.session.add(location)
        db.session.commit()
        return SimpleNamespace(id=location.id, name=location.name)


@pytest.fixture
def sample_department(app):
    with app.app_context():
        department = Department(name="Finance", description="Accounts and payroll")
        db.session.add(department)
        db.session.commit()
        return SimpleNamespace(id=department.id, name=department.name)


@pytest.fixture
def make_asset(app):
    def _make(asset_tag, **fields):
        with app.app_context():
            asset = Asset(asset_tag=asset_tag, name=fields.pop("name", f"Laptop {asset_tag}"), **fields)
            db.session.add(asset)
            db.session.commit()
            return SimpleNamespace(id=asset.id, asset_tag=asset.asset_tag)

    return _make
