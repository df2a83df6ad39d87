# app.py
import click
from flask import Flask, current_app, request
from flask_migrate import Migrate
from pathlib import Path
from flask_login import LoginManager
from werkzeug.exceptions import HTTPException
from config import get_config
from middleware.rate_limit import limiter
from utilities.database import db, User
from utilities.errors import ApiError
from utilities.logger import configure_app_logging
from utilities.responses import error, unauthorized
from utilities.seed import seed_all, create_superadmin
from auth import auth_bp
from users import users_bp
from departments import departments_bp
from locations import locations_bp
from assets import assets_bp
from movements import movements_bp
from standby import standby_bp
from permissions import permissions_bp
from tickets import tickets_bp
from sla import sla_bp
from activity import activity_bp

migrate = Migrate()

login_manager = LoginManager()


def create_app(config_overrides=None):
    app = Flask(__name__)

    # 1) Load config for the selected environment
    app.config.from_object(get_config())
    if config_overrides:
        app.config.update(config_overrides)

    # 2) SQLite path hardening: ensure absolute, writable path BEFORE init_app
    uri = app.config.get("SQLALCHEMY_DATABASE_URI", "")
    if uri.startswith("sqlite:///") and not uri.endswith(":memory:"):
        base_dir = Path.home() / "ITAM_data"  # per-user writable folder
        base_dir.mkdir(parents=True, exist_ok=True)
        raw_path = uri.replace("sqlite:///", "", 1).strip()
        filename = Path(raw_path).name if raw_path else "itam.db"
        db_path = (base_dir / filename).resolve()
        app.config["SQLALCHEMY_DATABASE_URI"] = f"sqlite:///{db_path.as_posix()}"

    # 3) Logging
    configure_app_logging(app)
    app.logger.info("Using database at: %s", app.config["SQLALCHEMY_DATABASE_URI"])

    # 4) Init DB & migrations NOW that URI is final
    db.init_app(app)
    migrate.init_app(app, db)

    # 5) Optional dev-only schema bootstrap
    if app.config.get("AUTO_CREATE_SCHEMA"):
        with app.app_context():
            db.create_all()

    # 6) Blueprints
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(users_bp, url_prefix="/api/users")
    app.register_blueprint(departments_bp, url_prefix="/api/departments")
    app.register_blueprint(locations_bp, url_prefix="/api/locations")
    app.register_blueprint(assets_bp, url_prefix="/api/assets")
    app.register_blueprint(movements_bp, url_prefix="/api/asset-movements")
    app.register_blueprint(standby_bp, url_prefix="/api/standby")
    app.register_blueprint(permissions_bp, url_prefix="/api/admin/permissions")
    app.register_blueprint(tickets_bp, url_prefix="/api/tickets")
    app.register_blueprint(sla_bp, url_prefix="/api/sla")
    app.register_blueprint(activity_bp, url_prefix="/api/activity")

    # 7) Health check
    @app.get("/health")
    def health():
        return {"ok": True}, 200

    # 8) Login manager
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id: str):
        try:
            user = db.session.get(User, int(user_id))
        except (TypeError, ValueError):
            return None
        if user is None or not user.is_active:
            return None
        return user

    @login_manager.unauthorized_handler
    def handle_unauthorized():
        return unauthorized()

    # 9) Rate limiting
    limiter.init_app(app)

    # 10) Error handlers
    register_error_handlers(app)

    # 11) CLI
    register_commands(app)

    return app


def register_error_handlers(app):
    @app.errorhandler(ApiError)
    def handle_api_error(exc: ApiError):
        db.session.rollback()
        return error(exc.message, exc.status_code, exc.errors)

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        messages = {
            400: "Bad request",
            401: "Authentication required",
            403: "Access forbidden",
            404: "Resource not found",
            405: "Method not allowed",
            429: "Too many requests. Try again later.",
        }
        return error(messages.get(exc.code, exc.description or exc.name), exc.code or 500)

    @app.errorhandler(500)
    def handle_500(exc):
        db.session.rollback()
        current_app.logger.exception("Unhandled error on %s %s", request.method, request.path)
        return error("Internal server error", 500)


def register_commands(app):
    @app.cli.command("seed")
    @click.option("--admin-email", default=None, help="Also create or reset a superadmin account.")
    @click.option("--admin-password", default=None, help="Password for the superadmin account.")
    def seed_command(admin_email, admin_password):
        """Seed permissions, roles, business hours, holidays and SLA rules."""
        seed_all()
        if admin_email:
            if not admin_password:
                raise click.UsageError("--admin-password is required with --admin-email")
            create_superadmin(admin_email, admin_password)
        db.session.commit()
        click.echo("Seed data is in place.")


# For `flask --app app run`, having create_app is enough.
