from datetime import timedelta

from flask import current_app
from flask_login import login_user, logout_user, login_required, current_user

from middleware.rate_limit import limiter, login_limit
from utilities.database import db, User, log_activity, utc_now
from utilities.permission_service import permission_service
from utilities.errors import ValidationError
from utilities.responses import error, success
from utilities.validators import clean_str, get_json_body, parse_bool
from . import auth_bp


@auth_bp.post("/login")
@limiter.limit(login_limit)
def login():
    payload = get_json_body()
    email = (clean_str(payload.get("email")) or "").lower()
    password = payload.get("password") or ""
    remember = parse_bool(payload.get("remember"), False)

    if not isinstance(password, str):
        raise ValidationError({"password": "Password must be a string"})

    if not email or not password:
        return error("Email and password are required", 400)

    user = User.query.filter(db.func.lower(User.email) == email).first()
    if user is None:
        return error("Invalid email or password", 401)

    now = utc_now()
    if user.is_locked(now):
        return error("Account is locked. Try again later.", 403)
    if not user.is_active:
        return error("Account is inactive. Contact your administrator.", 403)

    if not user.check_password(password):
        user.failed_login_attempts = (user.failed_login_attempts or 0) + 1
        max_attempts = current_app.config.get("MAX_LOGIN_ATTEMPTS", 5)
        if user.failed_login_attempts >= max_attempts:
            user.locked_until = now + timedelta(minutes=current_app.config.get("LOCKOUT_MINUTES", 30))
            current_app.logger.warning("Account %s locked after %s failed logins", user.email, max_attempts)
            log_activity(
                "auth_locked",
                user=user,
                target=user,
                summary="Account locked after repeated failed logins",
                meta={"failed_attempts": user.failed_login_attempts},
            )
        db.session.commit()
        return error("Invalid email or password", 401)

    user.failed_login_attempts = 0
    user.locked_until = None
    user.last_login_at = now
    login_user(user, remember=remember)
    log_activity(
        "auth_login",
        user=user,
        summary="User signed in",
        meta={"remember": bool(remember)},
    )
    db.session.commit()

    data = user.to_dict()
    data["permissions"] = permission_service.get_user_effective_permissions(user.id)
    return success(data, "Login successful")


@auth_bp.post("/logout")
@login_required
def logout():
    user = current_user._get_current_object()
    logout_user()
    log_activity("auth_logout", user=user, summary="User signed out", commit=True)
    return success(None, "Logout successful")


@auth_bp.get("/me")
@login_required
def me():
    data = current_user.to_dict()
    data["permissions"] = permission_service.get_user_effective_permissions(current_user.id)
    return success(data, "Profile retrieved successfully")
