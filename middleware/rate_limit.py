from flask import current_app
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

# Limits, storage and the on/off switch come from RATELIMIT_* config keys
limiter = Limiter(key_func=get_remote_address, strategy="fixed-window")


def login_limit() -> str:
    return current_app.config.get("LOGIN_RATE_LIMIT", "10 per minute")
