# utilities/validators.py
import re
from datetime import date, datetime, time
from typing import Any, Dict, Optional, Tuple

from flask import current_app, request

from utilities.constants import STANDBY_REASON_CATEGORIES
from utilities.errors import BadRequestError

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def get_json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise BadRequestError("Request body must be a JSON object")
    return payload


def clean_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def parse_bool(value: Any, default: Optional[bool] = None) -> Optional[bool]:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def parse_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_datetime(value: Any) -> Optional[datetime]:
    """Accept ISO-8601 date or datetime strings; raise ValueError on garbage."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = (parsed - parsed.utcoffset()).replace(tzinfo=None)
    return parsed


def parse_time(value: Any) -> Optional[time]:
    """Parse HH:MM or HH:MM:SS; raise ValueError on garbage."""
    if value is None or value == "":
        return None
    if isinstance(value, time):
        return value
    return time.fromisoformat(str(value).strip())


def parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip()[:10])


def pagination_args(default_limit: Optional[int] = None) -> Tuple[int, int]:
    """Read page/limit from the query string, clamped to configured bounds."""
    default_limit = default_limit or current_app.config.get("DEFAULT_PAGE_SIZE", 10)
    max_limit = current_app.config.get("MAX_PAGE_SIZE", 100)
    page = parse_int(request.args.get("page")) or 1
    limit = parse_int(request.args.get("limit")) or default_limit
    page = max(page, 1)
    limit = min(max(limit, 1), max_limit)
    return page, limit


def is_valid_email(value: Optional[str]) -> bool:
    return bool(value and EMAIL_RE.match(value))


# --- Standby workflow payloads ---
def validate_standby_assignment(payload: Dict[str, Any], today: date) -> Dict[str, str]:
    errors: Dict[str, str] = {}

    if parse_int(payload.get("user_id")) is None:
        errors["user_id"] = "User ID is required"
    if parse_int(payload.get("standby_asset_id")) is None:
        errors["standby_asset_id"] = "Standby asset ID is required"
    if payload.get("original_asset_id") not in (None, "") and parse_int(payload.get("original_asset_id")) is None:
        errors["original_asset_id"] = "Original asset ID must be a number"

    reason = clean_str(payload.get("reason"))
    if not reason:
        errors["reason"] = "Reason is required"
    elif len(reason) < 5:
        errors["reason"] = "Reason must be at least 5 characters"
    elif len(reason) > 500:
        errors["reason"] = "Reason cannot exceed 500 characters"

    category = clean_str(payload.get("reason_category"))
    if not category:
        errors["reason_category"] = "Reason category is required"
    elif category not in STANDBY_REASON_CATEGORIES:
        errors["reason_category"] = "Reason category must be one of: " + ", ".join(STANDBY_REASON_CATEGORIES)

    raw_date = payload.get("expected_return_date")
    if raw_date not in (None, ""):
        try:
            expected = parse_datetime(raw_date)
        except ValueError:
            errors["expected_return_date"] = "Expected return date must be a valid date"
        else:
            if expected.date() < today:
                errors["expected_return_date"] = "Expected return date cannot be in the past"

    notes = payload.get("notes")
    if notes is not None and len(str(notes)) > 1000:
        errors["notes"] = "Notes cannot exceed 1000 characters"

    return errors


def validate_notes(payload: Dict[str, Any], field: str) -> Dict[str, str]:
    value = payload.get(field)
    if value is not None and len(str(value)) > 1000:
        return {field: f"{field.replace('_', ' ').capitalize()} cannot exceed 1000 characters"}
    return {}
