from .database import (
    db,
    ActivityLog,
    Asset,
    Department,
    Location,
    Ticket,
    User,
    log_activity,
    log_asset_movement,
    utc_now,
)
from .logger import setup_logger

__all__ = [
    "db",
    "ActivityLog",
    "Asset",
    "Department",
    "Location",
    "Ticket",
    "User",
    "setup_logger",
    "log_activity",
    "log_asset_movement",
    "utc_now",
]
