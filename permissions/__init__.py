"""
Permission administration: catalog, role templates, per-user overrides and audit.
"""

from flask import Blueprint

permissions_bp = Blueprint("permissions", __name__)

from . import views
