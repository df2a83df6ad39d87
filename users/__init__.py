"""
User accounts: CRUD, password resets and lockout release.
"""

from flask import Blueprint

users_bp = Blueprint("users", __name__)

from . import views
