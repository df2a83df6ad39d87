"""
Session authentication: login, logout and the current-user profile.
"""

from flask import Blueprint

auth_bp = Blueprint("auth", __name__)

from . import views
