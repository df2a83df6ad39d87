"""
Read access to the activity log.
"""

from flask import Blueprint

activity_bp = Blueprint("activity", __name__)

from . import views
