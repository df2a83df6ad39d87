"""
Asset movement reports across assets, users and locations.
"""

from flask import Blueprint

movements_bp = Blueprint("movements", __name__)

from . import views
