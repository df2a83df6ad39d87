"""
Locations (sites, buildings, floors) with an optional parent hierarchy.
"""

from flask import Blueprint

locations_bp = Blueprint("locations", __name__)

from . import views
