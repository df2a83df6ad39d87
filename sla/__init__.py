"""
SLA configuration (rules, business hours, holidays) and per-ticket tracking.
"""

from flask import Blueprint

sla_bp = Blueprint("sla", __name__)

from . import views
