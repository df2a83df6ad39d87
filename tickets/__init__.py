"""
Helpdesk tickets: lifecycle, comments, close requests and reopening.
"""

from flask import Blueprint

tickets_bp = Blueprint("tickets", __name__)

from . import views
