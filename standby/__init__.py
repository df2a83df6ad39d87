"""
Standby asset pool and the loan/return/make-permanent workflow.
"""

from flask import Blueprint

standby_bp = Blueprint("standby", __name__)

from . import views
