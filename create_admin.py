#!/usr/bin/env python3
"""Create (or reset) the superadmin account and make sure seed data exists."""

import os
import sys

from app import create_app
from utilities.database import db
from utilities.seed import create_superadmin, seed_all


def create_admin_account(email: str, password: str):
    """Seed permissions/roles/SLA defaults, then create or reset the superadmin."""
    app = create_app()
    with app.app_context():
        seed_all()
        admin = create_superadmin(email, password)
        db.session.commit()

        print("[OK] Superadmin account is ready")
        print(f"  Name: {admin.full_name}")
        print(f"  Email: {admin.email}")
        print(f"  Role: {admin.role}")
        print(f"  User ID: {admin.id}")
        return admin


if __name__ == "__main__":
    email = sys.argv[1] if len(sys.argv) > 1 else os.getenv("ADMIN_EMAIL", "admin@example.com")
    password = sys.argv[2] if len(sys.argv) > 2 else os.getenv("ADMIN_PASSWORD")
    if not password:
        print("[ERROR] Pass a password as the second argument or set ADMIN_PASSWORD")
        sys.exit(1)
    create_admin_account(email, password)
