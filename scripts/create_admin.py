"""
Create (or re-activate) an administrator account.

Usage:
  python scripts/create_admin.py admin@example.com 'S3cure!Passw0rd'
  python scripts/create_admin.py admin@example.com 'S3cure!Passw0rd' --reset-password
"""

import argparse
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()

from wastetrack.auth.security import get_password_hash
from wastetrack.db import Base, SessionLocal, engine
from wastetrack.models.models import User, utcnow
from wastetrack.seed import ensure_admin
from wastetrack.services.passwords import password_problem


def create_admin(email: str, password: str, reset_password: bool = False):
    problem = password_problem(password)
    if problem:
        print(f"Refusing weak password: {problem}")
        sys.exit(1)

    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        email = email.strip().lower()
        existing = db.query(User).filter(User.email == email).first()
        if existing is None:
            ensure_admin(db, email=email, password=password)
            print(f"Created admin {email}")
            return

        profile = existing.profile
        if profile is None or profile.role != "admin":
            print(f"{email} already exists and is not an admin; leaving it alone")
            sys.exit(1)
        if not profile.is_active:
            profile.is_active = True
            profile.activated_at = utcnow()
            print(f"Re-activated admin {email}")
        if reset_password:
            existing.password_hash = get_password_hash(password)
            print(f"Password reset for {email}")
        db.commit()
    except Exception as e:
        db.rollback()
        print(f"Error creating admin: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create an administrator account")
    parser.add_argument("email")
    parser.add_argument("password")
    parser.add_argument("--reset-password", action="store_true", help="Overwrite the password of an existing admin")
    args = parser.parse_args()
    create_admin(args.email, args.password, reset_password=args.reset_password)
