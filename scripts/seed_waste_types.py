"""
Seed the default waste types (plastic, paper, metal, glass, organic, electronic, ...).

Usage:
  python scripts/seed_waste_types.py

Idempotent: types that already exist by name are left untouched.
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()

from wastetrack.db import Base, SessionLocal, engine
from wastetrack.services.waste_types import seed_waste_types


def main():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        added = seed_waste_types(db)
        print(f"Seeded {added} waste type(s)")
    except Exception as e:
        db.rollback()
        print(f"Error seeding waste types: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
