"""
Auto-approve shipments whose approval deadline has passed.

Any generator or recycler approval still pending after AUTO_APPROVAL_HOURS is
marked approved and the parties are notified. Meant to run from cron:

  */15 * * * * cd /srv/wastetrack && python scripts/auto_approve_shipments.py

Usage:
  python scripts/auto_approve_shipments.py
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()

from wastetrack.db import SessionLocal
from wastetrack.logging import setup_logging
from wastetrack.services.shipments import auto_approve_expired_shipments


def main():
    setup_logging()
    db = SessionLocal()
    try:
        count = auto_approve_expired_shipments(db)
        print(f"Auto-approved {count} shipment(s)")
    finally:
        db.close()


if __name__ == "__main__":
    main()
