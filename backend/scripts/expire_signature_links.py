"""
Expire signature links still awaiting a signature after N days.

The server runs the same job hourly; this script is for one-off runs
(e.g. after changing SIGNATURE_LINK_EXPIRY_DAYS, or when the API is down).

Usage (from backend/):
  python -m scripts.expire_signature_links
  python -m scripts.expire_signature_links --days 14
  python -m scripts.expire_signature_links --dry-run
"""
import asyncio
import argparse
import logging
import sys
from pathlib import Path
from datetime import datetime, timezone, timedelta

sys.path.insert(0, str(Path(__file__).parent.parent))

from database import get_db_context
from services.signing_flow import AWAITING_STATUS_VALUES, SIGNATURE_LINK_EXPIRY_DAYS, expire_stale_links


async def count_stale(db, days: int) -> int:
    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    return await db.invoices.count_documents({
        "signature_status": {"$in": AWAITING_STATUS_VALUES},
        "signature_requested_at": {"$lt": cutoff},
    })


def main():
    parser = argparse.ArgumentParser(description="Expire stale invoice signature links")
    parser.add_argument("--days", type=int, default=SIGNATURE_LINK_EXPIRY_DAYS,
                        help=f"Expire links older than this many days (default {SIGNATURE_LINK_EXPIRY_DAYS})")
    parser.add_argument("--dry-run", action="store_true", help="Only count matching invoices")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    async def _():
        async with get_db_context() as db:
            if args.dry_run:
                n = await count_stale(db, args.days)
                print(f"{n} invoice(s) would be expired")
            else:
                n = await expire_stale_links(args.days, db=db)
                print(f"Expired {n} invoice(s)")
        return 0

    return asyncio.run(_())


if __name__ == "__main__":
    sys.exit(main())
