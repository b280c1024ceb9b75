"""
Bills late-cancellation charges that were never invoiced.

Meant to run once a day from the platform's scheduler. Uses the same
configuration (.env / environment) as the API unless --db-url is given.

Usage:
    python scripts/process_orphan_charges.py [--dry-run] [--db-url postgresql://...]
"""

import sys
import asyncio
import argparse
from pathlib import Path

# --- Path Setup ---
PROJECT_ROOT = Path(__file__).resolve().parent.parent
SRC_DIR = PROJECT_ROOT / 'src'
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from tutorflow_backend.database import engine as db_engine
from tutorflow_backend.services.billing_service import BillingService
from tutorflow_backend.services.policy_service import CancellationPolicyService
from tutorflow_backend.services.user_service import UserService
from tutorflow_backend.common.logger import log


async def run(dry_run: bool, db_url: str | None) -> int:
    if db_url and db_url.startswith("postgresql://"):
        db_url = db_url.replace("postgresql://", "postgresql+asyncpg://")

    db_engine.create_db_engine_and_session_factory(db_url)
    try:
        async with db_engine.session_scope(commit=not dry_run) as session:
            billing_service = BillingService(session, CancellationPolicyService(session, UserService(session)))
            summary = await billing_service.process_orphan_cancellation_charges()

        if dry_run:
            print("Dry run, nothing was committed.")
        print(summary.message)
        for invoice_id in summary.invoice_ids:
            print(f"  invoice {invoice_id}")
        return 0
    except Exception as e:
        log.critical(f"Orphan charges job failed: {e}", exc_info=True)
        return 1
    finally:
        await db_engine.dispose_db_engine()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Invoice unbilled late-cancellation charges.")
    parser.add_argument("--dry-run", action="store_true", help="Compute the invoices but do not commit them")
    parser.add_argument("--db-url", help="Database URL overriding the configured one")
    args = parser.parse_args()
    sys.exit(asyncio.run(run(args.dry_run, args.db_url)))
