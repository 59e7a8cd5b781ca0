#!/usr/bin/env python
"""Reconcile pending transactions against their posted versions.

Handles duplicates left behind by syncs that ran before reconciliation was
part of every sync, or after a provider changed its transaction IDs.
Exact matches exclude the pending entry; tip-adjusted matches are stored
as suggestions for the user to merge or dismiss.

Usage:
    python -m scripts.reconcile_pending
    python -m scripts.reconcile_pending --dry-run
    python -m scripts.reconcile_pending --account-id <id> --exclude-stale
"""

import argparse
from datetime import date, timedelta

from sqlalchemy.orm import Session

from config import settings
from database import get_session_local
from logging_config import setup_logging
from models import Account, Entry
from services.entry_reconciliation_service import EntryReconciliationService


def reconcile_pending(
    account_id: str | None = None,
    dry_run: bool = False,
    date_window: int | None = None,
    tolerance: float | None = None,
    exclude_stale: bool = False,
    db: Session | None = None,
) -> dict:
    """Run stale cleanup (optional) and pending reconciliation, print a report.

    Commits unless ``dry_run``. When ``db`` is given the caller owns the
    session and it is left open.

    Returns:
        The reconciliation report as a dict, plus ``stale_excluded``.
    """
    owns_session = db is None
    if owns_session:
        db = get_session_local()()

    try:
        account = None
        if account_id:
            account = db.get(Account, account_id)
            if account is None:
                raise SystemExit(f"Account not found: {account_id}")

        stale_excluded = 0
        if exclude_stale:
            accounts = [account] if account else db.query(Account).all()
            for acct in accounts:
                if not acct.is_syncable:
                    continue
                if dry_run:
                    cutoff = date.today() - timedelta(days=settings.STALE_PENDING_DAYS)
                    stale = (
                        EntryReconciliationService.pending_entries_query(db, acct)
                        .filter(Entry.date < cutoff)
                        .count()
                    )
                    print(f"[DRY RUN] {acct.name}: would exclude {stale} stale pending entries")
                    continue
                stale_excluded += EntryReconciliationService.auto_exclude_stale_pending(db, acct)

        report = EntryReconciliationService.reconcile_pending_duplicates(
            db,
            account=account,
            dry_run=dry_run,
            date_window=date_window,
            amount_tolerance=tolerance,
        )

        prefix = "[DRY RUN] Would reconcile" if dry_run else "Reconciled"
        for detail in report.details:
            print(
                f"  {prefix} ({detail['match_type']}): "
                f"{detail['pending_name']} {detail['pending_amount']:.2f} on {detail['pending_date']} "
                f"-> {detail['posted_name']} {detail['posted_amount']:.2f} on {detail['posted_date']} "
                f"[{detail['account']}]"
            )
        for error in report.errors:
            print(f"  Error: {error}")

        if not dry_run:
            db.commit()
            print("\nReconciliation complete!")
        else:
            print("\n[DRY RUN] No changes made. Run without --dry-run to apply.")

        print("\nSummary:")
        print(f"  Pending checked: {report.checked}")
        print(f"  Exact matches excluded: {report.reconciled}")
        print(f"  Fuzzy suggestions: {report.suggested}")
        if exclude_stale:
            print(f"  Stale pending excluded: {stale_excluded}")

        result = report.as_dict()
        result["stale_excluded"] = stale_excluded
        return result

    except Exception as e:
        db.rollback()
        print(f"Error: {e}")
        raise
    finally:
        if owns_session:
            db.close()


def main(argv: list[str] | None = None) -> dict:
    parser = argparse.ArgumentParser(
        description="Reconcile pending transactions with their posted duplicates"
    )
    parser.add_argument("--account-id", help="Only reconcile this account")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be reconciled without making changes",
    )
    parser.add_argument(
        "--date-window",
        type=int,
        default=None,
        help="Days after the pending date to search for an exact match (default: 8)",
    )
    parser.add_argument(
        "--tolerance",
        type=float,
        default=None,
        help="Fuzzy amount tolerance as a fraction, e.g. 0.25 for tips (default: 0.25)",
    )
    parser.add_argument(
        "--exclude-stale",
        action="store_true",
        help="Also exclude pending transactions older than STALE_PENDING_DAYS",
    )
    args = parser.parse_args(argv)

    setup_logging()
    return reconcile_pending(
        account_id=args.account_id,
        dry_run=args.dry_run,
        date_window=args.date_window,
        tolerance=args.tolerance,
        exclude_stale=args.exclude_stale,
    )


if __name__ == "__main__":
    main()
