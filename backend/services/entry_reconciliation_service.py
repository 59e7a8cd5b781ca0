"""Pending/posted reconciliation for provider-imported transactions.

Providers report a card authorization as a pending transaction and later
report the settled charge as a separate posted transaction with its own ID.
This service removes the resulting double counting:

- Stage A excludes pending entries that never posted.
- Stage B excludes a pending entry when exactly one posted twin exists.
- Stage C records a duplicate *suggestion* for tip-adjusted amounts; only a
  user acts on it (merge, dismiss, clear).
"""

import copy
import logging
import re
import threading
import time
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy.orm import Session

from config import settings
from models import Account, Entry, Transaction
from models.account import SYNCABLE_STATUSES
from models.transaction import POTENTIAL_MATCH_KEY
from services.exceptions import ReconciliationCancelled

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")


def normalized_name_prefix(name: str | None, words: int = 3) -> str:
    """Lowercase, strip everything but ``[a-z0-9\\s]`` and keep the first words.

    ``"STARBUCKS #123, Seattle"`` -> ``"starbucks 123 seattle"``
    """
    cleaned = _NON_ALNUM.sub("", (name or "").lower())
    return " ".join(cleaned.split()[:words])


@dataclass
class ReconciliationReport:
    """Outcome of one reconciliation batch."""

    checked: int = 0
    reconciled: int = 0
    suggested: int = 0
    details: list[dict] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    cancelled: bool = False

    def as_dict(self) -> dict:
        return {
            "checked": self.checked,
            "reconciled": self.reconciled,
            "suggested": self.suggested,
            "details": self.details,
            "errors": self.errors,
            "cancelled": self.cancelled,
        }


class EntryReconciliationService:
    """Excludes stale or duplicated pending entries and manages duplicate suggestions."""

    @staticmethod
    def pending_entries_query(db: Session, account: Account | None = None):
        """Non-excluded pending transaction entries, oldest first.

        Without an account, every syncable account is included.
        """
        query = (
            db.query(Entry)
            .join(Transaction, Transaction.entry_id == Entry.id)
            .filter(Transaction.pending.is_(True), Entry.excluded.is_(False))
        )
        if account is not None:
            query = query.filter(Entry.account_id == account.id)
        else:
            query = query.join(Account, Account.id == Entry.account_id).filter(
                Account.status.in_(SYNCABLE_STATUSES)
            )
        return query.order_by(Entry.date.asc(), Entry.created_at.asc())

    @staticmethod
    def auto_exclude_stale_pending(
        db: Session,
        account: Account,
        days: int | None = None,
        today: date | None = None,
    ) -> int:
        """Exclude pending entries that never posted.

        An entry is stale when its date is strictly before ``today - days``;
        an entry exactly ``days`` old is kept.

        Returns:
            Number of entries excluded.
        """
        days = settings.STALE_PENDING_DAYS if days is None else days
        cutoff = (today or date.today()) - timedelta(days=days)

        stale = (
            EntryReconciliationService.pending_entries_query(db, account)
            .filter(Entry.date < cutoff)
            .all()
        )
        for entry in stale:
            entry.excluded = True

        if stale:
            db.flush()
            logger.info(
                "Auto-excluded %d stale pending transaction(s) for account %s (%s)",
                len(stale), account.id, account.name,
            )
        return len(stale)

    @staticmethod
    def reconcile_pending_duplicates(
        db: Session,
        account: Account | None = None,
        dry_run: bool = False,
        date_window: int | None = None,
        amount_tolerance: float | None = None,
        cancel_event: threading.Event | None = None,
        timeout: float | None = None,
        today: date | None = None,
    ) -> ReconciliationReport:
        """Match pending entries against their posted versions.

        Each pending entry is handled in its own savepoint, so a failure on one
        record is logged and recorded without undoing the others. The batch
        stops between records once ``cancel_event`` is set or ``timeout``
        seconds have elapsed.

        Args:
            db: Database session
            account: Limit to one account; None means every syncable account
            dry_run: Report matches without writing anything
            date_window: Days after the pending date to look for an exact match
            amount_tolerance: Relative widening of the fuzzy amount band
            cancel_event: Cooperative cancellation signal
            timeout: Seconds after which the batch stops
            today: Date stamped on new suggestions

        Returns:
            ReconciliationReport with one detail per match.
        """
        date_window = settings.PENDING_DATE_WINDOW_DAYS if date_window is None else date_window
        if amount_tolerance is None:
            amount_tolerance = settings.FUZZY_AMOUNT_TOLERANCE
        if timeout is None:
            timeout = settings.RECONCILE_TIMEOUT_SECONDS
        deadline = time.monotonic() + timeout if timeout is not None else None
        tolerance = Decimal(str(amount_tolerance))
        today = today or date.today()

        report = ReconciliationReport()
        pending_entries = EntryReconciliationService.pending_entries_query(db, account).all()

        for pending in pending_entries:
            try:
                _check_cancelled(cancel_event, deadline)
            except ReconciliationCancelled as e:
                report.cancelled = True
                logger.warning(
                    "Pending reconciliation stopped after %d of %d entries: %s",
                    report.checked, len(pending_entries), e,
                )
                break

            report.checked += 1
            pending_id = pending.id
            try:
                with db.begin_nested():
                    _reconcile_entry(db, pending, report, dry_run, date_window, tolerance, today)
            except Exception as e:
                report.errors.append(f"{pending_id}: {e}")
                logger.warning("Failed to reconcile pending entry %s: %s", pending_id, e)

        logger.info(
            "Pending reconciliation%s: checked=%d reconciled=%d suggested=%d errors=%d",
            " (dry run)" if dry_run else "",
            report.checked, report.reconciled, report.suggested, len(report.errors),
        )
        return report

    @staticmethod
    def merge_with_duplicate(db: Session, transaction: Transaction) -> bool:
        """Delete the pending entry in favour of its suggested posted twin.

        Returns:
            False if there is no undismissed suggestion or its target is gone.
        """
        if not transaction.has_potential_duplicate:
            return False

        posted = db.get(Entry, transaction.potential_duplicate_entry_id)
        if posted is None:
            return False

        pending_entry = transaction.entry
        pending_id, pending_name = pending_entry.id, pending_entry.name
        db.delete(pending_entry)
        db.flush()

        logger.info(
            "User merged pending entry %s (%s) with posted entry %s",
            pending_id, pending_name, posted.id,
        )
        return True

    @staticmethod
    def dismiss_duplicate_suggestion(db: Session, transaction: Transaction) -> bool:
        """Mark the suggestion dismissed so it is not surfaced again."""
        if transaction.potential_posted_match is None:
            return False

        extra = copy.deepcopy(transaction.extra)
        extra[POTENTIAL_MATCH_KEY]["dismissed"] = True
        transaction.extra = extra
        db.flush()

        logger.info("User dismissed duplicate suggestion for entry %s", transaction.entry_id)
        return True

    @staticmethod
    def clear_duplicate_suggestion(db: Session, transaction: Transaction) -> bool:
        """Remove the suggestion annotation entirely."""
        if transaction.potential_posted_match is None:
            return False

        extra = copy.deepcopy(transaction.extra)
        extra.pop(POTENTIAL_MATCH_KEY, None)
        transaction.extra = extra
        db.flush()
        return True


def _check_cancelled(cancel_event: threading.Event | None, deadline: float | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise ReconciliationCancelled("cancel requested")
    if deadline is not None and time.monotonic() >= deadline:
        raise ReconciliationCancelled("timeout reached")


def _posted_candidates(db: Session, pending: Entry, window_days: int) -> list[Entry]:
    """Non-pending transaction entries in the same account and currency dated on
    or up to ``window_days`` after the pending entry. Never earlier."""
    return (
        db.query(Entry)
        .join(Transaction, Transaction.entry_id == Entry.id)
        .filter(
            Entry.account_id == pending.account_id,
            Entry.id != pending.id,
            Entry.currency == pending.currency,
            Entry.date >= pending.date,
            Entry.date <= pending.date + timedelta(days=window_days),
            Transaction.pending.is_(False),
        )
        .order_by(Entry.date.asc(), Entry.created_at.asc())
        .all()
    )


def _match_detail(pending: Entry, posted: Entry, match_type: str) -> dict:
    return {
        "pending_id": pending.id,
        "pending_name": pending.name,
        "pending_amount": float(pending.amount),
        "pending_date": pending.date,
        "posted_id": posted.id,
        "posted_name": posted.name,
        "posted_amount": float(posted.amount),
        "posted_date": posted.date,
        "account": pending.account.name,
        "match_type": match_type,
    }


def _reconcile_entry(
    db: Session,
    pending: Entry,
    report: ReconciliationReport,
    dry_run: bool,
    date_window: int,
    tolerance: Decimal,
    today: date,
) -> None:
    # Exact: identical amount, forward window; only a single candidate counts
    exact = [
        c for c in _posted_candidates(db, pending, date_window)
        if c.amount == pending.amount
    ]
    if len(exact) == 1:
        posted = exact[0]
        report.details.append(_match_detail(pending, posted, "exact"))
        report.reconciled += 1
        if not dry_run:
            pending.excluded = True
            db.flush()
            logger.info(
                "Reconciled pending->posted duplicate: excluded entry %s (%s) matched to %s",
                pending.id, pending.name, posted.id,
            )
        return

    # Fuzzy: tip-sized amount band, short window, same leading words
    name_words = normalized_name_prefix(pending.name)
    if not name_words:
        return

    low = abs(pending.amount)
    high = low * (1 + tolerance)
    fuzzy = [
        c for c in _posted_candidates(db, pending, settings.FUZZY_DATE_WINDOW_DAYS)
        if low <= abs(c.amount) <= high and normalized_name_prefix(c.name) == name_words
    ]

    if len(fuzzy) > 1:
        logger.info(
            "Skipping fuzzy reconciliation for %s (%s): %d ambiguous candidates",
            pending.id, pending.name, len(fuzzy),
        )
        return
    if not fuzzy:
        return

    posted = fuzzy[0]
    report.details.append(_match_detail(pending, posted, "fuzzy_suggestion"))
    report.suggested += 1
    if dry_run:
        return

    transaction = pending.transaction
    if transaction.potential_posted_match is not None:
        return

    extra = dict(transaction.extra or {})
    extra[POTENTIAL_MATCH_KEY] = {
        "entry_id": posted.id,
        "reason": "fuzzy_amount_match",
        "posted_amount": str(posted.amount),
        "detected_at": today.isoformat(),
    }
    transaction.extra = extra
    db.flush()
    logger.info(
        "Stored duplicate suggestion for entry %s (%s) -> %s",
        pending.id, pending.name, posted.id,
    )
