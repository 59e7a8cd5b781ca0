"""Investment activity detector - spots internal buys and sells between syncs.

Compares the holdings reported now against the snapshot cached on the
account at the end of the previous pass. A position that appeared, grew,
shrank or vanished explains a cash movement inside the account, so the
matching transaction is excluded from cash flow and labeled Buy or Sell.
Works for any provider: holdings arrive already normalized to
``HoldingSnapshot``.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.orm import Session

from integrations.normalizers import normalize_snapshot_row
from integrations.provider_protocol import HoldingSnapshot
from models import Account, Entry

logger = logging.getLogger(__name__)

AMOUNT_MATCH_TOLERANCE = Decimal("0.01")
DESCRIPTION_MATCH_WORDS = 3


@dataclass
class HoldingChange:
    """One position change between the cached and the current holdings."""

    change_type: str  # "buy" | "sell"
    symbol: str | None
    description: str | None
    shares: Decimal | None = None  # new or vanished position
    shares_delta: Decimal | None = None  # grown or shrunk position
    cost_basis: Decimal | None = None
    cost_basis_delta: Decimal | None = None

    @property
    def label(self) -> str:
        return "Buy" if self.change_type == "buy" else "Sell"


@dataclass
class ActivityMatch:
    """A holdings change explained by a transaction entry."""

    entry_id: str
    change: HoldingChange
    excluded_from_cashflow: bool  # False when the user had locked the flag
    label: str | None


class InvestmentActivityDetector:
    """Marks transactions explained by holdings changes as internal activity.

    Example:
        detector = InvestmentActivityDetector(db, account)
        detector.detect_and_mark_internal_activity(snapshots, recent_entries)
    """

    def __init__(self, db: Session, account: Account):
        self.db = db
        self.account = account

    def detect_and_mark_internal_activity(
        self,
        current_holdings: list[HoldingSnapshot],
        recent_entries: list[Entry],
    ) -> list[ActivityMatch]:
        """Diff holdings, mark the matching entries and refresh the cached snapshot.

        Args:
            current_holdings: Holdings reported by the provider in this sync
            recent_entries: Recently imported transaction entries,
                walked in order; the first match for each change wins

        Returns:
            The matches applied. Empty when the account is not an investment
            or crypto account, or no holdings were reported.
        """
        if not self.account.is_investment:
            return []
        if not current_holdings:
            return []

        previous = [
            normalize_snapshot_row(row)
            for row in (self.account.holdings_snapshot_data or [])
        ]
        changes = detect_holdings_changes(previous, current_holdings)

        matches = []
        for change in changes:
            entry = find_matching_entry(change, recent_entries)
            if entry is None:
                continue
            matches.append(self._mark_entry(entry, change))

        self._save_snapshot(current_holdings)
        self.db.flush()

        if matches:
            logger.info(
                "Detected %d internal investment activities for account %s (%d holdings changes)",
                len(matches), self.account.name, len(changes),
            )
        return matches

    def _mark_entry(self, entry: Entry, change: HoldingChange) -> ActivityMatch:
        excluded = False
        if not entry.is_locked("exclude_from_cashflow"):
            entry.exclude_from_cashflow = True
            entry.lock_attr("exclude_from_cashflow")
            excluded = True
            logger.info(
                "Auto-excluded entry %s (%s) as internal %s of %s",
                entry.id, entry.name, change.change_type, change.symbol or change.description,
            )

        label = None
        transaction = entry.transaction
        if transaction is not None:
            if not transaction.investment_activity_label:
                transaction.investment_activity_label = change.label
            label = transaction.investment_activity_label

        return ActivityMatch(
            entry_id=entry.id,
            change=change,
            excluded_from_cashflow=excluded,
            label=label,
        )

    def _save_snapshot(self, holdings: list[HoldingSnapshot]) -> None:
        # Replaced wholesale so a replay with the same holdings converges
        self.account.holdings_snapshot_data = [h.to_cache_row() for h in holdings]
        self.account.holdings_snapshot_at = datetime.now(timezone.utc)


def _find_previous(previous: list[HoldingSnapshot], current: HoldingSnapshot) -> HoldingSnapshot | None:
    if current.symbol:
        return next((p for p in previous if p.symbol == current.symbol), None)
    if current.description:
        return next((p for p in previous if p.description == current.description), None)
    return None


def _same_holding(current: HoldingSnapshot, previous: HoldingSnapshot) -> bool:
    if current.symbol and previous.symbol:
        return current.symbol == previous.symbol
    return current.description == previous.description


def detect_holdings_changes(
    previous: list[HoldingSnapshot],
    current: list[HoldingSnapshot],
) -> list[HoldingChange]:
    """Classify each position as new, grown, shrunk or vanished.

    Positions are identified by symbol, falling back to description.
    Unchanged positions produce nothing.
    """
    changes = []

    for holding in current:
        prev = _find_previous(previous, holding)
        if prev is None:
            changes.append(HoldingChange(
                change_type="buy",
                symbol=holding.symbol,
                description=holding.description,
                shares=holding.shares,
                cost_basis=holding.cost_basis,
            ))
        elif holding.shares > prev.shares:
            changes.append(HoldingChange(
                change_type="buy",
                symbol=holding.symbol,
                description=holding.description,
                shares_delta=holding.shares - prev.shares,
                cost_basis_delta=holding.cost_basis - prev.cost_basis,
            ))
        elif holding.shares < prev.shares:
            changes.append(HoldingChange(
                change_type="sell",
                symbol=holding.symbol,
                description=holding.description,
                shares_delta=prev.shares - holding.shares,
            ))

    for prev in previous:
        if not any(_same_holding(h, prev) for h in current):
            changes.append(HoldingChange(
                change_type="sell",
                symbol=prev.symbol,
                description=prev.description,
                shares=prev.shares,
            ))

    return changes


def _amount_close(entry: Entry, target: Decimal | None) -> bool:
    if target is None or target <= 0:
        return False
    return abs(abs(Decimal(entry.amount)) - abs(target)) < AMOUNT_MATCH_TOLERANCE


def find_matching_entry(change: HoldingChange, recent_entries: list[Entry]) -> Entry | None:
    """Return the first entry that explains ``change``.

    Entries already excluded from cash flow are skipped. Within one entry the
    checks run in order: cost basis, cost-basis delta, symbol in the name,
    leading description words in the name.
    """
    desc_words = None
    if change.description:
        desc_words = " ".join(change.description.lower().split()[:DESCRIPTION_MATCH_WORDS])

    for entry in recent_entries:
        if entry.exclude_from_cashflow:
            continue

        if _amount_close(entry, change.cost_basis):
            return entry
        if _amount_close(entry, change.cost_basis_delta):
            return entry

        entry_desc = (entry.name or "").lower()
        if change.symbol and change.symbol.lower() in entry_desc:
            return entry
        if desc_words and desc_words in entry_desc:
            return entry

    return None
