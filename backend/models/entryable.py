"""Entry kinds and the registry of per-kind behavior.

An Entry is a tagged union: ``Entry.kind`` names the variant and exactly one
payload row (transaction, trade or valuation) hangs off the entry. Adding a
kind means adding an EntryKind member, a payload model and one registry row.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum


class EntryKind(str, Enum):
    """The closed set of ledger line kinds."""

    TRANSACTION = "transaction"
    TRADE = "trade"
    VALUATION = "valuation"


@dataclass(frozen=True)
class EntryableType:
    """Per-kind behavior for an entry payload."""

    kind: EntryKind
    attribute: str  # relationship on Entry that holds the payload
    label: str  # human-readable type name used in error messages
    default_name: str


def build_trade_name(trade_type: str, quantity, ticker: str) -> str:
    """Build a display name such as ``"Buy 10 shares of AAPL"``."""
    qty = abs(Decimal(str(quantity))).normalize()
    return f"{trade_type.capitalize()} {qty:f} shares of {ticker}"


ENTRYABLE_TYPES: dict[EntryKind, EntryableType] = {
    EntryKind.TRANSACTION: EntryableType(
        kind=EntryKind.TRANSACTION,
        attribute="transaction",
        label="Transaction",
        default_name="Transaction",
    ),
    EntryKind.TRADE: EntryableType(
        kind=EntryKind.TRADE,
        attribute="trade",
        label="Trade",
        default_name="Trade",
    ),
    EntryKind.VALUATION: EntryableType(
        kind=EntryKind.VALUATION,
        attribute="valuation",
        label="Valuation",
        default_name="Balance update",
    ),
}


def entryable_type_for(kind: EntryKind | str) -> EntryableType:
    """Look up the registry row for a kind.

    Raises:
        ValueError: If ``kind`` is not a known entry kind.
    """
    return ENTRYABLE_TYPES[EntryKind(kind)]
