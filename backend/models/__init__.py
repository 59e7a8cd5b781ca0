"""SQLAlchemy ORM models."""

from .account import Account
from .account_provider import AccountProvider
from .category import Category
from .entry import Entry
from .entryable import EntryKind
from .holding import Holding
from .merchant import ProviderMerchant
from .security import Security
from .sync_log import SyncLogEntry
from .trade import Trade
from .transaction import Transaction
from .valuation import Valuation
from .utils import generate_uuid

__all__ = ["Account", "AccountProvider", "Category", "Entry", "EntryKind", "Holding", "ProviderMerchant", "Security", "SyncLogEntry", "Trade", "Transaction", "Valuation", "generate_uuid"]
