"""Keyword rules that label investment-account transactions from their description."""

import logging
from decimal import Decimal

from sqlalchemy.orm import Session

from integrations.parsing_utils import parse_decimal
from models import Account, Entry

logger = logging.getLogger(__name__)

RETIREMENT_INDICATORS = ["401K", "403B", "RETIREMENT", "TOTALSOURCE", "NETBENEFITS"]
RETIREMENT_PHRASES = ["SAVINGS PLAN", "THRIFT PLAN", "PENSION"]

SWEEP_PATTERNS = ["SWEEP", "SETTLEMENT"]
MONEY_MARKET_TICKERS = ["VMFXX", "SPAXX", "FDRXX", "SWVXX", "SPRXX"]
MONEY_MARKET_FUND_PATTERNS = ["MONEY MARKET", *MONEY_MARKET_TICKERS, "VUSXX"]
MONEY_MARKET_INTEREST_LIMIT = Decimal("5")

FUND_PATTERNS = [
    "INDEX", "FUND", "ADMIRAL", "ETF", "SHARES", "TRUST",
    "VANGUARD", "FIDELITY", "SCHWAB", "ISHARES", "SPDR",
    "500 INDEX", "TOTAL MARKET", "GROWTH", "BOND",
]
FUND_TICKERS = [
    "VFIAX", "VTSAX", "VXUS", "VBTLX", "VTIAX", "VTTVX",
    "VTI", "VOO", "VGT", "VIG", "VYM", "VGIT",
    "FXAIX", "FZROX", "FSKAX", "FBALX",
    "SWTSX", "SWPPX", "SCHD", "SCHX",
    "SPY", "QQQ", "IVV", "AGG",
    "IBIT", "GBTC", "ETHE",
]


def is_retirement_plan(account: Account | None) -> bool:
    """True when the account name looks like an employer plan (401k, 403b, ...)."""
    account_name = ((account.name if account else None) or "").upper()
    return any(ind in account_name for ind in RETIREMENT_INDICATORS) or any(
        phrase in account_name for phrase in RETIREMENT_PHRASES
    )


def infer_label_from_description(name: str | None, amount, account: Account | None = None) -> str | None:
    """Infer an investment activity label from a transaction description.

    Rules are checked in priority order; the first hit wins. A positive
    amount is money leaving the account (a purchase), negative is money in.

    Args:
        name: Transaction name/description
        amount: Signed transaction amount
        account: Optional account, used to recognise retirement plans

    Returns:
        One of the activity labels, or None when nothing matches.
    """
    description = (name or "").upper()
    amount = parse_decimal(amount) or Decimal("0")

    # Cash sweeps, but not purchases of a money market fund share class
    money_market_sweep = "MONEY MARKET" in description and "INVESTOR" not in description
    if (
        any(p in description for p in SWEEP_PATTERNS)
        or money_market_sweep
        or description in MONEY_MARKET_TICKERS
    ):
        return "Sweep Out" if amount > 0 else "Sweep In"

    is_money_market_fund = any(p in description for p in MONEY_MARKET_FUND_PATTERNS)
    if is_money_market_fund and abs(amount) < MONEY_MARKET_INTEREST_LIMIT:
        return "Interest"

    # A bare "CASH" inflow is how several brokerages report dividend payouts
    if "DIVIDEND" in description or "DISTRIBUTION" in description or (
        description == "CASH" and amount < 0
    ):
        return "Dividend"

    if "INTEREST" in description:
        return "Interest"

    if "FEE" in description or "CHARGE" in description:
        return "Fee"

    if "REINVEST" in description:
        return "Reinvestment"

    if "EXCHANGE" in description or "CONVERSION" in description:
        return "Exchange"

    if "CONTRIBUTION" in description or "DEPOSIT" in description:
        return "Contribution"

    if "WITHDRAWAL" in description or "DISBURSEMENT" in description:
        return "Withdrawal"

    is_fund_transaction = any(p in description for p in FUND_PATTERNS) or any(
        t in description for t in FUND_TICKERS
    )
    if is_fund_transaction:
        # Payroll contributions show up as inflows buying shares
        if is_retirement_plan(account) and amount < 0:
            return "Contribution"
        return "Buy" if amount > 0 else "Sell"

    return None


def label_entry_from_description(db: Session, entry: Entry) -> str | None:
    """Set the transaction's activity label from its description if it has none.

    Returns:
        The label now on the transaction (existing or inferred), or None.
    """
    transaction = entry.transaction
    if transaction is None:
        return None
    if transaction.investment_activity_label:
        return transaction.investment_activity_label

    label = infer_label_from_description(entry.name, entry.amount, entry.account)
    if label:
        transaction.investment_activity_label = label
        db.flush()
        logger.debug("Labeled entry %s (%s) as %s", entry.id, entry.name, label)
    return label
