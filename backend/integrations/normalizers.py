"""Per-provider normalization of raw payloads into ledger records.

Each provider gets one explicit function here. Downstream services only ever
see ``ProviderHolding`` / ``HoldingSnapshot`` and the ``pending`` projection.
"""

import hashlib
import logging
import re
from datetime import date
from decimal import Decimal

from integrations.parsing_utils import parse_bool, parse_date, parse_decimal
from integrations.provider_protocol import HoldingSnapshot, ProviderHolding
from integrations.provider_registry import get_provider_registry

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")


def pending_from_extra(extra: dict | None) -> bool:
    """Project provider-specific metadata onto a single pending flag.

    Providers store pending status at ``extra[<provider_type>]["pending"]``
    for every provider type registered as reporting pending.
    """
    if not isinstance(extra, dict):
        return False
    for provider_type in get_provider_registry().pending_provider_types():
        section = extra.get(provider_type)
        if isinstance(section, dict) and parse_bool(section.get("pending")):
            return True
    return False


def _first_present(raw: dict, keys: list[str]):
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return None


def synthetic_ticker(description: str) -> str:
    """Build a stable ticker for a position that has no symbol.

    ``"Target Date 2045 Fund"`` becomes ``"CUSTOM:TARGET_DATE_2045_FUND_<HASH>"``;
    the hash suffix keeps similar descriptions apart.
    """
    normalized = re.sub(r"[^a-zA-Z0-9]", "_", description).upper()[:24]
    suffix = hashlib.md5(description.encode("utf-8")).hexdigest()[:5].upper()
    return f"CUSTOM:{normalized}_{suffix}"


def normalize_simplefin_holding(raw: dict, default_currency: str = "USD") -> ProviderHolding | None:
    """Normalize one SimpleFIN holding.

    Returns None for holdings without an ID, without any way to identify the
    security, or with zero quantity and zero value.
    """
    holding_id = raw.get("id")
    if not holding_id:
        logger.debug("SimpleFIN holding skipped: missing id")
        return None

    description = str(raw.get("description") or "").strip()
    symbol = (raw.get("symbol") or "").strip()
    if not symbol and description:
        symbol = synthetic_ticker(description)
        logger.info(
            "SimpleFIN: using synthetic ticker %s for holding %s (%s)",
            symbol, holding_id, description,
        )
    if not symbol:
        logger.debug("SimpleFIN holding %s skipped: no symbol or description", holding_id)
        return None

    qty = parse_decimal(_first_present(raw, ["shares", "quantity", "qty", "units"])) or _ZERO
    market_value = parse_decimal(
        _first_present(raw, ["market_value", "value", "current_value"])
    ) or _ZERO
    cost_basis = parse_decimal(_first_present(raw, ["cost_basis", "basis", "total_cost"]))
    fallback_price = parse_decimal(
        _first_present(raw, ["purchase_price", "price", "unit_price", "average_cost", "avg_cost"])
    )

    if qty > 0 and market_value > 0:
        price = market_value / qty
    else:
        price = fallback_price or _ZERO

    if market_value > 0:
        amount = market_value
    elif qty > 0 and price > 0:
        amount = qty * price
    else:
        amount = _ZERO

    if qty == 0 and amount == 0:
        return None

    return ProviderHolding(
        symbol=symbol,
        quantity=qty,
        price=price,
        market_value=amount,
        currency=raw.get("currency") or default_currency,
        # SimpleFIN holdings describe the current position, so the batch date applies
        date=None,
        name=description or None,
        cost_basis=cost_basis,
        external_id=f"simplefin_{holding_id}",
    )


def normalize_plaid_holding(
    raw: dict,
    securities: dict[str, dict],
    default_currency: str = "USD",
    today: date | None = None,
) -> ProviderHolding | None:
    """Normalize one Plaid investments holding.

    Args:
        raw: An entry of Plaid's ``holdings`` array.
        securities: Plaid ``securities`` keyed by ``security_id``.
        default_currency: Used when Plaid omits ``iso_currency_code``.
        today: Fallback date when ``institution_price_as_of`` is missing.

    Returns:
        The holding, or None if the security, quantity or price is missing.
    """
    security = securities.get(raw.get("security_id")) or {}
    symbol = security.get("ticker_symbol")
    if not symbol:
        logger.debug("Plaid holding skipped: unresolved security %s", raw.get("security_id"))
        return None

    quantity = parse_decimal(raw.get("quantity"))
    price = parse_decimal(raw.get("institution_price"))
    if quantity is None or price is None:
        return None

    return ProviderHolding(
        symbol=symbol,
        quantity=quantity,
        price=price,
        market_value=quantity * price,
        currency=raw.get("iso_currency_code") or default_currency,
        date=parse_date(raw.get("institution_price_as_of")) or today or date.today(),
        name=security.get("name"),
        cost_basis=parse_decimal(raw.get("cost_basis")),
    )


def normalize_snapshot_row(row: dict) -> HoldingSnapshot:
    """Decode one row of an account's cached holdings snapshot."""
    return HoldingSnapshot(
        symbol=row.get("symbol") or None,
        description=row.get("description") or None,
        shares=parse_decimal(row.get("shares")) or _ZERO,
        cost_basis=parse_decimal(row.get("cost_basis")) or _ZERO,
        market_value=parse_decimal(row.get("market_value")) or _ZERO,
    )
