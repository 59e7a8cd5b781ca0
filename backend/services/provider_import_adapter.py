"""Provider import adapter - turns normalized provider records into ledger rows.

Every import is keyed by a stable identity so it can be re-run on each sync:
entries by (account, source, external_id), holdings by external_id first and
then by (security, date, currency). Holdings also carry an ownership token
(the AccountProvider that created them) which decides whether a provider may
touch a row another provider already wrote.
"""

import logging
import warnings
from dataclasses import dataclass
from datetime import date as date_type
from decimal import Decimal
from enum import Enum

from sqlalchemy.orm import Session

from config import settings
from integrations.normalizers import pending_from_extra
from integrations.parsing_utils import parse_date, parse_decimal
from models import (
    Account,
    Category,
    Entry,
    EntryKind,
    Holding,
    ProviderMerchant,
    Security,
)
from models.entryable import build_trade_name
from services.exceptions import (
    EntryTypeCollisionError,
    HoldingOwnershipConflictWarning,
    ImportValidationError,
)

logger = logging.getLogger(__name__)


class ConflictPolicy(str, Enum):
    """What to do when a holding's composite key is owned by another provider."""

    DROP_SILENTLY = "drop_silently"  # keep the foreign row, log only
    RAISE_VISIBLE_WARNING = "raise_visible_warning"  # keep the foreign row, warnings.warn
    OVERWRITE = "overwrite"  # apply the data and take ownership


@dataclass
class HoldingConflict:
    """A holding import that collided with a row owned by another provider."""

    holding_id: str
    security_id: str
    date: date_type
    currency: str
    owner_account_provider_id: str | None
    importer_account_provider_id: str | None
    external_id: str | None
    policy: ConflictPolicy


def _deep_merge(base: dict, incoming: dict) -> dict:
    merged = dict(base)
    for key, value in incoming.items():
        key = str(key)
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ProviderImportAdapter:
    """Imports provider transactions, trades, holdings and balances into one account."""

    def __init__(
        self,
        db: Session,
        account: Account,
        conflict_policy: ConflictPolicy | str | None = None,
    ):
        """Bind the adapter to an account.

        Args:
            db: Database session. The adapter flushes; the caller commits.
            account: The account every import targets.
            conflict_policy: Default holding conflict policy. Falls back to
                settings.HOLDING_CONFLICT_POLICY.
        """
        self.db = db
        self.account = account
        self.conflict_policy = ConflictPolicy(
            conflict_policy or settings.HOLDING_CONFLICT_POLICY
        )
        self.conflicts: list[HoldingConflict] = []

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def import_transaction(
        self,
        *,
        external_id: str,
        amount,
        currency: str,
        date,
        name: str,
        source: str,
        category_id: str | None = None,
        category_name: str | None = None,
        merchant: ProviderMerchant | None = None,
        notes: str | None = None,
        extra: dict | None = None,
    ) -> Entry:
        """Create or update the transaction entry for (account, source, external_id).

        Raises:
            ImportValidationError: external_id or source is blank, or amount/date
                cannot be parsed.
            EntryTypeCollisionError: The key already belongs to a non-transaction entry.
        """
        self._require(external_id, "external_id", source)
        self._require(source, "source", source)
        amount = self._to_decimal(amount, "amount", source)
        entry_date = self._to_date(date, source)

        entry = self._find_entry(source, external_id)
        if entry is not None:
            self._ensure_kind(entry, EntryKind.TRANSACTION, external_id, source)
        else:
            # A manual or file-imported copy of this transaction may predate the
            # provider link; claim it instead of creating a second row.
            entry = self.find_duplicate_transaction(
                date=entry_date, amount=amount, currency=currency
            )
            if entry is not None:
                logger.info(
                    "Claimed unlinked entry %s for %s transaction %s",
                    entry.id, source, external_id,
                )
                entry.external_id = external_id
                entry.source = source
            else:
                entry = Entry.build(
                    EntryKind.TRANSACTION,
                    account_id=self.account.id,
                    external_id=external_id,
                    source=source,
                    name=name,
                    date=entry_date,
                    amount=amount,
                    currency=currency,
                )
                self.db.add(entry)

        entry.amount = amount
        entry.currency = currency
        entry.date = entry_date
        entry.enrich_attribute("name", name)
        if notes:
            entry.enrich_attribute("notes", notes)

        transaction = entry.transaction
        if category_id is None and category_name:
            category = self.find_or_create_category(category_name)
            category_id = category.id if category else None
        if category_id:
            transaction.enrich_attribute("category_id", category_id)
        if merchant is not None:
            transaction.enrich_attribute("merchant_id", merchant.id)

        if extra:
            transaction.extra = _deep_merge(transaction.extra or {}, extra)
        transaction.pending = pending_from_extra(transaction.extra)

        self.db.flush()
        return entry

    def find_duplicate_transaction(
        self,
        *,
        date,
        amount,
        currency: str,
        name: str | None = None,
        exclude_entry_ids=None,
    ) -> Entry | None:
        """Find an unlinked (manual or file-imported) transaction matching exactly.

        Matches on date, amount and currency, optionally name, among
        transaction entries without an external_id. Oldest first.
        """
        query = (
            self.db.query(Entry)
            .filter(
                Entry.account_id == self.account.id,
                Entry.kind == EntryKind.TRANSACTION.value,
                Entry.date == self._to_date(date, ""),
                Entry.amount == self._to_decimal(amount, "amount", ""),
                Entry.currency == currency,
                Entry.external_id.is_(None),
            )
        )
        if name:
            query = query.filter(Entry.name == name)
        if exclude_entry_ids:
            query = query.filter(Entry.id.notin_(list(exclude_entry_ids)))
        return query.order_by(Entry.created_at.asc()).first()

    def find_or_create_merchant(
        self,
        *,
        provider_merchant_id: str | None,
        name: str | None,
        source: str,
        website_url: str | None = None,
        logo_url: str | None = None,
    ) -> ProviderMerchant | None:
        """Find or create a provider merchant; None when id or name is missing."""
        if not provider_merchant_id or not name:
            return None

        merchant = (
            self.db.query(ProviderMerchant)
            .filter_by(source=source, provider_merchant_id=provider_merchant_id)
            .first()
        )
        if merchant is None:
            merchant = ProviderMerchant(
                source=source,
                provider_merchant_id=provider_merchant_id,
                name=name,
                website_url=website_url,
                logo_url=logo_url,
            )
            self.db.add(merchant)
            self.db.flush()
            logger.info("Created merchant %s (%s:%s)", name, source, provider_merchant_id)
        return merchant

    def find_or_create_category(self, name: str | None) -> Category | None:
        """Find or create a category by name; None when the name is blank."""
        if not name or not name.strip():
            return None
        name = name.strip()
        category = self.db.query(Category).filter_by(name=name).first()
        if category is None:
            category = Category(name=name)
            self.db.add(category)
            self.db.flush()
            logger.info("Created category: %s", name)
        return category

    # ------------------------------------------------------------------
    # Trades
    # ------------------------------------------------------------------

    def import_trade(
        self,
        *,
        security: Security | None,
        quantity,
        price,
        amount,
        currency: str,
        date,
        source: str,
        name: str | None = None,
        external_id: str | None = None,
    ) -> Entry:
        """Create or update a trade entry.

        With an external_id the trade is keyed by (account, source, external_id);
        without one a new trade entry is always created.

        Raises:
            ImportValidationError: security or source is missing.
            EntryTypeCollisionError: The key already belongs to a non-trade entry.
        """
        if security is None:
            raise ImportValidationError("security is required", source=source or "")
        self._require(source, "source", source)
        quantity = self._to_decimal(quantity, "quantity", source)
        price = self._to_decimal(price, "price", source)
        amount = self._to_decimal(amount, "amount", source)
        entry_date = self._to_date(date, source)

        trade_name = name or build_trade_name(
            "sell" if quantity < 0 else "buy", quantity, security.ticker
        )

        entry = self._find_entry(source, external_id) if external_id else None
        if entry is not None:
            self._ensure_kind(entry, EntryKind.TRADE, external_id, source)
        else:
            entry = Entry.build(
                EntryKind.TRADE,
                account_id=self.account.id,
                external_id=external_id or None,
                source=source,
                name=trade_name,
                date=entry_date,
                amount=amount,
                currency=currency,
            )
            self.db.add(entry)

        trade = entry.trade
        trade.security = security
        trade.qty = quantity
        trade.price = price
        trade.currency = currency

        entry.date = entry_date
        entry.amount = amount
        entry.currency = currency
        entry.name = trade_name

        self.db.flush()
        return entry

    # ------------------------------------------------------------------
    # Holdings
    # ------------------------------------------------------------------

    def import_holding(
        self,
        *,
        security: Security | None,
        quantity,
        amount,
        currency: str,
        date,
        source: str,
        price=None,
        cost_basis=None,
        external_id: str | None = None,
        account_provider_id: str | None = None,
        delete_future_holdings: bool = False,
        conflict_policy: ConflictPolicy | str | None = None,
    ) -> Holding:
        """Create, update or adopt the holding for one position.

        Matching order:
        1. ``external_id`` within the account: update in place regardless of
           owner, and attach ``account_provider_id`` if the row has no owner.
        2. Composite key (security, date, currency): adopt an unowned row,
           update a row owned by this provider, or apply ``conflict_policy``
           to a row owned by another provider.
        3. Otherwise insert a new row.

        Returns:
            The holding that now represents the position. Under the drop and
            warn policies this is the other provider's unchanged row.

        Raises:
            ImportValidationError: security or source is missing.
        """
        if security is None:
            raise ImportValidationError("security is required", source=source or "")
        self._require(source, "source", source)
        policy = ConflictPolicy(conflict_policy) if conflict_policy else self.conflict_policy

        holding_date = self._to_date(date, source)
        quantity = self._to_decimal(quantity, "quantity", source)
        amount = self._to_decimal(amount, "amount", source)
        price = parse_decimal(price)
        if price is None:
            price = amount / quantity if quantity else Decimal("0")
        cost_basis = parse_decimal(cost_basis)
        values = {"qty": quantity, "price": price, "amount": amount, "cost_basis": cost_basis}

        holding, applied = self._upsert_holding(
            security, holding_date, currency, values,
            external_id=external_id,
            account_provider_id=account_provider_id,
            policy=policy,
        )
        self.db.flush()

        if delete_future_holdings and applied:
            self._delete_future_holdings(security, holding_date, account_provider_id)

        return holding

    def _upsert_holding(
        self,
        security: Security,
        holding_date: date_type,
        currency: str,
        values: dict,
        *,
        external_id: str | None,
        account_provider_id: str | None,
        policy: ConflictPolicy,
    ) -> tuple[Holding, bool]:
        """Locate and write the holding row.

        Returns:
            (holding, applied) where applied is False when the data was not
            written because another provider owns the row.
        """
        composite = (
            self.db.query(Holding)
            .filter_by(
                account_id=self.account.id,
                security_id=security.id,
                date=holding_date,
                currency=currency,
            )
            .first()
        )

        if external_id:
            by_external_id = (
                self.db.query(Holding)
                .filter_by(account_id=self.account.id, external_id=external_id)
                .first()
            )
            if by_external_id is not None and (
                composite is None or composite.id == by_external_id.id
            ):
                self._apply_values(by_external_id, values)
                by_external_id.security_id = security.id
                by_external_id.date = holding_date
                by_external_id.currency = currency
                if by_external_id.account_provider_id is None and account_provider_id:
                    by_external_id.account_provider_id = account_provider_id
                return by_external_id, True
            if by_external_id is not None:
                # The row this provider tracks by ID cannot move onto a key
                # another row already holds; resolve against that row instead.
                logger.debug(
                    "Holding %s (external_id=%s) blocked from moving to %s/%s/%s by %s",
                    by_external_id.id, external_id, security.ticker,
                    holding_date, currency, composite.id,
                )
                external_id = None

        if composite is None:
            holding = Holding(
                account_id=self.account.id,
                security_id=security.id,
                date=holding_date,
                currency=currency,
                external_id=external_id,
                account_provider_id=account_provider_id,
                **values,
            )
            self.db.add(holding)
            return holding, True

        if composite.account_provider_id is None:
            self._apply_values(composite, values)
            if external_id and not composite.external_id:
                composite.external_id = external_id
            if account_provider_id:
                composite.account_provider_id = account_provider_id
            logger.info(
                "Adopted unowned holding %s (%s %s) for provider link %s",
                composite.id, security.ticker, holding_date, account_provider_id,
            )
            return composite, True

        if composite.account_provider_id == account_provider_id:
            self._apply_values(composite, values)
            if external_id and not composite.external_id:
                composite.external_id = external_id
            return composite, True

        return self._resolve_conflict(
            composite, values, policy,
            external_id=external_id,
            account_provider_id=account_provider_id,
        )

    def _resolve_conflict(
        self,
        existing: Holding,
        values: dict,
        policy: ConflictPolicy,
        *,
        external_id: str | None,
        account_provider_id: str | None,
    ) -> tuple[Holding, bool]:
        self.conflicts.append(
            HoldingConflict(
                holding_id=existing.id,
                security_id=existing.security_id,
                date=existing.date,
                currency=existing.currency,
                owner_account_provider_id=existing.account_provider_id,
                importer_account_provider_id=account_provider_id,
                external_id=external_id,
                policy=policy,
            )
        )

        if policy is ConflictPolicy.OVERWRITE:
            self._apply_values(existing, values)
            previous_owner = existing.account_provider_id
            existing.account_provider_id = account_provider_id
            if external_id:
                existing.external_id = external_id
            logger.warning(
                "Cross-provider holding collision for account=%s security=%s date=%s "
                "currency=%s; overwrote id=%s and moved ownership %s -> %s",
                self.account.id, existing.security_id, existing.date,
                existing.currency, existing.id, previous_owner, account_provider_id,
            )
            return existing, True

        message = (
            f"Cross-provider holding collision for account={self.account.id} "
            f"security={existing.security_id} date={existing.date} "
            f"currency={existing.currency}; returning existing id={existing.id}"
        )
        logger.warning(message)
        if policy is ConflictPolicy.RAISE_VISIBLE_WARNING:
            warnings.warn(message, HoldingOwnershipConflictWarning, stacklevel=4)
        return existing, False

    @staticmethod
    def _apply_values(holding: Holding, values: dict) -> None:
        for attr, value in values.items():
            setattr(holding, attr, value)

    def _delete_future_holdings(
        self,
        security: Security,
        after: date_type,
        account_provider_id: str | None,
    ) -> int:
        if not self.account.can_delete_holdings:
            logger.warning(
                "Skipping future holdings deletion for account %s "
                "because not all providers allow deletion",
                self.account.id,
            )
            return 0

        query = self.db.query(Holding).filter(
            Holding.account_id == self.account.id,
            Holding.security_id == security.id,
            Holding.date > after,
        )
        # An attributed import only removes its own rows; other owners and unowned rows stay
        if account_provider_id:
            query = query.filter(Holding.account_provider_id == account_provider_id)

        future = query.all()
        for holding in future:
            self.db.delete(holding)
        if future:
            self.db.flush()
            logger.info(
                "Deleted %d future holdings of %s after %s for account %s",
                len(future), security.ticker, after, self.account.id,
            )
        return len(future)

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    def update_balance(self, *, balance, cash_balance=None, source: str | None = None) -> Account:
        """Write the provider-reported balance; cash_balance defaults to balance."""
        balance = self._to_decimal(balance, "balance", source or "")
        cash = parse_decimal(cash_balance)
        self.account.balance = balance
        self.account.cash_balance = cash if cash is not None else balance
        self.db.flush()
        logger.debug(
            "Balance for %s set to %s (cash %s) from %s",
            self.account.name, self.account.balance, self.account.cash_balance, source,
        )
        return self.account

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _find_entry(self, source: str, external_id: str) -> Entry | None:
        return (
            self.db.query(Entry)
            .filter(
                Entry.account_id == self.account.id,
                Entry.source == source,
                Entry.external_id == external_id,
            )
            .first()
        )

    @staticmethod
    def _ensure_kind(entry: Entry, kind: EntryKind, external_id: str, source: str) -> None:
        if entry.kind != kind.value:
            raise EntryTypeCollisionError(
                f"Entry with external_id '{external_id}' already exists with "
                f"different entryable type: {entry.entryable_label}",
                source=source,
                external_id=external_id,
                existing_kind=entry.kind,
            )

    @staticmethod
    def _require(value, field: str, source: str | None) -> None:
        if value is None or not str(value).strip():
            raise ImportValidationError(f"{field} is required", source=source or "")

    @staticmethod
    def _to_decimal(value, field: str, source: str) -> Decimal:
        parsed = parse_decimal(value)
        if parsed is None:
            raise ImportValidationError(f"{field} must be a number, got {value!r}", source=source)
        return parsed

    @staticmethod
    def _to_date(value, source: str) -> date_type:
        parsed = parse_date(value)
        if parsed is None:
            raise ImportValidationError(f"date must be a date, got {value!r}", source=source)
        return parsed
