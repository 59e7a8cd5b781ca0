"""Sync service - applies one provider batch to one account.

Runs the import adapter over every record, then stale-pending cleanup,
pending/posted reconciliation and, for investment accounts, internal
activity detection. Each step is best-effort; the outcome is written to a
SyncLogEntry.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import settings
from integrations.provider_protocol import (
    ProviderHolding,
    ProviderSyncBatch,
    ProviderTrade,
    ProviderTransaction,
)
from models import Account, AccountProvider, Entry, EntryKind
from models.sync_log import SyncLogEntry
from services.activity_labels import label_entry_from_description
from services.entry_reconciliation_service import (
    EntryReconciliationService,
    ReconciliationReport,
)
from services.exceptions import ImportValidationError, LedgerError
from services.investment_activity_detector import (
    ActivityMatch,
    InvestmentActivityDetector,
)
from services.provider_import_adapter import HoldingConflict, ProviderImportAdapter
from services.security_service import SecurityService

logger = logging.getLogger(__name__)

# Per-record failures that skip the record instead of aborting the batch
RECORD_ERRORS = (LedgerError, ValueError, SQLAlchemyError)


@dataclass
class SyncResult:
    """Outcome of syncing one account from one provider."""

    account_id: str
    provider_name: str
    status: str = "success"  # "success" | "partial" | "failed" | "skipped"
    records_imported: int = 0
    records_failed: int = 0
    stale_excluded: int = 0
    reconciliation: ReconciliationReport | None = None
    activities: list[ActivityMatch] = field(default_factory=list)
    holding_conflicts: list[HoldingConflict] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def pending_reconciled(self) -> int:
        return self.reconciliation.reconciled if self.reconciliation else 0


class SyncService:
    """Service for applying provider sync batches to accounts."""

    # Class-level lock shared across all instances so two syncs never write
    # the same store concurrently. Single-process only.
    _sync_lock = threading.Lock()

    @classmethod
    def is_sync_in_progress(cls) -> bool:
        """Check if a sync operation is currently in progress."""
        acquired = cls._sync_lock.acquire(blocking=False)
        if acquired:
            cls._sync_lock.release()
            return False
        return True

    def sync_account(
        self,
        db: Session,
        account: Account,
        batch: ProviderSyncBatch,
        account_provider: Optional[AccountProvider] = None,
        source: Optional[str] = None,
        today: Optional[date] = None,
    ) -> SyncResult:
        """Import a provider batch into an account and run the post-import passes.

        Args:
            db: Database session (flushed, not committed)
            account: Target account
            batch: Normalized records from the provider
            account_provider: The provider link; its ID is the ownership token
                stamped on imported holdings
            source: Provider name stored on entries; defaults to the link's
                provider_type
            today: Reference date for holdings without a date, stale cleanup
                and the activity lookback

        Returns:
            SyncResult summarizing what happened

        Raises:
            ImportValidationError: If neither source nor account_provider is given.
        """
        source = source or (account_provider.provider_type if account_provider else None)
        if not source:
            raise ImportValidationError("source is required to sync an account")
        today = today or date.today()
        result = SyncResult(account_id=account.id, provider_name=source)

        if not account.is_syncable:
            logger.info("Skipping sync for account %s (status=%s)", account.name, account.status)
            result.status = "skipped"
            self._write_log_entry(db, account, result)
            return result

        with self._sync_lock:
            adapter = ProviderImportAdapter(db, account)
            account_provider_id = account_provider.id if account_provider else None

            if batch.balance is not None:
                adapter.update_balance(
                    balance=batch.balance, cash_balance=batch.cash_balance, source=source
                )

            for txn in batch.transactions:
                self._import_record(
                    db, result, "transaction", txn.external_id,
                    lambda txn=txn: self._import_transaction(adapter, txn, source),
                )
            for trade in batch.trades:
                self._import_record(
                    db, result, "trade", trade.external_id or trade.symbol,
                    lambda trade=trade: self._import_trade(db, adapter, trade, source),
                )
            for holding in batch.holdings:
                self._import_record(
                    db, result, "holding", holding.external_id or holding.symbol,
                    lambda holding=holding: self._import_holding(
                        db, adapter, holding, source, account_provider_id,
                        holding.date or batch.holdings_date or today,
                        batch.delete_future_holdings,
                    ),
                )
            result.holding_conflicts = list(adapter.conflicts)

            self._run_pending_passes(db, account, result, today)
            if account.is_investment and batch.holdings:
                self._run_activity_detection(db, account, batch, result, today)

        if result.records_failed and not result.records_imported:
            result.status = "failed"
        elif result.records_failed or result.errors:
            result.status = "partial"

        self._write_log_entry(db, account, result)
        logger.info(
            "Synced account %s from %s: status=%s imported=%d failed=%d "
            "stale_excluded=%d reconciled=%d activities=%d",
            account.name, source, result.status, result.records_imported,
            result.records_failed, result.stale_excluded,
            result.pending_reconciled, len(result.activities),
        )
        return result

    @staticmethod
    def _import_record(
        db: Session,
        result: SyncResult,
        kind: str,
        key: Optional[str],
        do_import: Callable[[], object],
    ) -> None:
        try:
            # Savepoint so a failed record leaves no partial flush behind
            with db.begin_nested():
                do_import()
            result.records_imported += 1
        except RECORD_ERRORS as e:
            result.records_failed += 1
            result.errors.append(f"{kind} {key}: {e}")
            logger.warning("Failed to import %s %s: %s", kind, key, e)

    @staticmethod
    def _import_transaction(
        adapter: ProviderImportAdapter, txn: ProviderTransaction, source: str
    ) -> Entry:
        merchant = adapter.find_or_create_merchant(
            provider_merchant_id=txn.merchant_id,
            name=txn.merchant_name,
            source=source,
            website_url=txn.merchant_website_url,
            logo_url=txn.merchant_logo_url,
        )
        return adapter.import_transaction(
            external_id=txn.external_id,
            amount=txn.amount,
            currency=txn.currency,
            date=txn.date,
            name=txn.name,
            source=source,
            category_name=txn.category_name,
            merchant=merchant,
            notes=txn.notes,
            extra=txn.extra,
        )

    @staticmethod
    def _import_trade(
        db: Session, adapter: ProviderImportAdapter, trade: ProviderTrade, source: str
    ) -> Entry:
        security = SecurityService.ensure_exists(db, trade.symbol, trade.security_name, source)
        return adapter.import_trade(
            security=security,
            quantity=trade.quantity,
            price=trade.price,
            amount=trade.amount,
            currency=trade.currency,
            date=trade.date,
            source=source,
            name=trade.name,
            external_id=trade.external_id,
        )

    @staticmethod
    def _import_holding(
        db: Session,
        adapter: ProviderImportAdapter,
        holding: ProviderHolding,
        source: str,
        account_provider_id: Optional[str],
        holding_date: date,
        delete_future_holdings: bool,
    ):
        security = SecurityService.ensure_exists(db, holding.symbol, holding.name, source)
        return adapter.import_holding(
            security=security,
            quantity=holding.quantity,
            amount=holding.market_value,
            currency=holding.currency,
            date=holding_date,
            source=source,
            price=holding.price,
            cost_basis=holding.cost_basis,
            external_id=holding.external_id,
            account_provider_id=account_provider_id,
            delete_future_holdings=delete_future_holdings,
        )

    @staticmethod
    def _run_pending_passes(
        db: Session, account: Account, result: SyncResult, today: date
    ) -> None:
        try:
            with db.begin_nested():
                result.stale_excluded = EntryReconciliationService.auto_exclude_stale_pending(
                    db, account, today=today
                )
        except SQLAlchemyError as e:
            result.errors.append(f"stale pending cleanup: {e}")
            logger.warning("Stale pending cleanup failed for account %s: %s", account.id, e)

        # Savepoints are per pending entry inside the reconciler
        result.reconciliation = EntryReconciliationService.reconcile_pending_duplicates(
            db, account, today=today
        )
        result.errors.extend(result.reconciliation.errors)

    @staticmethod
    def _run_activity_detection(
        db: Session,
        account: Account,
        batch: ProviderSyncBatch,
        result: SyncResult,
        today: date,
    ) -> None:
        since = today - timedelta(days=settings.ACTIVITY_LOOKBACK_DAYS)
        recent_entries = (
            db.query(Entry)
            .filter(
                Entry.account_id == account.id,
                Entry.kind == EntryKind.TRANSACTION.value,
                Entry.date >= since,
            )
            .order_by(Entry.date.desc(), Entry.created_at.desc())
            .all()
        )

        try:
            with db.begin_nested():
                detector = InvestmentActivityDetector(db, account)
                result.activities = detector.detect_and_mark_internal_activity(
                    [h.to_snapshot() for h in batch.holdings], recent_entries
                )
                # Whatever the holdings diff did not explain gets a keyword label
                for entry in recent_entries:
                    label_entry_from_description(db, entry)
        except SQLAlchemyError as e:
            result.errors.append(f"activity detection: {e}")
            logger.warning("Activity detection failed for account %s: %s", account.id, e)

    @staticmethod
    def _write_log_entry(db: Session, account: Account, result: SyncResult) -> SyncLogEntry:
        log_entry = SyncLogEntry(
            account_id=account.id,
            provider_name=result.provider_name,
            status=result.status,
            error_messages=result.errors or None,
            records_imported=result.records_imported,
            records_failed=result.records_failed,
            stale_excluded=result.stale_excluded,
            pending_reconciled=result.pending_reconciled,
            activities_matched=len(result.activities),
        )
        db.add(log_entry)
        db.flush()
        return log_entry
