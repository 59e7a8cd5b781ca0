"""Unit tests for EntryReconciliationService."""

import threading
from datetime import date, timedelta

import pytest

from models import Account, Entry, Transaction
from services import entry_reconciliation_service
from services.entry_reconciliation_service import (
    EntryReconciliationService,
    normalized_name_prefix,
)
from tests.fixtures import create_transaction_entry

TODAY = date(2024, 3, 20)
D = date(2024, 3, 10)


def _reconcile(db, account=None, **kwargs):
    return EntryReconciliationService.reconcile_pending_duplicates(
        db, account, today=TODAY, **kwargs
    )


class TestAutoExcludeStalePending:
    """Tests for auto_exclude_stale_pending."""

    def test_excludes_pending_older_than_cutoff(self, db, account):
        stale = create_transaction_entry(
            db, account, "Hotel hold", "200", TODAY - timedelta(days=9), pending=True
        )

        count = EntryReconciliationService.auto_exclude_stale_pending(
            db, account, days=8, today=TODAY
        )

        assert count == 1
        assert stale.excluded is True

    def test_entry_exactly_at_cutoff_is_kept(self, db, account):
        boundary = create_transaction_entry(
            db, account, "Gas hold", "50", TODAY - timedelta(days=8), pending=True
        )

        count = EntryReconciliationService.auto_exclude_stale_pending(
            db, account, days=8, today=TODAY
        )

        assert count == 0
        assert boundary.excluded is False

    def test_posted_and_already_excluded_entries_ignored(self, db, account):
        posted = create_transaction_entry(
            db, account, "Old posted", "10", TODAY - timedelta(days=30)
        )
        create_transaction_entry(
            db, account, "Old excluded", "10", TODAY - timedelta(days=30),
            pending=True, excluded=True,
        )

        count = EntryReconciliationService.auto_exclude_stale_pending(
            db, account, days=8, today=TODAY
        )

        assert count == 0
        assert posted.excluded is False

    def test_only_given_account(self, db, account, investment_account):
        other = create_transaction_entry(
            db, investment_account, "Hold", "10", TODAY - timedelta(days=20), pending=True
        )

        EntryReconciliationService.auto_exclude_stale_pending(db, account, today=TODAY)
        assert other.excluded is False

    def test_pending_from_any_registered_provider(self, db, account):
        entry = create_transaction_entry(
            db, account, "Hold", "10", TODAY - timedelta(days=20),
            pending=True, provider="lunchflow",
        )
        assert EntryReconciliationService.auto_exclude_stale_pending(
            db, account, today=TODAY
        ) == 1
        assert entry.excluded is True


class TestExactReconciliation:
    """Tests for the exact-match stage of reconcile_pending_duplicates."""

    def test_single_candidate_excludes_pending(self, db, account):
        pending = create_transaction_entry(db, account, "Amazon", "42.10", D, pending=True)
        posted = create_transaction_entry(db, account, "AMAZON.COM", "42.10", D + timedelta(days=2))

        report = _reconcile(db, account)

        assert report.checked == 1
        assert report.reconciled == 1
        assert pending.excluded is True
        assert posted.excluded is False
        detail = report.details[0]
        assert detail["match_type"] == "exact"
        assert detail["pending_id"] == pending.id
        assert detail["posted_id"] == posted.id
        assert detail["account"] == account.name
        assert detail["pending_amount"] == pytest.approx(42.10)

    def test_posted_before_pending_never_matches(self, db, account):
        pending = create_transaction_entry(db, account, "Amazon", "42.10", D, pending=True)
        create_transaction_entry(db, account, "Amazon", "42.10", D - timedelta(days=1))

        report = _reconcile(db, account)

        assert report.reconciled == 0
        assert pending.excluded is False

    def test_outside_date_window_ignored(self, db, account):
        pending = create_transaction_entry(db, account, "Amazon", "42.10", D, pending=True)
        create_transaction_entry(db, account, "Amazon", "42.10", D + timedelta(days=9))

        report = _reconcile(db, account, date_window=8)
        assert report.reconciled == 0
        assert pending.excluded is False

    def test_two_candidates_is_ambiguous(self, db, account):
        pending = create_transaction_entry(db, account, "Parking", "5.00", D, pending=True)
        first = create_transaction_entry(db, account, "Parking", "5.00", D + timedelta(days=1))
        second = create_transaction_entry(db, account, "Parking", "5.00", D + timedelta(days=2))

        report = _reconcile(db, account)

        assert report.reconciled == 0
        assert report.details == []
        assert pending.excluded is False
        assert first.excluded is False
        assert second.excluded is False

    def test_pending_candidates_do_not_count(self, db, account):
        pending = create_transaction_entry(db, account, "Amazon", "42.10", D, pending=True)
        create_transaction_entry(
            db, account, "Amazon", "42.10", D + timedelta(days=1), pending=True
        )

        _reconcile(db, account)
        assert pending.excluded is False

    def test_currency_must_match(self, db, account):
        pending = create_transaction_entry(db, account, "Hotel", "100", D, pending=True)
        create_transaction_entry(db, account, "Hotel", "100", D + timedelta(days=1), currency="EUR")

        _reconcile(db, account)
        assert pending.excluded is False

    def test_dry_run_reports_without_changes(self, db, account):
        pending = create_transaction_entry(db, account, "Amazon", "42.10", D, pending=True)
        create_transaction_entry(db, account, "Amazon", "42.10", D + timedelta(days=1))

        report = _reconcile(db, account, dry_run=True)

        assert report.reconciled == 1
        assert pending.excluded is False

    def test_all_syncable_accounts_when_no_account(self, db, account):
        disabled = Account(name="Closed card", status="disabled")
        db.add(disabled)
        db.flush()
        active_pending = create_transaction_entry(db, account, "Amazon", "42.10", D, pending=True)
        create_transaction_entry(db, account, "Amazon", "42.10", D + timedelta(days=1))
        disabled_pending = create_transaction_entry(db, disabled, "Amazon", "42.10", D, pending=True)
        create_transaction_entry(db, disabled, "Amazon", "42.10", D + timedelta(days=1))

        report = _reconcile(db)

        assert report.checked == 1
        assert active_pending.excluded is True
        assert disabled_pending.excluded is False

    def test_rerun_is_a_no_op(self, db, account):
        create_transaction_entry(db, account, "Amazon", "42.10", D, pending=True)
        create_transaction_entry(db, account, "Amazon", "42.10", D + timedelta(days=1))

        _reconcile(db, account)
        report = _reconcile(db, account)

        assert report.checked == 0
        assert report.reconciled == 0


class TestFuzzySuggestion:
    """Tests for the fuzzy-suggestion stage."""

    def test_tip_adjusted_match_stores_suggestion(self, db, account):
        pending = create_transaction_entry(
            db, account, "STARBUCKS #123 SEATTLE WA", "10.00", D, pending=True
        )
        posted = create_transaction_entry(
            db, account, "Starbucks 123 Seattle", "12.00", D + timedelta(days=2)
        )

        report = _reconcile(db, account)

        assert report.reconciled == 0
        assert report.suggested == 1
        assert report.details[0]["match_type"] == "fuzzy_suggestion"
        assert pending.excluded is False

        txn = pending.transaction
        assert txn.has_potential_duplicate is True
        assert txn.potential_duplicate_entry_id == posted.id
        assert txn.potential_duplicate_reason == "fuzzy_amount_match"
        assert txn.potential_duplicate_confidence == "medium"
        assert txn.potential_posted_match["detected_at"] == TODAY.isoformat()
        assert float(txn.potential_duplicate_posted_amount) == pytest.approx(12.0)

    def test_suggestion_written_once(self, db, account):
        pending = create_transaction_entry(db, account, "Cafe Luna Downtown", "20", D, pending=True)
        create_transaction_entry(db, account, "Cafe Luna Downtown", "24", D + timedelta(days=1))

        _reconcile(db, account)
        first = dict(pending.transaction.potential_posted_match)

        EntryReconciliationService.reconcile_pending_duplicates(
            db, account, today=TODAY + timedelta(days=1)
        )
        assert pending.transaction.potential_posted_match == first

    def test_multiple_fuzzy_candidates_skipped(self, db, account, caplog):
        pending = create_transaction_entry(db, account, "Shell Oil 5512", "30", D, pending=True)
        create_transaction_entry(db, account, "Shell Oil 5512", "31", D + timedelta(days=1))
        create_transaction_entry(db, account, "Shell Oil 5512", "33", D + timedelta(days=2))

        with caplog.at_level("INFO"):
            report = _reconcile(db, account)

        assert report.suggested == 0
        assert pending.transaction.potential_posted_match is None
        assert "ambiguous candidates" in caplog.text

    def test_amount_above_band_ignored(self, db, account):
        pending = create_transaction_entry(db, account, "Cafe Luna Downtown", "20", D, pending=True)
        create_transaction_entry(db, account, "Cafe Luna Downtown", "26", D + timedelta(days=1))

        report = _reconcile(db, account)
        assert report.suggested == 0
        assert pending.transaction.potential_posted_match is None

    def test_fuzzy_window_is_three_days(self, db, account):
        pending = create_transaction_entry(db, account, "Cafe Luna Downtown", "20", D, pending=True)
        create_transaction_entry(db, account, "Cafe Luna Downtown", "22", D + timedelta(days=4))

        report = _reconcile(db, account)
        assert report.suggested == 0
        assert pending.transaction.potential_posted_match is None

    def test_name_prefix_must_match(self, db, account):
        pending = create_transaction_entry(db, account, "Cafe Luna Downtown", "20", D, pending=True)
        create_transaction_entry(db, account, "Cafe Sol Uptown", "22", D + timedelta(days=1))

        report = _reconcile(db, account)
        assert report.suggested == 0

    def test_dry_run_does_not_store(self, db, account):
        pending = create_transaction_entry(db, account, "Cafe Luna Downtown", "20", D, pending=True)
        create_transaction_entry(db, account, "Cafe Luna Downtown", "22", D + timedelta(days=1))

        report = _reconcile(db, account, dry_run=True)
        assert report.suggested == 1
        assert pending.transaction.potential_posted_match is None


class TestBatchControl:
    """Tests for cancellation, timeouts and per-record error isolation."""

    def test_cancel_event_stops_batch(self, db, account):
        create_transaction_entry(db, account, "Amazon", "42.10", D, pending=True)
        event = threading.Event()
        event.set()

        report = _reconcile(db, account, cancel_event=event)

        assert report.cancelled is True
        assert report.checked == 0

    def test_timeout_stops_batch(self, db, account):
        create_transaction_entry(db, account, "Amazon", "42.10", D, pending=True)

        report = _reconcile(db, account, timeout=0)
        assert report.cancelled is True

    def test_failure_does_not_undo_other_records(self, db, account, monkeypatch):
        bad = create_transaction_entry(db, account, "Broken", "9.99", D, pending=True)
        create_transaction_entry(db, account, "Broken", "9.99", D + timedelta(days=1))
        good = create_transaction_entry(
            db, account, "Amazon", "42.10", D + timedelta(days=1), pending=True
        )
        create_transaction_entry(db, account, "Amazon", "42.10", D + timedelta(days=2))

        real = entry_reconciliation_service._reconcile_entry

        def flaky(db_, pending, *args):
            if pending.id == bad.id:
                raise RuntimeError("boom")
            return real(db_, pending, *args)

        monkeypatch.setattr(entry_reconciliation_service, "_reconcile_entry", flaky)

        report = _reconcile(db, account)

        assert report.checked == 2
        assert report.reconciled == 1
        assert len(report.errors) == 1
        assert "boom" in report.errors[0]
        assert db.get(Entry, good.id).excluded is True

    def test_as_dict(self, db, account):
        report = _reconcile(db, account)
        assert report.as_dict() == {
            "checked": 0,
            "reconciled": 0,
            "suggested": 0,
            "details": [],
            "errors": [],
            "cancelled": False,
        }


class TestSuggestionLifecycle:
    """Tests for merge/dismiss/clear of duplicate suggestions."""

    @pytest.fixture
    def suggested(self, db, account):
        pending = create_transaction_entry(db, account, "Cafe Luna Downtown", "20", D, pending=True)
        posted = create_transaction_entry(
            db, account, "Cafe Luna Downtown", "23", D + timedelta(days=1)
        )
        _reconcile(db, account)
        return pending, posted

    def test_merge_deletes_pending_entry(self, db, suggested):
        pending, posted = suggested
        pending_id = pending.id

        assert EntryReconciliationService.merge_with_duplicate(db, pending.transaction) is True
        assert db.get(Entry, pending_id) is None
        assert db.query(Transaction).filter_by(entry_id=pending_id).count() == 0
        assert db.get(Entry, posted.id) is not None

    def test_dismiss_hides_suggestion(self, db, suggested):
        pending, _ = suggested
        txn = pending.transaction

        assert EntryReconciliationService.dismiss_duplicate_suggestion(db, txn) is True
        assert txn.potential_duplicate_dismissed is True
        assert txn.has_potential_duplicate is False
        assert txn.potential_duplicate_entry_id is None
        # A dismissed suggestion cannot be merged
        assert EntryReconciliationService.merge_with_duplicate(db, txn) is False

    def test_dismissed_suggestion_not_rewritten(self, db, account, suggested):
        pending, _ = suggested
        EntryReconciliationService.dismiss_duplicate_suggestion(db, pending.transaction)

        _reconcile(db, account)
        assert pending.transaction.potential_duplicate_dismissed is True

    def test_clear_removes_annotation(self, db, suggested):
        pending, _ = suggested
        txn = pending.transaction

        assert EntryReconciliationService.clear_duplicate_suggestion(db, txn) is True
        assert txn.potential_posted_match is None
        assert "potential_posted_match" not in txn.extra

    def test_nothing_to_act_on(self, db, account):
        entry = create_transaction_entry(db, account, "Plain", "1", D)
        txn = entry.transaction

        assert EntryReconciliationService.merge_with_duplicate(db, txn) is False
        assert EntryReconciliationService.dismiss_duplicate_suggestion(db, txn) is False
        assert EntryReconciliationService.clear_duplicate_suggestion(db, txn) is False

    def test_merge_with_missing_target(self, db, suggested):
        pending, posted = suggested
        db.delete(posted)
        db.flush()

        assert EntryReconciliationService.merge_with_duplicate(db, pending.transaction) is False
        assert db.get(Entry, pending.id) is not None


class TestNormalizedNamePrefix:
    """Tests for normalized_name_prefix."""

    @pytest.mark.parametrize("name, expected", [
        ("STARBUCKS #123, Seattle WA", "starbucks 123 seattle"),
        ("  Uber   *Trip  ", "uber trip"),
        ("", ""),
        (None, ""),
        ("!!!", ""),
    ])
    def test_normalization(self, name, expected):
        assert normalized_name_prefix(name) == expected
