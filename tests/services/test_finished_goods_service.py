"""
Tests for FinishedGoodsService.

Covers:
- Banking entries and per-job entry numbering
- FIFO draws and the recorded consumption rows
- Soft shortfall
- Ledger verification
"""

import pytest

from production_kernel.domain.step_types import LedgerEntrySource, LedgerEntryStatus
from production_kernel.exceptions import LedgerInconsistencyError
from production_kernel.models.finished_goods import FinishedGoodsConsumption
from production_kernel.services.finished_goods_service import FinishedGoodsService


@pytest.fixture
def ledger(session, deterministic_clock):
    return FinishedGoodsService(session, deterministic_clock)


@pytest.fixture
def job_no(create_job):
    job, _ = create_job()
    return job.nrc_job_no


class TestBanking:
    """add_entry / add_manual_entry."""

    def test_entries_numbered_per_job(self, ledger, job_no, create_job):
        other_job, _ = create_job()

        first = ledger.add_entry(job_no, 100, source=LedgerEntrySource.EXCESS)
        second = ledger.add_entry(job_no, 50, source=LedgerEntrySource.LEFTOVER)
        other = ledger.add_entry(other_job.nrc_job_no, 10, source=LedgerEntrySource.EXCESS)

        assert (first.entry_no, second.entry_no, other.entry_no) == (1, 2, 1)
        assert ledger.available_quantity(job_no) == 150

    def test_new_entry_is_available_and_untouched(self, ledger, job_no):
        entry = ledger.add_entry(job_no, 100, source=LedgerEntrySource.EXCESS)

        assert entry.status == LedgerEntryStatus.AVAILABLE.value
        assert entry.original_quantity == entry.over_dispatched_quantity == 100
        assert entry.consumed_quantity == 0

    @pytest.mark.parametrize("quantity", [0, -3])
    def test_non_positive_quantity_rejected(self, ledger, job_no, quantity):
        with pytest.raises(ValueError, match="must be positive"):
            ledger.add_entry(job_no, quantity, source=LedgerEntrySource.MANUAL)

    def test_manual_entry_default_remarks(self, ledger, job_no):
        entry = ledger.add_manual_entry(job_no, 40, actor_id="planner-1")

        assert entry.source == LedgerEntrySource.MANUAL.value
        assert entry.remarks == "Manual entry by planner-1"


class TestConsume:
    """Oldest-first draws."""

    def test_fifo_draw_closes_oldest_entry(self, session, ledger, job_no):
        oldest = ledger.add_entry(job_no, 100, source=LedgerEntrySource.EXCESS)
        newer = ledger.add_entry(job_no, 200, source=LedgerEntrySource.EXCESS)

        plan = ledger.consume(job_no, 150, dispatch_no="D-1")

        assert plan.drawn_total == 150
        assert oldest.status == LedgerEntryStatus.CONSUMED.value
        assert oldest.over_dispatched_quantity == 0
        assert newer.over_dispatched_quantity == 150
        assert newer.consumed_quantity == 50
        draws = session.query(FinishedGoodsConsumption).filter_by(nrc_job_no=job_no).all()
        assert sorted(d.quantity for d in draws) == [50, 100]
        assert {d.dispatch_no for d in draws} == {"D-1"}
        ledger.verify_ledger(job_no)

    def test_draw_limited_to_given_lots(self, ledger, job_no):
        ledger.add_entry(job_no, 100, source=LedgerEntrySource.EXCESS)
        lots = ledger.available_lots(job_no)
        late = ledger.add_entry(job_no, 500, source=LedgerEntrySource.EXCESS)

        plan = ledger.consume(job_no, 300, lots=lots)

        assert plan.drawn_total == 100
        assert plan.shortfall == 200
        assert late.consumed_quantity == 0

    def test_shortfall_is_logged_not_raised(self, ledger, job_no, captured_logs):
        ledger.add_entry(job_no, 30, source=LedgerEntrySource.EXCESS)

        plan = ledger.consume(job_no, 100)

        assert plan.shortfall == 70
        warnings = [r for r in captured_logs() if r["message"] == "finished_goods_shortfall"]
        assert warnings[0]["level"] == "WARNING"
        assert warnings[0]["shortfall"] == 70

    def test_summary(self, ledger, job_no):
        ledger.add_entry(job_no, 100, source=LedgerEntrySource.EXCESS)
        kept = ledger.add_entry(job_no, 60, source=LedgerEntrySource.LEFTOVER)
        ledger.consume(job_no, 120)

        summary = ledger.summary(job_no)

        assert summary.total_available == 40
        assert summary.total_consumed == 120
        assert summary.entry_count == 2
        assert summary.available_entry_ids == (kept.id,)


class TestVerifyLedger:
    """Identities are checked, never repaired."""

    def test_empty_ledger_is_consistent(self, ledger, job_no):
        ledger.verify_ledger(job_no)

    def test_consumed_without_draw_rows_detected(self, session, ledger, job_no):
        entry = ledger.add_entry(job_no, 80, source=LedgerEntrySource.EXCESS)
        entry.over_dispatched_quantity = 0
        entry.consumed_quantity = 80
        entry.status = LedgerEntryStatus.CONSUMED.value
        session.flush()

        with pytest.raises(LedgerInconsistencyError, match="recorded draws 0"):
            ledger.verify_ledger(job_no)

    def test_status_mismatch_detected(self, session, ledger, job_no):
        entry = ledger.add_entry(job_no, 80, source=LedgerEntrySource.EXCESS)
        entry.status = LedgerEntryStatus.CONSUMED.value
        session.flush()

        with pytest.raises(LedgerInconsistencyError, match="status consumed"):
            ledger.verify_ledger(job_no)
