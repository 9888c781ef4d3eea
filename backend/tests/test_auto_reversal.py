"""
Tests for the auto-reversal sweeper and label integrity repair.
"""
import asyncio
from contextlib import asynccontextmanager
from datetime import timedelta

import pytest

from fulfillment.models import ClaimStatus, Label
from fulfillment.services import auto_reversal, label_integrity
from fulfillment.services.auto_reversal import AutoReversalSweeper
from fulfillment.services.label_integrity import repair_label_flags

from fakes import NOW, make_line


@asynccontextmanager
async def no_session():
    yield None


@pytest.fixture
def use_store(monkeypatch, store):
    """Route OrderStore(db) in the job modules to the in-memory store."""
    monkeypatch.setattr(auto_reversal, "OrderStore", lambda db: store)
    monkeypatch.setattr(label_integrity, "OrderStore", lambda db: store)
    return store


@pytest.fixture
def sweeper():
    return AutoReversalSweeper(session_factory=no_session, max_age_hours=24, clock=lambda: NOW)


class TestAutoReversalSweeper:

    @pytest.mark.asyncio
    async def test_reverses_stale_claims_without_label(self, sweeper, use_store):
        store = use_store
        store.lines.update({
            "OLD": make_line("OLD", "O1", status=ClaimStatus.CLAIMED.value, claimed_by="W1",
                             claimed_at=NOW - timedelta(hours=30)),
            "FRESH": make_line("FRESH", "O2", status=ClaimStatus.CLAIMED.value, claimed_by="W1",
                               claimed_at=NOW - timedelta(hours=2)),
            "LABELLED": make_line("LABELLED", "O3", status=ClaimStatus.CLAIMED.value, claimed_by="W1",
                                  claimed_at=NOW - timedelta(hours=30), label_downloaded=True),
            "READY": make_line("READY", "O4", status=ClaimStatus.READY_FOR_HANDOVER.value, claimed_by="W1",
                               claimed_at=NOW - timedelta(hours=30), label_downloaded=True),
        })

        result = await sweeper.run()

        assert result["success"] is True
        assert result["auto_reversed"] == 1
        old = store.lines["OLD"]
        assert old.status == ClaimStatus.UNCLAIMED.value
        assert old.claimed_by is None
        assert old.claimed_at is None
        assert old.last_claimed_by == "W1"
        assert store.lines["FRESH"].claimed_by == "W1"
        assert store.lines["LABELLED"].status == ClaimStatus.CLAIMED.value
        assert store.lines["READY"].status == ClaimStatus.READY_FOR_HANDOVER.value
        assert store.commits == 1

    @pytest.mark.asyncio
    async def test_second_run_is_a_noop(self, sweeper, use_store):
        use_store.lines["OLD"] = make_line(
            "OLD", "O1", status=ClaimStatus.CLAIMED.value, claimed_by="W1",
            claimed_at=NOW - timedelta(hours=30),
        )

        await sweeper.run()
        result = await sweeper.run()

        assert result["auto_reversed"] == 0
        assert sweeper.get_stats()["total_runs"] == 2
        assert sweeper.get_stats()["total_reversed"] == 1

    @pytest.mark.asyncio
    async def test_overlapping_run_is_skipped(self, monkeypatch, sweeper):
        entered = asyncio.Event()
        release = asyncio.Event()

        class SlowStore:
            def __init__(self, db):
                pass

            async def sweep_stale_claims(self, cutoff):
                entered.set()
                await release.wait()
                return 0

            async def commit(self):
                pass

        monkeypatch.setattr(auto_reversal, "OrderStore", SlowStore)

        first = asyncio.create_task(sweeper.run())
        await entered.wait()
        second = await sweeper.run()
        release.set()
        first_result = await first

        assert second["skipped"] is True
        assert first_result["skipped"] is False
        assert sweeper.is_running is False

    @pytest.mark.asyncio
    async def test_failure_is_counted_and_raised(self, monkeypatch, sweeper):
        class BrokenStore:
            def __init__(self, db):
                pass

            async def sweep_stale_claims(self, cutoff):
                raise RuntimeError("connection lost")

        monkeypatch.setattr(auto_reversal, "OrderStore", BrokenStore)

        with pytest.raises(RuntimeError):
            await sweeper.run()

        stats = sweeper.get_stats()
        assert stats["total_errors"] == 1
        assert stats["is_running"] is False


class TestLabelIntegrityRepair:

    @pytest.mark.asyncio
    async def test_resets_flags_without_usable_url(self, use_store):
        store = use_store
        store.lines.update({
            "A": make_line("A", "O1", status=ClaimStatus.CLAIMED.value, claimed_by="W1", label_downloaded=True),
            "B": make_line("B", "O2", status=ClaimStatus.CLAIMED.value, claimed_by="W1", label_downloaded=True),
            "C": make_line("C", "O3", status=ClaimStatus.CLAIMED.value, claimed_by="W1", label_downloaded=True),
        })
        store.labels["O1"] = Label(order_id="O1", label_url="undefined", awb="AWB1")
        store.labels["O2"] = Label(order_id="O2", label_url="https://labels.example/O2.pdf", awb="AWB2")

        stats = await repair_label_flags(session_factory=no_session)

        assert stats == {"lines_reset": 2, "errors": 0}
        assert store.lines["A"].label_downloaded is False
        assert store.lines["B"].label_downloaded is True
        assert store.lines["C"].label_downloaded is False

    @pytest.mark.asyncio
    async def test_errors_are_reported_not_raised(self):
        @asynccontextmanager
        async def broken_session():
            raise RuntimeError("db down")
            yield

        stats = await repair_label_flags(session_factory=broken_session)

        assert stats == {"lines_reset": 0, "errors": 1}
