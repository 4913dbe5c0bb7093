from __future__ import annotations

import logging
import threading

import pytest

from app.payouts.engine import PayoutOrchestrator
from app.payouts.errors import StorageError
from app.workers.batch_runner import BatchRunner, RunnerClosed
from tests.conftest import FakeGateway, make_payout, wait_for


class BlockingGateway(FakeGateway):
    """Holds every customer lookup until released."""

    def __init__(self):
        super().__init__()
        self.release = threading.Event()

    def find_customer_by_email(self, email):
        self.release.wait(timeout=5)
        return super().find_customer_by_email(email)


def _all_terminal(repo, batch_id):
    rows = repo.list_payouts_by_batch_id(batch_id)
    return all(p.status in ("SUCCESS", "FAILED") for p in rows)


def test_submit_returns_before_processing(repo, notifications):
    gateway = BlockingGateway()
    orchestrator = PayoutOrchestrator(repo, gateway, notifications, logger=logging.getLogger("tests"))
    runner = BatchRunner(orchestrator, max_workers=1)
    try:
        payouts = [make_payout(email=f"u{i}@example.com") for i in range(3)]

        assert runner.submit("batch-async", payouts) == "batch-async"

        # persisted synchronously, still unfinished
        rows = repo.list_payouts_by_batch_id("batch-async")
        assert len(rows) == 3
        assert all(p.status in ("PENDING", "PROCESSING") for p in rows)
        assert "batch-async" in runner.in_flight()

        gateway.release.set()
        assert wait_for(lambda: _all_terminal(repo, "batch-async"))
        assert wait_for(lambda: runner.in_flight() == [])
    finally:
        gateway.release.set()
        runner.shutdown(timeout=5)


def test_submit_surfaces_storage_failure(repo, gateway, notifications):
    orchestrator = PayoutOrchestrator(repo, gateway, notifications, logger=logging.getLogger("tests"))
    runner = BatchRunner(orchestrator)
    repo.fail_save = lambda p: True
    try:
        with pytest.raises(StorageError):
            runner.submit("batch-x", [make_payout()])
        assert runner.in_flight() == []
    finally:
        runner.shutdown(timeout=5)


def test_recover_resumes_unfinished_batches(repo, orchestrator, notifier, notifications):
    stuck = make_payout(batch_id="old-batch", email="a@example.com").with_status("PROCESSING")
    fresh = make_payout(batch_id="old-batch", email="b@example.com")
    done = make_payout(batch_id="done-batch").with_status("SUCCESS")
    for p in (stuck, fresh, done):
        repo.save_payout(p)

    runner = BatchRunner(orchestrator)
    try:
        assert runner.recover() == 1
        assert wait_for(lambda: _all_terminal(repo, "old-batch"))
    finally:
        runner.shutdown(timeout=5)

    notifications.shutdown(timeout=5)
    assert [c[0] for c in notifier.calls] == ["old-batch"]


def test_shutdown_rejects_new_batches(orchestrator):
    runner = BatchRunner(orchestrator)
    runner.shutdown(timeout=1)

    with pytest.raises(RunnerClosed):
        runner.submit("late", [make_payout()])


def test_shutdown_cancels_in_flight_workers(repo, notifier, notifications):
    gateway = BlockingGateway()
    orchestrator = PayoutOrchestrator(
        repo, gateway, notifications, logger=logging.getLogger("tests"), concurrency=1
    )
    runner = BatchRunner(orchestrator)
    payouts = [make_payout(email=f"u{i}@example.com") for i in range(4)]
    runner.submit("batch-stop", payouts)

    stopper = threading.Thread(target=runner.shutdown, kwargs={"timeout": 5})
    stopper.start()
    assert wait_for(lambda: orchestrator.cancel_event.is_set())
    gateway.release.set()
    stopper.join(timeout=10)

    rows = repo.list_payouts_by_batch_id("batch-stop")
    # the worker holding the slot stops at its next step; the queued ones never start
    assert any(p.status in ("PENDING", "PROCESSING") for p in rows)
    assert all(p.status != "SUCCESS" for p in rows)
    notifications.shutdown(timeout=5)
    assert notifier.calls == []
