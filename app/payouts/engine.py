# app/payouts/engine.py
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from threading import BoundedSemaphore, Event
from typing import Iterator, Optional, Sequence

from app.gateway.base import PaymentGateway, RateTable
from app.notify.pool import NotificationPool
from app.payouts.errors import StorageError, ValidationError
from app.payouts.model import (
    Batch,
    Payout,
    STATUS_PENDING,
    STATUS_FAILED,
    STATUS_PROCESSING,
    STATUS_SUCCESS,
    TERMINAL_STATUSES,
)
from app.payouts.repository import PayoutRepository
from app.payouts.workflow import (
    PayoutWorkflow,
    STEP_UNEXPECTED,
    WorkflowCancelled,
    WorkflowOutcome,
)
from services.metrics import increment_batch_submission

DEFAULT_CONCURRENCY = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class BatchResult:
    batch_id: str
    outcomes: list[WorkflowOutcome] = field(default_factory=list)
    cancelled: int = 0

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.status == STATUS_SUCCESS)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.status == STATUS_FAILED)


class PayoutOrchestrator:
    """
    Batch lifecycle around PayoutWorkflow.

      persist (sync, all-or-raise) -> fan out under the admission gate
      -> barrier -> re-read batch -> hand off notification (never blocks)

    The admission gate is shared by every batch this orchestrator runs, so
    concurrent batches cannot jointly exceed the gateway budget.
    """

    def __init__(
        self,
        repo: PayoutRepository,
        gateway: PaymentGateway,
        notifications: NotificationPool,
        *,
        logger: logging.Logger,
        concurrency: int = DEFAULT_CONCURRENCY,
        source_currency: str = "USD",
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.repo = repo
        self.gateway = gateway
        self.notifications = notifications
        self.logger = logger
        self.concurrency = concurrency
        self.cancel_event = Event()
        self._gate = BoundedSemaphore(concurrency)
        self.workflow = PayoutWorkflow(
            repo,
            gateway,
            logger=logger,
            source_currency=source_currency,
            cancel_event=self.cancel_event,
        )

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def persist_batch(self, batch_id: str, payouts: Sequence[Payout]) -> list[Payout]:
        """
        Stamp every payout PENDING and save it. The first storage failure
        aborts; rows saved before it stay saved.
        """
        if not payouts:
            raise ValidationError("batch must contain at least one payout")

        now = _utcnow()
        stamped: list[Payout] = []
        for p in payouts:
            item = replace(
                p,
                batch_id=batch_id,
                status=STATUS_PENDING,
                error_message=None,
                created_at=now,
                updated_at=now,
            )
            try:
                self.repo.save_payout(item)
            except StorageError as e:
                self.logger.error("batch persistence failed batch=%s payout=%s err=%s", batch_id, item.id, e)
                increment_batch_submission("storage_error")
                raise StorageError(f"failed to save payout {item.id}: {e}") from e
            stamped.append(item)

        increment_batch_submission("accepted")
        return stamped

    def execute_batch(self, batch_id: str, payouts: Sequence[Payout]) -> BatchResult:
        """
        Blocking form: persist, process every payout to a terminal status,
        then queue the completion notification.
        """
        self.logger.info("Starting batch execution batch=%s count=%s", batch_id, len(payouts))
        stamped = self.persist_batch(batch_id, payouts)
        return self.process_batch(batch_id, stamped)

    def process_batch(self, batch_id: str, payouts: Sequence[Payout]) -> BatchResult:
        runnable = [p for p in payouts if p.status not in TERMINAL_STATUSES]
        outcomes: list[WorkflowOutcome] = []
        cancelled = 0

        if runnable:
            workers = min(self.concurrency, len(runnable))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"payout-{batch_id[:8]}") as pool:
                futures = [pool.submit(self._run_one, p) for p in runnable]
                for fut in futures:
                    outcome = fut.result()
                    if outcome is None:
                        cancelled += 1
                    else:
                        outcomes.append(outcome)

        result = BatchResult(batch_id=batch_id, outcomes=outcomes, cancelled=cancelled)
        if cancelled:
            self.logger.warning(
                "Batch interrupted batch=%s cancelled=%s; left for recovery", batch_id, cancelled
            )
            return result

        self.logger.info(
            "Batch execution complete batch=%s succeeded=%s failed=%s",
            batch_id,
            result.succeeded,
            result.failed,
        )
        self._notify_completion(batch_id)
        return result

    def _run_one(self, payout: Payout) -> Optional[WorkflowOutcome]:
        """
        Worker boundary: nothing raised here may escape, or the batch
        barrier would break. Returns None when cancelled by shutdown.
        """
        try:
            with self._admission():
                return self.workflow.run(payout)
        except WorkflowCancelled:
            self.logger.info("payout left unfinished on shutdown payout=%s", payout.id)
            return None
        except Exception as e:
            self.logger.exception("payout worker crashed payout=%s", payout.id)
            try:
                return self.workflow.fail(payout, STEP_UNEXPECTED, e, from_status=STATUS_PROCESSING)
            except Exception:
                self.logger.exception("could not record failure payout=%s", payout.id)
                return WorkflowOutcome(
                    payout_id=payout.id,
                    status=STATUS_FAILED,
                    error_message=f"{STEP_UNEXPECTED}: {e}",
                )

    @contextmanager
    def _admission(self) -> Iterator[None]:
        # poll so a shutdown can release workers still queued for a slot
        while not self._gate.acquire(timeout=0.1):
            if self.cancel_event.is_set():
                raise WorkflowCancelled()
        try:
            if self.cancel_event.is_set():
                raise WorkflowCancelled()
            yield
        finally:
            self._gate.release()

    def _notify_completion(self, batch_id: str) -> None:
        try:
            final = self.repo.list_payouts_by_batch_id(batch_id)
        except Exception as e:
            self.logger.error("could not load final batch state batch=%s err=%s", batch_id, e)
            return
        self.notifications.submit(batch_id, final)

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    def unfinished_batches(self) -> dict[str, list[Payout]]:
        grouped: dict[str, list[Payout]] = {}
        for p in self.repo.list_unfinished_payouts():
            grouped.setdefault(p.batch_id, []).append(p)
        return grouped

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_batch_status(self, batch_id: str) -> Batch:
        payouts = self.repo.list_payouts_by_batch_id(batch_id)
        return Batch.from_payouts(batch_id, payouts)

    def get_payout(self, payout_id: str) -> Payout:
        return self.repo.get_payout(payout_id)

    def list_payouts(self, limit: int) -> list[Payout]:
        return self.repo.list_payouts(max(0, int(limit)))

    def get_rates(self, base: str, symbols: str) -> RateTable:
        return self.gateway.get_rates(base, symbols)

    def cancel(self) -> None:
        self.cancel_event.set()


