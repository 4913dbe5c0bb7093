# app/workers/batch_runner.py
from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from threading import Lock
from typing import Optional, Sequence

from app.payouts.engine import BatchResult, PayoutOrchestrator
from app.payouts.model import Payout


class RunnerClosed(RuntimeError):
    pass


class BatchRunner:
    """
    Decouples submission from processing.

    submit() persists the batch synchronously (so the caller learns about
    storage failures) and returns; processing runs on this runner's threads.
    The payout rows are the durable queue: anything left PENDING/PROCESSING
    by a crash or shutdown is picked up again by recover().
    """

    def __init__(
        self,
        orchestrator: PayoutOrchestrator,
        *,
        max_workers: int = 2,
        logger: Optional[logging.Logger] = None,
    ):
        self.orchestrator = orchestrator
        self.logger = logger or logging.getLogger("waya.worker")
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="batch")
        self._lock = Lock()
        self._pending: dict[str, Future] = {}
        self._closed = False

    def submit(self, batch_id: str, payouts: Sequence[Payout]) -> str:
        if self._closed:
            raise RunnerClosed("batch runner is shutting down")
        stamped = self.orchestrator.persist_batch(batch_id, payouts)
        self._enqueue(batch_id, stamped)
        self.logger.info("batch accepted batch=%s count=%s", batch_id, len(stamped))
        return batch_id

    def recover(self) -> int:
        """
        Re-enqueue every batch with unfinished payouts. Returns the number
        of batches resumed.
        """
        grouped = self.orchestrator.unfinished_batches()
        for batch_id, payouts in grouped.items():
            self.logger.info("resuming batch=%s unfinished=%s", batch_id, len(payouts))
            self._enqueue(batch_id, payouts)
        return len(grouped)

    def in_flight(self) -> list[str]:
        with self._lock:
            return list(self._pending)

    def _enqueue(self, batch_id: str, payouts: Sequence[Payout]) -> Future:
        with self._lock:
            if self._closed:
                raise RunnerClosed("batch runner is shutting down")
            existing = self._pending.get(batch_id)
            if existing is not None and not existing.done():
                return existing
            fut = self._executor.submit(self._process, batch_id, list(payouts))
            self._pending[batch_id] = fut
        fut.add_done_callback(lambda f, b=batch_id: self._forget(b, f))
        return fut

    def _forget(self, batch_id: str, fut: Future) -> None:
        with self._lock:
            if self._pending.get(batch_id) is fut:
                del self._pending[batch_id]

    def _process(self, batch_id: str, payouts: list[Payout]) -> Optional[BatchResult]:
        try:
            return self.orchestrator.process_batch(batch_id, payouts)
        except Exception:
            self.logger.exception("batch processing crashed batch=%s", batch_id)
            return None

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """
        Signal cancellation, give in-flight workers up to `timeout` seconds to
        stop at their next step boundary, then drop whatever never started.
        """
        with self._lock:
            self._closed = True
            pending = list(self._pending.values())

        self.orchestrator.cancel()
        if pending:
            _, not_done = wait(pending, timeout=timeout)
            if not_done:
                self.logger.warning("%s batch(es) still running after shutdown timeout", len(not_done))
        self._executor.shutdown(wait=False, cancel_futures=True)
