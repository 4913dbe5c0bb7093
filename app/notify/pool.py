# app/notify/pool.py
from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from threading import Event, Lock
from typing import Optional

from app.notify.webhook import BatchNotifier
from app.payouts.errors import NotifyError
from app.payouts.model import Payout
from services.metrics import increment_batch_notification


class NotificationPool:
    """
    Supervised pool for batch-completion notifications.

    - at most `max_in_flight` deliveries run at once; the rest queue
    - submit() never blocks the caller and never raises
    - shutdown() drains queued deliveries up to a deadline, then cancels the rest
    """

    def __init__(
        self,
        notifier: BatchNotifier,
        *,
        max_in_flight: int = 4,
        logger: Optional[logging.Logger] = None,
    ):
        self.notifier = notifier
        self.logger = logger or logging.getLogger("waya.notify")
        self._executor = ThreadPoolExecutor(max_workers=max_in_flight, thread_name_prefix="notify")
        self._cancel = Event()
        self._lock = Lock()
        self._pending: set[Future] = set()
        self._closed = False

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def submit(self, batch_id: str, payouts: list[Payout]) -> Optional[Future]:
        with self._lock:
            if self._closed:
                self.logger.warning("notification pool closed; dropping notification batch_id=%s", batch_id)
                increment_batch_notification("dropped")
                return None
            fut = self._executor.submit(self._deliver, batch_id, list(payouts))
            self._pending.add(fut)
        fut.add_done_callback(self._forget)
        return fut

    def _forget(self, fut: Future) -> None:
        with self._lock:
            self._pending.discard(fut)

    def _deliver(self, batch_id: str, payouts: list[Payout]) -> bool:
        if self._cancel.is_set():
            self.logger.warning("notification cancelled before delivery batch_id=%s", batch_id)
            increment_batch_notification("cancelled")
            return False
        try:
            self.notifier.notify_batch_completion(batch_id, payouts)
        except NotifyError as e:
            self.logger.error("client notification failed batch_id=%s err=%s", batch_id, e)
            increment_batch_notification("failed")
            return False
        except Exception:
            self.logger.exception("client notification crashed batch_id=%s", batch_id)
            increment_batch_notification("failed")
            return False
        increment_batch_notification("delivered")
        return True

    def shutdown(self, timeout: Optional[float] = None) -> None:
        with self._lock:
            self._closed = True
            pending = list(self._pending)

        if pending:
            self.logger.info("draining %s pending notification(s)", len(pending))
            _, not_done = wait(pending, timeout=timeout)
            if not_done:
                self.logger.warning("%s notification(s) still pending after drain timeout", len(not_done))

        self._cancel.set()
        self._executor.shutdown(wait=False, cancel_futures=True)
