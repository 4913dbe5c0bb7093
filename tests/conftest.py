# tests/conftest.py

import logging
import time
import uuid
from dataclasses import replace
from threading import Lock
from typing import Callable, Optional

import pytest

from app.gateway.base import (
    CustomerRequest,
    PaymentMethodRequest,
    RateTable,
    TransactionRequest,
    TransactionResult,
)
from app.notify.pool import NotificationPool
from app.payouts.engine import PayoutOrchestrator
from app.payouts.errors import GatewayError, NotFoundError, StorageError
from app.payouts.model import Payout, TERMINAL_STATUSES, UNFINISHED_STATUSES
from services import metrics


# ---------------------------
# In-memory ports
# ---------------------------

class InMemoryPayoutRepository:
    def __init__(self):
        self._lock = Lock()
        self.rows: dict[str, Payout] = {}
        self.status_writes: list[tuple[str, str, Optional[str]]] = []
        self.fail_save: Optional[Callable[[Payout], bool]] = None
        self.fail_update = False

    def save_payout(self, payout: Payout) -> None:
        if self.fail_save is not None and self.fail_save(payout):
            raise StorageError("disk full")
        with self._lock:
            self.rows[payout.id] = payout

    def get_payout(self, payout_id: str) -> Payout:
        with self._lock:
            p = self.rows.get(payout_id)
        if p is None:
            raise NotFoundError(f"payout {payout_id} not found")
        return p

    def update_payout_status(self, payout_id, status, error_message, *, gateway_transaction_id=None) -> None:
        if self.fail_update:
            raise StorageError("connection reset")
        with self._lock:
            self.status_writes.append((payout_id, status, error_message))
            current = self.rows[payout_id]
            if current.status in TERMINAL_STATUSES:
                return
            self.rows[payout_id] = replace(
                current,
                status=status,
                error_message=error_message,
                gateway_transaction_id=gateway_transaction_id or current.gateway_transaction_id,
            )

    def list_payouts(self, limit: int) -> list[Payout]:
        with self._lock:
            rows = sorted(self.rows.values(), key=lambda p: p.created_at, reverse=True)
        return rows[:limit]

    def list_payouts_by_batch_id(self, batch_id: str) -> list[Payout]:
        with self._lock:
            rows = [p for p in self.rows.values() if p.batch_id == batch_id]
        if not rows:
            raise NotFoundError(f"batch {batch_id} not found")
        return rows

    def list_unfinished_payouts(self) -> list[Payout]:
        with self._lock:
            return [p for p in self.rows.values() if p.status in UNFINISHED_STATUSES]


class FakeGateway:
    """
    Records every call; failures are switched on per recipient name.
    Tracks the peak number of concurrent gateway calls.
    """

    def __init__(self, delay_s: float = 0.0):
        self.delay_s = delay_s
        self._lock = Lock()
        self.customers: dict[str, str] = {}
        self.payment_methods: dict[tuple[str, str], str] = {}
        self.calls: list[tuple[str, object]] = []
        self.transactions: list[TransactionRequest] = []
        self.fail_create_customer_for: set[str] = set()
        self.fail_lookup_customer_for: set[str] = set()
        self.fail_transaction_for_currency: set[str] = set()
        self.in_flight = 0
        self.max_in_flight = 0

    def _enter(self, name: str, arg: object) -> None:
        with self._lock:
            self.calls.append((name, arg))
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        if self.delay_s:
            time.sleep(self.delay_s)

    def _exit(self) -> None:
        with self._lock:
            self.in_flight -= 1

    def count(self, name: str) -> int:
        with self._lock:
            return sum(1 for n, _ in self.calls if n == name)

    def find_customer_by_email(self, email: str) -> str:
        self._enter("find_customer_by_email", email)
        try:
            with self._lock:
                if email in self.fail_lookup_customer_for:
                    raise GatewayError("HTTP 500: upstream exploded")
                if email not in self.customers:
                    raise NotFoundError(email)
                return self.customers[email]
        finally:
            self._exit()

    def create_customer(self, req: CustomerRequest) -> str:
        self._enter("create_customer", req)
        try:
            if req.full_name in self.fail_create_customer_for:
                raise GatewayError("VALIDATION_ERROR: phone is invalid")
            with self._lock:
                return self.customers.setdefault(req.email, f"cus-{uuid.uuid4().hex[:8]}")
        finally:
            self._exit()

    def find_payment_method(self, customer_id: str, account_number: str) -> str:
        self._enter("find_payment_method", (customer_id, account_number))
        try:
            with self._lock:
                key = (customer_id, account_number)
                if key not in self.payment_methods:
                    raise NotFoundError(account_number)
                return self.payment_methods[key]
        finally:
            self._exit()

    def create_payment_method(self, req: PaymentMethodRequest) -> str:
        self._enter("create_payment_method", req)
        try:
            with self._lock:
                return self.payment_methods.setdefault(
                    (req.customer_id, req.account_number), f"pm-{uuid.uuid4().hex[:8]}"
                )
        finally:
            self._exit()

    def create_transaction(self, req: TransactionRequest) -> TransactionResult:
        self._enter("create_transaction", req)
        try:
            if req.destination_currency in self.fail_transaction_for_currency:
                raise GatewayError("INSUFFICIENT_BALANCE: pool is empty")
            with self._lock:
                self.transactions.append(req)
            return TransactionResult(transaction_id=f"tx-{req.idempotency_key}", status="PENDING")
        finally:
            self._exit()

    def get_rates(self, base: str, symbols: str) -> RateTable:
        self._enter("get_rates", (base, symbols))
        try:
            return RateTable(base=base, rates={base: {s: "1.00" for s in symbols.split(",")}})
        finally:
            self._exit()


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self._lock = Lock()
        self.calls: list[tuple[str, list[Payout]]] = []

    def notify_batch_completion(self, batch_id: str, payouts: list[Payout]) -> None:
        from app.payouts.errors import NotifyError

        with self._lock:
            self.calls.append((batch_id, list(payouts)))
        if self.fail:
            raise NotifyError("client returned status code 503")


# ---------------------------
# Helpers
# ---------------------------

def make_payout(
    *,
    batch_id: str = "batch-1",
    name: str = "Emeka Okonkwo",
    email: Optional[str] = "emeka@example.com",
    tag: Optional[str] = None,
    account_number: Optional[str] = "2000012345",
    amount: int = 500000,
    currency: str = "NGN",
) -> Payout:
    return Payout(
        id=str(uuid.uuid4()),
        batch_id=batch_id,
        reference_id=f"JAN_SALARY-{uuid.uuid4().hex[:8]}",
        recipient_name=name,
        recipient_phone="+2348012345678",
        recipient_email=email,
        recipient_tag=tag,
        country_code="NG",
        bank_code="033",
        account_number=account_number,
        bank_name="United Bank for Africa",
        amount=amount,
        currency=currency,
    )


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


# ---------------------------
# Fixtures
# ---------------------------

@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture()
def repo() -> InMemoryPayoutRepository:
    return InMemoryPayoutRepository()


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def notifications(notifier):
    pool = NotificationPool(notifier, max_in_flight=2)
    yield pool
    pool.shutdown(timeout=5)


@pytest.fixture()
def orchestrator(repo, gateway, notifications) -> PayoutOrchestrator:
    return PayoutOrchestrator(
        repo,
        gateway,
        notifications,
        logger=logging.getLogger("tests.payouts"),
        concurrency=10,
        source_currency="USD",
    )
