# app/gateway/mock.py
from __future__ import annotations

import uuid
from threading import Lock

from app.gateway.base import (
    CustomerRequest,
    PaymentMethodRequest,
    RateTable,
    TransactionRequest,
    TransactionResult,
)
from app.payouts.errors import GatewayError, NotFoundError


SANDBOX_RATES = {
    "USD": {"NGN": "1550.00", "GHS": "15.40", "KES": "129.10", "USD": "1.00"},
}

# account numbers with this prefix are rejected, to exercise the FAILED path
SANDBOX_REJECT_PREFIX = "0000"


class MockGateway:
    """
    Sandbox/dev gateway.

    Keeps customers, payment methods and transactions in memory and honours
    the same resolve-or-create and idempotency contract as the real rail.
    """

    def __init__(self):
        self._lock = Lock()
        self.customers: dict[str, str] = {}
        self.payment_methods: dict[tuple[str, str], str] = {}
        self.transactions: dict[str, TransactionResult] = {}

    def find_customer_by_email(self, email: str) -> str:
        with self._lock:
            customer_id = self.customers.get(email.strip().lower())
        if customer_id is None:
            raise NotFoundError(f"customer {email} not found")
        return customer_id

    def create_customer(self, req: CustomerRequest) -> str:
        if not req.full_name.strip():
            raise GatewayError("VALIDATION_ERROR: fullName is required", http_status=400)
        key = req.email.strip().lower()
        with self._lock:
            return self.customers.setdefault(key, f"mock-cus-{uuid.uuid4().hex[:12]}")

    def find_payment_method(self, customer_id: str, account_number: str) -> str:
        with self._lock:
            pm_id = self.payment_methods.get((customer_id, account_number))
        if pm_id is None:
            raise NotFoundError(f"payment method for customer {customer_id} not found")
        return pm_id

    def create_payment_method(self, req: PaymentMethodRequest) -> str:
        if req.account_number.startswith(SANDBOX_REJECT_PREFIX):
            raise GatewayError("INVALID_ACCOUNT: account could not be verified", http_status=422)
        with self._lock:
            return self.payment_methods.setdefault(
                (req.customer_id, req.account_number),
                f"mock-pm-{uuid.uuid4().hex[:12]}",
            )

    def create_transaction(self, req: TransactionRequest) -> TransactionResult:
        key = req.idempotency_key or uuid.uuid4().hex
        with self._lock:
            existing = self.transactions.get(key)
            if existing is not None:
                return existing
            result = TransactionResult(
                transaction_id=f"mock-tx-{uuid.uuid4().hex[:12]}",
                status="PENDING",
            )
            self.transactions[key] = result
            return result

    def get_rates(self, base: str, symbols: str) -> RateTable:
        table = SANDBOX_RATES.get(base.strip().upper())
        if table is None:
            raise GatewayError(f"RATE_NOT_FOUND: no rates for base {base}", http_status=404)
        wanted = {s.strip().upper() for s in symbols.split(",") if s.strip()}
        picked = {k: v for k, v in table.items() if not wanted or k in wanted}
        return RateTable(base=base.strip().upper(), rates={base.strip().upper(): picked})
