# app/payouts/workflow.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from threading import Event, Lock
from typing import Any, Callable, Iterator, Optional

from app.gateway.base import (
    CHANNEL_BANK_ACCOUNT,
    CustomerRequest,
    PaymentGateway,
    PaymentMethodRequest,
    TransactionRequest,
)
from app.payouts.errors import NotFoundError, PayoutError, StorageError, ValidationError
from app.payouts.model import (
    Payout,
    STATUS_FAILED,
    STATUS_PROCESSING,
    STATUS_SUCCESS,
)
from app.payouts.money import format_minor_units
from app.payouts.repository import PayoutRepository
from app.payouts.state_machine import assert_failure_invariant, assert_transition
from services.metrics import increment_payout_outcome

STEP_CUSTOMER = "Failed to create customer"
STEP_PAYMENT_METHOD = "Failed to link bank account"
STEP_TRANSACTION = "Transaction failed"
STEP_UNEXPECTED = "Unexpected error"

SYNTHETIC_EMAIL_DOMAIN = "waya.com"
NARRATION_PREFIX = "Waya Payout - "


class WorkflowCancelled(Exception):
    """Raised between steps when the engine is shutting down."""


class StepFailed(Exception):
    def __init__(self, label: str, cause: BaseException):
        super().__init__(f"{label}: {cause}")
        self.label = label
        self.cause = cause


@dataclass(frozen=True)
class WorkflowOutcome:
    payout_id: str
    status: str
    error_message: Optional[str] = None
    transaction_id: Optional[str] = None


class KeyedLocks:
    """
    One lock per key, so concurrent resolve-or-create calls for the same
    email (or customer/account pair) cannot both miss and both create.
    An entry lives only while someone holds or waits on it.
    """

    def __init__(self):
        self._guard = Lock()
        self._locks: dict[Any, list] = {}  # key -> [lock, users]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key: Any) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


def is_usable_email(email: Optional[str]) -> bool:
    e = (email or "").strip()
    return bool(e) and "@" in e


def customer_email(payout: Payout) -> str:
    """
    The recipient's own email when usable, else one synthesized from the
    wallet tag (or the reference id when there is no tag).
    """
    if is_usable_email(payout.recipient_email):
        return payout.recipient_email.strip().lower()
    handle = (payout.recipient_tag or "").strip() or payout.reference_id
    return f"temp_{handle}@{SYNTHETIC_EMAIL_DOMAIN}".lower()


class PayoutWorkflow:
    """
    Drives one payout PENDING -> PROCESSING -> SUCCESS | FAILED.

      1. resolve-or-create customer (by email)
      2. resolve-or-create BANK_ACCOUNT payment method (by account number)
      3. create transaction, keyed by reference_id for idempotency

    Any error fails the payout with "<step label>: <error>" and stops.
    Status writes after the initial save are best-effort.
    """

    def __init__(
        self,
        repo: PayoutRepository,
        gateway: PaymentGateway,
        *,
        logger: logging.Logger,
        source_currency: str = "USD",
        cancel_event: Optional[Event] = None,
    ):
        self.repo = repo
        self.gateway = gateway
        self.logger = logger
        self.source_currency = source_currency
        self.cancel_event = cancel_event or Event()
        self._customer_locks = KeyedLocks()
        self._payment_method_locks = KeyedLocks()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self, payout: Payout) -> WorkflowOutcome:
        self._check_cancelled()
        self._write_status(payout, payout.status, STATUS_PROCESSING)

        try:
            customer_id = self._step(STEP_CUSTOMER, self.resolve_customer, payout)
            payment_method_id = self._step(STEP_PAYMENT_METHOD, self.resolve_payment_method, payout, customer_id)
            tx = self._step(STEP_TRANSACTION, self.create_transaction, payout, customer_id, payment_method_id)
        except StepFailed as e:
            return self.fail(payout, e.label, e.cause, from_status=STATUS_PROCESSING)

        self.logger.info(
            "payout paid payout=%s batch=%s tx_id=%s tx_status=%s",
            payout.id,
            payout.batch_id,
            tx.transaction_id,
            tx.status,
        )
        self._write_status(
            payout,
            STATUS_PROCESSING,
            STATUS_SUCCESS,
            gateway_transaction_id=tx.transaction_id,
        )
        increment_payout_outcome(STATUS_SUCCESS)
        return WorkflowOutcome(payout_id=payout.id, status=STATUS_SUCCESS, transaction_id=tx.transaction_id)

    def fail(
        self,
        payout: Payout,
        label: str,
        err: BaseException,
        *,
        from_status: str = STATUS_PROCESSING,
    ) -> WorkflowOutcome:
        message = f"{label}: {err}"
        self.logger.error("payout failed payout=%s batch=%s err=%s", payout.id, payout.batch_id, message)
        self._write_status(payout, from_status, STATUS_FAILED, error_message=message)
        increment_payout_outcome(STATUS_FAILED, step=label)
        return WorkflowOutcome(payout_id=payout.id, status=STATUS_FAILED, error_message=message)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def resolve_customer(self, payout: Payout) -> str:
        email = customer_email(payout)
        with self._customer_locks.hold(email):
            try:
                customer_id = self.gateway.find_customer_by_email(email)
                self.logger.debug("customer reused payout=%s customer=%s", payout.id, customer_id)
                return customer_id
            except NotFoundError:
                pass

            customer_id = self.gateway.create_customer(
                CustomerRequest(
                    full_name=payout.recipient_name,
                    email=email,
                    phone=payout.recipient_phone,
                    country_code=payout.country_code,
                )
            )
            self.logger.info("customer created payout=%s customer=%s", payout.id, customer_id)
            return customer_id

    def resolve_payment_method(self, payout: Payout, customer_id: str) -> str:
        account_number = (payout.account_number or "").strip()
        if not account_number:
            raise ValidationError("missing account number")

        with self._payment_method_locks.hold((customer_id, account_number)):
            try:
                return self.gateway.find_payment_method(customer_id, account_number)
            except NotFoundError:
                pass

            pm_id = self.gateway.create_payment_method(
                PaymentMethodRequest(
                    channel=CHANNEL_BANK_ACCOUNT,
                    customer_id=customer_id,
                    account_name=payout.recipient_name,
                    account_number=account_number,
                    country_code=payout.country_code,
                    bank_code=(payout.bank_code or "").strip() or None,
                )
            )
            self.logger.info("payment method created payout=%s payment_method=%s", payout.id, pm_id)
            return pm_id

    def create_transaction(self, payout: Payout, customer_id: str, payment_method_id: str):
        return self.gateway.create_transaction(
            TransactionRequest(
                customer_id=customer_id,
                payment_method_id=payment_method_id,
                source_currency=self.source_currency,
                destination_currency=payout.currency,
                destination_amount=format_minor_units(payout.amount),
                meta={
                    "narration": NARRATION_PREFIX + payout.batch_id,
                    "reference": payout.reference_id,
                },
                idempotency_key=payout.reference_id,
            )
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise WorkflowCancelled()

    def _step(self, label: str, fn: Callable[..., Any], *args: Any) -> Any:
        self._check_cancelled()
        try:
            return fn(*args)
        except PayoutError as e:
            raise StepFailed(label, e) from e

    def _write_status(
        self,
        payout: Payout,
        old: str,
        new: str,
        *,
        error_message: Optional[str] = None,
        gateway_transaction_id: Optional[str] = None,
    ) -> None:
        assert_transition(old, new)
        assert_failure_invariant(new, error_message)
        try:
            self.repo.update_payout_status(
                payout.id,
                new,
                error_message,
                gateway_transaction_id=gateway_transaction_id,
            )
        except StorageError as e:
            # visible status may go stale; the worker keeps going
            self.logger.error("status write failed payout=%s status=%s err=%s", payout.id, new, e)
