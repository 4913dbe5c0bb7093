# app/gateway/base.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol

CHANNEL_BANK_ACCOUNT = "BANK_ACCOUNT"


@dataclass(frozen=True)
class CustomerRequest:
    full_name: str
    email: str
    phone: str
    country_code: str


@dataclass(frozen=True)
class PaymentMethodRequest:
    channel: str
    customer_id: str
    account_name: str
    account_number: str
    country_code: str
    bank_code: Optional[str] = None  # sent as the institution code


@dataclass(frozen=True)
class TransactionRequest:
    customer_id: str
    payment_method_id: str
    source_currency: str
    destination_currency: str
    destination_amount: str  # "5000.00", never a float
    meta: dict[str, str] = field(default_factory=dict)

    # the rail dedups on this; the engine passes the payout reference_id
    idempotency_key: Optional[str] = None


@dataclass(frozen=True)
class TransactionResult:
    transaction_id: str
    status: str


@dataclass(frozen=True)
class RateTable:
    base: str
    rates: dict[str, dict[str, str]]
    updated_at: Optional[int] = None


class PaymentGateway(Protocol):
    """
    External rail contract. Lookups raise NotFoundError on a miss;
    every other failure raises GatewayError.
    """

    def find_customer_by_email(self, email: str) -> str: ...
    def create_customer(self, req: CustomerRequest) -> str: ...
    def find_payment_method(self, customer_id: str, account_number: str) -> str: ...
    def create_payment_method(self, req: PaymentMethodRequest) -> str: ...
    def create_transaction(self, req: TransactionRequest) -> TransactionResult: ...
    def get_rates(self, base: str, symbols: str) -> RateTable: ...
