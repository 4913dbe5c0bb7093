from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Optional, Any
from datetime import datetime


STATUS_PENDING = "PENDING"
STATUS_PROCESSING = "PROCESSING"
STATUS_SUCCESS = "SUCCESS"
STATUS_FAILED = "FAILED"

TERMINAL_STATUSES = (STATUS_SUCCESS, STATUS_FAILED)
UNFINISHED_STATUSES = (STATUS_PENDING, STATUS_PROCESSING)

BATCH_PENDING = "PENDING"
BATCH_PROCESSING = "PROCESSING"
BATCH_PARTIAL = "PARTIAL"
BATCH_COMPLETED = "COMPLETED"
BATCH_FAILED = "FAILED"


@dataclass(frozen=True)
class Payout:
    id: str
    batch_id: str
    reference_id: str

    recipient_name: str
    recipient_phone: str
    country_code: str
    amount: int  # minor units
    currency: str

    recipient_email: Optional[str] = None
    recipient_tag: Optional[str] = None

    bank_code: Optional[str] = None
    account_number: Optional[str] = None
    bank_name: Optional[str] = None

    status: str = STATUS_PENDING
    error_message: Optional[str] = None
    gateway_transaction_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise TypeError("amount must be an integer number of minor units")
        if self.amount < 0:
            raise ValueError("amount must be >= 0")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def with_status(self, status: str, error_message: Optional[str] = None, **changes: Any) -> "Payout":
        return replace(self, status=status, error_message=error_message, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "batch_id": self.batch_id,
            "reference_id": self.reference_id,
            "recipient_name": self.recipient_name,
            "recipient_phone": self.recipient_phone,
            "recipient_email": self.recipient_email,
            "recipient_tag": self.recipient_tag,
            "country_code": self.country_code,
            "bank_code": self.bank_code,
            "account_number": self.account_number,
            "bank_name": self.bank_name,
            "amount": self.amount,
            "currency": self.currency,
            "status": self.status,
            "error_message": self.error_message,
            "gateway_transaction_id": self.gateway_transaction_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


def derive_batch_status(statuses: list[str]) -> str:
    """
    Summarize member statuses:
      all PENDING -> PENDING, anything unfinished -> PROCESSING,
      all SUCCESS -> COMPLETED, all FAILED -> FAILED, otherwise PARTIAL.
    """
    if not statuses:
        raise ValueError("a batch has at least one payout")

    if all(s == STATUS_PENDING for s in statuses):
        return BATCH_PENDING
    if any(s in UNFINISHED_STATUSES for s in statuses):
        return BATCH_PROCESSING
    if all(s == STATUS_SUCCESS for s in statuses):
        return BATCH_COMPLETED
    if all(s == STATUS_FAILED for s in statuses):
        return BATCH_FAILED
    return BATCH_PARTIAL


@dataclass(frozen=True)
class Batch:
    id: str
    total_amount: int
    total_count: int
    status: str
    payouts: list[Payout] = field(default_factory=list)

    @classmethod
    def from_payouts(cls, batch_id: str, payouts: list[Payout]) -> "Batch":
        return cls(
            id=batch_id,
            total_amount=sum(p.amount for p in payouts),
            total_count=len(payouts),
            status=derive_batch_status([p.status for p in payouts]),
            payouts=list(payouts),
        )

    @property
    def success_count(self) -> int:
        return sum(1 for p in self.payouts if p.status == STATUS_SUCCESS)

    @property
    def failed_count(self) -> int:
        return sum(1 for p in self.payouts if p.status == STATUS_FAILED)
