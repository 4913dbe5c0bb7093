# schemas.py
from __future__ import annotations

from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from app.payouts.model import Batch, Payout
from app.payouts.money import format_minor_units


# -------- PAYOUTS (in) --------
class PayoutItemIn(BaseModel):
    # Step 1: customer
    recipient_name: str = Field(min_length=1, max_length=200, examples=["Emeka Okonkwo"])
    recipient_phone: str = Field(default="", max_length=32, examples=["+2348012345678"])
    recipient_email: Optional[str] = Field(default=None, max_length=254, examples=["emeka@example.com"])
    recipient_tag: Optional[str] = Field(default=None, max_length=64)
    country_code: str = Field(pattern="^[A-Z]{2}$", examples=["NG"])

    # Step 2: bank
    bank_code: Optional[str] = Field(default=None, max_length=32, examples=["033"])
    account_number: Optional[str] = Field(default=None, max_length=64, examples=["2000012345"])
    bank_name: Optional[str] = Field(default=None, max_length=200)

    # Step 3: money; decimal major units, converted exactly to minor units
    amount: Decimal = Field(ge=0, max_digits=18, decimal_places=2, examples=["5000.00"])
    currency: str = Field(pattern="^[A-Z]{3}$", examples=["NGN"])

    @field_validator("country_code", "currency", mode="before")
    @classmethod
    def _upper(cls, v):
        return v.strip().upper() if isinstance(v, str) else v


class BulkPayoutRequest(BaseModel):
    batch_reference: str = Field(min_length=1, max_length=100, examples=["JAN_SALARY_2025"])
    items: List[PayoutItemIn] = Field(min_length=1)


# -------- PAYOUTS (out) --------
class BulkPayoutResponse(BaseModel):
    batch_id: str
    status: str
    message: str


class PayoutOut(BaseModel):
    id: str
    batch_id: str
    reference_id: str
    recipient_name: str
    recipient_phone: str
    recipient_email: Optional[str] = None
    recipient_tag: Optional[str] = None
    country_code: str
    bank_code: Optional[str] = None
    account_number: Optional[str] = None
    bank_name: Optional[str] = None
    amount: int
    amount_display: str
    currency: str
    status: str
    error_message: Optional[str] = None
    gateway_transaction_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_domain(cls, p: Payout) -> "PayoutOut":
        return cls(**p.to_dict(), amount_display=format_minor_units(p.amount))


class BatchOut(BaseModel):
    id: str
    status: str
    total_amount: int
    total_count: int
    success_count: int
    failed_count: int
    payouts: List[PayoutOut]

    @classmethod
    def from_domain(cls, b: Batch) -> "BatchOut":
        return cls(
            id=b.id,
            status=b.status,
            total_amount=b.total_amount,
            total_count=b.total_count,
            success_count=b.success_count,
            failed_count=b.failed_count,
            payouts=[PayoutOut.from_domain(p) for p in b.payouts],
        )


# -------- FX --------
class RatesResponse(BaseModel):
    base: str
    rates: dict[str, dict[str, Any]]
    updated_at: Optional[int] = None
