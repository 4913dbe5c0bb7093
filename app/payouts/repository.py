# app/payouts/repository.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional, Protocol

import psycopg2
from psycopg2.extras import RealDictCursor

from app.payouts.errors import NotFoundError, StorageError
from app.payouts.model import Payout, UNFINISHED_STATUSES

logger = logging.getLogger("waya.payouts.repository")

TERMINAL_GUARD_SQL = "AND status NOT IN ('SUCCESS','FAILED')"

_PAYOUT_COLUMNS = """
  id,
  batch_id,
  reference_id,
  recipient_name,
  recipient_phone,
  recipient_email,
  recipient_tag,
  country_code,
  bank_code,
  account_number,
  bank_name,
  amount,
  currency,
  status,
  error_message,
  gateway_transaction_id,
  created_at,
  updated_at
"""


class PayoutRepository(Protocol):
    """
    Persistence contract consumed by the orchestration engine.
    Implementations must tolerate concurrent writes to distinct rows;
    the engine assumes nothing beyond last-write-visible-on-read.
    """

    def save_payout(self, payout: Payout) -> None: ...
    def get_payout(self, payout_id: str) -> Payout: ...
    def update_payout_status(
        self,
        payout_id: str,
        status: str,
        error_message: Optional[str],
        *,
        gateway_transaction_id: Optional[str] = None,
    ) -> None: ...
    def list_payouts(self, limit: int) -> list[Payout]: ...
    def list_payouts_by_batch_id(self, batch_id: str) -> list[Payout]: ...
    def list_unfinished_payouts(self) -> list[Payout]: ...


def _row_to_payout(row: dict[str, Any]) -> Payout:
    return Payout(
        id=str(row["id"]),
        batch_id=str(row["batch_id"]),
        reference_id=row["reference_id"],
        recipient_name=row["recipient_name"],
        recipient_phone=row["recipient_phone"] or "",
        recipient_email=row.get("recipient_email"),
        recipient_tag=row.get("recipient_tag"),
        country_code=row["country_code"],
        bank_code=row.get("bank_code"),
        account_number=row.get("account_number"),
        bank_name=row.get("bank_name"),
        amount=int(row["amount"]),
        currency=row["currency"],
        status=row["status"],
        error_message=row.get("error_message"),
        gateway_transaction_id=row.get("gateway_transaction_id"),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def _nullable(value: Optional[str]) -> Optional[str]:
    # empty strings are stored as NULL
    v = (value or "").strip()
    return v or None


class PostgresPayoutRepository:
    def __init__(self, conn_factory: Optional[Callable[[], Any]] = None):
        if conn_factory is None:
            from db import get_conn
            conn_factory = get_conn
        self._conn_factory = conn_factory

    @contextmanager
    def _conn(self) -> Iterator[Any]:
        try:
            with self._conn_factory() as conn:
                yield conn
        except psycopg2.Error as e:
            logger.error("payout storage error: %s", e)
            raise StorageError(f"{type(e).__name__}: {e}") from e

    # ==========================================================
    # Writes
    # ==========================================================

    def save_payout(self, payout: Payout) -> None:
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO app.payouts (
                      id, batch_id, reference_id,
                      recipient_name, recipient_phone, recipient_email, recipient_tag,
                      country_code, bank_code, account_number, bank_name,
                      amount, currency, status, error_message,
                      created_at, updated_at
                    )
                    VALUES (
                      %s, %s, %s,
                      %s, %s, %s, %s,
                      %s, %s, %s, %s,
                      %s, %s, %s, %s,
                      COALESCE(%s, now()), now()
                    )
                    """,
                    (
                        payout.id,
                        payout.batch_id,
                        payout.reference_id,
                        payout.recipient_name,
                        payout.recipient_phone,
                        _nullable(payout.recipient_email),
                        _nullable(payout.recipient_tag),
                        payout.country_code,
                        _nullable(payout.bank_code),
                        _nullable(payout.account_number),
                        _nullable(payout.bank_name),
                        payout.amount,
                        payout.currency,
                        payout.status,
                        payout.error_message,
                        payout.created_at,
                    ),
                )

    def update_payout_status(
        self,
        payout_id: str,
        status: str,
        error_message: Optional[str],
        *,
        gateway_transaction_id: Optional[str] = None,
    ) -> None:
        """
        Terminal rows are never rewritten; a write against one is a no-op.
        """
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    UPDATE app.payouts
                    SET
                      status = %s,
                      error_message = %s,
                      gateway_transaction_id = COALESCE(%s, gateway_transaction_id),
                      updated_at = now()
                    WHERE id = %s
                    {TERMINAL_GUARD_SQL}
                    """,
                    (status, error_message, gateway_transaction_id, payout_id),
                )
                if cur.rowcount != 1:
                    logger.warning("payout=%s status write to %s not applied (missing or terminal)", payout_id, status)

    # ==========================================================
    # Reads
    # ==========================================================

    def get_payout(self, payout_id: str) -> Payout:
        with self._conn() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"SELECT {_PAYOUT_COLUMNS} FROM app.payouts WHERE id = %s",
                    (payout_id,),
                )
                row = cur.fetchone()
        if not row:
            raise NotFoundError(f"payout {payout_id} not found")
        return _row_to_payout(dict(row))

    def list_payouts(self, limit: int) -> list[Payout]:
        with self._conn() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"""
                    SELECT {_PAYOUT_COLUMNS}
                    FROM app.payouts
                    ORDER BY created_at DESC, id
                    LIMIT %s
                    """,
                    (int(limit),),
                )
                rows = cur.fetchall()
        return [_row_to_payout(dict(r)) for r in rows]

    def list_payouts_by_batch_id(self, batch_id: str) -> list[Payout]:
        with self._conn() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"""
                    SELECT {_PAYOUT_COLUMNS}
                    FROM app.payouts
                    WHERE batch_id = %s
                    ORDER BY created_at, id
                    """,
                    (batch_id,),
                )
                rows = cur.fetchall()
        if not rows:
            raise NotFoundError(f"batch {batch_id} not found")
        return [_row_to_payout(dict(r)) for r in rows]

    def list_unfinished_payouts(self) -> list[Payout]:
        with self._conn() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"""
                    SELECT {_PAYOUT_COLUMNS}
                    FROM app.payouts
                    WHERE status = ANY(%s)
                    ORDER BY created_at, id
                    """,
                    (list(UNFINISHED_STATUSES),),
                )
                rows = cur.fetchall()
        return [_row_to_payout(dict(r)) for r in rows]
