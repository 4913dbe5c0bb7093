# app/payouts/errors.py
from __future__ import annotations


class PayoutError(Exception):
    """Base for every error the orchestration layer raises or maps."""


class ValidationError(PayoutError):
    pass


class NotFoundError(PayoutError):
    """
    Lookup miss (customer, payment method, payout, batch).
    The workflow branches on this: not-found -> create, anything else -> fatal.
    """


class GatewayError(PayoutError):
    def __init__(
        self,
        message: str,
        *,
        http_status: int | None = None,
        code: str | None = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.http_status = http_status
        self.code = code
        # informational only: the engine never retries automatically
        self.retryable = retryable


class StorageError(PayoutError):
    pass


class NotifyError(PayoutError):
    pass
