# app/gateway/afriex.py
from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from settings import settings
from app.gateway.base import (
    CustomerRequest,
    PaymentMethodRequest,
    RateTable,
    TransactionRequest,
    TransactionResult,
)
from app.gateway.http import HttpClient, HttpResponse, is_retryable_http
from app.payouts.errors import GatewayError, NotFoundError


logger = logging.getLogger("waya.afriex")

CUSTOMER_PATH = "/api/v1/customer"
PAYMENT_METHOD_PATH = "/api/v1/payment-method"
TRANSACTION_PATH = "/api/v1/transaction"
RATES_PATH = "/v2/public/rates"


def _data(payload: Any) -> Any:
    """
    Afriex wraps results like {"data": {...}} or {"data": [...]}.
    """
    if isinstance(payload, dict) and "data" in payload:
        return payload["data"]
    return payload


def _as_list(data: Any) -> list[dict[str, Any]]:
    if isinstance(data, list):
        return [d for d in data if isinstance(d, dict)]
    if isinstance(data, dict) and data:
        return [data]
    return []


class AfriexGateway:
    """
    Afriex REST adapter:
      - customers and payment methods are looked up before they are created
      - transactions carry an Idempotency-Key so a resumed payout cannot pay twice
    """

    def __init__(self, http: Optional[HttpClient] = None, api_key: Optional[str] = None):
        self.base_url = (settings.AFRIEX_BASE_URL or "").strip().rstrip("/")
        self.api_key = (api_key if api_key is not None else settings.AFRIEX_API_KEY or "").strip()
        self.http = http or HttpClient(
            base_url=self.base_url,
            timeout_s=float(settings.AFRIEX_HTTP_TIMEOUT_S),
        )

    def close(self) -> None:
        self.http.close()

    def _headers(self, idempotency_key: Optional[str] = None) -> dict[str, str]:
        h = {"Content-Type": "application/json", "x-api-key": self.api_key}
        if idempotency_key:
            h["Idempotency-Key"] = idempotency_key
        return h

    @staticmethod
    def _raise_for_status(resp: HttpResponse, *, lookup: bool = False) -> None:
        if resp.status_code < 400:
            return
        if lookup and resp.status_code == 404:
            raise NotFoundError("not found")

        body = resp.json if isinstance(resp.json, dict) else {}
        code = body.get("code")
        message = body.get("error") or body.get("message")
        retryable = is_retryable_http(resp.status_code)
        if code and message:
            raise GatewayError(f"{code}: {message}", http_status=resp.status_code, code=str(code), retryable=retryable)
        raise GatewayError(f"HTTP {resp.status_code}: {resp.text[:300]}", http_status=resp.status_code, retryable=retryable)

    def _get(self, path: str, params: dict[str, str], *, lookup: bool = False) -> Any:
        try:
            resp = self.http.get(path, headers=self._headers(), params=params)
        except httpx.HTTPError as e:
            raise GatewayError(f"network error: {e}", retryable=True) from e
        logger.debug("afriex GET %s status=%s", path, resp.status_code)
        self._raise_for_status(resp, lookup=lookup)
        return resp.json

    def _post(self, path: str, body: dict[str, Any], *, idempotency_key: Optional[str] = None) -> Any:
        try:
            resp = self.http.post(path, headers=self._headers(idempotency_key), json_body=body)
        except httpx.HTTPError as e:
            raise GatewayError(f"network error: {e}", retryable=True) from e
        logger.debug("afriex POST %s status=%s", path, resp.status_code)
        self._raise_for_status(resp)
        return resp.json

    # ------------------------------------------------------------------
    # Step 1: customers
    # ------------------------------------------------------------------

    def find_customer_by_email(self, email: str) -> str:
        payload = self._get(CUSTOMER_PATH, {"email": email}, lookup=True)
        wanted = (email or "").strip().lower()
        for c in _as_list(_data(payload)):
            if (c.get("email") or "").strip().lower() == wanted and c.get("customerId"):
                return str(c["customerId"])
        raise NotFoundError(f"customer {email} not found")

    def create_customer(self, req: CustomerRequest) -> str:
        payload = self._post(
            CUSTOMER_PATH,
            {
                "fullName": req.full_name,
                "email": req.email,
                "phone": req.phone,
                "countryCode": req.country_code,
                "kyc": {},
                "meta": {},
            },
        )
        customer_id = (_data(payload) or {}).get("customerId")
        if not customer_id:
            raise GatewayError("customer response missing customerId")
        return str(customer_id)

    # ------------------------------------------------------------------
    # Step 2: payment methods
    # ------------------------------------------------------------------

    def find_payment_method(self, customer_id: str, account_number: str) -> str:
        payload = self._get(PAYMENT_METHOD_PATH, {"customerId": customer_id}, lookup=True)
        for pm in _as_list(_data(payload)):
            if str(pm.get("accountNumber") or "") == account_number and pm.get("paymentMethodId"):
                return str(pm["paymentMethodId"])
        raise NotFoundError(f"payment method for customer {customer_id} not found")

    def create_payment_method(self, req: PaymentMethodRequest) -> str:
        institution: dict[str, str] = {}
        if req.bank_code:
            institution["institutionCode"] = req.bank_code

        payload = self._post(
            PAYMENT_METHOD_PATH,
            {
                "channel": req.channel,
                "customerId": req.customer_id,
                "accountName": req.account_name,
                "accountNumber": req.account_number,
                "countryCode": req.country_code,
                "institution": institution,
            },
        )
        pm_id = (_data(payload) or {}).get("paymentMethodId")
        if not pm_id:
            raise GatewayError("payment method response missing paymentMethodId")
        return str(pm_id)

    # ------------------------------------------------------------------
    # Step 3: transactions
    # ------------------------------------------------------------------

    def create_transaction(self, req: TransactionRequest) -> TransactionResult:
        payload = self._post(
            TRANSACTION_PATH,
            {
                "customerId": req.customer_id,
                "destinationId": req.payment_method_id,
                "sourceCurrency": req.source_currency,
                "destinationCurrency": req.destination_currency,
                "destinationAmount": req.destination_amount,
                "meta": dict(req.meta),
            },
            idempotency_key=req.idempotency_key,
        )
        data = _data(payload) or {}
        tx_id = data.get("transactionId")
        if not tx_id:
            raise GatewayError("transaction response missing transactionId")
        return TransactionResult(
            transaction_id=str(tx_id),
            status=str(data.get("status") or ""),
        )

    # ------------------------------------------------------------------
    # Utils
    # ------------------------------------------------------------------

    def get_rates(self, base: str, symbols: str) -> RateTable:
        payload = self._get(RATES_PATH, {"base": base, "symbols": symbols})
        body = payload if isinstance(payload, dict) else {}
        return RateTable(
            base=base,
            rates=body.get("rates") or {},
            updated_at=body.get("updatedAt"),
        )
