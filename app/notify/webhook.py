# app/notify/webhook.py
from __future__ import annotations

import hashlib
import hmac
import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

import requests

from settings import settings
from app.payouts.errors import NotifyError
from app.payouts.model import Payout

logger = logging.getLogger("waya.notify")

BATCH_COMPLETED_EVENT = "WAYA.BATCH_COMPLETED"
SIGNATURE_HEADER = "X-Waya-Signature"


class BatchNotifier(Protocol):
    def notify_batch_completion(self, batch_id: str, payouts: list[Payout]) -> None: ...


def canonical_json_bytes(payload: Any) -> bytes:
    return json.dumps(
        payload,
        separators=(",", ":"),
        sort_keys=True,
        ensure_ascii=False,
        default=str,
    ).encode("utf-8")


def sign_body(secret: str, body_bytes: bytes) -> str:
    return "sha256=" + hmac.new(secret.encode("utf-8"), body_bytes, hashlib.sha256).hexdigest()


def build_batch_payload(batch_id: str, payouts: list[Payout], *, now: Optional[datetime] = None) -> dict[str, Any]:
    ts = now or datetime.now(timezone.utc)
    return {
        "event": BATCH_COMPLETED_EVENT,
        "batch_id": batch_id,
        "timestamp": ts.isoformat(),
        "data": {
            "total_count": len(payouts),
            "payouts": [p.to_dict() for p in payouts],
        },
    }


class WebhookNotifier:
    """
    POSTs the final batch state to the client system (BetaWorkOS).
    Raises NotifyError on any delivery failure; callers decide whether to care.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        secret: Optional[str] = None,
        timeout_s: Optional[float] = None,
    ):
        self.webhook_url = (webhook_url if webhook_url is not None else settings.BETAWORKOS_WEBHOOK_URL or "").strip()
        self.secret = (secret if secret is not None else settings.WAYA_WEBHOOK_SECRET or "").strip()
        self.timeout_s = float(timeout_s if timeout_s is not None else settings.NOTIFY_HTTP_TIMEOUT_S)

    def notify_batch_completion(self, batch_id: str, payouts: list[Payout]) -> None:
        if not self.webhook_url:
            logger.warning("Skipping client notification: BETAWORKOS_WEBHOOK_URL is not set (batch_id=%s)", batch_id)
            return

        logger.info("Notifying client system batch_id=%s url=%s count=%s", batch_id, self.webhook_url, len(payouts))

        body = canonical_json_bytes(build_batch_payload(batch_id, payouts))
        headers = {"Content-Type": "application/json"}
        if self.secret:
            headers[SIGNATURE_HEADER] = sign_body(self.secret, body)

        try:
            resp = requests.post(self.webhook_url, data=body, headers=headers, timeout=self.timeout_s)
        except requests.RequestException as e:
            raise NotifyError(f"client notification failed: {e}") from e

        if resp.status_code >= 300:
            raise NotifyError(f"client returned status code {resp.status_code}")

        logger.info("Client notified batch_id=%s status=%s", batch_id, resp.status_code)
