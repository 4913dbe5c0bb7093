# app/gateway/http.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

logger = logging.getLogger("waya.http")

_REDACTED_HEADERS = {"authorization", "x-api-key"}


@dataclass
class HttpResponse:
    status_code: int
    json: Optional[Any]
    text: str


class HttpClient:
    def __init__(
        self,
        base_url: str = "",
        timeout_s: float = 30.0,
        follow_redirects: bool = True,
        transport: httpx.BaseTransport | None = None,
    ):
        # httpx.Client is thread-safe; one instance is shared by all payout workers
        self._client = httpx.Client(
            base_url=base_url,
            timeout=timeout_s,
            follow_redirects=follow_redirects,
            transport=transport,
        )

    def post(
        self,
        url: str,
        *,
        headers: dict[str, str],
        json_body: dict[str, Any] | None = None,
    ) -> HttpResponse:
        r = self._client.post(url, headers=headers, json=json_body)
        self._debug_dump("POST", url, headers, r)
        return self._wrap(r)

    def get(
        self,
        url: str,
        *,
        headers: dict[str, str],
        params: dict[str, str] | None = None,
    ) -> HttpResponse:
        r = self._client.get(url, headers=headers, params=params)
        self._debug_dump("GET", url, headers, r)
        return self._wrap(r)

    def close(self) -> None:
        self._client.close()

    @staticmethod
    def _wrap(r: httpx.Response) -> HttpResponse:
        try:
            payload = r.json()
        except ValueError:
            payload = None
        return HttpResponse(status_code=r.status_code, json=payload, text=r.text)

    @staticmethod
    def _debug_dump(method: str, url: str, headers: dict[str, str], r: httpx.Response) -> None:
        if not logger.isEnabledFor(logging.DEBUG):
            return
        # Don't log secrets
        safe_headers = {
            k: ("REDACTED" if k.lower() in _REDACTED_HEADERS else v)
            for k, v in (headers or {}).items()
        }
        logger.debug(
            "%s %s headers=%s -> status=%s text=%s",
            method,
            url,
            safe_headers,
            r.status_code,
            r.text[:300],
        )


def is_retryable_http(code: int) -> bool:
    # Transient / throttling / gateway issues
    return code in (408, 425, 429, 500, 502, 503, 504)
