# deps/auth.py
import hmac

from fastapi import Depends, HTTPException
from fastapi.security import APIKeyHeader

from settings import settings

api_key_header = APIKeyHeader(name="x-api-key", auto_error=False)


def require_api_key(key: str | None = Depends(api_key_header)) -> None:
    expected = (settings.WAYA_API_KEY or "").strip()

    # no key configured means nothing can authenticate
    if not key or not expected:
        raise HTTPException(status_code=401, detail="Unauthorized: Invalid or missing x-api-key")

    if not hmac.compare_digest(key.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=401, detail="Unauthorized: Invalid or missing x-api-key")
