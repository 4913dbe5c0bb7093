# app/gateway/factory.py
from __future__ import annotations

from typing import Any, Dict

from settings import settings

_GATEWAY_CACHE: Dict[str, Any] = {}


def gateway_mode() -> str:
    return (settings.GATEWAY_MODE or "sandbox").strip().lower()


def get_gateway(mode: str | None = None):
    key = (mode or gateway_mode()).strip().lower()

    if key in _GATEWAY_CACHE:
        return _GATEWAY_CACHE[key]

    if key == "sandbox":
        from app.gateway.mock import MockGateway
        gateway = MockGateway()

    elif key == "real":
        from app.gateway.afriex import AfriexGateway
        gateway = AfriexGateway()

    else:
        raise ValueError(f"Unsupported gateway mode: {key}")

    _GATEWAY_CACHE[key] = gateway
    return gateway


def close_gateways() -> None:
    """Release cached gateways' HTTP clients; called on app shutdown."""
    gateways = list(_GATEWAY_CACHE.values())
    _GATEWAY_CACHE.clear()
    for gateway in gateways:
        close = getattr(gateway, "close", None)
        if close is not None:
            close()
