# connectors/lark/options.py
from __future__ import annotations
from typing import Any, Dict, Iterable
from common.models import RequestOptions


def _merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(a)
    for k, v in b.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge(out[k], v)
        else:
            out[k] = v
    return out


def with_all(options: Iterable[RequestOptions]) -> RequestOptions:
    """Deep-merge several option sets; later ones win."""
    merged: Dict[str, Any] = {}
    for o in options:
        merged = _merge(merged, o.model_dump(exclude_unset=True))
    return RequestOptions(**merged)


def with_tenant_key(tenant_key: str) -> RequestOptions:
    return RequestOptions(tenant_key=tenant_key)


def with_helpdesk_credential() -> RequestOptions:
    return RequestOptions(with_helpdesk=True)


def with_tenant_token(tenant_access_token: str) -> RequestOptions:
    return RequestOptions(headers={"Authorization": f"Bearer {tenant_access_token}"})


def with_user_access_token(user_access_token: str) -> RequestOptions:
    return RequestOptions(user_access_token=user_access_token)
