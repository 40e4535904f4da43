# common/errors.py
from __future__ import annotations
from typing import Any, Dict, List
import httpx


class OpenApiError(Exception):
    """Envelope reported a non-zero `code`."""

    def __init__(self, code: int, msg: str | None = None, body: Any = None):
        super().__init__(f"open api error {code}: {msg or ''}".rstrip(": "))
        self.code = code
        self.msg = msg
        self.body = body


def _response_body(r: httpx.Response) -> Any:
    try:
        return r.json()
    except ValueError:
        return r.text


def format_errors(e: Any) -> List[Any]:
    """
    Flatten an httpx error into log-friendly pieces:
      [ {message, request:{method,url,params}, response:{status,reason,data}}, <json body>? ]
    Anything that is not an httpx status error is returned as [e].
    """
    if isinstance(e, httpx.HTTPStatusError):
        req, resp = e.request, e.response
        data = _response_body(resp)
        info: Dict[str, Any] = {
            "message": str(e),
            "request": {
                "method": req.method,
                "url": str(req.url).split("?", 1)[0],
                "params": dict(req.url.params),
            },
            "response": {
                "status": resp.status_code,
                "reason": resp.reason_phrase,
                "data": data,
            },
        }
        errors: List[Any] = [info]
        if isinstance(data, dict) and data:
            errors.append(data)
        return errors
    return [e]


def raise_for_code(body: Any) -> Any:
    """Return `body` unchanged unless its envelope carries a non-zero code."""
    if isinstance(body, dict):
        code = body.get("code")
        if code not in (None, 0):
            raise OpenApiError(code, body.get("msg") or body.get("message"), body)
    return body
