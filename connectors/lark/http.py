# connectors/lark/http.py
from __future__ import annotations
import asyncio
import logging
import httpx
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional
from common.errors import format_errors
from common.log import LOGGER_NAME, trace
from common.urls import prune_empty

TIMEOUT = 60  # seconds
BACKOFF_BASE = 0.8  # seconds
USER_AGENT = "openapi-hub/0.1.0"
RETRYABLE = (429, 502, 503, 504)

log = logging.getLogger(LOGGER_NAME)


def _headers(headers: Optional[Dict[str, Any]]) -> Dict[str, str]:
    h = {"User-Agent": USER_AGENT, "Accept": "application/json"}
    h.update({k: str(v) for k, v in prune_empty(headers).items()})
    return h


@asynccontextmanager
async def _client(client: Optional[httpx.AsyncClient], timeout: float):
    # borrow the caller's client when given, otherwise open a throwaway one
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=timeout) as cli:
        yield cli


def _delay(r: Optional[httpx.Response], attempt: int) -> float:
    ra = r.headers.get("Retry-After") if r is not None else None
    try:
        return float(ra) if ra else BACKOFF_BASE * (2 ** (attempt - 1))
    except ValueError:
        return BACKOFF_BASE * (2 ** (attempt - 1))


async def send(method: str, url: str, *,
               params: Optional[Dict[str, Any]] = None,
               json: Any = None,
               headers: Optional[Dict[str, Any]] = None,
               timeout: float = TIMEOUT,
               retries: int = 0,
               client: Optional[httpx.AsyncClient] = None,
               logger: Optional[logging.Logger] = None) -> Any:
    """
    Issue one request and return the parsed JSON body.
    Falsy params/headers are dropped; list params go out as repeated keys.
    `retries` extra attempts are made for 429/5xx and transient network errors.
    Failures are logged and re-raised.
    """
    lg = logger or log
    attempts = 1 + max(0, retries)
    trace(lg, "send request [%s]: %s", method, url)

    async with _client(client, timeout) as cli:
        for attempt in range(1, attempts + 1):
            try:
                r = await cli.request(method, url, params=prune_empty(params),
                                      json=json, headers=_headers(headers))
                if r.status_code in RETRYABLE and attempt < attempts:
                    delay = _delay(r, attempt)
                    lg.warning("%s %s -> %s; retrying in %.2fs", method, url, r.status_code, delay)
                    await asyncio.sleep(delay)
                    continue
                r.raise_for_status()
                return r.json() if r.content else {}
            except (httpx.ReadTimeout, httpx.ConnectTimeout, httpx.RemoteProtocolError) as e:
                if attempt < attempts:
                    delay = _delay(None, attempt)
                    lg.warning("%s %s failed (%s); retrying in %.2fs", method, url, e, delay)
                    await asyncio.sleep(delay)
                    continue
                lg.error("%s", format_errors(e))
                raise
            except httpx.HTTPError as e:
                lg.error("%s", format_errors(e))
                raise


@asynccontextmanager
async def stream(method: str, url: str, *,
                 params: Optional[Dict[str, Any]] = None,
                 json: Any = None,
                 headers: Optional[Dict[str, Any]] = None,
                 timeout: float = TIMEOUT,
                 client: Optional[httpx.AsyncClient] = None,
                 logger: Optional[logging.Logger] = None) -> AsyncIterator[httpx.Response]:
    """Open a streamed response for binary bodies; status errors are logged and raised."""
    lg = logger or log
    trace(lg, "stream request [%s]: %s", method, url)
    h = _headers(headers)
    h["Accept"] = "*/*"
    async with _client(client, timeout) as cli:
        async with cli.stream(method, url, params=prune_empty(params), json=json, headers=h) as r:
            if r.status_code >= 400:
                await r.aread()
                try:
                    r.raise_for_status()
                except httpx.HTTPStatusError as e:
                    lg.error("%s", format_errors(e))
                    raise
            yield r
