# apps/gateway/main.py
from fastapi import FastAPI, HTTPException, Body, Query
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
import logging
from dotenv import load_dotenv
from common.log import LOGGER_NAME
from common.models import RequestOptions
from common.settings import settings
from connectors.lark.client import Client
from connectors.lark.endpoints import BoundEndpoint, list_endpoints

load_dotenv()  # picks up .env from the current working directory

log = logging.getLogger(LOGGER_NAME)
logging.basicConfig(level=logging.INFO)


def _mask(v: str, head: int = 6, tail: int = 4) -> str:
    if not v or len(v) <= head + tail:
        return v
    return f"{v[:head]}...{v[-tail:]}"


_client: Optional[Client] = None


def get_client() -> Client:
    global _client
    if _client is None:
        _client = Client.from_settings(settings)
    return _client


def _bound(name: str) -> BoundEndpoint:
    try:
        return get_client().endpoint(name)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown endpoint '{name}'")


# ---------- Models ----------
class CallRequest(BaseModel):
    params: Dict[str, Any] = {}
    data: Optional[Any] = None
    path: Dict[str, Any] = {}
    tenant_key: Optional[str] = Field(default=None, description="ISV apps: tenant to act for")
    user_access_token: Optional[str] = None

    def payload(self) -> Dict[str, Any]:
        return {"params": self.params, "data": self.data, "path": self.path}

    def options(self) -> RequestOptions:
        return RequestOptions(tenant_key=self.tenant_key, user_access_token=self.user_access_token)


class AppTicketBody(BaseModel):
    app_ticket: str = Field(..., min_length=1)


# ---------- App ----------
app = FastAPI(title="openapi-hub", version="0.1.0")


@app.on_event("startup")
def _print_cfg():
    log.info(
        "CFG domain=%s app=%s type=%s",
        settings.domain,
        _mask(settings.app_id),
        settings.app_type,
    )


@app.on_event("startup")
async def _check_app_ticket():
    # ISV apps: ask for a ticket push if none is cached yet
    await get_client().token_manager.app_ticket_manager.check_app_ticket()


@app.on_event("shutdown")
async def _close_client():
    if _client is not None:
        await _client.aclose()


@app.get("/health")
def health():
    return {
        "ok": True,
        "service": "openapi-hub",
        "domain": settings.domain,
        "app": _mask(settings.app_id),
    }


@app.get("/")
def hub_root():
    return {
        "service": "openapi-hub",
        "endpoints": {
            "health": "/health",
            "apis": "GET /apis",
            "call": "POST /apis/{name}:call",
            "pages": "POST /apis/{name}:pages",
            "app_ticket": "POST /app_ticket",
            "docs": "/docs",
            "redoc": "/redoc"
        }
    }


@app.get("/apis")
def apis(prefix: str | None = None):
    return {"ok": True, "apis": [e.as_dict() for e in list_endpoints(prefix)]}


@app.post("/apis/{name}:call")
async def call_api(name: str, body: Optional[CallRequest] = Body(None)):
    body = body or CallRequest()
    ep = _bound(name)
    if ep.spec.binary:
        raise HTTPException(status_code=400, detail=f"'{name}' returns a file and cannot be proxied as JSON")
    try:
        res = await ep(body.payload(), body.options())
    except ValueError as e:
        # missing path argument
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=502, detail=f"call_failed: {e}")
    return {"ok": True, "result": res}


@app.post("/apis/{name}:pages")
async def pages(
    name: str,
    max_pages: int = Query(5, ge=1, le=50),
    body: Optional[CallRequest] = Body(None),
):
    """
    Walks a paginated endpoint. The walk stops at the last page, at `max_pages`,
    or at the first failed fetch (reported under `error`).
    """
    body = body or CallRequest()
    ep = _bound(name)
    if not ep.spec.paginated:
        raise HTTPException(status_code=400, detail=f"'{name}' is not paginated")

    it = ep.iterate(body.payload(), body.options())
    out: List[Dict[str, Any]] = []
    async for page in it:
        if page is None:
            break
        out.append(page)
        if len(out) >= max_pages:
            break

    log.info("[pages] api=%s pages=%s done=%s error=%s", name, len(out), it.done, it.error)
    return {
        "ok": it.error is None,
        "count": len(out),
        "pages": out,
        "truncated": not it.done,
        "error": str(it.error) if it.error else None,
    }


@app.post("/app_ticket")
async def store_app_ticket(body: AppTicketBody):
    await get_client().store_app_ticket(body.app_ticket)
    return {"ok": True}
