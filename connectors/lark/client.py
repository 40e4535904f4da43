# connectors/lark/client.py
from __future__ import annotations
import base64
import logging
import httpx
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional, Sequence, Union
from urllib.parse import urlsplit, urlunsplit
from common.cache import DefaultCache, internal_cache
from common.files import FileDownload
from common.log import get_logger
from common.models import AppType, Domain, LoggerLevel, Payload, RequestOptions
from common.urls import fill_api_path, format_domain, format_url
from connectors.lark import http
from connectors.lark.auth import TokenManager
from connectors.lark.endpoints import BoundEndpoint, get_endpoint
from connectors.lark.paginate import (
    NEXT_PAGE_TOKEN, PAGE_TOKEN, PageFetchRequest, PagedFetchIterator,
)
from connectors.lark.user_token import UserAccessTokenManager

PayloadLike = Union[Payload, Dict[str, Any], None]

HELPDESK_HEADER = "X-Lark-Helpdesk-Authorization"


def _is_absolute(url: str) -> bool:
    p = urlsplit(url)
    return bool(p.scheme and p.netloc)


class Client:
    def __init__(
        self,
        app_id: str,
        app_secret: str,
        *,
        domain: Union[Domain, str] = Domain.FEISHU,
        app_type: Union[AppType, str] = AppType.SELF_BUILD,
        logger: Optional[logging.Logger] = None,
        logger_level: Union[LoggerLevel, str, None] = LoggerLevel.INFO,
        cache: Optional[DefaultCache] = None,
        disable_token_cache: bool = False,
        helpdesk_id: Optional[str] = None,
        helpdesk_token: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = http.TIMEOUT,
        retries: int = 0,
    ):
        self.logger = get_logger(logger_level, logger)

        self.app_id = app_id
        self.app_secret = app_secret
        if not self.app_id:
            self.logger.error("app_id is needed")
        if not self.app_secret:
            self.logger.error("app_secret is needed")

        self.app_type = AppType(app_type)
        self.disable_token_cache = disable_token_cache
        self.helpdesk_id = helpdesk_id
        self.helpdesk_token = helpdesk_token

        self.domain = format_domain(domain)
        self.logger.debug("use domain url: %s", self.domain)

        self.cache = cache or internal_cache
        self.http_client = http_client
        self._owns_http_client = False
        self.timeout = timeout
        self.retries = retries

        self.token_manager = TokenManager(
            app_id=self.app_id,
            app_secret=self.app_secret,
            cache=self.cache,
            domain=self.domain,
            logger=self.logger,
            app_type=self.app_type,
            http_client=self.http_client,
            timeout=self.timeout,
        )
        self.user_access_token = UserAccessTokenManager(self)

        self.logger.info("client ready")

    @classmethod
    def from_settings(cls, s: Any, **kw: Any) -> "Client":
        return cls(
            s.app_id,
            s.app_secret,
            domain=s.domain,
            app_type=s.app_type,
            logger_level=s.log_level,
            disable_token_cache=s.disable_token_cache,
            helpdesk_id=s.helpdesk_id,
            helpdesk_token=s.helpdesk_token,
            timeout=s.http_timeout,
            retries=s.http_retries,
            **kw,
        )

    # ---------- lifecycle ----------
    async def __aenter__(self) -> "Client":
        if self.http_client is None:
            self.http_client = httpx.AsyncClient(timeout=self.timeout)
            self.token_manager.http_client = self.http_client
            self.token_manager.app_ticket_manager.http_client = self.http_client
            self._owns_http_client = True
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http_client and self.http_client is not None:
            await self.http_client.aclose()
            self.http_client = None
            self.token_manager.http_client = None
            self.token_manager.app_ticket_manager.http_client = None
            self._owns_http_client = False

    # ---------- payload / url ----------
    async def format_payload(self, payload: PayloadLike = None,
                             options: Optional[RequestOptions] = None) -> Payload:
        """
        Merge call options over the payload and attach credentials:
        user token if given, else an explicit Authorization header, else the
        tenant token (unless the token cache is disabled).
        """
        p = payload if isinstance(payload, Payload) else Payload.model_validate(payload or {})
        o = options or RequestOptions()

        headers: Dict[str, Any] = {**p.headers, **o.headers}
        if o.user_access_token:
            self.logger.debug("use passed token")
            headers["Authorization"] = f"Bearer {o.user_access_token}"
        elif "Authorization" not in headers and not self.disable_token_cache:
            token = await self.token_manager.get_tenant_access_token(o.tenant_key)
            if token:
                headers["Authorization"] = f"Bearer {token}"
            else:
                self.logger.warning("failed to obtain token")

        if o.with_helpdesk:
            self.logger.debug("generate help desk credential")
            cred = base64.b64encode(f"{self.helpdesk_id}:{self.helpdesk_token}".encode()).decode()
            headers[HELPDESK_HEADER] = f"Bearer {cred}"

        data = p.data
        if o.data:
            data = {**(data or {}), **o.data}

        return Payload(
            params={**p.params, **o.params},
            data=data,
            headers=headers,
            path={**p.path, **o.path},
        )

    def resolve_url(self, url: str, path: Optional[Dict[str, Any]] = None) -> str:
        if _is_absolute(url):
            parts = urlsplit(url)
            return urlunsplit(parts._replace(path=fill_api_path(parts.path, path)))
        return f"{self.domain}/{format_url(fill_api_path(url, path))}"

    # ---------- calls ----------
    async def request(self, method: str, url: str, payload: PayloadLike = None,
                      options: Optional[RequestOptions] = None) -> Any:
        """Send one request; the transport logs failures and re-raises them."""
        p = await self.format_payload(payload, options)
        return await http.send(
            method.upper(),
            self.resolve_url(url, p.path),
            params=p.params,
            json=p.data,
            headers=p.headers,
            timeout=self.timeout,
            retries=self.retries,
            client=self.http_client,
            logger=self.logger,
        )

    def iterate(
        self,
        method: str,
        url: str,
        payload: PayloadLike = None,
        options: Optional[RequestOptions] = None,
        *,
        cursor_param: str = PAGE_TOKEN,
        token_fields: Sequence[str] = (PAGE_TOKEN, NEXT_PAGE_TOKEN),
    ) -> PagedFetchIterator:
        """
        Pages of a list endpoint, each being the envelope's `data` object
        without pagination fields. Nothing is sent until the first page is pulled.

        A `cursor_param` value passed in the payload or options params is the
        cursor of the first page; after that the server's token always wins.
        """
        p = payload if isinstance(payload, Payload) else Payload.model_validate(payload or {})
        o = options or RequestOptions()
        path = dict(p.path)

        # options params are folded in once so they can't shadow the cursor
        params = {**p.params, **o.params}
        start_cursor = params.pop(cursor_param, None)
        page_options = o.model_copy(update={"params": {}})

        async def fetch_page(req: PageFetchRequest) -> Dict[str, Any]:
            res = await self.request(method, url, {
                "headers": req.headers,
                "params": req.params,
                "data": req.data,
                "path": path,
            }, page_options)
            return (res or {}).get("data") or {}

        return PagedFetchIterator(
            PageFetchRequest(headers=p.headers, params=params, data=p.data),
            fetch_page,
            cursor_param=cursor_param,
            token_fields=token_fields,
            start_cursor=start_cursor,
        )

    def download(self, method: str, url: str, payload: PayloadLike = None,
                 options: Optional[RequestOptions] = None) -> FileDownload:
        @asynccontextmanager
        async def open_stream():
            p = await self.format_payload(payload, options)
            async with http.stream(
                method.upper(),
                self.resolve_url(url, p.path),
                params=p.params,
                json=p.data,
                headers=p.headers,
                timeout=self.timeout,
                client=self.http_client,
                logger=self.logger,
            ) as r:
                yield r

        return FileDownload(open_stream)

    def endpoint(self, name: str) -> BoundEndpoint:
        return BoundEndpoint(self, get_endpoint(name))

    async def store_app_ticket(self, ticket: str) -> None:
        await self.token_manager.app_ticket_manager.store_app_ticket(ticket)
