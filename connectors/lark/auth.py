# connectors/lark/auth.py
from __future__ import annotations
import logging
import httpx
from typing import Any, Optional
from common.cache import DefaultCache, now_ms
from common.models import AppType
from connectors.lark.http import send

APP_TICKET_KEY = "app_ticket"
TENANT_ACCESS_TOKEN_KEY = "tenant_access_token"
MARKET_TOKEN_PREFIX = "market_tenant_access_token"

TENANT_TOKEN_PATH = "/open-apis/auth/v3/tenant_access_token/internal"
ISV_TENANT_TOKEN_PATH = "/open-apis/auth/v3/tenant_access_token"
APP_TOKEN_PATH = "/open-apis/auth/v3/app_access_token"
APP_TICKET_RESEND_PATH = "/open-apis/auth/v3/app_ticket/resend"
TOKEN_SLACK = 60  # seconds


def _deadline(expire: int) -> float:
    return now_ms() + max(expire - TOKEN_SLACK, 0) * 1000


class _AuthBase:
    def __init__(self, *, app_id: str, app_secret: str, cache: DefaultCache,
                 domain: str, logger: logging.Logger, app_type: AppType,
                 http_client: Optional[httpx.AsyncClient] = None,
                 timeout: float = 30):
        self.app_id = app_id
        self.app_secret = app_secret
        self.cache = cache
        self.domain = domain
        self.logger = logger
        self.app_type = app_type
        self.http_client = http_client
        self.timeout = timeout

    async def _post(self, path: str, body: dict) -> Optional[dict]:
        # auth failures are logged by the transport and degrade to None
        try:
            return await send("POST", f"{self.domain}{path}", json=body,
                              timeout=self.timeout, client=self.http_client,
                              logger=self.logger)
        except httpx.HTTPError:
            return None


class AppTicketManager(_AuthBase):
    """
    Marketplace (ISV) apps get their app ticket pushed by the platform.
    When we don't have one cached we ask the platform to push it again.
    """

    async def check_app_ticket(self) -> None:
        if self.app_type == AppType.ISV and not await self.cache.get(APP_TICKET_KEY, namespace=self.app_id):
            await self.request_app_ticket()

    async def request_app_ticket(self) -> None:
        self.logger.debug("request app ticket")
        await self._post(APP_TICKET_RESEND_PATH, {
            "app_id": self.app_id,
            "app_secret": self.app_secret,
        })

    async def store_app_ticket(self, ticket: str) -> None:
        await self.cache.set(APP_TICKET_KEY, ticket, None, namespace=self.app_id)

    async def get_app_ticket(self) -> Optional[str]:
        ticket = await self.cache.get(APP_TICKET_KEY, namespace=self.app_id)
        if ticket:
            self.logger.debug("use cache app ticket")
            return ticket
        await self.request_app_ticket()
        return None


class TokenManager(_AuthBase):
    def __init__(self, **kw: Any):
        super().__init__(**kw)
        self.app_ticket_manager = AppTicketManager(**kw)
        self.logger.debug("token manager is ready")

    async def _custom_tenant_access_token(self) -> Optional[str]:
        cached = await self.cache.get(TENANT_ACCESS_TOKEN_KEY, namespace=self.app_id)
        if cached:
            self.logger.debug("use cache token")
            return cached

        self.logger.debug("request token")
        j = await self._post(TENANT_TOKEN_PATH, {
            "app_id": self.app_id,
            "app_secret": self.app_secret,
        })
        token = (j or {}).get("tenant_access_token")
        if not token:
            return None
        expire = int((j or {}).get("expire", 0))
        await self.cache.set(TENANT_ACCESS_TOKEN_KEY, token, _deadline(expire),
                             namespace=self.app_id)
        return token

    async def _market_tenant_access_token(self, tenant_key: Optional[str]) -> Optional[str]:
        if not tenant_key:
            self.logger.error("market app request need tenant key")
            return None

        key = f"{MARKET_TOKEN_PREFIX}{tenant_key}"
        cached = await self.cache.get(key, namespace=self.app_id)
        if cached:
            self.logger.debug("use cache token")
            return cached

        self.logger.debug("get app ticket")
        app_ticket = await self.app_ticket_manager.get_app_ticket()
        if not app_ticket:
            self.logger.warning("no app ticket")
            return None

        self.logger.debug("get app access token")
        j = await self._post(APP_TOKEN_PATH, {
            "app_id": self.app_id,
            "app_secret": self.app_secret,
            "app_ticket": app_ticket,
        })
        app_access_token = (j or {}).get("app_access_token")
        if not app_access_token:
            return None

        self.logger.debug("get tenant access token")
        j = await self._post(ISV_TENANT_TOKEN_PATH, {
            "app_access_token": app_access_token,
            "tenant_key": tenant_key,
        })
        token = (j or {}).get("tenant_access_token")
        if not token:
            return None
        expire = int((j or {}).get("expire", 0))
        await self.cache.set(key, token, _deadline(expire), namespace=self.app_id)
        return token

    async def get_tenant_access_token(self, tenant_key: Optional[str] = None) -> Optional[str]:
        if self.app_type == AppType.SELF_BUILD:
            self.logger.debug("get custom app token")
            return await self._custom_tenant_access_token()
        self.logger.debug("get market app token")
        return await self._market_tenant_access_token(tenant_key)
