# connectors/lark/user_token.py
from __future__ import annotations
from typing import TYPE_CHECKING, Dict, Optional
import httpx
from common.cache import now_ms
from common.models import TokenInfo

if TYPE_CHECKING:
    from connectors.lark.client import Client

USER_ACCESS_TOKEN_KEY = "user_access_token"
OIDC_ACCESS_TOKEN_PATH = "/open-apis/authen/v1/oidc/access_token"
OIDC_REFRESH_TOKEN_PATH = "/open-apis/authen/v1/oidc/refresh_access_token"
EARLY_EXPIRY_MS = 3 * 60 * 1000


def _calibrate(expires_in: Optional[int]) -> float:
    # treat tokens as expired 3 minutes early to absorb network latency
    return now_ms() + (expires_in or 0) * 1000 - EARLY_EXPIRY_MS


class UserAccessTokenManager:
    """
    Keeps user access tokens in the client cache, keyed by a caller-chosen name.
    `get` walks: live token -> refresh token -> re-exchange stored code -> None.
    """

    def __init__(self, client: "Client"):
        self.client = client

    def _cache_key(self, key: str, namespace: Optional[str] = None) -> str:
        return f"{namespace or self.client.app_id}/{USER_ACCESS_TOKEN_KEY}/{key}"

    async def _exchange(self, path: str, body: dict) -> Optional[dict]:
        try:
            res = await self.client.request("POST", path, {"data": body})
        except httpx.HTTPError:
            return None
        if res.get("code") != 0:
            self.client.logger.error("user access token exchange failed: %s", res.get("msg") or res.get("message"))
            return None
        return res.get("data") or None

    async def init_with_code(self, key_to_code: Dict[str, str],
                             namespace: Optional[str] = None) -> Dict[str, TokenInfo]:
        infos: Dict[str, TokenInfo] = {}
        for key, code in key_to_code.items():
            data = await self._exchange(OIDC_ACCESS_TOKEN_PATH, {
                "grant_type": "authorization_code",
                "code": code,
            })
            if not data:
                self.client.logger.error("user access code expired or invalid: %s", key)
                continue
            infos[key] = TokenInfo(
                code=code,
                token=data.get("access_token"),
                refresh_token=data.get("refresh_token"),
                expired_time=_calibrate(data.get("expires_in")),
            )
        await self.update(infos, namespace=namespace)
        return infos

    async def update(self, key_to_info: Dict[str, TokenInfo],
                     namespace: Optional[str] = None) -> None:
        for key, info in key_to_info.items():
            cache_key = self._cache_key(key, namespace)
            current = await self.client.cache.get(cache_key) or TokenInfo()
            merged = current.model_copy(update=info.model_dump(exclude_none=True))
            await self.client.cache.set(cache_key, merged, None)

    async def get(self, key: str, namespace: Optional[str] = None) -> Optional[str]:
        info: Optional[TokenInfo] = await self.client.cache.get(self._cache_key(key, namespace))
        if not info:
            self.client.logger.error("user access token needs to be initialized or updated first")
            return None

        if info.token and info.expired_time and info.expired_time - now_ms() > 0:
            return info.token

        if info.refresh_token:
            data = await self._exchange(OIDC_REFRESH_TOKEN_PATH, {
                "grant_type": "refresh_token",
                "refresh_token": info.refresh_token,
            })
            if not data:
                self.client.logger.error("get user access token by refresh token failed")
                return None
            await self.update({key: TokenInfo(
                token=data.get("access_token"),
                refresh_token=data.get("refresh_token"),
                expired_time=_calibrate(data.get("expires_in")),
            )}, namespace=namespace)
            return data.get("access_token")

        if info.code:
            data = await self._exchange(OIDC_ACCESS_TOKEN_PATH, {
                "grant_type": "authorization_code",
                "code": info.code,
            })
            if data:
                await self.update({key: TokenInfo(
                    token=data.get("access_token"),
                    refresh_token=data.get("refresh_token"),
                    expired_time=_calibrate(data.get("expires_in")),
                )}, namespace=namespace)
                return data.get("access_token")
            self.client.logger.error("get user access token by code failed")

        return None
