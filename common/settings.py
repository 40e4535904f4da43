# common/settings.py
from __future__ import annotations

import sys
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator


class Settings(BaseSettings):
    # -------- Hub / server ----------
    hub_port: int = Field(8080, alias="HUB_PORT")

    # -------- App credentials ----------
    # Empty values are allowed so the hub can boot; the client logs an error on use.
    app_id: str = Field("", alias="LARK_APP_ID")
    app_secret: str = Field("", alias="LARK_APP_SECRET")
    app_type: str = Field("self_build", alias="LARK_APP_TYPE")      # self_build | isv

    # feishu | lark | https://custom.host
    domain: str = Field("feishu", alias="LARK_DOMAIN")

    # -------- Helpdesk (optional) ----------
    helpdesk_id: str | None = Field(default=None, alias="LARK_HELPDESK_ID")
    helpdesk_token: str | None = Field(default=None, alias="LARK_HELPDESK_TOKEN")

    # -------- Client behaviour ----------
    log_level: str = Field("info", alias="LARK_LOG_LEVEL")
    disable_token_cache: bool = Field(False, alias="LARK_DISABLE_TOKEN_CACHE")
    http_timeout: float = Field(60, alias="LARK_HTTP_TIMEOUT")
    http_retries: int = Field(0, ge=0, le=10, alias="LARK_HTTP_RETRIES")

    # pydantic-settings config
    model_config = SettingsConfigDict(
        env_file=".env",                 # load env from repo root
        env_file_encoding="utf-8",
        case_sensitive=False,            # allow lower/upper in env
        populate_by_name=True,
        extra="ignore",                  # ignore unknown env keys
    )

    @field_validator("domain")
    @classmethod
    def _known_or_https(cls, v: str) -> str:
        if v.lower() in ("feishu", "lark"):
            return v.lower()
        if not v.startswith("https://"):
            raise ValueError("LARK_DOMAIN must be feishu, lark or start with https://")
        return v

    @field_validator("app_type")
    @classmethod
    def _app_type(cls, v: str) -> str:
        v = v.lower()
        if v not in ("self_build", "isv"):
            raise ValueError("LARK_APP_TYPE must be self_build or isv")
        return v

    @field_validator("log_level")
    @classmethod
    def _log_level(cls, v: str) -> str:
        v = v.lower()
        if v not in ("fatal", "error", "warn", "info", "debug", "trace"):
            raise ValueError("LARK_LOG_LEVEL must be one of fatal|error|warn|info|debug|trace")
        return v


def _pretty_fail(msg: str) -> None:
    # Print a friendly error once (useful with uvicorn reload)
    print(f"\n[settings] {msg}\n", file=sys.stderr)
    sys.exit(1)


try:
    settings = Settings()
except Exception as e:
    _pretty_fail(
        "Invalid settings. Check .env (repo root), e.g.:\n"
        "  LARK_APP_ID=cli_xxxxxxxx\n"
        "  LARK_APP_SECRET=<secret value>\n"
        "Optional:\n"
        "  LARK_DOMAIN=feishu | lark | https://open.example.com\n"
        "  LARK_APP_TYPE=self_build | isv\n"
        "  LARK_LOG_LEVEL=info\n"
        "  LARK_HTTP_TIMEOUT=60, LARK_HTTP_RETRIES=0\n"
        "  LARK_HELPDESK_ID, LARK_HELPDESK_TOKEN\n"
        "  HUB_PORT=8080\n\n"
        f"Raw error: {e}"
    )
