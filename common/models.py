from __future__ import annotations
from enum import Enum, IntEnum
from pydantic import BaseModel, ConfigDict
from typing import Any, Dict, Optional


class AppType(str, Enum):
    SELF_BUILD = "self_build"
    ISV = "isv"


class Domain(str, Enum):
    FEISHU = "feishu"
    LARK = "lark"


class LoggerLevel(IntEnum):
    # ordered: a logger at level N emits everything <= N
    FATAL = 0
    ERROR = 1
    WARN = 2
    INFO = 3
    DEBUG = 4
    TRACE = 5


class Payload(BaseModel):
    params: Dict[str, Any] = {}
    data: Any = None
    headers: Dict[str, Any] = {}
    path: Dict[str, Any] = {}


class RequestOptions(BaseModel):
    """Per-call overrides layered on top of a payload."""
    tenant_key: Optional[str] = None
    with_helpdesk: bool = False
    user_access_token: Optional[str] = None
    params: Dict[str, Any] = {}
    data: Dict[str, Any] = {}
    headers: Dict[str, str] = {}
    path: Dict[str, Any] = {}


class TokenInfo(BaseModel):
    code: Optional[str] = None
    token: Optional[str] = None
    refresh_token: Optional[str] = None
    expired_time: Optional[float] = None   # epoch ms

    model_config = ConfigDict(extra="ignore")
