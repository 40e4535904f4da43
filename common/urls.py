from __future__ import annotations
import re
from typing import Any, Dict, Mapping, Optional
from common.models import Domain

PATH_ARG_RE = re.compile(r":([^/]+)")

DOMAINS = {
    Domain.FEISHU: "https://open.feishu.cn",
    Domain.LARK: "https://open.larksuite.com",
}


def fill_api_path(api_path: str, path: Optional[Mapping[str, Any]] = None) -> str:
    """Replace `:name` segments with values from `path`."""
    path = path or {}

    def _sub(m: re.Match) -> str:
        name = m.group(1)
        if path.get(name) is not None:
            return str(path[name])
        raise ValueError(f"request miss {name} path argument")

    return PATH_ARG_RE.sub(_sub, api_path)


def format_url(url: str | None) -> str:
    if not url:
        return ""
    return url[1:] if url.startswith("/") else url


def format_domain(domain: Domain | str) -> str:
    try:
        return DOMAINS[Domain(domain)]
    except ValueError:
        return str(domain).rstrip("/")


def prune_empty(d: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    # drops None, "", 0 and False
    return {k: v for k, v in (d or {}).items() if v}
