# connectors/lark/paginate.py
from __future__ import annotations
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence
from pydantic import BaseModel, ConfigDict

PAGE_TOKEN = "page_token"
NEXT_PAGE_TOKEN = "next_page_token"
HAS_MORE = "has_more"


class PageFetchRequest(BaseModel):
    """The request every page fetch starts from; only the cursor param changes."""
    model_config = ConfigDict(frozen=True)

    headers: Dict[str, Any] = {}
    params: Dict[str, Any] = {}
    data: Any = None

    def with_cursor(self, name: str, cursor: Optional[str]) -> "PageFetchRequest":
        return self.model_copy(update={"params": {**self.params, name: cursor}})


FetchPage = Callable[[PageFetchRequest], Awaitable[Optional[Dict[str, Any]]]]


class PagedFetchIterator:
    """
    Lazy async sequence of pages over a cursor-paginated list endpoint.

    Each `__anext__` issues exactly one fetch, so page n+1 is never requested
    before the consumer has taken page n. Pages come out with the has-more flag
    and token fields removed.

    A failed fetch does not raise past the loop: the consumer gets a single
    `None`, the exception is kept on `.error`, and the sequence ends. The
    iterator is single-use; once finished it stays finished.
    """

    def __init__(
        self,
        request: PageFetchRequest,
        fetch_page: FetchPage,
        *,
        cursor_param: str = PAGE_TOKEN,
        token_fields: Sequence[str] = (PAGE_TOKEN, NEXT_PAGE_TOKEN),
        has_more_field: str = HAS_MORE,
        start_cursor: Optional[str] = None,
    ):
        if not token_fields:
            raise ValueError("token_fields must name at least one field")
        self._request = request
        self._fetch_page = fetch_page
        self._cursor_param = cursor_param
        self._token_fields = tuple(token_fields)
        self._has_more_field = has_more_field

        self._cursor: Optional[str] = start_cursor
        self._has_more = True

        self.error: Optional[BaseException] = None
        self.pages_fetched = 0

    @property
    def done(self) -> bool:
        return not self._has_more

    @property
    def cursor(self) -> Optional[str]:
        return self._cursor

    def __aiter__(self) -> "PagedFetchIterator":
        return self

    async def __anext__(self) -> Optional[Dict[str, Any]]:
        if not self._has_more:
            raise StopAsyncIteration

        try:
            raw = await self._fetch_page(
                self._request.with_cursor(self._cursor_param, self._cursor)
            )
            if raw is not None and not isinstance(raw, Mapping):
                raise TypeError(f"page must be a mapping, got {type(raw).__name__}")
            page = dict(raw or {})
            has_more = bool(page.pop(self._has_more_field, False))
            tokens = [page.pop(f, None) for f in self._token_fields]
        except Exception as e:
            # the transport already logged it; surface once as None and stop
            self.error = e
            self._has_more = False
            return None

        self.pages_fetched += 1
        self._has_more = has_more
        self._cursor = next((t for t in tokens if t), None)
        return page


async def collect_pages(pages: PagedFetchIterator,
                        max_pages: Optional[int] = None) -> List[Optional[Dict[str, Any]]]:
    """Drain `pages` into a list, stopping early after `max_pages` when given."""
    out: List[Optional[Dict[str, Any]]] = []
    async for page in pages:
        out.append(page)
        if max_pages and len(out) >= max_pages:
            break
    return out
