# connectors/lark/endpoints.py
from __future__ import annotations
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple
from pydantic import BaseModel, ConfigDict
from common.files import FileDownload
from common.models import RequestOptions
from connectors.lark.paginate import NEXT_PAGE_TOKEN, PAGE_TOKEN, PagedFetchIterator

if TYPE_CHECKING:
    from connectors.lark.client import Client, PayloadLike


class EndpointSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    method: str
    path: str                       # relative to the domain, `:name` marks path args
    paginated: bool = False
    binary: bool = False
    token_fields: Tuple[str, ...] = (PAGE_TOKEN, NEXT_PAGE_TOKEN)
    cursor_param: str = PAGE_TOKEN

    def as_dict(self) -> Dict[str, Any]:
        return self.model_dump(include={"name", "method", "path", "paginated", "binary"})


def _ep(name: str, method: str, path: str, **kw: Any) -> EndpointSpec:
    return EndpointSpec(name=name, method=method, path=path, **kw)


# Representative slice of the open API; add entries here rather than new methods.
ENDPOINTS: Dict[str, EndpointSpec] = {e.name: e for e in [
    # compensation
    _ep("compensation.v1.change_reason.list", "GET", "/open-apis/compensation/v1/change_reasons", paginated=True),
    _ep("compensation.v1.indicator.list", "GET", "/open-apis/compensation/v1/indicators", paginated=True),
    _ep("compensation.v1.item.list", "GET", "/open-apis/compensation/v1/items", paginated=True),
    _ep("compensation.v1.plan.list", "GET", "/open-apis/compensation/v1/plans", paginated=True),
    _ep("compensation.v1.archive.query", "POST", "/open-apis/compensation/v1/archives/query", paginated=True),
    _ep("compensation.v1.lump_sum_payment.query", "POST", "/open-apis/compensation/v1/lump_sum_payment/query", paginated=True),
    # access control
    _ep("acs.v1.access_record.list", "GET", "/open-apis/acs/v1/access_records", paginated=True),
    _ep("acs.v1.access_record_access_photo.get", "GET",
        "/open-apis/acs/v1/access_records/:access_record_id/access_photo", binary=True),
    _ep("acs.v1.user.get", "GET", "/open-apis/acs/v1/users/:user_id"),
    _ep("acs.v1.user_face.get", "GET", "/open-apis/acs/v1/users/:user_id/face", binary=True),
    # mail
    _ep("mail.v1.mailgroup.list", "GET", "/open-apis/mail/v1/mailgroups", paginated=True),
    _ep("mail.v1.mailgroup.get", "GET", "/open-apis/mail/v1/mailgroups/:mailgroup_id"),
    _ep("mail.v1.mailgroup_member.list", "GET",
        "/open-apis/mail/v1/mailgroups/:mailgroup_id/members", paginated=True),
    # wiki
    _ep("wiki.v2.space.list", "GET", "/open-apis/wiki/v2/spaces", paginated=True),
    _ep("wiki.v2.space_node.list", "GET", "/open-apis/wiki/v2/spaces/:space_id/nodes", paginated=True),
    _ep("wiki.v1.node.search", "POST", "/open-apis/wiki/v1/nodes/search", paginated=True),
    # okr / minutes
    _ep("okr.v1.period.list", "GET", "/open-apis/okr/v1/periods", paginated=True),
    _ep("minutes.v1.minute.get", "GET", "/open-apis/minutes/v1/minutes/:minute_token"),
    _ep("minutes.v1.minute_media.get", "GET", "/open-apis/minutes/v1/minutes/:minute_token/media"),
]}


def get_endpoint(name: str) -> EndpointSpec:
    try:
        return ENDPOINTS[name]
    except KeyError:
        raise KeyError(f"unknown endpoint: {name}") from None


def list_endpoints(prefix: Optional[str] = None) -> List[EndpointSpec]:
    return [e for n, e in sorted(ENDPOINTS.items()) if not prefix or n.startswith(prefix)]


class BoundEndpoint:
    """An EndpointSpec tied to a client: call it, iterate its pages, or download it."""

    def __init__(self, client: "Client", spec: EndpointSpec):
        self.client = client
        self.spec = spec

    async def __call__(self, payload: "PayloadLike" = None,
                       options: Optional[RequestOptions] = None) -> Any:
        if self.spec.binary:
            raise ValueError(f"{self.spec.name} returns a file; use download()")
        return await self.client.request(self.spec.method, self.spec.path, payload, options)

    def iterate(self, payload: "PayloadLike" = None,
                options: Optional[RequestOptions] = None) -> PagedFetchIterator:
        if not self.spec.paginated:
            raise ValueError(f"{self.spec.name} is not paginated")
        return self.client.iterate(
            self.spec.method, self.spec.path, payload, options,
            cursor_param=self.spec.cursor_param,
            token_fields=self.spec.token_fields,
        )

    def download(self, payload: "PayloadLike" = None,
                 options: Optional[RequestOptions] = None) -> FileDownload:
        if not self.spec.binary:
            raise ValueError(f"{self.spec.name} does not return a file")
        return self.client.download(self.spec.method, self.spec.path, payload, options)
