import base64
import httpx
import pytest
from pydantic import ValidationError
from common.models import AppType, RequestOptions, TokenInfo
from connectors.lark.client import Client
from connectors.lark.endpoints import get_endpoint
from connectors.lark.options import (
    with_all, with_helpdesk_credential, with_tenant_key, with_tenant_token, with_user_access_token,
)

LIST_PATH = "/open-apis/compensation/v1/change_reasons"


# ---------- format_payload ----------
@pytest.mark.asyncio
async def test_format_payload_injects_tenant_token(make_client, fake):
    client = make_client()
    p = await client.format_payload({"params": {"page_size": 10}, "headers": {"X-A": "1"}})
    assert p.headers["Authorization"] == "Bearer t-123"
    assert p.headers["X-A"] == "1"
    assert p.params == {"page_size": 10}

    await client.format_payload()
    assert fake.token_calls == 1  # second call served from cache


@pytest.mark.asyncio
async def test_format_payload_user_token_wins(make_client, fake):
    client = make_client()
    p = await client.format_payload(None, with_user_access_token("u-1"))
    assert p.headers["Authorization"] == "Bearer u-1"
    assert fake.token_calls == 0


@pytest.mark.asyncio
async def test_format_payload_keeps_explicit_tenant_token(make_client, fake):
    client = make_client()
    p = await client.format_payload(None, with_tenant_token("t-explicit"))
    assert p.headers["Authorization"] == "Bearer t-explicit"
    assert fake.token_calls == 0


@pytest.mark.asyncio
async def test_format_payload_disable_token_cache(make_client, fake):
    client = make_client(disable_token_cache=True)
    p = await client.format_payload()
    assert "Authorization" not in p.headers
    assert fake.token_calls == 0


@pytest.mark.asyncio
async def test_format_payload_helpdesk_and_merge(make_client):
    client = make_client(helpdesk_id="hd", helpdesk_token="secret")
    opts = with_all([
        with_helpdesk_credential(),
        RequestOptions(params={"user_id_type": "open_id"}, data={"b": 2}, path={"id": "1"}),
    ])
    p = await client.format_payload({"params": {"page_size": 5}, "data": {"a": 1}}, opts)
    cred = base64.b64encode(b"hd:secret").decode()
    assert p.headers["X-Lark-Helpdesk-Authorization"] == f"Bearer {cred}"
    assert p.params == {"page_size": 5, "user_id_type": "open_id"}
    assert p.data == {"a": 1, "b": 2}
    assert p.path == {"id": "1"}


def test_with_all_later_wins():
    merged = with_all([
        RequestOptions(headers={"A": "1", "B": "1"}),
        with_tenant_key("tk"),
        RequestOptions(headers={"B": "2"}),
    ])
    assert merged.headers == {"A": "1", "B": "2"}
    assert merged.tenant_key == "tk"


# ---------- request ----------
@pytest.mark.asyncio
async def test_request_resolves_url_and_drops_empty_params(make_client, fake):
    fake.on("GET", "/open-apis/acs/v1/users/u1", {"code": 0, "data": {"user": {"id": "u1"}}})
    client = make_client()
    res = await client.request("GET", "/open-apis/acs/v1/users/:user_id",
                               {"path": {"user_id": "u1"}, "params": {"user_id_type": "open_id", "x": None}})
    assert res["data"]["user"]["id"] == "u1"
    sent = fake.calls[0]
    assert str(sent.url) == "https://open.feishu.cn/open-apis/acs/v1/users/u1?user_id_type=open_id"
    assert sent.headers["Authorization"] == "Bearer t-123"
    assert sent.headers["User-Agent"].startswith("openapi-hub/")


@pytest.mark.asyncio
async def test_request_list_params_repeat(make_client, fake):
    fake.on("GET", "/open-apis/okr/v1/periods", {"code": 0, "data": {}})
    await make_client().request("GET", "/open-apis/okr/v1/periods", {"params": {"ids": ["a", "b"]}})
    assert fake.calls[0].url.query == b"ids=a&ids=b"


@pytest.mark.asyncio
async def test_request_missing_path_arg(make_client):
    with pytest.raises(ValueError, match="request miss user_id path argument"):
        await make_client().request("GET", "/open-apis/acs/v1/users/:user_id")


@pytest.mark.asyncio
async def test_request_error_is_logged_and_raised(make_client, fake, caplog):
    fake.on("GET", "/open-apis/x", httpx.Response(500, json={"code": 1, "msg": "boom"}))
    client = make_client()
    with pytest.raises(httpx.HTTPStatusError):
        await client.request("GET", "/open-apis/x")
    assert any("boom" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_request_retries_when_configured(make_client, fake):
    fake.on("GET", "/open-apis/x",
            httpx.Response(503, headers={"Retry-After": "0"}),
            {"code": 0, "data": {"ok": True}})
    res = await make_client(retries=2).request("GET", "/open-apis/x")
    assert res["data"] == {"ok": True}
    assert len(fake.calls) == 2


@pytest.mark.asyncio
async def test_request_no_retry_by_default(make_client, fake):
    fake.on("GET", "/open-apis/x", httpx.Response(503), {"code": 0})
    with pytest.raises(httpx.HTTPStatusError):
        await make_client().request("GET", "/open-apis/x")
    assert len(fake.calls) == 1


# ---------- iterate ----------
@pytest.mark.asyncio
async def test_iterate_threads_page_token(make_client, fake):
    fake.on("GET", LIST_PATH,
            {"code": 0, "msg": "ok", "data": {"items": [1, 2], "has_more": True, "page_token": "x"}},
            {"code": 0, "msg": "ok", "data": {"items": [3], "has_more": False}})
    client = make_client()
    it = client.iterate("GET", LIST_PATH, {"params": {"page_size": 2}})
    assert fake.calls == []

    pages = [p async for p in it]
    assert pages == [{"items": [1, 2]}, {"items": [3]}]
    assert "page_token" not in fake.calls[0].url.params
    assert fake.calls[1].url.params["page_token"] == "x"
    assert fake.calls[1].url.params["page_size"] == "2"


@pytest.mark.asyncio
async def test_iterate_post_body_held_constant(make_client, fake):
    path = "/open-apis/compensation/v1/archives/query"
    fake.on("POST", path,
            {"code": 0, "data": {"items": ["a"], "has_more": True, "next_page_token": "n1"}},
            {"code": 0, "data": {"items": ["b"], "has_more": False}})
    pages = [p async for p in make_client().iterate("POST", path, {"data": {"user_id_list": ["u"]}})]
    assert pages == [{"items": ["a"]}, {"items": ["b"]}]
    assert fake.body(0) == fake.body(1) == {"user_id_list": ["u"]}
    assert fake.calls[1].url.params["page_token"] == "n1"


@pytest.mark.asyncio
async def test_iterate_transport_failure_ends_with_none(make_client, fake):
    fake.on("GET", LIST_PATH,
            {"code": 0, "data": {"items": [1], "has_more": True, "page_token": "x"}},
            httpx.Response(500, json={"code": 5000, "msg": "internal"}))
    it = make_client().iterate("GET", LIST_PATH)
    pages = [p async for p in it]
    assert pages == [{"items": [1]}, None]
    assert isinstance(it.error, httpx.HTTPStatusError)


@pytest.mark.asyncio
async def test_iterate_resumes_from_page_token_in_options(make_client, fake):
    fake.on("GET", LIST_PATH,
            {"code": 0, "data": {"items": [1], "has_more": True, "page_token": "p2"}},
            {"code": 0, "data": {"items": [2], "has_more": False}})
    opts = RequestOptions(params={"page_token": "start", "page_size": 1})
    pages = [p async for p in make_client().iterate("GET", LIST_PATH, None, opts)]
    assert pages == [{"items": [1]}, {"items": [2]}]
    assert [c.url.params["page_token"] for c in fake.calls] == ["start", "p2"]
    assert all(c.url.params["page_size"] == "1" for c in fake.calls)


@pytest.mark.asyncio
async def test_each_iterate_call_is_independent(make_client, fake):
    fake.on("GET", LIST_PATH, {"code": 0, "data": {"items": [1], "has_more": False}})
    client = make_client()
    first = client.iterate("GET", LIST_PATH)
    assert [p async for p in first] == [{"items": [1]}]
    assert [p async for p in first] == []
    assert [p async for p in client.iterate("GET", LIST_PATH)] == [{"items": [1]}]


# ---------- endpoints ----------
@pytest.mark.asyncio
async def test_endpoint_iterate_and_call(make_client, fake):
    fake.on("GET", "/open-apis/wiki/v2/spaces/s1/nodes",
            {"code": 0, "data": {"items": [{"node": 1}], "has_more": False}})
    client = make_client()
    ep = client.endpoint("wiki.v2.space_node.list")
    pages = [p async for p in ep.iterate({"path": {"space_id": "s1"}})]
    assert pages == [{"items": [{"node": 1}]}]

    res = await ep({"path": {"space_id": "s1"}})
    assert res["code"] == 0


def test_endpoint_misuse(make_client):
    client = make_client()
    with pytest.raises(ValueError):
        client.endpoint("acs.v1.user.get").iterate()
    with pytest.raises(ValueError):
        client.endpoint("acs.v1.user.get").download()
    with pytest.raises(KeyError):
        client.endpoint("nope.v1.nothing")


def test_endpoint_spec_is_frozen_model():
    spec = get_endpoint("compensation.v1.archive.query")
    assert spec.as_dict() == {
        "name": "compensation.v1.archive.query",
        "method": "POST",
        "path": "/open-apis/compensation/v1/archives/query",
        "paginated": True,
        "binary": False,
    }
    assert spec.token_fields == ("page_token", "next_page_token")
    with pytest.raises(ValidationError):
        spec.paginated = False


# ---------- download ----------
@pytest.mark.asyncio
async def test_download_write_file(make_client, fake, tmp_path):
    fake.on("GET", "/open-apis/acs/v1/access_records/r1/access_photo",
            httpx.Response(200, content=b"\x89PNG-bytes"))
    dl = make_client().endpoint("acs.v1.access_record_access_photo.get").download(
        {"path": {"access_record_id": "r1"}})
    assert fake.calls == []

    out = await dl.write_file(tmp_path / "photos" / "r1.png")
    assert (tmp_path / "photos" / "r1.png").read_bytes() == b"\x89PNG-bytes"
    assert out.endswith("r1.png")
    assert await dl.read() == b"\x89PNG-bytes"


@pytest.mark.asyncio
async def test_download_error_raises(make_client, fake, tmp_path):
    fake.on("GET", "/open-apis/acs/v1/users/u1/face", httpx.Response(404, json={"code": 404}))
    dl = make_client().endpoint("acs.v1.user_face.get").download({"path": {"user_id": "u1"}})
    with pytest.raises(httpx.HTTPStatusError):
        await dl.write_file(tmp_path / "faces" / "face.jpg")
    assert not (tmp_path / "faces" / "face.jpg").exists()


# ---------- isv tokens ----------
@pytest.mark.asyncio
async def test_isv_token_flow(make_client, fake):
    fake.on("POST", "/open-apis/auth/v3/app_access_token", {"code": 0, "app_access_token": "a-1"})
    fake.on("POST", "/open-apis/auth/v3/tenant_access_token", {"code": 0, "tenant_access_token": "t-isv", "expire": 7200})
    client = make_client(app_type=AppType.ISV)
    await client.store_app_ticket("ticket-1")

    p = await client.format_payload(None, with_tenant_key("tk1"))
    assert p.headers["Authorization"] == "Bearer t-isv"
    assert fake.body(0) == {"app_id": "cli_test", "app_secret": "secret", "app_ticket": "ticket-1"}
    assert fake.body(1) == {"app_access_token": "a-1", "tenant_key": "tk1"}


@pytest.mark.asyncio
async def test_isv_without_ticket_requests_resend(make_client, fake):
    fake.on("POST", "/open-apis/auth/v3/app_ticket/resend", {"code": 0})
    client = make_client(app_type="isv")
    p = await client.format_payload(None, with_tenant_key("tk1"))
    assert "Authorization" not in p.headers
    assert fake.calls[0].url.path == "/open-apis/auth/v3/app_ticket/resend"


@pytest.mark.asyncio
async def test_isv_without_tenant_key(make_client, fake):
    p = await make_client(app_type="isv").format_payload()
    assert "Authorization" not in p.headers
    assert fake.calls == []


# ---------- user access tokens ----------
@pytest.mark.asyncio
async def test_user_access_token_init_and_refresh(make_client, fake):
    fake.on("POST", "/open-apis/authen/v1/oidc/access_token",
            {"code": 0, "data": {"access_token": "u-1", "refresh_token": "r-1", "expires_in": 7200}})
    fake.on("POST", "/open-apis/authen/v1/oidc/refresh_access_token",
            {"code": 0, "data": {"access_token": "u-2", "refresh_token": "r-2", "expires_in": 7200}})
    client = make_client()

    infos = await client.user_access_token.init_with_code({"alice": "code-1"})
    assert infos["alice"].token == "u-1"
    assert await client.user_access_token.get("alice") == "u-1"

    # force expiry, then the refresh token is used
    await client.user_access_token.update({"alice": TokenInfo(expired_time=0.0)})
    assert await client.user_access_token.get("alice") == "u-2"


@pytest.mark.asyncio
async def test_user_access_token_unknown_key(make_client):
    assert await make_client().user_access_token.get("nobody") is None


# ---------- lifecycle ----------
@pytest.mark.asyncio
async def test_context_manager_owns_client():
    client = Client("cli", "secret", disable_token_cache=True)
    async with client as c:
        assert c.http_client is not None
        assert c.token_manager.http_client is c.http_client
    assert client.http_client is None


def test_missing_credentials_logged(caplog):
    Client("", "")
    messages = [r.getMessage() for r in caplog.records]
    assert "app_id is needed" in messages
    assert "app_secret is needed" in messages


def test_resolve_url(make_client):
    client = make_client(domain="https://open.example.com/")
    assert client.resolve_url("/open-apis/a/:id", {"id": "1"}) == "https://open.example.com/open-apis/a/1"
    assert client.resolve_url("https://other.example.com/x/:id?y=1", {"id": "2"}) == "https://other.example.com/x/2?y=1"
