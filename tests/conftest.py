import json
import httpx
import pytest
from common.cache import DefaultCache
from connectors.lark.client import Client

TOKEN_PATH = "/open-apis/auth/v3/tenant_access_token/internal"


class FakeLark:
    """
    MockTransport handler: serves tenant tokens and whatever routes a test registers.
    Each route is a list of responses (dicts become JSON 200s) consumed in order.
    """

    def __init__(self):
        self.routes = {}
        self.calls = []
        self.token_calls = 0

    def on(self, method, path, *responses):
        self.routes[(method, path)] = list(responses)
        return self

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == TOKEN_PATH:
            self.token_calls += 1
            return httpx.Response(200, json={"code": 0, "tenant_access_token": "t-123", "expire": 7200})
        self.calls.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"code": 404, "msg": "no route"})
        res = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(res, httpx.Response):
            # fresh copy, a Response can only be sent once
            return httpx.Response(res.status_code, headers=res.headers, content=res.content)
        return httpx.Response(200, json=res)

    def body(self, i):
        return json.loads(self.calls[i].content or b"null")


@pytest.fixture
def fake():
    return FakeLark()


@pytest.fixture
def make_client(fake):
    def _make(**kw):
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(fake))
        return Client("cli_test", "secret", cache=DefaultCache(), http_client=http_client, **kw)
    return _make
