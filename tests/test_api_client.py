import asyncio
import json

import httpx
import pytest

from feishu_channel.api.client import FeishuClient, parse_content_disposition, resolve_base_url
from feishu_channel.api.errors import ApiError, AuthError, RequestCancelledError, RequestTimeoutError
from feishu_channel.api.token_cache import TokenCache
from tests.conftest import FakeClock

TOKEN_PATH = "/open-apis/auth/v3/tenant_access_token/internal"


class FeishuStub:
    """Minimal Feishu API stand-in for ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.token_exchanges = 0
        self.token_payload: dict = {"code": 0, "tenant_access_token": "t-1", "expire": 7200}
        self.routes: dict[tuple[str, str], httpx.Response] = {}
        self.delay = 0.0

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == TOKEN_PATH:
            self.token_exchanges += 1
            payload = dict(self.token_payload)
            if payload.get("tenant_access_token") == "t-1":
                payload["tenant_access_token"] = f"t-{self.token_exchanges}"
            return httpx.Response(200, json=payload)
        if self.delay:
            await asyncio.sleep(self.delay)
        response = self.routes.get((request.method, request.url.path))
        if response is None:
            return httpx.Response(200, json={"code": 0, "msg": "success", "data": {}})
        return response

    def api_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path != TOKEN_PATH]


def make_client(stub: FeishuStub, clock: FakeClock | None = None, **kwargs) -> FeishuClient:
    cache = TokenCache(clock=clock or FakeClock(1000.0))
    return FeishuClient(
        "cli_app",
        "secret",
        token_cache=cache,
        transport=httpx.MockTransport(stub),
        **kwargs,
    )


def test_resolve_base_url() -> None:
    assert resolve_base_url("feishu") == "https://open.feishu.cn"
    assert resolve_base_url("lark") == "https://open.larksuite.com"
    assert resolve_base_url("https://open.example.test/") == "https://open.example.test"


def test_parse_content_disposition() -> None:
    assert parse_content_disposition('attachment; filename="report.pdf"') == "report.pdf"
    assert parse_content_disposition("attachment; filename*=UTF-8''%E6%8A%A5%E5%91%8A.pdf") == "报告.pdf"
    assert parse_content_disposition("attachment; filename*=UTF-8''%FF%FE") is None
    assert parse_content_disposition("inline") is None
    assert parse_content_disposition('attachment; filename="Q3 report.pdf"') == "Q3 report.pdf"
    assert parse_content_disposition('attachment; filename="a;b.txt"; size=12') == "a;b.txt"
    assert parse_content_disposition(None) is None


async def test_token_is_cached_within_buffer_and_refreshed_after() -> None:
    stub = FeishuStub()
    clock = FakeClock(0.0)
    client = make_client(stub, clock)

    first = await client.get_access_token()
    clock.t = 6899.0
    second = await client.get_access_token()
    assert first == second == "t-1"
    assert stub.token_exchanges == 1

    # 7200s expiry minus the 300s buffer.
    clock.t = 6900.0
    third = await client.get_access_token()
    assert third == "t-2"
    assert stub.token_exchanges == 2
    await client.aclose()


async def test_token_default_ttl_when_expire_missing() -> None:
    stub = FeishuStub()
    stub.token_payload = {"code": 0, "tenant_access_token": "t-fixed"}
    clock = FakeClock(0.0)
    client = make_client(stub, clock)

    await client.get_access_token()
    cached = client.token_cache.get("cli_app")
    assert cached is not None
    assert cached.expires_at == 7200.0
    await client.aclose()


async def test_token_exchange_failure_raises_auth_error() -> None:
    stub = FeishuStub()
    stub.token_payload = {"code": 10003, "msg": "invalid app_secret"}
    client = make_client(stub)

    with pytest.raises(AuthError) as exc_info:
        await client.get_access_token()
    assert exc_info.value.code == 10003
    assert "invalid app_secret" in str(exc_info.value)
    assert len(client.token_cache) == 0
    await client.aclose()


async def test_token_missing_field_raises_auth_error() -> None:
    stub = FeishuStub()
    stub.token_payload = {"code": 0, "msg": "ok"}
    client = make_client(stub)

    with pytest.raises(AuthError):
        await client.get_access_token()
    await client.aclose()


async def test_non_zero_code_is_api_error_despite_http_200() -> None:
    stub = FeishuStub()
    stub.routes[("POST", "/open-apis/im/v1/messages")] = httpx.Response(
        200, json={"code": 230001, "msg": "invalid receive_id"}
    )
    client = make_client(stub)

    with pytest.raises(ApiError) as exc_info:
        await client.send_message("ou_x", "text", json.dumps({"text": "hi"}))
    assert exc_info.value.code == 230001
    assert exc_info.value.msg == "invalid receive_id"
    assert "code=230001" in str(exc_info.value)
    await client.aclose()


async def test_send_message_request_shape() -> None:
    stub = FeishuStub()
    stub.routes[("POST", "/open-apis/im/v1/messages")] = httpx.Response(
        200, json={"code": 0, "data": {"message_id": "om_new", "chat_id": "oc_1"}}
    )
    client = make_client(stub)

    sent = await client.send_message("oc_1", "interactive", "{}", "chat_id")

    assert sent.message_id == "om_new"
    assert sent.chat_id == "oc_1"
    request = stub.api_requests()[0]
    assert request.url.params["receive_id_type"] == "chat_id"
    assert request.headers["Authorization"] == "Bearer t-1"
    assert json.loads(request.content) == {"receive_id": "oc_1", "msg_type": "interactive", "content": "{}"}
    await client.aclose()


async def test_reply_and_update_endpoints() -> None:
    stub = FeishuStub()
    stub.routes[("POST", "/open-apis/im/v1/messages/om_src/reply")] = httpx.Response(
        200, json={"code": 0, "data": {"message_id": "om_reply"}}
    )
    client = make_client(stub)

    sent = await client.reply_message("om_src", "interactive", "{}")
    await client.update_message_card("om_reply", '{"elements": []}')

    assert sent.message_id == "om_reply"
    reply_req, patch_req = stub.api_requests()
    assert json.loads(reply_req.content) == {"msg_type": "interactive", "content": "{}"}
    assert "receive_id" not in json.loads(reply_req.content)
    assert patch_req.method == "PATCH"
    assert patch_req.url.path == "/open-apis/im/v1/messages/om_reply"
    assert json.loads(patch_req.content) == {"content": '{"elements": []}'}
    await client.aclose()


async def test_get_bot_info() -> None:
    stub = FeishuStub()
    stub.routes[("GET", "/open-apis/bot/v3/info")] = httpx.Response(
        200, json={"code": 0, "bot": {"open_id": "ou_bot", "app_name": "Helper", "activate_status": 2}}
    )
    client = make_client(stub)

    info = await client.get_bot_info()

    assert info.open_id == "ou_bot"
    assert info.app_name == "Helper"
    assert info.activate_status == 2
    await client.aclose()


async def test_upload_image_returns_key() -> None:
    stub = FeishuStub()
    stub.routes[("POST", "/open-apis/im/v1/images")] = httpx.Response(
        200, json={"code": 0, "data": {"image_key": "img_v2_abc"}}
    )
    client = make_client(stub)

    key = await client.upload_image(b"\x89PNG", "message", "photo.png")

    assert key == "img_v2_abc"
    body = stub.api_requests()[0].content
    assert b'name="image_type"' in body
    assert b'filename="photo.png"' in body
    await client.aclose()


async def test_upload_without_key_is_api_error() -> None:
    stub = FeishuStub()
    stub.routes[("POST", "/open-apis/im/v1/files")] = httpx.Response(200, json={"code": 0, "data": {}})
    client = make_client(stub)

    with pytest.raises(ApiError):
        await client.upload_file(b"data", "notes.txt")
    await client.aclose()


async def test_download_file_parses_filename() -> None:
    stub = FeishuStub()
    stub.routes[("GET", "/open-apis/im/v1/files/file_1")] = httpx.Response(
        200,
        content=b"%PDF",
        headers={"content-type": "application/pdf", "content-disposition": 'attachment; filename="Q3 report.pdf"'},
    )
    client = make_client(stub)

    media = await client.download_file("file_1")

    assert media.data == b"%PDF"
    assert media.content_type == "application/pdf"
    assert media.file_name == "Q3 report.pdf"
    await client.aclose()


async def test_download_http_error_is_api_error() -> None:
    stub = FeishuStub()
    stub.routes[("GET", "/open-apis/im/v1/images/img_missing")] = httpx.Response(404, content=b"")
    client = make_client(stub)

    with pytest.raises(ApiError) as exc_info:
        await client.download_image("img_missing")
    assert exc_info.value.code == 404
    await client.aclose()


async def test_request_timeout() -> None:
    stub = FeishuStub()
    stub.delay = 1.0
    client = make_client(stub)

    with pytest.raises(RequestTimeoutError):
        await client.call("/im/v1/messages/om_1", method="GET", timeout=0.05)
    await client.aclose()


async def test_abort_cancels_in_flight_request() -> None:
    stub = FeishuStub()
    stub.delay = 1.0
    abort = asyncio.Event()
    client = make_client(stub, abort=abort)

    task = asyncio.create_task(client.get_message("om_1"))
    await asyncio.sleep(0.05)
    abort.set()

    with pytest.raises(RequestCancelledError):
        await task
    await client.aclose()


async def test_abort_already_set_fails_without_request() -> None:
    stub = FeishuStub()
    abort = asyncio.Event()
    abort.set()
    client = make_client(stub, abort=abort)

    with pytest.raises(RequestCancelledError):
        await client.get_access_token()
    assert stub.requests == []
    await client.aclose()
