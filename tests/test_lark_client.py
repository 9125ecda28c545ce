import json

import httpx
import pytest

from lark_relay.services.lark_client import LarkClient

TOKEN_PATH = "/open-apis/auth/v3/tenant_access_token/internal"
SEND_PATH = "/open-apis/im/v1/messages"


def _client(handler) -> LarkClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return LarkClient("cli_app", "secret", http_client=http)


def _token_response():
    return httpx.Response(200, json={"code": 0, "tenant_access_token": "t-123", "expire": 7200})


class TestTenantToken:
    @pytest.mark.asyncio
    async def test_token_is_cached(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            return _token_response()

        client = _client(handler)
        first = await client.get_tenant_token()
        second = await client.get_tenant_token()

        assert first.value == "t-123"
        assert second.value == "t-123"
        assert calls == [TOKEN_PATH]

    @pytest.mark.asyncio
    async def test_rejected_credentials(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"code": 10014, "msg": "app secret invalid"})

        result = await _client(handler).get_tenant_token()

        assert result.ok is False
        assert result.error == "app secret invalid"
        assert result.error_code == "10014"


class TestSend:
    @pytest.mark.asyncio
    async def test_send_text(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == TOKEN_PATH:
                return _token_response()
            seen["params"] = dict(request.url.params)
            seen["auth"] = request.headers["authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"code": 0, "data": {"message_id": "om_123"}})

        result = await _client(handler).send_text("oc_chat", "hello")

        assert result.success is True
        assert result.message_id == "om_123"
        assert seen["params"] == {"receive_id_type": "chat_id"}
        assert seen["auth"] == "Bearer t-123"
        assert seen["body"]["msg_type"] == "text"
        assert json.loads(seen["body"]["content"]) == {"text": "hello"}

    @pytest.mark.asyncio
    async def test_api_error_keeps_code(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == TOKEN_PATH:
                return _token_response()
            return httpx.Response(400, json={"code": 230002, "msg": "Bot is not in the chat"})

        result = await _client(handler).send_card("oc_chat", {"elements": []})

        assert result.success is False
        assert result.code == 230002
        assert result.error == "Bot is not in the chat"

    @pytest.mark.asyncio
    async def test_network_error_has_no_code(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == TOKEN_PATH:
                return _token_response()
            raise httpx.ConnectError("connection refused", request=request)

        result = await _client(handler).send_text("oc_chat", "hello")

        assert result.success is False
        assert result.code is None
        assert "connection refused" in result.error

    @pytest.mark.asyncio
    async def test_missing_message_id(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == TOKEN_PATH:
                return _token_response()
            return httpx.Response(200, json={"code": 0, "data": {}})

        result = await _client(handler).send_text("oc_chat", "hello")

        assert result.success is False


class TestDownloadImage:
    @pytest.mark.asyncio
    async def test_returns_bytes_and_mime_type(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == TOKEN_PATH:
                return _token_response()
            assert request.url.path == "/open-apis/im/v1/messages/om_1/resources/img_1"
            return httpx.Response(200, content=b"\x89PNG", headers={"content-type": "image/png; charset=binary"})

        result = await _client(handler).download_image("img_1", "om_1")

        assert result.ok
        assert result.value == (b"\x89PNG", "image/png")

    @pytest.mark.asyncio
    async def test_http_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == TOKEN_PATH:
                return _token_response()
            return httpx.Response(404)

        result = await _client(handler).download_image("img_1", "om_1")

        assert result.ok is False
        assert result.error == "HTTP 404"


class TestFetchBotInfo:
    @pytest.mark.asyncio
    async def test_reports_bot(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == TOKEN_PATH:
                return _token_response()
            return httpx.Response(200, json={"code": 0, "bot": {"open_id": "ou_bot", "app_name": "Relay"}})

        result = await _client(handler).fetch_bot_info()

        assert result.ok is True
        assert result.bot_id == "ou_bot"
        assert result.bot_name == "Relay"
