import json

import httpx
import pytest

from lark_relay.schemas.queue import Attachment
from lark_relay.services.errors import GatewayError, TransientIOError
from lark_relay.services.gateway_client import GatewayClient


def _client(handler, token="gw-token") -> GatewayClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GatewayClient("http://gateway.local/", token=token, http_client=http)


async def _submit(client: GatewayClient, attachments=None):
    return await client.submit(
        text="hello",
        attachments=attachments or [],
        session_key="agent:main:lark:oc_1",
        chat_id="oc_1",
        idempotency_key="inbound-om_1",
    )


class TestGatewaySubmit:
    @pytest.mark.asyncio
    async def test_posts_agent_request(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"ok": True, "runId": "run-1"})

        attachment = Attachment(mime_type="image/png", content="aGk=")
        result = await _submit(_client(handler), [attachment])

        assert result == "run-1"
        assert seen["url"] == "http://gateway.local/v1/agent"
        assert seen["auth"] == "Bearer gw-token"
        body = seen["body"]
        assert body["message"] == "hello"
        assert body["sessionKey"] == "agent:main:lark:oc_1"
        assert body["idempotencyKey"] == "inbound-om_1"
        assert body["deliver"] is True
        assert body["channel"] == "lark"
        assert body["attachments"] == [{"mimeType": "image/png", "content": "aGk="}]

    @pytest.mark.asyncio
    async def test_no_token_no_auth_header(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json={"ok": True, "text": "reply"})

        assert await _submit(_client(handler, token="")) == "reply"
        assert seen["auth"] is None

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="bad gateway")

        with pytest.raises(GatewayError, match="502"):
            await _submit(_client(handler))

    @pytest.mark.asyncio
    async def test_agent_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"ok": False, "error": {"message": "agent busy"}})

        with pytest.raises(GatewayError, match="agent busy"):
            await _submit(_client(handler))

    @pytest.mark.asyncio
    async def test_unreachable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(TransientIOError):
            await _submit(_client(handler))
