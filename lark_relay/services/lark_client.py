import json
import time
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from lark_relay.logging_config import get_logger
from lark_relay.services.result import Result

logger = get_logger("lark_client")

DOMAINS = {
    "lark": "https://open.larksuite.com",
    "feishu": "https://open.feishu.cn",
}
TOKEN_REFRESH_MARGIN_SECONDS = 60


def _parse_code(value: Optional[str]) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass
class SendResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    code: Optional[int] = None


@dataclass
class BotInfo:
    ok: bool
    bot_id: Optional[str] = None
    bot_name: Optional[str] = None
    error: Optional[str] = None
    elapsed_ms: Optional[int] = None


class LarkClient:
    """Async client for the Lark open platform messaging API."""

    def __init__(
        self,
        app_id: str,
        app_secret: str,
        domain: str = "lark",
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.app_id = app_id
        self.app_secret = app_secret
        self.base_url = DOMAINS.get(domain, DOMAINS["lark"])
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    async def aclose(self) -> None:
        await self._http.aclose()

    async def get_tenant_token(self) -> Result[str]:
        """Return a cached tenant access token, refreshing it shortly before expiry."""
        now = time.time()
        if self._token and self._token_expires_at > now:
            return Result.success(self._token)

        try:
            response = await self._http.post(
                f"{self.base_url}/open-apis/auth/v3/tenant_access_token/internal",
                json={"app_id": self.app_id, "app_secret": self.app_secret},
            )
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Lark token request failed: {e}")
            return Result.failure(str(e), "network")

        if data.get("code") == 0 and data.get("tenant_access_token"):
            self._token = data["tenant_access_token"]
            self._token_expires_at = now + int(data.get("expire", 7200)) - TOKEN_REFRESH_MARGIN_SECONDS
            return Result.success(self._token)

        return Result.failure(data.get("msg") or "token request rejected", str(data.get("code")))

    async def _send(self, chat_id: str, msg_type: str, content: dict[str, Any]) -> SendResult:
        token = await self.get_tenant_token()
        if not token.ok:
            return SendResult(
                success=False,
                error=f"tenant token unavailable: {token.error}",
                code=_parse_code(token.error_code),
            )

        try:
            response = await self._http.post(
                f"{self.base_url}/open-apis/im/v1/messages",
                params={"receive_id_type": "chat_id"},
                headers={"Authorization": f"Bearer {token.value}"},
                json={
                    "receive_id": chat_id,
                    "msg_type": msg_type,
                    "content": json.dumps(content, ensure_ascii=False),
                },
            )
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            return SendResult(success=False, error=str(e))

        code = data.get("code")
        message_id = (data.get("data") or {}).get("message_id")
        if code == 0 and message_id:
            return SendResult(success=True, message_id=message_id)
        if code == 0:
            return SendResult(success=False, error="No message_id in response")
        return SendResult(
            success=False,
            error=data.get("msg") or f"HTTP {response.status_code}",
            code=code if isinstance(code, int) else None,
        )

    async def send_text(self, chat_id: str, text: str) -> SendResult:
        """Send a plain text message."""
        return await self._send(chat_id, "text", {"text": text})

    async def send_card(self, chat_id: str, card: dict) -> SendResult:
        """Send an interactive card."""
        return await self._send(chat_id, "interactive", card)

    async def download_image(self, image_key: str, message_id: str) -> Result[tuple[bytes, str]]:
        """Download an image resource attached to a message. Returns (bytes, mime type)."""
        token = await self.get_tenant_token()
        if not token.ok:
            return Result.failure(token.error or "no token", "token")

        try:
            response = await self._http.get(
                f"{self.base_url}/open-apis/im/v1/messages/{message_id}/resources/{image_key}",
                params={"type": "image"},
                headers={"Authorization": f"Bearer {token.value}"},
            )
        except httpx.HTTPError as e:
            logger.error(f"Lark image download failed: {e}")
            return Result.failure(str(e), "network")

        if response.status_code != 200:
            return Result.failure(f"HTTP {response.status_code}", "http")

        mime_type = response.headers.get("content-type", "image/png").split(";")[0]
        logger.info(
            "Downloaded Lark image",
            extra={"context": {"image_key": image_key, "kb": round(len(response.content) / 1024)}},
        )
        return Result.success((response.content, mime_type))

    async def fetch_bot_info(self) -> BotInfo:
        """Check credentials by fetching the bot profile."""
        start = time.monotonic()
        token = await self.get_tenant_token()
        if not token.ok:
            return BotInfo(ok=False, error="Failed to get token")

        try:
            response = await self._http.get(
                f"{self.base_url}/open-apis/bot/v3/info",
                headers={"Authorization": f"Bearer {token.value}"},
            )
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            return BotInfo(ok=False, error=str(e), elapsed_ms=int((time.monotonic() - start) * 1000))

        elapsed_ms = int((time.monotonic() - start) * 1000)
        bot = data.get("bot")
        if data.get("code") == 0 and bot:
            return BotInfo(ok=True, bot_id=bot.get("open_id"), bot_name=bot.get("app_name"), elapsed_ms=elapsed_ms)
        return BotInfo(ok=False, error=data.get("msg") or "Unknown error", elapsed_ms=elapsed_ms)
