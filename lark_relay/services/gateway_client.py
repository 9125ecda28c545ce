"""Client for the agent gateway that processes inbound Lark messages.

The gateway is asked to deliver replies itself (deliver=true); it calls back
into POST /lark/outbound, so the relay only needs an acknowledgement here.
"""

from typing import Optional, Protocol

import httpx

from lark_relay.logging_config import get_logger
from lark_relay.schemas.queue import Attachment
from lark_relay.services.errors import GatewayError, TransientIOError

logger = get_logger("gateway_client")


class ProcessingBackend(Protocol):
    async def submit(
        self,
        *,
        text: str,
        attachments: list[Attachment],
        session_key: str,
        chat_id: str,
        idempotency_key: str,
    ) -> str: ...


class GatewayClient:
    def __init__(
        self,
        base_url: str,
        token: str = "",
        agent_id: str = "main",
        timeout: float = 300.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.agent_id = agent_id
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def submit(
        self,
        *,
        text: str,
        attachments: list[Attachment],
        session_key: str,
        chat_id: str,
        idempotency_key: str,
    ) -> str:
        """Hand one message to the agent. Returns the run id (or reply text) on success."""
        payload = {
            "message": text,
            "agentId": self.agent_id,
            "sessionKey": session_key,
            "deliver": True,
            "idempotencyKey": idempotency_key,
            "attachments": [a.model_dump(by_alias=True, exclude_none=True) for a in attachments] or None,
            "channel": "lark",
            "replyChannel": "lark",
            "to": chat_id,
        }
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}

        try:
            response = await self._http.post(f"{self.base_url}/v1/agent", json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise TransientIOError(f"Gateway timeout: {e}") from e
        except httpx.HTTPError as e:
            raise TransientIOError(f"Gateway unreachable: {e}") from e

        if response.status_code >= 400:
            raise GatewayError(f"Gateway HTTP {response.status_code}: {response.text[:200]}")

        try:
            data = response.json()
        except ValueError as e:
            raise GatewayError("Gateway returned invalid JSON") from e

        if not data.get("ok", False):
            error = data.get("error")
            if isinstance(error, dict):
                error = error.get("message")
            raise GatewayError(error or "agent error")

        logger.info(
            "Gateway accepted message",
            extra={"context": {"session_key": session_key, "run_id": data.get("runId")}},
        )
        return data.get("text") or data.get("runId") or ""
