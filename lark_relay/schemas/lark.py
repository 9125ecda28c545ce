from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class LarkMention(BaseModel):
    key: Optional[str] = None
    name: Optional[str] = None
    id: Optional[dict[str, Any]] = None


class LarkMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message_id: Optional[str] = None
    chat_id: Optional[str] = None
    chat_type: Optional[str] = None  # p2p, group
    message_type: Optional[str] = None  # text, post, image, ...
    content: Optional[str] = None
    mentions: list[LarkMention] = []


class LarkMessageEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sender: Optional[dict[str, Any]] = None
    message: Optional[LarkMessage] = None


class LarkEventHeader(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event_id: Optional[str] = None
    event_type: Optional[str] = None
    token: Optional[str] = None
    app_id: Optional[str] = None


class LarkWebhookEvent(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    schema_: Optional[str] = Field(default=None, alias="schema")
    type: Optional[str] = None  # url_verification
    challenge: Optional[str] = None
    token: Optional[str] = None
    encrypt: Optional[str] = None
    header: Optional[LarkEventHeader] = None
    event: Optional[dict[str, Any]] = None


class LarkWebhookResponse(BaseModel):
    success: bool
    message: str
    enqueued: Optional[bool] = None
