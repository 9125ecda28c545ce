from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class Attachment(BaseModel):
    mime_type: str = Field(alias="mimeType")
    content: str  # base64
    file_path: Optional[str] = Field(default=None, alias="filePath")

    model_config = ConfigDict(populate_by_name=True)


class EnqueueResult(BaseModel):
    enqueued: bool
    reason: Optional[str] = None
    id: Optional[int] = None
    existing: Optional[str] = None


class InboundRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    message_id: str
    chat_id: str
    session_key: str
    message_text: str
    attachments_json: Optional[str] = None
    status: str
    retries: int
    next_retry_at: Optional[int] = None
    created_at: int
    updated_at: int
    completed_at: Optional[int] = None
    response_text: Optional[str] = None
    last_error: Optional[str] = None


class OutboundRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    queue_type: str
    run_id: Optional[str] = None
    session_key: str
    chat_id: str
    content: str
    content_hash: str
    status: str
    retries: int
    next_retry_at: Optional[int] = None
    created_at: int
    updated_at: int
    completed_at: Optional[int] = None
    lark_message_id: Optional[str] = None
    last_error: Optional[str] = None


class RetryDecision(BaseModel):
    id: int
    retries: int
    exhausted: bool
    next_retry_at: Optional[int] = None


class QueueCounts(BaseModel):
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0


class QueueStats(BaseModel):
    inbound: QueueCounts
    outbound: QueueCounts
    db_path: str


class MaintenanceReport(BaseModel):
    recovered_inbound: int = 0
    recovered_outbound: int = 0
    deleted_inbound: int = 0
    deleted_outbound: int = 0
    deleted_sent: int = 0
    deleted_media_files: int = 0


class OutboundRequest(BaseModel):
    queue_type: Literal["reply", "mirror"] = "reply"
    session_key: str
    chat_id: str
    content: str
    run_id: Optional[str] = None
