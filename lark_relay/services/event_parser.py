"""Turning Lark `im.message.receive_v1` events into inbound queue rows."""

import base64
import json
import mimetypes
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from lark_relay.logging_config import get_logger
from lark_relay.schemas.lark import LarkMention, LarkMessageEvent
from lark_relay.schemas.queue import Attachment, EnqueueResult
from lark_relay.services.lark_client import LarkClient
from lark_relay.services.queue_service import MessageQueue
from lark_relay.services.result import Result

logger = get_logger("event_parser")

IMAGE_PLACEHOLDER = "[User sent an image]"
MENTION_MARKER = re.compile(r"@_user_\d+\s*")
QUESTION_KEYWORDS = re.compile(r"\b(why|how|what|help|please|can you|could you)\b")
QUESTION_KEYWORDS_ZH = re.compile(r"帮|请|能否|可以|解释|分析|总结|什么|怎么|为什么")


@dataclass
class PostContent:
    texts: list[str] = field(default_factory=list)
    image_keys: list[str] = field(default_factory=list)


def build_session_key(chat_id: str, agent_id: str = "main") -> str:
    return f"agent:{agent_id}:lark:{chat_id}"


def parse_text_content(content: Optional[str]) -> Result[str]:
    if not content:
        return Result.absent()
    try:
        data = json.loads(content)
    except ValueError as exc:
        return Result.malformed(str(exc))
    if not isinstance(data, dict):
        return Result.malformed("text content is not an object")
    return Result.success((data.get("text") or "").strip())


def parse_post_content(content: Optional[str]) -> Result[PostContent]:
    """Collect text runs, links and image keys from a rich-text post."""
    if not content:
        return Result.absent()
    try:
        data = json.loads(content)
    except ValueError as exc:
        return Result.malformed(str(exc))
    if not isinstance(data, dict):
        return Result.malformed("post content is not an object")

    blocks = data.get("content")
    if blocks is None:
        for locale in ("zh_cn", "en_us"):
            if isinstance(data.get(locale), dict):
                blocks = data[locale].get("content")
                break

    post = PostContent()
    for paragraph in blocks or []:
        if not isinstance(paragraph, list):
            continue
        for element in paragraph:
            if not isinstance(element, dict):
                continue
            tag = element.get("tag")
            if tag == "text" and element.get("text"):
                post.texts.append(element["text"])
            elif tag == "img" and element.get("image_key"):
                post.image_keys.append(element["image_key"])
            elif tag == "a" and element.get("text"):
                href = element.get("href")
                post.texts.append(f"[{element['text']}]({href})" if href else element["text"])
    return Result.success(post)


def looks_like_question(text: str) -> bool:
    if re.search(r"[？?]$", text):
        return True
    if QUESTION_KEYWORDS.search(text.lower()):
        return True
    return bool(QUESTION_KEYWORDS_ZH.search(text))


def should_respond_in_group(text: str, mentions: list[LarkMention], require_mention: bool) -> bool:
    if mentions:
        return True
    if require_mention:
        return False
    return looks_like_question(text)


def save_media_file(media_dir: Path, message_id: str, image_key: str, data: bytes, mime_type: str) -> Optional[Path]:
    extension = mimetypes.guess_extension(mime_type) or ".bin"
    path = Path(media_dir) / f"{message_id}-{image_key}{extension}"
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    except OSError as exc:
        logger.warning("Failed to save inbound media", extra={"context": {"path": str(path), "error": str(exc)}})
        return None
    return path


class LarkEventIngestor:
    """Validates, filters and persists incoming Lark message events."""

    def __init__(
        self,
        queue: MessageQueue,
        client: Optional[LarkClient] = None,
        *,
        media_dir: Optional[Path] = None,
        dm_allowlist: Optional[set[str]] = None,
        group_allowlist: Optional[set[str]] = None,
        group_require_mention: bool = True,
        agent_id: str = "main",
    ):
        self.queue = queue
        self.client = client
        self.media_dir = media_dir
        self.dm_allowlist = dm_allowlist or set()
        self.group_allowlist = group_allowlist or set()
        self.group_require_mention = group_require_mention
        self.agent_id = agent_id

    async def ingest(self, event: LarkMessageEvent) -> Optional[EnqueueResult]:
        """Persist an accepted message. Returns None when the event is filtered out."""
        message = event.message
        if message is None or not message.chat_id or not message.message_id:
            return None
        chat_id = message.chat_id
        message_id = message.message_id

        text = ""
        attachments: list[Attachment] = []

        if message.message_type == "text":
            parsed = parse_text_content(message.content)
            if parsed.is_malformed:
                logger.warning(
                    "Malformed text content",
                    extra={"context": {"message_id": message_id, "error": parsed.error}},
                )
            text = parsed.unwrap_or("")
        elif message.message_type == "post":
            parsed_post = parse_post_content(message.content)
            if parsed_post.is_malformed:
                logger.warning(
                    "Malformed post content",
                    extra={"context": {"message_id": message_id, "error": parsed_post.error}},
                )
            post = parsed_post.unwrap_or(PostContent())
            text = " ".join(post.texts).strip()
            for image_key in post.image_keys:
                attachment = await self._fetch_image(image_key, message_id)
                if attachment:
                    attachments.append(attachment)
        elif message.message_type == "image":
            image_key = self._image_key(message.content, message_id)
            if image_key:
                attachment = await self._fetch_image(image_key, message_id)
                if attachment:
                    attachments.append(attachment)
            text = IMAGE_PLACEHOLDER
        else:
            logger.info(
                "Unsupported message type",
                extra={"context": {"message_id": message_id, "message_type": message.message_type}},
            )
            return None

        if not text and not attachments:
            return None

        if message.chat_type == "group":
            if self.group_allowlist and chat_id not in self.group_allowlist:
                logger.info("Ignoring group not in allowlist", extra={"context": {"chat_id": chat_id}})
                return None
            text = MENTION_MARKER.sub("", text).strip()
            if not attachments and not should_respond_in_group(text, message.mentions, self.group_require_mention):
                return None
        elif self.dm_allowlist and chat_id not in self.dm_allowlist:
            logger.info("Ignoring DM not in allowlist", extra={"context": {"chat_id": chat_id}})
            return None

        # a bare mention leaves nothing to send
        if not text and not attachments:
            return None

        return self.queue.enqueue_inbound(
            message_id,
            chat_id,
            build_session_key(chat_id, self.agent_id),
            text or IMAGE_PLACEHOLDER,
            attachments or None,
        )

    def _image_key(self, content: Optional[str], message_id: str) -> Optional[str]:
        try:
            data = json.loads(content or "{}")
        except ValueError as exc:
            logger.warning("Malformed image content", extra={"context": {"message_id": message_id, "error": str(exc)}})
            return None
        return data.get("image_key") if isinstance(data, dict) else None

    async def _fetch_image(self, image_key: str, message_id: str) -> Optional[Attachment]:
        if self.client is None:
            return None
        downloaded = await self.client.download_image(image_key, message_id)
        if not downloaded.ok:
            logger.warning(
                "Image download failed",
                extra={"context": {"message_id": message_id, "image_key": image_key, "error": downloaded.error}},
            )
            return None

        data, mime_type = downloaded.value
        file_path = None
        if self.media_dir is not None:
            saved = save_media_file(self.media_dir, message_id, image_key, data, mime_type)
            file_path = str(saved) if saved else None
        return Attachment(
            mime_type=mime_type,
            content=base64.b64encode(data).decode("ascii"),
            file_path=file_path,
        )
