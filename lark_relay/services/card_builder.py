"""Lark interactive card rendering and outbound message-type selection."""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

MAX_CARD_LENGTH = 30000
MAX_TITLE_LENGTH = 50
MAX_TEXT_LENGTH = 100
MAX_TEXT_LINES = 2

SKIP_MARKERS = frozenset({"NO_REPLY", "HEARTBEAT_OK"})

TITLE_EMOJI_PREFIXES = ("🧠", "🔧", "📊", "✅", "💡", "❌", "⚠", "🚨", "📝", "🎯", "🔍")

COLOR_RULES = (
    ("red", re.compile(r"urgent|critical|emergency|🚨|❌|紧急|严重|error|failed|失败")),
    ("orange", re.compile(r"warning|⚠️|注意|警告|caution|小心")),
    ("green", re.compile(r"success|done|✅|🟢|成功|完成|completed|finished")),
    ("indigo", re.compile(r"research|analysis|📊|report|研究|分析|报告")),
)


class MessageType(str, Enum):
    SKIP = "skip"
    TEXT = "text"
    INTERACTIVE = "interactive"


def select_message_type(text: Optional[str]) -> MessageType:
    """Skip markers and empty text are not sent; short text goes out plain, the rest as a card."""
    if not text or text in SKIP_MARKERS:
        return MessageType.SKIP
    if len(text) < MAX_TEXT_LENGTH and len(text.split("\n")) <= MAX_TEXT_LINES:
        return MessageType.TEXT
    return MessageType.INTERACTIVE


def detect_color(text: str) -> str:
    lowered = text.lower()
    for color, pattern in COLOR_RULES:
        if pattern.search(lowered):
            return color
    return "blue"


def extract_title(text: str) -> Optional[str]:
    for line in text.split("\n")[:5]:
        stripped = line.strip()
        if stripped.startswith(TITLE_EMOJI_PREFIXES):
            return stripped.replace("**", "")[:MAX_TITLE_LENGTH]
        if re.match(r"^\*\*[^*]+\*\*", stripped):
            return stripped.replace("**", "")[:MAX_TITLE_LENGTH]
        if re.match(r"^#{1,3}\s+.+", stripped):
            return re.sub(r"^#{1,3}\s+", "", stripped)[:MAX_TITLE_LENGTH]
    return None


def build_card(
    text: str,
    session_key: Optional[str] = None,
    title: Optional[str] = None,
    color: Optional[str] = None,
    show_timestamp: bool = True,
    show_session_key: bool = True,
    max_length: int = MAX_CARD_LENGTH,
    now: Optional[datetime] = None,
) -> dict:
    """Build a Lark interactive card from markdown-ish text."""
    title = title or extract_title(text)
    color = color or detect_color(text)

    # lark_md has no headers; render them as bold
    body = re.sub(r"^#{1,6}\s+", "**", text, flags=re.MULTILINE)[:max_length]
    if len(text) > max_length:
        body += "\n\n⚠️ _(Message truncated)_"

    elements: list[dict] = [{"tag": "div", "text": {"tag": "lark_md", "content": body}}]

    note_parts = []
    if show_timestamp:
        stamp = (now or datetime.now(timezone.utc)).strftime("%Y-%m-%dT%H:%M:%S")
        note_parts.append(f"⏱️ {stamp} UTC")
    if show_session_key and session_key:
        note_parts.append(f"📍 {session_key}")
    if note_parts:
        elements.append(
            {
                "tag": "note",
                "elements": [{"tag": "plain_text", "content": " | ".join(note_parts)}],
            }
        )

    card: dict = {"config": {"wide_screen_mode": True}, "elements": elements}
    if title:
        card["header"] = {"title": {"tag": "plain_text", "content": title}, "template": color}
    return card
