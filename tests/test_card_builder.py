from datetime import datetime, timezone

from lark_relay.services.card_builder import (
    MessageType,
    build_card,
    detect_color,
    extract_title,
    select_message_type,
)


class TestSelectMessageType:
    def test_skip_markers(self):
        assert select_message_type("NO_REPLY") == MessageType.SKIP
        assert select_message_type("HEARTBEAT_OK") == MessageType.SKIP
        assert select_message_type("") == MessageType.SKIP
        assert select_message_type(None) == MessageType.SKIP

    def test_short_text(self):
        assert select_message_type("hi") == MessageType.TEXT
        assert select_message_type("line one\nline two") == MessageType.TEXT

    def test_long_text(self):
        assert select_message_type("x" * 100) == MessageType.INTERACTIVE

    def test_many_lines(self):
        assert select_message_type("a\nb\nc") == MessageType.INTERACTIVE


class TestDetectColor:
    def test_error_is_red(self):
        assert detect_color("Deploy FAILED on prod") == "red"

    def test_warning_is_orange(self):
        assert detect_color("Warning: disk almost full") == "orange"

    def test_success_is_green(self):
        assert detect_color("Migration done") == "green"

    def test_default_blue(self):
        assert detect_color("Here is the summary you asked for") == "blue"


class TestExtractTitle:
    def test_markdown_header(self):
        assert extract_title("## Weekly report\nbody") == "Weekly report"

    def test_bold_line(self):
        assert extract_title("**Summary** of things\nbody") == "Summary of things"

    def test_no_title(self):
        assert extract_title("just a paragraph") is None


class TestBuildCard:
    def test_card_structure(self):
        now = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        card = build_card("## Report\nAll tests passed, done.", session_key="agent:main:lark:oc_1", now=now)

        assert card["config"] == {"wide_screen_mode": True}
        assert card["header"]["title"]["content"] == "Report"
        assert card["header"]["template"] == "green"
        body = card["elements"][0]["text"]["content"]
        assert body.startswith("**Report")
        note = card["elements"][1]["elements"][0]["content"]
        assert "2026-01-02T03:04:05 UTC" in note
        assert "agent:main:lark:oc_1" in note

    def test_truncation_notice(self):
        card = build_card("x" * 50, max_length=10, show_timestamp=False)

        body = card["elements"][0]["text"]["content"]
        assert body.startswith("x" * 10)
        assert "truncated" in body
        assert len(card["elements"]) == 1
        assert "header" not in card
