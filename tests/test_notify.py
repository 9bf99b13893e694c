"""Tests for alert formatting and the Notifier."""

from unittest.mock import AsyncMock

import pytest

from streamrelay.notify import Notifier, escape_markdown_v2, format_alert


class TestEscape:
    def test_special_characters(self):
        assert escape_markdown_v2("a_b*c.d!") == r"a\_b\*c\.d\!"

    def test_plain_text_untouched(self):
        assert escape_markdown_v2("hello world") == "hello world"

    def test_backslash(self):
        assert escape_markdown_v2("a\\b") == "a\\\\b"


class TestFormatAlert:
    def test_header_and_body(self):
        text = format_alert("backup", "Disk usage high")
        assert text == "*⚠️ Alert from backup:*\nDisk usage high"

    def test_blank_lines_dropped(self):
        text = format_alert("svc", "line one\n\n   \nline two\n")
        assert text.endswith("\nline one\nline two")

    def test_service_name_escaped(self):
        text = format_alert("my-svc", "ok")
        assert text.startswith(r"*⚠️ Alert from my\-svc:*")


class TestNotifier:
    @pytest.mark.asyncio
    async def test_forward_sends_markdown(self):
        client = AsyncMock()
        client.create_message.return_value = 55
        notifier = Notifier(client, "-1001")

        message_id = await notifier.forward("cron", "job failed")

        assert message_id == 55
        client.create_message.assert_awaited_once_with(
            "-1001", "*⚠️ Alert from cron:*\njob failed", parse_mode="MarkdownV2"
        )

    @pytest.mark.asyncio
    async def test_forward_without_chat_raises(self):
        notifier = Notifier(AsyncMock(), "")
        with pytest.raises(ValueError):
            await notifier.forward("cron", "job failed")

    @pytest.mark.asyncio
    async def test_close_closes_client(self):
        client = AsyncMock()
        await Notifier(client, "1").close()
        client.close.assert_awaited_once()
