"""Tests for chat platform helpers and the Telegram adapter."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from droidgram.channels.base import MAX_MESSAGE_LENGTH, split_message
from droidgram.channels.telegram import TelegramPlatform, markdown_to_telegram_html
from droidgram.config.schema import TelegramConfig


class TestSplitMessage:
    def test_short(self):
        assert split_message("hello") == ["hello"]

    def test_empty(self):
        assert split_message("") == []

    def test_prefers_newlines(self):
        text = "a" * 6 + "\n" + "b" * 6
        assert split_message(text, limit=10) == ["aaaaaa", "bbbbbb"]

    def test_hard_cut(self):
        assert split_message("x" * 25, limit=10) == ["x" * 10, "x" * 10, "x" * 5]

    def test_default_limit(self):
        parts = split_message("y" * (MAX_MESSAGE_LENGTH + 1))
        assert [len(p) for p in parts] == [MAX_MESSAGE_LENGTH, 1]


class TestMarkdownToHtml:
    def test_bold_and_code(self):
        assert markdown_to_telegram_html("**Job**: `abc`") == "<b>Job</b>: <code>abc</code>"

    def test_escapes(self):
        assert markdown_to_telegram_html("a < b & c") == "a &lt; b &amp; c"

    def test_code_block(self):
        html = markdown_to_telegram_html("```bash\nnpm i <pkg>\n```")
        assert html == "<pre><code>npm i &lt;pkg&gt;\n</code></pre>"

    def test_link(self):
        assert markdown_to_telegram_html("[PR](https://x.y)") == '<a href="https://x.y">PR</a>'


class TestTelegramPlatform:
    def test_allow_all_when_empty(self):
        platform = TelegramPlatform(TelegramConfig())
        assert platform.is_sender_allowed("123", None)

    def test_allow_list(self):
        platform = TelegramPlatform(TelegramConfig(allow_from=["123", "@alice"]))
        assert platform.is_sender_allowed("123", None)
        assert platform.is_sender_allowed("999", "alice")
        assert not platform.is_sender_allowed("999", "bob")
        assert not platform.is_sender_allowed("999", None)

    def test_streaming_mode(self):
        assert TelegramPlatform(TelegramConfig(streaming_mode="stream")).get_streaming_mode() == "stream"

    @pytest.mark.asyncio
    async def test_send_splits_and_formats(self):
        platform = TelegramPlatform(TelegramConfig())
        platform._app = MagicMock()
        platform._app.bot.send_message = AsyncMock()

        await platform.send_message("42", "**hi**\n" + "z" * MAX_MESSAGE_LENGTH)

        calls = platform._app.bot.send_message.call_args_list
        assert len(calls) == 2
        assert calls[0].kwargs == {"chat_id": 42, "text": "<b>hi</b>", "parse_mode": "HTML"}

    @pytest.mark.asyncio
    async def test_send_falls_back_to_plain(self):
        platform = TelegramPlatform(TelegramConfig())
        platform._app = MagicMock()
        platform._app.bot.send_message = AsyncMock(side_effect=[ValueError("bad html"), None])

        await platform.send_message("42", "**hi**")

        fallback = platform._app.bot.send_message.call_args_list[1]
        assert fallback.kwargs == {"chat_id": 42, "text": "**hi**"}

    @pytest.mark.asyncio
    async def test_send_without_app(self):
        await TelegramPlatform(TelegramConfig()).send_message("42", "hi")

    @pytest.mark.asyncio
    async def test_on_message_forwards(self):
        received = []

        async def on_message(conversation_id, text, user):
            received.append((conversation_id, text, user))

        platform = TelegramPlatform(TelegramConfig(allow_from=["7"]), on_message=on_message)
        platform._app = MagicMock()
        platform._app.bot.send_chat_action = AsyncMock()

        update = MagicMock()
        update.message.text = "/exec 1. npm test"
        update.message.chat_id = 555
        update.effective_user.id = 7
        update.effective_user.username = "dev"
        update.effective_user.first_name = "Dev"

        await platform._on_message(update, None)

        assert received == [("555", "/exec 1. npm test", {"user_id": 7, "username": "dev", "first_name": "Dev"})]
        assert platform._typing_tasks == {}

    @pytest.mark.asyncio
    async def test_on_message_blocks_strangers(self):
        on_message = AsyncMock()
        platform = TelegramPlatform(TelegramConfig(allow_from=["7"]), on_message=on_message)

        update = MagicMock()
        update.message.text = "hi"
        update.effective_user.id = 8
        update.effective_user.username = "eve"

        await platform._on_message(update, None)
        on_message.assert_not_called()

    def test_updates_handled_concurrently(self):
        app = TelegramPlatform(TelegramConfig(token="123456:TEST")).build_application()
        assert app.concurrent_updates > 1

    @pytest.mark.asyncio
    async def test_two_chats_dispatched_concurrently(self):
        both_inside = asyncio.Event()
        inside = []

        async def on_message(conversation_id, text, user):
            inside.append(conversation_id)
            if len(inside) == 2:
                both_inside.set()
            await asyncio.wait_for(both_inside.wait(), timeout=1)

        platform = TelegramPlatform(TelegramConfig(), on_message=on_message)
        platform._app = MagicMock()
        platform._app.bot.send_chat_action = AsyncMock()

        def make_update(chat_id):
            update = MagicMock()
            update.message.text = "run the tests"
            update.message.chat_id = chat_id
            update.effective_user.id = 7
            return update

        await asyncio.gather(
            platform._on_message(make_update(555), None),
            platform._on_message(make_update(666), None),
        )
        assert sorted(inside) == ["555", "666"]
        assert platform._typing_tasks == {}
