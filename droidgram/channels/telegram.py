"""Telegram adapter using python-telegram-bot."""

import asyncio
import re
from typing import Any, Awaitable, Callable

from loguru import logger
from telegram import BotCommand, Update
from telegram.ext import Application, CommandHandler, ContextTypes, MessageHandler, filters

from droidgram.channels.base import ChatPlatform, StreamingMode, split_message
from droidgram.config.schema import TelegramConfig

MessageCallback = Callable[[str, str, dict[str, Any]], Awaitable[None]]


def markdown_to_telegram_html(text: str) -> str:
    """Convert the markdown subset used in replies to Telegram-safe HTML."""
    if not text:
        return ""

    code_blocks: list[str] = []

    def save_code_block(m: re.Match) -> str:
        code_blocks.append(m.group(1))
        return f"\x00CB{len(code_blocks) - 1}\x00"

    text = re.sub(r"```[\w]*\n?([\s\S]*?)```", save_code_block, text)

    inline_codes: list[str] = []

    def save_inline_code(m: re.Match) -> str:
        inline_codes.append(m.group(1))
        return f"\x00IC{len(inline_codes) - 1}\x00"

    text = re.sub(r"`([^`]+)`", save_inline_code, text)

    text = re.sub(r"^#{1,6}\s+(.+)$", r"\1", text, flags=re.MULTILINE)
    text = text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
    text = re.sub(r"\[([^\]]+)\]\(([^)]+)\)", r'<a href="\2">\1</a>', text)
    text = re.sub(r"\*\*(.+?)\*\*", r"<b>\1</b>", text)
    text = re.sub(r"(?<![a-zA-Z0-9])_([^_\n]+)_(?![a-zA-Z0-9])", r"<i>\1</i>", text)

    def escape(code: str) -> str:
        return code.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")

    for i, code in enumerate(inline_codes):
        text = text.replace(f"\x00IC{i}\x00", f"<code>{escape(code)}</code>")
    for i, code in enumerate(code_blocks):
        text = text.replace(f"\x00CB{i}\x00", f"<pre><code>{escape(code)}</code></pre>")

    return text


class TelegramPlatform(ChatPlatform):
    """
    Telegram bot using long polling.

    Every text message (slash commands included) from an allowed sender
    is forwarded to the message callback; the orchestrator decides what
    it means.
    """

    platform_type = "telegram"

    NATIVE_COMMANDS = [
        BotCommand("reset", "Start a fresh Droid session"),
        BotCommand("exec", "Run a command sequence"),
        BotCommand("deploy", "Self-healing Vercel deploy"),
        BotCommand("autonomy", "Show or change autonomy settings"),
        BotCommand("jobs", "List background jobs"),
        BotCommand("help", "Show available commands"),
    ]

    def __init__(self, config: TelegramConfig, on_message: MessageCallback | None = None):
        self.config = config
        self.on_message = on_message
        self._app: Application | None = None
        self._running = False
        self._typing_tasks: dict[int, asyncio.Task] = {}

    def get_streaming_mode(self) -> StreamingMode:
        return self.config.streaming_mode

    def build_application(self) -> Application:
        """Updates run concurrently; conversation locks keep each chat in order."""
        return (
            Application.builder()
            .token(self.config.token)
            .concurrent_updates(True)
            .build()
        )

    async def start(self) -> None:
        """Start the bot and poll until stop() is called."""
        if not self.config.token:
            logger.error("Telegram bot token not configured")
            return

        self._running = True
        self._app = self.build_application()

        self._app.add_handler(CommandHandler("start", self._on_start))
        self._app.add_handler(CommandHandler("help", self._on_help))
        self._app.add_handler(MessageHandler(filters.TEXT, self._on_message))

        logger.info("Starting Telegram bot (polling mode)...")
        await self._app.initialize()
        await self._app.start()

        bot_info = await self._app.bot.get_me()
        logger.info(f"Telegram bot @{bot_info.username} connected")

        try:
            await self._app.bot.set_my_commands(self.NATIVE_COMMANDS)
        except Exception as e:
            logger.warning(f"Failed to set bot commands: {e}")

        await self._app.updater.start_polling(
            allowed_updates=["message"],
            drop_pending_updates=True,
        )

        while self._running:
            await asyncio.sleep(1)

    async def stop(self) -> None:
        self._running = False

        for chat_id in list(self._typing_tasks):
            await self._stop_typing(chat_id)

        if self._app:
            logger.info("Stopping Telegram bot...")
            await self._app.updater.stop()
            await self._app.stop()
            await self._app.shutdown()
            self._app = None

    async def send_message(self, conversation_id: str, text: str) -> None:
        if not self._app:
            logger.warning("Telegram bot not running")
            return

        try:
            chat_id = int(conversation_id)
        except ValueError:
            logger.error(f"Invalid chat_id: {conversation_id}")
            return

        await self._stop_typing(chat_id)

        for part in split_message(text):
            try:
                await self._app.bot.send_message(
                    chat_id=chat_id,
                    text=markdown_to_telegram_html(part),
                    parse_mode="HTML",
                )
            except Exception as e:
                logger.warning(f"HTML parse failed, falling back to plain text: {e}")
                await self._app.bot.send_message(chat_id=chat_id, text=part)

    def is_sender_allowed(self, user_id: str, username: str | None) -> bool:
        """Empty allow_from means everyone is allowed."""
        allowed = set(self.config.allow_from or [])
        if not allowed:
            return True
        candidates = {user_id, f"telegram:{user_id}"}
        if username:
            candidates |= {username, f"@{username}"}
        return bool(candidates & allowed)

    async def _send_typing(self, chat_id: int) -> None:
        if not self._app:
            return
        try:
            await self._app.bot.send_chat_action(chat_id=chat_id, action="typing")
        except Exception as e:
            logger.debug(f"Failed to send typing indicator: {e}")

    async def _start_typing_loop(self, chat_id: int) -> None:
        """Send typing indicators every 4 seconds until a reply goes out."""
        await self._stop_typing(chat_id)

        async def typing_loop():
            try:
                while True:
                    await self._send_typing(chat_id)
                    await asyncio.sleep(4)  # Telegram typing expires after ~5 seconds
            except asyncio.CancelledError:
                pass

        self._typing_tasks[chat_id] = asyncio.create_task(typing_loop())

    async def _stop_typing(self, chat_id: int) -> None:
        task = self._typing_tasks.pop(chat_id, None)
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _on_start(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.message or not update.effective_user:
            return
        await update.message.reply_text(
            f"Hi {update.effective_user.first_name}! I'm Droidgram 🤖\n\n"
            "Send me a task and Droid will work on it.\n"
            "Use /help to see commands."
        )

    async def _on_help(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.message:
            return
        await update.message.reply_text(
            "🤖 <b>Droidgram Commands</b>\n\n"
            "<b>/reset</b> - start a fresh Droid session\n"
            "<b>/exec</b> 1. cmd 2. cmd - run a command sequence\n"
            "<b>/dryrun</b> 1. cmd 2. cmd - preview a sequence\n"
            "<b>/deploy</b> [dir] [prod] - self-healing Vercel deploy\n"
            "<b>/autonomy</b> [off|low|medium|high|full] - autonomy settings\n"
            "<b>/activate</b> AGENT [mission] - set an agent persona\n"
            "<b>/jobs</b>, <b>/job</b> id, <b>/cancel</b> id - background jobs\n\n"
            "💡 <i>Anything else goes straight to Droid.</i>",
            parse_mode="HTML",
        )

    async def _on_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.message or not update.effective_user or not update.message.text:
            return

        user = update.effective_user
        chat_id = update.message.chat_id

        if not self.is_sender_allowed(str(user.id), user.username):
            logger.debug(f"Blocked unauthorized sender {user.id}")
            return

        if self.on_message is None:
            logger.warning("No message handler attached to Telegram platform")
            return

        await self._start_typing_loop(chat_id)
        logger.debug(f"Telegram message from {user.id}: {update.message.text[:50]}...")

        try:
            await self.on_message(
                str(chat_id),
                update.message.text,
                {"user_id": user.id, "username": user.username, "first_name": user.first_name},
            )
        finally:
            await self._stop_typing(chat_id)
