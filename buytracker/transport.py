"""Telegram transport adapter.

The core only talks to Telegram through :class:`TelegramGateway`, which turns
every ``TelegramError`` into :class:`TransientIntegrationError` so callers
deal with one failure kind.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Protocol

from telegram import ChatMember, InlineKeyboardMarkup
from telegram.constants import ParseMode
from telegram.error import BadRequest, TelegramError

from buytracker.errors import TransientIntegrationError
from buytracker.utils.formatting import unescape_markdown
from buytracker.utils.logging import get_logger

logger = get_logger(__name__)

ADMIN_STATUSES = {ChatMember.ADMINISTRATOR, ChatMember.OWNER}


class Transport(Protocol):
    """What the core needs from the messaging platform."""

    async def send_notification(
        self,
        chat_id: int,
        text: str,
        image_file_id: Optional[str] = None,
    ) -> None: ...

    async def bot_is_admin(self, chat_id: int) -> bool: ...

    async def is_chat_admin(self, chat_id: int, user_id: int) -> bool: ...


class TelegramGateway:
    """Wrap ``telegram.Bot`` with the fallbacks the bot relies on."""

    def __init__(self, bot, default_image_path: Optional[Path] = None) -> None:
        self.bot = bot
        self.default_image_path = default_image_path
        self._default_image: Optional[bytes] = None
        self._bot_id: Optional[int] = None

    async def bot_id(self) -> int:
        if self._bot_id is None:
            try:
                me = await self.bot.get_me()
            except TelegramError as exc:
                raise TransientIntegrationError("Could not fetch bot identity") from exc
            self._bot_id = me.id
        return self._bot_id

    async def bot_is_admin(self, chat_id: int) -> bool:
        return await self.is_chat_admin(chat_id, await self.bot_id())

    async def is_chat_admin(self, chat_id: int, user_id: int) -> bool:
        try:
            member = await self.bot.get_chat_member(chat_id=chat_id, user_id=user_id)
        except TelegramError as exc:
            logger.warning(
                "chat_member_lookup_failed",
                chat_id=chat_id,
                user_id=user_id,
                error=str(exc),
            )
            raise TransientIntegrationError(
                "Could not check chat permissions", {"chat_id": chat_id}
            ) from exc
        return member.status in ADMIN_STATUSES

    async def chat_admin_ids(self, chat_id: int) -> frozenset[int]:
        """Ids of the human administrators of ``chat_id``."""
        try:
            members = await self.bot.get_chat_administrators(chat_id=chat_id)
        except TelegramError as exc:
            raise TransientIntegrationError(
                "Could not list chat administrators", {"chat_id": chat_id}
            ) from exc
        return frozenset(m.user.id for m in members if not m.user.is_bot)

    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_markup: Optional[InlineKeyboardMarkup] = None,
    ) -> None:
        """Send MarkdownV2 text, falling back to plain text if Telegram rejects it."""
        try:
            try:
                await self.bot.send_message(
                    chat_id=chat_id,
                    text=text,
                    parse_mode=ParseMode.MARKDOWN_V2,
                    reply_markup=reply_markup,
                    disable_web_page_preview=True,
                )
            except BadRequest as exc:
                logger.warning("telegram_markdown_failed", chat_id=chat_id, error=str(exc))
                await self.bot.send_message(
                    chat_id=chat_id,
                    text=unescape_markdown(text),
                    reply_markup=reply_markup,
                    disable_web_page_preview=True,
                )
        except TelegramError as exc:
            raise TransientIntegrationError(
                "Telegram send failed", {"chat_id": chat_id}
            ) from exc

    def default_image(self) -> Optional[bytes]:
        """Bytes of the fallback image, read from disk on first use."""
        if self._default_image is None and self.default_image_path:
            if self.default_image_path.exists():
                self._default_image = self.default_image_path.read_bytes()
        return self._default_image

    async def send_notification(
        self,
        chat_id: int,
        text: str,
        image_file_id: Optional[str] = None,
    ) -> None:
        """Send a notification as a photo caption, or as text without an image."""
        photo = image_file_id if image_file_id is not None else self.default_image()

        if photo is None:
            await self.send_message(chat_id, text)
            return

        try:
            await self.bot.send_photo(
                chat_id=chat_id,
                photo=photo,
                caption=text,
                parse_mode=ParseMode.MARKDOWN_V2,
            )
        except BadRequest as exc:
            # Stale file id or rejected markdown; the text still goes out
            logger.warning("telegram_photo_failed", chat_id=chat_id, error=str(exc))
            await self.send_message(chat_id, text)
        except TelegramError as exc:
            raise TransientIntegrationError(
                "Telegram send failed", {"chat_id": chat_id}
            ) from exc
