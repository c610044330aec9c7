"""Route Telegram interactions into the setup coordinator."""

from __future__ import annotations

from typing import Iterable, Optional

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.error import BadRequest, TelegramError
from telegram.ext import CallbackContext

from buytracker.errors import PermissionDeniedError, TransientIntegrationError
from buytracker.setup.machine import (
    Cancel,
    CustomEmojiRequested,
    EmojiPresetChosen,
    ImageUploaded,
    NetworkChosen,
    Reply,
    SetupEvent,
    SkipImage,
    TextEntered,
    TryAgain,
)
from buytracker.setup.prompts import (
    CB_CANCEL,
    CB_CUSTOM_EMOJI,
    CB_EMOJI,
    CB_NETWORK,
    CB_SKIP_IMAGE,
    CB_TRY_AGAIN,
    OutboundMessage,
    render,
)
from buytracker.utils.formatting import escape_markdown, unescape_markdown
from buytracker.utils.logging import get_logger

logger = get_logger(__name__)

RETRY_LATER = "Something went wrong while talking to Telegram. Please try again."


def get_ctx(context: CallbackContext):
    return context.application.bot_data["ctx"]


def build_markup(message: OutboundMessage) -> Optional[InlineKeyboardMarkup]:
    if not message.keyboard:
        return None
    return InlineKeyboardMarkup(
        [
            [InlineKeyboardButton(label, callback_data=data) for label, data in row]
            for row in message.keyboard
        ]
    )


async def reply_markdown(
    update: Update,
    text: str,
    reply_markup: Optional[InlineKeyboardMarkup] = None,
) -> None:
    """Reply in the update's chat, retrying as plain text if markdown is rejected."""
    message = update.effective_message
    if message is None:
        return
    try:
        await message.reply_text(
            text,
            parse_mode="MarkdownV2",
            reply_markup=reply_markup,
            disable_web_page_preview=True,
        )
    except BadRequest as exc:
        logger.warning("telegram_markdown_failed", error=str(exc))
        await message.reply_text(
            unescape_markdown(text),
            parse_mode=None,
            reply_markup=reply_markup,
            disable_web_page_preview=True,
        )


async def reply_plain(
    update: Update,
    text: str,
    reply_markup: Optional[InlineKeyboardMarkup] = None,
) -> None:
    """Reply without markdown; delivery failures are logged, not raised."""
    message = update.effective_message
    if message is None:
        return
    try:
        await message.reply_text(text, parse_mode=None, reply_markup=reply_markup)
    except TelegramError as exc:
        logger.error("reply_failed", error=str(exc))


async def reply_safely(update: Update, text: str) -> None:
    """Like :func:`reply_markdown`, but a failed delivery is only logged."""
    try:
        await reply_markdown(update, text)
    except TelegramError as exc:
        logger.error("reply_failed", error=str(exc))


async def send_replies(update: Update, replies: Iterable[Reply]) -> None:
    for reply in replies:
        outbound = render(reply)
        try:
            await reply_markdown(update, outbound.text, build_markup(outbound))
        except TelegramError as exc:
            logger.error("setup_reply_failed", kind=reply.kind.value, error=str(exc))


async def setup_command(update: Update, context: CallbackContext) -> None:
    """Handle /setup: check permissions and open a session."""
    ctx = get_ctx(context)
    chat = update.effective_chat
    user = update.effective_user
    if chat is None or user is None:
        return

    try:
        replies = await ctx.coordinator.begin(chat.id, chat.type, user.id)
    except PermissionDeniedError as exc:
        logger.info("setup_denied", chat_id=chat.id, user_id=user.id, reason=str(exc))
        await reply_safely(update, escape_markdown(str(exc)))
        return
    except TransientIntegrationError as exc:
        logger.warning("setup_permission_check_failed", chat_id=chat.id, error=str(exc))
        await reply_safely(update, escape_markdown(RETRY_LATER))
        return

    await send_replies(update, replies)


async def cancel_command(update: Update, context: CallbackContext) -> None:
    await _dispatch(update, context, Cancel())


def parse_callback(data: str) -> Optional[SetupEvent]:
    """Translate inline-button callback data into a setup event."""
    if data == CB_CANCEL:
        return Cancel()
    if data == CB_TRY_AGAIN:
        return TryAgain()
    if data == CB_SKIP_IMAGE:
        return SkipImage()
    if data == CB_CUSTOM_EMOJI:
        return CustomEmojiRequested()
    if data.startswith(CB_NETWORK):
        return NetworkChosen(network=data[len(CB_NETWORK) :])
    if data.startswith(CB_EMOJI):
        return EmojiPresetChosen(preset=data[len(CB_EMOJI) :])
    return None


async def setup_callback(update: Update, context: CallbackContext) -> None:
    query = update.callback_query
    if query is None:
        return
    try:
        await query.answer()
    except TelegramError as exc:
        logger.warning("callback_answer_failed", error=str(exc))

    event = parse_callback(query.data or "")
    if event is None:
        return
    await _dispatch(update, context, event)


async def photo_handler(update: Update, context: CallbackContext) -> None:
    message = update.effective_message
    if message is None or not message.photo:
        return
    # Telegram lists sizes ascending; keep the largest
    await _dispatch(update, context, ImageUploaded(file_id=message.photo[-1].file_id))


async def text_handler(update: Update, context: CallbackContext) -> None:
    message = update.effective_message
    if message is None or not message.text:
        return
    await _dispatch(update, context, TextEntered(text=message.text))


async def _dispatch(update: Update, context: CallbackContext, event: SetupEvent) -> None:
    ctx = get_ctx(context)
    chat = update.effective_chat
    user = update.effective_user
    if chat is None or user is None:
        return
    if not ctx.coordinator.has_session(chat.id):
        return
    replies = await ctx.coordinator.handle(chat.id, user.id, event)
    await send_replies(update, replies)
