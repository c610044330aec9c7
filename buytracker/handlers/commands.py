"""Telegram command handlers."""

from __future__ import annotations

import secrets
from dataclasses import dataclass, replace
from typing import Dict, Optional

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.error import TelegramError
from telegram.ext import (
    Application,
    CallbackContext,
    CallbackQueryHandler,
    CommandHandler,
    MessageHandler,
    filters,
)

from buytracker.errors import TransientIntegrationError
from buytracker.handlers.setup import (
    RETRY_LATER,
    cancel_command,
    get_ctx,
    photo_handler,
    reply_plain,
    reply_safely,
    setup_callback,
    setup_command,
    text_handler,
)
from buytracker.jobs.notifier import PurchaseNotifier
from buytracker.jobs.subscriptions import SubscriptionManager
from buytracker.models import GroupConfig, TransferEvent
from buytracker.setup.coordinator import GROUP_CHAT_TYPES, SetupCoordinator
from buytracker.setup.prompts import CB_PREFIX, CB_SAMPLE
from buytracker.store.config_store import ConfigStore
from buytracker.transport import TelegramGateway
from buytracker.utils.formatting import escape_markdown
from buytracker.utils.logging import get_logger
from buytracker.utils.networks import get_network
from buytracker.utils.routers import list_routers

logger = get_logger(__name__)

GROUP_ONLY = "This command only works in groups!"


@dataclass
class HandlerContext:
    store: ConfigStore
    subscriptions: SubscriptionManager
    coordinator: SetupCoordinator
    notifier: PurchaseNotifier
    gateway: TelegramGateway
    routers: Dict[str, Dict[str, str]]
    add_to_group_url: Optional[str] = None


def setup(application: Application, handler_context: HandlerContext) -> None:
    """Register handlers on the Telegram application."""
    application.bot_data["ctx"] = handler_context

    application.add_handler(CommandHandler("start", start))
    application.add_handler(CommandHandler("help", help_command))
    application.add_handler(CommandHandler("setup", setup_command))
    application.add_handler(CommandHandler("cancel", cancel_command))
    application.add_handler(CommandHandler("status", status_command))
    application.add_handler(CommandHandler("stop", stop_command))

    application.add_handler(
        CallbackQueryHandler(setup_callback, pattern=f"^{CB_PREFIX}")
    )
    application.add_handler(
        CallbackQueryHandler(sample_notification, pattern=f"^{CB_SAMPLE}$")
    )
    application.add_handler(CallbackQueryHandler(unknown_callback))

    application.add_handler(MessageHandler(filters.PHOTO, photo_handler))
    application.add_handler(
        MessageHandler(filters.TEXT & ~filters.COMMAND, text_handler)
    )
    application.add_error_handler(error_handler)


def is_group(update: Update) -> bool:
    chat = update.effective_chat
    return chat is not None and chat.type in GROUP_CHAT_TYPES


async def start(update: Update, context: CallbackContext) -> None:
    ctx = get_ctx(context)
    chat = update.effective_chat
    if chat is None:
        return

    if not is_group(update):
        text = (
            "🚀 Welcome to BuyTracker Bot! 🚀\n\n"
            "I track token purchases on blockchain networks and send "
            "notifications to your group.\n\n"
            "To get started:\n"
            "1️⃣ Add me to your Telegram group\n"
            "2️⃣ Make me an admin in the group\n"
            "3️⃣ Type /setup in the group to configure tracking"
        )
        markup = None
        if ctx.add_to_group_url:
            markup = InlineKeyboardMarkup(
                [[InlineKeyboardButton("Add to Group", url=ctx.add_to_group_url)]]
            )
        await reply_plain(update, text, reply_markup=markup)
        return

    try:
        bot_admin = await ctx.gateway.bot_is_admin(chat.id)
    except TransientIntegrationError:
        await reply_plain(update, "An error occurred while checking my permissions.")
        return

    if bot_admin:
        text = "I am ready to be configured! Type /setup to start tracking token purchases."
    else:
        text = "Please make me an admin in this group to enable all features!"
    await reply_plain(update, text)


async def help_command(update: Update, context: CallbackContext) -> None:
    text = (
        "📚 BuyTracker Bot Commands\n\n"
        "/setup - Configure token tracking\n"
        "/status - Check current tracking status\n"
        "/stop - Stop tracking\n"
        "/cancel - Abort a running setup\n"
        "/help - Show this help message"
    )
    await reply_plain(update, text)


def format_status(config: Optional[GroupConfig], live: bool, routers) -> str:
    """Render the /status reply."""
    if config is None or not config.is_tracking:
        return (
            "⚠️ *Tracking Status:* `INACTIVE`\n\n"
            + escape_markdown(
                "No active tracking in this group. Use /setup to configure token tracking."
            )
        )

    token = config.token
    network = get_network(config.network)
    dexes = ", ".join(name for _, name, _ in list_routers(config.network, routers))
    state = "ACTIVE" if live else "ACTIVE (stream stopped, run /setup to restart)"
    lines = [
        f"📊 *Tracking Status:* `{escape_markdown(state)}`",
        "",
        "🔍 *Current Configuration:*",
        f"• Network: *{escape_markdown(network.display_name)}*",
        f"• Token: *{escape_markdown(token.name)} \\({escape_markdown(token.symbol)}\\)*",
        f"• Contract: `{escape_markdown(token.address)}`",
        f"• Started: {escape_markdown(config.created_at.strftime('%Y-%m-%d %H:%M UTC'))}",
    ]
    if dexes:
        lines.append(f"• Buys via: {escape_markdown(dexes)}")
    lines.extend(
        [
            "",
            escape_markdown("Use /setup to change configuration or /stop to stop tracking."),
        ]
    )
    return "\n".join(lines)


async def status_command(update: Update, context: CallbackContext) -> None:
    ctx = get_ctx(context)
    if not is_group(update):
        await reply_plain(update, GROUP_ONLY)
        return

    group_id = update.effective_chat.id
    try:
        config = await ctx.store.get(group_id)
    except TransientIntegrationError:
        await reply_safely(update, escape_markdown(RETRY_LATER))
        return

    subscription = ctx.subscriptions.get(group_id)
    live = subscription is not None and subscription.alive
    await reply_safely(update, format_status(config, live, ctx.routers))


async def stop_command(update: Update, context: CallbackContext) -> None:
    ctx = get_ctx(context)
    if not is_group(update):
        await reply_plain(update, GROUP_ONLY)
        return

    group_id = update.effective_chat.id
    user = update.effective_user
    try:
        config = await ctx.store.get(group_id)
        if config is None or not config.is_tracking:
            await reply_plain(update, "No active tracking to stop in this group.")
            return

        allowed = user is not None and (
            user.id in config.admins
            or await ctx.gateway.is_chat_admin(group_id, user.id)
        )
        if not allowed:
            await reply_plain(update, "Only group admins can stop tracking.")
            return

        await ctx.store.upsert(
            group_id, lambda current: _with_notifications(current, False)
        )
    except TransientIntegrationError:
        await reply_safely(update, escape_markdown(RETRY_LATER))
        return

    await ctx.subscriptions.shutdown(group_id)
    logger.info("tracking_stopped", group_id=group_id, user_id=user.id if user else None)
    await reply_safely(
        update,
        "🛑 *Tracking Stopped*\n\n"
        + escape_markdown(
            "Token tracking has been disabled for this group.\n"
            "Use /setup to configure new tracking or /status to check current status."
        ),
    )


def _with_notifications(config: GroupConfig, enabled: bool) -> GroupConfig:
    return replace(config, notifications_enabled=enabled)


def sample_event(decimal_places: int) -> TransferEvent:
    """Random purchase used for the "View Sample Notification" button."""
    whole_tokens = secrets.randbelow(1_000_000) + 1
    return TransferEvent(
        from_address="0x" + secrets.token_hex(20),
        to_address="0x" + secrets.token_hex(20),
        amount=whole_tokens * 10**decimal_places + secrets.randbelow(10**decimal_places or 1),
        tx_hash="0x" + secrets.token_hex(32),
    )


async def sample_notification(update: Update, context: CallbackContext) -> None:
    ctx = get_ctx(context)
    query = update.callback_query
    try:
        await query.answer()
    except TelegramError as exc:
        logger.warning("callback_answer_failed", error=str(exc))

    chat = update.effective_chat
    try:
        config = await ctx.store.get(chat.id) if chat else None
    except TransientIntegrationError:
        config = None
    if config is None or config.token is None:
        await reply_plain(update, "Group configuration not found.")
        return

    event = sample_event(config.token.decimal_places)
    await ctx.notifier.send_sample(event, config)


async def unknown_callback(update: Update, context: CallbackContext) -> None:
    query = update.callback_query
    try:
        await query.answer()
    except TelegramError as exc:
        logger.warning("callback_answer_failed", error=str(exc))
    await reply_plain(update, "This action is not available right now.")


async def error_handler(update: object, context: CallbackContext) -> None:
    """Log failures no handler caught so one bad update never stops polling."""
    logger.error("update_failed", error=str(context.error), exc_info=context.error)
