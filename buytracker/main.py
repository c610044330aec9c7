"""Application entrypoint."""

from __future__ import annotations

import asyncio
import signal
from datetime import timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from telegram import BotCommand, BotCommandScopeDefault
from telegram.ext import ApplicationBuilder

from buytracker.chain.client import ChainClient
from buytracker.config import load_settings
from buytracker.handlers.commands import HandlerContext, setup as setup_handlers
from buytracker.jobs.notifier import PurchaseClassifier, PurchaseNotifier
from buytracker.jobs.sessions import SessionSweeper
from buytracker.jobs.subscriptions import SubscriptionManager
from buytracker.setup.coordinator import SetupCoordinator
from buytracker.setup.machine import SetupRules
from buytracker.store.config_store import ConfigStore
from buytracker.store.db import Database
from buytracker.store.migrations import adopt_chat_admins, run_migrations
from buytracker.transport import TelegramGateway
from buytracker.utils.logging import configure_logging, get_logger
from buytracker.utils.routers import build_allowlist, load_router_map

logger = get_logger(__name__)


async def main() -> None:
    settings = load_settings()
    configure_logging(settings.log_level, log_file=settings.log_file)

    db = Database(settings.database_url)
    db.connect()
    await db.init_models()
    migrated = await run_migrations(db)
    logger.info("database_ready", migrated_groups=migrated)

    chain = ChainClient(
        settings.rpc_urls(),
        poll_interval=settings.poll_interval_seconds,
        max_block_range=settings.max_block_range,
    )
    await chain.check_connectivity()

    router_map = load_router_map(settings.routers_json)
    classifier = PurchaseClassifier(build_allowlist(router_map))

    application = ApplicationBuilder().token(settings.telegram_bot_token).build()
    await application.initialize()

    commands = [
        BotCommand("setup", "Configure token tracking"),
        BotCommand("status", "Check current tracking status"),
        BotCommand("stop", "Stop tracking"),
        BotCommand("cancel", "Abort a running setup"),
        BotCommand("help", "Show available commands"),
    ]
    await application.bot.delete_my_commands(scope=BotCommandScopeDefault())
    await application.bot.set_my_commands(commands, scope=BotCommandScopeDefault())

    gateway = TelegramGateway(application.bot, settings.default_image_path)
    notifier = PurchaseNotifier(classifier, gateway, precision=settings.display_decimals)
    store = ConfigStore(db)
    await adopt_chat_admins(store, gateway)
    subscriptions = SubscriptionManager(chain, notifier, store=store)
    await subscriptions.restore_all()

    coordinator = SetupCoordinator(
        store=store,
        subscriptions=subscriptions,
        resolver=chain,
        permissions=gateway,
        rules=SetupRules(
            networks=tuple(chain.networks),
            max_custom_emojis=settings.max_custom_emojis,
        ),
        session_timeout=timedelta(minutes=settings.setup_session_timeout_minutes),
    )

    scheduler = AsyncIOScheduler()
    sweeper = SessionSweeper(coordinator=coordinator, scheduler=scheduler)

    username = application.bot.username
    handler_context = HandlerContext(
        store=store,
        subscriptions=subscriptions,
        coordinator=coordinator,
        notifier=notifier,
        gateway=gateway,
        routers=router_map,
        add_to_group_url=f"https://t.me/{username}?startgroup=true" if username else None,
    )
    setup_handlers(application, handler_context)

    sweeper.start()
    scheduler.start()

    try:
        await application.start()
        if application.updater:
            await application.updater.start_polling()

        logger.info(
            "bot_started",
            networks=chain.networks,
            subscriptions=len(subscriptions),
        )

        stop_event = asyncio.Event()

        def signal_handler(signum, frame):
            logger.info("shutdown_signal_received", signal=signum)
            stop_event.set()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        await stop_event.wait()

    finally:
        logger.info("bot_stopping")
        scheduler.shutdown(wait=False)
        await subscriptions.shutdown_all()
        if application.updater:
            await application.updater.stop()
        await application.stop()
        await application.shutdown()
        await db.dispose()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
