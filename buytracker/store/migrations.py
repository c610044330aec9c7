"""Startup schema migrations.

Every step is safe to re-run: a second invocation finds nothing left to do.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Dict, FrozenSet, List, Protocol

from sqlalchemy import text

from buytracker.errors import TransientIntegrationError
from buytracker.models import (
    GroupConfig,
    Presentation,
    TokenRef,
    normalize_address,
    utcnow,
)
from buytracker.utils.logging import get_logger

from .config_store import ConfigStore
from .db import Database, LegacyTrackedToken
from .repository import Repository, as_utc

logger = get_logger(__name__)

SCHEMA_VERSION_KEY = "schema_version"
CURRENT_SCHEMA_VERSION = 2

# Columns added to ``groupconfig`` after its first release
_GROUPCONFIG_COLUMNS = {
    "notifications_enabled": "BOOLEAN NOT NULL DEFAULT 1",
    "token_updated_at": "DATETIME",
    "image_file_id": "TEXT",
}

# Legacy chain labels from the flat layout
_LEGACY_CHAINS = {
    "bnb": "bnb",
    "bsc": "bnb",
    "eth": "ethereum",
    "ethereum": "ethereum",
    "base": "base",
}


async def run_migrations(db: Database) -> int:
    """Bring the database to the current layout; returns the number of groups moved."""
    await _ensure_groupconfig_columns(db)
    migrated = await _migrate_legacy_tokens(db)

    async with db.session() as session:
        await Repository(session).set_setting(
            SCHEMA_VERSION_KEY, str(CURRENT_SCHEMA_VERSION)
        )

    logger.info(
        "migrations_complete",
        schema_version=CURRENT_SCHEMA_VERSION,
        migrated_groups=migrated,
    )
    return migrated


async def _ensure_groupconfig_columns(db: Database) -> None:
    """Add columns missing from tables created by older releases."""
    if not db.is_sqlite:
        # Older releases only ever shipped with SQLite
        return

    async with db.session() as session:
        result = await session.execute(text("PRAGMA table_info(groupconfig)"))
        existing = {row[1] for row in result.fetchall()}
        added = []
        for column, ddl in _GROUPCONFIG_COLUMNS.items():
            if column in existing:
                continue
            await session.execute(
                text(f"ALTER TABLE groupconfig ADD COLUMN {column} {ddl}")
            )
            added.append(column)
        if added:
            await session.commit()
            logger.info("groupconfig_columns_added", columns=added)


async def _migrate_legacy_tokens(db: Database) -> int:
    async with db.session() as session:
        repo = Repository(session)
        rows = list(await repo.list_legacy_tokens())
        if not rows:
            return 0

        # Rows are ordered oldest first, so the newest entry per group wins
        latest: Dict[int, LegacyTrackedToken] = {}
        for row in rows:
            latest[row.group_id] = row

        migrated: List[int] = []
        for group_id, row in latest.items():
            network = _LEGACY_CHAINS.get((row.chain or "").strip().lower())
            existing = await repo.get_group(group_id)
            if existing and existing.token is not None:
                logger.info("legacy_token_superseded", group_id=group_id)
            elif network is None:
                logger.warning(
                    "legacy_token_unsupported_chain",
                    group_id=group_id,
                    chain=row.chain,
                )
            else:
                await repo.save_group(_config_from_legacy(row, network, existing))
                migrated.append(group_id)
            await repo.delete_legacy_tokens(group_id)

    if migrated:
        logger.info("legacy_tokens_migrated", groups=migrated)
    return len(migrated)


def _config_from_legacy(
    row: LegacyTrackedToken, network: str, existing: GroupConfig | None
) -> GroupConfig:
    base = existing or GroupConfig(
        group_id=row.group_id, created_at=as_utc(row.created_at)
    )
    defaults = Presentation()
    return GroupConfig(
        group_id=row.group_id,
        network=network,
        token=TokenRef(
            address=normalize_address(row.token_address),
            name=row.token_name or "",
            symbol=row.token_symbol or "",
            decimal_places=row.decimals if row.decimals is not None else 18,
        ),
        admins=base.admins,
        notifications_enabled=bool(row.is_active),
        presentation=Presentation(
            emojis=row.emojis or defaults.emojis,
            image_file_id=row.image_file_id,
        ),
        created_at=base.created_at,
        updated_at=utcnow(),
    )


class AdminDirectory(Protocol):
    async def chat_admin_ids(self, chat_id: int) -> FrozenSet[int]: ...


async def adopt_chat_admins(store: ConfigStore, directory: AdminDirectory) -> int:
    """Record the chat administrators of migrated groups that have none.

    Legacy rows carry no admin list. A group whose administrators cannot be
    listed is paused until someone completes /setup there, so no tracking
    group is ever left without admins. Returns the number of groups adopted.
    """
    adopted = 0
    for config in await store.list_with_token():
        if config.admins:
            continue

        group_id = config.group_id
        try:
            admins = await directory.chat_admin_ids(group_id)
        except TransientIntegrationError as exc:
            logger.warning(
                "legacy_admin_lookup_failed", group_id=group_id, error=str(exc)
            )
            admins = frozenset()

        if admins:
            await store.upsert(
                group_id, lambda current, ids=admins: replace(current, admins=ids)
            )
            adopted += 1
        elif config.notifications_enabled:
            await store.upsert(
                group_id,
                lambda current: replace(current, notifications_enabled=False),
            )
            logger.warning("legacy_group_paused", group_id=group_id)

    if adopted:
        logger.info("legacy_admins_adopted", groups=adopted)
    return adopted
