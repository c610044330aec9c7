from dataclasses import replace
from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from buytracker.errors import TransientIntegrationError
from buytracker.models import TokenRef
from buytracker.store.config_store import ConfigStore
from buytracker.store.db import Database, LegacyTrackedToken
from buytracker.store.migrations import (
    CURRENT_SCHEMA_VERSION,
    adopt_chat_admins,
    run_migrations,
)
from buytracker.store.repository import Repository


class DummyDirectory:
    def __init__(self, admins=None, error=None) -> None:
        self.admins = admins or {}
        self.error = error
        self.calls = []

    async def chat_admin_ids(self, chat_id):
        self.calls.append(chat_id)
        if self.error:
            raise self.error
        return frozenset(self.admins.get(chat_id, ()))


async def make_db(tmp_path) -> Database:
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'legacy.db'}")
    db.connect()
    await db.init_models()
    return db


async def add_legacy(db: Database, **fields) -> None:
    values = dict(
        chain="bnb",
        token_name="Old",
        token_symbol="OLD",
        decimals=18,
        emojis="🚀",
        is_active=True,
    )
    values.update(fields)
    async with db.session() as session:
        session.add(LegacyTrackedToken(**values))
        await session.commit()


async def legacy_rows(db: Database):
    async with db.session() as session:
        result = await session.execute(select(LegacyTrackedToken))
        return result.scalars().all()


@pytest.mark.asyncio
async def test_newest_legacy_token_wins(tmp_path):
    db = await make_db(tmp_path)
    await add_legacy(
        db,
        group_id=-1,
        token_address="0xOLDER",
        created_at=datetime(2023, 1, 1, tzinfo=timezone.utc),
    )
    await add_legacy(
        db,
        group_id=-1,
        token_address="0xNEWER",
        token_symbol="NEW",
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )

    assert await run_migrations(db) == 1

    config = await ConfigStore(db).get(-1)
    assert config.network == "bnb"
    assert config.token.address == "0xnewer"
    assert config.token.symbol == "NEW"
    assert config.admins == frozenset()
    assert await legacy_rows(db) == []


@pytest.mark.asyncio
async def test_migration_is_idempotent(tmp_path):
    db = await make_db(tmp_path)
    await add_legacy(db, group_id=-1, token_address="0xabc", chain="eth")

    assert await run_migrations(db) == 1
    first = await ConfigStore(db).get(-1)
    assert await run_migrations(db) == 0
    second = await ConfigStore(db).get(-1)

    assert first.token.address == second.token.address == "0xabc"
    assert second.network == "ethereum"
    async with db.session() as session:
        version = await Repository(session).get_setting("schema_version")
    assert version == str(CURRENT_SCHEMA_VERSION)


@pytest.mark.asyncio
async def test_existing_config_is_not_overwritten(tmp_path):
    db = await make_db(tmp_path)
    store = ConfigStore(db)
    await store.upsert(
        -1,
        lambda c: replace(
            c,
            network="base",
            token=TokenRef(address="0xcurrent", name="C", symbol="C", decimal_places=6),
        ),
    )
    await add_legacy(db, group_id=-1, token_address="0xlegacy")

    assert await run_migrations(db) == 0

    config = await store.get(-1)
    assert config.token.address == "0xcurrent"
    assert await legacy_rows(db) == []


@pytest.mark.asyncio
async def test_unsupported_chain_is_dropped(tmp_path):
    db = await make_db(tmp_path)
    await add_legacy(db, group_id=-2, token_address="So1anaMint", chain="solana")
    await add_legacy(
        db, group_id=-3, token_address="0xpaused", is_active=False, chain="bsc"
    )

    assert await run_migrations(db) == 1

    store = ConfigStore(db)
    assert await store.get(-2) is None
    paused = await store.get(-3)
    assert paused.network == "bnb"
    assert paused.notifications_enabled is False


@pytest.mark.asyncio
async def test_fresh_database_needs_no_work(tmp_path):
    db = await make_db(tmp_path)
    assert await run_migrations(db) == 0


@pytest.mark.asyncio
async def test_migrated_group_adopts_chat_admins(tmp_path):
    db = await make_db(tmp_path)
    await add_legacy(db, group_id=-1, token_address="0xabc")
    await run_migrations(db)
    store = ConfigStore(db)
    directory = DummyDirectory(admins={-1: {7, 8}})

    assert await adopt_chat_admins(store, directory) == 1

    config = await store.get(-1)
    assert config.admins == frozenset({7, 8})
    assert config.is_tracking
    assert await adopt_chat_admins(store, directory) == 0
    assert directory.calls == [-1]


@pytest.mark.asyncio
async def test_group_without_known_admins_is_paused(tmp_path):
    db = await make_db(tmp_path)
    await add_legacy(db, group_id=-1, token_address="0xabc")
    await add_legacy(db, group_id=-2, token_address="0xdef")
    await run_migrations(db)
    store = ConfigStore(db)

    directory = DummyDirectory(error=TransientIntegrationError("offline"))
    assert await adopt_chat_admins(store, directory) == 0

    for group_id in (-1, -2):
        config = await store.get(group_id)
        assert config.notifications_enabled is False
        assert config.token is not None


@pytest.mark.asyncio
async def test_configured_groups_are_not_looked_up(tmp_path):
    db = await make_db(tmp_path)
    store = ConfigStore(db)
    await store.upsert(
        -1,
        lambda c: replace(
            c,
            network="bnb",
            token=TokenRef(address="0xabc", name="A", symbol="A", decimal_places=18),
            admins=frozenset({7}),
        ),
    )
    directory = DummyDirectory()

    assert await adopt_chat_admins(store, directory) == 0
    assert directory.calls == []
