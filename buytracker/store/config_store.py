"""Per-group read-modify-write access to persisted tracking configuration."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import replace
from typing import Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from buytracker.errors import TransientIntegrationError
from buytracker.models import GroupConfig, utcnow
from buytracker.utils.logging import get_logger

from .db import Database
from .repository import Repository

logger = get_logger(__name__)

Mutator = Callable[[GroupConfig], GroupConfig]


class ConfigStore:
    """Durable ``GroupConfig`` storage with writes serialised per group.

    ``upsert`` holds the group's lock across read, mutate and write, so two
    concurrent writers to the same group never lose each other's changes.
    Writers for different groups do not contend.
    """

    def __init__(self, db: Database) -> None:
        self.db = db
        self._locks: Dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def get(self, group_id: int) -> Optional[GroupConfig]:
        try:
            async with self.db.session() as session:
                return await Repository(session).get_group(group_id)
        except SQLAlchemyError as exc:
            logger.error("config_read_failed", group_id=group_id, error=str(exc))
            raise TransientIntegrationError(
                "Could not read group configuration", {"group_id": group_id}
            ) from exc

    async def upsert(self, group_id: int, mutator: Mutator) -> GroupConfig:
        """Apply ``mutator`` to the stored config (or a fresh default) and persist it."""
        async with self._locks[group_id]:
            try:
                async with self.db.session() as session:
                    repo = Repository(session)
                    current = await repo.get_group(group_id)
                    if current is None:
                        current = GroupConfig(group_id=group_id)
                    updated = mutator(current)
                    if updated.group_id != group_id:
                        raise ValueError("Mutator must not change the group id")
                    updated = replace(updated, updated_at=utcnow())
                    saved = await repo.save_group(updated)
            except SQLAlchemyError as exc:
                logger.error("config_write_failed", group_id=group_id, error=str(exc))
                raise TransientIntegrationError(
                    "Could not save group configuration", {"group_id": group_id}
                ) from exc

        logger.info(
            "config_saved",
            group_id=group_id,
            network=saved.network,
            token=saved.token.address if saved.token else None,
            enabled=saved.notifications_enabled,
        )
        return saved

    async def list_with_token(self) -> List[GroupConfig]:
        async with self.db.session() as session:
            return await Repository(session).list_groups_with_token()
