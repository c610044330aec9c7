"""High-level database operations."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy import select

from buytracker.models import GroupConfig, Presentation, TokenRef
from .db import GroupConfigRecord, LegacyTrackedToken, Setting


class Repository:
    """CRUD utilities wrapping SQLModel sessions."""

    def __init__(self, session) -> None:
        self.session = session

    async def get_group(self, group_id: int) -> Optional[GroupConfig]:
        record = await self._get_record(group_id)
        return record_to_config(record) if record else None

    async def save_group(self, config: GroupConfig) -> GroupConfig:
        """Insert or overwrite the record for ``config.group_id``."""
        record = await self._get_record(config.group_id)
        if record is None:
            record = GroupConfigRecord(group_id=config.group_id)
        apply_config(record, config)
        self.session.add(record)
        await self.session.commit()
        await self.session.refresh(record)
        return record_to_config(record)

    async def list_groups_with_token(self) -> List[GroupConfig]:
        result = await self.session.execute(
            select(GroupConfigRecord)
            .where(GroupConfigRecord.token_address.is_not(None))
            .order_by(GroupConfigRecord.group_id)
        )
        return [record_to_config(row) for row in result.scalars().all()]

    async def list_legacy_tokens(self) -> Iterable[LegacyTrackedToken]:
        result = await self.session.execute(
            select(LegacyTrackedToken).order_by(
                LegacyTrackedToken.group_id,
                LegacyTrackedToken.created_at,
                LegacyTrackedToken.id,
            )
        )
        return result.scalars().all()

    async def delete_legacy_tokens(self, group_id: int) -> None:
        await self.session.execute(
            LegacyTrackedToken.__table__.delete().where(
                LegacyTrackedToken.group_id == group_id
            )
        )
        await self.session.commit()

    async def get_setting(self, key: str) -> Optional[str]:
        result = await self.session.execute(select(Setting).where(Setting.key == key))
        row = result.scalar_one_or_none()
        return row.value if row else None

    async def set_setting(self, key: str, value: str) -> None:
        result = await self.session.execute(select(Setting).where(Setting.key == key))
        row = result.scalar_one_or_none()
        if row:
            row.value = value
        else:
            self.session.add(Setting(key=key, value=value))
        await self.session.commit()

    async def _get_record(self, group_id: int) -> Optional[GroupConfigRecord]:
        result = await self.session.execute(
            select(GroupConfigRecord).where(GroupConfigRecord.group_id == group_id)
        )
        return result.scalar_one_or_none()


def record_to_config(record: GroupConfigRecord) -> GroupConfig:
    """Convert a flat database row into the domain record."""
    token = None
    if record.token_address:
        token = TokenRef(
            address=record.token_address,
            name=record.token_name or "",
            symbol=record.token_symbol or "",
            decimal_places=record.token_decimals if record.token_decimals is not None else 18,
            updated_at=as_utc(record.token_updated_at or record.updated_at),
        )
    defaults = Presentation()
    return GroupConfig(
        group_id=record.group_id,
        network=record.network,
        token=token,
        admins=frozenset(int(v) for v in json.loads(record.admins or "[]")),
        notifications_enabled=bool(record.notifications_enabled),
        presentation=Presentation(
            emojis=record.emojis or defaults.emojis,
            image_file_id=record.image_file_id,
        ),
        created_at=as_utc(record.created_at),
        updated_at=as_utc(record.updated_at),
    )


def apply_config(record: GroupConfigRecord, config: GroupConfig) -> None:
    """Copy every field of ``config`` onto ``record``."""
    record.network = config.network
    record.admins = json.dumps(sorted(config.admins))
    token = config.token
    record.token_address = token.address if token else None
    record.token_name = token.name if token else None
    record.token_symbol = token.symbol if token else None
    record.token_decimals = token.decimal_places if token else None
    record.token_updated_at = as_utc(token.updated_at) if token else None
    record.notifications_enabled = config.notifications_enabled
    record.emojis = config.presentation.emojis
    record.image_file_id = config.presentation.image_file_id
    record.created_at = as_utc(config.created_at)
    record.updated_at = as_utc(config.updated_at)


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime.

    SQLite hands timestamps back without tzinfo; every stored value is UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
