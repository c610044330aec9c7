"""Domain records passed between the store, setup flow and subscriptions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import FrozenSet, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TokenMetadata:
    """ERC-20 identity as returned by the chain client."""

    name: str
    symbol: str
    decimal_places: int


@dataclass(frozen=True)
class TokenRef:
    """Snapshot of a token's on-chain identity, replaced wholesale on change."""

    address: str
    name: str
    symbol: str
    decimal_places: int
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_metadata(cls, address: str, metadata: TokenMetadata) -> "TokenRef":
        return cls(
            address=normalize_address(address),
            name=metadata.name,
            symbol=metadata.symbol,
            decimal_places=metadata.decimal_places,
        )


@dataclass(frozen=True)
class Presentation:
    """Emoji marker and optional Telegram photo used for notifications."""

    emojis: str = "🚀 🌕 💰"
    image_file_id: Optional[str] = None


@dataclass(frozen=True)
class GroupConfig:
    """Tracking configuration of one Telegram group."""

    group_id: int
    network: Optional[str] = None
    token: Optional[TokenRef] = None
    admins: FrozenSet[int] = frozenset()
    notifications_enabled: bool = True
    presentation: Presentation = field(default_factory=Presentation)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_tracking(self) -> bool:
        return (
            self.token is not None
            and self.network is not None
            and self.notifications_enabled
        )


@dataclass(frozen=True)
class TransferEvent:
    """A decoded ERC-20 ``Transfer`` log."""

    from_address: str
    to_address: str
    amount: int
    tx_hash: str
    block_number: int = 0
    log_index: int = 0


def normalize_address(value: str) -> str:
    """Ensure address is lowercase and stripped."""
    return value.strip().lower()


__all__ = [
    "TokenMetadata",
    "TokenRef",
    "Presentation",
    "GroupConfig",
    "TransferEvent",
    "normalize_address",
    "utcnow",
]
