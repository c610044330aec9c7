"""Setup conversation as a pure finite-state machine.

``advance(session, event, rules)`` returns the next session plus the effects
the caller must perform. Nothing here touches Telegram, the chain or the
database; I/O outcomes come back in as events (``TokenResolved``,
``FinalizeSucceeded``...).
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from buytracker.models import GroupConfig, TokenMetadata, utcnow
from buytracker.utils.networks import match_network


class SetupStep(str, Enum):
    SELECT_NETWORK = "select_network"
    ENTER_TOKEN_ADDRESS = "enter_token_address"
    CHOOSE_PRESENTATION = "choose_presentation"
    AWAIT_IMAGE = "await_image"
    FINALIZE = "finalize"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STEPS = {SetupStep.COMPLETED, SetupStep.CANCELLED}

EMOJI_PRESETS: Dict[str, str] = {
    "set1": "🚀 🌕 💰",
    "set2": "💎 🔥 💸",
    "set3": "🐂 📈 💵",
    "set4": "🌟 ✨ 💹",
}

# A single emoji with skin tone and ZWJ sequences stays well under this
MAX_EMOJI_CODEPOINTS = 16


@dataclass(frozen=True)
class SetupRules:
    networks: Tuple[str, ...]
    max_custom_emojis: int = 3
    presets: Mapping[str, str] = field(default_factory=lambda: dict(EMOJI_PRESETS))


@dataclass(frozen=True)
class SetupSession:
    group_id: int
    operator_id: int
    step: SetupStep = SetupStep.SELECT_NETWORK
    network: Optional[str] = None
    token_address: Optional[str] = None
    token_info: Optional[TokenMetadata] = None
    emojis: Optional[str] = None
    image_file_id: Optional[str] = None
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.step in TERMINAL_STEPS


# Events -------------------------------------------------------------------


@dataclass(frozen=True)
class NetworkChosen:
    network: str


@dataclass(frozen=True)
class TextEntered:
    text: str


@dataclass(frozen=True)
class EmojiPresetChosen:
    preset: str


@dataclass(frozen=True)
class CustomEmojiRequested:
    pass


@dataclass(frozen=True)
class ImageUploaded:
    file_id: str


@dataclass(frozen=True)
class SkipImage:
    pass


@dataclass(frozen=True)
class TryAgain:
    pass


@dataclass(frozen=True)
class Cancel:
    pass


@dataclass(frozen=True)
class TokenResolved:
    address: str
    info: TokenMetadata


@dataclass(frozen=True)
class TokenResolutionFailed:
    address: str
    transient: bool = False


@dataclass(frozen=True)
class FinalizeSucceeded:
    config: GroupConfig
    tracking: bool = True


@dataclass(frozen=True)
class FinalizeFailed:
    reason: str = ""


SetupEvent = Union[
    NetworkChosen,
    TextEntered,
    EmojiPresetChosen,
    CustomEmojiRequested,
    ImageUploaded,
    SkipImage,
    TryAgain,
    Cancel,
    TokenResolved,
    TokenResolutionFailed,
    FinalizeSucceeded,
    FinalizeFailed,
]


# Effects ------------------------------------------------------------------


class PromptKind(str, Enum):
    SELECT_NETWORK = "select_network"
    INVALID_NETWORK = "invalid_network"
    ENTER_TOKEN_ADDRESS = "enter_token_address"
    RESOLVING_TOKEN = "resolving_token"
    RESOLUTION_FAILED = "resolution_failed"
    CHOOSE_EMOJIS = "choose_emojis"
    ENTER_CUSTOM_EMOJIS = "enter_custom_emojis"
    INVALID_EMOJIS = "invalid_emojis"
    AWAIT_IMAGE = "await_image"
    INVALID_IMAGE_INPUT = "invalid_image_input"
    FINALIZE_FAILED = "finalize_failed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Reply:
    kind: PromptKind
    params: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ResolveToken:
    address: str
    network: str


@dataclass(frozen=True)
class PersistConfig:
    pass


Effect = Union[Reply, ResolveToken, PersistConfig]


@dataclass(frozen=True)
class Transition:
    session: SetupSession
    effects: Tuple[Effect, ...] = ()


def start_session(group_id: int, operator_id: int, rules: SetupRules) -> Transition:
    session = SetupSession(group_id=group_id, operator_id=operator_id)
    return Transition(session, (_network_prompt(rules),))


def advance(session: SetupSession, event: SetupEvent, rules: SetupRules) -> Transition:
    """Apply ``event`` to ``session``."""
    if session.is_terminal:
        return Transition(session)

    if isinstance(event, Cancel):
        if session.step is SetupStep.FINALIZE:
            return Transition(session)
        return Transition(
            _moved(session, SetupStep.CANCELLED), (Reply(PromptKind.CANCELLED),)
        )

    handler = _HANDLERS[session.step]
    return handler(session, event, rules)


def _select_network(
    session: SetupSession, event: SetupEvent, rules: SetupRules
) -> Transition:
    network: Optional[str] = None
    if isinstance(event, NetworkChosen):
        network = event.network if event.network in rules.networks else None
    elif isinstance(event, TextEntered):
        network = match_network(event.text, rules.networks)

    if network is None:
        return Transition(session, (Reply(PromptKind.INVALID_NETWORK),))

    updated = replace(_moved(session, SetupStep.ENTER_TOKEN_ADDRESS), network=network)
    return Transition(
        updated, (Reply(PromptKind.ENTER_TOKEN_ADDRESS, {"network": network}),)
    )


def _enter_token_address(
    session: SetupSession, event: SetupEvent, rules: SetupRules
) -> Transition:
    if isinstance(event, TextEntered):
        address = event.text.strip()
        if len(address.split()) != 1:
            return Transition(
                session,
                (Reply(PromptKind.ENTER_TOKEN_ADDRESS, {"network": session.network}),),
            )
        pending = replace(session, token_address=address, updated_at=utcnow())
        return Transition(
            pending,
            (
                Reply(PromptKind.RESOLVING_TOKEN, {"address": address}),
                ResolveToken(address=address, network=session.network or ""),
            ),
        )

    if isinstance(event, TokenResolved) and event.address == session.token_address:
        updated = replace(
            _moved(session, SetupStep.CHOOSE_PRESENTATION), token_info=event.info
        )
        return Transition(
            updated,
            (
                Reply(
                    PromptKind.CHOOSE_EMOJIS,
                    {
                        "name": event.info.name,
                        "symbol": event.info.symbol,
                        "presets": dict(rules.presets),
                    },
                ),
            ),
        )

    if isinstance(event, TokenResolutionFailed):
        cleared = replace(session, token_address=None, updated_at=utcnow())
        return Transition(
            cleared,
            (
                Reply(
                    PromptKind.RESOLUTION_FAILED,
                    {"address": event.address, "transient": event.transient},
                ),
            ),
        )

    # TryAgain and anything unexpected repeat the address prompt
    return Transition(
        session, (Reply(PromptKind.ENTER_TOKEN_ADDRESS, {"network": session.network}),)
    )


def _choose_presentation(
    session: SetupSession, event: SetupEvent, rules: SetupRules
) -> Transition:
    emojis: Optional[str] = None
    if isinstance(event, EmojiPresetChosen):
        emojis = rules.presets.get(event.preset)
    elif isinstance(event, CustomEmojiRequested):
        return Transition(
            session,
            (Reply(PromptKind.ENTER_CUSTOM_EMOJIS, {"limit": rules.max_custom_emojis}),),
        )
    elif isinstance(event, TextEntered):
        emojis = parse_custom_emojis(event.text, rules.max_custom_emojis)
        if emojis is None:
            return Transition(
                session,
                (Reply(PromptKind.INVALID_EMOJIS, {"limit": rules.max_custom_emojis}),),
            )

    if emojis is None:
        info = session.token_info
        return Transition(
            session,
            (
                Reply(
                    PromptKind.CHOOSE_EMOJIS,
                    {
                        "name": info.name if info else "",
                        "symbol": info.symbol if info else "",
                        "presets": dict(rules.presets),
                    },
                ),
            ),
        )

    updated = replace(_moved(session, SetupStep.AWAIT_IMAGE), emojis=emojis)
    return Transition(updated, (Reply(PromptKind.AWAIT_IMAGE, {"emojis": emojis}),))


def _await_image(
    session: SetupSession, event: SetupEvent, rules: SetupRules
) -> Transition:
    if isinstance(event, ImageUploaded) and event.file_id:
        updated = replace(_moved(session, SetupStep.FINALIZE), image_file_id=event.file_id)
        return Transition(updated, (PersistConfig(),))
    if isinstance(event, SkipImage):
        updated = replace(_moved(session, SetupStep.FINALIZE), image_file_id=None)
        return Transition(updated, (PersistConfig(),))
    return Transition(session, (Reply(PromptKind.INVALID_IMAGE_INPUT),))


def _finalize(session: SetupSession, event: SetupEvent, rules: SetupRules) -> Transition:
    if isinstance(event, FinalizeSucceeded):
        config = event.config
        token = config.token
        return Transition(
            _moved(session, SetupStep.COMPLETED),
            (
                Reply(
                    PromptKind.COMPLETED,
                    {
                        "network": config.network,
                        "name": token.name if token else "",
                        "symbol": token.symbol if token else "",
                        "address": token.address if token else "",
                        "emojis": config.presentation.emojis,
                        "tracking": event.tracking,
                    },
                ),
            ),
        )
    if isinstance(event, FinalizeFailed):
        return Transition(
            _moved(session, SetupStep.AWAIT_IMAGE),
            (Reply(PromptKind.FINALIZE_FAILED, {"reason": event.reason}),),
        )
    # Persisting is in flight; operator input waits for the outcome
    return Transition(session)


_HANDLERS = {
    SetupStep.SELECT_NETWORK: _select_network,
    SetupStep.ENTER_TOKEN_ADDRESS: _enter_token_address,
    SetupStep.CHOOSE_PRESENTATION: _choose_presentation,
    SetupStep.AWAIT_IMAGE: _await_image,
    SetupStep.FINALIZE: _finalize,
}


def parse_custom_emojis(text: str, limit: int) -> Optional[str]:
    """Validate whitespace separated emoji input; ``None`` if unusable."""
    symbols = (text or "").split()
    if not symbols or len(symbols) > limit:
        return None
    for symbol in symbols:
        if len(symbol) > MAX_EMOJI_CODEPOINTS:
            return None
        if any(char.isascii() and char.isalnum() for char in symbol):
            return None
    return " ".join(symbols)


def _network_prompt(rules: SetupRules) -> Reply:
    return Reply(PromptKind.SELECT_NETWORK, {"networks": list(rules.networks)})


def _moved(session: SetupSession, step: SetupStep) -> SetupSession:
    return replace(session, step=step, updated_at=utcnow())
