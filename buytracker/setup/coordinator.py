"""Drive setup sessions: hold per-group state and perform the machine's effects."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Deque, Dict, List, Optional, Protocol

from buytracker.errors import (
    PermissionDeniedError,
    SubscriptionError,
    TokenResolutionError,
    TransientIntegrationError,
)
from buytracker.jobs.subscriptions import SubscriptionManager
from buytracker.models import (
    GroupConfig,
    Presentation,
    TokenMetadata,
    TokenRef,
    utcnow,
)
from buytracker.setup.machine import (
    Effect,
    FinalizeFailed,
    FinalizeSucceeded,
    PersistConfig,
    Reply,
    ResolveToken,
    SetupEvent,
    SetupRules,
    SetupSession,
    SetupStep,
    TokenResolutionFailed,
    TokenResolved,
    advance,
    start_session,
)
from buytracker.store.config_store import ConfigStore
from buytracker.utils.logging import get_logger

logger = get_logger(__name__)

GROUP_CHAT_TYPES = {"group", "supergroup"}


class TokenResolver(Protocol):
    async def resolve_token(self, address: str, network: str) -> TokenMetadata: ...


class PermissionSource(Protocol):
    async def bot_is_admin(self, chat_id: int) -> bool: ...

    async def is_chat_admin(self, chat_id: int, user_id: int) -> bool: ...


class SetupCoordinator:
    """Owns every in-flight :class:`SetupSession`, one per group.

    Inputs for one group are handled strictly one at a time (token lookups and
    the final write included); other groups are not blocked.
    """

    def __init__(
        self,
        store: ConfigStore,
        subscriptions: SubscriptionManager,
        resolver: TokenResolver,
        permissions: PermissionSource,
        rules: SetupRules,
        session_timeout: timedelta = timedelta(minutes=15),
    ) -> None:
        self.store = store
        self.subscriptions = subscriptions
        self.resolver = resolver
        self.permissions = permissions
        self.rules = rules
        self.session_timeout = session_timeout
        self._sessions: Dict[int, SetupSession] = {}
        self._locks: Dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    def get_session(self, group_id: int) -> Optional[SetupSession]:
        return self._sessions.get(group_id)

    def has_session(self, group_id: int) -> bool:
        return group_id in self._sessions

    async def begin(self, group_id: int, chat_type: str, operator_id: int) -> List[Reply]:
        """Start (or restart) setup for a group.

        Raises:
            PermissionDeniedError: not a group chat, the bot is not an admin, or
                the operator may not change this group's configuration.
            TransientIntegrationError: Telegram could not be asked about
                permissions.
        """
        await self._check_permissions(group_id, chat_type, operator_id)

        async with self._locks[group_id]:
            if group_id in self._sessions:
                logger.info("setup_session_restarted", group_id=group_id)
            transition = start_session(group_id, operator_id, self.rules)
            self._sessions[group_id] = transition.session
            logger.info("setup_session_started", group_id=group_id, operator_id=operator_id)
            return [e for e in transition.effects if isinstance(e, Reply)]

    async def handle(self, group_id: int, user_id: int, event: SetupEvent) -> List[Reply]:
        """Feed one operator interaction into the group's session."""
        async with self._locks[group_id]:
            session = self._sessions.get(group_id)
            if session is None or session.operator_id != user_id:
                return []

            transition = advance(session, event, self.rules)
            session, replies = await self._run_effects(
                transition.session, deque(transition.effects)
            )

            if session.is_terminal:
                self._sessions.pop(group_id, None)
                logger.info("setup_session_closed", group_id=group_id, step=session.step.value)
            else:
                self._sessions[group_id] = session
            return replies

    def expire_idle(self, now: Optional[datetime] = None) -> List[int]:
        """Drop sessions untouched for longer than the timeout."""
        now = now or utcnow()
        expired = [
            group_id
            for group_id, session in self._sessions.items()
            if now - session.updated_at > self.session_timeout
            and not self._locks[group_id].locked()
        ]
        for group_id in expired:
            self._sessions.pop(group_id, None)
        if expired:
            logger.info("setup_sessions_expired", groups=expired)
        return expired

    async def _check_permissions(
        self, group_id: int, chat_type: str, operator_id: int
    ) -> None:
        if chat_type not in GROUP_CHAT_TYPES:
            raise PermissionDeniedError("This command only works in groups!")

        if not await self.permissions.bot_is_admin(group_id):
            raise PermissionDeniedError(
                "I need to be an admin in this group to work properly! "
                "Please make me admin and try again.",
                {"group_id": group_id},
            )

        config = await self.store.get(group_id)
        if config and operator_id in config.admins:
            return
        if not await self.permissions.is_chat_admin(group_id, operator_id):
            raise PermissionDeniedError(
                "Only group admins can configure tracking.",
                {"group_id": group_id, "user_id": operator_id},
            )

    async def _run_effects(
        self, session: SetupSession, pending: Deque[Effect]
    ) -> tuple[SetupSession, List[Reply]]:
        replies: List[Reply] = []
        while pending:
            effect = pending.popleft()
            if isinstance(effect, Reply):
                replies.append(effect)
                continue
            if isinstance(effect, ResolveToken):
                outcome = await self._resolve(effect)
            elif isinstance(effect, PersistConfig):
                outcome = await self._finalize(session)
            else:  # pragma: no cover - exhaustive over Effect
                raise TypeError(f"Unknown setup effect: {effect!r}")
            transition = advance(session, outcome, self.rules)
            session = transition.session
            pending.extend(transition.effects)
        return session, replies

    async def _resolve(self, effect: ResolveToken) -> SetupEvent:
        try:
            info = await self.resolver.resolve_token(effect.address, effect.network)
        except TokenResolutionError as exc:
            logger.info("token_resolution_rejected", **exc.to_dict())
            return TokenResolutionFailed(address=effect.address)
        except TransientIntegrationError as exc:
            logger.warning("token_resolution_unavailable", **exc.to_dict())
            return TokenResolutionFailed(address=effect.address, transient=True)
        except KeyError as exc:
            logger.warning("token_resolution_unknown_network", error=str(exc))
            return TokenResolutionFailed(address=effect.address)
        return TokenResolved(address=effect.address, info=info)

    async def _finalize(self, session: SetupSession) -> SetupEvent:
        if session.step is not SetupStep.FINALIZE or session.token_info is None:
            return FinalizeFailed(reason="incomplete session")

        token = TokenRef.from_metadata(session.token_address or "", session.token_info)
        presentation = Presentation(
            emojis=session.emojis or Presentation().emojis,
            image_file_id=session.image_file_id,
        )

        def apply(current: GroupConfig) -> GroupConfig:
            return replace(
                current,
                network=session.network,
                token=token,
                admins=current.admins | {session.operator_id},
                notifications_enabled=True,
                presentation=presentation,
            )

        try:
            config = await self.store.upsert(session.group_id, apply)
        except TransientIntegrationError as exc:
            return FinalizeFailed(reason=str(exc))

        try:
            await self.subscriptions.reconcile(session.group_id, config)
        except SubscriptionError as exc:
            logger.error(
                "setup_subscription_failed", group_id=session.group_id, **exc.to_dict()
            )
            return FinalizeSucceeded(config=config, tracking=False)

        logger.info(
            "setup_completed",
            group_id=session.group_id,
            network=config.network,
            token=token.address,
        )
        return FinalizeSucceeded(config=config, tracking=True)
