"""Live per-group transfer subscriptions."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol

from buytracker.errors import SubscriptionError
from buytracker.jobs.notifier import PurchaseNotifier
from buytracker.models import GroupConfig, TransferEvent
from buytracker.utils.logging import bind_context, get_logger

logger = get_logger(__name__)


class TransferStreamLike(Protocol):
    def __aiter__(self): ...

    async def __anext__(self) -> TransferEvent: ...

    async def aclose(self) -> None: ...


class ChainSource(Protocol):
    async def open_transfer_stream(
        self, address: str, network: str
    ) -> TransferStreamLike: ...


class ConfigSource(Protocol):
    async def list_with_token(self) -> List[GroupConfig]: ...


@dataclass
class Subscription:
    """A running transfer stream bound to one group's configuration."""

    group_id: int
    config: GroupConfig
    stream: TransferStreamLike
    task: Optional[asyncio.Task] = None
    closed: bool = False
    delivered: int = field(default=0)

    @property
    def address(self) -> str:
        return self.config.token.address if self.config.token else ""

    @property
    def network(self) -> str:
        return self.config.network or ""

    @property
    def alive(self) -> bool:
        return not self.closed and self.task is not None and not self.task.done()


class SubscriptionManager:
    """Keep at most one live subscription per group, matching its config.

    Every change goes through :meth:`reconcile`, which tears down the previous
    subscription before opening a new one while holding the group's lock.
    Calls for different groups run concurrently.
    """

    def __init__(
        self,
        chain: ChainSource,
        notifier: PurchaseNotifier,
        store: Optional[ConfigSource] = None,
    ) -> None:
        self.chain = chain
        self.notifier = notifier
        self.store = store
        self._subscriptions: Dict[int, Subscription] = {}
        self._locks: Dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    def get(self, group_id: int) -> Optional[Subscription]:
        return self._subscriptions.get(group_id)

    def active_groups(self) -> List[int]:
        return [gid for gid, sub in self._subscriptions.items() if sub.alive]

    def __len__(self) -> int:
        return len(self._subscriptions)

    async def reconcile(
        self, group_id: int, config: Optional[GroupConfig]
    ) -> Optional[Subscription]:
        """Make the live subscription for ``group_id`` match ``config``.

        Returns the new subscription, or ``None`` when the config asks for no
        tracking. When this returns, no event from a previous subscription of
        the group will be dispatched any more.

        Raises:
            SubscriptionError: the new stream could not be opened. The group is
                left without a subscription.
        """
        async with self._locks[group_id]:
            previous = self._subscriptions.pop(group_id, None)
            if previous is not None:
                await self._terminate(previous)

            if config is None or not config.is_tracking:
                logger.info("subscription_cleared", group_id=group_id)
                return None

            token = config.token
            stream = await self.chain.open_transfer_stream(token.address, config.network)
            subscription = Subscription(group_id=group_id, config=config, stream=stream)
            try:
                subscription.task = asyncio.create_task(
                    self._pump(subscription),
                    name=f"subscription-{group_id}",
                )
            except BaseException:
                await stream.aclose()
                raise
            self._subscriptions[group_id] = subscription

        logger.info(
            "subscription_started",
            group_id=group_id,
            network=config.network,
            token=token.address,
            replaced=previous is not None,
        )
        return subscription

    async def restore_all(self) -> int:
        """Recreate subscriptions for every stored group that has a token."""
        if self.store is None:
            raise RuntimeError("SubscriptionManager has no config store")

        configs = await self.store.list_with_token()
        restored = 0
        for config in configs:
            if not config.notifications_enabled:
                continue
            try:
                if await self.reconcile(config.group_id, config) is not None:
                    restored += 1
            except SubscriptionError as exc:
                logger.error(
                    "subscription_restore_failed",
                    group_id=config.group_id,
                    **exc.to_dict(),
                )
        logger.info("subscriptions_restored", restored=restored, total=len(configs))
        return restored

    async def shutdown(self, group_id: int) -> bool:
        """Stop and remove the group's subscription; returns whether one existed."""
        async with self._locks[group_id]:
            subscription = self._subscriptions.pop(group_id, None)
            if subscription is None:
                return False
            await self._terminate(subscription)
        logger.info("subscription_stopped", group_id=group_id)
        return True

    async def shutdown_all(self) -> None:
        await asyncio.gather(
            *(self.shutdown(group_id) for group_id in list(self._subscriptions))
        )

    async def _terminate(self, subscription: Subscription) -> None:
        subscription.closed = True
        task = subscription.task
        if task is not None and not task.done():
            task.cancel()
            # Waiting here is what guarantees no late dispatch after reconcile
            await asyncio.gather(task, return_exceptions=True)
        try:
            await subscription.stream.aclose()
        except Exception as exc:  # pragma: no cover - closing must not block teardown
            logger.warning(
                "subscription_close_failed",
                group_id=subscription.group_id,
                error=str(exc),
            )

    async def _pump(self, subscription: Subscription) -> None:
        bind_context(group_id=subscription.group_id)
        try:
            async for event in subscription.stream:
                if subscription.closed:
                    break
                try:
                    if await self.notifier.handle(event, subscription.config):
                        subscription.delivered += 1
                except Exception as exc:
                    logger.error(
                        "transfer_handling_failed",
                        group_id=subscription.group_id,
                        tx_hash=event.tx_hash,
                        error=str(exc),
                    )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error(
                "subscription_stream_failed",
                group_id=subscription.group_id,
                error=str(exc),
            )
