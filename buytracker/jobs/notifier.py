"""Classify raw transfers and push purchase notifications to groups."""

from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet, Mapping, Optional

from buytracker.errors import TransientIntegrationError
from buytracker.models import GroupConfig, TransferEvent, normalize_address
from buytracker.transport import Transport
from buytracker.utils.formatting import (
    DEFAULT_DISPLAY_DECIMALS,
    escape_markdown,
    escape_markdown_url,
    format_token_amount,
    shorten_address,
)
from buytracker.utils.logging import get_logger
from buytracker.utils.networks import explorer_tx_url, get_network

logger = get_logger(__name__)


class PurchaseClassifier:
    """Treat tokens leaving a known exchange router as a purchase.

    Transfers between ordinary wallets, mints and burns do not qualify. Direct
    pool-to-wallet transfers and multi-hop paths that bypass a listed router
    are not recognised either.
    """

    def __init__(self, allowlist: Mapping[str, FrozenSet[str]]) -> None:
        self.allowlist = {
            network: frozenset(normalize_address(a) for a in addresses)
            for network, addresses in allowlist.items()
        }

    def is_purchase(self, event: TransferEvent, network: str) -> bool:
        routers = self.allowlist.get(network)
        if not routers:
            return False
        return normalize_address(event.from_address) in routers


@dataclass(frozen=True)
class Notification:
    chat_id: int
    text: str
    image_file_id: Optional[str] = None


def build_notification(
    event: TransferEvent,
    config: GroupConfig,
    precision: int = DEFAULT_DISPLAY_DECIMALS,
    sample: bool = False,
) -> Notification:
    """Render the MarkdownV2 purchase message for ``config``'s group."""
    token = config.token
    if token is None or config.network is None:
        raise ValueError(f"Group {config.group_id} has no token configured")

    network = get_network(config.network)
    emojis = escape_markdown(config.presentation.emojis)
    label = "NEW BUY (SAMPLE)" if sample else "NEW BUY"
    amount = format_token_amount(event.amount, token.decimal_places, precision)
    explorer = escape_markdown_url(explorer_tx_url(config.network, event.tx_hash))

    lines = [
        f"{emojis} *{escape_markdown(label)}* {emojis}",
        "",
        f"🔄 *{escape_markdown(token.name)} \\({escape_markdown(token.symbol)}\\)*",
        "",
        f"💰 Amount: *{escape_markdown(amount)} {escape_markdown(token.symbol)}*",
        f"👤 Buyer: `{escape_markdown(shorten_address(event.to_address))}`",
        f"⛓ Network: {escape_markdown(network.display_name)}",
        "",
        f"🔗 [View Transaction]({explorer})",
    ]
    return Notification(
        chat_id=config.group_id,
        text="\n".join(lines),
        image_file_id=config.presentation.image_file_id,
    )


class PurchaseNotifier:
    """Best-effort, one notification per qualifying event."""

    def __init__(
        self,
        classifier: PurchaseClassifier,
        transport: Transport,
        precision: int = DEFAULT_DISPLAY_DECIMALS,
    ) -> None:
        self.classifier = classifier
        self.transport = transport
        self.precision = precision

    async def handle(self, event: TransferEvent, config: GroupConfig) -> bool:
        """Classify and dispatch ``event``; returns whether a notification went out.

        Never raises for transport failures: the next event must still be
        processed.
        """
        if config.network is None or not self.classifier.is_purchase(
            event, config.network
        ):
            logger.debug(
                "transfer_ignored",
                group_id=config.group_id,
                tx_hash=event.tx_hash,
                from_address=event.from_address,
            )
            return False

        notification = build_notification(event, config, self.precision)
        return await self.dispatch(notification, tx_hash=event.tx_hash)

    async def send_sample(self, event: TransferEvent, config: GroupConfig) -> bool:
        notification = build_notification(event, config, self.precision, sample=True)
        return await self.dispatch(notification, tx_hash=event.tx_hash)

    async def dispatch(self, notification: Notification, tx_hash: str) -> bool:
        try:
            await self.transport.send_notification(
                notification.chat_id,
                notification.text,
                notification.image_file_id,
            )
        except TransientIntegrationError as exc:
            logger.error(
                "notification_dispatch_failed",
                group_id=notification.chat_id,
                tx_hash=tx_hash,
                error=str(exc),
            )
            return False
        logger.info("notification_sent", group_id=notification.chat_id, tx_hash=tx_hash)
        return True
