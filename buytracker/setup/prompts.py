"""Turn setup replies into Telegram MarkdownV2 text and inline keyboards."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Mapping, Tuple

from buytracker.setup.machine import PromptKind, Reply
from buytracker.utils.formatting import escape_markdown
from buytracker.utils.networks import get_network, list_networks

# Callback data understood by the handlers
CB_PREFIX = "setup:"
CB_NETWORK = "setup:network:"
CB_EMOJI = "setup:emoji:"
CB_CUSTOM_EMOJI = "setup:emoji_custom"
CB_SKIP_IMAGE = "setup:skip_image"
CB_TRY_AGAIN = "setup:try_again"
CB_CANCEL = "setup:cancel"
CB_SAMPLE = "sample_notification"

Button = Tuple[str, str]


@dataclass(frozen=True)
class OutboundMessage:
    text: str
    keyboard: List[List[Button]] = field(default_factory=list)


CANCEL_ROW: List[Button] = [("Cancel Setup", CB_CANCEL)]


def render(reply: Reply) -> OutboundMessage:
    """Render one setup reply."""
    renderer = _RENDERERS[reply.kind]
    return renderer(reply.params)


def _select_network(params: Mapping) -> OutboundMessage:
    rows = [
        [(info.display_name, f"{CB_NETWORK}{info.key}")]
        for info in list_networks(params.get("networks", []))
    ]
    rows.append(CANCEL_ROW)
    return OutboundMessage("🌐 *Step 1/4: Select Blockchain Network*", rows)


def _invalid_network(params: Mapping) -> OutboundMessage:
    return OutboundMessage(
        escape_markdown("Please select a blockchain network using the buttons above.")
    )


def _enter_token_address(params: Mapping) -> OutboundMessage:
    network = params.get("network")
    name = get_network(network).display_name if network else "token"
    body = escape_markdown(
        f"Please enter the {name} token contract address (CA) you want to track:"
    )
    return OutboundMessage(f"🔍 *Step 2/4: Enter Token Address*\n\n{body}", [CANCEL_ROW])


def _resolving_token(params: Mapping) -> OutboundMessage:
    address = escape_markdown(params.get("address", ""))
    return OutboundMessage(f"⏳ Checking `{address}`…")


def _resolution_failed(params: Mapping) -> OutboundMessage:
    if params.get("transient"):
        text = "⚠️ The network did not answer while validating that token. Please try again."
    else:
        text = (
            "⚠️ Invalid token address or error validating token. "
            "Please check the address and try again."
        )
    return OutboundMessage(
        escape_markdown(text),
        [[("Try Again", CB_TRY_AGAIN)], CANCEL_ROW],
    )


def _choose_emojis(params: Mapping) -> OutboundMessage:
    presets: Mapping[str, str] = params.get("presets", {})
    keys = list(presets)
    rows: List[List[Button]] = [
        [(presets[key], f"{CB_EMOJI}{key}") for key in keys[i : i + 2]]
        for i in range(0, len(keys), 2)
    ]
    rows.append([("Custom Emojis", CB_CUSTOM_EMOJI)])
    rows.append(CANCEL_ROW)
    name = escape_markdown(params.get("name", ""))
    symbol = escape_markdown(params.get("symbol", ""))
    text = (
        "✅ *Token Validated Successfully\\!*\n"
        f"Name: *{name}*\n"
        f"Symbol: *{symbol}*\n\n"
        "🎮 *Step 3/4: Select Emojis*\n\n"
        + escape_markdown("Please select the emojis you want to use for buy notifications:")
    )
    return OutboundMessage(text, rows)


def _enter_custom_emojis(params: Mapping) -> OutboundMessage:
    limit = params.get("limit", 3)
    return OutboundMessage(
        "🎨 *Custom Emojis*\n\n"
        + escape_markdown(f"Please enter up to {limit} emojis separated by spaces:"),
        [CANCEL_ROW],
    )


def _invalid_emojis(params: Mapping) -> OutboundMessage:
    limit = params.get("limit", 3)
    return OutboundMessage(
        escape_markdown(
            f"Please send between 1 and {limit} emojis separated by spaces, "
            "or pick one of the sets above."
        )
    )


def _await_image(params: Mapping) -> OutboundMessage:
    emojis = escape_markdown(params.get("emojis", ""))
    return OutboundMessage(
        "🖼 *Step 4/4: Upload Notification Image*\n\n"
        f"Selected emojis: {emojis}\n\n"
        + escape_markdown(
            "Please upload an image to use in buy notifications or click Skip to use default:"
        ),
        [[("Skip (Use Default)", CB_SKIP_IMAGE)], CANCEL_ROW],
    )


def _invalid_image_input(params: Mapping) -> OutboundMessage:
    return OutboundMessage(
        escape_markdown("Please upload an image or click Skip."),
        [[("Skip (Use Default)", CB_SKIP_IMAGE)], CANCEL_ROW],
    )


def _finalize_failed(params: Mapping) -> OutboundMessage:
    return OutboundMessage(
        escape_markdown(
            "⚠️ Could not save the configuration. Please upload the image or click Skip again."
        ),
        [[("Skip (Use Default)", CB_SKIP_IMAGE)], CANCEL_ROW],
    )


def _completed(params: Mapping) -> OutboundMessage:
    network = params.get("network")
    network_name = get_network(network).display_name if network else "?"
    name = escape_markdown(params.get("name", ""))
    symbol = escape_markdown(params.get("symbol", ""))
    lines = [
        "✅ *Setup Complete\\!*",
        "",
        "🔍 *Tracking Configuration:*",
        f"• Network: *{escape_markdown(network_name)}*",
        f"• Token: *{name} \\({symbol}\\)*",
        f"• Contract: `{escape_markdown(params.get('address', ''))}`",
        f"• Emojis: {escape_markdown(params.get('emojis', ''))}",
        "",
    ]
    if params.get("tracking", True):
        lines.append(
            escape_markdown(
                "🚀 The bot is now tracking all purchases for this token "
                "and will post notifications in this group!"
            )
        )
    else:
        lines.append(
            escape_markdown(
                "⚠️ The configuration was saved but tracking could not start "
                "right now. Run /setup again in a moment."
            )
        )
    return OutboundMessage(
        "\n".join(lines), [[("View Sample Notification", CB_SAMPLE)]]
    )


def _cancelled(params: Mapping) -> OutboundMessage:
    return OutboundMessage(escape_markdown("Setup cancelled."))


_RENDERERS = {
    PromptKind.SELECT_NETWORK: _select_network,
    PromptKind.INVALID_NETWORK: _invalid_network,
    PromptKind.ENTER_TOKEN_ADDRESS: _enter_token_address,
    PromptKind.RESOLVING_TOKEN: _resolving_token,
    PromptKind.RESOLUTION_FAILED: _resolution_failed,
    PromptKind.CHOOSE_EMOJIS: _choose_emojis,
    PromptKind.ENTER_CUSTOM_EMOJIS: _enter_custom_emojis,
    PromptKind.INVALID_EMOJIS: _invalid_emojis,
    PromptKind.AWAIT_IMAGE: _await_image,
    PromptKind.INVALID_IMAGE_INPUT: _invalid_image_input,
    PromptKind.FINALIZE_FAILED: _finalize_failed,
    PromptKind.COMPLETED: _completed,
    PromptKind.CANCELLED: _cancelled,
}
