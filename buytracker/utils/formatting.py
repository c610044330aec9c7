"""Helpers for Telegram-safe Markdown formatting."""

from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, localcontext

DEFAULT_DISPLAY_DECIMALS = 4

_MARKDOWN_SPECIAL_CHARS = r"_*[]()~`>#+-=|{}.!\\"
_ESCAPED_CHAR = re.compile(r"\\([_*\[\]()~`>#+\-=|{}.!\\])")


def escape_markdown(text: str) -> str:
    """Escape Telegram MarkdownV2 control characters."""
    if text is None:
        text = ""
    if not isinstance(text, str):
        text = str(text)
    return "".join(
        f"\\{char}" if char in _MARKDOWN_SPECIAL_CHARS else char for char in text
    )


def escape_markdown_url(url: str) -> str:
    """Escape Telegram MarkdownV2-sensitive characters inside link URLs."""
    if not url:
        return ""
    return url.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


def unescape_markdown(text: str) -> str:
    """Strip MarkdownV2 escapes so a rejected message can be resent as plain text."""
    if not text:
        return ""
    plain = _ESCAPED_CHAR.sub(r"\1", text)
    return plain.replace("*", "")


def format_token_amount(
    raw_amount: int,
    decimal_places: int,
    precision: int = DEFAULT_DISPLAY_DECIMALS,
) -> str:
    """Scale a fixed-point integer amount for display.

    Scaling happens on :class:`~decimal.Decimal` with a context wide enough for
    any uint256, so large supplies never lose precision. The result is rounded
    half-up to ``precision`` fractional digits, trailing zeros are trimmed and
    thousands are comma separated.
    """
    with localcontext() as ctx:
        ctx.prec = 120
        value = Decimal(int(raw_amount)).scaleb(-int(decimal_places))
        quantum = Decimal(1).scaleb(-precision)
        rounded = value.quantize(quantum, rounding=ROUND_HALF_UP)
        rendered = f"{rounded:,f}"
    if "." in rendered:
        rendered = rendered.rstrip("0").rstrip(".")
    if rendered in ("-0", ""):
        rendered = "0"
    return rendered


def shorten_address(address: str, head: int = 6, tail: int = 4) -> str:
    """Elide the middle of an address: ``0x1234…abcd``."""
    if not address:
        return ""
    if len(address) <= head + tail + 1:
        return address
    return f"{address[:head]}…{address[-tail:]}"

