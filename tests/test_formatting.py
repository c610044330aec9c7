from buytracker.utils.formatting import (
    escape_markdown,
    escape_markdown_url,
    format_token_amount,
    shorten_address,
    unescape_markdown,
)


def test_format_token_amount_scales_by_decimals() -> None:
    assert format_token_amount(1234500000000000000, 18) == "1.2345"


def test_format_token_amount_rounds_half_up() -> None:
    # 0.00005 rounds up at the fourth fractional digit
    assert format_token_amount(50000000000000, 18) == "0.0001"
    assert format_token_amount(49999999999999, 18) == "0"


def test_format_token_amount_groups_thousands() -> None:
    assert format_token_amount(1_234_567 * 10**6, 6) == "1,234,567"


def test_format_token_amount_handles_uint256_max() -> None:
    raw = 2**256 - 1
    rendered = format_token_amount(raw, 0)
    assert rendered.replace(",", "") == str(raw)


def test_format_token_amount_zero_decimals_and_precision() -> None:
    assert format_token_amount(42, 0) == "42"
    assert format_token_amount(1_500_000, 6, precision=0) == "2"


def test_shorten_address() -> None:
    address = "0x1234567890abcdef1234567890abcdef1234abcd"
    assert shorten_address(address) == "0x1234…abcd"


def test_escape_markdown_roundtrip_to_plain_text() -> None:
    text = "Name: Token_X (TKX). Price: 1.5!"
    escaped = escape_markdown(text)
    assert "\\_" in escaped
    assert "\\(" in escaped
    assert "\\." in escaped
    assert unescape_markdown(escaped) == text


def test_unescape_markdown_drops_bold_markers() -> None:
    assert unescape_markdown("*NEW BUY* \\- 1\\.5") == "NEW BUY - 1.5"


def test_escape_markdown_url_only_escapes_parentheses() -> None:
    url = "https://bscscan.com/tx/0xabc_(1)"
    assert escape_markdown_url(url) == "https://bscscan.com/tx/0xabc_\\(1\\)"
