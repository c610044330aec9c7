import pytest

from buytracker.utils.networks import (
    explorer_tx_url,
    get_network,
    list_networks,
    match_network,
)


def test_get_network_unknown_raises() -> None:
    with pytest.raises(KeyError):
        get_network("solana")


@pytest.mark.parametrize(
    "text,expected",
    [("BNB", "bnb"), (" bsc ", "bnb"), ("eth", "ethereum"), ("Base", "base")],
)
def test_match_network_aliases(text, expected) -> None:
    assert match_network(text, ["bnb", "ethereum", "base"]) == expected


def test_match_network_respects_allowed() -> None:
    assert match_network("eth", ["bnb"]) is None
    assert match_network("dogechain", ["bnb", "ethereum"]) is None


def test_list_networks_keeps_declaration_order() -> None:
    keys = [info.key for info in list_networks(["base", "bnb"])]
    assert keys == ["bnb", "base"]


def test_explorer_urls() -> None:
    assert explorer_tx_url("bnb", "0xabc") == "https://bscscan.com/tx/0xabc"
    assert explorer_tx_url("ethereum", "0xabc") == "https://etherscan.io/tx/0xabc"
    assert explorer_tx_url("base", "0xabc") == "https://basescan.org/tx/0xabc"
