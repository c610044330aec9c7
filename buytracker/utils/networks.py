"""Static metadata for the EVM networks a group can track."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List


@dataclass(frozen=True)
class NetworkInfo:
    """Display and explorer details for one network."""

    key: str
    display_name: str
    native_symbol: str
    chain_id: int
    explorer_tx_url: str

    def tx_url(self, tx_hash: str) -> str:
        return self.explorer_tx_url.format(tx_hash=tx_hash)


NETWORKS: Dict[str, NetworkInfo] = {
    "bnb": NetworkInfo(
        key="bnb",
        display_name="BNB Chain",
        native_symbol="BNB",
        chain_id=56,
        explorer_tx_url="https://bscscan.com/tx/{tx_hash}",
    ),
    "ethereum": NetworkInfo(
        key="ethereum",
        display_name="Ethereum",
        native_symbol="ETH",
        chain_id=1,
        explorer_tx_url="https://etherscan.io/tx/{tx_hash}",
    ),
    "base": NetworkInfo(
        key="base",
        display_name="Base",
        native_symbol="ETH",
        chain_id=8453,
        explorer_tx_url="https://basescan.org/tx/{tx_hash}",
    ),
}

# Aliases for matching operator input (lowercase)
NETWORK_ALIASES: Dict[str, str] = {
    "bnb": "bnb",
    "bsc": "bnb",
    "bnb chain": "bnb",
    "binance": "bnb",
    "eth": "ethereum",
    "ethereum": "ethereum",
    "mainnet": "ethereum",
    "base": "base",
}


def get_network(key: str) -> NetworkInfo:
    """Return metadata for ``key`` or raise ``KeyError``."""
    network = NETWORKS.get(key)
    if network is None:
        raise KeyError(f"Unknown network: {key}")
    return network


def match_network(user_input: str, allowed: Iterable[str]) -> str | None:
    """Map a network choice onto one of ``allowed`` network keys."""
    candidate = NETWORK_ALIASES.get(user_input.strip().lower())
    if candidate and candidate in set(allowed):
        return candidate
    return None


def list_networks(allowed: Iterable[str]) -> List[NetworkInfo]:
    """Return metadata for the allowed networks in declaration order."""
    allowed_set = set(allowed)
    return [info for key, info in NETWORKS.items() if key in allowed_set]


def explorer_tx_url(network: str, tx_hash: str) -> str:
    return get_network(network).tx_url(tx_hash)
