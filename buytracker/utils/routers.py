"""Exchange-router allow-lists used to recognise purchases."""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional, Tuple

from buytracker.utils.networks import NETWORKS

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")

DEFAULT_ROUTERS: Dict[str, Dict[str, str]] = {
    "pancakeswap_v2": {
        "bnb": "0x10ED43C718714eb63d5aA57B78B54704E256024E",
        "base": "0x8cFe327CEc66d1C090Dd72bd0FF11d690C33a2Eb",
    },
    "pancakeswap_v3": {
        "bnb": "0x13f4EA83D0bd40E75C8222255bc855a974568Dd4",
        "base": "0x1b81D678ffb9C0263b24A97847620C99d213eB14",
    },
    "uniswap_v2": {
        "ethereum": "0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D",
        "base": "0x4752ba5dbc23f44d87826276bf6fd6b1c372ad24",
    },
    "uniswap_v3": {
        "bnb": "0xB971eF87ede563556b2ED4b1C0b0019111Dd85d2",
        "ethereum": "0xE592427A0AEce92De3Edee1F18E0157C05861564",
        "base": "0x2626664c2603336E57B271c5C0b26F421741e481",
    },
    "uniswap_v3_router02": {
        "ethereum": "0x68b3465833fb72A70ecDF485E0e4C7bD8665Fc45",
    },
    "sushiswap_v2": {
        "ethereum": "0xd9e1cE17f2641f24aE83637ab66a2cca9C378B9F",
        "base": "0x6BDED42c6DA8FBf0d2bA55B2fa120C5e0c8D7891",
    },
    "aerodrome_v2": {
        "base": "0xcF77a3Ba9A5CA399B7c97c74d54e5b1Beb874E43",
    },
}

# Display names for each router
ROUTER_DISPLAY_NAMES: Dict[str, str] = {
    "pancakeswap_v2": "PancakeSwap V2",
    "pancakeswap_v3": "PancakeSwap V3",
    "uniswap_v2": "Uniswap V2",
    "uniswap_v3": "Uniswap V3",
    "uniswap_v3_router02": "Uniswap V3 Router02",
    "sushiswap_v2": "SushiSwap V2",
    "aerodrome_v2": "Aerodrome V2",
}


def load_router_map(path: Optional[Path] = None) -> Dict[str, Dict[str, str]]:
    """Load routers from JSON file or fall back to defaults.

    The file maps router keys to ``{network: address}`` objects, the same shape
    as :data:`DEFAULT_ROUTERS`. Every address is validated here so a typo fails
    at boot instead of silently never matching.
    """
    if path is None:
        routers = DEFAULT_ROUTERS
    else:
        if not path.exists():
            raise FileNotFoundError(f"Router configuration not found: {path}")

        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)

        if not isinstance(data, dict):
            raise ValueError(f"Router configuration must be an object: {path}")

        routers = {}
        for key, networks in data.items():
            if not isinstance(networks, dict):
                raise ValueError(f"Router '{key}' must map networks to addresses")
            routers[key] = {}
            for network, address in networks.items():
                routers[key][network] = address

    for key, networks in routers.items():
        for network, address in networks.items():
            if network not in NETWORKS:
                raise ValueError(
                    f"Router '{key}' names unknown network '{network}'; "
                    f"expected one of {sorted(NETWORKS)}"
                )
            if not isinstance(address, str) or not ADDRESS_PATTERN.match(address):
                raise ValueError(
                    f"Router '{key}' has invalid address for '{network}': {address!r}"
                )

    return routers


def build_allowlist(routers: Dict[str, Dict[str, str]]) -> Dict[str, FrozenSet[str]]:
    """Collapse the router map into lower-cased address sets per network."""
    collected: Dict[str, set] = {}
    for networks in routers.values():
        for network, address in networks.items():
            normalized = address.lower()
            if normalized == ZERO_ADDRESS:
                continue
            collected.setdefault(network, set()).add(normalized)
    return {network: frozenset(addresses) for network, addresses in collected.items()}


def list_routers(
    network: str,
    routers: Optional[Dict[str, Dict[str, str]]] = None,
) -> List[Tuple[str, str, str]]:
    """List routers recognised on a network.

    Returns:
        List of (key, display_name, address) tuples, zero addresses excluded.
    """
    result = []
    for key, networks in (routers or DEFAULT_ROUTERS).items():
        address = networks.get(network)
        if address and address.lower() != ZERO_ADDRESS:
            result.append((key, get_router_display_name(key), address))
    return result


def get_router_display_name(router_key: str) -> str:
    """Get the display name for a router key."""
    return ROUTER_DISPLAY_NAMES.get(router_key, router_key.replace("_", " ").title())
