import json

import pytest

from buytracker.utils.routers import (
    DEFAULT_ROUTERS,
    ZERO_ADDRESS,
    build_allowlist,
    get_router_display_name,
    list_routers,
    load_router_map,
)


def test_load_router_map_defaults() -> None:
    routers = load_router_map()
    assert routers is DEFAULT_ROUTERS
    assert "pancakeswap_v2" in routers
    assert routers["pancakeswap_v2"]["bnb"].lower() == (
        "0x10ed43c718714eb63d5aa57b78b54704e256024e"
    )


def test_load_router_map_from_file(tmp_path) -> None:
    path = tmp_path / "routers.json"
    path.write_text(
        json.dumps({"custom_dex": {"bnb": "0x" + "ab" * 20}}), encoding="utf-8"
    )

    routers = load_router_map(path)

    assert routers == {"custom_dex": {"bnb": "0x" + "ab" * 20}}


def test_load_router_map_rejects_invalid_address(tmp_path) -> None:
    path = tmp_path / "routers.json"
    path.write_text(json.dumps({"broken": {"bnb": "0x1234"}}), encoding="utf-8")

    with pytest.raises(ValueError, match="invalid address"):
        load_router_map(path)


def test_load_router_map_rejects_unknown_network(tmp_path) -> None:
    path = tmp_path / "routers.json"
    path.write_text(
        json.dumps({"custom_dex": {"bsc": "0x" + "ab" * 20}}), encoding="utf-8"
    )

    with pytest.raises(ValueError, match="unknown network 'bsc'"):
        load_router_map(path)


def test_load_router_map_missing_file(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_router_map(tmp_path / "missing.json")


def test_build_allowlist_lowercases_and_skips_zero_address() -> None:
    allowlist = build_allowlist(
        {
            "a": {"bnb": "0x" + "AB" * 20, "base": ZERO_ADDRESS},
            "b": {"bnb": "0x" + "cd" * 20},
        }
    )

    assert allowlist == {"bnb": frozenset({"0x" + "ab" * 20, "0x" + "cd" * 20})}


def test_default_allowlist_covers_every_network() -> None:
    allowlist = build_allowlist(DEFAULT_ROUTERS)
    assert {"bnb", "ethereum", "base"} <= set(allowlist)


def test_list_routers_for_network() -> None:
    entries = list_routers("bnb")
    keys = {key for key, _, _ in entries}
    assert "pancakeswap_v2" in keys
    assert "aerodrome_v2" not in keys
    names = {name for _, name, _ in entries}
    assert "PancakeSwap V2" in names


def test_router_display_name_fallback() -> None:
    assert get_router_display_name("my_dex_v9") == "My Dex V9"
