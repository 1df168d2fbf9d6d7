from __future__ import annotations

import pytest

from vault.assets import AssetRegistry
from vault.custody import TokenBook
from vault.errors import InvalidAddress, InvalidDecimals, InvalidPriceFeed, TokenNotAccepted, Unauthorized
from vault.oracle import NO_PRICE_FEED
from vault.roles import MANAGER, RoleGate

BTC_FEED = "0x" + "e6" * 32
ETH_FEED = "0x" + "ff" * 32


@pytest.fixture
def registry() -> AssetRegistry:
    book = TokenBook()
    book.register_token("USDC", 6)
    book.register_token("WBTC", 8)
    book.register_token("WETH", 18)
    roles = RoleGate("admin")
    roles.grant_role("admin", MANAGER, "manager")
    return AssetRegistry(roles, "USDC", book)


def test_base_asset_may_skip_oracle(registry):
    cfg = registry.configure_token("manager", "USDC", None, 6)
    assert cfg.accepted
    assert cfg.price_feed_id == NO_PRICE_FEED
    assert not cfg.needs_oracle


def test_non_base_asset_needs_feed(registry):
    with pytest.raises(InvalidPriceFeed):
        registry.configure_token("manager", "WBTC", NO_PRICE_FEED, 8)
    with pytest.raises(InvalidPriceFeed):
        registry.configure_token("manager", "WBTC", "0xnot-hex", 8)
    assert registry.get_config("WBTC") is None


def test_decimals_must_match_token(registry):
    with pytest.raises(InvalidDecimals):
        registry.configure_token("manager", "WBTC", BTC_FEED, 18)
    with pytest.raises(InvalidDecimals):
        registry.configure_token("manager", "WBTC", BTC_FEED, -1)
    cfg = registry.configure_token("manager", "WBTC", BTC_FEED.upper().replace("0X", ""), 8)
    assert cfg.price_feed_id == BTC_FEED


def test_configure_requires_manager(registry):
    with pytest.raises(Unauthorized):
        registry.configure_token("alice", "WBTC", BTC_FEED, 8)
    assert registry.get_accepted_tokens() == []


def test_null_asset_rejected(registry):
    with pytest.raises(InvalidAddress):
        registry.configure_token("manager", "", BTC_FEED, 8)
    with pytest.raises(InvalidAddress):
        registry.remove_token("manager", "")


def test_accepted_tokens_keep_insertion_order(registry):
    registry.configure_token("manager", "USDC", None, 6)
    registry.configure_token("manager", "WBTC", BTC_FEED, 8)
    registry.configure_token("manager", "WETH", ETH_FEED, 18)
    registry.remove_token("manager", "WBTC")
    assert registry.get_accepted_tokens() == ["USDC", "WETH"]

    registry.configure_token("manager", "WBTC", BTC_FEED, 8)
    assert registry.get_accepted_tokens() == ["USDC", "WBTC", "WETH"]


def test_remove_is_soft_delete(registry):
    registry.configure_token("manager", "WBTC", BTC_FEED, 8)
    registry.remove_token("manager", "WBTC")
    cfg = registry.get_config("WBTC")
    assert cfg is not None and cfg.accepted is False
    with pytest.raises(TokenNotAccepted):
        registry.require_accepted("WBTC")
    assert registry.events.last("TokenRemoved").payload == {"asset": "WBTC"}


def test_remove_unknown_token(registry):
    with pytest.raises(TokenNotAccepted):
        registry.remove_token("manager", "DOGE")
    with pytest.raises(Unauthorized):
        registry.remove_token("alice", "DOGE")
