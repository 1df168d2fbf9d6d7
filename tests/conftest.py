"""
Pytest configuration and shared fixtures for the vault test suite.
"""
from __future__ import annotations

import pytest

from vault.config import VaultSettings
from vault.custody import UNLIMITED, TokenBook
from vault.log_utils import JsonlJournal
from vault.oracle import NO_PRICE_FEED, StaticPriceFeed
from vault.protocol import SimulatedYieldProtocol
from vault.state_store import VaultStateStore
from vault.strategy import StrategyAdapter
from vault.vault import Vault

NOW = 1_700_000_000

BTC_FEED = "0x" + "e6" * 32
ETH_FEED = "0x" + "ff" * 32

VAULT = "vault"
ADMIN = "admin"
MANAGER = "manager"
AGENT = "agent"


def fixed_clock() -> float:
    return float(NOW)


@pytest.fixture
def book() -> TokenBook:
    tokens = TokenBook()
    tokens.register_token("USDC", 6)
    tokens.register_token("WBTC", 8)
    tokens.register_token("WETH", 18)
    tokens.register_token("REWARD", 18)
    return tokens


@pytest.fixture
def feed() -> StaticPriceFeed:
    prices = StaticPriceFeed(clock=fixed_clock)
    # $50,000.00 per BTC, $2,500.00 per ETH
    prices.set_price(BTC_FEED, 5_000_000, -2)
    prices.set_price(ETH_FEED, 250_000, -2)
    return prices


@pytest.fixture
def settings(tmp_path) -> VaultSettings:
    return VaultSettings(
        state_dir=str(tmp_path / "state"),
        journal_path=str(tmp_path / "events.jsonl"),
    )


@pytest.fixture
def journal(tmp_path) -> JsonlJournal:
    return JsonlJournal(tmp_path / "events.jsonl")


@pytest.fixture
def store(settings) -> VaultStateStore:
    return VaultStateStore(settings.state_path)


@pytest.fixture
def vault(book, feed, settings, journal, store) -> Vault:
    """Vault with USDC as base asset and WBTC accepted; alice, bob and the agent funded."""
    v = Vault(
        VAULT,
        "USDC",
        ADMIN,
        MANAGER,
        AGENT,
        custody=book,
        oracle=feed,
        settings=settings,
        store=store,
        journal=journal,
        clock=fixed_clock,
    )
    v.configure_token(MANAGER, "USDC", NO_PRICE_FEED, 6)
    v.configure_token(MANAGER, "WBTC", BTC_FEED, 8)
    for holder in ("alice", "bob", AGENT):
        book.mint("USDC", holder, 1_000_000)
        book.approve(holder, "USDC", VAULT, UNLIMITED)
    book.mint("WBTC", AGENT, 100_000_000)
    book.approve(AGENT, "WBTC", VAULT, UNLIMITED)
    return v


@pytest.fixture
def protocol(vault, book) -> SimulatedYieldProtocol:
    sim = SimulatedYieldProtocol("aave", "USDC", "REWARD", book)
    book.mint("REWARD", "aave", 1_000_000)
    vault.gateway.register("aave", sim)
    return sim


@pytest.fixture
def adapter(vault, book, protocol, journal) -> StrategyAdapter:
    return StrategyAdapter("strat-aave", "USDC", "aave", vault.gateway, book, journal=journal)
