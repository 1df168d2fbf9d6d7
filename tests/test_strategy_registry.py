from __future__ import annotations

import pytest

from vault.errors import (
    InsufficientBalance,
    InvalidAddress,
    InvalidAmount,
    InvalidTokenAddress,
    StrategyAlreadyExists,
    StrategyDoesNotExist,
    StrategyHasBalance,
    Unauthorized,
)
from vault.protocol import SimulatedYieldProtocol
from vault.strategy import StrategyAdapter


def test_manager_adds_strategy(vault, adapter):
    vault.add_strategy("manager", adapter)
    assert vault.is_strategy("strat-aave")
    assert adapter.vault == "vault"
    assert vault.events.last("StrategyAdded").payload["strategy"] == "strat-aave"


def test_add_strategy_guards(vault, adapter, book):
    with pytest.raises(Unauthorized):
        vault.add_strategy("agent", adapter)
    assert adapter.vault is None
    assert not vault.is_strategy("strat-aave")

    vault.add_strategy("manager", adapter)
    with pytest.raises(StrategyAlreadyExists):
        vault.add_strategy("manager", adapter)

    wrong_asset = StrategyAdapter("strat-btc", "WBTC", "aave", vault.gateway, book)
    with pytest.raises(InvalidTokenAddress):
        vault.add_strategy("manager", wrong_asset)

    foreign = StrategyAdapter("strat-other", "USDC", "aave", vault.gateway, book)
    foreign.set_vault("other-vault")
    with pytest.raises(InvalidAddress):
        vault.add_strategy("manager", foreign)


def test_add_missing_adapter_checks_role_first(vault):
    before = vault.to_state()
    with pytest.raises(Unauthorized):
        vault.add_strategy("mallory", None)
    with pytest.raises(InvalidAddress):
        vault.add_strategy("manager", None)
    assert vault.to_state() == before


def test_remove_strategy(vault, adapter):
    with pytest.raises(StrategyDoesNotExist):
        vault.remove_strategy("manager", "strat-aave")
    vault.add_strategy("manager", adapter)
    vault.remove_strategy("manager", "strat-aave")
    assert not vault.is_strategy("strat-aave")
    with pytest.raises(StrategyDoesNotExist):
        vault.execute_strategy("agent", "strat-aave", 100)

    vault.add_strategy("manager", adapter)
    assert vault.is_strategy("strat-aave")


def test_remove_refused_while_capital_deployed(vault, adapter):
    vault.deposit("alice", 1000, "alice")
    vault.add_strategy("manager", adapter)
    vault.execute_strategy("agent", "strat-aave", 400)
    with pytest.raises(StrategyHasBalance):
        vault.remove_strategy("manager", "strat-aave")
    vault.emergency_exit_strategy("agent", "strat-aave")
    vault.remove_strategy("manager", "strat-aave")


def test_execute_strategy_moves_idle_cash(vault, adapter, book, protocol):
    vault.deposit("alice", 1000, "alice")
    vault.add_strategy("manager", adapter)
    vault.execute_strategy("agent", "strat-aave", 400, b"\xbe\xef")

    assert vault.total_assets() == 1000
    assert vault.ledger.idle_balance() == 600
    assert protocol.deposits["strat-aave"] == 400
    assert book.allowance("USDC", "vault", "strat-aave") == 0
    executed = vault.events.last("StrategyExecuted")
    assert executed.payload == {"strategy": "strat-aave", "amount": 400, "data": b"\xbe\xef"}


def test_execute_strategy_guards(vault, adapter):
    vault.deposit("alice", 1000, "alice")
    vault.add_strategy("manager", adapter)
    with pytest.raises(Unauthorized):
        vault.execute_strategy("manager", "strat-aave", 100)
    with pytest.raises(StrategyDoesNotExist):
        vault.execute_strategy("agent", "strat-missing", 100)
    with pytest.raises(InvalidAmount):
        vault.execute_strategy("agent", "strat-aave", 0)
    with pytest.raises(InsufficientBalance):
        vault.execute_strategy("agent", "strat-aave", 1001)
    assert adapter.deployed_balance == 0
    assert vault.ledger.idle_balance() == 1000


def test_harvest_in_base_asset_is_a_gain(vault, book):
    sim = SimulatedYieldProtocol("compound", "USDC", "USDC", book)
    book.mint("USDC", "compound", 1_000)
    vault.gateway.register("compound", sim)
    adapter = StrategyAdapter("strat-comp", "USDC", "compound", vault.gateway, book)

    vault.deposit("alice", 1000, "alice")
    vault.add_strategy("manager", adapter)
    vault.add_strategy_reward_token("agent", "strat-comp", "USDC")
    vault.execute_strategy("agent", "strat-comp", 500)
    forwarded = vault.harvest_strategy("agent", "strat-comp")

    assert forwarded == {"USDC": 50}
    assert vault.total_assets() == 1050
    assert vault.ledger.idle_balance() == 550
    assert vault.convert_to_assets(1000) == 1050


def test_harvest_other_token_stays_unvalued(vault, adapter, book):
    vault.deposit("alice", 1000, "alice")
    vault.add_strategy("manager", adapter)
    vault.add_strategy_reward_token("agent", "strat-aave", "REWARD")
    vault.execute_strategy("agent", "strat-aave", 500)
    assert vault.harvest_strategy("agent", "strat-aave") == {"REWARD": 50}
    assert book.balance_of("REWARD", "vault") == 50
    assert vault.total_assets() == 1000


def test_harvest_with_broken_claim_completes(vault, adapter, protocol):
    vault.deposit("alice", 1000, "alice")
    vault.add_strategy("manager", adapter)
    vault.execute_strategy("agent", "strat-aave", 500)
    protocol.break_function("claimRewards")
    assert vault.harvest_strategy("agent", "strat-aave") == {}
    assert adapter.deployed_balance == 500
    assert adapter.events.last("ClaimRewardsFailed") is not None
    assert vault.events.last("StrategyHarvested") is not None


def test_emergency_exit_books_realized_loss(vault, adapter, protocol):
    protocol.loss_bps = 200
    vault.deposit("alice", 1000, "alice")
    vault.add_strategy("manager", adapter)
    vault.execute_strategy("agent", "strat-aave", 500)

    received = vault.emergency_exit_strategy("agent", "strat-aave")
    assert received == 490
    assert vault.total_assets() == 990
    assert vault.ledger.idle_balance() == 990
    assert vault.events.last("RealizedResult").payload == {"source": "exit:strat-aave", "delta": -10}


def test_emergency_exit_withdraws_tracked_principal(vault, adapter, protocol, book):
    vault.deposit("alice", 1000, "alice")
    vault.add_strategy("manager", adapter)
    vault.execute_strategy("agent", "strat-aave", 500)
    book.mint("USDC", "aave", 25)
    protocol.accrue_yield("strat-aave", 25)

    assert vault.emergency_exit_strategy("agent", "strat-aave") == 500
    assert vault.total_assets() == 1000
    assert protocol.deposits["strat-aave"] == 25
