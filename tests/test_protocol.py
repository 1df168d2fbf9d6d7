from __future__ import annotations

import pytest

from vault.custody import TokenBook
from vault.errors import ProtocolCallFailed
from vault.protocol import CallDescriptor, ProtocolGateway, SimulatedYieldProtocol, parse_signature


@pytest.fixture
def tokens() -> TokenBook:
    book = TokenBook()
    book.register_token("USDC", 6)
    book.register_token("REWARD", 18)
    book.mint("USDC", "alice", 1_000)
    return book


@pytest.fixture
def gateway(tokens) -> ProtocolGateway:
    gw = ProtocolGateway(tokens)
    gw.register("pool", SimulatedYieldProtocol("pool", "USDC", "REWARD", tokens))
    return gw


def _call(gateway, fn, *args, sender="alice"):
    return gateway.call(CallDescriptor("pool", fn, args), sender=sender)


def test_parse_signature():
    assert parse_signature("deposit(uint256)") == ("deposit", 1)
    assert parse_signature("claimRewards()") == ("claimRewards", 0)
    assert parse_signature("swap(address, uint256,bytes)") == ("swap", 3)
    with pytest.raises(ValueError):
        parse_signature("deposit")


def test_deposit_accrues_ten_percent_rewards(gateway, tokens):
    tokens.approve("alice", "USDC", "pool", 150)
    _call(gateway, "deposit(uint256)", 100)
    _call(gateway, "deposit(uint256)", 50)
    pool = gateway.handler("pool")
    assert pool.deposits["alice"] == 150
    assert pool.rewards["alice"] == 15
    assert tokens.balance_of("USDC", "pool") == 150
    assert _call(gateway, "getBalance(address)", "alice") == 150


def test_deposit_without_allowance_reverts(gateway, tokens):
    with pytest.raises(ProtocolCallFailed):
        _call(gateway, "deposit(uint256)", 100)
    assert tokens.balance_of("USDC", "alice") == 1_000
    assert gateway.handler("pool").deposits == {}


def test_withdraw_more_than_deposited_reverts(gateway, tokens):
    tokens.approve("alice", "USDC", "pool", 100)
    _call(gateway, "deposit(uint256)", 100)
    with pytest.raises(ProtocolCallFailed):
        _call(gateway, "withdraw(uint256)", 101)
    assert _call(gateway, "withdraw(uint256)", 100) == 100
    assert tokens.balance_of("USDC", "alice") == 1_000


def test_claim_reverts_leave_rewards_intact(gateway, tokens):
    tokens.approve("alice", "USDC", "pool", 100)
    _call(gateway, "deposit(uint256)", 100)
    # pool holds no reward tokens yet
    with pytest.raises(ProtocolCallFailed):
        _call(gateway, "claimRewards()")
    assert gateway.handler("pool").rewards["alice"] == 10

    tokens.mint("REWARD", "pool", 1_000)
    assert _call(gateway, "claimRewards()") == 10
    assert tokens.balance_of("REWARD", "alice") == 10
    with pytest.raises(ProtocolCallFailed):
        _call(gateway, "claimRewards()")


def test_gateway_rejects_bad_calls(gateway):
    with pytest.raises(ProtocolCallFailed):
        gateway.call(CallDescriptor("nowhere", "deposit(uint256)", (1,)), sender="alice")
    with pytest.raises(ProtocolCallFailed):
        _call(gateway, "deposit(uint256)")
    with pytest.raises(ProtocolCallFailed):
        _call(gateway, "not a signature")
    with pytest.raises(ProtocolCallFailed):
        _call(gateway, "rebalance()")


def test_broken_function_reverts(gateway):
    pool = gateway.handler("pool")
    pool.break_function("getRewardToken")
    with pytest.raises(ProtocolCallFailed):
        _call(gateway, "getRewardToken()")
    pool.repair_function("getRewardToken")
    assert _call(gateway, "getRewardToken()") == "REWARD"


def test_static_call_discards_changes(gateway, tokens):
    tokens.approve("alice", "USDC", "pool", 100)
    _call(gateway, "deposit(uint256)", 100)
    paid = gateway.static_call(CallDescriptor("pool", "withdraw(uint256)", (40,)), sender="alice")
    assert paid == 40
    assert gateway.handler("pool").deposits["alice"] == 100
    assert tokens.balance_of("USDC", "alice") == 900
