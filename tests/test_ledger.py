from __future__ import annotations

import pytest

from vault.custody import UNLIMITED, TokenBook
from vault.errors import InsufficientBalance, InsufficientShares, InvalidAddress, Unauthorized, ZeroAmount
from vault.ledger import VaultLedger


@pytest.fixture
def tokens() -> TokenBook:
    book = TokenBook()
    book.register_token("USDC", 6)
    for holder in ("alice", "bob"):
        book.mint("USDC", holder, 10_000)
        book.approve(holder, "USDC", "vault", UNLIMITED)
    return book


@pytest.fixture
def ledger(tokens) -> VaultLedger:
    return VaultLedger("vault", "USDC", tokens)


def _donate(ledger: VaultLedger, tokens: TokenBook, amount: int) -> None:
    """Simulate a realized gain backed by real custody."""
    tokens.mint("USDC", "vault", amount)
    ledger.record_realized(amount, source="test")


def test_first_deposit_mints_one_to_one(ledger, tokens):
    shares = ledger.deposit("alice", 1000, "alice")
    assert shares == 1000
    assert ledger.balance_of("alice") == 1000
    assert ledger.total_assets() == 1000
    assert tokens.balance_of("USDC", "vault") == 1000
    assert tokens.balance_of("USDC", "alice") == 9_000


def test_second_depositor_at_par(ledger):
    ledger.deposit("alice", 1000, "alice")
    assert ledger.deposit("bob", 500, "bob") == 500
    assert ledger.total_shares == 1500
    assert ledger.total_assets() == 1500


def test_deposit_emits_event(ledger):
    ledger.deposit("alice", 1000, "carol")
    event = ledger.events.last("Deposit")
    assert event is not None
    assert event.payload == {"caller": "alice", "receiver": "carol", "assets": 1000, "shares": 1000}
    assert ledger.balance_of("carol") == 1000


def test_rounding_favors_vault(ledger, tokens):
    ledger.deposit("alice", 1000, "alice")
    _donate(ledger, tokens, 1)
    # 1001 assets over 1000 shares
    assert ledger.preview_deposit(10) == 9
    assert ledger.preview_mint(10) == 11
    assert ledger.preview_withdraw(10) == 10
    assert ledger.preview_redeem(10) == 10
    assert ledger.convert_to_assets(1000) == 1001


def test_deposit_then_redeem_never_returns_more(ledger, tokens):
    ledger.deposit("alice", 1000, "alice")
    _donate(ledger, tokens, 1)

    shares = ledger.deposit("bob", 333, "bob")
    assert shares == 332
    paid = ledger.redeem("bob", shares, "bob", "bob")
    assert paid <= 333
    assert tokens.balance_of("USDC", "bob") == 10_000 - 333 + paid
    assert ledger.balance_of("bob") == 0


def test_withdraw_burns_rounded_up_shares(ledger, tokens):
    ledger.deposit("alice", 1000, "alice")
    _donate(ledger, tokens, 1)
    burned = ledger.withdraw("alice", 10, "alice", "alice")
    assert burned == 10
    assert ledger.total_assets() == 991
    assert ledger.total_shares == 990
    assert tokens.balance_of("USDC", "alice") == 9_010


def test_mint_pulls_rounded_up_assets(ledger, tokens):
    ledger.deposit("alice", 1000, "alice")
    _donate(ledger, tokens, 1)
    pulled = ledger.mint("bob", 10, "bob")
    assert pulled == 11
    assert ledger.balance_of("bob") == 10
    assert tokens.balance_of("USDC", "bob") == 9_989


def test_withdraw_without_shares_fails(ledger):
    ledger.deposit("alice", 1000, "alice")
    with pytest.raises(InsufficientShares):
        ledger.withdraw("bob", 1, "bob", "bob")
    assert ledger.total_shares == 1000
    assert ledger.total_assets() == 1000


def test_cannot_burn_someone_elses_shares(ledger):
    ledger.deposit("alice", 1000, "alice")
    with pytest.raises(Unauthorized):
        ledger.redeem("bob", 100, "bob", "alice")
    assert ledger.balance_of("alice") == 1000


def test_withdraw_needs_idle_cash(ledger, tokens):
    ledger.deposit("alice", 1000, "alice")
    # capital deployed elsewhere is still vault capital
    tokens.transfer("USDC", "vault", "strategy", 600)
    assert ledger.total_assets() == 1000
    assert ledger.max_withdraw("alice") == 400
    assert ledger.max_redeem("alice") == 1000
    with pytest.raises(InsufficientBalance):
        ledger.withdraw("alice", 500, "alice", "alice")
    assert ledger.balance_of("alice") == 1000


@pytest.mark.parametrize("call", ["deposit", "mint"])
def test_zero_amounts_rejected(ledger, call):
    with pytest.raises(ZeroAmount):
        getattr(ledger, call)("alice", 0, "alice")


def test_zero_redeem_and_withdraw_rejected(ledger):
    ledger.deposit("alice", 1000, "alice")
    with pytest.raises(ZeroAmount):
        ledger.redeem("alice", 0, "alice", "alice")
    with pytest.raises(ZeroAmount):
        ledger.withdraw("alice", 0, "alice", "alice")


def test_missing_receiver_rejected(ledger):
    with pytest.raises(InvalidAddress):
        ledger.deposit("alice", 10, "")


def test_dust_deposit_minting_zero_shares_rejected(ledger, tokens):
    ledger.deposit("alice", 1, "alice")
    _donate(ledger, tokens, 9)
    # 10 assets per share: 5 units buys nothing
    with pytest.raises(ZeroAmount):
        ledger.deposit("bob", 5, "bob")
    assert tokens.balance_of("USDC", "bob") == 10_000


def test_previews_are_pure(ledger):
    ledger.deposit("alice", 1000, "alice")
    before = ledger.to_dict()
    assert ledger.preview_deposit(250) == ledger.preview_deposit(250)
    assert ledger.preview_redeem(250) == ledger.preview_redeem(250)
    assert ledger.to_dict() == before


def test_realized_loss_lowers_share_price(ledger):
    ledger.deposit("alice", 1000, "alice")
    ledger.record_realized(-100, source="exit:test")
    assert ledger.total_assets() == 900
    assert ledger.convert_to_assets(1000) == 900
    assert ledger.events.last("RealizedResult").payload == {"source": "exit:test", "delta": -100}


def test_insolvent_vault_refuses_new_shares(ledger):
    ledger.deposit("alice", 1000, "alice")
    ledger.record_realized(-1000, source="exit:test")
    with pytest.raises(InsufficientBalance):
        ledger.preview_deposit(10)


def test_exchange_rate(ledger, tokens):
    assert ledger.exchange_rate() == 1_000_000
    ledger.deposit("alice", 1000, "alice")
    _donate(ledger, tokens, 1000)
    assert ledger.exchange_rate() == 2_000_000


def test_state_round_trips(ledger, tokens):
    ledger.deposit("alice", 1000, "alice")
    ledger.deposit("bob", 500, "bob")
    restored = VaultLedger("vault", "USDC", tokens)
    restored.load_dict(ledger.to_dict())
    assert restored.holders() == {"alice": 1000, "bob": 500}
    assert restored.total_assets() == 1500
