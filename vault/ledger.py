"""
VaultLedger: share/asset accounting for the vault.

The ledger owns three pieces of state: total shares outstanding, total
base-valuation assets under custody (``total_base_assets``) and per-holder
share balances. Share price is ``total_base_assets / total_shares``.

Rounding always favors the vault and its existing holders:
    deposit  shares = floor(assets * S / A)      (1:1 when S == 0)
    mint     assets = ceil(shares * A / S)
    withdraw shares = ceil(assets * S / A)
    redeem   assets = floor(shares * A / S)

``total_base_assets`` moves on deposits and withdrawals, and on realized
strategy results reported through ``record_realized``. Moving cash into a
strategy does not change it: deployed capital is still vault capital.
Un-harvested rewards are never included.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from vault.custody import Custody
from vault.errors import (
    InsufficientBalance,
    InsufficientShares,
    InvalidAddress,
    Unauthorized,
    ZeroAmount,
)
from vault.events import EventRecorder

LOG = logging.getLogger("vault.ledger")


def _mul_div_down(x: int, y: int, d: int) -> int:
    return (x * y) // d


def _mul_div_up(x: int, y: int, d: int) -> int:
    return -((-x * y) // d)


class VaultLedger:
    def __init__(
        self,
        vault_id: str,
        base_asset: str,
        custody: Custody,
        base_decimals: int = 6,
        events: Optional[EventRecorder] = None,
    ) -> None:
        self.vault_id = vault_id
        self.base_asset = base_asset
        self.custody = custody
        self.base_decimals = base_decimals
        self.events = events or EventRecorder("vault", "ledger")
        self.total_shares = 0
        self.total_base_assets = 0
        self._balances: Dict[str, int] = {}

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def total_assets(self) -> int:
        return self.total_base_assets

    def balance_of(self, holder: str) -> int:
        return self._balances.get(holder, 0)

    def idle_balance(self) -> int:
        """Base asset currently sitting in vault custody (not deployed)."""
        return self.custody.balance_of(self.base_asset, self.vault_id)

    def holders(self) -> Dict[str, int]:
        return {holder: shares for holder, shares in self._balances.items() if shares}

    def _check_solvent(self) -> None:
        if self.total_shares > 0 and self.total_base_assets == 0:
            raise InsufficientBalance("vault has outstanding shares but no assets")

    def convert_to_shares(self, assets: int) -> int:
        if self.total_shares == 0:
            return int(assets)
        self._check_solvent()
        return _mul_div_down(int(assets), self.total_shares, self.total_base_assets)

    def convert_to_assets(self, shares: int) -> int:
        if self.total_shares == 0:
            return int(shares)
        return _mul_div_down(int(shares), self.total_base_assets, self.total_shares)

    def preview_deposit(self, assets: int) -> int:
        return self.convert_to_shares(assets)

    def preview_mint(self, shares: int) -> int:
        if self.total_shares == 0:
            return int(shares)
        self._check_solvent()
        return _mul_div_up(int(shares), self.total_base_assets, self.total_shares)

    def preview_withdraw(self, assets: int) -> int:
        if self.total_shares == 0:
            return int(assets)
        self._check_solvent()
        return _mul_div_up(int(assets), self.total_shares, self.total_base_assets)

    def preview_redeem(self, shares: int) -> int:
        return self.convert_to_assets(shares)

    def max_withdraw(self, owner: str) -> int:
        return min(self.convert_to_assets(self.balance_of(owner)), self.idle_balance())

    def max_redeem(self, owner: str) -> int:
        return self.balance_of(owner)

    def exchange_rate(self) -> int:
        """Base units per whole share (10**base_decimals share units)."""
        one_share = 10 ** self.base_decimals
        if self.total_shares == 0:
            return one_share
        return _mul_div_down(one_share, self.total_base_assets, self.total_shares)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def deposit(self, caller: str, assets: int, receiver: str) -> int:
        """Pull ``assets`` of the base asset from ``caller`` and mint shares to ``receiver``."""
        assets = int(assets)
        if assets <= 0:
            raise ZeroAmount("deposit amount must be positive")
        if not receiver:
            raise InvalidAddress("receiver required")
        shares = self.preview_deposit(assets)
        if shares == 0:
            raise ZeroAmount(f"deposit of {assets} mints zero shares")
        self.custody.transfer_from(self.vault_id, self.base_asset, caller, self.vault_id, assets)
        self._mint(receiver, shares, assets)
        self.events.emit("Deposit", caller=caller, receiver=receiver, assets=assets, shares=shares)
        LOG.info("[ledger] deposit caller=%s receiver=%s assets=%s shares=%s", caller, receiver, assets, shares)
        return shares

    def mint(self, caller: str, shares: int, receiver: str) -> int:
        """Mint exactly ``shares`` to ``receiver``; returns the base assets pulled."""
        shares = int(shares)
        if shares <= 0:
            raise ZeroAmount("mint amount must be positive")
        if not receiver:
            raise InvalidAddress("receiver required")
        assets = self.preview_mint(shares)
        self.custody.transfer_from(self.vault_id, self.base_asset, caller, self.vault_id, assets)
        self._mint(receiver, shares, assets)
        self.events.emit("Deposit", caller=caller, receiver=receiver, assets=assets, shares=shares)
        LOG.info("[ledger] mint caller=%s receiver=%s assets=%s shares=%s", caller, receiver, assets, shares)
        return assets

    def record_deposit(self, caller: str, base_amount: int, receiver: str) -> int:
        """
        Mint shares for value already moved into custody (non-base token deposits).

        The caller must have completed the custody transfer first; this only
        books the base-equivalent value and the new shares.
        """
        base_amount = int(base_amount)
        if base_amount <= 0:
            raise ZeroAmount("deposit value must be positive")
        if not receiver:
            raise InvalidAddress("receiver required")
        shares = self.preview_deposit(base_amount)
        if shares == 0:
            raise ZeroAmount(f"deposit value {base_amount} mints zero shares")
        self._mint(receiver, shares, base_amount)
        self.events.emit("Deposit", caller=caller, receiver=receiver, assets=base_amount, shares=shares)
        LOG.info("[ledger] booked deposit caller=%s receiver=%s value=%s shares=%s", caller, receiver, base_amount, shares)
        return shares

    def withdraw(self, caller: str, assets: int, receiver: str, owner: str) -> int:
        """Pay out exactly ``assets``; burns ``ceil`` shares from ``owner``. Returns shares burned."""
        assets = int(assets)
        if assets <= 0:
            raise ZeroAmount("withdraw amount must be positive")
        shares = self.preview_withdraw(assets)
        self._burn_and_pay(caller, receiver, owner, assets, shares)
        return shares

    def redeem(self, caller: str, shares: int, receiver: str, owner: str) -> int:
        """Burn exactly ``shares`` from ``owner``; pays ``floor`` assets. Returns assets paid."""
        shares = int(shares)
        if shares <= 0:
            raise ZeroAmount("redeem amount must be positive")
        assets = self.preview_redeem(shares)
        if assets == 0:
            raise ZeroAmount(f"redeeming {shares} shares pays zero assets")
        self._burn_and_pay(caller, receiver, owner, assets, shares)
        return assets

    def record_realized(self, delta: int, source: str) -> None:
        """Book a realized gain (delta > 0) or loss (delta < 0) from a strategy."""
        delta = int(delta)
        if delta == 0:
            return
        before = self.total_base_assets
        self.total_base_assets = max(0, before + delta)
        self.events.emit("RealizedResult", source=source, delta=delta)
        level = logging.WARNING if delta < 0 else logging.INFO
        LOG.log(level, "[ledger] realized source=%s delta=%s total_assets=%s->%s", source, delta, before, self.total_base_assets)

    def _mint(self, receiver: str, shares: int, assets: int) -> None:
        self._balances[receiver] = self._balances.get(receiver, 0) + shares
        self.total_shares += shares
        self.total_base_assets += assets

    def _burn_and_pay(self, caller: str, receiver: str, owner: str, assets: int, shares: int) -> None:
        if not receiver or not owner:
            raise InvalidAddress("receiver and owner required")
        if caller != owner:
            raise Unauthorized(caller, f"owner:{owner}")
        held = self.balance_of(owner)
        if held < shares:
            raise InsufficientShares(f"{owner} holds {held} shares, needs {shares}", owner=owner, held=held, required=shares)
        idle = self.idle_balance()
        if idle < assets:
            raise InsufficientBalance(
                f"vault holds {idle} idle {self.base_asset}, withdrawal needs {assets}",
                available=idle,
                required=assets,
            )
        self.custody.transfer(self.base_asset, self.vault_id, receiver, assets)
        self._balances[owner] = held - shares
        if self._balances[owner] == 0:
            del self._balances[owner]
        self.total_shares -= shares
        self.total_base_assets -= assets
        self.events.emit("Withdraw", caller=caller, receiver=receiver, owner=owner, assets=assets, shares=shares)
        LOG.info("[ledger] withdraw owner=%s receiver=%s assets=%s shares=%s", owner, receiver, assets, shares)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_shares": self.total_shares,
            "total_base_assets": self.total_base_assets,
            "balances": dict(self._balances),
        }

    def load_dict(self, data: Dict[str, Any]) -> None:
        self.total_shares = int(data.get("total_shares", 0))
        self.total_base_assets = int(data.get("total_base_assets", 0))
        self._balances = {str(k): int(v) for k, v in (data.get("balances") or {}).items() if int(v)}


__all__ = ["VaultLedger"]
