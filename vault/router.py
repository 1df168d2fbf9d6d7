"""
MultiAssetDepositRouter: deposits in any accepted token.

Flow for ``deposit_token(asset, amount, receiver)``:
    1. asset must be configured and accepted          (TokenNotAccepted)
    2. amount must be positive                        (InvalidAmount)
    3. base asset -> straight to VaultLedger.deposit  (no oracle call)
    4. otherwise fetch and check the oracle quote      (PriceStale / InvalidPrice / PriceUnavailable)
    5. base_equivalent = floor(amount * price / 10**(asset_decimals - expo - base_decimals))
    6. move ``amount`` of ``asset`` into custody, then book shares on the ledger

``preview_token_deposit`` replays steps 1-5 without moving anything.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from vault.assets import AssetRegistry
from vault.custody import Custody, atomic
from vault.errors import InvalidAmount, ZeroAmount
from vault.events import EventRecorder
from vault.ledger import VaultLedger
from vault.oracle import PriceQuote, ValuationOracleClient, check_quote
from vault.roles import AGENT, RoleGate

LOG = logging.getLogger("vault.router")


def to_base_units(amount: int, asset_decimals: int, quote: PriceQuote, base_decimals: int) -> int:
    """
    Convert native token units to base-asset units, rounding down.

    Example: 0.01 BTC (8 decimals -> 1_000_000) at price 5_000_000 expo -2
    ($50,000.00) into a 6-decimal base asset gives 500_000_000 (500.00).
    """
    scale = asset_decimals - quote.expo - base_decimals
    numerator = int(amount) * int(quote.price)
    if scale >= 0:
        return numerator // (10 ** scale)
    return numerator * (10 ** (-scale))


class MultiAssetDepositRouter:
    def __init__(
        self,
        ledger: VaultLedger,
        assets: AssetRegistry,
        oracle: ValuationOracleClient,
        roles: RoleGate,
        *,
        max_price_age_seconds: float = 1500.0,
        max_confidence_bps: int = 0,
        max_future_skew_seconds: float = 60.0,
        permissioned: bool = True,
        clock: Callable[[], float] = time.time,
        events: Optional[EventRecorder] = None,
    ) -> None:
        self.ledger = ledger
        self.assets = assets
        self.oracle = oracle
        self.roles = roles
        self.max_price_age_seconds = max_price_age_seconds
        self.max_confidence_bps = max_confidence_bps
        self.max_future_skew_seconds = max_future_skew_seconds
        self.permissioned = permissioned
        self.clock = clock
        self.events = events or ledger.events

    @property
    def custody(self) -> Custody:
        return self.ledger.custody

    def _value(self, asset: str, amount: int) -> int:
        cfg = self.assets.require_accepted(asset)
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidAmount(f"deposit amount must be a positive integer, got {amount!r}", asset=asset)
        if self.assets.is_base(asset) or not cfg.needs_oracle:
            return amount
        quote = check_quote(
            self.oracle.get_price(cfg.price_feed_id),
            feed_id=cfg.price_feed_id,
            now=self.clock(),
            max_age_seconds=self.max_price_age_seconds,
            max_confidence_bps=self.max_confidence_bps,
            max_future_skew_seconds=self.max_future_skew_seconds,
        )
        base_amount = to_base_units(amount, cfg.decimals, quote, self.ledger.base_decimals)
        LOG.debug(
            "[router] valued asset=%s amount=%s price=%s expo=%s -> base=%s",
            asset, amount, quote.price, quote.expo, base_amount,
        )
        return base_amount

    def preview_token_deposit(self, asset: str, amount: int) -> int:
        """Base-asset value ``deposit_token`` would credit; no transfer, no minting."""
        return self._value(asset, amount)

    def deposit_token(self, caller: str, asset: str, amount: int, receiver: str) -> int:
        """Deposit ``amount`` of ``asset`` from ``caller``; returns shares minted to ``receiver``."""
        if self.permissioned:
            self.roles.require(caller, AGENT)
        base_amount = self._value(asset, amount)

        if self.assets.is_base(asset):
            shares = self.ledger.deposit(caller, amount, receiver)
        else:
            if base_amount == 0 or self.ledger.preview_deposit(base_amount) == 0:
                raise ZeroAmount(f"{amount} {asset} is worth zero shares", asset=asset)
            with atomic(self.custody):
                self.custody.transfer_from(self.ledger.vault_id, asset, caller, self.ledger.vault_id, amount)
                shares = self.ledger.record_deposit(caller, base_amount, receiver)
        self.events.emit(
            "TokenDeposit",
            caller=caller,
            asset=asset,
            amount=amount,
            base_amount=base_amount,
            receiver=receiver,
            shares=shares,
        )
        LOG.info(
            "[router] token deposit caller=%s asset=%s amount=%s base=%s shares=%s",
            caller, asset, amount, base_amount, shares,
        )
        return shares


__all__ = ["to_base_units", "MultiAssetDepositRouter"]
