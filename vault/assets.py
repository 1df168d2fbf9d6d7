"""
AssetRegistry: which tokens the vault accepts and how to value them.

Each entry records whether the token is accepted, the oracle feed used to
value it against the base asset, and its native decimal precision. Only the
base asset may use the ``NO_PRICE_FEED`` sentinel (valued 1:1, no lookup).
Removal is a soft delete: the entry stays, ``accepted`` flips to False, and
shares minted against earlier deposits are unaffected.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from vault.custody import Custody
from vault.errors import (
    InvalidAddress,
    InvalidDecimals,
    InvalidPriceFeed,
    TokenNotAccepted,
)
from vault.events import EventRecorder
from vault.oracle import NO_PRICE_FEED, normalize_feed_id
from vault.roles import MANAGER, RoleGate

LOG = logging.getLogger("vault.assets")

MAX_DECIMALS = 36


@dataclass
class AssetConfig:
    asset: str
    accepted: bool
    price_feed_id: str
    decimals: int

    @property
    def needs_oracle(self) -> bool:
        return self.price_feed_id != NO_PRICE_FEED


class AssetRegistry:
    def __init__(
        self,
        roles: RoleGate,
        base_asset: str,
        custody: Optional[Custody] = None,
        events: Optional[EventRecorder] = None,
    ) -> None:
        if not base_asset:
            raise InvalidAddress("base asset required")
        self.roles = roles
        self.base_asset = base_asset
        self.custody = custody
        self.events = events or EventRecorder("vault", "assets")
        self._configs: Dict[str, AssetConfig] = {}

    def configure_token(self, caller: str, asset: str, price_feed_id: Optional[str], decimals: int) -> AssetConfig:
        """
        Accept (or re-configure) a token. Manager only.

        Raises:
            InvalidAddress: empty asset
            InvalidPriceFeed: no-oracle sentinel on a non-base asset, or malformed feed id
            InvalidDecimals: out of range or different from the token's native precision
        """
        self.roles.require(caller, MANAGER)
        if not asset:
            raise InvalidAddress("asset address required")
        try:
            feed = normalize_feed_id(price_feed_id)
        except ValueError as exc:
            raise InvalidPriceFeed(str(exc), asset=asset) from None
        if feed == NO_PRICE_FEED and asset != self.base_asset:
            raise InvalidPriceFeed(f"{asset} needs a price feed; only the base asset is valued 1:1", asset=asset)
        if isinstance(decimals, bool) or not isinstance(decimals, int) or not 0 <= decimals <= MAX_DECIMALS:
            raise InvalidDecimals(f"decimals out of range: {decimals!r}", asset=asset)
        native = self.custody.decimals(asset) if self.custody is not None else None
        if native is not None and native != decimals:
            raise InvalidDecimals(f"{asset} has {native} decimals, configured {decimals}", asset=asset)

        existing = self._configs.get(asset)
        if existing is not None:
            existing.accepted = True
            existing.price_feed_id = feed
            existing.decimals = decimals
            cfg = existing
        else:
            cfg = AssetConfig(asset=asset, accepted=True, price_feed_id=feed, decimals=decimals)
            self._configs[asset] = cfg
        self.events.emit("TokenConfigured", asset=asset, price_feed_id=feed, decimals=decimals)
        LOG.info("[assets] configured asset=%s feed=%s decimals=%s", asset, feed, decimals)
        return cfg

    def remove_token(self, caller: str, asset: str) -> None:
        self.roles.require(caller, MANAGER)
        if not asset:
            raise InvalidAddress("asset address required")
        cfg = self._configs.get(asset)
        if cfg is None:
            raise TokenNotAccepted(f"{asset} was never configured", asset=asset)
        cfg.accepted = False
        self.events.emit("TokenRemoved", asset=asset)
        LOG.info("[assets] removed asset=%s", asset)

    def get_accepted_tokens(self) -> List[str]:
        return [asset for asset, cfg in self._configs.items() if cfg.accepted]

    def get_config(self, asset: str) -> Optional[AssetConfig]:
        return self._configs.get(asset)

    def require_accepted(self, asset: str) -> AssetConfig:
        cfg = self._configs.get(asset) if asset else None
        if cfg is None or not cfg.accepted:
            raise TokenNotAccepted(f"token not accepted: {asset!r}", asset=asset)
        return cfg

    def is_base(self, asset: str) -> bool:
        return asset == self.base_asset

    def to_dict(self) -> Dict[str, Any]:
        return {"base_asset": self.base_asset, "tokens": [asdict(cfg) for cfg in self._configs.values()]}

    def load_dict(self, data: Dict[str, Any]) -> None:
        configs: Dict[str, AssetConfig] = {}
        for entry in data.get("tokens") or []:
            cfg = AssetConfig(
                asset=str(entry["asset"]),
                accepted=bool(entry.get("accepted", False)),
                price_feed_id=str(entry.get("price_feed_id") or NO_PRICE_FEED),
                decimals=int(entry.get("decimals", 0)),
            )
            configs[cfg.asset] = cfg
        self._configs = configs


__all__ = ["AssetConfig", "AssetRegistry", "MAX_DECIMALS"]
