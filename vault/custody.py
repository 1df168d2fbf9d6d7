"""
Custody primitives.

The vault never holds token balances itself; it moves them through a
``Custody`` backend with standard fungible-balance semantics (balance and
allowance checks, all-or-nothing transfers). ``TokenBook`` is the in-process
backend used for simulations, dry runs and tests. Amounts are integer native
units of each token.
"""

from __future__ import annotations

import copy
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional, Protocol, runtime_checkable

from vault.errors import InsufficientBalance, InvalidAddress, InvalidAmount

LOG = logging.getLogger("vault.custody")

UNLIMITED = 2**256 - 1


@runtime_checkable
class Custody(Protocol):
    def decimals(self, asset: str) -> Optional[int]:
        ...

    def balance_of(self, asset: str, holder: str) -> int:
        ...

    def transfer(self, asset: str, sender: str, recipient: str, amount: int) -> None:
        ...

    def transfer_from(self, spender: str, asset: str, owner: str, recipient: str, amount: int) -> None:
        ...

    def approve(self, owner: str, asset: str, spender: str, amount: int) -> None:
        ...

    def snapshot(self) -> Any:
        ...

    def restore(self, snap: Any) -> None:
        ...


class TokenBook:
    """In-memory multi-token balance book."""

    def __init__(self) -> None:
        self._decimals: Dict[str, int] = {}
        self._balances: Dict[str, Dict[str, int]] = {}
        self._allowances: Dict[str, Dict[tuple, int]] = {}

    def register_token(self, asset: str, decimals: int) -> None:
        if not asset:
            raise InvalidAddress("token address required")
        self._decimals[asset] = int(decimals)
        LOG.debug("[custody] registered token=%s decimals=%s", asset, decimals)
        self._balances.setdefault(asset, {})
        self._allowances.setdefault(asset, {})

    def decimals(self, asset: str) -> Optional[int]:
        return self._decimals.get(asset)

    def mint(self, asset: str, holder: str, amount: int) -> None:
        if amount < 0:
            raise InvalidAmount("mint amount must be non-negative")
        book = self._balances.setdefault(asset, {})
        book[holder] = book.get(holder, 0) + int(amount)

    def balance_of(self, asset: str, holder: str) -> int:
        return self._balances.get(asset, {}).get(holder, 0)

    def total_supply(self, asset: str) -> int:
        return sum(self._balances.get(asset, {}).values())

    def approve(self, owner: str, asset: str, spender: str, amount: int) -> None:
        if amount < 0:
            raise InvalidAmount("allowance must be non-negative")
        self._allowances.setdefault(asset, {})[(owner, spender)] = int(amount)

    def allowance(self, asset: str, owner: str, spender: str) -> int:
        return self._allowances.get(asset, {}).get((owner, spender), 0)

    def transfer(self, asset: str, sender: str, recipient: str, amount: int) -> None:
        amount = int(amount)
        if amount < 0:
            raise InvalidAmount("transfer amount must be non-negative")
        if not recipient:
            raise InvalidAddress("transfer recipient required")
        book = self._balances.setdefault(asset, {})
        available = book.get(sender, 0)
        if available < amount:
            raise InsufficientBalance(
                f"{sender} holds {available} {asset}, needs {amount}",
                asset=asset,
                holder=sender,
                available=available,
                required=amount,
            )
        book[sender] = available - amount
        book[recipient] = book.get(recipient, 0) + amount

    def transfer_from(self, spender: str, asset: str, owner: str, recipient: str, amount: int) -> None:
        amount = int(amount)
        if spender != owner:
            allowed = self.allowance(asset, owner, spender)
            if allowed < amount:
                raise InsufficientBalance(
                    f"allowance {allowed} of {asset} from {owner} to {spender} below {amount}",
                    asset=asset,
                    holder=owner,
                    available=allowed,
                    required=amount,
                )
            self.transfer(asset, owner, recipient, amount)
            if allowed != UNLIMITED:
                self._allowances[asset][(owner, spender)] = allowed - amount
            return
        self.transfer(asset, owner, recipient, amount)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "balances": copy.deepcopy(self._balances),
            "allowances": copy.deepcopy(self._allowances),
        }

    def restore(self, snap: Dict[str, Any]) -> None:
        self._balances = copy.deepcopy(snap["balances"])
        self._allowances = copy.deepcopy(snap["allowances"])


@contextmanager
def atomic(custody: Custody) -> Iterator[None]:
    """Restore custody balances if the block raises."""
    snap = custody.snapshot()
    try:
        yield
    except Exception:
        custody.restore(snap)
        raise


__all__ = ["Custody", "TokenBook", "UNLIMITED", "atomic"]
