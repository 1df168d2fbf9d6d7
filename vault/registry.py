"""
StrategyRegistry: the vault's table of strategy adapters.

Managers add and remove strategies; agents drive them. The registry is the
only caller of adapter operations and always calls them as the vault, so an
adapter's own access check sees the vault principal. Realized results from
exits and base-asset rewards are reported to the ledger here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from vault.errors import (
    InsufficientBalance,
    InvalidAddress,
    InvalidAmount,
    InvalidTokenAddress,
    StrategyAlreadyExists,
    StrategyDoesNotExist,
    StrategyHasBalance,
)
from vault.events import EventRecorder
from vault.ledger import VaultLedger
from vault.roles import AGENT, MANAGER, RoleGate
from vault.strategy import StrategyAdapter

LOG = logging.getLogger("vault.registry")


@dataclass
class StrategyRecord:
    adapter: StrategyAdapter
    active: bool = True


class StrategyRegistry:
    def __init__(self, roles: RoleGate, ledger: VaultLedger, events: Optional[EventRecorder] = None) -> None:
        self.roles = roles
        self.ledger = ledger
        self.events = events or ledger.events
        self._records: Dict[str, StrategyRecord] = {}

    def _active(self, strategy_id: str) -> StrategyAdapter:
        record = self._records.get(strategy_id) if strategy_id else None
        if record is None or not record.active:
            raise StrategyDoesNotExist(f"unknown strategy {strategy_id!r}", strategy=strategy_id)
        return record.adapter

    # ------------------------------------------------------------------
    # Manager operations
    # ------------------------------------------------------------------

    def add_strategy(self, caller: str, adapter: StrategyAdapter) -> None:
        self.roles.require(caller, MANAGER)
        if adapter is None or not getattr(adapter, "strategy_id", None):
            raise InvalidAddress("strategy adapter required")
        strategy_id = adapter.strategy_id
        record = self._records.get(strategy_id)
        if record is not None and record.active:
            raise StrategyAlreadyExists(f"strategy {strategy_id} already registered", strategy=strategy_id)
        if adapter.underlying != self.ledger.base_asset:
            raise InvalidTokenAddress(
                f"{strategy_id} deploys {adapter.underlying}, vault base asset is {self.ledger.base_asset}",
                strategy=strategy_id,
            )
        if adapter.vault is None:
            adapter.set_vault(self.ledger.vault_id)
        elif adapter.vault != self.ledger.vault_id:
            raise InvalidAddress(f"{strategy_id} is bound to vault {adapter.vault}", strategy=strategy_id)

        if record is not None:
            record.adapter = adapter
            record.active = True
        else:
            self._records[strategy_id] = StrategyRecord(adapter=adapter)
        self.events.emit("StrategyAdded", strategy=strategy_id, protocol=adapter.protocol)
        LOG.info("[registry] added strategy=%s protocol=%s", strategy_id, adapter.protocol)

    def remove_strategy(self, caller: str, strategy_id: str) -> None:
        self.roles.require(caller, MANAGER)
        adapter = self._active(strategy_id)
        if adapter.deployed_balance > 0:
            raise StrategyHasBalance(
                f"{strategy_id} still has {adapter.deployed_balance} deployed; exit it first",
                strategy=strategy_id,
            )
        self._records[strategy_id].active = False
        self.events.emit("StrategyRemoved", strategy=strategy_id)
        LOG.info("[registry] removed strategy=%s", strategy_id)

    # ------------------------------------------------------------------
    # Agent operations
    # ------------------------------------------------------------------

    def execute_strategy(self, caller: str, strategy_id: str, amount: int, data: Any = b"") -> None:
        """Move ``amount`` of idle base asset into the strategy."""
        self.roles.require(caller, AGENT)
        adapter = self._active(strategy_id)
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidAmount(f"execute amount must be positive, got {amount!r}", strategy=strategy_id)
        idle = self.ledger.idle_balance()
        if idle < amount:
            raise InsufficientBalance(
                f"vault holds {idle} idle, strategy {strategy_id} asked {amount}",
                available=idle,
                required=amount,
            )
        vault_id = self.ledger.vault_id
        self.ledger.custody.approve(vault_id, self.ledger.base_asset, adapter.strategy_id, amount)
        adapter.execute(vault_id, amount, data)
        self.events.emit("StrategyExecuted", strategy=strategy_id, amount=amount, data=data)
        LOG.info("[registry] executed strategy=%s amount=%s", strategy_id, amount)

    def harvest_strategy(self, caller: str, strategy_id: str, data: Any = b"") -> Dict[str, int]:
        self.roles.require(caller, AGENT)
        adapter = self._active(strategy_id)
        forwarded = adapter.harvest(self.ledger.vault_id, data)
        gain = forwarded.get(self.ledger.base_asset, 0)
        if gain:
            self.ledger.record_realized(gain, source=f"harvest:{strategy_id}")
        self.events.emit("StrategyHarvested", strategy=strategy_id, data=data, forwarded=dict(forwarded))
        return forwarded

    def emergency_exit_strategy(self, caller: str, strategy_id: str, data: Any = b"") -> int:
        self.roles.require(caller, AGENT)
        adapter = self._active(strategy_id)
        principal = adapter.deployed_balance
        received = adapter.emergency_exit(self.ledger.vault_id, data)
        self.ledger.record_realized(received - principal, source=f"exit:{strategy_id}")
        self.events.emit("StrategyEmergencyExited", strategy=strategy_id, amount=received, data=data)
        return received

    def set_strategy_paused(self, caller: str, strategy_id: str, paused: bool) -> None:
        self.roles.require(caller, AGENT)
        self._active(strategy_id).set_paused(self.ledger.vault_id, paused)

    def add_strategy_reward_token(self, caller: str, strategy_id: str, token: str) -> None:
        self.roles.require(caller, AGENT)
        self._active(strategy_id).add_reward_token(self.ledger.vault_id, token)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def adapters(self) -> List[StrategyAdapter]:
        return [record.adapter for record in self._records.values()]

    def is_strategy(self, strategy_id: str) -> bool:
        record = self._records.get(strategy_id)
        return record is not None and record.active

    def get(self, strategy_id: str) -> StrategyAdapter:
        return self._active(strategy_id)

    def strategies(self) -> List[str]:
        return [sid for sid, record in self._records.items() if record.active]

    def deployed_total(self) -> int:
        return sum(record.adapter.deployed_balance for record in self._records.values())

    # ------------------------------------------------------------------
    # Snapshot / persistence
    # ------------------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        return {
            sid: (record.adapter, record.active, record.adapter.snapshot())
            for sid, record in self._records.items()
        }

    def restore(self, snap: Dict[str, Any]) -> None:
        records: Dict[str, StrategyRecord] = {}
        for sid, (adapter, active, state) in snap.items():
            adapter.restore(state)
            records[sid] = StrategyRecord(adapter=adapter, active=active)
        self._records = records

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategies": [
                dict(record.adapter.to_dict(), active=record.active) for record in self._records.values()
            ]
        }

    def load_records(self, adapters: List[StrategyAdapter], active: List[bool]) -> None:
        self._records = {
            adapter.strategy_id: StrategyRecord(adapter=adapter, active=flag)
            for adapter, flag in zip(adapters, active)
        }


__all__ = ["StrategyRecord", "StrategyRegistry"]
