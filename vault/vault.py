"""
Vault: the aggregate that exposes every vault operation.

Composes RoleGate, AssetRegistry, VaultLedger, MultiAssetDepositRouter and
StrategyRegistry over one custody backend and one protocol gateway. Every
mutating call runs inside ``_transaction``: component state, custody
balances and protocol state are snapshotted first and restored if anything
raises, journal writes are held until commit, and the new state is persisted
through ``VaultStateStore`` before the call returns.

Mutating methods take the calling principal as their first argument.
"""

from __future__ import annotations

import copy
import logging
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional

import requests

from vault.assets import AssetConfig, AssetRegistry
from vault.config import VaultSettings, get_vault_settings
from vault.custody import Custody
from vault.errors import InvalidAddress, describe_error
from vault.events import EventRecorder
from vault.ledger import VaultLedger
from vault.log_utils import JsonlJournal, get_journal
from vault.oracle import HermesOracleClient, ValuationOracleClient
from vault.protocol import ProtocolGateway
from vault.registry import StrategyRegistry
from vault.roles import ADMIN, AGENT, MANAGER, RoleGate
from vault.router import MultiAssetDepositRouter
from vault.state_store import VaultStateStore
from vault.strategy import StrategyAdapter

LOG = logging.getLogger("vault")


class Vault:
    def __init__(
        self,
        vault_id: str,
        base_asset: str,
        admin: str,
        manager: Optional[str] = None,
        agent: Optional[str] = None,
        *,
        custody: Custody,
        oracle: ValuationOracleClient,
        gateway: Optional[ProtocolGateway] = None,
        settings: Optional[VaultSettings] = None,
        store: Optional[VaultStateStore] = None,
        journal: Optional[JsonlJournal] = None,
        clock: Callable[[], float] = time.time,
        name: Optional[str] = None,
        symbol: Optional[str] = None,
    ) -> None:
        if not vault_id:
            raise InvalidAddress("vault id required")
        self.settings = settings or get_vault_settings()
        self.vault_id = vault_id
        self.base_asset = base_asset
        self.name = name or self.settings.name
        self.symbol = symbol or self.settings.symbol
        self.custody = custody
        self.oracle = oracle
        self.gateway = gateway or ProtocolGateway(custody)
        self.store = store
        self.journal = journal
        self.clock = clock

        self.events = EventRecorder("vault", vault_id, journal)
        self.roles = RoleGate(admin, self.events)
        self.assets = AssetRegistry(self.roles, base_asset, custody, self.events)
        self.ledger = VaultLedger(vault_id, base_asset, custody, self.settings.base_decimals, self.events)
        self.router = MultiAssetDepositRouter(
            self.ledger,
            self.assets,
            oracle,
            self.roles,
            max_price_age_seconds=self.settings.max_price_age_seconds,
            max_confidence_bps=self.settings.max_confidence_bps,
            max_future_skew_seconds=self.settings.max_future_skew_seconds,
            permissioned=self.settings.permissioned_deposit_routing,
            clock=clock,
            events=self.events,
        )
        self.registry = StrategyRegistry(self.roles, self.ledger, self.events)

        if manager:
            self.roles.grant_role(admin, MANAGER, manager)
        if agent:
            self.roles.grant_role(admin, AGENT, agent)
        LOG.info("[vault] ready id=%s base=%s name=%s", vault_id, base_asset, self.name)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def _recorders(self, extra: Optional[List[EventRecorder]] = None) -> List[EventRecorder]:
        recorders = [self.events]
        recorders.extend(adapter.events for adapter in self.registry.adapters())
        recorders.extend(extra or [])
        return recorders

    def _snapshot(self) -> Dict[str, Any]:
        return {
            "roles": self.roles.to_dict(),
            "assets": copy.deepcopy(self.assets.to_dict()),
            "ledger": copy.deepcopy(self.ledger.to_dict()),
            "registry": self.registry.snapshot(),
            "custody": self.custody.snapshot(),
            "gateway": self.gateway.snapshot(),
        }

    def _restore(self, snap: Dict[str, Any]) -> None:
        self.roles.load_dict(snap["roles"])
        self.assets.load_dict(snap["assets"])
        self.ledger.load_dict(snap["ledger"])
        self.registry.restore(snap["registry"])
        self.custody.restore(snap["custody"])
        self.gateway.restore(snap["gateway"])

    @contextmanager
    def _transaction(self, op: str, extra: Optional[List[EventRecorder]] = None) -> Iterator[None]:
        recorders = self._recorders(extra)
        marks = [recorder.begin() for recorder in recorders]
        snap = self._snapshot()
        try:
            yield
            self._persist()
        except Exception as exc:
            self._restore(snap)
            for recorder, mark in zip(recorders, marks):
                recorder.rollback(mark)
            info = describe_error(exc)
            LOG.warning("[vault] %s rejected kind=%s error=%s msg=%s", op, info["kind"], info["error"], info["message"])
            raise
        for recorder in recorders:
            recorder.commit()

    def _persist(self) -> None:
        if self.store is not None:
            self.store.save(self.to_state())

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def grant_role(self, caller: str, role: str, account: str) -> bool:
        with self._transaction("grant_role"):
            return self.roles.grant_role(caller, role, account)

    def revoke_role(self, caller: str, role: str, account: str) -> bool:
        with self._transaction("revoke_role"):
            return self.roles.revoke_role(caller, role, account)

    def has_role(self, role: str, account: str) -> bool:
        return self.roles.has_role(role, account)

    def has_manager_role(self, account: str) -> bool:
        return self.roles.has_role(MANAGER, account)

    def has_agent_role(self, account: str) -> bool:
        return self.roles.has_role(AGENT, account)

    # ------------------------------------------------------------------
    # Assets
    # ------------------------------------------------------------------

    def configure_token(self, caller: str, asset: str, price_feed_id: Optional[str], decimals: int) -> AssetConfig:
        with self._transaction("configure_token"):
            return self.assets.configure_token(caller, asset, price_feed_id, decimals)

    def remove_token(self, caller: str, asset: str) -> None:
        with self._transaction("remove_token"):
            self.assets.remove_token(caller, asset)

    def get_accepted_tokens(self) -> List[str]:
        return self.assets.get_accepted_tokens()

    # ------------------------------------------------------------------
    # Deposits / withdrawals
    # ------------------------------------------------------------------

    def deposit(self, caller: str, assets: int, receiver: str) -> int:
        with self._transaction("deposit"):
            return self.ledger.deposit(caller, assets, receiver)

    def mint(self, caller: str, shares: int, receiver: str) -> int:
        with self._transaction("mint"):
            return self.ledger.mint(caller, shares, receiver)

    def deposit_token(self, caller: str, asset: str, amount: int, receiver: str) -> int:
        with self._transaction("deposit_token"):
            return self.router.deposit_token(caller, asset, amount, receiver)

    def withdraw(self, caller: str, assets: int, receiver: str, owner: str) -> int:
        with self._transaction("withdraw"):
            return self.ledger.withdraw(caller, assets, receiver, owner)

    def redeem(self, caller: str, shares: int, receiver: str, owner: str) -> int:
        with self._transaction("redeem"):
            return self.ledger.redeem(caller, shares, receiver, owner)

    def preview_deposit(self, assets: int) -> int:
        return self.ledger.preview_deposit(assets)

    def preview_mint(self, shares: int) -> int:
        return self.ledger.preview_mint(shares)

    def preview_withdraw(self, assets: int) -> int:
        return self.ledger.preview_withdraw(assets)

    def preview_redeem(self, shares: int) -> int:
        return self.ledger.preview_redeem(shares)

    def preview_token_deposit(self, asset: str, amount: int) -> int:
        return self.router.preview_token_deposit(asset, amount)

    def convert_to_shares(self, assets: int) -> int:
        return self.ledger.convert_to_shares(assets)

    def convert_to_assets(self, shares: int) -> int:
        return self.ledger.convert_to_assets(shares)

    def total_assets(self) -> int:
        return self.ledger.total_assets()

    def total_supply(self) -> int:
        return self.ledger.total_shares

    def balance_of(self, holder: str) -> int:
        return self.ledger.balance_of(holder)

    def max_withdraw(self, owner: str) -> int:
        return self.ledger.max_withdraw(owner)

    def max_redeem(self, owner: str) -> int:
        return self.ledger.max_redeem(owner)

    def exchange_rate(self) -> int:
        return self.ledger.exchange_rate()

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def add_strategy(self, caller: str, adapter: StrategyAdapter) -> None:
        if adapter is None:
            with self._transaction("add_strategy"):
                self.registry.add_strategy(caller, adapter)
        state = adapter.snapshot()
        try:
            with self._transaction("add_strategy", [adapter.events]):
                self.registry.add_strategy(caller, adapter)
        except Exception:
            adapter.restore(state)
            raise

    def remove_strategy(self, caller: str, strategy_id: str) -> None:
        with self._transaction("remove_strategy"):
            self.registry.remove_strategy(caller, strategy_id)

    def execute_strategy(self, caller: str, strategy_id: str, amount: int, data: Any = b"") -> None:
        with self._transaction("execute_strategy"):
            self.registry.execute_strategy(caller, strategy_id, amount, data)

    def harvest_strategy(self, caller: str, strategy_id: str, data: Any = b"") -> Dict[str, int]:
        with self._transaction("harvest_strategy"):
            return self.registry.harvest_strategy(caller, strategy_id, data)

    def emergency_exit_strategy(self, caller: str, strategy_id: str, data: Any = b"") -> int:
        with self._transaction("emergency_exit_strategy"):
            return self.registry.emergency_exit_strategy(caller, strategy_id, data)

    def set_strategy_paused(self, caller: str, strategy_id: str, paused: bool) -> None:
        with self._transaction("set_strategy_paused"):
            self.registry.set_strategy_paused(caller, strategy_id, paused)

    def add_strategy_reward_token(self, caller: str, strategy_id: str, token: str) -> None:
        with self._transaction("add_strategy_reward_token"):
            self.registry.add_strategy_reward_token(caller, strategy_id, token)

    def is_strategy(self, strategy_id: str) -> bool:
        return self.registry.is_strategy(strategy_id)

    def get_strategy(self, strategy_id: str) -> StrategyAdapter:
        return self.registry.get(strategy_id)

    # ------------------------------------------------------------------
    # Status / persistence
    # ------------------------------------------------------------------

    def status(self) -> Dict[str, Any]:
        """Point-in-time summary of the vault (the vault-status report)."""
        strategies = {}
        for sid in self.registry.strategies():
            adapter = self.registry.get(sid)
            strategies[sid] = {
                "protocol": adapter.protocol,
                "deployed_balance": adapter.deployed_balance,
                "paused": adapter.paused,
                "reward_tokens": list(adapter.reward_tokens),
            }
        return {
            "vault_id": self.vault_id,
            "name": self.name,
            "symbol": self.symbol,
            "base_asset": self.base_asset,
            "total_assets": self.ledger.total_assets(),
            "total_shares": self.ledger.total_shares,
            "exchange_rate": self.ledger.exchange_rate(),
            "idle_balance": self.ledger.idle_balance(),
            "deployed_balance": self.registry.deployed_total(),
            "accepted_tokens": self.assets.get_accepted_tokens(),
            "strategies": strategies,
        }

    def to_state(self) -> Dict[str, Any]:
        return {
            "vault_id": self.vault_id,
            "name": self.name,
            "symbol": self.symbol,
            "base_asset": self.base_asset,
            "roles": self.roles.to_dict(),
            "assets": self.assets.to_dict(),
            "ledger": self.ledger.to_dict(),
            "registry": self.registry.to_dict(),
        }

    @classmethod
    def from_settings(
        cls,
        vault_id: str,
        base_asset: str,
        admin: str,
        manager: Optional[str] = None,
        agent: Optional[str] = None,
        *,
        custody: Custody,
        settings: Optional[VaultSettings] = None,
        oracle: Optional[ValuationOracleClient] = None,
        gateway: Optional[ProtocolGateway] = None,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
    ) -> "Vault":
        """
        Build a vault wired from settings: journal at ``journal_path``, state
        store at ``state_path`` and a Hermes oracle client unless one is given.

        When the state store already holds a vault it is resumed and the
        identity/role arguments are ignored.
        """
        settings = settings or get_vault_settings()
        journal = get_journal(settings.journal_path)
        store = VaultStateStore(settings.state_path)
        if oracle is None:
            oracle = HermesOracleClient(settings.hermes_url, timeout=settings.oracle_timeout_seconds, session=session)
        if store.load():
            LOG.info("[vault] resuming from %s", store.path)
            return cls.load(
                store,
                custody=custody,
                oracle=oracle,
                gateway=gateway,
                settings=settings,
                journal=journal,
                clock=clock,
            )
        vault = cls(
            vault_id,
            base_asset,
            admin,
            manager,
            agent,
            custody=custody,
            oracle=oracle,
            gateway=gateway,
            settings=settings,
            store=store,
            journal=journal,
            clock=clock,
        )
        vault._persist()
        return vault

    @classmethod
    def load(
        cls,
        store: VaultStateStore,
        *,
        custody: Custody,
        oracle: ValuationOracleClient,
        gateway: Optional[ProtocolGateway] = None,
        settings: Optional[VaultSettings] = None,
        journal: Optional[JsonlJournal] = None,
        clock: Callable[[], float] = time.time,
    ) -> "Vault":
        """Rebuild a vault from ``store``; raises FileNotFoundError when nothing was saved."""
        data = store.load()
        if not data:
            raise FileNotFoundError(f"no vault state at {store.path}")
        admins = (data.get("roles") or {}).get(ADMIN) or []
        if not admins:
            LOG.warning("[vault] state at %s has no admin; roles are frozen", store.path)
        # bootstrap principal only; load_dict below replaces the whole role table
        bootstrap = str(admins[0]) if admins else str(data["vault_id"])
        vault = cls(
            str(data["vault_id"]),
            str(data["base_asset"]),
            bootstrap,
            custody=custody,
            oracle=oracle,
            gateway=gateway,
            settings=settings,
            store=store,
            journal=journal,
            clock=clock,
            name=data.get("name"),
            symbol=data.get("symbol"),
        )
        vault.roles.load_dict(data.get("roles") or {})
        vault.assets.load_dict(data.get("assets") or {})
        vault.ledger.load_dict(data.get("ledger") or {})
        entries = (data.get("registry") or {}).get("strategies") or []
        adapters = [StrategyAdapter.from_dict(entry, vault.gateway, custody, journal) for entry in entries]
        vault.registry.load_records(adapters, [bool(entry.get("active", True)) for entry in entries])
        vault.events.clear()
        LOG.info(
            "[vault] loaded id=%s holders=%d strategies=%d",
            vault.vault_id, len(vault.ledger.holders()), len(vault.registry.strategies()),
        )
        return vault


__all__ = ["Vault"]
