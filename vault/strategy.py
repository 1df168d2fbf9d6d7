"""
StrategyAdapter: deploys vault capital into one external protocol.

State per adapter:
    Idle      deployed_balance == 0
    Deployed  deployed_balance  > 0

    execute(amount)   Idle/Deployed -> Deployed   (strict: protocol failure propagates)
    emergency_exit()  Deployed      -> Idle       (strict: NoUnderlyingBalance when Idle)
    harvest()         no state change; claim is best-effort (ClaimRewardsFailed)

Protocol specifics live only in ``ProtocolSelectors``: every call goes out as a
``CallDescriptor`` through the shared ``ProtocolGateway``. The only principal
allowed to drive an adapter is the vault it was bound to with ``set_vault``.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from vault.custody import Custody, atomic
from vault.errors import (
    InvalidAddress,
    InvalidAmount,
    InvalidTokenAddress,
    NoUnderlyingBalance,
    ProtocolCallFailed,
    StrategyPaused,
    TokenAlreadyAdded,
    Unauthorized,
    VaultAlreadySet,
)
from vault.events import EventRecorder
from vault.log_utils import JsonlJournal
from vault.protocol import CallDescriptor, ProtocolGateway
from vault.roles import AGENT

LOG = logging.getLogger("vault.strategy")


@dataclass(frozen=True)
class ProtocolSelectors:
    deposit: str = "deposit(uint256)"
    withdraw: str = "withdraw(uint256)"
    claim: Optional[str] = "claimRewards()"
    balance: str = "getBalance(address)"


def _call_args(data: Any) -> Tuple[Any, ...]:
    if data is None or data == b"" or data == "":
        return ()
    if isinstance(data, (tuple, list)):
        return tuple(data)
    return (data,)


class StrategyAdapter:
    def __init__(
        self,
        strategy_id: str,
        underlying: str,
        protocol: str,
        gateway: ProtocolGateway,
        custody: Custody,
        selectors: Optional[ProtocolSelectors] = None,
        journal: Optional[JsonlJournal] = None,
    ) -> None:
        if not strategy_id:
            raise InvalidAddress("strategy id required")
        if not underlying:
            raise InvalidTokenAddress("underlying token required")
        if not protocol:
            raise InvalidAddress("protocol target required")
        self.strategy_id = strategy_id
        self.underlying = underlying
        self.protocol = protocol
        self.gateway = gateway
        self.custody = custody
        self.selectors = selectors or ProtocolSelectors()
        self.events = EventRecorder("strategy", strategy_id, journal)
        self.vault: Optional[str] = None
        self.deployed_balance = 0
        self.paused = False
        self.reward_tokens: List[str] = []

    # ------------------------------------------------------------------
    # Wiring / access
    # ------------------------------------------------------------------

    def set_vault(self, vault_id: str) -> None:
        if not vault_id:
            raise InvalidAddress("vault id required")
        if self.vault is not None:
            raise VaultAlreadySet(f"{self.strategy_id} already bound to {self.vault}", strategy=self.strategy_id)
        self.vault = vault_id
        self.events.emit("VaultSet", vault=vault_id)
        LOG.info("[strategy] %s bound to vault=%s", self.strategy_id, vault_id)

    def _require_vault(self, caller: str) -> str:
        if self.vault is None or caller != self.vault:
            LOG.warning("[strategy] %s denied caller=%s", self.strategy_id, caller)
            raise Unauthorized(caller, AGENT)
        return self.vault

    def _call(self, function_id: str, *args: Any) -> Any:
        return self.gateway.call(CallDescriptor(self.protocol, function_id, tuple(args)), sender=self.strategy_id)

    # ------------------------------------------------------------------
    # Funds-moving operations
    # ------------------------------------------------------------------

    def execute(self, caller: str, amount: int, data: Any = b"") -> None:
        """Pull ``amount`` of underlying from the vault and deposit it into the protocol."""
        vault = self._require_vault(caller)
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidAmount(f"execute amount must be positive, got {amount!r}", strategy=self.strategy_id)
        if self.paused:
            raise StrategyPaused(f"{self.strategy_id} is paused", strategy=self.strategy_id)

        with atomic(self.custody):
            self.custody.transfer_from(self.strategy_id, self.underlying, vault, self.strategy_id, amount)
            self.custody.approve(self.strategy_id, self.underlying, self.protocol, amount)
            self._call(self.selectors.deposit, amount)
        self.deployed_balance += amount
        self.events.emit("Deposit", amount=amount)
        self.events.emit("Executed", amount=amount, data=data)
        LOG.info("[strategy] %s executed amount=%s deployed=%s", self.strategy_id, amount, self.deployed_balance)

    def emergency_exit(self, caller: str, data: Any = b"") -> int:
        """
        Withdraw the whole deployed balance and return it to the vault.

        Returns the underlying actually received from the protocol, which
        may differ from the tracked principal.
        """
        vault = self._require_vault(caller)
        principal = self.deployed_balance
        if principal == 0:
            raise NoUnderlyingBalance(f"{self.strategy_id} has nothing deployed", strategy=self.strategy_id)

        with atomic(self.custody):
            before = self.custody.balance_of(self.underlying, self.strategy_id)
            self._call(self.selectors.withdraw, principal)
            received = self.custody.balance_of(self.underlying, self.strategy_id) - before
            if received > 0:
                self.custody.transfer(self.underlying, self.strategy_id, vault, received)
        self.deployed_balance = 0
        self.events.emit("Withdraw", amount=received)
        self.events.emit("EmergencyExited", amount=received, data=data)
        level = logging.WARNING if received < principal else logging.INFO
        LOG.log(level, "[strategy] %s emergency exit principal=%s received=%s", self.strategy_id, principal, received)
        return received

    def claim_rewards(self, caller: str, data: Any = b"") -> Any:
        """Claim from the protocol; failures propagate."""
        self._require_vault(caller)
        if not self.selectors.claim:
            raise ProtocolCallFailed(f"{self.strategy_id} has no claim entry point", strategy=self.strategy_id)
        result = self._call(self.selectors.claim, *_call_args(data))
        claimed = result if isinstance(result, int) and not isinstance(result, bool) else 0
        self.events.emit("Claim", amount=claimed)
        return result

    def harvest(self, caller: str, data: Any = b"") -> Dict[str, int]:
        """
        Claim rewards (best-effort) and sweep every known reward token to the vault.

        Returns {token: amount forwarded}.
        """
        vault = self._require_vault(caller)
        if self.selectors.claim:
            try:
                result = self._call(self.selectors.claim, *_call_args(data))
            except ProtocolCallFailed as exc:
                LOG.warning("[strategy] %s claim failed, continuing harvest: %s", self.strategy_id, exc)
                self.events.emit("ClaimRewardsFailed", reason=str(exc))
            else:
                claimed = result if isinstance(result, int) and not isinstance(result, bool) else 0
                self.events.emit("Claim", amount=claimed)

        forwarded: Dict[str, int] = {}
        for token in self.reward_tokens:
            balance = self.custody.balance_of(token, self.strategy_id)
            if balance <= 0:
                continue
            self.custody.transfer(token, self.strategy_id, vault, balance)
            forwarded[token] = balance
            self.events.emit("RewardsForwarded", token=token, amount=balance)
        self.events.emit("Harvested", data=data, forwarded=dict(forwarded))
        LOG.info("[strategy] %s harvested forwarded=%s", self.strategy_id, forwarded)
        return forwarded

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def add_reward_token(self, caller: str, token: str) -> None:
        self._require_vault(caller)
        if not token:
            raise InvalidTokenAddress("reward token required", strategy=self.strategy_id)
        if token in self.reward_tokens:
            raise TokenAlreadyAdded(f"{token} already tracked", strategy=self.strategy_id, token=token)
        self.reward_tokens.append(token)
        self.events.emit("RewardTokenAdded", token=token)

    def set_paused(self, caller: str, paused: bool) -> None:
        self._require_vault(caller)
        self.paused = bool(paused)
        self.events.emit("PausedState", paused=self.paused)
        LOG.info("[strategy] %s paused=%s", self.strategy_id, self.paused)

    # ------------------------------------------------------------------
    # Read-only passthrough
    # ------------------------------------------------------------------

    def query_protocol(self, function_id: str, args: Sequence[Any] = ()) -> Any:
        descriptor = CallDescriptor(self.protocol, function_id, tuple(args))
        return self.gateway.static_call(descriptor, sender=self.strategy_id)

    def get_balance(self) -> int:
        return int(self.query_protocol(self.selectors.balance, (self.strategy_id,)))

    # ------------------------------------------------------------------
    # Snapshot / persistence
    # ------------------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        return {
            "vault": self.vault,
            "deployed_balance": self.deployed_balance,
            "paused": self.paused,
            "reward_tokens": list(self.reward_tokens),
        }

    def restore(self, snap: Dict[str, Any]) -> None:
        self.vault = snap["vault"]
        self.deployed_balance = snap["deployed_balance"]
        self.paused = snap["paused"]
        self.reward_tokens = list(snap["reward_tokens"])

    def to_dict(self) -> Dict[str, Any]:
        data = self.snapshot()
        data.update(
            {
                "strategy_id": self.strategy_id,
                "underlying": self.underlying,
                "protocol": self.protocol,
                "selectors": asdict(self.selectors),
            }
        )
        return data

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        gateway: ProtocolGateway,
        custody: Custody,
        journal: Optional[JsonlJournal] = None,
    ) -> "StrategyAdapter":
        adapter = cls(
            strategy_id=str(data["strategy_id"]),
            underlying=str(data["underlying"]),
            protocol=str(data["protocol"]),
            gateway=gateway,
            custody=custody,
            selectors=ProtocolSelectors(**(data.get("selectors") or {})),
            journal=journal,
        )
        adapter.restore(
            {
                "vault": data.get("vault"),
                "deployed_balance": int(data.get("deployed_balance", 0)),
                "paused": bool(data.get("paused", False)),
                "reward_tokens": [str(t) for t in data.get("reward_tokens") or []],
            }
        )
        return adapter


__all__ = ["ProtocolSelectors", "StrategyAdapter"]
