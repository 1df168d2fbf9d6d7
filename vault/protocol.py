"""
External protocol call primitive.

Strategy adapters talk to yield protocols through one routine:
``ProtocolGateway.call(CallDescriptor(target, function_id, args), sender)``.
``function_id`` is a signature string such as ``"deposit(uint256)"``; the
argument count is checked against the signature, encoding beyond that is the
caller's concern. A failing call is reverted (handler state and custody are
restored) and surfaces as ``ProtocolCallFailed``.

``SimulatedYieldProtocol`` is an in-process protocol for dry runs and tests:
deposits accrue a flat reward (10% by default) in a separate reward token.
"""

from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol, Set, Tuple

from vault.custody import Custody
from vault.errors import InsufficientBalance, InvalidAddress, ProtocolCallFailed, ZeroAmount

LOG = logging.getLogger("vault.protocol")

_SIGNATURE_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)\((.*)\)$")


def parse_signature(function_id: str) -> Tuple[str, int]:
    """Split ``"name(type1,type2)"`` into ``("name", 2)``."""
    match = _SIGNATURE_RE.match((function_id or "").replace(" ", ""))
    if not match:
        raise ValueError(f"malformed function id: {function_id!r}")
    params = match.group(2)
    arity = len(params.split(",")) if params else 0
    return match.group(1), arity


@dataclass(frozen=True)
class CallDescriptor:
    target: str
    function_id: str
    args: Tuple[Any, ...] = ()


class ProtocolHandler(Protocol):
    def handle(self, sender: str, function: str, args: Tuple[Any, ...]) -> Any:
        ...

    def snapshot(self) -> Any:
        ...

    def restore(self, snap: Any) -> None:
        ...


class ProtocolGateway:
    def __init__(self, custody: Optional[Custody] = None) -> None:
        self.custody = custody
        self._handlers: Dict[str, ProtocolHandler] = {}

    def register(self, target: str, handler: ProtocolHandler) -> None:
        if not target:
            raise InvalidAddress("protocol target required")
        self._handlers[target] = handler
        LOG.debug("[protocol] registered target=%s handler=%s", target, type(handler).__name__)

    def handler(self, target: str) -> Optional[ProtocolHandler]:
        return self._handlers.get(target)

    def call(self, descriptor: CallDescriptor, sender: str) -> Any:
        handler = self._handlers.get(descriptor.target)
        if handler is None:
            raise ProtocolCallFailed(f"no protocol at {descriptor.target!r}", target=descriptor.target)
        try:
            name, arity = parse_signature(descriptor.function_id)
        except ValueError as exc:
            raise ProtocolCallFailed(str(exc), target=descriptor.target) from None
        args = tuple(descriptor.args)
        if len(args) != arity:
            raise ProtocolCallFailed(
                f"{descriptor.function_id} takes {arity} args, got {len(args)}",
                target=descriptor.target,
                function=descriptor.function_id,
            )

        handler_snap = handler.snapshot()
        custody_snap = self.custody.snapshot() if self.custody is not None else None
        try:
            return handler.handle(sender, name, args)
        except Exception as exc:
            handler.restore(handler_snap)
            if custody_snap is not None:
                self.custody.restore(custody_snap)
            LOG.warning(
                "[protocol] call reverted target=%s fn=%s sender=%s err=%s",
                descriptor.target, descriptor.function_id, sender, exc,
            )
            if isinstance(exc, ProtocolCallFailed):
                raise
            raise ProtocolCallFailed(
                f"{descriptor.function_id} on {descriptor.target} reverted: {exc}",
                target=descriptor.target,
                function=descriptor.function_id,
            ) from exc

    def static_call(self, descriptor: CallDescriptor, sender: str) -> Any:
        """Run ``call`` and discard any state it changed."""
        snap = self.snapshot()
        custody_snap = self.custody.snapshot() if self.custody is not None else None
        try:
            return self.call(descriptor, sender)
        finally:
            self.restore(snap)
            if custody_snap is not None:
                self.custody.restore(custody_snap)

    def snapshot(self) -> Dict[str, Any]:
        return {target: handler.snapshot() for target, handler in self._handlers.items()}

    def restore(self, snap: Dict[str, Any]) -> None:
        for target, state in snap.items():
            handler = self._handlers.get(target)
            if handler is not None:
                handler.restore(state)


class SimulatedYieldProtocol:
    """
    Minimal lending-style protocol.

    deposit(uint256)      pull underlying from the sender (needs allowance), accrue rewards
    withdraw(uint256)     return underlying to the sender, minus ``loss_bps``
    claimRewards()        transfer accrued reward tokens to the sender
    getBalance(address)   deposited principal of an account
    getRewardToken()      reward token id

    The protocol must be funded with reward tokens in custody before claims
    can succeed.
    """

    def __init__(
        self,
        protocol_id: str,
        underlying: str,
        reward_token: str,
        custody: Custody,
        reward_bps: int = 1000,
        loss_bps: int = 0,
    ) -> None:
        self.protocol_id = protocol_id
        self.underlying = underlying
        self.reward_token = reward_token
        self.custody = custody
        self.reward_bps = reward_bps
        self.loss_bps = loss_bps
        self.deposits: Dict[str, int] = {}
        self.rewards: Dict[str, int] = {}
        self._broken: Set[str] = set()
        self._functions: Dict[str, Callable[..., Any]] = {
            "deposit": self._deposit,
            "withdraw": self._withdraw,
            "claimRewards": self._claim_rewards,
            "getBalance": self._get_balance,
            "getRewardToken": self._get_reward_token,
        }

    # failure injection
    def break_function(self, name: str) -> None:
        self._broken.add(name)

    def repair_function(self, name: str) -> None:
        self._broken.discard(name)

    def accrue_yield(self, account: str, amount: int) -> None:
        """Credit interest to ``account``; the protocol must hold the extra underlying."""
        self.deposits[account] = self.deposits.get(account, 0) + int(amount)

    def handle(self, sender: str, function: str, args: Tuple[Any, ...]) -> Any:
        if function in self._broken:
            raise ProtocolCallFailed(f"{function} reverted", target=self.protocol_id)
        fn = self._functions.get(function)
        if fn is None:
            raise ProtocolCallFailed(f"unknown function {function}", target=self.protocol_id)
        return fn(sender, *args)

    def _deposit(self, sender: str, amount: int) -> None:
        amount = int(amount)
        if amount <= 0:
            raise ZeroAmount("deposit amount must be positive")
        self.custody.transfer_from(self.protocol_id, self.underlying, sender, self.protocol_id, amount)
        self.deposits[sender] = self.deposits.get(sender, 0) + amount
        self.rewards[sender] = self.rewards.get(sender, 0) + amount * self.reward_bps // 10_000

    def _withdraw(self, sender: str, amount: int) -> int:
        amount = int(amount)
        if amount <= 0:
            raise ZeroAmount("withdraw amount must be positive")
        held = self.deposits.get(sender, 0)
        if held < amount:
            raise InsufficientBalance(f"{sender} has {held} deposited, asked {amount}")
        payout = amount - amount * self.loss_bps // 10_000
        self.custody.transfer(self.underlying, self.protocol_id, sender, payout)
        self.deposits[sender] = held - amount
        return payout

    def _claim_rewards(self, sender: str) -> int:
        owed = self.rewards.get(sender, 0)
        if owed == 0:
            raise ZeroAmount("no rewards to claim")
        self.custody.transfer(self.reward_token, self.protocol_id, sender, owed)
        self.rewards[sender] = 0
        return owed

    def _get_balance(self, sender: str, account: str) -> int:
        return self.deposits.get(account, 0)

    def _get_reward_token(self, sender: str) -> str:
        return self.reward_token

    def snapshot(self) -> Dict[str, Any]:
        return {"deposits": copy.deepcopy(self.deposits), "rewards": copy.deepcopy(self.rewards)}

    def restore(self, snap: Dict[str, Any]) -> None:
        self.deposits = copy.deepcopy(snap["deposits"])
        self.rewards = copy.deepcopy(snap["rewards"])


__all__ = [
    "CallDescriptor",
    "ProtocolGateway",
    "ProtocolHandler",
    "SimulatedYieldProtocol",
    "parse_signature",
]
