"""
RoleGate: flat capability table for the vault.

Three capabilities:
    admin    grants/revokes manager, agent (and admin)
    manager  asset and strategy configuration
    agent    strategy execution/harvest/exit and deposit routing

Membership is a single set of (principal, capability) pairs. Every mutating
vault operation calls ``require`` first; a missing capability raises
``Unauthorized`` before any state is touched.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Set, Tuple

from vault.errors import InvalidAddress, Unauthorized, VaultError
from vault.events import EventRecorder

LOG = logging.getLogger("vault.roles")

ADMIN = "admin"
MANAGER = "manager"
AGENT = "agent"
ROLES = (ADMIN, MANAGER, AGENT)


class UnknownRole(VaultError):
    pass


class RoleGate:
    def __init__(self, admin: str, events: Optional[EventRecorder] = None) -> None:
        if not admin:
            raise InvalidAddress("admin principal required")
        self.events = events or EventRecorder("vault", "roles")
        self._table: Set[Tuple[str, str]] = {(admin, ADMIN)}

    @staticmethod
    def _check_role(role: str) -> str:
        if role not in ROLES:
            raise UnknownRole(f"unknown role {role!r}")
        return role

    def has_role(self, role: str, principal: str) -> bool:
        return (principal, self._check_role(role)) in self._table

    def require(self, principal: str, role: str) -> None:
        if not self.has_role(role, principal):
            LOG.warning("[roles] denied principal=%s role=%s", principal, role)
            raise Unauthorized(principal, role)

    def grant_role(self, sender: str, role: str, account: str) -> bool:
        """Admin-only. Returns False when the account already held the role."""
        self.require(sender, ADMIN)
        self._check_role(role)
        if not account:
            raise InvalidAddress("account required")
        key = (account, role)
        if key in self._table:
            return False
        self._table.add(key)
        self.events.emit("RoleGranted", role=role, account=account, sender=sender)
        LOG.info("[roles] granted role=%s account=%s by=%s", role, account, sender)
        return True

    def revoke_role(self, sender: str, role: str, account: str) -> bool:
        """Admin-only. Returns False when the account did not hold the role."""
        self.require(sender, ADMIN)
        self._check_role(role)
        key = (account, role)
        if key not in self._table:
            return False
        self._table.discard(key)
        self.events.emit("RoleRevoked", role=role, account=account, sender=sender)
        LOG.info("[roles] revoked role=%s account=%s by=%s", role, account, sender)
        return True

    def members(self, role: str) -> List[str]:
        self._check_role(role)
        return sorted(principal for principal, r in self._table if r == role)

    def to_dict(self) -> Dict[str, Any]:
        return {role: self.members(role) for role in ROLES}

    def load_dict(self, data: Dict[str, Any]) -> None:
        table: Set[Tuple[str, str]] = set()
        for role in ROLES:
            for principal in data.get(role) or []:
                table.add((str(principal), role))
        self._table = table


__all__ = ["ADMIN", "MANAGER", "AGENT", "ROLES", "RoleGate", "UnknownRole"]
