"""
Vault error taxonomy.

Every rejection raised by the vault core is a VaultError subclass carrying a
``kind`` so callers can branch on the failure class:

    authorization  - caller lacks the required role
    validation     - zero amount, null address, unknown asset/strategy
    oracle         - stale, negative or missing price
    integration    - external protocol call failed
    accounting     - insufficient shares or balance

Only oracle staleness/unavailability is marked ``retriable``; everything else
is permanent until the caller changes its input or the vault state changes.
"""

from __future__ import annotations

from typing import Any, Dict

AUTHORIZATION = "authorization"
VALIDATION = "validation"
ORACLE = "oracle"
INTEGRATION = "integration"
ACCOUNTING = "accounting"


class VaultError(Exception):
    """Base class for all vault rejections."""

    kind: str = VALIDATION
    retriable: bool = False

    def __init__(self, message: str = "", **context: Any) -> None:
        super().__init__(message or self.__class__.__name__)
        self.context = context


# -- authorization -----------------------------------------------------------

class Unauthorized(VaultError):
    kind = AUTHORIZATION

    def __init__(self, caller: str, role: str) -> None:
        super().__init__(f"caller {caller!r} is missing role {role!r}", caller=caller, role=role)
        self.caller = caller
        self.role = role


# -- validation --------------------------------------------------------------

class ZeroAmount(VaultError):
    kind = VALIDATION


class InvalidAmount(VaultError):
    kind = VALIDATION


class InvalidAddress(VaultError):
    kind = VALIDATION


class InvalidTokenAddress(VaultError):
    kind = VALIDATION


class InvalidPriceFeed(VaultError):
    kind = VALIDATION


class InvalidDecimals(VaultError):
    kind = VALIDATION


class TokenNotAccepted(VaultError):
    kind = VALIDATION


class TokenAlreadyAdded(VaultError):
    kind = VALIDATION


class StrategyAlreadyExists(VaultError):
    kind = VALIDATION


class StrategyDoesNotExist(VaultError):
    kind = VALIDATION


class StrategyPaused(VaultError):
    kind = VALIDATION


class VaultAlreadySet(VaultError):
    kind = VALIDATION


# -- oracle ------------------------------------------------------------------

class PriceStale(VaultError):
    kind = ORACLE
    retriable = True


class PriceUnavailable(VaultError):
    kind = ORACLE
    retriable = True


class InvalidPrice(VaultError):
    kind = ORACLE


# -- integration -------------------------------------------------------------

class ProtocolCallFailed(VaultError):
    kind = INTEGRATION


# -- accounting --------------------------------------------------------------

class InsufficientShares(VaultError):
    kind = ACCOUNTING


class InsufficientBalance(VaultError):
    kind = ACCOUNTING


class NoUnderlyingBalance(VaultError):
    kind = ACCOUNTING


class StrategyHasBalance(VaultError):
    kind = ACCOUNTING


def describe_error(exc: BaseException) -> Dict[str, Any]:
    """Classify an exception into a JSON-friendly dict (kind/retriable/message)."""
    if isinstance(exc, VaultError):
        return {
            "kind": exc.kind,
            "error": exc.__class__.__name__,
            "retriable": exc.retriable,
            "message": str(exc),
        }
    return {
        "kind": "unknown",
        "error": exc.__class__.__name__,
        "retriable": False,
        "message": str(exc),
    }


__all__ = [
    "AUTHORIZATION",
    "VALIDATION",
    "ORACLE",
    "INTEGRATION",
    "ACCOUNTING",
    "VaultError",
    "Unauthorized",
    "ZeroAmount",
    "InvalidAmount",
    "InvalidAddress",
    "InvalidTokenAddress",
    "InvalidPriceFeed",
    "InvalidDecimals",
    "TokenNotAccepted",
    "TokenAlreadyAdded",
    "StrategyAlreadyExists",
    "StrategyDoesNotExist",
    "StrategyPaused",
    "VaultAlreadySet",
    "PriceStale",
    "PriceUnavailable",
    "InvalidPrice",
    "ProtocolCallFailed",
    "InsufficientShares",
    "InsufficientBalance",
    "NoUnderlyingBalance",
    "StrategyHasBalance",
    "describe_error",
]
