from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from vault.log_utils import JsonlJournal, journal_event, safe_dump

__all__ = ["VaultEvent", "EventRecorder", "validate_event", "now_utc"]


_LOG = logging.getLogger("vault.events")

# in-memory history per recorder; the journal keeps the full record
DEFAULT_MAX_EVENTS = 1000

_REQUIRED_FIELDS: Dict[str, Dict[str, set]] = {
    "vault": {
        "Deposit": {"caller", "receiver", "assets", "shares"},
        "Withdraw": {"caller", "receiver", "owner", "assets", "shares"},
        "TokenDeposit": {"caller", "asset", "amount", "base_amount", "receiver"},
        "TokenConfigured": {"asset", "price_feed_id", "decimals"},
        "TokenRemoved": {"asset"},
        "StrategyAdded": {"strategy"},
        "StrategyRemoved": {"strategy"},
        "StrategyExecuted": {"strategy", "data"},
        "StrategyHarvested": {"strategy", "data"},
        "StrategyEmergencyExited": {"strategy", "data"},
        "RealizedResult": {"source", "delta"},
        "RoleGranted": {"role", "account", "sender"},
        "RoleRevoked": {"role", "account", "sender"},
    },
    "strategy": {
        "VaultSet": {"vault"},
        "Deposit": {"amount"},
        "Executed": {"amount", "data"},
        "Withdraw": {"amount"},
        "EmergencyExited": {"amount", "data"},
        "Harvested": {"data"},
        "Claim": {"amount"},
        "ClaimRewardsFailed": {"reason"},
        "RewardTokenAdded": {"token"},
        "RewardsForwarded": {"token", "amount"},
        "PausedState": {"paused"},
    },
}


def now_utc() -> str:
    """Return current UTC timestamp as ISO8601 string."""
    return datetime.now(tz=timezone.utc).isoformat()


def validate_event(scope: str, name: str, payload: Mapping[str, Any]) -> None:
    """Raise ValueError when a known event is missing required fields."""
    required = _REQUIRED_FIELDS.get(scope, {}).get(name)
    if not required:
        return
    missing = [key for key in required if key not in payload]
    if missing:
        raise ValueError(f"{scope}:{name} missing fields: {', '.join(sorted(missing))}")


@dataclass
class VaultEvent:
    name: str
    source: str
    payload: Dict[str, Any] = field(default_factory=dict)
    ts: str = field(default_factory=now_utc)


class EventRecorder:
    """
    Collects events emitted by one component.

    Events are kept in memory (so callers can inspect what an operation
    emitted) and mirrored to the JSONL journal when one is attached. Inside a
    transaction (``begin``/``commit``/``rollback``) journal writes are held
    back until commit, so aborted operations never reach the journal.
    Journal failures are logged, never raised. The in-memory history keeps
    the last ``max_events`` entries.
    """

    def __init__(
        self,
        scope: str,
        source: str,
        journal: Optional[JsonlJournal] = None,
        max_events: int = DEFAULT_MAX_EVENTS,
    ) -> None:
        self.scope = scope
        self.source = source
        self.journal = journal
        self.max_events = max(1, int(max_events))
        self._events: List[VaultEvent] = []
        self._pending: List[VaultEvent] = []
        self._depth = 0

    def emit(self, name: str, **payload: Any) -> VaultEvent:
        validate_event(self.scope, name, payload)
        event = VaultEvent(name=name, source=self.source, payload=dict(payload))
        self._events.append(event)
        if self._depth:
            self._pending.append(event)
        else:
            self._write(event)
            self._trim()
        return event

    def _write(self, event: VaultEvent) -> None:
        if self.journal is None:
            return
        body = safe_dump(event.payload)
        body["source"] = self.source
        body["scope"] = self.scope
        try:
            journal_event(self.journal, event.name, body)
        except Exception as exc:
            _LOG.warning("event_write_failed name=%s source=%s err=%s", event.name, self.source, exc)

    @property
    def events(self) -> List[VaultEvent]:
        return list(self._events)

    def named(self, name: str) -> List[VaultEvent]:
        return [event for event in self._events if event.name == name]

    def last(self, name: Optional[str] = None) -> Optional[VaultEvent]:
        for event in reversed(self._events):
            if name is None or event.name == name:
                return event
        return None

    def begin(self) -> int:
        self._depth += 1
        return len(self._events)

    def commit(self) -> None:
        self._depth = max(0, self._depth - 1)
        if self._depth == 0:
            pending, self._pending = self._pending, []
            for event in pending:
                self._write(event)
            self._trim()

    def _trim(self) -> None:
        # only called outside transactions, so no rollback mark points past the cut
        excess = len(self._events) - self.max_events
        if excess > 0:
            del self._events[:excess]

    def rollback(self, mark: int) -> None:
        """Discard events recorded after ``mark``."""
        dropped = self._events[mark:]
        del self._events[mark:]
        self._pending = [event for event in self._pending if not any(event is d for d in dropped)]
        self._depth = max(0, self._depth - 1)

    def clear(self) -> None:
        self._events.clear()
        self._pending.clear()
