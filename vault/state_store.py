from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Dict

from vault.log_utils import safe_dump

LOG = logging.getLogger("vault.state")

STATE_VERSION = 1


class VaultStateStore:
    """Durable JSON snapshot of vault state (vault_state.json)."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def load(self) -> Dict[str, Any]:
        """Load the persisted snapshot, or {} when none exists or it cannot be parsed."""
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except Exception as exc:
            LOG.warning("[state] load failed path=%s err=%s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            LOG.warning("[state] ignoring non-object state in %s", self.path)
            return {}
        LOG.debug("[state] loaded path=%s updated_at=%s", self.path, data.get("updated_at"))
        return data

    def save(self, state: Dict[str, Any]) -> None:
        """Persist ``state`` atomically. Failures propagate so the caller can roll back."""
        payload = dict(safe_dump(state))
        payload["version"] = STATE_VERSION
        payload["updated_at"] = time.time()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(".tmp")
            tmp.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
            tmp.replace(self.path)
        except Exception as exc:
            LOG.error("[state] save failed path=%s err=%s", self.path, exc)
            raise


__all__ = ["VaultStateStore", "STATE_VERSION"]
