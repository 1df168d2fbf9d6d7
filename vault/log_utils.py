"""JSONL journal for vault events with atomic appends and size-based rotation."""

from __future__ import annotations

import dataclasses
import datetime as _dt
import enum
import json
import os
import socket
import tempfile
import threading
from decimal import Decimal
from pathlib import Path
from typing import Any, Mapping, MutableMapping

REPO_ROOT = Path(__file__).resolve().parent.parent
_HOSTNAME = socket.gethostname()


class JsonlJournal:
    """Append-only JSONL file; rotates to ``name.N.jsonl`` once ``max_bytes`` is hit."""

    def __init__(self, path: Path, max_bytes: int = 10_000_000, backup_count: int = 5) -> None:
        self.path = path
        self.max_bytes = max_bytes
        self.backup_count = backup_count
        self._lock = threading.RLock()

    def write(self, record: Mapping[str, Any] | None) -> None:
        line = json.dumps(safe_dump(record or {}), ensure_ascii=False, sort_keys=True)
        encoded = f"{line}\n".encode("utf-8")
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._rotate_if_needed(len(encoded))
            self._atomic_append(encoded)

    def read_all(self) -> list[dict]:
        """Return every record in the live file (rotated backups excluded)."""
        if not self.path.exists():
            return []
        records = []
        with self.path.open("r", encoding="utf-8") as handle:
            for line in handle:
                line = line.strip()
                if line:
                    records.append(json.loads(line))
        return records

    def _backup_path(self, index: int) -> Path:
        if index == 0:
            return self.path
        suffix = self.path.suffix
        stem = self.path.name[: -len(suffix)] if suffix else self.path.name
        return self.path.with_name(f"{stem}.{index}{suffix}")

    def _rotate_if_needed(self, incoming: int) -> None:
        if self.backup_count <= 0 or self.max_bytes <= 0 or not self.path.exists():
            return
        if self.path.stat().st_size + incoming <= self.max_bytes:
            return
        oldest = self._backup_path(self.backup_count)
        if oldest.exists():
            oldest.unlink()
        for idx in range(self.backup_count, 0, -1):
            src = self._backup_path(idx - 1)
            if src.exists():
                os.replace(src, self._backup_path(idx))

    def _atomic_append(self, data: bytes) -> None:
        fd, temp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=self.path.name, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as tmp:
                if self.path.exists():
                    tmp.write(self.path.read_bytes())
                tmp.write(data)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(temp_path, self.path)
        finally:
            if os.path.exists(temp_path):
                os.unlink(temp_path)


def get_journal(path: str | Path, max_bytes: int = 10_000_000, backup_count: int = 5) -> JsonlJournal:
    target = Path(path)
    if not target.is_absolute():
        target = REPO_ROOT / target
    return JsonlJournal(target, max_bytes=max_bytes, backup_count=backup_count)


def journal_event(journal: JsonlJournal, event_type: str, payload: Mapping[str, Any] | None) -> None:
    event: MutableMapping[str, Any] = safe_dump(payload or {})
    event.update(
        {
            "ts": _dt.datetime.now(tz=_dt.timezone.utc).isoformat(),
            "event_type": event_type,
            "pid": os.getpid(),
            "hostname": _HOSTNAME,
        }
    )
    journal.write(event)


def safe_dump(obj: Any) -> MutableMapping[str, Any]:
    """Return a JSON-serializable dict, coercing bytes/Decimal/enums/dataclasses."""

    def coerce(value: Any) -> Any:
        if value is None or isinstance(value, (str, bool, int, float)):
            return value
        if isinstance(value, enum.Enum):
            return coerce(value.value)
        if isinstance(value, (bytes, bytearray)):
            return "0x" + bytes(value).hex()
        if isinstance(value, Decimal):
            return str(value)
        if isinstance(value, Mapping):
            return {str(k): coerce(v) for k, v in value.items()}
        if dataclasses.is_dataclass(value) and not isinstance(value, type):
            return coerce(dataclasses.asdict(value))
        if isinstance(value, (list, tuple)):
            return [coerce(v) for v in value]
        if isinstance(value, (set, frozenset)):
            return sorted((coerce(v) for v in value), key=repr)
        if isinstance(value, _dt.datetime):
            item = value if value.tzinfo else value.replace(tzinfo=_dt.timezone.utc)
            return item.astimezone(_dt.timezone.utc).isoformat()
        return repr(value)

    if obj is None:
        return {}
    if isinstance(obj, Mapping):
        return {str(k): coerce(v) for k, v in obj.items()}
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return safe_dump(dataclasses.asdict(obj))
    return {"value": coerce(obj)}


__all__ = ["JsonlJournal", "get_journal", "journal_event", "safe_dump"]
