from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict

import yaml
from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Always load .env from the project root
load_dotenv(dotenv_path=PROJECT_ROOT / ".env")

_DEFAULT_PATH = Path(os.getenv("VAULT_CONFIG") or PROJECT_ROOT / "config" / "vault.yaml")


@lru_cache(maxsize=1)
def load_vault_config(path: Path | str | None = None) -> Dict[str, Any]:
    """
    Load vault.yaml once per process.

    Returns {} when the file is missing or does not parse to a mapping, so
    defaults apply.
    """
    cfg_path = Path(path) if path is not None else _DEFAULT_PATH
    if not cfg_path.exists():
        return {}
    with cfg_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    return data if isinstance(data, dict) else {}


@dataclass
class VaultSettings:
    """Runtime settings for one vault instance."""
    name: str = "Multi-Token Vault"
    symbol: str = "mtvUSDC"
    base_decimals: int = 6
    max_price_age_seconds: float = 1500.0
    max_confidence_bps: int = 500
    max_future_skew_seconds: float = 60.0
    permissioned_deposit_routing: bool = True
    state_dir: str = "logs/state"
    journal_path: str = "logs/vault/events.jsonl"
    hermes_url: str = "https://hermes.pyth.network"
    oracle_timeout_seconds: float = 5.0

    @property
    def state_path(self) -> Path:
        path = Path(self.state_dir)
        if not path.is_absolute():
            path = PROJECT_ROOT / path
        return path / "vault_state.json"


def get_vault_settings(cfg: Dict[str, Any] | None = None) -> VaultSettings:
    """
    Build VaultSettings from the ``vault`` section plus environment overrides.

    Args:
        cfg: Optional pre-loaded config dict (defaults to config/vault.yaml)
    """
    if cfg is None:
        cfg = load_vault_config()

    vault_cfg = cfg.get("vault", {}) or {}
    oracle_cfg = vault_cfg.get("oracle", {}) or {}
    defaults = VaultSettings()

    max_age = os.getenv("VAULT_MAX_PRICE_AGE") or vault_cfg.get("max_price_age_seconds", defaults.max_price_age_seconds)
    settings = VaultSettings(
        name=str(vault_cfg.get("name", defaults.name)),
        symbol=str(vault_cfg.get("symbol", defaults.symbol)),
        base_decimals=int(vault_cfg.get("base_decimals", defaults.base_decimals)),
        max_price_age_seconds=float(max_age),
        max_confidence_bps=int(vault_cfg.get("max_confidence_bps", defaults.max_confidence_bps)),
        max_future_skew_seconds=float(vault_cfg.get("max_future_skew_seconds", defaults.max_future_skew_seconds)),
        permissioned_deposit_routing=bool(
            vault_cfg.get("permissioned_deposit_routing", defaults.permissioned_deposit_routing)
        ),
        state_dir=os.getenv("VAULT_STATE_DIR") or str(vault_cfg.get("state_dir", defaults.state_dir)),
        journal_path=os.getenv("VAULT_JOURNAL_PATH") or str(vault_cfg.get("journal_path", defaults.journal_path)),
        hermes_url=os.getenv("PYTH_HERMES_URL") or str(oracle_cfg.get("hermes_url", defaults.hermes_url)),
        oracle_timeout_seconds=float(oracle_cfg.get("timeout_seconds", defaults.oracle_timeout_seconds)),
    )

    # Safety: clamp to sane ranges
    settings.base_decimals = max(0, settings.base_decimals)
    settings.max_price_age_seconds = max(0.0, settings.max_price_age_seconds)
    settings.max_confidence_bps = max(0, settings.max_confidence_bps)
    settings.max_future_skew_seconds = max(0.0, settings.max_future_skew_seconds)
    settings.oracle_timeout_seconds = max(0.1, settings.oracle_timeout_seconds)
    return settings


__all__ = ["PROJECT_ROOT", "load_vault_config", "VaultSettings", "get_vault_settings"]
