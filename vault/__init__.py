"""
Vault Package

Multi-asset custodial vault accounting core.

Components:
    ledger.py       - share/asset accounting (deposit, mint, withdraw, redeem)
    assets.py       - accepted tokens, price feeds, decimals
    router.py       - deposits in any accepted token, valued through the oracle
    oracle.py       - price quotes (Hermes HTTP client, static feed) and checks
    strategy.py     - adapter deploying capital into one external protocol
    registry.py     - strategy table driven by managers and agents
    protocol.py     - generic protocol call gateway + simulated yield protocol
    roles.py        - admin / manager / agent capability table
    vault.py        - transactional aggregate exposing every operation

Canonical State Surfaces:
    logs/state/vault_state.json   - durable vault state
    logs/vault/events.jsonl       - event journal
"""
from vault.custody import TokenBook
from vault.errors import VaultError, describe_error
from vault.oracle import HermesOracleClient, PriceQuote, StaticPriceFeed
from vault.protocol import CallDescriptor, ProtocolGateway, SimulatedYieldProtocol
from vault.state_store import VaultStateStore
from vault.strategy import ProtocolSelectors, StrategyAdapter
from vault.vault import Vault

__all__ = [
    "Vault",
    "VaultError",
    "describe_error",
    "TokenBook",
    "PriceQuote",
    "StaticPriceFeed",
    "HermesOracleClient",
    "CallDescriptor",
    "ProtocolGateway",
    "SimulatedYieldProtocol",
    "ProtocolSelectors",
    "StrategyAdapter",
    "VaultStateStore",
]
