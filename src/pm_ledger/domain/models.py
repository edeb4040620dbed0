"""Ledger-side value objects: what the contract reports, not what we store."""

from dataclasses import dataclass
from datetime import datetime

from src.pm_common.enums import LedgerEventName, MarketStatus


@dataclass(frozen=True)
class LedgerMarket:
    """Decoded `getMarket(marketId)` struct."""

    chain_id: int
    creator: str
    title: str
    description: str
    category: str
    created_at: datetime
    end_time: datetime
    status: MarketStatus
    # Only meaningful when status is RESOLVED; None otherwise
    resolved_outcome: int | None


@dataclass(frozen=True)
class LedgerEvent:
    name: LedgerEventName
    chain_id: int
    block_number: int
    outcome: int | None = None
    tx_hash: str | None = None


@dataclass(frozen=True)
class TxHandle:
    tx_hash: str
    action: str
    chain_id: int


@dataclass(frozen=True)
class TxReceipt:
    tx_hash: str
    block_number: int
    success: bool
    gas_used: int
