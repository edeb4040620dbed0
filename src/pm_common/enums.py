"""Global enums — must match DB CHECK constraints and the ledger contract exactly.

The ledger's status and outcome encodings are defined here and nowhere else.
Every component that converts between a ledger integer and a local label
goes through the helpers at the bottom of this module.
"""

from enum import Enum, IntEnum


class MarketStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"
    RESOLVED = "resolved"
    INVALID = "invalid"


class PositionStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class DecisionOutcome(str, Enum):
    YES = "yes"
    NO = "no"
    INVALID = "invalid"


class LedgerMarketStatus(IntEnum):
    """MarketFactory `status` (uint8) — same order as the contract's enum."""

    ACTIVE = 0
    CLOSED = 1
    RESOLVED = 2
    INVALID = 3


class LedgerEventName(str, Enum):
    MARKET_CREATED = "MarketCreated"
    MARKET_CLOSED = "MarketClosed"
    MARKET_RESOLVED = "MarketResolved"


# MarketFactory `resolveMarket(marketId, outcome)`: 0 = YES, 1 = NO.
_OUTCOME_INDEX: dict[str, int] = {
    DecisionOutcome.YES.value: 0,
    DecisionOutcome.NO.value: 1,
}
_OUTCOME_LABEL: dict[int, str] = {v: k for k, v in _OUTCOME_INDEX.items()}

_LEDGER_TO_LOCAL: dict[LedgerMarketStatus, MarketStatus] = {
    LedgerMarketStatus.ACTIVE: MarketStatus.ACTIVE,
    LedgerMarketStatus.CLOSED: MarketStatus.CLOSED,
    LedgerMarketStatus.RESOLVED: MarketStatus.RESOLVED,
    LedgerMarketStatus.INVALID: MarketStatus.INVALID,
}


def outcome_index(label: str) -> int:
    """'yes' -> 0, 'no' -> 1. Anything else (including 'invalid') raises."""
    key = label.strip().lower()
    if key not in _OUTCOME_INDEX:
        raise ValueError(f"No ledger outcome index for label {label!r}")
    return _OUTCOME_INDEX[key]


def outcome_label(index: int) -> str:
    """0 -> 'yes', 1 -> 'no'. Unknown indices raise rather than guess."""
    if index not in _OUTCOME_LABEL:
        raise ValueError(f"Unknown ledger outcome index {index}")
    return _OUTCOME_LABEL[index]


def local_status(ledger_status: int) -> MarketStatus:
    """Map the contract's uint8 status onto the local lattice."""
    try:
        return _LEDGER_TO_LOCAL[LedgerMarketStatus(ledger_status)]
    except ValueError:
        raise ValueError(f"Unknown ledger market status {ledger_status}") from None
