"""Unified error codes and custom exceptions.

Error code ranges:
  3xxx: Market
  5xxx: Position
  6xxx: Ledger
  7xxx: Decision service
  9xxx: System

Ledger and decision-service errors are expected at runtime: sweeps catch
them per item and retry on the next tick. Store consistency errors surface
to the single caller that hit them.
"""


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        code: int,
        message: str,
        http_status: int = 500,
    ) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        super().__init__(message)


# --- 3xxx: Market ---

class MarketNotFoundError(AppError):
    def __init__(self, market_id: str) -> None:
        super().__init__(3001, f"Market not found: {market_id}", 404)


class MarketNotActiveError(AppError):
    def __init__(self, market_id: str) -> None:
        super().__init__(3002, f"Market is not active: {market_id}", 422)


class MarketNotEligibleError(AppError):
    def __init__(self, market_id: str, reason: str) -> None:
        super().__init__(3003, f"Market {market_id} is not eligible for resolution: {reason}", 422)


class ChainIdConflictError(AppError):
    def __init__(self, market_id: str, chain_id: int) -> None:
        super().__init__(3005, f"chain_id {chain_id} conflicts for market {market_id}", 409)


# --- 5xxx: Position ---

class PositionNotFoundError(AppError):
    def __init__(self, position_id: str) -> None:
        super().__init__(5001, f"Position not found: {position_id}", 404)


class InvalidTradeError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(5002, f"Invalid trade: {detail}", 422)


class PositionClosedError(AppError):
    def __init__(self, position_id: str) -> None:
        super().__init__(5003, f"Position already closed: {position_id}", 409)


# --- 6xxx: Ledger ---

class LedgerError(AppError):
    """Any failure talking to the on-chain contract."""


class LedgerUnavailableError(LedgerError):
    """Transient: node unreachable, RPC error. Retried on the next tick."""

    def __init__(self, detail: str) -> None:
        super().__init__(6001, f"Ledger unavailable: {detail}", 503)


class LedgerTimeoutError(LedgerError):
    def __init__(self, tx_hash: str, timeout: float) -> None:
        super().__init__(6002, f"Transaction {tx_hash} not confirmed within {timeout:.0f}s", 504)


class LedgerRejectedError(LedgerError):
    """The contract refused the call (reverted / already resolved)."""

    def __init__(self, detail: str) -> None:
        super().__init__(6003, f"Ledger rejected transaction: {detail}", 409)


class LedgerNotConfiguredError(LedgerError):
    def __init__(self) -> None:
        super().__init__(6004, "No submission identity configured", 503)


# --- 7xxx: Decision service ---

class DecisionError(AppError):
    """The decision service produced no usable verdict."""

    def __init__(self, code: int, message: str, http_status: int = 502) -> None:
        super().__init__(code, message, http_status)


class DecisionUnavailableError(DecisionError):
    def __init__(self, detail: str) -> None:
        super().__init__(7001, f"Decision service unavailable: {detail}")


class MalformedDecisionError(DecisionError):
    def __init__(self, detail: str) -> None:
        super().__init__(7002, f"Malformed decision: {detail}")


class OracleDisabledError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(7003, f"Oracle disabled: {detail}", 503)


# --- 9xxx: System ---

class SweepInProgressError(AppError):
    def __init__(self, name: str) -> None:
        super().__init__(9001, f"Sweep already running: {name}", 409)


class InternalError(AppError):
    def __init__(self, detail: str = "Internal server error") -> None:
        super().__init__(9002, detail, 500)
