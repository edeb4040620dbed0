"""Ledger Client Protocol — read/write facade over the MarketFactory contract.

Every call crosses the network and may fail transiently
(LedgerUnavailableError). Contract-level refusals surface as
LedgerRejectedError. Nothing here retries: the next scheduled tick does.
"""

from collections.abc import Awaitable, Callable, Sequence
from typing import TYPE_CHECKING, Protocol

from src.pm_common.enums import LedgerEventName
from src.pm_ledger.domain.models import LedgerEvent, LedgerMarket, TxHandle, TxReceipt

if TYPE_CHECKING:
    from src.pm_scheduler.checkpoint import SyncCheckpoint

EventCallback = Callable[[LedgerEvent], Awaitable[None]]


class LedgerClientProtocol(Protocol):
    @property
    def can_submit(self) -> bool:
        """True when a submission identity is configured."""
        ...

    async def read_market(self, chain_id: int) -> LedgerMarket: ...

    async def submit_close(self, chain_id: int) -> TxHandle: ...

    async def submit_resolve(self, chain_id: int, outcome_index: int) -> TxHandle: ...

    async def wait_for_confirmation(self, tx: TxHandle, timeout: float) -> TxReceipt:
        """Block until mined or `timeout` elapses; a reverted tx raises LedgerRejectedError."""
        ...

    async def subscribe(
        self,
        event_names: Sequence[LedgerEventName],
        callback: EventCallback,
        checkpoint: "SyncCheckpoint",
    ) -> None:
        """Deliver matching events to `callback` until cancelled.

        The block cursor lives on the checkpoint so it survives a restart of
        the subscription task (but not of the process).
        """
        ...
