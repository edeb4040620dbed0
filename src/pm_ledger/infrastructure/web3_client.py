"""Web3LedgerClient — MarketFactory facade over an async JSON-RPC node.

Reads go through `getMarket`; writes build, sign and broadcast a
transaction with the configured oracle key. Events are pulled with
`eth_getLogs` in bounded block windows (public nodes reject wide ranges)
and the cursor is advanced on the SyncCheckpoint only after every event in
the window has been handed to the callback.

Nonces are fetched as "pending" per submission. Callers serialize
submissions (one resolution sweep at a time) so two transactions from the
same identity never race for a nonce.
"""

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import ContractLogicError, TimeExhausted

from src.pm_common.datetime_utils import from_unix
from src.pm_common.enums import LedgerEventName, MarketStatus, local_status
from src.pm_common.errors import (
    LedgerError,
    LedgerNotConfiguredError,
    LedgerRejectedError,
    LedgerTimeoutError,
    LedgerUnavailableError,
)
from src.pm_ledger.domain.client import EventCallback
from src.pm_ledger.domain.models import LedgerEvent, LedgerMarket, TxHandle, TxReceipt
from src.pm_ledger.infrastructure.abi import MARKET_FACTORY_ABI, STRUCT_FIELDS
from src.pm_scheduler.checkpoint import SyncCheckpoint

logger = logging.getLogger(__name__)

_RPC_TIMEOUT = 30.0
_MAX_BLOCK_SPAN = 2_000


def decode_market_struct(raw: Sequence[Any]) -> LedgerMarket:
    """Turn the positional `getMarket` tuple into a LedgerMarket."""
    fields = dict(zip(STRUCT_FIELDS, raw, strict=True))
    status = local_status(int(fields["status"]))
    return LedgerMarket(
        chain_id=int(fields["id"]),
        creator=str(fields["creator"]),
        title=fields["title"],
        description=fields["description"],
        category=fields["category"],
        created_at=from_unix(fields["createdAt"]),
        end_time=from_unix(fields["endTime"]),
        status=status,
        resolved_outcome=(
            int(fields["resolvedOutcome"]) if status == MarketStatus.RESOLVED else None
        ),
    )


def decode_event(name: LedgerEventName, log: Any) -> LedgerEvent:
    args = log["args"]
    outcome = int(args["outcome"]) if name == LedgerEventName.MARKET_RESOLVED else None
    tx_hash = log.get("transactionHash")
    return LedgerEvent(
        name=name,
        chain_id=int(args["marketId"]),
        block_number=int(log["blockNumber"]),
        outcome=outcome,
        tx_hash=AsyncWeb3.to_hex(tx_hash) if tx_hash is not None else None,
    )


class Web3LedgerClient:
    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        private_key: str | None = None,
        *,
        poll_interval: float = 5.0,
        start_block: int | None = None,
    ) -> None:
        self._w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        self._contract = self._w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(contract_address),
            abi=MARKET_FACTORY_ABI,
        )
        self._account = self._w3.eth.account.from_key(private_key) if private_key else None
        self._poll_interval = poll_interval
        self._start_block = start_block

    @property
    def can_submit(self) -> bool:
        return self._account is not None

    @property
    def submitter_address(self) -> str | None:
        return self._account.address if self._account else None

    async def _rpc(self, awaitable: Any, what: str) -> Any:
        """Bound a single RPC round-trip and normalize its failures."""
        try:
            return await asyncio.wait_for(awaitable, timeout=_RPC_TIMEOUT)
        except ContractLogicError as e:
            raise LedgerRejectedError(f"{what}: {e}") from e
        except LedgerError:
            raise
        except asyncio.TimeoutError as e:
            raise LedgerUnavailableError(f"{what}: RPC timed out") from e
        except Exception as e:
            raise LedgerUnavailableError(f"{what}: {e}") from e

    # --- reads ---

    async def read_market(self, chain_id: int) -> LedgerMarket:
        raw = await self._rpc(
            self._contract.functions.getMarket(chain_id).call(), f"getMarket({chain_id})"
        )
        return decode_market_struct(raw)

    # --- writes ---

    async def _submit(self, fn: Any, action: str, chain_id: int) -> TxHandle:
        if self._account is None:
            raise LedgerNotConfiguredError()
        sender = self._account.address
        nonce = await self._rpc(
            self._w3.eth.get_transaction_count(sender, "pending"), "get_transaction_count"
        )
        # build_transaction runs eth_estimateGas, so a call that would revert
        # is rejected here without spending gas
        tx = await self._rpc(
            fn.build_transaction({"from": sender, "nonce": nonce}), f"{action}({chain_id})"
        )
        signed = self._account.sign_transaction(tx)
        tx_hash = await self._rpc(
            self._w3.eth.send_raw_transaction(signed.raw_transaction), f"send {action}"
        )
        handle = TxHandle(tx_hash=AsyncWeb3.to_hex(tx_hash), action=action, chain_id=chain_id)
        logger.info("Submitted %s for chain_id=%d: %s", action, chain_id, handle.tx_hash)
        return handle

    async def submit_close(self, chain_id: int) -> TxHandle:
        return await self._submit(
            self._contract.functions.closeMarket(chain_id), "closeMarket", chain_id
        )

    async def submit_resolve(self, chain_id: int, outcome_index: int) -> TxHandle:
        return await self._submit(
            self._contract.functions.resolveMarket(chain_id, outcome_index),
            "resolveMarket",
            chain_id,
        )

    async def wait_for_confirmation(self, tx: TxHandle, timeout: float) -> TxReceipt:
        try:
            receipt = await self._w3.eth.wait_for_transaction_receipt(
                tx.tx_hash, timeout=timeout
            )
        except TimeExhausted as e:
            raise LedgerTimeoutError(tx.tx_hash, timeout) from e
        except Exception as e:
            raise LedgerUnavailableError(f"receipt for {tx.tx_hash}: {e}") from e

        result = TxReceipt(
            tx_hash=tx.tx_hash,
            block_number=int(receipt["blockNumber"]),
            success=receipt["status"] == 1,
            gas_used=int(receipt["gasUsed"]),
        )
        if not result.success:
            raise LedgerRejectedError(f"{tx.action}({tx.chain_id}) reverted in {tx.tx_hash}")
        logger.info(
            "Confirmed %s for chain_id=%d in block %d (gas used: %d)",
            tx.action, tx.chain_id, result.block_number, result.gas_used,
        )
        return result

    # --- events ---

    async def fetch_events(
        self,
        event_names: Sequence[LedgerEventName],
        from_block: int,
        to_block: int,
    ) -> list[LedgerEvent]:
        events: list[LedgerEvent] = []
        for name in event_names:
            event_cls = getattr(self._contract.events, name.value)
            logs = await self._rpc(
                event_cls().get_logs(from_block=from_block, to_block=to_block),
                f"get_logs {name.value}",
            )
            events.extend(decode_event(name, log) for log in logs)
        # Apply in chain order regardless of which filter produced them
        events.sort(key=lambda e: e.block_number)
        return events

    async def subscribe(
        self,
        event_names: Sequence[LedgerEventName],
        callback: EventCallback,
        checkpoint: SyncCheckpoint,
    ) -> None:
        logger.info("Watching %s", ", ".join(n.value for n in event_names))
        while True:
            try:
                head = await self._rpc(self._w3.eth.block_number, "block_number")
                if checkpoint.event_cursor is None:
                    checkpoint.event_cursor = (
                        self._start_block if self._start_block is not None else head
                    )
                from_block = checkpoint.event_cursor
                if head >= from_block:
                    to_block = min(head, from_block + _MAX_BLOCK_SPAN - 1)
                    for event in await self.fetch_events(event_names, from_block, to_block):
                        try:
                            await callback(event)
                        except Exception:
                            logger.exception("Event handler failed for %s", event)
                    checkpoint.event_cursor = to_block + 1
            except LedgerError as e:
                logger.warning("Event poll failed, retrying next interval: %s", e.message)
            await asyncio.sleep(self._poll_interval)
