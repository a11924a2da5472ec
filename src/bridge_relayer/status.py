"""
Read-only relay status for a source transaction.

Clients that just submitted a lock or unlock poll ``StatusQuery.status``
until it reports ``relayed``; ``wait_for_relay`` packages that loop with the
usual cadence and optional re-triggers of the relayer.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Collection
from typing import Any

from .models import TransferStatus
from .store import IdempotencyStore
from .utils.blockchain_encoder import BlockchainEncoder

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 2  # seconds
DEFAULT_MAX_ATTEMPTS = 90
DEFAULT_RETRIGGER_AT: tuple[int, ...] = (3, 8, 15, 25, 40)


class StatusQuery:
    """Looks up relay progress in the idempotency store."""

    def __init__(self, store: IdempotencyStore) -> None:
        self.store = store

    def status(self, source_chain_id: int, source_tx_hash: str) -> dict[str, Any]:
        """
        Relay status of a source transaction.

        Args:
            source_chain_id: Chain the lock or unlock happened on
            source_tx_hash: Transaction hash on that chain

        Returns:
            ``{"status": "pending"}`` when nothing is known, otherwise
            ``{"status", "destinationTxHash", "type"}`` of the highest-nonce record
        """
        tx_hash = BlockchainEncoder.normalize_tx_hash(source_tx_hash)
        record = self.store.latest_for_source_tx(source_chain_id, tx_hash)
        if record is None:
            return {"status": TransferStatus.PENDING.value}

        result: dict[str, Any] = {
            "status": record.status.value,
            "type": record.direction.value,
        }
        if record.destination_tx_hash:
            result["destinationTxHash"] = record.destination_tx_hash
        return result


async def wait_for_relay(
    query: StatusQuery,
    source_chain_id: int,
    source_tx_hash: str,
    interval: float = DEFAULT_POLL_INTERVAL,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    retrigger: Callable[[], Awaitable[Any]] | None = None,
    retrigger_at: Collection[int] = DEFAULT_RETRIGGER_AT,
) -> dict[str, Any]:
    """
    Poll the status of a source transaction until it is relayed or attempts run out.

    Args:
        query: Status query over the store
        source_chain_id: Chain the transaction happened on
        source_tx_hash: Source transaction hash
        interval: Seconds between polls
        max_attempts: Maximum number of polls
        retrigger: Optional hook nudging the relayer
        retrigger_at: Attempt numbers (1-based) at which the hook is called

    Returns:
        The last status seen
    """
    result: dict[str, Any] = {"status": TransferStatus.PENDING.value}
    for attempt in range(1, max_attempts + 1):
        result = query.status(source_chain_id, source_tx_hash)
        if result["status"] == TransferStatus.RELAYED.value:
            return result

        if retrigger is not None and attempt in retrigger_at:
            logger.info(f"Still pending after {attempt} polls, re-triggering relayer")
            await retrigger()

        if attempt < max_attempts:
            await asyncio.sleep(interval)

    logger.warning(f"Gave up waiting for {source_tx_hash} after {max_attempts} polls")
    return result
