"""
Polling-based event scanning for both bridge directions.

Each ``EventScanner`` watches one event on one contract of one chain and owns
its cursor (last scanned block). A ``ChainPoller`` groups the lock and unlock
scanners of a chain behind a re-entrancy guard and feeds decoded events to
the relay processor in log order.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from eth_abi.exceptions import DecodingError
from web3 import Web3
from web3.exceptions import LogTopicError, MismatchedABI
from web3.types import EventData, LogReceipt, TxReceipt

from .chain import ChainConnection, ChainConnectionError, get_contract_abi
from .models import BridgeEvent, Direction, LockEvent, UnlockEvent
from .utils.blockchain_encoder import BlockchainEncoder

logger = logging.getLogger(__name__)

# (ABI artifact, event name, event signature, event type) per direction
EVENT_SOURCES: dict[Direction, tuple[str, str, str, type[BridgeEvent]]] = {
    Direction.LOCK: (
        "BridgeLock",
        "Locked",
        "Locked(address,address,uint256,uint256,uint256)",
        LockEvent,
    ),
    Direction.UNLOCK: (
        "WrappedToken",
        "UnlockRequested",
        "UnlockRequested(address,address,uint256,uint256,uint256)",
        UnlockEvent,
    ),
}

DECODE_ERRORS = (MismatchedABI, LogTopicError, DecodingError, KeyError, TypeError, ValueError)


def plan_range(last_scanned: int, head: int) -> tuple[int, int] | None:
    """
    Block range still to scan, or None if the head has not advanced.

    Args:
        last_scanned: Last block already covered
        head: Current chain head

    Returns:
        Inclusive (from_block, to_block), or None for an empty range
    """
    from_block = last_scanned + 1
    if from_block > head:
        return None
    return (from_block, head)


def lookback_start(head: int, lookback: int) -> int:
    """Cursor value that makes the next scan re-cover the last ``lookback`` blocks."""
    return max(0, head - lookback)


def decode_event(direction: Direction, source_chain_id: int, event: EventData) -> BridgeEvent:
    """
    Build a typed bridge event from decoded log data.

    Raises:
        KeyError, TypeError, ValueError: If a field is missing or malformed
    """
    args = event['args']
    event_type = EVENT_SOURCES[direction][3]
    return event_type(
        source_chain_id=source_chain_id,
        sender=Web3.to_checksum_address(args['sender']),
        recipient=Web3.to_checksum_address(args['recipient']),
        amount=int(args['amount']),
        destination_chain_id=int(args['destinationChainId']),
        nonce=int(args['nonce']),
        source_tx_hash=BlockchainEncoder.normalize_tx_hash(event['transactionHash']),
        block_number=int(event['blockNumber']),
        log_index=int(event['logIndex']),
    )


class EventScanner:
    """Incremental scanner for one event signature on one contract."""

    def __init__(
        self,
        connection: ChainConnection,
        direction: Direction,
        contract_address: str,
    ) -> None:
        """
        Args:
            connection: Connection to the chain the events are emitted on
            direction: LOCK scans Locked on the bridge lock contract,
                UNLOCK scans UnlockRequested on the wrapped token
            contract_address: Address of the emitting contract
        """
        self.connection = connection
        self.direction = direction
        self.contract_address = Web3.to_checksum_address(contract_address)

        contract_name, self.event_name, signature, _ = EVENT_SOURCES[direction]
        self.topic = Web3.keccak(text=signature)

        # Decoding needs only the ABI, not a provider
        contract = Web3().eth.contract(address=self.contract_address, abi=get_contract_abi(contract_name))
        self.event_obj = getattr(contract.events, self.event_name)()

        self.cursor: int | None = None

    @property
    def source_chain_id(self) -> int:
        return self.connection.chain_id

    def matches(self, log: LogReceipt) -> bool:
        """Whether a raw log was emitted by this scanner's contract and event."""
        topics = log.get('topics') or []
        if not topics or log.get('address') is None:
            return False
        return (
            Web3.to_checksum_address(log['address']) == self.contract_address
            and BlockchainEncoder.to_bytes_safe(topics[0]) == bytes(self.topic)
        )

    def decode_logs(self, logs: Iterable[LogReceipt]) -> list[BridgeEvent]:
        """
        Decode raw logs in block and log order; undecodable logs are skipped.

        Args:
            logs: Raw logs for this scanner's event

        Returns:
            Decoded events
        """
        events: list[BridgeEvent] = []
        ordered = sorted(logs, key=lambda log: (log.get('blockNumber', 0), log.get('logIndex', 0)))
        for log in ordered:
            try:
                decoded = self.event_obj.process_log(log)
                events.append(decode_event(self.direction, self.source_chain_id, decoded))
            except DECODE_ERRORS as e:
                logger.warning(
                    f"[{self.connection.name}] Skipping undecodable {self.event_name} log "
                    f"in tx {log.get('transactionHash')!r}: {e}"
                )
        return events

    async def fetch(self, from_block: int, to_block: int) -> list[BridgeEvent]:
        """Query and decode this scanner's events in an inclusive block range."""
        logs = await asyncio.to_thread(
            self.connection.get_logs,
            self.contract_address,
            self.topic,
            from_block,
            to_block,
        )
        events = self.decode_logs(logs)
        if events:
            logger.info(
                f"[{self.connection.name}] Found {len(events)} {self.event_name} events "
                f"in blocks {from_block}-{to_block}"
            )
        return events

    def get_status(self) -> dict[str, Any]:
        return {
            "direction": self.direction.value,
            "event_name": self.event_name,
            "contract_address": self.contract_address,
            "cursor": self.cursor,
        }


class ChainPoller:
    """
    Drives the scanners of one chain.

    A pass reads the head once, then for each scanner queries the pending
    range, hands every event to ``process`` in order, and advances the cursor
    to the head whether or not the events were relayed successfully. Only a
    failed log query leaves the cursor where it was.
    """

    def __init__(
        self,
        connection: ChainConnection,
        scanners: list[EventScanner],
        process: Callable[[BridgeEvent], Awaitable[Any]],
        lookback_blocks: int = 20,
    ) -> None:
        """
        Args:
            connection: Connection to the scanned chain
            scanners: Scanners for this chain, scanned in list order
            process: Coroutine invoked for every decoded event
            lookback_blocks: Window used to initialize cursors that are unset
        """
        self.connection = connection
        self.scanners = scanners
        self.process = process
        self.lookback_blocks = lookback_blocks

        self.is_running = False
        self._guard = asyncio.Lock()

    @property
    def name(self) -> str:
        return self.connection.name

    @property
    def is_scanning(self) -> bool:
        return self._guard.locked()

    async def poll_once(self, lookback: int | None = None, wait: bool = False) -> int | None:
        """
        Run one scan pass over every scanner of this chain.

        Args:
            lookback: Also re-cover this many blocks below the head
                (triggered runs); None scans only from the cursor onwards
            wait: Wait for a scan already in progress instead of skipping

        Returns:
            Number of events handed to the processor, or None if skipped

        Raises:
            ChainConnectionError: If the head cannot be read
        """
        if not wait and self._guard.locked():
            logger.debug(f"[{self.name}] Scan already in progress, skipping tick")
            return None

        async with self._guard:
            head = await asyncio.to_thread(self.connection.block_number)
            total = 0
            for scanner in self.scanners:
                total += await self._scan(scanner, head, lookback)
            return total

    async def _scan(self, scanner: EventScanner, head: int, lookback: int | None) -> int:
        cursor = scanner.cursor
        if cursor is None:
            start = lookback_start(head, lookback if lookback is not None else self.lookback_blocks)
        elif lookback is not None:
            start = min(cursor, lookback_start(head, lookback))
        else:
            start = cursor

        block_range = plan_range(start, head)
        if block_range is None:
            # Head did not advance; follow it down only if it regressed
            scanner.cursor = head if cursor is None else min(cursor, head)
            if cursor is not None and head < cursor:
                logger.warning(f"[{self.name}] Head regressed from {cursor} to {head}")
            return 0

        try:
            events = await scanner.fetch(*block_range)
        except ChainConnectionError as e:
            logger.warning(f"[{self.name}] {scanner.event_name} query failed, cursor stays at {cursor}: {e}")
            return 0

        for event in events:
            try:
                await self.process(event)
            except Exception as e:
                logger.error(
                    f"[{self.name}] Error relaying {event.source_tx_hash} nonce {event.nonce}: {e}",
                    exc_info=True,
                )

        scanner.cursor = head
        return len(events)

    async def process_receipt(self, receipt: TxReceipt) -> list[Any]:
        """
        Process the bridge events found in one transaction receipt.

        Runs under the same guard as scan passes, so a manual relay never
        submits an event concurrently with a poll of this chain.

        Returns:
            Result of ``process`` for every decoded event, in log order
        """
        results: list[Any] = []
        async with self._guard:
            for scanner in self.scanners:
                logs = [log for log in receipt['logs'] if scanner.matches(log)]
                for event in scanner.decode_logs(logs):
                    results.append(await self.process(event))
        return results

    async def start_polling(self, interval: int = 12) -> None:
        """
        Poll at a fixed interval until stopped.

        Args:
            interval: Polling interval in seconds
        """
        if self.is_running:
            logger.warning(f"[{self.name}] Polling already running")
            return

        self.is_running = True
        logger.info(
            f"[{self.name}] Starting polling for "
            f"{', '.join(scanner.event_name for scanner in self.scanners)} every {interval} seconds"
        )

        while self.is_running:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                logger.info(f"[{self.name}] Polling cancelled")
                raise
            except ChainConnectionError as e:
                logger.warning(f"[{self.name}] {e}; retrying next tick")
            except Exception as e:
                logger.error(f"[{self.name}] Error in polling loop: {e}", exc_info=True)
            await asyncio.sleep(interval)

    async def stop(self) -> None:
        """Stop the polling loop."""
        logger.info(f"[{self.name}] Stopping polling")
        self.is_running = False

    def get_status(self) -> dict[str, Any]:
        return {
            "is_running": self.is_running,
            "is_scanning": self.is_scanning,
            "chain": self.connection.get_status(),
            "scanners": [scanner.get_status() for scanner in self.scanners],
        }
