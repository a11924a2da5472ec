"""
Bridge relayer implementation.

This module contains the relayer service that wires chain connections, the
idempotency store, the per-chain pollers and the relay processor together,
and exposes the continuous, triggered and manual modes of operation.
"""

import asyncio
import logging
from typing import Any

from eth_account.signers.local import LocalAccount

from .chain import ChainConnection, ChainConnectionError
from .config import RelayerConfig
from .models import Direction, RelayOutcome, TransferRecord
from .processor import RelayProcessor
from .scanner import ChainPoller, EventScanner
from .signer import LocalKeySigner, RoflKeyProvider, Signer
from .status import StatusQuery, wait_for_relay
from .store import IdempotencyStore
from .utils.blockchain_encoder import BlockchainEncoder

logger = logging.getLogger(__name__)

ALL_CHAINS = "all"


class BridgeRelayer:
    """
    Relayer service that orchestrates scanning and relaying on both chains.

    Scanning and relay logic live in ``ChainPoller`` and ``RelayProcessor``;
    this class owns their lifecycle and the entry points callers use.
    """

    STATUS_LOG_INTERVAL = 30  # seconds

    def __init__(
        self,
        config: RelayerConfig,
        signer: Signer,
        account: LocalAccount | None = None,
        store: IdempotencyStore | None = None,
        connections: dict[int, ChainConnection] | None = None,
    ) -> None:
        """
        Initialize the bridge relayer.

        Args:
            config: Relayer configuration
            signer: Authorizes relay digests
            account: Key that pays for and submits destination transactions
            store: Idempotency store (opened from config.database_url if omitted)
            connections: Connection per chain id (built from config if omitted)
        """
        self.config = config
        self.signer = signer
        self.running = False

        self.store = store or IdempotencyStore(config.database_url)
        self.connections = connections or {
            chain.chain_id: ChainConnection(
                chain,
                request_timeout=config.monitoring.request_timeout,
                tx_timeout=config.monitoring.tx_timeout,
                account=account,
            )
            for chain in config.chains
        }

        self.processor = RelayProcessor(self.store, signer, self.connections, config)
        self.pollers: dict[int, ChainPoller] = {
            chain_id: self._build_poller(chain_id) for chain_id in config.chain_ids
        }
        self.status_query = StatusQuery(self.store)

        # Async coordination
        self.shutdown_event = asyncio.Event()
        self._background: set[asyncio.Task] = set()

    def _build_poller(self, chain_id: int) -> ChainPoller:
        chain = self.config.chain(chain_id)
        other = self.config.counterpart(chain_id)
        connection = self.connections[chain_id]

        scanners = [EventScanner(connection, Direction.LOCK, chain.bridge_lock_address)]
        wrapped = self.config.wrapped_token(chain_id, other)
        if wrapped:
            scanners.append(EventScanner(connection, Direction.UNLOCK, wrapped))
        else:
            logger.warning(
                f"No wrapped token configured on {chain.name} for chain {other}, "
                f"unlocks from {chain.name} will not be scanned"
            )

        return ChainPoller(
            connection,
            scanners,
            self.processor.process,
            lookback_blocks=self.config.monitoring.lookback_blocks,
        )

    @classmethod
    async def create(cls, config: RelayerConfig) -> "BridgeRelayer":
        """
        Create a relayer, obtaining the relayer key for the configured mode.

        Local mode uses RELAYER_PRIVATE_KEY; ROFL mode asks the ROFL app
        daemon for the key registered under ``config.rofl_key_id``.
        """
        if config.local_mode:
            signer = LocalKeySigner(config.private_key)
        else:
            signer = await RoflKeyProvider().signer(config.rofl_key_id)

        logger.info(f"Relayer address: {signer.address} ({'local' if config.local_mode else 'ROFL'} key)")
        return cls(config, signer, account=signer.account)

    @classmethod
    async def from_env(cls, local_mode: bool = False) -> "BridgeRelayer":
        """
        Create a BridgeRelayer instance from environment variables.

        Args:
            local_mode: Sign with RELAYER_PRIVATE_KEY instead of a ROFL key

        Returns:
            Configured BridgeRelayer instance

        Raises:
            ValueError: If required environment variables are missing
        """
        config = RelayerConfig.from_env(local_mode=local_mode)
        config.log_config()
        return await cls.create(config)

    def _select_chains(self, trigger: int | str) -> list[int]:
        if trigger == ALL_CHAINS:
            return list(self.pollers)
        try:
            chain_id = int(trigger)
        except (TypeError, ValueError):
            chain_id = None
        if chain_id in self.pollers:
            return [chain_id]
        logger.warning(f"Unknown trigger {trigger!r}, scanning all chains")
        return list(self.pollers)

    async def run_once(self, trigger: int | str = ALL_CHAINS, lookback: int | None = None) -> dict[int, int | None]:
        """
        Scan the selected chains once, re-covering the look-back window.

        Args:
            trigger: Chain id to scan, or "all"
            lookback: Blocks below the head to re-scan (defaults to LOOKBACK_BLOCKS)

        Returns:
            Events handled per chain id (None where the chain was unreachable)
        """
        if lookback is None:
            lookback = self.config.monitoring.lookback_blocks
        results: dict[int, int | None] = {}
        for chain_id in self._select_chains(trigger):
            poller = self.pollers[chain_id]
            try:
                results[chain_id] = await poller.poll_once(lookback=lookback, wait=True)
            except ChainConnectionError as e:
                logger.error(f"[{poller.name}] Triggered scan failed: {e}")
                results[chain_id] = None
        return results

    async def relay_transaction(self, tx_hash: str) -> list[RelayOutcome]:
        """
        Relay the bridge events of one known source transaction.

        The receipt is looked up on every configured chain; logs emitted by
        the configured bridge lock or wrapped token contracts are decoded and
        processed.

        Args:
            tx_hash: Source transaction hash

        Returns:
            One outcome per bridge event found; empty if there was none
        """
        tx_hash = BlockchainEncoder.normalize_tx_hash(tx_hash)
        outcomes: list[RelayOutcome] = []

        for poller in self.pollers.values():
            try:
                receipt = await asyncio.to_thread(poller.connection.get_transaction_receipt, tx_hash)
            except ChainConnectionError as e:
                logger.warning(f"[{poller.name}] Could not fetch receipt for {tx_hash}: {e}")
                continue
            if receipt is None:
                continue

            logger.info(f"[{poller.name}] Found {tx_hash} in block {receipt['blockNumber']}")
            outcomes.extend(await poller.process_receipt(receipt))

        if not outcomes:
            logger.warning(f"No bridge event found in {tx_hash}")
        return outcomes

    def notify(self, source_chain_id: int | str = ALL_CHAINS) -> asyncio.Task:
        """
        Schedule triggered scans in the background without waiting for them.

        One pass runs immediately and one at each re-trigger offset, covering
        the time a fresh lock or unlock needs to show up at the RPC head.

        Args:
            source_chain_id: Chain a transaction was just submitted on;
                unknown ids scan all chains

        Returns:
            The background task running the schedule
        """
        trigger = source_chain_id if source_chain_id in self.pollers else ALL_CHAINS
        task = asyncio.create_task(self._trigger_schedule(trigger))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _trigger_schedule(self, trigger: int | str) -> None:
        elapsed = 0
        for offset in (0, *sorted(self.config.monitoring.retrigger_offsets)):
            await asyncio.sleep(offset - elapsed)
            elapsed = offset
            try:
                await self.run_once(trigger)
            except Exception as e:
                logger.error(f"Triggered scan for {trigger} failed: {e}", exc_info=True)

    def status(self, source_chain_id: int, source_tx_hash: str) -> dict[str, Any]:
        """Relay status of a source transaction (see ``StatusQuery.status``)."""
        return self.status_query.status(source_chain_id, source_tx_hash)

    async def wait_for_relay(self, source_chain_id: int, source_tx_hash: str, retrigger: bool = True) -> dict[str, Any]:
        """Poll the status of a source transaction, re-triggering a scan of its chain."""
        return await wait_for_relay(
            self.status_query,
            source_chain_id,
            source_tx_hash,
            retrigger=(lambda: self.run_once(source_chain_id)) if retrigger else None,
        )

    def pending(self) -> list[TransferRecord]:
        """Records still waiting for a successful relay."""
        return self.store.list_pending()

    async def _periodic_status_logger(self) -> None:
        """Log status periodically while running."""
        while self.running:
            await asyncio.sleep(self.STATUS_LOG_INTERVAL)
            stats = self.processor.get_stats()
            records = stats['records']
            pending = records['lock_pending'] + records['unlock_pending']
            if pending > 0:
                logger.info(
                    f"Status: {pending} transfers pending, "
                    f"{records['lock_relayed']} mints and {records['unlock_relayed']} releases relayed"
                )

    async def _check_task_health(self, tasks: dict[str, asyncio.Task]) -> bool:
        """Check if any critical task has failed."""
        for name, task in tasks.items():
            if task.done() and name != "status":  # status task can end normally
                try:
                    await task
                except Exception as e:
                    logger.error(f"{name} task failed: {e}", exc_info=True)
                return False
        return True

    async def _cleanup_tasks(self, tasks: dict[str, asyncio.Task]) -> None:
        """Stop pollers and cancel running and background tasks."""
        for poller in self.pollers.values():
            await poller.stop()

        pending = [task for task in (*tasks.values(), *self._background) if not task.done()]
        for task in pending:
            task.cancel()
        # Cancelled tasks end with CancelledError, collected here
        await asyncio.gather(*pending, return_exceptions=True)

    async def run(self) -> None:
        """Continuous mode: poll every chain on a fixed interval until stopped."""
        self.running = True
        interval = self.config.monitoring.polling_interval
        logger.info("Bridge Relayer starting...")
        logger.info(f"Polling interval: {interval}s")
        logger.info(f"Lookback blocks: {self.config.monitoring.lookback_blocks}")

        tasks: dict[str, asyncio.Task] = {}
        try:
            tasks = {
                poller.name: asyncio.create_task(poller.start_polling(interval=interval))
                for poller in self.pollers.values()
            }
            tasks["status"] = asyncio.create_task(self._periodic_status_logger())

            logger.info("Event monitoring started, waiting for events...")

            # Wait until shutdown or task failure
            while self.running:
                try:
                    await asyncio.wait_for(self.shutdown_event.wait(), timeout=1.0)
                    break  # Shutdown requested
                except asyncio.TimeoutError:
                    pass

                if not await self._check_task_health(tasks):
                    logger.error("Critical task failure, shutting down")
                    break

        except Exception as e:
            logger.error(f"Error in main loop: {e}", exc_info=True)
            raise
        finally:
            self.running = False
            await self._cleanup_tasks(tasks)
            logger.info("Bridge Relayer stopped")

    def stop(self) -> None:
        """Stop the relayer service."""
        self.running = False
        self.shutdown_event.set()

    def close(self) -> None:
        """Release the store connection pool."""
        self.store.close()

    def get_status(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "relayer_address": self.signer.address,
            "chains": {chain_id: poller.get_status() for chain_id, poller in self.pollers.items()},
            "stats": self.processor.get_stats(),
        }
