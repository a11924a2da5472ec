"""
Relay processor for observed bridge events.

Turns one ``LockEvent`` or ``UnlockEvent`` into at most one destination
effect: look the event up in the idempotency store, record it as pending,
resolve the destination contract, sign the authorization digest, submit
``mint``/``release`` and mark the record relayed. Every failure leaves the
record pending so a later scan retries it.
"""

import asyncio
import logging
from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from web3.exceptions import ContractLogicError

from .chain import ChainConnection
from .config import RelayerConfig
from .models import BridgeEvent, Direction, RelayOutcome
from .signer import Signer, event_digest
from .store import IdempotencyStore
from .utils.blockchain_encoder import BlockchainEncoder

logger = logging.getLogger(__name__)

# Revert reasons meaning the destination already consumed this nonce
ALREADY_PROCESSED_MARKERS: tuple[str, ...] = (
    "already processed",
    "already relayed",
    "already minted",
    "already released",
    "nonce used",
    "nonce already",
)


def is_already_processed(error: ContractLogicError) -> bool:
    """Whether a revert reports that the source event was already executed."""
    reason = f"{error} {getattr(error, 'message', None) or ''}".lower()
    return any(marker in reason for marker in ALREADY_PROCESSED_MARKERS)


@dataclass(frozen=True, slots=True)
class RelayTarget:
    """Where and how an event's effect is executed."""
    connection: ChainConnection
    contract_address: str
    contract_name: str
    function_name: str


class RelayProcessor:
    """Executes each bridge event at most once on its destination chain."""

    def __init__(
        self,
        store: IdempotencyStore,
        signer: Signer,
        connections: Mapping[int, ChainConnection],
        config: RelayerConfig,
    ) -> None:
        """
        Args:
            store: Idempotency store shared by both directions
            signer: Capability that authorizes digests
            connections: Write-capable connection per chain id
            config: Relayer configuration (contract addresses)
        """
        self.store = store
        self.signer = signer
        self.connections = connections
        self.config = config
        self.outcomes: Counter[RelayOutcome] = Counter()

    def resolve_target(self, event: BridgeEvent) -> RelayTarget | None:
        """
        Destination contract and connection for an event.

        Returns:
            The target, or None if the destination is not configured
        """
        destination = event.destination_chain_id
        if destination == event.source_chain_id:
            return None

        connection = self.connections.get(destination)
        chain = self.config.chain(destination)
        if connection is None or chain is None:
            return None

        match event.direction:
            case Direction.LOCK:
                wrapped = self.config.wrapped_token(destination, event.source_chain_id)
                if wrapped is None:
                    return None
                return RelayTarget(connection, wrapped, "WrappedToken", "mint")
            case Direction.UNLOCK:
                return RelayTarget(connection, chain.bridge_lock_address, "BridgeLock", "release")

    async def process(self, event: BridgeEvent) -> RelayOutcome:
        """
        Relay one event unless it was already relayed.

        Args:
            event: Decoded lock or unlock event

        Returns:
            What happened to the event
        """
        outcome = await self._process(event)
        self.outcomes[outcome] += 1
        return outcome

    async def _process(self, event: BridgeEvent) -> RelayOutcome:
        label = f"{event.direction.value} {event.source_tx_hash[:10]}... nonce {event.nonce}"

        existing = self.store.get(event.direction, *event.key)
        if existing is not None and existing.is_relayed:
            logger.debug(f"Skipping {label}: already relayed in {existing.destination_tx_hash}")
            return RelayOutcome.ALREADY_RELAYED

        if existing is None and self.store.insert_pending(event):
            logger.info(
                f"New {label} from chain {event.source_chain_id}: "
                f"{event.amount} to {event.recipient} on chain {event.destination_chain_id}"
            )

        target = self.resolve_target(event)
        if target is None:
            error = ValueError(
                f"No destination configured for chain {event.source_chain_id} -> {event.destination_chain_id}"
            )
            return self._record_failure(event, label, error, RelayOutcome.SKIPPED_CONFIG)

        try:
            signature = self.signer.sign_digest(event_digest(event))
            tx_hash = await asyncio.to_thread(
                target.connection.send_transaction,
                target.contract_address,
                target.contract_name,
                target.function_name,
                event.recipient,
                event.amount,
                event.source_chain_id,
                BlockchainEncoder.to_bytes32(event.source_tx_hash),
                event.nonce,
                signature.v,
                signature.r,
                signature.s,
            )
        except ContractLogicError as e:
            if is_already_processed(e):
                logger.info(f"{label} already executed on chain {event.destination_chain_id}, marking relayed")
                self.store.mark_relayed(event.direction, *event.key, None)
                return RelayOutcome.ALREADY_PROCESSED
            return self._record_failure(event, label, e)
        except Exception as e:
            return self._record_failure(event, label, e)

        self.store.mark_relayed(event.direction, *event.key, tx_hash)
        logger.info(
            f"Relayed {label}: {target.function_name} on {target.connection.name} in {tx_hash}"
        )
        return RelayOutcome.RELAYED

    def _record_failure(
        self,
        event: BridgeEvent,
        label: str,
        error: Exception,
        outcome: RelayOutcome = RelayOutcome.FAILED,
    ) -> RelayOutcome:
        attempts = self.store.record_failure(event.direction, *event.key, f"{type(error).__name__}: {error}")
        threshold = self.config.monitoring.failure_alert_threshold
        if attempts == threshold:
            logger.error(
                f"{label} failed {attempts} times and needs operator attention: {error}",
                exc_info=error,
            )
        else:
            logger.warning(f"Failed to relay {label} (attempt {attempts}), left pending: {error}")
        return outcome

    def get_stats(self) -> dict[str, Any]:
        """
        Get current processor statistics.

        Returns:
            Outcome counters of this process and record counts from the store
        """
        return {
            "outcomes": {outcome.value: self.outcomes[outcome] for outcome in RelayOutcome},
            "records": self.store.get_stats(),
        }
