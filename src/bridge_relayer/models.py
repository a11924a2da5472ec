"""
Shared data models for the bridge relayer.

This module contains data classes and types used across the relayer components.
"""

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar


class Direction(str, Enum):
    """Bridge direction of an observed event."""
    LOCK = "lock"  # lock on source, mint on destination
    UNLOCK = "unlock"  # burn on source, release on destination


class TransferStatus(str, Enum):
    PENDING = "pending"
    RELAYED = "relayed"


class RelayOutcome(str, Enum):
    """Result of one Relay Processor invocation."""
    RELAYED = "relayed"
    ALREADY_RELAYED = "already_relayed"
    ALREADY_PROCESSED = "already_processed"  # destination reported the nonce as used
    SKIPPED_CONFIG = "skipped_config"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class BridgeEvent:
    """An event observed on a source chain that requests a cross-chain effect.

    Attributes:
        source_chain_id: Chain the event was emitted on
        sender: Address that locked or burned
        recipient: Address to credit on the destination chain
        amount: Amount in the smallest unit
        destination_chain_id: Chain the effect is requested on
        nonce: Per-event sequence number assigned by the source contract
        source_tx_hash: 0x-prefixed lowercase transaction hash
        block_number: Block the event was emitted in
        log_index: Position of the log in the block
    """
    direction: ClassVar[Direction]

    source_chain_id: int
    sender: str
    recipient: str
    amount: int
    destination_chain_id: int
    nonce: int
    source_tx_hash: str
    block_number: int = 0
    log_index: int = 0

    @property
    def key(self) -> tuple[int, str, int]:
        """Natural replay-protection key."""
        return (self.source_chain_id, self.source_tx_hash, self.nonce)


@dataclass(frozen=True, slots=True)
class LockEvent(BridgeEvent):
    """`Locked` event from a bridge lock contract; completed by a mint."""
    direction: ClassVar[Direction] = Direction.LOCK


@dataclass(frozen=True, slots=True)
class UnlockEvent(BridgeEvent):
    """`UnlockRequested` event from a wrapped token; completed by a release."""
    direction: ClassVar[Direction] = Direction.UNLOCK


@dataclass(frozen=True, slots=True)
class TransferRecord:
    """Durable state of one relay attempt, as stored in the idempotency store."""
    direction: Direction
    source_chain_id: int
    source_tx_hash: str
    nonce: int
    recipient: str
    amount: int
    destination_chain_id: int
    status: TransferStatus
    destination_tx_hash: str | None
    created_at: int
    attempts: int = 0
    last_error: str | None = None

    @property
    def is_relayed(self) -> bool:
        return self.status is TransferStatus.RELAYED
