"""
Idempotency store for relay attempts.

Two structurally identical tables record lock->mint and unlock->release
attempts. The unique index on (source_chain_id, source_tx_hash, nonce) is the
de-duplication barrier: inserts of an existing key are ignored, so repeated
scans never create a second relay attempt. Rows are never deleted.
"""

import logging
import time
from pathlib import Path

from sqlalchemy import BigInteger, Index, Integer, String, Text, create_engine, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import make_url
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from .models import BridgeEvent, Direction, TransferRecord, TransferStatus

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class TransferColumns:
    """Columns shared by both transfer tables."""
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_chain_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    source_tx_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    recipient: Mapped[str] = mapped_column(String(42), nullable=False)
    amount: Mapped[str] = mapped_column(String(78), nullable=False)  # uint256 as decimal text
    nonce: Mapped[str] = mapped_column(String(78), nullable=False)  # uint256 as decimal text
    destination_chain_id: Mapped[str] = mapped_column(String(78), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=TransferStatus.PENDING.value)
    destination_tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)


class LockTransferRow(TransferColumns, Base):
    __tablename__ = "bridge_transfers"
    __table_args__ = (
        Index("idx_bridge_proof", "source_chain_id", "source_tx_hash", "nonce", unique=True),
        Index("idx_bridge_status", "source_chain_id", "source_tx_hash"),
    )


class UnlockTransferRow(TransferColumns, Base):
    __tablename__ = "bridge_unlock"
    __table_args__ = (
        Index("idx_bridge_unlock_proof", "source_chain_id", "source_tx_hash", "nonce", unique=True),
        Index("idx_bridge_unlock_status", "source_chain_id", "source_tx_hash"),
    )


TransferRow = LockTransferRow | UnlockTransferRow

TABLES: dict[Direction, type[TransferRow]] = {
    Direction.LOCK: LockTransferRow,
    Direction.UNLOCK: UnlockTransferRow,
}


def _to_record(direction: Direction, row: TransferRow) -> TransferRecord:
    return TransferRecord(
        direction=direction,
        source_chain_id=row.source_chain_id,
        source_tx_hash=row.source_tx_hash,
        nonce=int(row.nonce),
        recipient=row.recipient,
        amount=int(row.amount),
        destination_chain_id=int(row.destination_chain_id),
        status=TransferStatus(row.status),
        destination_tx_hash=row.destination_tx_hash,
        created_at=row.created_at,
        attempts=row.attempts,
        last_error=row.last_error,
    )


class IdempotencyStore:
    """Durable relay state keyed by (source chain, source tx hash, nonce)."""

    def __init__(self, database_url: str) -> None:
        """
        Open (and create if needed) the store.

        Args:
            database_url: SQLAlchemy URL; sqlite and postgresql are supported
        """
        url = make_url(database_url)
        if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)

        self.engine = create_engine(url)
        Base.metadata.create_all(self.engine)
        self._session = sessionmaker(self.engine, expire_on_commit=False)

    def close(self) -> None:
        self.engine.dispose()

    def _insert_ignore(self, table: type[TransferRow]):
        match self.engine.dialect.name:
            case "sqlite":
                return sqlite.insert(table).on_conflict_do_nothing()
            case "postgresql":
                return postgresql.insert(table).on_conflict_do_nothing()
            case other:
                raise ValueError(f"Unsupported database dialect for the idempotency store: {other}")

    def get(
        self,
        direction: Direction,
        source_chain_id: int,
        source_tx_hash: str,
        nonce: int,
    ) -> TransferRecord | None:
        """Look up one record by natural key."""
        table = TABLES[direction]
        with self._session() as session:
            row = session.scalars(
                select(table).where(
                    table.source_chain_id == source_chain_id,
                    table.source_tx_hash == source_tx_hash,
                    table.nonce == str(nonce),
                )
            ).first()
            return _to_record(direction, row) if row else None

    def insert_pending(self, event: BridgeEvent) -> bool:
        """
        Record an observed event as pending, ignoring an existing key.

        Returns:
            True if a new row was created
        """
        table = TABLES[event.direction]
        stmt = self._insert_ignore(table).values(
            source_chain_id=event.source_chain_id,
            source_tx_hash=event.source_tx_hash,
            recipient=event.recipient,
            amount=str(event.amount),
            nonce=str(event.nonce),
            destination_chain_id=str(event.destination_chain_id),
            status=TransferStatus.PENDING.value,
            destination_tx_hash=None,
            created_at=int(time.time()),
            attempts=0,
        )
        with self._session.begin() as session:
            result = session.execute(stmt)
            return result.rowcount == 1

    def mark_relayed(
        self,
        direction: Direction,
        source_chain_id: int,
        source_tx_hash: str,
        nonce: int,
        destination_tx_hash: str | None,
    ) -> None:
        """Move a record to relayed. A None hash keeps any hash already stored."""
        table = TABLES[direction]
        values: dict[str, object] = {"status": TransferStatus.RELAYED.value, "last_error": None}
        if destination_tx_hash is not None:
            values["destination_tx_hash"] = destination_tx_hash

        with self._session.begin() as session:
            session.execute(
                update(table)
                .where(
                    table.source_chain_id == source_chain_id,
                    table.source_tx_hash == source_tx_hash,
                    table.nonce == str(nonce),
                )
                .values(**values)
            )

    def record_failure(
        self,
        direction: Direction,
        source_chain_id: int,
        source_tx_hash: str,
        nonce: int,
        error: str,
    ) -> int:
        """
        Note a failed attempt on a pending record.

        Returns:
            Total number of failed attempts for the record
        """
        table = TABLES[direction]
        with self._session.begin() as session:
            row = session.scalars(
                select(table).where(
                    table.source_chain_id == source_chain_id,
                    table.source_tx_hash == source_tx_hash,
                    table.nonce == str(nonce),
                )
            ).first()
            if row is None:
                return 0
            row.attempts += 1
            row.last_error = error[:1000]
            return row.attempts

    def latest_for_source_tx(self, source_chain_id: int, source_tx_hash: str) -> TransferRecord | None:
        """
        Highest-nonce record for a source transaction across both tables.

        The lock table wins a nonce tie.
        """
        latest: TransferRecord | None = None
        with self._session() as session:
            for direction, table in TABLES.items():
                rows = session.scalars(
                    select(table).where(
                        table.source_chain_id == source_chain_id,
                        table.source_tx_hash == source_tx_hash,
                    )
                ).all()
                # Nonces are decimal text, compare them as integers
                for row in rows:
                    if latest is None or int(row.nonce) > latest.nonce:
                        latest = _to_record(direction, row)
        return latest

    def list_pending(self, direction: Direction | None = None) -> list[TransferRecord]:
        """Records that have not been relayed yet, oldest first."""
        directions = [direction] if direction else list(TABLES)
        records: list[TransferRecord] = []
        with self._session() as session:
            for current in directions:
                table = TABLES[current]
                rows = session.scalars(
                    select(table)
                    .where(table.status == TransferStatus.PENDING.value)
                    .order_by(table.created_at, table.id)
                ).all()
                records.extend(_to_record(current, row) for row in rows)
        return sorted(records, key=lambda record: record.created_at)

    def get_stats(self) -> dict[str, int]:
        stats: dict[str, int] = {}
        with self._session() as session:
            for direction, table in TABLES.items():
                for status in TransferStatus:
                    count = session.scalar(
                        select(func.count()).select_from(table).where(table.status == status.value)
                    )
                    stats[f"{direction.value}_{status.value}"] = int(count or 0)
        return stats
