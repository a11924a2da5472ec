"""Configuration management for the bridge relayer.

This module provides type-safe configuration dataclasses with validation
for the lock-mint / burn-release relayer. Configuration is loaded from
environment variables with sensible defaults where appropriate.
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from urllib.parse import urlparse

from web3 import Web3

logger = logging.getLogger(__name__)

SEPOLIA_CHAIN_ID = 11155111
POLKADOT_HUB_CHAIN_ID = 420420417

DEFAULT_SEPOLIA_RPC_URLS: tuple[str, ...] = (
    "https://rpc.sepolia.org",
    "https://ethereum-sepolia-rpc.publicnode.com",
    "https://sepolia.drpc.org",
)
DEFAULT_POLKADOT_HUB_RPC_URLS: tuple[str, ...] = (
    "https://eth-rpc-testnet.polkadot.io",
)

DEFAULT_DATABASE_URL = "sqlite:///.data/bridge.db"


def _checksum(address: str, label: str) -> str:
    if not address:
        raise ValueError(f"{label} is required")
    if not Web3.is_address(address):
        raise ValueError(f"Invalid {label}: {address}")
    return Web3.to_checksum_address(address)


def _split_urls(raw: str | None) -> tuple[str, ...]:
    """Split a comma-separated RPC list, preserving order."""
    if not raw:
        return ()
    return tuple(url.strip() for url in raw.split(",") if url.strip())


@dataclass(frozen=True, slots=True)
class ChainConfig:
    """Configuration for one side of the bridge.

    Attributes:
        chain_id: Numeric EVM chain id
        name: Human readable name used in logs
        rpc_urls: RPC endpoints, tried in order
        bridge_lock_address: Checksummed address of the bridge lock contract
    """

    chain_id: int
    name: str
    rpc_urls: tuple[str, ...]
    bridge_lock_address: str

    def __post_init__(self) -> None:
        """Validate chain configuration."""
        if self.chain_id <= 0:
            raise ValueError(f"Chain id must be positive, got {self.chain_id}")

        if not self.rpc_urls:
            raise ValueError(f"At least one RPC URL is required for {self.name}")

        for url in self.rpc_urls:
            parsed = urlparse(url)
            if parsed.scheme not in ('http', 'https', 'ws', 'wss'):
                raise ValueError(
                    f"Invalid RPC URL scheme for {self.name}: {parsed.scheme}. "
                    "Expected http, https, ws, or wss"
                )

        checksummed = _checksum(self.bridge_lock_address, f"bridge lock address for {self.name}")
        if checksummed != self.bridge_lock_address:
            # Use object.__setattr__ since dataclass is frozen
            object.__setattr__(self, 'bridge_lock_address', checksummed)


@dataclass(frozen=True, slots=True)
class MonitoringConfig:
    """Configuration for polling, look-back and transaction timing."""
    polling_interval: int = 12  # seconds between scans in continuous mode
    lookback_blocks: int = 20  # blocks re-scanned by a triggered run
    request_timeout: int = 10  # liveness check and RPC timeout in seconds
    tx_timeout: int = 120  # seconds to wait for a destination receipt
    retrigger_offsets: tuple[int, ...] = (6, 16, 30, 50, 80)
    failure_alert_threshold: int = 5

    def __post_init__(self) -> None:
        """Validate monitoring configuration."""
        if self.polling_interval <= 0:
            raise ValueError(f"Polling interval must be positive, got {self.polling_interval}")
        if self.polling_interval > 300:
            raise ValueError(f"Polling interval too long (max 300s), got {self.polling_interval}")

        if self.lookback_blocks <= 0:
            raise ValueError(f"Lookback blocks must be positive, got {self.lookback_blocks}")
        if self.lookback_blocks > 1000:
            raise ValueError(f"Lookback blocks too high (max 1000), got {self.lookback_blocks}")

        if self.request_timeout <= 0:
            raise ValueError(f"Request timeout must be positive, got {self.request_timeout}")
        if self.request_timeout > 120:
            raise ValueError(f"Request timeout too long (max 120s), got {self.request_timeout}")

        if self.tx_timeout <= 0:
            raise ValueError(f"Transaction timeout must be positive, got {self.tx_timeout}")

        if any(offset < 0 for offset in self.retrigger_offsets):
            raise ValueError(f"Re-trigger offsets must be non-negative, got {self.retrigger_offsets}")

        if self.failure_alert_threshold <= 0:
            raise ValueError(
                f"Failure alert threshold must be positive, got {self.failure_alert_threshold}"
            )


@dataclass(frozen=True, slots=True)
class RelayerConfig:
    """Main configuration for the bridge relayer.

    Attributes:
        chains: The two bridged chains
        wrapped_tokens: Wrapped token address keyed by (destination chain, source chain)
        monitoring: Polling and timing settings
        database_url: SQLAlchemy URL of the idempotency store
        local_mode: Sign with a local key instead of a ROFL-managed one
        private_key: Relayer key for local mode
        rofl_key_id: Key identifier requested from the ROFL app daemon
    """

    chains: tuple[ChainConfig, ...]
    wrapped_tokens: Mapping[tuple[int, int], str] = field(default_factory=dict)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    database_url: str = DEFAULT_DATABASE_URL
    local_mode: bool = False
    private_key: str | None = None
    rofl_key_id: str = "bridge-relayer"

    def __post_init__(self) -> None:
        """Validate relayer configuration."""
        if len(self.chains) != 2:
            raise ValueError(f"Exactly two chains must be configured, got {len(self.chains)}")

        chain_ids = {chain.chain_id for chain in self.chains}
        if len(chain_ids) != 2:
            raise ValueError("The two configured chains must have distinct chain ids")

        wrapped: dict[tuple[int, int], str] = {}
        for (destination, source), address in self.wrapped_tokens.items():
            if destination not in chain_ids or source not in chain_ids or destination == source:
                raise ValueError(
                    f"Wrapped token pair ({destination}, {source}) does not match configured chains"
                )
            wrapped[(destination, source)] = _checksum(
                address, f"wrapped token address for ({destination}, {source})"
            )
        object.__setattr__(self, 'wrapped_tokens', wrapped)

        if not self.database_url:
            raise ValueError("Database URL is required (DATABASE_URL)")

        if self.local_mode and not self.private_key:
            raise ValueError(
                "Local mode requires RELAYER_PRIVATE_KEY environment variable"
            )

        if self.private_key:
            key = self.private_key.removeprefix('0x')
            if len(key) != 64:
                raise ValueError(
                    f"Invalid private key length. Expected 64 hex characters, got {len(key)}"
                )
            try:
                int(key, 16)
            except ValueError:
                raise ValueError(
                    "Invalid private key format. Must be hexadecimal"
                ) from None

    @property
    def chain_ids(self) -> tuple[int, ...]:
        return tuple(chain.chain_id for chain in self.chains)

    def chain(self, chain_id: int) -> ChainConfig | None:
        """Return the configuration for a chain id, or None if not bridged."""
        for chain in self.chains:
            if chain.chain_id == chain_id:
                return chain
        return None

    def counterpart(self, chain_id: int) -> int:
        """Return the id of the other bridged chain."""
        for other in self.chain_ids:
            if other != chain_id:
                return other
        raise ValueError(f"Chain {chain_id} is not configured")

    def wrapped_token(self, destination_chain_id: int, source_chain_id: int) -> str | None:
        """Wrapped token on the destination chain representing the source chain's asset."""
        return self.wrapped_tokens.get((destination_chain_id, source_chain_id))

    @classmethod
    def from_env(cls, local_mode: bool = False) -> "RelayerConfig":
        """Load configuration from environment variables.

        Args:
            local_mode: Whether to sign with RELAYER_PRIVATE_KEY instead of a ROFL key

        Returns:
            RelayerConfig instance with loaded values

        Raises:
            ValueError: If required environment variables are missing or invalid
        """
        sepolia_lock = (
            os.environ.get("BRIDGE_LOCK_SEPOLIA")
            or os.environ.get("NEXT_PUBLIC_BRIDGE_LOCK_SEPOLIA", "")
        )
        if not sepolia_lock:
            raise ValueError(
                "BRIDGE_LOCK_SEPOLIA environment variable is required. "
                "This is the address of the deployed bridge lock contract on Sepolia."
            )

        hub_lock = (
            os.environ.get("BRIDGE_LOCK_POLKADOT_HUB")
            or os.environ.get("NEXT_PUBLIC_BRIDGE_LOCK_POLKADOT_HUB", "")
        )
        if not hub_lock:
            raise ValueError(
                "BRIDGE_LOCK_POLKADOT_HUB environment variable is required. "
                "This is the address of the deployed bridge lock contract on Polkadot Hub."
            )

        sepolia = ChainConfig(
            chain_id=SEPOLIA_CHAIN_ID,
            name="sepolia",
            rpc_urls=_split_urls(os.environ.get("RPC_SEPOLIA")) or DEFAULT_SEPOLIA_RPC_URLS,
            bridge_lock_address=sepolia_lock,
        )
        polkadot_hub = ChainConfig(
            chain_id=POLKADOT_HUB_CHAIN_ID,
            name="polkadot-hub",
            rpc_urls=_split_urls(os.environ.get("RPC_POLKADOT_HUB")) or DEFAULT_POLKADOT_HUB_RPC_URLS,
            bridge_lock_address=hub_lock,
        )

        # A missing wrapped token only disables that direction
        wrapped_tokens: dict[tuple[int, int], str] = {}
        if wrapped_eth := os.environ.get("WRAPPED_ETH_POLKADOT_HUB", "").strip():
            wrapped_tokens[(POLKADOT_HUB_CHAIN_ID, SEPOLIA_CHAIN_ID)] = wrapped_eth
        if wrapped_pas := os.environ.get("WRAPPED_PAS_SEPOLIA", "").strip():
            wrapped_tokens[(SEPOLIA_CHAIN_ID, POLKADOT_HUB_CHAIN_ID)] = wrapped_pas

        monitoring = MonitoringConfig(
            polling_interval=int(os.environ.get("POLLING_INTERVAL", "12")),
            lookback_blocks=int(os.environ.get("LOOKBACK_BLOCKS", "20")),
            request_timeout=int(os.environ.get("REQUEST_TIMEOUT", "10")),
            tx_timeout=int(os.environ.get("TX_TIMEOUT", "120")),
        )

        return cls(
            chains=(sepolia, polkadot_hub),
            wrapped_tokens=wrapped_tokens,
            monitoring=monitoring,
            database_url=os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL),
            local_mode=local_mode,
            private_key=os.environ.get("RELAYER_PRIVATE_KEY") if local_mode else None,
            rofl_key_id=os.environ.get("ROFL_KEY_ID", "bridge-relayer"),
        )

    def log_config(self) -> None:
        """Log the configuration in a readable format (hiding sensitive data)."""
        logger.info("=" * 60)
        logger.info("Bridge Relayer Configuration")
        logger.info("=" * 60)
        logger.info(f"Mode: {'LOCAL' if self.local_mode else 'ROFL'}")

        for chain in self.chains:
            logger.info(f"Chain {chain.name} ({chain.chain_id}):")
            logger.info(f"  RPC URLs: {', '.join(chain.rpc_urls)}")
            logger.info(f"  Bridge Lock: {chain.bridge_lock_address}")
            other = self.counterpart(chain.chain_id)
            wrapped = self.wrapped_token(chain.chain_id, other)
            logger.info(f"  Wrapped token for {other}: {wrapped or '[NOT SET]'}")

        logger.info("Monitoring Settings:")
        logger.info(f"  Polling Interval: {self.monitoring.polling_interval} seconds")
        logger.info(f"  Lookback Blocks: {self.monitoring.lookback_blocks}")
        logger.info(f"  Request Timeout: {self.monitoring.request_timeout} seconds")
        logger.info(f"  Transaction Timeout: {self.monitoring.tx_timeout} seconds")

        logger.info(f"Database: {self.database_url}")
        if self.local_mode:
            logger.info(f"  Private Key: {'[SET]' if self.private_key else '[NOT SET]'}")
        else:
            logger.info(f"  ROFL Key Id: {self.rofl_key_id}")
        logger.info("=" * 60)
