"""Shared fixtures for the bridge relayer tests."""

from unittest.mock import MagicMock

import pytest
from eth_abi import encode
from hexbytes import HexBytes
from web3 import Web3

from bridge_relayer.chain import ChainConnection
from bridge_relayer.config import (
    POLKADOT_HUB_CHAIN_ID,
    SEPOLIA_CHAIN_ID,
    ChainConfig,
    RelayerConfig,
)
from bridge_relayer.models import LockEvent, UnlockEvent
from bridge_relayer.store import IdempotencyStore

SEPOLIA_LOCK = Web3.to_checksum_address("0x" + "11" * 20)
HUB_LOCK = Web3.to_checksum_address("0x" + "22" * 20)
WRAPPED_ETH_HUB = Web3.to_checksum_address("0x" + "33" * 20)
WRAPPED_PAS_SEPOLIA = Web3.to_checksum_address("0x" + "44" * 20)
SENDER = Web3.to_checksum_address("0x" + "5a" * 20)
RECIPIENT = Web3.to_checksum_address("0x" + "ab" * 20)

# Well-known throwaway key from the eth-account documentation
TEST_PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"

SOURCE_TX = "0x" + "aa" * 32
DEST_TX = "0x" + "dd" * 32


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'bridge.db'}"


@pytest.fixture
def config(database_url):
    """Two-chain configuration with both wrapped tokens set."""
    return RelayerConfig(
        chains=(
            ChainConfig(
                chain_id=SEPOLIA_CHAIN_ID,
                name="sepolia",
                rpc_urls=("http://sepolia-1.test", "http://sepolia-2.test"),
                bridge_lock_address=SEPOLIA_LOCK,
            ),
            ChainConfig(
                chain_id=POLKADOT_HUB_CHAIN_ID,
                name="polkadot-hub",
                rpc_urls=("http://hub.test",),
                bridge_lock_address=HUB_LOCK,
            ),
        ),
        wrapped_tokens={
            (POLKADOT_HUB_CHAIN_ID, SEPOLIA_CHAIN_ID): WRAPPED_ETH_HUB,
            (SEPOLIA_CHAIN_ID, POLKADOT_HUB_CHAIN_ID): WRAPPED_PAS_SEPOLIA,
        },
        database_url=database_url,
        local_mode=True,
        private_key=TEST_PRIVATE_KEY,
    )


@pytest.fixture
def store(database_url):
    store = IdempotencyStore(database_url)
    yield store
    store.close()


@pytest.fixture
def lock_event():
    """1 ETH locked on Sepolia for Polkadot Hub, nonce 7."""
    return LockEvent(
        source_chain_id=SEPOLIA_CHAIN_ID,
        sender=SENDER,
        recipient=RECIPIENT,
        amount=10**18,
        destination_chain_id=POLKADOT_HUB_CHAIN_ID,
        nonce=7,
        source_tx_hash=SOURCE_TX,
        block_number=100,
        log_index=0,
    )


@pytest.fixture
def unlock_event():
    """Wrapped ETH burned on Polkadot Hub to release on Sepolia."""
    return UnlockEvent(
        source_chain_id=POLKADOT_HUB_CHAIN_ID,
        sender=SENDER,
        recipient=RECIPIENT,
        amount=5 * 10**17,
        destination_chain_id=SEPOLIA_CHAIN_ID,
        nonce=3,
        source_tx_hash="0x" + "bb" * 32,
        block_number=200,
        log_index=1,
    )


def make_connection(chain_id: int, name: str) -> MagicMock:
    connection = MagicMock(spec=ChainConnection)
    connection.chain_id = chain_id
    connection.name = name
    connection.block_number.return_value = 1000
    connection.get_logs.return_value = []
    connection.get_transaction_receipt.return_value = None
    connection.send_transaction.return_value = DEST_TX
    connection.get_status.return_value = {"chain_id": chain_id, "name": name}
    return connection


@pytest.fixture
def connections():
    """Mocked connections keyed by chain id."""
    return {
        SEPOLIA_CHAIN_ID: make_connection(SEPOLIA_CHAIN_ID, "sepolia"),
        POLKADOT_HUB_CHAIN_ID: make_connection(POLKADOT_HUB_CHAIN_ID, "polkadot-hub"),
    }


def make_bridge_log(
    address: str,
    event_signature: str,
    recipient: str = RECIPIENT,
    amount: int = 10**18,
    destination_chain_id: int = POLKADOT_HUB_CHAIN_ID,
    nonce: int = 7,
    tx_hash: str = SOURCE_TX,
    block_number: int = 100,
    log_index: int = 0,
    sender: str = SENDER,
) -> dict:
    """Raw log as returned by eth_getLogs for Locked / UnlockRequested."""
    return {
        "address": address,
        "topics": [
            Web3.keccak(text=event_signature),
            HexBytes(encode(["address"], [sender])),
            HexBytes(encode(["address"], [recipient])),
            HexBytes(encode(["uint256"], [nonce])),
        ],
        "data": HexBytes(encode(["uint256", "uint256"], [amount, destination_chain_id])),
        "blockNumber": block_number,
        "blockHash": HexBytes("0x" + "cc" * 32),
        "transactionHash": HexBytes(tx_hash),
        "transactionIndex": 0,
        "logIndex": log_index,
        "removed": False,
    }


LOCKED_SIGNATURE = "Locked(address,address,uint256,uint256,uint256)"
UNLOCK_SIGNATURE = "UnlockRequested(address,address,uint256,uint256,uint256)"
