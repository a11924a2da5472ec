"""
Resilient read/write handle to one bridged chain.

A connection walks its ordered RPC list until an endpoint answers a block
height check, then serves log queries, receipts and contract transactions
through that endpoint. A connectivity failure drops the endpoint so the next
call starts over from the top of the list.
"""

import json
import logging
from collections.abc import Callable
from functools import cache
from pathlib import Path
from typing import Any, TypeVar

from eth_account.signers.local import LocalAccount
from hexbytes import HexBytes
from web3 import Web3
from web3.contract import Contract
from web3.exceptions import (
    ContractLogicError,
    ProviderConnectionError,
    TimeExhausted,
    TransactionNotFound,
    Web3Exception,
    Web3RPCError,
)
from web3.middleware import SignAndSendRawMiddlewareBuilder
from web3.types import LogReceipt, TxReceipt

from .config import ChainConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

ABI_DIR = Path(__file__).parent / "abi"

# requests errors subclass OSError
CONNECTIVITY_ERRORS: tuple[type[BaseException], ...] = (
    OSError,
    TimeoutError,
    ProviderConnectionError,
    Web3RPCError,
)

# An endpoint that answers with something other than JSON-RPC (an HTML error
# page, a truncated body) fails with a decode error instead of a connection error
ENDPOINT_ERRORS: tuple[type[BaseException], ...] = (
    *CONNECTIVITY_ERRORS,
    ValueError,
    Web3Exception,
)


class RelayerError(Exception):
    """Base class for relayer runtime errors."""


class ChainConnectionError(RelayerError):
    """All endpoints of a chain are unreachable, or the active one just failed."""


class TransactionRevertedError(RelayerError):
    """A destination transaction was mined with status 0."""

    def __init__(self, tx_hash: str, message: str = "") -> None:
        super().__init__(message or f"Transaction {tx_hash} reverted")
        self.tx_hash = tx_hash


@cache
def get_contract_abi(contract_name: str) -> list[dict[str, Any]]:
    """Fetches ABI of the given contract from the bundled abi folder.

    Args:
        contract_name: Name of the contract (without .json extension)

    Returns:
        List of ABI dictionaries for the contract

    Raises:
        FileNotFoundError: If the contract file doesn't exist
    """
    contract_path: Path = ABI_DIR / f"{contract_name}.json"
    with contract_path.open() as file:
        contract_data: dict[str, Any] = json.load(file)
    return contract_data["abi"]


class ChainConnection:
    """Connection to one chain with ordered endpoint fallback."""

    def __init__(
        self,
        chain: ChainConfig,
        request_timeout: int = 10,
        tx_timeout: int = 120,
        account: LocalAccount | None = None,
    ) -> None:
        """
        Args:
            chain: Chain configuration with the ordered RPC list
            request_timeout: Timeout for each RPC request, in seconds
            tx_timeout: How long to wait for a submitted transaction's receipt
            account: Key used to sign submitted transactions (None for read-only)
        """
        self.chain = chain
        self.request_timeout = request_timeout
        self.tx_timeout = tx_timeout
        self.account = account

        self.w3: Web3 | None = None
        self.rpc_url: str | None = None

    @property
    def chain_id(self) -> int:
        return self.chain.chain_id

    @property
    def name(self) -> str:
        return self.chain.name

    def _make_web3(self, rpc_url: str) -> Web3:
        w3 = Web3(Web3.HTTPProvider(
            rpc_url,
            request_kwargs={'timeout': self.request_timeout}
        ))
        if self.account is not None:
            w3.middleware_onion.add(SignAndSendRawMiddlewareBuilder.build(self.account))
            w3.eth.default_account = self.account.address
        return w3

    def connect(self) -> Web3:
        """
        Connect to the first endpoint that answers a block height check.

        Returns:
            Connected Web3 instance

        Raises:
            ChainConnectionError: If every configured endpoint fails
        """
        for rpc_url in self.chain.rpc_urls:
            logger.info(f"[{self.name}] Trying {rpc_url} ...")
            try:
                w3 = self._make_web3(rpc_url)
                block = w3.eth.block_number
            except ENDPOINT_ERRORS as e:
                logger.warning(f"[{self.name}] Failed: {e}")
                continue

            logger.info(f"[{self.name}] Connected to {rpc_url}, block {block}")
            self.w3 = w3
            self.rpc_url = rpc_url
            return w3

        self.w3 = None
        self.rpc_url = None
        raise ChainConnectionError(
            f"No {self.name} RPC available (tried {len(self.chain.rpc_urls)} endpoints)"
        )

    def _call(self, description: str, operation: Callable[[Web3], T]) -> T:
        w3 = self.w3 or self.connect()
        try:
            return operation(w3)
        except (ContractLogicError, TimeExhausted):
            raise
        except ENDPOINT_ERRORS as e:
            failed_url = self.rpc_url
            self.w3 = None
            self.rpc_url = None
            raise ChainConnectionError(
                f"[{self.name}] {description} failed on {failed_url}: {e}"
            ) from e

    def block_number(self) -> int:
        """Current head height of the chain."""
        return self._call("block number", lambda w3: int(w3.eth.block_number))

    def get_logs(
        self,
        address: str,
        topic: HexBytes | str,
        from_block: int,
        to_block: int,
    ) -> list[LogReceipt]:
        """
        Raw logs of one event signature emitted by one contract in a block range.

        Args:
            address: Contract address
            topic: Event signature topic
            from_block: First block, inclusive
            to_block: Last block, inclusive
        """
        return self._call(
            f"get_logs {from_block}-{to_block}",
            lambda w3: list(w3.eth.get_logs({
                'address': Web3.to_checksum_address(address),
                'topics': [topic],
                'fromBlock': from_block,
                'toBlock': to_block,
            })),
        )

    def get_transaction_receipt(self, tx_hash: str) -> TxReceipt | None:
        """Receipt of a transaction, or None if this chain does not know it."""
        def _receipt(w3: Web3) -> TxReceipt | None:
            try:
                return w3.eth.get_transaction_receipt(tx_hash)
            except TransactionNotFound:
                return None

        return self._call(f"receipt {tx_hash}", _receipt)

    def contract(self, address: str, contract_name: str) -> Contract:
        """Contract handle bound to the active endpoint."""
        w3 = self.w3 or self.connect()
        return w3.eth.contract(
            address=Web3.to_checksum_address(address),
            abi=get_contract_abi(contract_name),
        )

    def send_transaction(
        self,
        address: str,
        contract_name: str,
        function_name: str,
        *args: Any,
    ) -> str:
        """
        Submit a contract call signed by the held key and wait for it to be mined.

        Gas is estimated by the node, so a call the contract would reject
        raises ContractLogicError (with the revert reason) before anything is
        broadcast.

        Returns:
            Hash of the mined transaction

        Raises:
            ContractLogicError: If gas estimation reverts
            TransactionRevertedError: If the mined transaction has status 0
            web3.exceptions.TimeExhausted: If no receipt arrives within tx_timeout
            ChainConnectionError: On connectivity failure
        """
        if self.account is None:
            raise RelayerError(f"[{self.name}] Connection is read-only, cannot submit {function_name}")

        def _send(w3: Web3) -> str:
            contract = w3.eth.contract(
                address=Web3.to_checksum_address(address),
                abi=get_contract_abi(contract_name),
            )
            function = getattr(contract.functions, function_name)(*args)
            tx_hash = Web3.to_hex(function.transact({'from': self.account.address}))
            logger.info(f"[{self.name}] Submitted {function_name}: {tx_hash}, waiting for receipt...")

            receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.tx_timeout)
            if receipt['status'] != 1:
                raise TransactionRevertedError(tx_hash)
            return tx_hash

        return self._call(function_name, _send)

    def get_status(self) -> dict[str, Any]:
        return {
            "chain_id": self.chain_id,
            "name": self.name,
            "connected": self.w3 is not None,
            "rpc_url": self.rpc_url,
        }
