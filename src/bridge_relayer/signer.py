"""
Authorization of destination-chain effects.

The destination contracts recompute

    keccak256(abi.encodePacked(recipient, amount, sourceChainId, sourceTxHash, nonce))

and recover the relayer address from an EIP-191 personal signature over
those 32 bytes. This module produces that digest and signature. Signing is
behind the ``Signer`` protocol so a remote or threshold signer can replace
the local key without touching the relay logic.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from web3 import Web3

from .models import BridgeEvent
from .utils.blockchain_encoder import BlockchainEncoder

logger = logging.getLogger(__name__)

DIGEST_TYPES: list[str] = ["address", "uint256", "uint256", "bytes32", "uint256"]


@dataclass(frozen=True, slots=True)
class Signature:
    """Split ECDSA signature as passed to mint/release."""
    v: int
    r: bytes
    s: bytes


def authorization_digest(
    recipient: str,
    amount: int,
    source_chain_id: int,
    source_tx_hash: str | bytes,
    nonce: int,
) -> bytes:
    """
    Compute the digest binding an effect to its source event.

    Args:
        recipient: Destination recipient address
        amount: Amount in the smallest unit
        source_chain_id: Chain the request originated on
        source_tx_hash: Source transaction hash (padded to bytes32)
        nonce: Source contract nonce

    Returns:
        32-byte keccak digest of the packed fields
    """
    return bytes(Web3.solidity_keccak(
        DIGEST_TYPES,
        [
            Web3.to_checksum_address(recipient),
            amount,
            source_chain_id,
            BlockchainEncoder.to_bytes32(source_tx_hash),
            nonce,
        ],
    ))


def event_digest(event: BridgeEvent) -> bytes:
    """Authorization digest for an observed bridge event."""
    return authorization_digest(
        event.recipient,
        event.amount,
        event.source_chain_id,
        event.source_tx_hash,
        event.nonce,
    )


def recover_signer(digest: bytes, signature: Signature) -> str:
    """Recover the address that signed ``digest``, as the destination contract does."""
    return Account.recover_message(
        encode_defunct(primitive=digest),
        vrs=(signature.v, signature.r, signature.s),
    )


class Signer(Protocol):
    """Capability that authorizes relay digests."""

    @property
    def address(self) -> str: ...

    def sign_digest(self, digest: bytes) -> Signature: ...


class LocalKeySigner:
    """Signer backed by an in-process private key."""

    def __init__(self, private_key: str) -> None:
        self.account: LocalAccount = Account.from_key(private_key)

    @property
    def address(self) -> str:
        return self.account.address

    def sign_digest(self, digest: bytes) -> Signature:
        if len(digest) != 32:
            raise ValueError(f"Digest must be 32 bytes, got {len(digest)}")
        signed = self.account.sign_message(encode_defunct(primitive=digest))
        return Signature(
            v=signed.v,
            r=signed.r.to_bytes(32, 'big'),
            s=signed.s.to_bytes(32, 'big'),
        )


class RoflKeyProvider:
    """Obtains the relayer key from the ROFL application daemon.

    The daemon derives the same secp256k1 key for the same key id on every
    start, so the key never has to be provisioned through the environment.
    """

    SOCKET_PATH: str = "/run/rofl-appd.sock"
    KEY_GENERATE_PATH: str = "/rofl/v1/keys/generate"

    def __init__(self, url: str = '') -> None:
        """
        Args:
            url: HTTP base URL or a unix socket path (defaults to the daemon socket)
        """
        self.url = url

    def _client(self) -> httpx.AsyncClient:
        if self.url.startswith('http'):
            return httpx.AsyncClient(base_url=self.url)
        socket_path = self.url or self.SOCKET_PATH
        logger.debug(f"Using unix domain socket: {socket_path}")
        return httpx.AsyncClient(
            transport=httpx.AsyncHTTPTransport(uds=socket_path),
            base_url="http://localhost",
        )

    async def fetch_key(self, key_id: str) -> str:
        """
        Fetch the relayer private key.

        Args:
            key_id: Identifier for the key

        Returns:
            Private key as a hex string

        Raises:
            httpx.HTTPStatusError: If the daemon rejects the request
        """
        payload: dict[str, Any] = {"key_id": key_id, "kind": "secp256k1"}
        async with self._client() as client:
            logger.debug(f"Requesting key from ROFL: {json.dumps(payload)}")
            response = await client.post(self.KEY_GENERATE_PATH, json=payload, timeout=30.0)
            response.raise_for_status()
            return response.json()["key"]

    async def signer(self, key_id: str) -> LocalKeySigner:
        """Build a local signer around the ROFL-derived key."""
        return LocalKeySigner(await self.fetch_key(key_id))
