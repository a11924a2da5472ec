"""
Blockchain encoding utilities for the bridge relayer.

This module normalizes transaction hashes and converts them into the
fixed-width values the bridge contracts expect.
"""

from typing import Union

from hexbytes import HexBytes
from web3 import Web3


class BlockchainEncoder:
    """Utilities for encoding blockchain values."""

    @staticmethod
    def to_bytes_safe(value: Union[HexBytes, bytes, str]) -> bytes:
        """
        Safely convert value to bytes, handling HexBytes, bytes, and hex strings.

        Args:
            value: Value to convert (HexBytes, bytes, or hex string)

        Returns:
            Bytes representation
        """
        if isinstance(value, HexBytes):
            return bytes(value)
        elif isinstance(value, bytes):
            return value
        else:
            return Web3.to_bytes(hexstr=value)

    @staticmethod
    def normalize_tx_hash(value: Union[HexBytes, bytes, str]) -> str:
        """
        Canonical form of a transaction hash: 0x-prefixed lowercase hex.

        The idempotency store keys on this string, so every hash that enters
        the relayer must pass through here.

        Args:
            value: Hash as HexBytes, bytes, or hex string with or without 0x

        Returns:
            Normalized hex string
        """
        match value:
            case bytes() as raw:
                return Web3.to_hex(raw).lower()
            case str() as text:
                text = text.strip().lower()
                if not text.startswith('0x'):
                    text = '0x' + text
                if len(text) == 2 or any(c not in '0123456789abcdef' for c in text[2:]):
                    raise ValueError(f"Invalid transaction hash: {value}")
                return text
            case _:
                raise TypeError(f"Unexpected transaction hash type: {type(value)}")

    @staticmethod
    def to_bytes32(tx_hash: Union[HexBytes, bytes, str]) -> bytes:
        """
        Encode a transaction hash as a bytes32 value.

        Hashes shorter than 32 bytes are left-padded with zeros.

        Args:
            tx_hash: Transaction hash

        Returns:
            Exactly 32 bytes

        Raises:
            ValueError: If the hash is longer than 32 bytes
        """
        raw = BlockchainEncoder.to_bytes_safe(tx_hash)
        if len(raw) > 32:
            raise ValueError(f"Transaction hash longer than 32 bytes: {Web3.to_hex(raw)}")
        return raw.rjust(32, b'\0')
