#!/usr/bin/env python3
"""Tests for the configuration module."""

import logging
import os
from unittest.mock import patch

import pytest

from bridge_relayer.config import (
    DEFAULT_DATABASE_URL,
    DEFAULT_SEPOLIA_RPC_URLS,
    POLKADOT_HUB_CHAIN_ID,
    SEPOLIA_CHAIN_ID,
    ChainConfig,
    MonitoringConfig,
    RelayerConfig,
)
from conftest import HUB_LOCK, SEPOLIA_LOCK, TEST_PRIVATE_KEY, WRAPPED_ETH_HUB, WRAPPED_PAS_SEPOLIA

BASE_ENV = {
    "BRIDGE_LOCK_SEPOLIA": SEPOLIA_LOCK,
    "BRIDGE_LOCK_POLKADOT_HUB": HUB_LOCK,
}


class TestChainConfig:
    """Tests for ChainConfig."""

    def test_checksum_address_conversion(self):
        config = ChainConfig(
            chain_id=SEPOLIA_CHAIN_ID,
            name="sepolia",
            rpc_urls=("https://rpc.test",),
            bridge_lock_address=SEPOLIA_LOCK.lower(),
        )
        assert config.bridge_lock_address == SEPOLIA_LOCK

    def test_invalid_rpc_url_scheme(self):
        with pytest.raises(ValueError, match="Invalid RPC URL scheme"):
            ChainConfig(SEPOLIA_CHAIN_ID, "sepolia", ("ftp://invalid.scheme",), SEPOLIA_LOCK)

    def test_websocket_rpc_url(self):
        config = ChainConfig(SEPOLIA_CHAIN_ID, "sepolia", ("wss://rpc.test",), SEPOLIA_LOCK)
        assert config.rpc_urls == ("wss://rpc.test",)

    def test_empty_rpc_list(self):
        with pytest.raises(ValueError, match="At least one RPC URL"):
            ChainConfig(SEPOLIA_CHAIN_ID, "sepolia", (), SEPOLIA_LOCK)

    def test_invalid_address(self):
        with pytest.raises(ValueError, match="Invalid bridge lock address"):
            ChainConfig(SEPOLIA_CHAIN_ID, "sepolia", ("https://rpc.test",), "invalid-address")

    def test_missing_address(self):
        with pytest.raises(ValueError, match="is required"):
            ChainConfig(SEPOLIA_CHAIN_ID, "sepolia", ("https://rpc.test",), "")

    def test_non_positive_chain_id(self):
        with pytest.raises(ValueError, match="Chain id must be positive"):
            ChainConfig(0, "sepolia", ("https://rpc.test",), SEPOLIA_LOCK)


class TestMonitoringConfig:
    """Tests for MonitoringConfig."""

    def test_defaults(self):
        config = MonitoringConfig()
        assert config.polling_interval == 12
        assert config.lookback_blocks == 20
        assert config.request_timeout == 10
        assert config.retrigger_offsets == (6, 16, 30, 50, 80)

    @pytest.mark.parametrize("kwargs,match", [
        ({"polling_interval": 0}, "Polling interval must be positive"),
        ({"polling_interval": 301}, "Polling interval too long"),
        ({"lookback_blocks": 0}, "Lookback blocks must be positive"),
        ({"lookback_blocks": 1001}, "Lookback blocks too high"),
        ({"request_timeout": 0}, "Request timeout must be positive"),
        ({"tx_timeout": 0}, "Transaction timeout must be positive"),
        ({"retrigger_offsets": (5, -1)}, "Re-trigger offsets"),
        ({"failure_alert_threshold": 0}, "Failure alert threshold"),
    ])
    def test_validation(self, kwargs, match):
        with pytest.raises(ValueError, match=match):
            MonitoringConfig(**kwargs)


class TestRelayerConfig:
    """Tests for RelayerConfig."""

    def test_lookups(self, config):
        assert config.chain_ids == (SEPOLIA_CHAIN_ID, POLKADOT_HUB_CHAIN_ID)
        assert config.chain(POLKADOT_HUB_CHAIN_ID).bridge_lock_address == HUB_LOCK
        assert config.chain(1) is None
        assert config.counterpart(SEPOLIA_CHAIN_ID) == POLKADOT_HUB_CHAIN_ID
        assert config.wrapped_token(POLKADOT_HUB_CHAIN_ID, SEPOLIA_CHAIN_ID) == WRAPPED_ETH_HUB
        assert config.wrapped_token(SEPOLIA_CHAIN_ID, POLKADOT_HUB_CHAIN_ID) == WRAPPED_PAS_SEPOLIA

    def test_counterpart_unknown_chain(self, config):
        with pytest.raises(ValueError, match="not configured"):
            config.counterpart(1)

    def test_requires_two_distinct_chains(self, config):
        with pytest.raises(ValueError, match="Exactly two chains"):
            RelayerConfig(chains=config.chains[:1])
        with pytest.raises(ValueError, match="distinct chain ids"):
            RelayerConfig(chains=(config.chains[0], config.chains[0]))

    def test_wrapped_pair_must_match_chains(self, config):
        with pytest.raises(ValueError, match="does not match configured chains"):
            RelayerConfig(chains=config.chains, wrapped_tokens={(1, SEPOLIA_CHAIN_ID): WRAPPED_ETH_HUB})

    def test_local_mode_requires_key(self, config):
        with pytest.raises(ValueError, match="RELAYER_PRIVATE_KEY"):
            RelayerConfig(chains=config.chains, local_mode=True)

    @pytest.mark.parametrize("key,match", [
        ("0x1234", "Invalid private key length"),
        ("0x" + "zz" * 32, "Must be hexadecimal"),
    ])
    def test_invalid_private_key(self, config, key, match):
        with pytest.raises(ValueError, match=match):
            RelayerConfig(chains=config.chains, local_mode=True, private_key=key)

    @patch.dict(os.environ, BASE_ENV, clear=True)
    def test_from_env_defaults(self):
        config = RelayerConfig.from_env()

        sepolia = config.chain(SEPOLIA_CHAIN_ID)
        assert sepolia.rpc_urls == DEFAULT_SEPOLIA_RPC_URLS
        assert sepolia.bridge_lock_address == SEPOLIA_LOCK
        assert config.chain(POLKADOT_HUB_CHAIN_ID).bridge_lock_address == HUB_LOCK
        assert config.wrapped_tokens == {}
        assert config.database_url == DEFAULT_DATABASE_URL
        assert config.local_mode is False
        assert config.private_key is None
        assert config.rofl_key_id == "bridge-relayer"

    @patch.dict(os.environ, {
        **BASE_ENV,
        "RPC_SEPOLIA": "https://a.test, https://b.test",
        "WRAPPED_ETH_POLKADOT_HUB": WRAPPED_ETH_HUB,
        "WRAPPED_PAS_SEPOLIA": WRAPPED_PAS_SEPOLIA,
        "RELAYER_PRIVATE_KEY": TEST_PRIVATE_KEY,
        "DATABASE_URL": "sqlite:///tmp/test.db",
        "POLLING_INTERVAL": "5",
        "LOOKBACK_BLOCKS": "50",
    }, clear=True)
    def test_from_env_overrides(self):
        config = RelayerConfig.from_env(local_mode=True)

        assert config.chain(SEPOLIA_CHAIN_ID).rpc_urls == ("https://a.test", "https://b.test")
        assert config.wrapped_token(POLKADOT_HUB_CHAIN_ID, SEPOLIA_CHAIN_ID) == WRAPPED_ETH_HUB
        assert config.wrapped_token(SEPOLIA_CHAIN_ID, POLKADOT_HUB_CHAIN_ID) == WRAPPED_PAS_SEPOLIA
        assert config.private_key == TEST_PRIVATE_KEY
        assert config.database_url == "sqlite:///tmp/test.db"
        assert config.monitoring.polling_interval == 5
        assert config.monitoring.lookback_blocks == 50

    @patch.dict(os.environ, {
        "NEXT_PUBLIC_BRIDGE_LOCK_SEPOLIA": SEPOLIA_LOCK,
        "NEXT_PUBLIC_BRIDGE_LOCK_POLKADOT_HUB": HUB_LOCK,
    }, clear=True)
    def test_from_env_public_fallback_names(self):
        config = RelayerConfig.from_env()
        assert config.chain(SEPOLIA_CHAIN_ID).bridge_lock_address == SEPOLIA_LOCK

    @patch.dict(os.environ, {}, clear=True)
    def test_from_env_missing_lock(self):
        with pytest.raises(ValueError, match="BRIDGE_LOCK_SEPOLIA environment variable is required"):
            RelayerConfig.from_env()

    @patch.dict(os.environ, BASE_ENV, clear=True)
    def test_from_env_local_mode_without_key(self):
        with pytest.raises(ValueError, match="RELAYER_PRIVATE_KEY"):
            RelayerConfig.from_env(local_mode=True)

    def test_log_config_hides_key(self, config, caplog):
        with caplog.at_level(logging.INFO):
            config.log_config()

        assert "Bridge Relayer Configuration" in caplog.text
        assert "Mode: LOCAL" in caplog.text
        assert "[SET]" in caplog.text
        assert TEST_PRIVATE_KEY[2:] not in caplog.text
