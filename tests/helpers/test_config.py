"""Tests for configuration and environment variable helpers."""

import pytest

from decimal import Decimal

from src.helpers.config import (
    get_rpc_for_network,
    load_settings,
    parse_network_list,
)


BASE_ENV = {
    "RELAY_REGISTRY_ADDRESS": "0x00000000000000000000000000000000000000a1",
    "STORAGE_DEAL_REGISTRY_ADDRESS": "0x00000000000000000000000000000000000000a2",
    "STAKE_TOKEN_ADDRESS": "0x00000000000000000000000000000000000000a3",
}


class TestRPCResolution:
    """Tests for get_rpc_for_network precedence."""

    def test_service_override_wins(self) -> None:
        """Test DEALS_<NETWORK>_RPC beats <NETWORK>_RPC."""
        env = {
            "DEALS_BASE_SEPOLIA_RPC": "https://service.rpc",
            "BASE_SEPOLIA_RPC": "https://global.rpc",
        }

        assert get_rpc_for_network("base-sepolia", "deals", env) == "https://service.rpc"

    def test_global_override(self) -> None:
        """Test <NETWORK>_RPC beats the public default."""
        env = {"BASE_SEPOLIA_RPC": "https://global.rpc"}

        assert get_rpc_for_network("base-sepolia", "deals", env) == "https://global.rpc"

    def test_public_default(self) -> None:
        """Test the built-in public endpoint."""
        assert get_rpc_for_network("base-sepolia", "deals", {}) == "https://sepolia.base.org"

    def test_unknown_network(self) -> None:
        """Test an unknown network without override."""
        with pytest.raises(ValueError, match="Unknown network"):
            get_rpc_for_network("dogechain", None, {})

    def test_parse_network_list(self) -> None:
        """Test ids are normalized and the default applies when unset."""
        assert parse_network_list("base, Sepolia,") == ["base", "sepolia"]
        assert parse_network_list(None) == ["base-sepolia"]

    def test_parse_network_list_unknown_id(self) -> None:
        """Test a typo in the network list is a configuration error."""
        with pytest.raises(ValueError, match="basee"):
            parse_network_list("base,basee")


class TestLoadSettings:
    """Tests for load_settings."""

    def test_defaults(self) -> None:
        """Test a minimal environment."""
        settings = load_settings(BASE_ENV)

        assert len(settings.chains) == 1
        chain = settings.chains[0]
        assert chain.network == "base-sepolia"
        assert chain.chain_id == 84532
        assert chain.rpc_url == "https://sepolia.base.org"
        assert chain.relay_registry_address == BASE_ENV["RELAY_REGISTRY_ADDRESS"]
        assert settings.private_key is None
        assert settings.sync_enabled is True
        assert settings.slow_interval == 300.0
        assert settings.fast_interval == 120.0
        assert settings.initial_delay == 30.0
        assert settings.pricing["standard"].price_per_mb_month == Decimal("0.0001")

    def test_overrides(self) -> None:
        """Test intervals in milliseconds and flags."""
        env = {
            **BASE_ENV,
            "REGISTRY_NETWORKS": "base-sepolia,sepolia",
            "RELAY_PRIVATE_KEY": "0x" + "11" * 32,
            "DEAL_SYNC_ENABLED": "false",
            "DEAL_SYNC_INTERVAL_MS": "60000",
            "DEAL_SYNC_FAST_INTERVAL_MS": "15000",
            "DEAL_SYNC_INITIAL_DELAY_MS": "0",
            "REGISTRY_CONFIRMATIONS": "3",
            "LOG_LEVEL": "debug",
            "SNAPSHOT_DATABASE_URL": "sqlite+aiosqlite:///relay.db",
        }

        settings = load_settings(env)

        assert [chain.chain_id for chain in settings.chains] == [84532, 11155111]
        assert settings.private_key == env["RELAY_PRIVATE_KEY"]
        assert settings.sync_enabled is False
        assert settings.slow_interval == 60.0
        assert settings.fast_interval == 15.0
        assert settings.initial_delay == 0.0
        assert settings.confirmations == 3
        assert settings.log_level == "DEBUG"
        assert settings.snapshot_database_url == "sqlite+aiosqlite:///relay.db"

    def test_private_key_hidden_from_repr(self) -> None:
        """Test the signer key never shows up in logs."""
        settings = load_settings({**BASE_ENV, "RELAY_PRIVATE_KEY": "0xsecret"})

        assert "0xsecret" not in repr(settings)

    def test_per_network_contract_address(self) -> None:
        """Test <KEY>_<NETWORK> beats the shared contract address."""
        env = {
            **BASE_ENV,
            "REGISTRY_NETWORKS": "base,base-sepolia",
            "RELAY_REGISTRY_ADDRESS_BASE": "0x00000000000000000000000000000000000000b1",
        }

        settings = load_settings(env)

        assert settings.chain(8453).relay_registry_address.endswith("b1")
        assert settings.chain(84532).relay_registry_address.endswith("a1")

    def test_missing_contract_address(self) -> None:
        """Test a missing registry address is a configuration error."""
        env = {key: value for key, value in BASE_ENV.items() if key != "STAKE_TOKEN_ADDRESS"}

        with pytest.raises(ValueError, match="STAKE_TOKEN_ADDRESS"):
            load_settings(env)

    def test_unknown_chain(self) -> None:
        """Test looking up a chain that is not configured."""
        settings = load_settings(BASE_ENV)

        with pytest.raises(KeyError, match="not configured"):
            settings.chain(1)

    def test_unknown_network_in_list(self) -> None:
        """Test an unknown REGISTRY_NETWORKS entry fails instead of being skipped."""
        with pytest.raises(ValueError, match="REGISTRY_NETWORKS"):
            load_settings({**BASE_ENV, "REGISTRY_NETWORKS": "base-sepolia,unknown"})
