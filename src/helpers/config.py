"""Configuration management and environment variable utilities.

Settings are read from the environment once, at startup, into an immutable
``RelaySettings`` value that is passed into each component's constructor.
"""

import os

from collections.abc import Mapping

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from src.helpers.constants import (
    CONFIRMATION_TIMEOUT,
    DEFAULT_CONFIRMATIONS,
    DEFAULT_FAST_INTERVAL,
    DEFAULT_INITIAL_DELAY,
    DEFAULT_SHUTDOWN_TIMEOUT,
    DEFAULT_SLOW_INTERVAL,
    DEFAULT_TIMEOUT,
    NETWORKS,
)
from src.pricing.models import PricingTier
from src.pricing.resolver import load_tier_table


# Load environment variables from .env file
load_dotenv()

DEFAULT_NETWORKS = ["base-sepolia"]

RPC_SERVICE = "deals"
"""Service name used for service-specific RPC overrides (DEALS_<NETWORK>_RPC)"""


def network_env_name(network: str) -> str:
    """Convert a network id to its environment variable stem.

    Example:
        >>> network_env_name("base-sepolia")
        'BASE_SEPOLIA'
    """
    return network.upper().replace("-", "_")


def get_rpc_for_network(
    network: str,
    service: str | None = None,
    env: Mapping[str, str] | None = None,
) -> str:
    """Resolve the RPC URL for a network.

    Precedence: ``<SERVICE>_<NETWORK>_RPC`` > ``<NETWORK>_RPC`` > public default.

    Args:
        network: Network id (e.g. "base-sepolia")
        service: Optional service name for a service-specific override
        env: Environment mapping, defaults to ``os.environ``

    Returns:
        RPC URL

    Raises:
        ValueError: If the network is unknown and no override is set

    Example:
        ```python
        # DEALS_BASE_SEPOLIA_RPC wins over BASE_SEPOLIA_RPC
        rpc_url = get_rpc_for_network("base-sepolia", service="deals")
        ```
    """
    environ = os.environ if env is None else env
    env_name = network_env_name(network)

    if service:
        service_rpc = environ.get(f"{service.upper()}_{env_name}_RPC")
        if service_rpc:
            return service_rpc

    global_rpc = environ.get(f"{env_name}_RPC")
    if global_rpc:
        return global_rpc

    if network not in NETWORKS:
        msg = f"Unknown network {network!r} and no {env_name}_RPC set"
        raise ValueError(msg)
    return NETWORKS[network].default_rpc_url


def parse_network_list(value: str | None, default: list[str] | None = None) -> list[str]:
    """Parse a comma-separated network list.

    Raises:
        ValueError: If an entry is not a known network id

    Example:
        >>> parse_network_list("base, Sepolia")
        ['base', 'sepolia']
    """
    if not value:
        return list(default or DEFAULT_NETWORKS)
    networks = [item.strip().lower() for item in value.split(",") if item.strip()]
    unknown = [network for network in networks if network not in NETWORKS]
    if unknown:
        msg = f"Unknown network(s) in REGISTRY_NETWORKS: {', '.join(unknown)}"
        raise ValueError(msg)
    return networks


def _parse_bool(value: str | None, *, default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_seconds_from_ms(value: str | None, default: float) -> float:
    if not value:
        return default
    return int(value) / 1000


class ChainSettings(BaseModel):
    """Per-chain registry settings."""

    network: str
    chain_id: int
    rpc_url: str
    relay_registry_address: str
    deal_registry_address: str
    stake_token_address: str

    model_config = ConfigDict(frozen=True)


class RelaySettings(BaseModel):
    """Immutable process configuration."""

    chains: tuple[ChainSettings, ...]
    private_key: str | None = Field(default=None, repr=False)
    relay_address: str | None = None
    confirmations: int = Field(default=DEFAULT_CONFIRMATIONS, ge=1)
    rpc_timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0)
    confirmation_timeout: float = Field(default=CONFIRMATION_TIMEOUT, gt=0)
    sync_enabled: bool = True
    fast_interval: float = Field(default=DEFAULT_FAST_INTERVAL, gt=0)
    slow_interval: float = Field(default=DEFAULT_SLOW_INTERVAL, gt=0)
    initial_delay: float = Field(default=DEFAULT_INITIAL_DELAY, ge=0)
    shutdown_timeout: float = Field(default=DEFAULT_SHUTDOWN_TIMEOUT, ge=0)
    snapshot_database_url: str | None = None
    log_level: str = "INFO"
    log_color: bool = False
    pricing: dict[str, PricingTier] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    def chain(self, chain_id: int) -> ChainSettings:
        """Return the settings for ``chain_id``.

        Raises:
            KeyError: If the chain is not configured
        """
        for chain in self.chains:
            if chain.chain_id == chain_id:
                return chain
        msg = f"Chain {chain_id} is not configured"
        raise KeyError(msg)


def _contract_address(environ: Mapping[str, str], key: str, network: str) -> str:
    value = environ.get(f"{key}_{network_env_name(network)}") or environ.get(key)
    if not value:
        msg = f"{key} (or {key}_{network_env_name(network)}) environment variable is not set"
        raise ValueError(msg)
    return value


def load_settings(env: Mapping[str, str] | None = None) -> RelaySettings:
    """Load the relay settings from the environment.

    Args:
        env: Environment mapping, defaults to ``os.environ``

    Returns:
        RelaySettings: Frozen configuration

    Raises:
        ValueError: If a required contract address is missing or a value is malformed
    """
    environ = os.environ if env is None else env

    chains = []
    for network in parse_network_list(environ.get("REGISTRY_NETWORKS")):
        chains.append(
            ChainSettings(
                network=network,
                chain_id=NETWORKS[network].chain_id,
                rpc_url=get_rpc_for_network(network, RPC_SERVICE, environ),
                relay_registry_address=_contract_address(
                    environ, "RELAY_REGISTRY_ADDRESS", network
                ),
                deal_registry_address=_contract_address(
                    environ, "STORAGE_DEAL_REGISTRY_ADDRESS", network
                ),
                stake_token_address=_contract_address(
                    environ, "STAKE_TOKEN_ADDRESS", network
                ),
            )
        )

    return RelaySettings(
        chains=tuple(chains),
        private_key=environ.get("RELAY_PRIVATE_KEY") or environ.get("PRIVATE_KEY") or None,
        relay_address=environ.get("RELAY_ADDRESS") or None,
        confirmations=int(environ.get("REGISTRY_CONFIRMATIONS") or DEFAULT_CONFIRMATIONS),
        rpc_timeout=float(environ.get("RPC_TIMEOUT_SECONDS") or DEFAULT_TIMEOUT),
        confirmation_timeout=float(
            environ.get("TX_CONFIRMATION_TIMEOUT_SECONDS") or CONFIRMATION_TIMEOUT
        ),
        sync_enabled=_parse_bool(environ.get("DEAL_SYNC_ENABLED"), default=True),
        fast_interval=_parse_seconds_from_ms(
            environ.get("DEAL_SYNC_FAST_INTERVAL_MS"), DEFAULT_FAST_INTERVAL
        ),
        slow_interval=_parse_seconds_from_ms(
            environ.get("DEAL_SYNC_INTERVAL_MS"), DEFAULT_SLOW_INTERVAL
        ),
        initial_delay=_parse_seconds_from_ms(
            environ.get("DEAL_SYNC_INITIAL_DELAY_MS"), DEFAULT_INITIAL_DELAY
        ),
        shutdown_timeout=float(
            environ.get("SHUTDOWN_TIMEOUT_SECONDS") or DEFAULT_SHUTDOWN_TIMEOUT
        ),
        snapshot_database_url=environ.get("SNAPSHOT_DATABASE_URL") or None,
        log_level=(environ.get("LOG_LEVEL") or "INFO").upper(),
        log_color=_parse_bool(environ.get("LOG_COLOR"), default=False),
        pricing=load_tier_table(environ),
    )


__all__ = [
    "ChainSettings",
    "RelaySettings",
    "get_rpc_for_network",
    "load_settings",
    "network_env_name",
    "parse_network_list",
]
