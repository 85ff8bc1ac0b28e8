"""Common configuration constants used across the application."""

from pydantic import BaseModel


# HTTP and Network Constants
DEFAULT_TIMEOUT = 30.0
"""Default HTTP request timeout in seconds"""

CONFIRMATION_TIMEOUT = 180.0
"""Default bound on waiting for transaction confirmations in seconds"""

RECEIPT_POLL_INTERVAL = 2.0
"""Delay between receipt polls while waiting for confirmations"""

# Retry Configuration
MAX_BROADCAST_RETRIES = 3
"""Re-broadcast attempts for an identical signed transaction"""

RETRY_BASE_DELAY = 1.0
"""Base delay for exponential backoff in seconds"""

RETRY_MAX_DELAY = 10.0
"""Maximum delay between retries in seconds"""

# Reconciliation cadences
DEFAULT_FAST_INTERVAL = 120.0
"""Fast reconciliation interval in seconds (locally active deals)"""

DEFAULT_SLOW_INTERVAL = 300.0
"""Full reconciliation interval in seconds"""

DEFAULT_INITIAL_DELAY = 30.0
"""Delay before the first reconciliation pass in seconds"""

DEFAULT_SHUTDOWN_TIMEOUT = 10.0
"""Time allowed for in-flight passes to finish on shutdown"""

DEFAULT_CONFIRMATIONS = 1
"""Confirmations awaited for registry transactions"""

# Token and time units
STAKE_TOKEN_DECIMALS = 6
"""Stake token (USDC) decimals"""

SECONDS_PER_DAY = 86_400

DAYS_PER_MONTH = 30


class NetworkConfig(BaseModel):
    """Static description of a supported network."""

    network: str
    chain_id: int
    name: str
    default_rpc_url: str
    explorer: str
    is_testnet: bool


NETWORKS: dict[str, NetworkConfig] = {
    network.network: network
    for network in (
        NetworkConfig(
            network="base-sepolia",
            chain_id=84532,
            name="Base Sepolia",
            default_rpc_url="https://sepolia.base.org",
            explorer="https://sepolia.basescan.org",
            is_testnet=True,
        ),
        NetworkConfig(
            network="base",
            chain_id=8453,
            name="Base",
            default_rpc_url="https://mainnet.base.org",
            explorer="https://basescan.org",
            is_testnet=False,
        ),
        NetworkConfig(
            network="sepolia",
            chain_id=11155111,
            name="Ethereum Sepolia",
            default_rpc_url="https://rpc.sepolia.org",
            explorer="https://sepolia.etherscan.io",
            is_testnet=True,
        ),
        NetworkConfig(
            network="mainnet",
            chain_id=1,
            name="Ethereum Mainnet",
            default_rpc_url="https://eth.public-rpc.com",
            explorer="https://etherscan.io",
            is_testnet=False,
        ),
        NetworkConfig(
            network="arbitrum",
            chain_id=42161,
            name="Arbitrum One",
            default_rpc_url="https://arb1.arbitrum.io/rpc",
            explorer="https://arbiscan.io",
            is_testnet=False,
        ),
        NetworkConfig(
            network="arbitrum-sepolia",
            chain_id=421614,
            name="Arbitrum Sepolia",
            default_rpc_url="https://sepolia-rollup.arbitrum.io/rpc",
            explorer="https://sepolia.arbiscan.io",
            is_testnet=True,
        ),
        NetworkConfig(
            network="optimism",
            chain_id=10,
            name="Optimism",
            default_rpc_url="https://mainnet.optimism.io",
            explorer="https://optimistic.etherscan.io",
            is_testnet=False,
        ),
        NetworkConfig(
            network="optimism-sepolia",
            chain_id=11155420,
            name="Optimism Sepolia",
            default_rpc_url="https://sepolia.optimism.io",
            explorer="https://sepolia-optimism.etherscan.io",
            is_testnet=True,
        ),
        NetworkConfig(
            network="polygon",
            chain_id=137,
            name="Polygon",
            default_rpc_url="https://polygon-rpc.com",
            explorer="https://polygonscan.com",
            is_testnet=False,
        ),
        NetworkConfig(
            network="polygon-amoy",
            chain_id=80002,
            name="Polygon Amoy",
            default_rpc_url="https://rpc-amoy.polygon.technology",
            explorer="https://amoy.polygonscan.com",
            is_testnet=True,
        ),
    )
}


__all__ = [
    "CONFIRMATION_TIMEOUT",
    "DAYS_PER_MONTH",
    "DEFAULT_CONFIRMATIONS",
    "DEFAULT_FAST_INTERVAL",
    "DEFAULT_INITIAL_DELAY",
    "DEFAULT_SHUTDOWN_TIMEOUT",
    "DEFAULT_SLOW_INTERVAL",
    "DEFAULT_TIMEOUT",
    "MAX_BROADCAST_RETRIES",
    "NETWORKS",
    "RECEIPT_POLL_INTERVAL",
    "RETRY_BASE_DELAY",
    "RETRY_MAX_DELAY",
    "SECONDS_PER_DAY",
    "STAKE_TOKEN_DECIMALS",
    "NetworkConfig",
]
