"""Registry contract interface constants."""

from pydantic import BaseModel, ConfigDict


class ContractFunction(BaseModel):
    """ABI description of one contract function."""

    name: str
    inputs: tuple[str, ...] = ()
    outputs: tuple[str, ...] = ()

    model_config = ConfigDict(frozen=True)

    @property
    def signature(self) -> str:
        """Canonical signature used to derive the selector."""
        return f"{self.name}({','.join(self.inputs)})"


RELAY_INFO_TUPLE = (
    "(address,string,bytes,bytes,uint256,uint256,uint256,uint256,uint8,uint256,uint256)"
)
"""owner, endpoint, pubkey, epub, stakedAmount, registeredAt, updatedAt,
unstakeRequestedAt, status, totalSlashed, griefingRatio"""

DEAL_TUPLE = (
    "(bytes32,address,address,string,uint256,uint256,uint256,uint256,bool,bool,uint256)"
)
"""dealId, relay, client, cid, sizeMB, priceUSDC, createdAt, expiresAt, active,
griefed, clientStake"""

# Relay registry
GET_RELAY_INFO = ContractFunction(
    name="getRelayInfo", inputs=("address",), outputs=(RELAY_INFO_TUPLE,)
)
MIN_STAKE = ContractFunction(name="minStake", outputs=("uint256",))
UNSTAKING_DELAY = ContractFunction(name="unstakingDelay", outputs=("uint256",))
OWNER = ContractFunction(name="owner", outputs=("address",))
REGISTER_RELAY = ContractFunction(
    name="registerRelay", inputs=("string", "bytes", "bytes", "uint256", "uint256")
)
UPDATE_RELAY = ContractFunction(name="updateRelay", inputs=("string", "bytes"))
INCREASE_STAKE = ContractFunction(name="increaseStake", inputs=("uint256",))
REQUEST_UNSTAKE = ContractFunction(name="requestUnstake")
WITHDRAW_STAKE = ContractFunction(name="withdrawStake")
EMERGENCY_WITHDRAW = ContractFunction(
    name="emergencyWithdraw", inputs=("address", "uint256")
)

# Storage deal registry
GET_RELAY_DEALS = ContractFunction(
    name="getRelayDeals", inputs=("address",), outputs=("bytes32[]",)
)
GET_DEAL = ContractFunction(name="getDeal", inputs=("bytes32",), outputs=(DEAL_TUPLE,))

# Stake token (ERC-20)
ALLOWANCE = ContractFunction(
    name="allowance", inputs=("address", "address"), outputs=("uint256",)
)
APPROVE = ContractFunction(name="approve", inputs=("address", "uint256"), outputs=("bool",))

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

GAS_LIMIT_BUFFER_PERCENT = 20
"""Headroom added on top of eth_estimateGas"""

ALREADY_KNOWN_ERRORS = ("already known", "known transaction", "already imported")
"""Node messages meaning an identical signed transaction is already in the pool"""
