"""Staking state machine for one relay on one chain.

Every intent follows the same protocol while holding the chain lock:

1. read the cached registration and registry params (one read-only fetch if
   either is missing)
2. validate locally; validation errors never touch the network
3. submit the transaction and wait for confirmations
4. apply the confirmed effect to the cache

A failure at step 3 leaves the cache untouched. A ``TransactionUnknown``
blocks every further intent on the chain until it is acknowledged or a
reconciliation pass finds its receipt.
"""

from datetime import datetime

from collections.abc import Callable
from typing import assert_never

from src.data.registry.client import RegistryClient
from src.data.registry.models import (
    RegistryParams,
    RelayRegistration,
    RelayStatus,
    TransactionResult,
)
from src.helpers.errors import (
    InsufficientStake,
    InvalidState,
    TransactionUnknown,
    Unauthorized,
    UnstakeNotMature,
)
from src.helpers.logging import get_logger
from src.helpers.parsers import utc_now
from src.relay.actions import (
    EmergencyWithdraw,
    IncreaseStake,
    Register,
    RequestUnstake,
    StakingAction,
    UpdateInfo,
    Withdraw,
    action_name,
)
from src.relay.cache import ReconciliationCache
from src.relay.views import registration_from_chain


logger = get_logger(__name__)

UNSTAKING_STATES = frozenset({RelayStatus.UNSTAKING, RelayStatus.WITHDRAWABLE})


def _check_amounts(action: StakingAction) -> None:
    match action:
        case (
            Register(stake_amount=amount)
            | IncreaseStake(amount=amount)
            | EmergencyWithdraw(amount=amount)
        ) if amount <= 0:
            msg = f"{action_name(action)} amount must be positive, got {amount}"
            raise ValueError(msg)
        case UpdateInfo(endpoint=None, peer_public_key=None):
            msg = "update_info needs an endpoint or a peer public key"
            raise ValueError(msg)
        case _:
            pass


def _require_status(
    registration: RelayRegistration, allowed: frozenset[RelayStatus], operation: str
) -> None:
    if registration.status not in allowed:
        msg = f"Cannot {operation} from state {registration.status}"
        raise InvalidState(msg)


class StakingStateMachine:
    """Validates and executes staking intents against the registry."""

    def __init__(
        self,
        client: RegistryClient,
        cache: ReconciliationCache,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the state machine.

        Args:
            client: Registry client for the chain
            cache: Shared reconciliation cache
            clock: Source of the current time
        """
        self.client = client
        self.cache = cache
        self.clock = clock
        self.chain_id = client.chain_id
        self.cache.add_chain(self.chain_id, configured=client.address is not None)

    async def execute(self, action: StakingAction) -> TransactionResult:
        """Run one staking intent end to end.

        Returns:
            TransactionResult of the confirmed transaction

        Raises:
            ValueError: If an amount is not positive
            InvalidState: If the action is not valid from the cached state
            InsufficientStake: If a stake is below the registry minimum
            UnstakeNotMature: If the unstaking delay has not elapsed
            Unauthorized: If the signer is not the registry owner
            ChainUnavailable: If the chain could not be reached
            TransactionFailed: If the transaction was rejected or reverted
            TransactionUnknown: If the outcome is undetermined, or an earlier
                one is still unresolved
        """
        _check_amounts(action)
        name = action_name(action)

        async with self.cache.lock(self.chain_id):
            state = self.cache.state(self.chain_id)
            if state.unresolved_tx_hash is not None:
                msg = (
                    f"Transaction {state.unresolved_tx_hash} on chain {self.chain_id} has an "
                    "unknown outcome; verify on-chain state and acknowledge it first"
                )
                raise TransactionUnknown(msg, state.unresolved_tx_hash)
            if not self.client.has_signer:
                msg = f"Cannot {name}: no signer configured"
                raise InvalidState(msg)

            logger.info("Executing %s on chain %s", name, self.chain_id)
            try:
                match action:
                    case Register():
                        return await self._register(action)
                    case IncreaseStake():
                        return await self._increase_stake(action)
                    case RequestUnstake():
                        return await self._request_unstake()
                    case Withdraw():
                        return await self._withdraw()
                    case UpdateInfo():
                        return await self._update_info(action)
                    case EmergencyWithdraw():
                        return await self._emergency_withdraw(action)
                    case _:
                        assert_never(action)
            except TransactionUnknown as e:
                logger.error(
                    "%s on chain %s has unknown outcome (tx %s); blocking further intents",
                    name,
                    self.chain_id,
                    e.tx_hash,
                )
                self.cache.set_unresolved_tx(self.chain_id, e.tx_hash)
                raise

    def acknowledge_unknown(self) -> str | None:
        """Clear an unresolved transaction after the operator checked the chain.

        Returns:
            The cleared transaction hash, None if nothing was pending
        """
        state = self.cache.state(self.chain_id)
        tx_hash = state.unresolved_tx_hash
        if tx_hash is not None:
            logger.warning("Operator acknowledged unresolved tx %s", tx_hash)
            self.cache.set_unresolved_tx(self.chain_id, None)
        return tx_hash

    async def register(
        self, endpoint: str, peer_public_key: str, stake_amount: int, griefing_ratio: int = 0
    ) -> TransactionResult:
        """Register the relay with ``stake_amount`` base units of stake."""
        return await self.execute(
            Register(
                endpoint=endpoint,
                peer_public_key=peer_public_key,
                stake_amount=stake_amount,
                griefing_ratio=griefing_ratio,
            )
        )

    async def increase_stake(self, amount: int) -> TransactionResult:
        """Add ``amount`` base units to the stake."""
        return await self.execute(IncreaseStake(amount=amount))

    async def request_unstake(self) -> TransactionResult:
        """Start unstaking the full stake."""
        return await self.execute(RequestUnstake())

    async def withdraw(self) -> TransactionResult:
        """Withdraw a matured unstake."""
        return await self.execute(Withdraw())

    async def update_info(
        self, endpoint: str | None = None, peer_public_key: str | None = None
    ) -> TransactionResult:
        """Update the advertised endpoint and/or peer public key."""
        return await self.execute(UpdateInfo(endpoint=endpoint, peer_public_key=peer_public_key))

    async def emergency_withdraw(self, token_address: str, amount: int) -> TransactionResult:
        """Owner-only token recovery from the registry."""
        return await self.execute(EmergencyWithdraw(token_address=token_address, amount=amount))

    # ------------------------------------------------------------------

    async def _current_registration(self) -> RelayRegistration:
        registration = self.cache.get_registration(self.chain_id)
        if registration is not None and registration.status != RelayStatus.NOT_CONFIGURED:
            return registration

        params = self.cache.get_params(self.chain_id)
        block = await self.client.get_block_number()
        info = await self.client.get_relay_info(block=block)
        registration = registration_from_chain(
            self.chain_id,
            self.client.address,
            info,
            unstaking_delay=params.unstaking_delay if params else None,
            observed_block=block,
            now=self.clock(),
        )
        self.cache.apply_registration(self.chain_id, registration)
        return self.cache.get_registration(self.chain_id) or registration

    async def _current_params(self) -> RegistryParams:
        params = self.cache.get_params(self.chain_id)
        if params is None:
            params = await self.client.get_registry_params()
            self.cache.set_params(self.chain_id, params)
        return params

    def _apply(self, registration: RelayRegistration) -> None:
        self.cache.apply_registration(self.chain_id, registration, local_write=True)

    async def _register(self, action: Register) -> TransactionResult:
        registration = await self._current_registration()
        params = await self._current_params()
        _require_status(registration, frozenset({RelayStatus.NOT_REGISTERED}), "register")
        if action.stake_amount < params.min_stake:
            msg = f"Stake {action.stake_amount} below registry minimum {params.min_stake}"
            raise InsufficientStake(msg)

        await self.client.ensure_allowance(action.stake_amount)
        result = await self.client.register_relay(
            action.endpoint,
            action.peer_public_key,
            action.stake_amount,
            action.griefing_ratio,
        )
        self._apply(
            RelayRegistration(
                chain_id=self.chain_id,
                address=self.client.address,
                status=RelayStatus.ACTIVE,
                staked_amount=action.stake_amount,
                total_slashed=registration.total_slashed,
                endpoint=action.endpoint,
                peer_public_key=action.peer_public_key,
                registered_at=self.clock(),
                griefing_ratio=action.griefing_ratio,
                observed_block=result.block_number,
            )
        )
        return result

    async def _increase_stake(self, action: IncreaseStake) -> TransactionResult:
        registration = await self._current_registration()
        _require_status(registration, frozenset({RelayStatus.ACTIVE}), "increase stake")

        await self.client.ensure_allowance(action.amount)
        result = await self.client.increase_stake(action.amount)
        self._apply(
            registration.model_copy(
                update={
                    "staked_amount": registration.staked_amount + action.amount,
                    "observed_block": result.block_number,
                }
            )
        )
        return result

    async def _request_unstake(self) -> TransactionResult:
        registration = await self._current_registration()
        _require_status(registration, frozenset({RelayStatus.ACTIVE}), "request unstake")
        if registration.staked_amount <= 0:
            msg = "Nothing staked to unstake"
            raise InsufficientStake(msg)

        result = await self.client.request_unstake()
        self._apply(
            registration.model_copy(
                update={
                    "status": RelayStatus.UNSTAKING,
                    "pending_unstake_amount": registration.staked_amount,
                    "staked_amount": 0,
                    "unstake_requested_at": self.clock(),
                    "observed_block": result.block_number,
                }
            )
        )
        return result

    async def _withdraw(self) -> TransactionResult:
        registration = await self._current_registration()
        params = await self._current_params()
        _require_status(registration, UNSTAKING_STATES, "withdraw")
        withdrawable_at = registration.withdrawable_at(params.unstaking_delay)
        now = self.clock()
        if withdrawable_at is None or now < withdrawable_at:
            msg = f"Unstake matures at {withdrawable_at}, now {now}"
            raise UnstakeNotMature(msg)

        result = await self.client.withdraw_stake()
        self._apply(
            RelayRegistration(
                chain_id=self.chain_id,
                address=registration.address,
                status=RelayStatus.NOT_REGISTERED,
                total_slashed=registration.total_slashed,
                observed_block=result.block_number,
            )
        )
        return result

    async def _update_info(self, action: UpdateInfo) -> TransactionResult:
        registration = await self._current_registration()
        _require_status(
            registration, frozenset({RelayStatus.ACTIVE}) | UNSTAKING_STATES, "update info"
        )

        # Empty values leave the on-chain field unchanged
        result = await self.client.update_relay(
            action.endpoint or "", action.peer_public_key or ""
        )
        self._apply(
            registration.model_copy(
                update={
                    "endpoint": action.endpoint or registration.endpoint,
                    "peer_public_key": action.peer_public_key or registration.peer_public_key,
                    "observed_block": result.block_number,
                }
            )
        )
        return result

    async def _emergency_withdraw(self, action: EmergencyWithdraw) -> TransactionResult:
        owner = await self.client.get_registry_owner()
        signer = self.client.address or ""
        if owner.lower() != signer.lower():
            msg = f"Signer {signer} is not the registry owner {owner}"
            raise Unauthorized(msg)
        return await self.client.emergency_withdraw(action.token_address, action.amount)


__all__ = ["StakingStateMachine"]
