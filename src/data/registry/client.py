"""Registry chain client.

Adapts the JSON-RPC transport to the relay registry, storage deal registry and
stake token contracts: ABI encoding with ``eth_abi``, signing with
``eth_account`` and confirmation waiting.

Submission is idempotent per intent: a transaction is signed once with a fixed
nonce and only that exact payload is ever re-broadcast, so retries after a
transport failure can never produce a second transaction.
"""

import time

from typing import Any

import asyncio

import httpx
from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_utils import keccak, to_checksum_address

from src.data.deals.models import OnChainDeal
from src.data.registry.constants import (
    ALLOWANCE,
    ALREADY_KNOWN_ERRORS,
    APPROVE,
    EMERGENCY_WITHDRAW,
    GAS_LIMIT_BUFFER_PERCENT,
    GET_DEAL,
    GET_RELAY_DEALS,
    GET_RELAY_INFO,
    INCREASE_STAKE,
    MIN_STAKE,
    OWNER,
    REGISTER_RELAY,
    REQUEST_UNSTAKE,
    UNSTAKING_DELAY,
    UPDATE_RELAY,
    WITHDRAW_STAKE,
    ZERO_ADDRESS,
    ContractFunction,
)
from src.data.registry.models import (
    OnChainRelayInfo,
    RegistryParams,
    TransactionResult,
)
from src.helpers.config import ChainSettings
from src.helpers.constants import (
    CONFIRMATION_TIMEOUT,
    DEFAULT_CONFIRMATIONS,
    MAX_BROADCAST_RETRIES,
    RECEIPT_POLL_INTERVAL,
    RETRY_BASE_DELAY,
    RETRY_MAX_DELAY,
)
from src.helpers.errors import (
    ChainUnavailable,
    RPCError,
    TransactionFailed,
    TransactionUnknown,
)
from src.helpers.logging import get_logger
from src.helpers.parsers import normalize_bytes32
from src.helpers.rpc import RPCClient
from src.helpers.rpc_models import TransactionReceipt


logger = get_logger(__name__)

DEAL_BATCH_SIZE = 50
"""getDeal calls per JSON-RPC batch"""


def function_selector(function: ContractFunction) -> bytes:
    """Return the 4-byte selector of ``function``.

    Example:
        >>> function_selector(APPROVE).hex()
        '095ea7b3'
    """
    return keccak(text=function.signature)[:4]


def encode_call(function: ContractFunction, *args: Any) -> str:
    """ABI-encode a call to ``function`` as 0x-prefixed calldata."""
    payload = function_selector(function) + encode(list(function.inputs), list(args))
    return "0x" + payload.hex()


def decode_result(function: ContractFunction, data: str) -> tuple[Any, ...]:
    """Decode the return data of ``function``.

    Raises:
        ChainUnavailable: If the return data is empty or malformed
    """
    try:
        raw = bytes.fromhex(data[2:] if data.startswith("0x") else data)
        return tuple(decode(list(function.outputs), raw))
    except (AttributeError, ValueError, DecodingError) as e:
        msg = f"Malformed return data for {function.name}"
        raise ChainUnavailable(msg) from e


def _bytes_to_text(value: bytes) -> str:
    try:
        return value.decode("utf-8")
    except UnicodeDecodeError:
        return "0x" + value.hex()


def _hex(value: bytes) -> str:
    return "0x" + bytes(value).hex()


def _block_tag(block: int | None) -> str:
    return "latest" if block is None else hex(block)


class RegistryClient:
    """Read and transaction access to the registry contracts on one chain."""

    def __init__(
        self,
        chain: ChainSettings,
        rpc_client: RPCClient,
        *,
        private_key: str | None = None,
        relay_address: str | None = None,
        confirmations: int = DEFAULT_CONFIRMATIONS,
        confirmation_timeout: float = CONFIRMATION_TIMEOUT,
        poll_interval: float = RECEIPT_POLL_INTERVAL,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the registry client.

        Args:
            chain: Chain settings with contract addresses
            rpc_client: JSON-RPC client for the chain
            private_key: Relay signer key, None for read-only use
            relay_address: Relay address used when no signer is configured
            confirmations: Confirmations awaited for each transaction
            confirmation_timeout: Bound on confirmation waiting in seconds
            poll_interval: Delay between receipt polls in seconds
            http_client: Shared HTTP client, one is created when omitted
        """
        self.chain = chain
        self.rpc = rpc_client
        self.confirmations = confirmations
        self.confirmation_timeout = confirmation_timeout
        self.poll_interval = poll_interval
        self.http_client = http_client or httpx.AsyncClient(timeout=rpc_client.timeout)
        self._owns_http_client = http_client is None

        self._account: LocalAccount | None = (
            Account.from_key(private_key) if private_key else None
        )
        if self._account is not None:
            self.address: str | None = self._account.address
        elif relay_address:
            self.address = to_checksum_address(relay_address)
        else:
            self.address = None

        self.relay_registry = to_checksum_address(chain.relay_registry_address)
        self.deal_registry = to_checksum_address(chain.deal_registry_address)
        self.stake_token = to_checksum_address(chain.stake_token_address)

        # Serializes nonce allocation for this signer
        self._nonce_lock = asyncio.Lock()

    @property
    def chain_id(self) -> int:
        """Chain id of the registry."""
        return self.chain.chain_id

    @property
    def has_signer(self) -> bool:
        """Whether transactions can be submitted."""
        return self._account is not None

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_http_client:
            await self.http_client.aclose()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _read(
        self, to: str, function: ContractFunction, *args: Any, block: int | None = None
    ) -> tuple[Any, ...]:
        data = await self.rpc.eth_call(
            self.http_client, to, encode_call(function, *args), _block_tag(block)
        )
        return decode_result(function, data)

    async def get_block_number(self) -> int:
        """Latest block number."""
        return await self.rpc.get_block_number(self.http_client)

    async def get_relay_info(
        self, address: str | None = None, *, block: int | None = None
    ) -> OnChainRelayInfo | None:
        """Read the registry entry for ``address`` (default: this relay).

        Args:
            address: Relay address
            block: Block to read at, latest when None

        Returns:
            Decoded relay info, or None when the relay has no registry entry
        """
        target = address or self.address
        if target is None:
            msg = "No relay address configured"
            raise ValueError(msg)

        (info,) = await self._read(self.relay_registry, GET_RELAY_INFO, target, block=block)
        (
            owner,
            endpoint,
            pubkey,
            epub,
            staked_amount,
            registered_at,
            updated_at,
            unstake_requested_at,
            status,
            total_slashed,
            griefing_ratio,
        ) = info

        if owner.lower() == ZERO_ADDRESS:
            return None

        return OnChainRelayInfo(
            owner=owner,
            endpoint=endpoint,
            peer_public_key=_bytes_to_text(pubkey),
            epub=_bytes_to_text(epub),
            staked_amount=staked_amount,
            registered_at=registered_at,
            updated_at=updated_at,
            unstake_requested_at=unstake_requested_at,
            status=status,
            total_slashed=total_slashed,
            griefing_ratio=griefing_ratio,
        )

    async def get_registry_params(self) -> RegistryParams:
        """Read the minimum stake and unstaking delay in one batch."""
        min_stake_raw, delay_raw = await self.rpc.batch_call(
            self.http_client,
            [
                (
                    "eth_call",
                    [{"to": self.relay_registry, "data": encode_call(MIN_STAKE)}, "latest"],
                ),
                (
                    "eth_call",
                    [
                        {"to": self.relay_registry, "data": encode_call(UNSTAKING_DELAY)},
                        "latest",
                    ],
                ),
            ],
        )
        (min_stake,) = decode_result(MIN_STAKE, min_stake_raw or "0x")
        (unstaking_delay,) = decode_result(UNSTAKING_DELAY, delay_raw or "0x")
        return RegistryParams(min_stake=min_stake, unstaking_delay=unstaking_delay)

    async def get_registry_owner(self) -> str:
        """Address allowed to call privileged registry functions."""
        (owner,) = await self._read(self.relay_registry, OWNER)
        return owner

    async def get_relay_deal_ids(
        self, address: str | None = None, *, block: int | None = None
    ) -> list[str]:
        """Deal ids registered for ``address`` (default: this relay)."""
        target = address or self.address
        if target is None:
            msg = "No relay address configured"
            raise ValueError(msg)
        (deal_ids,) = await self._read(
            self.deal_registry, GET_RELAY_DEALS, target, block=block
        )
        return [normalize_bytes32(deal_id) for deal_id in deal_ids]

    @staticmethod
    def _parse_deal(raw_deal: tuple[Any, ...]) -> OnChainDeal | None:
        (
            deal_id,
            relay,
            client,
            cid,
            size_mb,
            price,
            created_at,
            expires_at,
            active,
            griefed,
            client_stake,
        ) = raw_deal
        if created_at == 0:
            return None
        return OnChainDeal(
            deal_id=normalize_bytes32(deal_id),
            relay=relay,
            client=client,
            cid=cid,
            size_mb=size_mb,
            price=price,
            created_at=created_at,
            expires_at=expires_at,
            active=active,
            griefed=griefed,
            client_stake=client_stake,
        )

    async def get_deals(
        self, deal_ids: list[str], *, block: int | None = None
    ) -> dict[str, OnChainDeal | None]:
        """Read several deals with batched calls.

        Returns:
            Mapping of requested deal id to deal (None for unknown ids)

        Raises:
            ChainUnavailable: If any batch fails; no partial result is returned
        """
        deals: dict[str, OnChainDeal | None] = {}
        normalized = [normalize_bytes32(deal_id) for deal_id in deal_ids]

        for start in range(0, len(normalized), DEAL_BATCH_SIZE):
            chunk = normalized[start : start + DEAL_BATCH_SIZE]
            results = await self.rpc.batch_call(
                self.http_client,
                [
                    (
                        "eth_call",
                        [
                            {
                                "to": self.deal_registry,
                                "data": encode_call(GET_DEAL, bytes.fromhex(deal_id[2:])),
                            },
                            _block_tag(block),
                        ],
                    )
                    for deal_id in chunk
                ],
            )
            for deal_id, result in zip(chunk, results, strict=True):
                (raw_deal,) = decode_result(GET_DEAL, result or "0x")
                deals[deal_id] = self._parse_deal(raw_deal)

        return deals

    async def find_receipt(self, tx_hash: str) -> TransactionReceipt | None:
        """Receipt for ``tx_hash``, None while it is not mined."""
        return await self.rpc.get_transaction_receipt(self.http_client, tx_hash)

    async def get_allowance(self, owner: str, spender: str) -> int:
        """Stake token allowance granted by ``owner`` to ``spender``."""
        (allowance,) = await self._read(self.stake_token, ALLOWANCE, owner, spender)
        return allowance

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def _require_account(self) -> LocalAccount:
        if self._account is None:
            msg = "No signer configured (RELAY_PRIVATE_KEY)"
            raise ValueError(msg)
        return self._account

    async def _build_and_sign(self, to: str, data: str) -> tuple[str, str]:
        """Build and sign a transaction, returning (tx_hash, raw_tx).

        Raises:
            ChainUnavailable: If gas, fee or nonce reads fail
            TransactionFailed: If the node predicts a revert
        """
        account = self._require_account()
        call = {"from": account.address, "to": to, "data": data}

        try:
            gas_estimate = await self.rpc.estimate_gas(self.http_client, call)
        except RPCError as e:
            msg = f"Transaction rejected during gas estimation: {e.message}"
            raise TransactionFailed(msg) from e

        base_fee, priority_fee = await self.rpc.get_fee_data(self.http_client)
        nonce = await self.rpc.get_transaction_count(self.http_client, account.address)

        tx = {
            "type": 2,
            "chainId": self.chain_id,
            "nonce": nonce,
            "to": to,
            "data": data,
            "value": 0,
            "gas": gas_estimate * (100 + GAS_LIMIT_BUFFER_PERCENT) // 100,
            "maxPriorityFeePerGas": priority_fee,
            "maxFeePerGas": base_fee * 2 + priority_fee,
        }
        signed = account.sign_transaction(tx)
        return _hex(signed.hash), _hex(signed.raw_transaction)

    async def _broadcast(self, tx_hash: str, raw_tx: str) -> None:
        """Broadcast a signed payload, re-sending the same bytes on transport errors.

        Raises:
            TransactionFailed: If the node rejects the transaction
            TransactionUnknown: If the broadcast outcome cannot be determined
        """
        for attempt in range(MAX_BROADCAST_RETRIES):
            try:
                await self.rpc.send_raw_transaction(self.http_client, raw_tx)
                return
            except RPCError as e:
                message = e.message.lower()
                if any(marker in message for marker in ALREADY_KNOWN_ERRORS):
                    return
                if "nonce too low" in message and attempt > 0:
                    # An earlier attempt may have landed with this nonce
                    msg = f"Broadcast outcome unknown for {tx_hash}: {e.message}"
                    raise TransactionUnknown(msg, tx_hash) from e
                msg = f"Transaction rejected: {e.message}"
                raise TransactionFailed(msg, tx_hash) from e
            except ChainUnavailable as e:
                if attempt == MAX_BROADCAST_RETRIES - 1:
                    msg = f"Broadcast outcome unknown for {tx_hash}: {e}"
                    raise TransactionUnknown(msg, tx_hash) from e
                delay = min(RETRY_BASE_DELAY * (2**attempt), RETRY_MAX_DELAY)
                logger.warning(
                    "Broadcast of %s failed (%s), re-sending same payload in %.1fs",
                    tx_hash,
                    e,
                    delay,
                )
                await asyncio.sleep(delay)

    async def wait_for_confirmation(self, tx_hash: str) -> TransactionResult:
        """Wait until ``tx_hash`` has the configured number of confirmations.

        Raises:
            TransactionFailed: If the transaction reverted
            TransactionUnknown: If the outcome is still unknown at the deadline
        """
        deadline = time.monotonic() + self.confirmation_timeout

        while True:
            try:
                receipt = await self.rpc.get_transaction_receipt(self.http_client, tx_hash)
                if receipt is not None:
                    if not receipt.succeeded:
                        msg = f"Transaction {tx_hash} reverted in block {receipt.block_number}"
                        raise TransactionFailed(msg, tx_hash)
                    head = await self.rpc.get_block_number(self.http_client)
                    confirmations = head - receipt.block_number + 1
                    if confirmations >= self.confirmations:
                        return TransactionResult(
                            tx_hash=tx_hash,
                            block_number=receipt.block_number,
                            confirmations=confirmations,
                        )
            except (ChainUnavailable, RPCError) as e:
                logger.debug("Receipt poll for %s failed: %s", tx_hash, e)

            if time.monotonic() >= deadline:
                msg = (
                    f"Transaction {tx_hash} not confirmed within "
                    f"{self.confirmation_timeout:.0f}s"
                )
                raise TransactionUnknown(msg, tx_hash)
            await asyncio.sleep(self.poll_interval)

    async def transact(
        self, to: str, function: ContractFunction, *args: Any
    ) -> TransactionResult:
        """Submit a contract call and wait for its confirmation.

        Args:
            to: Contract address
            function: Contract function description
            *args: Function arguments

        Returns:
            TransactionResult of the confirmed transaction

        Raises:
            ChainUnavailable: If nothing was broadcast because the chain is unreachable
            TransactionFailed: If the transaction was rejected or reverted
            TransactionUnknown: If the outcome could not be determined
        """
        data = encode_call(function, *args)

        # Nonce allocation and broadcast stay ordered per signer
        async with self._nonce_lock:
            tx_hash, raw_tx = await self._build_and_sign(to, data)
            logger.info("Submitting %s on chain %s: %s", function.name, self.chain_id, tx_hash)
            await self._broadcast(tx_hash, raw_tx)

        result = await self.wait_for_confirmation(tx_hash)
        logger.info(
            "%s confirmed in block %s (%s)", function.name, result.block_number, tx_hash
        )
        return result

    async def approve_stake_token(self, amount: int) -> TransactionResult:
        """Approve the relay registry to pull ``amount`` stake tokens."""
        return await self.transact(self.stake_token, APPROVE, self.relay_registry, amount)

    async def ensure_allowance(self, amount: int) -> TransactionResult | None:
        """Approve the registry for ``amount`` when the current allowance is short.

        Returns:
            The approval transaction, or None when no approval was needed
        """
        account = self._require_account()
        allowance = await self.get_allowance(account.address, self.relay_registry)
        if allowance >= amount:
            return None
        logger.info("Allowance %s below %s, approving registry", allowance, amount)
        return await self.approve_stake_token(amount)

    async def register_relay(
        self,
        endpoint: str,
        peer_public_key: str,
        stake_amount: int,
        griefing_ratio: int = 0,
        epub: str = "",
    ) -> TransactionResult:
        """Submit ``registerRelay`` and wait for confirmation."""
        return await self.transact(
            self.relay_registry,
            REGISTER_RELAY,
            endpoint,
            peer_public_key.encode(),
            epub.encode(),
            stake_amount,
            griefing_ratio,
        )

    async def increase_stake(self, amount: int) -> TransactionResult:
        """Submit ``increaseStake`` and wait for confirmation."""
        return await self.transact(self.relay_registry, INCREASE_STAKE, amount)

    async def request_unstake(self) -> TransactionResult:
        """Submit ``requestUnstake`` and wait for confirmation."""
        return await self.transact(self.relay_registry, REQUEST_UNSTAKE)

    async def withdraw_stake(self) -> TransactionResult:
        """Submit ``withdrawStake`` and wait for confirmation."""
        return await self.transact(self.relay_registry, WITHDRAW_STAKE)

    async def update_relay(self, endpoint: str, peer_public_key: str) -> TransactionResult:
        """Submit ``updateRelay``; empty values keep the current on-chain value."""
        return await self.transact(
            self.relay_registry, UPDATE_RELAY, endpoint, peer_public_key.encode()
        )

    async def emergency_withdraw(self, token_address: str, amount: int) -> TransactionResult:
        """Submit the owner-only ``emergencyWithdraw`` and wait for confirmation."""
        return await self.transact(
            self.relay_registry,
            EMERGENCY_WITHDRAW,
            to_checksum_address(token_address),
            amount,
        )


__all__ = [
    "RegistryClient",
    "decode_result",
    "encode_call",
    "function_selector",
]
