"""Ethereum JSON-RPC client utilities."""

from typing import Any

import httpx

from src.helpers.errors import ChainUnavailable, RPCError
from src.helpers.parsers import parse_hex_int
from src.helpers.rpc_models import JsonRpcRequest, TransactionReceipt


def _rpc_error(error: Any) -> RPCError:
    if not isinstance(error, dict):
        return RPCError(None, str(error))
    return RPCError(error.get("code"), error.get("message", ""), error.get("data"))


def _quantity(method: str, value: Any) -> int:
    try:
        return parse_hex_int(value)
    except (TypeError, ValueError) as e:
        msg = f"Malformed quantity {value!r} returned by {method}"
        raise ChainUnavailable(msg) from e


class RPCClient:
    """Ethereum JSON-RPC client with batching support.

    Transport failures (timeouts, refused connections, HTTP errors, bodies
    that are not JSON-RPC) surface as ``ChainUnavailable``; error objects
    returned by the node surface as ``RPCError``.
    """

    def __init__(self, rpc_url: str, timeout: float = 30.0) -> None:
        """Initialize RPC client.

        Args:
            rpc_url: Ethereum JSON-RPC endpoint URL
            timeout: Default timeout for requests in seconds

        Raises:
            ValueError: If rpc_url is empty or None
        """
        if not rpc_url:
            msg = "RPC URL cannot be empty"
            raise ValueError(msg)

        self.rpc_url = rpc_url
        self.timeout = timeout

    async def _post(
        self,
        client: httpx.AsyncClient,
        payload: dict[str, Any] | list[dict[str, Any]],
        timeout: float | None,
    ) -> Any:
        try:
            response = await client.post(
                self.rpc_url, json=payload, timeout=timeout or self.timeout
            )
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as e:
            msg = f"RPC request to {self.rpc_url} timed out"
            raise ChainUnavailable(msg) from e
        except httpx.HTTPStatusError as e:
            msg = f"RPC endpoint returned HTTP {e.response.status_code}"
            raise ChainUnavailable(msg) from e
        except httpx.TransportError as e:
            msg = f"RPC transport error: {e}"
            raise ChainUnavailable(msg) from e
        except ValueError as e:
            msg = "RPC endpoint returned a non-JSON body"
            raise ChainUnavailable(msg) from e

    async def call(
        self,
        client: httpx.AsyncClient,
        method: str,
        params: list[Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> Any:
        """Make a single JSON-RPC call.

        Args:
            client: HTTP client instance
            method: RPC method name (e.g., "eth_blockNumber")
            params: Method parameters list
            timeout: Optional timeout override

        Returns:
            RPC result value

        Raises:
            ChainUnavailable: If the request fails or times out
            RPCError: If the RPC response contains an error
        """
        request = JsonRpcRequest(method=method, params=params or [], id=1)
        result = await self._post(client, request.model_dump(), timeout)

        if not isinstance(result, dict):
            msg = f"Malformed RPC response for {method}"
            raise ChainUnavailable(msg)

        if "error" in result:
            raise _rpc_error(result["error"] or {})

        return result.get("result")

    async def batch_call(
        self,
        client: httpx.AsyncClient,
        requests: list[tuple[str, list[Any]]],
        *,
        timeout: float | None = None,
    ) -> list[Any]:
        """Make multiple JSON-RPC calls in a single batch request.

        Unlike ``call``, a batch fails as a whole: any error entry or missing
        id raises, so callers never see a partial result set.

        Args:
            client: HTTP client instance
            requests: List of (method, params) tuples
            timeout: Optional timeout override

        Returns:
            List of results in the same order as requests

        Raises:
            ChainUnavailable: If the request fails or the response is malformed
            RPCError: If any entry in the batch returned an error
        """
        if not requests:
            return []

        batch_payload = [
            JsonRpcRequest(method=method, params=params, id=idx).model_dump()
            for idx, (method, params) in enumerate(requests)
        ]

        results = await self._post(client, batch_payload, timeout)
        if not isinstance(results, list) or len(results) != len(requests):
            msg = "Malformed RPC batch response"
            raise ChainUnavailable(msg)

        # Match entries to requests by id
        by_id: dict[Any, dict[str, Any]] = {}
        for entry in results:
            if not isinstance(entry, dict) or not isinstance(entry.get("id"), int):
                msg = "Malformed RPC batch entry without an id"
                raise ChainUnavailable(msg)
            by_id[entry["id"]] = entry
        if set(by_id) != set(range(len(requests))):
            msg = "RPC batch response ids do not match the request"
            raise ChainUnavailable(msg)

        values: list[Any] = []
        for idx in range(len(requests)):
            entry = by_id[idx]
            if "error" in entry:
                raise _rpc_error(entry["error"] or {})
            values.append(entry.get("result"))
        return values

    async def eth_call(
        self,
        client: httpx.AsyncClient,
        to: str,
        data: str,
        block: int | str = "latest",
    ) -> str:
        """Execute a read-only contract call.

        Args:
            client: HTTP client instance
            to: Contract address
            data: 0x-prefixed calldata
            block: Block number (int) or tag

        Returns:
            0x-prefixed return data
        """
        block_param = hex(block) if isinstance(block, int) else block
        result = await self.call(client, "eth_call", [{"to": to, "data": data}, block_param])
        if result is None:
            return "0x"
        if not isinstance(result, str):
            msg = f"Malformed eth_call result for {to}"
            raise ChainUnavailable(msg)
        return result

    async def get_block_number(self, client: httpx.AsyncClient) -> int:
        """Get the latest block number."""
        result = await self.call(client, "eth_blockNumber", [])
        return _quantity("eth_blockNumber", result)

    async def get_transaction_count(
        self, client: httpx.AsyncClient, address: str, block: str = "pending"
    ) -> int:
        """Get the next nonce for ``address``."""
        result = await self.call(client, "eth_getTransactionCount", [address, block])
        return _quantity("eth_getTransactionCount", result)

    async def estimate_gas(self, client: httpx.AsyncClient, tx: dict[str, Any]) -> int:
        """Estimate gas for a transaction.

        Raises:
            RPCError: If the node predicts a revert
        """
        result = await self.call(client, "eth_estimateGas", [tx])
        return _quantity("eth_estimateGas", result)

    async def get_fee_data(self, client: httpx.AsyncClient) -> tuple[int, int]:
        """Get (base_fee_per_gas, max_priority_fee_per_gas) for EIP-1559 transactions."""
        block, priority_fee = await self.batch_call(
            client,
            [
                ("eth_getBlockByNumber", ["latest", False]),
                ("eth_maxPriorityFeePerGas", []),
            ],
        )
        if block is not None and not isinstance(block, dict):
            msg = "Malformed block returned by eth_getBlockByNumber"
            raise ChainUnavailable(msg)
        base_fee = _quantity("eth_getBlockByNumber", (block or {}).get("baseFeePerGas"))
        return base_fee, _quantity("eth_maxPriorityFeePerGas", priority_fee)

    async def send_raw_transaction(self, client: httpx.AsyncClient, raw_tx: str) -> str:
        """Broadcast a signed transaction and return its hash."""
        return await self.call(client, "eth_sendRawTransaction", [raw_tx])

    async def get_transaction_receipt(
        self, client: httpx.AsyncClient, tx_hash: str
    ) -> TransactionReceipt | None:
        """Get a transaction receipt, None while the transaction is pending."""
        result = await self.call(client, "eth_getTransactionReceipt", [tx_hash])
        if result is None:
            return None
        try:
            return TransactionReceipt.model_validate(result)
        except ValueError as e:
            msg = f"Malformed receipt for {tx_hash}"
            raise ChainUnavailable(msg) from e


__all__ = [
    "RPCClient",
]
