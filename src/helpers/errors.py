"""Error taxonomy for the relay registry engine.

Validation errors (``InvalidState``, ``InsufficientStake``, ``UnstakeNotMature``
and the pricing errors) are raised before any network call. Chain errors are
raised by the chain client and the state machine.
"""


class RelayError(Exception):
    """Base class for all relay engine errors."""


class InvalidState(RelayError):
    """Operation is not valid from the current staking state."""


class InsufficientStake(RelayError):
    """Stake amount is below the registry minimum."""


class UnstakeNotMature(RelayError):
    """Withdrawal requested before the unstaking delay elapsed."""


class Unauthorized(RelayError):
    """Signer is not allowed to perform a privileged registry operation."""


class PricingError(RelayError):
    """Base class for pricing resolution errors."""


class UnknownTier(PricingError):
    """Requested tier is not in the tier table."""


class TierSizeOutOfRange(PricingError):
    """Deal size outside the tier's [min_size_mb, max_size_mb] range."""


class TierDurationOutOfRange(PricingError):
    """Deal duration outside the tier's [min_duration_days, max_duration_days]."""


class ChainError(RelayError):
    """Base class for errors raised while talking to the chain."""


class ChainUnavailable(ChainError):
    """RPC endpoint timed out, refused the connection or answered garbage."""


class RPCError(ChainError):
    """JSON-RPC endpoint answered with an error object."""

    def __init__(self, code: int | None, message: str, data: object = None) -> None:
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"RPC error {code}: {message}")


class TransactionFailed(ChainError):
    """Transaction was submitted but reverted or was rejected."""

    def __init__(self, message: str, tx_hash: str | None = None) -> None:
        self.tx_hash = tx_hash
        super().__init__(message)


class TransactionUnknown(ChainError):
    """Transaction was submitted but its outcome could not be determined.

    Never retried automatically: the operator has to check on-chain state
    before another action is attempted.
    """

    def __init__(self, message: str, tx_hash: str) -> None:
        self.tx_hash = tx_hash
        super().__init__(message)


__all__ = [
    "ChainError",
    "ChainUnavailable",
    "InsufficientStake",
    "InvalidState",
    "PricingError",
    "RPCError",
    "RelayError",
    "TierDurationOutOfRange",
    "TierSizeOutOfRange",
    "TransactionFailed",
    "TransactionUnknown",
    "Unauthorized",
    "UnknownTier",
    "UnstakeNotMature",
]
