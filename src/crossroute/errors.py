"""Exception hierarchy for route execution.

Error classes:
- Configuration errors: fatal, raised before anything is signed
- Precondition errors: fatal, raised before any broadcast
- Execution errors: a transaction reached a chain and failed there
- Tracking errors: the status loop ended without a completed state
"""

from decimal import Decimal
from typing import Optional


class CrossRouteError(Exception):
    """Base exception for all route execution errors."""
    pass


# ======================
# Configuration
# ======================


class ConfigurationError(CrossRouteError):
    """Missing or unusable configuration for a chain or leg."""
    pass


class MissingAddressError(ConfigurationError):
    """No user address supplied for a chain the route touches."""

    def __init__(self, chain_id: str):
        super().__init__(f"No address provided for chain {chain_id}")
        self.chain_id = chain_id


class MissingSignerError(ConfigurationError):
    """The caller's signer getter returned nothing for a chain."""

    def __init__(self, chain_id: str, kind: str = "cosmos"):
        super().__init__(f"No {kind} signer available for chain {chain_id}")
        self.chain_id = chain_id
        self.kind = kind


class EndpointResolutionError(ConfigurationError):
    """No RPC/REST endpoint could be resolved for a chain."""

    def __init__(self, chain_id: str, kind: str = "rest"):
        super().__init__(f"Unable to resolve {kind} endpoint for chain {chain_id}")
        self.chain_id = chain_id
        self.kind = kind


class FeeResolutionError(ConfigurationError):
    """No gas price or fee asset could be resolved for a chain."""

    def __init__(self, chain_id: str, reason: str = "no fee information"):
        super().__init__(f"Unable to resolve fee for chain {chain_id}: {reason}")
        self.chain_id = chain_id


class ChainMismatchError(ConfigurationError):
    """The EVM signer is connected to a different chain than the operation."""

    def __init__(self, expected: str, actual: str):
        super().__init__(f"EVM signer is on chain {actual}, operation requires chain {expected}")
        self.expected = expected
        self.actual = actual


class UnsupportedMessageError(ConfigurationError):
    """No codec is registered for a message type URL."""

    def __init__(self, type_url: str, reason: str = "no codec registered"):
        super().__init__(f"Unsupported message type {type_url}: {reason}")
        self.type_url = type_url


# ======================
# Preconditions
# ======================


class PreconditionError(CrossRouteError):
    """A check that must pass before broadcasting failed."""
    pass


class AccountNotFoundError(PreconditionError):
    """The signing address is not among the signer's accounts."""

    def __init__(self, address: str):
        super().__init__(f"Failed to retrieve account {address} from signer")
        self.address = address


class InsufficientBalanceError(PreconditionError):
    """Fee-denom balance is below the fee required for a leg."""

    def __init__(
        self,
        chain_id: str,
        address: str,
        denom: str,
        required: Decimal,
        available: Decimal,
    ):
        super().__init__(
            f"Insufficient balance on {chain_id} for {address}: "
            f"need {required} {denom} for fees, have {available} {denom}"
        )
        self.chain_id = chain_id
        self.address = address
        self.denom = denom
        self.required = required
        self.available = available


class SimulationFailedError(PreconditionError):
    """Chain rejected a gas simulation (4xx from the simulate endpoint)."""

    def __init__(self, chain_id: str, status_code: int, log: str = ""):
        super().__init__(f"Gas simulation rejected by {chain_id} (HTTP {status_code}): {log}")
        self.chain_id = chain_id
        self.status_code = status_code
        self.log = log


# ======================
# On-chain execution
# ======================


class ExecutionError(CrossRouteError):
    """A transaction was rejected or reverted by a chain."""

    def __init__(self, message: str, chain_id: str, tx_hash: Optional[str] = None):
        super().__init__(message)
        self.chain_id = chain_id
        self.tx_hash = tx_hash


class BroadcastRejectedError(ExecutionError):
    """Chain rejected the transaction at broadcast (non-zero check code)."""

    def __init__(self, chain_id: str, tx_hash: Optional[str], code: int, log: str = ""):
        super().__init__(
            f"Transaction {tx_hash} rejected by {chain_id} (code {code}): {log}",
            chain_id,
            tx_hash,
        )
        self.code = code
        self.log = log


class TransactionRevertedError(ExecutionError):
    """EVM transaction receipt reported status 0."""

    def __init__(self, chain_id: str, tx_hash: str, what: str = "transaction"):
        super().__init__(f"{what.capitalize()} {tx_hash} reverted on chain {chain_id}", chain_id, tx_hash)
        self.what = what


class TransactionFailedError(ExecutionError):
    """Status service reported a failed terminal state."""

    def __init__(self, chain_id: str, tx_hash: str, state: str = "", detail: str = ""):
        message = f"Transaction {tx_hash} on {chain_id} failed"
        if state:
            message += f" ({state})"
        if detail:
            message += f": {detail}"
        super().__init__(message, chain_id, tx_hash)
        self.state = state
        self.detail = detail


# ======================
# Tracking
# ======================


class TrackingError(CrossRouteError):
    """Status tracking ended without reaching completion."""

    def __init__(self, message: str, chain_id: str, tx_hash: str):
        super().__init__(message)
        self.chain_id = chain_id
        self.tx_hash = tx_hash


class TrackingTimeoutError(TrackingError):
    """Tracking exceeded its maximum duration."""

    def __init__(self, chain_id: str, tx_hash: str, timeout: float):
        super().__init__(
            f"Transaction {tx_hash} on {chain_id} not completed after {timeout}s",
            chain_id,
            tx_hash,
        )
        self.timeout = timeout


class TrackingCancelledError(TrackingError):
    """Caller cancelled tracking."""

    def __init__(self, chain_id: str, tx_hash: str):
        super().__init__(f"Tracking of {tx_hash} on {chain_id} cancelled", chain_id, tx_hash)


# ======================
# Routing service / route
# ======================


class RoutingAPIError(CrossRouteError):
    """Routing service returned an error response."""

    def __init__(self, status_code: int, message: str, path: str = ""):
        super().__init__(f"Routing API error {status_code} on {path or 'request'}: {message}")
        self.status_code = status_code
        self.message = message
        self.path = path


class RouteExecutionError(CrossRouteError):
    """A leg failed; earlier legs stay committed.

    Attributes:
        leg_index: Zero-based index of the failed operation
        completed_legs: Number of legs that completed before the failure
        cause: The underlying error
    """

    def __init__(self, leg_index: int, completed_legs: int, cause: Exception):
        super().__init__(
            f"Route aborted at leg {leg_index} ({completed_legs} leg(s) completed): {cause}"
        )
        self.leg_index = leg_index
        self.completed_legs = completed_legs
        self.cause = cause
