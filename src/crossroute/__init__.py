"""Cross-chain route execution.

Provides:
- RoutingClient: routing/status service client
- RouteExecutor: executes multi-leg routes leg by leg
- ChainRegistry: immutable chain metadata
- Signer interfaces and local reference signers
"""

from crossroute.api import RoutingClient
from crossroute.broadcast import TrackingOutcome, TrackingResult, TransactionTracker
from crossroute.config import Settings, get_settings
from crossroute.errors import CrossRouteError, RouteExecutionError
from crossroute.evm import EVMSigner, Web3EVMSigner
from crossroute.executor import LegResult, RouteExecutor, RouteResult, TransactionEvent
from crossroute.models import Fee, GasPrice, Route, RouteQuote
from crossroute.registry import ChainRegistry

__version__ = "0.1.0"

__all__ = [
    # Service
    "RoutingClient",
    # Execution
    "RouteExecutor",
    "RouteResult",
    "LegResult",
    "TransactionEvent",
    "TransactionTracker",
    "TrackingOutcome",
    "TrackingResult",
    # Data
    "ChainRegistry",
    "Route",
    "RouteQuote",
    "Fee",
    "GasPrice",
    # Signers
    "EVMSigner",
    "Web3EVMSigner",
    # Config & errors
    "Settings",
    "get_settings",
    "CrossRouteError",
    "RouteExecutionError",
]
