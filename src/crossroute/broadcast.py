"""Broadcasting signed transactions and tracking them to a terminal state.

Tracking flow:
1. Register the transaction with the status service (idempotent)
2. Poll the status endpoint at a fixed interval
3. Stop on completed or failed, on caller cancellation, or when the
   optional maximum duration elapses, reporting which one happened
"""

import asyncio
import base64
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from cosmpy.protos.cosmos.tx.v1beta1.tx_pb2 import TxRaw

from crossroute.api import RoutingClient
from crossroute.chain import CosmosChainClient
from crossroute.endpoints import EndpointResolver
from crossroute.errors import (
    TrackingCancelledError,
    TrackingTimeoutError,
    TransactionFailedError,
)
from crossroute.models import BroadcastResult, TxStatus, TxStatusResponse

logger = logging.getLogger(__name__)

ChainClientFactory = Callable[[str, str], CosmosChainClient]


class Broadcaster:
    """Submits signed Cosmos transactions.

    Sends to the chain's REST endpoint, or through the routing service when
    ``via_api`` is set.
    """

    def __init__(
        self,
        resolver: EndpointResolver,
        client: Optional[RoutingClient] = None,
        via_api: bool = False,
        chain_client_factory: ChainClientFactory = CosmosChainClient,
    ):
        if via_api and client is None:
            raise ValueError("Routing client required to broadcast via the routing service")
        self.resolver = resolver
        self.client = client
        self.via_api = via_api
        self.chain_client_factory = chain_client_factory

    async def broadcast(self, chain_id: str, tx_raw: TxRaw) -> BroadcastResult:
        tx_bytes = tx_raw.SerializeToString()

        if self.via_api:
            response = await self.client.submit_transaction(chain_id, base64.b64encode(tx_bytes).decode())
            result = BroadcastResult(chain_id=chain_id, tx_hash=response.tx_hash)
        else:
            rest_url = await self.resolver.rest(chain_id)
            async with self.chain_client_factory(chain_id, rest_url) as chain:
                result = await chain.broadcast(tx_bytes)

        logger.info(f"Broadcast {result.tx_hash} on {chain_id}")
        return result


class TrackingOutcome(str, Enum):
    """How a tracking loop ended."""
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass
class TrackingResult:
    """Result of tracking one transaction."""
    chain_id: str
    tx_hash: str
    outcome: TrackingOutcome
    status: Optional[TxStatusResponse] = None
    polls: int = 0
    elapsed: float = 0.0
    explorer_link: Optional[str] = None
    timeout: Optional[float] = None

    @property
    def completed(self) -> bool:
        return self.outcome == TrackingOutcome.COMPLETED

    def raise_for_outcome(self) -> None:
        """Raise the matching error unless the transaction completed."""
        if self.outcome == TrackingOutcome.FAILED:
            state = ""
            detail = ""
            if self.status is not None:
                state = self.status.state or self.status.status
                detail = self.status.error_message
            raise TransactionFailedError(self.chain_id, self.tx_hash, state, detail)
        if self.outcome == TrackingOutcome.TIMED_OUT:
            raise TrackingTimeoutError(self.chain_id, self.tx_hash, self.timeout or self.elapsed)
        if self.outcome == TrackingOutcome.CANCELLED:
            raise TrackingCancelledError(self.chain_id, self.tx_hash)


class TransactionTracker:
    """Registers transactions with the status service and polls them."""

    def __init__(
        self,
        client: RoutingClient,
        poll_interval: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.poll_interval = poll_interval
        self._sleep = sleep

    async def track(
        self,
        chain_id: str,
        tx_hash: str,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> TrackingResult:
        """Track a transaction until a terminal state.

        Args:
            chain_id: Chain the transaction was broadcast on
            tx_hash: Transaction hash
            timeout: Maximum seconds to poll (None = no limit)
            cancel_event: Set by the caller to stop polling

        Returns:
            TrackingResult; ``outcome`` tells how the loop ended
        """
        registration = await self.client.track_transaction(chain_id, tx_hash)
        logger.info(f"Tracking {tx_hash} on {chain_id}")

        loop = asyncio.get_running_loop()
        started = loop.time()
        polls = 0
        status: Optional[TxStatusResponse] = None

        def result(outcome: TrackingOutcome) -> TrackingResult:
            return TrackingResult(
                chain_id=chain_id,
                tx_hash=tx_hash,
                outcome=outcome,
                status=status,
                polls=polls,
                elapsed=loop.time() - started,
                explorer_link=registration.explorer_link,
                timeout=timeout,
            )

        while True:
            if cancel_event is not None and cancel_event.is_set():
                logger.warning(f"Tracking of {tx_hash} cancelled after {polls} poll(s)")
                return result(TrackingOutcome.CANCELLED)

            if timeout is not None and loop.time() - started >= timeout:
                logger.warning(f"Tracking of {tx_hash} timed out after {timeout}s")
                return result(TrackingOutcome.TIMED_OUT)

            status = await self.client.transaction_status(chain_id, tx_hash)
            polls += 1
            normalized = status.normalized
            logger.debug(f"{tx_hash} poll {polls}: {status.state or status.status} ({normalized.value})")

            if normalized == TxStatus.COMPLETED:
                logger.info(f"Transaction {tx_hash} on {chain_id} completed")
                return result(TrackingOutcome.COMPLETED)

            if normalized == TxStatus.FAILED:
                logger.error(f"Transaction {tx_hash} on {chain_id} failed: {status.error_message}")
                return result(TrackingOutcome.FAILED)

            await self._wait(cancel_event)

    async def _wait(self, cancel_event: Optional[asyncio.Event]) -> None:
        if cancel_event is None:
            await self._sleep(self.poll_interval)
            return
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            pass
