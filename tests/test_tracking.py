"""Tests for broadcasting and status tracking."""

import asyncio
import base64

import pytest
from cosmpy.protos.cosmos.tx.v1beta1.tx_pb2 import TxRaw

from crossroute.broadcast import Broadcaster, TrackingOutcome, TransactionTracker
from crossroute.endpoints import EndpointResolver
from crossroute.errors import (
    TrackingCancelledError,
    TrackingTimeoutError,
    TransactionFailedError,
)
from crossroute.models import SubmitTxResponse, TxStatus, TxStatusResponse

PENDING = TxStatusResponse(status="STATE_PENDING", state="STATE_SUBMITTED")
COMPLETED = TxStatusResponse(status="STATE_COMPLETED", state="STATE_COMPLETED_SUCCESS")
FAILED = TxStatusResponse(
    status="STATE_COMPLETED",
    state="STATE_COMPLETED_ERROR",
    error={"message": "packet timed out"},
)


class RecordingSleep:
    """Sleep replacement that records requested intervals without waiting."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class TestStatusNormalization:
    """Tests for mapping raw states onto pending/completed/failed."""

    def test_completed(self):
        assert COMPLETED.normalized == TxStatus.COMPLETED

    def test_failed_wins_over_completed_status(self):
        assert FAILED.normalized == TxStatus.FAILED
        assert FAILED.error_message == "packet timed out"

    def test_abandoned(self):
        assert TxStatusResponse(status="STATE_ABANDONED").normalized == TxStatus.FAILED

    def test_unknown_is_pending(self):
        assert PENDING.normalized == TxStatus.PENDING
        assert TxStatusResponse(status="").normalized == TxStatus.PENDING


class TestTransactionTracker:
    """Tests for the polling loop."""

    @pytest.mark.asyncio
    async def test_polls_at_fixed_interval_until_completed(self, routing_client):
        routing_client.transaction_status.side_effect = [PENDING, PENDING, COMPLETED, PENDING]
        sleep = RecordingSleep()
        tracker = TransactionTracker(routing_client, poll_interval=2.0, sleep=sleep)

        result = await tracker.track("osmosis-1", "ABC")

        assert result.outcome == TrackingOutcome.COMPLETED
        assert result.completed
        assert result.polls == 3
        assert sleep.calls == [2.0, 2.0]
        assert routing_client.transaction_status.await_count == 3
        routing_client.track_transaction.assert_awaited_once_with("osmosis-1", "ABC")
        assert result.explorer_link == "https://explorer.test/osmosis-1/ABC"
        result.raise_for_outcome()

    @pytest.mark.asyncio
    async def test_failed_state_ends_tracking(self, routing_client):
        """A failed terminal state stops polling with a failed outcome."""
        routing_client.transaction_status.side_effect = [PENDING, FAILED, COMPLETED]
        tracker = TransactionTracker(routing_client, poll_interval=1.0, sleep=RecordingSleep())

        result = await tracker.track("osmosis-1", "ABC")

        assert result.outcome == TrackingOutcome.FAILED
        assert result.polls == 2
        with pytest.raises(TransactionFailedError) as exc:
            result.raise_for_outcome()
        assert exc.value.state == "STATE_COMPLETED_ERROR"
        assert exc.value.tx_hash == "ABC"
        assert "packet timed out" in str(exc.value)

    @pytest.mark.asyncio
    async def test_timeout(self, routing_client):
        routing_client.transaction_status.return_value = PENDING
        tracker = TransactionTracker(routing_client, poll_interval=0.01)

        result = await tracker.track("osmosis-1", "ABC", timeout=0.05)

        assert result.outcome == TrackingOutcome.TIMED_OUT
        assert result.polls >= 1
        assert result.elapsed >= 0.05
        with pytest.raises(TrackingTimeoutError):
            result.raise_for_outcome()

    @pytest.mark.asyncio
    async def test_cancel(self, routing_client):
        """Setting the cancel event ends the loop without further polls."""
        cancel = asyncio.Event()
        polls = iter([PENDING, PENDING])

        async def status(chain_id, tx_hash):
            response = next(polls)
            if routing_client.transaction_status.await_count == 2:
                cancel.set()
            return response

        routing_client.transaction_status.side_effect = status
        tracker = TransactionTracker(routing_client, poll_interval=30.0)

        result = await asyncio.wait_for(tracker.track("osmosis-1", "ABC", cancel_event=cancel), timeout=5)

        assert result.outcome == TrackingOutcome.CANCELLED
        assert result.polls == 2
        with pytest.raises(TrackingCancelledError):
            result.raise_for_outcome()

    @pytest.mark.asyncio
    async def test_cancelled_before_first_poll(self, routing_client):
        cancel = asyncio.Event()
        cancel.set()
        tracker = TransactionTracker(routing_client, poll_interval=1.0)

        result = await tracker.track("osmosis-1", "ABC", cancel_event=cancel)

        assert result.outcome == TrackingOutcome.CANCELLED
        assert result.polls == 0
        routing_client.transaction_status.assert_not_called()


class TestBroadcaster:
    """Tests for submitting signed transactions."""

    @pytest.mark.asyncio
    async def test_broadcast_to_chain(self, registry, chain_clients):
        chain = chain_clients.add("osmosis-1", tx_hash="OSMOHASH")
        broadcaster = Broadcaster(EndpointResolver(registry), chain_client_factory=chain_clients)
        tx_raw = TxRaw(body_bytes=b"body", auth_info_bytes=b"auth", signatures=[b"sig"])

        result = await broadcaster.broadcast("osmosis-1", tx_raw)

        assert result.tx_hash == "OSMOHASH"
        assert chain.broadcasted == [tx_raw.SerializeToString()]
        assert chain.closed == 1

    @pytest.mark.asyncio
    async def test_broadcast_via_routing_service(self, registry, routing_client):
        routing_client.submit_transaction.return_value = SubmitTxResponse(tx_hash="SUBMITTED")
        broadcaster = Broadcaster(EndpointResolver(registry), routing_client, via_api=True)
        tx_raw = TxRaw(body_bytes=b"body", auth_info_bytes=b"auth", signatures=[b"sig"])

        result = await broadcaster.broadcast("osmosis-1", tx_raw)

        assert result.tx_hash == "SUBMITTED"
        routing_client.submit_transaction.assert_awaited_once_with(
            "osmosis-1", base64.b64encode(tx_raw.SerializeToString()).decode()
        )

    def test_via_api_requires_client(self, registry):
        with pytest.raises(ValueError):
            Broadcaster(EndpointResolver(registry), via_api=True)
