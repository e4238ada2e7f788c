"""Tests for multi-leg route execution."""

import asyncio
import json
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from cosmpy.protos.cosmos.tx.v1beta1.tx_pb2 import AuthInfo, TxRaw

from crossroute.errors import (
    ChainMismatchError,
    InsufficientBalanceError,
    MissingAddressError,
    MissingSignerError,
    RouteExecutionError,
    SimulationFailedError,
    TrackingCancelledError,
    TrackingTimeoutError,
    TransactionFailedError,
    TransactionRevertedError,
)
from crossroute.evm import EVMSigner, TxReceipt
from crossroute.executor import RouteExecutor, TransactionEvent
from crossroute.models import (
    Coin,
    CosmosOperation,
    EVMOperation,
    Fee,
    GasPrice,
    RequiredApproval,
    Route,
    RouteQuote,
    TxStatusResponse,
)
from crossroute.signing import LocalAminoSigner, LocalDirectSigner

from conftest import TEST_PRIVATE_KEY

COMPLETED = TxStatusResponse(status="STATE_COMPLETED", state="STATE_COMPLETED_SUCCESS")
FAILED = TxStatusResponse(status="STATE_COMPLETED", state="STATE_COMPLETED_ERROR")
PENDING = TxStatusResponse(status="STATE_PENDING")


class EventSigner(LocalDirectSigner):
    """Direct signer that records when it signs."""

    def __init__(self, prefix: str, events: list):
        super().__init__(TEST_PRIVATE_KEY, prefix=prefix)
        self.events = events

    async def sign_direct(self, signer_address, sign_doc):
        self.events.append(("sign", sign_doc.chain_id))
        return await super().sign_direct(signer_address, sign_doc)


def transfer_op(sender: str) -> CosmosOperation:
    return CosmosOperation(
        chain_id="cosmoshub-4",
        msg_type_url="/ibc.applications.transfer.v1.MsgTransfer",
        msg=json.dumps(
            {
                "source_port": "transfer",
                "source_channel": "channel-141",
                "token": {"denom": "uatom", "amount": "1000000"},
                "sender": sender,
                "receiver": "osmo1receiver",
                "timeout_timestamp": 1700000000000000000,
                "memo": "",
            }
        ),
        path=["cosmoshub-4", "osmosis-1"],
    )


def swap_op(sender: str) -> CosmosOperation:
    return CosmosOperation(
        chain_id="osmosis-1",
        msg_type_url="/cosmwasm.wasm.v1.MsgExecuteContract",
        msg=json.dumps(
            {
                "sender": sender,
                "contract": "osmo1entrypoint",
                "msg": json.dumps({"swap_and_action": {}}),
                "funds": [{"denom": "ibc/ATOM", "amount": "1000000"}],
            }
        ),
        path=["osmosis-1"],
    )


def evm_op(approvals=()) -> EVMOperation:
    return EVMOperation(
        chain_id="42161",
        to="0x1111111111111111111111111111111111111111",
        data="0xdeadbeef",
        value="0",
        required_erc20_approvals=list(approvals),
    )


def make_route(*operations) -> Route:
    return Route(
        chain_ids=tuple(dict.fromkeys(op.chain_id for op in operations)),
        source_asset_denom="uatom",
        source_asset_chain_id="cosmoshub-4",
        amount_in="1000000",
        dest_asset_denom="uosmo",
        dest_asset_chain_id="osmosis-1",
        estimated_amount_out="950000",
        operations=tuple(operations),
    )


@pytest.fixture
def events() -> list:
    return []


@pytest.fixture
def signers(events) -> dict:
    return {
        "cosmoshub-4": EventSigner("cosmos", events),
        "osmosis-1": EventSigner("osmo", events),
    }


@pytest.fixture
def addresses(signers) -> dict:
    return {chain_id: signer.address for chain_id, signer in signers.items()}


@pytest.fixture
def executor(settings, registry, routing_client, chain_clients) -> RouteExecutor:
    return RouteExecutor(routing_client, registry, settings=settings, chain_client_factory=chain_clients)


def broadcast_fee(chain_client) -> AuthInfo:
    tx = TxRaw.FromString(chain_client.broadcasted[0])
    return AuthInfo.FromString(tx.auth_info_bytes).fee


class TestCosmosRoute:
    """Tests for routes made of Cosmos legs."""

    @pytest.mark.asyncio
    async def test_two_leg_route(self, executor, signers, addresses, chain_clients, events):
        """Each leg is signed only after the previous leg's completion callback."""
        route = make_route(transfer_op(addresses["cosmoshub-4"]), swap_op(addresses["osmosis-1"]))

        async def on_broadcast(event: TransactionEvent):
            events.append(("broadcast", event.chain_id))

        def on_completed(event: TransactionEvent):
            events.append(("completed", event.chain_id))

        result = await executor.execute_route(
            route,
            addresses,
            get_cosmos_signer=signers.get,
            on_transaction_broadcast=on_broadcast,
            on_transaction_completed=on_completed,
        )

        assert events == [
            ("sign", "cosmoshub-4"),
            ("broadcast", "cosmoshub-4"),
            ("completed", "cosmoshub-4"),
            ("sign", "osmosis-1"),
            ("broadcast", "osmosis-1"),
            ("completed", "osmosis-1"),
        ]
        assert result.tx_hashes == ["COSMOSHUB-4HASH", "OSMOSIS-1HASH"]
        assert [leg.tracking.completed for leg in result.legs] == [True, True]

    @pytest.mark.asyncio
    async def test_fee_from_simulation_and_registry_price(self, executor, signers, addresses, chain_clients):
        """100000 simulated gas -> 150000 limit -> 3750 uatom at 0.025."""
        route = make_route(transfer_op(addresses["cosmoshub-4"]))

        await executor.execute_route(route, addresses, get_cosmos_signer=signers.get)

        fee = broadcast_fee(chain_clients.clients["cosmoshub-4"])
        assert fee.gas_limit == 150000
        assert fee.amount[0].denom == "uatom"
        assert fee.amount[0].amount == "3750"

    @pytest.mark.asyncio
    async def test_injected_gas_price(self, executor, signers, addresses, chain_clients):
        route = make_route(transfer_op(addresses["cosmoshub-4"]))

        await executor.execute_route(
            route,
            addresses,
            get_cosmos_signer=signers.get,
            get_gas_price=lambda chain_id: GasPrice("uatom", Decimal("0.1")),
        )

        assert broadcast_fee(chain_clients.clients["cosmoshub-4"]).amount[0].amount == "15000"

    @pytest.mark.asyncio
    async def test_fee_override_skips_simulation(self, executor, signers, addresses, chain_clients):
        route = make_route(transfer_op(addresses["cosmoshub-4"]))
        override = Fee(amount=(Coin("uatom", 5000),), gas=250000)

        await executor.execute_route(
            route,
            addresses,
            get_cosmos_signer=signers.get,
            fee_overrides={"cosmoshub-4": override},
        )

        chain = chain_clients.clients["cosmoshub-4"]
        assert chain.simulated == []
        assert broadcast_fee(chain).gas_limit == 250000

    @pytest.mark.asyncio
    async def test_async_signer_getter_and_amino_signer(self, executor, addresses, chain_clients):
        amino = LocalAminoSigner(TEST_PRIVATE_KEY, prefix="cosmos")
        route = make_route(transfer_op(amino.address))

        async def get_signer(chain_id):
            return amino

        result = await executor.execute_route(route, addresses, get_cosmos_signer=get_signer)

        assert result.tx_hashes == ["COSMOSHUB-4HASH"]

    @pytest.mark.asyncio
    async def test_chain_connections_released(self, executor, signers, addresses, chain_clients):
        route = make_route(transfer_op(addresses["cosmoshub-4"]), swap_op(addresses["osmosis-1"]))

        await executor.execute_route(route, addresses, get_cosmos_signer=signers.get)

        for chain in chain_clients.clients.values():
            assert chain.opened == chain.closed
            assert chain.opened >= 1


class TestBalanceValidation:
    """Tests for the pre-flight fee balance check."""

    @pytest.mark.asyncio
    async def test_insufficient_balance_aborts_before_broadcast(
        self, executor, signers, addresses, chain_clients, routing_client
    ):
        chain_clients.add("cosmoshub-4", balances={"uatom": 10_000_000})
        osmosis = chain_clients.add("osmosis-1", balances={"uosmo": 100})
        route = make_route(transfer_op(addresses["cosmoshub-4"]), swap_op(addresses["osmosis-1"]))

        with pytest.raises(InsufficientBalanceError) as exc:
            await executor.execute_route(
                route, addresses, get_cosmos_signer=signers.get, validate_gas_balance=True
            )

        assert exc.value.chain_id == "osmosis-1"
        assert exc.value.required == Decimal(3750)
        assert exc.value.available == Decimal(100)
        assert chain_clients.clients["cosmoshub-4"].broadcasted == []
        assert osmosis.broadcasted == []
        routing_client.track_transaction.assert_not_called()

    @pytest.mark.asyncio
    async def test_sufficient_balance_proceeds(self, executor, signers, addresses, chain_clients):
        chain_clients.add("cosmoshub-4", balances={"uatom": 3750})
        route = make_route(transfer_op(addresses["cosmoshub-4"]))

        result = await executor.execute_route(
            route, addresses, get_cosmos_signer=signers.get, validate_gas_balance=True
        )

        assert len(result.legs) == 1

    @pytest.mark.asyncio
    async def test_dependent_leg_uses_default_gas(self, executor, signers, addresses, chain_clients):
        """Leg 2 spends funds leg 1 delivers, so its pre-flight simulation is rejected."""
        chain_clients.add("cosmoshub-4", balances={"uatom": 10_000_000})
        osmosis = chain_clients.add("osmosis-1", balances={"uosmo": 10_000_000}, simulate_failures=1)
        route = make_route(transfer_op(addresses["cosmoshub-4"]), swap_op(addresses["osmosis-1"]))

        result = await executor.execute_route(
            route, addresses, get_cosmos_signer=signers.get, validate_gas_balance=True
        )

        assert result.tx_hashes == ["COSMOSHUB-4HASH", "OSMOSIS-1HASH"]
        # Simulated again at execution time, when the funds have arrived
        assert len(osmosis.simulated) == 2
        assert broadcast_fee(osmosis).gas_limit == 150000

    @pytest.mark.asyncio
    async def test_dependent_leg_default_gas_checked_against_balance(
        self, executor, signers, addresses, chain_clients
    ):
        """2400000 default gas for a contract call at 0.025 uosmo -> 60000 uosmo."""
        chain_clients.add("cosmoshub-4", balances={"uatom": 10_000_000})
        osmosis = chain_clients.add("osmosis-1", balances={"uosmo": 59_999}, simulate_failures=1)
        route = make_route(transfer_op(addresses["cosmoshub-4"]), swap_op(addresses["osmosis-1"]))

        with pytest.raises(InsufficientBalanceError) as exc:
            await executor.execute_route(
                route, addresses, get_cosmos_signer=signers.get, validate_gas_balance=True
            )

        assert exc.value.chain_id == "osmosis-1"
        assert exc.value.required == Decimal(60000)
        assert chain_clients.clients["cosmoshub-4"].broadcasted == []
        assert osmosis.broadcasted == []

    @pytest.mark.asyncio
    async def test_first_leg_simulation_rejected(self, executor, signers, addresses, chain_clients):
        hub = chain_clients.add("cosmoshub-4", balances={"uatom": 10_000_000}, simulate_failures=1)
        route = make_route(transfer_op(addresses["cosmoshub-4"]), swap_op(addresses["osmosis-1"]))

        with pytest.raises(SimulationFailedError) as exc:
            await executor.execute_route(
                route, addresses, get_cosmos_signer=signers.get, validate_gas_balance=True
            )

        assert exc.value.chain_id == "cosmoshub-4"
        assert exc.value.status_code == 400
        assert hub.broadcasted == []


class TestLegFailures:
    """Tests for aborting a route part way through."""

    @pytest.mark.asyncio
    async def test_failed_second_leg(self, executor, signers, addresses, routing_client, events):
        """First leg stays committed; the error names the failed leg."""
        routing_client.transaction_status.side_effect = lambda chain_id, tx_hash: (
            FAILED if chain_id == "osmosis-1" else COMPLETED
        )
        completed = []
        route = make_route(transfer_op(addresses["cosmoshub-4"]), swap_op(addresses["osmosis-1"]))

        with pytest.raises(RouteExecutionError) as exc:
            await executor.execute_route(
                route,
                addresses,
                get_cosmos_signer=signers.get,
                on_transaction_completed=completed.append,
            )

        assert exc.value.leg_index == 1
        assert exc.value.completed_legs == 1
        assert isinstance(exc.value.cause, TransactionFailedError)
        assert exc.value.__cause__ is exc.value.cause
        assert [event.chain_id for event in completed] == ["cosmoshub-4"]

    @pytest.mark.asyncio
    async def test_missing_address(self, executor, signers, addresses):
        route = make_route(transfer_op(addresses["cosmoshub-4"]), swap_op(addresses["osmosis-1"]))
        del addresses["osmosis-1"]

        with pytest.raises(RouteExecutionError) as exc:
            await executor.execute_route(route, addresses, get_cosmos_signer=signers.get)

        assert isinstance(exc.value.cause, MissingAddressError)
        assert exc.value.cause.chain_id == "osmosis-1"
        assert exc.value.completed_legs == 1

    @pytest.mark.asyncio
    async def test_missing_signer(self, executor, addresses):
        route = make_route(transfer_op(addresses["cosmoshub-4"]))

        with pytest.raises(RouteExecutionError) as exc:
            await executor.execute_route(route, addresses, get_cosmos_signer=lambda chain_id: None)

        assert isinstance(exc.value.cause, MissingSignerError)
        assert exc.value.leg_index == 0
        assert exc.value.completed_legs == 0

    @pytest.mark.asyncio
    async def test_simulation_rejected_mid_route(self, executor, signers, addresses, chain_clients):
        chain_clients.add("osmosis-1", simulate_failures=1)
        route = make_route(transfer_op(addresses["cosmoshub-4"]), swap_op(addresses["osmosis-1"]))

        with pytest.raises(RouteExecutionError) as exc:
            await executor.execute_route(route, addresses, get_cosmos_signer=signers.get)

        assert isinstance(exc.value.cause, SimulationFailedError)
        assert exc.value.leg_index == 1
        assert exc.value.completed_legs == 1
        assert chain_clients.clients["osmosis-1"].broadcasted == []

    @pytest.mark.asyncio
    async def test_tracking_timeout(self, executor, signers, addresses, routing_client):
        routing_client.transaction_status.return_value = PENDING
        route = make_route(transfer_op(addresses["cosmoshub-4"]))

        with pytest.raises(RouteExecutionError) as exc:
            await executor.execute_route(
                route, addresses, get_cosmos_signer=signers.get, tracking_timeout=0.05
            )

        assert isinstance(exc.value.cause, TrackingTimeoutError)
        assert exc.value.cause.tx_hash == "COSMOSHUB-4HASH"
        assert exc.value.completed_legs == 0

    @pytest.mark.asyncio
    async def test_cancelled_tracking(self, executor, signers, addresses, routing_client):
        """Setting the cancel event stops the current leg; later legs never start."""
        routing_client.transaction_status.return_value = PENDING
        cancel = asyncio.Event()
        signed = []

        def get_signer(chain_id):
            signed.append(chain_id)
            return signers[chain_id]

        route = make_route(transfer_op(addresses["cosmoshub-4"]), swap_op(addresses["osmosis-1"]))

        with pytest.raises(RouteExecutionError) as exc:
            await executor.execute_route(
                route,
                addresses,
                get_cosmos_signer=get_signer,
                on_transaction_broadcast=lambda event: cancel.set(),
                cancel_event=cancel,
            )

        assert isinstance(exc.value.cause, TrackingCancelledError)
        assert exc.value.leg_index == 0
        assert signed == ["cosmoshub-4"]


@pytest.fixture
def evm_signer() -> AsyncMock:
    signer = AsyncMock(spec=EVMSigner)
    signer.get_address.return_value = "0x4444444444444444444444444444444444444444"
    signer.get_chain_id.return_value = 42161
    signer.read_contract.return_value = 0
    signer.write_contract.return_value = "0xapprove"
    signer.send_transaction.return_value = "0xcall"
    signer.wait_for_receipt.side_effect = lambda tx_hash: TxReceipt(tx_hash=tx_hash, status=1)
    return signer


APPROVAL = RequiredApproval(
    token_contract="0x2222222222222222222222222222222222222222",
    spender="0x3333333333333333333333333333333333333333",
    amount="1000000",
)


class TestEVMLegs:
    """Tests for EVM legs."""

    @pytest.mark.asyncio
    async def test_approval_then_call(self, executor, evm_signer, routing_client):
        route = make_route(evm_op([APPROVAL]))

        result = await executor.execute_route(
            route, {"42161": "0x4444444444444444444444444444444444444444"}, get_evm_signer=lambda c: evm_signer
        )

        evm_signer.write_contract.assert_awaited_once()
        assert evm_signer.write_contract.call_args.args[2] == "approve"
        assert evm_signer.write_contract.call_args.args[3] == [APPROVAL.spender, 1000000]
        evm_signer.send_transaction.assert_awaited_once_with(
            "0x1111111111111111111111111111111111111111", "0xdeadbeef", 0
        )
        assert result.legs[0].tx_hash == "0xcall"
        assert result.legs[0].approval_tx_hashes == ["0xapprove"]
        routing_client.track_transaction.assert_awaited_once_with("42161", "0xcall")

    @pytest.mark.asyncio
    async def test_sufficient_allowance_skips_approval(self, executor, evm_signer):
        evm_signer.read_contract.return_value = 5000000
        route = make_route(evm_op([APPROVAL]))

        result = await executor.execute_route(route, {}, get_evm_signer=lambda c: evm_signer)

        evm_signer.write_contract.assert_not_called()
        assert result.legs[0].approval_tx_hashes == []

    @pytest.mark.asyncio
    async def test_reverted_call(self, executor, evm_signer):
        evm_signer.wait_for_receipt.side_effect = lambda tx_hash: TxReceipt(tx_hash=tx_hash, status=0)
        route = make_route(evm_op())

        with pytest.raises(RouteExecutionError) as exc:
            await executor.execute_route(route, {}, get_evm_signer=lambda c: evm_signer)

        assert isinstance(exc.value.cause, TransactionRevertedError)
        assert exc.value.cause.tx_hash == "0xcall"

    @pytest.mark.asyncio
    async def test_reverted_approval(self, executor, evm_signer):
        evm_signer.wait_for_receipt.side_effect = lambda tx_hash: TxReceipt(
            tx_hash=tx_hash, status=0 if tx_hash == "0xapprove" else 1
        )
        route = make_route(evm_op([APPROVAL]))

        with pytest.raises(RouteExecutionError) as exc:
            await executor.execute_route(route, {}, get_evm_signer=lambda c: evm_signer)

        assert exc.value.cause.what == "approval"
        evm_signer.send_transaction.assert_not_called()

    @pytest.mark.asyncio
    async def test_signer_on_wrong_chain(self, executor, evm_signer):
        evm_signer.get_chain_id.return_value = 1
        route = make_route(evm_op())

        with pytest.raises(RouteExecutionError) as exc:
            await executor.execute_route(route, {}, get_evm_signer=lambda c: evm_signer)

        assert isinstance(exc.value.cause, ChainMismatchError)
        evm_signer.send_transaction.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_evm_signer(self, executor):
        with pytest.raises(RouteExecutionError) as exc:
            await executor.execute_route(make_route(evm_op()), {})

        assert isinstance(exc.value.cause, MissingSignerError)
        assert exc.value.cause.kind == "evm"


class TestExecuteQuote:
    """Tests for executing a quote through message generation."""

    @pytest.mark.asyncio
    async def test_execute_quote(self, executor, signers, addresses, routing_client):
        quote = RouteQuote(
            source_asset_denom="uatom",
            source_asset_chain_id="cosmoshub-4",
            dest_asset_denom="uosmo",
            dest_asset_chain_id="osmosis-1",
            amount_in="1000000",
            amount_out="950000",
            chain_ids=["cosmoshub-4", "osmosis-1"],
            required_chain_addresses=["cosmoshub-4", "osmosis-1"],
        )
        routing_client.messages.return_value = [transfer_op(addresses["cosmoshub-4"])]

        result = await executor.execute_quote(
            quote, addresses, slippage_tolerance_percent="3", get_cosmos_signer=signers.get
        )

        routing_client.messages.assert_awaited_once_with(
            quote, [addresses["cosmoshub-4"], addresses["osmosis-1"]], "3"
        )
        assert result.tx_hashes == ["COSMOSHUB-4HASH"]

    @pytest.mark.asyncio
    async def test_quote_requires_every_address(self, executor, addresses, routing_client):
        quote = RouteQuote(
            source_asset_denom="uatom",
            source_asset_chain_id="cosmoshub-4",
            dest_asset_denom="uosmo",
            dest_asset_chain_id="osmosis-1",
            amount_in="1000000",
            required_chain_addresses=["cosmoshub-4", "osmosis-1", "neutron-1"],
        )

        with pytest.raises(MissingAddressError):
            await executor.execute_quote(quote, addresses)

        routing_client.messages.assert_not_called()
