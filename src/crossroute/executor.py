"""Route executor: walks a route's operations in order, one leg at a time.

Per Cosmos leg:
1. Resolve address and signer, find the signing account
2. Open a chain connection, fetch fresh account number/sequence
3. Resolve gas price, build the message, estimate gas, compute the fee
4. Sign, then release the chain connection
5. Broadcast, fire the broadcast callback
6. Track until completion, fire the completion callback

Per EVM leg:
1. Resolve the EVM signer and check it is on the operation's chain
2. Satisfy ERC-20 approvals
3. Send the call, wait for its receipt
4. Broadcast callback, track, completion callback

Legs never overlap: a later leg may spend funds an earlier leg delivered.
A failing leg aborts the rest of the route; completed legs stay committed.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Union

from cosmpy.protos.cosmos.tx.v1beta1.tx_pb2 import TxRaw

from crossroute.api import RoutingClient
from crossroute.broadcast import (
    Broadcaster,
    ChainClientFactory,
    TrackingResult,
    TransactionTracker,
)
from crossroute.chain import CosmosChainClient
from crossroute.config import Settings, get_settings
from crossroute.endpoints import EndpointGetter, EndpointResolver
from crossroute.errors import (
    ChainMismatchError,
    CrossRouteError,
    FeeResolutionError,
    MissingAddressError,
    MissingSignerError,
    RouteExecutionError,
    SimulationFailedError,
    TransactionRevertedError,
)
from crossroute.evm import EVMSigner, ensure_approvals
from crossroute.fees import FeeResolver
from crossroute.gas import BalanceValidator, GasEstimator, default_gas_for_message
from crossroute.messages import CosmosMessage, MessageBuilder
from crossroute.models import (
    CosmosOperation,
    EVMOperation,
    Fee,
    GasPrice,
    Route,
    RouteQuote,
    SignerData,
)
from crossroute.registry import ChainRegistry
from crossroute.signing.base import AccountData, CosmosSigner, find_account
from crossroute.signing.dispatcher import TransactionSigner
from crossroute.signing.tx import encode_pubkey

logger = logging.getLogger(__name__)

MaybeAwaitable = Union[Any, Awaitable[Any]]
CosmosSignerGetter = Callable[[str], MaybeAwaitable]
EVMSignerGetter = Callable[[str], MaybeAwaitable]
GasPriceGetter = Callable[[str], MaybeAwaitable]
TransactionCallback = Callable[["TransactionEvent"], MaybeAwaitable]


async def _call(func: Callable, *args) -> Any:
    """Call a sync or async callable and return its result."""
    result = func(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


@dataclass(frozen=True)
class TransactionEvent:
    """Passed to lifecycle callbacks."""
    leg_index: int
    chain_id: str
    tx_hash: str
    explorer_link: Optional[str] = None
    tracking: Optional[TrackingResult] = None


@dataclass
class LegResult:
    """Outcome of one executed leg."""
    leg_index: int
    chain_id: str
    kind: str
    tx_hash: str
    tracking: TrackingResult
    approval_tx_hashes: list[str] = field(default_factory=list)


@dataclass
class RouteResult:
    """Outcome of a fully executed route."""
    legs: list[LegResult] = field(default_factory=list)

    @property
    def tx_hashes(self) -> list[str]:
        return [leg.tx_hash for leg in self.legs]


@dataclass
class _Execution:
    """Caller-supplied capabilities and options for one route execution."""
    user_addresses: dict[str, str]
    get_cosmos_signer: Optional[CosmosSignerGetter] = None
    get_evm_signer: Optional[EVMSignerGetter] = None
    get_gas_price: Optional[GasPriceGetter] = None
    fee_overrides: dict[str, Fee] = field(default_factory=dict)
    on_transaction_broadcast: Optional[TransactionCallback] = None
    on_transaction_completed: Optional[TransactionCallback] = None
    cancel_event: Optional[asyncio.Event] = None
    tracking_timeout: Optional[float] = None


class RouteExecutor:
    """Executes multi-leg, cross-chain routes."""

    def __init__(
        self,
        client: RoutingClient,
        registry: ChainRegistry,
        settings: Optional[Settings] = None,
        resolver: Optional[EndpointResolver] = None,
        fee_resolver: Optional[FeeResolver] = None,
        builder: Optional[MessageBuilder] = None,
        tx_signer: Optional[TransactionSigner] = None,
        estimator: Optional[GasEstimator] = None,
        balance_validator: Optional[BalanceValidator] = None,
        broadcaster: Optional[Broadcaster] = None,
        tracker: Optional[TransactionTracker] = None,
        chain_client_factory: ChainClientFactory = CosmosChainClient,
    ):
        self.settings = settings or get_settings()
        self.client = client
        self.registry = registry
        self.resolver = resolver or EndpointResolver(registry, rpc_endpoints=self.settings.evm_rpc_urls)
        self.fee_resolver = fee_resolver or FeeResolver(
            registry, fee_denom_overrides=self.settings.fee_denom_overrides
        )
        self.builder = builder or MessageBuilder()
        self.tx_signer = tx_signer or TransactionSigner(
            registry,
            self.builder,
            family_overrides=self.settings.signing_family_overrides,
            timeout_height_offset=self.settings.timeout_height_offset,
        )
        self.estimator = estimator or GasEstimator(self.settings.gas_multiplier)
        self.balance_validator = balance_validator or BalanceValidator()
        self.chain_client_factory = chain_client_factory
        self.broadcaster = broadcaster or Broadcaster(
            self.resolver,
            client,
            via_api=self.settings.broadcast_via_api,
            chain_client_factory=chain_client_factory,
        )
        self.tracker = tracker or TransactionTracker(client, self.settings.poll_interval_seconds)

    @classmethod
    async def create(
        cls,
        client: RoutingClient,
        settings: Optional[Settings] = None,
        registry: Optional[ChainRegistry] = None,
        rest_endpoints: Optional[dict[str, str]] = None,
        rpc_endpoints: Optional[dict[str, str]] = None,
        get_rest_endpoint: Optional[EndpointGetter] = None,
        get_rpc_endpoint: Optional[EndpointGetter] = None,
    ) -> "RouteExecutor":
        """Build an executor with fee data from the routing service's chain list."""
        settings = settings or get_settings()
        registry = registry or ChainRegistry.load(settings.chain_registry_path)
        chains = await client.chains()

        return cls(
            client,
            registry,
            settings=settings,
            resolver=EndpointResolver(
                registry,
                rest_endpoints=rest_endpoints,
                rpc_endpoints={**settings.evm_rpc_urls, **(rpc_endpoints or {})},
                get_rest_endpoint=get_rest_endpoint,
                get_rpc_endpoint=get_rpc_endpoint,
            ),
            fee_resolver=FeeResolver(registry, chains, settings.fee_denom_overrides),
        )

    # ======================
    # Entry points
    # ======================

    async def execute_quote(
        self,
        quote: RouteQuote,
        user_addresses: dict[str, str],
        slippage_tolerance_percent: str = "1",
        **options,
    ) -> RouteResult:
        """Fetch the operations for a quote and execute them.

        ``options`` are passed to :meth:`execute_route`.
        """
        address_list = []
        for chain_id in quote.addresses_required:
            if chain_id not in user_addresses:
                raise MissingAddressError(chain_id)
            address_list.append(user_addresses[chain_id])

        operations = await self.client.messages(quote, address_list, slippage_tolerance_percent)
        route = Route.from_quote(quote, operations)
        return await self.execute_route(route, user_addresses, **options)

    async def execute_route(
        self,
        route: Route,
        user_addresses: dict[str, str],
        get_cosmos_signer: Optional[CosmosSignerGetter] = None,
        get_evm_signer: Optional[EVMSignerGetter] = None,
        get_gas_price: Optional[GasPriceGetter] = None,
        fee_overrides: Optional[dict[str, Fee]] = None,
        validate_gas_balance: bool = False,
        on_transaction_broadcast: Optional[TransactionCallback] = None,
        on_transaction_completed: Optional[TransactionCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
        tracking_timeout: Optional[float] = None,
    ) -> RouteResult:
        """Execute every operation of a route, strictly in order.

        Args:
            route: Route with ordered operations
            user_addresses: Chain id -> address used on that chain
            get_cosmos_signer: Chain id -> Cosmos signer (sync or async)
            get_evm_signer: Chain id -> EVM signer (sync or async)
            get_gas_price: Chain id -> GasPrice; None falls back to the
                recommended gas price
            fee_overrides: Chain id -> fixed Fee, skipping estimation
            validate_gas_balance: Check every Cosmos leg's fee balance before
                the first broadcast
            on_transaction_broadcast: Awaited after each broadcast
            on_transaction_completed: Awaited after each leg completes
            cancel_event: Set to stop tracking the current leg
            tracking_timeout: Maximum seconds to track each leg

        Returns:
            RouteResult with one LegResult per operation

        Raises:
            InsufficientBalanceError: Pre-flight validation failed (nothing sent)
            RouteExecutionError: A leg failed; earlier legs stay committed
        """
        ctx = _Execution(
            user_addresses=dict(user_addresses),
            get_cosmos_signer=get_cosmos_signer,
            get_evm_signer=get_evm_signer,
            get_gas_price=get_gas_price,
            fee_overrides=dict(fee_overrides or {}),
            on_transaction_broadcast=on_transaction_broadcast,
            on_transaction_completed=on_transaction_completed,
            cancel_event=cancel_event,
            tracking_timeout=(
                tracking_timeout if tracking_timeout is not None else self.settings.tracking_timeout_seconds
            ),
        )

        logger.info(
            f"Executing route {route.amount_in} {route.source_asset_denom}@{route.source_asset_chain_id} -> "
            f"{route.dest_asset_denom}@{route.dest_asset_chain_id} ({len(route.operations)} operation(s))"
        )

        if validate_gas_balance:
            await self.validate_gas_balances(route, ctx)

        result = RouteResult()
        total = len(route.operations)

        for index, operation in enumerate(route.operations):
            logger.info(f"Leg {index + 1}/{total}: {operation.kind} on {operation.chain_id}")
            try:
                if isinstance(operation, CosmosOperation):
                    leg = await self._execute_cosmos_leg(index, operation, ctx)
                else:
                    leg = await self._execute_evm_leg(index, operation, ctx)
            except CrossRouteError as e:
                logger.error(f"Leg {index + 1}/{total} on {operation.chain_id} failed: {e}")
                raise RouteExecutionError(index, len(result.legs), e) from e
            result.legs.append(leg)

        logger.info(f"Route completed: {', '.join(result.tx_hashes)}")
        return result

    # ======================
    # Balance validation
    # ======================

    async def validate_gas_balances(self, route: Route, ctx: _Execution) -> None:
        """Recompute every Cosmos leg's fee and check the payer can cover it.

        Only the first leg runs against the state it will actually see. Later
        legs may spend funds that have not arrived yet, so when their
        simulation is rejected the message type's default gas is used.

        Raises:
            InsufficientBalanceError: First leg whose fee exceeds the balance
            SimulationFailedError: The first leg's simulation was rejected
        """
        for index, operation in enumerate(route.operations):
            if not isinstance(operation, CosmosOperation):
                continue
            address = self._address_for(operation, ctx)
            signer = await self._cosmos_signer(operation.chain_id, ctx)
            account = await find_account(signer, address)

            rest_url = await self.resolver.rest(operation.chain_id)
            async with self.chain_client_factory(operation.chain_id, rest_url) as chain:
                signer_data = await chain.get_signer_data(address)
                message = self.builder.build(operation)
                fee = await self._compute_fee(
                    chain, operation.chain_id, message, account, signer_data, ctx, allow_default_gas=index > 0
                )
                await self.balance_validator.validate(chain, operation.chain_id, address, fee)

        logger.info("Gas balances validated for all Cosmos legs")

    # ======================
    # Cosmos legs
    # ======================

    async def _execute_cosmos_leg(self, index: int, operation: CosmosOperation, ctx: _Execution) -> LegResult:
        tx_raw = await self._sign_leg(operation, ctx)
        broadcast = await self.broadcaster.broadcast(operation.chain_id, tx_raw)
        return await self._finish_leg(index, "cosmos", operation.chain_id, broadcast.tx_hash, ctx)

    async def _sign_leg(self, operation: CosmosOperation, ctx: _Execution) -> TxRaw:
        chain_id = operation.chain_id
        address = self._address_for(operation, ctx)
        signer = await self._cosmos_signer(chain_id, ctx)
        account = await find_account(signer, address)

        rest_url = await self.resolver.rest(chain_id)
        async with self.chain_client_factory(chain_id, rest_url) as chain:
            signer_data = await chain.get_signer_data(address)
            message = self.builder.build(operation)
            fee = await self._compute_fee(chain, chain_id, message, account, signer_data, ctx)
            tx_raw = await self.tx_signer.sign(signer, address, message, fee, signer_data, chain)

        logger.debug(
            f"Signed {operation.msg_type_url} for {address} "
            f"(account {signer_data.account_number}, sequence {signer_data.sequence})"
        )
        return tx_raw

    async def _compute_fee(
        self,
        chain: CosmosChainClient,
        chain_id: str,
        message: CosmosMessage,
        account: AccountData,
        signer_data: SignerData,
        ctx: _Execution,
        allow_default_gas: bool = False,
    ) -> Fee:
        if chain_id in ctx.fee_overrides:
            fee = ctx.fee_overrides[chain_id]
            logger.debug(f"Using fee override for {chain_id}: {fee}")
        else:
            gas_price = await self._gas_price(chain_id, ctx)
            pubkey = encode_pubkey(account.pubkey, self.tx_signer.strategy(chain_id).pubkey_type_url)
            try:
                gas_limit = await self.estimator.estimate(
                    chain,
                    self.builder.to_any(message),
                    pubkey,
                    signer_data.sequence,
                )
            except SimulationFailedError as e:
                if not allow_default_gas:
                    raise
                gas_limit = default_gas_for_message(message.type_url)
                logger.warning(
                    f"Simulation on {chain_id} rejected before earlier legs landed ({e.log}); "
                    f"using default gas {gas_limit} for {message.type_url}"
                )
            fee = Fee.from_gas_price(gas_price, gas_limit)

        if not fee.is_resolved:
            raise FeeResolutionError(chain_id, "fee amount or gas limit missing")
        logger.info(
            f"Fee on {chain_id}: {', '.join(f'{c.amount}{c.denom}' for c in fee.amount)} (gas {fee.gas})"
        )
        return fee

    async def _gas_price(self, chain_id: str, ctx: _Execution) -> GasPrice:
        if ctx.get_gas_price is not None:
            gas_price = await _call(ctx.get_gas_price, chain_id)
            if gas_price is not None:
                return gas_price
        return self.fee_resolver.recommended_gas_price(chain_id)

    # ======================
    # EVM legs
    # ======================

    async def _execute_evm_leg(self, index: int, operation: EVMOperation, ctx: _Execution) -> LegResult:
        chain_id = operation.chain_id
        if ctx.get_evm_signer is None:
            raise MissingSignerError(chain_id, "evm")
        signer: Optional[EVMSigner] = await _call(ctx.get_evm_signer, chain_id)
        if signer is None:
            raise MissingSignerError(chain_id, "evm")

        await self._check_evm_chain(signer, chain_id)

        call = self.builder.build_evm(operation)
        approvals = await ensure_approvals(signer, chain_id, call.approvals)

        tx_hash = await signer.send_transaction(call.to, call.data, call.value)
        logger.info(f"Sent EVM call {tx_hash} to {call.to} on chain {chain_id}")

        receipt = await signer.wait_for_receipt(tx_hash)
        if not receipt.succeeded:
            raise TransactionRevertedError(chain_id, tx_hash)

        leg = await self._finish_leg(index, "evm", chain_id, tx_hash, ctx)
        leg.approval_tx_hashes = approvals
        return leg

    async def _check_evm_chain(self, signer: EVMSigner, chain_id: str) -> None:
        info = self.registry.get(chain_id)
        if info is not None and info.evm_chain_id is not None:
            expected = info.evm_chain_id
        elif chain_id.isdigit():
            expected = int(chain_id)
        else:
            return

        actual = await signer.get_chain_id()
        if int(actual) != expected:
            raise ChainMismatchError(str(expected), str(actual))

    # ======================
    # Shared
    # ======================

    async def _finish_leg(
        self,
        index: int,
        kind: str,
        chain_id: str,
        tx_hash: str,
        ctx: _Execution,
    ) -> LegResult:
        if ctx.on_transaction_broadcast is not None:
            await _call(ctx.on_transaction_broadcast, TransactionEvent(index, chain_id, tx_hash))

        tracking = await self.tracker.track(
            chain_id,
            tx_hash,
            timeout=ctx.tracking_timeout,
            cancel_event=ctx.cancel_event,
        )
        tracking.raise_for_outcome()

        if ctx.on_transaction_completed is not None:
            await _call(
                ctx.on_transaction_completed,
                TransactionEvent(index, chain_id, tx_hash, tracking.explorer_link, tracking),
            )

        return LegResult(leg_index=index, chain_id=chain_id, kind=kind, tx_hash=tx_hash, tracking=tracking)

    def _address_for(self, operation, ctx: _Execution) -> str:
        address = ctx.user_addresses.get(operation.chain_id) or operation.signer_address
        if not address:
            raise MissingAddressError(operation.chain_id)
        return address

    async def _cosmos_signer(self, chain_id: str, ctx: _Execution) -> CosmosSigner:
        if ctx.get_cosmos_signer is None:
            raise MissingSignerError(chain_id, "cosmos")
        signer = await _call(ctx.get_cosmos_signer, chain_id)
        if signer is None:
            raise MissingSignerError(chain_id, "cosmos")
        return signer
