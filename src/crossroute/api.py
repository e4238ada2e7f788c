"""Routing/status service client.

Thin async client over the routing service's REST API: asset listings,
route quoting, multi-leg message generation, transaction submission,
tracking registration and status polling. Every request carries the
configured client identifier.
"""

import logging
from typing import Any, Optional

import httpx

from crossroute.config import Settings, get_settings
from crossroute.errors import RoutingAPIError
from crossroute.models import (
    Asset,
    AssetRecommendation,
    Chain,
    CosmosOperation,
    EVMOperation,
    RouteQuote,
    SubmitTxResponse,
    SwapVenue,
    TrackTxResponse,
    TxStatusResponse,
)

logger = logging.getLogger(__name__)


class RoutingClient:
    """Async client for the routing service.

    Use as an async context manager, or call ``aclose()`` when done:

        async with RoutingClient() as client:
            quote = await client.route(...)
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or get_settings()
        self.client_id = self.settings.client_id

        headers = {"Accept": "application/json"}
        if self.settings.api_key:
            headers["authorization"] = self.settings.api_key

        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=self.settings.routing_api_url.rstrip("/"),
            timeout=self.settings.http_timeout,
            headers=headers,
        )

    async def __aenter__(self) -> "RoutingClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ======================
    # Transport
    # ======================

    async def _get(self, path: str, params: Optional[dict] = None) -> Any:
        query = {key: value for key, value in (params or {}).items() if value is not None}
        query["client_id"] = self.client_id
        logger.debug(f"GET {path} {query}")
        response = await self._client.get(path, params=query)
        return self._handle(path, response)

    async def _post(self, path: str, body: Optional[dict] = None) -> Any:
        payload = {key: value for key, value in (body or {}).items() if value is not None}
        payload["client_id"] = self.client_id
        logger.debug(f"POST {path}")
        response = await self._client.post(path, json=payload)
        return self._handle(path, response)

    @staticmethod
    def _handle(path: str, response: httpx.Response) -> Any:
        if response.status_code >= 400:
            try:
                data = response.json()
                message = data.get("message") or data.get("error") or response.text
            except ValueError:
                message = response.text
            logger.warning(f"Routing API {path} returned {response.status_code}: {message}")
            raise RoutingAPIError(response.status_code, str(message), path)
        return response.json()

    # ======================
    # Assets & chains
    # ======================

    async def assets(
        self,
        chain_id: Optional[str] = None,
        native_only: Optional[bool] = None,
        include_cw20_assets: Optional[bool] = None,
        include_evm_assets: Optional[bool] = None,
    ) -> dict[str, list[Asset]]:
        """List assets, keyed by chain id."""
        data = await self._get(
            "/fungible/assets",
            {
                "chain_id": chain_id,
                "native_only": _flag(native_only),
                "include_cw20_assets": _flag(include_cw20_assets),
                "include_evm_assets": _flag(include_evm_assets),
            },
        )
        return _assets_by_chain(data.get("chain_to_assets_map", {}))

    async def assets_from_source(
        self,
        source_asset_denom: str,
        source_asset_chain_id: str,
        allow_multi_tx: bool = False,
    ) -> dict[str, list[Asset]]:
        """List assets reachable from a source asset, keyed by chain id."""
        data = await self._post(
            "/fungible/assets_from_source",
            {
                "source_asset_denom": source_asset_denom,
                "source_asset_chain_id": source_asset_chain_id,
                "allow_multi_tx": allow_multi_tx,
            },
        )
        return _assets_by_chain(data.get("dest_assets", {}))

    async def recommend_assets(
        self,
        source_asset_denom: str,
        source_asset_chain_id: str,
        dest_chain_id: str,
        reason: Optional[str] = None,
    ) -> list[AssetRecommendation]:
        data = await self._post(
            "/fungible/recommend_assets",
            {
                "source_asset_denom": source_asset_denom,
                "source_asset_chain_id": source_asset_chain_id,
                "dest_chain_id": dest_chain_id,
                "reason": reason,
            },
        )
        return [AssetRecommendation.model_validate(item) for item in data.get("recommendations", [])]

    async def chains(self) -> list[Chain]:
        data = await self._get("/info/chains")
        return [Chain.model_validate(chain) for chain in data.get("chains", [])]

    async def venues(self) -> list[SwapVenue]:
        data = await self._get("/fungible/venues")
        return [SwapVenue.model_validate(venue) for venue in data.get("venues", [])]

    # ======================
    # Routes & messages
    # ======================

    async def route(
        self,
        source_asset_denom: str,
        source_asset_chain_id: str,
        dest_asset_denom: str,
        dest_asset_chain_id: str,
        amount_in: Optional[str] = None,
        amount_out: Optional[str] = None,
        cumulative_affiliate_fee_bps: str = "0",
        allow_multi_tx: bool = True,
        swap_venue: Optional[dict] = None,
    ) -> RouteQuote:
        """Quote a route for an exact input (or exact output) amount."""
        if amount_in is None and amount_out is None:
            raise ValueError("Either amount_in or amount_out is required")

        data = await self._post(
            "/fungible/route",
            {
                "source_asset_denom": source_asset_denom,
                "source_asset_chain_id": source_asset_chain_id,
                "dest_asset_denom": dest_asset_denom,
                "dest_asset_chain_id": dest_asset_chain_id,
                "amount_in": amount_in,
                "amount_out": amount_out,
                "cumulative_affiliate_fee_bps": cumulative_affiliate_fee_bps,
                "allow_multi_tx": allow_multi_tx,
                "swap_venue": swap_venue,
            },
        )
        quote = RouteQuote.model_validate(data)
        logger.info(
            f"Route quote: {quote.amount_in} {quote.source_asset_denom}@{quote.source_asset_chain_id} -> "
            f"{quote.estimated_amount_out or quote.amount_out} {quote.dest_asset_denom}@{quote.dest_asset_chain_id} "
            f"via {' -> '.join(quote.chain_ids)}"
        )
        return quote

    async def messages(
        self,
        quote: RouteQuote,
        address_list: list[str],
        slippage_tolerance_percent: str = "0",
        affiliates: Optional[list[dict]] = None,
        post_route_handler: Optional[dict] = None,
    ) -> list:
        """Generate the ordered executable operations for a route quote."""
        data = await self._post(
            "/fungible/msgs",
            {
                "source_asset_denom": quote.source_asset_denom,
                "source_asset_chain_id": quote.source_asset_chain_id,
                "dest_asset_denom": quote.dest_asset_denom,
                "dest_asset_chain_id": quote.dest_asset_chain_id,
                "amount_in": quote.amount_in,
                "amount_out": quote.amount_out,
                "address_list": address_list,
                "operations": quote.operations,
                "slippage_tolerance_percent": slippage_tolerance_percent,
                "affiliates": affiliates or [],
                "post_route_handler": post_route_handler,
            },
        )
        return parse_operations(data.get("msgs", []))

    # ======================
    # Transactions
    # ======================

    async def submit_transaction(self, chain_id: str, tx: str) -> SubmitTxResponse:
        """Submit a base64-encoded signed transaction for broadcast."""
        data = await self._post("/tx/submit", {"chain_id": chain_id, "tx": tx})
        return SubmitTxResponse.model_validate(data)

    async def track_transaction(self, chain_id: str, tx_hash: str) -> TrackTxResponse:
        """Register a transaction with the status tracker (idempotent)."""
        data = await self._post("/tx/track", {"chain_id": chain_id, "tx_hash": tx_hash})
        return TrackTxResponse.model_validate(data)

    async def transaction_status(self, chain_id: str, tx_hash: str) -> TxStatusResponse:
        data = await self._get("/tx/status", {"chain_id": chain_id, "tx_hash": tx_hash})
        return TxStatusResponse.model_validate(data)


def parse_operations(msgs: list[dict]) -> list:
    """Parse the ``msgs`` array of a message generation response.

    Accepts wrapped entries (``multi_chain_msg``, ``cosmos_tx``, ``evm_tx``)
    and bare multi-chain messages.
    """
    operations: list = []
    for entry in msgs:
        if "evm_tx" in entry:
            operations.append(EVMOperation.model_validate(entry["evm_tx"]))
        elif "cosmos_tx" in entry:
            tx = entry["cosmos_tx"]
            for msg in tx.get("msgs", []):
                operations.append(
                    CosmosOperation(
                        chain_id=tx["chain_id"],
                        path=tx.get("path", []),
                        msg=msg["msg"],
                        msg_type_url=msg["msg_type_url"],
                        signer_address=tx.get("signer_address"),
                    )
                )
        elif "multi_chain_msg" in entry:
            operations.append(CosmosOperation.model_validate(entry["multi_chain_msg"]))
        else:
            operations.append(CosmosOperation.model_validate(entry))
    return operations


def _assets_by_chain(mapping: dict) -> dict[str, list[Asset]]:
    return {
        chain_id: [Asset.model_validate(asset) for asset in entry.get("assets", [])]
        for chain_id, entry in mapping.items()
    }


def _flag(value: Optional[bool]) -> Optional[str]:
    if value is None:
        return None
    return "true" if value else "false"
