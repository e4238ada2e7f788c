"""Chain endpoint resolution.

Order of precedence for every chain id:
1. Caller-supplied resolver function (sync or async)
2. Caller-supplied static endpoint table
3. The chain registry's first listed endpoint
"""

import inspect
import logging
from typing import Awaitable, Callable, Optional, Union

from crossroute.errors import EndpointResolutionError
from crossroute.registry import ChainRegistry

logger = logging.getLogger(__name__)

EndpointGetter = Callable[[str], Union[Optional[str], Awaitable[Optional[str]]]]


class EndpointResolver:
    """Resolves REST and RPC endpoints for chain ids."""

    def __init__(
        self,
        registry: ChainRegistry,
        rest_endpoints: Optional[dict[str, str]] = None,
        rpc_endpoints: Optional[dict[str, str]] = None,
        get_rest_endpoint: Optional[EndpointGetter] = None,
        get_rpc_endpoint: Optional[EndpointGetter] = None,
    ):
        self.registry = registry
        self.rest_endpoints = dict(rest_endpoints or {})
        self.rpc_endpoints = dict(rpc_endpoints or {})
        self.get_rest_endpoint = get_rest_endpoint
        self.get_rpc_endpoint = get_rpc_endpoint

    async def rest(self, chain_id: str) -> str:
        """Resolve the REST (LCD) endpoint for a Cosmos chain."""
        return await self._resolve(chain_id, "rest", self.get_rest_endpoint, self.rest_endpoints)

    async def rpc(self, chain_id: str) -> str:
        """Resolve the RPC endpoint (Tendermint RPC or EVM JSON-RPC)."""
        return await self._resolve(chain_id, "rpc", self.get_rpc_endpoint, self.rpc_endpoints)

    async def _resolve(
        self,
        chain_id: str,
        kind: str,
        getter: Optional[EndpointGetter],
        table: dict[str, str],
    ) -> str:
        if getter is not None:
            endpoint = getter(chain_id)
            if inspect.isawaitable(endpoint):
                endpoint = await endpoint
            if endpoint:
                return endpoint.rstrip("/")

        if chain_id in table and table[chain_id]:
            return table[chain_id].rstrip("/")

        info = self.registry.get(chain_id)
        candidates = getattr(info, kind, ()) if info else ()
        if candidates:
            logger.debug(f"Using registry {kind} endpoint for {chain_id}: {candidates[0]}")
            return candidates[0].rstrip("/")

        raise EndpointResolutionError(chain_id, kind)
