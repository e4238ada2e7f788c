"""Fee resolution: default fee asset and recommended gas price per chain.

Resolution order for a chain:
1. Fee asset: explicit override, else staking denom (when it is a fee
   token), else first non-IBC fee token, else first fee token
2. Price: the routing service's tiers for that asset (average, high, low)
3. Fallback: the chain registry's static price tiers for the same asset
"""

import logging
from decimal import Decimal
from typing import Optional, Sequence

from crossroute.errors import FeeResolutionError
from crossroute.models import Chain, GasPrice, to_decimal
from crossroute.registry import ChainRegistry

logger = logging.getLogger(__name__)


def select_price_tier(
    average: Optional[str],
    high: Optional[str],
    low: Optional[str],
) -> Optional[Decimal]:
    """First usable price in priority order average, high, low."""
    for value in (average, high, low):
        price = to_decimal(value)
        if price is not None:
            return price
    return None


def select_fee_denom(
    fee_denoms: Sequence[str],
    staking_denom: Optional[str] = None,
    override: Optional[str] = None,
) -> Optional[str]:
    """Pick the default gas-paying denom from a chain's fee tokens."""
    if override:
        return override
    if not fee_denoms:
        return None
    if staking_denom and staking_denom in fee_denoms:
        return staking_denom
    for denom in fee_denoms:
        if not denom.startswith("ibc/"):
            return denom
    return fee_denoms[0]


class FeeResolver:
    """Resolves the recommended gas price for a chain.

    ``chains`` is the routing service's chain list (may be empty when the
    service is not consulted); the registry supplies staking denoms and the
    static fallback prices.
    """

    def __init__(
        self,
        registry: ChainRegistry,
        chains: Optional[Sequence[Chain]] = None,
        fee_denom_overrides: Optional[dict[str, str]] = None,
    ):
        self.registry = registry
        self.chains = {chain.chain_id: chain for chain in chains or []}
        self.fee_denom_overrides = dict(fee_denom_overrides or {})

    def fee_denoms(self, chain_id: str) -> list[str]:
        """Fee denoms for a chain, preferring the routing service's list."""
        chain = self.chains.get(chain_id)
        if chain and chain.fee_assets:
            return [asset.denom for asset in chain.fee_assets]

        info = self.registry.get(chain_id)
        if info:
            return [token.denom for token in info.fee_tokens]
        return []

    def default_fee_denom(self, chain_id: str) -> Optional[str]:
        info = self.registry.get(chain_id)
        return select_fee_denom(
            self.fee_denoms(chain_id),
            staking_denom=info.staking_denom if info else None,
            override=self.fee_denom_overrides.get(chain_id),
        )

    def recommended_gas_price(self, chain_id: str) -> GasPrice:
        """Recommended gas price for the chain's default fee asset.

        Raises:
            FeeResolutionError: No fee asset or no usable price
        """
        denom = self.default_fee_denom(chain_id)
        if denom is None:
            raise FeeResolutionError(chain_id, "no fee assets listed")

        price = self._service_price(chain_id, denom)
        if price is None:
            price = self._registry_price(chain_id, denom)
            if price is not None:
                logger.warning(f"No routing service gas price for {denom} on {chain_id}, using registry default")

        if price is None:
            raise FeeResolutionError(chain_id, f"no gas price for {denom}")

        gas_price = GasPrice(denom=denom, amount=price)
        logger.debug(f"Recommended gas price for {chain_id}: {gas_price}")
        return gas_price

    def _service_price(self, chain_id: str, denom: str) -> Optional[Decimal]:
        chain = self.chains.get(chain_id)
        if not chain:
            return None
        for asset in chain.fee_assets:
            if asset.denom == denom and asset.gas_price:
                tiers = asset.gas_price
                return select_price_tier(tiers.average, tiers.high, tiers.low)
        return None

    def _registry_price(self, chain_id: str, denom: str) -> Optional[Decimal]:
        info = self.registry.get(chain_id)
        token = info.fee_token(denom) if info else None
        if token is None:
            return None
        return select_price_tier(token.average, token.high, token.low)
