"""Per-chain-family signing strategies.

The chain family comes from registry data (or an explicit override table),
and selects how the transaction envelope is built:

- generic: secp256k1 pubkey, no timeout height
- ethermint: eth_secp256k1 pubkey type URL
- injective: injective eth_secp256k1 pubkey type URL and a timeout height
  derived from the chain's latest block height
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional, Protocol

from crossroute.registry import ChainFamily, ChainRegistry
from crossroute.signing.tx import SECP256K1_PUBKEY_TYPE

logger = logging.getLogger(__name__)


class HeightSource(Protocol):
    """Anything that can report a chain's latest block height."""

    async def latest_height(self) -> int: ...


class SigningStrategy(ABC):
    """Envelope construction rules for one chain family."""

    family: ChainFamily
    pubkey_type_url: str = SECP256K1_PUBKEY_TYPE

    @abstractmethod
    async def timeout_height(self, chain: HeightSource, offset: int) -> int:
        """Timeout height for the TxBody (0 = none)."""
        pass


class GenericStrategy(SigningStrategy):
    family = ChainFamily.GENERIC

    async def timeout_height(self, chain: HeightSource, offset: int) -> int:
        return 0


class EthermintStrategy(SigningStrategy):
    family = ChainFamily.ETHERMINT
    pubkey_type_url = "/ethermint.crypto.v1.ethsecp256k1.PubKey"

    async def timeout_height(self, chain: HeightSource, offset: int) -> int:
        return 0


class InjectiveStrategy(SigningStrategy):
    family = ChainFamily.INJECTIVE
    pubkey_type_url = "/injective.crypto.v1beta1.ethsecp256k1.PubKey"

    async def timeout_height(self, chain: HeightSource, offset: int) -> int:
        height = await chain.latest_height()
        logger.debug(f"Latest height {height}, timeout height {height + offset}")
        return height + offset


STRATEGIES: dict[ChainFamily, SigningStrategy] = {
    ChainFamily.GENERIC: GenericStrategy(),
    ChainFamily.ETHERMINT: EthermintStrategy(),
    ChainFamily.INJECTIVE: InjectiveStrategy(),
}


def resolve_family(
    chain_id: str,
    registry: ChainRegistry,
    overrides: Optional[dict[str, str]] = None,
) -> ChainFamily:
    """Signing family for a chain: override table, then registry, then generic."""
    if overrides and chain_id in overrides:
        return ChainFamily(overrides[chain_id])
    info = registry.get(chain_id)
    if info is not None:
        return info.family
    return ChainFamily.GENERIC


def strategy_for(
    chain_id: str,
    registry: ChainRegistry,
    overrides: Optional[dict[str, str]] = None,
) -> SigningStrategy:
    return STRATEGIES[resolve_family(chain_id, registry, overrides)]
