"""Chain registry: static chain metadata loaded once and never mutated.

The registry is an explicit object passed to every component that needs chain
metadata (endpoints, staking/fee tokens, signing family). The bundled
``data/chains.json`` covers the chains most routes touch; callers can load a
different file or build a registry from a dict.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from importlib import resources
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional, Union

logger = logging.getLogger(__name__)


class ChainType(str, Enum):
    """Execution environment of a chain."""
    COSMOS = "cosmos"
    EVM = "evm"


class ChainFamily(str, Enum):
    """Signing family: selects the transaction signing strategy."""
    GENERIC = "generic"        # secp256k1, standard SignDoc
    ETHERMINT = "ethermint"    # eth_secp256k1 pubkey type (Evmos and forks)
    INJECTIVE = "injective"    # eth_secp256k1 pubkey + height-bound timeout


@dataclass(frozen=True)
class FeeToken:
    """A fee denom with its static gas price tiers."""
    denom: str
    low: Optional[str] = None
    average: Optional[str] = None
    high: Optional[str] = None
    fixed_min: Optional[str] = None


@dataclass(frozen=True)
class ChainInfo:
    """Static metadata for one chain."""

    chain_id: str
    chain_name: str
    chain_type: ChainType = ChainType.COSMOS
    bech32_prefix: str = ""
    rest: tuple[str, ...] = ()
    rpc: tuple[str, ...] = ()
    staking_denom: Optional[str] = None
    fee_tokens: tuple[FeeToken, ...] = ()
    family: ChainFamily = ChainFamily.GENERIC
    evm_chain_id: Optional[int] = None

    @property
    def is_evm(self) -> bool:
        return self.chain_type == ChainType.EVM

    def fee_token(self, denom: str) -> Optional[FeeToken]:
        for token in self.fee_tokens:
            if token.denom == denom:
                return token
        return None

    @classmethod
    def from_dict(cls, data: dict) -> "ChainInfo":
        """Build from one registry JSON entry."""
        return cls(
            chain_id=data["chain_id"],
            chain_name=data.get("chain_name", data["chain_id"]),
            chain_type=ChainType(data.get("chain_type", "cosmos")),
            bech32_prefix=data.get("bech32_prefix", ""),
            rest=tuple(data.get("rest", [])),
            rpc=tuple(data.get("rpc", [])),
            staking_denom=data.get("staking_denom"),
            fee_tokens=tuple(
                FeeToken(
                    denom=token["denom"],
                    low=token.get("low_gas_price"),
                    average=token.get("average_gas_price"),
                    high=token.get("high_gas_price"),
                    fixed_min=token.get("fixed_min_gas_price"),
                )
                for token in data.get("fee_tokens", [])
            ),
            family=ChainFamily(data.get("family", "generic")),
            evm_chain_id=data.get("evm_chain_id"),
        )


@dataclass(frozen=True)
class ChainRegistry:
    """Immutable lookup of ChainInfo by chain id."""

    chains: Mapping[str, ChainInfo] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "chains", MappingProxyType(dict(self.chains)))

    def get(self, chain_id: str) -> Optional[ChainInfo]:
        return self.chains.get(chain_id)

    def __contains__(self, chain_id: object) -> bool:
        return chain_id in self.chains

    def __len__(self) -> int:
        return len(self.chains)

    @property
    def chain_ids(self) -> list[str]:
        return sorted(self.chains)

    @classmethod
    def from_dict(cls, data: dict) -> "ChainRegistry":
        """Build from ``{"chains": [...]}``."""
        infos = [ChainInfo.from_dict(entry) for entry in data.get("chains", [])]
        return cls(chains={info.chain_id: info for info in infos})

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None) -> "ChainRegistry":
        """Load from a JSON file, or the bundled registry when path is None."""
        if path is None:
            text = resources.files("crossroute").joinpath("data/chains.json").read_text("utf-8")
            source = "bundled registry"
        else:
            text = Path(path).read_text(encoding="utf-8")
            source = str(path)

        registry = cls.from_dict(json.loads(text))
        logger.debug(f"Loaded {len(registry)} chains from {source}")
        return registry
