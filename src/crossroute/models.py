"""Data model for routes, operations, fees and transaction status.

Routing service payloads are parsed into pydantic models (snake_case JSON,
unknown fields ignored). Values computed locally during execution (fees,
signer data, broadcast results) are plain dataclasses.
"""

import math
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# ======================
# Routing service contracts
# ======================


class Asset(BaseModel):
    """A fungible asset known to the routing service."""

    denom: str
    chain_id: str
    origin_denom: str = ""
    origin_chain_id: str = ""
    trace: str = ""
    symbol: Optional[str] = None
    name: Optional[str] = None
    logo_uri: Optional[str] = None
    decimals: Optional[int] = None
    is_cw20: bool = False
    is_evm: bool = False
    token_contract: Optional[str] = None
    coingecko_id: Optional[str] = None
    recommended_symbol: Optional[str] = None


class AssetRecommendation(BaseModel):
    """A recommended destination asset."""

    asset: Asset
    reason: str = ""


class GasPriceTiers(BaseModel):
    """Gas price tiers as published for a fee asset (strings, may be empty)."""

    low: Optional[str] = None
    average: Optional[str] = None
    high: Optional[str] = None


class FeeAsset(BaseModel):
    """A denom accepted for fees on a chain."""

    denom: str
    gas_price: Optional[GasPriceTiers] = None


class Chain(BaseModel):
    """Chain metadata from the routing service's chain list."""

    chain_id: str
    chain_name: str = ""
    chain_type: str = "cosmos"
    bech32_prefix: str = ""
    pfm_enabled: bool = False
    supports_memo: bool = False
    logo_uri: Optional[str] = None
    fee_assets: list[FeeAsset] = Field(default_factory=list)
    is_testnet: bool = False


class SwapVenue(BaseModel):
    """A swap venue (DEX) the routing service can route through."""

    name: str
    chain_id: str
    logo_uri: Optional[str] = None


class RouteQuote(BaseModel):
    """Response of the route quoting endpoint.

    ``operations`` holds the routing service's high-level step descriptions
    (transfer, swap, ...) verbatim; they are echoed back when requesting the
    executable messages for the quote.
    """

    source_asset_denom: str
    source_asset_chain_id: str
    dest_asset_denom: str
    dest_asset_chain_id: str
    amount_in: str
    amount_out: str = "0"
    estimated_amount_out: Optional[str] = None
    chain_ids: list[str] = Field(default_factory=list)
    required_chain_addresses: list[str] = Field(default_factory=list)
    operations: list[dict] = Field(default_factory=list)
    does_swap: bool = False
    txs_required: int = 1
    swap_venue: Optional[SwapVenue] = None
    usd_amount_in: Optional[str] = None
    usd_amount_out: Optional[str] = None

    @property
    def addresses_required(self) -> list[str]:
        """Chains the caller must supply an address for."""
        return self.required_chain_addresses or self.chain_ids


class SubmitTxResponse(BaseModel):
    tx_hash: str


class TrackTxResponse(BaseModel):
    tx_hash: str
    explorer_link: Optional[str] = None


class TxStatus(str, Enum):
    """Normalized transaction status."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


# Raw status/state strings reported by the status service
COMPLETED_STATES = frozenset({"STATE_COMPLETED", "STATE_COMPLETED_SUCCESS"})
FAILED_STATES = frozenset({"STATE_COMPLETED_ERROR", "STATE_ABANDONED", "STATE_FAILED"})


class TxStatusResponse(BaseModel):
    """Response of the status polling endpoint."""

    status: str = ""
    state: Optional[str] = None
    error: Optional[dict] = None
    transfer_sequence: list[dict] = Field(default_factory=list)
    next_blocking_transfer: Optional[dict] = None
    transfer_asset_release: Optional[dict] = None

    @property
    def normalized(self) -> TxStatus:
        """Map the raw status/state strings onto pending/completed/failed."""
        raw = {self.status, self.state or ""}
        if raw & FAILED_STATES:
            return TxStatus.FAILED
        if raw & COMPLETED_STATES:
            return TxStatus.COMPLETED
        return TxStatus.PENDING

    @property
    def error_message(self) -> str:
        if not self.error:
            return ""
        return str(self.error.get("message") or self.error)


# ======================
# Operations & route
# ======================


class RequiredApproval(BaseModel):
    """ERC-20 allowance that must exist before an EVM call."""

    token_contract: str
    spender: str
    amount: str

    @property
    def amount_int(self) -> int:
        return int(self.amount)


class CosmosOperation(BaseModel):
    """A Cosmos-SDK message to sign and broadcast on one chain."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["cosmos"] = "cosmos"
    chain_id: str
    msg_type_url: str
    msg: str  # JSON-encoded message body
    path: list[str] = Field(default_factory=list)
    signer_address: Optional[str] = None


class EVMOperation(BaseModel):
    """An EVM contract call, possibly gated by ERC-20 approvals."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["evm"] = "evm"
    chain_id: str
    to: str
    data: str = "0x"
    value: str = "0"
    required_erc20_approvals: list[RequiredApproval] = Field(default_factory=list)
    signer_address: Optional[str] = None

    @property
    def value_int(self) -> int:
        return int(self.value or "0")


Operation = Annotated[Union[CosmosOperation, EVMOperation], Field(discriminator="kind")]


class Route(BaseModel):
    """An executable route: quote summary plus ordered operations."""

    model_config = ConfigDict(frozen=True)

    chain_ids: tuple[str, ...]
    source_asset_denom: str
    source_asset_chain_id: str
    amount_in: str
    dest_asset_denom: str
    dest_asset_chain_id: str
    estimated_amount_out: str
    operations: tuple[Operation, ...] = ()

    @classmethod
    def from_quote(cls, quote: RouteQuote, operations: list) -> "Route":
        """Combine a route quote with the operations generated for it."""
        return cls(
            chain_ids=tuple(quote.chain_ids),
            source_asset_denom=quote.source_asset_denom,
            source_asset_chain_id=quote.source_asset_chain_id,
            amount_in=quote.amount_in,
            dest_asset_denom=quote.dest_asset_denom,
            dest_asset_chain_id=quote.dest_asset_chain_id,
            estimated_amount_out=quote.estimated_amount_out or quote.amount_out,
            operations=tuple(operations),
        )

    @property
    def cosmos_operations(self) -> list[CosmosOperation]:
        return [op for op in self.operations if isinstance(op, CosmosOperation)]


# ======================
# Execution values
# ======================


@dataclass(frozen=True)
class Coin:
    """An integer amount of a denom."""
    denom: str
    amount: int

    def to_dict(self) -> dict:
        return {"denom": self.denom, "amount": str(self.amount)}

    @classmethod
    def from_dict(cls, data: dict) -> "Coin":
        return cls(denom=data["denom"], amount=int(data["amount"]))


@dataclass(frozen=True)
class GasPrice:
    """Price of one gas unit in a denom."""
    denom: str
    amount: Decimal

    _PATTERN = re.compile(r"^([0-9.]+)([a-zA-Z][a-zA-Z0-9/:._-]*)$")

    @classmethod
    def parse(cls, value: str) -> "GasPrice":
        """Parse a gas price string like ``0.025uatom``."""
        match = cls._PATTERN.match(value.strip())
        if not match:
            raise ValueError(f"Invalid gas price string: {value!r}")
        return cls(denom=match.group(2), amount=Decimal(match.group(1)))

    def fee_amount(self, gas_limit: int) -> int:
        """Fee for a gas limit, rounded up to a whole unit."""
        return math.ceil(self.amount * gas_limit)

    def __str__(self) -> str:
        return f"{self.amount}{self.denom}"


@dataclass(frozen=True)
class Fee:
    """A fully resolved fee: coins and gas limit."""
    amount: tuple[Coin, ...]
    gas: int
    payer: str = ""
    granter: str = ""

    @classmethod
    def from_gas_price(cls, gas_price: GasPrice, gas_limit: int) -> "Fee":
        return cls(amount=(Coin(gas_price.denom, gas_price.fee_amount(gas_limit)),), gas=gas_limit)

    @property
    def is_resolved(self) -> bool:
        return self.gas > 0 and bool(self.amount)

    def to_amino(self) -> dict:
        data = {"amount": [coin.to_dict() for coin in self.amount], "gas": str(self.gas)}
        if self.payer:
            data["payer"] = self.payer
        if self.granter:
            data["granter"] = self.granter
        return data

    @classmethod
    def from_amino(cls, data: dict) -> "Fee":
        return cls(
            amount=tuple(Coin.from_dict(coin) for coin in data.get("amount", [])),
            gas=int(data["gas"]),
            payer=data.get("payer", ""),
            granter=data.get("granter", ""),
        )


@dataclass(frozen=True)
class SignerData:
    """Account number and sequence of an address on one chain."""
    account_number: int
    sequence: int
    chain_id: str


@dataclass
class BroadcastResult:
    """Reference to a broadcast transaction."""
    chain_id: str
    tx_hash: str
    height: Optional[int] = None
    raw: dict = field(default_factory=dict)


def to_decimal(value: Optional[str]) -> Optional[Decimal]:
    """Parse a price string, treating empty/invalid/non-positive values as missing."""
    if value is None or not str(value).strip():
        return None
    try:
        parsed = Decimal(str(value))
    except InvalidOperation:
        return None
    return parsed if parsed > 0 else None
