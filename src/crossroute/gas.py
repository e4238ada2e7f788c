"""Gas estimation and pre-flight balance validation."""

import logging
import math
from decimal import Decimal
from typing import Protocol

from google.protobuf.any_pb2 import Any as ProtoAny

from crossroute.errors import InsufficientBalanceError
from crossroute.models import Fee
from crossroute.signing.tx import build_simulation_tx

logger = logging.getLogger(__name__)

DEFAULT_GAS_MULTIPLIER = 1.5

# Fixed gas limits used when a leg cannot be simulated yet
DEFAULT_GAS_AMOUNT = 280_000
DEFAULT_GAS_BY_MESSAGE = {
    "/cosmos.bank.v1beta1.MsgSend": 100_000,
    "/ibc.applications.transfer.v1.MsgTransfer": 200_000,
    "/cosmwasm.wasm.v1.MsgExecuteContract": 2_400_000,
}


def default_gas_for_message(type_url: str) -> int:
    """Fixed gas limit for a message type."""
    return DEFAULT_GAS_BY_MESSAGE.get(type_url, DEFAULT_GAS_AMOUNT)


class SimulationSource(Protocol):
    async def simulate(self, tx_bytes: bytes) -> int: ...


class BalanceSource(Protocol):
    async def get_balance(self, address: str, denom: str) -> int: ...


def apply_multiplier(gas_used: int, multiplier: float) -> int:
    """Simulated gas times the safety multiplier, rounded up."""
    return math.ceil(gas_used * multiplier)


class GasEstimator:
    """Estimates the gas limit for a message by simulating it."""

    def __init__(self, multiplier: float = DEFAULT_GAS_MULTIPLIER):
        if multiplier <= 1.0:
            raise ValueError(f"Gas multiplier must be greater than 1.0, got {multiplier}")
        self.multiplier = multiplier

    async def estimate(
        self,
        chain: SimulationSource,
        message: ProtoAny,
        pubkey: ProtoAny,
        sequence: int,
    ) -> int:
        """Simulate against current chain state and return the gas limit.

        Args:
            chain: Chain client able to simulate
            message: Encoded message
            pubkey: Payer's encoded public key
            sequence: Payer's current sequence
        """
        gas_used = await chain.simulate(build_simulation_tx(message, pubkey, sequence))
        gas_limit = apply_multiplier(gas_used, self.multiplier)
        logger.debug(f"Gas estimate: {gas_used} simulated x {self.multiplier} = {gas_limit}")
        return gas_limit


class BalanceValidator:
    """Checks the payer can cover a leg's fee before anything is broadcast."""

    async def validate(
        self,
        chain: BalanceSource,
        chain_id: str,
        address: str,
        fee: Fee,
    ) -> None:
        """Raise if any fee coin exceeds the available balance.

        Raises:
            InsufficientBalanceError: Balance below the required fee
        """
        for coin in fee.amount:
            available = await chain.get_balance(address, coin.denom)
            logger.debug(f"{chain_id} {address}: fee {coin.amount} {coin.denom}, balance {available}")
            if available < coin.amount:
                logger.error(
                    f"Insufficient {coin.denom} on {chain_id}: need {coin.amount}, have {available}"
                )
                raise InsufficientBalanceError(
                    chain_id=chain_id,
                    address=address,
                    denom=coin.denom,
                    required=Decimal(coin.amount),
                    available=Decimal(available),
                )
