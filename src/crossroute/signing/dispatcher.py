"""Transaction signer: dual-protocol dispatch for Cosmos legs.

Signing flow:
1. Check the fee is fully resolved
2. Locate the signing account in the signer's accounts
3. Pick the chain family strategy (pubkey type, timeout height)
4. Dispatch on the signer's declared sign mode (resolved once)
5. Repackage the signer's returned fields into a TxRaw
"""

import base64
import logging
from typing import Awaitable, Callable, Optional

from cosmpy.protos.cosmos.tx.v1beta1.tx_pb2 import TxRaw

from crossroute.errors import ConfigurationError, FeeResolutionError
from crossroute.messages import CosmosMessage, MessageBuilder
from crossroute.models import Fee, SignerData
from crossroute.registry import ChainRegistry
from crossroute.signing.base import (
    AccountData,
    AminoSigner,
    CosmosSigner,
    DirectSignDoc,
    DirectSigner,
    SignMode,
    find_account,
)
from crossroute.signing.strategies import HeightSource, SigningStrategy, strategy_for
from crossroute.signing.tx import (
    encode_pubkey,
    make_amino_sign_doc,
    make_auth_info_bytes,
    make_body_bytes,
    make_tx_raw,
)

logger = logging.getLogger(__name__)


class TransactionSigner:
    """Signs one Cosmos message per transaction with the right protocol."""

    def __init__(
        self,
        registry: ChainRegistry,
        builder: Optional[MessageBuilder] = None,
        family_overrides: Optional[dict[str, str]] = None,
        timeout_height_offset: int = 100,
    ):
        self.registry = registry
        self.builder = builder or MessageBuilder()
        self.family_overrides = dict(family_overrides or {})
        self.timeout_height_offset = timeout_height_offset

        self._handlers: dict[SignMode, Callable[..., Awaitable[TxRaw]]] = {
            SignMode.DIRECT: self._sign_direct,
            SignMode.AMINO: self._sign_amino,
        }

    def strategy(self, chain_id: str) -> SigningStrategy:
        return strategy_for(chain_id, self.registry, self.family_overrides)

    async def sign(
        self,
        signer: CosmosSigner,
        signer_address: str,
        message: CosmosMessage,
        fee: Fee,
        signer_data: SignerData,
        chain: HeightSource,
    ) -> TxRaw:
        """Sign a message and return the raw signed transaction.

        Args:
            signer: Signer capability (declares DIRECT or AMINO)
            signer_address: Address that signs and pays fees
            message: Chain-native message
            fee: Fully resolved fee
            signer_data: Fresh account number and sequence for this chain
            chain: Source of latest block height for timeout-bound families

        Raises:
            FeeResolutionError: Fee has no amount or gas limit
            AccountNotFoundError: Signer does not expose the address
        """
        if not fee.is_resolved:
            raise FeeResolutionError(signer_data.chain_id, "fee not resolved before signing")

        mode = signer.sign_mode
        handler = self._handlers.get(mode)
        if handler is None:
            raise ConfigurationError(f"Unsupported sign mode {mode!r} for {signer!r}")

        account = await find_account(signer, signer_address)
        strategy = self.strategy(signer_data.chain_id)

        logger.info(
            f"Signing {message.type_url} on {signer_data.chain_id} with {mode.value} "
            f"({strategy.family.value} strategy, sequence {signer_data.sequence})"
        )
        return await handler(signer, account, message, fee, signer_data, strategy, chain)

    async def _sign_direct(
        self,
        signer: CosmosSigner,
        account: AccountData,
        message: CosmosMessage,
        fee: Fee,
        signer_data: SignerData,
        strategy: SigningStrategy,
        chain: HeightSource,
    ) -> TxRaw:
        if not isinstance(signer, DirectSigner):
            raise ConfigurationError(f"{signer!r} declares direct signing but is not a DirectSigner")

        timeout_height = await strategy.timeout_height(chain, self.timeout_height_offset)
        pubkey = encode_pubkey(account.pubkey, strategy.pubkey_type_url)

        body_bytes = make_body_bytes([self.builder.to_any(message)], timeout_height=timeout_height)
        auth_info_bytes = make_auth_info_bytes(pubkey, signer_data.sequence, fee, SignMode.DIRECT)

        sign_doc = DirectSignDoc(
            body_bytes=body_bytes,
            auth_info_bytes=auth_info_bytes,
            chain_id=signer_data.chain_id,
            account_number=signer_data.account_number,
        )
        response = await signer.sign_direct(account.address, sign_doc)

        return make_tx_raw(
            response.signed.body_bytes,
            response.signed.auth_info_bytes,
            [base64.b64decode(response.signature.signature)],
        )

    async def _sign_amino(
        self,
        signer: CosmosSigner,
        account: AccountData,
        message: CosmosMessage,
        fee: Fee,
        signer_data: SignerData,
        strategy: SigningStrategy,
        chain: HeightSource,
    ) -> TxRaw:
        if not isinstance(signer, AminoSigner):
            raise ConfigurationError(f"{signer!r} declares amino signing but is not an AminoSigner")

        dropped = self.builder.amino_dropped_fields(message.type_url)

        amino_msg = self.builder.to_amino(message)
        for name in dropped:
            if message.value.get(name):
                amino_msg["value"][name] = message.value[name]

        sign_doc = make_amino_sign_doc(
            [amino_msg],
            fee,
            signer_data.chain_id,
            "",
            signer_data.account_number,
            signer_data.sequence,
        )
        response = await signer.sign_amino(account.address, sign_doc)
        signed = response.signed

        signed_messages = []
        for signed_msg in signed["msgs"]:
            converted = self.builder.from_amino(signed_msg)
            for name in self.builder.amino_dropped_fields(converted.type_url):
                if name in message.value:
                    converted.value[name] = message.value[name]
            signed_messages.append(converted)

        body_bytes = make_body_bytes(
            [self.builder.to_any(msg) for msg in signed_messages],
            memo=signed.get("memo", ""),
        )
        signed_fee = Fee.from_amino(signed["fee"])
        auth_info_bytes = make_auth_info_bytes(
            encode_pubkey(account.pubkey, strategy.pubkey_type_url),
            int(signed["sequence"]),
            signed_fee,
            SignMode.AMINO,
        )

        return make_tx_raw(
            body_bytes,
            auth_info_bytes,
            [base64.b64decode(response.signature.signature)],
        )
