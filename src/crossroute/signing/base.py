"""Signer capability interfaces.

A Cosmos signer exposes its accounts and exactly one signing protocol:
- DIRECT: signs the protobuf SignDoc bytes (structured signing)
- AMINO: signs the canonical JSON StdSignDoc (legacy signing)

The protocol is declared through ``sign_mode`` and resolved once when a
transaction is dispatched; signers are never probed for methods.

Implementations hold (or reach) the private key; this package only ever
receives signatures.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

from cosmpy.protos.cosmos.tx.v1beta1.tx_pb2 import SignDoc

from crossroute.errors import AccountNotFoundError

logger = logging.getLogger(__name__)


class SignMode(str, Enum):
    """Signing protocol a Cosmos signer implements."""
    DIRECT = "direct"
    AMINO = "amino"


@dataclass(frozen=True)
class AccountData:
    """An account exposed by a signer.

    Attributes:
        address: Bech32 address
        pubkey: Compressed secp256k1 public key (33 bytes)
        algo: Key algorithm name
    """
    address: str
    pubkey: bytes
    algo: str = "secp256k1"


@dataclass(frozen=True)
class StdSignature:
    """Signature as returned by wallets: pubkey object + base64 signature."""
    pub_key: dict
    signature: str  # base64


@dataclass(frozen=True)
class DirectSignDoc:
    """Structured sign document."""
    body_bytes: bytes
    auth_info_bytes: bytes
    chain_id: str
    account_number: int

    def to_bytes(self) -> bytes:
        """Protobuf SignDoc bytes: the exact bytes a direct signer signs."""
        return SignDoc(
            body_bytes=self.body_bytes,
            auth_info_bytes=self.auth_info_bytes,
            chain_id=self.chain_id,
            account_number=self.account_number,
        ).SerializeToString()


@dataclass(frozen=True)
class DirectSignResponse:
    """Signer output for structured signing.

    ``signed`` may differ from the requested document (wallets are allowed to
    adjust fees); the returned fields are the ones that get broadcast.
    """
    signed: DirectSignDoc
    signature: StdSignature


@dataclass(frozen=True)
class AminoSignResponse:
    """Signer output for legacy signing; ``signed`` is a StdSignDoc dict."""
    signed: dict
    signature: StdSignature


class CosmosSigner(ABC):
    """Base class for Cosmos signer capabilities."""

    sign_mode: SignMode

    @abstractmethod
    async def get_accounts(self) -> list[AccountData]:
        """Accounts this signer can sign for."""
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(mode={self.sign_mode.value})"


class DirectSigner(CosmosSigner):
    """Signer implementing the structured (protobuf) protocol."""

    sign_mode = SignMode.DIRECT

    @abstractmethod
    async def sign_direct(self, signer_address: str, sign_doc: DirectSignDoc) -> DirectSignResponse:
        """Sign a structured sign document.

        Args:
            signer_address: Address whose key signs
            sign_doc: Document to sign

        Returns:
            DirectSignResponse with the signed document and signature
        """
        pass


class AminoSigner(CosmosSigner):
    """Signer implementing the legacy amino JSON protocol."""

    sign_mode = SignMode.AMINO

    @abstractmethod
    async def sign_amino(self, signer_address: str, sign_doc: dict) -> AminoSignResponse:
        """Sign a StdSignDoc.

        Args:
            signer_address: Address whose key signs
            sign_doc: StdSignDoc as a JSON-compatible dict

        Returns:
            AminoSignResponse with the signed document and signature
        """
        pass


async def find_account(signer: CosmosSigner, address: str) -> AccountData:
    """Locate the signing account among the signer's accounts.

    Raises:
        AccountNotFoundError: Address not exposed by the signer
    """
    accounts = await signer.get_accounts()
    for account in accounts:
        if account.address == address:
            return account
    logger.error(f"Address {address} not found among {len(accounts)} signer account(s)")
    raise AccountNotFoundError(address)
