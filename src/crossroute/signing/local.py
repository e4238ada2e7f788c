"""Local key signers for development and tests.

Keys are secp256k1 keys held in memory, derived from a BIP-39 mnemonic on the
Cosmos BIP-44 path (m/44'/118'/0'/0/index) or supplied raw. Addresses use the
generic Cosmos scheme (RIPEMD160(SHA256(pubkey))) with the given bech32
prefix, so these signers do not produce ethermint-style addresses.

Production wallets implement the same interfaces without exposing keys.
"""

import base64
import logging
from typing import Optional

from cosmpy.crypto.address import Address
from cosmpy.crypto.keypairs import PrivateKey

from crossroute.errors import AccountNotFoundError
from crossroute.signing.base import (
    AccountData,
    AminoSignResponse,
    AminoSigner,
    DirectSignDoc,
    DirectSignResponse,
    DirectSigner,
    StdSignature,
)
from crossroute.signing.tx import serialize_amino_sign_doc

logger = logging.getLogger(__name__)


def derive_private_key(mnemonic: str, index: int = 0) -> bytes:
    """Derive a Cosmos private key from a mnemonic."""
    from bip_utils import Bip39SeedGenerator, Bip44, Bip44Changes, Bip44Coins

    seed = Bip39SeedGenerator(mnemonic).Generate()
    bip44 = Bip44.FromSeed(seed, Bip44Coins.COSMOS)
    account = bip44.Purpose().Coin().Account(0).Change(Bip44Changes.CHAIN_EXT)
    return account.AddressIndex(index).PrivateKey().Raw().ToBytes()


class _LocalKey:
    """Shared key handling for the local signers."""

    def __init__(self, private_key: Optional[bytes] = None, prefix: str = "cosmos"):
        self._key = PrivateKey(private_key)
        self.prefix = prefix
        self.address = str(Address(self._key.public_key, prefix))
        self.pubkey = self._key.public_key.public_key_bytes

    @classmethod
    def from_mnemonic(cls, mnemonic: str, prefix: str = "cosmos", index: int = 0):
        return cls(derive_private_key(mnemonic, index), prefix)

    async def get_accounts(self) -> list[AccountData]:
        return [AccountData(address=self.address, pubkey=self.pubkey)]

    def _check_address(self, signer_address: str) -> None:
        if signer_address != self.address:
            raise AccountNotFoundError(signer_address)

    def _signature(self, payload: bytes) -> StdSignature:
        signature = self._key.sign(payload, deterministic=True)
        return StdSignature(
            pub_key={
                "type": "tendermint/PubKeySecp256k1",
                "value": base64.b64encode(self.pubkey).decode(),
            },
            signature=base64.b64encode(signature).decode(),
        )


class LocalDirectSigner(_LocalKey, DirectSigner):
    """In-memory key signing structured documents."""

    async def sign_direct(self, signer_address: str, sign_doc: DirectSignDoc) -> DirectSignResponse:
        self._check_address(signer_address)
        logger.debug(f"Signing direct doc for {signer_address} on {sign_doc.chain_id}")
        return DirectSignResponse(signed=sign_doc, signature=self._signature(sign_doc.to_bytes()))


class LocalAminoSigner(_LocalKey, AminoSigner):
    """In-memory key signing legacy amino documents."""

    async def sign_amino(self, signer_address: str, sign_doc: dict) -> AminoSignResponse:
        self._check_address(signer_address)
        logger.debug(f"Signing amino doc for {signer_address} on {sign_doc.get('chain_id')}")
        return AminoSignResponse(
            signed=sign_doc,
            signature=self._signature(serialize_amino_sign_doc(sign_doc)),
        )
