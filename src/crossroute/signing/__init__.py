"""Cosmos transaction signing.

Provides:
- Signer capability interfaces (DirectSigner, AminoSigner)
- TransactionSigner: dispatches each leg to the declared protocol
- Chain-family signing strategies
- Local in-memory signers for development
"""

from crossroute.signing.base import (
    AccountData,
    AminoSignResponse,
    AminoSigner,
    CosmosSigner,
    DirectSignDoc,
    DirectSignResponse,
    DirectSigner,
    SignMode,
    StdSignature,
    find_account,
)
from crossroute.signing.dispatcher import TransactionSigner
from crossroute.signing.local import LocalAminoSigner, LocalDirectSigner
from crossroute.signing.strategies import SigningStrategy, resolve_family, strategy_for

__all__ = [
    "AccountData",
    "AminoSignResponse",
    "AminoSigner",
    "CosmosSigner",
    "DirectSignDoc",
    "DirectSignResponse",
    "DirectSigner",
    "SignMode",
    "StdSignature",
    "find_account",
    "TransactionSigner",
    "LocalAminoSigner",
    "LocalDirectSigner",
    "SigningStrategy",
    "resolve_family",
    "strategy_for",
]
