"""Cosmos transaction assembly helpers (protobuf via cosmpy)."""

import json
from typing import Sequence

from cosmpy.protos.cosmos.base.v1beta1.coin_pb2 import Coin as CoinProto
from cosmpy.protos.cosmos.crypto.secp256k1.keys_pb2 import PubKey
from cosmpy.protos.cosmos.tx.signing.v1beta1.signing_pb2 import SignMode as ProtoSignMode
from cosmpy.protos.cosmos.tx.v1beta1.tx_pb2 import (
    AuthInfo,
    Fee as FeeProto,
    ModeInfo,
    SignerInfo,
    TxBody,
    TxRaw,
)
from google.protobuf.any_pb2 import Any as ProtoAny

from crossroute.models import Fee
from crossroute.signing.base import SignMode

SECP256K1_PUBKEY_TYPE = "/cosmos.crypto.secp256k1.PubKey"

PROTO_SIGN_MODES = {
    SignMode.DIRECT: ProtoSignMode.SIGN_MODE_DIRECT,
    SignMode.AMINO: ProtoSignMode.SIGN_MODE_LEGACY_AMINO_JSON,
}


def encode_pubkey(pubkey: bytes, type_url: str = SECP256K1_PUBKEY_TYPE) -> ProtoAny:
    """Wrap a compressed public key in an ``Any``.

    Ethermint-style key types share the secp256k1 PubKey wire layout and only
    differ in type URL.
    """
    return ProtoAny(type_url=type_url, value=PubKey(key=pubkey).SerializeToString())


def make_body_bytes(
    messages: Sequence[ProtoAny],
    memo: str = "",
    timeout_height: int = 0,
) -> bytes:
    body = TxBody(messages=list(messages), memo=memo, timeout_height=timeout_height)
    return body.SerializeToString()


def make_auth_info_bytes(
    pubkey: ProtoAny,
    sequence: int,
    fee: Fee,
    sign_mode: SignMode = SignMode.DIRECT,
) -> bytes:
    signer_info = SignerInfo(
        public_key=pubkey,
        mode_info=ModeInfo(single=ModeInfo.Single(mode=PROTO_SIGN_MODES[sign_mode])),
        sequence=sequence,
    )
    fee_proto = FeeProto(
        amount=[CoinProto(denom=coin.denom, amount=str(coin.amount)) for coin in fee.amount],
        gas_limit=fee.gas,
        payer=fee.payer,
        granter=fee.granter,
    )
    return AuthInfo(signer_infos=[signer_info], fee=fee_proto).SerializeToString()


def make_tx_raw(body_bytes: bytes, auth_info_bytes: bytes, signatures: Sequence[bytes]) -> TxRaw:
    return TxRaw(body_bytes=body_bytes, auth_info_bytes=auth_info_bytes, signatures=list(signatures))


def build_simulation_tx(
    message: ProtoAny,
    pubkey: ProtoAny,
    sequence: int,
    memo: str = "",
) -> bytes:
    """Unsigned transaction bytes for gas simulation (empty signature)."""
    body_bytes = make_body_bytes([message], memo)
    auth_info_bytes = make_auth_info_bytes(pubkey, sequence, Fee(amount=(), gas=0))
    return make_tx_raw(body_bytes, auth_info_bytes, [b""]).SerializeToString()


def make_amino_sign_doc(
    msgs: list[dict],
    fee: Fee,
    chain_id: str,
    memo: str,
    account_number: int,
    sequence: int,
) -> dict:
    """StdSignDoc for legacy signing (all integers as strings)."""
    doc = {
        "chain_id": chain_id,
        "account_number": str(account_number),
        "sequence": str(sequence),
        "fee": fee.to_amino(),
        "msgs": msgs,
        "memo": memo,
    }
    return doc


def serialize_amino_sign_doc(sign_doc: dict) -> bytes:
    """Canonical bytes of a StdSignDoc: sorted keys, compact, HTML-escaped."""
    text = json.dumps(sign_doc, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    text = text.replace("&", "\\u0026").replace("<", "\\u003c").replace(">", "\\u003e")
    return text.encode("utf-8")
