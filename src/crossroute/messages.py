"""Message builder: routing-service operations -> chain-native messages.

Each supported Cosmos message type has a codec that knows how to
- normalize the routing service's JSON payload into the native value shape,
- encode the value as a protobuf ``Any`` (structured signing),
- convert to and from the legacy amino JSON shape (legacy signing).

EVM operations are turned into plain call descriptions.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from cosmpy.protos.cosmos.bank.v1beta1.tx_pb2 import MsgSend
from cosmpy.protos.cosmos.base.v1beta1.coin_pb2 import Coin as CoinProto
from cosmpy.protos.cosmwasm.wasm.v1.tx_pb2 import MsgExecuteContract
from cosmpy.protos.ibc.applications.transfer.v1.tx_pb2 import MsgTransfer
from cosmpy.protos.ibc.core.client.v1.client_pb2 import Height
from google.protobuf.any_pb2 import Any as ProtoAny
from google.protobuf.message import Message

from crossroute.errors import UnsupportedMessageError
from crossroute.models import CosmosOperation, EVMOperation, RequiredApproval

logger = logging.getLogger(__name__)


class MessageKind(str, Enum):
    """Operation kinds the builder produces."""
    GENERIC = "generic"
    IBC_TRANSFER = "ibc_transfer"
    EVM_CALL = "evm_call"


@dataclass(frozen=True)
class CosmosMessage:
    """A chain-native Cosmos message (type URL + snake_case value)."""
    type_url: str
    value: dict
    kind: MessageKind = MessageKind.GENERIC

    @property
    def memo(self) -> str:
        return self.value.get("memo") or ""


@dataclass(frozen=True)
class EVMCall:
    """An EVM call ready to hand to an EVM signer."""
    chain_id: str
    to: str
    data: str
    value: int = 0
    approvals: tuple[RequiredApproval, ...] = field(default_factory=tuple)
    kind: MessageKind = MessageKind.EVM_CALL


def _field(payload: dict, name: str, camel: str, default=None):
    if name in payload:
        return payload[name]
    return payload.get(camel, default)


def _coins_to_proto(coins: list[dict]) -> list[CoinProto]:
    return [CoinProto(denom=coin["denom"], amount=str(coin["amount"])) for coin in coins]


def _coins(coins: Optional[list]) -> list[dict]:
    return [{"denom": coin["denom"], "amount": str(coin["amount"])} for coin in coins or []]


class MessageCodec(ABC):
    """Conversions for one Cosmos message type."""

    type_url: str = ""
    amino_type: str = ""
    kind: MessageKind = MessageKind.GENERIC
    # Fields the legacy amino conversion does not carry; restored by the signer
    amino_dropped_fields: tuple[str, ...] = ()

    @abstractmethod
    def from_payload(self, payload: dict) -> dict:
        """Normalize a routing-service JSON payload to the native value."""

    @abstractmethod
    def to_proto(self, value: dict) -> Message:
        """Protobuf message for the native value."""

    @abstractmethod
    def to_amino(self, value: dict) -> dict:
        """Amino JSON ``value`` object for the native value."""

    @abstractmethod
    def from_amino(self, amino_value: dict) -> dict:
        """Native value from an amino JSON ``value`` object."""


class BankSendCodec(MessageCodec):
    type_url = "/cosmos.bank.v1beta1.MsgSend"
    amino_type = "cosmos-sdk/MsgSend"

    def from_payload(self, payload: dict) -> dict:
        return {
            "from_address": _field(payload, "from_address", "fromAddress"),
            "to_address": _field(payload, "to_address", "toAddress"),
            "amount": _coins(payload.get("amount")),
        }

    def to_proto(self, value: dict) -> Message:
        return MsgSend(
            from_address=value["from_address"],
            to_address=value["to_address"],
            amount=_coins_to_proto(value["amount"]),
        )

    def to_amino(self, value: dict) -> dict:
        return {
            "from_address": value["from_address"],
            "to_address": value["to_address"],
            "amount": _coins(value["amount"]),
        }

    def from_amino(self, amino_value: dict) -> dict:
        return self.from_payload(amino_value)


class WasmExecuteCodec(MessageCodec):
    """CosmWasm contract execution; the contract message stays a JSON object."""

    type_url = "/cosmwasm.wasm.v1.MsgExecuteContract"
    amino_type = "wasm/MsgExecuteContract"

    def from_payload(self, payload: dict) -> dict:
        msg = payload.get("msg", {})
        if isinstance(msg, (str, bytes)):
            msg = json.loads(msg)
        return {
            "sender": payload["sender"],
            "contract": payload["contract"],
            "msg": msg,
            "funds": _coins(payload.get("funds")),
        }

    def to_proto(self, value: dict) -> Message:
        return MsgExecuteContract(
            sender=value["sender"],
            contract=value["contract"],
            msg=json.dumps(value["msg"], separators=(",", ":")).encode("utf-8"),
            funds=_coins_to_proto(value["funds"]),
        )

    def to_amino(self, value: dict) -> dict:
        return {
            "sender": value["sender"],
            "contract": value["contract"],
            "msg": value["msg"],
            "funds": _coins(value["funds"]),
        }

    def from_amino(self, amino_value: dict) -> dict:
        return self.from_payload(amino_value)


class IBCTransferCodec(MessageCodec):
    """ICS-20 transfer.

    The legacy amino converter has no memo field, so the memo (which carries
    the routing service's forwarding/hook instructions) is dropped on the
    amino round trip and must be restored by the signer.
    """

    type_url = "/ibc.applications.transfer.v1.MsgTransfer"
    amino_type = "cosmos-sdk/MsgTransfer"
    kind = MessageKind.IBC_TRANSFER
    amino_dropped_fields = ("memo",)

    def from_payload(self, payload: dict) -> dict:
        height = _field(payload, "timeout_height", "timeoutHeight") or {}
        return {
            "source_port": _field(payload, "source_port", "sourcePort", "transfer"),
            "source_channel": _field(payload, "source_channel", "sourceChannel"),
            "token": _coins([payload["token"]])[0],
            "sender": payload["sender"],
            "receiver": payload["receiver"],
            "timeout_height": {
                "revision_number": int(_field(height, "revision_number", "revisionNumber", 0) or 0),
                "revision_height": int(_field(height, "revision_height", "revisionHeight", 0) or 0),
            },
            "timeout_timestamp": int(_field(payload, "timeout_timestamp", "timeoutTimestamp", 0) or 0),
            "memo": payload.get("memo", ""),
        }

    def to_proto(self, value: dict) -> Message:
        height = value["timeout_height"]
        msg = MsgTransfer(
            source_port=value["source_port"],
            source_channel=value["source_channel"],
            token=CoinProto(denom=value["token"]["denom"], amount=value["token"]["amount"]),
            sender=value["sender"],
            receiver=value["receiver"],
            timeout_height=Height(
                revision_number=height["revision_number"],
                revision_height=height["revision_height"],
            ),
            timeout_timestamp=value["timeout_timestamp"],
        )
        if value.get("memo"):
            msg.memo = value["memo"]
        return msg

    def to_amino(self, value: dict) -> dict:
        height = value["timeout_height"]
        amino_height = {}
        if height["revision_height"]:
            amino_height["revision_height"] = str(height["revision_height"])
        if height["revision_number"]:
            amino_height["revision_number"] = str(height["revision_number"])

        amino = {
            "source_port": value["source_port"],
            "source_channel": value["source_channel"],
            "token": dict(value["token"]),
            "sender": value["sender"],
            "receiver": value["receiver"],
            "timeout_height": amino_height,
        }
        if value["timeout_timestamp"]:
            amino["timeout_timestamp"] = str(value["timeout_timestamp"])
        return amino

    def from_amino(self, amino_value: dict) -> dict:
        height = amino_value.get("timeout_height") or {}
        return {
            "source_port": amino_value["source_port"],
            "source_channel": amino_value["source_channel"],
            "token": _coins([amino_value["token"]])[0],
            "sender": amino_value["sender"],
            "receiver": amino_value["receiver"],
            "timeout_height": {
                "revision_number": int(height.get("revision_number", 0)),
                "revision_height": int(height.get("revision_height", 0)),
            },
            "timeout_timestamp": int(amino_value.get("timeout_timestamp", 0)),
        }


DEFAULT_CODECS: tuple[MessageCodec, ...] = (
    BankSendCodec(),
    WasmExecuteCodec(),
    IBCTransferCodec(),
)


class MessageBuilder:
    """Builds chain-native messages from operations."""

    def __init__(self, codecs: Optional[tuple[MessageCodec, ...]] = None):
        codecs = codecs if codecs is not None else DEFAULT_CODECS
        self._by_type_url = {codec.type_url: codec for codec in codecs}
        self._by_amino_type = {codec.amino_type: codec for codec in codecs}

    def codec(self, type_url: str) -> MessageCodec:
        codec = self._by_type_url.get(type_url)
        if codec is None:
            raise UnsupportedMessageError(type_url)
        return codec

    def build(self, operation: CosmosOperation) -> CosmosMessage:
        """Chain-native message for a Cosmos operation."""
        codec = self.codec(operation.msg_type_url)
        try:
            payload = json.loads(operation.msg)
        except ValueError as e:
            raise UnsupportedMessageError(operation.msg_type_url, f"invalid JSON payload: {e}") from e

        message = CosmosMessage(
            type_url=codec.type_url,
            value=codec.from_payload(payload),
            kind=codec.kind,
        )
        logger.debug(f"Built {message.kind.value} message {message.type_url} for {operation.chain_id}")
        return message

    def build_evm(self, operation: EVMOperation) -> EVMCall:
        """EVM call description for an EVM operation."""
        data = operation.data if operation.data.startswith("0x") else f"0x{operation.data}"
        return EVMCall(
            chain_id=operation.chain_id,
            to=operation.to,
            data=data,
            value=operation.value_int,
            approvals=tuple(operation.required_erc20_approvals),
        )

    def to_any(self, message: CosmosMessage) -> ProtoAny:
        """Protobuf ``Any`` for a message."""
        proto = self.codec(message.type_url).to_proto(message.value)
        return ProtoAny(type_url=message.type_url, value=proto.SerializeToString())

    def to_amino(self, message: CosmosMessage) -> dict:
        """Legacy amino JSON ``{"type", "value"}`` for a message."""
        codec = self.codec(message.type_url)
        return {"type": codec.amino_type, "value": codec.to_amino(message.value)}

    def from_amino(self, amino_msg: dict) -> CosmosMessage:
        """Chain-native message from a legacy amino JSON message."""
        codec = self._by_amino_type.get(amino_msg.get("type", ""))
        if codec is None:
            raise UnsupportedMessageError(amino_msg.get("type", ""), "no amino converter registered")
        return CosmosMessage(
            type_url=codec.type_url,
            value=codec.from_amino(amino_msg.get("value", {})),
            kind=codec.kind,
        )

    def amino_dropped_fields(self, type_url: str) -> tuple[str, ...]:
        return self.codec(type_url).amino_dropped_fields
