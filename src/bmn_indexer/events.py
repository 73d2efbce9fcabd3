from typing import Annotated, Any, Dict, Literal, Mapping, Optional, Sequence, Union

from hexbytes import HexBytes
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from .errors import EventDecodeError

UINT256_MAX = (1 << 256) - 1


def to_hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, str):
        body = value[2:] if value[:2] in ("0x", "0X") else value
        int(body or "0", 16)
        return "0x" + body.lower()
    raise ValueError(f"expected hex string or bytes, got {type(value).__name__}")


def _hex_of_size(value: Any, size: int) -> str:
    hex_value = to_hex(value)
    if len(hex_value) != 2 + size * 2:
        raise ValueError(f"expected {size} bytes, got {(len(hex_value) - 2) // 2}")
    return hex_value


def _uint256(value: int) -> int:
    if value < 0 or value > UINT256_MAX:
        raise ValueError("value does not fit in uint256")
    return value


class _AbiStruct(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class Immutables(_AbiStruct):
    order_hash: str
    hashlock: str
    maker: int
    taker: int
    token: int
    amount: int
    safety_deposit: int
    timelocks: int

    @field_validator("order_hash", "hashlock", mode="before")
    @classmethod
    def _bytes32(cls, v):
        return _hex_of_size(v, 32)

    @field_validator("maker", "taker", "token", "amount", "safety_deposit", "timelocks")
    @classmethod
    def _word(cls, v):
        return _uint256(v)


class DstImmutablesComplement(_AbiStruct):
    maker: int
    amount: int
    token: int
    safety_deposit: int
    chain_id: int

    @field_validator("maker", "amount", "token", "safety_deposit", "chain_id")
    @classmethod
    def _word(cls, v):
        return _uint256(v)


class IndexedEvent(BaseModel):
    """Log position shared by every event: where and when it was emitted."""
    model_config = ConfigDict(frozen=True)

    chain_id: int
    address: str
    block_number: int
    block_timestamp: int
    transaction_hash: str
    log_index: int = 0

    @field_validator("address", mode="before")
    @classmethod
    def _address(cls, v):
        return _hex_of_size(v, 20)

    @field_validator("transaction_hash", mode="before")
    @classmethod
    def _tx_hash(cls, v):
        return _hex_of_size(v, 32)


class SrcEscrowCreated(IndexedEvent):
    kind: Literal["SrcEscrowCreated"] = "SrcEscrowCreated"
    src_immutables: Immutables
    dst_immutables_complement: DstImmutablesComplement
    # emitted directly by the enhanced factory; otherwise derived with CREATE2
    escrow: Optional[str] = None

    @field_validator("escrow", mode="before")
    @classmethod
    def _escrow(cls, v):
        return None if v is None else _hex_of_size(v, 20)


class DstEscrowCreated(IndexedEvent):
    kind: Literal["DstEscrowCreated"] = "DstEscrowCreated"
    escrow: str
    hashlock: str
    taker: int

    @field_validator("escrow", mode="before")
    @classmethod
    def _escrow(cls, v):
        return _hex_of_size(v, 20)

    @field_validator("hashlock", mode="before")
    @classmethod
    def _hashlock(cls, v):
        return _hex_of_size(v, 32)

    @field_validator("taker")
    @classmethod
    def _taker(cls, v):
        return _uint256(v)


class EscrowWithdrawal(IndexedEvent):
    kind: Literal["EscrowWithdrawal"] = "EscrowWithdrawal"
    secret: str

    @field_validator("secret", mode="before")
    @classmethod
    def _secret(cls, v):
        return _hex_of_size(v, 32)


class EscrowCancelled(IndexedEvent):
    kind: Literal["EscrowCancelled"] = "EscrowCancelled"


class FundsRescued(IndexedEvent):
    kind: Literal["FundsRescued"] = "FundsRescued"
    token: str
    amount: int

    @field_validator("token", mode="before")
    @classmethod
    def _token(cls, v):
        return _hex_of_size(v, 20)

    @field_validator("amount")
    @classmethod
    def _amount(cls, v):
        return _uint256(v)


class _ResolverEvent(IndexedEvent):
    resolver: str

    @field_validator("resolver", mode="before")
    @classmethod
    def _resolver(cls, v):
        return _hex_of_size(v, 20)


class ResolverWhitelisted(_ResolverEvent):
    kind: Literal["ResolverWhitelisted"] = "ResolverWhitelisted"


class ResolverAdded(_ResolverEvent):
    kind: Literal["ResolverAdded"] = "ResolverAdded"
    added_by: str

    @field_validator("added_by", mode="before")
    @classmethod
    def _added_by(cls, v):
        return _hex_of_size(v, 20)


class ResolverRemoved(_ResolverEvent):
    kind: Literal["ResolverRemoved"] = "ResolverRemoved"


class ResolverSuspended(_ResolverEvent):
    kind: Literal["ResolverSuspended"] = "ResolverSuspended"
    until: int
    reason: str = ""


class ResolverReactivated(_ResolverEvent):
    kind: Literal["ResolverReactivated"] = "ResolverReactivated"


class EmergencyPause(IndexedEvent):
    kind: Literal["EmergencyPause"] = "EmergencyPause"
    paused: bool


class _AdminEvent(IndexedEvent):
    admin: str

    @field_validator("admin", mode="before")
    @classmethod
    def _admin(cls, v):
        return _hex_of_size(v, 20)


class AdminAdded(_AdminEvent):
    kind: Literal["AdminAdded"] = "AdminAdded"


class AdminRemoved(_AdminEvent):
    kind: Literal["AdminRemoved"] = "AdminRemoved"


class SwapInitiated(IndexedEvent):
    kind: Literal["SwapInitiated"] = "SwapInitiated"
    escrow_src: str
    maker: str
    resolver: str
    volume: int
    src_chain_id: int
    dst_chain_id: int

    @field_validator("escrow_src", "maker", "resolver", mode="before")
    @classmethod
    def _addresses(cls, v):
        return _hex_of_size(v, 20)

    @field_validator("volume", "src_chain_id", "dst_chain_id")
    @classmethod
    def _word(cls, v):
        return _uint256(v)


class SwapCompleted(IndexedEvent):
    kind: Literal["SwapCompleted"] = "SwapCompleted"
    order_hash: str
    resolver: str
    completion_time: int
    gas_used: int

    @field_validator("order_hash", mode="before")
    @classmethod
    def _order_hash(cls, v):
        return _hex_of_size(v, 32)

    @field_validator("resolver", mode="before")
    @classmethod
    def _resolver(cls, v):
        return _hex_of_size(v, 20)


class InteractionExecuted(IndexedEvent):
    kind: Literal["InteractionExecuted"] = "InteractionExecuted"
    order_maker: str
    interaction_target: str
    interaction_hash: str
    timestamp: int

    @field_validator("order_maker", "interaction_target", mode="before")
    @classmethod
    def _addresses(cls, v):
        return _hex_of_size(v, 20)

    @field_validator("interaction_hash", mode="before")
    @classmethod
    def _hash(cls, v):
        return _hex_of_size(v, 32)


class InteractionFailed(IndexedEvent):
    kind: Literal["InteractionFailed"] = "InteractionFailed"
    order_maker: str
    interaction_target: str
    reason: str = ""
    # transaction sender, attached by the watcher; the failing resolver
    sender: Optional[str] = None

    @field_validator("order_maker", "interaction_target", mode="before")
    @classmethod
    def _addresses(cls, v):
        return _hex_of_size(v, 20)

    @field_validator("sender", mode="before")
    @classmethod
    def _sender(cls, v):
        return None if v is None else _hex_of_size(v, 20)


class MetricsUpdated(IndexedEvent):
    kind: Literal["MetricsUpdated"] = "MetricsUpdated"
    total_volume: int
    success_rate: int
    avg_completion_time: int


EscrowEvent = Annotated[
    Union[
        SrcEscrowCreated,
        DstEscrowCreated,
        EscrowWithdrawal,
        EscrowCancelled,
        FundsRescued,
        ResolverWhitelisted,
        ResolverAdded,
        ResolverRemoved,
        ResolverSuspended,
        ResolverReactivated,
        AdminAdded,
        AdminRemoved,
        EmergencyPause,
        SwapInitiated,
        SwapCompleted,
        InteractionExecuted,
        InteractionFailed,
        MetricsUpdated,
    ],
    Field(discriminator="kind"),
]

_event_adapter: TypeAdapter = TypeAdapter(EscrowEvent)

# ABI argument name -> model field name, where they differ
_ARG_NAMES = {
    "srcImmutables": "src_immutables",
    "dstImmutablesComplement": "dst_immutables_complement",
    "addedBy": "added_by",
    "escrowSrc": "escrow_src",
    "srcChainId": "src_chain_id",
    "dstChainId": "dst_chain_id",
    "orderHash": "order_hash",
    "completionTime": "completion_time",
    "gasUsed": "gas_used",
    "orderMaker": "order_maker",
    "interactionTarget": "interaction_target",
    "interactionHash": "interaction_hash",
    "totalVolume": "total_volume",
    "successRate": "success_rate",
    "avgCompletionTime": "avg_completion_time",
}

_STRUCT_FIELDS = {
    "src_immutables": list(Immutables.model_fields),
    "dst_immutables_complement": list(DstImmutablesComplement.model_fields),
}


def _struct(field: str, value: Any) -> Any:
    # older web3 releases hand structs back as plain tuples
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return dict(zip(_STRUCT_FIELDS[field], value))
    if isinstance(value, Mapping):
        return dict(value)
    return value


def parse_event(payload: Dict[str, Any]):
    """Validate a plain dict (tagged with ``kind``) into its typed event."""
    try:
        return _event_adapter.validate_python(payload)
    except ValidationError as e:
        raise EventDecodeError(f"invalid {payload.get('kind', 'unknown')} event: {e}") from e


def decode_log(chain_id: int, entry: Mapping[str, Any], block_timestamp: int):
    """
    Turn a web3 decoded log (``contract.events.X().process_log(...)`` output)
    into a typed event. Raises EventDecodeError on anything malformed.
    """
    try:
        payload: Dict[str, Any] = {
            "kind": entry["event"],
            "chain_id": chain_id,
            "address": entry["address"],
            "block_number": entry["blockNumber"],
            "block_timestamp": block_timestamp,
            "transaction_hash": HexBytes(entry["transactionHash"]),
            "log_index": entry.get("logIndex") or 0,
        }
        for name, value in dict(entry["args"]).items():
            field = _ARG_NAMES.get(name, name)
            payload[field] = _struct(field, value) if field in _STRUCT_FIELDS else value
    except (KeyError, TypeError, ValueError) as e:
        raise EventDecodeError(f"malformed log on chain {chain_id}: {e!r}") from e
    return parse_event(payload)
