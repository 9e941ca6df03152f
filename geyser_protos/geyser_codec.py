"""Protobuf wire encoding for :mod:`geyser_protos.geyser_pb2` messages.

The message descriptors are assembled at import time with
``google.protobuf.descriptor_pb2`` instead of being compiled by ``protoc``.
Field numbers and nesting follow Yellowstone's ``geyser.proto``: filters are
maps keyed by filter name, and an inbound ``SubscribeUpdate`` carries one
account, slot, transaction or pong message that :func:`message_to_update`
turns into a one-element group of :class:`geyser_pb2.SubscribeUpdate`.
Ping ids are ``int32`` upstream; non-negative values share the ``uint64``
varint encoding used here.
"""

from __future__ import annotations

from typing import Iterable, Optional

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from solders.pubkey import Pubkey
from solders.signature import Signature

from . import geyser_pb2

PACKAGE = "geyser"

_F = descriptor_pb2.FieldDescriptorProto
_OPTIONAL = _F.LABEL_OPTIONAL
_REPEATED = _F.LABEL_REPEATED


def _add_enum(
    file_proto: descriptor_pb2.FileDescriptorProto, name: str, values: Iterable[str]
) -> None:
    enum = file_proto.enum_type.add(name=name)
    for number, value in enumerate(values):
        enum.value.add(name=f"{name.upper()}_{value}", number=number)


def _add_message(
    file_proto: descriptor_pb2.FileDescriptorProto, name: str, *fields: tuple
) -> descriptor_pb2.DescriptorProto:
    """Add a message; each field is ``(number, name, type, label[, type_name])``."""
    msg = file_proto.message_type.add(name=name)
    for field_def in fields:
        number, field_name, field_type, label = field_def[:4]
        field = msg.field.add(
            name=field_name, number=number, type=field_type, label=label
        )
        if len(field_def) > 4:
            field.type_name = f".{PACKAGE}.{field_def[4]}"
    return msg


def _add_map(
    msg: descriptor_pb2.DescriptorProto, number: int, field_name: str, value_type: str
) -> None:
    entry_name = "".join(part.capitalize() for part in field_name.split("_")) + "Entry"
    entry = msg.nested_type.add(name=entry_name)
    entry.options.map_entry = True
    entry.field.add(name="key", number=1, type=_F.TYPE_STRING, label=_OPTIONAL)
    entry.field.add(
        name="value",
        number=2,
        type=_F.TYPE_MESSAGE,
        label=_OPTIONAL,
        type_name=f".{PACKAGE}.{value_type}",
    )
    msg.field.add(
        name=field_name,
        number=number,
        type=_F.TYPE_MESSAGE,
        label=_REPEATED,
        type_name=f".{PACKAGE}.{msg.name}.{entry_name}",
    )


def _build_file() -> descriptor_pb2.FileDescriptorProto:
    fp = descriptor_pb2.FileDescriptorProto(
        name="geyser_stream.proto", package=PACKAGE, syntax="proto2"
    )
    # Enum value names are prefixed because proto enum values share the
    # package scope.
    _add_enum(fp, "CommitmentLevel", [c.name for c in geyser_pb2.CommitmentLevel])
    _add_enum(fp, "SlotStatus", [s.name for s in geyser_pb2.SlotStatus])

    _add_message(
        fp,
        "SubscribeRequestFilterAccounts",
        (2, "account", _F.TYPE_STRING, _REPEATED),
        (3, "owner", _F.TYPE_STRING, _REPEATED),
    )
    _add_message(fp, "SubscribeRequestFilterSlots")
    _add_message(
        fp,
        "SubscribeRequestFilterTransactions",
        (1, "vote", _F.TYPE_BOOL, _OPTIONAL),
        (2, "failed", _F.TYPE_BOOL, _OPTIONAL),
    )
    _add_message(fp, "SubscribeRequestPing", (1, "id", _F.TYPE_UINT64, _OPTIONAL))
    request = _add_message(
        fp,
        "SubscribeRequest",
        (6, "commitment", _F.TYPE_ENUM, _OPTIONAL, "CommitmentLevel"),
        (9, "ping", _F.TYPE_MESSAGE, _OPTIONAL, "SubscribeRequestPing"),
    )
    _add_map(request, 1, "accounts", "SubscribeRequestFilterAccounts")
    _add_map(request, 2, "slots", "SubscribeRequestFilterSlots")
    _add_map(request, 3, "transactions", "SubscribeRequestFilterTransactions")

    # Inbound layout follows geyser.proto.  ``update_oneof`` is declared as
    # plain optional fields; the wire encoding is the same.
    _add_message(
        fp,
        "SubscribeUpdateAccountInfo",
        (1, "pubkey", _F.TYPE_BYTES, _OPTIONAL),
        (2, "lamports", _F.TYPE_UINT64, _OPTIONAL),
        (3, "owner", _F.TYPE_BYTES, _OPTIONAL),
        (4, "executable", _F.TYPE_BOOL, _OPTIONAL),
        (5, "rent_epoch", _F.TYPE_UINT64, _OPTIONAL),
        (6, "data", _F.TYPE_BYTES, _OPTIONAL),
        (7, "write_version", _F.TYPE_UINT64, _OPTIONAL),
        (8, "txn_signature", _F.TYPE_BYTES, _OPTIONAL),
    )
    _add_message(
        fp,
        "SubscribeUpdateAccount",
        (1, "account", _F.TYPE_MESSAGE, _OPTIONAL, "SubscribeUpdateAccountInfo"),
        (2, "slot", _F.TYPE_UINT64, _OPTIONAL),
        (3, "is_startup", _F.TYPE_BOOL, _OPTIONAL),
    )
    _add_message(
        fp,
        "SubscribeUpdateSlot",
        (1, "slot", _F.TYPE_UINT64, _OPTIONAL),
        (2, "parent", _F.TYPE_UINT64, _OPTIONAL),
        (3, "status", _F.TYPE_ENUM, _OPTIONAL, "SlotStatus"),
        (4, "dead_error", _F.TYPE_STRING, _OPTIONAL),
    )
    # Only the parts of solana-storage's TransactionStatusMeta that are read.
    _add_message(fp, "TransactionError", (1, "err", _F.TYPE_BYTES, _OPTIONAL))
    _add_message(
        fp,
        "TransactionStatusMeta",
        (1, "err", _F.TYPE_MESSAGE, _OPTIONAL, "TransactionError"),
        (2, "fee", _F.TYPE_UINT64, _OPTIONAL),
    )
    _add_message(
        fp,
        "SubscribeUpdateTransactionInfo",
        (1, "signature", _F.TYPE_BYTES, _OPTIONAL),
        (2, "is_vote", _F.TYPE_BOOL, _OPTIONAL),
        (4, "meta", _F.TYPE_MESSAGE, _OPTIONAL, "TransactionStatusMeta"),
        (5, "index", _F.TYPE_UINT64, _OPTIONAL),
    )
    _add_message(
        fp,
        "SubscribeUpdateTransaction",
        (1, "transaction", _F.TYPE_MESSAGE, _OPTIONAL, "SubscribeUpdateTransactionInfo"),
        (2, "slot", _F.TYPE_UINT64, _OPTIONAL),
    )
    _add_message(fp, "SubscribeUpdatePing")
    _add_message(fp, "SubscribeUpdatePong", (1, "id", _F.TYPE_UINT64, _OPTIONAL))
    _add_message(
        fp,
        "SubscribeUpdate",
        (1, "filters", _F.TYPE_STRING, _REPEATED),
        (2, "account", _F.TYPE_MESSAGE, _OPTIONAL, "SubscribeUpdateAccount"),
        (3, "slot", _F.TYPE_MESSAGE, _OPTIONAL, "SubscribeUpdateSlot"),
        (4, "transaction", _F.TYPE_MESSAGE, _OPTIONAL, "SubscribeUpdateTransaction"),
        (6, "ping", _F.TYPE_MESSAGE, _OPTIONAL, "SubscribeUpdatePing"),
        (9, "pong", _F.TYPE_MESSAGE, _OPTIONAL, "SubscribeUpdatePong"),
    )
    return fp


_pool = descriptor_pool.DescriptorPool()
_pool.AddSerializedFile(_build_file().SerializeToString())


def _message_class(name: str):
    return message_factory.GetMessageClass(
        _pool.FindMessageTypeByName(f"{PACKAGE}.{name}")
    )


SubscribeRequestMessage = _message_class("SubscribeRequest")
SubscribeUpdateMessage = _message_class("SubscribeUpdate")


def request_to_message(request: geyser_pb2.SubscribeRequest):
    """Convert *request* to its protobuf message, leaving absent sections unset."""
    msg = SubscribeRequestMessage()
    if request.accounts is not None:
        for index, flt in enumerate(request.accounts):
            entry = msg.accounts[f"accounts_{index}"]
            entry.account.extend(flt.account)
            entry.owner.extend(flt.owner)
    if request.transactions is not None:
        for index, flt in enumerate(request.transactions):
            entry = msg.transactions[f"transactions_{index}"]
            if flt.vote is not None:
                entry.vote = flt.vote
            if flt.failed is not None:
                entry.failed = flt.failed
    if request.slots:
        msg.slots.get_or_create("slots")
    if request.commitment is not None:
        msg.commitment = request.commitment.value
    if request.ping is not None:
        msg.ping.id = request.ping.id
    return msg


def encode_request(request: geyser_pb2.SubscribeRequest) -> bytes:
    return request_to_message(request).SerializeToString()


def _address(raw: bytes) -> str:
    return str(Pubkey.from_bytes(raw))


def _signature(raw: bytes) -> str:
    return str(Signature.from_bytes(raw))


def message_to_update(msg) -> geyser_pb2.SubscribeUpdate:
    """Map each populated wire field to a one-element group."""
    accounts: Optional[geyser_pb2.AccountUpdates] = None
    transactions: Optional[geyser_pb2.TransactionUpdates] = None
    slots: Optional[geyser_pb2.SlotUpdates] = None
    pong: Optional[geyser_pb2.Pong] = None

    if msg.HasField("account"):
        info = msg.account.account
        accounts = geyser_pb2.AccountUpdates(
            [
                geyser_pb2.AccountUpdate(
                    pubkey=_address(info.pubkey),
                    slot=msg.account.slot,
                    data=bytes(info.data),
                )
            ]
        )
    if msg.HasField("transaction"):
        info = msg.transaction.transaction
        transactions = geyser_pb2.TransactionUpdates(
            [
                geyser_pb2.TransactionUpdate(
                    signature=_signature(info.signature),
                    slot=msg.transaction.slot,
                    success=not info.meta.HasField("err"),
                    fee=info.meta.fee,
                )
            ]
        )
    if msg.HasField("slot"):
        slot = msg.slot
        slots = geyser_pb2.SlotUpdates(
            [
                geyser_pb2.SlotUpdate(
                    slot=slot.slot,
                    parent=slot.parent if slot.HasField("parent") else None,
                    status=geyser_pb2.SlotStatus(slot.status),
                )
            ]
        )
    if msg.HasField("pong"):
        pong = geyser_pb2.Pong(id=msg.pong.id)

    return geyser_pb2.SubscribeUpdate(
        accounts=accounts, transactions=transactions, slots=slots, pong=pong
    )


def decode_update(data: bytes) -> geyser_pb2.SubscribeUpdate:
    msg = SubscribeUpdateMessage()
    msg.ParseFromString(data)
    return message_to_update(msg)
