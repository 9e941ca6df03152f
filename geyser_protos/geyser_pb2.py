"""Protobuf-like structures for the Geyser ``Subscribe`` stream.

These classes mirror the portion of ``geyser.proto`` used by
:mod:`geyser_stream_listener`.  Every optional section is modelled as
``None`` when absent so that "no filter of this kind" is never confused with
"a filter matching nothing".
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


class CommitmentLevel(Enum):
    """Confirmation level required before the service reports data."""

    PROCESSED = 0
    CONFIRMED = 1
    FINALIZED = 2


class SlotStatus(Enum):
    PROCESSED = 0
    CONFIRMED = 1
    FINALIZED = 2
    FIRST_SHRED_RECEIVED = 3
    COMPLETED = 4
    CREATED_BANK = 5
    DEAD = 6


@dataclass(frozen=True)
class AccountFilter:
    """Account filter; both sets empty matches every account."""

    account: Tuple[str, ...] = ()
    owner: Tuple[str, ...] = ()

    def matches_all(self) -> bool:
        return not self.account and not self.owner


@dataclass(frozen=True)
class TransactionFilter:
    """Transaction filter.

    ``vote=False`` excludes vote transactions and ``failed=False`` excludes
    failed ones.  ``None`` leaves that axis unconstrained.
    """

    vote: Optional[bool] = None
    failed: Optional[bool] = None


@dataclass(frozen=True)
class Ping:
    id: int


@dataclass(frozen=True)
class SubscribeRequest:
    """Outbound message on the ``Subscribe`` stream.

    A subscription populates any subset of ``accounts``, ``transactions``,
    ``slots`` and ``commitment``; a keepalive populates only ``ping``.
    """

    accounts: Optional[Tuple[AccountFilter, ...]] = None
    transactions: Optional[Tuple[TransactionFilter, ...]] = None
    slots: bool = False
    commitment: Optional[CommitmentLevel] = None
    ping: Optional[Ping] = None

    def is_ping(self) -> bool:
        return (
            self.ping is not None
            and self.accounts is None
            and self.transactions is None
            and not self.slots
            and self.commitment is None
        )


@dataclass
class AccountUpdate:
    pubkey: str
    slot: int
    data: bytes = b""


@dataclass
class TransactionUpdate:
    signature: str
    slot: int
    success: bool
    fee: int = 0


@dataclass
class SlotUpdate:
    slot: int
    parent: Optional[int] = None
    status: SlotStatus = SlotStatus.PROCESSED


@dataclass
class AccountUpdates:
    accounts: List[AccountUpdate] = field(default_factory=list)


@dataclass
class TransactionUpdates:
    transactions: List[TransactionUpdate] = field(default_factory=list)


@dataclass
class SlotUpdates:
    slots: List[SlotUpdate] = field(default_factory=list)


@dataclass
class Pong:
    id: int


@dataclass
class SubscribeUpdate:
    """Inbound frame.

    The four groups are independent: a frame may carry none, one or several
    of them at once.
    """

    accounts: Optional[AccountUpdates] = None
    transactions: Optional[TransactionUpdates] = None
    slots: Optional[SlotUpdates] = None
    pong: Optional[Pong] = None

    def is_empty(self) -> bool:
        return (
            self.accounts is None
            and self.transactions is None
            and self.slots is None
            and self.pong is None
        )
