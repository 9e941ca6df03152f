from __future__ import annotations
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


import asyncio
from typing import List, Optional

import pytest

from geyser_protos.geyser_pb2 import SubscribeRequest, SubscribeUpdate
from geyser_protos.geyser_pb2_grpc import StreamReceiveError, StreamSendError


class FakeStream:
    """In-memory stand-in for :class:`DuplexStream`.

    ``frames`` are returned by ``receive`` in order, followed by ``None``.
    An exception instance in ``frames`` is raised instead.  After
    ``allowed_sends`` successful sends every further send fails.  Each
    ``receive`` first sleeps ``receive_delay`` seconds.
    """

    def __init__(
        self,
        frames=(),
        allowed_sends: Optional[int] = None,
        hold_until_send_fails=False,
        receive_delay: float = 0,
    ):
        self.frames = list(frames)
        self.allowed_sends = allowed_sends
        self.hold_until_send_fails = hold_until_send_fails
        self.receive_delay = receive_delay
        self.ended = False
        self.sends_after_end: List[SubscribeRequest] = []
        self.sent: List[SubscribeRequest] = []
        self.events: List[str] = []
        self.closed = False
        self.send_failed = asyncio.Event()

    async def send(self, request: SubscribeRequest) -> None:
        if self.closed or (
            self.allowed_sends is not None and len(self.sent) >= self.allowed_sends
        ):
            self.send_failed.set()
            raise StreamSendError("stream is closed")
        self.sent.append(request)
        if self.ended:
            self.sends_after_end.append(request)
        self.events.append("ping" if request.is_ping() else "subscribe")

    async def receive(self) -> Optional[SubscribeUpdate]:
        if self.hold_until_send_fails:
            await self.send_failed.wait()
        if self.receive_delay:
            await asyncio.sleep(self.receive_delay)
        self.events.append("receive")
        if not self.frames:
            self.ended = True
            return None
        item = self.frames.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_stream_factory():
    return FakeStream


@pytest.fixture
def receive_error():
    return StreamReceiveError("UNAVAILABLE: connection reset")
