"""Async gRPC transport for the Geyser ``Subscribe`` stream.

:func:`connect` opens an authenticated ``grpc.aio`` channel and returns a
:class:`DuplexStream`.  Outbound messages are queued and written by a single
request iterator that gRPC drains, so several coroutines may call
:meth:`DuplexStream.send` without interleaving frames.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Callable, Optional, Tuple
from urllib.parse import urlsplit

import grpc

from . import geyser_codec, geyser_pb2

SUBSCRIBE_METHOD = "/geyser.Geyser/Subscribe"
CONNECT_TIMEOUT_SECS = 10.0
HANDSHAKE_GRACE_SECS = 0.25
CHANNEL_OPTIONS = (
    ("grpc.max_receive_message_length", 64 * 1024 * 1024),
    ("grpc.keepalive_time_ms", 10_000),
)

logger = logging.getLogger(__name__)


class GeyserError(Exception):
    """Base class for stream failures; ``phase`` names the failing step."""

    phase = "stream"


class GeyserConnectionError(GeyserError):
    phase = "connect"


class StreamSendError(GeyserError):
    phase = "send"


class SubscribeSendError(StreamSendError):
    phase = "subscribe"


class StreamReceiveError(GeyserError):
    phase = "receive"


class GeyserStub:
    def __init__(self, channel) -> None:
        self.Subscribe = channel.stream_stream(
            SUBSCRIBE_METHOD,
            request_serializer=geyser_codec.encode_request,
            response_deserializer=geyser_codec.decode_update,
        )


_END = object()


class DuplexStream:
    """One bidirectional ``Subscribe`` call.

    ``open_call`` receives the outbound request iterator and returns the
    ``grpc.aio`` call object (anything with ``read``, ``cancel``,
    ``add_done_callback``, ``initial_metadata``, ``code`` and ``details``).
    """

    def __init__(self, open_call: Callable[[AsyncIterator], object], channel=None) -> None:
        self._outbox: "asyncio.Queue[object]" = asyncio.Queue()
        self._closed = False
        self._channel = channel
        self._finished = asyncio.Event()
        self._call = open_call(self._outbound())
        self._call.add_done_callback(lambda _call: self._on_call_done())

    @property
    def closed(self) -> bool:
        return self._closed

    async def _outbound(self) -> AsyncIterator[geyser_pb2.SubscribeRequest]:
        while True:
            request = await self._outbox.get()
            if request is _END:
                return
            logger.debug("Writing %s", "ping" if request.is_ping() else "subscription")
            yield request

    def _on_call_done(self) -> None:
        self._finished.set()
        self._mark_closed()

    def _mark_closed(self) -> None:
        if not self._closed:
            self._closed = True
            self._outbox.put_nowait(_END)

    async def handshake(self, timeout: float, grace: float = HANDSHAKE_GRACE_SECS) -> None:
        """Wait for the server to accept the call.

        A rejected call (bad ``x-token``, unknown method) finishes right after
        its headers, so a status arriving within *grace* seconds of them is
        treated as a connection failure.
        """
        try:
            await asyncio.wait_for(self._call.initial_metadata(), timeout)
        except grpc.aio.AioRpcError as exc:
            raise GeyserConnectionError(_describe(exc)) from exc
        except asyncio.TimeoutError as exc:
            raise GeyserConnectionError(
                f"no response from server within {timeout:g}s"
            ) from exc

        try:
            await asyncio.wait_for(self._finished.wait(), grace)
        except asyncio.TimeoutError:
            return
        code = await self._call.code()
        if code != grpc.StatusCode.OK:
            details = await self._call.details()
            raise GeyserConnectionError(f"{code.name}: {details}")

    async def send(self, request: geyser_pb2.SubscribeRequest) -> None:
        if self._closed:
            raise StreamSendError("stream is closed")
        self._outbox.put_nowait(request)

    async def receive(self) -> Optional[geyser_pb2.SubscribeUpdate]:
        """Return the next frame, or ``None`` once the server ends the stream."""
        try:
            update = await self._call.read()
        except grpc.aio.AioRpcError as exc:
            self._mark_closed()
            raise StreamReceiveError(_describe(exc)) from exc
        if update is grpc.aio.EOF:
            self._mark_closed()
            return None
        return update

    async def close(self) -> None:
        self._mark_closed()
        self._call.cancel()
        if self._channel is not None:
            channel, self._channel = self._channel, None
            await channel.close()


def _describe(exc: grpc.aio.AioRpcError) -> str:
    return f"{exc.code().name}: {exc.details()}"


def parse_endpoint(endpoint: str) -> Tuple[str, bool]:
    """Split ``endpoint`` into a gRPC target and whether TLS is used."""
    if "://" not in endpoint:
        endpoint = f"https://{endpoint}"
    parts = urlsplit(endpoint)
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise ValueError(f"unsupported endpoint {endpoint!r}")
    secure = parts.scheme == "https"
    port = parts.port or (443 if secure else 80)
    return f"{parts.hostname}:{port}", secure


async def connect(
    endpoint: str,
    token: Optional[str],
    *,
    connect_timeout: float = CONNECT_TIMEOUT_SECS,
) -> DuplexStream:
    """Open the ``Subscribe`` stream on *endpoint* authenticated by ``x-token``."""
    try:
        target, secure = parse_endpoint(endpoint)
    except ValueError as exc:
        raise GeyserConnectionError(str(exc)) from exc

    if secure:
        channel = grpc.aio.secure_channel(
            target, grpc.ssl_channel_credentials(), options=CHANNEL_OPTIONS
        )
    else:
        channel = grpc.aio.insecure_channel(target, options=CHANNEL_OPTIONS)

    logger.debug("Waiting for channel to %s (tls=%s)", target, secure)
    try:
        await asyncio.wait_for(channel.channel_ready(), connect_timeout)
    except (asyncio.TimeoutError, grpc.RpcError) as exc:
        await channel.close()
        raise GeyserConnectionError(
            f"could not reach {target} within {connect_timeout:g}s"
        ) from exc

    stub = GeyserStub(channel)
    metadata = (("x-token", token),) if token else ()
    stream = DuplexStream(
        lambda requests: stub.Subscribe(requests, metadata=metadata), channel=channel
    )
    try:
        await stream.handshake(connect_timeout)
    except GeyserConnectionError:
        await stream.close()
        raise
    logger.debug("Subscribe call to %s accepted", target)
    return stream
