#!/usr/bin/env python3
"""Yellowstone Geyser stream listener.

Subscribes to a Geyser gRPC feed of Solana account, transaction and slot
updates, logs every event it receives and keeps the bidirectional stream
alive with periodic pings::

    python geyser_stream_listener.py --account <ADDRESS> --commitment confirmed
"""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass
import os
import sys
import time
from typing import Awaitable, Callable, Optional, Sequence, Tuple

import logging
from rich.console import Console
from rich.table import Table

from solders.pubkey import Pubkey as PublicKey

from geyser_protos.geyser_pb2 import (
    AccountFilter,
    AccountUpdate,
    CommitmentLevel,
    Ping,
    Pong,
    SlotUpdate,
    SubscribeRequest,
    SubscribeUpdate,
    TransactionFilter,
    TransactionUpdate,
)
from geyser_protos.geyser_pb2_grpc import (
    DuplexStream,
    GeyserError,
    StreamSendError,
    SubscribeSendError,
    connect,
)

# -----------------------------------------------------------------------------
# Configuration – update with your own values
# -----------------------------------------------------------------------------
GRPC_ENDPOINT = "https://api.rpcpool.com:443"
# Sent as ``x-token`` metadata; may also be supplied through the environment.
AUTH_TOKEN = os.environ.get("GEYSER_X_TOKEN")
PING_INTERVAL_SECS = 30.0
# USDC token account watched by default.
DEFAULT_ACCOUNTS = ("9wFFyRfZBsuAha4YcuxcXLKwMxJR43S7fPfQLusDBzvT",)
DEFAULT_COMMITMENT = CommitmentLevel.CONFIRMED
# -----------------------------------------------------------------------------

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StreamConfig:
    endpoint: str = GRPC_ENDPOINT
    token: Optional[str] = AUTH_TOKEN
    ping_interval: float = PING_INTERVAL_SECS
    accounts: Tuple[str, ...] = DEFAULT_ACCOUNTS
    owners: Tuple[str, ...] = ()
    all_accounts: bool = False
    transactions: bool = True
    vote: Optional[bool] = False
    failed: Optional[bool] = False
    slots: bool = True
    commitment: Optional[CommitmentLevel] = DEFAULT_COMMITMENT


def build_subscribe_request(config: StreamConfig) -> SubscribeRequest:
    """Return the one subscription message described by *config*.

    Sections that are not configured stay ``None`` so the service reads them
    as "no filter of this kind" rather than "match nothing".
    """
    accounts = None
    if config.all_accounts:
        accounts = (AccountFilter(),)
    elif config.accounts or config.owners:
        accounts = (
            AccountFilter(account=tuple(config.accounts), owner=tuple(config.owners)),
        )

    transactions = None
    if config.transactions:
        transactions = (TransactionFilter(vote=config.vote, failed=config.failed),)

    return SubscribeRequest(
        accounts=accounts,
        transactions=transactions,
        slots=config.slots,
        commitment=config.commitment,
    )


def describe_request(request: SubscribeRequest) -> str:
    sections = []
    if request.accounts is not None:
        if all(flt.matches_all() for flt in request.accounts):
            sections.append("accounts=all")
        else:
            sections.append(f"accounts={len(request.accounts)}")
    if request.transactions is not None:
        sections.append(f"transactions={len(request.transactions)}")
    if request.slots:
        sections.append("slots")
    if request.commitment is not None:
        sections.append(f"commitment={request.commitment.name}")
    return ", ".join(sections) or "empty"


@dataclass
class SessionStats:
    frames: int = 0
    accounts: int = 0
    transactions: int = 0
    slots: int = 0
    pongs: int = 0
    pings_sent: int = 0


async def run_heartbeat(
    stream: DuplexStream,
    interval: float,
    *,
    stats: Optional[SessionStats] = None,
    clock: Callable[[], float] = time.time,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> int:
    """Send a ping every *interval* seconds until a send fails.

    The ping id is the current Unix time in seconds.  A failed send ends the
    heartbeat quietly; the receive loop is left running.
    """
    sent = 0
    while True:
        await sleep(interval)
        ping = Ping(id=int(clock()))
        try:
            await stream.send(SubscribeRequest(ping=ping))
        except StreamSendError as e:
            logger.warning("Heartbeat send failed: %s; stopping heartbeat", e)
            return sent
        sent += 1
        if stats is not None:
            stats.pings_sent = sent
        logger.info("Sent ping %d to keep the stream alive", ping.id)


class FrameHandlers:
    """Per-kind callbacks used by :func:`dispatch_frame`; no-ops by default."""

    def on_account(self, update: AccountUpdate) -> None:
        pass

    def on_transaction(self, update: TransactionUpdate) -> None:
        pass

    def on_slot(self, update: SlotUpdate) -> None:
        pass

    def on_pong(self, pong: Pong) -> None:
        pass


class LoggingHandlers(FrameHandlers):
    """Log one line per event and count events in ``stats``."""

    def __init__(self, stats: Optional[SessionStats] = None) -> None:
        self.stats = stats if stats is not None else SessionStats()

    def on_account(self, update: AccountUpdate) -> None:
        self.stats.accounts += 1
        logger.info(
            "Account update: pubkey=%s slot=%d data=%d bytes",
            update.pubkey,
            update.slot,
            len(update.data),
        )

    def on_transaction(self, update: TransactionUpdate) -> None:
        self.stats.transactions += 1
        logger.info(
            "Transaction: signature=%s slot=%d success=%s fee=%d",
            update.signature,
            update.slot,
            update.success,
            update.fee,
        )

    def on_slot(self, update: SlotUpdate) -> None:
        self.stats.slots += 1
        logger.info(
            "Slot update: slot=%d parent=%s status=%s",
            update.slot,
            update.parent,
            update.status.name,
        )

    def on_pong(self, pong: Pong) -> None:
        self.stats.pongs += 1
        logger.info("Pong received, stream is alive (id=%d)", pong.id)


def dispatch_frame(frame: SubscribeUpdate, handlers: FrameHandlers) -> int:
    """Route every populated group of *frame*; return the number of events."""
    count = 0
    if frame.accounts is not None:
        for account in frame.accounts.accounts:
            handlers.on_account(account)
            count += 1
    if frame.transactions is not None:
        for tx in frame.transactions.transactions:
            handlers.on_transaction(tx)
            count += 1
    if frame.slots is not None:
        for slot in frame.slots.slots:
            handlers.on_slot(slot)
            count += 1
    if frame.pong is not None:
        handlers.on_pong(frame.pong)
        count += 1
    return count


async def receive_loop(stream: DuplexStream, handlers: FrameHandlers) -> int:
    """Dispatch frames until the stream ends; return the number of frames.

    Receive errors propagate to the caller.
    """
    frames = 0
    while True:
        frame = await stream.receive()
        if frame is None:
            return frames
        frames += 1
        if frame.is_empty():
            logger.debug("Frame %d carried no updates", frames)
            continue
        dispatch_frame(frame, handlers)


Connector = Callable[[str, Optional[str]], Awaitable[DuplexStream]]


async def run_session(
    config: StreamConfig,
    *,
    connector: Optional[Connector] = None,
    handlers: Optional[LoggingHandlers] = None,
) -> SessionStats:
    """Connect, subscribe, then ping and receive until the stream ends."""
    connector = connector or connect
    handlers = handlers or LoggingHandlers()
    stats = handlers.stats

    logger.info("Connecting to %s", config.endpoint)
    stream = await connector(config.endpoint, config.token)
    logger.info("Connected to %s", config.endpoint)

    heartbeat: Optional[asyncio.Task] = None
    try:
        request = build_subscribe_request(config)
        try:
            await stream.send(request)
        except StreamSendError as e:
            raise SubscribeSendError(f"could not send subscription: {e}") from e
        logger.info("Subscription sent (%s), receiving data...", describe_request(request))

        heartbeat = asyncio.create_task(
            run_heartbeat(stream, config.ping_interval, stats=stats)
        )
        stats.frames = await receive_loop(stream, handlers)
    finally:
        if heartbeat is not None:
            heartbeat.cancel()
            await asyncio.gather(heartbeat, return_exceptions=True)
        logger.info("Closing stream to %s", config.endpoint)
        await stream.close()
    logger.info("Stream ended after %d frames", stats.frames)
    return stats


def print_summary(stats: SessionStats, console: Optional[Console] = None) -> None:
    console = console or Console()
    table = Table("Event", "Count", title="Session summary")
    table.add_row("Frames", str(stats.frames))
    table.add_row("Account updates", str(stats.accounts))
    table.add_row("Transactions", str(stats.transactions))
    table.add_row("Slot updates", str(stats.slots))
    table.add_row("Pongs", str(stats.pongs))
    table.add_row("Pings sent", str(stats.pings_sent))
    console.print(table)


def address(value: str) -> str:
    """argparse type for base58 Solana addresses."""
    try:
        return str(PublicKey.from_string(value))
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid address: {value}") from e


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Stream Solana account, transaction and slot updates from a Geyser feed"
    )
    parser.add_argument("--endpoint", default=GRPC_ENDPOINT, help="Geyser gRPC endpoint")
    parser.add_argument(
        "--token", default=AUTH_TOKEN, help="x-token credential (env: GEYSER_X_TOKEN)"
    )
    parser.add_argument(
        "--account", action="append", type=address, help="Account address to watch"
    )
    parser.add_argument(
        "--owner", action="append", type=address, help="Owner program to watch"
    )
    parser.add_argument(
        "--all-accounts", action="store_true", help="Subscribe to every account update"
    )
    parser.add_argument(
        "--no-transactions", action="store_true", help="Do not subscribe to transactions"
    )
    parser.add_argument(
        "--include-vote", action="store_true", help="Include vote transactions"
    )
    parser.add_argument(
        "--include-failed", action="store_true", help="Include failed transactions"
    )
    parser.add_argument("--no-slots", action="store_true", help="Do not subscribe to slots")
    parser.add_argument(
        "--commitment",
        choices=[c.name.lower() for c in CommitmentLevel],
        default=DEFAULT_COMMITMENT.name.lower(),
    )
    parser.add_argument(
        "--ping-interval",
        type=float,
        default=PING_INTERVAL_SECS,
        help="Seconds between keepalive pings",
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable verbose debug logging"
    )
    args = parser.parse_args(argv)
    if args.ping_interval <= 0:
        parser.error("--ping-interval must be positive")
    return args


def config_from_args(args: argparse.Namespace) -> StreamConfig:
    accounts = tuple(args.account or ())
    owners = tuple(args.owner or ())
    if not (accounts or owners or args.all_accounts):
        accounts = DEFAULT_ACCOUNTS
    return StreamConfig(
        endpoint=args.endpoint,
        token=args.token,
        ping_interval=args.ping_interval,
        accounts=accounts,
        owners=owners,
        all_accounts=args.all_accounts,
        transactions=not args.no_transactions,
        # ``None`` lifts the constraint on that axis.
        vote=None if args.include_vote else False,
        failed=None if args.include_failed else False,
        slots=not args.no_slots,
        commitment=CommitmentLevel[args.commitment.upper()],
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = config_from_args(args)
    logger.info("Geyser stream listener starting")
    try:
        stats = asyncio.run(run_session(config))
    except GeyserError as e:
        logger.error("%s failed: %s", e.phase, e, exc_info=args.debug)
        logger.info("Geyser stream listener stopped")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
        return 130
    print_summary(stats)
    logger.info("Geyser stream listener stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
