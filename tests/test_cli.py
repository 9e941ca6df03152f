import pytest
from rich.console import Console

import geyser_stream_listener as listener
from geyser_protos.geyser_pb2 import CommitmentLevel, Pong, SubscribeUpdate
from geyser_protos.geyser_pb2_grpc import GeyserConnectionError

TOKEN_PROGRAM = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"


def test_defaults_reproduce_usdc_watch():
    config = listener.config_from_args(listener.parse_args([]))

    assert config.accounts == listener.DEFAULT_ACCOUNTS
    assert config.owners == ()
    assert config.transactions is True
    assert (config.vote, config.failed) == (False, False)
    assert config.slots is True
    assert config.commitment is CommitmentLevel.CONFIRMED
    assert config.ping_interval == 30.0


def test_flags_override_defaults():
    args = listener.parse_args(
        [
            "--endpoint",
            "http://127.0.0.1:10000",
            "--token",
            "abc",
            "--owner",
            TOKEN_PROGRAM,
            "--include-vote",
            "--no-slots",
            "--commitment",
            "finalized",
            "--ping-interval",
            "5",
        ]
    )
    config = listener.config_from_args(args)

    assert config.endpoint == "http://127.0.0.1:10000"
    assert config.token == "abc"
    assert config.accounts == ()
    assert config.owners == (TOKEN_PROGRAM,)
    assert config.vote is None
    assert config.failed is False
    assert config.slots is False
    assert config.commitment is CommitmentLevel.FINALIZED
    assert config.ping_interval == 5.0


def test_invalid_address_is_rejected():
    with pytest.raises(SystemExit):
        listener.parse_args(["--account", "not-a-pubkey"])


def test_non_positive_ping_interval_is_rejected():
    with pytest.raises(SystemExit):
        listener.parse_args(["--ping-interval", "0"])


def test_main_exits_zero_on_clean_end(monkeypatch, fake_stream_factory, caplog):
    stream = fake_stream_factory(frames=[SubscribeUpdate(pong=Pong(id=1))])

    async def fake_connect(endpoint, token):
        return stream

    monkeypatch.setattr(listener, "connect", fake_connect)
    printed = []
    monkeypatch.setattr(listener, "print_summary", printed.append)

    with caplog.at_level("INFO"):
        assert listener.main([]) == 0
    assert printed[0].pongs == 1
    assert stream.closed
    assert "Closing stream" in caplog.text
    assert "listener stopped" in caplog.text


def test_main_reports_failed_phase(monkeypatch, caplog):
    async def fake_connect(endpoint, token):
        raise GeyserConnectionError("could not reach api.rpcpool.com:443 within 10s")

    monkeypatch.setattr(listener, "connect", fake_connect)

    with caplog.at_level("INFO"):
        assert listener.main([]) == 1
    assert "connect failed: could not reach" in caplog.text
    assert "listener stopped" in caplog.text


def test_print_summary_renders_counts():
    console = Console(record=True, width=80)
    stats = listener.SessionStats(frames=3, accounts=2, pongs=1, pings_sent=4)

    listener.print_summary(stats, console=console)

    text = console.export_text()
    assert "Session summary" in text
    assert "Account updates" in text
    assert "Pings sent" in text
