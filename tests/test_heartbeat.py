import asyncio

import pytest

from geyser_stream_listener import SessionStats, run_heartbeat


class _Stop(Exception):
    pass


def _fake_sleep(periods, recorded):
    async def sleep(interval):
        recorded.append(interval)
        if len(recorded) > periods:
            raise _Stop()

    return sleep


def _clock(values):
    it = iter(values)
    return lambda: next(it)


def test_three_periods_send_three_increasing_pings(fake_stream_factory):
    stream = fake_stream_factory()
    slept = []

    with pytest.raises(_Stop):
        asyncio.run(
            run_heartbeat(
                stream,
                30,
                clock=_clock([1000.2, 1030.7, 1060.1]),
                sleep=_fake_sleep(3, slept),
            )
        )

    assert slept == [30, 30, 30, 30]
    ids = [request.ping.id for request in stream.sent]
    assert ids == [1000, 1030, 1060]
    assert all(request.is_ping() for request in stream.sent)


def test_ids_do_not_decrease_within_a_second(fake_stream_factory):
    stream = fake_stream_factory()

    with pytest.raises(_Stop):
        asyncio.run(
            run_heartbeat(
                stream, 0.25, clock=_clock([5.0, 5.3, 5.9, 6.1]), sleep=_fake_sleep(4, [])
            )
        )

    ids = [request.ping.id for request in stream.sent]
    assert ids == [5, 5, 5, 6]
    assert ids == sorted(ids)


def test_stops_permanently_on_fifth_tick_failure(fake_stream_factory):
    stream = fake_stream_factory(allowed_sends=4)
    stats = SessionStats()
    slept = []

    sent = asyncio.run(
        run_heartbeat(
            stream,
            30,
            stats=stats,
            clock=_clock(range(100, 250, 30)),
            sleep=_fake_sleep(10, slept),
        )
    )

    assert sent == 4
    assert stats.pings_sent == 4
    assert len(slept) == 5
    assert len(stream.sent) == 4


def test_send_failure_is_logged_not_raised(fake_stream_factory, caplog):
    stream = fake_stream_factory(allowed_sends=0)

    with caplog.at_level("WARNING"):
        sent = asyncio.run(
            run_heartbeat(stream, 1, clock=lambda: 1.0, sleep=_fake_sleep(5, []))
        )

    assert sent == 0
    assert "stopping heartbeat" in caplog.text
