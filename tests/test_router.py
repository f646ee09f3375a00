"""Tests for the event router and per-turn channels."""

from __future__ import annotations

import asyncio
import logging

import pytest

from codexline.errors import ExitStatus, ProcessExitedError, ProtocolError
from codexline.protocol.models import (
    ErrorEvent,
    HeartbeatEvent,
    ThreadError,
    ThreadEvent,
    ThreadStartedEvent,
    TurnCompletedEvent,
    TurnFailedEvent,
    TurnStartedEvent,
)
from codexline.router.router import EventRouter, TurnChannel

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _started(turn_id: str) -> TurnStartedEvent:
    return TurnStartedEvent(turn_id=turn_id)


def _completed(turn_id: str) -> TurnCompletedEvent:
    return TurnCompletedEvent(turn_id=turn_id)


async def _drain(channel: TurnChannel) -> list[ThreadEvent]:
    return [event async for event in channel.events()]


# ===================================================================
# TurnChannel
# ===================================================================


class TestTurnChannel:
    async def test_events_in_order_then_end(self) -> None:
        channel = TurnChannel("t1")
        channel.put(_started("t1"))
        channel.put(_completed("t1"))
        channel.close()
        events = await _drain(channel)
        assert [e.type for e in events] == ["turn.started", "turn.completed"]

    async def test_close_with_error_raises_after_buffered_events(self) -> None:
        channel = TurnChannel("t1")
        channel.put(_started("t1"))
        channel.close(ProtocolError("gone"))
        seen: list[str] = []
        with pytest.raises(ProtocolError, match="gone"):
            async for event in channel.events():
                seen.append(event.type)
        assert seen == ["turn.started"]

    async def test_single_consumer(self) -> None:
        channel = TurnChannel("t1")
        channel.events()
        with pytest.raises(RuntimeError, match="already consumed"):
            channel.events()

    def test_close_callbacks_run_once(self) -> None:
        channel = TurnChannel("t1")
        calls: list[str] = []
        channel.add_done_callback(lambda c: calls.append(c.turn_id))
        channel.close()
        channel.close(ProtocolError("late"))
        assert calls == ["t1"]
        assert channel.error is None

    def test_callback_added_after_close_runs_immediately(self) -> None:
        channel = TurnChannel("t1")
        channel.close()
        calls: list[str] = []
        channel.add_done_callback(lambda c: calls.append(c.turn_id))
        assert calls == ["t1"]

    async def test_detached_channel_discards(self) -> None:
        channel = TurnChannel("t1")
        channel.put(_started("t1"))
        channel.detach()
        channel.put(_completed("t1"))
        assert channel._queue.empty()


# ===================================================================
# EventRouter
# ===================================================================


class TestRegister:
    def test_duplicate_turn_id(self) -> None:
        router = EventRouter()
        router.register("t1")
        with pytest.raises(ProtocolError, match="Duplicate turn id"):
            router.register("t1")

    def test_turn_id_reusable_after_terminal(self) -> None:
        router = EventRouter()
        router.register("t1")
        router.dispatch(_completed("t1"))
        router.register("t1")

    def test_refused_after_fail_all(self) -> None:
        router = EventRouter()
        error = ProcessExitedError(ExitStatus(code=1))
        router.fail_all(error)
        with pytest.raises(ProcessExitedError):
            router.register("t1")


class TestDispatch:
    async def test_routes_by_turn_id_without_cross_delivery(self) -> None:
        router = EventRouter()
        a = router.register("a")
        b = router.register("b")
        for event in [
            _started("a"),
            _started("b"),
            TurnFailedEvent(turn_id="b", error=ThreadError(message="no")),
            _completed("a"),
        ]:
            router.dispatch(event)

        events_a = await _drain(a)
        events_b = await _drain(b)
        assert [(e.type, e.turn_id) for e in events_a] == [
            ("turn.started", "a"),
            ("turn.completed", "a"),
        ]
        assert [(e.type, e.turn_id) for e in events_b] == [
            ("turn.started", "b"),
            ("turn.failed", "b"),
        ]
        assert router.pending == []

    async def test_terminal_delivered_once(self) -> None:
        router = EventRouter()
        channel = router.register("t1")
        router.dispatch(_completed("t1"))
        router.dispatch(_completed("t1"))
        events = await _drain(channel)
        assert [e.type for e in events] == ["turn.completed"]
        assert router.anomaly_count == 1

    def test_second_terminal_logged_as_protocol_error(self, caplog) -> None:
        router = EventRouter()
        router.register("t1")
        router.dispatch(_completed("t1"))
        with caplog.at_level(logging.WARNING, logger="codexline.router.router"):
            router.dispatch(_completed("t1"))
        assert "Protocol error" in caplog.text

    def test_unknown_turn_dropped(self, caplog) -> None:
        router = EventRouter()
        with caplog.at_level(logging.WARNING, logger="codexline.router.router"):
            router.dispatch(_started("ghost"))
        assert "unknown turn ghost" in caplog.text
        assert router.anomaly_count == 1

    def test_untargeted_messages(self, caplog) -> None:
        router = EventRouter()
        with caplog.at_level(logging.DEBUG, logger="codexline.router.router"):
            router.dispatch(HeartbeatEvent())
            router.dispatch(ThreadStartedEvent(thread_id="th-1"))
            router.dispatch(ErrorEvent(message="model overloaded"))
        assert router.anomaly_count == 0
        assert "th-1" in caplog.text
        assert "model overloaded" in caplog.text

    async def test_untargeted_thread_started_goes_to_new_thread_turn(self) -> None:
        router = EventRouter()
        resumed = router.register("resumed")
        fresh = router.register("fresh", new_thread=True)
        router.dispatch(ThreadStartedEvent(thread_id="th-1"))
        router.dispatch(_completed("resumed"))
        router.dispatch(_completed("fresh"))
        assert [e.type for e in await _drain(fresh)] == [
            "thread.started",
            "turn.completed",
        ]
        assert [e.type for e in await _drain(resumed)] == ["turn.completed"]

    async def test_untargeted_thread_started_ambiguous_is_not_routed(self) -> None:
        router = EventRouter()
        a = router.register("a", new_thread=True)
        b = router.register("b", new_thread=True)
        router.dispatch(ThreadStartedEvent(thread_id="th-1"))
        router.dispatch(_completed("a"))
        router.dispatch(_completed("b"))
        assert [e.type for e in await _drain(a)] == ["turn.completed"]
        assert [e.type for e in await _drain(b)] == ["turn.completed"]
        assert router.anomaly_count == 0

    def test_untargeted_turn_event_is_anomaly(self) -> None:
        router = EventRouter()
        router.dispatch(TurnStartedEvent())
        assert router.anomaly_count == 1


class TestReleaseAndFailure:
    async def test_release_keeps_turn_open_until_terminal(self) -> None:
        router = EventRouter()
        channel = router.register("t1")
        closed: list[str] = []
        channel.add_done_callback(lambda c: closed.append(c.turn_id))

        router.release("t1")
        router.dispatch(_started("t1"))
        assert router.pending == ["t1"]
        assert closed == []

        router.dispatch(_completed("t1"))
        assert router.pending == []
        assert closed == ["t1"]
        assert router.anomaly_count == 0

    async def test_fail_all(self) -> None:
        router = EventRouter()
        channels = [router.register(f"t{i}") for i in range(3)]
        error = ProcessExitedError(ExitStatus(code=137, stderr="killed"))
        router.fail_all(error)

        assert router.pending == []
        for channel in channels:
            with pytest.raises(ProcessExitedError):
                await _drain(channel)

    async def test_fail_all_wakes_waiting_consumer(self) -> None:
        router = EventRouter()
        channel = router.register("t1")
        consumer = asyncio.create_task(_drain(channel))
        await asyncio.sleep(0)
        router.fail_all(ProtocolError("boom"))
        with pytest.raises(ProtocolError):
            await asyncio.wait_for(consumer, timeout=1)

    async def test_abandon(self) -> None:
        router = EventRouter()
        channel = router.register("t1")
        router.abandon("t1", ProtocolError("not sent"))
        assert router.pending == []
        with pytest.raises(ProtocolError, match="not sent"):
            await _drain(channel)
