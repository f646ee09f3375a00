"""Router — routes inbound protocol messages to per-turn channels."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass

from codexline.errors import ProtocolError
from codexline.protocol.models import ThreadEvent, is_terminal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Closed:
    """End-of-channel marker; *error* is raised to the consumer if set."""

    error: BaseException | None = None


class TurnChannel:
    """Ordered event pipe for one turn, with a single consumer.

    The channel is closed exactly once: by its terminal event, by a session
    failure, or by an abandoned submission. Callbacks registered with
    :meth:`add_done_callback` run when it closes.
    """

    def __init__(self, turn_id: str, *, new_thread: bool = False) -> None:
        self.turn_id = turn_id
        #: The turn starts a thread whose id the agent has not announced yet.
        self.new_thread = new_thread
        self._queue: asyncio.Queue[ThreadEvent | _Closed] = asyncio.Queue()
        self._callbacks: list[Callable[[TurnChannel], None]] = []
        self._closed = False
        self._detached = False
        self._consumed = False
        self._error: BaseException | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def detached(self) -> bool:
        return self._detached

    @property
    def error(self) -> BaseException | None:
        """The error the channel was closed with, if any."""
        return self._error

    def put(self, event: ThreadEvent) -> None:
        """Append *event*; discarded once the consumer is gone."""
        if self._closed or self._detached:
            logger.debug(
                "Discarding %s for released turn %s", event.type, self.turn_id
            )
            return
        self._queue.put_nowait(event)

    def close(self, error: BaseException | None = None) -> None:
        """Close the channel; later calls are no-ops."""
        if self._closed:
            return
        self._closed = True
        self._error = error
        if not self._detached:
            self._queue.put_nowait(_Closed(error))

        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(self)

    def add_done_callback(self, callback: Callable[[TurnChannel], None]) -> None:
        """Run *callback* when the channel closes (immediately if it already has)."""
        if self._closed:
            callback(self)
        else:
            self._callbacks.append(callback)

    def detach(self) -> None:
        """Drop buffered events and discard any that arrive later."""
        self._detached = True
        while not self._queue.empty():
            self._queue.get_nowait()

    def events(self) -> AsyncIterator[ThreadEvent]:
        """Iterate the channel's events in wire order.

        Ends after the terminal event; raises the close error if the channel
        was failed. A channel can be iterated only once.

        Raises:
            RuntimeError: The channel was already iterated.
        """
        if self._consumed:
            msg = f"events of turn {self.turn_id} were already consumed"
            raise RuntimeError(msg)
        self._consumed = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ThreadEvent]:
        while True:
            item = await self._queue.get()
            if isinstance(item, _Closed):
                if item.error is not None:
                    raise item.error
                return
            yield item


class EventRouter:
    """Maps turn ids to open channels and dispatches inbound messages.

    ``dispatch`` is called only from the session's reader task. Every
    registered channel is closed exactly once.
    """

    def __init__(self) -> None:
        self._channels: dict[str, TurnChannel] = {}
        self._failure: BaseException | None = None
        self._anomaly_count = 0

    @property
    def pending(self) -> list[str]:
        """Turn ids that have not yet seen a terminal event."""
        return list(self._channels)

    @property
    def anomaly_count(self) -> int:
        """Number of messages dropped because they matched no open turn."""
        return self._anomaly_count

    @property
    def failure(self) -> BaseException | None:
        return self._failure

    def register(self, turn_id: str, *, new_thread: bool = False) -> TurnChannel:
        """Open a channel for *turn_id*.

        *new_thread* marks a turn sent without a thread id; an untargeted
        ``thread.started`` is delivered to it when it is the only such turn.

        Raises:
            ProtocolError: *turn_id* already has an open channel.
            SessionError: The session already failed; the failure is re-raised.
        """
        if self._failure is not None:
            raise self._failure
        if turn_id in self._channels:
            msg = f"Duplicate turn id: {turn_id}"
            raise ProtocolError(msg)
        channel = TurnChannel(turn_id, new_thread=new_thread)
        self._channels[turn_id] = channel
        logger.debug("Registered turn %s", turn_id)
        return channel

    def dispatch(self, event: ThreadEvent) -> None:
        """Deliver *event* to the channel named by its ``turn_id``."""
        turn_id = event.turn_id
        if turn_id is None:
            self._dispatch_untargeted(event)
            return

        channel = self._channels.get(turn_id)
        if channel is None:
            self._anomaly_count += 1
            if is_terminal(event):
                logger.warning(
                    "Protocol error: %s for turn %s that is unknown or "
                    "already resolved",
                    event.type,
                    turn_id,
                )
            else:
                logger.warning(
                    "Dropping %s for unknown turn %s", event.type, turn_id
                )
            return

        if event.type == "thread.started":
            channel.new_thread = False
        channel.put(event)
        if is_terminal(event):
            del self._channels[turn_id]
            channel.close()
            logger.debug("Turn %s reached %s", turn_id, event.type)

    def _dispatch_untargeted(self, event: ThreadEvent) -> None:
        if event.type == "heartbeat":
            logger.debug("Heartbeat from agent")
        elif event.type == "thread.started":
            self._route_thread_started(event)
        elif event.type == "error":
            logger.error("Agent error: %s", event.message)
        else:
            self._anomaly_count += 1
            logger.warning("Dropping %s without a turn id", event.type)

    def _route_thread_started(self, event: ThreadEvent) -> None:
        starting = [c for c in self._channels.values() if c.new_thread]
        if len(starting) != 1:
            logger.info(
                "Agent started thread %s (%d candidate turns)",
                event.thread_id,
                len(starting),
            )
            return
        channel = starting[0]
        channel.new_thread = False
        logger.debug("Thread %s started by turn %s", event.thread_id, channel.turn_id)
        channel.put(event)

    def release(self, turn_id: str) -> None:
        """The consumer of *turn_id* is gone; keep the turn open until its terminal."""
        channel = self._channels.get(turn_id)
        if channel is not None:
            channel.detach()
            logger.debug("Released turn %s", turn_id)

    def abandon(self, turn_id: str, error: BaseException) -> None:
        """Close *turn_id* with *error* without waiting for a terminal event."""
        channel = self._channels.pop(turn_id, None)
        if channel is not None:
            channel.close(error)

    def fail_all(self, error: BaseException) -> None:
        """Close every open channel with *error* and refuse new turns."""
        if self._failure is None:
            self._failure = error
        channels = list(self._channels.values())
        self._channels.clear()
        if channels:
            logger.debug("Failing %d pending turn(s): %s", len(channels), error)
        for channel in channels:
            channel.close(error)
