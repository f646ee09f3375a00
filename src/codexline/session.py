"""Session — one agent process, one router, and the reader task joining them."""

from __future__ import annotations

import asyncio
import contextlib
import logging

from pydantic import BaseModel

from codexline.errors import (
    MalformedFrameError,
    OversizedFrameError,
    ProcessExitedError,
    ProtocolDesyncError,
    ReadError,
    SessionClosedError,
    SessionError,
    UnknownVariantError,
    WriteError,
)
from codexline.helpers import preview
from codexline.process.supervisor import ProcessSupervisor
from codexline.protocol.codec import decode, encode
from codexline.router.router import EventRouter, TurnChannel

logger = logging.getLogger(__name__)

#: More consecutive malformed frames than this means the stream is desynced.
MAX_CONSECUTIVE_MALFORMED = 8


class Session:
    """A live agent process shared by any number of threads.

    The session's reader task is the only reader of the agent's stdout. When
    the process exits, the stream desynchronizes, or the session is closed,
    every pending turn fails with the same :class:`SessionError`.
    """

    def __init__(self, supervisor: ProcessSupervisor) -> None:
        self._supervisor = supervisor
        self._router = EventRouter()
        self._closing = False
        self._failure: SessionError | None = None
        self._malformed_streak = 0
        self._reader_task: asyncio.Task[None] | None = None

    @property
    def router(self) -> EventRouter:
        return self._router

    @property
    def supervisor(self) -> ProcessSupervisor:
        return self._supervisor

    @property
    def failure(self) -> SessionError | None:
        """The error that ended the session, if it has ended."""
        return self._failure

    @property
    def alive(self) -> bool:
        return self._failure is None

    def start(self) -> None:
        """Start the reader task."""
        if self._reader_task is not None:
            return
        self._reader_task = asyncio.create_task(
            self._read_loop(), name="codexline-reader"
        )

    # ------------------------------------------------------------------ #
    # Outbound
    # ------------------------------------------------------------------ #

    def open_turn(self, turn_id: str, *, new_thread: bool = False) -> TurnChannel:
        """Register a channel for a turn about to be submitted."""
        if self._failure is not None:
            raise self._failure
        return self._router.register(turn_id, new_thread=new_thread)

    async def send(self, request: BaseModel) -> None:
        """Write one request frame.

        A broken pipe ends the session: the process is terminated and every
        pending turn fails with the :class:`WriteError`.
        """
        if self._failure is not None:
            raise self._failure
        line = encode(request)
        logger.debug("→ %s", preview(line.decode("utf-8")))
        try:
            await self._supervisor.write_frame(line)
        except WriteError as exc:
            logger.error("Write to agent failed: %s", exc)
            self._fail(exc)
            await self._supervisor.terminate()
            raise

    # ------------------------------------------------------------------ #
    # Inbound
    # ------------------------------------------------------------------ #

    async def _read_loop(self) -> None:
        try:
            while True:
                try:
                    line = await self._supervisor.next_frame()
                except OversizedFrameError as exc:
                    logger.warning("Skipping frame: %s", exc)
                    self._count_malformed()
                    continue

                if line is None:
                    await self._on_eof()
                    return

                try:
                    event = decode(line)
                except UnknownVariantError as exc:
                    logger.warning("Skipping frame: %s", exc)
                    self._malformed_streak = 0
                    continue
                except MalformedFrameError as exc:
                    logger.warning("Skipping frame: %s", exc)
                    self._count_malformed()
                    continue

                if event is None:
                    continue
                self._malformed_streak = 0
                logger.debug("← %s", preview(line.decode("utf-8", errors="replace")))
                self._router.dispatch(event)
        except SessionError as exc:
            logger.error("Agent stream failed: %s", exc)
            self._fail(exc)
            await self._supervisor.terminate()
        except Exception as exc:
            logger.exception("Reader task crashed")
            self._fail(ReadError(f"reader task crashed: {exc}"))
            await self._supervisor.terminate()

    def _count_malformed(self) -> None:
        """Record one bad frame.

        Raises:
            ProtocolDesyncError: Too many bad frames arrived in a row.
        """
        self._malformed_streak += 1
        if self._malformed_streak > MAX_CONSECUTIVE_MALFORMED:
            msg = (
                f"protocol desynchronized: {self._malformed_streak} consecutive "
                "malformed frames"
            )
            raise ProtocolDesyncError(msg)

    async def _on_eof(self) -> None:
        if self._closing:
            self._fail(SessionClosedError("session closed"))
            return
        supervisor = self._supervisor
        try:
            status = await supervisor.exit_status(timeout=supervisor.shutdown_timeout)
        except TimeoutError:
            logger.warning("agent closed stdout but is still running; terminating")
            await supervisor.terminate()
            status = supervisor.last_status()
        exc = ProcessExitedError(status)
        logger.error("%s", exc)
        self._fail(exc)

    def _fail(self, exc: SessionError) -> None:
        if self._failure is None:
            self._failure = exc
        self._router.fail_all(self._failure)

    # ------------------------------------------------------------------ #
    # Shutdown
    # ------------------------------------------------------------------ #

    async def close(self) -> None:
        """Terminate the agent, fail pending turns, and stop the reader."""
        self._closing = True
        self._fail(SessionClosedError("session closed"))
        await self._supervisor.terminate()

        task = self._reader_task
        if task is not None and not task.done():
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout=1.0)
            except TimeoutError:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
