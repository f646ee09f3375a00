"""Codex client — owns the agent session and hands out threads."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from codexline.config.models import ClientOptions, ThreadOptions
from codexline.errors import SessionClosedError
from codexline.process.launch import LaunchSpec, build_launch_spec
from codexline.process.supervisor import AgentProcess, ProcessSupervisor
from codexline.session import Session
from codexline.thread import Thread

logger = logging.getLogger(__name__)

#: Factory that spawns an agent process for a launch spec.
SpawnFn = Callable[[LaunchSpec], Awaitable[AgentProcess]]


class Codex:
    """Entry point: one agent process shared by every thread.

    Use as an async context manager, or call :meth:`start` and
    :meth:`close` explicitly. Threads started before :meth:`start` launch
    the agent lazily on their first turn.

    Args:
        options: Launch and transport settings.
        spawn: Alternative process factory; tests pass a scripted fake.
    """

    def __init__(
        self,
        options: ClientOptions | None = None,
        *,
        spawn: SpawnFn | None = None,
    ) -> None:
        self._options = options or ClientOptions()
        self._launch_spec = build_launch_spec(self._options)
        self._spawn = spawn
        self._session: Session | None = None
        self._start_lock = asyncio.Lock()
        self._closed = False

    @property
    def options(self) -> ClientOptions:
        return self._options

    @property
    def launch_spec(self) -> LaunchSpec:
        return self._launch_spec

    @property
    def session(self) -> Session | None:
        return self._session

    async def start(self) -> None:
        """Launch the agent process if it is not running yet.

        Raises:
            LaunchError: The agent executable could not be spawned.
            SessionClosedError: The client was closed.
        """
        await self._ensure_session()

    async def _ensure_session(self) -> Session:
        async with self._start_lock:
            if self._closed:
                msg = "client is closed"
                raise SessionClosedError(msg)
            if self._session is not None:
                if self._session.failure is not None:
                    raise self._session.failure
                return self._session

            supervisor = await self._start_supervisor()
            session = Session(supervisor)
            session.start()
            self._session = session
            logger.debug("Agent session started")
            return session

    async def _start_supervisor(self) -> ProcessSupervisor:
        if self._spawn is None:
            return await ProcessSupervisor.start(
                self._launch_spec,
                max_line_bytes=self._options.max_line_bytes,
                shutdown_timeout=self._options.shutdown_timeout,
            )
        process = await self._spawn(self._launch_spec)
        return ProcessSupervisor(
            process,
            max_line_bytes=self._options.max_line_bytes,
            shutdown_timeout=self._options.shutdown_timeout,
        )

    def start_thread(self, options: ThreadOptions | None = None) -> Thread:
        """Start a new conversation; its id arrives with the first turn."""
        return Thread(self, options)

    def resume_thread(
        self, thread_id: str, options: ThreadOptions | None = None
    ) -> Thread:
        """Continue the conversation identified by *thread_id*."""
        return Thread(self, options, thread_id=thread_id)

    async def close(self) -> None:
        """Terminate the agent; pending turns fail with ``SessionClosedError``."""
        async with self._start_lock:
            self._closed = True
            session, self._session = self._session, None
        if session is not None:
            await session.close()
            logger.debug("Agent session closed")

    async def __aenter__(self) -> Codex:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()
