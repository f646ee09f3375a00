"""Shared fixtures: a scripted fake agent process and a client wired to it."""

from __future__ import annotations

import asyncio
import inspect
import json
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest

from codexline.client import Codex
from codexline.config.models import ClientOptions
from codexline.process.launch import LaunchSpec

Responder = Callable[["FakeAgentProcess", dict[str, Any]], Any]


class FakeAgentProcess:
    """In-memory agent: records written frames and replays scripted stdout.

    ``on_request`` is called with every decoded request frame and may emit
    events in reply. A ``shutdown`` request makes the fake exit with code 0.
    """

    def __init__(self, on_request: Responder | None = None) -> None:
        self.on_request = on_request
        self.written: list[bytes] = []
        self.requests: list[dict[str, Any]] = []
        self.fail_writes: BaseException | None = None
        self.exit_on_shutdown = True
        self.terminate_calls = 0
        self._stdout: asyncio.Queue[bytes] = asyncio.Queue()
        self._exited = asyncio.Event()
        self._returncode: int | None = None
        self._stderr = ""

    # -- AgentProcess -------------------------------------------------- #

    @property
    def returncode(self) -> int | None:
        return self._returncode

    @property
    def stderr_tail(self) -> str:
        return self._stderr

    async def write(self, data: bytes) -> None:
        if self.fail_writes is not None:
            raise self.fail_writes
        if self._returncode is not None:
            msg = "stdin closed"
            raise BrokenPipeError(msg)
        self.written.append(data)
        request = json.loads(data)
        self.requests.append(request)
        if request["type"] == "shutdown":
            if self.exit_on_shutdown:
                self.exit(0)
            return
        if self.on_request is not None:
            result = self.on_request(self, request)
            if inspect.isawaitable(result):
                await result

    async def readline(self) -> bytes:
        return await self._stdout.get()

    async def wait(self) -> int:
        await self._exited.wait()
        assert self._returncode is not None
        return self._returncode

    async def terminate(self) -> None:
        self.terminate_calls += 1
        self.exit(-15)

    # -- scripting ----------------------------------------------------- #

    def emit(self, **fields: Any) -> None:
        """Queue one JSON event line on stdout."""
        self.emit_raw(json.dumps(fields))

    def emit_raw(self, line: str | bytes) -> None:
        if isinstance(line, str):
            line = line.encode("utf-8")
        if not line.endswith(b"\n"):
            line += b"\n"
        self._stdout.put_nowait(line)

    def emit_turn(
        self,
        turn_id: str,
        text: str = "done",
        *,
        thread_id: str = "thread-1",
        usage: dict[str, int] | None = None,
        final_response: str | None = None,
    ) -> None:
        """Queue the full event sequence of a successful turn."""
        self.emit(type="thread.started", thread_id=thread_id, turn_id=turn_id)
        self.emit(type="turn.started", thread_id=thread_id, turn_id=turn_id)
        self.emit(
            type="item.completed",
            thread_id=thread_id,
            turn_id=turn_id,
            item={"id": f"{turn_id}-msg", "type": "agent_message", "text": text},
        )
        completed: dict[str, Any] = {
            "type": "turn.completed",
            "thread_id": thread_id,
            "turn_id": turn_id,
            "usage": usage
            or {"input_tokens": 10, "cached_input_tokens": 2, "output_tokens": 5},
        }
        if final_response is not None:
            completed["final_response"] = final_response
        self.emit(**completed)

    def exit(self, code: int = 0, stderr: str = "") -> None:
        """End the process: stdout reaches EOF and ``wait`` returns *code*."""
        if self._returncode is not None:
            return
        self._returncode = code
        self._stderr = stderr
        self._stdout.put_nowait(b"")
        self._exited.set()

    def close_stdout(self) -> None:
        """End stdout while the process keeps running."""
        self._stdout.put_nowait(b"")

    async def wait_for_requests(
        self, count: int, timeout: float = 1.0
    ) -> list[dict[str, Any]]:
        """Wait until at least *count* request frames have been written."""

        async def _poll() -> None:
            while len(self.requests) < count:
                await asyncio.sleep(0.001)

        await asyncio.wait_for(_poll(), timeout)
        return self.requests[:count]

    def turn_requests(self) -> list[dict[str, Any]]:
        return [r for r in self.requests if r["type"] == "turn.start"]


def answer_every_turn(text: str = "done", **kwargs: Any) -> Responder:
    """Responder that completes each ``turn.start`` with *text*."""

    def _respond(fake: FakeAgentProcess, request: dict[str, Any]) -> None:
        if request["type"] == "turn.start":
            fake.emit_turn(request["turn_id"], text, **kwargs)

    return _respond


@pytest.fixture
def fake_process() -> FakeAgentProcess:
    return FakeAgentProcess()


@pytest.fixture
def spawned(fake_process: FakeAgentProcess) -> list[LaunchSpec]:
    """Launch specs passed to the fake spawn function."""
    return []


@pytest.fixture
def spawn(
    fake_process: FakeAgentProcess, spawned: list[LaunchSpec]
) -> Callable[[LaunchSpec], Any]:
    async def _spawn(spec: LaunchSpec) -> FakeAgentProcess:
        spawned.append(spec)
        return fake_process

    return _spawn


@pytest.fixture
async def codex(spawn: Callable[[LaunchSpec], Any]) -> AsyncIterator[Codex]:
    client = Codex(ClientOptions(env={}, shutdown_timeout=0.5), spawn=spawn)
    yield client
    await client.close()


@pytest.fixture
def answering() -> Callable[..., Responder]:
    """Factory for responders that answer every turn."""
    return answer_every_turn


@pytest.fixture
def fake_factory() -> type[FakeAgentProcess]:
    return FakeAgentProcess
