"""Process supervisor: owns the agent subprocess and its byte streams."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from typing import Protocol, runtime_checkable

from codexline.errors import (
    ExitStatus,
    LaunchError,
    OversizedFrameError,
    ReadError,
    WriteError,
)
from codexline.process.launch import LaunchSpec
from codexline.protocol.codec import encode
from codexline.protocol.models import ShutdownRequest

logger = logging.getLogger(__name__)

#: Seconds to wait after SIGTERM before SIGKILL.
_SIGTERM_WAIT = 3.0

#: Seconds to wait for the stderr drain to finish after exit.
_STDERR_FLUSH_WAIT = 1.0

#: Number of stderr lines kept for error reports.
_STDERR_TAIL_LINES = 80

#: Read size used when discarding unread stdout during teardown.
_DRAIN_CHUNK_BYTES = 65_536


@runtime_checkable
class AgentProcess(Protocol):
    """Byte-stream capability of a running agent.

    ``SubprocessAgentProcess`` is the real implementation; tests substitute
    a scripted fake.
    """

    @property
    def returncode(self) -> int | None: ...

    @property
    def stderr_tail(self) -> str: ...

    async def write(self, data: bytes) -> None:
        """Write *data* to stdin, waiting for the pipe to drain."""
        ...

    async def readline(self) -> bytes:
        """Read one line from stdout; ``b""`` at end of stream.

        Raises ``ValueError`` once for a line longer than the stream limit,
        after the whole line has been discarded.
        """
        ...

    async def wait(self) -> int:
        """Wait for the process to exit and return its return code."""
        ...

    async def terminate(self) -> None:
        """Force the process to exit: SIGTERM, then SIGKILL."""
        ...


class SubprocessAgentProcess:
    """``AgentProcess`` backed by ``asyncio.subprocess``."""

    def __init__(self, proc: asyncio.subprocess.Process) -> None:
        self._proc = proc
        self._stderr_lines: deque[str] = deque(maxlen=_STDERR_TAIL_LINES)
        self._stderr_task: asyncio.Task[None] | None = None
        self._stdout_drain: asyncio.Task[None] | None = None
        self._reading = False
        if proc.stderr is not None:
            self._stderr_task = asyncio.create_task(self._drain_stderr())

    @classmethod
    async def spawn(
        cls, spec: LaunchSpec, max_line_bytes: int = 1_048_576
    ) -> SubprocessAgentProcess:
        proc = await asyncio.create_subprocess_exec(
            *spec.argv,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            limit=max_line_bytes,
            env=spec.env,
            start_new_session=True,
        )
        logger.debug("Spawned agent process pid=%d", proc.pid)
        return cls(proc)

    @property
    def pid(self) -> int:
        return self._proc.pid

    @property
    def returncode(self) -> int | None:
        return self._proc.returncode

    @property
    def stderr_tail(self) -> str:
        return "\n".join(self._stderr_lines)

    async def write(self, data: bytes) -> None:
        stdin = self._proc.stdin
        if stdin is None or stdin.is_closing():
            msg = "agent stdin is closed"
            raise BrokenPipeError(msg)
        stdin.write(data)
        await stdin.drain()

    async def readline(self) -> bytes:
        stdout = self._proc.stdout
        if stdout is None or self._stdout_drain is not None:
            return b""
        self._reading = True
        try:
            return await stdout.readuntil(b"\n")
        except asyncio.IncompleteReadError as exc:
            return exc.partial
        except asyncio.LimitOverrunError as exc:
            await self._skip_line(stdout, exc.consumed)
            msg = "line exceeds the stream limit"
            raise ValueError(msg) from exc
        finally:
            self._reading = False

    async def wait(self) -> int:
        self._drain_stdout()
        returncode = await self._proc.wait()
        if self._stderr_task is not None:
            with contextlib.suppress(TimeoutError, asyncio.CancelledError):
                await asyncio.wait_for(
                    asyncio.shield(self._stderr_task), timeout=_STDERR_FLUSH_WAIT
                )
        return returncode

    async def terminate(self) -> None:
        proc = self._proc
        if proc.stdin is not None:
            with contextlib.suppress(OSError):
                proc.stdin.close()

        self._drain_stdout()
        if proc.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                proc.terminate()
            try:
                await asyncio.wait_for(proc.wait(), timeout=_SIGTERM_WAIT)
            except TimeoutError:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                try:
                    await asyncio.wait_for(proc.wait(), timeout=_SIGTERM_WAIT)
                except TimeoutError:
                    logger.warning(
                        "agent pid=%d still running after SIGKILL", proc.pid
                    )

        for task in (self._stderr_task, self._stdout_drain):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    @staticmethod
    async def _skip_line(stdout: asyncio.StreamReader, consumed: int) -> None:
        """Discard the rest of an overlong line, up to and including its newline."""
        while True:
            await stdout.readexactly(consumed)
            try:
                await stdout.readuntil(b"\n")
                return
            except asyncio.IncompleteReadError:
                return
            except asyncio.LimitOverrunError as exc:
                consumed = exc.consumed

    def _drain_stdout(self) -> None:
        """Discard unread stdout so an agent blocked on a full pipe can exit.

        Does nothing while a reader is waiting on stdout; that reader
        consumes the stream to EOF itself.
        """
        stdout = self._proc.stdout
        if stdout is None or self._reading or self._stdout_drain is not None:
            return
        self._stdout_drain = asyncio.create_task(self._discard_stdout(stdout))

    @staticmethod
    async def _discard_stdout(stdout: asyncio.StreamReader) -> None:
        with contextlib.suppress(OSError):
            while await stdout.read(_DRAIN_CHUNK_BYTES):
                pass

    async def _drain_stderr(self) -> None:
        assert self._proc.stderr is not None
        while True:
            line = await self._proc.stderr.readline()
            if not line:
                return
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                self._stderr_lines.append(text)
                logger.warning("agent stderr: %s", text)


class ProcessSupervisor:
    """Serializes writes to, and reads framed lines from, one agent process.

    Exactly one task may call ``next_frame``; any number of tasks may call
    ``write_frame`` concurrently.
    """

    def __init__(
        self,
        process: AgentProcess,
        *,
        max_line_bytes: int = 1_048_576,
        shutdown_timeout: float = 5.0,
    ) -> None:
        self._process = process
        self._max_line_bytes = max_line_bytes
        self._shutdown_timeout = shutdown_timeout
        self._write_lock = asyncio.Lock()
        self._terminated = False
        self._shutdown_task: asyncio.Task[None] | None = None

    @classmethod
    async def start(
        cls,
        spec: LaunchSpec,
        *,
        max_line_bytes: int = 1_048_576,
        shutdown_timeout: float = 5.0,
    ) -> ProcessSupervisor:
        """Spawn the agent described by *spec*.

        Raises:
            LaunchError: The executable is missing or could not be spawned.
        """
        try:
            process = await SubprocessAgentProcess.spawn(spec, max_line_bytes)
        except FileNotFoundError as exc:
            msg = (
                f"agent executable not found: {spec.executable}. "
                "Make sure it is installed and on your PATH."
            )
            raise LaunchError(msg) from exc
        except OSError as exc:
            msg = f"failed to spawn agent executable {spec.executable}: {exc}"
            raise LaunchError(msg) from exc
        return cls(
            process,
            max_line_bytes=max_line_bytes,
            shutdown_timeout=shutdown_timeout,
        )

    @property
    def process(self) -> AgentProcess:
        return self._process

    @property
    def terminated(self) -> bool:
        return self._terminated

    @property
    def shutdown_timeout(self) -> float:
        return self._shutdown_timeout

    async def write_frame(self, line: bytes) -> None:
        """Write one complete frame; frames from concurrent callers never interleave."""
        async with self._write_lock:
            if self._terminated:
                msg = "agent process is shutting down"
                raise WriteError(msg)
            try:
                await self._process.write(line)
            except (BrokenPipeError, ConnectionResetError, OSError) as exc:
                msg = f"failed to write to agent stdin: {exc}"
                raise WriteError(msg) from exc

    async def next_frame(self) -> bytes | None:
        """Return the next raw line from stdout, or None at end of stream.

        Raises:
            OversizedFrameError: The line exceeded ``max_line_bytes``; it has
                been discarded and reading may continue.
            ReadError: The stream failed.
        """
        try:
            line = await self._process.readline()
        except ValueError as exc:
            # StreamReader raises ValueError when a line overruns its limit.
            msg = f"frame exceeds {self._max_line_bytes} bytes"
            raise OversizedFrameError(msg) from exc
        except OSError as exc:
            msg = f"failed to read agent stdout: {exc}"
            raise ReadError(msg) from exc

        if not line:
            return None
        if len(line) > self._max_line_bytes:
            msg = f"frame exceeds {self._max_line_bytes} bytes"
            raise OversizedFrameError(msg)
        return line

    async def terminate(self) -> None:
        """Graceful shutdown: shutdown frame -> wait -> SIGTERM -> SIGKILL.

        Idempotent; concurrent and later calls wait on the first shutdown,
        and every call returns once it has finished.
        """
        if self._shutdown_task is None:
            self._terminated = True
            self._shutdown_task = asyncio.create_task(self._shutdown())
        await asyncio.shield(self._shutdown_task)

    async def _shutdown(self) -> None:
        proc = self._process
        if proc.returncode is None:
            logger.debug("Sending shutdown frame to agent")
            try:
                await asyncio.wait_for(
                    proc.write(encode(ShutdownRequest())),
                    timeout=self._shutdown_timeout,
                )
            except (TimeoutError, BrokenPipeError, ConnectionResetError, OSError):
                pass

        try:
            await asyncio.wait_for(proc.wait(), timeout=self._shutdown_timeout)
        except TimeoutError:
            logger.warning(
                "agent did not exit within %.1fs; terminating", self._shutdown_timeout
            )
        await proc.terminate()

    async def exit_status(self, timeout: float | None = None) -> ExitStatus:
        """Wait for the process to exit and describe how it ended.

        Raises:
            TimeoutError: The process was still running after *timeout*.
        """
        await asyncio.wait_for(self._process.wait(), timeout=timeout)
        return self.last_status()

    def last_status(self) -> ExitStatus:
        """Describe the process as it is now, without waiting."""
        returncode = self._process.returncode
        stderr = self._process.stderr_tail
        if returncode is not None and returncode < 0:
            return ExitStatus(code=None, signal=-returncode, stderr=stderr)
        return ExitStatus(code=returncode, stderr=stderr)
