"""Threads and turns — buffered and streamed turn execution."""

from __future__ import annotations

import asyncio
import enum
import logging
import uuid
from collections.abc import AsyncGenerator, AsyncIterator, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from codexline.config.models import ThreadOptions, TurnOptions
from codexline.errors import CodexError, ProtocolError, TurnFailedError
from codexline.protocol.models import (
    AgentMessageItem,
    ItemCompletedEvent,
    ThreadEvent,
    ThreadItem,
    ThreadStartedEvent,
    TurnCancelRequest,
    TurnCompletedEvent,
    TurnFailedEvent,
    TurnStartRequest,
    Usage,
)
from codexline.schema import check_schema, validate_final_response

if TYPE_CHECKING:
    from codexline.client import Codex
    from codexline.router.router import TurnChannel
    from codexline.session import Session

logger = logging.getLogger(__name__)


class TurnState(enum.Enum):
    CREATED = "created"
    SENT = "sent"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    FAILED = "failed"


_FINAL_STATES = frozenset({TurnState.RESOLVED, TurnState.FAILED})


@dataclass
class Turn:
    """Outcome of a completed turn."""

    id: str
    items: list[ThreadItem] = field(default_factory=list)
    final_response: str = ""
    usage: Usage | None = None
    structured: Any = None


@dataclass(frozen=True)
class TextInput:
    text: str
    type: str = "text"


@dataclass(frozen=True)
class LocalImageInput:
    path: str
    type: str = "local_image"


Input = str | Sequence[TextInput | LocalImageInput]


def normalize_input(value: Input) -> tuple[str, list[str]]:
    """Split *value* into prompt text and image paths.

    Text parts are joined with a blank line; image paths keep their order.
    """
    if isinstance(value, str):
        return value, []

    texts: list[str] = []
    images: list[str] = []
    for part in value:
        if isinstance(part, TextInput):
            texts.append(part.text)
        elif isinstance(part, LocalImageInput):
            images.append(part.path)
        else:
            msg = f"unsupported input part: {type(part).__name__}"
            raise TypeError(msg)
    return "\n\n".join(texts), images


class _TurnExecution:
    """State machine of one submitted turn over its router channel."""

    def __init__(
        self,
        thread: Thread,
        session: Session,
        channel: TurnChannel,
        output_schema: dict[str, Any] | None,
    ) -> None:
        self.turn_id = channel.turn_id
        self.state = TurnState.CREATED
        self.items: list[ThreadItem] = []
        self.result: Turn | None = None
        self.error: BaseException | None = None
        self._thread = thread
        self._session = session
        self._channel = channel
        self._output_schema = output_schema
        self._last_message = ""

    def transition(self, state: TurnState) -> None:
        logger.debug("Turn %s: %s -> %s", self.turn_id, self.state.value, state.value)
        self.state = state

    def release(self) -> None:
        self._session.router.release(self.turn_id)

    async def events(self) -> AsyncGenerator[ThreadEvent, None]:
        try:
            async for event in self._channel.events():
                if self.state is TurnState.SENT:
                    self.transition(TurnState.IN_PROGRESS)

                if isinstance(event, ThreadStartedEvent):
                    self._thread._set_id(event.thread_id)
                elif isinstance(event, ItemCompletedEvent):
                    self.items.append(event.item)
                    if isinstance(event.item, AgentMessageItem):
                        self._last_message = event.item.text
                elif isinstance(event, TurnCompletedEvent):
                    self._resolve(event)
                    yield event
                    return
                elif isinstance(event, TurnFailedEvent):
                    error = TurnFailedError(event.error.message, event.error.code)
                    self._fail(error)
                    yield event
                    raise error
                yield event
        except CodexError as exc:
            self._fail(exc)
            raise
        finally:
            self.release()

        msg = f"turn {self.turn_id} ended without a terminal event"
        error = ProtocolError(msg)
        self._fail(error)
        raise error

    def _resolve(self, event: TurnCompletedEvent) -> None:
        if event.final_response is not None:
            final_response = event.final_response
        else:
            final_response = self._last_message

        structured = None
        if self._output_schema is not None:
            structured = validate_final_response(final_response, self._output_schema)

        self.result = Turn(
            id=self.turn_id,
            items=list(self.items),
            final_response=final_response,
            usage=event.usage,
            structured=structured,
        )
        self.transition(TurnState.RESOLVED)

    def _fail(self, error: BaseException) -> None:
        if self.state in _FINAL_STATES:
            return
        self.error = error
        self.transition(TurnState.FAILED)


class StreamedTurn:
    """A submitted turn whose events are consumed as they arrive.

    Iterate it once with ``async for``. Leaving an ``async with`` block or
    calling :meth:`aclose` stops consumption; the agent-side turn keeps
    running, and its remaining events are discarded.
    """

    def __init__(self, execution: _TurnExecution) -> None:
        self._execution = execution
        self._iterator: AsyncGenerator[ThreadEvent, None] | None = None

    @property
    def turn_id(self) -> str:
        return self._execution.turn_id

    @property
    def state(self) -> TurnState:
        return self._execution.state

    @property
    def result(self) -> Turn | None:
        """The resolved turn, once ``turn.completed`` has been consumed."""
        return self._execution.result

    @property
    def error(self) -> BaseException | None:
        """The failure, once the turn has failed."""
        return self._execution.error

    def __aiter__(self) -> AsyncIterator[ThreadEvent]:
        if self._iterator is not None:
            msg = f"turn {self.turn_id} can only be iterated once"
            raise RuntimeError(msg)
        self._iterator = self._execution.events()
        return self._iterator

    async def __aenter__(self) -> StreamedTurn:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Stop consuming events (fire-and-continue)."""
        iterator = self._iterator
        if iterator is not None:
            await iterator.aclose()
        self._execution.release()

    async def collect(self) -> Turn:
        """Drain the remaining events and return the resolved turn."""
        if self._iterator is None:
            self._iterator = self._execution.events()
        async for _event in self._iterator:
            pass
        if self._execution.result is None:
            raise self._execution.error or ProtocolError(
                f"turn {self.turn_id} did not resolve"
            )
        return self._execution.result

    async def cancel(self) -> None:
        """Ask the agent to stop the turn.

        The turn still ends with the agent's terminal event.
        """
        if self.state in _FINAL_STATES:
            return
        thread = self._execution._thread
        logger.debug("Cancelling turn %s", self.turn_id)
        await self._execution._session.send(
            TurnCancelRequest(turn_id=self.turn_id, thread_id=thread.id)
        )


class Thread:
    """A conversation with the agent; runs at most one turn at a time."""

    def __init__(
        self,
        client: Codex,
        options: ThreadOptions | None = None,
        thread_id: str | None = None,
    ) -> None:
        self._client = client
        self._options = options or ThreadOptions()
        self._id = thread_id
        self._turn_lock = asyncio.Lock()

    @property
    def id(self) -> str | None:
        """Thread id; None until the agent reports ``thread.started``."""
        return self._id

    @property
    def options(self) -> ThreadOptions:
        return self._options

    def _set_id(self, thread_id: str) -> None:
        if thread_id != self._id:
            logger.debug("Thread id: %s -> %s", self._id, thread_id)
            self._id = thread_id

    async def run(self, input: Input, options: TurnOptions | None = None) -> Turn:
        """Run one turn to completion and return its result.

        Raises:
            TurnFailedError: The agent reported ``turn.failed``.
            SchemaViolationError: The final response violates the output schema.
            SessionError: The session ended before the turn did.
        """
        streamed = await self.run_streamed(input, options)
        return await streamed.collect()

    async def run_streamed(
        self, input: Input, options: TurnOptions | None = None
    ) -> StreamedTurn:
        """Submit one turn and return once its request has been written."""
        return StreamedTurn(await self._submit(input, options))

    async def _submit(
        self, input: Input, options: TurnOptions | None
    ) -> _TurnExecution:
        output_schema = options.output_schema if options is not None else None
        if output_schema is not None:
            check_schema(output_schema)
        text, images = normalize_input(input)

        session = await self._client._ensure_session()
        await self._turn_lock.acquire()
        turn_id = uuid.uuid4().hex
        try:
            channel = session.open_turn(turn_id, new_thread=self._id is None)
        except BaseException:
            self._turn_lock.release()
            raise
        channel.add_done_callback(lambda _channel: self._turn_lock.release())

        execution = _TurnExecution(self, session, channel, output_schema)
        request = TurnStartRequest(
            turn_id=turn_id,
            thread_id=self._id,
            input=text,
            images=images or None,
            output_schema=output_schema,
            options=self._options.to_wire(),
        )
        try:
            await session.send(request)
        except CodexError as exc:
            session.router.abandon(turn_id, exc)
            raise
        except BaseException:
            session.router.abandon(
                turn_id, ProtocolError(f"submission of turn {turn_id} was interrupted")
            )
            raise
        execution.transition(TurnState.SENT)
        logger.debug("Submitted turn %s on thread %s", turn_id, self._id)
        return execution
