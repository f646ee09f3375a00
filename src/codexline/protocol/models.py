"""Pydantic v2 models for the JSONL wire protocol."""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag

# ------------------------------------------------------------------ #
# Thread items
# ------------------------------------------------------------------ #


class _ItemBase(BaseModel):
    """Common fields shared by every thread item."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(description="Item identifier, unique within the thread")


class AgentMessageItem(_ItemBase):
    """A message from the agent; the last one is the turn's answer."""

    type: Literal["agent_message"] = "agent_message"
    text: str = Field(description="Message text (JSON when a schema was given)")


class ReasoningItem(_ItemBase):
    """A reasoning note emitted by the agent."""

    type: Literal["reasoning"] = "reasoning"
    text: str = Field(description="Reasoning summary")


class CommandExecutionItem(_ItemBase):
    """A shell command run by the agent."""

    type: Literal["command_execution"] = "command_execution"
    command: str = Field(description="Command line")
    aggregated_output: str = Field(default="", description="Combined stdout/stderr")
    exit_code: int | None = Field(default=None, description="Exit code once finished")
    status: Literal["in_progress", "completed", "failed"] = Field(
        description="Execution status",
    )


class FileUpdateChange(BaseModel):
    """One path touched by a patch."""

    model_config = ConfigDict(extra="ignore")

    path: str
    kind: Literal["add", "delete", "update"]


class FileChangeItem(_ItemBase):
    """A patch applied by the agent."""

    type: Literal["file_change"] = "file_change"
    changes: list[FileUpdateChange] = Field(default_factory=list)
    status: Literal["completed", "failed"]


class McpToolCallResult(BaseModel):
    """Result payload of an MCP tool call."""

    model_config = ConfigDict(extra="ignore")

    content: list[Any] = Field(default_factory=list)
    structured_content: Any = None


class McpToolCallError(BaseModel):
    """Error payload of an MCP tool call."""

    model_config = ConfigDict(extra="ignore")

    message: str


class McpToolCallItem(_ItemBase):
    """A tool invocation routed through an MCP server."""

    type: Literal["mcp_tool_call"] = "mcp_tool_call"
    server: str
    tool: str
    arguments: Any = None
    result: McpToolCallResult | None = None
    error: McpToolCallError | None = None
    status: Literal["in_progress", "completed", "failed"]


class WebSearchItem(_ItemBase):
    """A web search performed by the agent."""

    type: Literal["web_search"] = "web_search"
    query: str


class TodoEntry(BaseModel):
    """One entry of the agent's todo list."""

    model_config = ConfigDict(extra="ignore")

    text: str
    completed: bool = False


class TodoListItem(_ItemBase):
    """The agent's running todo list."""

    type: Literal["todo_list"] = "todo_list"
    items: list[TodoEntry] = Field(default_factory=list)


class ErrorItem(_ItemBase):
    """A non-fatal error surfaced as an item."""

    type: Literal["error"] = "error"
    message: str


class UnknownItem(_ItemBase):
    """An item of a type this client does not know; raw fields are kept."""

    model_config = ConfigDict(extra="allow")

    type: str


_ITEM_TYPES = frozenset(
    {
        "agent_message",
        "reasoning",
        "command_execution",
        "file_change",
        "mcp_tool_call",
        "web_search",
        "todo_list",
        "error",
    }
)


def _item_discriminator(v: Any) -> str:
    """Map an item to its tag; unrecognized types fall back to ``unknown``."""
    if isinstance(v, UnknownItem):
        return "unknown"
    item_type = _type_discriminator(v)
    return item_type if item_type in _ITEM_TYPES else "unknown"


ThreadItem = Annotated[
    Annotated[AgentMessageItem, Tag("agent_message")]
    | Annotated[ReasoningItem, Tag("reasoning")]
    | Annotated[CommandExecutionItem, Tag("command_execution")]
    | Annotated[FileChangeItem, Tag("file_change")]
    | Annotated[McpToolCallItem, Tag("mcp_tool_call")]
    | Annotated[WebSearchItem, Tag("web_search")]
    | Annotated[TodoListItem, Tag("todo_list")]
    | Annotated[ErrorItem, Tag("error")]
    | Annotated[UnknownItem, Tag("unknown")],
    Discriminator(_item_discriminator),
]
"""Discriminated union of all thread item types."""


# ------------------------------------------------------------------ #
# Inbound events
# ------------------------------------------------------------------ #


class Usage(BaseModel):
    """Token accounting attached to ``turn.completed``; immutable."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    input_tokens: int = Field(default=0, ge=0)
    cached_input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)


class ThreadError(BaseModel):
    """Error description carried by ``turn.failed``."""

    model_config = ConfigDict(extra="ignore")

    message: str
    code: str | None = None


class _EventBase(BaseModel):
    """Correlation fields shared by every inbound message."""

    model_config = ConfigDict(extra="ignore")

    thread_id: str | None = Field(default=None, description="Owning thread")
    turn_id: str | None = Field(default=None, description="Owning turn")


class ThreadStartedEvent(_EventBase):
    """The agent assigned (or confirmed) the thread identifier."""

    type: Literal["thread.started"] = "thread.started"
    thread_id: str = Field(description="Thread identifier")


class TurnStartedEvent(_EventBase):
    """The agent began processing the turn."""

    type: Literal["turn.started"] = "turn.started"


class ItemStartedEvent(_EventBase):
    type: Literal["item.started"] = "item.started"
    item: ThreadItem


class ItemUpdatedEvent(_EventBase):
    type: Literal["item.updated"] = "item.updated"
    item: ThreadItem


class ItemCompletedEvent(_EventBase):
    type: Literal["item.completed"] = "item.completed"
    item: ThreadItem


class TurnCompletedEvent(_EventBase):
    """Terminal: the turn succeeded."""

    type: Literal["turn.completed"] = "turn.completed"
    usage: Usage = Field(default_factory=Usage)
    final_response: str | None = Field(
        default=None,
        description="Resolved final answer, when the agent provides one",
    )


class TurnFailedEvent(_EventBase):
    """Terminal: the turn failed on the agent side."""

    type: Literal["turn.failed"] = "turn.failed"
    error: ThreadError


class ErrorEvent(_EventBase):
    """A non-terminal error notice."""

    type: Literal["error"] = "error"
    message: str


class HeartbeatEvent(_EventBase):
    """Keep-alive frame; carries no payload."""

    type: Literal["heartbeat"] = "heartbeat"


def _type_discriminator(v: Any) -> str:
    """Extract the discriminator value from raw data or a model instance."""
    if isinstance(v, dict):
        return str(v.get("type", ""))
    return str(getattr(v, "type", ""))


ThreadEvent = Annotated[
    Annotated[ThreadStartedEvent, Tag("thread.started")]
    | Annotated[TurnStartedEvent, Tag("turn.started")]
    | Annotated[ItemStartedEvent, Tag("item.started")]
    | Annotated[ItemUpdatedEvent, Tag("item.updated")]
    | Annotated[ItemCompletedEvent, Tag("item.completed")]
    | Annotated[TurnCompletedEvent, Tag("turn.completed")]
    | Annotated[TurnFailedEvent, Tag("turn.failed")]
    | Annotated[ErrorEvent, Tag("error")]
    | Annotated[HeartbeatEvent, Tag("heartbeat")],
    Discriminator(_type_discriminator),
]
"""Discriminated union of all inbound protocol messages."""

EVENT_TYPES = frozenset(
    {
        "thread.started",
        "turn.started",
        "item.started",
        "item.updated",
        "item.completed",
        "turn.completed",
        "turn.failed",
        "error",
        "heartbeat",
    }
)

TERMINAL_EVENT_TYPES = frozenset({"turn.completed", "turn.failed"})


def is_terminal(event: BaseModel) -> bool:
    """Return True if *event* ends its turn."""
    return getattr(event, "type", None) in TERMINAL_EVENT_TYPES


# ------------------------------------------------------------------ #
# Outbound requests
# ------------------------------------------------------------------ #


class _RequestBase(BaseModel):
    model_config = ConfigDict(extra="forbid")


class TurnStartRequest(_RequestBase):
    """Submit one turn to the agent."""

    type: Literal["turn.start"] = "turn.start"
    turn_id: str = Field(description="Client-generated correlation id")
    thread_id: str | None = Field(
        default=None,
        description="Thread to continue; omitted for a new thread",
    )
    input: str = Field(description="Prompt text")
    images: list[str] | None = Field(default=None, description="Local image paths")
    output_schema: dict[str, Any] | None = Field(
        default=None,
        description="JSON Schema the final answer must satisfy",
    )
    options: dict[str, Any] | None = Field(
        default=None,
        description="Thread-level configuration applied to this turn",
    )


class TurnCancelRequest(_RequestBase):
    """Ask the agent to stop a running turn."""

    type: Literal["turn.cancel"] = "turn.cancel"
    turn_id: str
    thread_id: str | None = None


class ShutdownRequest(_RequestBase):
    """Ask the agent process to exit gracefully."""

    type: Literal["shutdown"] = "shutdown"


Request = Annotated[
    Annotated[TurnStartRequest, Tag("turn.start")]
    | Annotated[TurnCancelRequest, Tag("turn.cancel")]
    | Annotated[ShutdownRequest, Tag("shutdown")],
    Discriminator(_type_discriminator),
]
"""Discriminated union of all outbound requests."""

REQUEST_TYPES = frozenset({"turn.start", "turn.cancel", "shutdown"})
