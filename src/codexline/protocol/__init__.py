"""Wire protocol: message models and the JSONL frame codec."""

from codexline.protocol.codec import decode, decode_request, encode
from codexline.protocol.models import (
    AgentMessageItem,
    CommandExecutionItem,
    ErrorEvent,
    ErrorItem,
    FileChangeItem,
    FileUpdateChange,
    HeartbeatEvent,
    ItemCompletedEvent,
    ItemStartedEvent,
    ItemUpdatedEvent,
    McpToolCallItem,
    ReasoningItem,
    Request,
    ShutdownRequest,
    ThreadError,
    ThreadEvent,
    ThreadItem,
    ThreadStartedEvent,
    TodoListItem,
    TurnCancelRequest,
    TurnCompletedEvent,
    TurnFailedEvent,
    TurnStartedEvent,
    TurnStartRequest,
    UnknownItem,
    Usage,
    WebSearchItem,
    is_terminal,
)

__all__ = [
    "AgentMessageItem",
    "CommandExecutionItem",
    "ErrorEvent",
    "ErrorItem",
    "FileChangeItem",
    "FileUpdateChange",
    "HeartbeatEvent",
    "ItemCompletedEvent",
    "ItemStartedEvent",
    "ItemUpdatedEvent",
    "McpToolCallItem",
    "ReasoningItem",
    "Request",
    "ShutdownRequest",
    "ThreadError",
    "ThreadEvent",
    "ThreadItem",
    "ThreadStartedEvent",
    "TodoListItem",
    "TurnCancelRequest",
    "TurnCompletedEvent",
    "TurnFailedEvent",
    "TurnStartRequest",
    "TurnStartedEvent",
    "UnknownItem",
    "Usage",
    "WebSearchItem",
    "decode",
    "decode_request",
    "encode",
    "is_terminal",
]
