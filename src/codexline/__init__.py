"""codexline — asyncio client for a JSONL stdio coding agent."""

from codexline.client import Codex
from codexline.config.models import ClientOptions, ThreadOptions, TurnOptions
from codexline.errors import (
    CodexError,
    ConfigOverrideError,
    InvalidOutputSchemaError,
    LaunchError,
    ProcessExitedError,
    ProtocolDesyncError,
    ProtocolError,
    SchemaViolationError,
    SessionClosedError,
    SessionError,
    TurnFailedError,
)
from codexline.thread import (
    LocalImageInput,
    StreamedTurn,
    TextInput,
    Thread,
    Turn,
    TurnState,
)

__version__ = "0.1.0"

__all__ = [
    "ClientOptions",
    "Codex",
    "CodexError",
    "ConfigOverrideError",
    "InvalidOutputSchemaError",
    "LaunchError",
    "LocalImageInput",
    "ProcessExitedError",
    "ProtocolDesyncError",
    "ProtocolError",
    "SchemaViolationError",
    "SessionClosedError",
    "SessionError",
    "StreamedTurn",
    "TextInput",
    "Thread",
    "ThreadOptions",
    "Turn",
    "TurnOptions",
    "TurnState",
    "__version__",
]
