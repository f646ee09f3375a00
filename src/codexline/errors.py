"""Exception hierarchy for the codexline client."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from codexline.helpers import format_stderr_preview

if TYPE_CHECKING:
    from codexline.schema import SchemaViolation

#: Max characters of an offending frame to include in error messages.
_FRAME_PREVIEW_LEN = 200


class CodexError(RuntimeError):
    """Base class for every error raised by codexline."""


class LaunchError(CodexError):
    """Raised when the agent executable cannot be found or spawned."""


class ConfigOverrideError(CodexError):
    """Raised when ``ClientOptions.config`` cannot be rendered as CLI flags."""


class InvalidOutputSchemaError(CodexError):
    """Raised when a turn's output schema is not a valid JSON Schema object."""


# ------------------------------------------------------------------ #
# Session-level failures
# ------------------------------------------------------------------ #


class SessionError(CodexError):
    """A failure of the session as a whole; fails every pending turn."""


class WriteError(SessionError):
    """Raised when a frame cannot be written to the agent's stdin."""


class ReadError(SessionError):
    """Raised when the agent's stdout fails with an I/O error."""


@dataclass(frozen=True)
class ExitStatus:
    """Exit status of the agent process, captured after it ended."""

    code: int | None
    signal: int | None = None
    stderr: str = ""

    def describe(self) -> str:
        if self.signal is not None:
            return f"signal {self.signal}"
        if self.code is None:
            return "unknown status"
        return f"code {self.code}"


class ProcessExitedError(SessionError):
    """Raised for every pending turn when the agent process exits."""

    def __init__(self, exit_status: ExitStatus) -> None:
        self.exit_status = exit_status
        msg = f"agent process exited with {exit_status.describe()}"
        stderr_preview = format_stderr_preview(exit_status.stderr)
        if stderr_preview:
            msg += f". Stderr:\n  {stderr_preview}"
        super().__init__(msg)


class SessionClosedError(SessionError):
    """Raised for pending turns when the caller closes the session."""


class ProtocolDesyncError(SessionError):
    """Raised when repeated malformed frames indicate a desynchronized stream."""


# ------------------------------------------------------------------ #
# Frame-level failures (non-fatal)
# ------------------------------------------------------------------ #


class FrameError(CodexError):
    """An inbound line could not be turned into a protocol message."""

    def __init__(self, reason: str, line: str = "") -> None:
        self.reason = reason
        self.line = line
        preview = line[:_FRAME_PREVIEW_LEN]
        super().__init__(f"{reason}: {preview}" if preview else reason)


class MalformedFrameError(FrameError):
    """The line is not valid JSON or does not match its declared shape."""


class UnknownVariantError(FrameError):
    """The JSON object has no recognized ``type`` discriminant."""


class OversizedFrameError(FrameError):
    """The line exceeded the configured maximum frame size."""


# ------------------------------------------------------------------ #
# Turn-level failures
# ------------------------------------------------------------------ #


class ProtocolError(CodexError):
    """Internal-consistency failure of the turn protocol."""


class TurnFailedError(CodexError):
    """The agent reported ``turn.failed`` for this turn."""

    def __init__(self, message: str, code: str | None = None) -> None:
        self.message = message
        self.code = code
        detail = f"[{code}] {message}" if code else message
        super().__init__(f"turn failed: {detail}")


class SchemaViolationError(CodexError):
    """The final response does not satisfy the turn's output schema."""

    def __init__(self, violations: list[SchemaViolation]) -> None:
        self.violations = violations
        joined = "; ".join(f"{v.path}: {v.message}" for v in violations)
        super().__init__(f"final response violates output schema: {joined}")
