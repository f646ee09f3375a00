"""Pydantic v2 models for client, thread, and turn options."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

SandboxMode = Literal["read-only", "workspace-write", "danger-full-access"]
ModelReasoningEffort = Literal["minimal", "low", "medium", "high", "xhigh"]
WebSearchMode = Literal["disabled", "cached", "live"]
ApprovalMode = Literal["never", "on-request", "on-failure", "untrusted"]


class ClientOptions(BaseModel):
    """How to launch and talk to the agent process."""

    model_config = ConfigDict(extra="forbid")

    codex_path: str | None = Field(
        default=None,
        description="Agent executable; resolved from PATH as 'codex' when unset",
    )
    args: list[str] | None = Field(
        default=None,
        description="Replaces the default 'exec --experimental-json' arguments",
    )
    base_url: str | None = Field(
        default=None,
        description="Exported to the agent as OPENAI_BASE_URL",
    )
    api_key: str | None = Field(
        default=None,
        repr=False,
        description="Exported to the agent as CODEX_API_KEY",
    )
    config: dict[str, Any] | None = Field(
        default=None,
        description="Config overrides rendered as repeated --config key=value flags",
    )
    env: dict[str, str] | None = Field(
        default=None,
        description="Full environment for the agent; inherits os.environ when unset",
    )
    shutdown_timeout: float = Field(
        default=5.0,
        ge=0,
        description="Seconds to wait for a graceful exit before SIGTERM",
    )
    max_line_bytes: int = Field(
        default=1_048_576,
        gt=0,
        description="Largest accepted inbound frame in bytes",
    )


class ThreadOptions(BaseModel):
    """Configuration applied to every turn of a thread."""

    model_config = ConfigDict(extra="forbid")

    model: str | None = None
    sandbox_mode: SandboxMode | None = None
    working_directory: str | None = None
    additional_directories: list[str] | None = None
    skip_git_repo_check: bool | None = None
    model_reasoning_effort: ModelReasoningEffort | None = None
    network_access_enabled: bool | None = None
    web_search_mode: WebSearchMode | None = None
    web_search_enabled: bool | None = None
    approval_policy: ApprovalMode | None = None

    def to_wire(self) -> dict[str, Any] | None:
        """Return the options as a request payload, or None when all unset.

        ``web_search_mode`` wins over ``web_search_enabled``, which is sent
        as the equivalent mode.
        """
        payload = self.model_dump(exclude_none=True, exclude={"web_search_enabled"})
        if self.web_search_mode is None and self.web_search_enabled is not None:
            enabled = self.web_search_enabled
            payload["web_search_mode"] = "live" if enabled else "disabled"
        return payload or None


class TurnOptions(BaseModel):
    """Per-turn settings."""

    model_config = ConfigDict(extra="forbid")

    output_schema: dict[str, Any] | None = Field(
        default=None,
        description="JSON Schema the final response must satisfy",
    )

    @field_validator("output_schema", mode="before")
    @classmethod
    def _schema_is_object(cls, value: object) -> object:
        if value is not None and not isinstance(value, dict):
            msg = "output_schema must be a JSON object"
            raise ValueError(msg)
        return value


class CodexlineConfig(BaseModel):
    """Top-level codexline.yaml configuration."""

    model_config = ConfigDict(extra="forbid")

    client: ClientOptions = Field(default_factory=ClientOptions)
    thread: ThreadOptions = Field(default_factory=ThreadOptions)
