"""Build the argv and environment used to launch the agent process."""

from __future__ import annotations

import json
import logging
import math
import os
import re
from dataclasses import dataclass, field
from typing import Any

from codexline.config.models import ClientOptions
from codexline.errors import ConfigOverrideError

logger = logging.getLogger(__name__)

#: Executable looked up on PATH when no override is configured.
DEFAULT_EXECUTABLE = "codex"

#: Subcommand that puts the agent into JSONL session mode.
DEFAULT_ARGS = ("exec", "--experimental-json")

#: Identifies this client to the agent.
ORIGINATOR_ENV = "CODEX_INTERNAL_ORIGINATOR_OVERRIDE"
ORIGINATOR = "codexline_py"

_BARE_KEY_RE = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass(frozen=True)
class LaunchSpec:
    """Everything needed to spawn the agent process."""

    executable: str
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)

    @property
    def argv(self) -> list[str]:
        return [self.executable, *self.args]

    def __repr__(self) -> str:
        # Environment values can hold credentials; show keys only.
        return (
            f"LaunchSpec(executable={self.executable!r}, args={self.args!r}, "
            f"env_keys={sorted(self.env)!r})"
        )


def build_launch_spec(options: ClientOptions) -> LaunchSpec:
    """Resolve *options* into a :class:`LaunchSpec`.

    Raises:
        ConfigOverrideError: ``options.config`` cannot be rendered as flags.
    """
    args = list(options.args) if options.args is not None else list(DEFAULT_ARGS)

    if options.config is not None:
        overrides = serialize_config_overrides(options.config)
        logger.debug("Config override count: %d", len(overrides))
        for entry in overrides:
            args.extend(["--config", entry])

    spec = LaunchSpec(
        executable=options.codex_path or DEFAULT_EXECUTABLE,
        args=args,
        env=_build_env(options),
    )
    logger.debug("Launch spec: %r", spec)
    return spec


def _build_env(options: ClientOptions) -> dict[str, str]:
    if options.env is not None:
        env = dict(options.env)
        logger.debug("Using explicit environment override")
    else:
        env = dict(os.environ)
        logger.debug("Using inherited environment")

    env.setdefault(ORIGINATOR_ENV, ORIGINATOR)
    env.setdefault("CI", "true")
    env.setdefault("TERM", "xterm")

    if options.base_url is not None:
        env["OPENAI_BASE_URL"] = options.base_url
    if options.api_key is not None:
        env["CODEX_API_KEY"] = options.api_key
    return env


# ------------------------------------------------------------------ #
# Config overrides → --config key=<toml> flags
# ------------------------------------------------------------------ #


def serialize_config_overrides(config: Any) -> list[str]:
    """Flatten a nested mapping into ``key.path=<toml value>`` entries.

    Nested objects become dotted keys. Arrays and objects inside arrays
    are rendered inline. ``None`` children are skipped.
    """
    if not isinstance(config, dict):
        msg = "codex config overrides must be a plain object"
        raise ConfigOverrideError(msg)
    overrides: list[str] = []
    _flatten(config, "", overrides)
    return overrides


def _flatten(value: dict[str, Any], prefix: str, overrides: list[str]) -> None:
    if not value:
        if prefix:
            overrides.append(f"{prefix}={{}}")
        return

    for key, child in value.items():
        if not isinstance(key, str) or not key:
            msg = "codex config override keys must be non-empty strings"
            raise ConfigOverrideError(msg)
        if child is None:
            continue
        path = f"{prefix}.{key}" if prefix else key
        if isinstance(child, dict):
            _flatten(child, path, overrides)
        else:
            overrides.append(f"{path}={to_toml_value(child, path)}")


def to_toml_value(value: Any, path: str) -> str:
    """Render a JSON-compatible value as an inline TOML value."""
    if value is None:
        msg = f"codex config override at {path} cannot be null"
        raise ConfigOverrideError(msg)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            msg = f"codex config override at {path} must be a finite number"
            raise ConfigOverrideError(msg)
        return repr(value)
    if isinstance(value, (list, tuple)):
        rendered = [to_toml_value(item, f"{path}[{i}]") for i, item in enumerate(value)]
        return f"[{', '.join(rendered)}]"
    if isinstance(value, dict):
        parts: list[str] = []
        for key, child in value.items():
            if not isinstance(key, str) or not key:
                msg = "codex config override keys must be non-empty strings"
                raise ConfigOverrideError(msg)
            if child is None:
                continue
            parts.append(
                f"{_format_toml_key(key)} = {to_toml_value(child, f'{path}.{key}')}"
            )
        return f"{{{', '.join(parts)}}}"
    msg = f"unsupported codex config override value at {path}: {type(value).__name__}"
    raise ConfigOverrideError(msg)


def _format_toml_key(key: str) -> str:
    if _BARE_KEY_RE.match(key):
        return key
    return json.dumps(key, ensure_ascii=False)
