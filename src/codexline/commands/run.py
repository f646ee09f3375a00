"""codexline run — run one turn against the agent and print the answer."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import click

from codexline.client import Codex
from codexline.config.models import CodexlineConfig, TurnOptions
from codexline.config.parser import ConfigError, load_config
from codexline.errors import CodexError
from codexline.protocol.models import (
    AgentMessageItem,
    CommandExecutionItem,
    ErrorItem,
    FileChangeItem,
    ItemCompletedEvent,
    McpToolCallItem,
    ReasoningItem,
    ThreadItem,
    TodoListItem,
    WebSearchItem,
)
from codexline.thread import Input, LocalImageInput, TextInput, Turn


@click.command()
@click.argument("prompt")
@click.option(
    "-f", "--file", "config_file", type=click.Path(), help="Config file path."
)
@click.option(
    "--schema",
    "schema_file",
    type=click.Path(),
    help="JSON Schema file the final response must satisfy.",
)
@click.option("--stream", is_flag=True, help="Print items as they complete.")
@click.option(
    "--image",
    "images",
    multiple=True,
    type=click.Path(),
    help="Attach a local image (repeatable).",
)
@click.option("--thread-id", default=None, help="Resume an existing thread.")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output.")
def run(
    prompt: str,
    config_file: str | None,
    schema_file: str | None,
    stream: bool,
    images: tuple[str, ...],
    thread_id: str | None,
    verbose: bool,
) -> None:
    """Run PROMPT as one turn and print the final response."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_config(Path(config_file) if config_file else None)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    output_schema = _load_schema(Path(schema_file)) if schema_file else None
    turn_input = _build_input(prompt, images)

    try:
        turn, final_thread_id = asyncio.run(
            _run_turn(config, turn_input, output_schema, thread_id, stream)
        )
    except CodexError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    click.echo(turn.final_response)
    if turn.usage is not None:
        click.echo(
            click.style(
                f"tokens: {turn.usage.input_tokens} in "
                f"({turn.usage.cached_input_tokens} cached), "
                f"{turn.usage.output_tokens} out",
                dim=True,
            ),
            err=True,
        )
    if final_thread_id:
        click.echo(click.style(f"thread: {final_thread_id}", dim=True), err=True)


def _load_schema(path: Path) -> dict[str, Any]:
    try:
        schema = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        click.echo(f"Error: Cannot read schema file: {exc}", err=True)
        raise SystemExit(1) from exc
    except json.JSONDecodeError as exc:
        click.echo(f"Error: Invalid JSON in {path.name}: {exc}", err=True)
        raise SystemExit(1) from exc
    if not isinstance(schema, dict):
        click.echo(f"Error: {path.name} must contain a JSON object", err=True)
        raise SystemExit(1)
    return schema


def _build_input(prompt: str, images: tuple[str, ...]) -> Input:
    if not images:
        return prompt
    return [TextInput(prompt), *(LocalImageInput(path) for path in images)]


async def _run_turn(
    config: CodexlineConfig,
    input: Input,
    output_schema: dict[str, Any] | None,
    thread_id: str | None,
    stream: bool,
) -> tuple[Turn, str | None]:
    options = TurnOptions(output_schema=output_schema)
    async with Codex(config.client) as codex:
        if thread_id:
            thread = codex.resume_thread(thread_id, config.thread)
        else:
            thread = codex.start_thread(config.thread)

        if not stream:
            return await thread.run(input, options), thread.id

        async with await thread.run_streamed(input, options) as streamed:
            async for event in streamed:
                if isinstance(event, ItemCompletedEvent):
                    line = format_item(event.item)
                    if line:
                        click.echo(line)
            return await streamed.collect(), thread.id


def format_item(item: ThreadItem) -> str:
    """One-line console rendering of a completed item."""
    if isinstance(item, AgentMessageItem):
        return click.style("agent: ", fg="cyan") + item.text
    if isinstance(item, ReasoningItem):
        return click.style(f"  thinking: {item.text}", dim=True)
    if isinstance(item, CommandExecutionItem):
        suffix = f" (exit {item.exit_code})" if item.exit_code is not None else ""
        return click.style(f"  $ {item.command}{suffix}", fg="yellow")
    if isinstance(item, FileChangeItem):
        changed = ", ".join(f"{c.kind} {c.path}" for c in item.changes)
        return click.style(f"  files: {changed}", fg="green")
    if isinstance(item, McpToolCallItem):
        return click.style(
            f"  tool: {item.server}.{item.tool} ({item.status})", fg="magenta"
        )
    if isinstance(item, WebSearchItem):
        return click.style(f"  search: {item.query}", fg="blue")
    if isinstance(item, TodoListItem):
        return "\n".join(
            f"  [{'x' if entry.completed else ' '}] {entry.text}" for entry in item.items
        )
    if isinstance(item, ErrorItem):
        return click.style(f"  error: {item.message}", fg="red")
    return click.style(f"  ({item.type} item)", dim=True)
