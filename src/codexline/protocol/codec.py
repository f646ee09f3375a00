"""Frame codec: one JSON object per line, in both directions."""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, TypeAdapter, ValidationError

from codexline.errors import MalformedFrameError, UnknownVariantError
from codexline.protocol.models import (
    EVENT_TYPES,
    REQUEST_TYPES,
    Request,
    ThreadEvent,
)

_EVENT_ADAPTER: TypeAdapter[ThreadEvent] = TypeAdapter(ThreadEvent)
_REQUEST_ADAPTER: TypeAdapter[Request] = TypeAdapter(Request)


def encode(message: BaseModel) -> bytes:
    """Serialize *message* as a single ``\\n``-terminated JSON line.

    Absent optional fields are omitted rather than sent as ``null``.
    Newlines inside string values are escaped by the JSON encoder, so the
    only raw newline in the output is the terminator.
    """
    payload = message.model_dump(mode="json", exclude_none=True)
    line = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
    return (line + "\n").encode("utf-8")


def decode(line: bytes | str) -> ThreadEvent | None:
    """Parse one inbound line into a protocol message.

    Returns ``None`` for blank lines.

    Raises:
        MalformedFrameError: The line is not a JSON object, or a known
            message type does not match its declared shape.
        UnknownVariantError: The object has no recognized ``type``.
    """
    raw = _load(line, EVENT_TYPES)
    if raw is None:
        return None
    try:
        return _EVENT_ADAPTER.validate_python(raw)
    except ValidationError as exc:
        raise MalformedFrameError(
            f"invalid {raw['type']} frame ({exc.error_count()} errors)",
            _text(line),
        ) from exc


def decode_request(line: bytes | str) -> Request | None:
    """Parse one outbound request line; the inverse of :func:`encode`."""
    raw = _load(line, REQUEST_TYPES)
    if raw is None:
        return None
    try:
        return _REQUEST_ADAPTER.validate_python(raw)
    except ValidationError as exc:
        raise MalformedFrameError(
            f"invalid {raw['type']} request ({exc.error_count()} errors)",
            _text(line),
        ) from exc


def _text(line: bytes | str) -> str:
    if isinstance(line, (bytes, bytearray)):
        return line.decode("utf-8", errors="replace").strip()
    return line.strip()


def _load(line: bytes | str, known_types: frozenset[str]) -> dict[str, Any] | None:
    text = _text(line)
    if not text:
        return None

    try:
        raw = json.loads(text)
    except json.JSONDecodeError as exc:
        msg = f"invalid JSON at column {exc.colno}"
        raise MalformedFrameError(msg, text) from exc

    if not isinstance(raw, dict):
        msg = f"expected a JSON object, got {type(raw).__name__}"
        raise MalformedFrameError(msg, text)

    kind = raw.get("type")
    if not isinstance(kind, str) or kind not in known_types:
        msg = f"unknown message type {kind!r}" if kind else "missing message type"
        raise UnknownVariantError(msg, text)

    return raw
