"""Client-side JSON Schema validation of a turn's final response."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from jsonschema import exceptions as jsonschema_exceptions
from jsonschema import validators

from codexline.errors import InvalidOutputSchemaError, SchemaViolationError

logger = logging.getLogger(__name__)

#: Path reported for violations at the document root.
ROOT_PATH = "$"


@dataclass(frozen=True)
class SchemaViolation:
    """One place where a payload does not satisfy the output schema."""

    path: str
    message: str


def check_schema(schema: Any) -> None:
    """Reject *schema* unless it is a JSON object valid for its own draft.

    Raises:
        InvalidOutputSchemaError: The schema is not an object or is invalid.
    """
    if not isinstance(schema, dict):
        msg = f"output schema must be a JSON object, got {type(schema).__name__}"
        raise InvalidOutputSchemaError(msg)
    validator_cls = validators.validator_for(schema)
    try:
        validator_cls.check_schema(schema)
    except jsonschema_exceptions.SchemaError as exc:
        msg = f"invalid output schema: {exc.message}"
        raise InvalidOutputSchemaError(msg) from exc


def format_path(parts: Iterable[str | int]) -> str:
    """Render a JSON pointer as ``a.b[0].c``; the root is ``$``."""
    out = ""
    for part in parts:
        if isinstance(part, int):
            out = f"{out or ROOT_PATH}[{part}]"
        elif out:
            out += f".{part}"
        else:
            out = str(part)
    return out or ROOT_PATH


def validate(payload: Any, schema: dict[str, Any]) -> list[SchemaViolation]:
    """Return every violation of *schema* by *payload*, ordered by path."""
    validator_cls = validators.validator_for(schema)
    validator = validator_cls(schema)
    violations = [
        SchemaViolation(path=format_path(error.absolute_path), message=error.message)
        for error in validator.iter_errors(payload)
    ]
    violations.sort(key=lambda v: (v.path, v.message))
    return violations


def validate_final_response(text: str, schema: dict[str, Any]) -> Any:
    """Parse *text* as JSON and validate it against *schema*.

    Returns the parsed payload.

    Raises:
        SchemaViolationError: The text is not JSON or violates the schema.
    """
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        violation = SchemaViolation(
            path=ROOT_PATH, message=f"final response is not valid JSON: {exc.msg}"
        )
        raise SchemaViolationError([violation]) from exc

    violations = validate(payload, schema)
    if violations:
        logger.debug("Final response has %d schema violation(s)", len(violations))
        raise SchemaViolationError(violations)
    return payload
