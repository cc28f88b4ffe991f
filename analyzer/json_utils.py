"""Decoding of JSON payloads returned by the LLM collaborator."""

import json
import re
from typing import Any

from .errors import CollaboratorError


_FENCE_PATTERN = re.compile(r"```(?:json)?[ \t]*\n?", re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    """Remove markdown code fences (```json ... ```) around a response."""
    return _FENCE_PATTERN.sub("", text).strip()


def decode_json_response(response_text: str | None, stage: str) -> dict:
    """Decode a collaborator response into a JSON object.

    Handles the common ways models wrap their output: markdown code fences,
    an extra layer of string quoting, and prose before or after the payload.

    Args:
        response_text: Raw text returned by the model.
        stage: Pipeline stage name, used in error messages.

    Returns:
        The decoded dict.

    Raises:
        CollaboratorError: If no JSON object can be decoded.
    """
    if not response_text or not response_text.strip():
        raise CollaboratorError(stage, "Empty response", response_text)

    cleaned = strip_code_fences(response_text)

    # Some models return the JSON document as a quoted string
    if cleaned.startswith('"') and cleaned.endswith('"'):
        try:
            unquoted = json.loads(cleaned)
            if isinstance(unquoted, str):
                cleaned = unquoted.strip()
        except json.JSONDecodeError:
            pass

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        data = _decode_embedded(cleaned)
        if data is None:
            raise CollaboratorError(stage, "Response is not valid JSON", response_text)

    if not isinstance(data, dict):
        raise CollaboratorError(
            stage,
            f"Expected a JSON object, got {type(data).__name__}",
            response_text,
        )
    return data


def _decode_embedded(text: str) -> Any:
    """Try to decode the outermost JSON object embedded in prose."""
    json_start = text.find("{")
    json_end = text.rfind("}") + 1

    if json_start == -1 or json_end <= json_start:
        return None

    try:
        return json.loads(text[json_start:json_end])
    except json.JSONDecodeError:
        return None


def require(data: dict, key: str, expected_type: type | tuple[type, ...], stage: str) -> Any:
    """Fetch a required key from a decoded payload and check its type.

    Raises:
        CollaboratorError: If the key is missing or has the wrong type.
    """
    if not isinstance(data, dict) or key not in data:
        raise CollaboratorError(stage, f"Missing required field '{key}'")

    value = data[key]
    # bool is an int subclass; indices and counts must be real integers
    if expected_type is int and isinstance(value, bool):
        raise CollaboratorError(stage, f"Field '{key}' must be an integer")
    if not isinstance(value, expected_type):
        raise CollaboratorError(
            stage,
            f"Field '{key}' has type {type(value).__name__}",
        )
    return value
