from __future__ import annotations

import json
from typing import Any, Literal

from legalyze.utils.error_taxonomy import ResponseFormatError

ValueShape = Literal["object", "array"]

_BRACKETS: dict[ValueShape, tuple[str, str]] = {
    "object": ("{", "}"),
    "array": ("[", "]"),
}


def extract_structured_value(raw_text: str, shape: ValueShape) -> Any:
    """Parse the first balanced JSON object or array embedded in ``raw_text``.

    Prose before or after the value (and markdown fences) is ignored. Brackets
    inside JSON strings do not affect balancing.
    """
    if shape not in _BRACKETS:
        raise ValueError(f"Unsupported value shape: {shape}")

    candidate = find_balanced_json(raw_text or "", shape)
    if candidate is None:
        raise ResponseFormatError(f"No JSON {shape} found in response")

    try:
        value = json.loads(candidate)
    except json.JSONDecodeError as error:
        raise ResponseFormatError(
            f"Failed to parse JSON {shape} from response: {error}"
        ) from error

    expected_type = dict if shape == "object" else list
    if not isinstance(value, expected_type):
        raise ResponseFormatError(f"Parsed value is not a JSON {shape}")

    return value


def find_balanced_json(text: str, shape: ValueShape) -> str | None:
    opener, closer = _BRACKETS[shape]
    start = text.find(opener)
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char in "{[":
            depth += 1
        elif char in "}]":
            depth -= 1
            if depth == 0:
                if char != closer:
                    return None
                return text[start : index + 1]
            if depth < 0:
                return None

    return None
