"""Guards for working with untyped JSON values.

Parsed log payloads are arbitrary JSON. Instead of assuming a shape, callers go
through these helpers, which never raise and degrade to ``None`` when a value
does not have the expected type.
"""

import json
from typing import Any

JsonValue = None | bool | int | float | str | list[Any] | dict[str, Any]


def _reject_constant(name: str) -> Any:
    raise ValueError(f"Invalid JSON constant: {name}")


def loads_strict(text: str) -> JsonValue:
    """Parse JSON text, rejecting NaN/Infinity like a browser JSON parser.

    Raises:
        ValueError: If the text is not valid JSON (json.JSONDecodeError included).
    """
    return json.loads(text, parse_constant=_reject_constant)


def parse_json(text: Any) -> tuple[bool, JsonValue]:
    """Try to parse text as JSON.

    Returns:
        ``(True, value)`` on success, ``(False, None)`` when the input is not a
        string or not valid JSON. A literal ``null`` document yields
        ``(True, None)``.
    """
    if not isinstance(text, str):
        return False, None
    try:
        return True, loads_strict(text)
    except (ValueError, RecursionError):
        return False, None


def parse_json_object(text: Any) -> dict[str, Any] | None:
    """Parse text as JSON and return it only when it is an object."""
    ok, value = parse_json(text)
    if ok and isinstance(value, dict):
        return value
    return None


def as_object(value: Any) -> dict[str, Any] | None:
    """Return the value when it is a JSON object, else None."""
    return value if isinstance(value, dict) else None


def drop_whole_float_fractions(value: Any) -> Any:
    """Turn whole floats into ints, recursively, so they serialize as `1` rather than `1.0`."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, list):
        return [drop_whole_float_fractions(item) for item in value]
    if isinstance(value, dict):
        return {k: drop_whole_float_fractions(v) for k, v in value.items()}
    return value


def is_present(value: Any) -> bool:
    """Truthiness of a JSON value as seen by the dashboard.

    Objects and arrays always count as present, even when empty. Scalars count
    when they are truthy: ``null``, ``false``, ``0`` and ``""`` are absent.
    """
    if isinstance(value, (dict, list)):
        return True
    return bool(value)


def to_text(value: Any) -> str:
    """Stringify a JSON value.

    Strings are returned unchanged, booleans and null use their JSON spelling,
    whole floats drop the trailing ``.0`` and containers are serialized
    compactly.
    """
    if isinstance(value, str):
        return value
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float)):
        return str(value)
    try:
        return json.dumps(drop_whole_float_fractions(value), ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError):
        return str(value)
