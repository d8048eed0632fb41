"""Field extraction for log entries: command, verdict, level and message text."""

import json
from collections.abc import Mapping
from typing import Any

from flowscope.models.log import UNKNOWN, CommandInfo
from flowscope.utils.json_values import (
    as_object,
    drop_whole_float_fractions,
    is_present,
    parse_json,
    parse_json_object,
    to_text,
)

JSON_INDENT = 2


def extract_command_info(resource: Any) -> CommandInfo:
    """Extract command name, success verdict and error from a resource envelope."""
    resource = as_object(resource)
    if resource is None:
        return CommandInfo()

    info = CommandInfo()

    command_id = resource.get("commandId")
    if is_present(command_id):
        info.command_name = to_text(command_id).split(":", 1)[0]
    elif is_present(resource.get("type")):
        info.command_name = to_text(resource["type"])

    # A present but falsy value (false, null, 0) is a negative verdict
    if "success" in resource:
        info.success = is_present(resource["success"])

    payload = as_object(resource.get("payload"))
    if payload is not None:
        if is_present(payload.get("errorMessage")):
            info.error_message = to_text(payload["errorMessage"])
        elif is_present(payload.get("error")):
            info.error_message = to_text(payload["error"])

    return info


def extract_source_microservice(parsed: Mapping[str, Any], resource: Mapping[str, Any]) -> str | None:
    """Find the emitting service in the envelope or the resource."""
    for candidate in (
        parsed.get("sourceMicroservice"),
        resource.get("sourceMicroservice"),
        parsed.get("host"),
        resource.get("host"),
    ):
        if is_present(candidate):
            return to_text(candidate)
    return None


def _command_info_from_envelope(envelope: dict[str, Any]) -> CommandInfo:
    resource = as_object(envelope.get("resource")) or {}
    info = extract_command_info(resource)
    info.source_microservice = extract_source_microservice(envelope, resource)
    return info


def extract_command_and_error(raw_value: Any, structured: Mapping[str, Any] | None = None) -> CommandInfo:
    """Extract command info from the raw payload, else from a JSON structured.message.

    The structured message is only consulted when the raw payload is not JSON.
    """
    ok, parsed = parse_json(raw_value)
    if ok:
        envelope = as_object(parsed)
        return _command_info_from_envelope(envelope) if envelope is not None else CommandInfo()

    structured = as_object(structured) or {}
    message_envelope = parse_json_object(structured.get("message"))
    if message_envelope is not None:
        return _command_info_from_envelope(message_envelope)

    return CommandInfo()


def _first_text(candidates: list[Any], strip: bool) -> str | None:
    for candidate in candidates:
        if not is_present(candidate):
            continue
        text = to_text(candidate)
        if strip:
            text = text.strip()
            if not text:
                continue
        return text
    return None


def extract_level(result: Mapping[str, Any] | None, structured: Mapping[str, Any] | None = None) -> str | None:
    """Extract the severity level of an entry.

    Checks a flattened ``structured.level`` key, then the nested structured
    level, then a root ``level``. Returns None when no level is present, which
    is distinct from the "unknown" level.
    """
    result = as_object(result) or {}
    structured = as_object(structured) or {}
    return _first_text(
        [result.get("structured.level"), structured.get("level"), result.get("level")],
        strip=True,
    )


def is_unknown_level(level: str | None) -> bool:
    """True when the level is the explicit "unknown" marker (any case)."""
    return bool(level) and level.lower() == UNKNOWN


def extract_message(result: Mapping[str, Any] | None, structured: Mapping[str, Any] | None = None) -> str | None:
    """Extract human-readable message text with the same precedence as the level."""
    result = as_object(result) or {}
    structured = as_object(structured) or {}
    return _first_text(
        [result.get("structured.message"), structured.get("message"), result.get("message")],
        strip=False,
    )


def extract_container_name(result: Mapping[str, Any] | None) -> str | None:
    """Kubernetes container name, flattened or nested."""
    result = as_object(result) or {}
    flattened = result.get("kubernetes.container_name")
    if is_present(flattened):
        return to_text(flattened)
    kubernetes = as_object(result.get("kubernetes"))
    if kubernetes is not None and is_present(kubernetes.get("container_name")):
        return to_text(kubernetes["container_name"])
    return None


def format_json_value(raw_value: str) -> str:
    """Pretty-print the value when it is JSON, otherwise return it verbatim."""
    ok, parsed = parse_json(raw_value)
    if not ok:
        return raw_value
    return json.dumps(drop_whole_float_fractions(parsed), indent=JSON_INDENT, ensure_ascii=False)
