"""Parser for uploaded JSON and NDJSON log documents.

Splunk exports arrive either as one JSON document (an object or an array of
objects) or as newline-delimited JSON where each entry may itself be
pretty-printed over several lines. Entries are recovered one balanced
``{...}``/``[...]`` block at a time so a single bad entry does not lose the rest
of the file.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from flowscope.observability.metrics import documents_parsed_total
from flowscope.utils.json_values import loads_strict

logger = logging.getLogger(__name__)

EMPTY_DOCUMENT_ERROR = "File is empty"
NO_ENTRIES_ERROR = "Failed to parse any JSON entries"


@dataclass
class DocumentParseResult:
    """Entries recovered from a document plus a user-facing error, if any."""

    entries: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None


@dataclass
class _EntryBuffer:
    """Lines of the entry being accumulated and the scanner state over them."""

    lines: list[str] = field(default_factory=list)
    brace_depth: int = 0
    bracket_depth: int = 0
    in_string: bool = False
    escape_next: bool = False

    @property
    def text(self) -> str:
        return "\n".join(self.lines)

    @property
    def balanced(self) -> bool:
        return self.brace_depth == 0 and self.bracket_depth == 0

    def feed(self, line: str) -> None:
        """Append a line and update nesting depth outside of string literals."""
        self.lines.append(line)
        for char in line:
            if self.escape_next:
                self.escape_next = False
                continue
            if char == "\\":
                self.escape_next = True
                continue
            if char == '"':
                self.in_string = not self.in_string
                continue
            if self.in_string:
                continue
            if char == "{":
                self.brace_depth += 1
            elif char == "}":
                # Unmatched closers go negative and the buffer never balances again.
                self.brace_depth -= 1
            elif char == "[":
                self.bracket_depth += 1
            elif char == "]":
                self.bracket_depth -= 1


def _collect_entries(value: Any, entries: list[dict[str, Any]]) -> bool:
    """Add a parsed value to entries; objects are added, arrays are spread.

    Returns False when nothing usable was found in the value.
    """
    if isinstance(value, dict):
        entries.append(value)
        return True
    if isinstance(value, list):
        objects = [item for item in value if isinstance(item, dict)]
        entries.extend(objects)
        return len(objects) == len(value)
    return False


def parse_single_json(text: str) -> list[dict[str, Any]] | None:
    """Parse the whole text as one JSON document.

    Returns the entries for an object or an array of objects, or None when the
    text is not JSON, is a bare scalar, or is an array holding non-objects.
    """
    try:
        parsed = loads_strict(text)
    except (ValueError, RecursionError):
        return None
    if isinstance(parsed, dict):
        return [parsed]
    if isinstance(parsed, list) and all(isinstance(item, dict) for item in parsed):
        return parsed
    return None


def parse_ndjson(text: str) -> tuple[list[dict[str, Any]], list[str]]:
    """Parse newline-delimited JSON whose entries may span several lines.

    Returns:
        Tuple of (entries, per-line error messages).
    """
    entries: list[dict[str, Any]] = []
    errors: list[str] = []
    buffer = _EntryBuffer()

    for line_number, line in enumerate(text.split("\n"), start=1):
        if not line.strip() and not buffer.text.strip():
            continue

        buffer.feed(line)

        if buffer.balanced and buffer.text.strip():
            try:
                parsed = loads_strict(buffer.text.strip())
            except (ValueError, RecursionError) as e:
                errors.append(f"Line {line_number}: {e}")
            else:
                if not _collect_entries(parsed, entries):
                    errors.append(f"Line {line_number}: Invalid JSON format")
            buffer = _EntryBuffer()

    if buffer.text.strip() and buffer.balanced:
        try:
            parsed = loads_strict(buffer.text.strip())
        except (ValueError, RecursionError):
            errors.append("Final entry: Parse error")
        else:
            if not _collect_entries(parsed, entries):
                errors.append("Final entry: Invalid JSON format")

    return entries, errors


def parse_document(text: str) -> DocumentParseResult:
    """Parse an uploaded document into raw log entries.

    Partial success is preferred: when some NDJSON entries fail, the recovered
    entries are returned together with a summary of the failures.
    """
    if not isinstance(text, str) or not text.strip():
        documents_parsed_total.labels(status="empty").inc()
        return DocumentParseResult(entries=[], error=EMPTY_DOCUMENT_ERROR)

    single = parse_single_json(text)
    if single:
        documents_parsed_total.labels(status="ok").inc()
        return DocumentParseResult(entries=single, error=None)
    if single is not None:
        documents_parsed_total.labels(status="failed").inc()
        return DocumentParseResult(entries=[], error=NO_ENTRIES_ERROR)

    entries, errors = parse_ndjson(text)
    if not entries:
        logger.warning(f"No JSON entries recovered from document ({len(errors)} error(s))")
        documents_parsed_total.labels(status="failed").inc()
        return DocumentParseResult(entries=[], error=NO_ENTRIES_ERROR)

    if errors:
        logger.info(f"Parsed {len(entries)} entries with {len(errors)} error(s)")
        documents_parsed_total.labels(status="partial").inc()
        return DocumentParseResult(
            entries=entries,
            error=(
                f"Parsed {len(entries)} entries with {len(errors)} error(s). "
                f"First error: {errors[0]}"
            ),
        )

    documents_parsed_total.labels(status="ok").inc()
    return DocumentParseResult(entries=entries, error=None)
