"""Normalization of uploaded log entries and live records into ParsedMessage."""

import json
import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import Any

from flowscope.models.log import ParsedMessage, RawLogEntry, RawRecord
from flowscope.observability.metrics import messages_dropped_total, messages_normalized_total
from flowscope.services.field_extractor import (
    extract_command_and_error,
    extract_container_name,
    extract_level,
    extract_message,
    format_json_value,
    is_unknown_level,
)
from flowscope.services.flow_id_extractor import FlowIdExtractor, flow_id_extractor
from flowscope.utils.json_values import as_object, parse_json

logger = logging.getLogger(__name__)

TOPIC_SPLUNK_JSON = "splunk-json"
FLOW_ID_SOURCE_SPLUNK = "splunk"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def timestamp_from_millis(value: Any) -> datetime | None:
    """Convert epoch milliseconds to an aware datetime."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


class MessageNormalizer:
    """Turns raw entries into ParsedMessage values.

    Entries whose level is "unknown" are dropped. Uploaded entries get their
    index appended to the flow ID so each log line renders as its own flow;
    live records keep the bare flow ID so a request can be followed across
    topics.
    """

    def __init__(
        self,
        extractor: FlowIdExtractor | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize the normalizer.

        Args:
            extractor: Flow ID extractor (defaults to the shared instance)
            clock: Source of "now" for entries without a timestamp
        """
        self.extractor = extractor or flow_id_extractor
        self.clock = clock

    def normalize_entry(self, entry: RawLogEntry | dict[str, Any], index: int) -> ParsedMessage | None:
        """Normalize one uploaded log entry.

        Args:
            entry: Raw entry (model or parsed document object)
            index: Position of the entry in the document

        Returns:
            ParsedMessage, or None when the entry's level is "unknown"
        """
        entry = RawLogEntry.from_document(entry)
        result = entry.result
        structured = as_object(result.get("structured")) or {}

        raw = result.get("_raw")
        raw_message = raw if isinstance(raw, str) and raw else None
        if raw_message is not None:
            raw_value = raw_message
        elif raw:
            raw_value = json.dumps(raw, ensure_ascii=False)
        else:
            raw_value = json.dumps(result, ensure_ascii=False)

        level = extract_level(result, structured)
        if is_unknown_level(level):
            logger.debug(f"Dropping entry {index}: unknown level")
            messages_dropped_total.labels(reason="unknown_level").inc()
            return None

        flow = self.extractor.extract(structured, raw_value=raw_value)
        command = extract_command_and_error(raw_value, structured)

        messages_normalized_total.labels(source="upload").inc()
        return ParsedMessage(
            id=f"json-{index}",
            flow_id=f"{flow.flow_id}-{index}",
            timestamp=parse_timestamp(result.get("@timestamp")) or self.clock(),
            topic=TOPIC_SPLUNK_JSON,
            partition=0,
            offset=str(index),
            key=command.command_name or None,
            value=format_json_value(raw_value),
            flow_id_source=FLOW_ID_SOURCE_SPLUNK,
            container_name=extract_container_name(result),
            level=level,
            raw_message=raw_message,
            structured_message=extract_message(result, structured),
            command_name=command.command_name,
            success=command.success,
            error_message=command.error_message,
            source_microservice=command.source_microservice,
        )

    def normalize_entries(self, entries: Iterable[RawLogEntry | dict[str, Any]]) -> list[ParsedMessage]:
        """Normalize a whole uploaded document, dropping unknown-level entries."""
        messages = []
        for index, entry in enumerate(entries):
            message = self.normalize_entry(entry, index)
            if message is not None:
                messages.append(message)
        return messages

    def normalize_record(self, record: RawRecord) -> ParsedMessage | None:
        """Normalize one live record.

        Returns:
            ParsedMessage, or None when the payload declares an "unknown" level
        """
        ok, parsed = parse_json(record.value)
        envelope = as_object(parsed) if ok else None
        structured = as_object(envelope.get("structured")) if envelope else None

        level = extract_level(envelope, structured)
        if is_unknown_level(level):
            logger.debug(f"Dropping record {record.topic}-{record.partition}-{record.offset}: unknown level")
            messages_dropped_total.labels(reason="unknown_level").inc()
            return None

        flow = self.extractor.extract(
            parsed if ok else {},
            raw_value=record.value,
            headers=record.headers,
            key=record.key,
        )
        command = extract_command_and_error(record.value, structured)

        messages_normalized_total.labels(source="live").inc()
        return ParsedMessage(
            id=f"{record.topic}-{record.partition}-{record.offset}",
            flow_id=flow.flow_id,
            timestamp=timestamp_from_millis(record.timestamp) or self.clock(),
            topic=record.topic,
            partition=record.partition,
            offset=record.offset,
            key=record.key or None,
            value=format_json_value(record.value),
            flow_id_source=flow.source,
            container_name=extract_container_name(envelope),
            level=level,
            raw_message=record.value or None,
            structured_message=extract_message(envelope, structured),
            command_name=command.command_name,
            success=command.success,
            error_message=command.error_message,
            source_microservice=command.source_microservice,
        )


# Global instance
message_normalizer = MessageNormalizer()
