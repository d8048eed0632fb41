"""Ingestion adapters feeding the correlation pipeline.

Three input shapes reach the pipeline:
- Live Kafka records, converted to RawRecord with decoded key and headers
- Uploaded JSON/NDJSON documents, parsed into raw log entries
- GraphQL subscription payloads, wrapped as RawRecord on a synthetic topic
"""

import itertools
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any

from flowscope.models.log import ParsedMessage, RawRecord
from flowscope.services.document_parser import parse_document
from flowscope.services.message_normalizer import MessageNormalizer, message_normalizer

logger = logging.getLogger(__name__)

GRAPHQL_TOPIC = "graphql"


def decode_bytes(value: Any) -> str | None:
    """Decode a Kafka key/value/header to text; invalid UTF-8 is replaced."""
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def decode_headers(headers: Any) -> dict[str, str]:
    """Convert Kafka headers (a list of name/bytes pairs, or a mapping) to text."""
    if not headers:
        return {}
    items = headers.items() if isinstance(headers, dict) else headers
    decoded = {}
    for item in items:
        try:
            name, value = item
        except (TypeError, ValueError):
            continue
        decoded[str(name)] = decode_bytes(value) or ""
    return decoded


def record_from_consumer_record(message: Any) -> RawRecord:
    """Build a RawRecord from a kafka-python ConsumerRecord."""
    timestamp = getattr(message, "timestamp", None)
    if not isinstance(timestamp, int) or timestamp < 0:
        timestamp = int(time.time() * 1000)

    return RawRecord(
        topic=message.topic,
        partition=message.partition,
        offset=str(message.offset),
        key=decode_bytes(message.key),
        value=decode_bytes(message.value) or "",
        headers=decode_headers(getattr(message, "headers", None)),
        timestamp=timestamp,
    )


def record_from_graphql(payload: Any, sequence: int, received_at: int | None = None) -> RawRecord:
    """Wrap a GraphQL subscription payload as a RawRecord."""
    try:
        value = json.dumps(payload, ensure_ascii=False)
    except (TypeError, ValueError):
        value = str(payload)

    return RawRecord(
        topic=GRAPHQL_TOPIC,
        partition=0,
        offset=str(sequence),
        key=None,
        value=value,
        headers={},
        timestamp=received_at if received_at is not None else int(time.time() * 1000),
    )


def read_upload_text(data: bytes) -> str:
    """Decode uploaded file content as UTF-8, dropping a byte-order mark."""
    return data.decode("utf-8-sig", errors="replace")


@dataclass
class DocumentIngestion:
    """Outcome of ingesting an uploaded document."""

    entries: list[dict[str, Any]] = field(default_factory=list)
    messages: list[ParsedMessage] = field(default_factory=list)
    error: str | None = None


class IngestionService:
    """Runs each input shape through parsing and normalization."""

    def __init__(self, normalizer: MessageNormalizer | None = None):
        """Initialize ingestion service."""
        self.normalizer = normalizer or message_normalizer
        self._graphql_sequence = itertools.count()
        self._sequence_lock = threading.Lock()

    def ingest_document(self, text: str) -> DocumentIngestion:
        """Parse an uploaded document and normalize its entries."""
        parsed = parse_document(text)
        messages = self.normalizer.normalize_entries(parsed.entries)
        dropped = len(parsed.entries) - len(messages)
        logger.info(
            f"Ingested document: {len(parsed.entries)} entries, "
            f"{len(messages)} messages, {dropped} dropped"
        )
        return DocumentIngestion(entries=parsed.entries, messages=messages, error=parsed.error)

    def ingest_entries(self, entries: list[dict[str, Any]]) -> list[ParsedMessage]:
        """Normalize previously parsed entries (e.g. a persisted document)."""
        return self.normalizer.normalize_entries(entries)

    def ingest_consumer_record(self, message: Any) -> tuple[RawRecord, ParsedMessage | None]:
        """Convert and normalize one kafka-python record."""
        record = record_from_consumer_record(message)
        return record, self.normalizer.normalize_record(record)

    def ingest_graphql(self, payload: Any, received_at: int | None = None) -> ParsedMessage | None:
        """Normalize one GraphQL subscription payload."""
        with self._sequence_lock:
            sequence = next(self._graphql_sequence)
        return self.normalizer.normalize_record(record_from_graphql(payload, sequence, received_at))


# Global instance
ingestion_service = IngestionService()
