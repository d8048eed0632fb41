"""Persistence of the last uploaded document and the last live session.

Each value is stored as a JSON file named after its key under the configured
storage directory. Failures are logged and never raised: losing the saved view
must not break an upload or a live stream.
"""

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from flowscope.config import get_settings
from flowscope.models.log import ParsedMessage

logger = logging.getLogger(__name__)

STORAGE_KEY_JSON_DATA = "splunk-json-viewer-data"
STORAGE_KEY_FILE_NAME = "splunk-json-viewer-file-name"
STORAGE_KEY_KAFKA_BROKER = "kafka-broker"
STORAGE_KEY_KAFKA_TOPICS = "kafka-topics"
STORAGE_KEY_KAFKA_MESSAGES = "kafka-messages"

_messages_adapter = TypeAdapter(list[ParsedMessage])


class StoredDocument(BaseModel):
    """The last uploaded document."""

    file_name: str
    entries: list[dict[str, Any]] = Field(default_factory=list)


class StoredLiveSession(BaseModel):
    """The last live session's connection details and messages."""

    broker: str
    topics: str
    messages: list[ParsedMessage] = Field(default_factory=list)


class StorageService:
    """File-backed key/value store for the dashboard's saved state."""

    def __init__(self, storage_dir: str | Path | None = None):
        """Initialize the store; the directory is created on first write."""
        self.storage_dir = Path(storage_dir or get_settings().storage_dir)

    def _path(self, key: str) -> Path:
        return self.storage_dir / f"{key}.json"

    def _write(self, key: str, value: Any) -> None:
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(value, ensure_ascii=False), encoding="utf-8")
        tmp_path.replace(path)

    def _read(self, key: str) -> Any:
        path = self._path(key)
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

    def _remove(self, *keys: str) -> None:
        for key in keys:
            self._path(key).unlink(missing_ok=True)

    def save_document(self, entries: list[dict[str, Any]], file_name: str) -> bool:
        """Save the uploaded document's entries under the document key pair."""
        try:
            self._write(STORAGE_KEY_JSON_DATA, entries)
            self._write(STORAGE_KEY_FILE_NAME, file_name)
            logger.debug(f"Saved document {file_name} ({len(entries)} entries)")
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"Failed to save document: {e}")
            return False

    def load_document(self) -> StoredDocument | None:
        """Load the last uploaded document, or None when nothing valid is saved."""
        try:
            entries = self._read(STORAGE_KEY_JSON_DATA)
            file_name = self._read(STORAGE_KEY_FILE_NAME)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load document: {e}")
            return None

        if not isinstance(entries, list) or not isinstance(file_name, str) or not file_name:
            return None
        return StoredDocument(
            file_name=file_name,
            entries=[entry for entry in entries if isinstance(entry, dict)],
        )

    def clear_document(self) -> None:
        try:
            self._remove(STORAGE_KEY_JSON_DATA, STORAGE_KEY_FILE_NAME)
        except OSError as e:
            logger.warning(f"Failed to clear document: {e}")

    def save_live_session(self, broker: str, topics: str, messages: list[ParsedMessage]) -> bool:
        """Save the live session's broker, topics and messages."""
        try:
            self._write(STORAGE_KEY_KAFKA_BROKER, broker)
            self._write(STORAGE_KEY_KAFKA_TOPICS, topics)
            self._write(
                STORAGE_KEY_KAFKA_MESSAGES,
                _messages_adapter.dump_python(messages, mode="json", by_alias=True),
            )
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"Failed to save live session: {e}")
            return False

    def load_live_session(self) -> StoredLiveSession | None:
        """Load the last live session, or None when nothing valid is saved."""
        try:
            broker = self._read(STORAGE_KEY_KAFKA_BROKER)
            topics = self._read(STORAGE_KEY_KAFKA_TOPICS)
            messages = self._read(STORAGE_KEY_KAFKA_MESSAGES) or []
            if not isinstance(broker, str) or not isinstance(topics, str):
                return None
            return StoredLiveSession(
                broker=broker,
                topics=topics,
                messages=_messages_adapter.validate_python(messages),
            )
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(f"Failed to load live session: {e}")
            return None

    def clear_live_session(self) -> None:
        try:
            self._remove(STORAGE_KEY_KAFKA_BROKER, STORAGE_KEY_KAFKA_TOPICS, STORAGE_KEY_KAFKA_MESSAGES)
        except OSError as e:
            logger.warning(f"Failed to clear live session: {e}")


# Global instance
storage_service = StorageService()
