"""Pydantic models for raw log entries, live records and correlated flows."""

from datetime import datetime, timezone
from typing import Any, Literal, NamedTuple

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from pydantic.alias_generators import to_camel

from flowscope.utils.json_values import is_present

FlowIdSource = Literal["header", "json-content", "key", "splunk", "none"]
FilterType = Literal["none", "container", "level"]

UNKNOWN = "unknown"


class CamelModel(BaseModel):
    """Base model serialized with the dashboard's camelCase field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RawLogEntry(BaseModel):
    """One entry of an uploaded Splunk export (``{"preview": ..., "result": {...}}``)."""

    preview: bool = False
    result: dict[str, Any] = Field(default_factory=dict)

    @field_validator("preview", mode="before")
    @classmethod
    def coerce_preview(cls, v: Any) -> bool:
        """Accept any JSON value for the provenance flag."""
        return is_present(v)

    @field_validator("result", mode="before")
    @classmethod
    def coerce_result(cls, v: Any) -> dict[str, Any]:
        """Treat a missing, null or non-object result as empty."""
        return v if isinstance(v, dict) else {}

    @classmethod
    def from_document(cls, value: Any) -> "RawLogEntry":
        """Build an entry from one parsed document value of any shape."""
        if isinstance(value, RawLogEntry):
            return value
        if not isinstance(value, dict):
            return cls()
        return cls.model_validate(value)


class RawRecord(BaseModel):
    """A live message handed over by an ingestion adapter."""

    topic: str
    partition: int = 0
    offset: str = "0"
    key: str | None = None
    value: str = ""
    headers: dict[str, str] = Field(default_factory=dict)
    timestamp: int | None = None  # epoch millis


class FlowIdResult(NamedTuple):
    """A derived flow identifier and the strategy that produced it."""

    flow_id: str
    source: FlowIdSource


class CommandInfo(BaseModel):
    """Command details taken from a ``resource`` envelope."""

    command_name: str | None = None
    success: bool | None = None  # None means no verdict
    error_message: str | None = None
    source_microservice: str | None = None


class ParsedMessage(CamelModel):
    """A normalized message ready for grouping and display."""

    id: str
    flow_id: str
    timestamp: datetime
    topic: str
    partition: int = 0
    offset: str = "0"
    key: str | None = None
    value: str = ""
    flow_id_source: FlowIdSource = "none"
    container_name: str | None = None
    level: str | None = None
    raw_message: str | None = None
    structured_message: str | None = None
    command_name: str | None = None
    success: bool | None = None
    error_message: str | None = None
    source_microservice: str | None = None

    @field_validator("timestamp")
    @classmethod
    def ensure_timezone(cls, v: datetime) -> datetime:
        """Naive timestamps are taken as UTC so all messages compare."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class FlowGroup(CamelModel):
    """Messages sharing one flow ID, ordered by time."""

    flow_id: str
    messages: list[ParsedMessage]
    first_message: datetime
    last_message: datetime

    @computed_field(alias="messageCount")
    @property
    def message_count(self) -> int:
        return len(self.messages)

    @computed_field(alias="durationSeconds")
    @property
    def duration_seconds(self) -> int:
        return round((self.last_message - self.first_message).total_seconds())


class MessageFilter(CamelModel):
    """User-selected filters; container and level filters are mutually exclusive."""

    filter_type: FilterType = "none"
    filter_value: str = ""
    search_query: str = ""
    include_routing_fields: bool = False


class FlowSummary(CamelModel):
    """Counters shown above the flow view."""

    flow_count: int = 0
    message_count: int = 0
    linked_count: int = 0


class FlowView(CamelModel):
    """Filtered messages with their flow groups and counters."""

    summary: FlowSummary
    messages: list[ParsedMessage]
    flows: list[FlowGroup]
