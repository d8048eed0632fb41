"""Grouping of normalized messages into flows, and the user-facing filters."""

from collections.abc import Iterable

from flowscope.models.log import (
    UNKNOWN,
    FilterType,
    FlowGroup,
    FlowSummary,
    FlowView,
    MessageFilter,
    ParsedMessage,
)
from flowscope.services.field_extractor import is_unknown_level

# Flow IDs that do not link messages together
UNLINKED_FLOW_IDS = {UNKNOWN, "error"}


def sort_messages(messages: Iterable[ParsedMessage], ascending: bool = False) -> list[ParsedMessage]:
    """Sort messages by timestamp, newest first unless ascending."""
    return sorted(messages, key=lambda m: m.timestamp, reverse=not ascending)


def group_flows(messages: Iterable[ParsedMessage], ascending: bool = False) -> list[FlowGroup]:
    """Group messages by flow ID.

    Groups are ordered by their most recent message, most recently active
    first. Messages inside a group are newest first unless ascending.
    """
    groups: dict[str, list[ParsedMessage]] = {}
    for message in messages:
        groups.setdefault(message.flow_id, []).append(message)

    result = []
    for flow_id, flow_messages in groups.items():
        timestamps = [m.timestamp for m in flow_messages]
        result.append(
            FlowGroup(
                flow_id=flow_id,
                messages=sort_messages(flow_messages, ascending=ascending),
                first_message=min(timestamps),
                last_message=max(timestamps),
            )
        )

    return sorted(result, key=lambda g: g.last_message, reverse=True)


def filter_by_unknown_level(messages: Iterable[ParsedMessage]) -> list[ParsedMessage]:
    return [m for m in messages if not is_unknown_level(m.level)]


def filter_by_type(
    messages: Iterable[ParsedMessage], filter_type: FilterType, filter_value: str
) -> list[ParsedMessage]:
    """Keep messages matching a container name (exact) or a level (any case)."""
    messages = list(messages)
    if filter_type == "none" or not filter_value:
        return messages
    if filter_type == "container":
        return [m for m in messages if m.container_name == filter_value]
    if filter_type == "level":
        wanted = filter_value.lower()
        return [m for m in messages if m.level is not None and m.level.lower() == wanted]
    return messages


def _search_fields(message: ParsedMessage, include_routing_fields: bool) -> list[str]:
    fields = [message.value, message.container_name or "", message.level or ""]
    if include_routing_fields:
        fields.extend([message.topic, message.flow_id, message.key or ""])
    return fields


def filter_by_search_query(
    messages: Iterable[ParsedMessage], search_query: str, include_routing_fields: bool = False
) -> list[ParsedMessage]:
    """Case-insensitive substring search; a hit in any searched field matches.

    The value, container name and level are always searched. The live view
    also searches topic, flow ID and key (include_routing_fields).
    """
    messages = list(messages)
    query = (search_query or "").lower()
    if not query.strip():
        return messages
    return [
        m
        for m in messages
        if any(query in field.lower() for field in _search_fields(m, include_routing_fields))
    ]


def filter_messages(
    messages: Iterable[ParsedMessage], message_filter: MessageFilter | None = None
) -> list[ParsedMessage]:
    """Apply unknown-level exclusion, the type filter, then the search query."""
    message_filter = message_filter or MessageFilter()
    filtered = filter_by_unknown_level(messages)
    filtered = filter_by_type(filtered, message_filter.filter_type, message_filter.filter_value)
    return filter_by_search_query(
        filtered,
        message_filter.search_query,
        include_routing_fields=message_filter.include_routing_fields,
    )


def summarize_flows(messages: Iterable[ParsedMessage]) -> FlowSummary:
    """Count distinct flows, messages, and messages carrying a real flow ID."""
    messages = list(messages)
    return FlowSummary(
        flow_count=len({m.flow_id for m in messages}),
        message_count=len(messages),
        linked_count=sum(1 for m in messages if m.flow_id not in UNLINKED_FLOW_IDS),
    )


def build_flow_view(
    messages: Iterable[ParsedMessage],
    message_filter: MessageFilter | None = None,
    ascending: bool = False,
) -> FlowView:
    """Filter messages, then sort and group what remains."""
    filtered = filter_messages(messages, message_filter)
    return FlowView(
        summary=summarize_flows(filtered),
        messages=sort_messages(filtered, ascending=ascending),
        flows=group_flows(filtered, ascending=ascending),
    )
