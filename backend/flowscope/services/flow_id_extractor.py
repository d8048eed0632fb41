"""Flow ID extraction for correlating messages that belong to one request."""

import logging
import re
from collections.abc import Mapping
from typing import Any

from flowscope.config import get_settings
from flowscope.models.log import UNKNOWN, FlowIdResult
from flowscope.utils.json_values import as_object, is_present, parse_json, to_text

logger = logging.getLogger(__name__)

FLOW_ID_KEYS = ("flowId", "flowid", "flow-id", "flow_id")
RESOURCE_KEY = "resource"


def _normalize_header_name(name: str) -> str:
    return name.lower().replace("-", "").replace("_", "")


class FlowIdExtractor:
    """Derive a best-guess flow ID from a message.

    Priority order (first match wins):
    1. Transport header named flowId / flow-id / flow_id (live messages only)
    2. A flowId field at the root of the record
    3. resource.flowId
    4. Depth-first search through nested objects, skipping resource
    5. A flow ID mentioned in the record's message text, or in the message
       when it is itself JSON
    6. The raw payload, when it is JSON
    7. The transport key (live messages only)
    8. "unknown"
    """

    FLOW_ID_PATTERNS = [
        re.compile(r"Flow ID:?\s*([a-f0-9-]{36})", re.IGNORECASE),
        re.compile(r"flowId[=:]\s*([a-f0-9-]{36})", re.IGNORECASE),
    ]

    def __init__(self, max_depth: int | None = None):
        """Initialize the extractor with a recursion bound for nested search."""
        self.max_depth = max_depth if max_depth is not None else get_settings().flow_search_max_depth

    def _direct_flow_id(self, obj: Mapping[str, Any]) -> str | None:
        for key in FLOW_ID_KEYS:
            value = obj.get(key)
            if is_present(value):
                return to_text(value)
        return None

    def from_headers(self, headers: Mapping[str, Any] | None) -> str | None:
        """Find a flow ID transport header, ignoring case, dashes and underscores."""
        if not headers:
            return None
        for name, value in headers.items():
            if _normalize_header_name(str(name)) == "flowid" and is_present(value):
                return to_text(value)
        return None

    def from_object(self, value: Any, depth: int = 0) -> str | None:
        """Search a parsed JSON value for a flow ID field.

        Checks the root keys, then ``resource``, then every other nested value
        depth-first in key order.
        """
        if depth > self.max_depth:
            return None

        if isinstance(value, list):
            for item in value:
                found = self.from_object(item, depth + 1)
                if found:
                    return found
            return None

        obj = as_object(value)
        if obj is None:
            return None

        found = self._direct_flow_id(obj)
        if found:
            return found

        resource = as_object(obj.get(RESOURCE_KEY))
        if resource is not None:
            found = self._direct_flow_id(resource)
            if found:
                return found

        for key, nested in obj.items():
            if key == RESOURCE_KEY or not isinstance(nested, (dict, list)):
                continue
            found = self.from_object(nested, depth + 1)
            if found:
                return found

        return None

    def from_message_text(self, message: Any) -> str | None:
        """Find a flow ID in a free-text message, or inside it when it is JSON."""
        if not isinstance(message, str) or not message:
            return None

        for pattern in self.FLOW_ID_PATTERNS:
            match = pattern.search(message)
            if match:
                return match.group(1)

        ok, parsed = parse_json(message)
        if ok:
            return self.from_object(parsed)
        return None

    def from_json_text(self, text: Any) -> str | None:
        """Search raw payload text for a flow ID when it parses as JSON."""
        ok, parsed = parse_json(text)
        if not ok:
            return None
        return self.from_object(parsed)

    def extract(
        self,
        record: Any,
        raw_value: str | None = None,
        headers: Mapping[str, Any] | None = None,
        key: Any = None,
    ) -> FlowIdResult:
        """Derive the flow ID of a message and the strategy that found it.

        Args:
            record: Parsed structured fields (any JSON value)
            raw_value: Original payload text, searched when it is JSON
            headers: Transport headers of a live message
            key: Transport key of a live message

        Returns:
            FlowIdResult; ``("unknown", "none")`` when nothing matched.
        """
        try:
            found = self.from_headers(headers)
            if found:
                return FlowIdResult(found, "header")

            found = self.from_object(record)
            if not found:
                obj = as_object(record)
                if obj is not None:
                    found = self.from_message_text(obj.get("message"))
            if not found and raw_value is not None:
                found = self.from_json_text(raw_value)
            if found:
                return FlowIdResult(found, "json-content")

            if is_present(key):
                return FlowIdResult(to_text(key), "key")
        except RecursionError:
            logger.warning("Flow ID search aborted on deeply nested payload")

        return FlowIdResult(UNKNOWN, "none")


# Global instance
flow_id_extractor = FlowIdExtractor()
