"""Unit tests for flow ID extraction."""

import json

import pytest

from flowscope.services.flow_id_extractor import FlowIdExtractor

FLOW_UUID = "123e4567-e89b-12d3-a456-426614174000"


@pytest.fixture
def extractor():
    """Extractor with a small depth bound."""
    return FlowIdExtractor(max_depth=8)


class TestFromHeaders:
    """Test transport header lookup."""

    @pytest.mark.parametrize("name", ["flowId", "flowid", "flow-id", "flow_id", "FLOW-ID", "Flow_Id"])
    def test_header_name_variants(self, extractor, name):
        """Header names match ignoring case, dashes and underscores."""
        assert extractor.from_headers({name: "h-1"}) == "h-1"

    def test_unrelated_and_empty_headers(self, extractor):
        """Other headers and empty values are ignored."""
        assert extractor.from_headers({"traceId": "t-1", "flowId": ""}) is None
        assert extractor.from_headers(None) is None


class TestFromObject:
    """Test the structured search order."""

    def test_root_key_variants(self, extractor):
        """Each accepted root key spelling is found."""
        for key in ("flowId", "flowid", "flow-id", "flow_id"):
            assert extractor.from_object({key: "r-1"}) == "r-1"

    def test_root_wins_over_resource(self, extractor):
        """A root flow ID takes priority over resource.flowId."""
        record = {"resource": {"flowId": "res"}, "flowId": "root"}
        assert extractor.from_object(record) == "root"

    def test_resource_wins_over_nested(self, extractor):
        """resource.flowId takes priority over deeper fields."""
        record = {"a": {"flowId": "nested"}, "resource": {"flowId": "res"}}
        assert extractor.from_object(record) == "res"

    def test_nested_search_in_key_order(self, extractor):
        """Nested objects are searched depth-first in key order."""
        record = {"first": {"deeper": {"flow_id": "one"}}, "second": {"flowId": "two"}}
        assert extractor.from_object(record) == "one"

    def test_nested_search_through_arrays(self, extractor):
        """Objects inside arrays are searched too."""
        record = {"events": [{"name": "x"}, {"flowId": "in-array"}]}
        assert extractor.from_object(record) == "in-array"

    def test_non_string_flow_id_is_stringified(self, extractor):
        """Numeric flow IDs come back as text."""
        assert extractor.from_object({"flowId": 42}) == "42"

    def test_empty_flow_id_is_skipped(self, extractor):
        """Empty values fall through to the next candidate."""
        assert extractor.from_object({"flowId": "", "flow_id": "second"}) == "second"

    def test_depth_bound(self, extractor):
        """Flow IDs deeper than the bound are not found."""
        record: dict = {"flowId": "deep"}
        for _ in range(20):
            record = {"wrap": record}
        assert extractor.from_object(record) is None

    @pytest.mark.parametrize("value", [None, "text", 5, True])
    def test_non_objects(self, extractor, value):
        """Scalars have no flow ID."""
        assert extractor.from_object(value) is None


class TestFromMessageText:
    """Test free-text message lookup."""

    def test_flow_id_label(self, extractor):
        """A 'Flow ID:' label followed by a UUID is found."""
        assert extractor.from_message_text(f"Processing Flow ID: {FLOW_UUID} done") == FLOW_UUID

    def test_flow_id_assignment(self, extractor):
        """A flowId= assignment is found."""
        assert extractor.from_message_text(f"handled flowId={FLOW_UUID}") == FLOW_UUID

    def test_json_message(self, extractor):
        """A message that is itself JSON is searched structurally."""
        assert extractor.from_message_text(json.dumps({"resource": {"flowId": "m-1"}})) == "m-1"

    def test_short_ids_do_not_match_patterns(self, extractor):
        """Only 36-character identifiers match the text patterns."""
        assert extractor.from_message_text("Flow ID: abc") is None


class TestExtract:
    """Test the full priority order."""

    def test_header_beats_record(self, extractor):
        """A live header wins over a root field."""
        result = extractor.extract({"flowId": "R"}, headers={"flowId": "H"})
        assert result == ("H", "header")

    def test_record_without_headers(self, extractor):
        """Without headers the root field is used."""
        result = extractor.extract({"flowId": "R"})
        assert result.flow_id == "R"
        assert result.source == "json-content"

    def test_header_without_json_value(self, extractor):
        """A header is enough even when the payload is not JSON."""
        result = extractor.extract({}, raw_value="plain text", headers={"flow-id": "abc-123"})
        assert result == ("abc-123", "header")

    def test_resource_in_raw_value(self, extractor):
        """The raw payload is searched when the record has nothing."""
        raw = json.dumps({"resource": {"flowId": "xyz"}})
        result = extractor.extract({}, raw_value=raw)
        assert result == ("xyz", "json-content")

    def test_record_message_text(self, extractor):
        """The record's message text is searched before the raw payload."""
        record = {"message": f"Flow ID: {FLOW_UUID}"}
        result = extractor.extract(record, raw_value=json.dumps({"flowId": "raw"}))
        assert result == (FLOW_UUID, "json-content")

    def test_key_fallback(self, extractor):
        """The transport key is used when nothing else matches."""
        result = extractor.extract({}, raw_value="not json", key="order-7")
        assert result == ("order-7", "key")

    def test_unknown(self, extractor):
        """Nothing found yields the unknown marker."""
        result = extractor.extract({}, raw_value="not json")
        assert result == ("unknown", "none")

    def test_deeply_nested_raw_value_does_not_raise(self, extractor):
        """Very deep payloads end the search instead of raising."""
        raw = "[" * 5000 + "]" * 5000
        result = extractor.extract({}, raw_value=raw)
        assert result == ("unknown", "none")
