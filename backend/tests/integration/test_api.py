"""Integration tests for the HTTP API."""

import json
from datetime import datetime, timezone
from unittest.mock import Mock, patch

import pytest
from fastapi.testclient import TestClient

from flowscope.config import get_settings
from flowscope.main import app
from flowscope.models.log import ParsedMessage
from flowscope.services.exceptions import KafkaConnectError, KafkaProduceError
from flowscope.services.ingestion_service import IngestionService
from flowscope.services.storage_service import StorageService

client = TestClient(app)


@pytest.fixture(autouse=True)
def storage(tmp_path):
    """Route every persistence call to a temporary directory."""
    storage = StorageService(tmp_path)
    with (
        patch("flowscope.api.v1.documents.storage_service", storage),
        patch("flowscope.api.v1.kafka.storage_service", storage),
    ):
        yield storage


@pytest.fixture
def registry():
    """The application's session registry, emptied after each test."""
    registry = app.state.session_registry
    yield registry
    registry.dispose_all()


def splunk_line(flow_id: str, level: str = "INFO", container: str = "api", ts: str = "") -> str:
    result = {
        "_raw": json.dumps({"flowId": flow_id, "message": f"handled {flow_id}"}),
        "structured": {"level": level},
        "kubernetes.container_name": container,
    }
    if ts:
        result["@timestamp"] = ts
    return json.dumps({"preview": False, "result": result})


def make_message(message_id: str, flow_id: str, seconds: int, level: str = "INFO") -> dict:
    return ParsedMessage(
        id=message_id,
        flow_id=flow_id,
        timestamp=datetime(2024, 1, 15, 10, 0, seconds, tzinfo=timezone.utc),
        topic="orders",
        level=level,
    ).model_dump(mode="json", by_alias=True)


class TestHealthEndpoints:
    """Test service endpoints."""

    def test_health(self):
        """GET /health reports the service."""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_root(self):
        """GET / reports the version."""
        response = client.get("/")
        assert response.status_code == 200
        assert "version" in response.json()

    def test_metrics(self):
        """Prometheus metrics are exposed."""
        client.get("/health")
        response = client.get("/metrics/")
        assert response.status_code == 200
        assert "http_requests_total" in response.text


class TestDocumentEndpoints:
    """Test document upload and retrieval."""

    def test_upload_ndjson(self, storage):
        """An NDJSON upload is normalized, grouped and persisted."""
        text = "\n".join(
            [
                splunk_line("f1", ts="2024-01-15T10:00:00Z"),
                splunk_line("f2", level="unknown", ts="2024-01-15T10:00:05Z"),
                splunk_line("f3", level="ERROR", container="worker", ts="2024-01-15T10:00:10Z"),
            ]
        )

        response = client.post(
            "/api/v1/documents",
            files={"file": ("export.json", text.encode("utf-8"), "application/json")},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["fileName"] == "export.json"
        assert data["entryCount"] == 3
        assert data["error"] is None
        assert [m["flowId"] for m in data["messages"]] == ["f3-2", "f1-0"]
        assert [f["flowId"] for f in data["flows"]] == ["f3-2", "f1-0"]
        assert data["summary"] == {"flowCount": 2, "messageCount": 2, "linkedCount": 2}
        assert data["messages"][0]["flowIdSource"] == "splunk"
        assert storage.load_document().file_name == "export.json"

    def test_upload_with_filters(self):
        """Query filters are applied to the returned view."""
        text = "\n".join([splunk_line("f1"), splunk_line("f2", level="ERROR", container="worker")])

        response = client.post(
            "/api/v1/documents",
            params={"filter_type": "container", "filter_value": "worker"},
            files={"file": ("export.json", text.encode("utf-8"), "application/json")},
        )

        assert response.status_code == 200
        assert [m["flowId"] for m in response.json()["messages"]] == ["f2-1"]

    def test_upload_partial(self):
        """Bad lines are reported while good entries are kept."""
        text = "\n".join([splunk_line("f1"), "oops"])

        response = client.post(
            "/api/v1/documents",
            files={"file": ("export.json", text.encode("utf-8"), "application/json")},
        )

        assert response.status_code == 200
        assert response.json()["error"].startswith("Parsed 1 entries with 1 error(s).")

    def test_upload_not_json(self, storage):
        """A document with no entries is rejected and not persisted."""
        response = client.post(
            "/api/v1/documents",
            files={"file": ("notes.txt", b"not json at all", "text/plain")},
        )

        assert response.status_code == 422
        assert response.json()["detail"] == "Failed to parse any JSON entries"
        assert storage.load_document() is None

    def test_upload_empty(self):
        """An empty file is rejected."""
        response = client.post(
            "/api/v1/documents", files={"file": ("empty.json", b"", "application/json")}
        )
        assert response.status_code == 422
        assert response.json()["detail"] == "File is empty"

    def test_last_document(self):
        """The last upload can be rebuilt and cleared."""
        assert client.get("/api/v1/documents/last").status_code == 404

        client.post(
            "/api/v1/documents",
            files={"file": ("export.json", splunk_line("f1").encode("utf-8"), "application/json")},
        )
        response = client.get("/api/v1/documents/last")
        assert response.status_code == 200
        assert response.json()["fileName"] == "export.json"
        assert response.json()["messages"][0]["flowId"] == "f1-0"

        assert client.delete("/api/v1/documents/last").status_code == 200
        assert client.get("/api/v1/documents/last").status_code == 404


class TestFlowEndpoints:
    """Test grouping of client-held messages."""

    def test_group_messages(self):
        """Messages are filtered and grouped, newest group first."""
        response = client.post(
            "/api/v1/flows/group",
            json={
                "messages": [
                    make_message("1", "A", 30),
                    make_message("2", "B", 10),
                    make_message("3", "C", 20),
                    make_message("4", "D", 40, level="UNKNOWN"),
                ]
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert [f["flowId"] for f in data["flows"]] == ["A", "C", "B"]
        assert data["summary"]["messageCount"] == 3
        assert "messages" not in data

    def test_group_with_routing_search(self):
        """Live-view search includes topic, flow ID and key."""
        response = client.post(
            "/api/v1/flows/group",
            json={
                "messages": [make_message("1", "order-flow", 1), make_message("2", "B", 2)],
                "searchQuery": "ORDER-FLOW",
                "includeRoutingFields": True,
            },
        )

        assert [f["flowId"] for f in response.json()["flows"]] == ["order-flow"]


class TestGraphqlEndpoints:
    """Test normalization of GraphQL subscription payloads."""

    @pytest.fixture(autouse=True)
    def ingestion(self):
        """A fresh ingestion service so message numbering starts at zero."""
        with patch("flowscope.api.v1.graphql.ingestion_service", IngestionService()) as ingestion:
            yield ingestion

    def test_single_payload(self):
        """A nested resource flow ID is found in the payload content."""
        response = client.post(
            "/api/v1/graphql/messages",
            json={"resource": {"flowId": "gql-42", "commandId": "cmd-PlaceOrder"}},
        )

        assert response.status_code == 200
        [message] = response.json()["messages"]
        assert message["id"] == "graphql-0-0"
        assert message["topic"] == "graphql"
        assert message["flowId"] == "gql-42"
        assert message["flowIdSource"] == "json-content"

    def test_payload_list(self):
        """Each payload in a list is numbered; unknown-level payloads are dropped."""
        response = client.post(
            "/api/v1/graphql/messages",
            json=[{"flowId": "a"}, {"flowId": "b", "level": "unknown"}, {"flowId": "c"}],
        )

        assert response.status_code == 200
        messages = response.json()["messages"]
        assert [m["flowId"] for m in messages] == ["a", "c"]
        assert [m["offset"] for m in messages] == ["0", "2"]


class TestKafkaEndpoints:
    """Test live stream endpoints with the Kafka service mocked."""

    def test_connect_missing_fields(self):
        """All connection fields are required."""
        response = client.post("/api/v1/kafka/connect", json={"broker": "localhost:9092"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Missing required fields: broker, topics, consumerId"

    @patch("flowscope.api.v1.kafka.kafka_service")
    def test_connect(self, mock_service, registry):
        """A valid request starts a session."""
        response = client.post(
            "/api/v1/kafka/connect",
            json={"broker": "localhost:9092", "topics": "orders", "consumerId": "c-1"},
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "consumerId": "c-1"}
        mock_service.start_session.assert_called_once_with(registry, "c-1", "localhost:9092", "orders")

    @patch("flowscope.api.v1.kafka.kafka_service")
    def test_connect_default_broker(self, mock_service, registry):
        """The configured bootstrap servers are used when no broker is given."""
        response = client.post("/api/v1/kafka/connect", json={"topics": "orders", "consumerId": "c-1"})

        assert response.status_code == 200
        broker = mock_service.start_session.call_args.args[2]
        assert broker == get_settings().kafka_bootstrap_servers

    @patch("flowscope.api.v1.kafka.kafka_service")
    def test_connect_broker_unreachable(self, mock_service):
        """Connection failures are reported."""
        mock_service.start_session.side_effect = KafkaConnectError("no brokers")

        response = client.post(
            "/api/v1/kafka/connect",
            json={"broker": "localhost:9092", "topics": "orders", "consumerId": "c-1"},
        )

        assert response.status_code == 500
        assert response.json()["detail"] == "Failed to connect to Kafka broker: no brokers"

    @patch("flowscope.api.v1.kafka.kafka_service")
    def test_connect_invalid_topics(self, mock_service):
        """Invalid broker or topic lists are client errors."""
        mock_service.start_session.side_effect = ValueError("No valid topics provided")

        response = client.post(
            "/api/v1/kafka/connect",
            json={"broker": "localhost:9092", "topics": " , ", "consumerId": "c-1"},
        )

        assert response.status_code == 400

    def test_disconnect(self, registry):
        """Disconnecting stops the session; unknown IDs are 404."""
        consumer = Mock()
        registry.create("c-1", consumer=consumer)

        response = client.delete("/api/v1/kafka/connect", params={"consumerId": "c-1"})
        assert response.status_code == 200
        consumer.close.assert_called_once()

        response = client.delete("/api/v1/kafka/connect", params={"consumerId": "c-1"})
        assert response.status_code == 404
        assert response.json()["detail"] == "Consumer not found"

    def test_stream_unknown_consumer(self):
        """Streaming an unknown session is 404."""
        response = client.get("/api/v1/kafka/messages", params={"consumerId": "missing"})
        assert response.status_code == 404

    def test_stream_messages(self, registry):
        """The stream starts with a connection test and then buffered messages."""
        session = registry.create("c-1")
        session.publish(ParsedMessage.model_validate(make_message("orders-0-1", "f-1", 1)))
        session.stop()

        response = client.get("/api/v1/kafka/messages", params={"consumerId": "c-1"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = [
            json.loads(line[len("data: ") :])
            for line in response.text.split("\n\n")
            if line.startswith("data: ")
        ]
        assert events[0] == {"type": "connection-test", "consumerId": "c-1"}
        assert events[1]["type"] == "message"
        assert events[1]["flowId"] == "f-1"

    @patch("flowscope.api.v1.kafka.kafka_service")
    def test_produce(self, mock_service):
        """Produced messages report their position; object values are sent as JSON."""
        mock_service.produce_message.return_value = {"topic": "orders", "partition": 0, "offset": "7"}

        response = client.post(
            "/api/v1/kafka/produce",
            json={
                "broker": "localhost:9092",
                "topic": "orders",
                "value": {"flowId": "f"},
                "headers": '{"flowId": "f", "attempt": 2}',
            },
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "topic": "orders", "partition": 0, "offset": "7"}
        args, kwargs = mock_service.produce_message.call_args
        assert args == ("localhost:9092", "orders", '{"flowId": "f"}')
        assert kwargs == {"key": None, "headers": {"flowId": "f", "attempt": "2"}}

    def test_produce_missing_fields(self):
        """Broker, topic and value are required."""
        response = client.post("/api/v1/kafka/produce", json={"broker": "localhost:9092"})
        assert response.status_code == 400

    @patch("flowscope.api.v1.kafka.kafka_service")
    def test_produce_failure(self, mock_service):
        """Delivery failures are reported."""
        mock_service.produce_message.side_effect = KafkaProduceError("Failed to send message: down")

        response = client.post(
            "/api/v1/kafka/produce",
            json={"broker": "localhost:9092", "topic": "orders", "value": "hello"},
        )

        assert response.status_code == 500
        assert response.json()["detail"] == "Failed to send message: down"

    def test_last_session(self, storage):
        """The last persisted live session is returned."""
        assert client.get("/api/v1/kafka/session/last").status_code == 404

        storage.save_live_session(
            "localhost:9092", "orders", [ParsedMessage.model_validate(make_message("1", "f", 1))]
        )
        response = client.get("/api/v1/kafka/session/last")

        assert response.status_code == 200
        data = response.json()
        assert data["broker"] == "localhost:9092"
        assert data["messages"][0]["flowId"] == "f"
