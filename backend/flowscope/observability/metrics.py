"""Prometheus metrics."""

from prometheus_client import Counter, Gauge

# Request metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

# Pipeline metrics
documents_parsed_total = Counter(
    "documents_parsed_total",
    "Uploaded documents parsed, by outcome",
    ["status"],
)

messages_normalized_total = Counter(
    "messages_normalized_total",
    "Messages normalized into flows",
    ["source"],
)

messages_dropped_total = Counter(
    "messages_dropped_total",
    "Messages dropped during normalization",
    ["reason"],
)

# Live stream metrics
active_stream_sessions = Gauge(
    "active_stream_sessions",
    "Live Kafka stream sessions currently registered",
)

kafka_messages_consumed_total = Counter(
    "kafka_messages_consumed_total",
    "Kafka records consumed by live stream sessions",
    ["topic"],
)

kafka_messages_produced_total = Counter(
    "kafka_messages_produced_total",
    "Kafka records produced through the API",
    ["topic", "status"],
)
