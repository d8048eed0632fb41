"""Exceptions raised by the live-stream and persistence services."""


class FlowScopeError(Exception):
    """Base exception for service-level errors."""


class KafkaConnectError(FlowScopeError):
    """Raised when a Kafka broker cannot be reached."""


class KafkaSubscribeError(FlowScopeError):
    """Raised when subscribing to the requested topics fails."""


class KafkaProduceError(FlowScopeError):
    """Raised when a message cannot be delivered to a topic."""


class SessionNotFoundError(FlowScopeError):
    """Raised when no stream session is registered under a consumer ID."""

    def __init__(self, consumer_id: str):
        super().__init__(f"Consumer not found: {consumer_id}")
        self.consumer_id = consumer_id
