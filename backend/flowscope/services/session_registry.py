"""Registry of live Kafka stream sessions.

A session pairs a Kafka consumer (running on its own thread) with a bounded
buffer of events waiting for the SSE endpoint. Sessions are created, looked up
and disposed through an explicit registry owned by the application instead of
module-level state.
"""

import logging
import threading
from collections import deque
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any

from flowscope.models.log import ParsedMessage
from flowscope.observability.metrics import active_stream_sessions
from flowscope.services.exceptions import SessionNotFoundError

logger = logging.getLogger(__name__)

THREAD_JOIN_TIMEOUT = 5.0  # seconds


@dataclass
class StreamSession:
    """One live stream: its consumer, worker thread and pending events."""

    consumer_id: str
    broker: str = ""
    topics: list[str] = field(default_factory=list)
    consumer: Any = None
    thread: threading.Thread | None = None
    max_queue_size: int = 100
    max_history_size: int = 1000

    def __post_init__(self):
        self._events: deque[dict] = deque(maxlen=self.max_queue_size)
        self._history: deque[ParsedMessage] = deque(maxlen=self.max_history_size)
        self._lock = threading.Lock()
        self._stop_event = threading.Event()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def publish(self, message: ParsedMessage, headers: dict[str, str] | None = None) -> None:
        """Queue a normalized message for the stream; the oldest event is dropped when full."""
        event = {"type": "message", **message.model_dump(mode="json", by_alias=True)}
        event["headers"] = headers or {}
        with self._lock:
            self._events.append(event)
            self._history.append(message)

    def drain(self) -> list[dict]:
        """Take every pending event, oldest first."""
        with self._lock:
            events = list(self._events)
            self._events.clear()
        return events

    def history(self) -> list[ParsedMessage]:
        """Messages seen by this session, oldest first."""
        with self._lock:
            return list(self._history)

    def wait(self, timeout: float) -> bool:
        """Sleep until stopped or the timeout expires; True when stopped."""
        return self._stop_event.wait(timeout)

    def mark_stopped(self) -> None:
        """Flag the session as stopped without waiting for its thread."""
        self._stop_event.set()

    def stop(self) -> None:
        """Stop the worker thread and close the consumer."""
        self.mark_stopped()
        if self.thread and self.thread.is_alive() and self.thread is not threading.current_thread():
            self.thread.join(timeout=THREAD_JOIN_TIMEOUT)
            if self.thread.is_alive():
                logger.warning(f"Consumer thread for {self.consumer_id} did not stop in time")
        if self.consumer is not None:
            with suppress(Exception):
                self.consumer.close()
            self.consumer = None


class SessionRegistry:
    """Thread-safe map of consumer IDs to stream sessions."""

    def __init__(self, max_queue_size: int = 100, max_history_size: int = 1000):
        """Initialize an empty registry."""
        self.max_queue_size = max_queue_size
        self.max_history_size = max_history_size
        self._sessions: dict[str, StreamSession] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, consumer_id: str) -> bool:
        with self._lock:
            return consumer_id in self._sessions

    def create(
        self,
        consumer_id: str,
        broker: str = "",
        topics: list[str] | None = None,
        consumer: Any = None,
    ) -> StreamSession:
        """Register a new session, replacing any session with the same ID."""
        session = StreamSession(
            consumer_id=consumer_id,
            broker=broker,
            topics=list(topics or []),
            consumer=consumer,
            max_queue_size=self.max_queue_size,
            max_history_size=self.max_history_size,
        )
        with self._lock:
            previous = self._sessions.pop(consumer_id, None)
            self._sessions[consumer_id] = session
            active_stream_sessions.set(len(self._sessions))

        if previous is not None:
            logger.info(f"Replacing existing session {consumer_id}")
            previous.stop()

        logger.info(f"Registered stream session {consumer_id}")
        return session

    def get(self, consumer_id: str) -> StreamSession | None:
        with self._lock:
            return self._sessions.get(consumer_id)

    def require(self, consumer_id: str) -> StreamSession:
        """Look up a session.

        Raises:
            SessionNotFoundError: If no session is registered under the ID
        """
        session = self.get(consumer_id)
        if session is None:
            raise SessionNotFoundError(consumer_id)
        return session

    def dispose(self, consumer_id: str) -> bool:
        """Stop and remove a session. Returns False when it was not registered."""
        with self._lock:
            session = self._sessions.pop(consumer_id, None)
            active_stream_sessions.set(len(self._sessions))

        if session is None:
            return False

        try:
            session.stop()
        except Exception as e:
            logger.error(f"Error stopping session {consumer_id}: {e}")
        logger.info(f"Disposed stream session {consumer_id}")
        return True

    def dispose_all(self) -> int:
        """Stop and remove every session; returns how many were disposed."""
        with self._lock:
            consumer_ids = list(self._sessions.keys())

        return sum(1 for consumer_id in consumer_ids if self.dispose(consumer_id))
