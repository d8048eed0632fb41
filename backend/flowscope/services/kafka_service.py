"""Kafka consumer and producer service for live stream sessions."""

import logging
import threading
import time

from kafka import KafkaConsumer, KafkaProducer
from kafka.errors import KafkaConnectionError, KafkaError, KafkaTimeoutError, NoBrokersAvailable

from flowscope.config import Settings, get_settings
from flowscope.observability.metrics import (
    kafka_messages_consumed_total,
    kafka_messages_produced_total,
)
from flowscope.services.exceptions import KafkaConnectError, KafkaProduceError, KafkaSubscribeError
from flowscope.services.ingestion_service import IngestionService, ingestion_service
from flowscope.services.session_registry import SessionRegistry, StreamSession
from flowscope.services.storage_service import StorageService, storage_service

logger = logging.getLogger(__name__)

# Retry configuration
MAX_RETRIES = 3
RETRY_DELAY = 2  # seconds
CONNECTION_RETRY_DELAY = 5  # seconds for connection errors
SEND_TIMEOUT = 10  # seconds


def split_csv(value: str | None) -> list[str]:
    """Split a comma-separated broker or topic list, dropping blanks."""
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def _encode(value: str | None) -> bytes | None:
    return value.encode("utf-8") if value is not None else None


class KafkaService:
    """Creates live stream consumers and produces test messages."""

    def __init__(
        self,
        settings: Settings | None = None,
        ingestion: IngestionService | None = None,
        storage: StorageService | None = None,
    ):
        """Initialize the service; connections are opened per request."""
        self.settings = settings or get_settings()
        self.ingestion = ingestion or ingestion_service
        self.storage = storage or storage_service

    def create_consumer(self, brokers: list[str], consumer_id: str) -> KafkaConsumer:
        """Connect a consumer in its own group, retrying connection errors.

        Raises:
            KafkaConnectError: If the brokers cannot be reached
        """
        last_error: Exception | None = None
        for attempt in range(MAX_RETRIES + 1):
            try:
                consumer = KafkaConsumer(
                    bootstrap_servers=brokers,
                    client_id=self.settings.kafka_client_id,
                    group_id=f"{self.settings.kafka_group_prefix}-{consumer_id}",
                    auto_offset_reset="latest",
                    enable_auto_commit=True,
                    session_timeout_ms=self.settings.kafka_session_timeout_ms,
                    heartbeat_interval_ms=self.settings.kafka_heartbeat_interval_ms,
                    api_version_auto_timeout_ms=self.settings.kafka_connection_timeout_ms,
                )
                logger.info(f"Kafka consumer {consumer_id} connected to {brokers}")
                return consumer
            except (NoBrokersAvailable, KafkaConnectionError, KafkaTimeoutError) as e:
                last_error = e
                if attempt < MAX_RETRIES:
                    logger.warning(
                        f"Kafka connection error (attempt {attempt + 1}/{MAX_RETRIES}): {e}"
                    )
                    time.sleep(CONNECTION_RETRY_DELAY)
            except KafkaError as e:
                raise KafkaConnectError(str(e)) from e

        logger.error(f"Failed to connect Kafka consumer after {MAX_RETRIES} retries: {last_error}")
        raise KafkaConnectError(str(last_error))

    def start_session(
        self, registry: SessionRegistry, consumer_id: str, broker: str, topics: str
    ) -> StreamSession:
        """Replace every running session with a new one consuming the given topics.

        Only one live consumer runs at a time so abandoned browser tabs do not
        leave consumers behind.

        Raises:
            ValueError: If the broker or topic list is empty
            KafkaConnectError: If the brokers cannot be reached
            KafkaSubscribeError: If subscribing to the topics fails
        """
        brokers = split_csv(broker)
        if not brokers:
            raise ValueError("Invalid broker configuration")
        topic_list = split_csv(topics)
        if not topic_list:
            raise ValueError("No valid topics provided")

        stopped = registry.dispose_all()
        if stopped:
            logger.info(f"Stopped {stopped} existing session(s) before connecting {consumer_id}")

        consumer = self.create_consumer(brokers, consumer_id)
        try:
            consumer.subscribe(topics=topic_list)
        except (KafkaError, ValueError, TypeError) as e:
            consumer.close()
            raise KafkaSubscribeError(str(e)) from e

        session = registry.create(consumer_id, broker=broker, topics=topic_list, consumer=consumer)
        session.thread = threading.Thread(
            target=self.consume_loop,
            args=(session,),
            name=f"kafka-consumer-{consumer_id}",
            daemon=True,
        )
        session.thread.start()
        self.storage.save_live_session(broker, topics, [])
        return session

    def poll_once(self, session: StreamSession) -> int:
        """Poll the session's consumer once and publish normalized messages.

        Returns:
            Number of messages published
        """
        batches = session.consumer.poll(timeout_ms=self.settings.kafka_poll_timeout_ms)
        published = 0
        for records in batches.values():
            for message in records:
                if session.stopped:
                    return published
                kafka_messages_consumed_total.labels(topic=message.topic).inc()
                try:
                    record, parsed = self.ingestion.ingest_consumer_record(message)
                except Exception as e:
                    logger.error(f"Error processing Kafka message: {e}")
                    continue
                if parsed is None:
                    continue
                session.publish(parsed, headers=record.headers)
                published += 1
        return published

    def consume_loop(self, session: StreamSession) -> None:
        """Consume until the session is stopped (runs on the session's thread)."""
        logger.info(f"Starting consume loop for {session.consumer_id}")
        retry_count = 0
        try:
            while not session.stopped and session.consumer is not None:
                try:
                    if self.poll_once(session):
                        self.storage.save_live_session(
                            session.broker, ",".join(session.topics), session.history()
                        )
                    retry_count = 0
                except (KafkaConnectionError, KafkaTimeoutError) as e:
                    retry_count += 1
                    if retry_count > MAX_RETRIES:
                        logger.error(f"Max retries reached for consumer {session.consumer_id}: {e}")
                        break
                    logger.warning(f"Kafka connection error while consuming: {e}")
                    if session.wait(CONNECTION_RETRY_DELAY):
                        break
                except Exception as e:
                    if session.stopped:
                        break
                    logger.error(f"Unexpected error consuming messages: {e}", exc_info=True)
                    break
        finally:
            # The event stream closes once the session is stopped.
            session.mark_stopped()
        logger.info(f"Consume loop for {session.consumer_id} stopped")

    def produce_message(
        self,
        broker: str,
        topic: str,
        value: str,
        key: str | None = None,
        headers: dict[str, str] | None = None,
        retry: bool = True,
    ) -> dict:
        """Produce one message and wait for the broker's acknowledgement.

        Returns:
            The topic, partition and offset the message was written to

        Raises:
            ValueError: If the broker list is empty
            KafkaProduceError: If the message could not be delivered
        """
        brokers = split_csv(broker)
        if not brokers:
            raise ValueError("Invalid broker configuration")

        try:
            producer = KafkaProducer(
                bootstrap_servers=brokers,
                client_id=self.settings.kafka_client_id,
                acks="all",
                retries=3,
                api_version_auto_timeout_ms=self.settings.kafka_connection_timeout_ms,
            )
        except KafkaError as e:
            kafka_messages_produced_total.labels(topic=topic, status="error").inc()
            raise KafkaProduceError(f"Failed to connect to Kafka broker: {e}") from e

        encoded_headers = [(name, _encode(str(v))) for name, v in (headers or {}).items()]
        try:
            for attempt in range(MAX_RETRIES + 1):
                try:
                    future = producer.send(
                        topic,
                        value=_encode(value),
                        key=_encode(key) if key else None,
                        headers=encoded_headers or None,
                    )
                    record_metadata = future.get(timeout=SEND_TIMEOUT)
                    logger.debug(
                        f"Message sent to {record_metadata.topic} "
                        f"partition {record_metadata.partition} "
                        f"offset {record_metadata.offset}"
                    )
                    kafka_messages_produced_total.labels(topic=topic, status="ok").inc()
                    return {
                        "topic": record_metadata.topic,
                        "partition": record_metadata.partition,
                        "offset": str(record_metadata.offset),
                    }
                except (KafkaConnectionError, KafkaTimeoutError) as e:
                    if attempt < MAX_RETRIES and retry:
                        logger.warning(
                            f"Kafka connection error (attempt {attempt + 1}/{MAX_RETRIES}): {e}"
                        )
                        time.sleep(RETRY_DELAY * (attempt + 1))
                        continue
                    logger.error(f"Failed to send message to Kafka after {MAX_RETRIES} retries: {e}")
                    kafka_messages_produced_total.labels(topic=topic, status="error").inc()
                    raise KafkaProduceError(f"Failed to send message: {e}") from e
                except KafkaError as e:
                    logger.error(f"Kafka error sending message: {e}")
                    kafka_messages_produced_total.labels(topic=topic, status="error").inc()
                    raise KafkaProduceError(f"Failed to send message: {e}") from e
        finally:
            producer.close()

        raise KafkaProduceError("Failed to send message")


# Global instance
kafka_service = KafkaService()
