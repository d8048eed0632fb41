"""Live Kafka stream API endpoints."""

import asyncio
import json
import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import field_validator

from flowscope.config import get_settings
from flowscope.models.log import CamelModel
from flowscope.observability.metrics import http_requests_total
from flowscope.services.exceptions import (
    KafkaConnectError,
    KafkaProduceError,
    KafkaSubscribeError,
    SessionNotFoundError,
)
from flowscope.services.kafka_service import kafka_service
from flowscope.services.session_registry import SessionRegistry
from flowscope.services.storage_service import storage_service
from flowscope.utils.json_values import parse_json_object, to_text

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/kafka", tags=["kafka"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


class ConnectRequest(CamelModel):
    """Connection details for a live stream session."""

    broker: str = ""
    topics: str = ""
    consumer_id: str = ""


class ProduceRequest(CamelModel):
    """A test message to produce."""

    broker: str = ""
    topic: str = ""
    key: str | None = None
    value: str = ""
    headers: dict[str, str] | None = None

    @field_validator("value", mode="before")
    @classmethod
    def stringify_value(cls, v: Any) -> str:
        """Non-string values are sent as their JSON text."""
        if v is None:
            return ""
        if isinstance(v, str):
            return v
        return json.dumps(v)

    @field_validator("headers", mode="before")
    @classmethod
    def parse_headers(cls, v: Any) -> dict[str, str] | None:
        """Accept a header object or its JSON text; anything else is ignored."""
        if isinstance(v, str):
            v = parse_json_object(v)
        if not isinstance(v, dict):
            return None
        return {str(name): to_text(value) for name, value in v.items()}


def get_session_registry(request: Request) -> SessionRegistry:
    """Get the application's stream session registry."""
    return request.app.state.session_registry


@router.post("/connect")
async def connect(
    body: ConnectRequest,
    registry: SessionRegistry = Depends(get_session_registry),
) -> JSONResponse:
    """Start a live stream session, replacing any session already running.

    Returns:
        JSON response with success and the consumer ID
    """
    endpoint = "/api/v1/kafka/connect"
    broker = body.broker or get_settings().kafka_bootstrap_servers
    if not broker or not body.topics or not body.consumer_id:
        http_requests_total.labels(method="POST", endpoint=endpoint, status=400).inc()
        raise HTTPException(
            status_code=400, detail="Missing required fields: broker, topics, consumerId"
        )

    try:
        await asyncio.to_thread(
            kafka_service.start_session, registry, body.consumer_id, broker, body.topics
        )
    except ValueError as e:
        http_requests_total.labels(method="POST", endpoint=endpoint, status=400).inc()
        raise HTTPException(status_code=400, detail=str(e)) from e
    except KafkaConnectError as e:
        http_requests_total.labels(method="POST", endpoint=endpoint, status=500).inc()
        raise HTTPException(
            status_code=500, detail=f"Failed to connect to Kafka broker: {str(e)}"
        ) from e
    except KafkaSubscribeError as e:
        http_requests_total.labels(method="POST", endpoint=endpoint, status=500).inc()
        raise HTTPException(
            status_code=500, detail=f"Failed to subscribe to topics: {str(e)}"
        ) from e

    http_requests_total.labels(method="POST", endpoint=endpoint, status=200).inc()
    return JSONResponse(content={"success": True, "consumerId": body.consumer_id})


@router.delete("/connect")
async def disconnect(
    consumer_id: Annotated[str, Query(alias="consumerId", description="Session to stop")],
    registry: SessionRegistry = Depends(get_session_registry),
) -> JSONResponse:
    """Stop a live stream session."""
    endpoint = "/api/v1/kafka/connect"
    disposed = await asyncio.to_thread(registry.dispose, consumer_id)
    if not disposed:
        http_requests_total.labels(method="DELETE", endpoint=endpoint, status=404).inc()
        raise HTTPException(status_code=404, detail="Consumer not found")

    http_requests_total.labels(method="DELETE", endpoint=endpoint, status=200).inc()
    return JSONResponse(content={"success": True})


def _sse(event: dict) -> str:
    return f"data: {json.dumps(event, ensure_ascii=False)}\n\n"


@router.get("/messages")
async def stream_messages(
    request: Request,
    consumer_id: Annotated[str, Query(alias="consumerId", description="Session to stream")],
    registry: SessionRegistry = Depends(get_session_registry),
) -> StreamingResponse:
    """Stream a session's normalized messages as Server-Sent Events.

    The first event is a connection test. Messages received before the stream
    attached are delivered first, up to the session's buffer size.
    """
    endpoint = "/api/v1/kafka/messages"
    try:
        session = registry.require(consumer_id)
    except SessionNotFoundError as e:
        http_requests_total.labels(method="GET", endpoint=endpoint, status=404).inc()
        raise HTTPException(status_code=404, detail="Consumer not found") from e

    poll_interval = get_settings().stream_poll_interval_seconds

    async def event_stream():
        yield _sse({"type": "connection-test", "consumerId": consumer_id})
        while True:
            for event in session.drain():
                yield _sse(event)
            if session.stopped or await request.is_disconnected():
                break
            await asyncio.sleep(poll_interval)
        logger.info(f"Event stream for {consumer_id} closed")

    http_requests_total.labels(method="GET", endpoint=endpoint, status=200).inc()
    return StreamingResponse(event_stream(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.post("/produce")
async def produce(body: ProduceRequest) -> JSONResponse:
    """Produce one message to a topic.

    Returns:
        JSON response with the topic, partition and offset written
    """
    endpoint = "/api/v1/kafka/produce"
    broker = body.broker or get_settings().kafka_bootstrap_servers
    if not broker or not body.topic or not body.value:
        http_requests_total.labels(method="POST", endpoint=endpoint, status=400).inc()
        raise HTTPException(status_code=400, detail="Missing required fields: broker, topic, value")

    try:
        result = await asyncio.to_thread(
            kafka_service.produce_message,
            broker,
            body.topic,
            body.value,
            key=body.key,
            headers=body.headers,
        )
    except ValueError as e:
        http_requests_total.labels(method="POST", endpoint=endpoint, status=400).inc()
        raise HTTPException(status_code=400, detail=str(e)) from e
    except KafkaProduceError as e:
        http_requests_total.labels(method="POST", endpoint=endpoint, status=500).inc()
        raise HTTPException(status_code=500, detail=str(e)) from e

    http_requests_total.labels(method="POST", endpoint=endpoint, status=200).inc()
    return JSONResponse(content={"success": True, **result})


@router.get("/session/last")
async def get_last_session() -> JSONResponse:
    """Return the last persisted live session."""
    endpoint = "/api/v1/kafka/session/last"
    stored = storage_service.load_live_session()
    if stored is None:
        http_requests_total.labels(method="GET", endpoint=endpoint, status=404).inc()
        raise HTTPException(status_code=404, detail="No saved session")

    http_requests_total.labels(method="GET", endpoint=endpoint, status=200).inc()
    return JSONResponse(content=stored.model_dump(mode="json", by_alias=True))
