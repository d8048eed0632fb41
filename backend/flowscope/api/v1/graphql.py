"""GraphQL subscription payload API endpoints."""

from typing import Annotated, Any

from fastapi import APIRouter, Body, HTTPException
from fastapi.responses import JSONResponse

from flowscope.observability.metrics import http_requests_total
from flowscope.services.ingestion_service import ingestion_service

router = APIRouter(prefix="/api/v1/graphql", tags=["graphql"])


@router.post("/messages")
async def ingest_graphql_messages(
    payload: Annotated[Any, Body(description="One subscription payload or a list of them")],
) -> JSONResponse:
    """Normalize GraphQL subscription payloads into messages.

    A top-level array is read as a list of payloads, each numbered in arrival
    order on the ``graphql`` topic. Payloads declaring an "unknown" level are
    dropped.

    Returns:
        JSON response with the normalized messages
    """
    endpoint = "/api/v1/graphql/messages"
    payloads = payload if isinstance(payload, list) else [payload]
    try:
        messages = [
            message
            for message in (ingestion_service.ingest_graphql(item) for item in payloads)
            if message is not None
        ]
    except Exception as e:
        http_requests_total.labels(method="POST", endpoint=endpoint, status=500).inc()
        raise HTTPException(status_code=500, detail=f"Error processing payload: {str(e)}") from e

    http_requests_total.labels(method="POST", endpoint=endpoint, status=200).inc()
    return JSONResponse(
        content={"messages": [m.model_dump(mode="json", by_alias=True) for m in messages]}
    )
