"""Uploaded document API endpoints."""

from typing import Annotated

from fastapi import APIRouter, File, HTTPException, Query, UploadFile
from fastapi.responses import JSONResponse

from flowscope.models.log import FilterType, MessageFilter, ParsedMessage
from flowscope.observability.metrics import http_requests_total
from flowscope.services.flow_grouping import build_flow_view
from flowscope.services.ingestion_service import ingestion_service, read_upload_text
from flowscope.services.storage_service import storage_service

router = APIRouter(prefix="/api/v1/documents", tags=["documents"])

DEFAULT_FILE_NAME = "upload.json"


def _view_content(
    file_name: str,
    entry_count: int,
    error: str | None,
    messages: list[ParsedMessage],
    message_filter: MessageFilter,
    ascending: bool,
) -> dict:
    view = build_flow_view(messages, message_filter, ascending=ascending)
    return {
        "fileName": file_name,
        "entryCount": entry_count,
        "error": error,
        **view.model_dump(mode="json", by_alias=True),
    }


@router.post("")
async def upload_document(
    file: Annotated[UploadFile, File(description="Splunk JSON or NDJSON export")],
    filter_type: Annotated[FilterType, Query(description="Filter kind")] = "none",
    filter_value: Annotated[str, Query(description="Container name or level")] = "",
    search: Annotated[str, Query(description="Case-insensitive search text")] = "",
    ascending: Annotated[bool, Query(description="Oldest messages first")] = False,
) -> JSONResponse:
    """Parse an uploaded document, persist it and return its flows.

    A document with some bad lines still succeeds; the parse error summary is
    returned in ``error``. A document with no recoverable entries returns 422.

    Args:
        file: Uploaded document
        filter_type: none, container or level
        filter_value: Value for the container or level filter
        search: Search text matched against message, container and level
        ascending: Sort messages oldest first

    Returns:
        JSON response with the file name, entry count, summary, messages and flows
    """
    endpoint = "/api/v1/documents"
    try:
        file_name = file.filename or DEFAULT_FILE_NAME
        text = read_upload_text(await file.read())
        ingestion = ingestion_service.ingest_document(text)

        if not ingestion.entries:
            http_requests_total.labels(method="POST", endpoint=endpoint, status=422).inc()
            raise HTTPException(status_code=422, detail=ingestion.error)

        storage_service.save_document(ingestion.entries, file_name)

        content = _view_content(
            file_name,
            len(ingestion.entries),
            ingestion.error,
            ingestion.messages,
            MessageFilter(filter_type=filter_type, filter_value=filter_value, search_query=search),
            ascending,
        )
        http_requests_total.labels(method="POST", endpoint=endpoint, status=200).inc()
        return JSONResponse(content=content)

    except HTTPException:
        raise
    except Exception as e:
        http_requests_total.labels(method="POST", endpoint=endpoint, status=500).inc()
        raise HTTPException(status_code=500, detail=f"Error processing document: {str(e)}") from e


@router.get("/last")
async def get_last_document(
    filter_type: Annotated[FilterType, Query(description="Filter kind")] = "none",
    filter_value: Annotated[str, Query(description="Container name or level")] = "",
    search: Annotated[str, Query(description="Case-insensitive search text")] = "",
    ascending: Annotated[bool, Query(description="Oldest messages first")] = False,
) -> JSONResponse:
    """Rebuild the flow view from the last persisted document."""
    endpoint = "/api/v1/documents/last"
    stored = storage_service.load_document()
    if stored is None:
        http_requests_total.labels(method="GET", endpoint=endpoint, status=404).inc()
        raise HTTPException(status_code=404, detail="No saved document")

    messages = ingestion_service.ingest_entries(stored.entries)
    content = _view_content(
        stored.file_name,
        len(stored.entries),
        None,
        messages,
        MessageFilter(filter_type=filter_type, filter_value=filter_value, search_query=search),
        ascending,
    )
    http_requests_total.labels(method="GET", endpoint=endpoint, status=200).inc()
    return JSONResponse(content=content)


@router.delete("/last")
async def clear_last_document() -> JSONResponse:
    storage_service.clear_document()
    http_requests_total.labels(method="DELETE", endpoint="/api/v1/documents/last", status=200).inc()
    return JSONResponse(content={"success": True})
