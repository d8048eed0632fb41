"""Flow grouping API endpoints."""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import Field

from flowscope.models.log import MessageFilter, ParsedMessage
from flowscope.observability.metrics import http_requests_total
from flowscope.services.flow_grouping import build_flow_view

router = APIRouter(prefix="/api/v1/flows", tags=["flows"])


class GroupFlowsRequest(MessageFilter):
    """Messages to group, with the filters to apply first."""

    messages: list[ParsedMessage] = Field(default_factory=list)
    ascending: bool = False


@router.post("/group")
async def group_messages(request: GroupFlowsRequest) -> JSONResponse:
    """Filter already-normalized messages and group them by flow ID.

    Used by the live view, which keeps its own message list and asks for the
    grouping whenever the list or the filters change.
    """
    message_filter = MessageFilter(
        filter_type=request.filter_type,
        filter_value=request.filter_value,
        search_query=request.search_query,
        include_routing_fields=request.include_routing_fields,
    )
    view = build_flow_view(request.messages, message_filter, ascending=request.ascending)
    http_requests_total.labels(method="POST", endpoint="/api/v1/flows/group", status=200).inc()
    return JSONResponse(
        content=view.model_dump(mode="json", by_alias=True, include={"summary", "flows"})
    )
