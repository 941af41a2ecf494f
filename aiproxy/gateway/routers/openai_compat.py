"""
Gateway Data Plane Router.

This module implements the OpenAI-compatible API endpoints for the AI Gateway.
Requests are routed to the upstream provider family that serves the model.

Endpoints:
- POST /v1/chat/completions - Chat completions (streaming supported)
- GET /v1/models - List available models across providers
"""

import asyncio
from typing import List

import pydantic
import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

from aiproxy.gateway.adapters import get_adapter
from aiproxy.gateway.dependencies import AdaptersDep, AdmittedDep, read_json_body
from aiproxy.gateway.errors import ValidationError
from aiproxy.gateway.middleware import RequestTimer, get_request_id
from aiproxy.schemas.chat import CompletionRequest, ModelDescriptor, ModelListResponse

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/v1", tags=["gateway"])


def parse_completion_request(body: dict) -> CompletionRequest:
    """Validate a chat completion body."""
    try:
        return CompletionRequest.model_validate(body)
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"]) or "body"
        raise ValidationError(f"Invalid request: {location}: {first['msg']}") from e


# =============================================================================
# Endpoints
# =============================================================================

@router.post("/chat/completions")
async def chat_completions(
    request: Request,
    adapters: AdaptersDep,
    _admitted: AdmittedDep
):
    """
    Create a chat completion.

    Compatible with OpenAI's /v1/chat/completions endpoint.
    Supports streaming via SSE when stream=true.
    """
    timer = RequestTimer()
    timer.start()

    body = await read_json_body(request)
    completion_request = parse_completion_request(body)
    adapter = get_adapter(adapters, completion_request.model)

    log = logger.bind(
        provider=adapter.provider_name,
        model=completion_request.model,
        stream=completion_request.stream,
    )

    if completion_request.stream:
        # Open the upstream first so an upstream error status becomes ours
        upstream = await adapter.create_streaming_completion(completion_request)
        log.info("Streaming completion started")

        return StreamingResponse(
            adapter.stream_translate(
                upstream,
                completion_request.model,
                is_disconnected=request.is_disconnected,
            ),
            media_type="text/event-stream",
            headers={
                "X-Request-ID": get_request_id(),
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
            },
            # Covers a client that leaves before the body starts
            background=BackgroundTask(upstream.aclose),
        )

    result = await adapter.complete(completion_request)
    timer.stop()

    log.info(
        "Completion finished",
        duration_ms=timer.total_ms,
        total_tokens=result.usage.total_tokens if result.usage else None,
    )

    return JSONResponse(
        content=result.model_dump(),
        headers={"X-Request-ID": get_request_id()}
    )


@router.get("/models", response_model=ModelListResponse)
async def list_models(
    adapters: AdaptersDep,
    _admitted: AdmittedDep
):
    """
    List available models.

    Concatenates the model lists of every configured provider.
    """
    listings = await asyncio.gather(*(adapter.list_models() for adapter in adapters.values()))

    models: List[ModelDescriptor] = []
    for listing in listings:
        models.extend(listing)

    return ModelListResponse(data=models)
