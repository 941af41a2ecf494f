"""
AI Gateway Adapter Base Class.

This module defines the base interface for upstream adapters.
Each adapter handles the translation between the canonical (OpenAI-compatible)
request/response model and the upstream provider's native format,
including the provider's streaming dialect.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import httpx
import structlog

from aiproxy.gateway.errors import UnsupportedContentError, UpstreamError
from aiproxy.gateway.streaming import (
    ByteStream,
    CanonicalDelta,
    DisconnectProbe,
    SSEEvent,
    StreamNormalizer,
)
from aiproxy.schemas.chat import (
    CompletionRequest,
    CompletionResponse,
    Message,
    ModelDescriptor,
    Provider,
    ToolDefinition,
)

logger = structlog.get_logger(__name__)


@dataclass
class UpstreamRequest:
    """Request to send to upstream provider."""

    method: str
    url: str
    headers: Dict[str, str]
    body: Optional[Dict[str, Any]] = None
    params: Dict[str, str] = field(default_factory=dict)
    stream: bool = False


class AdapterBase(ABC):
    """
    Base class for upstream adapters.

    An adapter handles the translation between the canonical format and
    a specific upstream provider's format. Each adapter must implement:

    1. format_messages() - Canonical messages to native messages
    2. format_tools() - Canonical tool definitions to native tools
    3. build_upstream_request() - Full native request for a completion
    4. format_response() - Native completion to canonical response
    5. parse_stream_event() - One native SSE event to canonical deltas
    6. list_models() - Provider model listing

    Transport (create_completion / create_streaming_completion) and error
    mapping are shared. Adapters hold no per-request state.
    """

    PROVIDER: Provider

    DEFAULT_BASE_URL: str = ""

    # Model name prefixes without image input support
    TEXT_ONLY_MODEL_PREFIXES: Tuple[str, ...] = ()

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        connect_timeout: float = 10.0
    ):
        self.api_key = api_key
        self.base_url = (base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self._client = client
        self._owns_client = client is None
        self._connect_timeout = connect_timeout

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(None, connect=self._connect_timeout)
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this adapter created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    @property
    def provider_name(self) -> str:
        return self.PROVIDER.value

    # =========================================================================
    # Translation (pure)
    # =========================================================================

    @abstractmethod
    def format_messages(
        self,
        messages: List[Message],
        model: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """
        Transform canonical messages to native messages.

        Ordering is preserved and no message is dropped: roles without a
        native equivalent are remapped.

        Raises:
            UnsupportedContentError: If an image is sent to a text-only model
        """

    @abstractmethod
    def format_tools(self, tools: List[ToolDefinition]) -> List[Dict[str, Any]]:
        """Transform canonical tool definitions to the native tool schema."""

    @abstractmethod
    def build_upstream_request(
        self,
        request: CompletionRequest,
        stream: bool
    ) -> UpstreamRequest:
        """Build the native HTTP request for a completion."""

    @abstractmethod
    def format_response(self, native: Dict[str, Any]) -> CompletionResponse:
        """Transform a native completion payload to a canonical response."""

    @abstractmethod
    def parse_stream_event(self, event: SSEEvent) -> List[CanonicalDelta]:
        """
        Extract canonical deltas from one native SSE event.

        Raises:
            ValueError: If the event payload is malformed
            UpstreamError: If the event reports an upstream failure
        """

    @abstractmethod
    async def list_models(self) -> List[ModelDescriptor]:
        """List the provider's models."""

    def supports_images(self, model: Optional[str]) -> bool:
        """Check if the model accepts image input."""
        if not model:
            return True
        return not model.lower().startswith(self.TEXT_ONLY_MODEL_PREFIXES)

    def check_content_support(self, message: Message, model: Optional[str]) -> None:
        """Reject content the target model cannot represent."""
        if message.has_images and not self.supports_images(model):
            raise UnsupportedContentError(
                f"Model '{model}' does not accept image content",
                details={"provider": self.provider_name, "model": model},
            )

    # =========================================================================
    # Transport
    # =========================================================================

    async def create_completion(self, request: CompletionRequest) -> httpx.Response:
        """
        Issue a non-streaming completion call.

        Returns the upstream response; its body is the native completion.

        Raises:
            UpstreamError: On non-2xx status or transport failure
        """
        upstream_request = self.build_upstream_request(request, stream=False)
        return await self._send(upstream_request)

    async def create_streaming_completion(self, request: CompletionRequest) -> httpx.Response:
        """
        Issue a streaming completion call.

        Returns the upstream response with its body still open; the caller
        owns it and must close it (stream_translate does).

        Raises:
            UpstreamError: On non-2xx status or transport failure
        """
        upstream_request = self.build_upstream_request(request, stream=True)
        return await self._send(upstream_request)

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        """Non-streaming completion, translated to the canonical response."""
        response = await self.create_completion(request)
        native = self.parse_json(response)
        result = self.format_response(native)
        if not result.model:
            result.model = request.model
        return result

    def stream_translate(
        self,
        upstream: ByteStream,
        model: str,
        is_disconnected: Optional[DisconnectProbe] = None
    ) -> AsyncIterator[str]:
        """
        Translate the upstream SSE stream to OpenAI SSE frames.

        Yields:
            Complete ``data: ...\\n\\n`` frames, ending with ``data: [DONE]``
            only if the upstream signalled completion
        """
        normalizer = StreamNormalizer(
            parse_event=self.parse_stream_event,
            provider=self.provider_name,
            model=model,
            is_disconnected=is_disconnected,
        )
        return normalizer.frames(upstream)

    async def _send(self, upstream_request: UpstreamRequest) -> httpx.Response:
        """Execute a request, mapping failures to UpstreamError."""
        http_request = self.client.build_request(
            method=upstream_request.method,
            url=upstream_request.url,
            headers=upstream_request.headers,
            params=upstream_request.params or None,
            json=upstream_request.body,
        )

        try:
            response = await self.client.send(http_request, stream=upstream_request.stream)
        except httpx.HTTPError as e:
            logger.error(
                "Upstream request failed",
                provider=self.provider_name,
                url=upstream_request.url,
                error=str(e),
            )
            raise UpstreamError(
                f"{self.provider_name} request failed: {e}",
                status_code=502,
                provider=self.provider_name,
            ) from e

        if response.status_code >= 400:
            if upstream_request.stream:
                await response.aread()
                await response.aclose()
            raise self.upstream_error(response)

        return response

    def upstream_error(self, response: httpx.Response) -> UpstreamError:
        """Build an UpstreamError from an error response."""
        text = response.text
        message = _extract_error_message(text) or text or response.reason_phrase or "Unknown error"

        logger.warning(
            "Upstream returned error status",
            provider=self.provider_name,
            status_code=response.status_code,
            message=message,
        )

        return UpstreamError(
            message,
            status_code=response.status_code,
            provider=self.provider_name,
            body=text,
        )

    def parse_json(self, response: httpx.Response) -> Dict[str, Any]:
        """Decode a JSON object body."""
        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamError(
                f"Failed to parse upstream response: {e}",
                status_code=502,
                provider=self.provider_name,
            ) from e

        if not isinstance(payload, dict):
            raise UpstreamError(
                "Unexpected upstream response shape",
                status_code=502,
                provider=self.provider_name,
            )
        return payload


def _extract_error_message(text: str) -> Optional[str]:
    """Pull a human-readable message out of the common provider error shapes."""
    try:
        body = json.loads(text)
    except ValueError:
        return None

    # Gemini sometimes wraps errors in a list
    if isinstance(body, list) and body:
        body = body[0]
    if not isinstance(body, dict):
        return None

    error = body.get("error", body)
    if isinstance(error, str):
        return error
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    return None
