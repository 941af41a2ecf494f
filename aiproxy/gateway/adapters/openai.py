"""
OpenAI Adapter - Adapter for the official OpenAI API.

Since the gateway's canonical format is OpenAI-compatible, this adapter is
mostly a passthrough: it normalizes content blocks into OpenAI content parts,
enforces per-model image support and reshapes responses into the canonical
model.
"""

from typing import Any, Dict, List, Optional

from aiproxy.gateway.adapters.base import AdapterBase, UpstreamRequest
from aiproxy.gateway.streaming import CanonicalDelta, SSEEvent, DONE_SENTINEL, load_event_json
from aiproxy.schemas.chat import (
    Choice,
    CompletionRequest,
    CompletionResponse,
    ImageBlock,
    Message,
    ModelDescriptor,
    Provider,
    ResponseMessage,
    Role,
    ToolCall,
    ToolDefinition,
    Usage,
)


class OpenAIAdapter(AdapterBase):
    """
    Adapter for the official OpenAI API.

    Main responsibilities:
    - Add authentication headers
    - Map content blocks to text/image_url parts
    - Parse responses for usage and tool calls
    """

    PROVIDER = Provider.OPENAI

    DEFAULT_BASE_URL = "https://api.openai.com"

    TEXT_ONLY_MODEL_PREFIXES = ("gpt-3.5", "o1-mini", "o3-mini")

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    def format_messages(
        self,
        messages: List[Message],
        model: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Map canonical messages to OpenAI chat messages."""
        formatted = []

        for message in messages:
            self.check_content_support(message, model)

            role = message.role.value
            # A tool result without a call ID is not a valid tool turn
            if message.role == Role.TOOL and not message.tool_call_id:
                role = Role.USER.value

            native: Dict[str, Any] = {"role": role}

            if isinstance(message.content, str):
                native["content"] = message.content
            else:
                native["content"] = [self._format_block(block) for block in message.content]

            if message.name:
                native["name"] = message.name
            if role == Role.TOOL.value:
                native["tool_call_id"] = message.tool_call_id
            if message.tool_calls and message.role == Role.ASSISTANT:
                native["tool_calls"] = [call.model_dump() for call in message.tool_calls]

            formatted.append(native)

        return formatted

    @staticmethod
    def _format_block(block) -> Dict[str, Any]:
        if isinstance(block, ImageBlock):
            return {"type": "image_url", "image_url": {"url": block.url}}
        return {"type": "text", "text": block.text}

    def format_tools(self, tools: List[ToolDefinition]) -> List[Dict[str, Any]]:
        """OpenAI tools are the canonical wire form."""
        return [tool.model_dump(exclude_none=True) for tool in tools]

    def build_upstream_request(
        self,
        request: CompletionRequest,
        stream: bool
    ) -> UpstreamRequest:
        """Build request for the chat completions endpoint."""
        body: Dict[str, Any] = {
            "model": request.model,
            "messages": self.format_messages(request.messages, request.model),
            "stream": stream,
        }

        if request.temperature is not None:
            body["temperature"] = request.temperature
        if request.max_tokens is not None:
            body["max_tokens"] = request.max_tokens
        if request.response_format:
            body["response_format"] = request.response_format
        if request.tools:
            body["tools"] = self.format_tools(request.tools)

        return UpstreamRequest(
            method="POST",
            url=f"{self.base_url}/v1/chat/completions",
            headers=self._headers(),
            body=body,
            stream=stream
        )

    def format_response(self, native: Dict[str, Any]) -> CompletionResponse:
        """Normalize an OpenAI chat completion."""
        choices = []

        for index, choice in enumerate(native.get("choices") or []):
            message = choice.get("message") or {}
            tool_calls = [ToolCall.model_validate(call) for call in message.get("tool_calls") or []]

            choices.append(Choice(
                index=choice.get("index", index),
                message=ResponseMessage(
                    content=message.get("content"),
                    tool_calls=tool_calls or None,
                ),
                finish_reason=choice.get("finish_reason"),
            ))

        if not choices:
            choices.append(Choice(message=ResponseMessage(content=None)))

        usage = native.get("usage")

        response = CompletionResponse(
            model=native.get("model", ""),
            choices=choices,
            usage=Usage.model_validate(usage) if usage else None,
        )
        if native.get("id"):
            response.id = native["id"]
        if native.get("created"):
            response.created = int(native["created"])
        return response

    def parse_stream_event(self, event: SSEEvent) -> List[CanonicalDelta]:
        """OpenAI dialect: choices[0].delta.content, terminated by [DONE]."""
        if event.data.strip() == DONE_SENTINEL:
            return [CanonicalDelta.done()]

        payload = load_event_json(event)
        choices = payload.get("choices") or []
        if not choices:
            return []

        content = (choices[0].get("delta") or {}).get("content")
        if content:
            return [CanonicalDelta.fragment(content)]
        return []

    async def list_models(self) -> List[ModelDescriptor]:
        """List models from /v1/models."""
        upstream_request = UpstreamRequest(
            method="GET",
            url=f"{self.base_url}/v1/models",
            headers=self._headers(),
        )
        response = await self._send(upstream_request)
        payload = self.parse_json(response)

        return [
            ModelDescriptor(
                id=model["id"],
                provider=self.provider_name,
                display_name=model["id"],
            )
            for model in payload.get("data") or []
            if model.get("id")
        ]
