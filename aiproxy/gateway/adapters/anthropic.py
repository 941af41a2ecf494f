"""
Anthropic Adapter - Adapter for the Anthropic Messages API.

Translation notes:
- Leading system turns become the top-level ``system`` field; any later
  system turn is remapped to a user turn
- Content is always a list of typed blocks (text / image / tool_use / tool_result)
- Images are sent inline as base64 sources (or URL sources)
- ``max_tokens`` is mandatory upstream, so a configured default fills it in
"""

import json
from typing import Any, Dict, List, Optional

from aiproxy.gateway.adapters.base import AdapterBase, UpstreamRequest
from aiproxy.gateway.errors import UpstreamError, ValidationError
from aiproxy.gateway.streaming import CanonicalDelta, SSEEvent, load_event_json
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
    ToolCallFunction,
    ToolDefinition,
    Usage,
)


JSON_MODE_INSTRUCTION = "Respond only with a single valid JSON object and no other text."

# Anthropic stop_reason -> OpenAI finish_reason
FINISH_REASONS = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "max_tokens": "length",
    "tool_use": "tool_calls",
}


class AnthropicAdapter(AdapterBase):
    """Adapter for the Anthropic Messages API."""

    PROVIDER = Provider.ANTHROPIC

    DEFAULT_BASE_URL = "https://api.anthropic.com"

    TEXT_ONLY_MODEL_PREFIXES = ("claude-2", "claude-instant")

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        client=None,
        connect_timeout: float = 10.0,
        anthropic_version: str = "2023-06-01",
        default_max_tokens: int = 4096
    ):
        super().__init__(api_key, base_url, client, connect_timeout)
        self.anthropic_version = anthropic_version
        self.default_max_tokens = default_max_tokens

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": self.anthropic_version,
        }

    def format_messages(
        self,
        messages: List[Message],
        model: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """
        Map canonical messages to Anthropic messages.

        Anthropic only has user and assistant turns here: system and tool
        turns are carried as user turns.
        """
        formatted = []

        for message in messages:
            self.check_content_support(message, model)

            if message.role == Role.ASSISTANT:
                role = "assistant"
            else:
                role = "user"

            if message.role == Role.TOOL and message.tool_call_id:
                content = [{
                    "type": "tool_result",
                    "tool_use_id": message.tool_call_id,
                    "content": message.text,
                }]
            else:
                content = [self._format_block(block) for block in message.blocks()]

            if message.role == Role.ASSISTANT and message.tool_calls:
                content.extend(self._format_tool_use(call) for call in message.tool_calls)

            if not content:
                content = [{"type": "text", "text": ""}]

            formatted.append({"role": role, "content": content})

        return formatted

    @staticmethod
    def _format_block(block) -> Dict[str, Any]:
        if isinstance(block, ImageBlock):
            if block.is_data_uri:
                source = {
                    "type": "base64",
                    "media_type": block.mime_type,
                    "data": block.data,
                }
            else:
                source = {"type": "url", "url": block.url}
            return {"type": "image", "source": source}
        return {"type": "text", "text": block.text}

    @staticmethod
    def _format_tool_use(call: ToolCall) -> Dict[str, Any]:
        try:
            arguments = json.loads(call.function.arguments or "{}")
        except ValueError as e:
            raise ValidationError(
                f"Tool call '{call.id}' has invalid JSON arguments: {e}"
            ) from e

        return {
            "type": "tool_use",
            "id": call.id,
            "name": call.function.name,
            "input": arguments,
        }

    def format_tools(self, tools: List[ToolDefinition]) -> List[Dict[str, Any]]:
        """Anthropic tools: {name, description, input_schema}."""
        formatted = []
        for tool in tools:
            native = {
                "name": tool.function.name,
                "input_schema": tool.function.parameters,
            }
            if tool.function.description is not None:
                native["description"] = tool.function.description
            formatted.append(native)
        return formatted

    def build_upstream_request(
        self,
        request: CompletionRequest,
        stream: bool
    ) -> UpstreamRequest:
        """Build request for the /v1/messages endpoint."""
        messages = list(request.messages)

        # Lift leading system turns into the system field
        system_parts = []
        index = 0
        while index < len(messages) and messages[index].role == Role.SYSTEM:
            system_parts.append(messages[index].text)
            index += 1

        if index == len(messages):
            # Nothing left to send as a conversation; keep them as user turns
            system_parts = []
            index = 0

        if request.wants_json:
            system_parts.append(JSON_MODE_INSTRUCTION)

        body: Dict[str, Any] = {
            "model": request.model,
            "messages": self.format_messages(messages[index:], request.model),
            "max_tokens": request.max_tokens or self.default_max_tokens,
            "stream": stream,
        }

        if system_parts:
            body["system"] = "\n\n".join(part for part in system_parts if part)
        if request.temperature is not None:
            # Anthropic caps temperature at 1.0
            body["temperature"] = min(request.temperature, 1.0)
        if request.tools:
            body["tools"] = self.format_tools(request.tools)

        return UpstreamRequest(
            method="POST",
            url=f"{self.base_url}/v1/messages",
            headers=self._headers(),
            body=body,
            stream=stream
        )

    def format_response(self, native: Dict[str, Any]) -> CompletionResponse:
        """Convert an Anthropic message to a canonical completion."""
        texts = []
        tool_calls = []

        for block in native.get("content") or []:
            block_type = block.get("type")
            if block_type == "text":
                texts.append(block.get("text", ""))
            elif block_type == "tool_use":
                tool_calls.append(ToolCall(
                    id=block.get("id", ""),
                    function=ToolCallFunction(
                        name=block.get("name", ""),
                        arguments=json.dumps(block.get("input") or {}),
                    ),
                ))

        text = "".join(texts) if texts else None

        usage = None
        native_usage = native.get("usage")
        if native_usage:
            prompt = native_usage.get("input_tokens", 0)
            completion = native_usage.get("output_tokens", 0)
            usage = Usage(
                prompt_tokens=prompt,
                completion_tokens=completion,
                total_tokens=prompt + completion,
            )

        stop_reason = native.get("stop_reason")

        response = CompletionResponse(
            model=native.get("model", ""),
            choices=[Choice(
                message=ResponseMessage(content=text, tool_calls=tool_calls or None),
                finish_reason=FINISH_REASONS.get(stop_reason, stop_reason),
            )],
            usage=usage,
        )
        if native.get("id"):
            response.id = native["id"]
        return response

    def parse_stream_event(self, event: SSEEvent) -> List[CanonicalDelta]:
        """Anthropic dialect: typed events, text in content_block_delta."""
        payload = load_event_json(event)
        event_type = payload.get("type") or event.event

        if event_type == "content_block_delta":
            delta = payload.get("delta") or {}
            if delta.get("type", "text_delta") == "text_delta" and delta.get("text"):
                return [CanonicalDelta.fragment(delta["text"])]
            return []

        if event_type == "message_stop":
            return [CanonicalDelta.done()]

        if event_type == "error":
            error = payload.get("error") or {}
            raise UpstreamError(
                error.get("message", "Upstream stream error"),
                provider=self.provider_name,
                body=event.data,
            )

        # message_start, content_block_start/stop, message_delta, ping
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
                display_name=model.get("display_name") or model["id"],
                max_tokens=model.get("max_tokens"),
            )
            for model in payload.get("data") or []
            if model.get("id")
        ]
