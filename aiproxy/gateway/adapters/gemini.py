"""
Gemini Adapter - Adapter for the Google Generative Language API.

Gemini has only ``user`` and ``model`` turns, so system and tool turns are
folded into user turns in place. Generation parameters live in
``generationConfig`` and the API key travels as the ``key`` query parameter.
"""

import json
from typing import Any, Dict, List, Optional
from uuid import uuid4

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


ROLE_MAP = {
    Role.USER: "user",
    Role.ASSISTANT: "model",
    Role.SYSTEM: "user",
    Role.TOOL: "user",
}

FINISH_REASONS = {
    "STOP": "stop",
    "MAX_TOKENS": "length",
    "SAFETY": "content_filter",
    "RECITATION": "content_filter",
}


def map_role(role: Role) -> str:
    """Map a canonical role to a Gemini role."""
    return ROLE_MAP[role]


class GeminiAdapter(AdapterBase):
    """Adapter for Gemini generateContent / streamGenerateContent."""

    PROVIDER = Provider.GEMINI

    DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"

    TEXT_ONLY_MODEL_PREFIXES = ("gemini-1.0-pro",)

    def _headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    def format_messages(
        self,
        messages: List[Message],
        model: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Map canonical messages to Gemini contents."""
        contents = []

        for message in messages:
            self.check_content_support(message, model)

            parts = [self._format_block(block) for block in message.blocks()]

            if message.role == Role.ASSISTANT and message.tool_calls:
                parts.extend(self._format_function_call(call) for call in message.tool_calls)

            if not parts:
                parts = [{"text": ""}]

            contents.append({"role": map_role(message.role), "parts": parts})

        return contents

    @staticmethod
    def _format_block(block) -> Dict[str, Any]:
        if isinstance(block, ImageBlock):
            if block.is_data_uri:
                return {"inlineData": {"mimeType": block.mime_type, "data": block.data}}
            return {"fileData": {"mimeType": block.mime_type, "fileUri": block.url}}
        return {"text": block.text}

    @staticmethod
    def _format_function_call(call: ToolCall) -> Dict[str, Any]:
        try:
            args = json.loads(call.function.arguments or "{}")
        except ValueError as e:
            raise ValidationError(
                f"Tool call '{call.id}' has invalid JSON arguments: {e}"
            ) from e
        return {"functionCall": {"name": call.function.name, "args": args}}

    def format_tools(self, tools: List[ToolDefinition]) -> List[Dict[str, Any]]:
        """Gemini tools: a single entry holding every function declaration."""
        declarations = []
        for tool in tools:
            declaration = {
                "name": tool.function.name,
                "parameters": tool.function.parameters,
            }
            if tool.function.description is not None:
                declaration["description"] = tool.function.description
            declarations.append(declaration)
        return [{"functionDeclarations": declarations}]

    def build_upstream_request(
        self,
        request: CompletionRequest,
        stream: bool
    ) -> UpstreamRequest:
        """Build request for generateContent or streamGenerateContent."""
        body: Dict[str, Any] = {
            "contents": self.format_messages(request.messages, request.model),
        }

        generation_config: Dict[str, Any] = {}
        if request.temperature is not None:
            generation_config["temperature"] = request.temperature
        if request.max_tokens is not None:
            generation_config["maxOutputTokens"] = request.max_tokens
        if request.wants_json:
            generation_config["responseMimeType"] = "application/json"
        if generation_config:
            body["generationConfig"] = generation_config

        if request.tools:
            body["tools"] = self.format_tools(request.tools)

        params = {"key": self.api_key}
        if stream:
            method = "streamGenerateContent"
            params["alt"] = "sse"
        else:
            method = "generateContent"

        return UpstreamRequest(
            method="POST",
            url=f"{self.base_url}/v1beta/models/{request.model}:{method}",
            headers=self._headers(),
            body=body,
            params=params,
            stream=stream
        )

    def format_response(self, native: Dict[str, Any]) -> CompletionResponse:
        """Convert a Gemini generateContent payload to a canonical completion."""
        candidates = native.get("candidates") or []
        candidate = candidates[0] if candidates else {}

        texts = []
        tool_calls = []
        for part in (candidate.get("content") or {}).get("parts") or []:
            if "text" in part:
                if not part.get("thought"):
                    texts.append(part["text"])
            elif "functionCall" in part:
                call = part["functionCall"]
                tool_calls.append(ToolCall(
                    id=f"call_{uuid4().hex[:24]}",
                    function=ToolCallFunction(
                        name=call.get("name", ""),
                        arguments=json.dumps(call.get("args") or {}),
                    ),
                ))

        text = "".join(texts) if texts else None

        finish_reason = candidate.get("finishReason")
        if tool_calls and finish_reason == "STOP":
            finish_reason = "tool_calls"
        else:
            finish_reason = FINISH_REASONS.get(finish_reason, finish_reason and finish_reason.lower())

        usage = None
        metadata = native.get("usageMetadata")
        if metadata:
            prompt = metadata.get("promptTokenCount", 0)
            completion = metadata.get("candidatesTokenCount", 0)
            usage = Usage(
                prompt_tokens=prompt,
                completion_tokens=completion,
                total_tokens=metadata.get("totalTokenCount", prompt + completion),
            )

        return CompletionResponse(
            model=native.get("modelVersion", ""),
            choices=[Choice(
                message=ResponseMessage(content=text, tool_calls=tool_calls or None),
                finish_reason=finish_reason,
            )],
            usage=usage,
        )

    def parse_stream_event(self, event: SSEEvent) -> List[CanonicalDelta]:
        """Gemini dialect: full candidate chunks, finishReason ends the stream."""
        payload = load_event_json(event)

        if "error" in payload:
            error = payload["error"] or {}
            raise UpstreamError(
                error.get("message", "Upstream stream error"),
                status_code=error.get("code") or 502,
                provider=self.provider_name,
                body=event.data,
            )

        candidates = payload.get("candidates") or []
        if not candidates:
            return []

        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts if not part.get("thought"))

        deltas = []
        if text:
            deltas.append(CanonicalDelta.fragment(text))
        if candidate.get("finishReason"):
            deltas.append(CanonicalDelta.done())
        return deltas

    async def list_models(self) -> List[ModelDescriptor]:
        """List models that support generateContent."""
        upstream_request = UpstreamRequest(
            method="GET",
            url=f"{self.base_url}/v1beta/models",
            headers=self._headers(),
            params={"key": self.api_key},
        )
        response = await self._send(upstream_request)
        payload = self.parse_json(response)

        models = []
        for model in payload.get("models") or []:
            if "generateContent" not in (model.get("supportedGenerationMethods") or []):
                continue
            model_id = model.get("name", "").replace("models/", "", 1)
            if not model_id:
                continue
            models.append(ModelDescriptor(
                id=model_id,
                provider=self.provider_name,
                display_name=model.get("displayName") or model_id,
                max_tokens=model.get("outputTokenLimit"),
            ))
        return models
