"""Unit tests for the Gemini adapter."""

import json

import httpx
import pytest

from aiproxy.gateway.adapters.gemini import GeminiAdapter, map_role
from aiproxy.gateway.errors import UnsupportedContentError, UpstreamError
from aiproxy.gateway.streaming import CanonicalDelta, SSEEvent
from aiproxy.schemas.chat import CompletionRequest, Message, Role, ToolDefinition

BASE_URL = "https://generativelanguage.googleapis.com"


def make_adapter(handler=None) -> GeminiAdapter:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler)) if handler else None
    return GeminiAdapter("gemini-key", base_url=BASE_URL, client=client)


def make_request(**overrides) -> CompletionRequest:
    data = {"model": "gemini-1.5-pro", "messages": [{"role": "user", "content": "Hello"}]}
    data.update(overrides)
    return CompletionRequest.model_validate(data)


class TestRoles:
    """Tests for role mapping totality."""

    @pytest.mark.parametrize(
        "role,expected",
        [(Role.USER, "user"), (Role.ASSISTANT, "model"), (Role.SYSTEM, "user"), (Role.TOOL, "user")],
    )
    def test_map_role(self, role, expected) -> None:
        assert map_role(role) == expected

    def test_system_folded_in_place(self) -> None:
        """A system turn becomes its own user turn at the same position."""
        messages = [
            Message(role="system", content="Be brief"),
            Message(role="user", content="Hi"),
            Message(role="assistant", content="Hello"),
            Message(role="tool", content="result", tool_call_id="call_1"),
        ]

        contents = make_adapter().format_messages(messages)

        assert contents == [
            {"role": "user", "parts": [{"text": "Be brief"}]},
            {"role": "user", "parts": [{"text": "Hi"}]},
            {"role": "model", "parts": [{"text": "Hello"}]},
            {"role": "user", "parts": [{"text": "result"}]},
        ]


class TestParts:
    """Tests for content block mapping."""

    def test_inline_and_file_data(self) -> None:
        """Data URIs become inlineData without the prefix; URLs become fileData."""
        message = Message.model_validate({
            "role": "user",
            "content": [
                {"type": "image_url", "image_url": {"url": "data:image/jpeg;base64,/9j/AAA"}},
                {"type": "text", "text": "describe"},
                {"type": "image_url", "image_url": {"url": "https://example.com/pic.png"}},
            ],
        })

        parts = make_adapter().format_messages([message], "gemini-1.5-flash")[0]["parts"]

        assert parts == [
            {"inlineData": {"mimeType": "image/jpeg", "data": "/9j/AAA"}},
            {"text": "describe"},
            {"fileData": {"mimeType": "image/png", "fileUri": "https://example.com/pic.png"}},
        ]

    def test_text_only_model_rejects_images(self) -> None:
        message = Message.model_validate({
            "role": "user",
            "content": [{"type": "image_url", "image_url": {"url": "data:image/png;base64,AAAA"}}],
        })

        with pytest.raises(UnsupportedContentError):
            make_adapter().format_messages([message], "gemini-1.0-pro")


class TestBuildRequest:
    """Tests for the generateContent request."""

    def test_non_streaming(self) -> None:
        request = make_request(temperature=0.5, max_tokens=100, response_format={"type": "json_object"})

        upstream = make_adapter().build_upstream_request(request, stream=False)

        assert upstream.url == f"{BASE_URL}/v1beta/models/gemini-1.5-pro:generateContent"
        assert upstream.params == {"key": "gemini-key"}
        assert upstream.body["generationConfig"] == {
            "temperature": 0.5,
            "maxOutputTokens": 100,
            "responseMimeType": "application/json",
        }

    def test_streaming(self) -> None:
        upstream = make_adapter().build_upstream_request(make_request(), stream=True)

        assert upstream.url == f"{BASE_URL}/v1beta/models/gemini-1.5-pro:streamGenerateContent"
        assert upstream.params == {"key": "gemini-key", "alt": "sse"}
        assert "generationConfig" not in upstream.body

    def test_tools(self) -> None:
        """Tools become one functionDeclarations entry."""
        schema = {"type": "object", "properties": {"q": {"type": "string"}}, "required": ["q"]}
        tool = ToolDefinition.model_validate({
            "type": "function",
            "function": {"name": "search", "description": "Web search", "parameters": schema},
        })

        assert make_adapter().format_tools([tool]) == [
            {"functionDeclarations": [{"name": "search", "description": "Web search", "parameters": schema}]}
        ]


class TestFormatResponse:
    """Tests for Gemini -> canonical response mapping."""

    def test_text_response(self) -> None:
        response = make_adapter().format_response({
            "candidates": [{
                "content": {"role": "model", "parts": [{"text": "Bonjour"}]},
                "finishReason": "STOP",
            }],
            "usageMetadata": {"promptTokenCount": 4, "candidatesTokenCount": 2, "totalTokenCount": 6},
        })

        assert response.content == "Bonjour"
        assert response.choices[0].finish_reason == "stop"
        assert response.usage.total_tokens == 6

    def test_text_parts_joined_without_thoughts(self) -> None:
        """Every text part is kept in order; thought summaries are dropped."""
        response = make_adapter().format_response({
            "candidates": [{
                "content": {"parts": [
                    {"text": "planning", "thought": True},
                    {"text": "Hel"},
                    {"text": "lo"},
                ]},
                "finishReason": "STOP",
            }],
        })

        assert response.content == "Hello"

    @pytest.mark.parametrize(
        "reason,expected",
        [("MAX_TOKENS", "length"), ("SAFETY", "content_filter"), ("RECITATION", "content_filter")],
    )
    def test_finish_reasons(self, reason, expected) -> None:
        response = make_adapter().format_response({
            "candidates": [{"content": {"parts": [{"text": "x"}]}, "finishReason": reason}],
        })
        assert response.choices[0].finish_reason == expected

    def test_function_call(self) -> None:
        response = make_adapter().format_response({
            "candidates": [{
                "content": {"parts": [{"functionCall": {"name": "search", "args": {"q": "cats"}}}]},
                "finishReason": "STOP",
            }],
        })

        choice = response.choices[0]
        assert choice.finish_reason == "tool_calls"
        assert choice.message.tool_calls[0].id.startswith("call_")
        assert json.loads(choice.message.tool_calls[0].function.arguments) == {"q": "cats"}

    def test_no_candidates(self) -> None:
        """A blocked prompt yields an empty completion instead of failing."""
        response = make_adapter().format_response({"promptFeedback": {"blockReason": "SAFETY"}})
        assert response.content is None


class TestStreamEvents:
    """Tests for the Gemini stream dialect."""

    def test_parts_concatenated(self) -> None:
        event = SSEEvent(data='{"candidates":[{"content":{"parts":[{"text":"Hel"},{"text":"lo"}]}}]}')
        assert make_adapter().parse_stream_event(event) == [CanonicalDelta.fragment("Hello")]

    def test_thought_parts_not_streamed(self) -> None:
        event = SSEEvent(data='{"candidates":[{"content":{"parts":[{"text":"hmm","thought":true},{"text":"Hi"}]}}]}')
        assert make_adapter().parse_stream_event(event) == [CanonicalDelta.fragment("Hi")]

    def test_finish_reason_after_text(self) -> None:
        """The last chunk's text is emitted before the terminal."""
        event = SSEEvent(
            data='{"candidates":[{"content":{"parts":[{"text":"!"}]},"finishReason":"STOP"}]}'
        )
        assert make_adapter().parse_stream_event(event) == [
            CanonicalDelta.fragment("!"),
            CanonicalDelta.done(),
        ]

    def test_error_payload(self) -> None:
        event = SSEEvent(data='{"error":{"code":503,"message":"unavailable"}}')
        with pytest.raises(UpstreamError) as exc_info:
            make_adapter().parse_stream_event(event)
        assert exc_info.value.status_code == 503


class TestTransport:
    """Tests for upstream calls through a mock transport."""

    @pytest.mark.asyncio
    async def test_complete_sends_key(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["key"] = request.url.params.get("key")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "candidates": [{"content": {"parts": [{"text": "Hi"}]}, "finishReason": "STOP"}],
            })

        response = await make_adapter(handler).complete(make_request())

        assert seen["key"] == "gemini-key"
        assert seen["body"]["contents"] == [{"role": "user", "parts": [{"text": "Hello"}]}]
        assert response.content == "Hi"
        assert response.model == "gemini-1.5-pro"

    @pytest.mark.asyncio
    async def test_error_list_wrapper(self) -> None:
        """Errors wrapped in a list still yield the upstream message."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json=[{"error": {"code": 400, "message": "API key not valid"}}])

        with pytest.raises(UpstreamError) as exc_info:
            await make_adapter(handler).complete(make_request())

        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "API key not valid"

    @pytest.mark.asyncio
    async def test_list_models_filters_generate_content(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"models": [
                {
                    "name": "models/gemini-1.5-pro",
                    "displayName": "Gemini 1.5 Pro",
                    "outputTokenLimit": 8192,
                    "supportedGenerationMethods": ["generateContent", "countTokens"],
                },
                {
                    "name": "models/text-embedding-004",
                    "displayName": "Text Embedding 004",
                    "supportedGenerationMethods": ["embedContent"],
                },
            ]})

        models = await make_adapter(handler).list_models()

        assert [m.id for m in models] == ["gemini-1.5-pro"]
        assert models[0].provider == "google"
        assert models[0].max_tokens == 8192
