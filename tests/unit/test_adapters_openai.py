"""Unit tests for the OpenAI adapter."""

import json

import httpx
import pytest

from aiproxy.gateway.adapters.openai import OpenAIAdapter
from aiproxy.gateway.errors import UnsupportedContentError, UpstreamError
from aiproxy.gateway.streaming import CanonicalDelta, SSEEvent
from aiproxy.schemas.chat import CompletionRequest, Message, ToolDefinition

BASE_URL = "https://api.openai.com"


def make_adapter(handler=None) -> OpenAIAdapter:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler)) if handler else None
    return OpenAIAdapter("sk-test", base_url=BASE_URL, client=client)


def make_request(**overrides) -> CompletionRequest:
    data = {"model": "gpt-4o", "messages": [{"role": "user", "content": "Hello"}]}
    data.update(overrides)
    return CompletionRequest.model_validate(data)


WEATHER_TOOL = ToolDefinition.model_validate({
    "type": "function",
    "function": {
        "name": "get_weather",
        "description": "Get the weather for a city",
        "parameters": {
            "type": "object",
            "properties": {"city": {"type": "string"}},
            "required": ["city"],
        },
    },
})


class TestFormatMessages:
    """Tests for canonical -> OpenAI message mapping."""

    def test_roles_map_one_to_one(self) -> None:
        """Every canonical role maps, in order, with nothing dropped."""
        messages = [
            Message(role="system", content="Be nice"),
            Message(role="user", content="Hi"),
            Message(role="assistant", content="Hello!"),
            Message(role="tool", content="42", tool_call_id="call_1"),
        ]

        formatted = make_adapter().format_messages(messages, "gpt-4o")

        assert [m["role"] for m in formatted] == ["system", "user", "assistant", "tool"]
        assert formatted[3]["tool_call_id"] == "call_1"

    def test_tool_without_call_id_becomes_user(self) -> None:
        """A tool turn without a call ID is carried as a user turn."""
        formatted = make_adapter().format_messages([Message(role="tool", content="result")])
        assert formatted == [{"role": "user", "content": "result"}]

    def test_block_order_preserved(self) -> None:
        """Text and image parts keep their relative order."""
        message = Message.model_validate({
            "role": "user",
            "content": [
                {"type": "text", "text": "first"},
                {"type": "image", "image": {"url": "https://example.com/a.png"}},
                {"type": "text", "text": "second"},
            ],
        })

        parts = make_adapter().format_messages([message], "gpt-4o")[0]["content"]

        assert parts == [
            {"type": "text", "text": "first"},
            {"type": "image_url", "image_url": {"url": "https://example.com/a.png"}},
            {"type": "text", "text": "second"},
        ]

    def test_text_only_model_rejects_images(self) -> None:
        """Images sent to a model without vision are rejected."""
        message = Message.model_validate({
            "role": "user",
            "content": [{"type": "image_url", "image_url": {"url": "data:image/png;base64,AAAA"}}],
        })

        with pytest.raises(UnsupportedContentError) as exc_info:
            make_adapter().format_messages([message], "gpt-3.5-turbo")

        assert exc_info.value.status_code == 400

    def test_assistant_tool_calls_passed_through(self) -> None:
        """Assistant tool calls keep the OpenAI wire shape."""
        message = Message.model_validate({
            "role": "assistant",
            "content": None,
            "tool_calls": [{"id": "call_1", "type": "function", "function": {"name": "f", "arguments": "{}"}}],
        })

        formatted = make_adapter().format_messages([message])[0]

        assert formatted["tool_calls"] == [
            {"id": "call_1", "type": "function", "function": {"name": "f", "arguments": "{}"}}
        ]


class TestBuildRequest:
    """Tests for the upstream request."""

    def test_body_and_headers(self) -> None:
        """Parameters are forwarded to /v1/chat/completions."""
        request = make_request(temperature=0.2, max_tokens=50, response_format={"type": "json_object"})

        upstream = make_adapter().build_upstream_request(request, stream=True)

        assert upstream.url == f"{BASE_URL}/v1/chat/completions"
        assert upstream.headers["Authorization"] == "Bearer sk-test"
        assert upstream.body["stream"] is True
        assert upstream.body["temperature"] == 0.2
        assert upstream.body["max_tokens"] == 50
        assert upstream.body["response_format"] == {"type": "json_object"}

    def test_tools_preserved_verbatim(self) -> None:
        """Tool name, description and JSON schema are kept unchanged."""
        tools = make_adapter().format_tools([WEATHER_TOOL])

        assert tools == [{
            "type": "function",
            "function": {
                "name": "get_weather",
                "description": "Get the weather for a city",
                "parameters": {
                    "type": "object",
                    "properties": {"city": {"type": "string"}},
                    "required": ["city"],
                },
            },
        }]


class TestFormatResponse:
    """Tests for OpenAI -> canonical response mapping."""

    def test_text_response(self) -> None:
        """Content, usage and native ID are kept."""
        response = make_adapter().format_response({
            "id": "chatcmpl-abc",
            "created": 1700000000,
            "model": "gpt-4o",
            "choices": [{"index": 0, "message": {"role": "assistant", "content": "Hi!"}, "finish_reason": "stop"}],
            "usage": {"prompt_tokens": 3, "completion_tokens": 2, "total_tokens": 5},
        })

        assert response.id == "chatcmpl-abc"
        assert response.created == 1700000000
        assert response.content == "Hi!"
        assert response.choices[0].finish_reason == "stop"
        assert response.usage.total_tokens == 5

    def test_tool_call_response(self) -> None:
        """Tool calls are parsed into the canonical shape."""
        response = make_adapter().format_response({
            "choices": [{
                "message": {
                    "content": None,
                    "tool_calls": [{"id": "call_9", "type": "function",
                                    "function": {"name": "get_weather", "arguments": "{\"city\":\"Paris\"}"}}],
                },
                "finish_reason": "tool_calls",
            }],
        })

        call = response.choices[0].message.tool_calls[0]
        assert call.id == "call_9"
        assert json.loads(call.function.arguments) == {"city": "Paris"}


class TestStreamEvents:
    """Tests for the OpenAI stream dialect."""

    def test_content_delta(self) -> None:
        """choices[0].delta.content becomes a fragment."""
        event = SSEEvent(data='{"choices":[{"delta":{"content":"Hello"}}]}')
        assert make_adapter().parse_stream_event(event) == [CanonicalDelta.fragment("Hello")]

    def test_role_only_delta_ignored(self) -> None:
        """Deltas without content produce nothing."""
        event = SSEEvent(data='{"choices":[{"delta":{"role":"assistant"}}]}')
        assert make_adapter().parse_stream_event(event) == []

    def test_done_sentinel(self) -> None:
        """[DONE] is the terminal signal."""
        assert make_adapter().parse_stream_event(SSEEvent(data="[DONE]")) == [CanonicalDelta.done()]


class TestTransport:
    """Tests for upstream calls through a mock transport."""

    @pytest.mark.asyncio
    async def test_complete(self) -> None:
        """A completion is posted and normalized."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "id": "chatcmpl-1",
                "choices": [{"index": 0, "message": {"role": "assistant", "content": "Hi"}, "finish_reason": "stop"}],
            })

        response = await make_adapter(handler).complete(make_request())

        assert seen["url"] == f"{BASE_URL}/v1/chat/completions"
        assert seen["body"]["messages"] == [{"role": "user", "content": "Hello"}]
        assert response.content == "Hi"
        assert response.model == "gpt-4o"

    @pytest.mark.asyncio
    async def test_rate_limited_upstream_passthrough(self) -> None:
        """An upstream 429 surfaces as UpstreamError with status 429."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, json={"error": {"message": "Rate limit reached", "type": "requests"}})

        with pytest.raises(UpstreamError) as exc_info:
            await make_adapter(handler).create_completion(make_request())

        assert exc_info.value.status_code == 429
        assert exc_info.value.message == "Rate limit reached"
        assert exc_info.value.provider == "openai"

    @pytest.mark.asyncio
    async def test_streaming_error_status(self, chunked_stream) -> None:
        """A failed streaming call raises and closes the upstream body."""
        body = chunked_stream([b'{"error":{"message":"bad key"}}'])

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, stream=body)

        with pytest.raises(UpstreamError) as exc_info:
            await make_adapter(handler).create_streaming_completion(make_request(stream=True))

        assert exc_info.value.status_code == 401
        assert exc_info.value.message == "bad key"
        assert body.closed

    @pytest.mark.asyncio
    async def test_transport_failure(self) -> None:
        """Connection failures are reported as 502."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(UpstreamError) as exc_info:
            await make_adapter(handler).create_completion(make_request())

        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_list_models(self) -> None:
        """Models are listed with the provider tag."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/models"
            return httpx.Response(200, json={"object": "list", "data": [{"id": "gpt-4o"}, {"id": "gpt-4o-mini"}]})

        models = await make_adapter(handler).list_models()

        assert [m.id for m in models] == ["gpt-4o", "gpt-4o-mini"]
        assert all(m.provider == "openai" for m in models)
