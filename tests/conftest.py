"""Shared test fixtures for the AI proxy test suite."""

import json
from collections.abc import Callable, Generator
from typing import Any, Dict, List, Optional, Tuple, Union

import httpx
import pytest
from fastapi.testclient import TestClient

from aiproxy.core.config import (
    AppSettings,
    AuthSettings,
    DeepgramSettings,
    LogSettings,
    ProviderSettings,
    RateLimitSettings,
    Settings,
)
from aiproxy.main import create_app

VALID_SUBSCRIPTION = "12345678-1234-1234-1234-123456789012"
VALID_SESSION_TOKEN = "valid-clerk-token"

SUPABASE_URL = "https://test-supabase-url.com"
SUPABASE_KEY = "test-supabase-key"
CLERK_URL = "https://api.clerk.com"

OPENAI_URL = "https://api.openai.com"
ANTHROPIC_URL = "https://api.anthropic.com"
GEMINI_URL = "https://generativelanguage.googleapis.com"
DEEPGRAM_URL = "https://api.deepgram.com"

Handler = Union[httpx.Response, Callable[[httpx.Request], httpx.Response]]


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class UpstreamRouter:
    """Mock transport handler routing by method and URL (without query)."""

    def __init__(self) -> None:
        self.handlers: Dict[Tuple[str, str], Handler] = {}
        self.calls: List[httpx.Request] = []

    def add(self, method: str, url: str, handler: Handler) -> None:
        self.handlers[(method.upper(), url)] = handler

    def calls_to(self, url: str) -> List[httpx.Request]:
        return [call for call in self.calls if _base_url(call) == url]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        handler = self.handlers.get((request.method, _base_url(request)))
        if handler is None:
            return httpx.Response(404, json={"error": {"message": "no mock route"}})
        if isinstance(handler, httpx.Response):
            return handler
        return handler(request)


class ChunkedStream(httpx.AsyncByteStream):
    """Response body delivered in the given chunks, optionally failing after them."""

    def __init__(self, chunks: List[bytes], error: Optional[Exception] = None) -> None:
        self.chunks = chunks
        self.error = error
        self.delivered = 0
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            self.delivered += 1
            yield chunk
        if self.error is not None:
            raise self.error

    async def aclose(self) -> None:
        self.closed = True


class FakeUpstream:
    """Minimal byte stream for driving the normalizer directly."""

    def __init__(self, chunks: List[bytes], error: Optional[Exception] = None) -> None:
        self.chunks = chunks
        self.error = error
        self.delivered = 0
        self.closed = False

    async def aiter_bytes(self):
        for chunk in self.chunks:
            self.delivered += 1
            yield chunk
        if self.error is not None:
            raise self.error

    async def aclose(self) -> None:
        self.closed = True


def _base_url(request: httpx.Request) -> str:
    return f"{request.url.scheme}://{request.url.host}{request.url.path}"


def sse(*payloads: Any, event: Optional[str] = None) -> bytes:
    """Encode payloads as SSE events (dicts are JSON encoded)."""
    frames = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        prefix = f"event: {event}\n" if event else ""
        frames.append(f"{prefix}data: {data}\n\n")
    return "".join(frames).encode()


def _supabase_rpc(request: httpx.Request) -> httpx.Response:
    if request.headers.get("apikey") != SUPABASE_KEY:
        return httpx.Response(401, text="Unauthorized")
    body = json.loads(request.content)
    return httpx.Response(200, json=body.get("input_user_id") == VALID_SUBSCRIPTION)


def _clerk_verify(request: httpx.Request) -> httpx.Response:
    body = json.loads(request.content)
    if body.get("token") == VALID_SESSION_TOKEN:
        return httpx.Response(200, json={"sub": "user_123", "status": "verified"})
    return httpx.Response(401, text="Invalid token")


def make_settings(**rate_limit: Any) -> Settings:
    """Settings with every provider configured against test hosts."""
    return Settings(
        app=AppSettings(app_env="test", cors_origins="*"),
        providers=ProviderSettings(
            openai_api_key="sk-openai-test",
            openai_base_url=OPENAI_URL,
            anthropic_api_key="sk-ant-test",
            anthropic_base_url=ANTHROPIC_URL,
            gemini_api_key="gemini-test-key",
            gemini_base_url=GEMINI_URL,
        ),
        auth=AuthSettings(
            supabase_url=SUPABASE_URL,
            supabase_anon_key=SUPABASE_KEY,
            clerk_secret_key="sk_test_clerk",
            clerk_api_url=CLERK_URL,
        ),
        rate_limit=RateLimitSettings(**rate_limit),
        deepgram=DeepgramSettings(api_key="test-deepgram-key", base_url=DEEPGRAM_URL),
        log=LogSettings(requests=False, format="text"),
    )


@pytest.fixture
def clock() -> FakeClock:
    """Fake clock starting at a fixed epoch."""
    return FakeClock()


@pytest.fixture
def upstream() -> UpstreamRouter:
    """Mock upstream router with the auth oracles pre-registered."""
    router = UpstreamRouter()
    router.add("POST", f"{SUPABASE_URL}/rest/v1/rpc/has_active_cloud_subscription", _supabase_rpc)
    router.add("POST", f"{CLERK_URL}/v1/tokens/verify", _clerk_verify)
    return router


@pytest.fixture
def http_client(upstream: UpstreamRouter) -> httpx.AsyncClient:
    """Async client whose every request goes to the upstream router."""
    return httpx.AsyncClient(transport=httpx.MockTransport(upstream))


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def app_factory(
    http_client: httpx.AsyncClient,
    clock: FakeClock,
) -> Callable[..., Any]:
    """Factory fixture building the gateway app against the mock upstreams.

    Usage:
        def test_something(app_factory):
            app = app_factory(chat_limit=3)
    """

    def _create(**rate_limit: Any):
        return create_app(settings=make_settings(**rate_limit), http_client=http_client, clock=clock)

    return _create


@pytest.fixture
def client(app_factory: Callable[..., Any]) -> Generator[TestClient, None, None]:
    """Test client with the lifespan running."""
    with TestClient(app_factory()) as test_client:
        yield test_client


@pytest.fixture
def auth_headers() -> Dict[str, str]:
    return {"Authorization": f"Bearer {VALID_SUBSCRIPTION}"}


@pytest.fixture
def sse_encode() -> Callable[..., bytes]:
    """The ``sse`` encoder as a fixture."""
    return sse


@pytest.fixture
def chunked_stream() -> type:
    return ChunkedStream


@pytest.fixture
def fake_upstream() -> type:
    return FakeUpstream
