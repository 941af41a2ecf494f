"""
Request Tracing Middleware.

This module provides request ID generation and client identification
for the AI Gateway.

Features:
- Unique request ID generation
- Request ID propagation from incoming headers
- Client IP resolution behind edge proxies
- Request context management
- Timing (total latency, time to first token)
"""

import contextvars
import secrets
import time
from dataclasses import dataclass
from typing import Mapping, Optional

# Context variable for request tracking
request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_id")


@dataclass
class RequestContext:
    """Context for a gateway request."""

    request_id: str
    start_time: float
    endpoint: str = ""
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None


def generate_request_id() -> str:
    """
    Generate a unique request ID.

    Format: req_<timestamp_hex>_<random>
    Example: req_18d5b3f2_a7b9c4d2e1f0
    """
    timestamp = int(time.time() * 1000)
    random_part = secrets.token_hex(6)
    return f"req_{timestamp:x}_{random_part}"


def get_request_id() -> str:
    """Get current request ID from context."""
    try:
        return request_id_var.get()
    except LookupError:
        return generate_request_id()


def set_request_context(ctx: RequestContext) -> contextvars.Token:
    """Expose the request ID of the context to the current async task."""
    return request_id_var.set(ctx.request_id)


class TracingMiddleware:
    """
    Request tracing helpers.

    Handles:
    - Request ID generation or propagation
    - Client IP extraction from edge proxy headers
    - Context setup for async request handling
    """

    REQUEST_ID_HEADER = "X-Request-ID"

    # Checked in order; the first present wins
    CLIENT_IP_HEADERS = ("cf-connecting-ip", "x-real-ip")
    FORWARDED_FOR_HEADER = "x-forwarded-for"

    def extract_or_generate_request_id(self, headers: Mapping[str, str]) -> str:
        """Use the caller's request ID if supplied, else generate one."""
        return headers.get(self.REQUEST_ID_HEADER) or generate_request_id()

    def extract_client_ip(
        self,
        headers: Mapping[str, str],
        peer_host: Optional[str] = None
    ) -> str:
        """
        Resolve the connecting client's IP.

        Edge proxy headers take precedence over the socket peer, which is
        the proxy itself when the gateway runs behind one.
        """
        for header in self.CLIENT_IP_HEADERS:
            value = headers.get(header)
            if value:
                return value.strip()

        forwarded = headers.get(self.FORWARDED_FOR_HEADER)
        if forwarded:
            first_hop = forwarded.split(",")[0].strip()
            if first_hop:
                return first_hop

        return peer_host or "unknown"

    def create_context(
        self,
        request_id: str,
        endpoint: str,
        client_ip: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> RequestContext:
        """Create a new request context."""
        ctx = RequestContext(
            request_id=request_id,
            start_time=time.time(),
            endpoint=endpoint,
            client_ip=client_ip,
            user_agent=user_agent
        )
        set_request_context(ctx)
        return ctx


class RequestTimer:
    """Timer for measuring request duration."""

    def __init__(self):
        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None
        self.first_token_time: Optional[float] = None

    def start(self) -> None:
        """Start the timer."""
        self.start_time = time.time()

    def stop(self) -> None:
        """Stop the timer."""
        self.end_time = time.time()

    def record_first_token(self) -> None:
        """Record time to first token (for streaming)."""
        if self.first_token_time is None:
            self.first_token_time = time.time()

    @property
    def total_ms(self) -> Optional[int]:
        """Get total duration in milliseconds."""
        if self.start_time is None:
            return None
        end = self.end_time or time.time()
        return int((end - self.start_time) * 1000)

    @property
    def ttft_ms(self) -> Optional[int]:
        """Get time to first token in milliseconds."""
        if self.start_time is None or self.first_token_time is None:
            return None
        return int((self.first_token_time - self.start_time) * 1000)
