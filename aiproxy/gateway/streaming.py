"""
Streaming Normalizer.

Turns a raw upstream Server-Sent-Events byte stream into canonical deltas and
re-serializes them as OpenAI-compatible ``data: {...}\\n\\n`` frames, ending
with ``data: [DONE]\\n\\n`` exactly once.

Each provider adapter supplies the dialect-specific part (``parse_event``):
given one complete SSE event it returns the deltas it carries, or raises
ValueError (or TypeError, KeyError) if the event payload is malformed.
Framing, ordering, recovery from malformed events and upstream teardown
live here.

A stream only ends with ``[DONE]`` when the upstream signalled completion.
Transport failures, upstream error events and an EOF without a completion
signal all end the output without it, so callers can detect truncation.
"""

import asyncio
import json
import re
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Protocol

import httpx
import structlog

from aiproxy.gateway.errors import UpstreamError
from aiproxy.gateway.middleware.trace import RequestTimer
from aiproxy.schemas.chat import generate_completion_id

logger = structlog.get_logger(__name__)

# Blank line between events, in any of the three SSE line-ending styles
EVENT_DELIMITER = re.compile(rb"\r\n\r\n|\n\n|\r\r")
LINE_SPLIT = re.compile(r"\r\n|\r|\n")

DONE_SENTINEL = "[DONE]"


@dataclass(frozen=True)
class SSEEvent:
    """One complete Server-Sent Event."""

    data: str
    event: Optional[str] = None


@dataclass(frozen=True)
class CanonicalDelta:
    """One unit of a normalized stream: a text fragment or the terminal marker."""

    text: Optional[str] = None
    terminal: bool = False

    @classmethod
    def fragment(cls, text: str) -> "CanonicalDelta":
        return cls(text=text)

    @classmethod
    def done(cls) -> "CanonicalDelta":
        return cls(terminal=True)


class ByteStream(Protocol):
    """What the normalizer needs from an upstream response."""

    def aiter_bytes(self) -> AsyncIterator[bytes]: ...

    async def aclose(self) -> None: ...


EventParser = Callable[[SSEEvent], List[CanonicalDelta]]
DisconnectProbe = Callable[[], Awaitable[bool]]


class SSEDecoder:
    """
    Incremental SSE framer.

    Bytes are buffered until a blank-line delimiter completes an event;
    a trailing partial event is held back until more bytes arrive.
    """

    def __init__(self):
        self._buffer = b""

    @property
    def pending(self) -> bytes:
        """Bytes of an incomplete event not yet delimited."""
        return self._buffer

    def feed(self, chunk: bytes) -> List[SSEEvent]:
        """Append a chunk and return every event it completed, in order."""
        self._buffer += chunk
        events = []

        while True:
            match = EVENT_DELIMITER.search(self._buffer)
            if not match:
                break

            raw = self._buffer[:match.start()]
            self._buffer = self._buffer[match.end():]

            event = self._parse_event(raw)
            if event is not None:
                events.append(event)

        return events

    @staticmethod
    def _parse_event(raw: bytes) -> Optional[SSEEvent]:
        """Parse the field lines of one event. Comment-only events yield None."""
        text = raw.decode("utf-8", errors="replace")
        event_type = None
        data_lines = []

        for line in LINE_SPLIT.split(text):
            if not line or line.startswith(":"):
                continue

            field, _, value = line.partition(":")
            if value.startswith(" "):
                value = value[1:]

            if field == "data":
                data_lines.append(value)
            elif field == "event":
                event_type = value

        if not data_lines:
            return None

        return SSEEvent(data="\n".join(data_lines), event=event_type)


def load_event_json(event: SSEEvent) -> Dict[str, Any]:
    """Decode an event payload that must be a JSON object."""
    payload = json.loads(event.data)
    if not isinstance(payload, dict):
        raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
    return payload


class StreamNormalizer:
    """
    Re-frames one upstream stream into canonical OpenAI chunks.

    The normalizer is pull-based: nothing is read from the upstream until the
    caller asks for the next frame. Closing the frame iterator early (client
    disconnect) closes the upstream connection instead of draining it.
    """

    def __init__(
        self,
        parse_event: EventParser,
        provider: str,
        model: str,
        completion_id: Optional[str] = None,
        is_disconnected: Optional[DisconnectProbe] = None
    ):
        self.parse_event = parse_event
        self.provider = provider
        self.model = model
        self.completion_id = completion_id or generate_completion_id()
        self.created = int(time.time())
        self.is_disconnected = is_disconnected

    async def deltas(self, upstream: ByteStream) -> AsyncIterator[CanonicalDelta]:
        """Yield canonical deltas in upstream order, ending at the first terminal."""
        decoder = SSEDecoder()
        timer = RequestTimer()
        timer.start()
        fragments = 0
        log = logger.bind(provider=self.provider, model=self.model, completion_id=self.completion_id)

        try:
            async for chunk in upstream.aiter_bytes():
                if self.is_disconnected is not None and await self.is_disconnected():
                    log.info("Client disconnected, aborting upstream stream", fragments=fragments)
                    return

                for event in decoder.feed(chunk):
                    try:
                        deltas = self.parse_event(event)
                    except (ValueError, TypeError, AttributeError, KeyError) as e:
                        log.warning("Skipping malformed stream event", error=str(e), event=event.event)
                        continue

                    for delta in deltas:
                        if delta.terminal:
                            timer.stop()
                            log.info(
                                "Stream completed",
                                fragments=fragments,
                                duration_ms=timer.total_ms,
                                ttft_ms=timer.ttft_ms,
                            )
                            yield delta
                            return

                        timer.record_first_token()
                        fragments += 1
                        yield delta

            if decoder.pending.strip():
                log.warning("Discarding incomplete trailing event", pending_bytes=len(decoder.pending))
            log.warning("Upstream stream ended without completion signal", fragments=fragments)

        except UpstreamError as e:
            log.error("Upstream reported an error mid-stream", error=e.message, fragments=fragments)
        except httpx.HTTPError as e:
            log.error("Upstream stream interrupted", error=str(e), fragments=fragments)
        finally:
            # Shielded so teardown still completes when the consumer was cancelled
            await asyncio.shield(upstream.aclose())

    async def frames(self, upstream: ByteStream) -> AsyncIterator[str]:
        """Yield SSE frames ready to write to the caller."""
        deltas = self.deltas(upstream)
        try:
            async for delta in deltas:
                yield self.format_frame(delta)
        finally:
            await deltas.aclose()

    def format_frame(self, delta: CanonicalDelta) -> str:
        """Serialize one delta as an OpenAI-compatible SSE frame."""
        if delta.terminal:
            return f"data: {DONE_SENTINEL}\n\n"

        chunk = {
            "id": self.completion_id,
            "object": "chat.completion.chunk",
            "created": self.created,
            "model": self.model,
            "choices": [
                {
                    "index": 0,
                    "delta": {"content": delta.text},
                    "finish_reason": None,
                }
            ],
        }
        return f"data: {json.dumps(chunk, separators=(',', ':'))}\n\n"
