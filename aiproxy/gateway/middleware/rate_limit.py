"""
Rate Limiting Middleware.

This module provides in-process admission control for the AI Gateway.

Each (caller identity, route class) pair is a key owned by exactly one
RateLimitActor: an asyncio task draining a mailbox queue, so every update
to a key's counter is applied one at a time in arrival order. Callers never
touch counter state; they address the actor by name through the namespace
and exchange one request/response message with it.

Uses a fixed window algorithm: the counter resets once the window elapses.
"""

import asyncio
import hashlib
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

import structlog

logger = structlog.get_logger(__name__)

Clock = Callable[[], float]

# Route classes
CHAT = "chat"
TTS = "tts"
VOICE = "voice"
TRANSCRIPTION = "transcription"
DEFAULT = "default"


def resolve_route_class(path: str) -> str:
    """Map a request path to its rate limit route class."""
    path = path.rstrip("/") or "/"

    if path == "/v1/chat/completions":
        return CHAT
    if path == "/v1/text-to-speech":
        return TTS
    if path.startswith("/v1/voice/"):
        return VOICE
    if path == "/v1/listen":
        return TRANSCRIPTION
    return DEFAULT


@dataclass(frozen=True)
class RateLimitKey:
    """Composite key: who is calling and which route class."""

    caller_identity: str
    route_class: str

    @property
    def name(self) -> str:
        return f"{self.route_class}:{self.caller_identity}"


@dataclass
class RateLimitWindow:
    """Counter state of one key. Only its owning actor reads or writes it."""

    count: int
    window_start: float
    limit: int
    window_seconds: int


@dataclass(frozen=True)
class AdmissionRequest:
    """Message asking an actor to admit one request."""

    limit: int
    window_seconds: int


@dataclass(frozen=True)
class RateLimitResult:
    """Result of rate limit check."""

    allowed: bool
    limit: int
    remaining: int
    reset_in: int  # Seconds until the current window ends


class RateLimitActor:
    """
    Single owner of one key's RateLimitWindow.

    State machine: Uninitialized (no window) -> Active. The window is
    created by the first message and mutated only inside ``_handle``,
    which runs on the actor's own task.
    """

    def __init__(self, actor_id: str, clock: Clock = time.time):
        self.actor_id = actor_id
        self._clock = clock
        self._mailbox: "asyncio.Queue[Tuple[AdmissionRequest, asyncio.Future]]" = asyncio.Queue()
        self._window: Optional[RateLimitWindow] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def window(self) -> Optional[RateLimitWindow]:
        return self._window

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Spawn the actor task on the running loop."""
        if self._task is None:
            self._task = asyncio.create_task(
                self._run(), name=f"rate-limit-actor:{self.actor_id[:12]}"
            )

    async def send(self, request: AdmissionRequest) -> RateLimitResult:
        """Enqueue a request and wait for the actor's reply."""
        future = asyncio.get_running_loop().create_future()
        await self._mailbox.put((request, future))
        return await future

    async def stop(self) -> None:
        """Cancel the actor task. Pending senders receive CancelledError."""
        if self._task is None:
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

        while not self._mailbox.empty():
            _, future = self._mailbox.get_nowait()
            if not future.done():
                future.cancel()

    async def _run(self) -> None:
        while True:
            request, future = await self._mailbox.get()

            # Sender went away before we got to it; do not count it
            if future.cancelled():
                continue

            try:
                result = self._handle(request)
            except Exception as e:
                future.set_exception(e)
            else:
                future.set_result(result)

    def _handle(self, request: AdmissionRequest) -> RateLimitResult:
        now = self._clock()
        window = self._window

        if window is None:
            window = RateLimitWindow(
                count=0,
                window_start=now,
                limit=request.limit,
                window_seconds=request.window_seconds,
            )
            self._window = window
        else:
            window.limit = request.limit
            window.window_seconds = request.window_seconds

        elapsed = now - window.window_start
        if elapsed >= window.window_seconds:
            window.count = 0
            window.window_start = now
            elapsed = 0.0

        reset_in = max(0, math.ceil(window.window_seconds - elapsed))

        if window.count < window.limit:
            window.count += 1
            return RateLimitResult(
                allowed=True,
                limit=window.limit,
                remaining=window.limit - window.count,
                reset_in=reset_in,
            )

        return RateLimitResult(
            allowed=False,
            limit=window.limit,
            remaining=0,
            reset_in=reset_in,
        )


class ActorStub:
    """Handle to an actor. ``send`` is the only way to reach its state."""

    def __init__(self, actor: RateLimitActor):
        self._actor = actor

    @property
    def actor_id(self) -> str:
        return self._actor.actor_id

    async def send(self, request: AdmissionRequest) -> RateLimitResult:
        return await self._actor.send(request)


class RateLimiterNamespace:
    """
    Name -> id -> actor addressing.

    Actors are spawned lazily on first ``get`` and live until ``close``.
    """

    def __init__(self, clock: Clock = time.time):
        self._clock = clock
        self._actors: Dict[str, RateLimitActor] = {}

    @staticmethod
    def id_from_name(name: str) -> str:
        """Stable actor ID for a key name."""
        return hashlib.sha256(name.encode("utf-8")).hexdigest()

    def get(self, actor_id: str) -> ActorStub:
        """Get a stub for the actor owning ``actor_id``, spawning it if needed."""
        actor = self._actors.get(actor_id)
        if actor is None:
            actor = RateLimitActor(actor_id, clock=self._clock)
            self._actors[actor_id] = actor
        actor.start()
        return ActorStub(actor)

    def __len__(self) -> int:
        return len(self._actors)

    async def close(self) -> None:
        """Stop every actor."""
        actors = list(self._actors.values())
        self._actors.clear()
        for actor in actors:
            await actor.stop()


class RateLimiter:
    """
    Admission control facade used by the dispatcher.

    Resolves the route class of a path, looks up its (limit, window)
    policy and asks the owning actor to admit the request.
    """

    def __init__(
        self,
        policies: Dict[str, Tuple[int, int]],
        namespace: Optional[RateLimiterNamespace] = None,
        enabled: bool = True
    ):
        if DEFAULT not in policies:
            raise ValueError("Rate limit policies must define a 'default' route class")
        self.policies = dict(policies)
        self.namespace = namespace or RateLimiterNamespace()
        self.enabled = enabled

    @classmethod
    def from_settings(cls, rate_limit_settings, clock: Clock = time.time) -> "RateLimiter":
        """Build from the RateLimitSettings section."""
        return cls(
            policies=rate_limit_settings.policies,
            namespace=RateLimiterNamespace(clock=clock),
            enabled=rate_limit_settings.enabled,
        )

    def policy_for(self, route_class: str) -> Tuple[int, int]:
        return self.policies.get(route_class, self.policies[DEFAULT])

    def key_for(self, caller_identity: str, path: str) -> RateLimitKey:
        return RateLimitKey(caller_identity=caller_identity, route_class=resolve_route_class(path))

    async def check(self, caller_identity: str, path: str) -> RateLimitResult:
        """
        Admit or deny one request.

        Args:
            caller_identity: Authenticated user ID, or client IP
            path: Request path, used to pick the route class

        Returns:
            RateLimitResult with allowed status and remaining count
        """
        key = self.key_for(caller_identity, path)
        limit, window_seconds = self.policy_for(key.route_class)

        if not self.enabled:
            return RateLimitResult(allowed=True, limit=limit, remaining=limit, reset_in=window_seconds)

        stub = self.namespace.get(self.namespace.id_from_name(key.name))
        result = await stub.send(AdmissionRequest(limit=limit, window_seconds=window_seconds))

        if not result.allowed:
            logger.info(
                "Rate limit exceeded",
                route_class=key.route_class,
                actor_id=stub.actor_id[:12],
                reset_in=result.reset_in,
            )
        return result

    async def close(self) -> None:
        await self.namespace.close()
