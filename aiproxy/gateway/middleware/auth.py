"""
Gateway Authentication Middleware.

This module authorizes gateway callers from the Bearer token of the
Authorization header. Two token kinds are accepted:

- UUID-shaped subscription IDs, checked against the subscription oracle
  (Supabase RPC ``has_active_cloud_subscription``) through a TTL cache
- Opaque session tokens, checked against the identity provider (Clerk)

Features:
- Read-through subscription cache with per-entry expiry
- Distinct error messages for a missing header and a rejected token
- Oracle failures count as "not authorized" and never as request errors
"""

import re
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import httpx
import structlog

from aiproxy.gateway.errors import AuthError

logger = structlog.get_logger(__name__)

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

UNAUTHORIZED = "unauthorized"
INVALID_SUBSCRIPTION = "invalid subscription"


def is_uuid(token: str) -> bool:
    return bool(UUID_PATTERN.match(token))


@dataclass
class AuthContext:
    """Authentication context for a gateway request."""

    user_id: str
    method: str  # "subscription" | "session"


@dataclass
class SubscriptionCacheEntry:
    result: bool
    expires_at: float


class SubscriptionCache:
    """TTL cache of subscription oracle results, keyed by token."""

    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, SubscriptionCacheEntry] = {}

    def get(self, key: str) -> Optional[bool]:
        """Cached result, or None on a miss. Expired entries are evicted."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry.result

    def set(self, key: str, result: bool) -> None:
        """Store a result, dropping every entry that has already expired."""
        now = self._clock()
        expired = [k for k, entry in self._entries.items() if entry.expires_at <= now]
        for k in expired:
            del self._entries[k]

        self._entries[key] = SubscriptionCacheEntry(
            result=result,
            expires_at=now + self.ttl_seconds,
        )

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class SubscriptionVerifier:
    """Checks UUID subscription tokens against the Supabase RPC."""

    RPC_PATH = "/rest/v1/rpc/has_active_cloud_subscription"

    def __init__(
        self,
        client: httpx.AsyncClient,
        supabase_url: str,
        anon_key: str,
        cache: Optional[SubscriptionCache] = None
    ):
        self.client = client
        self.supabase_url = supabase_url.rstrip("/")
        self.anon_key = anon_key
        self.cache = cache or SubscriptionCache()

    async def verify(self, token: str) -> bool:
        """
        Check whether the token has an active subscription.

        Only answers from the oracle are cached; oracle failures are
        reported as False and retried on the next call.
        """
        if not is_uuid(token):
            return False

        cached = self.cache.get(token)
        if cached is not None:
            return cached

        if not self.supabase_url:
            logger.warning("Subscription oracle not configured")
            return False

        try:
            response = await self.client.post(
                f"{self.supabase_url}{self.RPC_PATH}",
                headers={
                    "apikey": self.anon_key,
                    "Authorization": f"Bearer {self.anon_key}",
                    "Content-Type": "application/json",
                },
                json={"input_user_id": token},
            )
        except httpx.HTTPError as e:
            logger.error("Subscription check failed", error=str(e))
            return False

        if response.status_code >= 400:
            logger.error(
                "Subscription check returned error status",
                status_code=response.status_code,
            )
            return False

        try:
            result = response.json() is True
        except ValueError as e:
            logger.error("Subscription check returned invalid JSON", error=str(e))
            return False

        self.cache.set(token, result)
        return result


class IdentityVerifier:
    """Verifies session tokens with the Clerk Backend API."""

    VERIFY_PATH = "/v1/tokens/verify"

    def __init__(
        self,
        client: httpx.AsyncClient,
        secret_key: str,
        api_url: str = "https://api.clerk.com"
    ):
        self.client = client
        self.secret_key = secret_key
        self.api_url = api_url.rstrip("/")

    async def verify(self, token: str) -> Optional[str]:
        """Return the token's subject (user ID), or None if it is not valid."""
        if not self.secret_key:
            return None

        try:
            response = await self.client.post(
                f"{self.api_url}{self.VERIFY_PATH}",
                headers={"Authorization": f"Bearer {self.secret_key}"},
                json={"token": token},
            )
        except httpx.HTTPError as e:
            logger.error("Session token verification failed", error=str(e))
            return None

        if response.status_code >= 400:
            logger.debug("Session token rejected", status_code=response.status_code)
            return None

        try:
            payload = response.json()
        except ValueError:
            return None

        if not isinstance(payload, dict):
            return None
        return payload.get("sub") or None


class GatewayAuthenticator:
    """
    Authenticates gateway requests from the Authorization header.

    Performs:
    1. Bearer token extraction
    2. Subscription check for UUID tokens (cached)
    3. Session token check with the identity provider
    """

    def __init__(
        self,
        subscriptions: SubscriptionVerifier,
        identities: IdentityVerifier
    ):
        self.subscriptions = subscriptions
        self.identities = identities

    @classmethod
    def from_settings(
        cls,
        auth_settings,
        client: httpx.AsyncClient,
        clock: Callable[[], float] = time.time
    ) -> "GatewayAuthenticator":
        """Build from the AuthSettings section."""
        cache = SubscriptionCache(ttl_seconds=auth_settings.subscription_cache_ttl, clock=clock)
        return cls(
            subscriptions=SubscriptionVerifier(
                client,
                auth_settings.supabase_url,
                auth_settings.supabase_anon_key,
                cache=cache,
            ),
            identities=IdentityVerifier(
                client,
                auth_settings.clerk_secret_key,
                api_url=auth_settings.clerk_api_url,
            ),
        )

    async def authenticate(self, authorization_header: Optional[str]) -> AuthContext:
        """
        Authenticate a request using the Authorization header.

        Returns:
            AuthContext with the caller's user ID

        Raises:
            AuthError: "unauthorized" without a Bearer token,
                "invalid subscription" if neither oracle accepts it
        """
        token = self._extract_bearer_token(authorization_header)

        if await self.subscriptions.verify(token):
            return AuthContext(user_id=token, method="subscription")

        user_id = await self.identities.verify(token)
        if user_id:
            return AuthContext(user_id=user_id, method="session")

        logger.info("Rejected caller token", uuid_token=is_uuid(token))
        raise AuthError(INVALID_SUBSCRIPTION)

    def _extract_bearer_token(self, authorization_header: Optional[str]) -> str:
        """Extract the Bearer token from Authorization header."""
        if not authorization_header:
            raise AuthError(UNAUTHORIZED)

        parts = authorization_header.split()
        if len(parts) != 2 or parts[0].lower() != "bearer":
            raise AuthError(UNAUTHORIZED)

        return parts[1]
