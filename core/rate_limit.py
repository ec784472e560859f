"""Fixed-window rate limiting attached per route."""

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Annotated

from fastapi import Depends, Request

from core.config import settings
from utils.log_sanitizer import masked
from utils.network import get_client_ip, normalize_ip_for_key

logger = logging.getLogger(__name__)


class KeyBy(str, Enum):
    """What a rate limit counter is keyed on."""

    IDENTITY = "identity"  # authenticated subject, falling back to the address
    IP = "ip"


@dataclass(frozen=True)
class RateLimitPolicy:
    """Configuration of one route class."""

    name: str
    window_seconds: int
    max_requests: int
    key_by: KeyBy = KeyBy.IDENTITY
    message: str = "Too many requests"
    # Path parameter appended to the key, e.g. one counter per programme
    scope_param: str | None = None


@dataclass
class RateLimitWindow:
    """Counter for one (route class, identity) pair."""

    started_at: float
    count: int
    limit: int
    window_seconds: int

    def expired(self, now: float) -> bool:
        return now >= self.started_at + self.window_seconds

    def retry_after(self, now: float) -> int:
        """Seconds until the window resets, rounded up."""
        return max(1, math.ceil(self.started_at + self.window_seconds - now))

    @property
    def exceeded(self) -> bool:
        return self.count > self.limit

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)


class RateLimitExceededError(Exception):
    """Raised by a limiter dependency; rendered as a 429 by the application."""

    def __init__(self, policy: RateLimitPolicy, retry_after: int) -> None:
        self.policy = policy
        self.retry_after = retry_after
        super().__init__(f"{policy.message}. Try again in {retry_after} seconds.")

    def to_response_body(self) -> dict[str, str | int]:
        return {
            "error": "rate_limit_exceeded",
            "details": str(self),
            "retryAfter": self.retry_after,
            "limit": self.policy.max_requests,
            "windowSeconds": self.policy.window_seconds,
        }


class InMemoryRateLimitStore:
    """Process-local store of fixed windows."""

    def __init__(
        self, clock: Callable[[], float] = time.monotonic, max_keys: int = 10_000
    ) -> None:
        self._clock = clock
        self._max_keys = max_keys
        self._windows: dict[str, RateLimitWindow] = {}

    def now(self) -> float:
        return self._clock()

    def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitWindow:
        """
        Count one request against a key and return its window.

        Lookup, reset and increment happen in one synchronous block so that
        concurrent requests on the event loop cannot interleave between the
        check and the increment.
        """
        now = self._clock()
        window = self._windows.get(key)

        if window is None or window.expired(now):
            if window is None and len(self._windows) >= self._max_keys:
                self.purge_expired()
            window = RateLimitWindow(
                started_at=now, count=0, limit=limit, window_seconds=window_seconds
            )
            self._windows[key] = window

        window.count += 1
        return window

    def get(self, key: str) -> RateLimitWindow | None:
        return self._windows.get(key)

    def purge_expired(self) -> int:
        """Drop elapsed windows and return how many were removed."""
        now = self._clock()
        expired = [key for key, window in self._windows.items() if window.expired(now)]
        for key in expired:
            del self._windows[key]
        return len(expired)

    def reset(self) -> None:
        self._windows.clear()


def get_rate_limit_store(request: Request) -> InMemoryRateLimitStore:
    """Return the store attached to the application."""
    store = getattr(request.app.state, "rate_limit_store", None)
    if store is None:
        store = InMemoryRateLimitStore()
        request.app.state.rate_limit_store = store
    return store


def get_rate_limit_key(request: Request, policy: RateLimitPolicy) -> str:
    """Generate rate limit key from request."""
    user_id = getattr(request.state, "user_id", None)
    if policy.key_by == KeyBy.IDENTITY and user_id:
        key = f"{policy.name}:user:{user_id}"
    else:
        client_ip = get_client_ip(request, settings.proxy_networks())
        key = f"{policy.name}:ip:{normalize_ip_for_key(client_ip)}"

    if policy.scope_param:
        scope_value = request.path_params.get(policy.scope_param, "")
        key = f"{key}:{policy.scope_param}:{scope_value}"

    return key


class RateLimiter:
    """FastAPI dependency enforcing one policy on the routes it is attached to."""

    def __init__(self, policy: RateLimitPolicy) -> None:
        self.policy = policy

    async def __call__(self, request: Request) -> None:
        store = get_rate_limit_store(request)
        key = get_rate_limit_key(request, self.policy)
        window = store.hit(key, self.policy.max_requests, self.policy.window_seconds)
        retry_after = window.retry_after(store.now())

        if window.exceeded:
            logger.warning(
                f"🚫 Rate limit exceeded - {self.policy.name} - "
                f"{request.method} {request.url.path} - "
                f"key: {masked(key.rsplit(':', 1)[-1])}"
            )
            raise RateLimitExceededError(self.policy, retry_after)

        # Picked up by the request middleware for X-RateLimit-* headers
        request.state.rate_limit_remaining = window.remaining
        request.state.rate_limit_limit = window.limit
        request.state.rate_limit_reset = retry_after


# Route classes
GENERAL_POLICY = RateLimitPolicy(
    name="general",
    window_seconds=settings.rate_limit_window,
    max_requests=settings.rate_limit_requests,
)
STRIPE_PAYMENT_POLICY = RateLimitPolicy(
    name="stripe_payment",
    window_seconds=60,
    max_requests=5,
    message="Too many payment attempts",
)
STRIPE_SUBSCRIPTION_POLICY = RateLimitPolicy(
    name="stripe_subscription",
    window_seconds=60,
    max_requests=3,
    message="Too many subscription changes",
)
STRIPE_WEBHOOK_POLICY = RateLimitPolicy(
    name="stripe_webhook",
    window_seconds=60,
    max_requests=100,
    key_by=KeyBy.IP,
    message="Webhook rate limit exceeded",
)
GPT_POLICY = RateLimitPolicy(
    name="gpt",
    window_seconds=60,
    max_requests=5,
    message="Too many AI requests",
)
WHATSAPP_SEND_POLICY = RateLimitPolicy(
    name="whatsapp_send",
    window_seconds=60 * 60,
    max_requests=1,
    message="WhatsApp link already sent for this programme",
    scope_param="programme_id",
)

# Dependencies for rate limiting
RateLimited = Annotated[None, Depends(RateLimiter(GENERAL_POLICY))]
StripePaymentRateLimited = Annotated[None, Depends(RateLimiter(STRIPE_PAYMENT_POLICY))]
StripeSubscriptionRateLimited = Annotated[
    None, Depends(RateLimiter(STRIPE_SUBSCRIPTION_POLICY))
]
StripeWebhookRateLimited = Annotated[None, Depends(RateLimiter(STRIPE_WEBHOOK_POLICY))]
GptRateLimited = Annotated[None, Depends(RateLimiter(GPT_POLICY))]
WhatsAppSendRateLimited = Annotated[None, Depends(RateLimiter(WHATSAPP_SEND_POLICY))]
