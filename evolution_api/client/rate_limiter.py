"""Per-key, per-category fixed-window admission control for outbound calls."""

from __future__ import annotations

import logging
import sys
import time
from collections.abc import Callable, Mapping

from evolution_api.client.stores import CounterStore, MemoryCounterStore, build_store
from evolution_api.config import RateLimitSettings, default_limits
from evolution_api.errors import RateLimitExceededError
from evolution_api.models import LimitPolicy, RateLimit

logger = logging.getLogger(__name__)

UNLIMITED = sys.maxsize
KEY_PREFIX = "evolution_api_rate_limit"


class RateLimiter:
    """Counts attempts per ``(key, category)`` window.

    Once a window is exhausted the configured policy decides: ``wait`` blocks
    until the window resets, ``throw`` raises RateLimitExceededError and
    ``skip`` refuses without counting. Under ``wait`` and ``throw`` the stored
    count never exceeds the category's ``max_attempts``.
    """

    def __init__(
        self,
        store: CounterStore | None = None,
        limits: Mapping[str, RateLimit] | None = None,
        *,
        policy: LimitPolicy | str = LimitPolicy.WAIT,
        enabled: bool = True,
        max_wait: int = 0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._store = store if store is not None else MemoryCounterStore()
        self._limits: dict[str, RateLimit] = dict(limits) if limits else default_limits()
        self._policy = LimitPolicy(policy)
        self._enabled = enabled
        self._max_wait = max_wait
        self._sleep = sleep
        self._categories: set[str] = set()

    @classmethod
    def from_settings(
        cls, settings: RateLimitSettings, store: CounterStore | None = None,
        **kwargs: object,
    ) -> RateLimiter:
        return cls(
            store if store is not None else build_store(settings),
            settings.limits,
            policy=settings.on_limit_reached,
            enabled=settings.enabled,
            max_wait=settings.max_wait,
            **kwargs,  # type: ignore[arg-type]
        )

    @classmethod
    def null(cls) -> RateLimiter:
        """A limiter that admits everything."""
        return cls(enabled=False)

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def policy(self) -> LimitPolicy:
        return self._policy

    def enable(self) -> RateLimiter:
        self._enabled = True
        return self

    def disable(self) -> RateLimiter:
        self._enabled = False
        return self

    def set_policy(self, policy: LimitPolicy | str) -> RateLimiter:
        """Change the exhaustion policy. Unknown policies raise ValueError."""
        self._policy = LimitPolicy(policy)
        return self

    def set_limits(self, category: str, max_attempts: int, decay_seconds: int) -> RateLimiter:
        self._limits[category] = RateLimit(max_attempts=max_attempts, decay_seconds=decay_seconds)
        return self

    def limits_for(self, category: str) -> RateLimit:
        """Limits for ``category``; unknown categories share ``default``'s."""
        if category in self._limits:
            return self._limits[category]
        return self._limits.get("default") or RateLimit(max_attempts=60, decay_seconds=60)

    def attempt(self, key: str, category: str = "default") -> bool:
        """Try to admit one call for ``key``. True means the call may proceed."""
        if not self._enabled:
            return True
        limit = self.limits_for(category)
        storage_key = self._storage_key(key, category)
        self._categories.add(category)

        while True:
            if self._store.increment_below(storage_key, limit.max_attempts, limit.decay_seconds):
                return True

            logger.warning(
                "Rate limit reached for %s [%s] (policy=%s)", key, category, self._policy.value,
            )
            if self._policy is LimitPolicy.THROW:
                raise RateLimitExceededError(
                    f"Rate limit exceeded for category '{category}'",
                    retry_after=self.available_in(key, category),
                    category=category,
                )
            if self._policy is LimitPolicy.SKIP:
                return False
            if not self.wait(key, category, self._max_wait):
                return False

    def is_exceeded(self, key: str, category: str = "default") -> bool:
        if not self._enabled:
            return False
        limit = self.limits_for(category)
        return self._store.get(self._storage_key(key, category)) >= limit.max_attempts

    def remaining(self, key: str, category: str = "default") -> int:
        if not self._enabled:
            return UNLIMITED
        limit = self.limits_for(category)
        used = self._store.get(self._storage_key(key, category))
        return max(0, limit.max_attempts - used)

    def available_in(self, key: str, category: str = "default") -> int:
        """Seconds until the window resets; 0 without an active window.

        Stores that cannot report a TTL yield the full decay period, which may
        overstate the real wait.
        """
        if not self._enabled:
            return 0
        storage_key = self._storage_key(key, category)
        if not self._store.has(storage_key):
            return 0
        ttl = getattr(self._store, "ttl", None)
        if ttl is None:
            return self.limits_for(category).decay_seconds
        seconds = ttl(storage_key)
        return 0 if seconds is None else seconds

    def wait(self, key: str, category: str = "default", max_wait: int = 0) -> bool:
        """Block until ``key`` may be admitted again.

        Returns False when a positive ``max_wait`` budget (seconds) would be
        exceeded, or when the category admits nothing at all.
        """
        if not self._enabled:
            return True
        if self.limits_for(category).max_attempts == 0:
            return False
        budget = max_wait
        while self.is_exceeded(key, category):
            delay = max(self.available_in(key, category), 1)
            if max_wait > 0 and delay > budget:
                logger.info(
                    "Giving up waiting on %s [%s]: %ss left, budget %ss", key, category, delay, budget,
                )
                return False
            logger.debug("Waiting %ss for %s [%s] window to reset", delay, key, category)
            self._sleep(delay)
            budget -= delay
        return True

    def clear(self, key: str, category: str | None = None) -> None:
        """Reset one category's window, or every known category for ``key``."""
        categories = [category] if category is not None else set(self._limits) | self._categories
        for name in categories:
            self._store.forget(self._storage_key(key, name))

    @staticmethod
    def _storage_key(key: str, category: str) -> str:
        return f"{KEY_PREFIX}:{category}:{key}"
