"""
possumbly.api.rate_limit — Per-IP Sliding-Window Rate Limiting
===============================================================

Independent limiter groups (``global``, ``auth``, ``invite_redeem``,
``render``, ``delete``, ``upload``, ``vote``, ``gallery``), each keyed by
client IP with the limits from :data:`possumbly.config.DEFAULT_RATE_LIMITS`
or ``config.yaml``.

State is in-process memory: one deque of timestamps per IP per group,
pruned on every check.  Keys whose window has passed are dropped, and a
sweep once per window forgets idle clients.  A request is counted only
after it passes, so rejected requests never extend a block.  Over-limit
requests get HTTP 429 with a ``Retry-After`` header.

Buckets are keyed on the TCP peer, or on the ``X-Forwarded-For`` hop added
by the outermost trusted proxy when ``trusted_proxies`` is configured.

Usage::

    @router.post("/redeem", dependencies=[Depends(rate_limit("invite_redeem"))])
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from typing import Any

from fastapi import Depends, HTTPException, Request, status

from possumbly.api.deps import get_config
from possumbly.config import PossumblyConfig, RateLimitRule

logger = logging.getLogger(__name__)


class SlidingWindowLimiter:
    """Sliding-window rate limiter keyed by client IP."""

    def __init__(self, rule: RateLimitRule, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.rule = rule
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._lock = threading.RLock()
        self._next_sweep = clock() + rule.window_seconds

    @property
    def max_requests(self) -> int:
        return self.rule.max_requests

    @property
    def window_seconds(self) -> int:
        return self.rule.window_seconds

    @property
    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._hits)

    def _sweep(self, now: float) -> None:
        for key in list(self._hits):
            self._prune(key, now)
        self._next_sweep = now + self.rule.window_seconds

    def _prune(self, key: str, now: float) -> deque[float]:
        """Drop expired hits for *key*; keys with no live hits are forgotten."""
        hits = self._hits.get(key)
        if hits is None:
            return deque()
        cutoff = now - self.rule.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()
        if not hits:
            del self._hits[key]
        return hits

    def check(self, key: str) -> tuple[bool, dict[str, Any]]:
        """Check if *key* is within its limit.

        Returns (allowed, info) where info contains:
          - remaining: requests remaining in the window
          - reset: seconds until the oldest request expires
          - limit: the max requests per window
        """
        now = self._clock()
        with self._lock:
            if now >= self._next_sweep:
                self._sweep(now)
            hits = self._prune(key, now)
            count = len(hits)
            if count >= self.rule.max_requests:
                reset = hits[0] + self.rule.window_seconds - now
                return False, {
                    "remaining": 0,
                    "reset": max(1, int(reset) + 1),
                    "limit": self.rule.max_requests,
                }
        return True, {
            "remaining": self.rule.max_requests - count,
            "reset": self.rule.window_seconds,
            "limit": self.rule.max_requests,
        }

    def record(self, key: str) -> dict[str, Any]:
        """Count one accepted request and return the updated info."""
        now = self._clock()
        with self._lock:
            hits = self._prune(key, now)
            hits.append(now)
            self._hits[key] = hits
            count = len(hits)
        return {
            "remaining": max(0, self.rule.max_requests - count),
            "reset": self.rule.window_seconds,
            "limit": self.rule.max_requests,
        }

    def hit(self, key: str) -> tuple[bool, dict[str, Any]]:
        """Atomic :meth:`check` + :meth:`record`; rejected hits are not counted."""
        with self._lock:
            allowed, info = self.check(key)
            if allowed:
                info = self.record(key)
        return allowed, info

    def reset(self, key: str | None = None) -> None:
        """Clear rate limit state. If key is None, clear all."""
        with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)


# ---------------------------------------------------------------------------
# Module-level registry
# ---------------------------------------------------------------------------
_limiters: dict[str, SlidingWindowLimiter] | None = None
_registry_lock = threading.Lock()


def configure_rate_limiters(cfg: PossumblyConfig) -> dict[str, SlidingWindowLimiter]:
    """(Re)build one limiter per configured group."""
    global _limiters
    with _registry_lock:
        _limiters = {
            group: SlidingWindowLimiter(rule) for group, rule in cfg.rate_limits.items()
        }
        return _limiters


def get_limiters(cfg: PossumblyConfig) -> dict[str, SlidingWindowLimiter]:
    """Return the registry, building it from *cfg* on first use."""
    if _limiters is None:
        return configure_rate_limiters(cfg)
    return _limiters


def reset_rate_limiters() -> None:
    """Drop the registry; the next request rebuilds it from config."""
    global _limiters
    with _registry_lock:
        _limiters = None


# ---------------------------------------------------------------------------
# FastAPI dependency factory
# ---------------------------------------------------------------------------
def rate_limit_key(request: Request, trusted_proxies: int = 0) -> str:
    """Address a limiter bucket is keyed on.

    With no trusted proxies this is the TCP peer.  Behind *trusted_proxies*
    reverse proxies it is the ``X-Forwarded-For`` hop that many entries from
    the right, the address the outermost trusted proxy saw.  Hops to the left
    of it are written by the client and never used.
    """
    peer = request.client.host if request.client else "unknown"
    if trusted_proxies <= 0:
        return peer
    forwarded = request.headers.get("x-forwarded-for", "")
    hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
    if not hops:
        return peer
    return hops[-min(trusted_proxies, len(hops))]


def rate_limit(group: str) -> Callable[..., None]:
    """Build a dependency that enforces the *group* limiter for the caller's IP."""

    def _enforce(request: Request, cfg: PossumblyConfig = Depends(get_config)) -> None:
        limiter = get_limiters(cfg)[group]
        key = rate_limit_key(request, cfg.trusted_proxies)

        allowed, info = limiter.hit(key)
        if not allowed:
            logger.warning(
                "Rate limit %r exceeded for %s: %d requests per %ds",
                group, key, limiter.max_requests, limiter.window_seconds,
            )
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail={
                    "error": "rate_limit_exceeded",
                    "message": limiter.rule.message,
                    "retry_after": info["reset"],
                },
                headers={"Retry-After": str(info["reset"])},
            )

    _enforce.__name__ = f"rate_limit_{group}"
    return _enforce
