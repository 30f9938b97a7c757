"""
possumbly.config — YAML Configuration Loader
=============================================

Reads ``config.yaml`` for **soft** settings: site identity, session
lifetime, audit retention and the per-group rate limits.  Secrets and
infrastructure (``JWT_SECRET``, ``DATABASE_URL``, OAuth client credentials)
stay in the environment / ``.env``.

Usage::

    from possumbly.config import load_config

    cfg = load_config()                 # reads ./config.yaml if present
    print(cfg.site_name)                # "Possumbly"
    print(cfg.rate_limits["vote"])      # RateLimitRule(max_requests=60, ...)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Rate-limit rules
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class RateLimitRule:
    """``max_requests`` per ``window_seconds`` for one limiter group."""

    max_requests: int
    window_seconds: int
    message: str = "Too many requests, please try again later"


DEFAULT_RATE_LIMITS: dict[str, RateLimitRule] = {
    "global": RateLimitRule(1000, 15 * 60),
    "auth": RateLimitRule(
        20, 15 * 60, "Too many authentication attempts, please try again later"
    ),
    "invite_redeem": RateLimitRule(
        10, 60 * 60, "Too many invite code attempts, please try again later"
    ),
    "render": RateLimitRule(
        60, 15 * 60, "Too many render requests. Please try again later."
    ),
    "delete": RateLimitRule(
        30, 15 * 60, "Too many delete requests. Please try again later."
    ),
    "upload": RateLimitRule(20, 60 * 60, "Too many uploads. Please try again later."),
    "vote": RateLimitRule(
        60, 15 * 60, "Too many vote requests. Please try again later."
    ),
    "gallery": RateLimitRule(
        100, 15 * 60, "Too many gallery requests. Please try again later."
    ),
}


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class PossumblyConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    site_name: str = "Possumbly"
    public_url: str = "http://localhost:5173"

    # Sessions
    session_hours: int = 7 * 24

    # Audit log
    audit_retention_days: int = 30
    audit_flush_seconds: int = 30

    # Reverse proxies in front of the app; 0 keys rate limits on the peer address
    trusted_proxies: int = 0

    rate_limits: dict[str, RateLimitRule] = field(
        default_factory=lambda: dict(DEFAULT_RATE_LIMITS)
    )

    @property
    def production(self) -> bool:
        return os.getenv("POSSUMBLY_ENV", "").lower() == "production"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def _parse_rate_limits(raw: dict | None) -> dict[str, RateLimitRule]:
    rules = dict(DEFAULT_RATE_LIMITS)
    for group, values in (raw or {}).items():
        if group not in rules:
            raise KeyError(f"Unknown rate limit group: {group!r}")
        base = rules[group]
        rules[group] = RateLimitRule(
            max_requests=int(values.get("max_requests", base.max_requests)),
            window_seconds=int(values.get("window_seconds", base.window_seconds)),
            message=values.get("message", base.message),
        )
    return rules


def load_config(path: str | Path | None = None) -> PossumblyConfig:
    """Read *path* and return a :class:`PossumblyConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.  Defaults to
        ``$POSSUMBLY_CONFIG`` or ``config.yaml`` in the working directory.
        A missing file yields the built-in defaults.

    Raises
    ------
    KeyError
        If ``rate_limits`` names an unknown limiter group.
    """
    config_path = Path(path or os.getenv("POSSUMBLY_CONFIG", "config.yaml"))
    public_url = os.getenv("PUBLIC_URL", "").strip().rstrip("/")

    if not config_path.exists():
        logger.info("No config file at %s — using defaults", config_path.resolve())
        if public_url:
            return PossumblyConfig(public_url=public_url)
        return PossumblyConfig()

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    defaults = PossumblyConfig()
    return PossumblyConfig(
        site_name=raw.get("site_name", defaults.site_name),
        public_url=public_url or raw.get("public_url", defaults.public_url).rstrip("/"),
        session_hours=int(raw.get("session_hours", defaults.session_hours)),
        audit_retention_days=int(
            raw.get("audit_retention_days", defaults.audit_retention_days)
        ),
        audit_flush_seconds=int(
            raw.get("audit_flush_seconds", defaults.audit_flush_seconds)
        ),
        trusted_proxies=int(raw.get("trusted_proxies", defaults.trusted_proxies)),
        rate_limits=_parse_rate_limits(raw.get("rate_limits")),
    )
