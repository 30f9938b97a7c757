"""
possumbly.engine.ranking — Gallery Ranking & Pagination
========================================================

Pure functions, no I/O.  The gallery service feeds in plain dicts carrying
``upvotes``, ``downvotes``, ``score`` and ``created_at`` (epoch millis).

Hot score (Reddit-style)::

    order = log10(max(|score|, 1))
    sign  = sign(score)
    age   = created_at_ms / 1000 - HOT_EPOCH_SECONDS
    hot   = sign * order + age / HOT_DECAY_SECONDS

A tenfold vote difference is worth 45000 seconds (12.5 hours) of age.

Ties on the sort key keep the order the items arrive in.  Callers pass
items in insertion order (``created_at``, then ``id``) so equal keys rank
the earlier post first.
"""

from __future__ import annotations

import math
import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from possumbly.constants import (
    GALLERY_DEFAULT_LIMIT,
    GALLERY_MAX_LIMIT,
    GALLERY_PERIODS_MS,
    GALLERY_SORTS,
    HOT_DECAY_SECONDS,
    HOT_EPOCH_SECONDS,
)


def hot_score(upvotes: int, downvotes: int, created_at_ms: int | float) -> float:
    """Time-decayed ranking score for one meme."""
    score = upvotes - downvotes
    order = math.log10(max(abs(score), 1))
    sign = 1 if score > 0 else -1 if score < 0 else 0
    seconds = created_at_ms / 1000 - HOT_EPOCH_SECONDS
    return sign * order + seconds / HOT_DECAY_SECONDS


def within_period(created_at_ms: int, now_ms: int, period: str) -> bool:
    """True if the item is no older than *period* (``all`` always matches)."""
    period_ms = GALLERY_PERIODS_MS[period]
    if period_ms is None:
        return True
    return now_ms - created_at_ms <= period_ms


def sort_items(items: Sequence[dict[str, Any]], sort: str) -> list[dict[str, Any]]:
    """Order gallery items by *sort* (``hot``, ``top`` or ``new``), descending.

    ``sorted`` is stable and keeps equal keys in input order even with
    ``reverse=True``.
    """
    if sort not in GALLERY_SORTS:
        raise ValueError(f"Invalid sort: {sort!r}")

    if sort == "hot":
        key = lambda m: hot_score(m["upvotes"], m["downvotes"], m["created_at"])  # noqa: E731
    elif sort == "top":
        key = lambda m: m["score"]  # noqa: E731
    else:
        key = lambda m: m["created_at"]  # noqa: E731
    return sorted(items, key=key, reverse=True)


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------
_LEADING_INT = re.compile(r"\s*([-+]?[0-9]+)")


def _parse_int(raw: Any, default: int) -> int:
    """Leading integer of *raw* (``"5abc"`` → 5, ``"1.5"`` → 1), else *default*."""
    if raw is None or isinstance(raw, bool):
        return default
    if isinstance(raw, int):
        return raw
    match = _LEADING_INT.match(str(raw))
    return int(match.group(1)) if match else default


def clamp_page(raw: Any) -> int:
    """1-indexed page number; garbage or values below 1 become 1."""
    return max(1, _parse_int(raw, 1))


def clamp_limit(raw: Any) -> int:
    """Page size clamped to ``[1, GALLERY_MAX_LIMIT]``; garbage → default."""
    return min(GALLERY_MAX_LIMIT, max(1, _parse_int(raw, GALLERY_DEFAULT_LIMIT)))


@dataclass(frozen=True, slots=True)
class Page:
    items: list[dict[str, Any]]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit)

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1

    def pagination(self) -> dict[str, Any]:
        return {
            "page": self.page,
            "limit": self.limit,
            "total": self.total,
            "totalPages": self.total_pages,
            "hasNext": self.has_next,
            "hasPrev": self.has_prev,
        }


def paginate(items: Sequence[dict[str, Any]], page: int, limit: int) -> Page:
    """Slice an already-sorted sequence into one :class:`Page`."""
    offset = (page - 1) * limit
    return Page(
        items=list(items[offset:offset + limit]),
        page=page,
        limit=limit,
        total=len(items),
    )
