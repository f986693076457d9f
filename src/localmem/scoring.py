"""
localmem Scoring -- pure vector math and bounded ranking boosts.

Similarity lives in [-1, 1]. Each boost is bounded and added to it; the sum
is not normalised, since ranking only needs relative order.
"""

import math
from datetime import datetime, timezone
from typing import Optional, Sequence

from localmem.models import BagPolicy

RECENCY_MAX_BOOST = 0.2
FUTURE_RECENCY_BOOST = 0.15
TAG_BOOST_PER_MATCH = 0.06
TAG_BOOST_CAP = 0.2

_MS_PER_DAY = 24 * 60 * 60 * 1000


def vector_norm(values: Sequence[float]) -> float:
    """Euclidean norm."""
    return math.sqrt(sum(v * v for v in values))


def cosine_similarity(a: Sequence[float], b: Sequence[float], b_norm: Optional[float] = None) -> float:
    """Cosine similarity of *a* and *b*.

    Returns -1 when the vectors have different dimensionality (incomparable)
    and 0 when either vector has zero norm. *b_norm* skips recomputing the
    norm of *b* when scoring many candidates against one query.
    """
    if len(a) != len(b):
        return -1.0
    a_norm = vector_norm(a)
    right_norm = vector_norm(b) if b_norm is None else b_norm
    if a_norm == 0 or right_norm == 0:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    return dot / (a_norm * right_norm)


def parse_timestamp(value) -> Optional[datetime]:
    """Parse an ISO-8601 string (or datetime) into an aware UTC datetime.

    Returns None when the value cannot be parsed.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        # fromisoformat only accepts the Z suffix from 3.11 on
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def recency_boost(created_at, half_life_days: float, now: Optional[datetime] = None) -> float:
    """Exponential-decay bonus in (0, 0.2] for a memory created at *created_at*.

    Unparseable timestamps score 0. Timestamps at or after *now* (clock skew)
    get a flat 0.15. A non-positive half-life disables the boost.
    """
    created = parse_timestamp(created_at)
    if created is None:
        return 0.0
    now = now or datetime.now(timezone.utc)
    age_ms = (now - created).total_seconds() * 1000.0
    if age_ms <= 0:
        return FUTURE_RECENCY_BOOST
    half_life_ms = half_life_days * _MS_PER_DAY
    if half_life_ms <= 0:
        return 0.0
    return math.pow(0.5, age_ms / half_life_ms) * RECENCY_MAX_BOOST


def importance_boost(importance: float, policy: BagPolicy) -> float:
    """Importance scaled into [0.2, 1] and weighted by the bag policy."""
    normalized = max(1, min(5, importance)) / 5
    return normalized * policy.importance_weight


def tag_boost(query_tags: Sequence[str], memory_tags: Sequence[str]) -> float:
    """Case-insensitive tag overlap bonus: 0.06 per shared tag, capped at 0.2."""
    if not query_tags or not memory_tags:
        return 0.0
    memory_set = {t.lower() for t in memory_tags}
    overlap = sum(1 for t in query_tags if t.lower() in memory_set)
    if overlap == 0:
        return 0.0
    return min(TAG_BOOST_CAP, overlap * TAG_BOOST_PER_MATCH)
