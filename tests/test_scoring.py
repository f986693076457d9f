"""Tests for localmem.scoring -- vector math and ranking boosts."""
from datetime import datetime, timedelta, timezone

import pytest

from localmem.models import BagPolicy
from localmem.scoring import (
    cosine_similarity,
    importance_boost,
    parse_timestamp,
    recency_boost,
    tag_boost,
    vector_norm,
)

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _iso(dt):
    return dt.isoformat()


class TestVectorMath:
    def test_norm(self):
        assert vector_norm([3, 4]) == 5
        assert vector_norm([]) == 0

    def test_identical_vectors(self):
        assert cosine_similarity([1, 2, 3], [1, 2, 3]) == pytest.approx(1.0, abs=1e-9)

    def test_opposite_vectors(self):
        assert cosine_similarity([1, 0], [-1, 0]) == pytest.approx(-1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1, 0], [0, 1]) == 0.0

    def test_dimension_mismatch_is_incomparable(self):
        assert cosine_similarity([1, 2], [1, 2, 3]) == -1.0

    def test_zero_norm(self):
        assert cosine_similarity([0, 0], [1, 1]) == 0.0
        assert cosine_similarity([1, 1], [0, 0]) == 0.0

    def test_precomputed_norm_matches(self):
        a, b = [0.2, 0.5, 0.1], [0.9, 0.4, 0.3]
        assert cosine_similarity(a, b, vector_norm(b)) == pytest.approx(cosine_similarity(a, b))

    def test_precomputed_zero_norm(self):
        assert cosine_similarity([1, 1], [1, 1], 0.0) == 0.0


class TestRecencyBoost:
    def test_fresh_memory_gets_max(self):
        created = NOW - timedelta(milliseconds=1)
        assert recency_boost(_iso(created), 30, now=NOW) == pytest.approx(0.2, rel=1e-6)

    def test_one_half_life(self):
        created = NOW - timedelta(days=30)
        assert recency_boost(_iso(created), 30, now=NOW) == pytest.approx(0.1)

    def test_newer_beats_older(self):
        recent = recency_boost(_iso(NOW - timedelta(hours=1)), 30, now=NOW)
        old = recency_boost(_iso(NOW - timedelta(days=60)), 30, now=NOW)
        assert recent > old

    def test_future_timestamp_gets_flat_bonus(self):
        assert recency_boost(_iso(NOW + timedelta(days=2)), 30, now=NOW) == 0.15

    def test_same_instant_counts_as_future(self):
        assert recency_boost(_iso(NOW), 30, now=NOW) == 0.15

    def test_unparseable(self):
        assert recency_boost("yesterday-ish", 30, now=NOW) == 0.0
        assert recency_boost(None, 30, now=NOW) == 0.0

    def test_non_positive_half_life(self):
        created = _iso(NOW - timedelta(days=1))
        assert recency_boost(created, 0, now=NOW) == 0.0
        assert recency_boost(created, -5, now=NOW) == 0.0

    def test_z_suffix_parses(self):
        assert parse_timestamp("2026-03-01T12:00:00Z") == NOW

    def test_naive_timestamp_is_utc(self):
        assert parse_timestamp("2026-03-01T12:00:00") == NOW


class TestImportanceBoost:
    def test_scaled_by_weight(self):
        policy = BagPolicy("b", importance_weight=0.5)
        assert importance_boost(5, policy) == pytest.approx(0.5)
        assert importance_boost(3, policy) == pytest.approx(0.3)

    def test_clamped(self):
        policy = BagPolicy("b", importance_weight=1.0)
        assert importance_boost(0, policy) == pytest.approx(0.2)
        assert importance_boost(12, policy) == pytest.approx(1.0)

    def test_zero_weight(self):
        assert importance_boost(5, BagPolicy("b", importance_weight=0.0)) == 0.0


class TestTagBoost:
    def test_no_overlap(self):
        assert tag_boost(["bun"], ["typescript"]) == 0.0

    def test_increases_with_overlap(self):
        one = tag_boost(["bun"], ["bun", "typescript"])
        two = tag_boost(["bun", "typescript"], ["bun", "typescript"])
        assert one == pytest.approx(0.06)
        assert two == pytest.approx(0.12)

    def test_case_insensitive(self):
        assert tag_boost(["Python"], ["python"]) == pytest.approx(0.06)

    def test_capped(self):
        tags = ["a", "b", "c", "d", "e"]
        assert tag_boost(tags, tags) == pytest.approx(0.2)

    def test_empty_lists(self):
        assert tag_boost([], ["a"]) == 0.0
        assert tag_boost(["a"], []) == 0.0
