"""Tests for BagPolicyStore -- policy CRUD, clamping and delete protection."""
import pytest

from localmem.db import PROTECTED_BAGS
from localmem.errors import PolicyViolation, ValidationError
from localmem.types import MemoryKind


class TestDefaults:
    def test_default_bags_seeded(self, bags):
        names = [b.name for b in bags.list()]
        assert names == sorted(PROTECTED_BAGS)

    def test_seed_is_idempotent(self, db, bags):
        assert db.seed_default_bags() == 0
        assert len(bags.list()) == 3

    def test_seeded_policy_values(self, bags):
        bag = bags.get("coding-style")
        assert bag.default_top_k == 8
        assert bag.recency_half_life_days == 120
        assert bag.importance_weight == pytest.approx(0.45)
        assert MemoryKind.CONSTRAINT in bag.allowed_kinds
        assert MemoryKind.SUMMARY not in bag.allowed_kinds

    def test_get_missing(self, bags):
        assert bags.get("nope") is None


class TestUpsert:
    def test_create_with_defaults(self, bags):
        bag = bags.upsert("projects")
        assert bag.default_top_k == 8
        assert bag.recency_half_life_days == 30
        assert bag.importance_weight == pytest.approx(0.35)
        assert bag.allowed_kinds == []
        assert bag.description is None
        assert bag.created_at == bag.updated_at

    def test_list_is_sorted_by_name(self, bags):
        bags.upsert("aaa")
        bags.upsert("zzz")
        names = [b.name for b in bags.list()]
        assert names == sorted(names)
        assert names[0] == "aaa" and names[-1] == "zzz"

    def test_merge_keeps_omitted_fields(self, bags):
        first = bags.upsert("projects", description="work", default_top_k=5, allowed_kinds=["fact"])
        second = bags.upsert("projects", importance_weight=1.5)
        assert second.description == "work"
        assert second.default_top_k == 5
        assert second.allowed_kinds == [MemoryKind.FACT]
        assert second.importance_weight == pytest.approx(1.5)
        assert second.created_at == first.created_at
        assert second.updated_at >= first.updated_at

    def test_none_description_clears(self, bags):
        bags.upsert("projects", description="work")
        assert bags.upsert("projects", description=None).description is None

    def test_clamping(self, bags):
        bag = bags.upsert("wild", default_top_k=1000, recency_half_life_days=0, importance_weight=-3)
        assert bag.default_top_k == 100
        assert bag.recency_half_life_days == 1
        assert bag.importance_weight == 0
        bag = bags.upsert("wild", default_top_k=0, recency_half_life_days=99999, importance_weight=7)
        assert bag.default_top_k == 1
        assert bag.recency_half_life_days == 3650
        assert bag.importance_weight == 2

    def test_fractional_top_k_truncated(self, bags):
        assert bags.upsert("frac", default_top_k=4.7).default_top_k == 4

    def test_nan_falls_back(self, bags):
        bags.upsert("nan", importance_weight=0.9)
        assert bags.upsert("nan", importance_weight=float("nan")).importance_weight == pytest.approx(0.9)

    def test_allowed_kinds_deduplicated(self, bags):
        bag = bags.upsert("kinds", allowed_kinds=["note", "FACT", "note"])
        assert bag.allowed_kinds == [MemoryKind.NOTE, MemoryKind.FACT]

    def test_empty_allowed_kinds_resets(self, bags):
        bags.upsert("kinds", allowed_kinds=["note"])
        assert bags.upsert("kinds", allowed_kinds=[]).allowed_kinds == []

    def test_invalid_kind_rejected(self, bags):
        with pytest.raises(ValidationError, match="unsupported kind"):
            bags.upsert("kinds", allowed_kinds=["note", "gossip"])
        assert bags.get("kinds") is None

    def test_name_required(self, bags):
        with pytest.raises(ValidationError):
            bags.upsert("   ")

    def test_name_trimmed(self, bags):
        assert bags.upsert("  spaced  ").name == "spaced"

    def test_wire_shape(self, bags):
        data = bags.upsert("shape", allowed_kinds=["note"]).to_dict()
        assert set(data) == {
            "name", "description", "defaultTopK", "recencyHalfLifeDays",
            "importanceWeight", "allowedKinds", "createdAt", "updatedAt",
        }
        assert data["allowedKinds"] == ["note"]


class TestDelete:
    def test_missing_bag_is_noop(self, bags):
        result = bags.delete("ghost")
        assert result.deleted is False
        assert result.memories_deleted == 0

    def test_delete_empty_bag(self, bags):
        bags.upsert("temp")
        result = bags.delete("temp")
        assert result.deleted is True
        assert bags.get("temp") is None

    def test_protected_bag_requires_allow_system(self, bags):
        with pytest.raises(PolicyViolation, match="system bag"):
            bags.delete("coding-style")
        assert bags.get("coding-style") is not None
        assert bags.delete("coding-style", allow_system=True).deleted is True

    def test_non_empty_bag_requires_force(self, bags, memories, db):
        bags.upsert("temp")
        mem = memories.store(bag="temp", kind="note", content="keep me around")
        with pytest.raises(PolicyViolation, match="force"):
            bags.delete("temp")
        assert memories.get(mem.id) is not None

        result = bags.delete("temp", force=True)
        assert result.deleted is True
        assert result.memories_deleted == 1
        assert memories.get(mem.id) is None
        assert memories.get_vector(mem.id) is None

    def test_force_delete_only_touches_own_memories(self, bags, memories):
        bags.upsert("temp")
        memories.store(bag="temp", kind="note", content="temporary")
        other = memories.store(bag="life-preferences", kind="note", content="unrelated")
        bags.delete("temp", force=True)
        assert memories.get(other.id) is not None
