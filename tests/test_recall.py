"""Tests for RecallEngine -- candidate selection, filters, ranking, access stamps."""
import sqlite3
import time
from datetime import datetime, timedelta, timezone

import pytest

from conftest import BrokenEmbedder
from localmem.config import Settings
from localmem.errors import EmbeddingTimeout, ValidationError
from localmem.recall import FALLBACK_POLICY, RecallEngine


def _ids(results):
    return [r.memory.id for r in results]


class TestValidation:
    def test_empty_query(self, engine, embedder):
        with pytest.raises(ValidationError, match="query"):
            engine.recall("   ")
        assert embedder.calls == []

    def test_bad_kind_filter(self, engine, embedder):
        with pytest.raises(ValidationError):
            engine.recall("anything", kinds=["gossip"])
        assert embedder.calls == []

    def test_embedding_timeout_propagates(self, db, bags, settings, memories):
        memories.store(bag="coding-style", kind="note", content="something")
        broken = RecallEngine(db, bags, BrokenEmbedder(EmbeddingTimeout("slow")), settings)
        with pytest.raises(EmbeddingTimeout) as exc_info:
            broken.recall("something")
        assert exc_info.value.retryable is True


class TestRanking:
    def test_most_similar_first(self, engine, memories):
        pathlib = memories.store(bag="coding-style", kind="preference", content="prefer pathlib for file paths")
        memories.store(bag="coding-style", kind="preference", content="use black for formatting")
        memories.store(bag="life-preferences", kind="preference", content="coffee without sugar")

        results = engine.recall("pathlib file paths")
        assert results[0].memory.id == pathlib.id
        assert results[0].breakdown.similarity > results[1].breakdown.similarity

    def test_scores_sorted_and_breakdown_adds_up(self, engine, memories):
        for text in ("alpha beta", "beta gamma", "gamma delta", "alpha alpha"):
            memories.store(bag="coding-style", kind="note", content=text, tags=["x"])
        results = engine.recall("alpha", tags=["x"])
        scores = [r.score for r in results]
        assert scores == sorted(scores, reverse=True)
        for r in results:
            b = r.breakdown
            assert r.score == pytest.approx(b.similarity + b.recency_boost + b.importance_boost + b.tag_boost)
            assert b.tag_boost == pytest.approx(0.06)

    def test_importance_uses_bag_weight(self, engine, memories, bags):
        mem = memories.store(bag="life-preferences", kind="fact", content="lives in lisbon", importance=5)
        result = engine.recall("lisbon")[0]
        assert result.memory.id == mem.id
        assert result.breakdown.importance_boost == pytest.approx(bags.get("life-preferences").importance_weight)

    def test_exact_ties_keep_newest_first(self, engine, memories):
        first = memories.store(bag="coding-style", kind="note", content="identical words here")
        second = memories.store(bag="coding-style", kind="note", content="identical words here")
        # both created_at values lie after `now`, so every component ties
        results = engine.recall("identical words here", now=datetime.now(timezone.utc) - timedelta(days=2))
        assert results[0].score == results[1].score
        assert _ids(results[:2]) == [second.id, first.id]

    def test_wire_shape(self, engine, memories):
        memories.store(bag="coding-style", kind="note", content="wire shape")
        data = engine.recall("wire shape")[0].to_dict()
        assert set(data) == {"memory", "score", "scoreBreakdown"}
        assert set(data["scoreBreakdown"]) == {"similarity", "recencyBoost", "importanceBoost", "tagBoost"}
        assert data["memory"]["kind"] == "note"


class TestTopK:
    def _fill(self, memories, bag, n):
        return [memories.store(bag=bag, kind="note", content=f"repeated topic item {i}") for i in range(n)]

    def test_explicit_top_k(self, engine, memories):
        self._fill(memories, "coding-style", 5)
        assert len(engine.recall("repeated topic", top_k=2)) == 2

    def test_bag_default_top_k(self, engine, memories):
        self._fill(memories, "life-preferences", 9)
        assert len(engine.recall("repeated topic", bag="life-preferences")) == 6

    def test_global_default_without_bag(self, engine, memories):
        self._fill(memories, "coding-style", 10)
        assert len(engine.recall("repeated topic")) == 8

    def test_top_k_clamped(self, engine, memories):
        self._fill(memories, "coding-style", 3)
        assert len(engine.recall("repeated topic", top_k=0)) == 1
        assert len(engine.recall("repeated topic", top_k=1000)) == 3

    def test_unknown_bag_uses_fallback_top_k(self, engine):
        assert engine.resolve_top_k(None, "missing") == FALLBACK_POLICY.default_top_k

    def test_candidate_limit_at_least_top_k(self, engine):
        assert engine.resolve_candidate_limit(1, 10) == 10
        assert engine.resolve_candidate_limit(None, 10) == 600
        assert engine.resolve_candidate_limit(99999, 10) == 5000

    def test_candidate_limit_uses_settings(self, db, bags, embedder):
        custom = RecallEngine(db, bags, embedder, Settings(default_candidate_limit=42))
        assert custom.resolve_candidate_limit(None, 8) == 42

    def test_candidate_limit_keeps_newest(self, engine, memories):
        created = self._fill(memories, "coding-style", 6)
        results = engine.recall("repeated topic", top_k=3, candidate_limit=3)
        assert set(_ids(results)) == {m.id for m in created[-3:]}


class TestFilters:
    def test_bag_filter(self, engine, memories):
        memories.store(bag="coding-style", kind="note", content="shared words")
        life = memories.store(bag="life-preferences", kind="note", content="shared words")
        assert _ids(engine.recall("shared words", bag="life-preferences")) == [life.id]

    def test_kind_filter(self, engine, memories):
        fact = memories.store(bag="coding-style", kind="fact", content="shared words")
        memories.store(bag="coding-style", kind="note", content="shared words")
        assert _ids(engine.recall("shared words", kinds=["fact"])) == [fact.id]

    def test_tag_filter_is_hard(self, engine, memories):
        memories.store(bag="coding-style", kind="preference", content="prefer pathlib", tags=["python"])
        memories.store(bag="coding-style", kind="preference", content="prefer pathlib always")
        other = memories.store(bag="coding-style", kind="note", content="unrelated text", tags=["Python", "misc"])

        results = engine.recall("prefer pathlib", tags=["PYTHON"])
        assert len(results) == 2
        assert other.id in _ids(results)
        assert all("python" in [t.lower() for t in r.memory.tags] for r in results)

    def test_expired_memories_excluded(self, engine, memories):
        past = (datetime.now(timezone.utc) - timedelta(minutes=1)).isoformat()
        future = (datetime.now(timezone.utc) + timedelta(days=1)).isoformat()
        memories.store(bag="coding-style", kind="note", content="expiring words", expires_at=past)
        alive = memories.store(bag="coding-style", kind="note", content="expiring words", expires_at=future)
        assert _ids(engine.recall("expiring words")) == [alive.id]

    def test_no_candidates(self, engine):
        assert engine.recall("nothing stored yet") == []


class TestAccessStamp:
    def test_only_returned_items_stamped(self, engine, memories):
        kept = memories.store(bag="coding-style", kind="note", content="target phrase exactly")
        dropped = memories.store(bag="coding-style", kind="note", content="something else entirely")
        results = engine.recall("target phrase exactly", top_k=1)
        assert _ids(results) == [kept.id]
        assert results[0].memory.last_accessed_at is not None
        assert memories.get(kept.id).last_accessed_at == results[0].memory.last_accessed_at
        assert memories.get(dropped.id).last_accessed_at is None

    def test_stamp_failure_is_not_fatal(self, engine, memories, db, monkeypatch):
        mem = memories.store(bag="coding-style", kind="note", content="stamp me")

        def failing_transaction(*args, **kwargs):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(db, "transaction", failing_transaction)
        results = engine.recall("stamp me")
        monkeypatch.undo()

        assert _ids(results) == [mem.id]
        assert results[0].memory.last_accessed_at is None
        assert memories.get(mem.id).last_accessed_at is None

    def test_locked_database_does_not_stall_recall(self, engine, memories, db, caplog):
        mem = memories.store(bag="coding-style", kind="note", content="busy writer elsewhere")

        other = sqlite3.connect(str(db.db_path), isolation_level=None)
        other.execute("BEGIN IMMEDIATE")
        try:
            started = time.monotonic()
            results = engine.recall("busy writer elsewhere")
            elapsed = time.monotonic() - started
        finally:
            other.rollback()
            other.close()

        assert _ids(results) == [mem.id]
        assert elapsed < 5
        assert results[0].memory.last_accessed_at is None
        assert "Skipped last_accessed_at stamp" in caplog.text

        # the normal busy timeout is restored for later writes
        with db.read() as c:
            assert c.execute("PRAGMA busy_timeout").fetchone()[0] == 30000


class TestDanglingBag:
    def test_memory_in_deleted_bag_scored_with_fallback(self, engine, memories, bags, db):
        bags.upsert("doomed", importance_weight=2.0)
        mem = memories.store(bag="doomed", kind="note", content="orphaned memory", importance=5)

        # remove the bag behind the store's back
        with db.read() as conn:
            conn.execute("PRAGMA foreign_keys=OFF")
            conn.execute("DELETE FROM bags WHERE name = ?", ("doomed",))
            conn.execute("PRAGMA foreign_keys=ON")

        results = engine.recall("orphaned memory")
        assert _ids(results) == [mem.id]
        assert results[0].breakdown.importance_boost == pytest.approx(FALLBACK_POLICY.importance_weight)


class TestEndToEnd:
    def test_store_recall_update_delete(self, service):
        bags, memories, engine = service.bags, service.memories, service.recall

        first = bags.upsert("projects", description="work notes", allowed_kinds=["decision", "note"])
        again = bags.upsert("projects", description="work notes", allowed_kinds=["decision", "note"])
        assert again.created_at == first.created_at

        decision = memories.store(
            bag="projects", kind="decision", content="use postgres for the billing service",
            tags=["db", "billing"], importance=5,
        )
        memories.store(bag="projects", kind="note", content="billing service deploys on fridays", tags=["ops"])

        results = engine.recall("which database for billing", bag="projects", tags=["db"])
        assert _ids(results) == [decision.id]

        memories.update(decision.id, content="use sqlite for the billing service")
        results = engine.recall("sqlite billing", bag="projects")
        assert results[0].memory.id == decision.id
        assert results[0].memory.content == "use sqlite for the billing service"

        result = bags.delete("projects", force=True)
        assert result.memories_deleted == 2
        assert engine.recall("billing") == []
