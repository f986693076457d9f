"""
localmem Recall -- embed the query, pull candidates, score, rank, stamp.

Candidates come from SQLite newest-first, capped at ``candidate_limit``;
that ordering is only a recency pre-filter. Real ranking is the additive
score from ``localmem.scoring`` using each candidate's own bag policy.
"""

import json
import logging
import sqlite3
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from localmem.bags import BagPolicyStore, clamp_number
from localmem.config import MAX_CANDIDATE_LIMIT, Settings
from localmem.db import Database, deserialize_vector, now_iso
from localmem.embeddings import EmbeddingProvider
from localmem.errors import ValidationError
from localmem.memory_store import row_to_record, sanitize_tags
from localmem.models import BagPolicy, RecallResult, ScoreBreakdown
from localmem.scoring import cosine_similarity, importance_boost, recency_boost, tag_boost
from localmem.types import parse_kinds

logger = logging.getLogger("localmem.recall")

# Scores memories whose bag was removed out-of-band (foreign keys off,
# another tool) so a dangling reference never fails a recall.
FALLBACK_POLICY = BagPolicy(
    name="__fallback__",
    default_top_k=8,
    recency_half_life_days=30.0,
    importance_weight=0.35,
)

TOP_K_RANGE = (1, 100)
# access stamps wait at most this long for the write lock
STAMP_BUSY_TIMEOUT_MS = 250

_CANDIDATE_COLUMNS = (
    "m.id, m.bag, m.kind, m.content, m.tags_json, m.importance, m.source_json, "
    "m.created_at, m.updated_at, m.last_accessed_at, m.expires_at, "
    "v.embedding, v.embedding_dim, v.embedding_norm"
)


class RecallEngine:
    """Semantic recall over the memory store."""

    def __init__(self, db: Database, bags: BagPolicyStore, embedder: EmbeddingProvider, settings: Settings):
        self.db = db
        self.bags = bags
        self.embedder = embedder
        self.settings = settings

    def resolve_top_k(self, top_k, bag: Optional[str]) -> int:
        fallback = FALLBACK_POLICY.default_top_k
        if bag:
            policy = self.bags.get(bag)
            if policy is not None:
                fallback = policy.default_top_k
        return int(clamp_number(top_k, fallback, *TOP_K_RANGE))

    def resolve_candidate_limit(self, candidate_limit, top_k: int) -> int:
        limit = int(clamp_number(candidate_limit, self.settings.default_candidate_limit, 1, MAX_CANDIDATE_LIMIT))
        return max(top_k, limit)

    def recall(
        self,
        query: str,
        bag: Optional[str] = None,
        kinds: Optional[Iterable[str]] = None,
        tags: Optional[Iterable[str]] = None,
        top_k: Optional[int] = None,
        candidate_limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[RecallResult]:
        """Return up to ``top_k`` memories ranked by score, best first.

        ``tags`` is a hard filter (at least one shared tag, case-insensitive)
        as well as a scoring signal. Returned memories get their
        ``last_accessed_at`` stamped.
        """
        if not isinstance(query, str) or not query.strip():
            raise ValidationError("query is required")
        query = query.strip()
        bag = bag.strip() if isinstance(bag, str) and bag.strip() else None
        kind_filter = parse_kinds(kinds)
        query_tags = sanitize_tags(tags)

        query_vector = self.embedder.embed(query)

        k = self.resolve_top_k(top_k, bag)
        limit = self.resolve_candidate_limit(candidate_limit, k)
        rows = self._load_candidates(bag, kind_filter, limit, now)

        if query_tags:
            wanted = {t.lower() for t in query_tags}
            rows = [r for r in rows if wanted.intersection(t.lower() for t in json.loads(r["tags_json"] or "[]"))]

        policies: Dict[str, BagPolicy] = {}
        scored = []
        for row in rows:
            record = row_to_record(row)
            if record.bag not in policies:
                policies[record.bag] = self.bags.get(record.bag) or FALLBACK_POLICY
            policy = policies[record.bag]
            vector = deserialize_vector(row["embedding"], row["embedding_dim"])
            breakdown = ScoreBreakdown(
                similarity=cosine_similarity(query_vector, vector, row["embedding_norm"]),
                recency_boost=recency_boost(record.created_at, policy.recency_half_life_days, now),
                importance_boost=importance_boost(record.importance, policy),
                tag_boost=tag_boost(query_tags, record.tags),
            )
            scored.append(RecallResult(record, breakdown))

        # sorted() is stable: exact ties keep candidate (newest-first) order
        results = sorted(scored, key=lambda r: r.score, reverse=True)[:k]
        self._stamp_accessed(results)

        logger.debug("Recall bag=%s candidates=%d scored=%d returned=%d",
                     bag, limit, len(scored), len(results))
        return results

    def _load_candidates(self, bag: Optional[str], kinds, limit: int, now: Optional[datetime]) -> List[sqlite3.Row]:
        clauses = ["(m.expires_at IS NULL OR m.expires_at > ?)"]
        params: list = [now_iso(now)]
        if bag:
            clauses.append("m.bag = ?")
            params.append(bag)
        if kinds:
            clauses.append(f"m.kind IN ({', '.join('?' for _ in kinds)})")
            params.extend(k.value for k in kinds)
        params.append(limit)
        sql = (
            f"SELECT {_CANDIDATE_COLUMNS} FROM memories m "
            "JOIN memory_vectors v ON v.memory_id = m.id "
            f"WHERE {' AND '.join(clauses)} "
            "ORDER BY m.created_at DESC, m.rowid DESC LIMIT ?"
        )
        with self.db.read() as c:
            return c.execute(sql, params).fetchall()

    def _stamp_accessed(self, results: List[RecallResult]) -> None:
        """Best-effort: one short write attempt; failures are logged and skipped."""
        if not results:
            return
        ts = now_iso()
        stamped = []
        try:
            with self.db.transaction(retry=False, busy_timeout_ms=STAMP_BUSY_TIMEOUT_MS) as c:
                for result in results:
                    try:
                        c.execute("UPDATE memories SET last_accessed_at = ? WHERE id = ?", (ts, result.memory.id))
                    except sqlite3.Error as e:
                        logger.warning("Could not stamp last_accessed_at for %s: %s", result.memory.id, e)
                        continue
                    stamped.append(result)
        except sqlite3.Error as e:
            logger.warning("Skipped last_accessed_at stamp for %d result(s): %s", len(results), e)
            return
        for result in stamped:
            result.memory.last_accessed_at = ts
