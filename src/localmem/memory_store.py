"""
localmem Memory Store -- persists memories together with their vectors.

A memory row and its vector row are one logical unit: they are inserted,
updated and deleted in the same transaction, and only a content change
re-embeds. Embedding happens before the transaction opens, outside the
database lock.

Usage:
    memories = MemoryStore(db, bags, embedder)
    record = memories.store(bag="coding-style", kind="preference",
                            content="Prefer pathlib over os.path")
    memories.update(record.id, tags=["python"])
    memories.delete(record.id)
"""

import json
import logging
import sqlite3
import uuid
from datetime import datetime
from typing import Any, Iterable, List, Optional

from localmem.bags import BagPolicyStore
from localmem.db import Database, deserialize_vector, now_iso, serialize_vector
from localmem.embeddings import EmbeddingProvider
from localmem.errors import NotFoundError, PolicyViolation, ValidationError
from localmem.models import EmbeddingVector, MemoryRecord
from localmem.scoring import parse_timestamp, vector_norm
from localmem.types import UNSET, MemoryKind, parse_kind, validate_source

logger = logging.getLogger("localmem.memory_store")

DEFAULT_IMPORTANCE = 3

MEMORY_COLUMNS = (
    "id, bag, kind, content, tags_json, importance, source_json, "
    "created_at, updated_at, last_accessed_at, expires_at"
)


# ---------------------------------------------------------------------------
# Input sanitizers
# ---------------------------------------------------------------------------


def clamp_importance(value: Any, default: int = DEFAULT_IMPORTANCE) -> int:
    """Clamp importance to 1..5; non-numbers fall back to *default*."""
    if value is None or isinstance(value, bool):
        return default
    try:
        v = int(round(float(value)))
    except (TypeError, ValueError, OverflowError):
        return default
    return max(1, min(v, 5))


def sanitize_tags(tags: Optional[Iterable[Any]]) -> List[str]:
    """Trim, drop empties and de-duplicate, keeping first-seen order."""
    if tags is None:
        return []
    if isinstance(tags, (str, bytes)):
        raise ValidationError("tags must be a list of strings")
    seen = {}
    for tag in tags:
        if not isinstance(tag, str):
            raise ValidationError("tags must be a list of strings")
        tag = tag.strip()
        if tag:
            seen.setdefault(tag, None)
    return list(seen)


def normalize_expiry(value: Any) -> Optional[str]:
    """Validate an ISO-8601 expiry and normalise it to the stored UTC format."""
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    parsed = parse_timestamp(value)
    if parsed is None:
        raise ValidationError(f"expiresAt is not an ISO-8601 timestamp: {value!r}")
    return now_iso(parsed)


def validate_memory_id(memory_id: Any) -> str:
    if not isinstance(memory_id, str) or not memory_id.strip():
        raise ValidationError("id is required")
    memory_id = memory_id.strip()
    try:
        uuid.UUID(memory_id)
    except ValueError:
        raise ValidationError(f"malformed memory id: {memory_id}") from None
    return memory_id


def _require_text(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required")
    return value.strip()


def row_to_record(row: sqlite3.Row) -> MemoryRecord:
    """Convert a memories row to a MemoryRecord."""
    return MemoryRecord(
        id=row["id"],
        bag=row["bag"],
        kind=MemoryKind(row["kind"]),
        content=row["content"],
        tags=json.loads(row["tags_json"] or "[]"),
        importance=int(row["importance"]),
        source=json.loads(row["source_json"] or "{}"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        last_accessed_at=row["last_accessed_at"],
        expires_at=row["expires_at"],
    )


class MemoryStore:
    """Create, update and delete memories and their paired vectors."""

    def __init__(self, db: Database, bags: BagPolicyStore, embedder: EmbeddingProvider):
        self.db = db
        self.bags = bags
        self.embedder = embedder

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def store(
        self,
        bag: str,
        kind: Any,
        content: str,
        tags: Optional[Iterable[str]] = None,
        importance: Optional[int] = None,
        source: Optional[dict] = None,
        expires_at: Any = None,
    ) -> MemoryRecord:
        """Validate, embed and persist a new memory. Returns the stored record."""
        bag = _require_text(bag, "bag")
        content = _require_text(content, "content")
        kind = parse_kind(kind)
        clean_tags = sanitize_tags(tags)
        clean_source = validate_source(source)
        expiry = normalize_expiry(expires_at)
        level = clamp_importance(importance)

        self._check_policy(bag, kind)

        embedding = self.embedder.embed(content)
        norm = vector_norm(embedding)
        memory_id = str(uuid.uuid4())
        now = now_iso()

        with self.db.transaction() as c:
            # the bag may have been deleted or changed while embedding
            self._check_policy(bag, kind)
            c.execute(
                f"INSERT INTO memories ({MEMORY_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    memory_id,
                    bag,
                    kind.value,
                    content,
                    json.dumps(clean_tags),
                    level,
                    json.dumps(clean_source),
                    now,
                    now,
                    None,
                    expiry,
                ),
            )
            c.execute(
                """INSERT INTO memory_vectors
                   (memory_id, embedding, embedding_model, embedding_dim, embedding_norm, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (memory_id, serialize_vector(embedding), self.embedder.model, len(embedding), norm, now, now),
            )
            row = c.execute(f"SELECT {MEMORY_COLUMNS} FROM memories WHERE id = ?", (memory_id,)).fetchone()

        logger.info("Stored memory %s in bag %s (kind=%s, dim=%d)", memory_id, bag, kind.value, len(embedding))
        return row_to_record(row)

    def _check_policy(self, bag: str, kind: MemoryKind) -> None:
        policy = self.bags.get(bag)
        if policy is None:
            raise NotFoundError(f"unknown bag: {bag}")
        if not policy.allows(kind):
            raise PolicyViolation(f"kind '{kind.value}' is not allowed in bag '{bag}'")

    def update(
        self,
        memory_id: str,
        content: Any = UNSET,
        tags: Any = UNSET,
        importance: Any = UNSET,
        source: Any = UNSET,
        expires_at: Any = UNSET,
    ) -> MemoryRecord:
        """Update supplied fields in place; omitted fields are kept.

        Supplying *content* is the only way to trigger a re-embed.
        ``expires_at=None`` clears the expiry.
        """
        memory_id = validate_memory_id(memory_id)
        new_content = UNSET if content is UNSET else _require_text(content, "content")
        new_tags = UNSET if tags is UNSET or tags is None else sanitize_tags(tags)
        new_source = UNSET if source is UNSET or source is None else validate_source(source)
        new_expiry = UNSET if expires_at is UNSET else normalize_expiry(expires_at)

        existing = self.get(memory_id)
        if existing is None:
            raise NotFoundError(f"memory not found: {memory_id}")

        embedding = None
        if new_content is not UNSET:
            embedding = self.embedder.embed(new_content)

        next_content = existing.content if new_content is UNSET else new_content
        next_tags = existing.tags if new_tags is UNSET else new_tags
        next_importance = existing.importance if importance is UNSET else clamp_importance(
            importance, default=existing.importance
        )
        next_source = existing.source if new_source is UNSET else new_source
        next_expiry = existing.expires_at if new_expiry is UNSET else new_expiry
        now = now_iso()

        with self.db.transaction() as c:
            cur = c.execute(
                """UPDATE memories
                   SET content = ?, tags_json = ?, importance = ?, source_json = ?, updated_at = ?, expires_at = ?
                   WHERE id = ?""",
                (
                    next_content,
                    json.dumps(next_tags),
                    next_importance,
                    json.dumps(next_source),
                    now,
                    next_expiry,
                    memory_id,
                ),
            )
            if cur.rowcount == 0:
                # deleted between the read above and this transaction
                raise NotFoundError(f"memory not found: {memory_id}")
            if embedding is not None:
                c.execute(
                    """UPDATE memory_vectors
                       SET embedding = ?, embedding_model = ?, embedding_dim = ?, embedding_norm = ?, updated_at = ?
                       WHERE memory_id = ?""",
                    (
                        serialize_vector(embedding),
                        self.embedder.model,
                        len(embedding),
                        vector_norm(embedding),
                        now,
                        memory_id,
                    ),
                )
            row = c.execute(f"SELECT {MEMORY_COLUMNS} FROM memories WHERE id = ?", (memory_id,)).fetchone()

        logger.info("Updated memory %s%s", memory_id, " (re-embedded)" if embedding is not None else "")
        return row_to_record(row)

    def delete(self, memory_id: str) -> bool:
        """Delete a memory (its vector cascades). False if it did not exist."""
        memory_id = validate_memory_id(memory_id)
        with self.db.transaction() as c:
            deleted = c.execute("DELETE FROM memories WHERE id = ?", (memory_id,)).rowcount > 0
        if deleted:
            logger.info("Deleted memory %s", memory_id)
        return deleted

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Delete memories whose expiry has passed. Returns the number removed."""
        with self.db.transaction() as c:
            removed = c.execute(
                "DELETE FROM memories WHERE expires_at IS NOT NULL AND expires_at <= ?",
                (now_iso(now),),
            ).rowcount
        if removed:
            logger.info("Purged %d expired memories", removed)
        return removed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, memory_id: str) -> Optional[MemoryRecord]:
        """Fetch a memory by id without touching its access time."""
        with self.db.read() as c:
            row = c.execute(f"SELECT {MEMORY_COLUMNS} FROM memories WHERE id = ?", (memory_id,)).fetchone()
        return row_to_record(row) if row else None

    def get_vector(self, memory_id: str) -> Optional[EmbeddingVector]:
        with self.db.read() as c:
            row = c.execute(
                """SELECT memory_id, embedding, embedding_model, embedding_dim, embedding_norm, created_at, updated_at
                   FROM memory_vectors WHERE memory_id = ?""",
                (memory_id,),
            ).fetchone()
        if not row:
            return None
        return EmbeddingVector(
            memory_id=row["memory_id"],
            values=deserialize_vector(row["embedding"], row["embedding_dim"]),
            model=row["embedding_model"],
            norm=row["embedding_norm"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def count(self, bag: Optional[str] = None) -> int:
        with self.db.read() as c:
            if bag is None:
                row = c.execute("SELECT COUNT(*) FROM memories").fetchone()
            else:
                row = c.execute("SELECT COUNT(*) FROM memories WHERE bag = ?", (bag,)).fetchone()
        return row[0] if row else 0
