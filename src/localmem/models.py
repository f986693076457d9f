"""
localmem Models -- lightweight value objects shared by the stores and transports.

Each class keeps snake_case attributes for Python callers and exposes
``to_dict()`` producing the camelCase wire shape the HTTP and MCP
transports return.
"""

from typing import Any, Dict, List, Optional

from localmem.types import JsonValue, MemoryKind


class BagPolicy:
    """Retrieval policy for a named bag."""

    __slots__ = (
        "name",
        "description",
        "default_top_k",
        "recency_half_life_days",
        "importance_weight",
        "allowed_kinds",
        "created_at",
        "updated_at",
    )

    def __init__(
        self,
        name: str,
        description: Optional[str] = None,
        default_top_k: int = 8,
        recency_half_life_days: float = 30.0,
        importance_weight: float = 0.35,
        allowed_kinds: Optional[List[MemoryKind]] = None,
        created_at: Optional[str] = None,
        updated_at: Optional[str] = None,
    ):
        self.name = name
        self.description = description
        self.default_top_k = default_top_k
        self.recency_half_life_days = recency_half_life_days
        self.importance_weight = importance_weight
        self.allowed_kinds = list(allowed_kinds or [])
        self.created_at = created_at
        self.updated_at = updated_at

    def allows(self, kind: MemoryKind) -> bool:
        """An empty allow-list admits every kind."""
        return not self.allowed_kinds or kind in self.allowed_kinds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "defaultTopK": self.default_top_k,
            "recencyHalfLifeDays": self.recency_half_life_days,
            "importanceWeight": self.importance_weight,
            "allowedKinds": [k.value for k in self.allowed_kinds],
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    def __repr__(self) -> str:
        return f"BagPolicy(name={self.name!r}, default_top_k={self.default_top_k})"


class MemoryRecord:
    """A stored memory, without its vector."""

    __slots__ = (
        "id",
        "bag",
        "kind",
        "content",
        "tags",
        "importance",
        "source",
        "created_at",
        "updated_at",
        "last_accessed_at",
        "expires_at",
    )

    def __init__(
        self,
        id: str,
        bag: str,
        kind: MemoryKind,
        content: str,
        tags: Optional[List[str]] = None,
        importance: int = 3,
        source: Optional[Dict[str, JsonValue]] = None,
        created_at: Optional[str] = None,
        updated_at: Optional[str] = None,
        last_accessed_at: Optional[str] = None,
        expires_at: Optional[str] = None,
    ):
        self.id = id
        self.bag = bag
        self.kind = kind
        self.content = content
        self.tags = list(tags or [])
        self.importance = importance
        self.source = source or {}
        self.created_at = created_at
        self.updated_at = updated_at
        self.last_accessed_at = last_accessed_at
        self.expires_at = expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "bag": self.bag,
            "kind": self.kind.value,
            "content": self.content,
            "tags": list(self.tags),
            "importance": self.importance,
            "source": self.source,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "lastAccessedAt": self.last_accessed_at,
            "expiresAt": self.expires_at,
        }

    def __repr__(self) -> str:
        return f"MemoryRecord(id={self.id!r}, bag={self.bag!r}, kind={self.kind.value!r})"


class EmbeddingVector:
    """The vector paired one-to-one with a MemoryRecord."""

    __slots__ = ("memory_id", "values", "model", "dim", "norm", "created_at", "updated_at")

    def __init__(
        self,
        memory_id: str,
        values: List[float],
        model: str,
        norm: float,
        created_at: Optional[str] = None,
        updated_at: Optional[str] = None,
    ):
        self.memory_id = memory_id
        self.values = values
        self.model = model
        self.dim = len(values)
        self.norm = norm
        self.created_at = created_at
        self.updated_at = updated_at


class ScoreBreakdown:
    """Additive components of a recall score."""

    __slots__ = ("similarity", "recency_boost", "importance_boost", "tag_boost")

    def __init__(self, similarity: float, recency_boost: float, importance_boost: float, tag_boost: float):
        self.similarity = similarity
        self.recency_boost = recency_boost
        self.importance_boost = importance_boost
        self.tag_boost = tag_boost

    @property
    def total(self) -> float:
        return self.similarity + self.recency_boost + self.importance_boost + self.tag_boost

    def to_dict(self) -> Dict[str, float]:
        return {
            "similarity": self.similarity,
            "recencyBoost": self.recency_boost,
            "importanceBoost": self.importance_boost,
            "tagBoost": self.tag_boost,
        }


class RecallResult:
    """One ranked item returned by a recall. Never persisted."""

    __slots__ = ("memory", "score", "breakdown")

    def __init__(self, memory: MemoryRecord, breakdown: ScoreBreakdown):
        self.memory = memory
        self.breakdown = breakdown
        self.score = breakdown.total

    def to_dict(self) -> Dict[str, Any]:
        return {
            "memory": self.memory.to_dict(),
            "score": self.score,
            "scoreBreakdown": self.breakdown.to_dict(),
        }

    def __repr__(self) -> str:
        return f"RecallResult(id={self.memory.id!r}, score={self.score:.4f})"


class BagDeleteResult:
    __slots__ = ("name", "deleted", "memories_deleted")

    def __init__(self, name: str, deleted: bool, memories_deleted: int = 0):
        self.name = name
        self.deleted = deleted
        self.memories_deleted = memories_deleted

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "deleted": self.deleted, "memoriesDeleted": self.memories_deleted}
