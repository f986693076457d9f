"""localmem -- local long-term memory with semantic recall.

Direct Python API, no server required::

    from localmem import MemoryService, Settings
    with MemoryService(Settings.from_env()) as svc:
        svc.memories.store(bag="coding-style", kind="preference",
                           content="Always use strict type checking")
        results = svc.recall.recall("type checking preferences")

Run ``localmem serve`` for the HTTP + MCP server.
"""

__version__ = "0.1.0"

from localmem.config import Settings
from localmem.errors import (
    EmbeddingError,
    EmbeddingTimeout,
    LocalMemError,
    NotFoundError,
    PolicyViolation,
    ValidationError,
)
from localmem.models import BagPolicy, MemoryRecord, RecallResult, ScoreBreakdown
from localmem.service import MemoryService
from localmem.types import MemoryKind

__all__ = [
    "__version__",
    "BagPolicy",
    "EmbeddingError",
    "EmbeddingTimeout",
    "LocalMemError",
    "MemoryKind",
    "MemoryRecord",
    "MemoryService",
    "NotFoundError",
    "PolicyViolation",
    "RecallResult",
    "ScoreBreakdown",
    "Settings",
    "ValidationError",
]
