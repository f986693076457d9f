"""
localmem Service -- wires one Database handle through every component.

    service = MemoryService(Settings.from_env())
    service.memories.store(bag="coding-style", kind="note", content="...")
    service.recall.recall("how do I like imports sorted?")
    service.close()
"""

import logging
from typing import Any, Dict, Optional

from localmem.bags import BagPolicyStore
from localmem.config import Settings
from localmem.db import Database
from localmem.embeddings import EmbeddingProvider, OllamaEmbeddingProvider
from localmem.memory_store import MemoryStore
from localmem.recall import RecallEngine

logger = logging.getLogger("localmem.service")


class MemoryService:
    """Composition root for the stores and the recall engine."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        embedder: Optional[EmbeddingProvider] = None,
        db: Optional[Database] = None,
    ):
        self.settings = settings or Settings.from_env()
        self.embedder = embedder or OllamaEmbeddingProvider.from_settings(self.settings)
        self.db = db or Database(self.settings.db_path)
        self.bags = BagPolicyStore(self.db)
        self.memories = MemoryStore(self.db, self.bags, self.embedder)
        self.recall = RecallEngine(self.db, self.bags, self.embedder, self.settings)
        logger.debug("MemoryService ready (db=%s, model=%s)", self.db.db_path, self.embedder.model)

    def status(self) -> Dict[str, Any]:
        """Counts and configuration summary for `localmem status` and /health."""
        bags = self.bags.list()
        return {
            "dbPath": str(self.db.db_path),
            "schemaVersion": self.db.schema_version(),
            "embeddingModel": self.embedder.model,
            "ollamaUrl": self.settings.ollama_url,
            "bags": len(bags),
            "memories": self.memories.count(),
            "memoriesByBag": {b.name: self.memories.count(b.name) for b in bags},
        }

    def close(self) -> None:
        self.db.close()
        self.embedder.close()

    def __enter__(self) -> "MemoryService":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
