"""localmem test configuration."""
import hashlib
import re
import sys
from pathlib import Path

import pytest

# Ensure localmem package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from localmem.config import Settings  # noqa: E402
from localmem.embeddings import EmbeddingProvider  # noqa: E402
from localmem.service import MemoryService  # noqa: E402

_WORD = re.compile(r"[a-z0-9]+")


class KeywordEmbedder(EmbeddingProvider):
    """Deterministic bag-of-words embedder: each word hashes to one bucket.

    Texts that share words get a high cosine similarity, unrelated texts get
    a low one. Every call is recorded in ``calls``.
    """

    def __init__(self, dim: int = 256, model: str = "keyword-test"):
        self.dim = dim
        self.model = model
        self.calls = []

    def embed(self, text):
        self.calls.append(text)
        vector = [0.0] * self.dim
        for word in _WORD.findall(text.lower()):
            bucket = int(hashlib.sha1(word.encode()).hexdigest(), 16) % self.dim
            vector[bucket] += 1.0
        if not any(vector):
            vector[0] = 1.0
        return vector


class BrokenEmbedder(EmbeddingProvider):
    """Raises the configured exception on every call."""

    model = "broken"

    def __init__(self, exc):
        self.exc = exc
        self.calls = 0

    def embed(self, text):
        self.calls += 1
        raise self.exc


@pytest.fixture
def tmp_home(tmp_path):
    """Create a temporary localmem home directory."""
    home = tmp_path / ".localmem"
    home.mkdir()
    return home


@pytest.fixture
def settings(tmp_home):
    return Settings(home=tmp_home, default_candidate_limit=600)


@pytest.fixture
def embedder():
    return KeywordEmbedder()


@pytest.fixture
def service(settings, embedder):
    """A MemoryService on a fresh database with the default bags seeded."""
    svc = MemoryService(settings, embedder=embedder)
    yield svc
    svc.close()


@pytest.fixture
def db(service):
    return service.db


@pytest.fixture
def bags(service):
    return service.bags


@pytest.fixture
def memories(service):
    return service.memories


@pytest.fixture
def engine(service):
    return service.recall
