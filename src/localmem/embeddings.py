"""
localmem Embeddings -- client for the external text-to-vector service.

The store and the recall engine only see ``EmbeddingProvider.embed(text)``.
The shipped implementation talks to an Ollama server over HTTP:

    POST {base_url}/api/embed   {"model": ..., "input": text}

Every call is bounded by a timeout. A timeout raises ``EmbeddingTimeout``
(retryable); any other transport, HTTP or payload problem raises
``EmbeddingError``. No retries happen here -- the enclosing store, update or
recall fails and the caller resubmits.

Also provides the bootstrap helpers ``wait_until_ready`` and
``ensure_model`` used by ``localmem serve``.
"""

import logging
import math
import time
from typing import Any, Dict, List, Optional

import httpx

from localmem.config import Settings
from localmem.errors import EmbeddingError, EmbeddingTimeout, ValidationError

logger = logging.getLogger("localmem.embeddings")

_PULL_TIMEOUT_S = 1800  # model downloads can take a long time


class EmbeddingProvider:
    """Interface for text-to-vector collaborators."""

    model: str = "unknown"

    def embed(self, text: str) -> List[float]:
        raise NotImplementedError

    def close(self) -> None:
        pass


def _coerce_vector(raw: Any) -> List[float]:
    if not isinstance(raw, list) or not raw:
        raise EmbeddingError("embedding response did not contain a vector")
    vector = []
    for value in raw:
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            raise EmbeddingError("embedding response contained a non-numeric value")
        vector.append(float(value))
    return vector


class OllamaEmbeddingProvider(EmbeddingProvider):
    """Synchronous Ollama embedding client with explicit timeouts."""

    def __init__(
        self,
        base_url: str,
        model: str,
        timeout_s: float = 120.0,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout_s = timeout_s
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout_s)

    @classmethod
    def from_settings(cls, settings: Settings, client: Optional[httpx.Client] = None) -> "OllamaEmbeddingProvider":
        return cls(
            base_url=settings.ollama_url,
            model=settings.embedding_model,
            timeout_s=settings.ollama_timeout_s,
            client=client,
        )

    def _request(self, method: str, path: str, timeout: Optional[float] = None, **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = self._client.request(method, url, timeout=timeout or self.timeout_s, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as e:
            raise EmbeddingTimeout(f"Ollama request timed out after {timeout or self.timeout_s:.1f}s: {path}") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise EmbeddingError(
                f"Ollama request failed ({status}): {e.response.text[:500]}",
                retryable=status >= 500,
            ) from e
        except httpx.HTTPError as e:
            raise EmbeddingError(f"Ollama unreachable at {self.base_url}: {e}") from e
        except ValueError as e:
            raise EmbeddingError(f"Ollama returned invalid JSON for {path}") from e

    def embed(self, text: str) -> List[float]:
        """Return the embedding vector for *text* (trimmed, non-empty)."""
        normalized = (text or "").strip()
        if not normalized:
            raise ValidationError("Cannot embed empty text.")

        start = time.perf_counter()
        data = self._request("POST", "/api/embed", json={"model": self.model, "input": normalized})
        embeddings = data.get("embeddings") if isinstance(data, dict) else None
        if isinstance(embeddings, list) and embeddings:
            vector = _coerce_vector(embeddings[0])
        else:
            # older servers answer /api/embeddings-style payloads
            vector = _coerce_vector(data.get("embedding") if isinstance(data, dict) else None)
        logger.debug("Embedded %d chars with %s in %.0fms (dim=%d)",
                     len(normalized), self.model, (time.perf_counter() - start) * 1000, len(vector))
        return vector

    # ------------------------------------------------------------------
    # Bootstrap helpers
    # ------------------------------------------------------------------

    def list_models(self) -> List[str]:
        """Names of the models the server has locally."""
        data = self._request("GET", "/api/tags")
        names = []
        for model in data.get("models") or []:
            for key in ("name", "model"):
                if model.get(key):
                    names.append(model[key])
        return names

    def has_model(self, name: Optional[str] = None) -> bool:
        name = name or self.model
        return any(n == name or n.startswith(f"{name}:") for n in self.list_models())

    def wait_until_ready(self, timeout_s: Optional[float] = None, interval_s: float = 1.0) -> None:
        """Poll the server until it answers, or raise EmbeddingTimeout."""
        timeout_s = self.timeout_s if timeout_s is None else timeout_s
        deadline = time.monotonic() + timeout_s
        while True:
            try:
                self._request("GET", "/api/tags")
                return
            except EmbeddingError as e:
                if time.monotonic() >= deadline:
                    raise EmbeddingTimeout(f"Timed out waiting for Ollama after {timeout_s:.0f}s") from e
                logger.debug("Ollama not ready yet: %s", e)
                time.sleep(interval_s)

    def ensure_model(self, name: Optional[str] = None) -> bool:
        """Pull *name* if the server lacks it. Returns True when a pull happened."""
        name = name or self.model
        if self.has_model(name):
            return False
        logger.info("Pulling embedding model '%s'", name)
        self._request("POST", "/api/pull", timeout=_PULL_TIMEOUT_S, json={"model": name, "stream": False})
        return True

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
