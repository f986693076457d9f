"""
localmem Config -- environment-driven settings.

All knobs are read from ``LOCALMEM_*`` environment variables into a
``Settings`` object which is then handed to each component explicitly.
Malformed values fall back to their defaults rather than failing startup.
"""

import logging
import os
from pathlib import Path
from typing import Mapping, Optional

logger = logging.getLogger("localmem.config")

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8787
DEFAULT_OLLAMA_URL = "http://localhost:11434"
DEFAULT_EMBEDDING_MODEL = "nomic-embed-text"
DEFAULT_OLLAMA_TIMEOUT_MS = 120000
DEFAULT_CANDIDATE_LIMIT = 600
MAX_CANDIDATE_LIMIT = 5000


def _parse_number(raw: Optional[str], fallback: float) -> float:
    if raw is None or not raw.strip():
        return fallback
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric setting value %r", raw)
        return fallback
    if value != value or value in (float("inf"), float("-inf")):
        return fallback
    return value


def _parse_bool(raw: Optional[str], fallback: bool) -> bool:
    if raw is None or not raw.strip():
        return fallback
    val = raw.strip().lower()
    if val in ("1", "true", "yes", "on"):
        return True
    if val in ("0", "false", "no", "off"):
        return False
    return fallback


class Settings:
    """Resolved runtime configuration."""

    def __init__(
        self,
        home: Optional[Path] = None,
        db_path: Optional[Path] = None,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        ollama_url: str = DEFAULT_OLLAMA_URL,
        embedding_model: str = DEFAULT_EMBEDDING_MODEL,
        ollama_timeout_ms: int = DEFAULT_OLLAMA_TIMEOUT_MS,
        auto_pull_model: bool = True,
        default_candidate_limit: int = DEFAULT_CANDIDATE_LIMIT,
        log_level: str = "WARNING",
    ):
        self.home = Path(home) if home else Path.home() / ".localmem"
        self.db_path = Path(db_path) if db_path else self.home / "memory.db"
        self.host = host
        self.port = max(1, min(int(port), 65535))
        self.ollama_url = ollama_url.rstrip("/")
        self.embedding_model = embedding_model
        self.ollama_timeout_ms = max(1, int(ollama_timeout_ms))
        self.auto_pull_model = auto_pull_model
        self.default_candidate_limit = max(1, min(int(default_candidate_limit), MAX_CANDIDATE_LIMIT))
        self.log_level = log_level.upper()

    @property
    def ollama_timeout_s(self) -> float:
        return self.ollama_timeout_ms / 1000.0

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from *env* (defaults to ``os.environ``)."""
        env = os.environ if env is None else env
        home = env.get("LOCALMEM_HOME")
        db_path = env.get("LOCALMEM_DB_PATH")
        return cls(
            home=Path(home).expanduser() if home else None,
            db_path=Path(db_path).expanduser() if db_path else None,
            host=env.get("LOCALMEM_HOST") or DEFAULT_HOST,
            port=int(_parse_number(env.get("LOCALMEM_PORT"), DEFAULT_PORT)),
            ollama_url=env.get("LOCALMEM_OLLAMA_URL") or DEFAULT_OLLAMA_URL,
            embedding_model=env.get("LOCALMEM_EMBEDDING_MODEL") or DEFAULT_EMBEDDING_MODEL,
            ollama_timeout_ms=int(_parse_number(env.get("LOCALMEM_OLLAMA_TIMEOUT_MS"), DEFAULT_OLLAMA_TIMEOUT_MS)),
            auto_pull_model=_parse_bool(env.get("LOCALMEM_AUTO_PULL_MODEL"), True),
            default_candidate_limit=int(
                _parse_number(env.get("LOCALMEM_DEFAULT_CANDIDATE_LIMIT"), DEFAULT_CANDIDATE_LIMIT)
            ),
            log_level=env.get("LOCALMEM_LOG_LEVEL") or "WARNING",
        )

    def __repr__(self) -> str:
        return (
            f"Settings(db_path={str(self.db_path)!r}, ollama_url={self.ollama_url!r}, "
            f"embedding_model={self.embedding_model!r})"
        )
