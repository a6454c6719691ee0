"""Runtime configuration for memory, embedding, retrieval, and session layers.

Architectural role:
    Centralizes environment-driven settings consumed by `memchat.core.engine`,
    the ingestion CLI, and the memory backend factories.

Resolution:
    Values are read once at import time from the process environment after
    `load_dotenv()` merges a local `.env` file. LLM provider settings live in
    `memchat.llm.provider_config`.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _env_int(name, default):
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return int(value)


def _env_window(name):
    """Read a positive message count; unset or values below 1 mean unbounded."""
    value = _env_int(name, None)
    if value is None or value < 1:
        return None
    return value


def _env_float(name, default):
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return float(value)


# Memory backend selection: "faiss" | "qdrant" | "memory".
MEMORY_BACKEND = os.getenv("MEMORY_BACKEND", "faiss")
MEMORY_DIR = os.getenv("MEMORY_DIR", "knowledge")
MEMORY_URL = os.getenv("MEMORY_URL", "http://localhost:6333")
DEFAULT_COLLECTION = os.getenv("DEFAULT_COLLECTION", "default")

# Embedding backend selection: "local" | "openai".
EMBEDDING_PROVIDER = os.getenv("EMBEDDING_PROVIDER", "local")
EMBED_MODEL = os.getenv("EMBED_MODEL", "intfloat/multilingual-e5-small")
OPENAI_EMBED_MODEL = os.getenv("OPENAI_EMBED_MODEL", "text-embedding-ada-002")
OPENAI_EMBED_URL = os.getenv("OPENAI_EMBED_URL", "https://api.openai.com/v1/embeddings")

DEFAULT_LIMIT = 3
DEFAULT_MIN_RELEVANCE = 0.77
DEFAULT_WINDOW = 2

# Caps the messages sent to the model per turn; the stored history is never cut.
HISTORY_MAX_MESSAGES = _env_window("HISTORY_MAX_MESSAGES")
BACKUP_DIR = os.getenv("BACKUP_DIR", "conversation_backups")

# Sensitive request/response debug logging is opt-in.
DEBUG = os.getenv("DEBUG") == "true"


@dataclass(frozen=True)
class RetrievalSettings:
    """Knobs for one `ContextRetriever.build_context` call.

    Attributes:
        limit: Maximum similarity hits per query.
        min_relevance: Score floor; hits below it are discarded.
        window: Neighbour radius (in ids) around each hit.
    """

    limit: int = DEFAULT_LIMIT
    min_relevance: float = DEFAULT_MIN_RELEVANCE
    window: int = DEFAULT_WINDOW

    @classmethod
    def from_env(cls):
        """Build settings from `RETRIEVAL_*` environment variables."""
        return cls(
            limit=_env_int("RETRIEVAL_LIMIT", DEFAULT_LIMIT),
            min_relevance=_env_float("RETRIEVAL_MIN_RELEVANCE", DEFAULT_MIN_RELEVANCE),
            window=_env_int("RETRIEVAL_WINDOW", DEFAULT_WINDOW),
        )
