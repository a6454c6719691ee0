"""Memory store capability set and backend selection.

Architectural role:
    Declares the `MemoryStore` protocol consumed by the ingestor and the context
    retriever, and builds a concrete backend from configuration:
    - `faiss`: local FAISS indexes (`memchat.memory.memory_system`).
    - `qdrant`: remote Qdrant collections (`memchat.memory.qdrant_store`).
    - `memory`: process-local numpy store (`InMemoryMemoryStore`).

Contract:
    - `save` is atomic per record and overwrites an existing id.
    - `get` returns `None` for unknown collections or ids.
    - `search` returns hits with `score >= min_score`, best first.
    - Backend failures surface as `StorageError`.
"""

import threading
from typing import Protocol

import numpy as np

from memchat.core.errors import StorageError
from memchat.memory.models import MemoryRecord, SearchHit, rank_hits


class MemoryStore(Protocol):
    """Durable `(collection, id)`-keyed vector store."""

    def save(self, collection: str, id: str, vector, text: str, description: str) -> None:
        ...

    def get(self, collection: str, id: str) -> MemoryRecord | None:
        ...

    def search(self, collection: str, vector, limit: int, min_score: float) -> list[SearchHit]:
        ...

    def count(self, collection: str) -> int:
        ...

    def collections(self) -> list[str]:
        ...

    def delete_collection(self, collection: str) -> None:
        ...


def normalize(vector):
    """Return `vector` as a 1D float32 array scaled to unit length."""
    arr = np.asarray(vector, dtype="float32").reshape(-1)
    if arr.size == 0:
        raise StorageError("Cannot store or search an empty vector")
    norm = float(np.linalg.norm(arr))
    if norm > 0:
        arr = arr / norm
    return arr


class InMemoryMemoryStore:
    """Process-local store with cosine scoring over normalized vectors."""

    def __init__(self):
        self._collections = {}
        self._lock = threading.Lock()

    def save(self, collection, id, vector, text, description):
        vec = normalize(vector)
        record = MemoryRecord(
            collection=collection,
            id=str(id),
            text=text,
            description=description,
            vector=tuple(float(v) for v in vector),
        )
        with self._lock:
            records = self._collections.setdefault(collection, {})
            if records:
                dimension = len(next(iter(records.values()))[1])
                if dimension != len(vec):
                    raise StorageError(
                        f"Vector dimension {len(vec)} does not match collection "
                        f"'{collection}' dimension {dimension}"
                    )
            records[str(id)] = (record, vec)

    def get(self, collection, id):
        with self._lock:
            entry = self._collections.get(collection, {}).get(str(id))
        return entry[0] if entry else None

    def search(self, collection, vector, limit, min_score):
        with self._lock:
            entries = list(self._collections.get(collection, {}).values())
        if not entries:
            return []

        query = normalize(vector)
        hits = []
        for record, vec in entries:
            if len(vec) != len(query):
                raise StorageError(
                    f"Query dimension {len(query)} does not match collection '{collection}'"
                )
            score = float(np.dot(vec, query))
            if score >= min_score:
                hits.append(SearchHit(id=record.id, score=score))

        return rank_hits(hits)[:limit]

    def count(self, collection):
        with self._lock:
            return len(self._collections.get(collection, {}))

    def collections(self):
        with self._lock:
            return sorted(self._collections)

    def delete_collection(self, collection):
        with self._lock:
            self._collections.pop(collection, None)


def create_memory_store(backend, location=None):
    """Build a memory store for a configured backend name.

    Args:
        backend: `faiss`, `qdrant`, or `memory`.
        location: Base directory (`faiss`) or server URL (`qdrant`).

    Returns:
        A `MemoryStore` implementation.

    Raises:
        ValueError: Unknown backend name.
    """
    backend = (backend or "").strip().lower()

    if backend == "faiss":
        from memchat.memory.memory_system import FaissMemoryStore
        return FaissMemoryStore(location or "knowledge")

    if backend == "qdrant":
        from memchat.memory.qdrant_store import QdrantMemoryStore
        return QdrantMemoryStore(location or "http://localhost:6333")

    if backend == "memory":
        return InMemoryMemoryStore()

    raise ValueError(f"Unsupported memory backend: {backend!r}")
