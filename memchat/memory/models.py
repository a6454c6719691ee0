"""Memory record data contracts shared by stores, ingestion, and retrieval.

`MemoryRecord` ids are string forms of non-negative integers when written by
the ingestor, so `id N` and `id N+1` are adjacent sentences in ingestion order.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class MemoryRecord:
    """One ingested sentence and its embedding.

    Attributes:
        collection: Collection the record belongs to.
        id: Record id, unique inside `collection`.
        text: Segmented sentence that was embedded.
        description: Display text returned by lookups (equals `text` on ingest).
        vector: Embedding of `text`; may be empty when a store omits vectors.
    """

    collection: str
    id: str
    text: str
    description: str
    vector: tuple = field(default=(), repr=False, compare=False)


@dataclass(frozen=True)
class SearchHit:
    """One similarity search result."""

    id: str
    score: float


def id_sort_key(record_id):
    """Sort key ordering numeric ids numerically and others after them."""
    try:
        return (0, int(record_id), "")
    except (TypeError, ValueError):
        return (1, 0, str(record_id))


def numeric_id(record_id):
    """Return `record_id` as a non-negative int, or `None` when it is not one."""
    try:
        value = int(record_id)
    except (TypeError, ValueError):
        return None
    if value < 0 or str(value) != str(record_id).strip():
        return None
    return value


def rank_hits(hits):
    """Order hits by descending score, ties broken by ascending id."""
    return sorted(hits, key=lambda hit: (-hit.score, id_sort_key(hit.id)))
