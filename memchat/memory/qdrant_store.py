"""Qdrant-backed memory store.

Architectural role:
    Implements the `MemoryStore` protocol against a Qdrant server so ingestion
    and retrieval can share one remote corpus.

Point layout:
    - Point id: the record id as an unsigned int when it is numeric, otherwise a
      deterministic UUID5 derived from it.
    - Payload: `{"id", "text", "description"}`.
    - Collections use cosine distance and are created on first save with the
      dimension of the first vector.

Failure model:
    Client/transport failures are logged and raised as `StorageError`.
"""

import uuid
import logging
import threading

from qdrant_client import QdrantClient
from qdrant_client.http import models as qmodels

from memchat.core.errors import StorageError
from memchat.memory.models import MemoryRecord, SearchHit, numeric_id, rank_hits


logger = logging.getLogger(__name__)

POINT_NAMESPACE = uuid.UUID("6f1c44f2-9a0b-4c55-8d0e-3c8f3c2a7b10")
# Extra candidates fetched so ties at the cut-off are resolved by id.
SEARCH_SLACK = 8


def point_id(record_id):
    """Map a record id to a Qdrant point id."""
    value = numeric_id(record_id)
    if value is not None:
        return value
    return str(uuid.uuid5(POINT_NAMESPACE, str(record_id)))


class QdrantMemoryStore:
    """Remote Qdrant implementation of the `MemoryStore` protocol."""

    def __init__(self, url="http://localhost:6333", client=None, api_key=None):
        self.url = url
        self.client = client or QdrantClient(url=url, api_key=api_key, check_compatibility=False)
        self._known = set()
        self._lock = threading.Lock()
        logger.info("QdrantMemoryStore connected to %s", url)

    def _exists(self, collection):
        if collection in self._known:
            return True
        if self.client.collection_exists(collection):
            with self._lock:
                self._known.add(collection)
            return True
        return False

    def _ensure_collection(self, collection, vector_size):
        if self._exists(collection):
            return
        logger.info("Creating Qdrant collection %s (size=%d)", collection, vector_size)
        self.client.create_collection(
            collection_name=collection,
            vectors_config=qmodels.VectorParams(
                size=vector_size,
                distance=qmodels.Distance.COSINE,
            ),
        )
        with self._lock:
            self._known.add(collection)

    def save(self, collection, id, vector, text, description):
        vector = [float(v) for v in vector]
        try:
            self._ensure_collection(collection, len(vector))
            self.client.upsert(
                collection_name=collection,
                points=[
                    qmodels.PointStruct(
                        id=point_id(id),
                        vector=vector,
                        payload={"id": str(id), "text": text, "description": description},
                    )
                ],
                wait=True,
            )
        except Exception as exc:
            logger.exception("Qdrant upsert failed for %s/%s", collection, id)
            raise StorageError(f"Failed to save id {id} into '{collection}'") from exc

    def get(self, collection, id):
        try:
            if not self._exists(collection):
                return None
            points = self.client.retrieve(
                collection_name=collection,
                ids=[point_id(id)],
                with_payload=True,
                with_vectors=True,
            )
        except Exception as exc:
            logger.exception("Qdrant retrieve failed for %s/%s", collection, id)
            raise StorageError(f"Failed to read id {id} from '{collection}'") from exc

        if not points:
            return None

        payload = points[0].payload or {}
        vector = points[0].vector or ()
        return MemoryRecord(
            collection=collection,
            id=str(payload.get("id", id)),
            text=payload.get("text", ""),
            description=payload.get("description", payload.get("text", "")),
            vector=tuple(vector) if isinstance(vector, list) else (),
        )

    def search(self, collection, vector, limit, min_score):
        try:
            if not self._exists(collection):
                return []
            response = self.client.query_points(
                collection_name=collection,
                query=[float(v) for v in vector],
                limit=limit + SEARCH_SLACK,
                score_threshold=min_score,
                with_payload=True,
            )
        except Exception as exc:
            logger.exception("Qdrant search failed in %s", collection)
            raise StorageError(f"Search failed in '{collection}'") from exc

        hits = [
            SearchHit(id=str((point.payload or {}).get("id", point.id)), score=float(point.score))
            for point in response.points
            if point.score >= min_score
        ]
        return rank_hits(hits)[:limit]

    def count(self, collection):
        try:
            if not self._exists(collection):
                return 0
            return self.client.count(collection_name=collection, exact=True).count
        except Exception as exc:
            raise StorageError(f"Count failed in '{collection}'") from exc

    def collections(self):
        try:
            return sorted(c.name for c in self.client.get_collections().collections)
        except Exception as exc:
            raise StorageError("Failed to list Qdrant collections") from exc

    def delete_collection(self, collection):
        try:
            self.client.delete_collection(collection_name=collection)
        except Exception as exc:
            raise StorageError(f"Failed to delete '{collection}'") from exc
        with self._lock:
            self._known.discard(collection)
