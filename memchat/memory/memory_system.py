"""FAISS-backed memory store for ingested sentence collections.

Architectural role:
    Implements the `MemoryStore` protocol on local disk. Each collection lives in
    its own directory under the store root:
    - `<root>/<collection>/memory.index`: `IndexIDMap2(IndexFlatIP)` vectors.
    - `<root>/<collection>/memory_meta.json`: id, text and description per record.

Responsibilities:
    - Normalize vectors so inner-product scores are cosine similarities.
    - Map string record ids to int64 FAISS keys.
    - Persist index and metadata after every save via temporary-file replacement.
    - Reconcile index/metadata drift left by an interrupted write on load.

Failure model:
    FAISS, filesystem and JSON failures are logged and raised as `StorageError`.
"""

import os
import re
import json
import shutil
import logging
import threading

import numpy as np
import faiss

from memchat.core.errors import StorageError
from memchat.memory.models import MemoryRecord, SearchHit, rank_hits
from memchat.memory.store import normalize


logger = logging.getLogger(__name__)


INDEX_FILE = "memory.index"
META_FILE = "memory_meta.json"
COLLECTION_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
# Extra candidates fetched so ties at the cut-off are resolved by id.
SEARCH_SLACK = 8


def atomic_json_save(path, data):
    """Persist JSON data atomically via temporary file replacement.

    Args:
        path: Destination JSON path.
        data: JSON-serializable payload.

    Side effects:
        Writes `<path>.tmp` and atomically replaces `path`.
    """
    tmp = path + ".tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
    os.replace(tmp, path)


def atomic_index_save(index, path):
    """Write a FAISS index to `<path>.tmp` and atomically replace `path`."""
    tmp = path + ".tmp"
    faiss.write_index(index, tmp)
    os.replace(tmp, path)


class _Collection:
    """In-memory view of one persisted collection."""

    def __init__(self, name, directory, index, records, next_key):
        self.name = name
        self.directory = directory
        self.index = index
        self.records = records
        self.next_key = next_key
        self.by_key = {entry["key"]: record_id for record_id, entry in records.items()}

    @property
    def index_path(self):
        return os.path.join(self.directory, INDEX_FILE)

    @property
    def meta_path(self):
        return os.path.join(self.directory, META_FILE)

    @property
    def dimension(self):
        return self.index.d if self.index is not None else None


class FaissMemoryStore:
    """Local FAISS implementation of the `MemoryStore` protocol."""

    def __init__(self, base_dir="knowledge"):
        self.base_dir = os.path.abspath(base_dir)
        self._cache = {}
        self._lock = threading.RLock()

    # ---------------------------------------------------------
    # Loading
    # ---------------------------------------------------------

    def _collection_dir(self, name):
        if not name or not COLLECTION_NAME_PATTERN.match(name):
            raise StorageError(f"Invalid collection name: {name!r}")
        return os.path.join(self.base_dir, name)

    def _load(self, name, create=False):
        """Return the cached collection, loading it from disk when needed.

        Returns:
            `_Collection`, or `None` when it does not exist and `create` is false.
        """
        cached = self._cache.get(name)
        if cached is not None:
            return cached

        directory = self._collection_dir(name)
        index_path = os.path.join(directory, INDEX_FILE)
        meta_path = os.path.join(directory, META_FILE)

        if not os.path.exists(meta_path):
            if not create:
                return None
            collection = _Collection(name, directory, None, {}, 0)
            self._cache[name] = collection
            return collection

        try:
            with open(meta_path, "r", encoding="utf-8") as f:
                meta = json.load(f)
            index = faiss.read_index(index_path) if os.path.exists(index_path) else None
        except (OSError, ValueError, RuntimeError) as exc:
            logger.exception("Failed to load collection %s from %s", name, directory)
            raise StorageError(f"Failed to load collection '{name}'") from exc

        collection = _Collection(
            name,
            directory,
            index,
            meta.get("records", {}),
            int(meta.get("next_key", 0)),
        )
        self._reconcile(collection)
        self._cache[name] = collection
        return collection

    def _reconcile(self, collection):
        """Drop index keys without metadata and metadata without vectors."""
        if collection.index is None:
            if collection.records:
                logger.warning(
                    "Collection %s has metadata but no index; discarding %d entries",
                    collection.name, len(collection.records),
                )
                collection.records = {}
                collection.by_key = {}
            return

        index_keys = set(faiss.vector_to_array(collection.index.id_map).tolist())
        orphan_keys = [key for key in index_keys if key not in collection.by_key]
        if orphan_keys:
            logger.warning(
                "Collection %s: removing %d vectors without metadata",
                collection.name, len(orphan_keys),
            )
            collection.index.remove_ids(np.array(orphan_keys, dtype="int64"))

        missing = [rid for rid, entry in collection.records.items() if entry["key"] not in index_keys]
        for rid in missing:
            logger.warning("Collection %s: dropping id %s without vector", collection.name, rid)
            del collection.by_key[collection.records[rid]["key"]]
            del collection.records[rid]

        if index_keys:
            collection.next_key = max(collection.next_key, max(index_keys) + 1)

    def _persist(self, collection):
        os.makedirs(collection.directory, exist_ok=True)
        atomic_index_save(collection.index, collection.index_path)
        atomic_json_save(collection.meta_path, {
            "collection": collection.name,
            "dimension": collection.dimension,
            "next_key": collection.next_key,
            "records": collection.records,
        })

    # ---------------------------------------------------------
    # MemoryStore protocol
    # ---------------------------------------------------------

    def save(self, collection, id, vector, text, description):
        """Insert or overwrite one record and persist the collection."""
        record_id = str(id)
        try:
            vec = normalize(vector).reshape(1, -1)
        except (ValueError, TypeError) as exc:
            raise StorageError(f"Invalid vector for id {record_id}") from exc

        with self._lock:
            col = self._load(collection, create=True)

            if col.index is None:
                col.index = faiss.IndexIDMap2(faiss.IndexFlatIP(vec.shape[1]))
            elif col.dimension != vec.shape[1]:
                raise StorageError(
                    f"Vector dimension {vec.shape[1]} does not match collection "
                    f"'{collection}' dimension {col.dimension}"
                )

            try:
                previous = col.records.get(record_id)
                if previous is not None:
                    col.index.remove_ids(np.array([previous["key"]], dtype="int64"))
                    del col.by_key[previous["key"]]

                key = col.next_key
                col.index.add_with_ids(vec, np.array([key], dtype="int64"))
                col.next_key += 1
                col.records[record_id] = {
                    "key": key,
                    "text": text,
                    "description": description,
                }
                col.by_key[key] = record_id

                self._persist(col)
            except (OSError, RuntimeError, ValueError, TypeError) as exc:
                logger.exception("Failed to save id %s into collection %s", record_id, collection)
                # The cached view may now disagree with disk; reload next time.
                self._cache.pop(collection, None)
                raise StorageError(f"Failed to save id {record_id} into '{collection}'") from exc

    def get(self, collection, id):
        record_id = str(id)
        with self._lock:
            col = self._load(collection)
            if col is None:
                return None

            entry = col.records.get(record_id)
            if entry is None:
                return None

            try:
                vector = col.index.reconstruct(int(entry["key"]))
            except RuntimeError as exc:
                raise StorageError(f"Failed to read id {record_id} from '{collection}'") from exc

        return MemoryRecord(
            collection=collection,
            id=record_id,
            text=entry["text"],
            description=entry["description"],
            vector=tuple(float(v) for v in vector),
        )

    def search(self, collection, vector, limit, min_score):
        with self._lock:
            col = self._load(collection)
            if col is None or col.index is None or col.index.ntotal == 0:
                return []

            query = normalize(vector).reshape(1, -1)
            if query.shape[1] != col.dimension:
                raise StorageError(
                    f"Query dimension {query.shape[1]} does not match collection "
                    f"'{collection}' dimension {col.dimension}"
                )

            k = min(col.index.ntotal, limit + SEARCH_SLACK)
            try:
                scores, keys = col.index.search(query, k)
            except RuntimeError as exc:
                raise StorageError(f"Search failed in '{collection}'") from exc

            hits = []
            for score, key in zip(scores[0], keys[0]):
                if key < 0:
                    continue
                record_id = col.by_key.get(int(key))
                if record_id is None:
                    continue
                similarity = float(score)
                if similarity < min_score:
                    continue
                hits.append(SearchHit(id=record_id, score=similarity))

        return rank_hits(hits)[:limit]

    def count(self, collection):
        with self._lock:
            col = self._load(collection)
            return len(col.records) if col is not None else 0

    def collections(self):
        if not os.path.isdir(self.base_dir):
            return []
        return sorted(
            name
            for name in os.listdir(self.base_dir)
            if os.path.exists(os.path.join(self.base_dir, name, META_FILE))
        )

    def delete_collection(self, collection):
        with self._lock:
            directory = self._collection_dir(collection)
            self._cache.pop(collection, None)
            if os.path.isdir(directory):
                shutil.rmtree(directory)
